from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Dict


@dataclass
class LoyaltyTelemetrySnapshot:
    points: Dict[str, int]
    operations: Dict[str, int]
    tier_changes: Dict[str, int]
    sweeps: Dict[str, int]
    last_sweep_at: datetime | None

    def as_dict(self) -> Dict[str, object]:
        return {
            "points": dict(self.points),
            "operations": dict(self.operations),
            "tier_changes": dict(self.tier_changes),
            "sweeps": dict(self.sweeps),
            "last_sweep_at": self.last_sweep_at.isoformat() if self.last_sweep_at else None,
        }


class LoyaltyObservabilityStore:
    """Collect ledger, tier, and sweep telemetry for dashboards and alerting."""

    # meta: observability: loyalty-ledger

    def __init__(self) -> None:
        self._lock = Lock()
        self._points: Dict[str, int] = defaultdict(int)
        self._operations: Dict[str, int] = defaultdict(int)
        self._tier_changes: Dict[str, int] = defaultdict(int)
        self._sweeps: Dict[str, int] = defaultdict(int)
        self._last_sweep_at: datetime | None = None

    def record_points(self, movement: str, points: int) -> None:
        with self._lock:
            self._points[movement] += abs(int(points))
            self._operations[movement] += 1

    def record_tier_change(self, old_tier: str | None, new_tier: str) -> None:
        with self._lock:
            self._tier_changes["total"] += 1
            self._tier_changes[f"{old_tier or 'none'}->{new_tier}"] += 1

    def record_conflict(self, operation: str) -> None:
        with self._lock:
            self._operations["conflicts"] += 1
            self._operations[f"conflict:{operation}"] += 1

    def record_rejection(self, reason: str) -> None:
        with self._lock:
            self._operations[f"rejected:{reason}"] += 1

    def record_sweep(self, *, succeeded: int, failed: int, points_expired: int) -> None:
        with self._lock:
            self._sweeps["runs"] += 1
            self._sweeps["members_succeeded"] += succeeded
            self._sweeps["members_failed"] += failed
            self._sweeps["points_expired"] += points_expired
            self._last_sweep_at = datetime.now(timezone.utc)

    def snapshot(self) -> LoyaltyTelemetrySnapshot:
        with self._lock:
            return LoyaltyTelemetrySnapshot(
                points=dict(self._points),
                operations=dict(self._operations),
                tier_changes=dict(self._tier_changes),
                sweeps=dict(self._sweeps),
                last_sweep_at=self._last_sweep_at,
            )

    def reset(self) -> None:
        with self._lock:
            self._points.clear()
            self._operations.clear()
            self._tier_changes.clear()
            self._sweeps.clear()
            self._last_sweep_at = None


_STORE = LoyaltyObservabilityStore()


def get_loyalty_store() -> LoyaltyObservabilityStore:
    return _STORE


__all__ = ["get_loyalty_store", "LoyaltyObservabilityStore", "LoyaltyTelemetrySnapshot"]
