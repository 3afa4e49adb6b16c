"""Worker wiring for loyalty points expiration sweeps."""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from hotel_loyalty.core.settings import settings
from hotel_loyalty.observability.loyalty import get_loyalty_store
from hotel_loyalty.services.loyalty.clock import Clock, ensure_utc, utcnow
from hotel_loyalty.services.loyalty.loyalty_service import LoyaltyService

SessionFactory = Callable[[], Awaitable[AsyncSession]] | Callable[[], AsyncSession]
MemberExpiry = Callable[[UUID, datetime], Awaitable[int]]


@dataclass
class SweepFailure:
    member_id: UUID
    error: str


@dataclass
class SweepResult:
    """Outcome of one pass over members holding due lots."""

    triggered_by: str
    started_at: datetime
    completed_at: datetime | None = None
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    points_expired: int = 0
    failures: list[SweepFailure] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["started_at"] = self.started_at.isoformat()
        payload["completed_at"] = self.completed_at.isoformat() if self.completed_at else None
        payload["failures"] = [
            {"member_id": str(failure.member_id), "error": failure.error} for failure in self.failures
        ]
        return payload


class ExpirationSweeper:
    """Periodically retires points whose lots have passed their expiry.

    Each member is expired in its own session and transaction; one member
    failing is logged and counted while the rest of the sweep continues.
    """

    # meta: worker: loyalty-expiration

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        clock: Clock | None = None,
        expire_member: MemberExpiry | None = None,
        interval_seconds: int | None = None,
        batch_size: int | None = None,
        hotel_id: UUID | None = None,
        trigger_label: str | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or utcnow
        self._expire_member = expire_member or self._expire_with_service
        self.interval_seconds = interval_seconds or settings.loyalty_expiration_interval_seconds
        self._batch_size = max(1, batch_size or settings.loyalty_expiration_batch_size)
        self._hotel_id = hotel_id
        self._trigger_label = trigger_label or settings.loyalty_expiration_trigger_label
        self._stop_event = asyncio.Event()
        self._sweep_lock = asyncio.Lock()
        self._task: asyncio.Task | None = None
        self.is_running: bool = False
        self.last_result: SweepResult | None = None

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        self.is_running = True
        logger.info(
            "Loyalty expiration sweeper started",
            interval_seconds=self.interval_seconds,
            batch_size=self._batch_size,
            hotel_id=str(self._hotel_id) if self._hotel_id else None,
        )

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self.is_running = False
        logger.info("Loyalty expiration sweeper stopped")

    async def trigger_now(self, *, triggered_by: str | None = None) -> SweepResult:
        """Run one sweep immediately; overlapping calls queue behind each other."""

        async with self._sweep_lock:
            return await self._sweep(triggered_by or self._trigger_label)

    async def _sweep(self, trigger: str) -> SweepResult:
        now = ensure_utc(self._clock())
        result = SweepResult(triggered_by=trigger, started_at=now)
        attempted: set[UUID] = set()

        while True:
            # Members that failed stay due, so widen the window to reach past them.
            limit = self._batch_size + result.failed
            candidates = await self._due_members(now, limit=limit)
            fresh = [member_id for member_id in candidates if member_id not in attempted]
            if not fresh:
                break
            for member_id in fresh:
                attempted.add(member_id)
                result.processed += 1
                try:
                    expired = await self._expire_member(member_id, now)
                except Exception as exc:
                    result.failed += 1
                    result.failures.append(SweepFailure(member_id=member_id, error=str(exc)))
                    logger.exception(
                        "Loyalty expiration failed for member",
                        member_id=str(member_id),
                        error=str(exc),
                    )
                    continue
                result.succeeded += 1
                result.points_expired += int(expired or 0)
            if len(candidates) < limit:
                break

        result.completed_at = ensure_utc(self._clock())
        self.last_result = result
        get_loyalty_store().record_sweep(
            succeeded=result.succeeded,
            failed=result.failed,
            points_expired=result.points_expired,
        )
        logger.info(
            "Loyalty expiration sweep completed",
            trigger=trigger,
            processed=result.processed,
            succeeded=result.succeeded,
            failed=result.failed,
            points_expired=result.points_expired,
        )
        return result

    async def _due_members(self, now: datetime, *, limit: int) -> list[UUID]:
        session = await self._ensure_session()
        async with session as managed_session:
            service = LoyaltyService(managed_session, clock=self._clock)
            return await service.list_members_with_due_points(now=now, hotel_id=self._hotel_id, limit=limit)

    async def _expire_with_service(self, member_id: UUID, now: datetime) -> int:
        session = await self._ensure_session()
        async with session as managed_session:
            service = LoyaltyService(managed_session, clock=self._clock)
            return await service.expire_old_points(member_id, now=now)

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.trigger_now()
            except Exception as exc:  # pragma: no cover - defensive logging
                logger.exception("Loyalty expiration iteration failed", error=str(exc))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def _ensure_session(self) -> AsyncSession:
        maybe_session = self._session_factory()
        if isinstance(maybe_session, AsyncSession):
            return maybe_session
        return await maybe_session


__all__ = ["ExpirationSweeper", "MemberExpiry", "SweepFailure", "SweepResult"]
