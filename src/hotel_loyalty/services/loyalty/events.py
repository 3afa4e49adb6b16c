"""Domain events emitted after loyalty mutations commit."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, ClassVar, Iterable, Union
from uuid import UUID

from loguru import logger

from hotel_loyalty.services.guests import GuestDisplayInfo


@dataclass(frozen=True, slots=True)
class TierChanged:
    event_type: ClassVar[str] = "loyalty.tier_changed"

    member_id: UUID
    hotel_id: UUID
    guest_id: UUID
    old_tier: str | None
    new_tier: str
    reason: str
    benefits: tuple[str, ...]
    occurred_at: datetime
    guest: GuestDisplayInfo = field(default_factory=GuestDisplayInfo)
    is_upgrade: bool = False


@dataclass(frozen=True, slots=True)
class RewardRedeemed:
    event_type: ClassVar[str] = "loyalty.reward_redeemed"

    member_id: UUID
    hotel_id: UUID
    guest_id: UUID
    redemption_id: UUID
    reward_id: UUID | None
    reward_name: str
    points_cost: int
    value_redeemed: Decimal
    remaining_points: int
    valid_until: datetime | None
    occurred_at: datetime
    guest: GuestDisplayInfo = field(default_factory=GuestDisplayInfo)


@dataclass(frozen=True, slots=True)
class PointsAdjusted:
    """Full adjustment payload; report renderers subscribe to this."""

    event_type: ClassVar[str] = "loyalty.points_adjusted"

    member_id: UUID
    hotel_id: UUID
    guest_id: UUID
    ledger_entry_id: UUID
    delta: int
    reason: str
    note: str | None
    total_points_before: int
    total_points_after: int
    available_points_after: int
    tier_before: str | None
    tier_after: str | None
    occurred_at: datetime
    guest: GuestDisplayInfo = field(default_factory=GuestDisplayInfo)

    def as_payload(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["event_type"] = self.event_type
        payload["guest_name"] = self.guest.display_name
        return payload


@dataclass(frozen=True, slots=True)
class BookingCompleted:
    """Inbound notice that a guest finished a paid booking."""

    hotel_id: UUID
    guest_id: UUID
    category: str | None
    amount: Decimal
    completed_at: datetime
    nights: int = 0
    booking_reference: str | None = None
    guest: GuestDisplayInfo | None = None


LoyaltyEvent = Union[TierChanged, RewardRedeemed, PointsAdjusted]
EventHandler = Callable[[Any], Awaitable[None]]


class LoyaltyEventPublisher:
    """In-process fan-out of loyalty events to async subscribers.

    Delivery is fire-and-forget: a failing subscriber is logged and never
    propagates into the mutation that produced the event. With
    ``background=True`` subscribers run as tasks so slow deliveries (SMTP)
    do not hold the caller; ``drain`` waits for whatever is still in flight.
    """

    def __init__(self, *, background: bool = False) -> None:
        self._handlers: dict[type, list[EventHandler]] = defaultdict(list)
        self._background = background
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def subscribe(self, event_type: type, handler: EventHandler) -> None:
        self._handlers[event_type].append(handler)

    async def publish(self, event: LoyaltyEvent) -> None:
        if not self._background:
            await self._dispatch(event)
            return
        task = asyncio.create_task(self._dispatch(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def publish_all(self, events: Iterable[LoyaltyEvent]) -> None:
        for event in events:
            await self.publish(event)

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def _dispatch(self, event: LoyaltyEvent) -> None:
        for handler in list(self._handlers.get(type(event), [])):
            try:
                await handler(event)
            except Exception as exc:
                logger.exception(
                    "Loyalty event subscriber failed",
                    event_type=event.event_type,
                    member_id=str(event.member_id),
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(exc),
                )


__all__ = [
    "BookingCompleted",
    "EventHandler",
    "LoyaltyEvent",
    "LoyaltyEventPublisher",
    "PointsAdjusted",
    "RewardRedeemed",
    "TierChanged",
]
