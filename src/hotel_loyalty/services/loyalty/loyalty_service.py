"""Service layer for loyalty memberships, the points ledger, and tiers."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Awaitable, Callable, Sequence, Tuple, TypeVar
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from hotel_loyalty.core.settings import settings
from hotel_loyalty.models.loyalty import (
    LoyaltyLedgerEntry,
    LoyaltyLedgerEntryType,
    LoyaltyMember,
    LoyaltyPointLot,
    LoyaltyPointLotStatus,
    LoyaltyProgram,
    LoyaltyRedemption,
    LoyaltyReward,
    LoyaltyTierChange,
)
from hotel_loyalty.observability.loyalty import get_loyalty_store
from hotel_loyalty.services.guests import GuestDisplayInfo
from hotel_loyalty.services.loyalty.clock import Clock, ensure_utc, utcnow
from hotel_loyalty.services.loyalty.errors import (
    ConcurrencyConflictError,
    InsufficientPointsError,
    LedgerIntegrityError,
    LoyaltyConfigurationError,
    NotFoundError,
    RewardUnavailableError,
    ValidationError,
)
from hotel_loyalty.services.loyalty.events import (
    BookingCompleted,
    LoyaltyEvent,
    LoyaltyEventPublisher,
    PointsAdjusted,
    RewardRedeemed,
    TierChanged,
)
from hotel_loyalty.services.loyalty.redemption import can_redeem
from hotel_loyalty.services.loyalty.rules import PointsRules, calculate_points_earned, lot_expiry
from hotel_loyalty.services.loyalty.tiers import (
    TierConfig,
    find_tier,
    resolve_tier,
    sort_tiers,
    tier_progress,
    tier_rank,
)

T = TypeVar("T")

EARN_TIER_REASON = "Points threshold reached"
ADJUST_TIER_REASON = "Admin adjustment"
MANUAL_TIER_REASON = "Manual admin change"
JOIN_TIER_REASON = "Joined loyalty program"
EXPIRING_POINTS_WINDOW = timedelta(days=30)

MEMBER_SORT_COLUMNS = {
    "total_points": LoyaltyMember.total_points,
    "available_points": LoyaltyMember.available_points,
    "lifetime_spending": LoyaltyMember.lifetime_spending,
    "join_date": LoyaltyMember.join_date,
    "last_activity": LoyaltyMember.last_activity,
}


@dataclass
class EarnResult:
    """Outcome of a points credit."""

    member_id: UUID
    points: int
    tier_changed: bool = False
    old_tier: str | None = None
    new_tier: str | None = None
    ledger_entry_id: UUID | None = None
    expires_at: datetime | None = None
    nights_points: int = 0

    @property
    def total_points_awarded(self) -> int:
        return self.points + self.nights_points


@dataclass
class RedemptionOutcome:
    """Serializable result of a completed reward redemption."""

    redemption_id: UUID
    member_id: UUID
    reward_id: UUID | None
    reward_name: str
    points_cost: int
    value_redeemed: Decimal
    remaining_points: int
    valid_until: datetime | None
    redeemed_at: datetime


@dataclass
class ExpiringPointsWindow:
    lot_id: UUID
    points: int
    expires_at: datetime


@dataclass
class MemberSnapshot:
    """Guest-facing view of a membership."""

    member_id: UUID
    hotel_id: UUID
    guest_id: UUID
    guest_name: str
    current_tier: str | None
    total_points: int
    available_points: int
    lifetime_points_earned: int
    lifetime_points_redeemed: int
    lifetime_points_expired: int
    lifetime_spending: Decimal
    total_nights_stayed: int
    next_tier: str | None
    points_to_next_tier: int
    progress_percentage: Decimal
    discount_percentage: Decimal
    benefits: list[str]
    upcoming_benefits: list[str]
    join_date: datetime | None
    last_activity: datetime | None
    is_active: bool
    expiring_points: list[ExpiringPointsWindow] = field(default_factory=list)


@dataclass
class _MutationContext:
    member: LoyaltyMember
    program: LoyaltyProgram
    tiers: list[TierConfig]
    now: datetime
    events: list[LoyaltyEvent] = field(default_factory=list)
    points_issued: int = 0


class LoyaltyService:
    """Coordinates member balances, the points ledger, and tier transitions.

    Every balance change runs through ``_mutate``: the member row is loaded
    under ``FOR UPDATE`` with a fresh copy of the program tiers, the change is
    applied and committed, and a lost optimistic version check causes a
    reload and retry. Events are published only after the commit succeeds.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        events: LoyaltyEventPublisher | None = None,
        clock: Clock | None = None,
        max_retries: int | None = None,
    ) -> None:
        self._db = db_session
        self._events = events or LoyaltyEventPublisher()
        self._clock = clock or utcnow
        self._max_retries = max(1, max_retries or settings.loyalty_mutation_max_retries)
        self._telemetry = get_loyalty_store()

    @property
    def events(self) -> LoyaltyEventPublisher:
        return self._events

    def _now(self) -> datetime:
        return ensure_utc(self._clock())

    # Programs and members

    async def find_program(self, hotel_id: UUID) -> LoyaltyProgram | None:
        stmt = (
            select(LoyaltyProgram)
            .where(LoyaltyProgram.hotel_id == hotel_id)
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_program(self, hotel_id: UUID) -> LoyaltyProgram:
        program = await self.find_program(hotel_id)
        if program is None:
            raise NotFoundError(f"No loyalty program configured for hotel {hotel_id}")
        return program

    @staticmethod
    def tier_configs(program: LoyaltyProgram) -> list[TierConfig]:
        tiers = sort_tiers(TierConfig.from_model(tier) for tier in program.tiers)
        if not tiers:
            raise LoyaltyConfigurationError(f"Loyalty program {program.id} has no tiers configured")
        return tiers

    async def find_member(self, hotel_id: UUID, guest_id: UUID) -> LoyaltyMember | None:
        stmt = select(LoyaltyMember).where(
            LoyaltyMember.hotel_id == hotel_id,
            LoyaltyMember.guest_id == guest_id,
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_member(self, member_id: UUID, *, hotel_id: UUID | None = None) -> LoyaltyMember:
        stmt = select(LoyaltyMember).where(LoyaltyMember.id == member_id)
        if hotel_id is not None:
            stmt = stmt.where(LoyaltyMember.hotel_id == hotel_id)
        result = await self._db.execute(stmt.execution_options(populate_existing=True))
        member = result.scalar_one_or_none()
        if member is None:
            raise NotFoundError(f"Loyalty member {member_id} not found")
        return member

    async def ensure_member(
        self,
        hotel_id: UUID,
        guest_id: UUID,
        *,
        guest: GuestDisplayInfo | None = None,
    ) -> LoyaltyMember:
        """Fetch or create the membership for a guest at a hotel."""

        member = await self.find_member(hotel_id, guest_id)
        if member:
            return member

        program = await self.get_program(hotel_id)
        tiers = self.tier_configs(program)
        lowest = tiers[0]
        progress = tier_progress(0, tiers)
        now = self._now()
        guest = guest or GuestDisplayInfo()
        member = LoyaltyMember(
            id=uuid4(),
            hotel_id=hotel_id,
            guest_id=guest_id,
            guest_first_name=guest.first_name,
            guest_last_name=guest.last_name,
            guest_email=guest.email,
            current_tier=lowest.name,
            next_tier_name=progress.next_tier_name,
            points_to_next_tier=progress.points_to_next_tier,
            progress_percentage=progress.progress_percentage,
            join_date=now,
            last_activity=now,
        )
        self._db.add(member)
        try:
            await self._db.flush()
        except IntegrityError:
            await self._db.rollback()
            logger.warning(
                "Detected race when creating loyalty member",
                hotel_id=str(hotel_id),
                guest_id=str(guest_id),
            )
            existing = await self.find_member(hotel_id, guest_id)
            if existing is None:
                raise
            return existing

        self._db.add(
            LoyaltyTierChange(
                member_id=member.id,
                old_tier=None,
                new_tier=lowest.name,
                reason=JOIN_TIER_REASON,
                changed_at=now,
            )
        )
        await self._db.commit()
        logger.info(
            "Created loyalty member",
            hotel_id=str(hotel_id),
            guest_id=str(guest_id),
            member_id=str(member.id),
            tier=lowest.name,
        )
        return member

    # Mutations

    async def record_booking(self, event: BookingCompleted) -> EarnResult | None:
        """Credit a completed booking, creating the membership on first stay.

        Returns ``None`` when the hotel runs no active loyalty program.
        """

        if Decimal(str(event.amount)) < 0:
            raise ValidationError("Booking amount cannot be negative")

        program = await self.find_program(event.hotel_id)
        if program is None or not program.is_active:
            logger.info(
                "Skipping booking for hotel without active loyalty program",
                hotel_id=str(event.hotel_id),
                booking_reference=event.booking_reference,
            )
            return None

        member = await self.ensure_member(event.hotel_id, event.guest_id, guest=event.guest)

        async def apply(ctx: _MutationContext) -> EarnResult:
            if event.guest is not None:
                _fill_guest_details(ctx.member, event.guest)
            result = self._earn(
                ctx,
                amount=event.amount,
                category=event.category,
                booking_reference=event.booking_reference,
                issued_at=event.completed_at,
            )
            if event.nights:
                nights_entry = self._award_nights(
                    ctx,
                    nights=event.nights,
                    booking_reference=event.booking_reference,
                    issued_at=event.completed_at,
                )
                result.nights_points = nights_entry
            self._settle_tier(ctx, EARN_TIER_REASON, result)
            return result

        return await self._mutate(member.id, "record_booking", apply)

    async def earn_points(
        self,
        member_id: UUID,
        *,
        amount: Decimal | int | float,
        category: str | None = None,
        booking_reference: str | None = None,
        issued_at: datetime | None = None,
    ) -> EarnResult:
        async def apply(ctx: _MutationContext) -> EarnResult:
            result = self._earn(
                ctx,
                amount=amount,
                category=category,
                booking_reference=booking_reference,
                issued_at=issued_at,
            )
            self._settle_tier(ctx, EARN_TIER_REASON, result)
            return result

        return await self._mutate(member_id, "earn_points", apply)

    async def award_points_for_nights(
        self,
        member_id: UUID,
        *,
        nights: int,
        booking_reference: str | None = None,
        issued_at: datetime | None = None,
    ) -> EarnResult:
        if nights <= 0:
            raise ValidationError("Nights must be a positive integer")

        async def apply(ctx: _MutationContext) -> EarnResult:
            result = EarnResult(member_id=ctx.member.id, points=0)
            result.nights_points = self._award_nights(
                ctx, nights=nights, booking_reference=booking_reference, issued_at=issued_at
            )
            self._settle_tier(ctx, EARN_TIER_REASON, result)
            return result

        return await self._mutate(member_id, "award_nights", apply)

    async def adjust_points(
        self,
        member_id: UUID,
        *,
        delta: int,
        reason: str,
        note: str | None = None,
        hotel_id: UUID | None = None,
    ) -> PointsAdjusted:
        """Apply an admin correction and return the adjustment payload."""

        if not isinstance(delta, int) or isinstance(delta, bool) or delta == 0:
            raise ValidationError("Points adjustment must be a non-zero integer")
        if not reason or not reason.strip():
            raise ValidationError("Adjustment reason is required")
        reason = reason.strip()

        async def apply(ctx: _MutationContext) -> PointsAdjusted:
            member = ctx.member
            total_before = int(member.total_points)
            tier_before = member.current_tier
            if delta < 0:
                decrement = -delta
                available = int(member.available_points)
                if decrement > available:
                    self._telemetry.record_rejection("insufficient_points")
                    raise InsufficientPointsError(
                        decrement - available,
                        available_points=available,
                        requested_points=decrement,
                    )
                await self._consume_lots(member, decrement)
                entry = self._append_entry(
                    ctx,
                    entry_type=LoyaltyLedgerEntryType.ADJUSTED,
                    amount=delta,
                    reason=reason,
                    note=note,
                )
            else:
                entry = self._credit(
                    ctx,
                    entry_type=LoyaltyLedgerEntryType.ADJUSTED,
                    points=delta,
                    reason=reason,
                    note=note,
                    issued_at=ctx.now,
                    expires_at=None,
                )
                ctx.points_issued += delta

            member.total_points = total_before + delta
            member.available_points = int(member.available_points) + delta
            member.lifetime_points_earned = int(member.lifetime_points_earned) + delta
            member.last_activity = ctx.now
            self._telemetry.record_points("adjusted", delta)
            self._settle_tier(ctx, ADJUST_TIER_REASON)

            payload = PointsAdjusted(
                member_id=member.id,
                hotel_id=member.hotel_id,
                guest_id=member.guest_id,
                ledger_entry_id=entry.id,
                delta=delta,
                reason=reason,
                note=note,
                total_points_before=total_before,
                total_points_after=int(member.total_points),
                available_points_after=int(member.available_points),
                tier_before=tier_before,
                tier_after=member.current_tier,
                occurred_at=ctx.now,
                guest=GuestDisplayInfo.from_member(member),
            )
            ctx.events.append(payload)
            logger.info(
                "Adjusted loyalty points",
                member_id=str(member.id),
                delta=delta,
                reason=reason,
                total_points=member.total_points,
            )
            return payload

        return await self._mutate(member_id, "adjust_points", apply, hotel_id=hotel_id)

    async def redeem_points(
        self,
        member_id: UUID,
        *,
        points_cost: int,
        value: Decimal | int | float,
        reward_name: str,
        reward_id: UUID | None = None,
        validity_days: int | None = None,
    ) -> RedemptionOutcome:
        if points_cost <= 0:
            raise ValidationError("Redemption cost must be positive")
        if not reward_name or not reward_name.strip():
            raise ValidationError("Reward name is required")

        async def apply(ctx: _MutationContext) -> RedemptionOutcome:
            return await self._redeem(
                ctx,
                points_cost=points_cost,
                value=Decimal(str(value)),
                reward_name=reward_name.strip(),
                reward_id=reward_id,
                validity_days=validity_days,
            )

        return await self._mutate(member_id, "redeem_points", apply)

    async def redeem_reward(
        self,
        member_id: UUID,
        reward_id: UUID,
        *,
        hotel_id: UUID | None = None,
    ) -> RedemptionOutcome:
        """Validate and spend points on a catalog reward."""

        async def apply(ctx: _MutationContext) -> RedemptionOutcome:
            reward = await self._load_reward(reward_id, ctx.member.hotel_id)
            verdict = can_redeem(ctx.member, reward, ctx.tiers, now=ctx.now)
            if not verdict.available:
                self._telemetry.record_rejection(verdict.reason or "unavailable")
                logger.info(
                    "Rejected loyalty redemption",
                    member_id=str(ctx.member.id),
                    reward_id=str(reward.id),
                    reason=verdict.reason,
                )
                raise verdict.as_error()

            value = Decimal(str(reward.value or 0))
            claim = (
                update(LoyaltyReward)
                .where(
                    LoyaltyReward.id == reward.id,
                    or_(
                        LoyaltyReward.usage_limit.is_(None),
                        LoyaltyReward.times_redeemed < LoyaltyReward.usage_limit,
                    ),
                )
                .values(
                    times_redeemed=LoyaltyReward.times_redeemed + 1,
                    total_value_redeemed=LoyaltyReward.total_value_redeemed + value,
                )
                .execution_options(synchronize_session=False)
            )
            claimed = await self._db.execute(claim)
            if claimed.rowcount == 0:
                self._telemetry.record_rejection("usage limit reached")
                raise RewardUnavailableError("Reward usage limit reached")

            return await self._redeem(
                ctx,
                points_cost=int(reward.points_cost),
                value=value,
                reward_name=reward.name,
                reward_id=reward.id,
                validity_days=reward.validity_days,
            )

        return await self._mutate(member_id, "redeem_reward", apply, hotel_id=hotel_id)

    async def expire_old_points(self, member_id: UUID, *, now: datetime | None = None) -> int:
        """Retire the unspent remainder of every due lot; returns points expired."""

        async def apply(ctx: _MutationContext) -> int:
            horizon = ensure_utc(now) or ctx.now
            return await self._expire_due_lots(ctx, horizon)

        return await self._mutate(member_id, "expire_points", apply)

    async def change_member_tier(
        self,
        member_id: UUID,
        *,
        tier: str,
        reason: str | None = None,
        hotel_id: UUID | None = None,
    ) -> TierChanged | None:
        """Manually place a member in a configured tier."""

        async def apply(ctx: _MutationContext) -> TierChanged | None:
            target = find_tier(tier, ctx.tiers)
            if target is None:
                raise ValidationError(f"Tier {tier} is not configured for this program")
            if ctx.member.current_tier == target.name:
                return None
            return self._record_tier_change(ctx, target, (reason or "").strip() or MANUAL_TIER_REASON)

        return await self._mutate(member_id, "change_tier", apply, hotel_id=hotel_id)

    async def reclassify_member(self, member_id: UUID, *, reason: str) -> TierChanged | None:
        async def apply(ctx: _MutationContext) -> TierChanged | None:
            self._refresh_progress(ctx)
            target = resolve_tier(int(ctx.member.total_points), ctx.tiers)
            if ctx.member.current_tier == target.name:
                return None
            return self._record_tier_change(ctx, target, reason)

        return await self._mutate(member_id, "reclassify", apply)

    async def reclassify_members(self, hotel_id: UUID, *, reason: str) -> int:
        """Recompute every member's tier; returns the number that moved."""

        stmt = select(LoyaltyMember.id).where(LoyaltyMember.hotel_id == hotel_id).order_by(LoyaltyMember.join_date)
        member_ids = list((await self._db.execute(stmt)).scalars().all())
        changed = 0
        for member_id in member_ids:
            if await self.reclassify_member(member_id, reason=reason) is not None:
                changed += 1
        logger.info(
            "Reclassified loyalty members",
            hotel_id=str(hotel_id),
            evaluated=len(member_ids),
            changed=changed,
            reason=reason,
        )
        return changed

    # Reads

    async def snapshot_member(self, member: LoyaltyMember) -> MemberSnapshot:
        """Return a serializable snapshot of a loyalty member."""

        program = await self.get_program(member.hotel_id)
        tiers = self.tier_configs(program)
        progress = tier_progress(int(member.total_points or 0), tiers)
        current = find_tier(member.current_tier, tiers)
        upcoming = find_tier(progress.next_tier_name, tiers)
        expiring = await self.list_expiring_points(member.id)

        return MemberSnapshot(
            member_id=member.id,
            hotel_id=member.hotel_id,
            guest_id=member.guest_id,
            guest_name=GuestDisplayInfo.from_member(member).display_name,
            current_tier=member.current_tier,
            total_points=int(member.total_points or 0),
            available_points=int(member.available_points or 0),
            lifetime_points_earned=int(member.lifetime_points_earned or 0),
            lifetime_points_redeemed=int(member.lifetime_points_redeemed or 0),
            lifetime_points_expired=int(member.lifetime_points_expired or 0),
            lifetime_spending=Decimal(member.lifetime_spending or 0),
            total_nights_stayed=int(member.total_nights_stayed or 0),
            next_tier=progress.next_tier_name,
            points_to_next_tier=progress.points_to_next_tier,
            progress_percentage=progress.progress_percentage,
            discount_percentage=current.discount_percentage if current else Decimal("0"),
            benefits=list(current.benefits) if current else [],
            upcoming_benefits=list(upcoming.benefits) if upcoming else [],
            join_date=ensure_utc(member.join_date),
            last_activity=ensure_utc(member.last_activity),
            is_active=bool(member.is_active),
            expiring_points=expiring,
        )

    async def list_expiring_points(
        self,
        member_id: UUID,
        *,
        window: timedelta = EXPIRING_POINTS_WINDOW,
        limit: int = 5,
    ) -> list[ExpiringPointsWindow]:
        horizon = self._now() + window
        stmt = (
            select(LoyaltyPointLot)
            .where(
                LoyaltyPointLot.member_id == member_id,
                LoyaltyPointLot.status == LoyaltyPointLotStatus.OPEN,
                LoyaltyPointLot.expires_at.isnot(None),
                LoyaltyPointLot.expires_at <= horizon,
            )
            .order_by(LoyaltyPointLot.expires_at.asc())
            .limit(limit)
        )
        result = await self._db.execute(stmt)
        return [
            ExpiringPointsWindow(lot_id=lot.id, points=lot.remaining_points, expires_at=ensure_utc(lot.expires_at))
            for lot in result.scalars().all()
            if lot.remaining_points > 0
        ]

    async def list_members(
        self,
        hotel_id: UUID,
        *,
        tier: str | None = None,
        min_points: int | None = None,
        max_points: int | None = None,
        search: str | None = None,
        sort_by: str = "total_points",
        descending: bool = True,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[LoyaltyMember], int]:
        """Return a filtered page of members and the unpaginated total."""

        conditions = [LoyaltyMember.hotel_id == hotel_id]
        if tier:
            conditions.append(LoyaltyMember.current_tier == tier)
        if min_points is not None:
            conditions.append(LoyaltyMember.total_points >= min_points)
        if max_points is not None:
            conditions.append(LoyaltyMember.total_points <= max_points)
        if search and search.strip():
            pattern = f"%{search.strip().lower()}%"
            conditions.append(
                or_(
                    func.lower(LoyaltyMember.guest_first_name).like(pattern),
                    func.lower(LoyaltyMember.guest_last_name).like(pattern),
                    func.lower(LoyaltyMember.guest_email).like(pattern),
                )
            )

        sort_column = MEMBER_SORT_COLUMNS.get(sort_by)
        if sort_column is None:
            raise ValidationError(f"Unsupported sort field {sort_by}")
        ordering = sort_column.desc() if descending else sort_column.asc()

        bounded_limit = max(1, min(limit, 100))
        stmt = (
            select(LoyaltyMember)
            .where(*conditions)
            .order_by(ordering, LoyaltyMember.id.asc())
            .limit(bounded_limit)
            .offset(max(offset, 0))
        )
        total_stmt = select(func.count()).select_from(LoyaltyMember).where(*conditions)
        members = list((await self._db.execute(stmt)).scalars().all())
        total = int((await self._db.execute(total_stmt)).scalar_one())
        return members, total

    async def list_ledger_entries(
        self,
        member_id: UUID,
        *,
        limit: int = 25,
        cursor: Tuple[datetime, UUID] | None = None,
        entry_types: Sequence[LoyaltyLedgerEntryType] | None = None,
    ) -> tuple[list[LoyaltyLedgerEntry], Tuple[datetime, UUID] | None]:
        """Return a paginated slice of ledger entries for a member."""

        bounded_limit = max(1, min(limit, 100))
        stmt = (
            select(LoyaltyLedgerEntry)
            .where(LoyaltyLedgerEntry.member_id == member_id)
            .order_by(LoyaltyLedgerEntry.occurred_at.desc(), LoyaltyLedgerEntry.id.desc())
        )
        if entry_types:
            stmt = stmt.where(LoyaltyLedgerEntry.entry_type.in_(list(entry_types)))
        if cursor:
            cursor_time, cursor_id = cursor
            stmt = stmt.where(
                or_(
                    LoyaltyLedgerEntry.occurred_at < cursor_time,
                    and_(
                        LoyaltyLedgerEntry.occurred_at == cursor_time,
                        LoyaltyLedgerEntry.id < cursor_id,
                    ),
                )
            )

        result = await self._db.execute(stmt.limit(bounded_limit + 1))
        rows = list(result.scalars().all())
        entries = rows[:bounded_limit]
        next_cursor: Tuple[datetime, UUID] | None = None
        if len(rows) > bounded_limit and entries:
            tail = entries[-1]
            next_cursor = (ensure_utc(tail.occurred_at), tail.id)
        return entries, next_cursor

    async def list_redemptions(self, member_id: UUID, *, limit: int = 10) -> list[LoyaltyRedemption]:
        stmt = (
            select(LoyaltyRedemption)
            .where(LoyaltyRedemption.member_id == member_id)
            .order_by(LoyaltyRedemption.redeemed_at.desc())
            .limit(max(1, min(limit, 100)))
        )
        return list((await self._db.execute(stmt)).scalars().all())

    async def list_tier_changes(self, member_id: UUID, *, limit: int = 20) -> list[LoyaltyTierChange]:
        stmt = (
            select(LoyaltyTierChange)
            .where(LoyaltyTierChange.member_id == member_id)
            .order_by(LoyaltyTierChange.changed_at.desc())
            .limit(max(1, min(limit, 100)))
        )
        return list((await self._db.execute(stmt)).scalars().all())

    async def list_point_lots(self, member_id: UUID) -> list[LoyaltyPointLot]:
        stmt = (
            select(LoyaltyPointLot)
            .where(LoyaltyPointLot.member_id == member_id)
            .order_by(LoyaltyPointLot.issued_at.asc(), LoyaltyPointLot.created_at.asc())
            .execution_options(populate_existing=True)
        )
        return list((await self._db.execute(stmt)).scalars().all())

    async def list_members_with_due_points(
        self,
        *,
        now: datetime,
        hotel_id: UUID | None = None,
        limit: int | None = None,
    ) -> list[UUID]:
        """Members holding at least one open lot due to expire by ``now``."""

        stmt = (
            select(LoyaltyPointLot.member_id)
            .join(LoyaltyMember, LoyaltyMember.id == LoyaltyPointLot.member_id)
            .where(
                LoyaltyMember.is_active.is_(True),
                LoyaltyPointLot.status == LoyaltyPointLotStatus.OPEN,
                LoyaltyPointLot.expires_at.isnot(None),
                LoyaltyPointLot.expires_at <= now,
            )
            .group_by(LoyaltyPointLot.member_id)
            .order_by(func.min(LoyaltyPointLot.expires_at))
        )
        if hotel_id is not None:
            stmt = stmt.where(LoyaltyMember.hotel_id == hotel_id)
        if limit:
            stmt = stmt.limit(limit)
        return list((await self._db.execute(stmt)).scalars().all())

    # Internals

    async def _mutate(
        self,
        member_id: UUID,
        operation: str,
        apply: Callable[[_MutationContext], Awaitable[T]],
        *,
        hotel_id: UUID | None = None,
    ) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                ctx = await self._load_context(member_id, hotel_id)
                result = await apply(ctx)
                if ctx.points_issued:
                    await self._bump_program_stats(ctx.program.id, total_points_issued=ctx.points_issued)
                await self._db.commit()
            except StaleDataError:
                await self._db.rollback()
                self._telemetry.record_conflict(operation)
                logger.warning(
                    "Loyalty member changed concurrently; retrying",
                    member_id=str(member_id),
                    operation=operation,
                    attempt=attempt,
                )
                if attempt >= self._max_retries:
                    raise ConcurrencyConflictError(member_id, attempt)
                continue
            except Exception:
                await self._db.rollback()
                raise

            await self._events.publish_all(ctx.events)
            return result

    async def _load_context(self, member_id: UUID, hotel_id: UUID | None) -> _MutationContext:
        stmt = (
            select(LoyaltyMember)
            .where(LoyaltyMember.id == member_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        member = (await self._db.execute(stmt)).scalar_one_or_none()
        if member is None or (hotel_id is not None and member.hotel_id != hotel_id):
            raise NotFoundError(f"Loyalty member {member_id} not found")
        program = await self.get_program(member.hotel_id)
        return _MutationContext(
            member=member,
            program=program,
            tiers=self.tier_configs(program),
            now=self._now(),
        )

    async def _load_reward(self, reward_id: UUID, hotel_id: UUID) -> LoyaltyReward:
        stmt = (
            select(LoyaltyReward)
            .where(LoyaltyReward.id == reward_id)
            .execution_options(populate_existing=True)
        )
        reward = (await self._db.execute(stmt)).scalar_one_or_none()
        if reward is None or reward.hotel_id != hotel_id:
            raise NotFoundError(f"Reward {reward_id} not found")
        return reward

    def _earn(
        self,
        ctx: _MutationContext,
        *,
        amount: Decimal | int | float,
        category: str | None,
        booking_reference: str | None,
        issued_at: datetime | None,
    ) -> EarnResult:
        spend = Decimal(str(amount))
        if spend < 0:
            raise ValidationError("Booking amount cannot be negative")
        member = ctx.member
        issued = ensure_utc(issued_at) or ctx.now
        rules = PointsRules.from_program(ctx.program)
        points = calculate_points_earned(spend, category, rules, program_active=bool(ctx.program.is_active))

        member.lifetime_spending = Decimal(member.lifetime_spending or 0) + spend
        member.last_activity = ctx.now
        result = EarnResult(member_id=member.id, points=points)
        if points <= 0:
            logger.debug(
                "Booking earned no loyalty points",
                member_id=str(member.id),
                amount=str(spend),
                category=category,
            )
            if spend > 0:
                # Zero-point entry without a lot keeps the spend in windowed revenue.
                entry = self._append_entry(
                    ctx,
                    entry_type=LoyaltyLedgerEntryType.EARNED,
                    amount=0,
                    reason=f"Spend recorded for {category}" if category else "Spend recorded for booking",
                    category=category,
                    booking_reference=booking_reference,
                    spend_amount=spend,
                    occurred_at=issued,
                )
                result.ledger_entry_id = entry.id
            return result

        expires_at = lot_expiry(issued, int(ctx.program.expiration_months or 0))
        entry = self._credit(
            ctx,
            entry_type=LoyaltyLedgerEntryType.EARNED,
            points=points,
            reason=f"Earned from {category}" if category else "Earned from booking",
            category=category,
            booking_reference=booking_reference,
            spend_amount=spend,
            issued_at=issued,
            expires_at=expires_at,
        )
        self._grow_balances(ctx, points)
        result.ledger_entry_id = entry.id
        result.expires_at = expires_at
        return result

    def _award_nights(
        self,
        ctx: _MutationContext,
        *,
        nights: int,
        booking_reference: str | None,
        issued_at: datetime | None,
    ) -> int:
        member = ctx.member
        member.total_nights_stayed = int(member.total_nights_stayed or 0) + nights
        member.last_activity = ctx.now
        if not ctx.program.is_active:
            return 0
        points = int(ctx.program.points_per_night or 0) * nights
        if points <= 0:
            return 0
        issued = ensure_utc(issued_at) or ctx.now
        self._credit(
            ctx,
            entry_type=LoyaltyLedgerEntryType.EARNED,
            points=points,
            reason=f"Earned for {nights} night(s)",
            category="nights",
            booking_reference=booking_reference,
            issued_at=issued,
            expires_at=lot_expiry(issued, int(ctx.program.expiration_months or 0)),
        )
        self._grow_balances(ctx, points)
        return points

    def _grow_balances(self, ctx: _MutationContext, points: int) -> None:
        member = ctx.member
        member.total_points = int(member.total_points or 0) + points
        member.available_points = int(member.available_points or 0) + points
        member.lifetime_points_earned = int(member.lifetime_points_earned or 0) + points
        ctx.points_issued += points
        self._telemetry.record_points("earned", points)

    async def _redeem(
        self,
        ctx: _MutationContext,
        *,
        points_cost: int,
        value: Decimal,
        reward_name: str,
        reward_id: UUID | None,
        validity_days: int | None,
    ) -> RedemptionOutcome:
        member = ctx.member
        if not member.is_active:
            raise ValidationError("Loyalty membership is inactive")
        available = int(member.available_points or 0)
        if points_cost > available:
            self._telemetry.record_rejection("insufficient points")
            raise InsufficientPointsError(
                points_cost - available,
                available_points=available,
                requested_points=points_cost,
            )

        await self._consume_lots(member, points_cost)
        member.available_points = available - points_cost
        member.lifetime_points_redeemed = int(member.lifetime_points_redeemed or 0) + points_cost
        member.last_activity = ctx.now
        valid_until = ctx.now + timedelta(days=validity_days) if validity_days else None

        self._append_entry(
            ctx,
            entry_type=LoyaltyLedgerEntryType.REDEEMED,
            amount=-points_cost,
            reason=f"Redeemed for: {reward_name}",
            metadata={"reward_id": str(reward_id) if reward_id else None, "value": str(value)},
        )
        redemption = LoyaltyRedemption(
            id=uuid4(),
            member_id=member.id,
            reward_id=reward_id,
            reward_name=reward_name,
            points_cost=points_cost,
            value_redeemed=value,
            redeemed_at=ctx.now,
            valid_until=valid_until,
        )
        self._db.add(redemption)
        await self._bump_program_stats(ctx.program.id, total_points_redeemed=points_cost)
        self._telemetry.record_points("redeemed", points_cost)
        self._refresh_progress(ctx)

        guest = GuestDisplayInfo.from_member(member)
        ctx.events.append(
            RewardRedeemed(
                member_id=member.id,
                hotel_id=member.hotel_id,
                guest_id=member.guest_id,
                redemption_id=redemption.id,
                reward_id=reward_id,
                reward_name=reward_name,
                points_cost=points_cost,
                value_redeemed=value,
                remaining_points=int(member.available_points),
                valid_until=valid_until,
                occurred_at=ctx.now,
                guest=guest,
            )
        )
        logger.info(
            "Redeemed loyalty points",
            member_id=str(member.id),
            reward_id=str(reward_id) if reward_id else None,
            points_cost=points_cost,
            remaining_points=member.available_points,
        )
        return RedemptionOutcome(
            redemption_id=redemption.id,
            member_id=member.id,
            reward_id=reward_id,
            reward_name=reward_name,
            points_cost=points_cost,
            value_redeemed=value,
            remaining_points=int(member.available_points),
            valid_until=valid_until,
            redeemed_at=ctx.now,
        )

    async def _expire_due_lots(self, ctx: _MutationContext, horizon: datetime) -> int:
        member = ctx.member
        stmt = (
            select(LoyaltyPointLot)
            .where(
                LoyaltyPointLot.member_id == member.id,
                LoyaltyPointLot.status == LoyaltyPointLotStatus.OPEN,
                LoyaltyPointLot.expires_at.isnot(None),
                LoyaltyPointLot.expires_at <= horizon,
            )
            .order_by(LoyaltyPointLot.expires_at.asc(), LoyaltyPointLot.created_at.asc())
            .execution_options(populate_existing=True)
        )
        lots = list((await self._db.execute(stmt)).scalars().all())
        expired = 0
        lot_ids: list[str] = []
        for lot in lots:
            remaining = lot.remaining_points
            lot.expired_points = int(lot.expired_points or 0) + remaining
            lot.status = LoyaltyPointLotStatus.EXPIRED
            expired += remaining
            lot_ids.append(str(lot.id))

        if expired <= 0:
            return 0

        member.available_points = int(member.available_points) - expired
        member.total_points = int(member.total_points) - expired
        member.lifetime_points_expired = int(member.lifetime_points_expired or 0) + expired
        self._append_entry(
            ctx,
            entry_type=LoyaltyLedgerEntryType.EXPIRED,
            amount=-expired,
            reason="Points expired",
            occurred_at=horizon,
            metadata={"lot_ids": lot_ids},
        )
        await self._bump_program_stats(ctx.program.id, total_points_expired=expired)
        self._telemetry.record_points("expired", expired)
        self._refresh_progress(ctx)
        logger.info(
            "Expired loyalty points",
            member_id=str(member.id),
            points=expired,
            lots=len(lot_ids),
        )
        return expired

    async def _consume_lots(self, member: LoyaltyMember, points: int) -> None:
        """Spend ``points`` from open lots, oldest first."""

        stmt = (
            select(LoyaltyPointLot)
            .where(
                LoyaltyPointLot.member_id == member.id,
                LoyaltyPointLot.status == LoyaltyPointLotStatus.OPEN,
            )
            .order_by(LoyaltyPointLot.issued_at.asc(), LoyaltyPointLot.created_at.asc())
            .execution_options(populate_existing=True)
        )
        remaining = points
        for lot in (await self._db.execute(stmt)).scalars().all():
            if remaining <= 0:
                break
            take = min(lot.remaining_points, remaining)
            lot.consumed_points = int(lot.consumed_points or 0) + take
            if lot.remaining_points == 0:
                lot.status = LoyaltyPointLotStatus.CONSUMED
            remaining -= take

        if remaining > 0:
            # A concurrent writer may have spent or expired the lots after this snapshot was read.
            version = (
                await self._db.execute(select(LoyaltyMember.version).where(LoyaltyMember.id == member.id))
            ).scalar_one()
            if version != member.version:
                raise StaleDataError(f"Loyalty member {member.id} changed while consuming point lots")
            logger.error(
                "Open point lots did not cover decrement",
                member_id=str(member.id),
                requested=points,
                uncovered=remaining,
            )
            raise LedgerIntegrityError(member.id, requested=points, uncovered=remaining)

    def _credit(
        self,
        ctx: _MutationContext,
        *,
        entry_type: LoyaltyLedgerEntryType,
        points: int,
        reason: str,
        issued_at: datetime,
        expires_at: datetime | None,
        note: str | None = None,
        category: str | None = None,
        booking_reference: str | None = None,
        spend_amount: Decimal | None = None,
    ) -> LoyaltyLedgerEntry:
        entry = self._append_entry(
            ctx,
            entry_type=entry_type,
            amount=points,
            reason=reason,
            note=note,
            category=category,
            booking_reference=booking_reference,
            spend_amount=spend_amount,
            expires_at=expires_at,
            occurred_at=issued_at,
        )
        lot = LoyaltyPointLot(
            id=uuid4(),
            member_id=ctx.member.id,
            points=points,
            consumed_points=0,
            expired_points=0,
            issued_at=issued_at,
            expires_at=expires_at,
            status=LoyaltyPointLotStatus.OPEN,
        )
        lot.ledger_entry = entry
        self._db.add(lot)
        return entry

    def _append_entry(
        self,
        ctx: _MutationContext,
        *,
        entry_type: LoyaltyLedgerEntryType,
        amount: int,
        reason: str,
        note: str | None = None,
        category: str | None = None,
        booking_reference: str | None = None,
        spend_amount: Decimal | None = None,
        expires_at: datetime | None = None,
        occurred_at: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> LoyaltyLedgerEntry:
        entry = LoyaltyLedgerEntry(
            id=uuid4(),
            member_id=ctx.member.id,
            entry_type=entry_type,
            amount=amount,
            reason=reason,
            note=note,
            category=category,
            booking_reference=booking_reference,
            spend_amount=spend_amount,
            expires_at=expires_at,
            occurred_at=occurred_at or ctx.now,
            metadata_json=metadata or {},
        )
        self._db.add(entry)
        logger.debug(
            "Recorded loyalty ledger entry",
            member_id=str(ctx.member.id),
            entry_type=entry_type.value,
            amount=amount,
        )
        return entry

    async def _bump_program_stats(self, program_id: UUID, **deltas: int) -> None:
        values = {name: getattr(LoyaltyProgram, name) + delta for name, delta in deltas.items() if delta}
        if not values:
            return
        stmt = (
            update(LoyaltyProgram)
            .where(LoyaltyProgram.id == program_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self._db.execute(stmt)

    def _settle_tier(self, ctx: _MutationContext, reason: str, result: EarnResult | None = None) -> None:
        """Re-resolve the tier from ``total_points`` and refresh progress."""

        self._refresh_progress(ctx)
        target = resolve_tier(int(ctx.member.total_points or 0), ctx.tiers)
        old_tier = ctx.member.current_tier
        if old_tier != target.name:
            self._record_tier_change(ctx, target, reason)
        if result is not None:
            result.old_tier = old_tier
            result.new_tier = ctx.member.current_tier
            result.tier_changed = old_tier != ctx.member.current_tier

    def _refresh_progress(self, ctx: _MutationContext) -> None:
        progress = tier_progress(int(ctx.member.total_points or 0), ctx.tiers)
        ctx.member.next_tier_name = progress.next_tier_name
        ctx.member.points_to_next_tier = progress.points_to_next_tier
        ctx.member.progress_percentage = progress.progress_percentage

    def _record_tier_change(self, ctx: _MutationContext, target: TierConfig, reason: str) -> TierChanged:
        member = ctx.member
        old_tier = member.current_tier
        member.current_tier = target.name
        self._db.add(
            LoyaltyTierChange(
                member_id=member.id,
                old_tier=old_tier,
                new_tier=target.name,
                reason=reason,
                changed_at=ctx.now,
            )
        )
        self._telemetry.record_tier_change(old_tier, target.name)
        event = TierChanged(
            member_id=member.id,
            hotel_id=member.hotel_id,
            guest_id=member.guest_id,
            old_tier=old_tier,
            new_tier=target.name,
            reason=reason,
            benefits=target.benefits,
            occurred_at=ctx.now,
            guest=GuestDisplayInfo.from_member(member),
            is_upgrade=tier_rank(target.name, ctx.tiers) > tier_rank(old_tier, ctx.tiers),
        )
        ctx.events.append(event)
        logger.info(
            "Changed loyalty tier",
            member_id=str(member.id),
            old_tier=old_tier,
            new_tier=target.name,
            reason=reason,
        )
        return event


def _fill_guest_details(member: LoyaltyMember, guest: GuestDisplayInfo) -> None:
    if guest.first_name and member.guest_first_name != guest.first_name:
        member.guest_first_name = guest.first_name
    if guest.last_name and member.guest_last_name != guest.last_name:
        member.guest_last_name = guest.last_name
    if guest.email and member.guest_email != guest.email:
        member.guest_email = guest.email


def encode_time_uuid_cursor(timestamp: datetime, identifier: UUID) -> str:
    """Encode pagination cursor for chronological queries."""

    payload = f"{timestamp.isoformat()}|{identifier}".encode("utf-8")
    return base64.urlsafe_b64encode(payload).decode("utf-8")


def decode_time_uuid_cursor(cursor: str) -> Tuple[datetime, UUID]:
    """Decode pagination cursor into datetime and UUID parts."""

    try:
        raw = base64.urlsafe_b64decode(cursor.encode("utf-8")).decode("utf-8")
        timestamp_str, identifier_str = raw.split("|", 1)
        return datetime.fromisoformat(timestamp_str), UUID(identifier_str)
    except (ValueError, UnicodeDecodeError) as exc:
        raise ValidationError("Invalid history cursor") from exc


__all__ = [
    "EarnResult",
    "ExpiringPointsWindow",
    "LoyaltyService",
    "MemberSnapshot",
    "RedemptionOutcome",
    "decode_time_uuid_cursor",
    "encode_time_uuid_cursor",
]
