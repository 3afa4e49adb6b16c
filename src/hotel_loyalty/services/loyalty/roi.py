"""Program ROI and membership analytics."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from hotel_loyalty.core.settings import settings
from hotel_loyalty.models.loyalty import (
    LoyaltyLedgerEntry,
    LoyaltyLedgerEntryType,
    LoyaltyMember,
    LoyaltyRedemption,
    LoyaltyReward,
)
from hotel_loyalty.services.guests import GuestDisplayInfo
from hotel_loyalty.services.loyalty.clock import ensure_utc
from hotel_loyalty.services.loyalty.errors import ValidationError
from hotel_loyalty.services.loyalty.loyalty_service import LoyaltyService
from hotel_loyalty.services.loyalty.tiers import TierConfig, find_tier

_CENT = Decimal("0.01")
_TENTH = Decimal("0.1")


@dataclass(slots=True)
class ROIResult:
    total_revenue: Decimal
    total_costs: Decimal
    roi: Decimal
    roi_percentage: Decimal


@dataclass(slots=True)
class AnalyticsWindow:
    start: datetime | None = None
    end: datetime | None = None

    def __post_init__(self) -> None:
        self.start = ensure_utc(self.start)
        self.end = ensure_utc(self.end)
        if self.start and self.end and self.end < self.start:
            raise ValidationError("Analytics window ends before it starts")

    @property
    def is_bounded(self) -> bool:
        return self.start is not None or self.end is not None


@dataclass(slots=True)
class TierDistribution:
    tier: str
    member_count: int


@dataclass(slots=True)
class MemberSummary:
    member_id: UUID
    guest_id: UUID
    guest_name: str
    current_tier: str | None
    total_points: int
    lifetime_spending: Decimal
    join_date: datetime | None


@dataclass(slots=True)
class LoyaltyOverview:
    total_members: int
    total_points_issued: int
    total_points_redeemed: int
    total_points_expired: int
    total_points_outstanding: int
    total_lifetime_spending: Decimal
    total_rewards: int
    active_rewards: int
    total_redemptions: int


@dataclass(slots=True)
class LoyaltyAnalytics:
    hotel_id: UUID
    window: AnalyticsWindow
    overview: LoyaltyOverview
    roi: ROIResult
    reward_value_redeemed: Decimal
    estimated_discount_cost: Decimal
    discount_cost_is_estimate: bool
    members_by_tier: list[TierDistribution] = field(default_factory=list)
    top_members: list[MemberSummary] = field(default_factory=list)
    recent_members: list[MemberSummary] = field(default_factory=list)


def compute_roi(
    total_revenue: Decimal | int | float,
    reward_value_redeemed: Decimal | int | float,
    estimated_discount_cost: Decimal | int | float,
) -> ROIResult:
    """Revenue minus reward and discount costs.

    ``roi_percentage`` is zero when there are no costs to divide by.
    """

    revenue = Decimal(str(total_revenue))
    costs = Decimal(str(reward_value_redeemed)) + Decimal(str(estimated_discount_cost))
    roi = revenue - costs
    percentage = roi / costs * Decimal(100) if costs > 0 else Decimal("0")
    return ROIResult(
        total_revenue=revenue.quantize(_CENT, rounding=ROUND_HALF_UP),
        total_costs=costs.quantize(_CENT, rounding=ROUND_HALF_UP),
        roi=roi.quantize(_CENT, rounding=ROUND_HALF_UP),
        roi_percentage=percentage.quantize(_TENTH, rounding=ROUND_HALF_UP),
    )


def estimate_discount_cost(spend_by_tier: dict[str | None, Decimal], tiers: list[TierConfig]) -> Decimal:
    total = Decimal("0")
    for tier_name, spend in spend_by_tier.items():
        tier = find_tier(tier_name, tiers)
        if tier is None:
            continue
        total += Decimal(str(spend or 0)) * tier.discount_percentage / Decimal(100)
    return total.quantize(_CENT, rounding=ROUND_HALF_UP)


class LoyaltyAnalyticsService:
    """Aggregate program health and ROI for a hotel."""

    # meta: service: loyalty-roi

    def __init__(self, db: AsyncSession, *, loyalty: LoyaltyService | None = None) -> None:
        self._db = db
        self._loyalty = loyalty or LoyaltyService(db)

    async def get_roi(self, hotel_id: UUID, window: AnalyticsWindow | None = None) -> LoyaltyAnalytics:
        window = window or AnalyticsWindow()
        program = await self._loyalty.get_program(hotel_id)
        tiers = LoyaltyService.tier_configs(program)

        spend_by_tier = await self._spend_by_tier(hotel_id, window)
        revenue = sum(spend_by_tier.values(), Decimal("0"))
        reward_value = await self._reward_value_redeemed(hotel_id, window)
        discount_cost = estimate_discount_cost(spend_by_tier, tiers)

        return LoyaltyAnalytics(
            hotel_id=hotel_id,
            window=window,
            overview=await self._overview(hotel_id),
            roi=compute_roi(revenue, reward_value, discount_cost),
            reward_value_redeemed=reward_value.quantize(_CENT, rounding=ROUND_HALF_UP),
            estimated_discount_cost=discount_cost,
            discount_cost_is_estimate=True,
            members_by_tier=await self._tier_distribution(hotel_id, tiers),
            top_members=await self._top_members(hotel_id),
            recent_members=await self._recent_members(hotel_id),
        )

    async def _spend_by_tier(self, hotel_id: UUID, window: AnalyticsWindow) -> dict[str | None, Decimal]:
        if not window.is_bounded:
            stmt = (
                select(LoyaltyMember.current_tier, func.sum(LoyaltyMember.lifetime_spending))
                .where(LoyaltyMember.hotel_id == hotel_id, LoyaltyMember.is_active.is_(True))
                .group_by(LoyaltyMember.current_tier)
            )
        else:
            stmt = (
                select(LoyaltyMember.current_tier, func.sum(LoyaltyLedgerEntry.spend_amount))
                .join(LoyaltyMember, LoyaltyMember.id == LoyaltyLedgerEntry.member_id)
                .where(
                    LoyaltyMember.hotel_id == hotel_id,
                    LoyaltyMember.is_active.is_(True),
                    LoyaltyLedgerEntry.entry_type == LoyaltyLedgerEntryType.EARNED,
                    LoyaltyLedgerEntry.spend_amount.isnot(None),
                )
                .group_by(LoyaltyMember.current_tier)
            )
            if window.start is not None:
                stmt = stmt.where(LoyaltyLedgerEntry.occurred_at >= window.start)
            if window.end is not None:
                stmt = stmt.where(LoyaltyLedgerEntry.occurred_at <= window.end)
        rows = (await self._db.execute(stmt)).all()
        return {tier: Decimal(str(total or 0)) for tier, total in rows}

    async def _reward_value_redeemed(self, hotel_id: UUID, window: AnalyticsWindow) -> Decimal:
        stmt = (
            select(func.coalesce(func.sum(LoyaltyRedemption.value_redeemed), 0))
            .join(LoyaltyMember, LoyaltyMember.id == LoyaltyRedemption.member_id)
            .where(LoyaltyMember.hotel_id == hotel_id)
        )
        if window.start is not None:
            stmt = stmt.where(LoyaltyRedemption.redeemed_at >= window.start)
        if window.end is not None:
            stmt = stmt.where(LoyaltyRedemption.redeemed_at <= window.end)
        return Decimal(str((await self._db.execute(stmt)).scalar_one() or 0))

    async def _overview(self, hotel_id: UUID) -> LoyaltyOverview:
        member_stmt = select(
            func.count(LoyaltyMember.id),
            func.coalesce(func.sum(LoyaltyMember.lifetime_points_earned), 0),
            func.coalesce(func.sum(LoyaltyMember.lifetime_points_redeemed), 0),
            func.coalesce(func.sum(LoyaltyMember.lifetime_points_expired), 0),
            func.coalesce(func.sum(LoyaltyMember.available_points), 0),
            func.coalesce(func.sum(LoyaltyMember.lifetime_spending), 0),
        ).where(LoyaltyMember.hotel_id == hotel_id, LoyaltyMember.is_active.is_(True))
        members, earned, redeemed, expired, outstanding, spending = (await self._db.execute(member_stmt)).one()

        reward_stmt = select(
            func.count(LoyaltyReward.id),
            func.coalesce(func.sum(LoyaltyReward.times_redeemed), 0),
        ).where(LoyaltyReward.hotel_id == hotel_id)
        active_stmt = select(func.count(LoyaltyReward.id)).where(
            LoyaltyReward.hotel_id == hotel_id, LoyaltyReward.is_active.is_(True)
        )
        total_rewards, redemptions = (await self._db.execute(reward_stmt)).one()
        active_rewards = (await self._db.execute(active_stmt)).scalar_one()

        return LoyaltyOverview(
            total_members=int(members or 0),
            total_points_issued=int(earned or 0),
            total_points_redeemed=int(redeemed or 0),
            total_points_expired=int(expired or 0),
            total_points_outstanding=int(outstanding or 0),
            total_lifetime_spending=Decimal(str(spending or 0)).quantize(_CENT, rounding=ROUND_HALF_UP),
            total_rewards=int(total_rewards or 0),
            active_rewards=int(active_rewards or 0),
            total_redemptions=int(redemptions or 0),
        )

    async def _tier_distribution(self, hotel_id: UUID, tiers: list[TierConfig]) -> list[TierDistribution]:
        stmt = (
            select(LoyaltyMember.current_tier, func.count(LoyaltyMember.id))
            .where(LoyaltyMember.hotel_id == hotel_id, LoyaltyMember.is_active.is_(True))
            .group_by(LoyaltyMember.current_tier)
        )
        counts = {tier: int(count) for tier, count in (await self._db.execute(stmt)).all()}
        distribution = [TierDistribution(tier=tier.name, member_count=counts.pop(tier.name, 0)) for tier in tiers]
        # Members parked in a tier that has since been removed from the program.
        distribution.extend(
            TierDistribution(tier=name or "UNASSIGNED", member_count=count) for name, count in counts.items()
        )
        return distribution

    async def _top_members(self, hotel_id: UUID) -> list[MemberSummary]:
        stmt = (
            select(LoyaltyMember)
            .where(LoyaltyMember.hotel_id == hotel_id, LoyaltyMember.is_active.is_(True))
            .order_by(LoyaltyMember.lifetime_spending.desc(), LoyaltyMember.total_points.desc())
            .limit(settings.loyalty_top_members_limit)
        )
        return [_summarize(member) for member in (await self._db.execute(stmt)).scalars().all()]

    async def _recent_members(self, hotel_id: UUID) -> list[MemberSummary]:
        stmt = (
            select(LoyaltyMember)
            .where(LoyaltyMember.hotel_id == hotel_id)
            .order_by(LoyaltyMember.join_date.desc())
            .limit(settings.loyalty_recent_members_limit)
        )
        return [_summarize(member) for member in (await self._db.execute(stmt)).scalars().all()]


def _summarize(member: LoyaltyMember) -> MemberSummary:
    return MemberSummary(
        member_id=member.id,
        guest_id=member.guest_id,
        guest_name=GuestDisplayInfo.from_member(member).display_name,
        current_tier=member.current_tier,
        total_points=int(member.total_points or 0),
        lifetime_spending=Decimal(str(member.lifetime_spending or 0)),
        join_date=ensure_utc(member.join_date),
    )


__all__ = [
    "AnalyticsWindow",
    "LoyaltyAnalytics",
    "LoyaltyAnalyticsService",
    "LoyaltyOverview",
    "MemberSummary",
    "ROIResult",
    "TierDistribution",
    "compute_roi",
    "estimate_discount_cost",
]
