from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from hotel_loyalty.models.loyalty import LoyaltyRewardCategory

# meta: schema: hotel-loyalty


def _to_camel(value: str) -> str:
    parts = value.split("_")
    return parts[0] + "".join(word.capitalize() for word in parts[1:])


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=_to_camel)


# Program configuration


class TierSchema(_CamelModel):
    name: str = Field(..., min_length=1, max_length=64)
    min_points: int = Field(..., ge=0)
    discount_percentage: float = Field(0, ge=0, le=100)
    benefits: list[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        return value.strip()


class ProgramRequest(_CamelModel):
    tiers: list[TierSchema] = Field(..., min_length=1)
    points_per_dollar: float = Field(1, ge=0)
    points_per_night: int = Field(50, ge=0)
    service_multipliers: dict[str, float] | None = None
    points_to_money_ratio: float = Field(100, gt=0)
    minimum_redemption: int = Field(500, ge=0)
    maximum_redemption: int | None = Field(None, ge=0)
    expiration_months: int = Field(12, ge=0)
    is_active: bool = True


class ProgramResponse(_CamelModel):
    id: UUID
    hotel_id: UUID
    is_active: bool
    points_per_dollar: float
    points_per_night: int
    service_multipliers: dict[str, float]
    points_to_money_ratio: float
    minimum_redemption: int
    maximum_redemption: int | None
    expiration_months: int
    tiers: list[TierSchema]
    total_points_issued: int
    total_points_redeemed: int
    total_points_expired: int


class PublicProgramResponse(_CamelModel):
    hotel_id: UUID
    points_per_dollar: float
    points_per_night: int
    service_multipliers: dict[str, float]
    points_to_money_ratio: float
    minimum_redemption: int
    maximum_redemption: int | None
    expiration_months: int
    tiers: list[TierSchema]


class ProgramUpdateResponse(_CamelModel):
    program: ProgramResponse
    created: bool
    tier_updates: int


class RedemptionQuoteResponse(_CamelModel):
    points: int
    value: float
    eligible: bool
    minimum_redemption: int
    maximum_redemption: int | None
    points_to_money_ratio: float


# Booking events


class GuestDetails(_CamelModel):
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None


class BookingCompletedRequest(_CamelModel):
    hotel_id: UUID
    guest_id: UUID
    amount: Decimal = Field(..., description="Amount paid for the booking or service")
    category: str | None = Field(None, description="Service category used for multipliers")
    nights: int = Field(0, ge=0)
    completed_at: datetime | None = None
    booking_reference: str | None = Field(None, max_length=120)
    guest: GuestDetails | None = None


class BookingCreditResponse(_CamelModel):
    credited: bool
    member_id: UUID | None = None
    points_earned: int = 0
    nights_points: int = 0
    total_points_awarded: int = 0
    tier_changed: bool = False
    old_tier: str | None = None
    new_tier: str | None = None
    expires_at: datetime | None = None


# Members


class ExpiringPointsResponse(_CamelModel):
    lot_id: UUID
    points: int
    expires_at: datetime


class MemberResponse(_CamelModel):
    id: UUID
    hotel_id: UUID
    guest_id: UUID
    guest_name: str
    current_tier: str | None
    next_tier: str | None
    total_points: int
    available_points: int
    lifetime_points_earned: int
    lifetime_points_redeemed: int
    lifetime_points_expired: int
    lifetime_spending: float
    total_nights_stayed: int
    points_to_next_tier: int
    progress_percentage: float
    discount_percentage: float
    benefits: list[str]
    upcoming_benefits: list[str]
    join_date: datetime | None
    last_activity: datetime | None
    is_active: bool
    expiring_points: list[ExpiringPointsResponse] = Field(default_factory=list)


class MemberSummaryResponse(_CamelModel):
    id: UUID
    guest_id: UUID
    guest_name: str
    email: str | None
    current_tier: str | None
    total_points: int
    available_points: int
    lifetime_spending: float
    join_date: datetime | None
    last_activity: datetime | None
    is_active: bool


class MemberListResponse(_CamelModel):
    members: list[MemberSummaryResponse]
    total: int
    limit: int
    offset: int


class LedgerEntryResponse(_CamelModel):
    id: UUID
    entry_type: str
    amount: int
    reason: str | None
    note: str | None
    category: str | None
    booking_reference: str | None
    expires_at: datetime | None
    occurred_at: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)


class LedgerWindowResponse(_CamelModel):
    entries: list[LedgerEntryResponse]
    next_cursor: str | None = None


class RedemptionResponse(_CamelModel):
    id: UUID
    reward_id: UUID | None
    reward_name: str
    points_cost: int
    value_redeemed: float
    redeemed_at: datetime
    valid_until: datetime | None


class TierChangeResponse(_CamelModel):
    old_tier: str | None
    new_tier: str
    reason: str
    changed_at: datetime


class MemberDetailResponse(_CamelModel):
    member: MemberResponse
    recent_redemptions: list[RedemptionResponse]
    tier_history: list[TierChangeResponse]
    recent_activity: list[LedgerEntryResponse]


class AdjustPointsRequest(_CamelModel):
    points: int = Field(..., description="Signed number of points to add or remove")
    reason: str = Field(..., min_length=1, max_length=255)
    note: str | None = Field(None, max_length=2000)


class AdjustPointsResponse(_CamelModel):
    member_id: UUID
    ledger_entry_id: UUID
    delta: int
    reason: str
    note: str | None
    total_points_before: int
    total_points_after: int
    available_points_after: int
    tier_before: str | None
    tier_after: str | None
    guest_name: str
    occurred_at: datetime


class MemberTierRequest(_CamelModel):
    tier: str = Field(..., min_length=1)
    reason: str | None = Field(None, max_length=255)


class MemberTierResponse(_CamelModel):
    member_id: UUID
    changed: bool
    old_tier: str | None
    current_tier: str | None
    reason: str | None = None


# Rewards


class RewardRequest(_CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    category: LoyaltyRewardCategory = LoyaltyRewardCategory.AMENITY
    points_cost: int = Field(..., gt=0)
    value: Decimal = Field(Decimal("0"), ge=0)
    required_tier: str | None = None
    validity_days: int = Field(30, ge=1)
    usage_limit: int | None = Field(None, ge=1)
    available_from: datetime | None = None
    available_until: datetime | None = None
    terms_and_conditions: str | None = None
    image_url: str | None = None
    is_active: bool = True


class RewardUpdateRequest(_CamelModel):
    name: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = None
    category: LoyaltyRewardCategory | None = None
    points_cost: int | None = Field(None, gt=0)
    value: Decimal | None = Field(None, ge=0)
    required_tier: str | None = None
    validity_days: int | None = Field(None, ge=1)
    usage_limit: int | None = Field(None, ge=1)
    available_from: datetime | None = None
    available_until: datetime | None = None
    terms_and_conditions: str | None = None
    image_url: str | None = None
    is_active: bool | None = None


class RewardResponse(_CamelModel):
    id: UUID
    name: str
    description: str | None
    category: LoyaltyRewardCategory
    points_cost: int
    value: float
    required_tier: str | None
    validity_days: int
    usage_limit: int | None
    times_redeemed: int
    total_value_redeemed: float
    available_from: datetime | None
    available_until: datetime | None
    terms_and_conditions: str | None
    image_url: str | None
    is_active: bool


class MemberRewardResponse(RewardResponse):
    can_redeem: bool
    blocked_reason: str | None = None
    points_needed: int | None = None


class RedeemRewardResponse(_CamelModel):
    redemption_id: UUID
    member_id: UUID
    reward_id: UUID | None
    reward_name: str
    points_cost: int
    value_redeemed: float
    remaining_points: int
    valid_until: datetime | None
    redeemed_at: datetime


class DiscountQuoteResponse(_CamelModel):
    amount: float
    tier: str | None
    discount_percentage: float
    discount_amount: float
    discounted_amount: float


# Analytics and operations


class ROIResponse(_CamelModel):
    total_revenue: float
    total_costs: float
    roi: float
    roi_percentage: float


class TierDistributionResponse(_CamelModel):
    tier: str
    member_count: int


class AnalyticsMemberResponse(_CamelModel):
    member_id: UUID
    guest_id: UUID
    guest_name: str
    current_tier: str | None
    total_points: int
    lifetime_spending: float
    join_date: datetime | None


class OverviewResponse(_CamelModel):
    total_members: int
    total_points_issued: int
    total_points_redeemed: int
    total_points_expired: int
    total_points_outstanding: int
    total_lifetime_spending: float
    total_rewards: int
    active_rewards: int
    total_redemptions: int


class AnalyticsResponse(_CamelModel):
    hotel_id: UUID
    start: datetime | None
    end: datetime | None
    overview: OverviewResponse
    roi: ROIResponse
    reward_value_redeemed: float
    estimated_discount_cost: float
    discount_cost_is_estimate: bool
    members_by_tier: list[TierDistributionResponse]
    top_members: list[AnalyticsMemberResponse]
    recent_members: list[AnalyticsMemberResponse]


class SweepRequest(_CamelModel):
    triggered_by: str | None = Field(None, max_length=64)


class SweepFailureResponse(_CamelModel):
    member_id: UUID
    error: str


class SweepResponse(_CamelModel):
    triggered_by: str
    started_at: datetime
    completed_at: datetime | None
    processed: int
    succeeded: int
    failed: int
    points_expired: int
    failures: list[SweepFailureResponse] = Field(default_factory=list)
