"""Hotel admin endpoints for program configuration, members, rewards, and analytics."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Callable, List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from hotel_loyalty.api.dependencies.context import (
    get_loyalty_service,
    get_session_factory,
    require_hotel_id,
)
from hotel_loyalty.api.dependencies.security import require_admin_api_key
from hotel_loyalty.api.v1.serializers import (
    serialize_ledger_entry,
    serialize_member_summary,
    serialize_program,
    serialize_redemption,
    serialize_reward,
    serialize_snapshot,
    serialize_tier_change,
)
from hotel_loyalty.db.session import get_session
from hotel_loyalty.models.loyalty import LoyaltyRewardCategory
from hotel_loyalty.schemas.loyalty import (
    AdjustPointsRequest,
    AdjustPointsResponse,
    AnalyticsMemberResponse,
    AnalyticsResponse,
    MemberDetailResponse,
    MemberListResponse,
    MemberTierRequest,
    MemberTierResponse,
    OverviewResponse,
    ProgramRequest,
    ProgramResponse,
    ProgramUpdateResponse,
    RewardRequest,
    RewardResponse,
    RewardUpdateRequest,
    ROIResponse,
    SweepRequest,
    SweepResponse,
    TierDistributionResponse,
)
from hotel_loyalty.services.loyalty import (
    AnalyticsWindow,
    LoyaltyAnalyticsService,
    LoyaltyProgramService,
    LoyaltyService,
    ProgramSettings,
    RewardDraft,
    TierConfig,
)
from hotel_loyalty.services.loyalty.roi import MemberSummary
from hotel_loyalty.services.loyalty.rules import DEFAULT_SERVICE_MULTIPLIERS
from hotel_loyalty.workers.expiration_sweeper import ExpirationSweeper

router = APIRouter(
    prefix="/loyalty/admin",
    tags=["loyalty-admin"],
    dependencies=[Depends(require_admin_api_key)],
)


def _program_service(
    db: AsyncSession = Depends(get_session),
    service: LoyaltyService = Depends(get_loyalty_service),
) -> LoyaltyProgramService:
    return LoyaltyProgramService(db, loyalty=service)


# Program


@router.put("/program", response_model=ProgramUpdateResponse)
async def configure_program(
    payload: ProgramRequest,
    hotel_id: UUID = Depends(require_hotel_id),
    programs: LoyaltyProgramService = Depends(_program_service),
) -> ProgramUpdateResponse:
    """Create or replace the hotel's program; threshold edits reclassify members."""

    multipliers = (
        {key: Decimal(str(value)) for key, value in payload.service_multipliers.items()}
        if payload.service_multipliers is not None
        else dict(DEFAULT_SERVICE_MULTIPLIERS)
    )
    program_settings = ProgramSettings(
        tiers=[
            TierConfig(
                name=tier.name,
                min_points=tier.min_points,
                discount_percentage=Decimal(str(tier.discount_percentage)),
                benefits=tuple(tier.benefits),
            )
            for tier in payload.tiers
        ],
        points_per_dollar=Decimal(str(payload.points_per_dollar)),
        points_per_night=payload.points_per_night,
        service_multipliers=multipliers,
        points_to_money_ratio=Decimal(str(payload.points_to_money_ratio)),
        minimum_redemption=payload.minimum_redemption,
        maximum_redemption=payload.maximum_redemption,
        expiration_months=payload.expiration_months,
        is_active=payload.is_active,
    )
    result = await programs.configure_program(hotel_id, program_settings)
    return ProgramUpdateResponse(
        program=serialize_program(result.program),
        created=result.created,
        tier_updates=result.tier_updates,
    )


@router.get("/program", response_model=ProgramResponse)
async def get_program(
    hotel_id: UUID = Depends(require_hotel_id),
    programs: LoyaltyProgramService = Depends(_program_service),
) -> ProgramResponse:
    return serialize_program(await programs.get_program(hotel_id))


# Members


@router.get("/members", response_model=MemberListResponse)
async def list_members(
    tier: str | None = Query(None),
    min_points: int | None = Query(None, alias="minPoints", ge=0),
    max_points: int | None = Query(None, alias="maxPoints", ge=0),
    search: str | None = Query(None, max_length=120),
    sort_by: str = Query("total_points", alias="sortBy"),
    order: str = Query("desc", pattern="^(asc|desc)$"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    hotel_id: UUID = Depends(require_hotel_id),
    service: LoyaltyService = Depends(get_loyalty_service),
) -> MemberListResponse:
    members, total = await service.list_members(
        hotel_id,
        tier=tier,
        min_points=min_points,
        max_points=max_points,
        search=search,
        sort_by=sort_by,
        descending=order == "desc",
        limit=limit,
        offset=offset,
    )
    return MemberListResponse(
        members=[serialize_member_summary(member) for member in members],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/members/{member_id}", response_model=MemberDetailResponse)
async def get_member(
    member_id: UUID,
    hotel_id: UUID = Depends(require_hotel_id),
    service: LoyaltyService = Depends(get_loyalty_service),
) -> MemberDetailResponse:
    member = await service.get_member(member_id, hotel_id=hotel_id)
    snapshot = await service.snapshot_member(member)
    redemptions = await service.list_redemptions(member.id, limit=10)
    tier_history = await service.list_tier_changes(member.id, limit=20)
    entries, _ = await service.list_ledger_entries(member.id, limit=20)
    return MemberDetailResponse(
        member=serialize_snapshot(snapshot),
        recent_redemptions=[serialize_redemption(item) for item in redemptions],
        tier_history=[serialize_tier_change(item) for item in tier_history],
        recent_activity=[serialize_ledger_entry(entry) for entry in entries],
    )


@router.post("/members/{member_id}/adjust-points", response_model=AdjustPointsResponse)
async def adjust_member_points(
    member_id: UUID,
    payload: AdjustPointsRequest,
    hotel_id: UUID = Depends(require_hotel_id),
    service: LoyaltyService = Depends(get_loyalty_service),
) -> AdjustPointsResponse:
    adjustment = await service.adjust_points(
        member_id,
        delta=payload.points,
        reason=payload.reason,
        note=payload.note,
        hotel_id=hotel_id,
    )
    return AdjustPointsResponse(
        member_id=adjustment.member_id,
        ledger_entry_id=adjustment.ledger_entry_id,
        delta=adjustment.delta,
        reason=adjustment.reason,
        note=adjustment.note,
        total_points_before=adjustment.total_points_before,
        total_points_after=adjustment.total_points_after,
        available_points_after=adjustment.available_points_after,
        tier_before=adjustment.tier_before,
        tier_after=adjustment.tier_after,
        guest_name=adjustment.guest.display_name,
        occurred_at=adjustment.occurred_at,
    )


@router.post("/members/{member_id}/tier", response_model=MemberTierResponse)
async def change_member_tier(
    member_id: UUID,
    payload: MemberTierRequest,
    hotel_id: UUID = Depends(require_hotel_id),
    service: LoyaltyService = Depends(get_loyalty_service),
) -> MemberTierResponse:
    member = await service.get_member(member_id, hotel_id=hotel_id)
    old_tier = member.current_tier
    change = await service.change_member_tier(
        member_id,
        tier=payload.tier,
        reason=payload.reason,
        hotel_id=hotel_id,
    )
    if change is None:
        return MemberTierResponse(member_id=member_id, changed=False, old_tier=old_tier, current_tier=old_tier)
    return MemberTierResponse(
        member_id=member_id,
        changed=True,
        old_tier=change.old_tier,
        current_tier=change.new_tier,
        reason=change.reason,
    )


# Rewards


@router.get("/rewards", response_model=List[RewardResponse])
async def list_rewards(
    include_inactive: bool = Query(False, alias="includeInactive"),
    category: LoyaltyRewardCategory | None = Query(None),
    hotel_id: UUID = Depends(require_hotel_id),
    programs: LoyaltyProgramService = Depends(_program_service),
) -> List[RewardResponse]:
    rewards = await programs.list_rewards(hotel_id, include_inactive=include_inactive, category=category)
    return [serialize_reward(reward) for reward in rewards]


@router.post("/rewards", response_model=RewardResponse, status_code=status.HTTP_201_CREATED)
async def create_reward(
    payload: RewardRequest,
    hotel_id: UUID = Depends(require_hotel_id),
    programs: LoyaltyProgramService = Depends(_program_service),
) -> RewardResponse:
    reward = await programs.create_reward(hotel_id, RewardDraft(**payload.model_dump()))
    return serialize_reward(reward)


@router.patch("/rewards/{reward_id}", response_model=RewardResponse)
async def update_reward(
    reward_id: UUID,
    payload: RewardUpdateRequest,
    hotel_id: UUID = Depends(require_hotel_id),
    programs: LoyaltyProgramService = Depends(_program_service),
) -> RewardResponse:
    reward = await programs.update_reward(hotel_id, reward_id, payload.model_dump(exclude_unset=True))
    return serialize_reward(reward)


@router.delete("/rewards/{reward_id}", status_code=status.HTTP_204_NO_CONTENT)
async def deactivate_reward(
    reward_id: UUID,
    hotel_id: UUID = Depends(require_hotel_id),
    programs: LoyaltyProgramService = Depends(_program_service),
) -> Response:
    await programs.deactivate_reward(hotel_id, reward_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Analytics


@router.get("/analytics", response_model=AnalyticsResponse)
async def get_analytics(
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
    hotel_id: UUID = Depends(require_hotel_id),
    db: AsyncSession = Depends(get_session),
    service: LoyaltyService = Depends(get_loyalty_service),
) -> AnalyticsResponse:
    analytics = await LoyaltyAnalyticsService(db, loyalty=service).get_roi(
        hotel_id, AnalyticsWindow(start=start, end=end)
    )
    return AnalyticsResponse(
        hotel_id=analytics.hotel_id,
        start=analytics.window.start,
        end=analytics.window.end,
        overview=OverviewResponse(
            total_members=analytics.overview.total_members,
            total_points_issued=analytics.overview.total_points_issued,
            total_points_redeemed=analytics.overview.total_points_redeemed,
            total_points_expired=analytics.overview.total_points_expired,
            total_points_outstanding=analytics.overview.total_points_outstanding,
            total_lifetime_spending=float(analytics.overview.total_lifetime_spending),
            total_rewards=analytics.overview.total_rewards,
            active_rewards=analytics.overview.active_rewards,
            total_redemptions=analytics.overview.total_redemptions,
        ),
        roi=ROIResponse(
            total_revenue=float(analytics.roi.total_revenue),
            total_costs=float(analytics.roi.total_costs),
            roi=float(analytics.roi.roi),
            roi_percentage=float(analytics.roi.roi_percentage),
        ),
        reward_value_redeemed=float(analytics.reward_value_redeemed),
        estimated_discount_cost=float(analytics.estimated_discount_cost),
        discount_cost_is_estimate=analytics.discount_cost_is_estimate,
        members_by_tier=[
            TierDistributionResponse(tier=item.tier, member_count=item.member_count)
            for item in analytics.members_by_tier
        ],
        top_members=[_analytics_member(item) for item in analytics.top_members],
        recent_members=[_analytics_member(item) for item in analytics.recent_members],
    )


def _analytics_member(summary: MemberSummary) -> AnalyticsMemberResponse:
    return AnalyticsMemberResponse(
        member_id=summary.member_id,
        guest_id=summary.guest_id,
        guest_name=summary.guest_name,
        current_tier=summary.current_tier,
        total_points=summary.total_points,
        lifetime_spending=float(summary.lifetime_spending),
        join_date=summary.join_date,
    )


# Expiration sweeps


@router.post("/sweeps", response_model=SweepResponse)
async def trigger_expiration_sweep(
    request: Request,
    payload: SweepRequest | None = None,
    hotel_id: UUID = Depends(require_hotel_id),
    session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),
) -> SweepResponse:
    """Run an expiration sweep for the caller's hotel immediately."""

    sweepers: dict = getattr(request.app.state, "expiration_sweepers", None) or {}
    sweeper = sweepers.get(str(hotel_id)) or ExpirationSweeper(session_factory, hotel_id=hotel_id)
    result = await sweeper.trigger_now(triggered_by=(payload.triggered_by if payload else None) or "admin")
    return SweepResponse.model_validate(result.as_dict())
