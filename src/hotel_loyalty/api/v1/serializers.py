"""Map loyalty models and service results onto API response schemas."""

from __future__ import annotations

from hotel_loyalty.models.loyalty import (
    LoyaltyLedgerEntry,
    LoyaltyMember,
    LoyaltyProgram,
    LoyaltyRedemption,
    LoyaltyReward,
    LoyaltyTierChange,
)
from hotel_loyalty.schemas.loyalty import (
    ExpiringPointsResponse,
    LedgerEntryResponse,
    MemberResponse,
    MemberSummaryResponse,
    ProgramResponse,
    PublicProgramResponse,
    RedeemRewardResponse,
    RedemptionResponse,
    RewardResponse,
    TierChangeResponse,
    TierSchema,
)
from hotel_loyalty.services.guests import GuestDisplayInfo
from hotel_loyalty.services.loyalty import MemberSnapshot, RedemptionOutcome
from hotel_loyalty.services.loyalty.clock import ensure_utc


def serialize_tiers(program: LoyaltyProgram) -> list[TierSchema]:
    ordered = sorted(program.tiers, key=lambda tier: int(tier.min_points))
    return [
        TierSchema(
            name=tier.name,
            min_points=int(tier.min_points),
            discount_percentage=float(tier.discount_percentage or 0),
            benefits=list(tier.benefits or []),
        )
        for tier in ordered
    ]


def _multipliers(program: LoyaltyProgram) -> dict[str, float]:
    return {str(key): float(value) for key, value in (program.service_multipliers or {}).items()}


def serialize_program(program: LoyaltyProgram) -> ProgramResponse:
    return ProgramResponse(
        id=program.id,
        hotel_id=program.hotel_id,
        is_active=bool(program.is_active),
        points_per_dollar=float(program.points_per_dollar or 0),
        points_per_night=int(program.points_per_night or 0),
        service_multipliers=_multipliers(program),
        points_to_money_ratio=float(program.points_to_money_ratio or 0),
        minimum_redemption=int(program.minimum_redemption or 0),
        maximum_redemption=program.maximum_redemption,
        expiration_months=int(program.expiration_months or 0),
        tiers=serialize_tiers(program),
        total_points_issued=int(program.total_points_issued or 0),
        total_points_redeemed=int(program.total_points_redeemed or 0),
        total_points_expired=int(program.total_points_expired or 0),
    )


def serialize_public_program(program: LoyaltyProgram) -> PublicProgramResponse:
    return PublicProgramResponse(
        hotel_id=program.hotel_id,
        points_per_dollar=float(program.points_per_dollar or 0),
        points_per_night=int(program.points_per_night or 0),
        service_multipliers=_multipliers(program),
        points_to_money_ratio=float(program.points_to_money_ratio or 0),
        minimum_redemption=int(program.minimum_redemption or 0),
        maximum_redemption=program.maximum_redemption,
        expiration_months=int(program.expiration_months or 0),
        tiers=serialize_tiers(program),
    )


def serialize_snapshot(snapshot: MemberSnapshot) -> MemberResponse:
    return MemberResponse(
        id=snapshot.member_id,
        hotel_id=snapshot.hotel_id,
        guest_id=snapshot.guest_id,
        guest_name=snapshot.guest_name,
        current_tier=snapshot.current_tier,
        next_tier=snapshot.next_tier,
        total_points=snapshot.total_points,
        available_points=snapshot.available_points,
        lifetime_points_earned=snapshot.lifetime_points_earned,
        lifetime_points_redeemed=snapshot.lifetime_points_redeemed,
        lifetime_points_expired=snapshot.lifetime_points_expired,
        lifetime_spending=float(snapshot.lifetime_spending),
        total_nights_stayed=snapshot.total_nights_stayed,
        points_to_next_tier=snapshot.points_to_next_tier,
        progress_percentage=float(snapshot.progress_percentage),
        discount_percentage=float(snapshot.discount_percentage),
        benefits=list(snapshot.benefits),
        upcoming_benefits=list(snapshot.upcoming_benefits),
        join_date=snapshot.join_date,
        last_activity=snapshot.last_activity,
        is_active=snapshot.is_active,
        expiring_points=[
            ExpiringPointsResponse(lot_id=window.lot_id, points=window.points, expires_at=window.expires_at)
            for window in snapshot.expiring_points
        ],
    )


def serialize_member_summary(member: LoyaltyMember) -> MemberSummaryResponse:
    return MemberSummaryResponse(
        id=member.id,
        guest_id=member.guest_id,
        guest_name=GuestDisplayInfo.from_member(member).display_name,
        email=member.guest_email,
        current_tier=member.current_tier,
        total_points=int(member.total_points or 0),
        available_points=int(member.available_points or 0),
        lifetime_spending=float(member.lifetime_spending or 0),
        join_date=ensure_utc(member.join_date),
        last_activity=ensure_utc(member.last_activity),
        is_active=bool(member.is_active),
    )


def serialize_ledger_entry(entry: LoyaltyLedgerEntry) -> LedgerEntryResponse:
    return LedgerEntryResponse(
        id=entry.id,
        entry_type=entry.entry_type.value,
        amount=int(entry.amount),
        reason=entry.reason,
        note=entry.note,
        category=entry.category,
        booking_reference=entry.booking_reference,
        expires_at=ensure_utc(entry.expires_at),
        occurred_at=ensure_utc(entry.occurred_at),
        metadata=dict(entry.metadata_json or {}),
    )


def serialize_redemption(redemption: LoyaltyRedemption) -> RedemptionResponse:
    return RedemptionResponse(
        id=redemption.id,
        reward_id=redemption.reward_id,
        reward_name=redemption.reward_name,
        points_cost=int(redemption.points_cost),
        value_redeemed=float(redemption.value_redeemed or 0),
        redeemed_at=ensure_utc(redemption.redeemed_at),
        valid_until=ensure_utc(redemption.valid_until),
    )


def serialize_tier_change(change: LoyaltyTierChange) -> TierChangeResponse:
    return TierChangeResponse(
        old_tier=change.old_tier,
        new_tier=change.new_tier,
        reason=change.reason,
        changed_at=ensure_utc(change.changed_at),
    )


def reward_fields(reward: LoyaltyReward) -> dict:
    return {
        "id": reward.id,
        "name": reward.name,
        "description": reward.description,
        "category": reward.category,
        "points_cost": int(reward.points_cost),
        "value": float(reward.value or 0),
        "required_tier": reward.required_tier,
        "validity_days": int(reward.validity_days or 0),
        "usage_limit": reward.usage_limit,
        "times_redeemed": int(reward.times_redeemed or 0),
        "total_value_redeemed": float(reward.total_value_redeemed or 0),
        "available_from": ensure_utc(reward.available_from),
        "available_until": ensure_utc(reward.available_until),
        "terms_and_conditions": reward.terms_and_conditions,
        "image_url": reward.image_url,
        "is_active": bool(reward.is_active),
    }


def serialize_reward(reward: LoyaltyReward) -> RewardResponse:
    return RewardResponse(**reward_fields(reward))


def serialize_redemption_outcome(outcome: RedemptionOutcome) -> RedeemRewardResponse:
    return RedeemRewardResponse(
        redemption_id=outcome.redemption_id,
        member_id=outcome.member_id,
        reward_id=outcome.reward_id,
        reward_name=outcome.reward_name,
        points_cost=outcome.points_cost,
        value_redeemed=float(outcome.value_redeemed),
        remaining_points=outcome.remaining_points,
        valid_until=ensure_utc(outcome.valid_until),
        redeemed_at=ensure_utc(outcome.redeemed_at),
    )
