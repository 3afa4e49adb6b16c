"""Guest-facing loyalty endpoints scoped by the forwarded guest identity."""

from __future__ import annotations

from decimal import Decimal
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from hotel_loyalty.api.dependencies.context import get_loyalty_service, require_guest_id
from hotel_loyalty.api.v1.serializers import (
    reward_fields,
    serialize_ledger_entry,
    serialize_redemption_outcome,
    serialize_snapshot,
)
from hotel_loyalty.db.session import get_session
from hotel_loyalty.models.loyalty import LoyaltyLedgerEntryType, LoyaltyMember
from hotel_loyalty.schemas.loyalty import (
    DiscountQuoteResponse,
    LedgerWindowResponse,
    MemberResponse,
    MemberRewardResponse,
    RedeemRewardResponse,
)
from hotel_loyalty.services.loyalty import (
    LoyaltyProgramService,
    LoyaltyService,
    NotFoundError,
    ValidationError,
    decode_time_uuid_cursor,
    encode_time_uuid_cursor,
)

router = APIRouter(prefix="/loyalty/me", tags=["loyalty-guest"])


async def _membership(
    service: LoyaltyService,
    hotel_id: UUID,
    guest_id: UUID,
) -> LoyaltyMember:
    member = await service.find_member(hotel_id, guest_id)
    if member is None:
        raise NotFoundError("Guest is not a member of this hotel's loyalty program")
    return member


@router.get("", response_model=MemberResponse)
async def get_my_membership(
    hotel_id: UUID = Query(..., alias="hotelId"),
    guest_id: UUID = Depends(require_guest_id),
    db: AsyncSession = Depends(get_session),
    service: LoyaltyService = Depends(get_loyalty_service),
) -> MemberResponse:
    """Fetch, or enroll on first visit, the guest's membership."""

    await LoyaltyProgramService(db, loyalty=service).get_public_program(hotel_id)
    member = await service.ensure_member(hotel_id, guest_id)
    return serialize_snapshot(await service.snapshot_member(member))


@router.get("/rewards", response_model=List[MemberRewardResponse])
async def list_my_rewards(
    hotel_id: UUID = Query(..., alias="hotelId"),
    guest_id: UUID = Depends(require_guest_id),
    db: AsyncSession = Depends(get_session),
    service: LoyaltyService = Depends(get_loyalty_service),
) -> List[MemberRewardResponse]:
    """Active rewards annotated with whether this guest can redeem them now."""

    member = await _membership(service, hotel_id, guest_id)
    rewards = await LoyaltyProgramService(db, loyalty=service).list_rewards_for_member(member)
    return [
        MemberRewardResponse(
            **reward_fields(reward),
            can_redeem=verdict.available,
            blocked_reason=verdict.reason,
            points_needed=verdict.points_needed,
        )
        for reward, verdict in rewards
    ]


@router.post("/rewards/{reward_id}/redeem", response_model=RedeemRewardResponse)
async def redeem_reward(
    reward_id: UUID,
    hotel_id: UUID = Query(..., alias="hotelId"),
    guest_id: UUID = Depends(require_guest_id),
    service: LoyaltyService = Depends(get_loyalty_service),
) -> RedeemRewardResponse:
    member = await _membership(service, hotel_id, guest_id)
    if not member.is_active:
        raise ValidationError("Loyalty membership is inactive")
    outcome = await service.redeem_reward(member.id, reward_id, hotel_id=hotel_id)
    return serialize_redemption_outcome(outcome)


@router.get("/history", response_model=LedgerWindowResponse)
async def list_my_history(
    hotel_id: UUID = Query(..., alias="hotelId"),
    limit: int = Query(25, ge=1, le=100),
    cursor: str | None = Query(None, description="Opaque cursor for pagination"),
    types: list[str] | None = Query(None, alias="type", description="Filter ledger entry types"),
    guest_id: UUID = Depends(require_guest_id),
    service: LoyaltyService = Depends(get_loyalty_service),
) -> LedgerWindowResponse:
    """Return the guest's points history, newest first."""

    member = await _membership(service, hotel_id, guest_id)

    entry_types: list[LoyaltyLedgerEntryType] | None = None
    if types:
        entry_types = []
        for value in types:
            try:
                entry_types.append(LoyaltyLedgerEntryType(value.upper()))
            except ValueError as exc:
                raise ValidationError(f"Unsupported ledger type: {value}") from exc

    decoded_cursor = decode_time_uuid_cursor(cursor) if cursor else None
    entries, next_cursor = await service.list_ledger_entries(
        member.id,
        limit=limit,
        cursor=decoded_cursor,
        entry_types=entry_types,
    )
    return LedgerWindowResponse(
        entries=[serialize_ledger_entry(entry) for entry in entries],
        next_cursor=encode_time_uuid_cursor(*next_cursor) if next_cursor else None,
    )


@router.get("/discount-quote", response_model=DiscountQuoteResponse)
async def quote_my_discount(
    hotel_id: UUID = Query(..., alias="hotelId"),
    amount: Decimal = Query(..., ge=0),
    guest_id: UUID = Depends(require_guest_id),
    db: AsyncSession = Depends(get_session),
    service: LoyaltyService = Depends(get_loyalty_service),
) -> DiscountQuoteResponse:
    """Price a bill after the guest's tier discount."""

    member = await _membership(service, hotel_id, guest_id)
    quote = await LoyaltyProgramService(db, loyalty=service).discount_quote(member, amount)
    return DiscountQuoteResponse(
        amount=float(quote.amount),
        tier=quote.tier,
        discount_percentage=float(quote.discount_percentage),
        discount_amount=float(quote.discount_amount),
        discounted_amount=float(quote.discounted_amount),
    )
