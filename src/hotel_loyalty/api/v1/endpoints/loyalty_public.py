"""Unauthenticated program information for booking and marketing pages."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from hotel_loyalty.api.v1.serializers import serialize_public_program
from hotel_loyalty.db.session import get_session
from hotel_loyalty.schemas.loyalty import PublicProgramResponse, RedemptionQuoteResponse
from hotel_loyalty.services.loyalty import LoyaltyProgramService

router = APIRouter(prefix="/loyalty/programs", tags=["loyalty-public"])


@router.get("/{hotel_id}", response_model=PublicProgramResponse)
async def get_public_program(
    hotel_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> PublicProgramResponse:
    program = await LoyaltyProgramService(db).get_public_program(hotel_id)
    return serialize_public_program(program)


@router.get("/{hotel_id}/redemption-quote", response_model=RedemptionQuoteResponse)
async def quote_redemption(
    hotel_id: UUID,
    points: int = Query(..., ge=0),
    db: AsyncSession = Depends(get_session),
) -> RedemptionQuoteResponse:
    """Cash value of a points balance under the hotel's conversion rules."""

    quote = await LoyaltyProgramService(db).redemption_quote(hotel_id, points)
    return RedemptionQuoteResponse(
        points=quote.points,
        value=float(quote.value),
        eligible=quote.eligible,
        minimum_redemption=quote.minimum_redemption,
        maximum_redemption=quote.maximum_redemption,
        points_to_money_ratio=float(quote.points_to_money_ratio),
    )
