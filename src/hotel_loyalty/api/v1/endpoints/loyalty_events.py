"""Inbound booking events that credit loyalty points."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from hotel_loyalty.api.dependencies.context import get_loyalty_service
from hotel_loyalty.api.dependencies.security import require_events_api_key
from hotel_loyalty.schemas.loyalty import BookingCompletedRequest, BookingCreditResponse
from hotel_loyalty.services.guests import GuestDisplayInfo
from hotel_loyalty.services.loyalty import BookingCompleted, LoyaltyService
from hotel_loyalty.services.loyalty.clock import ensure_utc, utcnow

router = APIRouter(
    prefix="/loyalty/events",
    tags=["loyalty-events"],
    dependencies=[Depends(require_events_api_key)],
)


@router.post(
    "/booking-completed",
    response_model=BookingCreditResponse,
    status_code=status.HTTP_200_OK,
)
async def booking_completed(
    payload: BookingCompletedRequest,
    service: LoyaltyService = Depends(get_loyalty_service),
) -> BookingCreditResponse:
    """Credit a completed booking, enrolling the guest on their first stay."""

    guest = None
    if payload.guest is not None:
        guest = GuestDisplayInfo(
            first_name=payload.guest.first_name,
            last_name=payload.guest.last_name,
            email=payload.guest.email,
        )

    result = await service.record_booking(
        BookingCompleted(
            hotel_id=payload.hotel_id,
            guest_id=payload.guest_id,
            category=payload.category,
            amount=payload.amount,
            completed_at=ensure_utc(payload.completed_at) or utcnow(),
            nights=payload.nights,
            booking_reference=payload.booking_reference,
            guest=guest,
        )
    )
    if result is None:
        return BookingCreditResponse(credited=False)

    return BookingCreditResponse(
        credited=True,
        member_id=result.member_id,
        points_earned=result.points,
        nights_points=result.nights_points,
        total_points_awarded=result.total_points_awarded,
        tier_changed=result.tier_changed,
        old_tier=result.old_tier,
        new_tier=result.new_tier,
        expires_at=result.expires_at,
    )
