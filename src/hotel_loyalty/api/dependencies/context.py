"""Request context forwarded by the hotel platform gateway."""

from __future__ import annotations

from typing import Callable
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from hotel_loyalty.db.session import async_session, get_session
from hotel_loyalty.services.loyalty import LoyaltyEventPublisher, LoyaltyService


def _parse_identifier(raw: str | None, *, header: str) -> UUID:
    if not raw:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {header} header",
        )

    try:
        return UUID(raw)
    except ValueError as error:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {header} header",
        ) from error


async def require_hotel_id(x_hotel_id: str | None = Header(None, alias="X-Hotel-Id")) -> UUID:
    """Hotel the admin caller is scoped to."""

    return _parse_identifier(x_hotel_id, header="X-Hotel-Id")


async def require_guest_id(x_guest_id: str | None = Header(None, alias="X-Guest-Id")) -> UUID:
    """Authenticated guest forwarded by the session gateway."""

    return _parse_identifier(x_guest_id, header="X-Guest-Id")


def get_event_publisher(request: Request) -> LoyaltyEventPublisher:
    publisher = getattr(request.app.state, "loyalty_events", None)
    if publisher is None:
        publisher = LoyaltyEventPublisher()
        request.app.state.loyalty_events = publisher
    return publisher


async def get_loyalty_service(
    db: AsyncSession = Depends(get_session),
    events: LoyaltyEventPublisher = Depends(get_event_publisher),
) -> LoyaltyService:
    return LoyaltyService(db, events=events)


def get_session_factory(request: Request) -> Callable[[], AsyncSession]:
    """Session factory for work that outlives the request session."""

    return getattr(request.app.state, "session_factory", None) or async_session
