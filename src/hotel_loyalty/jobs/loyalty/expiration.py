"""Scheduled loyalty points expiration job."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from hotel_loyalty.core.settings import settings
from hotel_loyalty.workers.expiration_sweeper import ExpirationSweeper

# meta: job: loyalty-points-expiration

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]


async def run_points_expiration(
    *,
    session_factory: SessionFactory,
    hotel_id: str | UUID | None = None,
    triggered_by: str = "scheduler",
) -> Dict[str, Any]:
    """Expire due point lots for every member, or a single hotel's members."""

    hotel = UUID(str(hotel_id)) if hotel_id else None
    sweeper = ExpirationSweeper(
        session_factory,
        hotel_id=hotel,
        batch_size=settings.loyalty_expiration_batch_size,
        trigger_label=triggered_by,
    )
    result = await sweeper.trigger_now()
    summary = result.as_dict()
    summary["hotel_id"] = str(hotel) if hotel else None
    logger.bind(summary=summary).info("Loyalty points expiration job completed")
    return summary


__all__ = ["run_points_expiration"]
