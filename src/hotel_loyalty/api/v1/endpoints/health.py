from __future__ import annotations

from typing import Any, Dict, Literal

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from hotel_loyalty.core.settings import settings
from hotel_loyalty.db.session import get_session
from hotel_loyalty.observability.loyalty import get_loyalty_store
from hotel_loyalty.observability.scheduler import get_scheduler_store

router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "starting", "disabled", "error"]
    detail: str | None = Field(default=None, description="Human readable status detail")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]


@router.get("/health/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}
    status: Literal["ready", "degraded", "error"] = "ready"

    try:
        await session.execute(text("SELECT 1"))
    except Exception as exc:
        components["database"] = ComponentStatus(status="error", detail=str(exc))
        status = "error"
    else:
        components["database"] = ComponentStatus(status="ready")

    sweepers = getattr(request.app.state, "expiration_sweepers", None) or {}
    if settings.loyalty_expiration_sweeper_enabled and sweepers:
        stopped = [key or "all" for key, sweeper in sweepers.items() if not sweeper.is_running]
        if stopped:
            components["expiration_sweeper"] = ComponentStatus(
                status="starting",
                detail=f"Expiration sweeper not running for: {', '.join(stopped)}",
            )
            status = "degraded" if status != "error" else status
        else:
            components["expiration_sweeper"] = ComponentStatus(status="ready")
    else:
        components["expiration_sweeper"] = ComponentStatus(
            status="disabled",
            detail="Expiration sweeper disabled via settings",
        )

    scheduler = getattr(request.app.state, "loyalty_job_scheduler", None)
    if settings.loyalty_job_scheduler_enabled and scheduler is not None:
        running = scheduler.is_running
        components["job_scheduler"] = ComponentStatus(
            status="ready" if running else "starting",
            detail=None if running else "Loyalty job scheduler not running",
        )
        if not running:
            status = "degraded" if status != "error" else status
    else:
        components["job_scheduler"] = ComponentStatus(
            status="disabled",
            detail="Loyalty job scheduler disabled via settings",
        )

    return ReadinessPayload(status=status, components=components)


@router.get("/health/loyalty", summary="Loyalty ledger and sweep telemetry")
async def loyalty_health(request: Request) -> Dict[str, Any]:
    sweepers = getattr(request.app.state, "expiration_sweepers", None) or {}
    scheduler = getattr(request.app.state, "loyalty_job_scheduler", None)
    return {
        "telemetry": get_loyalty_store().snapshot().as_dict(),
        "sweepers": {
            key or "all": {
                "running": sweeper.is_running,
                "interval_seconds": sweeper.interval_seconds,
                "last_result": sweeper.last_result.as_dict() if sweeper.last_result else None,
            }
            for key, sweeper in sweepers.items()
        },
        "scheduler": scheduler.health() if scheduler is not None else get_scheduler_store().snapshot().as_dict(),
    }
