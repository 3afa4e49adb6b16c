from fastapi import APIRouter

from .endpoints import (
    health,
    loyalty_admin,
    loyalty_events,
    loyalty_guest,
    loyalty_public,
)

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(loyalty_events.router)
router.include_router(loyalty_admin.router)
router.include_router(loyalty_guest.router)
router.include_router(loyalty_public.router)
