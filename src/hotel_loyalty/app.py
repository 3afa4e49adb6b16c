from contextlib import asynccontextmanager
from pathlib import Path
from uuid import UUID

from fastapi import FastAPI
from loguru import logger

from hotel_loyalty.core.settings import settings
from hotel_loyalty.db.session import async_session
from .api.errors import register_exception_handlers
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .scheduling import LoyaltyJobScheduler
from .services.loyalty import LoyaltyEventPublisher
from .services.notifications import LoyaltyNotificationSubscriber, NotificationService
from .workers import ExpirationSweeper


APP_VERSION = "0.1.0"


def _session_factory():
    return async_session()


def _build_sweepers() -> dict[str | None, ExpirationSweeper]:
    hotel_ids = settings.expiration_hotel_ids
    if not hotel_ids:
        return {None: ExpirationSweeper(_session_factory)}
    return {hotel_id: ExpirationSweeper(_session_factory, hotel_id=UUID(hotel_id)) for hotel_id in hotel_ids}


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweepers = _build_sweepers()
    schedule_path = Path(settings.loyalty_job_schedule_path)
    if not schedule_path.is_absolute():
        schedule_path = Path(__file__).resolve().parent.parent.parent / schedule_path
    job_scheduler = LoyaltyJobScheduler(
        session_factory=_session_factory,
        config_path=schedule_path,
    )

    app.state.expiration_sweepers = sweepers
    app.state.loyalty_job_scheduler = job_scheduler

    sweeper_enabled = settings.loyalty_expiration_sweeper_enabled
    if sweeper_enabled:
        for sweeper in sweepers.values():
            sweeper.start()
        logger.info(
            "Loyalty expiration sweeper enabled",
            interval_seconds=settings.loyalty_expiration_interval_seconds,
            hotels=[key for key in sweepers if key] or "all",
        )
    else:
        logger.info(
            "Loyalty expiration sweeper disabled",
            reason="loyalty_expiration_sweeper_enabled is false",
        )

    scheduler_enabled = settings.loyalty_job_scheduler_enabled
    if scheduler_enabled:
        try:
            job_scheduler.start()
        except FileNotFoundError as exc:
            logger.exception("Loyalty job scheduler failed to start", error=str(exc))
        else:
            logger.info("Loyalty job scheduler enabled", schedule_path=str(schedule_path))
    else:
        logger.info(
            "Loyalty job scheduler disabled",
            reason="loyalty_job_scheduler_enabled is false",
        )

    try:
        yield
    finally:
        for sweeper in sweepers.values():
            if sweeper.is_running:
                await sweeper.stop()
        if job_scheduler.is_running:
            await job_scheduler.stop()
        await app.state.loyalty_events.drain()


def create_app() -> FastAPI:
    """Application factory for the hotel loyalty service."""
    configure_logging(
        service_name="hotel-loyalty",
        environment=settings.environment,
        version=APP_VERSION,
    )

    app = FastAPI(
        title="Hotel Loyalty API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name="hotel-loyalty",
        service_version=APP_VERSION,
        environment=settings.environment,
    )

    publisher = LoyaltyEventPublisher(background=settings.loyalty_events_background)
    notifications = NotificationService()
    if settings.loyalty_notifications_enabled:
        LoyaltyNotificationSubscriber(notifications).register(publisher)
    app.state.loyalty_events = publisher
    app.state.notifications = notifications
    app.state.session_factory = async_session
    app.state.expiration_sweepers = {}

    register_exception_handlers(app)
    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
