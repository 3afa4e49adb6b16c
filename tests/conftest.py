import sys
from pathlib import Path
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

import hotel_loyalty.models  # noqa: E402,F401
from hotel_loyalty.app import create_app  # noqa: E402
from hotel_loyalty.db.base import Base  # noqa: E402
from hotel_loyalty.db.session import get_session  # noqa: E402
from hotel_loyalty.observability.loyalty import get_loyalty_store  # noqa: E402
from hotel_loyalty.observability.scheduler import get_scheduler_store  # noqa: E402
from hotel_loyalty.services.loyalty import LoyaltyProgramService, LoyaltyService  # noqa: E402
from hotel_loyalty.services.loyalty.programs import ProgramSettings, default_program_settings  # noqa: E402


async def _build_factory(url: str):
    engine = create_async_engine(url, future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine, async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def session_factory():
    engine, factory = await _build_factory("sqlite+aiosqlite:///:memory:")
    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path: Path):
    """Separate connections per session, for interleaved transactions."""

    engine, factory = await _build_factory(f"sqlite+aiosqlite:///{tmp_path / 'loyalty.db'}")
    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.state.session_factory = session_factory

    try:
        yield app, session_factory
    finally:
        await app.state.loyalty_events.drain()
        app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_observability():
    get_loyalty_store().reset()
    get_scheduler_store().reset()
    yield
    get_loyalty_store().reset()
    get_scheduler_store().reset()


@pytest.fixture
def hotel_id() -> UUID:
    return uuid4()


async def configure_program(
    session: AsyncSession,
    hotel_id: UUID,
    program_settings: ProgramSettings | None = None,
    **overrides,
):
    program_settings = program_settings or default_program_settings()
    for name, value in overrides.items():
        setattr(program_settings, name, value)
    result = await LoyaltyProgramService(session).configure_program(hotel_id, program_settings)
    return result.program


async def seed_member(session: AsyncSession, hotel_id: UUID, *, points: int = 0, **kwargs):
    """Create a member and credit ``points`` through a positive adjustment."""

    service = LoyaltyService(session)
    member = await service.ensure_member(hotel_id, uuid4(), **kwargs)
    if points:
        await service.adjust_points(member.id, delta=points, reason="Seed balance")
    return member
