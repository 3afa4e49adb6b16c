from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import configure_program, seed_member
from hotel_loyalty.observability.loyalty import get_loyalty_store
from hotel_loyalty.services.loyalty import (
    ConcurrencyConflictError,
    InsufficientPointsError,
    LoyaltyProgramService,
    LoyaltyService,
    RewardDraft,
)

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class _InterleavingService(LoyaltyService):
    """Runs ``interloper`` in another session right after the member row is read."""

    def __init__(self, session, interloper, *, rounds: int = 1, **kwargs) -> None:
        super().__init__(session, **kwargs)
        self._interloper = interloper
        self._rounds = rounds

    async def _load_context(self, member_id, hotel_id):
        ctx = await super()._load_context(member_id, hotel_id)
        if self._rounds > 0:
            self._rounds -= 1
            await self._interloper()
        return ctx


@pytest.mark.asyncio
async def test_competing_redemptions_never_overdraw(file_session_factory, hotel_id) -> None:
    async with file_session_factory() as session:
        await configure_program(session, hotel_id)
        reward = await LoyaltyProgramService(session).create_reward(
            hotel_id, RewardDraft(name="Spa afternoon", points_cost=300, value=Decimal("75"))
        )
        reward_id = reward.id
        member_id = (await seed_member(session, hotel_id, points=500)).id

    async def competing_redemption() -> None:
        async with file_session_factory() as other:
            await LoyaltyService(other).redeem_reward(member_id, reward_id)

    async with file_session_factory() as session:
        service = _InterleavingService(session, competing_redemption)
        with pytest.raises(InsufficientPointsError):
            await service.redeem_reward(member_id, reward_id)

    async with file_session_factory() as session:
        service = LoyaltyService(session)
        member = await service.get_member(member_id)
        assert member.available_points == 200
        assert member.lifetime_points_redeemed == 300
        assert len(await service.list_redemptions(member_id)) == 1
        reward = await LoyaltyProgramService(session).get_reward(hotel_id, reward_id)
        assert reward.times_redeemed == 1

    assert get_loyalty_store().snapshot().operations["conflict:redeem_reward"] == 1


@pytest.mark.asyncio
async def test_lost_update_is_retried_on_fresh_state(file_session_factory, hotel_id) -> None:
    async with file_session_factory() as session:
        await configure_program(session, hotel_id)
        member_id = (await seed_member(session, hotel_id, points=900)).id

    async def concurrent_credit() -> None:
        async with file_session_factory() as other:
            await LoyaltyService(other).adjust_points(member_id, delta=200, reason="Concierge goodwill")

    async with file_session_factory() as session:
        service = _InterleavingService(session, concurrent_credit)
        result = await service.earn_points(member_id, amount=Decimal("100"))
        assert result.new_tier == "SILVER"

    async with file_session_factory() as session:
        member = await LoyaltyService(session).get_member(member_id)
        assert member.total_points == 1200
        assert member.available_points == 1200
        assert member.current_tier == "SILVER"


@pytest.mark.asyncio
async def test_persistent_conflicts_surface_as_concurrency_error(file_session_factory, hotel_id) -> None:
    async with file_session_factory() as session:
        await configure_program(session, hotel_id)
        member_id = (await seed_member(session, hotel_id, points=100)).id

    async def concurrent_credit() -> None:
        async with file_session_factory() as other:
            await LoyaltyService(other).adjust_points(member_id, delta=1, reason="Interference")

    async with file_session_factory() as session:
        service = _InterleavingService(session, concurrent_credit, rounds=5, max_retries=2)
        with pytest.raises(ConcurrencyConflictError) as excinfo:
            await service.adjust_points(member_id, delta=50, reason="Late credit")
        assert excinfo.value.attempts == 2

    async with file_session_factory() as session:
        member = await LoyaltyService(session).get_member(member_id)
        assert member.total_points == 102


@pytest.mark.asyncio
async def test_expiry_between_load_and_redemption_is_retried(file_session_factory, hotel_id) -> None:
    async with file_session_factory() as session:
        await configure_program(session, hotel_id)
        service = LoyaltyService(session, clock=lambda: NOW)
        member_id = (await service.ensure_member(hotel_id, uuid4())).id
        await service.earn_points(
            member_id, amount=Decimal("300"), issued_at=datetime(2024, 1, 10, 12, tzinfo=timezone.utc)
        )

    async def concurrent_expiry() -> None:
        async with file_session_factory() as other:
            expired = await LoyaltyService(other, clock=lambda: NOW).expire_old_points(member_id, now=NOW)
            assert expired == 300

    async with file_session_factory() as session:
        service = _InterleavingService(session, concurrent_expiry, clock=lambda: NOW)
        with pytest.raises(InsufficientPointsError):
            await service.redeem_points(
                member_id, points_cost=300, value=Decimal("3"), reward_name="Late checkout"
            )

    async with file_session_factory() as session:
        service = LoyaltyService(session)
        member = await service.get_member(member_id)
        assert member.available_points == 0
        assert member.total_points == 0
        assert member.lifetime_points_expired == 300
        assert member.lifetime_points_redeemed == 0
        assert await service.list_redemptions(member_id) == []

    assert get_loyalty_store().snapshot().operations["conflict:redeem_points"] == 1
