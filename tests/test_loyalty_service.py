from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import update

from conftest import configure_program, seed_member
from hotel_loyalty.models.loyalty import LoyaltyLedgerEntryType, LoyaltyPointLot, LoyaltyPointLotStatus
from hotel_loyalty.services.guests import GuestDisplayInfo
from hotel_loyalty.services.loyalty import (
    BookingCompleted,
    IneligibleTierError,
    InsufficientPointsError,
    LedgerIntegrityError,
    LoyaltyConfigurationError,
    LoyaltyEventPublisher,
    LoyaltyProgramService,
    LoyaltyService,
    PointsAdjusted,
    RewardDraft,
    RewardRedeemed,
    RewardUnavailableError,
    TierChanged,
    ValidationError,
    decode_time_uuid_cursor,
    encode_time_uuid_cursor,
)
from hotel_loyalty.services.loyalty.clock import ensure_utc
from hotel_loyalty.services.loyalty.programs import default_program_settings
from hotel_loyalty.services.loyalty.tiers import DEFAULT_TIERS

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _capture(publisher: LoyaltyEventPublisher, *event_types: type) -> list:
    captured: list = []

    async def _handler(event) -> None:
        captured.append(event)

    for event_type in event_types:
        publisher.subscribe(event_type, _handler)
    return captured


def _service(session, publisher: LoyaltyEventPublisher | None = None, now: datetime = NOW) -> LoyaltyService:
    return LoyaltyService(session, events=publisher, clock=lambda: now)


@pytest.mark.asyncio
async def test_booking_enrolls_guest_and_upgrades_tier(session_factory, hotel_id) -> None:
    async with session_factory() as session:
        await configure_program(session, hotel_id)
        publisher = LoyaltyEventPublisher()
        tier_events = _capture(publisher, TierChanged)
        service = _service(session, publisher)

        guest_id = uuid4()
        result = await service.record_booking(
            BookingCompleted(
                hotel_id=hotel_id,
                guest_id=guest_id,
                category="spa",
                amount=Decimal("800"),
                completed_at=NOW,
                nights=2,
                booking_reference="BK-1001",
                guest=GuestDisplayInfo(first_name="Ana", last_name="Lopez", email="ana@example.com"),
            )
        )

        assert result is not None
        assert result.points == 1200
        assert result.nights_points == 100
        assert result.total_points_awarded == 1300
        assert result.tier_changed is True
        assert (result.old_tier, result.new_tier) == ("BRONZE", "SILVER")
        assert result.expires_at == datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

        member = await service.get_member(result.member_id)
        assert member.guest_id == guest_id
        assert member.total_points == 1300
        assert member.available_points == 1300
        assert member.lifetime_points_earned == 1300
        assert Decimal(member.lifetime_spending) == Decimal("800")
        assert member.total_nights_stayed == 2
        assert member.current_tier == "SILVER"
        assert member.next_tier_name == "GOLD"
        assert member.points_to_next_tier == 1700

        assert [(event.old_tier, event.new_tier) for event in tier_events] == [("BRONZE", "SILVER")]
        assert tier_events[0].reason == "Points threshold reached"
        assert tier_events[0].guest.display_name == "Ana Lopez"

        changes = await service.list_tier_changes(member.id)
        assert {change.reason for change in changes} == {"Joined loyalty program", "Points threshold reached"}

        entries, _ = await service.list_ledger_entries(member.id)
        assert sorted(entry.amount for entry in entries) == [100, 1200]
        assert {entry.reason for entry in entries} == {"Earned from spa", "Earned for 2 night(s)"}

        program = await service.get_program(hotel_id)
        assert program.total_points_issued == 1300


@pytest.mark.asyncio
async def test_booking_without_active_program_is_skipped(session_factory, hotel_id) -> None:
    async with session_factory() as session:
        service = _service(session)
        booking = BookingCompleted(
            hotel_id=hotel_id,
            guest_id=uuid4(),
            category="dining",
            amount=Decimal("50"),
            completed_at=NOW,
        )
        assert await service.record_booking(booking) is None

        await configure_program(session, hotel_id, is_active=False)
        assert await service.record_booking(booking) is None
        assert await service.find_member(hotel_id, booking.guest_id) is None


@pytest.mark.asyncio
async def test_negative_booking_amount_is_rejected_before_enrollment(session_factory, hotel_id) -> None:
    async with session_factory() as session:
        await configure_program(session, hotel_id)
        service = _service(session)
        guest_id = uuid4()
        with pytest.raises(ValidationError):
            await service.record_booking(
                BookingCompleted(
                    hotel_id=hotel_id,
                    guest_id=guest_id,
                    category="dining",
                    amount=Decimal("-5"),
                    completed_at=NOW,
                )
            )
        assert await service.find_member(hotel_id, guest_id) is None


@pytest.mark.asyncio
async def test_ensure_member_is_idempotent(session_factory, hotel_id) -> None:
    async with session_factory() as session:
        await configure_program(session, hotel_id)
        service = _service(session)
        guest_id = uuid4()
        first = await service.ensure_member(hotel_id, guest_id)
        second = await service.ensure_member(hotel_id, guest_id)
        assert first.id == second.id
        assert first.current_tier == "BRONZE"
        assert first.next_tier_name == "SILVER"
        assert first.points_to_next_tier == 1000


@pytest.mark.asyncio
async def test_redemption_consumes_oldest_lots_first(session_factory, hotel_id) -> None:
    async with session_factory() as session:
        await configure_program(session, hotel_id)
        service = _service(session)
        member = await service.ensure_member(hotel_id, uuid4())
        member_id = member.id

        await service.earn_points(member_id, amount=Decimal("500"), issued_at=NOW - timedelta(days=10))
        await service.earn_points(member_id, amount=Decimal("300"), issued_at=NOW - timedelta(days=60))

        outcome = await service.redeem_points(member_id, points_cost=400, value=Decimal("4"), reward_name="Spa credit")
        assert outcome.remaining_points == 400

        lots = await service.list_point_lots(member_id)
        assert [(lot.points, lot.consumed_points, lot.status) for lot in lots] == [
            (300, 300, LoyaltyPointLotStatus.CONSUMED),
            (500, 100, LoyaltyPointLotStatus.OPEN),
        ]

        member = await service.get_member(member_id)
        assert member.available_points == 400
        assert member.total_points == 800
        assert member.lifetime_points_redeemed == 400

        entries, _ = await service.list_ledger_entries(member_id, entry_types=[LoyaltyLedgerEntryType.REDEEMED])
        assert len(entries) == 1
        assert entries[0].amount == -400
        assert entries[0].reason == "Redeemed for: Spa credit"


@pytest.mark.asyncio
async def test_insufficient_points_leaves_balances_untouched(session_factory, hotel_id) -> None:
    async with session_factory() as session:
        await configure_program(session, hotel_id)
        member = await seed_member(session, hotel_id, points=200)
        member_id = member.id
        service = _service(session)

        with pytest.raises(InsufficientPointsError) as excinfo:
            await service.redeem_points(member_id, points_cost=1000, value=10, reward_name="Suite night")
        assert excinfo.value.points_needed == 800
        assert excinfo.value.available_points == 200

        member = await service.get_member(member_id)
        assert member.available_points == 200
        assert member.lifetime_points_redeemed == 0
        assert await service.list_redemptions(member_id) == []


@pytest.mark.asyncio
async def test_reward_redemption_claims_usage_and_publishes(session_factory, hotel_id) -> None:
    async with session_factory() as session:
        await configure_program(session, hotel_id)
        programs = LoyaltyProgramService(session)
        reward = await programs.create_reward(
            hotel_id,
            RewardDraft(name="Late checkout", points_cost=300, value=Decimal("40"), validity_days=7, usage_limit=1),
        )
        reward_id = reward.id
        first = await seed_member(session, hotel_id, points=700)
        second_id = (await seed_member(session, hotel_id, points=700)).id

        publisher = LoyaltyEventPublisher()
        redeemed = _capture(publisher, RewardRedeemed)
        service = _service(session, publisher)

        outcome = await service.redeem_reward(first.id, reward_id, hotel_id=hotel_id)
        assert outcome.remaining_points == 400
        assert outcome.value_redeemed == Decimal("40")
        assert outcome.valid_until == NOW + timedelta(days=7)
        assert [event.reward_name for event in redeemed] == ["Late checkout"]

        reward = await programs.get_reward(hotel_id, reward_id)
        assert reward.times_redeemed == 1
        assert Decimal(reward.total_value_redeemed) == Decimal("40")

        with pytest.raises(RewardUnavailableError):
            await service.redeem_reward(second_id, reward_id, hotel_id=hotel_id)
        assert (await service.get_member(second_id)).available_points == 700

        program = await service.get_program(hotel_id)
        assert program.total_points_redeemed == 300


@pytest.mark.asyncio
async def test_reward_tier_requirement_blocks_redemption(session_factory, hotel_id) -> None:
    async with session_factory() as session:
        await configure_program(session, hotel_id)
        reward = await LoyaltyProgramService(session).create_reward(
            hotel_id, RewardDraft(name="Airport transfer", points_cost=2000, required_tier="GOLD")
        )
        member = await seed_member(session, hotel_id, points=500)
        service = _service(session)

        with pytest.raises(IneligibleTierError) as excinfo:
            await service.redeem_reward(member.id, reward.id)
        assert excinfo.value.required_tier == "GOLD"
        assert excinfo.value.current_tier == "BRONZE"


@pytest.mark.asyncio
async def test_adjustments_move_balances_and_tiers(session_factory, hotel_id) -> None:
    async with session_factory() as session:
        await configure_program(session, hotel_id)
        publisher = LoyaltyEventPublisher()
        captured = _capture(publisher, PointsAdjusted, TierChanged)
        service = _service(session, publisher)
        member = await service.ensure_member(hotel_id, uuid4())
        member_id = member.id

        credit = await service.adjust_points(member_id, delta=1200, reason="Service recovery", note="Broken AC")
        assert credit.total_points_before == 0
        assert credit.total_points_after == 1200
        assert (credit.tier_before, credit.tier_after) == ("BRONZE", "SILVER")

        lots = await service.list_point_lots(member_id)
        assert len(lots) == 1
        assert lots[0].expires_at is None

        debit = await service.adjust_points(member_id, delta=-300, reason="Duplicate credit")
        assert debit.available_points_after == 900
        assert debit.tier_after == "BRONZE"

        member = await service.get_member(member_id)
        assert member.total_points == 900
        assert member.lifetime_points_earned == 900
        assert member.current_tier == "BRONZE"

        tier_reasons = [event.reason for event in captured if isinstance(event, TierChanged)]
        assert tier_reasons == ["Admin adjustment", "Admin adjustment"]
        assert [event.delta for event in captured if isinstance(event, PointsAdjusted)] == [1200, -300]
        adjusted = [event for event in captured if isinstance(event, PointsAdjusted)]
        assert adjusted[0].as_payload()["event_type"] == "loyalty.points_adjusted"
        assert adjusted[0].note == "Broken AC"


@pytest.mark.asyncio
async def test_adjustment_validation(session_factory, hotel_id) -> None:
    async with session_factory() as session:
        await configure_program(session, hotel_id)
        member = await seed_member(session, hotel_id, points=100)
        service = _service(session)

        with pytest.raises(ValidationError):
            await service.adjust_points(member.id, delta=0, reason="Nothing")
        with pytest.raises(ValidationError):
            await service.adjust_points(member.id, delta=10, reason="   ")
        with pytest.raises(InsufficientPointsError):
            await service.adjust_points(member.id, delta=-101, reason="Too much")


@pytest.mark.asyncio
async def test_expire_old_points_retires_unspent_remainder(session_factory, hotel_id) -> None:
    async with session_factory() as session:
        await configure_program(session, hotel_id)
        service = _service(session)
        member = await service.ensure_member(hotel_id, uuid4())
        member_id = member.id

        await service.earn_points(member_id, amount=400, issued_at=datetime(2024, 2, 1, 12, tzinfo=timezone.utc))
        await service.earn_points(member_id, amount=200, issued_at=datetime(2025, 2, 1, 12, tzinfo=timezone.utc))
        await service.redeem_points(member_id, points_cost=100, value=1, reward_name="Coffee")

        assert await service.expire_old_points(member_id) == 300
        assert await service.expire_old_points(member_id) == 0

        member = await service.get_member(member_id)
        assert member.available_points == 200
        assert member.total_points == 300
        assert member.lifetime_points_expired == 300
        assert member.lifetime_points_earned == 600

        entries, _ = await service.list_ledger_entries(member_id, entry_types=[LoyaltyLedgerEntryType.EXPIRED])
        assert len(entries) == 1
        assert entries[0].amount == -300
        assert entries[0].reason == "Points expired"
        assert len(entries[0].metadata_json["lot_ids"]) == 1

        statuses = [lot.status for lot in await service.list_point_lots(member_id)]
        assert statuses == [LoyaltyPointLotStatus.EXPIRED, LoyaltyPointLotStatus.OPEN]

        program = await service.get_program(hotel_id)
        assert program.total_points_expired == 300


@pytest.mark.asyncio
async def test_expiry_keeps_tier_and_refreshes_progress(session_factory, hotel_id) -> None:
    async with session_factory() as session:
        await configure_program(session, hotel_id)
        service = _service(session)
        member = await service.ensure_member(hotel_id, uuid4())
        member_id = member.id

        await service.earn_points(member_id, amount=1200, issued_at=datetime(2024, 1, 15, tzinfo=timezone.utc))
        assert await service.expire_old_points(member_id) == 1200

        member = await service.get_member(member_id)
        assert member.total_points == 0
        assert member.current_tier == "SILVER"
        assert member.points_to_next_tier == 1000


@pytest.mark.asyncio
async def test_manual_tier_change(session_factory, hotel_id) -> None:
    async with session_factory() as session:
        await configure_program(session, hotel_id)
        publisher = LoyaltyEventPublisher()
        tier_events = _capture(publisher, TierChanged)
        service = _service(session, publisher)
        member_id = (await service.ensure_member(hotel_id, uuid4())).id

        event = await service.change_member_tier(member_id, tier="GOLD")
        assert event is not None
        assert event.reason == "Manual admin change"
        assert event.is_upgrade is True
        assert await service.change_member_tier(member_id, tier="GOLD") is None
        with pytest.raises(ValidationError):
            await service.change_member_tier(member_id, tier="DIAMOND")

        assert len(tier_events) == 1
        assert (await service.get_member(member_id)).current_tier == "GOLD"


@pytest.mark.asyncio
async def test_threshold_change_reclassifies_members(session_factory, hotel_id) -> None:
    async with session_factory() as session:
        await configure_program(session, hotel_id)
        silver = await seed_member(session, hotel_id, points=1200)
        bronze = await seed_member(session, hotel_id, points=400)
        untouched = await seed_member(session, hotel_id, points=50)

        lowered = default_program_settings()
        lowered.tiers = [
            DEFAULT_TIERS[0],
            replace(DEFAULT_TIERS[1], min_points=300),
            replace(DEFAULT_TIERS[2], min_points=1000),
            DEFAULT_TIERS[3],
        ]
        result = await LoyaltyProgramService(session).configure_program(hotel_id, lowered)
        assert result.created is False
        assert result.tier_updates == 2

        service = _service(session)
        assert (await service.get_member(silver.id)).current_tier == "GOLD"
        assert (await service.get_member(bronze.id)).current_tier == "SILVER"
        assert (await service.get_member(untouched.id)).current_tier == "BRONZE"

        changes = await service.list_tier_changes(bronze.id)
        assert "Tier threshold changed by admin" in {change.reason for change in changes}

        lowered.points_per_dollar = Decimal("2")
        again = await LoyaltyProgramService(session).configure_program(hotel_id, lowered)
        assert again.tier_updates == 0


@pytest.mark.asyncio
async def test_raised_thresholds_downgrade_members(session_factory, hotel_id) -> None:
    async with session_factory() as session:
        await configure_program(session, hotel_id)
        silver_id = (await seed_member(session, hotel_id, points=1200)).id
        gold_id = (await seed_member(session, hotel_id, points=3500)).id

        raised = default_program_settings()
        raised.tiers = [
            DEFAULT_TIERS[0],
            replace(DEFAULT_TIERS[1], min_points=1500),
            replace(DEFAULT_TIERS[2], min_points=4000),
            DEFAULT_TIERS[3],
        ]
        publisher = LoyaltyEventPublisher()
        tier_events = _capture(publisher, TierChanged)
        programs = LoyaltyProgramService(session, loyalty=_service(session, publisher))
        result = await programs.configure_program(hotel_id, raised)
        assert result.tier_updates == 2

        service = _service(session)
        assert (await service.get_member(silver_id)).current_tier == "BRONZE"
        assert (await service.get_member(gold_id)).current_tier == "SILVER"

        for member_id, old_tier, new_tier in ((silver_id, "SILVER", "BRONZE"), (gold_id, "GOLD", "SILVER")):
            changes = await service.list_tier_changes(member_id)
            (threshold_change,) = [change for change in changes if change.reason == "Tier threshold changed by admin"]
            assert (threshold_change.old_tier, threshold_change.new_tier) == (old_tier, new_tier)

        assert len(tier_events) == 2
        assert {event.reason for event in tier_events} == {"Tier threshold changed by admin"}
        assert all(event.is_upgrade is False for event in tier_events)


@pytest.mark.asyncio
async def test_uncovered_decrement_raises_and_rolls_back(session_factory, hotel_id) -> None:
    async with session_factory() as session:
        await configure_program(session, hotel_id)
        member_id = (await seed_member(session, hotel_id, points=500)).id

        # Lots now hold 100 points while the balance still reads 500.
        await session.execute(
            update(LoyaltyPointLot).where(LoyaltyPointLot.member_id == member_id).values(consumed_points=400)
        )
        await session.commit()

        service = _service(session)
        with pytest.raises(LedgerIntegrityError) as excinfo:
            await service.redeem_points(member_id, points_cost=300, value=Decimal("3"), reward_name="Spa credit")
        assert excinfo.value.code == "ledger_integrity"

        member = await service.get_member(member_id)
        assert member.available_points == 500
        assert member.lifetime_points_redeemed == 0
        assert await service.list_redemptions(member_id) == []
        (lot,) = await service.list_point_lots(member_id)
        assert lot.consumed_points == 400
        assert lot.status == LoyaltyPointLotStatus.OPEN


@pytest.mark.asyncio
async def test_invalid_program_configuration_is_rejected(session_factory, hotel_id) -> None:
    async with session_factory() as session:
        broken = default_program_settings()
        broken.tiers = [replace(DEFAULT_TIERS[1], min_points=100)]
        broken.points_to_money_ratio = Decimal("0")
        with pytest.raises(LoyaltyConfigurationError) as excinfo:
            await LoyaltyProgramService(session).configure_program(hotel_id, broken)
        assert "Lowest tier SILVER must start at 0 points" in excinfo.value.errors
        assert "Points to money ratio must be positive" in excinfo.value.errors


@pytest.mark.asyncio
async def test_ledger_history_paginates_newest_first(session_factory, hotel_id) -> None:
    async with session_factory() as session:
        await configure_program(session, hotel_id)
        service = _service(session)
        member = await service.ensure_member(hotel_id, uuid4())
        for days_ago, amount in ((30, 100), (20, 200), (10, 300)):
            await service.earn_points(member.id, amount=amount, issued_at=NOW - timedelta(days=days_ago))
        await service.redeem_points(member.id, points_cost=50, value=Decimal("0.5"), reward_name="Snack")

        first_page, cursor = await service.list_ledger_entries(member.id, limit=2)
        assert [entry.amount for entry in first_page] == [-50, 300]
        assert cursor is not None

        token = encode_time_uuid_cursor(*cursor)
        second_page, last_cursor = await service.list_ledger_entries(
            member.id, limit=2, cursor=decode_time_uuid_cursor(token)
        )
        assert [entry.amount for entry in second_page] == [200, 100]
        assert last_cursor is None

        earned, _ = await service.list_ledger_entries(member.id, entry_types=[LoyaltyLedgerEntryType.EARNED])
        assert len(earned) == 3

        with pytest.raises(ValidationError):
            decode_time_uuid_cursor("not-a-cursor")


@pytest.mark.asyncio
async def test_snapshot_lists_points_expiring_soon(session_factory, hotel_id) -> None:
    async with session_factory() as session:
        await configure_program(session, hotel_id)
        service = _service(session)
        member = await service.ensure_member(
            hotel_id, uuid4(), guest=GuestDisplayInfo(email="frequent.guest@example.com")
        )
        await service.earn_points(member.id, amount=250, issued_at=datetime(2024, 3, 11, 12, tzinfo=timezone.utc))
        await service.earn_points(member.id, amount=100, issued_at=NOW)

        snapshot = await service.snapshot_member(await service.get_member(member.id))
        assert snapshot.guest_name == "frequent.guest"
        assert snapshot.total_points == 350
        assert snapshot.discount_percentage == Decimal("5")
        assert snapshot.next_tier == "SILVER"
        assert [window.points for window in snapshot.expiring_points] == [250]
        assert ensure_utc(snapshot.expiring_points[0].expires_at) == datetime(2025, 3, 11, 12, tzinfo=timezone.utc)
