from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import configure_program
from hotel_loyalty.services.guests import GuestDisplayInfo
from hotel_loyalty.services.loyalty import (
    AnalyticsWindow,
    LoyaltyAnalyticsService,
    LoyaltyProgramService,
    LoyaltyService,
    RewardDraft,
    ValidationError,
    compute_roi,
)
from hotel_loyalty.services.loyalty.roi import estimate_discount_cost
from hotel_loyalty.services.loyalty.tiers import DEFAULT_TIERS

JAN = datetime(2025, 1, 15, tzinfo=timezone.utc)
FEB = datetime(2025, 2, 15, tzinfo=timezone.utc)


def test_compute_roi() -> None:
    result = compute_roi(Decimal("10000"), Decimal("500"), Decimal("1500"))
    assert result.total_costs == Decimal("2000.00")
    assert result.roi == Decimal("8000.00")
    assert result.roi_percentage == Decimal("400.0")


def test_compute_roi_without_costs() -> None:
    result = compute_roi(1234.5, 0, 0)
    assert result.roi == Decimal("1234.50")
    assert result.roi_percentage == Decimal("0.0")


def test_compute_roi_rounds_percentage() -> None:
    result = compute_roi(Decimal("100"), Decimal("30"), Decimal("0"))
    assert result.roi_percentage == Decimal("233.3")


def test_estimate_discount_cost_ignores_unknown_tiers() -> None:
    spend = {"BRONZE": Decimal("1000"), "GOLD": Decimal("200"), "RETIRED": Decimal("5000")}
    assert estimate_discount_cost(spend, list(DEFAULT_TIERS)) == Decimal("80.00")


def test_analytics_window_must_be_ordered() -> None:
    with pytest.raises(ValidationError):
        AnalyticsWindow(start=FEB, end=JAN)


@pytest.mark.asyncio
async def test_program_analytics(session_factory, hotel_id) -> None:
    async with session_factory() as session:
        await configure_program(session, hotel_id)
        reward = await LoyaltyProgramService(session).create_reward(
            hotel_id, RewardDraft(name="Dinner for two", points_cost=500, value=Decimal("60"))
        )
        service = LoyaltyService(session, clock=lambda: FEB)

        big_spender = await service.ensure_member(
            hotel_id, uuid4(), guest=GuestDisplayInfo(first_name="Maya", last_name="Chen")
        )
        await service.earn_points(big_spender.id, amount=Decimal("1500"), issued_at=JAN)
        await service.earn_points(big_spender.id, amount=Decimal("500"), issued_at=FEB)
        await service.redeem_reward(big_spender.id, reward.id)

        casual = await service.ensure_member(hotel_id, uuid4())
        await service.earn_points(casual.id, amount=Decimal("200"), issued_at=FEB)

        analytics = await LoyaltyAnalyticsService(session).get_roi(hotel_id)

        # SILVER spends 2000 at 10%, BRONZE spends 200 at 5%.
        assert analytics.estimated_discount_cost == Decimal("210.00")
        assert analytics.reward_value_redeemed == Decimal("60.00")
        assert analytics.roi.total_revenue == Decimal("2200.00")
        assert analytics.roi.roi == Decimal("1930.00")
        assert analytics.roi.roi_percentage == Decimal("714.8")
        assert analytics.discount_cost_is_estimate is True

        overview = analytics.overview
        assert overview.total_members == 2
        assert overview.total_points_issued == 2200
        assert overview.total_points_redeemed == 500
        assert overview.total_points_outstanding == 1700
        assert overview.total_rewards == 1
        assert overview.total_redemptions == 1

        distribution = {row.tier: row.member_count for row in analytics.members_by_tier}
        assert distribution == {"BRONZE": 1, "SILVER": 1, "GOLD": 0, "PLATINUM": 0}
        assert analytics.top_members[0].guest_name == "Maya Chen"

        february = await LoyaltyAnalyticsService(session).get_roi(
            hotel_id, AnalyticsWindow(start=datetime(2025, 2, 1, tzinfo=timezone.utc))
        )
        assert february.roi.total_revenue == Decimal("700.00")
        assert february.reward_value_redeemed == Decimal("60.00")


@pytest.mark.asyncio
async def test_windowed_revenue_includes_bookings_that_earned_no_points(session_factory, hotel_id) -> None:
    async with session_factory() as session:
        await configure_program(
            session,
            hotel_id,
            service_multipliers={"dining": Decimal("1"), "housekeeping": Decimal("0")},
        )
        service = LoyaltyService(session, clock=lambda: FEB)
        member = await service.ensure_member(hotel_id, uuid4())
        member_id = member.id

        await service.earn_points(member_id, amount=Decimal("100"), category="dining", issued_at=JAN)
        housekeeping = await service.earn_points(
            member_id, amount=Decimal("300"), category="housekeeping", issued_at=JAN
        )
        assert housekeeping.points == 0
        assert housekeeping.ledger_entry_id is not None

        analytics = LoyaltyAnalyticsService(session)
        unbounded = await analytics.get_roi(hotel_id)
        windowed = await analytics.get_roi(
            hotel_id,
            AnalyticsWindow(
                start=datetime(2025, 1, 1, tzinfo=timezone.utc),
                end=datetime(2025, 12, 31, tzinfo=timezone.utc),
            ),
        )
        assert unbounded.roi.total_revenue == Decimal("400.00")
        assert windowed.roi.total_revenue == Decimal("400.00")

        entries, _ = await service.list_ledger_entries(member_id)
        spend_only = [entry for entry in entries if entry.category == "housekeeping"]
        assert len(spend_only) == 1
        assert spend_only[0].amount == 0
        assert Decimal(str(spend_only[0].spend_amount)) == Decimal("300")

        lots = await service.list_point_lots(member_id)
        assert [lot.points for lot in lots] == [100]

        refreshed = await service.get_member(member_id)
        assert refreshed.total_points == 100
