from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from hotel_loyalty.services.loyalty import (
    IneligibleTierError,
    InsufficientPointsError,
    RewardUnavailableError,
    can_redeem,
)
from hotel_loyalty.services.loyalty.redemption import RedemptionBlocker
from hotel_loyalty.services.loyalty.tiers import DEFAULT_TIERS

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _member(tier: str = "BRONZE", available: int = 0) -> SimpleNamespace:
    return SimpleNamespace(current_tier=tier, available_points=available)


def _reward(**overrides) -> SimpleNamespace:
    values = {
        "is_active": True,
        "available_from": None,
        "available_until": None,
        "required_tier": None,
        "points_cost": 500,
        "usage_limit": None,
        "times_redeemed": 0,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def test_redeemable_reward() -> None:
    verdict = can_redeem(_member(available=800), _reward(), DEFAULT_TIERS, now=NOW)
    assert verdict.available is True
    assert verdict.reason is None
    assert verdict.as_error() is None


def test_tier_requirement_surfaces_before_points() -> None:
    verdict = can_redeem(_member("SILVER", available=100), _reward(required_tier="GOLD"), DEFAULT_TIERS, now=NOW)
    assert verdict.available is False
    assert verdict.reason == "ineligible tier"
    assert verdict.points_needed is None
    assert verdict.blockers == (RedemptionBlocker.INELIGIBLE_TIER, RedemptionBlocker.INSUFFICIENT_POINTS)

    error = verdict.as_error()
    assert isinstance(error, IneligibleTierError)
    assert error.required_tier == "GOLD"
    assert error.current_tier == "SILVER"


def test_higher_tier_satisfies_requirement() -> None:
    verdict = can_redeem(_member("PLATINUM", available=600), _reward(required_tier="GOLD"), DEFAULT_TIERS, now=NOW)
    assert verdict.available is True


def test_insufficient_points_reports_shortfall() -> None:
    verdict = can_redeem(_member(available=320), _reward(), DEFAULT_TIERS, now=NOW)
    assert verdict.reason == "insufficient points"
    assert verdict.points_needed == 180

    error = verdict.as_error()
    assert isinstance(error, InsufficientPointsError)
    assert error.points_needed == 180
    assert error.available_points == 320


def test_inactive_and_windowed_rewards() -> None:
    inactive = can_redeem(_member(available=900), _reward(is_active=False), DEFAULT_TIERS, now=NOW)
    assert inactive.reason == "reward inactive"
    assert isinstance(inactive.as_error(), RewardUnavailableError)

    upcoming = can_redeem(
        _member(available=900), _reward(available_from=NOW + timedelta(days=2)), DEFAULT_TIERS, now=NOW
    )
    assert upcoming.reason == "reward not yet available"

    ended = can_redeem(
        _member(available=900), _reward(available_until=NOW - timedelta(seconds=1)), DEFAULT_TIERS, now=NOW
    )
    assert ended.reason == "reward expired"


def test_naive_window_bounds_are_treated_as_utc() -> None:
    reward = _reward(available_until=(NOW + timedelta(hours=1)).replace(tzinfo=None))
    assert can_redeem(_member(available=900), reward, DEFAULT_TIERS, now=NOW).available is True


def test_usage_limit_is_checked_last() -> None:
    exhausted = _reward(usage_limit=3, times_redeemed=3)
    verdict = can_redeem(_member(available=900), exhausted, DEFAULT_TIERS, now=NOW)
    assert verdict.reason == "usage limit reached"

    both = can_redeem(_member(available=10), exhausted, DEFAULT_TIERS, now=NOW)
    assert both.reason == "insufficient points"
