"""Reward eligibility checks."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Sequence

from hotel_loyalty.services.loyalty.clock import ensure_utc, utcnow
from hotel_loyalty.services.loyalty.errors import (
    IneligibleTierError,
    InsufficientPointsError,
    LoyaltyError,
    RewardUnavailableError,
)
from hotel_loyalty.services.loyalty.tiers import TierConfig, tier_rank


class RedemptionBlocker(str, Enum):
    """Reasons a redemption cannot proceed, in the order they are surfaced."""

    REWARD_INACTIVE = "reward inactive"
    REWARD_NOT_STARTED = "reward not yet available"
    REWARD_ENDED = "reward expired"
    INELIGIBLE_TIER = "ineligible tier"
    INSUFFICIENT_POINTS = "insufficient points"
    USAGE_LIMIT_REACHED = "usage limit reached"


@dataclass(frozen=True, slots=True)
class RedemptionVerdict:
    available: bool
    reason: str | None = None
    points_needed: int | None = None
    blockers: tuple[RedemptionBlocker, ...] = field(default_factory=tuple)
    current_tier: str | None = None
    required_tier: str | None = None
    available_points: int = 0
    points_cost: int = 0

    @property
    def blocker(self) -> RedemptionBlocker | None:
        return self.blockers[0] if self.blockers else None

    def as_error(self) -> LoyaltyError | None:
        """Map the surfaced blocker onto the loyalty exception taxonomy."""

        blocker = self.blocker
        if blocker is None:
            return None
        if blocker is RedemptionBlocker.INELIGIBLE_TIER:
            return IneligibleTierError(self.current_tier, self.required_tier or "")
        if blocker is RedemptionBlocker.INSUFFICIENT_POINTS:
            return InsufficientPointsError(
                self.points_needed or 0,
                available_points=self.available_points,
                requested_points=self.points_cost,
            )
        return RewardUnavailableError(_UNAVAILABLE_MESSAGES[blocker])


_UNAVAILABLE_MESSAGES = {
    RedemptionBlocker.REWARD_INACTIVE: "Reward is currently inactive",
    RedemptionBlocker.REWARD_NOT_STARTED: "Reward is not yet available",
    RedemptionBlocker.REWARD_ENDED: "Reward is no longer available",
    RedemptionBlocker.USAGE_LIMIT_REACHED: "Reward usage limit reached",
}


def can_redeem(
    member: Any,
    reward: Any,
    tiers: Sequence[TierConfig],
    *,
    now: datetime | None = None,
) -> RedemptionVerdict:
    """Evaluate every redemption check and surface the first failure.

    The tier check precedes the balance check so that a member who cannot
    reach the reward's tier is not told their point shortfall.
    """

    moment = ensure_utc(now) or utcnow()
    blockers: list[RedemptionBlocker] = []

    if not reward.is_active:
        blockers.append(RedemptionBlocker.REWARD_INACTIVE)
    available_from = ensure_utc(reward.available_from)
    available_until = ensure_utc(reward.available_until)
    if available_from is not None and available_from > moment:
        blockers.append(RedemptionBlocker.REWARD_NOT_STARTED)
    if available_until is not None and available_until < moment:
        blockers.append(RedemptionBlocker.REWARD_ENDED)

    required_tier = reward.required_tier
    if required_tier and tier_rank(member.current_tier, tiers) < tier_rank(required_tier, tiers):
        blockers.append(RedemptionBlocker.INELIGIBLE_TIER)

    available_points = int(member.available_points or 0)
    points_cost = int(reward.points_cost or 0)
    shortfall = points_cost - available_points
    if shortfall > 0:
        blockers.append(RedemptionBlocker.INSUFFICIENT_POINTS)

    if reward.usage_limit is not None and int(reward.times_redeemed or 0) >= int(reward.usage_limit):
        blockers.append(RedemptionBlocker.USAGE_LIMIT_REACHED)

    if not blockers:
        return RedemptionVerdict(available=True)

    surfaced = blockers[0]
    return RedemptionVerdict(
        available=False,
        reason=surfaced.value,
        points_needed=shortfall if surfaced is RedemptionBlocker.INSUFFICIENT_POINTS else None,
        blockers=tuple(blockers),
        current_tier=member.current_tier,
        required_tier=required_tier,
        available_points=available_points,
        points_cost=points_cost,
    )


__all__ = ["RedemptionBlocker", "RedemptionVerdict", "can_redeem"]
