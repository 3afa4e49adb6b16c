"""Tier resolution over a program's ordered threshold configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Sequence

from hotel_loyalty.services.loyalty.errors import LoyaltyConfigurationError


@dataclass(frozen=True, slots=True)
class TierConfig:
    """Immutable view of one configured tier."""

    name: str
    min_points: int
    discount_percentage: Decimal = Decimal("0")
    benefits: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_model(cls, tier: Any) -> "TierConfig":
        return cls(
            name=str(tier.name),
            min_points=int(tier.min_points or 0),
            discount_percentage=Decimal(str(tier.discount_percentage or 0)),
            benefits=tuple(str(item) for item in (tier.benefits or [])),
        )


@dataclass(frozen=True, slots=True)
class TierProgress:
    """Distance from a points total to the next-higher tier."""

    points_to_next_tier: int
    next_tier_name: str | None
    progress_percentage: Decimal


DEFAULT_TIERS: tuple[TierConfig, ...] = (
    TierConfig(
        name="BRONZE",
        min_points=0,
        discount_percentage=Decimal("5"),
        benefits=("5% discount on all services", "Priority customer support"),
    ),
    TierConfig(
        name="SILVER",
        min_points=1000,
        discount_percentage=Decimal("10"),
        benefits=("10% discount on all services", "Priority booking", "Free welcome drink"),
    ),
    TierConfig(
        name="GOLD",
        min_points=3000,
        discount_percentage=Decimal("15"),
        benefits=("15% discount on all services", "Late checkout", "Complimentary room upgrade when available"),
    ),
    TierConfig(
        name="PLATINUM",
        min_points=6000,
        discount_percentage=Decimal("20"),
        benefits=("20% discount on all services", "Dedicated concierge", "Complimentary airport transfer"),
    ),
)


def sort_tiers(tiers: Iterable[TierConfig]) -> list[TierConfig]:
    return sorted(tiers, key=lambda tier: tier.min_points)


def resolve_tier(points: int, tiers: Sequence[TierConfig]) -> TierConfig:
    """Return the tier with the greatest threshold not exceeding ``points``.

    A well-formed configuration always starts at zero, so a miss means the
    configuration itself is broken.
    """

    resolved: TierConfig | None = None
    for tier in sort_tiers(tiers):
        if tier.min_points <= points:
            resolved = tier
        else:
            break
    if resolved is None:
        raise LoyaltyConfigurationError(f"No tier configured for {points} points")
    return resolved


def tier_rank(name: str | None, tiers: Sequence[TierConfig]) -> int:
    """Index of ``name`` in the ascending tier list, or -1 when unknown."""

    for index, tier in enumerate(sort_tiers(tiers)):
        if tier.name == name:
            return index
    return -1


def find_tier(name: str | None, tiers: Sequence[TierConfig]) -> TierConfig | None:
    return next((tier for tier in tiers if tier.name == name), None)


def tier_progress(points: int, tiers: Sequence[TierConfig]) -> TierProgress:
    ordered = sort_tiers(tiers)
    current = resolve_tier(points, ordered)
    index = ordered.index(current)
    if index == len(ordered) - 1:
        return TierProgress(points_to_next_tier=0, next_tier_name=None, progress_percentage=Decimal("100"))

    upcoming = ordered[index + 1]
    span = max(upcoming.min_points - current.min_points, 1)
    raw = Decimal(points - current.min_points) * Decimal(100) / Decimal(span)
    progress = min(max(raw, Decimal("0")), Decimal("100")).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    return TierProgress(
        points_to_next_tier=max(upcoming.min_points - points, 0),
        next_tier_name=upcoming.name,
        progress_percentage=progress,
    )


def validate_tier_configuration(tiers: Sequence[TierConfig]) -> list[str]:
    """Return human readable problems with a tier configuration."""

    if not tiers:
        return ["Tier configuration must contain at least one tier"]

    errors: list[str] = []
    names = [tier.name for tier in tiers]
    if any(not name or not name.strip() for name in names):
        errors.append("Every tier requires a name")
    if len(set(names)) != len(names):
        errors.append("Duplicate tier names found")

    ordered = sort_tiers(tiers)
    if ordered[0].min_points != 0:
        errors.append(f"Lowest tier {ordered[0].name} must start at 0 points")

    previous: TierConfig | None = None
    for tier in ordered:
        if tier.min_points < 0:
            errors.append(f"Tier {tier.name} has a negative threshold")
        if previous is not None and tier.min_points == previous.min_points:
            errors.append(f"Tiers {previous.name} and {tier.name} share threshold {tier.min_points}")
        if not Decimal("0") <= tier.discount_percentage <= Decimal("100"):
            errors.append(f"Tier {tier.name} has invalid discount percentage")
        previous = tier
    return errors


__all__ = [
    "DEFAULT_TIERS",
    "TierConfig",
    "TierProgress",
    "find_tier",
    "resolve_tier",
    "sort_tiers",
    "tier_progress",
    "tier_rank",
    "validate_tier_configuration",
]
