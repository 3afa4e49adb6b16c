"""Earning, redemption-value, and discount rules for a loyalty program."""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Any, Mapping

DEFAULT_SERVICE_MULTIPLIERS: dict[str, Decimal] = {
    "dining": Decimal("1"),
    "transportation": Decimal("1.5"),
    "housekeeping": Decimal("1"),
    "laundry": Decimal("1"),
    "tourism": Decimal("2"),
    "spa": Decimal("1.5"),
}

CATEGORY_ALIASES: dict[str, str] = {
    "restaurant": "dining",
    "food": "dining",
    "transport": "transportation",
    "tour": "tourism",
}

_CENT = Decimal("0.01")


@dataclass(frozen=True, slots=True)
class PointsRules:
    points_per_dollar: Decimal = Decimal("1")
    points_per_night: int = 50
    service_multipliers: Mapping[str, Decimal] = field(default_factory=lambda: dict(DEFAULT_SERVICE_MULTIPLIERS))

    @classmethod
    def from_program(cls, program: Any) -> "PointsRules":
        multipliers = {
            str(key).lower(): Decimal(str(value))
            for key, value in (program.service_multipliers or {}).items()
        }
        return cls(
            points_per_dollar=Decimal(str(program.points_per_dollar or 0)),
            points_per_night=int(program.points_per_night or 0),
            service_multipliers=multipliers,
        )

    def multiplier_for(self, category: str | None) -> Decimal:
        key = normalize_category(category)
        if key is None:
            return Decimal("1")
        return Decimal(str(self.service_multipliers.get(key, Decimal("1"))))


@dataclass(frozen=True, slots=True)
class RedemptionRules:
    points_to_money_ratio: Decimal = Decimal("100")
    minimum_redemption: int = 500
    maximum_redemption: int | None = None

    @classmethod
    def from_program(cls, program: Any) -> "RedemptionRules":
        return cls(
            points_to_money_ratio=Decimal(str(program.points_to_money_ratio or 0)),
            minimum_redemption=int(program.minimum_redemption or 0),
            maximum_redemption=program.maximum_redemption,
        )


def normalize_category(category: str | None) -> str | None:
    if not category:
        return None
    key = category.strip().lower()
    return CATEGORY_ALIASES.get(key, key)


def calculate_points_earned(
    amount: Decimal | float | int,
    category: str | None,
    rules: PointsRules,
    *,
    program_active: bool = True,
) -> int:
    """floor(amount x points_per_dollar x multiplier), never negative."""

    if not program_active:
        return 0
    raw = Decimal(str(amount)) * rules.points_per_dollar * rules.multiplier_for(category)
    points = int(raw.to_integral_value(rounding=ROUND_FLOOR))
    return max(points, 0)


def calculate_redemption_value(points: int, rules: RedemptionRules) -> Decimal:
    """Monetary value of ``points``; zero below the minimum, capped at the maximum."""

    if points < rules.minimum_redemption or rules.points_to_money_ratio <= 0:
        return Decimal("0.00")
    if rules.maximum_redemption is not None:
        points = min(points, rules.maximum_redemption)
    value = Decimal(points) / rules.points_to_money_ratio
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def apply_loyalty_discount(amount: Decimal, discount_percentage: Decimal) -> tuple[Decimal, Decimal]:
    """Return ``(discounted_price, discount_amount)`` for a tier discount."""

    amount = Decimal(str(amount))
    if discount_percentage <= 0 or amount <= 0:
        return amount.quantize(_CENT, rounding=ROUND_HALF_UP), Decimal("0.00")
    discount = (amount * Decimal(str(discount_percentage)) / Decimal(100)).quantize(_CENT, rounding=ROUND_HALF_UP)
    return (amount - discount).quantize(_CENT, rounding=ROUND_HALF_UP), discount


def add_months(moment: datetime, months: int) -> datetime:
    """Calendar month arithmetic clamped to the last day of the target month."""

    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def lot_expiry(issued_at: datetime, expiration_months: int) -> datetime | None:
    if expiration_months <= 0:
        return None
    return add_months(issued_at, expiration_months)


__all__ = [
    "CATEGORY_ALIASES",
    "DEFAULT_SERVICE_MULTIPLIERS",
    "PointsRules",
    "RedemptionRules",
    "add_months",
    "apply_loyalty_discount",
    "calculate_points_earned",
    "calculate_redemption_value",
    "lot_expiry",
    "normalize_category",
]
