"""Program configuration, reward catalog, and quote helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hotel_loyalty.core.settings import settings
from hotel_loyalty.models.loyalty import (
    LoyaltyMember,
    LoyaltyProgram,
    LoyaltyReward,
    LoyaltyRewardCategory,
    LoyaltyTier,
)
from hotel_loyalty.services.loyalty.clock import ensure_utc
from hotel_loyalty.services.loyalty.errors import (
    LoyaltyConfigurationError,
    NotFoundError,
    ValidationError,
)
from hotel_loyalty.services.loyalty.loyalty_service import LoyaltyService
from hotel_loyalty.services.loyalty.redemption import RedemptionVerdict, can_redeem
from hotel_loyalty.services.loyalty.rules import (
    DEFAULT_SERVICE_MULTIPLIERS,
    RedemptionRules,
    apply_loyalty_discount,
    calculate_redemption_value,
)
from hotel_loyalty.services.loyalty.tiers import (
    DEFAULT_TIERS,
    TierConfig,
    find_tier,
    sort_tiers,
    validate_tier_configuration,
)

THRESHOLD_CHANGE_REASON = "Tier threshold changed by admin"

REWARD_MUTABLE_FIELDS = frozenset(
    {
        "name",
        "description",
        "category",
        "points_cost",
        "value",
        "required_tier",
        "validity_days",
        "usage_limit",
        "available_from",
        "available_until",
        "terms_and_conditions",
        "image_url",
        "is_active",
    }
)


@dataclass
class ProgramSettings:
    """Admin-editable program configuration."""

    tiers: Sequence[TierConfig]
    points_per_dollar: Decimal = Decimal("1")
    points_per_night: int = 50
    service_multipliers: Mapping[str, Decimal] = field(default_factory=lambda: dict(DEFAULT_SERVICE_MULTIPLIERS))
    points_to_money_ratio: Decimal = Decimal("100")
    minimum_redemption: int = 500
    maximum_redemption: int | None = None
    expiration_months: int = 12
    is_active: bool = True


@dataclass
class ProgramUpdateResult:
    program: LoyaltyProgram
    created: bool
    tier_updates: int


@dataclass
class RewardDraft:
    name: str
    points_cost: int
    category: LoyaltyRewardCategory = LoyaltyRewardCategory.AMENITY
    description: str | None = None
    value: Decimal = Decimal("0")
    required_tier: str | None = None
    validity_days: int = 30
    usage_limit: int | None = None
    available_from: datetime | None = None
    available_until: datetime | None = None
    terms_and_conditions: str | None = None
    image_url: str | None = None
    is_active: bool = True


@dataclass
class RedemptionQuote:
    points: int
    value: Decimal
    eligible: bool
    minimum_redemption: int
    maximum_redemption: int | None
    points_to_money_ratio: Decimal


@dataclass
class DiscountQuote:
    amount: Decimal
    tier: str | None
    discount_percentage: Decimal
    discount_amount: Decimal
    discounted_amount: Decimal


def default_program_settings() -> ProgramSettings:
    """Settings applied to a hotel that has not customised its program."""

    return ProgramSettings(
        tiers=list(DEFAULT_TIERS),
        expiration_months=settings.loyalty_default_expiration_months,
    )


def validate_program_settings(program_settings: ProgramSettings) -> list[str]:
    errors = validate_tier_configuration(list(program_settings.tiers))
    if program_settings.points_per_dollar < 0:
        errors.append("Points per dollar cannot be negative")
    if program_settings.points_per_night < 0:
        errors.append("Points per night cannot be negative")
    for category, multiplier in program_settings.service_multipliers.items():
        if Decimal(str(multiplier)) < 0:
            errors.append(f"Multiplier for {category} cannot be negative")
    if program_settings.points_to_money_ratio <= 0:
        errors.append("Points to money ratio must be positive")
    if program_settings.minimum_redemption < 0:
        errors.append("Minimum redemption cannot be negative")
    if (
        program_settings.maximum_redemption is not None
        and program_settings.maximum_redemption < program_settings.minimum_redemption
    ):
        errors.append("Maximum redemption must not be below the minimum")
    if program_settings.expiration_months < 0:
        errors.append("Expiration months cannot be negative")
    return errors


class LoyaltyProgramService:
    """Admin-side program and reward catalog management."""

    def __init__(self, db_session: AsyncSession, *, loyalty: LoyaltyService | None = None) -> None:
        self._db = db_session
        self._loyalty = loyalty or LoyaltyService(db_session)

    async def get_program(self, hotel_id: UUID) -> LoyaltyProgram:
        return await self._loyalty.get_program(hotel_id)

    async def get_public_program(self, hotel_id: UUID) -> LoyaltyProgram:
        program = await self._loyalty.find_program(hotel_id)
        if program is None or not program.is_active:
            raise NotFoundError(f"No active loyalty program for hotel {hotel_id}")
        return program

    async def configure_program(self, hotel_id: UUID, program_settings: ProgramSettings) -> ProgramUpdateResult:
        """Create or update a hotel's program.

        Threshold edits reclassify every member; the count of members whose
        tier moved is returned as ``tier_updates``.
        """

        errors = validate_program_settings(program_settings)
        if errors:
            raise LoyaltyConfigurationError("Invalid loyalty program configuration", errors)

        tiers = sort_tiers(program_settings.tiers)
        program = await self._loyalty.find_program(hotel_id)
        created = program is None
        if program is None:
            program = LoyaltyProgram(hotel_id=hotel_id, tiers=[])
            self._db.add(program)
            previous_layout: list[tuple[str, int]] = []
        else:
            previous_layout = [(tier.name, int(tier.min_points)) for tier in program.tiers]

        self._apply_rules(program, program_settings)
        self._sync_tiers(program, tiers)
        await self._db.commit()

        new_layout = [(tier.name, tier.min_points) for tier in tiers]
        tier_updates = 0
        if not created and sorted(previous_layout, key=lambda item: item[1]) != new_layout:
            tier_updates = await self._loyalty.reclassify_members(hotel_id, reason=THRESHOLD_CHANGE_REASON)

        program = await self._loyalty.get_program(hotel_id)
        logger.info(
            "Saved loyalty program",
            hotel_id=str(hotel_id),
            created=created,
            tiers=[tier.name for tier in tiers],
            tier_updates=tier_updates,
        )
        return ProgramUpdateResult(program=program, created=created, tier_updates=tier_updates)

    @staticmethod
    def _apply_rules(program: LoyaltyProgram, program_settings: ProgramSettings) -> None:
        program.points_per_dollar = Decimal(str(program_settings.points_per_dollar))
        program.points_per_night = program_settings.points_per_night
        program.service_multipliers = {
            str(key).strip().lower(): float(value) for key, value in program_settings.service_multipliers.items()
        }
        program.points_to_money_ratio = Decimal(str(program_settings.points_to_money_ratio))
        program.minimum_redemption = program_settings.minimum_redemption
        program.maximum_redemption = program_settings.maximum_redemption
        program.expiration_months = program_settings.expiration_months
        program.is_active = program_settings.is_active

    @staticmethod
    def _sync_tiers(program: LoyaltyProgram, tiers: Sequence[TierConfig]) -> None:
        # Rows are matched by name so the (program_id, name) constraint never trips.
        existing = {tier.name: tier for tier in program.tiers}
        wanted = {tier.name for tier in tiers}
        for stale in [tier for name, tier in existing.items() if name not in wanted]:
            program.tiers.remove(stale)
        for config in tiers:
            row = existing.get(config.name)
            if row is None:
                row = LoyaltyTier(name=config.name)
                program.tiers.append(row)
            row.min_points = config.min_points
            row.discount_percentage = config.discount_percentage
            row.benefits = list(config.benefits)

    # Rewards

    async def list_rewards(
        self,
        hotel_id: UUID,
        *,
        include_inactive: bool = False,
        category: LoyaltyRewardCategory | None = None,
    ) -> list[LoyaltyReward]:
        stmt = select(LoyaltyReward).where(LoyaltyReward.hotel_id == hotel_id)
        if not include_inactive:
            stmt = stmt.where(LoyaltyReward.is_active.is_(True))
        if category is not None:
            stmt = stmt.where(LoyaltyReward.category == category)
        stmt = stmt.order_by(LoyaltyReward.points_cost.asc(), LoyaltyReward.name.asc())
        result = await self._db.execute(stmt.execution_options(populate_existing=True))
        return list(result.scalars().all())

    async def get_reward(self, hotel_id: UUID, reward_id: UUID) -> LoyaltyReward:
        stmt = (
            select(LoyaltyReward)
            .where(LoyaltyReward.id == reward_id, LoyaltyReward.hotel_id == hotel_id)
            .execution_options(populate_existing=True)
        )
        reward = (await self._db.execute(stmt)).scalar_one_or_none()
        if reward is None:
            raise NotFoundError(f"Reward {reward_id} not found")
        return reward

    async def create_reward(self, hotel_id: UUID, draft: RewardDraft) -> LoyaltyReward:
        program = await self._loyalty.get_program(hotel_id)
        reward = LoyaltyReward(hotel_id=hotel_id, times_redeemed=0, total_value_redeemed=Decimal("0"))
        for name in REWARD_MUTABLE_FIELDS:
            setattr(reward, name, getattr(draft, name))
        self._validate_reward(reward, program)
        self._db.add(reward)
        await self._db.commit()
        logger.info("Created loyalty reward", hotel_id=str(hotel_id), reward_id=str(reward.id), name=reward.name)
        return reward

    async def update_reward(self, hotel_id: UUID, reward_id: UUID, changes: Mapping[str, Any]) -> LoyaltyReward:
        unknown = set(changes) - REWARD_MUTABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unsupported reward fields: {', '.join(sorted(unknown))}")
        program = await self._loyalty.get_program(hotel_id)
        reward = await self.get_reward(hotel_id, reward_id)
        for name, value in changes.items():
            setattr(reward, name, value)
        try:
            self._validate_reward(reward, program)
        except ValidationError:
            await self._db.rollback()
            raise
        await self._db.commit()
        logger.info("Updated loyalty reward", reward_id=str(reward_id), fields=sorted(changes))
        return reward

    async def deactivate_reward(self, hotel_id: UUID, reward_id: UUID) -> LoyaltyReward:
        reward = await self.get_reward(hotel_id, reward_id)
        reward.is_active = False
        await self._db.commit()
        logger.info("Deactivated loyalty reward", reward_id=str(reward_id))
        return reward

    @staticmethod
    def _validate_reward(reward: LoyaltyReward, program: LoyaltyProgram) -> None:
        errors: list[str] = []
        if not reward.name or not str(reward.name).strip():
            errors.append("Reward name is required")
        if reward.points_cost is None or int(reward.points_cost) <= 0:
            errors.append("Reward points cost must be positive")
        if reward.value is not None and Decimal(str(reward.value)) < 0:
            errors.append("Reward value cannot be negative")
        if reward.validity_days is not None and int(reward.validity_days) < 1:
            errors.append("Reward validity must be at least one day")
        if reward.usage_limit is not None and int(reward.usage_limit) < 1:
            errors.append("Usage limit must be at least one")
        if reward.required_tier:
            tiers = LoyaltyService.tier_configs(program)
            if find_tier(reward.required_tier, tiers) is None:
                errors.append(f"Tier {reward.required_tier} is not configured for this program")
        starts = ensure_utc(reward.available_from)
        ends = ensure_utc(reward.available_until)
        if starts is not None and ends is not None and ends <= starts:
            errors.append("Reward availability window ends before it starts")
        if errors:
            raise ValidationError("; ".join(errors))

    async def list_rewards_for_member(
        self,
        member: LoyaltyMember,
        *,
        now: datetime | None = None,
    ) -> list[tuple[LoyaltyReward, RedemptionVerdict]]:
        """Active rewards paired with the member's eligibility verdict."""

        program = await self._loyalty.get_program(member.hotel_id)
        tiers = LoyaltyService.tier_configs(program)
        rewards = await self.list_rewards(member.hotel_id)
        return [(reward, can_redeem(member, reward, tiers, now=now)) for reward in rewards]

    # Quotes

    async def redemption_quote(self, hotel_id: UUID, points: int) -> RedemptionQuote:
        if points < 0:
            raise ValidationError("Points cannot be negative")
        program = await self.get_public_program(hotel_id)
        rules = RedemptionRules.from_program(program)
        value = calculate_redemption_value(points, rules)
        return RedemptionQuote(
            points=points,
            value=value,
            eligible=points >= rules.minimum_redemption,
            minimum_redemption=rules.minimum_redemption,
            maximum_redemption=rules.maximum_redemption,
            points_to_money_ratio=rules.points_to_money_ratio,
        )

    async def discount_quote(self, member: LoyaltyMember, amount: Decimal) -> DiscountQuote:
        if amount < 0:
            raise ValidationError("Amount cannot be negative")
        program = await self._loyalty.get_program(member.hotel_id)
        tier = find_tier(member.current_tier, LoyaltyService.tier_configs(program))
        percentage = tier.discount_percentage if tier and program.is_active else Decimal("0")
        discounted, discount = apply_loyalty_discount(amount, percentage)
        return DiscountQuote(
            amount=Decimal(str(amount)),
            tier=member.current_tier,
            discount_percentage=percentage,
            discount_amount=discount,
            discounted_amount=discounted,
        )


__all__ = [
    "DiscountQuote",
    "LoyaltyProgramService",
    "ProgramSettings",
    "ProgramUpdateResult",
    "RedemptionQuote",
    "RewardDraft",
    "THRESHOLD_CHANGE_REASON",
    "default_program_settings",
    "validate_program_settings",
]
