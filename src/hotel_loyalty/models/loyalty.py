"""Loyalty program, membership, ledger, and reward models."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from hotel_loyalty.db.base import Base


class LoyaltyProgram(Base):
    """Per-hotel loyalty configuration and running statistics."""

    __tablename__ = "loyalty_programs"
    __table_args__ = (UniqueConstraint("hotel_id", name="uq_loyalty_programs_hotel_id"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    hotel_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    points_per_dollar = Column(Numeric(10, 4), nullable=False, default=1, server_default="1")
    points_per_night = Column(Integer, nullable=False, default=50, server_default="50")
    service_multipliers = Column(JSON, nullable=False, default=dict)
    points_to_money_ratio = Column(Numeric(10, 4), nullable=False, default=100, server_default="100")
    minimum_redemption = Column(Integer, nullable=False, default=500, server_default="500")
    maximum_redemption = Column(Integer, nullable=True)
    expiration_months = Column(Integer, nullable=False, default=12, server_default="12")
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    total_points_issued = Column(Integer, nullable=False, default=0, server_default="0")
    total_points_redeemed = Column(Integer, nullable=False, default=0, server_default="0")
    total_points_expired = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    tiers = relationship(
        "LoyaltyTier",
        back_populates="program",
        cascade="all, delete-orphan",
        order_by="LoyaltyTier.min_points",
        lazy="selectin",
    )


class LoyaltyTier(Base):
    """Tier threshold row belonging to a program."""

    __tablename__ = "loyalty_tiers"
    __table_args__ = (UniqueConstraint("program_id", "name", name="uq_loyalty_tiers_program_name"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    program_id = Column(
        UUID(as_uuid=True), ForeignKey("loyalty_programs.id", ondelete="CASCADE"), nullable=False
    )
    name = Column(String, nullable=False)
    min_points = Column(Integer, nullable=False)
    discount_percentage = Column(Numeric(5, 2), nullable=False, default=0, server_default="0")
    benefits = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    program = relationship("LoyaltyProgram", back_populates="tiers")


class LoyaltyMember(Base):
    """Running balances and tier for one guest at one hotel."""

    __tablename__ = "loyalty_members"
    __table_args__ = (
        UniqueConstraint("hotel_id", "guest_id", name="uq_loyalty_members_hotel_guest"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    hotel_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    guest_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    guest_first_name = Column(String, nullable=True)
    guest_last_name = Column(String, nullable=True)
    guest_email = Column(String, nullable=True)
    total_points = Column(Integer, nullable=False, default=0, server_default="0")
    available_points = Column(Integer, nullable=False, default=0, server_default="0")
    lifetime_points_earned = Column(Integer, nullable=False, default=0, server_default="0")
    lifetime_points_redeemed = Column(Integer, nullable=False, default=0, server_default="0")
    lifetime_points_expired = Column(Integer, nullable=False, default=0, server_default="0")
    current_tier = Column(String, nullable=True)
    next_tier_name = Column(String, nullable=True)
    points_to_next_tier = Column(Integer, nullable=False, default=0, server_default="0")
    progress_percentage = Column(Numeric(5, 1), nullable=False, default=0, server_default="0")
    lifetime_spending = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    total_nights_stayed = Column(Integer, nullable=False, default=0, server_default="0")
    join_date = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    last_activity = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __mapper_args__ = {"version_id_col": version}

    ledger_entries = relationship(
        "LoyaltyLedgerEntry", back_populates="member", cascade="all, delete-orphan"
    )
    point_lots = relationship(
        "LoyaltyPointLot", back_populates="member", cascade="all, delete-orphan"
    )
    redemptions = relationship(
        "LoyaltyRedemption", back_populates="member", cascade="all, delete-orphan"
    )
    tier_changes = relationship(
        "LoyaltyTierChange", back_populates="member", cascade="all, delete-orphan"
    )


class LoyaltyLedgerEntryType(str, Enum):
    """Point-affecting event kinds recorded on the ledger."""

    EARNED = "EARNED"
    ADJUSTED = "ADJUSTED"
    REDEEMED = "REDEEMED"
    EXPIRED = "EXPIRED"


class LoyaltyLedgerEntry(Base):
    """Append-only record of a signed point movement."""

    __tablename__ = "loyalty_ledger_entries"
    __table_args__ = (
        Index("ix_loyalty_ledger_entries_member_occurred", "member_id", "occurred_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    member_id = Column(
        UUID(as_uuid=True), ForeignKey("loyalty_members.id", ondelete="CASCADE"), nullable=False
    )
    entry_type = Column(SqlEnum(LoyaltyLedgerEntryType, name="loyalty_ledger_entry_type"), nullable=False)
    amount = Column(Integer, nullable=False)
    reason = Column(String, nullable=True)
    note = Column(Text, nullable=True)
    category = Column(String, nullable=True)
    booking_reference = Column(String, nullable=True)
    spend_amount = Column(Numeric(14, 2), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    occurred_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    member = relationship("LoyaltyMember", back_populates="ledger_entries")


class LoyaltyPointLotStatus(str, Enum):
    """Lifecycle of a credited lot of points."""

    OPEN = "OPEN"
    CONSUMED = "CONSUMED"
    EXPIRED = "EXPIRED"


class LoyaltyPointLot(Base):
    """Tracks how much of a single credit remains unspent."""

    __tablename__ = "loyalty_point_lots"
    __table_args__ = (
        Index("ix_loyalty_point_lots_member_issued", "member_id", "issued_at"),
        Index("ix_loyalty_point_lots_status_expires", "status", "expires_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    member_id = Column(
        UUID(as_uuid=True), ForeignKey("loyalty_members.id", ondelete="CASCADE"), nullable=False
    )
    ledger_entry_id = Column(
        UUID(as_uuid=True), ForeignKey("loyalty_ledger_entries.id", ondelete="SET NULL"), nullable=True
    )
    points = Column(Integer, nullable=False)
    consumed_points = Column(Integer, nullable=False, default=0, server_default="0")
    expired_points = Column(Integer, nullable=False, default=0, server_default="0")
    issued_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(
        SqlEnum(LoyaltyPointLotStatus, name="loyalty_point_lot_status"),
        nullable=False,
        default=LoyaltyPointLotStatus.OPEN,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    member = relationship("LoyaltyMember", back_populates="point_lots")
    ledger_entry = relationship("LoyaltyLedgerEntry")

    @property
    def remaining_points(self) -> int:
        return max(int(self.points or 0) - int(self.consumed_points or 0) - int(self.expired_points or 0), 0)


class LoyaltyRewardCategory(str, Enum):
    """Catalog groupings for rewards."""

    DISCOUNT = "DISCOUNT"
    UPGRADE = "UPGRADE"
    AMENITY = "AMENITY"
    SERVICE = "SERVICE"
    VOUCHER = "VOUCHER"
    EXPERIENCE = "EXPERIENCE"


class LoyaltyReward(Base):
    """Redeemable catalog item offered by a hotel."""

    __tablename__ = "loyalty_rewards"
    __table_args__ = (
        Index("ix_loyalty_rewards_hotel_active", "hotel_id", "is_active"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    hotel_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    category = Column(
        SqlEnum(LoyaltyRewardCategory, name="loyalty_reward_category"),
        nullable=False,
        default=LoyaltyRewardCategory.AMENITY,
    )
    points_cost = Column(Integer, nullable=False)
    value = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    required_tier = Column(String, nullable=True)
    validity_days = Column(Integer, nullable=False, default=30, server_default="30")
    usage_limit = Column(Integer, nullable=True)
    times_redeemed = Column(Integer, nullable=False, default=0, server_default="0")
    total_value_redeemed = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    available_from = Column(DateTime(timezone=True), nullable=True)
    available_until = Column(DateTime(timezone=True), nullable=True)
    terms_and_conditions = Column(Text, nullable=True)
    image_url = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    redemptions = relationship("LoyaltyRedemption", back_populates="reward")


class LoyaltyRedemption(Base):
    """Redemption history row written when a member spends points on a reward."""

    __tablename__ = "loyalty_redemptions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    member_id = Column(
        UUID(as_uuid=True), ForeignKey("loyalty_members.id", ondelete="CASCADE"), nullable=False
    )
    reward_id = Column(UUID(as_uuid=True), ForeignKey("loyalty_rewards.id"), nullable=True)
    reward_name = Column(String, nullable=False)
    points_cost = Column(Integer, nullable=False)
    value_redeemed = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    redeemed_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    valid_until = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    member = relationship("LoyaltyMember", back_populates="redemptions")
    reward = relationship("LoyaltyReward", back_populates="redemptions")


class LoyaltyTierChange(Base):
    """Audit trail of tier transitions."""

    __tablename__ = "loyalty_tier_changes"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    member_id = Column(
        UUID(as_uuid=True), ForeignKey("loyalty_members.id", ondelete="CASCADE"), nullable=False
    )
    old_tier = Column(String, nullable=True)
    new_tier = Column(String, nullable=False)
    reason = Column(String, nullable=False)
    changed_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    member = relationship("LoyaltyMember", back_populates="tier_changes")
