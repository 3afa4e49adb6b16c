"""SQLAlchemy models package."""

from .loyalty import (  # noqa: F401
    LoyaltyLedgerEntry,
    LoyaltyLedgerEntryType,
    LoyaltyMember,
    LoyaltyPointLot,
    LoyaltyPointLotStatus,
    LoyaltyProgram,
    LoyaltyRedemption,
    LoyaltyReward,
    LoyaltyRewardCategory,
    LoyaltyTier,
    LoyaltyTierChange,
)
