"""Loyalty service exports."""

from .errors import (  # noqa: F401
    ConcurrencyConflictError,
    IneligibleTierError,
    InsufficientPointsError,
    LedgerIntegrityError,
    LoyaltyConfigurationError,
    LoyaltyError,
    NotFoundError,
    RewardUnavailableError,
    ValidationError,
)
from .events import (  # noqa: F401
    BookingCompleted,
    LoyaltyEventPublisher,
    PointsAdjusted,
    RewardRedeemed,
    TierChanged,
)
from .loyalty_service import (  # noqa: F401
    EarnResult,
    LoyaltyService,
    MemberSnapshot,
    RedemptionOutcome,
    decode_time_uuid_cursor,
    encode_time_uuid_cursor,
)
from .programs import (  # noqa: F401
    LoyaltyProgramService,
    ProgramSettings,
    RewardDraft,
    default_program_settings,
)
from .redemption import RedemptionVerdict, can_redeem  # noqa: F401
from .roi import AnalyticsWindow, LoyaltyAnalyticsService, ROIResult, compute_roi  # noqa: F401
from .tiers import TierConfig, resolve_tier, tier_progress  # noqa: F401
