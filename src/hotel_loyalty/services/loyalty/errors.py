"""Exception taxonomy raised by loyalty workflows."""

from __future__ import annotations


class LoyaltyError(RuntimeError):
    """Base exception for loyalty failures."""

    code = "loyalty_error"


class ValidationError(LoyaltyError):
    """Raised for malformed or missing input."""

    code = "validation_error"


class LoyaltyConfigurationError(ValidationError):
    """Raised when a tier configuration cannot resolve a tier."""

    code = "configuration_error"

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [])


class NotFoundError(LoyaltyError):
    """Raised when a member, program, or reward does not exist."""

    code = "not_found"


class InsufficientPointsError(LoyaltyError):
    """Raised when a decrement exceeds the available balance."""

    code = "insufficient_points"

    def __init__(self, points_needed: int, *, available_points: int, requested_points: int) -> None:
        super().__init__(f"Insufficient points: {points_needed} more needed")
        self.points_needed = points_needed
        self.available_points = available_points
        self.requested_points = requested_points


class IneligibleTierError(LoyaltyError):
    """Raised when a member's tier ranks below a reward requirement."""

    code = "ineligible_tier"

    def __init__(self, current_tier: str | None, required_tier: str) -> None:
        super().__init__(f"Requires {required_tier} tier or higher")
        self.current_tier = current_tier
        self.required_tier = required_tier


class RewardUnavailableError(LoyaltyError):
    """Raised for inactive rewards, closed availability windows, or exhausted usage limits."""

    code = "reward_unavailable"


class LedgerIntegrityError(LoyaltyError):
    """Raised when point lots no longer cover a member's spendable balance."""

    code = "ledger_integrity"

    def __init__(self, member_id: object, *, requested: int, uncovered: int) -> None:
        super().__init__(f"Point lots for member {member_id} cover {requested - uncovered} of {requested} points")
        self.member_id = member_id
        self.requested = requested
        self.uncovered = uncovered


class ConcurrencyConflictError(LoyaltyError):
    """Raised when a member mutation keeps losing optimistic version checks."""

    code = "concurrency_conflict"

    def __init__(self, member_id: object, attempts: int) -> None:
        super().__init__(f"Loyalty member {member_id} was modified concurrently; gave up after {attempts} attempts")
        self.member_id = member_id
        self.attempts = attempts


__all__ = [
    "ConcurrencyConflictError",
    "IneligibleTierError",
    "InsufficientPointsError",
    "LedgerIntegrityError",
    "LoyaltyConfigurationError",
    "LoyaltyError",
    "NotFoundError",
    "RewardUnavailableError",
    "ValidationError",
]
