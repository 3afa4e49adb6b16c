"""Translate loyalty domain errors into HTTP responses."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from hotel_loyalty.services.loyalty.errors import (
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

# Ordered so subclasses match before their parents.
_STATUS_CODES: tuple[tuple[type[LoyaltyError], int], ...] = (
    (LoyaltyConfigurationError, status.HTTP_400_BAD_REQUEST),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InsufficientPointsError, status.HTTP_409_CONFLICT),
    (IneligibleTierError, status.HTTP_403_FORBIDDEN),
    (RewardUnavailableError, status.HTTP_409_CONFLICT),
    (ConcurrencyConflictError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (LedgerIntegrityError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def status_code_for(exc: LoyaltyError) -> int:
    for error_type, code in _STATUS_CODES:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_payload(exc: LoyaltyError) -> dict[str, Any]:
    payload: dict[str, Any] = {"detail": str(exc), "code": exc.code}
    if isinstance(exc, InsufficientPointsError):
        payload["pointsNeeded"] = exc.points_needed
        payload["availablePoints"] = exc.available_points
    elif isinstance(exc, IneligibleTierError):
        payload["currentTier"] = exc.current_tier
        payload["requiredTier"] = exc.required_tier
    elif isinstance(exc, LoyaltyConfigurationError) and exc.errors:
        payload["errors"] = list(exc.errors)
    return payload


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(LoyaltyError)
    async def loyalty_error_handler(request: Request, exc: LoyaltyError) -> JSONResponse:  # type: ignore[override]
        status_code = status_code_for(exc)
        if status_code >= 500:
            logger.warning(
                "Loyalty request failed",
                path=request.url.path,
                code=exc.code,
                error=str(exc),
            )
        return JSONResponse(status_code=status_code, content=error_payload(exc))


__all__ = ["error_payload", "register_exception_handlers", "status_code_for"]
