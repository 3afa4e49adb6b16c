from fastapi import Header, HTTPException, status

from hotel_loyalty.core.settings import settings


def _check_api_key(expected: str, provided: str) -> None:
    if not expected:
        return

    if provided != expected:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )


async def require_admin_api_key(x_api_key: str = Header("", alias="X-API-Key")) -> None:
    _check_api_key(settings.loyalty_admin_api_key, x_api_key)


async def require_events_api_key(x_api_key: str = Header("", alias="X-API-Key")) -> None:
    _check_api_key(settings.loyalty_events_api_key, x_api_key)
