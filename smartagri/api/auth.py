"""
API authentication.

REST endpoints take the key from the ``X-API-KEY`` header; the alert
stream takes it from the ``api_key`` query parameter since browsers cannot
set headers on WebSocket upgrades. With no keys configured every request
is allowed (dev mode).
"""

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

from smartagri.config.settings import get_settings

# API key header scheme
api_key_header = APIKeyHeader(name="X-API-KEY", auto_error=False)


def api_key_allowed(configured_keys: str | None, api_key: str | None) -> bool:
    """
    Check a key against a comma-separated list of configured keys.

    Args:
        configured_keys: The ``API_KEYS`` setting; empty means dev mode
        api_key: Key presented by the client

    Returns:
        True if the key is valid or no keys are configured
    """
    if not configured_keys:
        return True

    if api_key is None:
        return False

    valid_keys = [k.strip() for k in configured_keys.split(",") if k.strip()]
    return bool(valid_keys) and api_key in valid_keys


async def verify_api_key(api_key: str | None = Security(api_key_header)) -> str:
    """
    Verify API key from X-API-KEY header.

    Raises:
        HTTPException: If API key is missing or invalid
    """
    settings = get_settings()

    if not settings.api_keys:
        return "dev-mode"

    if api_key is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key. Provide X-API-KEY header.",
        )

    if not api_key_allowed(settings.api_keys, api_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )

    return api_key
