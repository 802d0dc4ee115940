"""
API key authentication dependency.

Optional: with API_AUTH_ENABLED=true every route except /health requires an
X-API-Key header equal to API_KEY.
"""

import hmac
from typing import Optional

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

from ...config import API_AUTH_ENABLED, API_KEY

api_key_header = APIKeyHeader(
    name="X-API-Key",
    auto_error=False,
    description="API key (required when API_AUTH_ENABLED=true)",
)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "ApiKey"},
    )


async def verify_api_key(
    api_key: Optional[str] = Security(api_key_header),
) -> Optional[str]:
    """
    Check the X-API-Key header when authentication is enabled.

    Raises:
        HTTPException: 401 if the key is missing or does not match

    Returns:
        The API key if valid, None if auth is disabled
    """
    if not API_AUTH_ENABLED:
        return None
    if not api_key:
        raise _unauthorized("Missing API key. Provide X-API-Key header.")
    if not hmac.compare_digest(api_key, API_KEY):
        raise _unauthorized("Invalid API key")
    return api_key
