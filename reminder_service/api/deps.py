import logging
import secrets
from typing import Optional

from fastapi import Header, HTTPException, status

from reminder_service.core.config import settings

logger = logging.getLogger(__name__)


def verify_api_key(api_key: str) -> bool:
    return any(secrets.compare_digest(api_key, valid) for valid in settings.API_KEYS)


def verify_api_key_dependency(
    x_api_key: Optional[str] = Header(None),
    authorization: Optional[str] = Header(None)
) -> bool:
    """
    Dependency to verify API key for specific endpoints
    """
    if not settings.REQUIRE_API_KEY:
        return True

    # Extract API key from headers
    api_key = None
    if x_api_key:
        api_key = x_api_key
    elif authorization and authorization.startswith("Bearer "):
        api_key = authorization.split(" ")[1]

    if not api_key or not verify_api_key(api_key):
        logger.warning("Rejected request with invalid or missing API key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )

    return True


def current_group_id(x_group_id: int = Header(...)) -> int:
    """Tenant scope of reminder routes, set by the authenticating gateway."""
    return x_group_id


def current_user_id(x_user_id: int = Header(...)) -> int:
    return x_user_id
