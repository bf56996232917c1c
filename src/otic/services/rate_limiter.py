"""Rate limiting for auth endpoints."""

import logging

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from src.otic.config import settings

logger = logging.getLogger(__name__)


def get_client_key(request: Request) -> str:
    """
    Key requests by client address.

    Credential endpoints are called before any identity exists, so limits
    are per IP rather than per subject.
    """
    return f"ip:{get_remote_address(request)}"


limiter = Limiter(
    key_func=get_client_key,
    default_limits=[],  # Limits are applied per endpoint
    storage_uri="memory://",
    enabled=settings.rate_limit_enabled,
)


class RateLimitTiers:
    """
    Rate limit tiers for auth endpoint categories.

    Credential and recovery endpoints are strict: they are the surface for
    password guessing and for probing which emails have deleted accounts.
    """

    # Reads of the current state
    DEFAULT = ["100 per minute", "1000 per hour"]

    # Sign-in, sign-up, OAuth start
    CREDENTIALS = ["10 per minute", "50 per hour"]

    # Recovery check and recover
    RECOVERY = ["5 per minute", "20 per hour"]

    # Sign-out, profile retry
    WRITE = ["30 per minute", "200 per hour"]


# Decorated endpoints must take a 'request: Request' parameter
default_rate_limit = limiter.limit(";".join(RateLimitTiers.DEFAULT))
credentials_rate_limit = limiter.limit(";".join(RateLimitTiers.CREDENTIALS))
recovery_rate_limit = limiter.limit(";".join(RateLimitTiers.RECOVERY))
write_rate_limit = limiter.limit(";".join(RateLimitTiers.WRITE))
