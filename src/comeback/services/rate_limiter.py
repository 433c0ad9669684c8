"""Rate limiting service for API endpoints."""

import logging

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from src.comeback.config import settings
from src.comeback.services.auth.models import AuthenticatedIdentity

logger = logging.getLogger(__name__)


def get_identity_or_ip(request: Request) -> str:
    """
    Rate limit key: the verified user id when the request carries one, else the client IP.

    request.state.identity is set by get_request_identity, so the key is only
    per-user on routes that resolve the identity before the limit is checked.
    """
    identity: AuthenticatedIdentity | None = getattr(request.state, "identity", None)

    if identity and identity.id:
        return f"user:{identity.id}"

    return f"ip:{get_remote_address(request)}"


limiter = Limiter(
    key_func=get_identity_or_ip,
    default_limits=[],
    storage_uri="memory://",
    enabled=settings.rate_limit_enabled,
)


class RateLimitTiers:
    """Rate limit tiers for the endpoint categories."""

    # Catalog reads and the current user's profile
    DEFAULT = ["100 per minute", "1000 per hour"]

    # Profile sync, logout
    WRITE = ["30 per minute", "200 per hour"]

    # Sign-in redirects and OAuth callbacks
    AUTH = ["10 per minute", "60 per hour"]

    # Bulk deletions from the admin area
    ADMIN_MAINTENANCE = ["5 per minute", "20 per hour"]

    PUBLIC = ["60 per minute", "600 per hour"]


# These decorators require the endpoint to take a 'request: Request' parameter
default_rate_limit = limiter.limit(";".join(RateLimitTiers.DEFAULT))
write_rate_limit = limiter.limit(";".join(RateLimitTiers.WRITE))
auth_rate_limit = limiter.limit(";".join(RateLimitTiers.AUTH))
admin_maintenance_rate_limit = limiter.limit(";".join(RateLimitTiers.ADMIN_MAINTENANCE))
public_rate_limit = limiter.limit(";".join(RateLimitTiers.PUBLIC))
