"""FastAPI dependencies running the route guards for incoming requests."""

import logging

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from postgrest.exceptions import APIError

from src.comeback.config import settings
from src.comeback.services.analytics import PostHogService
from src.comeback.services.auth.exceptions import AuthorizationError, LoginRequired
from src.comeback.services.auth.guards import (
    GuardContext,
    RenderMode,
    admin_guard,
    auth_guard,
)
from src.comeback.services.auth.identity import IdentityState
from src.comeback.services.auth.models import AuthenticatedIdentity
from src.comeback.services.auth.session import AuthService
from src.comeback.services.auth.store import UserStore
from src.comeback.services.auth.tokens import TokenVerifier
from src.comeback.services.auth.users import UserRepository
from src.comeback.services.database import get_query_builder
from src.comeback.services.database.errors import handle_supabase_error
from src.comeback.services.database.models import User

security = HTTPBearer(auto_error=False)
logger = logging.getLogger(__name__)

# Global token verifier instance (initialized in main.py startup)
_token_verifier: TokenVerifier | None = None


def set_token_verifier(verifier: TokenVerifier | None) -> None:
    """
    Set the global token verifier instance.

    Called during application startup, and by tests to inject a mock.
    """
    global _token_verifier
    _token_verifier = verifier


def get_token_verifier() -> TokenVerifier:
    """
    Get the global token verifier instance.

    Raises:
        RuntimeError: If the verifier was not initialized
    """
    if _token_verifier is None:
        raise RuntimeError(
            "Token verifier not initialized. "
            "Ensure application startup calls set_token_verifier()."
        )
    return _token_verifier


def get_user_repository() -> UserRepository:
    """Users repository bound to the service-role client."""
    return UserRepository(get_query_builder())


def get_request_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> str | None:
    """Session token from the Authorization header, else from the session cookie."""
    token = credentials.credentials if credentials else None
    return token or request.cookies.get(settings.session_cookie_name)


async def get_request_identity(
    request: Request,
    token: str | None = Depends(get_request_token),
) -> AuthenticatedIdentity | None:
    """
    Identity carried by the request's session token.

    The token is verified locally against the cached JWKS; no database access.

    Returns:
        The identity, or None when there is no token or it does not verify
    """
    if not token:
        return None

    try:
        identity = await get_token_verifier().verify(token)
    except JWTError as e:
        logger.info(f"Ignoring invalid session token: {e}")
        return None

    request.state.identity = identity
    return identity


async def require_auth(
    identity: AuthenticatedIdentity | None = Depends(get_request_identity),
) -> AuthenticatedIdentity:
    """
    Server-side pass of the auth guard.

    Raises:
        LoginRequired: No valid session, handled as a redirect to the login page

    Example:
        @router.get("/me")
        async def me(identity: AuthenticatedIdentity = Depends(require_auth)):
            return {"user_id": identity.id}
    """
    outcome = await auth_guard(GuardContext(mode=RenderMode.SERVER, identity=identity))
    if outcome is not None or identity is None:
        raise LoginRequired(outcome.location if outcome else settings.login_path)
    return identity


async def require_admin(
    identity: AuthenticatedIdentity | None = Depends(get_request_identity),
    users: UserRepository = Depends(get_user_repository),
) -> User:
    """
    Admin guard for API routes.

    Runs the server pass first, then the client pass role check against the
    stored profile (an API request has no later client pass to defer the
    role check to). The profile is only read here; /auth/sync and
    /auth/callback create and refresh it.

    Returns:
        The administrator's user record

    Raises:
        LoginRequired: Not signed in
        AuthorizationError: Signed in without a profile or without the ADMIN role (403)
        HTTPException: Mapped status of a database error while reading the profile
    """
    outcome = await admin_guard(GuardContext(mode=RenderMode.SERVER, identity=identity))
    if outcome is not None or identity is None:
        raise LoginRequired(outcome.location if outcome else settings.login_path)

    try:
        user = await users.get_user(identity.id)
    except APIError as e:
        raise handle_supabase_error(e, "auth.require_admin") from e

    if user is None:
        logger.warning("Admin access denied, no synced profile", extra={"user_id": identity.id})
        PostHogService().capture(distinct_id=identity.id, event="authorization_denied")
        raise AuthorizationError()

    auth = AuthService(IdentityState(identity), UserStore(), users)
    auth.start(client_side=False)
    auth.store.sync_user_profile(identity, user)
    try:
        outcome = await admin_guard(GuardContext(mode=RenderMode.CLIENT, auth=auth))
    except AuthorizationError:
        PostHogService().capture(distinct_id=identity.id, event="authorization_denied")
        raise
    finally:
        auth.stop()

    if outcome is not None:
        raise LoginRequired(outcome.location)
    return user
