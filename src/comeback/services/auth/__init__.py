"""Authentication: identity handles, session store, reconciliation and route guards."""

from src.comeback.services.auth.dependencies import (
    get_request_identity,
    get_request_token,
    get_token_verifier,
    require_admin,
    require_auth,
    set_token_verifier,
)
from src.comeback.services.auth.exceptions import (
    AuthenticationError,
    AuthorizationError,
    LoginRequired,
    ProfileSyncError,
)
from src.comeback.services.auth.guards import GuardContext, Redirect, RenderMode, admin_guard, auth_guard
from src.comeback.services.auth.identity import (
    IdentityState,
    OAuthFlowStorage,
    SupabaseIdentityProvider,
)
from src.comeback.services.auth.models import (
    AuthenticatedIdentity,
    IdentityHandle,
    PendingIdentity,
    UserMetadata,
    parse_identity,
)
from src.comeback.services.auth.session import AuthPhase, AuthService, create_client_auth_service
from src.comeback.services.auth.store import SessionState, UserStore, restore_session_state
from src.comeback.services.auth.tokens import JWKSCache, TokenVerifier
from src.comeback.services.auth.users import UserRepository

__all__ = [
    "AuthPhase",
    "AuthService",
    "AuthenticatedIdentity",
    "AuthenticationError",
    "AuthorizationError",
    "GuardContext",
    "IdentityHandle",
    "IdentityState",
    "JWKSCache",
    "LoginRequired",
    "OAuthFlowStorage",
    "PendingIdentity",
    "ProfileSyncError",
    "Redirect",
    "RenderMode",
    "SessionState",
    "SupabaseIdentityProvider",
    "TokenVerifier",
    "UserMetadata",
    "UserRepository",
    "UserStore",
    "admin_guard",
    "auth_guard",
    "create_client_auth_service",
    "get_request_identity",
    "get_request_token",
    "get_token_verifier",
    "parse_identity",
    "require_admin",
    "require_auth",
    "restore_session_state",
    "set_token_verifier",
]
