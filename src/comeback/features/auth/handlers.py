"""API handlers for sign-in, sign-out and the current user's profile."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import RedirectResponse
from postgrest.exceptions import APIError

from src.comeback.config import settings
from src.comeback.services.analytics import PostHogService
from src.comeback.services.auth.dependencies import (
    get_request_token,
    get_user_repository,
    require_auth,
)
from src.comeback.services.auth.identity import OAuthFlowStorage, SupabaseIdentityProvider
from src.comeback.services.auth.models import AuthenticatedIdentity
from src.comeback.services.auth.users import UserRepository
from src.comeback.services.database import create_flow_client, get_supabase_admin_client
from src.comeback.services.database.errors import handle_supabase_error, not_found_error
from src.comeback.services.database.models import User
from src.comeback.services.rate_limiter import auth_rate_limit, default_rate_limit, write_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


async def get_identity_provider() -> SupabaseIdentityProvider:
    """
    Identity provider on a client of its own for this request.

    Each OAuth round trip gets fresh auth storage, so PKCE verifiers and
    sessions of different visitors never meet on one client.
    """
    storage = OAuthFlowStorage()
    client = await create_flow_client(storage)
    return SupabaseIdentityProvider(client, storage=storage, admin_client=get_supabase_admin_client())


def _set_session_cookie(response: Response, access_token: str) -> None:
    response.set_cookie(
        settings.session_cookie_name,
        access_token,
        max_age=settings.session_cookie_max_age_seconds,
        httponly=True,
        secure=not settings.debug,
        samesite="lax",
    )


def _set_verifier_cookie(response: Response, code_verifier: str) -> None:
    response.set_cookie(
        settings.oauth_verifier_cookie_name,
        code_verifier,
        max_age=settings.oauth_verifier_max_age_seconds,
        path=settings.oauth_redirect_path,
        httponly=True,
        secure=not settings.debug,
        samesite="lax",
    )


def _login_redirect() -> RedirectResponse:
    response = RedirectResponse(settings.login_path, status_code=status.HTTP_303_SEE_OTHER)
    response.delete_cookie(settings.oauth_verifier_cookie_name, path=settings.oauth_redirect_path)
    return response


@router.get("/login")
@auth_rate_limit
async def login(
    request: Request,
    provider: str = Query(settings.oauth_default_provider, description="OAuth provider name"),
    identity_provider: SupabaseIdentityProvider = Depends(get_identity_provider),
) -> RedirectResponse:
    """
    Start an OAuth sign-in and redirect the browser to the provider.

    The PKCE code verifier travels in a short-lived httponly cookie scoped to
    the callback route, where the provider sends the browser back.
    """
    redirect_to = str(request.base_url).rstrip("/") + settings.oauth_redirect_path
    try:
        url = await identity_provider.sign_in_with_provider(provider, redirect_to)
    except Exception as e:
        logger.error(f"OAuth sign-in with {provider} failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Could not start sign-in. Please try again.",
        ) from e
    response = RedirectResponse(url, status_code=status.HTTP_303_SEE_OTHER)
    if identity_provider.code_verifier:
        _set_verifier_cookie(response, identity_provider.code_verifier)
    return response


@router.get("/callback")
@auth_rate_limit
async def auth_callback(
    request: Request,
    code: str = Query(..., description="Authorization code from the provider"),
    identity_provider: SupabaseIdentityProvider = Depends(get_identity_provider),
    users: UserRepository = Depends(get_user_repository),
) -> RedirectResponse:
    """
    Finish an OAuth sign-in: exchange the code, store the session cookie,
    create or refresh the user's profile, then go home.
    """
    code_verifier = request.cookies.get(settings.oauth_verifier_cookie_name)
    try:
        identity, access_token = await identity_provider.exchange_code(code, code_verifier)
    except Exception as e:
        logger.warning(f"OAuth code exchange failed: {e}", extra={"has_verifier": bool(code_verifier)})
        return _login_redirect()

    if not isinstance(identity, AuthenticatedIdentity) or not access_token:
        logger.warning("OAuth callback returned no usable identity")
        return _login_redirect()

    try:
        await users.create_or_update_user(identity)
    except APIError as e:
        raise handle_supabase_error(e, "auth.callback") from e

    response = RedirectResponse("/", status_code=status.HTTP_303_SEE_OTHER)
    _set_session_cookie(response, access_token)
    response.delete_cookie(settings.oauth_verifier_cookie_name, path=settings.oauth_redirect_path)
    return response


@router.post("/sync", response_model=User)
@write_rate_limit
async def sync_profile(
    request: Request,
    identity: AuthenticatedIdentity = Depends(require_auth),
    users: UserRepository = Depends(get_user_repository),
) -> User:
    """
    Create or refresh the signed-in user's profile from their identity.

    Returns:
        The stored user record

    Raises:
        HTTPException: Database error while reading or writing the profile
    """
    try:
        user = await users.create_or_update_user(identity)
    except APIError as e:
        raise handle_supabase_error(e, "auth.sync") from e

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to sync user profile.",
        )
    return user


@router.get("/me", response_model=User)
@default_rate_limit
async def get_me(
    request: Request,
    identity: AuthenticatedIdentity = Depends(require_auth),
    users: UserRepository = Depends(get_user_repository),
) -> User:
    """
    Get the signed-in user's profile.

    Raises:
        HTTPException: 404 if the profile was never synced
    """
    try:
        user = await users.get_user(identity.id)
    except APIError as e:
        raise handle_supabase_error(e, "auth.me") from e

    if user is None:
        raise not_found_error("User profile", identity.id)
    return user


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
@write_rate_limit
async def logout(
    request: Request,
    identity: AuthenticatedIdentity = Depends(require_auth),
    token: str | None = Depends(get_request_token),
    identity_provider: SupabaseIdentityProvider = Depends(get_identity_provider),
) -> Response:
    """Revoke the caller's own session and clear the session cookie."""
    try:
        await identity_provider.sign_out(token)
    except Exception as e:
        logger.error(f"Sign-out failed for {identity.id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Sign-out failed. Please try again.",
        ) from e

    PostHogService().capture(distinct_id=identity.id, event="user_logged_out")
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    response.delete_cookie(settings.session_cookie_name)
    return response
