"""Route guards deciding whether a navigation may proceed."""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum

from tenacity import AsyncRetrying, retry_if_result, stop_after_attempt, wait_fixed

from src.comeback.config import Settings, settings
from src.comeback.services.auth.exceptions import AuthorizationError
from src.comeback.services.auth.models import IdentityHandle, identity_id
from src.comeback.services.auth.session import AuthService
from src.comeback.services.auth.store import UserStore
from src.comeback.services.database.models import User, UserRole

logger = logging.getLogger(__name__)


class RenderMode(str, Enum):
    """Which pass a guard runs in."""

    SERVER = "server"  # request-time check, session cookie only
    CLIENT = "client"  # full check against the auth session


@dataclass(frozen=True)
class Redirect:
    """Guard outcome asking the caller to navigate elsewhere."""

    location: str


@dataclass
class GuardContext:
    """
    Everything a guard may look at.

    Attributes:
        mode: SERVER or CLIENT pass
        identity: Handle read from the request (SERVER mode)
        auth: Auth session of the client runtime (CLIENT mode)
        config: Timeouts, retry counts and the login path
    """

    mode: RenderMode
    identity: IdentityHandle | None = None
    auth: AuthService | None = None
    config: Settings = field(default_factory=lambda: settings)

    @property
    def live_identity(self) -> IdentityHandle | None:
        if self.auth is not None:
            return self.auth.identity.current
        return self.identity


async def _await_initialization(auth: AuthService, timeout: float) -> None:
    try:
        await asyncio.wait_for(auth.ensure_auth_initialized(), timeout=timeout)
    except TimeoutError:
        logger.warning(
            f"Auth initialization did not finish within {timeout}s, falling back to explicit checks"
        )


def _is_authenticated(ctx: GuardContext) -> bool:
    if identity_id(ctx.live_identity):
        return True
    return ctx.auth is not None and ctx.auth.store.has_valid_session()


async def _wait_for_user_data(store: UserStore, config: Settings) -> User | None:
    if store.user_data is not None:
        return store.user_data

    async def read_user_data() -> User | None:
        return store.user_data

    retrying = AsyncRetrying(
        stop=stop_after_attempt(config.auth_max_retry_attempts),
        wait=wait_fixed(config.auth_retry_delay_seconds),
        retry=retry_if_result(lambda user: user is None),
        retry_error_callback=lambda retry_state: None,
    )
    return await retrying(read_user_data)


async def auth_guard(ctx: GuardContext) -> Redirect | None:
    """
    Let signed-in visitors through, send everyone else to the login page.

    Returns:
        None to proceed, or a Redirect to the login path
    """
    login = Redirect(ctx.config.login_path)

    if ctx.mode is RenderMode.SERVER or ctx.auth is None:
        return None if ctx.identity is not None else login

    await _await_initialization(ctx.auth, ctx.config.auth_init_timeout_seconds)

    if _is_authenticated(ctx):
        return None
    return login


async def admin_guard(ctx: GuardContext) -> Redirect | None:
    """
    Let administrators through.

    Visitors who are not signed in are redirected to the login page.
    Signed-in users without the ADMIN role get an AuthorizationError. Role
    checks only happen in CLIENT mode; the SERVER pass checks the session
    cookie alone.

    Returns:
        None to proceed, or a Redirect to the login path

    Raises:
        AuthorizationError: Signed in, but not an administrator
    """
    login = Redirect(ctx.config.login_path)

    if ctx.mode is RenderMode.SERVER or ctx.auth is None:
        return None if ctx.identity is not None else login

    await _await_initialization(ctx.auth, ctx.config.admin_auth_init_timeout_seconds)

    if not _is_authenticated(ctx):
        return login

    user = await _wait_for_user_data(ctx.auth.store, ctx.config)
    if user is None or (user.role != UserRole.ADMIN and not ctx.auth.store.is_admin):
        logger.warning(
            "Admin access denied",
            extra={"user_id": user.id if user else identity_id(ctx.live_identity)},
        )
        raise AuthorizationError()
    return None
