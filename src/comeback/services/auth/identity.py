"""Identity provider integration and the observable current-user handle."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from supabase import AsyncClient

from src.comeback.services.auth.models import (
    AuthenticatedIdentity,
    IdentityHandle,
    parse_identity,
)

logger = logging.getLogger(__name__)

IdentityListener = Callable[[IdentityHandle | None, IdentityHandle | None], Awaitable[None]]


class IdentityState:
    """
    Current identity handle, with async change notification.

    Listeners receive (new, old) for every update. Updates are dispatched one
    at a time in arrival order: a second set() waits until every listener has
    finished handling the first.

    Example:
        >>> state = IdentityState()
        >>> state.subscribe(on_change)
        >>> await state.set(AuthenticatedIdentity(id="u1"))
    """

    def __init__(self, initial: IdentityHandle | None = None) -> None:
        self._current = initial
        self._listeners: list[IdentityListener] = []
        self._dispatch_lock = asyncio.Lock()

    @property
    def current(self) -> IdentityHandle | None:
        return self._current

    def subscribe(self, listener: IdentityListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def set(self, identity: IdentityHandle | None) -> None:
        async with self._dispatch_lock:
            old = self._current
            self._current = identity
            for listener in list(self._listeners):
                await listener(identity, old)


class IdentityProvider(Protocol):
    """Contract of the external identity provider."""

    async def get_current_user(self, access_token: str | None = None) -> IdentityHandle | None: ...

    async def sign_in_with_provider(self, provider: str, redirect_to: str) -> str: ...

    async def exchange_code(
        self, auth_code: str, code_verifier: str | None = None
    ) -> tuple[IdentityHandle | None, str | None]: ...

    async def sign_out(self, access_token: str | None = None) -> None: ...


# Supabase Auth keeps the PKCE verifier under "<storage_key>-code-verifier"
CODE_VERIFIER_SUFFIX = "-code-verifier"


class OAuthFlowStorage:
    """
    Auth storage of a client that serves a single OAuth round trip.

    Implements the async get_item/set_item/remove_item contract Supabase Auth
    expects. The PKCE code verifier is kept apart so it can be handed to the
    browser at sign-in and given back at the callback.
    """

    def __init__(self) -> None:
        self._items: dict[str, str] = {}
        self.code_verifier: str | None = None

    async def get_item(self, key: str) -> str | None:
        if key.endswith(CODE_VERIFIER_SUFFIX):
            return self.code_verifier
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        if key.endswith(CODE_VERIFIER_SUFFIX):
            self.code_verifier = value
        else:
            self._items[key] = value

    async def remove_item(self, key: str) -> None:
        if key.endswith(CODE_VERIFIER_SUFFIX):
            self.code_verifier = None
        else:
            self._items.pop(key, None)


class SupabaseIdentityProvider:
    """
    Identity provider backed by Supabase Auth.

    Args:
        client: Supabase async client created with the anon key
        storage: Auth storage of client, when it serves one OAuth flow
        admin_client: Service-role client, needed to revoke a given session
    """

    def __init__(
        self,
        client: AsyncClient,
        storage: OAuthFlowStorage | None = None,
        admin_client: AsyncClient | None = None,
    ) -> None:
        self.client = client
        self.storage = storage
        self.admin_client = admin_client
        self._pending_updates: set[asyncio.Task[None]] = set()

    @property
    def code_verifier(self) -> str | None:
        """PKCE verifier generated by the last sign_in_with_provider() call."""
        return self.storage.code_verifier if self.storage is not None else None

    async def get_current_user(self, access_token: str | None = None) -> IdentityHandle | None:
        """
        Ask Supabase who the token (or the client's own session) belongs to.

        Returns:
            The identity handle, or None when there is no valid session
        """
        response = await self.client.auth.get_user(access_token)
        if response is None:
            return None
        return parse_identity(response.user)

    async def sign_in_with_provider(self, provider: str, redirect_to: str) -> str:
        """
        Start an OAuth sign-in.

        Returns:
            The provider URL the browser must be redirected to
        """
        response = await self.client.auth.sign_in_with_oauth(
            {"provider": provider, "options": {"redirect_to": redirect_to}}
        )
        logger.info(f"OAuth sign-in started with {provider}", extra={"redirect_to": redirect_to})
        return response.url

    async def exchange_code(
        self, auth_code: str, code_verifier: str | None = None
    ) -> tuple[IdentityHandle | None, str | None]:
        """
        Complete an OAuth sign-in.

        Args:
            auth_code: Code the provider sent back to the callback
            code_verifier: PKCE verifier issued at sign-in; read from the
                client's auth storage when omitted

        Returns:
            (identity, access_token) for the new session
        """
        params = {"auth_code": auth_code}
        if code_verifier:
            params["code_verifier"] = code_verifier
        response = await self.client.auth.exchange_code_for_session(params)
        access_token = response.session.access_token if response.session else None
        return parse_identity(response.user), access_token

    async def sign_out(self, access_token: str | None = None) -> None:
        """
        End a session.

        With access_token, only that session is revoked, through the admin
        API. Without it, the client's own session is signed out.
        """
        if access_token is None:
            await self.client.auth.sign_out()
            return
        if self.admin_client is None:
            raise RuntimeError("Revoking a session requires the service-role client")
        await self.admin_client.auth.admin.sign_out(access_token, "local")

    def bind(self, state: IdentityState) -> Any:
        """
        Forward Supabase auth state changes into an IdentityState.

        Returns:
            The Supabase subscription, so callers can unsubscribe
        """

        def on_change(event: str, session: Any) -> None:
            identity = parse_identity(session.user) if session is not None else None
            logger.debug(
                f"Auth state change: {event}",
                extra={"has_id": isinstance(identity, AuthenticatedIdentity)},
            )
            task = asyncio.get_running_loop().create_task(state.set(identity))
            self._pending_updates.add(task)
            task.add_done_callback(self._on_update_done)

        return self.client.auth.on_auth_state_change(on_change)

    def _on_update_done(self, task: asyncio.Task[None]) -> None:
        self._pending_updates.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Identity update failed: {error}",
                exc_info=error,
                extra={"error_type": "identity_update_failed"},
            )
