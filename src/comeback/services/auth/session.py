"""Auth session: reconciles the identity provider with the persisted user store."""

import asyncio
import logging
from enum import Enum

from src.comeback.config import Settings, settings
from src.comeback.services.analytics import PostHogService
from src.comeback.services.auth.exceptions import ProfileSyncError
from src.comeback.services.auth.identity import (
    IdentityProvider,
    IdentityState,
    SupabaseIdentityProvider,
)
from src.comeback.services.auth.models import (
    AuthenticatedIdentity,
    IdentityHandle,
    PendingIdentity,
    identity_id,
)
from src.comeback.services.auth.storage import FileSessionStorage
from src.comeback.services.auth.store import UserStore
from src.comeback.services.auth.users import UserRepository
from src.comeback.services.database import get_query_builder, get_supabase_client

logger = logging.getLogger(__name__)


class AuthPhase(str, Enum):
    """Where a session is in its page-load lifecycle."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    AUTHENTICATED = "authenticated"
    ANONYMOUS = "anonymous"


class AuthService:
    """
    Keeps the user store in step with the identity provider for one client runtime.

    One instance lives for one page load (or one client process). It owns:
    - a single-flight initialization gate (ensure_auth_initialized) that every
      route guard awaits before trusting auth state
    - the profile reconciler (ensure_user_profile) that creates or refreshes
      the users row for the current identity and fills the store
    - a watcher on the identity handle that re-reconciles on user switches

    Attributes:
        identity: Observable current identity handle
        store: Persisted session store
        users: Users table repository
        provider: Identity provider used for sign-in/out (optional in tests)
        is_syncing: True while a reconciliation call is in flight
        sync_error: Message of the last failed reconciliation, if any

    Example:
        >>> auth = AuthService(IdentityState(), UserStore(storage), UserRepository(db))
        >>> auth.start()
        >>> await auth.ensure_auth_initialized()
        True
    """

    def __init__(
        self,
        identity: IdentityState,
        store: UserStore,
        users: UserRepository,
        provider: IdentityProvider | None = None,
        config: Settings | None = None,
        analytics: PostHogService | None = None,
    ) -> None:
        self.identity = identity
        self.store = store
        self.users = users
        self.provider = provider
        self.config = config or settings
        self.analytics = analytics or PostHogService()

        self.is_syncing = False
        self.sync_error: str | None = None

        self._initialized = False
        self._init_task: asyncio.Task[bool] | None = None
        self._unsubscribe = None

    @property
    def phase(self) -> AuthPhase:
        if not self._initialized or self._init_task is None:
            return AuthPhase.UNINITIALIZED
        if not self._init_task.done():
            return AuthPhase.INITIALIZING
        if self.store.has_valid_session():
            return AuthPhase.AUTHENTICATED
        return AuthPhase.ANONYMOUS

    def start(self, client_side: bool = True) -> None:
        """
        Restore the store and start watching the identity handle.

        Must run before the first ensure_auth_initialized() call.
        """
        self.store.hydrate(client_side=client_side)
        if self._unsubscribe is None:
            self._unsubscribe = self.identity.subscribe(self._on_identity_change)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def ensure_auth_initialized(self) -> bool:
        """
        Run initialize_auth() at most once and share its outcome.

        The first caller starts the pass; callers arriving while it runs await
        the same task; callers after it finished get True straight away. The
        shared task is shielded so a caller's timeout never cancels it for the
        others.
        """
        if self._init_task is None:
            self._initialized = True
            self._init_task = asyncio.ensure_future(self.initialize_auth())
            return await asyncio.shield(self._init_task)

        if self._init_task.done():
            return True

        return await asyncio.shield(self._init_task)

    async def initialize_auth(self) -> bool:
        """
        Decide the initial auth state from the identity handle and restored store.

        Returns:
            True when the session ends up authenticated
        """
        identity = self.identity.current
        user_data = self.store.user_data

        if isinstance(identity, AuthenticatedIdentity):
            if user_data is not None and user_data.id == identity.id:
                logger.debug(
                    f"Session already synced for {identity.id}",
                    extra={"is_admin": self.store.is_admin},
                )
                return True
            return await self.ensure_user_profile()

        if self.store.has_valid_session():
            # restored from storage, provider has not confirmed yet
            logger.debug(
                "Using restored session until the identity provider confirms",
                extra={"user_id": user_data.id if user_data else None},
            )
            return True

        self.store.reset()
        return False

    async def ensure_user_profile(self) -> bool:
        """
        Make the store reflect the current identity, creating the users row if needed.

        Returns:
            True when the store holds the current identity's user
        """
        identity = self.identity.current

        if not isinstance(identity, AuthenticatedIdentity):
            if not self.store.has_valid_session():
                self.store.reset()
            return False

        user_data = self.store.user_data
        if user_data is not None and user_data.id == identity.id:
            return True

        self.is_syncing = True
        self.sync_error = None
        try:
            user = await self.users.create_or_update_user(identity)
            if user is None:
                raise ProfileSyncError(f"No user record returned for {identity.id}")
            self.store.sync_user_profile(identity, user)
            logger.info(
                f"User profile synced for {identity.id}",
                extra={"role": user.role.value},
            )
            return True
        except Exception as e:
            logger.error(f"Profile sync failed for {identity.id}: {e}", exc_info=True)
            self.sync_error = str(e) or "Synchronization error"
            self.store.reset()
            return False
        finally:
            self.is_syncing = False

    async def _on_identity_change(
        self, new: IdentityHandle | None, old: IdentityHandle | None
    ) -> None:
        if not self._initialized:
            await self.ensure_auth_initialized()
            return

        if self._init_task is not None and not self._init_task.done():
            await asyncio.shield(self._init_task)

        if isinstance(new, PendingIdentity):
            logger.debug("Ignoring identity update without an id")
            return

        if new is None:
            if old is not None and not self.store.has_valid_session():
                self.store.reset()
            return

        if identity_id(new) != identity_id(old):
            await self.ensure_user_profile()

    async def login(self, provider: str | None = None, redirect_to: str | None = None) -> str:
        """
        Start an OAuth sign-in.

        Returns:
            URL of the provider's consent page
        """
        if self.provider is None:
            raise RuntimeError("No identity provider configured")
        return await self.provider.sign_in_with_provider(
            provider or self.config.oauth_default_provider,
            redirect_to or self.config.oauth_redirect_path,
        )

    async def handle_auth_callback(self, auth_code: str | None = None) -> str:
        """
        Finish an OAuth sign-in and reconcile the new user.

        Returns:
            Path to navigate to: home on success, the login page otherwise
        """
        if auth_code and self.provider is not None:
            identity, _ = await self.provider.exchange_code(auth_code)
            await self.identity.set(identity)

        if isinstance(self.identity.current, AuthenticatedIdentity):
            await self.ensure_user_profile()
            return "/"
        return self.config.login_path

    async def logout(self) -> str:
        """
        Sign out with the provider and clear the store.

        Returns:
            Path of the login page
        """
        user_id = self.store.user_data.id if self.store.user_data else None
        if self.provider is not None:
            try:
                await self.provider.sign_out()
            except Exception as e:
                logger.error(f"Sign-out failed: {e}", exc_info=True)
                raise

        self.store.reset()
        await self.identity.set(None)
        if user_id:
            self.analytics.capture(distinct_id=user_id, event="user_logged_out")
        return self.config.login_path


def create_client_auth_service(config: Settings | None = None) -> AuthService:
    """
    Assemble the auth session of a long-lived client runtime.

    The store persists to config.session_storage_path, the identity handle
    follows Supabase auth state changes, and the store is restored before
    this returns.
    """
    config = config or settings
    client = get_supabase_client()

    identity = IdentityState()
    provider = SupabaseIdentityProvider(client)
    provider.bind(identity)

    auth = AuthService(
        identity=identity,
        store=UserStore(FileSessionStorage(config.session_storage_path), config.session_storage_key),
        users=UserRepository(get_query_builder(client, use_admin=False), config=config),
        provider=provider,
        config=config,
    )
    auth.start(client_side=True)
    return auth
