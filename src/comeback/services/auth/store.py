"""Persisted session store mirroring the signed-in application user."""

import logging
from typing import Any

from pydantic import BaseModel, ValidationError, computed_field

from src.comeback.services.auth.models import IdentityHandle
from src.comeback.services.auth.storage import SessionStorage
from src.comeback.services.database.models import User, UserRole

logger = logging.getLogger(__name__)

# Only these fields survive a reload; is_admin is recomputed on restore
PERSISTED_FIELDS = {"user_data", "is_login"}


class SessionState(BaseModel):
    """Login state of the current visitor."""

    user_data: User | None = None
    is_login: bool = False

    @computed_field
    @property
    def is_admin(self) -> bool:
        return self.user_data is not None and self.user_data.role == UserRole.ADMIN


def restore_session_state(payload: str | dict[str, Any] | None) -> SessionState:
    """
    Rebuild session state from persisted storage.

    Only whitelisted fields are read. Derived fields (is_admin) are always
    recomputed from user_data.role, whatever the payload claims. Corrupt
    payloads restore to an empty state.

    Args:
        payload: JSON string or dict as written by UserStore, or None

    Returns:
        A fresh SessionState
    """
    if not payload:
        return SessionState()

    try:
        if isinstance(payload, str):
            state = SessionState.model_validate_json(payload)
        else:
            state = SessionState.model_validate(
                {k: v for k, v in payload.items() if k in PERSISTED_FIELDS}
            )
    except ValidationError as e:
        logger.warning(f"Discarding invalid persisted session: {e.error_count()} errors")
        return SessionState()

    return state


class UserStore:
    """
    Session store for one client runtime.

    Holds the last-known application user and login flag, persisting both to
    the given storage on every change. is_admin is read-only and always
    derived from user_data.

    Attributes:
        identity: Last identity handle the store was synced with
        is_hydrated: True once restore has run (exactly once per store)
    """

    def __init__(self, storage: SessionStorage | None = None, storage_key: str = "userStore"):
        self._storage = storage
        self._storage_key = storage_key
        self._state = SessionState()
        self.identity: IdentityHandle | None = None
        self.is_hydrated = False

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def user_data(self) -> User | None:
        return self._state.user_data

    @property
    def is_login(self) -> bool:
        return self._state.is_login

    @property
    def is_admin(self) -> bool:
        return self._state.is_admin

    def hydrate(self, client_side: bool = True) -> None:
        """
        Restore persisted fields, once.

        Restoration only happens client-side; during server rendering the
        store is just marked hydrated.
        """
        if self.is_hydrated:
            return
        if client_side and self._storage is not None:
            self._state = restore_session_state(self._storage.load(self._storage_key))
            logger.debug(
                "Session store restored",
                extra={"is_login": self.is_login, "is_admin": self.is_admin},
            )
        self.is_hydrated = True

    def has_valid_session(self) -> bool:
        """True when a user record and the login flag are both present."""
        return self._state.user_data is not None and self._state.is_login

    def sync_user_profile(self, identity: IdentityHandle | None, user: User | None) -> None:
        """Replace the whole session in one step, or clear it if either side is missing."""
        if identity is not None and user is not None:
            self._state = SessionState(user_data=user, is_login=True)
            self.identity = identity
        else:
            self._state = SessionState()
            self.identity = None
        self._persist()

    def reset(self) -> None:
        self._state = SessionState()
        self.identity = None
        self._persist()

    def _persist(self) -> None:
        if self._storage is None:
            return
        self._storage.save(
            self._storage_key, self._state.model_dump_json(include=PERSISTED_FIELDS)
        )
