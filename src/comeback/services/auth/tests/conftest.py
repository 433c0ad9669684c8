"""Shared fixtures for authentication tests."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, Mock

import pytest

from src.comeback.config import Settings
from src.comeback.services.auth.identity import IdentityState
from src.comeback.services.auth.models import AuthenticatedIdentity, UserMetadata
from src.comeback.services.auth.session import AuthService
from src.comeback.services.auth.storage import MemorySessionStorage
from src.comeback.services.auth.store import UserStore
from src.comeback.services.auth.users import UserRepository
from src.comeback.services.database.models import User, UserRole


@pytest.fixture
def test_settings() -> Settings:
    """Settings with short guard timings so tests stay fast."""
    return Settings(
        auth_init_timeout_seconds=0.2,
        admin_auth_init_timeout_seconds=0.2,
        auth_max_retry_attempts=3,
        auth_retry_delay_seconds=0.01,
        dev_user_lookup_timeout_seconds=0.05,
        posthog_api_key=None,
    )


@pytest.fixture
def make_user():
    """Factory for application user records."""

    def _make(user_id: str = "u1", role: UserRole = UserRole.USER, **fields) -> User:
        now = datetime.now(UTC)
        return User(
            id=user_id,
            email=fields.pop("email", f"{user_id}@example.com"),
            name=fields.pop("name", "Jane Doe"),
            photo_url=fields.pop("photo_url", ""),
            role=role,
            created_at=fields.pop("created_at", now),
            updated_at=fields.pop("updated_at", now),
            **fields,
        )

    return _make


@pytest.fixture
def identity_u1() -> AuthenticatedIdentity:
    return AuthenticatedIdentity(
        id="u1",
        email="a@x.com",
        user_metadata=UserMetadata(full_name="Jane Doe", avatar_url="https://img/u1.png"),
    )


@pytest.fixture
def storage() -> MemorySessionStorage:
    return MemorySessionStorage()


@pytest.fixture
def mock_users() -> AsyncMock:
    """UserRepository double; create_or_update_user echoes a USER record."""
    users = AsyncMock(spec=UserRepository)

    async def create_or_update_user(identity):
        if not isinstance(identity, AuthenticatedIdentity):
            return None
        return User(id=identity.id, email=identity.email or "", name="Jane Doe")

    users.create_or_update_user.side_effect = create_or_update_user
    return users


@pytest.fixture
def make_auth(storage: MemorySessionStorage, mock_users: AsyncMock, test_settings: Settings):
    """Factory for a started AuthService wired to in-memory doubles."""

    def _make(identity=None, provider=None, start: bool = True) -> AuthService:
        auth = AuthService(
            identity=IdentityState(identity),
            store=UserStore(storage),
            users=mock_users,
            provider=provider,
            config=test_settings,
            analytics=Mock(),
        )
        if start:
            auth.start()
        return auth

    return _make
