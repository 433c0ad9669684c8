"""Pytest configuration and shared fixtures."""

from unittest.mock import AsyncMock, MagicMock, Mock

import pytest
from fastapi.testclient import TestClient
from jose import JWTError

from src.comeback.main import app
from src.comeback.services.auth.dependencies import get_user_repository, set_token_verifier
from src.comeback.services.auth.models import AuthenticatedIdentity
from src.comeback.services.auth.users import UserRepository
from src.comeback.services.database import SupabaseQueryBuilder, get_db
from src.comeback.services.database.models import User, UserRole
from src.comeback.services.rate_limiter import limiter

# bearer tokens understood by the mock_verifier fixture
USER_TOKEN = "user-token"
ADMIN_TOKEN = "admin-token"

TOKEN_IDENTITIES = {
    USER_TOKEN: AuthenticatedIdentity(id="user-1", email="user@example.com"),
    ADMIN_TOKEN: AuthenticatedIdentity(id="admin-1", email="admin@example.com"),
}

ROLES = {"user-1": UserRole.USER, "admin-1": UserRole.ADMIN}


@pytest.fixture(autouse=True)
def isolate_app():
    """Reset rate limits, dependency overrides and the token verifier around each test."""
    limiter.reset()
    yield
    app.dependency_overrides.clear()
    set_token_verifier(None)


@pytest.fixture
def client() -> TestClient:
    """
    Provide FastAPI test client for API testing.

    Redirects are not followed so tests can assert on them.

    Example:
        >>> def test_health(client):
        >>>     response = client.get("/health")
        >>>     assert response.status_code == 200
    """
    return TestClient(app, follow_redirects=False)


@pytest.fixture
def mock_verifier() -> Mock:
    """Token verifier accepting USER_TOKEN and ADMIN_TOKEN."""

    async def verify(token: str) -> AuthenticatedIdentity:
        if token not in TOKEN_IDENTITIES:
            raise JWTError("Signature verification failed")
        return TOKEN_IDENTITIES[token]

    verifier = Mock()
    verifier.verify = AsyncMock(side_effect=verify)
    set_token_verifier(verifier)
    return verifier


@pytest.fixture
def user_headers(mock_verifier: Mock) -> dict[str, str]:
    return {"Authorization": f"Bearer {USER_TOKEN}"}


@pytest.fixture
def admin_headers(mock_verifier: Mock) -> dict[str, str]:
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}


@pytest.fixture
def users_repo() -> AsyncMock:
    """UserRepository double returning the role table above."""
    repo = AsyncMock(spec=UserRepository)

    async def create_or_update_user(identity):
        return User(
            id=identity.id,
            email=identity.email or "",
            name="Test User",
            role=ROLES.get(identity.id, UserRole.USER),
        )

    async def get_user(user_id: str):
        if user_id not in ROLES:
            return None
        return User(id=user_id, name="Test User", role=ROLES[user_id])

    repo.create_or_update_user.side_effect = create_or_update_user
    repo.get_user.side_effect = get_user
    app.dependency_overrides[get_user_repository] = lambda: repo
    return repo


@pytest.fixture
def mock_db() -> AsyncMock:
    """Query builder double served to every handler through get_db."""
    db = AsyncMock(spec=SupabaseQueryBuilder)
    db.client = MagicMock()
    app.dependency_overrides[get_db] = lambda: db
    return db
