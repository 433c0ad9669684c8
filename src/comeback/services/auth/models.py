"""Identity handle types reported by the identity provider."""

from typing import Any

from pydantic import BaseModel, ConfigDict


class UserMetadata(BaseModel):
    """
    OAuth profile metadata attached to a Supabase user.

    Providers disagree on key names (Google sends full_name/avatar_url, others
    name/picture), so every field is optional and unknown keys are ignored.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    full_name: str | None = None
    name: str | None = None
    avatar_url: str | None = None
    picture: str | None = None

    @property
    def display_name(self) -> str | None:
        return self.full_name or self.name or None

    @property
    def photo_url(self) -> str | None:
        return self.avatar_url or self.picture or None


class AuthenticatedIdentity(BaseModel):
    """
    Identity handle for a user the provider has fully authenticated.

    Attributes:
        id: Provider user id (the 'sub' claim); also the users table primary key
        email: User email, when the provider shares it
        user_metadata: OAuth profile metadata

    Example:
        >>> identity = AuthenticatedIdentity(
        ...     id="123e4567-e89b-12d3-a456-426614174000",
        ...     email="user@example.com",
        ...     user_metadata=UserMetadata(full_name="Jane Doe"),
        ... )
    """

    model_config = ConfigDict(frozen=True)

    id: str
    email: str | None = None
    user_metadata: UserMetadata = UserMetadata()


class PendingIdentity(BaseModel):
    """
    Identity handle seen mid-OAuth, before the provider assigned an id.

    Nothing may be done on behalf of a pending identity.
    """

    model_config = ConfigDict(frozen=True)

    email: str | None = None
    user_metadata: UserMetadata = UserMetadata()


IdentityHandle = AuthenticatedIdentity | PendingIdentity


def _read(raw: Any, key: str) -> Any:
    if isinstance(raw, dict):
        return raw.get(key)
    return getattr(raw, key, None)


def parse_identity(raw: Any) -> IdentityHandle | None:
    """
    Build an identity handle from a provider payload.

    Accepts a dict (JWT claims use 'sub', user objects use 'id') or a
    supabase-auth User object.

    Returns:
        AuthenticatedIdentity when an id is present, PendingIdentity when the
        payload exists without one, None when there is no payload at all
    """
    if raw is None:
        return None

    user_id = _read(raw, "id") or _read(raw, "sub")
    email = _read(raw, "email")
    metadata = UserMetadata.model_validate(_read(raw, "user_metadata") or {})

    if user_id:
        return AuthenticatedIdentity(id=str(user_id), email=email, user_metadata=metadata)
    return PendingIdentity(email=email, user_metadata=metadata)


def identity_id(identity: IdentityHandle | None) -> str | None:
    """Return the id of a handle, or None for pending and absent handles."""
    if isinstance(identity, AuthenticatedIdentity):
        return identity.id
    return None
