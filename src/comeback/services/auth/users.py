"""Lookup and upsert of application user records."""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any

from postgrest.exceptions import APIError

from src.comeback.config import Settings, settings
from src.comeback.services.analytics import PostHogService
from src.comeback.services.auth.models import AuthenticatedIdentity, IdentityHandle
from src.comeback.services.database.errors import is_not_found_error
from src.comeback.services.database.models import User, UserRole
from src.comeback.services.database.utils import SupabaseQueryBuilder

logger = logging.getLogger(__name__)

USERS_TABLE = "users"


class UserRepository:
    """
    Reads and writes rows of the users table.

    Args:
        db: Query builder bound to a Supabase client
        config: Settings (debug flag, lookup timeout, default display name)
        analytics: Optional PostHog service for profile events
    """

    def __init__(
        self,
        db: SupabaseQueryBuilder,
        config: Settings | None = None,
        analytics: PostHogService | None = None,
    ) -> None:
        self.db = db
        self.config = config or settings
        self.analytics = analytics or PostHogService()

    async def get_user(self, user_id: str) -> User | None:
        """
        Fetch a user by id.

        In debug mode the lookup is bounded by dev_user_lookup_timeout_seconds
        and cancelled when it runs over; a timeout reads as "not found" so a
        stalled local database does not block sign-in.

        Returns:
            The user, or None if no row exists

        Raises:
            APIError: Any database error other than "no rows"
        """
        lookup = self.db.get_single(USERS_TABLE, user_id)

        try:
            if self.config.debug:
                row = await asyncio.wait_for(
                    lookup, timeout=self.config.dev_user_lookup_timeout_seconds
                )
            else:
                row = await lookup
        except TimeoutError:
            logger.warning(
                f"User lookup for {user_id} timed out, treating as not found",
                extra={"timeout": self.config.dev_user_lookup_timeout_seconds},
            )
            return None
        except APIError as e:
            if is_not_found_error(e):
                return None
            logger.error(
                f"Failed to fetch user {user_id}: {e.message}",
                extra={"code": e.code, "error_type": "user_lookup_failed"},
            )
            raise

        return User.model_validate(row) if row else None

    async def create_or_update_user(self, identity: IdentityHandle | None) -> User | None:
        """
        Create the user row for an identity, or refresh the existing one.

        New rows get role USER. Existing rows keep their role and created_at;
        name and photo keep their stored value when the provider sends none.

        Args:
            identity: Handle of the signed-in user

        Returns:
            The stored user, or None when the handle has no id

        Raises:
            APIError: On lookup (other than not-found), insert or update failure
        """
        if not isinstance(identity, AuthenticatedIdentity) or not identity.id:
            return None

        existing = await self.get_user(identity.id)
        now = datetime.now(UTC).isoformat()
        metadata = identity.user_metadata

        if existing is None:
            data: dict[str, Any] = {
                "id": identity.id,
                "email": identity.email or "",
                "name": metadata.display_name or self.config.default_user_name,
                "photo_url": metadata.photo_url or "",
                "role": UserRole.USER.value,
                "created_at": now,
                "updated_at": now,
            }
            try:
                row = await self.db.insert_record(USERS_TABLE, data)
            except APIError as e:
                logger.error(
                    f"Failed to create user {identity.id}: {e.message}",
                    extra={"code": e.code, "error_type": "user_create_failed"},
                )
                raise

            logger.info(f"Created user profile {identity.id}")
            self.analytics.capture(distinct_id=identity.id, event="user_profile_created")
            return User.model_validate(row or data)

        data = {
            "email": identity.email or existing.email,
            "name": metadata.display_name or existing.name or self.config.default_user_name,
            "photo_url": metadata.photo_url or existing.photo_url,
            "role": existing.role.value,
            "updated_at": now,
        }
        try:
            row = await self.db.update_record(USERS_TABLE, identity.id, data)
        except APIError as e:
            logger.error(
                f"Failed to update user {identity.id}: {e.message}",
                extra={"code": e.code, "error_type": "user_update_failed"},
            )
            raise

        logger.info(f"Updated user profile {identity.id}")
        self.analytics.capture(distinct_id=identity.id, event="user_profile_updated")
        if row:
            return User.model_validate(row)
        return existing.model_copy(
            update={
                "email": data["email"],
                "name": data["name"],
                "photo_url": data["photo_url"],
                "updated_at": datetime.fromisoformat(now),
            }
        )
