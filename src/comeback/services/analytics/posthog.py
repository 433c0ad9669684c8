"""PostHog analytics service for auth event tracking."""

import logging

import posthog

from src.comeback.config import settings

logger = logging.getLogger(__name__)


class PostHogService:
    """Service for tracking analytics events via PostHog. A no-op without an API key."""

    def __init__(self) -> None:
        """Initialize PostHog service."""
        if settings.posthog_api_key:
            posthog.api_key = settings.posthog_api_key
            posthog.host = settings.posthog_host

    def capture(self, distinct_id: str, event: str, properties: dict | None = None) -> None:
        """
        Track an event.

        Args:
            distinct_id: Unique identifier for the user
            event: Event name (e.g., "user_profile_created", "authorization_denied")
            properties: Optional event properties

        Example:
            >>> service = PostHogService()
            >>> service.capture("user-123", "user_logged_out")
        """
        if not settings.posthog_api_key:
            return

        try:
            posthog.capture(distinct_id=distinct_id, event=event, properties=properties or {})
        except Exception as e:
            # analytics must never break sign-in
            logger.warning(f"PostHog capture failed for {event}: {e}")
