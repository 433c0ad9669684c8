"""Analytics integrations."""

from src.comeback.services.analytics.posthog import PostHogService

__all__ = ["PostHogService"]
