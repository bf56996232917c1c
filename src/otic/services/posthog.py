"""PostHog analytics service for auth event tracking."""

import posthog

from src.otic.config import settings


class PostHogService:
    """Service for tracking analytics events via PostHog. No-op without an API key."""

    def __init__(self) -> None:
        if settings.posthog_api_key:
            posthog.api_key = settings.posthog_api_key
            posthog.host = settings.posthog_host

    def capture(self, distinct_id: str, event: str, properties: dict | None = None) -> None:
        """
        Track an event.

        Args:
            distinct_id: Subject ID of the user, or "anonymous"
            event: Event name (e.g., "sign_in_succeeded", "account_type_mismatch")
            properties: Optional event properties; never credentials or tokens

        Example:
            >>> service = PostHogService()
            >>> service.capture("5b0c...", "sign_in_failed", {"kind": "invalid_credentials"})
        """
        if not settings.posthog_api_key:
            return

        posthog.capture(distinct_id=distinct_id, event=event, properties=properties or {})

    def identify(self, distinct_id: str, properties: dict | None = None) -> None:
        """Attach profile properties (user type, tier) to a subject."""
        if not settings.posthog_api_key:
            return

        posthog.identify(distinct_id=distinct_id, properties=properties or {})
