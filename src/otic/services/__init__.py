"""Shared services module for external integrations."""

from src.otic.services.posthog import PostHogService

__all__ = [
    "PostHogService",
]
