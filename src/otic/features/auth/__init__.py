"""Auth feature: HTTP endpoints over the auth orchestrator."""

from src.otic.features.auth.handlers import callback_router, router

__all__ = [
    "router",
    "callback_router",
]
