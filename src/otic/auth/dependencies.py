"""FastAPI dependencies exposing the auth orchestrator."""

import logging

from fastapi import Depends, HTTPException, Request, status

from src.otic.auth.exceptions import OrchestratorNotInitializedError
from src.otic.auth.models import AuthState
from src.otic.auth.orchestrator import AuthOrchestrator
from src.otic.auth.routing import GuardAction, RouteGuard

logger = logging.getLogger(__name__)

# Global orchestrator instance (initialized in main.py lifespan)
_orchestrator: AuthOrchestrator | None = None


def set_orchestrator(orchestrator: AuthOrchestrator | None) -> None:
    """
    Set the global auth orchestrator.

    Called during application startup, and with None at shutdown.

    Args:
        orchestrator: AuthOrchestrator instance
    """
    global _orchestrator
    _orchestrator = orchestrator


def get_orchestrator() -> AuthOrchestrator:
    """
    Get the global auth orchestrator.

    Raises:
        OrchestratorNotInitializedError: If application startup has not run
    """
    if _orchestrator is None:
        raise OrchestratorNotInitializedError(
            "Auth orchestrator not initialized. "
            "Ensure application lifespan calls set_orchestrator()."
        )
    return _orchestrator


def get_route_guard(orchestrator: AuthOrchestrator = Depends(get_orchestrator)) -> RouteGuard:
    return RouteGuard(orchestrator.routes)


async def require_authenticated_route(
    request: Request,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
    guard: RouteGuard = Depends(get_route_guard),
) -> AuthState:
    """
    Guard a route with the current auth state.

    Returns:
        AuthState when the route may render

    Raises:
        HTTPException: 307 with `Location` when the guard redirects,
            503 with `Retry-After` while auth state is still loading

    Example:
        @router.get("/dashboard")
        async def dashboard(state: AuthState = Depends(require_authenticated_route)):
            return {"business": state.profile.business_name}
    """
    state = orchestrator.state
    decision = guard.decide(request.url.path, state)

    if decision.action == GuardAction.LOADING:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication is still loading",
            headers={"Retry-After": "1"},
        )

    if decision.action == GuardAction.REDIRECT:
        logger.info(
            f"Redirecting {request.url.path} to {decision.target}",
            extra={"status": state.status.value},
        )
        raise HTTPException(
            status_code=status.HTTP_307_TEMPORARY_REDIRECT,
            detail="Redirect required",
            headers={"Location": decision.target},
        )

    return state
