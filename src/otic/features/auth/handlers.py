"""API handlers for authentication endpoints."""

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse

from src.otic.auth.dependencies import get_orchestrator, get_route_guard, require_authenticated_route
from src.otic.auth.messages import failure_message
from src.otic.auth.models import AuthState, RecoverableAccountInfo
from src.otic.auth.orchestrator import AuthOrchestrator
from src.otic.auth.outcomes import (
    AuthErrorKind,
    AuthFailure,
    RecentlyRestored,
    RecoveryCheckError,
    SignInOutcome,
)
from src.otic.auth.routing import RouteGuard
from src.otic.config import settings
from src.otic.features.auth.models import (
    AuthStateResponse,
    DashboardRouteResponse,
    GuardResponse,
    OAuthCallbackRequest,
    OAuthStartRequest,
    OAuthStartResponse,
    RecoverRequest,
    RecoveryCheckRequest,
    RecoveryOffer,
    RecoveryResponse,
    SignInRequest,
    SignInResponse,
    SignUpRequest,
    SignUpResponse,
)
from src.otic.services.rate_limiter import (
    credentials_rate_limit,
    default_rate_limit,
    recovery_rate_limit,
    write_rate_limit,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

# Browser-facing OAuth return, mounted without the API prefix
callback_router = APIRouter(tags=["auth"])

_FAILURE_STATUS = {
    AuthErrorKind.INVALID_INPUT: status.HTTP_400_BAD_REQUEST,
    AuthErrorKind.INVALID_CREDENTIALS: status.HTTP_401_UNAUTHORIZED,
    AuthErrorKind.ACCOUNT_TYPE_MISMATCH: status.HTTP_403_FORBIDDEN,
    AuthErrorKind.PROFILE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    AuthErrorKind.RECENTLY_RESTORED: status.HTTP_409_CONFLICT,
    AuthErrorKind.NETWORK_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
    AuthErrorKind.TIMEOUT: status.HTTP_503_SERVICE_UNAVAILABLE,
    AuthErrorKind.PROVIDER_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
}

SUPERSEDED_MESSAGE = "A newer sign-in attempt replaced this one."


def _failure_exception(
    failure: AuthFailure,
    message: str | None = None,
    recovery: RecoveryOffer | None = None,
) -> HTTPException:
    detail = {"kind": failure.kind.value, "message": message or failure_message(failure)}
    if failure.actual_user_type is not None:
        detail["actual_user_type"] = failure.actual_user_type.value
    if recovery is not None:
        detail["recovery"] = recovery.model_dump(mode="json")
    return HTTPException(status_code=_FAILURE_STATUS[failure.kind], detail=detail)


def _recovery_offer(
    recovery: RecoverableAccountInfo | RecentlyRestored | RecoveryCheckError | None,
) -> RecoveryOffer | None:
    if isinstance(recovery, RecentlyRestored):
        return RecoveryOffer(has_recoverable_account=False, recently_restored=True)
    if isinstance(recovery, RecoverableAccountInfo):
        return RecoveryOffer.from_info(recovery)
    return None


def _state_response(orchestrator: AuthOrchestrator) -> AuthStateResponse:
    return AuthStateResponse.from_state(orchestrator.state, orchestrator.get_dashboard_route())


def _sign_in_response(orchestrator: AuthOrchestrator, outcome: SignInOutcome) -> SignInResponse:
    if outcome.superseded:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"kind": "superseded", "message": SUPERSEDED_MESSAGE},
        )
    if outcome.failure is not None:
        raise _failure_exception(outcome.failure, outcome.message, _recovery_offer(outcome.recovery))
    return SignInResponse(state=_state_response(orchestrator), message=outcome.message)


@router.get("/state", response_model=AuthStateResponse)
@default_rate_limit
async def get_auth_state(
    request: Request,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> AuthStateResponse:
    """
    Get the current auth state.

    Refreshes the access token first if it is about to expire.

    Example Response:
        {
            "status": "authenticated",
            "profile_status": "ready",
            "loading": false,
            "email_verified": true,
            "user_type": "business",
            "tier": "free_trial",
            "dashboard_route": "/dashboard"
        }
    """
    await orchestrator.ensure_fresh_session()
    return _state_response(orchestrator)


@router.post("/sign-in", response_model=SignInResponse)
@credentials_rate_limit
async def sign_in(
    request: Request,
    body: SignInRequest,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> SignInResponse:
    """
    Sign in with email and password.

    Args:
        body: Credentials and the channel of the form used

    Returns:
        New auth state and dashboard route

    Raises:
        HTTPException: 400 missing fields, 401 wrong credentials (with the
            recovery offer when a deleted account matches), 403 account type
            mismatch, 409 superseded by a newer attempt, 503 network/timeout
    """
    outcome = await orchestrator.sign_in(body.email, body.password, body.user_type)
    return _sign_in_response(orchestrator, outcome)


@router.post("/sign-up", response_model=SignUpResponse, status_code=status.HTTP_201_CREATED)
@credentials_rate_limit
async def sign_up(
    request: Request,
    body: SignUpRequest,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> SignUpResponse:
    """Register a new account."""
    outcome = await orchestrator.sign_up(
        body.email, body.password, body.business_name, body.user_type, body.tier
    )
    if outcome.failure is not None:
        raise _failure_exception(outcome.failure, outcome.message)
    return SignUpResponse(
        needs_email_verification=outcome.needs_email_verification,
        message=outcome.message,
        state=_state_response(orchestrator),
    )


@router.post("/sign-out", response_model=AuthStateResponse)
@write_rate_limit
async def sign_out(
    request: Request,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> AuthStateResponse:
    """Sign out. Returns once local state is cleared; revocation continues in the background."""
    orchestrator.sign_out()
    return _state_response(orchestrator)


@router.post("/token-invalidated", response_model=AuthStateResponse)
@write_rate_limit
async def token_invalidated(
    request: Request,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> AuthStateResponse:
    """Report that the data store rejected the access token."""
    orchestrator.handle_token_invalidated()
    return _state_response(orchestrator)


@router.post("/oauth/callback", response_model=SignInResponse)
@credentials_rate_limit
async def complete_oauth(
    request: Request,
    body: OAuthCallbackRequest,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> SignInResponse:
    """
    Complete an OAuth sign-in from the redirect URL the browser landed on.

    Implicit-flow tokens live in the URL fragment, which browsers never
    send to servers, so the client posts the full URL here.
    """
    outcome = await orchestrator.handle_oauth_callback(body.url)
    return _sign_in_response(orchestrator, outcome)


@router.post("/oauth/{provider}", response_model=OAuthStartResponse)
@credentials_rate_limit
async def start_oauth(
    request: Request,
    provider: str,
    body: OAuthStartRequest | None = None,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> OAuthStartResponse:
    """Start an OAuth sign-in and return the provider authorization URL."""
    redirect_to = (body and body.redirect_to) or (
        f"{settings.app_base_url}{settings.oauth_callback_route}"
    )
    outcome = await orchestrator.sign_in_with_oauth(provider, redirect_to)
    if isinstance(outcome, AuthFailure):
        raise _failure_exception(outcome)
    return OAuthStartResponse(url=outcome)


@callback_router.get("/auth/callback", include_in_schema=False)
async def oauth_callback(
    request: Request,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> RedirectResponse:
    """PKCE return: exchange the `code` query parameter and redirect to the dashboard."""
    outcome = await orchestrator.handle_oauth_callback(str(request.url))
    if outcome.failure is not None:
        query = urlencode({"error": outcome.failure.kind.value})
        return RedirectResponse(
            f"{orchestrator.routes.sign_in}?{query}", status_code=status.HTTP_303_SEE_OTHER
        )
    return RedirectResponse(orchestrator.get_dashboard_route(), status_code=status.HTTP_303_SEE_OTHER)


@router.post("/recovery/check", response_model=RecoveryOffer)
@recovery_rate_limit
async def check_recovery(
    request: Request,
    body: RecoveryCheckRequest,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> RecoveryOffer:
    """
    Check whether an email has a soft-deleted account that can be recovered.

    Raises:
        HTTPException: 400 missing email, 503 if the check could not be made
    """
    try:
        outcome = await orchestrator.recovery_checker.check_recoverable_account_by_email(
            body.email
        )
    except Exception as e:
        logger.error(f"Recovery check failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to check for a recoverable account. Please try again.",
        ) from e

    if isinstance(outcome, RecoveryCheckError):
        raise _failure_exception(AuthFailure(kind=outcome.kind, detail=outcome.detail))
    return _recovery_offer(outcome)


@router.post("/recovery/recover", response_model=RecoveryResponse)
@recovery_rate_limit
async def recover_account(
    request: Request,
    body: RecoverRequest,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> RecoveryResponse:
    """Restore a soft-deleted account onto a new identity."""
    try:
        result = await orchestrator.recovery_checker.recover_account(
            body.recovery_token, body.subject_id
        )
    except Exception as e:
        logger.error(f"Account recovery failed for {body.subject_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to recover the account. Please try again.",
        ) from e

    if result.failure is not None:
        raise _failure_exception(result.failure)
    return RecoveryResponse(success=True, message=result.message)


@router.post("/profile/retry", response_model=AuthStateResponse)
@write_rate_limit
async def retry_profile(
    request: Request,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> AuthStateResponse:
    """Retry profile resolution from the account-setup page."""
    await orchestrator.retry_profile()
    return _state_response(orchestrator)


@router.get("/dashboard-route", response_model=DashboardRouteResponse)
@default_rate_limit
async def get_dashboard_route(
    request: Request,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> DashboardRouteResponse:
    return DashboardRouteResponse(route=orchestrator.get_dashboard_route())


@router.get("/guard", response_model=GuardResponse)
@default_rate_limit
async def guard_route(
    request: Request,
    path: str = Query(..., description="Client route being navigated to"),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
    guard: RouteGuard = Depends(get_route_guard),
) -> GuardResponse:
    """Decide whether the client may render `path`, must wait, or must redirect."""
    decision = guard.decide(path, orchestrator.state)
    return GuardResponse(
        action=decision.action,
        target=decision.target,
        show_verification_reminder=decision.show_verification_reminder,
    )


@router.get("/me", response_model=AuthStateResponse)
@default_rate_limit
async def get_me(
    request: Request,
    state: AuthState = Depends(require_authenticated_route),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> AuthStateResponse:
    """Current user's identity and profile; guarded like any protected page."""
    return AuthStateResponse.from_state(state, orchestrator.get_dashboard_route())
