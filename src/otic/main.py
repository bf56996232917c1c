"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from src.otic.auth import (
    AccountRecoveryChecker,
    AuthOrchestrator,
    FileSessionStorage,
    ProfileResolver,
    RouteTable,
    SessionStore,
    SupabaseIdentityProvider,
    SupabaseProfileStore,
    set_orchestrator,
)
from src.otic.config import Settings, settings
from src.otic.features.auth import callback_router, router as auth_router
from src.otic.services import PostHogService
from src.otic.services.database import get_supabase_admin_client, get_supabase_client
from src.otic.services.rate_limiter import limiter

logger = logging.getLogger(__name__)

# Global identity provider instance for cleanup
_identity_provider: SupabaseIdentityProvider | None = None


def build_orchestrator(config: Settings) -> tuple[AuthOrchestrator, SupabaseIdentityProvider]:
    """
    Wire the auth service graph from settings.

    Returns:
        The orchestrator and the identity provider (which owns an HTTP client
        that must be closed at shutdown)
    """
    provider = SupabaseIdentityProvider(
        get_supabase_client(),
        config.supabase_url,
        config.supabase_anon_key,
        email_redirect_to=f"{config.app_base_url}{config.email_verification_route}",
    )
    session_store = SessionStore(
        provider,
        FileSessionStorage(config.session_storage_path),
        config.session_storage_key,
        sign_in_timeout=config.sign_in_timeout_seconds,
        restore_timeout=config.session_restore_timeout_seconds,
        restore_attempts=config.session_restore_attempts,
        restore_backoff=config.session_restore_backoff_seconds,
        refresh_margin=config.session_refresh_margin_seconds,
    )
    profile_resolver = ProfileResolver(
        SupabaseProfileStore(get_supabase_admin_client()),
        timeout=config.profile_fetch_timeout_seconds,
        attempts=config.profile_fetch_attempts,
        backoff=config.profile_backoff_seconds,
    )
    recovery_checker = AccountRecoveryChecker(
        get_supabase_client(), timeout=config.recovery_check_timeout_seconds
    )
    orchestrator = AuthOrchestrator(
        session_store,
        profile_resolver,
        recovery_checker,
        routes=RouteTable.from_settings(config),
        analytics=PostHogService(),
    )
    return orchestrator, provider


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle (startup and shutdown)."""
    global _identity_provider

    # Startup
    try:
        logger.info("Initializing auth orchestrator")
        orchestrator, _identity_provider = build_orchestrator(settings)
        set_orchestrator(orchestrator)
    except Exception as e:
        logger.error(
            f"Failed to initialize auth orchestrator: {e}",
            exc_info=True,
            extra={"error_type": "orchestrator_init_failed"},
        )
        raise

    state = await orchestrator.init()
    logger.info(
        "Auth state restored",
        extra={"status": state.status.value, "profile_status": getattr(state.profile_status, "value", None)},
    )

    yield

    # Shutdown
    set_orchestrator(None)
    if _identity_provider is not None:
        try:
            await _identity_provider.close()
        except Exception as e:
            logger.error(f"Error during identity provider cleanup: {e}", exc_info=True)
        _identity_provider = None


app = FastAPI(
    title="Otic Session Gateway",
    description="Authentication, session and profile resolution for the Otic business app",
    version="0.1.0",
    debug=settings.debug,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

origins = settings.cors_origins.split(",")
logger.info(f"Origins : {origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
)

app.include_router(auth_router, prefix=settings.api_v1_prefix, tags=["auth"])
app.include_router(callback_router)


class HealthCheckResponse(BaseModel):
    """Health check response."""

    status: str


@app.get("/health", response_model=HealthCheckResponse)
async def health_check() -> HealthCheckResponse:
    """Health check endpoint."""
    return HealthCheckResponse(status="healthy")
