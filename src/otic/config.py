"""Application configuration using Pydantic Settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # System Configuration
    api_v1_prefix: str = "/api/v1"
    debug: bool = False
    cors_origins: str = "http://localhost:8080,http://localhost:8081"
    rate_limit_enabled: bool = True

    # Supabase Configuration
    supabase_url: str = "https://test.supabase.co"
    supabase_anon_key: str = "test-anon-key"
    supabase_service_role_key: str = "test-service-role-key"

    # Persisted Session Storage
    session_storage_path: str = ".otic/session.json"
    session_storage_key: str = "otic.auth.session"

    # Client-side Timeouts (seconds)
    session_restore_timeout_seconds: float = 5.0
    profile_fetch_timeout_seconds: float = 8.0
    recovery_check_timeout_seconds: float = 8.0
    sign_in_timeout_seconds: float = 10.0

    # Retry Budgets
    profile_fetch_attempts: int = 3
    profile_backoff_seconds: float = 0.5  # First wait; doubles per attempt
    session_restore_attempts: int = 2  # Initial call plus one retry
    session_restore_backoff_seconds: float = 1.0
    session_refresh_margin_seconds: int = 60  # Refresh tokens this close to expiry

    # Route Table
    sign_in_route: str = "/signin"
    business_dashboard_route: str = "/dashboard"
    individual_dashboard_route: str = "/individual-dashboard"
    account_setup_route: str = "/account-setup"
    oauth_callback_route: str = "/auth/callback"
    email_verification_route: str = "/verify-email"
    app_base_url: str = "http://localhost:8080"  # Browser origin used in redirect URLs
    public_routes: str = "/,/signin,/signup,/business-signin,/individual-signin,/auth/callback"

    # PostHog Configuration
    posthog_api_key: str | None = None
    posthog_host: str = "https://app.posthog.com"


settings = Settings()
