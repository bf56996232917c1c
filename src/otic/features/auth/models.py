"""Pydantic models for the auth feature endpoints."""

from pydantic import BaseModel, Field

from src.otic.auth.models import (
    AuthState,
    AuthStatus,
    BusinessContext,
    ProfileStatus,
    RecoverableAccountInfo,
    Tier,
    UserType,
)
from src.otic.auth.routing import GuardAction


class SignInRequest(BaseModel):
    """Request model for email/password sign-in."""

    email: str = Field(max_length=320, description="Account email")
    password: str = Field(max_length=1024, description="Account password")
    user_type: UserType | None = Field(
        None, description="Channel of the sign-in form; omit for the generic form"
    )

    class Config:
        """Pydantic config."""

        json_schema_extra = {
            "example": {
                "email": "owner@shop.com",
                "password": "correct horse battery staple",
                "user_type": "business",
            }
        }


class SignUpRequest(BaseModel):
    """Request model for account registration."""

    email: str = Field(max_length=320)
    password: str = Field(max_length=1024)
    business_name: str | None = Field(None, max_length=255)
    user_type: UserType = UserType.BUSINESS
    tier: Tier = Tier.FREE_TRIAL


class OAuthStartRequest(BaseModel):
    """Request model for starting an OAuth sign-in."""

    redirect_to: str | None = Field(
        None, description="Callback URL; defaults to the configured OAuth callback route"
    )


class OAuthStartResponse(BaseModel):
    """Authorization URL the browser must navigate to."""

    url: str


class OAuthCallbackRequest(BaseModel):
    """Full redirect URL (including fragment) as seen by the browser."""

    url: str


class RecoveryCheckRequest(BaseModel):
    email: str = Field(max_length=320)


class RecoverRequest(BaseModel):
    recovery_token: str
    subject_id: str


class RecoveryOffer(BaseModel):
    """Recover-or-Start-Fresh choice presented after a failed sign-in."""

    has_recoverable_account: bool
    days_remaining: int = 0
    user_type: UserType | None = None
    business_name: str | None = None
    recovery_token: str | None = None
    recently_restored: bool = False

    @classmethod
    def from_info(cls, info: RecoverableAccountInfo) -> "RecoveryOffer":
        return cls(
            has_recoverable_account=info.has_recoverable_account,
            days_remaining=info.days_remaining,
            user_type=info.user_type,
            business_name=info.business_name,
            recovery_token=info.recovery_token if info.has_recoverable_account else None,
        )


class AuthStateResponse(BaseModel):
    """
    Public view of the auth state.

    Tokens never leave the service; clients see identity and profile facts only.
    """

    status: AuthStatus
    profile_status: ProfileStatus | None = None
    loading: bool
    email_verified: bool
    subject_id: str | None = None
    email: str | None = None
    provider: str | None = None
    user_type: UserType | None = None
    tier: Tier | None = None
    business_name: str | None = None
    business: BusinessContext | None = None
    error: str | None = None
    dashboard_route: str

    @classmethod
    def from_state(cls, state: AuthState, dashboard_route: str) -> "AuthStateResponse":
        session = state.session
        profile = state.profile
        return cls(
            status=state.status,
            profile_status=state.profile_status,
            loading=state.loading,
            email_verified=state.email_verified,
            subject_id=session.subject_id if session else None,
            email=session.email if session else None,
            provider=session.provider if session else None,
            user_type=profile.user_type if profile else None,
            tier=profile.tier if profile else None,
            business_name=profile.business_name if profile else None,
            business=state.business,
            error=state.error,
            dashboard_route=dashboard_route,
        )


class SignInResponse(BaseModel):
    """Response model for a successful sign-in or OAuth completion."""

    state: AuthStateResponse
    message: str | None = None


class SignUpResponse(BaseModel):
    """Response model for sign-up."""

    needs_email_verification: bool
    message: str | None = None
    state: AuthStateResponse


class RecoveryResponse(BaseModel):
    success: bool
    message: str | None = None


class DashboardRouteResponse(BaseModel):
    route: str


class GuardResponse(BaseModel):
    """Navigation decision for a requested path."""

    action: GuardAction
    target: str | None = None
    show_verification_reminder: bool = False
