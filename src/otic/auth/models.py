"""Data models for authentication, sessions and business profiles."""

import logging
import time
from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger(__name__)


class UserType(str, Enum):
    """Account channel a profile was registered through."""

    BUSINESS = "business"
    INDIVIDUAL = "individual"


class Tier(str, Enum):
    """Subscription tier stored on a profile."""

    FREE_TRIAL = "free_trial"
    START_SMART = "start_smart"
    GROW_INTELLIGENCE = "grow_intelligence"
    ENTERPRISE_ADVANTAGE = "enterprise_advantage"


class IdentityProviderTag(str, Enum):
    """Identity providers the client knows how to treat specially."""

    PASSWORD = "password"
    GOOGLE = "google"


class AuthStatus(str, Enum):
    """Top-level authentication state."""

    INITIALIZING = "initializing"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"


class ProfileStatus(str, Enum):
    """Profile resolution state while authenticated."""

    PENDING = "pending"
    READY = "ready"
    UNAVAILABLE = "unavailable"


class Session(BaseModel):
    """
    An active authentication grant from the identity provider.

    A Session is either complete or absent: every field is required, and
    provider payloads missing any of them are rejected by `from_payload`.

    Attributes:
        subject_id: Stable opaque identity ID (Supabase user ID)
        email: Email address of the identity
        access_token: Bearer token for data store calls
        refresh_token: Token used to obtain a new access token
        expires_at: Access token expiry as epoch seconds
        provider: Identity provider tag ("password", "google", ...)

    Example:
        >>> session = Session.from_payload({
        ...     "access_token": "at", "refresh_token": "rt", "expires_at": 1900000000,
        ...     "user": {"id": "u1", "email": "a@x.com", "app_metadata": {"provider": "email"}},
        ... })
    """

    model_config = ConfigDict(frozen=True)

    subject_id: str = Field(min_length=1)
    email: str = Field(min_length=1)
    access_token: str = Field(min_length=1)
    refresh_token: str = Field(min_length=1)
    expires_at: int
    provider: str = Field(min_length=1)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> "Session | None":
        """
        Build a Session from the provider's session envelope.

        Args:
            payload: `{access_token, refresh_token, expires_at, user: {id, email,
                app_metadata: {provider}}}`

        Returns:
            Session, or None if any required field is missing or empty
        """
        if not payload:
            return None

        user = payload.get("user") or {}
        app_metadata = user.get("app_metadata") or {}

        fields = {
            "subject_id": user.get("id"),
            "email": user.get("email"),
            "access_token": payload.get("access_token"),
            "refresh_token": payload.get("refresh_token"),
            "expires_at": payload.get("expires_at"),
            "provider": normalize_provider(app_metadata.get("provider")),
        }
        missing = [name for name, value in fields.items() if value in (None, "")]
        if missing:
            logger.warning(
                "Discarding incomplete provider session",
                extra={"error_type": "incomplete_session", "missing_fields": missing},
            )
            return None

        return cls(
            **{
                **fields,
                "subject_id": str(fields["subject_id"]),
                "expires_at": int(fields["expires_at"]),
            }
        )

    def expires_within(self, seconds: int, now: float | None = None) -> bool:
        """Check whether the access token expires within `seconds`."""
        current = time.time() if now is None else now
        return self.expires_at - current <= seconds

    def is_expired(self, now: float | None = None) -> bool:
        """Check whether the access token has already expired."""
        return self.expires_within(0, now=now)


def normalize_provider(provider: Any) -> str | None:
    """Map Supabase's provider names onto our tags ("email" is password sign-in)."""
    if provider is None:
        return None
    value = str(provider).strip().lower()
    if value == "email":
        return IdentityProviderTag.PASSWORD.value
    return value or None


class Profile(BaseModel):
    """
    Durable business/user profile row keyed by the session's subject ID.

    Attributes:
        id: Subject ID of the owning identity
        user_type: Channel the account was registered through (immutable)
        tier: Subscription tier (defaults to free trial)
        business_name: Registered business name, if any
        email: Contact email
        email_verified: Whether the email address has been confirmed
        created_at: Row creation time
        deleted_at: Soft-delete marker; set while the account sits in its recovery window
    """

    model_config = ConfigDict(frozen=True)

    id: str
    user_type: UserType
    tier: Tier = Tier.FREE_TRIAL
    business_name: str | None = None
    email: str
    email_verified: bool = False
    created_at: datetime | None = None
    deleted_at: datetime | None = None

    @field_validator("tier", mode="before")
    @classmethod
    def _coerce_tier(cls, value: Any) -> Any:
        if value is None or value == "":
            return Tier.FREE_TRIAL
        if isinstance(value, Tier):
            return value
        try:
            return Tier(value)
        except ValueError:
            logger.warning(f"Unknown tier {value!r} on profile, using free_trial")
            return Tier.FREE_TRIAL

    @field_validator("email_verified", mode="before")
    @classmethod
    def _coerce_email_verified(cls, value: Any) -> Any:
        return False if value is None else value

    @property
    def is_soft_deleted(self) -> bool:
        """True while the profile is marked deleted."""
        return self.deleted_at is not None


class BusinessContext(BaseModel):
    """
    The business a signed-in business user operates.

    Derived once from the ready profile; individual accounts have none.
    """

    model_config = ConfigDict(frozen=True)

    business_id: str
    business_name: str | None = None
    tier: Tier = Tier.FREE_TRIAL

    @classmethod
    def from_profile(cls, profile: "Profile | None") -> "BusinessContext | None":
        if profile is None or profile.user_type != UserType.BUSINESS:
            return None
        return cls(business_id=profile.id, business_name=profile.business_name, tier=profile.tier)


class RecoverableAccountInfo(BaseModel):
    """Result of checking an email against the soft-delete store."""

    has_recoverable_account: bool = False
    user_type: UserType | None = None
    business_name: str | None = None
    deleted_at: datetime | None = None
    days_remaining: int = Field(default=0, ge=0)
    recovery_token: str | None = None

    @field_validator("days_remaining", mode="before")
    @classmethod
    def _clamp_days_remaining(cls, value: Any) -> Any:
        if value is None:
            return 0
        return max(int(value), 0)

    @model_validator(mode="after")
    def _expired_window_is_absent(self) -> "RecoverableAccountInfo":
        # A closed window is the same as no account.
        if self.days_remaining == 0:
            self.has_recoverable_account = False
        return self


class AuthState(BaseModel):
    """
    The single view of authentication the rest of the application observes.

    Consumers must not branch on `session`/`profile` while `loading` is True.
    """

    model_config = ConfigDict(frozen=True)

    status: AuthStatus = AuthStatus.INITIALIZING
    profile_status: ProfileStatus | None = None
    session: Session | None = None
    profile: Profile | None = None
    error: str | None = None
    generation: int = 0

    @property
    def loading(self) -> bool:
        """True while initializing or while the profile is still being resolved."""
        if self.status == AuthStatus.INITIALIZING:
            return True
        return (
            self.status == AuthStatus.AUTHENTICATED
            and self.profile_status == ProfileStatus.PENDING
        )

    @property
    def is_authenticated(self) -> bool:
        return self.status == AuthStatus.AUTHENTICATED

    @property
    def email_verified(self) -> bool:
        """Google-verified emails are trusted; otherwise the profile flag decides."""
        if self.session is not None and self.session.provider == IdentityProviderTag.GOOGLE.value:
            return True
        return bool(self.profile and self.profile.email_verified)

    @property
    def business(self) -> BusinessContext | None:
        """Business context, present only for ready business profiles."""
        if self.profile_status != ProfileStatus.READY:
            return None
        return BusinessContext.from_profile(self.profile)

    @classmethod
    def initializing(cls, generation: int = 0) -> "AuthState":
        return cls(status=AuthStatus.INITIALIZING, generation=generation)

    @classmethod
    def unauthenticated(cls, generation: int = 0, error: str | None = None) -> "AuthState":
        return cls(status=AuthStatus.UNAUTHENTICATED, generation=generation, error=error)

    @classmethod
    def authenticated(
        cls,
        session: Session,
        profile_status: ProfileStatus,
        profile: Profile | None = None,
        generation: int = 0,
    ) -> "AuthState":
        return cls(
            status=AuthStatus.AUTHENTICATED,
            profile_status=profile_status,
            session=session,
            profile=profile,
            generation=generation,
        )
