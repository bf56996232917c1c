"""Typed outcomes for expected authentication failures.

Session store, profile resolver and recovery checker return these values
instead of raising, so the orchestrator can branch on them explicitly.
"""

from enum import Enum

from pydantic import BaseModel

from src.otic.auth.models import Profile, RecoverableAccountInfo, Session, UserType


class AuthErrorKind(str, Enum):
    """Failure kinds surfaced by authentication operations."""

    INVALID_INPUT = "invalid_input"
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_TYPE_MISMATCH = "account_type_mismatch"
    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    PROVIDER_ERROR = "provider_error"
    PROFILE_NOT_FOUND = "profile_not_found"
    RECENTLY_RESTORED = "recently_restored"


class AuthFailure(BaseModel):
    """
    An expected authentication failure.

    Attributes:
        kind: Failure kind
        detail: Diagnostic text for logs (never shown to users)
        actual_user_type: For `account_type_mismatch`, the type the account really has
    """

    kind: AuthErrorKind
    detail: str = ""
    actual_user_type: UserType | None = None

    @property
    def is_transient(self) -> bool:
        return self.kind in (AuthErrorKind.NETWORK_ERROR, AuthErrorKind.TIMEOUT)


class ProfileNotFound(BaseModel):
    """No profile row exists (yet) for the subject."""

    subject_id: str


class ProfileFetchError(BaseModel):
    """The profile read failed for a reason other than the row being absent."""

    subject_id: str
    kind: AuthErrorKind = AuthErrorKind.NETWORK_ERROR
    detail: str = ""


class RecentlyRestored(BaseModel):
    """The account was restored moments ago; the user should simply sign in again."""

    email: str


class RecoveryCheckError(BaseModel):
    """The recovery check itself failed."""

    kind: AuthErrorKind = AuthErrorKind.NETWORK_ERROR
    detail: str = ""


ProfileLookup = Profile | ProfileNotFound | ProfileFetchError
RecoveryCheck = RecoverableAccountInfo | RecentlyRestored | RecoveryCheckError


class SignUpResult(BaseModel):
    """Provider response to a sign-up request."""

    subject_id: str | None = None
    session: Session | None = None
    needs_email_verification: bool = False
    failure: AuthFailure | None = None


class RecoveryResult(BaseModel):
    """Outcome of restoring a soft-deleted account."""

    success: bool
    message: str | None = None
    failure: AuthFailure | None = None


class SignInOutcome(BaseModel):
    """
    What a sign-in attempt produced, as seen by the caller.

    Attributes:
        session: Session when the attempt succeeded
        failure: Failure when it did not
        recovery: Recovery check result (only after `invalid_credentials`)
        message: User-facing message for the failure or recovery offer
        superseded: True if a newer call replaced this one before it finished
    """

    session: Session | None = None
    failure: AuthFailure | None = None
    recovery: RecoverableAccountInfo | RecentlyRestored | RecoveryCheckError | None = None
    message: str | None = None
    superseded: bool = False

    @property
    def succeeded(self) -> bool:
        return self.session is not None and self.failure is None and not self.superseded

    @property
    def offers_recovery(self) -> bool:
        """True when the UI should present the Recover-or-Start-Fresh choice."""
        return (
            isinstance(self.recovery, RecoverableAccountInfo)
            and self.recovery.has_recoverable_account
        )


class SignUpOutcome(BaseModel):
    """What a sign-up attempt produced, as seen by the caller."""

    session: Session | None = None
    needs_email_verification: bool = False
    failure: AuthFailure | None = None
    message: str | None = None
