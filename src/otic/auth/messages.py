"""User-facing messages for authentication outcomes."""

from src.otic.auth.models import RecoverableAccountInfo, UserType
from src.otic.auth.outcomes import (
    AuthErrorKind,
    AuthFailure,
    RecentlyRestored,
    RecoveryCheckError,
)

VERIFY_EMAIL_MESSAGE = (
    "Check your inbox and confirm your email address to finish setting up your account."
)

SIGN_IN_FORMS = {
    UserType.BUSINESS: "/business-signin",
    UserType.INDIVIDUAL: "/individual-signin",
}

_MESSAGES = {
    AuthErrorKind.INVALID_INPUT: "Please enter both your email address and password.",
    AuthErrorKind.INVALID_CREDENTIALS: (
        "The email or password is incorrect. Check your details and try again."
    ),
    AuthErrorKind.NETWORK_ERROR: (
        "We couldn't reach the server. Check your internet connection and try again."
    ),
    AuthErrorKind.TIMEOUT: "The server is taking too long to respond. Please try again.",
    AuthErrorKind.PROVIDER_ERROR: "We couldn't complete sign-in right now. Please try again.",
    AuthErrorKind.PROFILE_NOT_FOUND: (
        "We're still setting up your account. This usually takes a few seconds."
    ),
    AuthErrorKind.RECENTLY_RESTORED: (
        "Your account was just restored. Please sign in again to continue."
    ),
}


def failure_message(failure: AuthFailure) -> str:
    """Actionable message for a failure; never the raw provider text."""
    if failure.kind == AuthErrorKind.ACCOUNT_TYPE_MISMATCH:
        actual = failure.actual_user_type
        if actual is None:
            return "This account can't sign in here. Please use the other sign-in form."
        return (
            f"This email is registered as {_article(actual)} {actual.value} account. "
            f"Please use the {actual.value} sign-in form at {SIGN_IN_FORMS[actual]}."
        )
    return _MESSAGES[failure.kind]


def recovery_message(
    recovery: RecoverableAccountInfo | RecentlyRestored | RecoveryCheckError | None,
) -> str | None:
    """Message offering recovery, or None when there is nothing to offer."""
    if isinstance(recovery, RecentlyRestored):
        return _MESSAGES[AuthErrorKind.RECENTLY_RESTORED]
    if isinstance(recovery, RecoverableAccountInfo) and recovery.has_recoverable_account:
        days = recovery.days_remaining
        return (
            "We found a recently deleted account for this email. "
            f"You have {days} day{'s' if days != 1 else ''} left to recover it, "
            "or you can start fresh with a new account."
        )
    return None


def _article(user_type: UserType) -> str:
    return "an" if user_type == UserType.INDIVIDUAL else "a"
