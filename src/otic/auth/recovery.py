"""Account recovery checks for soft-deleted accounts."""

import asyncio
import logging
from typing import Any

import httpx
from postgrest.exceptions import APIError
from pydantic import ValidationError
from supabase import Client

from src.otic.auth.exceptions import MalformedResponseError
from src.otic.auth.models import RecoverableAccountInfo
from src.otic.auth.outcomes import (
    AuthErrorKind,
    AuthFailure,
    RecentlyRestored,
    RecoveryCheck,
    RecoveryCheckError,
    RecoveryResult,
)
from src.otic.auth.timeouts import with_timeout

logger = logging.getLogger(__name__)

RECENTLY_RESTORED = "recently_restored"


def should_check_recovery(failure: AuthFailure | None) -> bool:
    """
    Decide whether a failed sign-in may be followed by a recovery check.

    Only credential failures qualify. Type mismatches and network errors
    say nothing about deleted accounts, and checking on them would leak
    account existence for unrelated failures.
    """
    return failure is not None and failure.kind == AuthErrorKind.INVALID_CREDENTIALS


def _single_row(data: Any) -> dict[str, Any] | None:
    """RPC results arrive as an object or a one-row list depending on the function."""
    if data is None:
        return None
    if isinstance(data, list):
        return data[0] if data else None
    if isinstance(data, dict):
        return data
    raise MalformedResponseError(f"Unexpected RPC payload type: {type(data).__name__}")


class AccountRecoveryChecker:
    """
    Checks whether an email belongs to a soft-deleted account still in its
    recovery window, and restores such accounts.

    Results are computed on demand and never cached.

    Attributes:
        client: Supabase client used for the recovery RPCs
        timeout: Per-call timeout (seconds)

    Example:
        >>> checker = AccountRecoveryChecker(get_supabase_client())
        >>> info = await checker.check_recoverable_account_by_email("a@x.com")
        >>> if isinstance(info, RecoverableAccountInfo) and info.has_recoverable_account:
        ...     print(f"{info.days_remaining} days left to recover")
    """

    def __init__(self, client: Client, timeout: float = 8.0) -> None:
        self.client = client
        self.timeout = timeout

    async def check_recoverable_account_by_email(self, email: str) -> RecoveryCheck:
        """
        Look up `email` in the soft-delete store.

        Returns:
            RecoverableAccountInfo (zero days remaining is reported as not
            recoverable), RecentlyRestored if the account was just restored,
            or RecoveryCheckError
        """
        email = (email or "").strip().lower()
        if not email:
            return RecoveryCheckError(kind=AuthErrorKind.INVALID_INPUT, detail="email required")

        outcome = await self._rpc(
            "check_recoverable_account", {"email_param": email}, operation="check_recoverable_account"
        )
        if isinstance(outcome, RecoveryCheckError):
            return outcome

        row = _single_row(outcome) or {"has_recoverable_account": False}
        if row.get(RECENTLY_RESTORED) or row.get("error") == RECENTLY_RESTORED:
            logger.info("Account was recently restored", extra={"error_type": RECENTLY_RESTORED})
            return RecentlyRestored(email=email)

        try:
            info = RecoverableAccountInfo.model_validate(row)
        except ValidationError as e:
            raise MalformedResponseError(f"Malformed recovery check response: {e}") from e

        logger.info(
            "Recovery check completed",
            extra={
                "has_recoverable_account": info.has_recoverable_account,
                "days_remaining": info.days_remaining,
            },
        )
        return info

    async def recover_account(self, recovery_token: str, new_subject_id: str) -> RecoveryResult:
        """
        Restore a soft-deleted account onto a fresh identity.

        Args:
            recovery_token: Token issued when the account was soft-deleted
            new_subject_id: Subject ID of the identity taking the account over

        Returns:
            RecoveryResult; a `recently_restored` failure means the account
            was already restored and the user should sign in again
        """
        if not recovery_token or not new_subject_id:
            return RecoveryResult(
                success=False,
                failure=AuthFailure(kind=AuthErrorKind.INVALID_INPUT, detail="token and subject required"),
            )

        outcome = await self._rpc(
            "recover_user_account",
            {"recovery_token_param": recovery_token, "new_user_id": new_subject_id},
            operation="recover_user_account",
        )
        if isinstance(outcome, RecoveryCheckError):
            return RecoveryResult(
                success=False, failure=AuthFailure(kind=outcome.kind, detail=outcome.detail)
            )

        row = _single_row(outcome) or {}
        if row.get("success"):
            logger.info("Account recovered", extra={"subject_id": new_subject_id})
            return RecoveryResult(success=True, message=row.get("message"))

        error = str(row.get("error") or "recovery failed")
        kind = (
            AuthErrorKind.RECENTLY_RESTORED
            if RECENTLY_RESTORED in error.lower().replace(" ", "_")
            else AuthErrorKind.PROVIDER_ERROR
        )
        return RecoveryResult(success=False, failure=AuthFailure(kind=kind, detail=error))

    async def _rpc(self, function: str, params: dict[str, Any], operation: str) -> Any:
        try:
            response = await with_timeout(
                asyncio.to_thread(self.client.rpc(function, params).execute),
                self.timeout,
                on_timeout=lambda: RecoveryCheckError(
                    kind=AuthErrorKind.TIMEOUT, detail=f"{operation} timed out"
                ),
                operation=operation,
            )
        except (httpx.TransportError, ConnectionError) as e:
            logger.warning(
                f"{operation} failed: {e}", extra={"error_type": "recovery_rpc_network_error"}
            )
            return RecoveryCheckError(kind=AuthErrorKind.NETWORK_ERROR, detail=str(e))
        except APIError as e:
            logger.error(
                f"{operation} rejected: {e.message}", extra={"error_type": "recovery_rpc_rejected"}
            )
            return RecoveryCheckError(kind=AuthErrorKind.PROVIDER_ERROR, detail=str(e.message))

        if isinstance(response, RecoveryCheckError):
            return response
        return response.data
