"""Session store: the identity provider's session lifecycle behind a small API."""

import asyncio
import logging
from typing import Any

from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from src.otic.auth.exceptions import MalformedResponseError
from src.otic.auth.models import Session, UserType
from src.otic.auth.outcomes import AuthErrorKind, AuthFailure, SignUpResult
from src.otic.auth.providers import IdentityProvider, classify_provider_error
from src.otic.auth.redirect import parse_redirect, session_payload_from_tokens
from src.otic.auth.storage import SessionStorage
from src.otic.auth.timeouts import with_timeout

logger = logging.getLogger(__name__)


def _is_transient(outcome: Any) -> bool:
    return isinstance(outcome, AuthFailure) and outcome.is_transient


def _timeout_failure(operation: str):
    return lambda: AuthFailure(kind=AuthErrorKind.TIMEOUT, detail=f"{operation} timed out")


class SessionStore:
    """
    Wraps the identity provider session lifecycle and its persisted copy.

    Expected failures come back as `AuthFailure` values; only malformed
    provider responses and programming errors raise.

    Attributes:
        provider: Identity provider adapter
        storage: Durable storage the session is persisted to
        storage_key: Fixed namespaced key the session is stored under
        sign_in_timeout: Timeout for credential calls (seconds)
        restore_timeout: Timeout for each restore/refresh attempt (seconds)
        restore_attempts: Attempts for restore, including the first one
        restore_backoff: First backoff wait between restore attempts (seconds)
        refresh_margin: Refresh tokens expiring within this many seconds

    Example:
        >>> store = SessionStore(provider, FileSessionStorage(".otic/session.json"))
        >>> session = await store.restore_session()
        >>> outcome = await store.sign_in("owner@shop.com", "secret", UserType.BUSINESS)
    """

    def __init__(
        self,
        provider: IdentityProvider,
        storage: SessionStorage,
        storage_key: str = "otic.auth.session",
        *,
        sign_in_timeout: float = 10.0,
        restore_timeout: float = 5.0,
        restore_attempts: int = 2,
        restore_backoff: float = 1.0,
        refresh_margin: int = 60,
    ) -> None:
        self.provider = provider
        self.storage = storage
        self.storage_key = storage_key
        self.sign_in_timeout = sign_in_timeout
        self.restore_timeout = restore_timeout
        self.restore_attempts = restore_attempts
        self.restore_backoff = restore_backoff
        self.refresh_margin = refresh_margin
        self._restore_task: asyncio.Task[Session | None] | None = None
        self._restored: Session | None = None

    # Persistence

    def persist(self, session: Session) -> None:
        """Write the session to durable storage."""
        self.storage.set(self.storage_key, session.model_dump(mode="json"))

    def clear_persisted(self) -> None:
        """Remove the persisted session."""
        self._restored = None
        self.storage.remove(self.storage_key)

    # Credential flows

    async def sign_in(
        self,
        email: str,
        password: str,
        expected_user_type: UserType | None = None,
        *,
        persist: bool = True,
    ) -> Session | AuthFailure:
        """
        Sign in with email and password.

        Never retried automatically: a duplicate submission must be the
        user's decision.

        Args:
            email: Account email (must be non-empty)
            password: Account password (must be non-empty)
            expected_user_type: Channel the sign-in form belongs to; if the
                provider's user metadata records a different type the grant
                is revoked and `account_type_mismatch` returned
            persist: Whether to write the session to storage on success

        Returns:
            Session on success, AuthFailure otherwise
        """
        email = (email or "").strip()
        if not email or not password:
            return AuthFailure(kind=AuthErrorKind.INVALID_INPUT, detail="email and password required")

        outcome = await self._call(
            self.provider.sign_in_with_password(email, password),
            self.sign_in_timeout,
            "sign_in",
        )
        if isinstance(outcome, AuthFailure):
            logger.info(
                f"Sign-in rejected: {outcome.kind.value}",
                extra={"error_type": outcome.kind.value},
            )
            return outcome

        session = Session.from_payload(outcome.get("session"))
        if session is None:
            raise MalformedResponseError("Sign-in succeeded without a complete session")

        actual = _metadata_user_type(outcome)
        if expected_user_type is not None and actual is not None and actual != expected_user_type:
            logger.info(
                "Sign-in channel does not match account type",
                extra={
                    "error_type": "account_type_mismatch",
                    "subject_id": session.subject_id,
                    "expected": expected_user_type.value,
                    "actual": actual.value,
                },
            )
            await self._revoke(session)
            return AuthFailure(
                kind=AuthErrorKind.ACCOUNT_TYPE_MISMATCH,
                detail=f"expected {expected_user_type.value}",
                actual_user_type=actual,
            )

        if persist:
            self.persist(session)
        return session

    async def sign_up(
        self,
        email: str,
        password: str,
        metadata: dict[str, Any] | None = None,
        *,
        persist: bool = True,
    ) -> SignUpResult:
        """
        Register a new identity.

        The provider returns no session while email confirmation is pending;
        in that case `needs_email_verification` is set.
        """
        email = (email or "").strip()
        if not email or not password:
            return SignUpResult(
                failure=AuthFailure(kind=AuthErrorKind.INVALID_INPUT, detail="email and password required")
            )

        outcome = await self._call(
            self.provider.sign_up(email, password, metadata or {}),
            self.sign_in_timeout,
            "sign_up",
        )
        if isinstance(outcome, AuthFailure):
            return SignUpResult(failure=outcome)

        user = outcome.get("user") or {}
        session = Session.from_payload(outcome.get("session"))
        if session is None and not user.get("id"):
            raise MalformedResponseError("Sign-up returned neither a user nor a session")

        if session is not None and persist:
            self.persist(session)

        return SignUpResult(
            subject_id=session.subject_id if session else str(user["id"]),
            session=session,
            needs_email_verification=session is None,
        )

    async def sign_in_with_oauth(self, provider: str, redirect_target: str) -> str | AuthFailure:
        """
        Start an OAuth sign-in.

        Returns:
            The provider authorization URL the client must navigate to. The
            session only materializes after the provider redirects back
            (see `session_from_redirect`).
        """
        return await self._call(
            self.provider.authorization_url(provider, redirect_target),
            self.sign_in_timeout,
            "oauth_authorize",
        )

    async def session_from_redirect(self, url: str, *, persist: bool = True) -> Session | AuthFailure:
        """
        Materialize the session carried by an OAuth redirect return.

        Handles fragment tokens (`access_token`, `refresh_token`) and PKCE
        authorization codes (`code` query parameter).
        """
        params = parse_redirect(url)
        if params.error:
            return AuthFailure(
                kind=AuthErrorKind.PROVIDER_ERROR,
                detail=params.error_description or params.error,
            )

        if params.has_tokens:
            # Fragment tokens are attacker-controlled until the provider vouches for them.
            user = await self._call(
                self.provider.get_user(params.access_token), self.sign_in_timeout, "confirm_redirect"
            )
            if isinstance(user, AuthFailure):
                logger.warning(
                    f"Provider rejected redirect access token: {user.kind.value}",
                    extra={"error_type": "redirect_token_rejected", "kind": user.kind.value},
                )
                return user
            payload = session_payload_from_tokens(params, user)
        elif params.code:
            outcome = await self._call(
                self.provider.exchange_code(params.code), self.sign_in_timeout, "exchange_code"
            )
            if isinstance(outcome, AuthFailure):
                return outcome
            payload = outcome.get("session")
        else:
            return AuthFailure(
                kind=AuthErrorKind.INVALID_INPUT, detail="redirect carried no tokens or code"
            )

        session = Session.from_payload(payload)
        if session is None:
            return AuthFailure(
                kind=AuthErrorKind.PROVIDER_ERROR, detail="redirect session incomplete"
            )

        if persist:
            self.persist(session)
        return session

    async def sign_out(self, session: Session | None) -> None:
        """
        Clear the persisted session, then revoke it remotely.

        Local storage is always cleared first; a failing remote call is
        logged and does not propagate.
        """
        self.clear_persisted()
        if session is not None:
            await self._revoke(session)

    # Restore and refresh

    async def restore_session(self) -> Session | None:
        """
        Restore the persisted session at process start.

        The stored session is confirmed with the provider (or refreshed if it
        is close to expiry). Transient failures are retried once with
        backoff; anything else resolves to None, never to an unconfirmed
        session. Concurrent callers share a single restore, and later calls
        reuse the confirmed session while storage still holds exactly it and
        it is not due for refresh.

        Returns:
            Confirmed Session, or None
        """
        restored = self._restored
        if (
            restored is not None
            and not restored.expires_within(self.refresh_margin)
            and self.storage.get(self.storage_key) == restored.model_dump(mode="json")
        ):
            return restored

        task = self._restore_task
        if task is None:
            task = asyncio.create_task(self._restore())
            self._restore_task = task
        try:
            return await asyncio.shield(task)
        finally:
            if task.done() and self._restore_task is task:
                self._restore_task = None

    async def refresh(self, session: Session, *, persist: bool = True) -> Session | AuthFailure:
        """Exchange the refresh token for a new session."""
        outcome = await self._refresh_once(session)
        if isinstance(outcome, Session) and persist:
            self.persist(outcome)
        return outcome

    async def _restore(self) -> Session | None:
        stored = self.storage.get(self.storage_key)
        if not stored:
            return None

        try:
            session = Session.model_validate(stored)
        except ValidationError as e:
            logger.warning(
                f"Discarding unreadable persisted session: {e.error_count()} errors",
                extra={"error_type": "persisted_session_invalid"},
            )
            self.clear_persisted()
            return None

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.restore_attempts),
            wait=wait_exponential(multiplier=self.restore_backoff),
            retry=retry_if_result(_is_transient),
            retry_error_callback=lambda state: state.outcome.result(),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        outcome = await retrying(self._confirm_once, session)

        if isinstance(outcome, Session):
            if outcome != session:
                self.persist(outcome)
            self._restored = outcome
            logger.info("Session restored", extra={"subject_id": outcome.subject_id})
            return outcome

        if not outcome.is_transient:
            # Provider denied the grant; stored tokens are dead.
            self.clear_persisted()
        logger.warning(
            f"Session restore failed: {outcome.kind.value}",
            extra={"error_type": "session_restore_failed", "kind": outcome.kind.value},
        )
        return None

    async def _confirm_once(self, session: Session) -> Session | AuthFailure:
        if session.expires_within(self.refresh_margin):
            return await self._refresh_once(session)

        user = await self._call(
            self.provider.get_user(session.access_token), self.restore_timeout, "confirm_session"
        )
        if isinstance(user, AuthFailure):
            return user
        if str(user.get("id")) != session.subject_id:
            return AuthFailure(kind=AuthErrorKind.PROVIDER_ERROR, detail="token subject changed")
        return session

    async def _refresh_once(self, session: Session) -> Session | AuthFailure:
        outcome = await self._call(
            self.provider.refresh(session.refresh_token), self.restore_timeout, "refresh_session"
        )
        if isinstance(outcome, AuthFailure):
            return outcome

        refreshed = Session.from_payload(outcome.get("session"))
        if refreshed is None:
            return AuthFailure(kind=AuthErrorKind.PROVIDER_ERROR, detail="refresh returned no session")
        return refreshed

    # Helpers

    async def _call(self, awaitable, timeout: float, operation: str):
        """Run a provider call under a timeout, mapping expected errors to AuthFailure."""
        try:
            return await with_timeout(
                awaitable, timeout, on_timeout=_timeout_failure(operation), operation=operation
            )
        except Exception as e:
            failure = classify_provider_error(e)
            if failure is None:
                raise
            return failure

    async def _revoke(self, session: Session) -> None:
        try:
            await with_timeout(
                self.provider.sign_out(session.access_token),
                self.sign_in_timeout,
                on_timeout=lambda: None,
                operation="sign_out",
            )
        except Exception as e:
            logger.warning(
                f"Remote sign-out failed: {e}",
                extra={"error_type": "remote_sign_out_failed", "subject_id": session.subject_id},
            )


def _metadata_user_type(envelope: dict[str, Any]) -> UserType | None:
    """Read `user_metadata.user_type` from a provider envelope, if recorded."""
    user = envelope.get("user") or (envelope.get("session") or {}).get("user") or {}
    raw = (user.get("user_metadata") or {}).get("user_type")
    try:
        return UserType(raw) if raw else None
    except ValueError:
        return None
