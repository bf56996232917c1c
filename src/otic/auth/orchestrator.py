"""Auth orchestrator: the process-wide authentication state machine."""

import asyncio
import hashlib
import logging
from collections.abc import Callable

from src.otic.auth.messages import VERIFY_EMAIL_MESSAGE, failure_message, recovery_message
from src.otic.auth.models import (
    AuthState,
    Profile,
    ProfileStatus,
    Session,
    Tier,
    UserType,
)
from src.otic.auth.outcomes import (
    AuthErrorKind,
    AuthFailure,
    ProfileFetchError,
    SignInOutcome,
    SignUpOutcome,
)
from src.otic.auth.profile_resolver import ProfileResolver
from src.otic.auth.recovery import AccountRecoveryChecker, should_check_recovery
from src.otic.auth.routing import RouteTable, dashboard_route
from src.otic.auth.session_store import SessionStore
from src.otic.services.posthog import PostHogService

logger = logging.getLogger(__name__)

Listener = Callable[[AuthState], None]


class AuthOrchestrator:
    """
    Owns the single `AuthState` and every transition of it.

    States: Initializing → Unauthenticated | Authenticated(pending →
    ready | unavailable). Authenticated only returns to Unauthenticated via
    sign-out or token invalidation. A sign-in that checks the account's
    channel passes through Initializing instead of Authenticated(pending).

    Ordering rules:
    - Last call wins: every sign-in, sign-up, OAuth callback and sign-out
      takes a ticket when it starts; a result is applied only if no newer
      call started meanwhile.
    - Each state transition takes a generation; async work (restore,
      profile resolution) publishes only while its generation is current.
    - An identical sign-in already in flight is joined, not repeated.
    - Sign-out clears local state synchronously before any network call.

    Any unexpected exception during a transition degrades to
    Unauthenticated with a logged diagnostic.

    Example:
        >>> orchestrator = AuthOrchestrator(session_store, resolver, recovery, RouteTable())
        >>> unsubscribe = orchestrator.subscribe(lambda state: print(state.status))
        >>> await orchestrator.init()
        >>> outcome = await orchestrator.sign_in("owner@shop.com", "secret", UserType.BUSINESS)
        >>> orchestrator.get_dashboard_route()
        '/dashboard'
    """

    def __init__(
        self,
        session_store: SessionStore,
        profile_resolver: ProfileResolver,
        recovery_checker: AccountRecoveryChecker,
        routes: RouteTable | None = None,
        analytics: PostHogService | None = None,
    ) -> None:
        self.session_store = session_store
        self.profile_resolver = profile_resolver
        self.recovery_checker = recovery_checker
        self.routes = routes or RouteTable()
        self.analytics = analytics or PostHogService()

        self._state = AuthState.initializing()
        self._listeners: list[Listener] = []
        self._generation = 0
        self._ticket = 0
        self._sign_ins_in_flight: dict[tuple[str, UserType | None, str], asyncio.Task[SignInOutcome]] = {}
        self._remote_sign_outs: set[asyncio.Task[None]] = set()

    # Observation

    @property
    def state(self) -> AuthState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener called with every new state.

        Returns:
            Callable that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def get_dashboard_route(self) -> str:
        """Route for the current state (pure function of the state)."""
        return dashboard_route(self._state, self.routes)

    # Transitions

    async def init(self) -> AuthState:
        """Restore any persisted session and resolve its profile."""
        generation = self._begin_transition()
        self._publish(AuthState.initializing(generation))

        try:
            session = await self.session_store.restore_session()
            if not self._is_current(generation):
                return self._state

            if session is None:
                self._publish(AuthState.unauthenticated(generation))
                return self._state

            await self._resolve_profile(session, generation)
        except Exception as e:
            self._degrade(generation, "init", e)

        return self._state

    async def sign_in(
        self,
        email: str,
        password: str,
        expected_user_type: UserType | None = None,
    ) -> SignInOutcome:
        """
        Sign in with credentials.

        Args:
            email: Account email
            password: Account password
            expected_user_type: Channel of the sign-in form; accounts of the
                other type are rejected with `account_type_mismatch`

        Returns:
            SignInOutcome. On `invalid_credentials` it carries the recovery
            check result; `superseded` is set when a newer call won.
        """
        # Only the exact same credentials may share an in-flight call.
        key = (
            (email or "").strip().lower(),
            expected_user_type,
            hashlib.sha256((password or "").encode()).hexdigest(),
        )
        pending = self._sign_ins_in_flight.get(key)
        if pending is not None and not pending.done():
            logger.info("Joining sign-in already in flight")
            return await asyncio.shield(pending)

        ticket = self._take_ticket()
        task = asyncio.create_task(self._sign_in(email, password, expected_user_type, ticket))
        self._sign_ins_in_flight[key] = task
        try:
            return await asyncio.shield(task)
        finally:
            if task.done() and self._sign_ins_in_flight.get(key) is task:
                del self._sign_ins_in_flight[key]

    async def sign_up(
        self,
        email: str,
        password: str,
        business_name: str | None,
        user_type: UserType = UserType.BUSINESS,
        tier: Tier = Tier.FREE_TRIAL,
    ) -> SignUpOutcome:
        """
        Register a new account and create its profile row.

        When the provider requires email confirmation no session is
        returned and the state is left untouched.
        """
        ticket = self._take_ticket()
        try:
            result = await self.session_store.sign_up(
                email,
                password,
                metadata={"user_type": user_type.value, "business_name": business_name},
                persist=False,
            )
            if result.failure is not None:
                if self._is_latest(ticket):
                    self._settle_if_loading()
                return SignUpOutcome(failure=result.failure, message=failure_message(result.failure))

            if result.subject_id:
                created = await self.profile_resolver.create_profile(
                    result.subject_id, email.strip(), user_type, business_name, tier
                )
                if isinstance(created, ProfileFetchError):
                    logger.warning(
                        f"Profile creation failed after sign-up: {created.detail}",
                        extra={"error_type": "profile_create_failed", "subject_id": result.subject_id},
                    )

            if result.session is None:
                if self._is_latest(ticket):
                    self._settle_if_loading()
                return SignUpOutcome(needs_email_verification=True, message=VERIFY_EMAIL_MESSAGE)

            applied = await self._apply_session(result.session, user_type, ticket)
            return SignUpOutcome(
                session=applied.session,
                failure=applied.failure,
                message=applied.message,
                needs_email_verification=not self._state.email_verified,
            )
        except Exception as e:
            failure = self._degrade_for_ticket(ticket, "sign_up", e)
            return SignUpOutcome(failure=failure, message=failure_message(failure))

    async def sign_in_with_oauth(self, provider: str, redirect_target: str) -> str | AuthFailure:
        """
        Start an OAuth sign-in; returns the URL to redirect the browser to.

        The session arrives later through `handle_oauth_callback`.
        """
        outcome = await self.session_store.sign_in_with_oauth(provider, redirect_target)
        if isinstance(outcome, AuthFailure):
            logger.warning(
                f"OAuth start failed for {provider}: {outcome.kind.value}",
                extra={"error_type": "oauth_start_failed", "provider": provider},
            )
        return outcome

    async def handle_oauth_callback(self, url: str) -> SignInOutcome:
        """
        Complete an OAuth sign-in from the provider's redirect.

        Treated like a successful sign-in; sessions from Google count as
        email-verified whatever the profile says.
        """
        ticket = self._take_ticket()
        try:
            outcome = await self.session_store.session_from_redirect(url, persist=False)
            if isinstance(outcome, AuthFailure):
                if self._is_latest(ticket):
                    self._settle_if_loading()
                self._capture("sign_in_failed", None, {"kind": outcome.kind.value, "channel": "oauth"})
                return SignInOutcome(failure=outcome, message=failure_message(outcome))
            return await self._apply_session(outcome, None, ticket)
        except Exception as e:
            failure = self._degrade_for_ticket(ticket, "oauth_callback", e)
            return SignInOutcome(failure=failure, message=failure_message(failure))

    def sign_out(self) -> asyncio.Task[None]:
        """
        Sign out.

        Local state and the persisted session are cleared synchronously,
        before the remote call is issued. The returned task performs the
        remote revocation; it never raises.
        """
        session = self._state.session
        self._take_ticket()
        generation = self._begin_transition()
        self._clear_persisted("sign_out")
        self._publish(AuthState.unauthenticated(generation))
        if session is not None:
            self._capture("signed_out", session.subject_id)
        task = asyncio.get_running_loop().create_task(self._remote_sign_out(session))
        self._remote_sign_outs.add(task)
        task.add_done_callback(self._remote_sign_outs.discard)
        return task

    def handle_token_invalidated(self) -> AuthState:
        """Drop to Unauthenticated after the provider reports the token dead."""
        session = self._state.session
        self._take_ticket()
        generation = self._begin_transition()
        self._clear_persisted("token_invalidated")
        self._publish(AuthState.unauthenticated(generation, error="session_expired"))
        logger.info(
            "Session invalidated by provider",
            extra={"subject_id": session.subject_id if session else None},
        )
        return self._state

    async def ensure_fresh_session(self) -> AuthState:
        """Refresh the access token if it is close to expiry."""
        state = self._state
        session = state.session
        if session is None or not session.expires_within(self.session_store.refresh_margin):
            return state

        # Any transition started while the refresh is in flight wins.
        generation = self._generation
        try:
            outcome = await self.session_store.refresh(session, persist=False)
        except Exception as e:
            self._degrade(generation, "refresh", e)
            return self._state

        if not self._is_current(generation):
            return self._state
        if isinstance(outcome, Session):
            self.session_store.persist(outcome)
            self._publish(state.model_copy(update={"session": outcome}))
        elif not outcome.is_transient:
            self.handle_token_invalidated()
        return self._state

    async def retry_profile(self) -> AuthState:
        """Re-run profile resolution from `profile_unavailable`."""
        state = self._state
        if state.session is None or state.profile_status != ProfileStatus.UNAVAILABLE:
            return state

        generation = self._begin_transition()
        try:
            await self._resolve_profile(state.session, generation)
        except Exception as e:
            self._degrade(generation, "retry_profile", e)
        return self._state

    # Internals

    async def _sign_in(
        self,
        email: str,
        password: str,
        expected_user_type: UserType | None,
        ticket: int,
    ) -> SignInOutcome:
        try:
            outcome = await self.session_store.sign_in(
                email, password, expected_user_type, persist=False
            )
            if isinstance(outcome, AuthFailure):
                return await self._failed_sign_in(outcome, email, ticket)
            return await self._apply_session(outcome, expected_user_type, ticket)
        except Exception as e:
            failure = self._degrade_for_ticket(ticket, "sign_in", e)
            return SignInOutcome(failure=failure, message=failure_message(failure))

    async def _failed_sign_in(self, failure: AuthFailure, email: str, ticket: int) -> SignInOutcome:
        recovery = None
        if self._is_latest(ticket) and should_check_recovery(failure):
            recovery = await self.recovery_checker.check_recoverable_account_by_email(email)

        superseded = not self._is_latest(ticket)
        if not superseded:
            self._settle_if_loading()

        self._capture("sign_in_failed", None, {"kind": failure.kind.value})
        outcome = SignInOutcome(
            failure=failure,
            recovery=recovery,
            message=recovery_message(recovery) or failure_message(failure),
            superseded=superseded,
        )
        if outcome.offers_recovery:
            self._capture("recovery_offered", None, {"days_remaining": recovery.days_remaining})
        return outcome

    async def _apply_session(
        self,
        session: Session,
        expected_user_type: UserType | None,
        ticket: int,
    ) -> SignInOutcome:
        if not self._is_latest(ticket):
            logger.info(
                "Discarding result of superseded sign-in",
                extra={"subject_id": session.subject_id, "ticket": ticket},
            )
            return SignInOutcome(superseded=True)

        generation = self._begin_transition()
        resolved = await self._resolve_profile(session, generation, expected_user_type)
        if not self._is_current(generation):
            return SignInOutcome(superseded=True)

        if isinstance(resolved, AuthFailure):
            self._publish(AuthState.unauthenticated(generation))
            self._capture(
                "account_type_mismatch",
                session.subject_id,
                {"actual": resolved.actual_user_type.value},
            )
            await self.session_store.sign_out(session)
            return SignInOutcome(failure=resolved, message=failure_message(resolved))

        self.session_store.persist(session)
        self._capture("sign_in_succeeded", session.subject_id, {"provider": session.provider})
        if resolved is None:
            return SignInOutcome(
                session=session,
                message=failure_message(AuthFailure(kind=AuthErrorKind.PROFILE_NOT_FOUND)),
            )
        return SignInOutcome(session=session)

    async def _resolve_profile(
        self,
        session: Session,
        generation: int,
        expected_user_type: UserType | None = None,
    ) -> Profile | AuthFailure | None:
        """
        Publish a loading state, resolve the profile, then publish ready or unavailable.

        A channel-checked sign-in stays in Initializing while loading, so a
        session that turns out to belong to the other channel is never
        observed as authenticated.

        Returns:
            The ready profile; an `account_type_mismatch` failure (nothing
            published) if the profile belongs to the other channel; None if
            unavailable or superseded
        """
        if expected_user_type is None:
            self._publish(AuthState.authenticated(session, ProfileStatus.PENDING, generation=generation))
        else:
            self._publish(AuthState.initializing(generation))

        lookup = await self.profile_resolver.resolve(session.subject_id)
        if not self._is_current(generation):
            return None

        if isinstance(lookup, Profile):
            mismatch = self.profile_resolver.validate_user_type(lookup, expected_user_type)
            if mismatch is not None:
                return mismatch
            self._publish(
                AuthState.authenticated(
                    session, ProfileStatus.READY, profile=lookup, generation=generation
                )
            )
            self._identify(lookup)
            return lookup

        self._publish(
            AuthState.authenticated(session, ProfileStatus.UNAVAILABLE, generation=generation)
        )
        self._capture("profile_unavailable", session.subject_id, {"outcome": type(lookup).__name__})
        return None

    async def _remote_sign_out(self, session: Session | None) -> None:
        try:
            await self.session_store.sign_out(session)
        except Exception as e:
            logger.error(f"Remote sign-out failed: {e}", exc_info=True)

    def _degrade(self, generation: int, operation: str, error: Exception) -> None:
        logger.error(
            f"Unexpected error during {operation}, signing out locally: {error}",
            exc_info=True,
            extra={"error_type": "auth_transition_failed", "operation": operation},
        )
        if not self._is_current(generation):
            return
        self._clear_persisted(operation)
        self._publish(AuthState.unauthenticated(self._begin_transition(), error=operation))

    def _clear_persisted(self, operation: str) -> None:
        # Signing out locally must not depend on the storage backend working.
        try:
            self.session_store.clear_persisted()
        except Exception as e:
            logger.error(
                f"Could not clear persisted session during {operation}: {e}",
                exc_info=True,
                extra={"error_type": "session_clear_failed", "operation": operation},
            )

    def _degrade_for_ticket(self, ticket: int, operation: str, error: Exception) -> AuthFailure:
        generation = self._generation if self._is_latest(ticket) else -1
        self._degrade(generation, operation, error)
        return AuthFailure(kind=AuthErrorKind.PROVIDER_ERROR, detail=f"unexpected error in {operation}")

    def _publish(self, state: AuthState) -> None:
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                logger.error(f"Auth state listener failed: {e}", exc_info=True)

    def _begin_transition(self) -> int:
        self._generation += 1
        return self._generation

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _take_ticket(self) -> int:
        # A new call also invalidates async work started by older transitions.
        self._begin_transition()
        self._ticket += 1
        return self._ticket

    def _settle_if_loading(self) -> None:
        """Leave a loading state whose async work was superseded by a call that changed nothing."""
        if self._state.loading:
            self._publish(AuthState.unauthenticated(self._begin_transition()))

    def _is_latest(self, ticket: int) -> bool:
        return ticket == self._ticket

    def _identify(self, profile: Profile) -> None:
        try:
            self.analytics.identify(
                profile.id, {"user_type": profile.user_type.value, "tier": profile.tier.value}
            )
        except Exception as e:
            logger.warning(f"Analytics identify failed: {e}")

    def _capture(self, event: str, subject_id: str | None, properties: dict | None = None) -> None:
        try:
            self.analytics.capture(
                distinct_id=subject_id or "anonymous", event=event, properties=properties
            )
        except Exception as e:
            logger.warning(f"Analytics capture failed for {event}: {e}")
