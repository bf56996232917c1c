"""Tests for the auth orchestrator state machine."""

import asyncio
import time
from unittest.mock import Mock

import httpx
import pytest
from jose import jwt
from supabase import AuthApiError

from src.otic.auth.models import AuthStatus, ProfileStatus, RecoverableAccountInfo, Session, UserType
from src.otic.auth.outcomes import AuthErrorKind
from src.otic.auth.orchestrator import AuthOrchestrator
from src.otic.auth.routing import GuardAction, RouteGuard, RouteTable
from src.otic.auth.session_store import SessionStore
from src.otic.auth.storage import FileSessionStorage

KEY = "otic.auth.session"


def _persist(storage, make_envelope, **overrides) -> None:
    session = Session.from_payload(make_envelope(**overrides)["session"])
    storage.set(KEY, session.model_dump(mode="json"))


@pytest.mark.asyncio
class TestInit:
    """Tests for startup restore and profile resolution."""

    async def test_nothing_persisted(self, orchestrator):
        seen = []
        orchestrator.subscribe(lambda state: seen.append(state.status))

        state = await orchestrator.init()

        assert state.status == AuthStatus.UNAUTHENTICATED
        assert seen == [AuthStatus.INITIALIZING, AuthStatus.UNAUTHENTICATED]
        assert orchestrator.get_dashboard_route() == "/signin"

    async def test_restored_session_with_profile(self, orchestrator, storage, make_envelope):
        _persist(storage, make_envelope)
        seen = []
        orchestrator.subscribe(lambda state: seen.append(state.profile_status))

        state = await orchestrator.init()

        assert state.status == AuthStatus.AUTHENTICATED
        assert state.profile_status == ProfileStatus.READY
        assert state.profile.user_type == UserType.BUSINESS
        assert seen == [None, ProfileStatus.PENDING, ProfileStatus.READY]
        assert orchestrator.get_dashboard_route() == "/dashboard"

    async def test_profile_never_appears(self, orchestrator, storage, make_envelope, profile_store):
        _persist(storage, make_envelope, subject_id="u1")
        profile_store.get_profile_row.side_effect = None
        profile_store.get_profile_row.return_value = None

        state = await orchestrator.init()

        assert state.status == AuthStatus.AUTHENTICATED
        assert state.profile_status == ProfileStatus.UNAVAILABLE
        assert state.session.subject_id == "u1"
        assert profile_store.get_profile_row.await_count == 3
        assert orchestrator.get_dashboard_route() == "/account-setup"

    async def test_profile_fetch_failure_is_never_success(self, orchestrator, storage, make_envelope, profile_store):
        _persist(storage, make_envelope)
        profile_store.get_profile_row.side_effect = httpx.ConnectError("offline")

        state = await orchestrator.init()

        assert state.profile_status == ProfileStatus.UNAVAILABLE
        assert orchestrator.get_dashboard_route() == "/account-setup"

    async def test_malformed_profile_degrades_to_unauthenticated(
        self, orchestrator, storage, make_envelope, profile_store
    ):
        _persist(storage, make_envelope)
        profile_store.get_profile_row.side_effect = None
        profile_store.get_profile_row.return_value = {"id": "user-1"}

        state = await orchestrator.init()

        assert state.status == AuthStatus.UNAUTHENTICATED
        assert state.error == "init"
        assert storage.get(KEY) is None

    async def test_undecodable_session_file_starts_unauthenticated(
        self, tmp_path, provider, resolver, recovery_checker, analytics
    ):
        path = tmp_path / "session.json"
        path.write_bytes(b"\xff\xfe\x00garbage")
        store = SessionStore(provider, FileSessionStorage(path), restore_backoff=0)
        orchestrator = AuthOrchestrator(store, resolver, recovery_checker, RouteTable(), analytics)

        state = await orchestrator.init()

        assert state.status == AuthStatus.UNAUTHENTICATED
        provider.get_user.assert_not_awaited()

    async def test_broken_storage_degrades_instead_of_raising(
        self, provider, resolver, recovery_checker, analytics
    ):
        broken = Mock()
        broken.get.side_effect = OSError("disk unavailable")
        broken.remove.side_effect = OSError("disk unavailable")
        store = SessionStore(provider, broken, restore_backoff=0)
        orchestrator = AuthOrchestrator(store, resolver, recovery_checker, RouteTable(), analytics)

        state = await orchestrator.init()

        assert state.status == AuthStatus.UNAUTHENTICATED
        assert state.error == "init"
        broken.remove.assert_called_once()

        await orchestrator.sign_out()
        assert orchestrator.state.status == AuthStatus.UNAUTHENTICATED

    async def test_retry_profile_after_unavailable(
        self, orchestrator, storage, make_envelope, profile_store, make_profile_row
    ):
        _persist(storage, make_envelope)
        profile_store.get_profile_row.side_effect = None
        profile_store.get_profile_row.return_value = None
        await orchestrator.init()

        profile_store.get_profile_row.return_value = make_profile_row()
        state = await orchestrator.retry_profile()

        assert state.profile_status == ProfileStatus.READY
        assert orchestrator.get_dashboard_route() == "/dashboard"

    async def test_retry_profile_when_ready_is_noop(self, orchestrator, storage, make_envelope, profile_store):
        _persist(storage, make_envelope)
        await orchestrator.init()
        calls = profile_store.get_profile_row.await_count

        await orchestrator.retry_profile()

        assert profile_store.get_profile_row.await_count == calls


@pytest.mark.asyncio
class TestSignIn:
    """Tests for credential sign-in."""

    async def test_success(self, orchestrator, storage, analytics):
        await orchestrator.init()

        outcome = await orchestrator.sign_in("owner@shop.com", "secret", UserType.BUSINESS)

        assert outcome.succeeded
        assert orchestrator.state.profile_status == ProfileStatus.READY
        assert storage.get(KEY)["subject_id"] == "user-1"
        assert orchestrator.get_dashboard_route() == "/dashboard"
        events = [call.kwargs["event"] for call in analytics.capture.call_args_list]
        assert "sign_in_succeeded" in events

    async def test_individual_account_routes_to_individual_dashboard(
        self, orchestrator, profile_store, make_profile_row
    ):
        profile_store.get_profile_row.side_effect = None
        profile_store.get_profile_row.return_value = make_profile_row(user_type="individual")

        outcome = await orchestrator.sign_in("me@home.com", "secret", UserType.INDIVIDUAL)

        assert outcome.succeeded
        assert orchestrator.get_dashboard_route() == "/individual-dashboard"

    async def test_business_channel_rejects_individual_account(
        self, orchestrator, provider, storage, profile_store, make_profile_row, recovery_checker
    ):
        profile_store.get_profile_row.side_effect = None
        profile_store.get_profile_row.return_value = make_profile_row(user_type="individual")
        await orchestrator.init()

        outcome = await orchestrator.sign_in("biz@x.com", "pw", UserType.BUSINESS)

        assert outcome.failure.kind == AuthErrorKind.ACCOUNT_TYPE_MISMATCH
        assert outcome.failure.actual_user_type == UserType.INDIVIDUAL
        assert "individual" in outcome.message
        assert orchestrator.state.status == AuthStatus.UNAUTHENTICATED
        assert storage.get(KEY) is None
        provider.sign_out.assert_awaited_once_with("access-1")
        recovery_checker.check_recoverable_account_by_email.assert_not_awaited()

    async def test_mismatch_never_publishes_ready(
        self, orchestrator, profile_store, make_profile_row
    ):
        profile_store.get_profile_row.side_effect = None
        profile_store.get_profile_row.return_value = make_profile_row(user_type="individual")
        seen = []
        orchestrator.subscribe(lambda state: seen.append(state.profile_status))

        await orchestrator.sign_in("biz@x.com", "pw", UserType.BUSINESS)

        assert ProfileStatus.READY not in seen

    async def test_mismatched_session_is_never_observed_as_authenticated(
        self, orchestrator, profile_store, make_profile_row
    ):
        profile_store.get_profile_row.side_effect = None
        profile_store.get_profile_row.return_value = make_profile_row(user_type="individual")
        seen = []
        orchestrator.subscribe(seen.append)

        await orchestrator.sign_in("biz@x.com", "pw", UserType.BUSINESS)

        assert [state.status for state in seen] == [AuthStatus.INITIALIZING, AuthStatus.UNAUTHENTICATED]
        assert all(state.session is None for state in seen)

    async def test_channel_checked_sign_in_loads_then_authenticates(self, orchestrator):
        seen = []
        orchestrator.subscribe(lambda state: seen.append(state.status))

        outcome = await orchestrator.sign_in("owner@shop.com", "secret", UserType.BUSINESS)

        assert outcome.succeeded
        assert seen == [AuthStatus.INITIALIZING, AuthStatus.AUTHENTICATED]
        assert orchestrator.state.profile_status == ProfileStatus.READY

    async def test_wrong_password_offers_recovery(self, orchestrator, provider, recovery_checker, analytics):
        await orchestrator.init()
        provider.sign_in_with_password.side_effect = AuthApiError(
            "Invalid login credentials", 400, "invalid_credentials"
        )
        recovery_checker.check_recoverable_account_by_email.return_value = RecoverableAccountInfo(
            has_recoverable_account=True, days_remaining=5, recovery_token="tok-1"
        )

        outcome = await orchestrator.sign_in("a@x.com", "wrongpw")

        assert outcome.failure.kind == AuthErrorKind.INVALID_CREDENTIALS
        assert outcome.offers_recovery
        assert "5 days" in outcome.message
        assert orchestrator.state.status == AuthStatus.UNAUTHENTICATED
        recovery_checker.check_recoverable_account_by_email.assert_awaited_once_with("a@x.com")
        events = [call.kwargs["event"] for call in analytics.capture.call_args_list]
        assert "recovery_offered" in events

    async def test_closed_recovery_window_offers_nothing(self, orchestrator, provider, recovery_checker):
        provider.sign_in_with_password.side_effect = AuthApiError(
            "Invalid login credentials", 400, "invalid_credentials"
        )
        recovery_checker.check_recoverable_account_by_email.return_value = RecoverableAccountInfo(
            has_recoverable_account=True, days_remaining=0
        )

        outcome = await orchestrator.sign_in("a@x.com", "wrongpw")

        assert not outcome.offers_recovery
        assert outcome.message.startswith("The email or password is incorrect")

    @pytest.mark.parametrize(
        "error",
        [httpx.ConnectError("offline"), AuthApiError("Email rate limit exceeded", 429, "over_email_send_rate_limit")],
    )
    async def test_non_credential_failures_skip_recovery(self, orchestrator, provider, recovery_checker, error):
        provider.sign_in_with_password.side_effect = error

        outcome = await orchestrator.sign_in("a@x.com", "pw")

        assert outcome.failure.kind in (AuthErrorKind.NETWORK_ERROR, AuthErrorKind.PROVIDER_ERROR)
        recovery_checker.check_recoverable_account_by_email.assert_not_awaited()

    async def test_failed_sign_in_keeps_existing_session(self, orchestrator, provider):
        await orchestrator.sign_in("owner@shop.com", "secret")
        provider.sign_in_with_password.side_effect = AuthApiError(
            "Invalid login credentials", 400, "invalid_credentials"
        )

        await orchestrator.sign_in("other@shop.com", "wrong")

        assert orchestrator.state.profile_status == ProfileStatus.READY
        assert orchestrator.state.session.subject_id == "user-1"

    @pytest.mark.parametrize("first_to_resolve", ["a@x.com", "b@x.com"])
    async def test_last_call_wins(self, orchestrator, provider, make_envelope, first_to_resolve):
        gates = {"a@x.com": asyncio.Event(), "b@x.com": asyncio.Event()}

        async def sign_in_with_password(email, password):
            await gates[email].wait()
            return make_envelope(subject_id=f"user-{email[0]}", email=email)

        provider.sign_in_with_password.side_effect = sign_in_with_password

        task_a = asyncio.create_task(orchestrator.sign_in("a@x.com", "pw"))
        await asyncio.sleep(0)
        task_b = asyncio.create_task(orchestrator.sign_in("b@x.com", "pw"))
        await asyncio.sleep(0)

        second_to_resolve = "b@x.com" if first_to_resolve == "a@x.com" else "a@x.com"
        gates[first_to_resolve].set()
        await asyncio.sleep(0.01)
        gates[second_to_resolve].set()
        outcome_a, outcome_b = await asyncio.gather(task_a, task_b)

        assert outcome_a.superseded
        assert outcome_b.succeeded
        assert orchestrator.state.session.subject_id == "user-b"
        assert orchestrator.state.profile_status == ProfileStatus.READY

    async def test_newer_failed_sign_in_discards_older_profile_resolution(
        self, orchestrator, provider, profile_store, make_envelope, make_profile_row, storage
    ):
        profile_gate = asyncio.Event()

        async def get_profile_row(subject_id):
            await profile_gate.wait()
            return make_profile_row(subject_id)

        profile_store.get_profile_row.side_effect = get_profile_row

        task_a = asyncio.create_task(orchestrator.sign_in("owner@shop.com", "secret"))
        await asyncio.sleep(0.01)
        assert orchestrator.state.profile_status == ProfileStatus.PENDING

        provider.sign_in_with_password.side_effect = AuthApiError(
            "Invalid login credentials", 400, "invalid_credentials"
        )
        outcome_b = await orchestrator.sign_in("b@x.com", "wrong")
        profile_gate.set()
        outcome_a = await task_a

        assert outcome_b.failure.kind == AuthErrorKind.INVALID_CREDENTIALS
        assert outcome_a.superseded
        assert orchestrator.state.status == AuthStatus.UNAUTHENTICATED
        assert storage.get(KEY) is None

    async def test_identical_sign_in_in_flight_is_joined(self, orchestrator, provider, make_envelope):
        gate = asyncio.Event()

        async def sign_in_with_password(email, password):
            await gate.wait()
            return make_envelope()

        provider.sign_in_with_password.side_effect = sign_in_with_password

        first = asyncio.create_task(orchestrator.sign_in("owner@shop.com", "secret"))
        second = asyncio.create_task(orchestrator.sign_in("Owner@Shop.com", "secret"))
        await asyncio.sleep(0)
        gate.set()
        outcome_1, outcome_2 = await asyncio.gather(first, second)

        assert outcome_1 == outcome_2
        assert outcome_1.succeeded
        provider.sign_in_with_password.assert_awaited_once()

    async def test_sign_in_with_other_password_is_not_joined(self, orchestrator, provider, make_envelope):
        gate = asyncio.Event()

        async def sign_in_with_password(email, password):
            await gate.wait()
            if password != "secret":
                raise AuthApiError("Invalid login credentials", 400, "invalid_credentials")
            return make_envelope()

        provider.sign_in_with_password.side_effect = sign_in_with_password

        wrong = asyncio.create_task(orchestrator.sign_in("owner@shop.com", "wrong"))
        await asyncio.sleep(0)
        right = asyncio.create_task(orchestrator.sign_in("owner@shop.com", "secret"))
        await asyncio.sleep(0)
        gate.set()
        outcome_wrong, outcome_right = await asyncio.gather(wrong, right)

        assert provider.sign_in_with_password.await_count == 2
        assert outcome_wrong.superseded
        assert outcome_wrong.failure.kind == AuthErrorKind.INVALID_CREDENTIALS
        assert outcome_right.succeeded
        assert orchestrator.state.status == AuthStatus.AUTHENTICATED
        assert orchestrator.state.session.subject_id == "user-1"

    async def test_unverified_profile_is_not_locked_out(
        self, orchestrator, profile_store, make_profile_row
    ):
        profile_store.get_profile_row.side_effect = None
        profile_store.get_profile_row.return_value = make_profile_row(email_verified=False)

        await orchestrator.sign_in("owner@shop.com", "secret")

        state = orchestrator.state
        assert state.profile_status == ProfileStatus.READY
        assert state.email_verified is False
        assert orchestrator.get_dashboard_route() == "/dashboard"
        decision = RouteGuard(orchestrator.routes).decide("/dashboard", state)
        assert decision.action == GuardAction.RENDER
        assert decision.show_verification_reminder is True


@pytest.mark.asyncio
class TestSignOut:
    """Tests for sign-out and invalidation."""

    async def test_local_state_cleared_before_remote_call_settles(self, orchestrator, provider, storage):
        await orchestrator.sign_in("owner@shop.com", "secret")
        gate = asyncio.Event()

        async def slow_sign_out(access_token):
            await gate.wait()

        provider.sign_out.side_effect = slow_sign_out

        task = orchestrator.sign_out()

        assert orchestrator.state.status == AuthStatus.UNAUTHENTICATED
        assert storage.get(KEY) is None
        assert not task.done()

        gate.set()
        await task
        provider.sign_out.assert_awaited_once_with("access-1")

    async def test_remote_failure_does_not_raise(self, orchestrator, provider):
        await orchestrator.sign_in("owner@shop.com", "secret")
        provider.sign_out.side_effect = httpx.ConnectError("offline")

        await orchestrator.sign_out()

        assert orchestrator.state.status == AuthStatus.UNAUTHENTICATED

    async def test_sign_out_discards_in_flight_sign_in(self, orchestrator, provider, make_envelope, storage):
        gate = asyncio.Event()

        async def sign_in_with_password(email, password):
            await gate.wait()
            return make_envelope()

        provider.sign_in_with_password.side_effect = sign_in_with_password
        pending = asyncio.create_task(orchestrator.sign_in("owner@shop.com", "secret"))
        await asyncio.sleep(0)

        await orchestrator.sign_out()
        gate.set()
        outcome = await pending

        assert outcome.superseded
        assert orchestrator.state.status == AuthStatus.UNAUTHENTICATED
        assert storage.get(KEY) is None

    async def test_token_invalidated(self, orchestrator, storage):
        await orchestrator.sign_in("owner@shop.com", "secret")

        state = orchestrator.handle_token_invalidated()

        assert state.status == AuthStatus.UNAUTHENTICATED
        assert state.error == "session_expired"
        assert storage.get(KEY) is None


@pytest.mark.asyncio
class TestOAuth:
    """Tests for OAuth sign-in."""

    async def test_google_session_counts_as_verified(
        self, orchestrator, profile_store, make_profile_row
    ):
        profile_store.get_profile_row.side_effect = None
        profile_store.get_profile_row.return_value = make_profile_row(email_verified=False)

        outcome = await orchestrator.handle_oauth_callback(
            "http://localhost:8080/auth/callback?code=abc123"
        )

        assert outcome.succeeded
        assert orchestrator.state.session.provider == "google"
        assert orchestrator.state.email_verified is True

    async def test_stale_callback_discarded(self, orchestrator, provider, make_envelope):
        gate = asyncio.Event()

        async def exchange_code(code):
            await gate.wait()
            return make_envelope(provider="google")

        provider.exchange_code.side_effect = exchange_code
        pending = asyncio.create_task(
            orchestrator.handle_oauth_callback("http://localhost:8080/auth/callback?code=abc123")
        )
        await asyncio.sleep(0)

        await orchestrator.sign_in("owner@shop.com", "secret")
        gate.set()
        outcome = await pending

        assert outcome.superseded
        assert orchestrator.state.session.provider == "password"

    async def test_unconfirmed_fragment_token_never_authenticates(
        self, orchestrator, provider, profile_store
    ):
        await orchestrator.init()
        forged = jwt.encode(
            {"sub": "victim-42", "email": "victim@x.com", "app_metadata": {"provider": "google"}},
            "attacker-key",
            algorithm="HS256",
        )
        provider.get_user.side_effect = AuthApiError("invalid JWT", 403, "bad_jwt")

        outcome = await orchestrator.handle_oauth_callback(
            f"http://localhost:8080/auth/callback#access_token={forged}&refresh_token=x&expires_at=1900000000"
        )

        assert not outcome.succeeded
        assert orchestrator.state.status == AuthStatus.UNAUTHENTICATED
        profile_store.get_profile_row.assert_not_awaited()

    async def test_callback_error(self, orchestrator):
        await orchestrator.init()

        outcome = await orchestrator.handle_oauth_callback(
            "http://localhost:8080/auth/callback?error=access_denied"
        )

        assert outcome.failure.kind == AuthErrorKind.PROVIDER_ERROR
        assert orchestrator.state.status == AuthStatus.UNAUTHENTICATED

    async def test_start_returns_authorization_url(self, orchestrator):
        url = await orchestrator.sign_in_with_oauth("google", "http://localhost:8080/auth/callback")

        assert url.startswith("https://")


@pytest.mark.asyncio
class TestSignUp:
    """Tests for account registration."""

    async def test_email_confirmation_required(self, orchestrator, provider, profile_store):
        await orchestrator.init()
        provider.sign_up.return_value = {"session": None, "user": {"id": "new-user"}}

        outcome = await orchestrator.sign_up("new@shop.com", "secret", "New Shop")

        assert outcome.needs_email_verification is True
        assert outcome.failure is None
        assert orchestrator.state.status == AuthStatus.UNAUTHENTICATED
        row = profile_store.insert_profile_row.await_args.args[0]
        assert row["id"] == "new-user"
        assert row["business_name"] == "New Shop"
        metadata = provider.sign_up.await_args.args[2]
        assert metadata == {"user_type": "business", "business_name": "New Shop"}

    async def test_immediate_session_signs_in(self, orchestrator):
        outcome = await orchestrator.sign_up("owner@shop.com", "secret", "Corner Shop")

        assert outcome.session.subject_id == "user-1"
        assert orchestrator.state.profile_status == ProfileStatus.READY

    async def test_rejected(self, orchestrator, provider, profile_store):
        provider.sign_up.side_effect = AuthApiError("User already registered", 422, "user_already_exists")

        outcome = await orchestrator.sign_up("owner@shop.com", "secret", "Corner Shop")

        assert outcome.failure.kind == AuthErrorKind.PROVIDER_ERROR
        profile_store.insert_profile_row.assert_not_awaited()


@pytest.mark.asyncio
class TestFreshSession:
    """Tests for proactive token refresh."""

    async def test_near_expiry_refreshed(self, orchestrator, provider, make_envelope):
        provider.sign_in_with_password.return_value = make_envelope(expires_at=int(time.time()) + 10)
        await orchestrator.sign_in("owner@shop.com", "secret")

        state = await orchestrator.ensure_fresh_session()

        assert state.session.access_token == "access-2"
        assert state.profile_status == ProfileStatus.READY

    async def test_fresh_session_untouched(self, orchestrator, provider):
        await orchestrator.sign_in("owner@shop.com", "secret")

        await orchestrator.ensure_fresh_session()

        provider.refresh.assert_not_awaited()

    async def test_rejected_refresh_invalidates(self, orchestrator, provider, make_envelope, storage):
        provider.sign_in_with_password.return_value = make_envelope(expires_at=int(time.time()) + 10)
        await orchestrator.sign_in("owner@shop.com", "secret")
        provider.refresh.side_effect = AuthApiError("Invalid Refresh Token", 400, "invalid_grant")

        state = await orchestrator.ensure_fresh_session()

        assert state.status == AuthStatus.UNAUTHENTICATED
        assert storage.get(KEY) is None

    async def test_transient_refresh_failure_keeps_session(self, orchestrator, provider, make_envelope):
        provider.sign_in_with_password.return_value = make_envelope(expires_at=int(time.time()) + 10)
        await orchestrator.sign_in("owner@shop.com", "secret")
        provider.refresh.side_effect = httpx.ConnectError("offline")

        state = await orchestrator.ensure_fresh_session()

        assert state.status == AuthStatus.AUTHENTICATED
        assert state.session.access_token == "access-1"

    async def test_refresh_after_rejected_sign_in_attempt(self, orchestrator, provider, make_envelope):
        provider.sign_in_with_password.return_value = make_envelope(expires_at=int(time.time()) + 10)
        await orchestrator.sign_in("owner@shop.com", "secret")
        provider.sign_in_with_password.side_effect = AuthApiError(
            "Invalid login credentials", 400, "invalid_credentials"
        )
        await orchestrator.sign_in("owner@shop.com", "typo")

        state = await orchestrator.ensure_fresh_session()

        assert state.session.access_token == "access-2"

    async def test_sign_out_during_refresh_is_not_undone(
        self, orchestrator, provider, make_envelope, storage
    ):
        provider.sign_in_with_password.return_value = make_envelope(expires_at=int(time.time()) + 10)
        await orchestrator.sign_in("owner@shop.com", "secret")
        gate = asyncio.Event()

        async def slow_refresh(refresh_token):
            await gate.wait()
            return make_envelope(access_token="access-2")

        provider.refresh.side_effect = slow_refresh
        refresh = asyncio.create_task(orchestrator.ensure_fresh_session())
        await asyncio.sleep(0)
        await orchestrator.sign_out()
        gate.set()
        state = await refresh

        assert state.status == AuthStatus.UNAUTHENTICATED
        assert storage.get(KEY) is None


@pytest.mark.asyncio
class TestListeners:
    """Tests for state subscription."""

    async def test_failing_listener_does_not_affect_others(self, orchestrator):
        seen = []

        def broken(state):
            raise RuntimeError("listener bug")

        orchestrator.subscribe(broken)
        orchestrator.subscribe(lambda state: seen.append(state.status))

        await orchestrator.init()

        assert seen[-1] == AuthStatus.UNAUTHENTICATED

    async def test_unsubscribe(self, orchestrator):
        seen = []
        unsubscribe = orchestrator.subscribe(lambda state: seen.append(state.status))
        unsubscribe()

        await orchestrator.init()

        assert seen == []
        unsubscribe()
