"""Shared fixtures for authentication tests."""

from typing import Any
from unittest.mock import AsyncMock, Mock

import pytest

from src.otic.auth.models import RecoverableAccountInfo
from src.otic.auth.orchestrator import AuthOrchestrator
from src.otic.auth.profile_resolver import ProfileResolver
from src.otic.auth.routing import RouteTable
from src.otic.auth.session_store import SessionStore
from src.otic.auth.storage import MemorySessionStorage

FAR_FUTURE = 4_102_444_800  # 2100-01-01


def build_envelope(
    subject_id: str = "user-1",
    email: str = "owner@shop.com",
    provider: str = "email",
    user_type: str | None = None,
    access_token: str = "access-1",
    refresh_token: str = "refresh-1",
    expires_at: int = FAR_FUTURE,
) -> dict[str, Any]:
    user = {
        "id": subject_id,
        "email": email,
        "app_metadata": {"provider": provider},
        "user_metadata": {"user_type": user_type} if user_type else {},
    }
    return {
        "session": {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "expires_at": expires_at,
            "user": user,
        },
        "user": user,
    }


def build_profile_row(
    subject_id: str = "user-1",
    user_type: str = "business",
    **overrides: Any,
) -> dict[str, Any]:
    row = {
        "id": subject_id,
        "user_type": user_type,
        "tier": "free_trial",
        "business_name": "Corner Shop",
        "email": "owner@shop.com",
        "email_verified": True,
        "created_at": "2024-01-01T00:00:00Z",
        "deleted_at": None,
    }
    row.update(overrides)
    return row


@pytest.fixture
def make_envelope():
    """Factory for provider session envelopes."""
    return build_envelope


@pytest.fixture
def make_profile_row():
    """Factory for `user_profiles` rows."""
    return build_profile_row


@pytest.fixture
def provider() -> AsyncMock:
    """Identity provider whose calls succeed for user-1 by default."""
    mock_provider = AsyncMock()
    mock_provider.sign_in_with_password.return_value = build_envelope()
    mock_provider.sign_up.return_value = build_envelope()
    mock_provider.refresh.return_value = build_envelope(access_token="access-2", refresh_token="refresh-2")
    mock_provider.exchange_code.return_value = build_envelope(provider="google")
    mock_provider.get_user.return_value = {"id": "user-1", "email": "owner@shop.com"}
    mock_provider.authorization_url.return_value = "https://test.supabase.co/auth/v1/authorize?provider=google"
    mock_provider.sign_out.return_value = None
    return mock_provider


@pytest.fixture
def storage() -> MemorySessionStorage:
    return MemorySessionStorage()


@pytest.fixture
def session_store(provider: AsyncMock, storage: MemorySessionStorage) -> SessionStore:
    return SessionStore(
        provider,
        storage,
        sign_in_timeout=1.0,
        restore_timeout=1.0,
        restore_attempts=2,
        restore_backoff=0,
    )


@pytest.fixture
def profile_store() -> AsyncMock:
    """Profile store returning a business profile for any subject."""
    store = AsyncMock()
    store.get_profile_row.side_effect = lambda subject_id: build_profile_row(subject_id)
    store.insert_profile_row.side_effect = lambda row: row
    return store


@pytest.fixture
def resolver(profile_store: AsyncMock) -> ProfileResolver:
    return ProfileResolver(profile_store, timeout=1.0, attempts=3, backoff=0)


@pytest.fixture
def recovery_checker() -> AsyncMock:
    """Recovery checker that finds no deleted account by default."""
    checker = AsyncMock()
    checker.check_recoverable_account_by_email.return_value = RecoverableAccountInfo()
    return checker


@pytest.fixture
def analytics() -> Mock:
    return Mock()


@pytest.fixture
def orchestrator(
    session_store: SessionStore,
    resolver: ProfileResolver,
    recovery_checker: AsyncMock,
    analytics: Mock,
) -> AuthOrchestrator:
    return AuthOrchestrator(session_store, resolver, recovery_checker, RouteTable(), analytics)
