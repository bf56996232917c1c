"""Profile resolver: maps a session's subject ID to its business profile."""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any, Protocol

import httpx
from postgrest.exceptions import APIError
from pydantic import ValidationError
from supabase import Client
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from src.otic.auth.exceptions import MalformedResponseError
from src.otic.auth.models import Profile, Tier, UserType
from src.otic.auth.outcomes import (
    AuthErrorKind,
    AuthFailure,
    ProfileFetchError,
    ProfileLookup,
    ProfileNotFound,
)
from src.otic.auth.timeouts import with_timeout

logger = logging.getLogger(__name__)

PROFILE_TABLE = "user_profiles"


class ProfileStore(Protocol):
    """Data store operations on profile rows."""

    async def get_profile_row(self, subject_id: str) -> dict[str, Any] | None: ...

    async def insert_profile_row(self, row: dict[str, Any]) -> dict[str, Any]: ...


class SupabaseProfileStore:
    """`ProfileStore` backed by the Supabase `user_profiles` table."""

    def __init__(self, client: Client, table: str = PROFILE_TABLE) -> None:
        self.client = client
        self.table = table

    async def get_profile_row(self, subject_id: str) -> dict[str, Any] | None:
        response = await asyncio.to_thread(
            self.client.table(self.table).select("*").eq("id", subject_id).limit(1).execute
        )
        return response.data[0] if response.data else None

    async def insert_profile_row(self, row: dict[str, Any]) -> dict[str, Any]:
        response = await asyncio.to_thread(self.client.table(self.table).insert(row).execute)
        if not response.data:
            raise MalformedResponseError(f"Insert into {self.table} returned no row")
        return response.data[0]


def _should_retry(outcome: ProfileLookup) -> bool:
    if isinstance(outcome, ProfileNotFound):
        return True
    return isinstance(outcome, ProfileFetchError) and outcome.kind in (
        AuthErrorKind.NETWORK_ERROR,
        AuthErrorKind.TIMEOUT,
    )


class ProfileResolver:
    """
    Resolves profiles with bounded retry for the sign-up race.

    `ProfileNotFound` is an expected outcome (profile creation can lag
    session creation) and is retried internally; only an exhausted retry
    budget surfaces it to callers.

    Attributes:
        store: Profile data store
        timeout: Per-attempt fetch timeout (seconds)
        attempts: Total attempts made by `resolve`
        backoff: First backoff wait (seconds); doubles per attempt

    Example:
        >>> resolver = ProfileResolver(SupabaseProfileStore(get_supabase_client()))
        >>> outcome = await resolver.resolve("5b0c...")
        >>> if isinstance(outcome, Profile):
        ...     print(outcome.user_type)
    """

    def __init__(
        self,
        store: ProfileStore,
        *,
        timeout: float = 8.0,
        attempts: int = 3,
        backoff: float = 0.5,
    ) -> None:
        self.store = store
        self.timeout = timeout
        self.attempts = attempts
        self.backoff = backoff

    async def fetch_profile(self, subject_id: str) -> ProfileLookup:
        """
        Fetch the profile once.

        Args:
            subject_id: Session subject ID

        Returns:
            Profile, ProfileNotFound (no row, or row soft-deleted) or
            ProfileFetchError (network failure, timeout, store rejection)

        Raises:
            MalformedResponseError: If the row cannot be parsed into a Profile
        """
        try:
            row = await with_timeout(
                self.store.get_profile_row(subject_id),
                self.timeout,
                on_timeout=lambda: ProfileFetchError(
                    subject_id=subject_id, kind=AuthErrorKind.TIMEOUT, detail="profile fetch timed out"
                ),
                operation="fetch_profile",
            )
        except (httpx.TransportError, ConnectionError) as e:
            kind = (
                AuthErrorKind.TIMEOUT
                if isinstance(e, httpx.TimeoutException)
                else AuthErrorKind.NETWORK_ERROR
            )
            return ProfileFetchError(subject_id=subject_id, kind=kind, detail=str(e))
        except APIError as e:
            logger.error(
                f"Profile store rejected read for {subject_id}: {e.message}",
                extra={"error_type": "profile_fetch_rejected", "subject_id": subject_id},
            )
            return ProfileFetchError(
                subject_id=subject_id, kind=AuthErrorKind.PROVIDER_ERROR, detail=str(e.message)
            )

        if isinstance(row, ProfileFetchError):
            return row
        if row is None:
            return ProfileNotFound(subject_id=subject_id)

        try:
            profile = Profile.model_validate(row)
        except ValidationError as e:
            raise MalformedResponseError(f"Malformed profile row for {subject_id}: {e}") from e

        if profile.is_soft_deleted:
            logger.info(
                "Profile is soft-deleted, treating as absent",
                extra={"subject_id": subject_id},
            )
            return ProfileNotFound(subject_id=subject_id)

        return profile

    async def resolve(self, subject_id: str) -> ProfileLookup:
        """
        Fetch the profile, retrying NotFound and transient errors.

        Returns:
            Profile, or the last failed outcome once the retry budget is spent
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(multiplier=self.backoff),
            retry=retry_if_result(_should_retry),
            retry_error_callback=lambda state: state.outcome.result(),
            before_sleep=before_sleep_log(logger, logging.INFO),
            reraise=True,
        )
        outcome = await retrying(self.fetch_profile, subject_id)

        if not isinstance(outcome, Profile):
            logger.warning(
                f"Profile unavailable for {subject_id} after {self.attempts} attempts",
                extra={
                    "error_type": "profile_unavailable",
                    "subject_id": subject_id,
                    "outcome": type(outcome).__name__,
                },
            )
        return outcome

    @staticmethod
    def validate_user_type(profile: Profile, expected: UserType | None) -> AuthFailure | None:
        """
        Check a profile against the channel a sign-in came through.

        Returns:
            None if the types agree (or no expectation), otherwise an
            `account_type_mismatch` failure naming the profile's actual type
        """
        if expected is None or profile.user_type == expected:
            return None
        return AuthFailure(
            kind=AuthErrorKind.ACCOUNT_TYPE_MISMATCH,
            detail=f"expected {expected.value}",
            actual_user_type=profile.user_type,
        )

    async def create_profile(
        self,
        subject_id: str,
        email: str,
        user_type: UserType,
        business_name: str | None = None,
        tier: Tier = Tier.FREE_TRIAL,
    ) -> Profile | ProfileFetchError:
        """Insert the profile row created at sign-up completion."""
        row = {
            "id": subject_id,
            "email": email,
            "user_type": user_type.value,
            "tier": tier.value,
            "business_name": business_name,
            "email_verified": False,
            "created_at": datetime.now(UTC).isoformat(),
        }
        try:
            created = await with_timeout(
                self.store.insert_profile_row(row),
                self.timeout,
                on_timeout=lambda: None,
                operation="create_profile",
            )
        except (httpx.TransportError, ConnectionError) as e:
            return ProfileFetchError(subject_id=subject_id, detail=str(e))
        except APIError as e:
            logger.error(
                f"Profile creation rejected for {subject_id}: {e.message}",
                extra={"error_type": "profile_create_rejected", "subject_id": subject_id},
            )
            return ProfileFetchError(
                subject_id=subject_id, kind=AuthErrorKind.PROVIDER_ERROR, detail=str(e.message)
            )

        if created is None:
            return ProfileFetchError(
                subject_id=subject_id, kind=AuthErrorKind.TIMEOUT, detail="profile creation timed out"
            )
        return Profile.model_validate(created)
