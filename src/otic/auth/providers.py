"""Identity provider adapter over Supabase Auth."""

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import httpx
from supabase import AuthError, AuthRetryableError, Client

from src.otic.auth.exceptions import MalformedResponseError
from src.otic.auth.outcomes import AuthErrorKind, AuthFailure

logger = logging.getLogger(__name__)

_CREDENTIAL_MARKERS = ("invalid login credentials", "email not confirmed", "invalid credentials")
_CREDENTIAL_CODES = {"invalid_credentials", "email_not_confirmed", "invalid_grant"}
_NETWORK_MARKERS = ("network", "load failed", "fetch", "connection", "aborted")


class IdentityProvider(Protocol):
    """
    Remote identity provider operations consumed by the session store.

    Methods return plain dicts shaped like the provider's JSON envelope
    (`{"session": {...}, "user": {...}}`) and raise on failure.
    """

    async def sign_in_with_password(self, email: str, password: str) -> dict[str, Any]: ...

    async def sign_up(
        self, email: str, password: str, metadata: dict[str, Any]
    ) -> dict[str, Any]: ...

    async def authorization_url(self, provider: str, redirect_to: str) -> str: ...

    async def exchange_code(self, code: str) -> dict[str, Any]: ...

    async def refresh(self, refresh_token: str) -> dict[str, Any]: ...

    async def get_user(self, access_token: str) -> dict[str, Any]: ...

    async def sign_out(self, access_token: str) -> None: ...


def classify_provider_error(error: Exception) -> AuthFailure | None:
    """
    Map a provider exception onto the failure taxonomy.

    Args:
        error: Exception raised by an identity provider call

    Returns:
        AuthFailure for expected failure modes, None for unexpected exceptions
        (which callers should let propagate)
    """
    if isinstance(error, (TimeoutError, httpx.TimeoutException)):
        return AuthFailure(kind=AuthErrorKind.TIMEOUT, detail=str(error))

    if isinstance(error, (AuthRetryableError, httpx.TransportError, ConnectionError)):
        return AuthFailure(kind=AuthErrorKind.NETWORK_ERROR, detail=str(error))

    if isinstance(error, AuthError):
        message = (getattr(error, "message", None) or str(error)).lower()
        code = (getattr(error, "code", None) or "").lower()

        if code in _CREDENTIAL_CODES or any(marker in message for marker in _CREDENTIAL_MARKERS):
            return AuthFailure(kind=AuthErrorKind.INVALID_CREDENTIALS, detail=message)

        if any(marker in message for marker in _NETWORK_MARKERS):
            return AuthFailure(kind=AuthErrorKind.NETWORK_ERROR, detail=message)

        return AuthFailure(kind=AuthErrorKind.PROVIDER_ERROR, detail=message)

    return None


def _dump(value: Any) -> dict[str, Any] | None:
    """Convert a Supabase response object (pydantic model) into a plain dict."""
    if value is None:
        return None
    if isinstance(value, Mapping):
        return dict(value)
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    raise MalformedResponseError(f"Unexpected provider payload type: {type(value).__name__}")


def _envelope(response: Any) -> dict[str, Any]:
    """Normalize an `AuthResponse` into `{"session": ..., "user": ...}`."""
    if response is None:
        raise MalformedResponseError("Identity provider returned no response")
    return {
        "session": _dump(getattr(response, "session", None)),
        "user": _dump(getattr(response, "user", None)),
    }


class SupabaseIdentityProvider:
    """
    Supabase Auth implementation of `IdentityProvider`.

    The Supabase client is synchronous, so each call runs in a worker
    thread to keep the event loop responsive. Token revocation goes
    straight to the GoTrue `/logout` endpoint, since the shared client does
    not hold restored sessions.

    Attributes:
        client: Supabase client (anon key)
        supabase_url: Project URL, used for the logout endpoint
        anon_key: Project anon key, sent as the `apikey` header
        email_redirect_to: Where confirmation emails send the user back to

    Example:
        >>> provider = SupabaseIdentityProvider(get_supabase_client(), settings.supabase_url,
        ...                                     settings.supabase_anon_key)
        >>> envelope = await provider.sign_in_with_password("a@x.com", "secret")
    """

    def __init__(
        self,
        client: Client,
        supabase_url: str,
        anon_key: str,
        email_redirect_to: str | None = None,
    ) -> None:
        self.client = client
        self.supabase_url = supabase_url.rstrip("/")
        self.anon_key = anon_key
        self.email_redirect_to = email_redirect_to
        self._http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(10.0, read=10.0, connect=5.0, write=5.0)
        )

    async def sign_in_with_password(self, email: str, password: str) -> dict[str, Any]:
        response = await asyncio.to_thread(
            self.client.auth.sign_in_with_password, {"email": email, "password": password}
        )
        return _envelope(response)

    async def sign_up(self, email: str, password: str, metadata: dict[str, Any]) -> dict[str, Any]:
        options: dict[str, Any] = {"data": metadata}
        if self.email_redirect_to:
            options["email_redirect_to"] = self.email_redirect_to
        response = await asyncio.to_thread(
            self.client.auth.sign_up,
            {"email": email, "password": password, "options": options},
        )
        return _envelope(response)

    async def authorization_url(self, provider: str, redirect_to: str) -> str:
        response = await asyncio.to_thread(
            self.client.auth.sign_in_with_oauth,
            {"provider": provider, "options": {"redirect_to": redirect_to}},
        )
        url = getattr(response, "url", None)
        if not url:
            raise MalformedResponseError(f"No authorization URL returned for provider {provider}")
        return url

    async def exchange_code(self, code: str) -> dict[str, Any]:
        response = await asyncio.to_thread(
            self.client.auth.exchange_code_for_session, {"auth_code": code}
        )
        return _envelope(response)

    async def refresh(self, refresh_token: str) -> dict[str, Any]:
        response = await asyncio.to_thread(self.client.auth.refresh_session, refresh_token)
        return _envelope(response)

    async def get_user(self, access_token: str) -> dict[str, Any]:
        response = await asyncio.to_thread(self.client.auth.get_user, access_token)
        user = _dump(getattr(response, "user", None))
        if not user:
            raise MalformedResponseError("Identity provider returned no user for access token")
        return user

    async def sign_out(self, access_token: str) -> None:
        response = await self._http_client.post(
            f"{self.supabase_url}/auth/v1/logout",
            headers={"apikey": self.anon_key, "Authorization": f"Bearer {access_token}"},
        )
        # 401/404: token already invalid, nothing left to revoke.
        if response.status_code not in (401, 404):
            response.raise_for_status()

    async def close(self) -> None:
        """Close the HTTP client. Called during application shutdown."""
        await self._http_client.aclose()
        logger.info("Identity provider HTTP client closed")
