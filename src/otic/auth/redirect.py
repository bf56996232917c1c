"""Parsing of OAuth redirect returns (implicit fragment or PKCE code)."""

import logging
import time
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qs, urlsplit

from jose import JWTError, jwt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RedirectParams:
    """Parameters carried by the provider's redirect back to the app."""

    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: int | None = None
    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None

    @property
    def has_tokens(self) -> bool:
        return bool(self.access_token and self.refresh_token)


def _first(params: dict[str, list[str]], name: str) -> str | None:
    values = params.get(name)
    return values[0] if values else None


def parse_redirect(url: str, now: float | None = None) -> RedirectParams:
    """
    Extract tokens, authorization code or error from a redirect URL.

    Tokens arrive in the URL fragment (implicit flow); `code`/`state` arrive
    in the query string (PKCE flow). Errors may appear in either.

    Args:
        url: Full redirect URL as received by the callback route
        now: Current epoch seconds, used when only `expires_in` is present

    Returns:
        RedirectParams with whatever the URL carried

    Example:
        >>> parse_redirect("https://app/auth/callback#access_token=a&refresh_token=r&expires_at=9")
        RedirectParams(access_token='a', refresh_token='r', expires_at=9, ...)
    """
    parts = urlsplit(url)
    fragment = parse_qs(parts.fragment)
    query = parse_qs(parts.query)

    expires_at: int | None = None
    raw_expires_at = _first(fragment, "expires_at")
    raw_expires_in = _first(fragment, "expires_in")
    if raw_expires_at and raw_expires_at.isdigit():
        expires_at = int(raw_expires_at)
    elif raw_expires_in and raw_expires_in.isdigit():
        expires_at = int((time.time() if now is None else now) + int(raw_expires_in))

    return RedirectParams(
        access_token=_first(fragment, "access_token"),
        refresh_token=_first(fragment, "refresh_token"),
        expires_at=expires_at,
        code=_first(query, "code"),
        state=_first(query, "state"),
        error=_first(fragment, "error") or _first(query, "error"),
        error_description=(
            _first(fragment, "error_description") or _first(query, "error_description")
        ),
    )


def session_payload_from_tokens(
    params: RedirectParams, user: dict[str, Any]
) -> dict[str, Any] | None:
    """
    Build a provider-shaped session envelope from fragment tokens.

    Identity facts (subject, email, provider) come from `user`, the record
    the identity provider returned for the access token. The token's own
    claims are only consulted for its expiry when the fragment omits it.

    Args:
        params: Parsed redirect carrying both tokens
        user: Provider-confirmed user for `params.access_token`

    Returns:
        Session envelope, or None if no expiry can be determined
    """
    if not params.has_tokens:
        return None

    expires_at = params.expires_at
    if expires_at is None:
        try:
            expires_at = jwt.get_unverified_claims(params.access_token).get("exp")
        except JWTError as e:
            logger.warning(
                f"Could not read expiry from redirect access token: {e}",
                extra={"error_type": "redirect_token_decode_failed"},
            )
            return None

    return {
        "access_token": params.access_token,
        "refresh_token": params.refresh_token,
        "expires_at": expires_at,
        "user": {
            "id": user.get("id"),
            "email": user.get("email"),
            "app_metadata": user.get("app_metadata") or {},
            "user_metadata": user.get("user_metadata") or {},
        },
    }
