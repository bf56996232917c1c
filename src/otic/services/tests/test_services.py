"""Tests for analytics and rate limiting services."""

from unittest.mock import Mock, patch

from starlette.requests import Request

from src.otic.services.posthog import PostHogService
from src.otic.services.rate_limiter import get_client_key


def _request(host: str) -> Request:
    return Request({"type": "http", "method": "POST", "path": "/", "headers": [], "client": (host, 1234)})


def test_client_key_uses_remote_address():
    assert get_client_key(_request("10.0.0.7")) == "ip:10.0.0.7"


class TestPostHogService:
    """Tests for PostHogService."""

    def test_noop_without_api_key(self):
        with patch("src.otic.services.posthog.settings", Mock(posthog_api_key=None)), patch(
            "src.otic.services.posthog.posthog"
        ) as mock_posthog:
            service = PostHogService()
            service.capture("user-1", "sign_in_succeeded")
            service.identify("user-1", {"user_type": "business"})

        mock_posthog.capture.assert_not_called()
        mock_posthog.identify.assert_not_called()

    def test_capture_with_api_key(self):
        settings = Mock(posthog_api_key="phc_test", posthog_host="https://eu.posthog.com")
        with patch("src.otic.services.posthog.settings", settings), patch(
            "src.otic.services.posthog.posthog"
        ) as mock_posthog:
            service = PostHogService()
            service.capture("user-1", "sign_in_failed", {"kind": "timeout"})

        assert mock_posthog.api_key == "phc_test"
        assert mock_posthog.host == "https://eu.posthog.com"
        mock_posthog.capture.assert_called_once_with(
            distinct_id="user-1", event="sign_in_failed", properties={"kind": "timeout"}
        )
