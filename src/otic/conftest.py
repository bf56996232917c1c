"""Pytest configuration and shared fixtures."""

import pytest
from fastapi.testclient import TestClient

from src.otic.main import app
from src.otic.services.rate_limiter import limiter


@pytest.fixture(autouse=True)
def reset_rate_limits():
    """Start every test with empty rate limit counters."""
    limiter.reset()
    yield


@pytest.fixture
def client() -> TestClient:
    """
    Provide FastAPI test client for API testing.

    The lifespan is not run, so no remote services are contacted; tests
    install their own orchestrator through dependency overrides.

    Example:
        >>> def test_health(client):
        >>>     response = client.get("/health")
        >>>     assert response.status_code == 200
    """
    return TestClient(app)
