"""Custom exceptions for unexpected authentication failures.

Expected failures are returned as outcome values (see `outcomes.py`); these
are only raised for programming errors and malformed remote responses.
"""


class OticAuthError(Exception):
    """Base exception for all authentication core errors."""

    pass


class MalformedResponseError(OticAuthError):
    """Raised when a remote collaborator returns data in an unexpected shape."""

    pass


class OrchestratorNotInitializedError(OticAuthError):
    """Raised when the auth orchestrator is used before application startup."""

    pass
