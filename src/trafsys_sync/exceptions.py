"""Exception hierarchy for trafsys_sync."""

from __future__ import annotations


class TrafsysError(Exception):
    """Base exception for all trafsys_sync errors."""


class ConfigError(TrafsysError):
    """Invalid or missing configuration."""

    def __init__(self, message: str, *, missing: list[str] | None = None) -> None:
        self.missing = missing or []
        super().__init__(message)


class AuthenticationError(TrafsysError):
    """The token endpoint refused or failed to issue a token."""


class TokenRejectedError(TrafsysError):
    """Bearer token rejected (HTTP 401) by a data endpoint.

    The orchestrator catches this to re-authenticate and retry the
    fetch once.
    """

    def __init__(self, message: str, *, endpoint: str = "") -> None:
        self.endpoint = endpoint
        super().__init__(message)


class MalformedResponseError(TrafsysError):
    """Response body does not have the expected shape."""


class RunStateError(TrafsysError):
    """Run-state store could not be read or written."""
