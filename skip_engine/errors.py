"""
Domain exceptions for the skip engine.

Notes
-----
Engine code avoids raising generic exceptions. Every expected failure mode maps
to a domain exception with a clear meaning, and the decision engine translates
each of them into a decision signal.
"""

from __future__ import annotations


class SkipError(RuntimeError):
    """Base exception for all skip engine domain failures."""


class ConfigError(SkipError):
    """Raised when a required setting is missing or invalid."""


class ToolInvocationError(SkipError):
    """Raised when the fingerprinting tool fails (e.g., unknown revision)."""


class TreeEmptyError(SkipError):
    """Raised when a fingerprint was computed but the listing is empty."""


class ApiError(SkipError):
    """Raised when the CI API answers with a non-success status or garbage."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ArtifactError(SkipError):
    """Raised when artifacts of a matched job cannot be downloaded or extracted."""


class TooManyRedirectsError(ArtifactError):
    """Raised when an artifact download exceeds the redirect cap."""


class HistoryLogError(SkipError):
    """Raised when the local history log cannot be written."""


class MarkerError(SkipError):
    """Raised when the completion marker cannot be written."""
