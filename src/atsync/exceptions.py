"""Centralized exceptions for atsync."""

from __future__ import annotations


class AtsyncError(Exception):
    """Base exception for all atsync errors."""


class XrpcError(AtsyncError):
    """Raised when an XRPC call returns an error response."""

    def __init__(self, method: str, status: int, error: str | None = None, message: str | None = None) -> None:
        self.method = method
        self.status = status
        self.error = error
        self.message = message
        detail = f"{error}: {message}" if error and message else (error or message or "no detail")
        super().__init__(f"XRPC {method} failed with HTTP {status} ({detail})")

    @property
    def is_transient(self) -> bool:
        """Return ``True`` for rate limiting and server-side failures."""
        return self.status == 429 or self.status >= 500

    @property
    def is_not_found(self) -> bool:
        return self.status in {400, 404} and (self.error or "") in {
            "RecordNotFound",
            "RepoNotFound",
            "NotFound",
            "InvalidRequest",
            "",
        }


class AuthenticationError(AtsyncError):
    """Raised when a credentialed session cannot be established or is rejected.

    This is the one error class allowed to escape the synchronizer: without a
    session no useful data can be fetched.
    """


class MissingSessionError(AuthenticationError):
    """Raised when an operation needs a session but no credentials are configured."""

    def __init__(self, identifier: str | None = None) -> None:
        self.identifier = identifier
        target = f" for '{identifier}'" if identifier else ""
        super().__init__(
            f"No AT Protocol session available{target}. "
            "Set ATSYNC_REPOSITORY__IDENTIFIER and ATSYNC_REPOSITORY__PASSWORD."
        )


class HandleResolutionError(AtsyncError, LookupError):
    """Raised when a handle cannot be resolved to a repository DID."""

    def __init__(self, handle: str, reason: str | Exception | None = None) -> None:
        self.handle = handle
        self.reason = reason
        msg = f"Could not resolve handle: '{handle}'"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class InvalidAtUriError(AtsyncError, ValueError):
    """Raised when a string is not a valid ``at://`` URI."""

    def __init__(self, uri: str) -> None:
        self.uri = uri
        super().__init__(f"Invalid AT-URI: '{uri}'")


class DiscoveryError(AtsyncError):
    """Raised when discovery could not check a single collection because every request failed."""

    def __init__(self, repository_id: str, attempted: int) -> None:
        self.repository_id = repository_id
        self.attempted = attempted
        super().__init__(f"Discovery for '{repository_id}' failed: all {attempted} collection requests failed")


class StreamError(AtsyncError):
    """Raised when the live event stream cannot be opened or fails."""


class SnapshotError(AtsyncError):
    """Raised when a build-time snapshot document cannot be decoded."""

    def __init__(self, path: str, reason: str | Exception) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid snapshot document '{path}': {reason}")


__all__ = [
    "AtsyncError",
    "AuthenticationError",
    "DiscoveryError",
    "HandleResolutionError",
    "InvalidAtUriError",
    "MissingSessionError",
    "SnapshotError",
    "StreamError",
    "XrpcError",
]
