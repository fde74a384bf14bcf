"""
Exceptions for workspace filesystem operations.

Every exception carries a ``code`` that the service façade copies into
the ``{ok: false}`` response envelope.
"""

from typing import Any, Optional


class FileSystemError(Exception):
    """Base exception for filesystem operations."""

    code = "IOError"

    def __init__(self, message: str, *, path: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.path = path

    def to_dict(self) -> dict[str, Any]:
        """Error payload for a response envelope."""
        return {"ok": False, "error": self.message, "code": self.code}


class InvalidPathError(FileSystemError):
    """Raised when a path fails resolution (outside workspace, disallowed form)."""

    code = "InvalidPath"

    def __init__(self, path: str, reason: str = "Invalid path"):
        self.reason = reason
        super().__init__(f"Invalid path: {reason}", path=path)


class SecurityDeniedError(FileSystemError):
    """Raised when the security policy refuses an operation."""

    code = "SecurityDenied"

    def __init__(
        self,
        path: str,
        reason: str,
        risk: str = "low",
        suggestions: Optional[list[str]] = None,
    ):
        self.reason = reason
        self.risk = risk
        self.suggestions = list(suggestions or [])
        super().__init__(f"Security check failed: {reason}", path=path)

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["risk"] = self.risk
        if self.suggestions:
            payload["suggestions"] = self.suggestions
        return payload


class FileOperationError(FileSystemError):
    """Raised when an OS-level operation cannot be carried out."""

    code = "IOError"


class WatchLimitExceededError(FileSystemError):
    """Raised when a client already holds its maximum number of watches."""

    code = "WatchLimitExceeded"

    def __init__(self, client_id: str, limit: int, path: Optional[str] = None):
        self.client_id = client_id
        self.limit = limit
        super().__init__(
            f"Watch limit exceeded for client {client_id} ({limit} watchers)",
            path=path,
        )


class ConfigValidationError(FileSystemError):
    """Raised when a configuration violates one of its invariants."""

    code = "ValidationError"

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("Invalid configuration: " + "; ".join(self.errors))

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["errors"] = self.errors
        return payload


class UnsupportedOperationError(FileSystemError):
    """Raised for a request naming an operation the service does not know."""

    code = "UnsupportedOperation"

    def __init__(self, operation: Optional[str]):
        self.operation = operation
        super().__init__(f"Unsupported fileSystem operation: {operation}")
