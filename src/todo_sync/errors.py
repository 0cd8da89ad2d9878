"""Error taxonomy for the todo synchronization layer.

Every error raised by the transport, the session store or the mutation
coordinator derives from ``TodoSyncError`` and can be presented to a user as a
short message plus an optional description.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    """Broad classification of a failed request."""
    TIMEOUT = "timeout"
    CONNECTION = "connection"
    CLIENT = "client"
    SERVER = "server"
    VALIDATION = "validation"


class TodoSyncError(Exception):
    """Base exception for the sync layer."""

    def __init__(self, message: str, description: Optional[str] = None):
        self.message = message
        self.description = description
        super().__init__(message)

    def to_display(self) -> Dict[str, Optional[str]]:
        """Return the presentable form of the error."""
        return {"message": self.message, "description": self.description}


class ConfigError(TodoSyncError):
    """Invalid client configuration."""
    pass


class SessionPersistenceError(TodoSyncError):
    """Session could not be written to durable storage."""
    pass


class ValidationError(TodoSyncError):
    """Local form-level validation failure; never reaches the network."""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, errors: Optional[Any] = None):
        self.errors = errors or []
        description = None
        if self.errors:
            description = "; ".join(
                f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"
                for err in self.errors
            )
        super().__init__(message, description)


class ApiError(TodoSyncError):
    """A request to the remote API failed.

    Attributes:
        status: HTTP status code, or None when no response was received
        code: Short error code from the API envelope (its ``error`` field)
        kind: ErrorKind classification
    """

    kind = ErrorKind.SERVER

    def __init__(self, message: str, status: Optional[int] = None,
                 code: Optional[str] = None, description: Optional[str] = None):
        self.status = status
        self.code = code
        super().__init__(message, description)

    def __repr__(self) -> str:
        return (f"{self.__class__.__name__}(message={self.message!r}, "
                f"status={self.status!r}, code={self.code!r})")


class NetworkError(ApiError):
    """No response was received (connection failure)."""

    kind = ErrorKind.CONNECTION


class RequestTimeoutError(NetworkError):
    """The request exceeded the configured timeout."""

    kind = ErrorKind.TIMEOUT


class ClientError(ApiError):
    """The API rejected the request with a 4xx status."""

    kind = ErrorKind.CLIENT


class UnauthorizedError(ClientError):
    """401 from the API; the session is no longer valid."""
    pass


class ServerError(ApiError):
    """The API failed with a 5xx status."""

    kind = ErrorKind.SERVER


def error_for_status(status: int, message: str, code: Optional[str] = None) -> ApiError:
    """Build the ApiError subclass matching an HTTP status code.

    Args:
        status: HTTP status code of the failed response
        message: Human readable message
        code: Error code from the response envelope

    Returns:
        ApiError instance
    """
    if status == 401:
        return UnauthorizedError(message, status=status, code=code)
    if 400 <= status < 500:
        return ClientError(message, status=status, code=code)
    if status >= 500:
        return ServerError(message, status=status, code=code)
    # Unexpected non-2xx such as an unfollowed redirect
    return ApiError(message, status=status, code=code)
