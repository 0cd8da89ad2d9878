"""Client-side data synchronization layer for a todo API.

The package fetches todos, users and session data from a remote JSON API,
caches query results, coalesces and orders concurrent requests, retries
transient failures and keeps the authentication session in sync with the
cache.
"""

from .client import TodoSyncClient
from .config import ClientConfig, TransportConfig, load_config
from .errors import (
    ApiError,
    ClientError,
    NetworkError,
    RequestTimeoutError,
    ServerError,
    TodoSyncError,
    UnauthorizedError,
    ValidationError,
)
from .models import Priority, Session, Todo, TodoStatus, User
from .mutations import MutationCoordinator
from .query_cache import CacheEntry, QueryCache, QueryStatus
from .query_keys import FilterState, to_key
from .session import SessionState, SessionStore
from .transport import TransportClient

__version__ = "0.1.0"

__all__ = [
    "TodoSyncClient",
    "ClientConfig",
    "TransportConfig",
    "load_config",
    "ApiError",
    "ClientError",
    "NetworkError",
    "RequestTimeoutError",
    "ServerError",
    "TodoSyncError",
    "UnauthorizedError",
    "ValidationError",
    "Priority",
    "Session",
    "Todo",
    "TodoStatus",
    "User",
    "MutationCoordinator",
    "CacheEntry",
    "QueryCache",
    "QueryStatus",
    "FilterState",
    "to_key",
    "SessionState",
    "SessionStore",
    "TransportClient",
]
