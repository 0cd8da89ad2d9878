"""Client facade: one constructed instance of every sync component.

``TodoSyncClient`` is what a view layer holds on to. It owns the session
store, transport, query cache and mutation coordinator, wires them together
and tears them down again, so each test (or each process) can construct a
fresh, isolated client.
"""

import asyncio
import copy
import logging
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional

import httpx

from .api.auth import AuthService
from .api.todos import TodoService
from .config import ClientConfig, load_config
from .errors import ApiError
from .models import Session, Todo, User
from .mutations import MutationCoordinator
from .query_cache import Listener, QueryCache
from .query_keys import (
    FilterState,
    QueryKey,
    apply_search,
    my_todos_key,
    to_key,
    todo_detail_key,
    users_key,
)
from .session import SessionState, SessionStore
from .session_storage import SessionStorage, create_storage
from .transport import TransportClient


logger = logging.getLogger(__name__)


class TodoSyncClient:
    """Owns the data synchronization layer for one signed-in user."""

    def __init__(self, config: Optional[ClientConfig] = None,
                 storage: Optional[SessionStorage] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        """Construct and wire all components.

        Args:
            config: Client configuration (defaults if omitted)
            storage: Session storage backend (from config if omitted)
            transport: Optional httpx transport, e.g. ``httpx.MockTransport``
            clock: Monotonic clock used by the query cache
            sleep: Coroutine used between transport retries
        """
        self.config = config or ClientConfig()
        if storage is None:
            storage = create_storage(self.config.session_backend, Path(self.config.data_dir))

        self.session = SessionStore(storage)
        self.transport = TransportClient(
            self.config.transport_config(),
            session_store=self.session,
            transport=transport,
            sleep=sleep,
        )
        self.cache = QueryCache(
            stale_times=self.config.stale_times,
            default_stale_time=self.config.default_stale_time,
            gc_time=self.config.gc_time,
            clock=clock,
        )
        self.todo_service = TodoService(self.transport)
        self.auth_service = AuthService(self.transport)
        self.mutations = MutationCoordinator(self.todo_service, self.cache)
        self._unsubscribe_session = self.session.subscribe(self._on_session_change)
        self._closed = False

    @classmethod
    def from_config_file(cls, config_path: Optional[Path] = None, **kwargs) -> "TodoSyncClient":
        return cls(load_config(config_path), **kwargs)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        """Release timers, pending requests and the HTTP connection pool."""
        if self._closed:
            return
        self._closed = True
        self._unsubscribe_session()
        self.cache.teardown()
        await self.transport.aclose()

    def _on_session_change(self, state: SessionState, session: Optional[Session]) -> None:
        if state is SessionState.UNAUTHENTICATED:
            # Cached data belongs to the user who just left
            self.cache.clear()

    # Authentication

    @property
    def current_session(self) -> Optional[Session]:
        return self.session.current()

    def is_authenticated(self) -> bool:
        return self.session.is_authenticated()

    async def login(self, email: str, password: str) -> Session:
        """Log in and persist the resulting session.

        Raises:
            ClientError: If the credentials are rejected
            SessionPersistenceError: If the session cannot be saved
        """
        self.session.begin_authentication()
        try:
            result = await self.auth_service.login(email, password)
        except Exception:
            self.session.abort_authentication()
            raise
        return self._start_session(Session.from_auth_result(result))

    async def register(self, username: str, email: str, password: str) -> Session:
        """Create an account and log in as it."""
        self.session.begin_authentication()
        try:
            result = await self.auth_service.register(username, email, password)
        except Exception:
            self.session.abort_authentication()
            raise
        return self._start_session(Session.from_auth_result(result))

    async def logout(self) -> None:
        """End the session locally even if the API call fails."""
        try:
            if self.session.is_authenticated():
                await self.auth_service.logout()
        except ApiError as e:
            logger.warning(f"Logout request failed, clearing local session anyway: {e.message}")
        finally:
            self.session.clear()

    def _start_session(self, session: Session) -> Session:
        self.cache.clear()
        self.session.establish(session)
        logger.info(f"Logged in as {session.display_name}")
        return session

    # Reads

    async def todos(self, filters: Optional[FilterState] = None) -> List[Todo]:
        """Todos for a filter selection, served through the cache.

        Search text is applied to the cached list locally.
        """
        snapshot = copy.deepcopy(filters)
        todos = await self.cache.fetch(
            to_key(snapshot), lambda: self.todo_service.list_todos(snapshot)
        )
        return apply_search(todos, snapshot.search_text if snapshot else "")

    async def refresh_todos(self, filters: Optional[FilterState] = None) -> List[Todo]:
        """Force a new request for a filter selection."""
        snapshot = copy.deepcopy(filters)
        todos = await self.cache.refetch(
            to_key(snapshot), lambda: self.todo_service.list_todos(snapshot)
        )
        return apply_search(todos, snapshot.search_text if snapshot else "")

    async def my_todos(self) -> List[Todo]:
        return await self.cache.fetch(my_todos_key(), self.todo_service.list_my_todos)

    async def todo(self, todo_id: int) -> Todo:
        return await self.cache.fetch(
            todo_detail_key(todo_id), lambda: self.todo_service.get_todo(todo_id)
        )

    async def users(self) -> List[User]:
        return await self.cache.fetch(users_key(), self.todo_service.list_users)

    def watch(self, key: QueryKey, listener: Listener) -> Callable[[], None]:
        """Subscribe a view to a query key; returns the unsubscribe handle."""
        return self.cache.subscribe(key, listener)

    # Writes

    async def create_todo(self, payload) -> Todo:
        return await self.mutations.create(payload)

    async def update_todo(self, todo_id: int, patch) -> Todo:
        return await self.mutations.update(todo_id, patch)

    async def delete_todo(self, todo_id: int) -> None:
        await self.mutations.remove(todo_id)
