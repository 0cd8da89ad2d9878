"""Todo and user endpoints."""

import logging
from typing import List, Optional, Union

from ..models import CreateTodoRequest, Todo, UpdateTodoRequest, User
from ..query_keys import FilterState, encode_params, to_query_params
from ..transport import TransportClient
from .base import parse_model, unwrap


logger = logging.getLogger(__name__)


class TodoService:
    """Client for the ``todos``, ``my-todos`` and ``users`` endpoints."""

    def __init__(self, transport: TransportClient):
        self.transport = transport
        self.logger = logging.getLogger(__name__)

    async def list_todos(self, filters: Optional[FilterState] = None) -> List[Todo]:
        """Fetch todos matching the server-side filters.

        Args:
            filters: Filter selection; search text is ignored here

        Returns:
            List of todos
        """
        query = encode_params(to_query_params(filters))
        path = f"todos?{query}" if query else "todos"
        payload = await self.transport.get(path)
        todos = [parse_model(Todo, item) for item in unwrap(payload, "todos")]
        self.logger.debug(f"Fetched {len(todos)} todos ({query or 'no filters'})")
        return todos

    async def list_my_todos(self) -> List[Todo]:
        """Fetch todos created by or assigned to the current user."""
        payload = await self.transport.get("my-todos")
        return [parse_model(Todo, item) for item in unwrap(payload, "todos")]

    async def get_todo(self, todo_id: int) -> Todo:
        payload = await self.transport.get(f"todos/{int(todo_id)}")
        return parse_model(Todo, unwrap(payload, "todo"))

    async def create_todo(self, payload: CreateTodoRequest) -> Todo:
        response = await self.transport.post("todos", payload.to_wire())
        todo = parse_model(Todo, unwrap(response, "todo"))
        self.logger.info(f"Created todo {todo.id}: {todo.title}")
        return todo

    async def update_todo(self, todo_id: int, patch: UpdateTodoRequest) -> Todo:
        response = await self.transport.put(f"todos/{int(todo_id)}", patch.to_wire())
        todo = parse_model(Todo, unwrap(response, "todo"))
        self.logger.info(f"Updated todo {todo.id}")
        return todo

    async def delete_todo(self, todo_id: Union[int, str]) -> None:
        await self.transport.delete(f"todos/{int(todo_id)}")
        self.logger.info(f"Deleted todo {todo_id}")

    async def list_users(self) -> List[User]:
        payload = await self.transport.get("users")
        return [parse_model(User, item) for item in unwrap(payload, "users")]
