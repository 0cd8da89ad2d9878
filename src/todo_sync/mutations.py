"""Create, update and delete todos, then invalidate the affected queries.

Each operation makes exactly one service call. Once that call has settled,
whether it succeeded or failed, every todo-list query is invalidated so the
next read reflects the server's actual state: a failed write may still have
been partially applied.
"""

import logging
from typing import Any, Dict, Union

from .api.todos import TodoService
from .errors import ValidationError
from .models import (
    CreateTodoRequest,
    Todo,
    TodoStatus,
    UpdateTodoRequest,
    validate_payload,
)
from .query_cache import QueryCache
from .query_keys import my_todos_key, todo_detail_key, todo_list_prefix


logger = logging.getLogger(__name__)

Payload = Union[Dict[str, Any], CreateTodoRequest, UpdateTodoRequest]


class MutationCoordinator:
    """Runs todo writes and keeps the query cache honest afterwards."""

    def __init__(self, service: TodoService, cache: QueryCache):
        self.service = service
        self.cache = cache
        self.logger = logging.getLogger(__name__)

    async def create(self, payload: Payload) -> Todo:
        """Create a todo.

        Args:
            payload: CreateTodoRequest or mapping of its fields

        Returns:
            The todo as stored by the API

        Raises:
            ValidationError: If the payload is invalid (nothing is sent)
            ApiError: If the request fails
        """
        request = validate_payload(CreateTodoRequest, payload)
        try:
            return await self.service.create_todo(request)
        finally:
            self._invalidate_lists()

    async def update(self, todo_id: int, patch: Payload) -> Todo:
        """Apply a partial update to a todo.

        Raises:
            ValidationError: If the patch is invalid or empty (nothing is sent)
            ApiError: If the request fails
        """
        request = validate_payload(UpdateTodoRequest, patch)
        if not request.model_fields_set:
            raise ValidationError("Nothing to update", errors=[{"loc": ("patch",), "msg": "no fields given"}])
        try:
            return await self.service.update_todo(todo_id, request)
        finally:
            self._invalidate_lists()
            self.cache.invalidate(todo_detail_key(todo_id))

    async def remove(self, todo_id: int) -> None:
        """Delete a todo.

        Raises:
            ApiError: If the request fails
        """
        try:
            await self.service.delete_todo(todo_id)
        finally:
            self._invalidate_lists()
            self.cache.invalidate(todo_detail_key(todo_id))

    async def toggle_starred(self, todo: Todo) -> Todo:
        return await self.update(todo.id, {"starred": not todo.starred})

    async def update_status(self, todo_id: int, status: Union[TodoStatus, str]) -> Todo:
        return await self.update(todo_id, {"status": status})

    def _invalidate_lists(self) -> None:
        count = self.cache.invalidate(todo_list_prefix())
        count += self.cache.invalidate(my_todos_key())
        self.logger.debug(f"Invalidated {count} todo queries after mutation")

