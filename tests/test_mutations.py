"""Tests for the mutation coordinator."""

from unittest.mock import AsyncMock, Mock

import pytest

from todo_sync.errors import ServerError, ValidationError
from todo_sync.models import Todo, TodoStatus
from todo_sync.mutations import MutationCoordinator
from todo_sync.query_cache import QueryCache

from fakes import make_todo

LIST_KEYS = [("todos", ""), ("todos", "priority=HIGH"), ("my-todos", "")]


@pytest.fixture
def cache(clock):
    cache = QueryCache(clock=clock)
    for key in LIST_KEYS:
        cache.set_data(key, [])
    cache.set_data(("todo", "id=7"), None)
    cache.set_data(("users", ""), [])
    return cache


@pytest.fixture
def service():
    service = Mock()
    todo = Todo.model_validate(make_todo(7, "Write report"))
    service.create_todo = AsyncMock(return_value=todo)
    service.update_todo = AsyncMock(return_value=todo)
    service.delete_todo = AsyncMock(return_value=None)
    return service


@pytest.fixture
def coordinator(service, cache):
    return MutationCoordinator(service, cache)


def invalidated(cache):
    return {key for key in cache.keys() if cache.read(key).is_invalidated}


class TestCreate:

    async def test_success_invalidates_lists(self, coordinator, service, cache):
        todo = await coordinator.create({"title": "Write report", "due_date": "2025-01-10T12:00:00Z"})
        assert todo.id == 7
        service.create_todo.assert_awaited_once()
        assert invalidated(cache) == set(LIST_KEYS)

    async def test_failure_still_invalidates(self, coordinator, service, cache):
        service.create_todo.side_effect = ServerError("down", status=500)
        with pytest.raises(ServerError):
            await coordinator.create({"title": "x", "due_date": "2025-01-10T12:00:00Z"})
        assert invalidated(cache) == set(LIST_KEYS)

    async def test_invalid_payload_sends_nothing(self, coordinator, service, cache):
        with pytest.raises(ValidationError):
            await coordinator.create({"title": ""})
        service.create_todo.assert_not_called()
        assert invalidated(cache) == set()


class TestUpdate:

    async def test_invalidates_lists_and_detail(self, coordinator, service, cache):
        await coordinator.update(7, {"status": "COMPLETED"})
        todo_id, request = service.update_todo.await_args.args
        assert todo_id == 7
        assert request.to_wire() == {"status": "COMPLETED"}
        assert invalidated(cache) == set(LIST_KEYS) | {("todo", "id=7")}
        assert not cache.read(("users", "")).is_invalidated

    async def test_empty_patch_rejected(self, coordinator, service):
        with pytest.raises(ValidationError):
            await coordinator.update(7, {})
        service.update_todo.assert_not_called()

    async def test_toggle_starred(self, coordinator, service):
        todo = Todo.model_validate(make_todo(7, starred=True))
        await coordinator.toggle_starred(todo)
        assert service.update_todo.await_args.args[1].to_wire() == {"starred": False}

    async def test_update_status(self, coordinator, service):
        await coordinator.update_status(7, TodoStatus.IN_PROGRESS)
        assert service.update_todo.await_args.args[1].to_wire() == {"status": "IN_PROGRESS"}

    async def test_single_call_on_failure(self, coordinator, service, cache):
        service.update_todo.side_effect = ServerError("down", status=503)
        with pytest.raises(ServerError):
            await coordinator.update(7, {"title": "New"})
        assert service.update_todo.await_count == 1
        assert ("todo", "id=7") in invalidated(cache)


class TestRemove:

    async def test_remove_invalidates(self, coordinator, service, cache):
        await coordinator.remove(7)
        service.delete_todo.assert_awaited_once_with(7)
        assert invalidated(cache) == set(LIST_KEYS) | {("todo", "id=7")}
