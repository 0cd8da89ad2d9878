"""End-to-end tests for TodoSyncClient against an in-memory API."""

import asyncio
import json

import httpx
import pytest

from todo_sync.client import TodoSyncClient
from todo_sync.errors import ClientError, ServerError, UnauthorizedError, ValidationError
from todo_sync.models import TodoStatus
from todo_sync.query_cache import QueryStatus
from todo_sync.query_keys import FilterState, to_key
from todo_sync.session import SessionState
from todo_sync.session_storage import ACCESS_TOKEN, CURRENT_USER

from fakes import TOKEN, error_body


@pytest.fixture
def make_client(client_config, memory_storage, fake_api, clock, fake_sleep):
    def factory(storage=None):
        return TodoSyncClient(
            client_config,
            storage=storage or memory_storage,
            transport=fake_api.transport(),
            clock=clock,
            sleep=fake_sleep,
        )
    return factory


class TestAuthentication:

    async def test_login_persists_session(self, make_client, memory_storage, fake_api):
        async with make_client() as client:
            session = await client.login("alice@example.com", "secret")
            assert session.display_name == "alice"
            assert client.session.state is SessionState.AUTHENTICATED
            assert memory_storage.values[ACCESS_TOKEN] == TOKEN
            assert json.loads(memory_storage.values[CURRENT_USER])["email"] == "alice@example.com"
            assert json.loads(fake_api.requests[0].content) == {
                "email": "alice@example.com", "password": "secret"}

    async def test_bad_credentials(self, make_client, memory_storage):
        async with make_client() as client:
            with pytest.raises(ClientError) as exc_info:
                await client.login("alice@example.com", "wrong")
            assert exc_info.value.message == "Invalid credentials"
            assert client.session.state is SessionState.UNAUTHENTICATED
            assert memory_storage.values == {}

    async def test_register_logs_in(self, make_client):
        async with make_client() as client:
            session = await client.register("carol", "carol@example.com", "pw")
            assert session.display_name == "carol"
            assert client.is_authenticated()

    async def test_session_survives_restart(self, make_client, memory_storage):
        async with make_client() as client:
            await client.login("alice@example.com", "secret")
        async with make_client(memory_storage) as restarted:
            assert restarted.current_session.email == "alice@example.com"
            assert len(await restarted.users()) == 2

    async def test_logout_clears_session_and_cache(self, make_client, memory_storage, fake_api):
        async with make_client() as client:
            await client.login("alice@example.com", "secret")
            await client.todos()
            await client.logout()
            assert client.current_session is None
            assert memory_storage.values == {}
            assert len(client.cache) == 0
            assert fake_api.calls("POST", "logout") == 1

    async def test_logout_clears_locally_when_api_fails(self, make_client, fake_api):
        fake_api.queue("POST", "logout", httpx.Response(500, json=error_body(500, "Internal", "oops")))
        async with make_client() as client:
            await client.login("alice@example.com", "secret")
            await client.logout()
            assert not client.is_authenticated()

    async def test_expired_token_logs_out(self, make_client, fake_api):
        async with make_client() as client:
            await client.login("alice@example.com", "secret")
            await client.users()
            fake_api.queue("GET", "todos", httpx.Response(401, json=error_body(401, "Unauthorized", "Token expired")))
            with pytest.raises(UnauthorizedError):
                await client.todos()
            assert client.session.state is SessionState.UNAUTHENTICATED
            assert len(client.cache) == 0


class TestReads:

    async def test_filtered_list_and_key(self, make_client, fake_api):
        async with make_client() as client:
            await client.login("alice@example.com", "secret")
            todos = await client.todos(FilterState(priority=["HIGH"]))

            assert sorted(todo.id for todo in todos) == [7, 8]
            request = fake_api.requests[-1]
            assert request.url.path == "/todos"
            assert request.url.params["priority"] == "HIGH"
            assert request.headers["Authorization"] == f"Bearer {TOKEN}"
            assert ("todos", "priority=HIGH") in client.cache

    async def test_concurrent_reads_share_request(self, make_client, fake_api):
        async with make_client() as client:
            await client.login("alice@example.com", "secret")
            filters = FilterState(priority=["HIGH"])
            first, second = await asyncio.gather(client.todos(filters), client.todos(filters))
            assert first == second
            assert fake_api.calls("GET", "todos") == 1

    async def test_search_is_applied_locally(self, make_client, fake_api):
        async with make_client() as client:
            await client.login("alice@example.com", "secret")
            everything = await client.todos()
            balcony = await client.todos(FilterState(search_text="balcony"))
            assert len(everything) == 3
            assert [todo.id for todo in balcony] == [9]
            assert fake_api.calls("GET", "todos") == 1

    async def test_caller_mutating_filters_does_not_change_key(self, make_client):
        async with make_client() as client:
            await client.login("alice@example.com", "secret")
            filters = FilterState(priority=["LOW"])
            await client.todos(filters)
            filters.priority.append("HIGH")
            assert ("todos", "priority=LOW") in client.cache

    async def test_detail_users_and_my_todos(self, make_client):
        async with make_client() as client:
            await client.login("alice@example.com", "secret")
            todo = await client.todo(9)
            assert todo.description == "Balcony ones too"
            assert [user.username for user in await client.users()] == ["alice", "bob"]
            assert len(await client.my_todos()) == 3

    async def test_missing_todo(self, make_client):
        async with make_client() as client:
            await client.login("alice@example.com", "secret")
            with pytest.raises(ClientError) as exc_info:
                await client.todo(404)
            assert exc_info.value.status == 404

    async def test_watch_receives_updates(self, make_client):
        async with make_client() as client:
            await client.login("alice@example.com", "secret")
            seen = []
            unsubscribe = client.watch(to_key(None), seen.append)
            await client.todos()
            unsubscribe()
            assert [entry.status for entry in seen] == [QueryStatus.FETCHING, QueryStatus.SUCCESS]
            assert len(seen[-1].data) == 3

    async def test_watch_survives_forced_logout_and_login(self, make_client, fake_api):
        async with make_client() as client:
            await client.login("alice@example.com", "secret")
            seen = []
            client.watch(to_key(None), seen.append)
            await client.todos()

            fake_api.queue("GET", "todos", httpx.Response(401, json=error_body(401, "Unauthorized", "Token expired")))
            with pytest.raises(UnauthorizedError):
                await client.refresh_todos()
            assert seen[-1].status is QueryStatus.IDLE
            assert not seen[-1].has_data

            await client.login("alice@example.com", "secret")
            seen.clear()
            todos = await client.todos()
            assert len(todos) == 3
            assert [entry.status for entry in seen] == [QueryStatus.FETCHING, QueryStatus.SUCCESS]


class TestWrites:

    async def test_update_then_reread(self, make_client, fake_api):
        async with make_client() as client:
            await client.login("alice@example.com", "secret")
            key_filters = FilterState(priority=["HIGH"])
            before = await client.todos(key_filters)
            assert {t.id: t.status for t in before}[7] is TodoStatus.PENDING

            updated = await client.update_todo(7, {"status": TodoStatus.COMPLETED})
            assert updated.status is TodoStatus.COMPLETED
            assert client.cache.read(to_key(key_filters)).is_invalidated

            after = await client.todos(key_filters)
            assert {t.id: t.status for t in after}[7] is TodoStatus.COMPLETED
            assert fake_api.calls("GET", "todos") == 2
            assert json.loads(fake_api.requests[-2].content) == {"status": "COMPLETED"}

    async def test_create_shows_up_in_next_read(self, make_client, fake_api):
        async with make_client() as client:
            await client.login("alice@example.com", "secret")
            await client.todos()
            created = await client.create_todo({
                "title": "Book flights",
                "due_date": "2025-03-01T09:00:00Z",
                "assigned_to": [2],
                "priority": "LOW",
            })
            assert created.assigned_user_ids == [2]
            titles = [todo.title for todo in await client.todos()]
            assert "Book flights" in titles

    async def test_invalid_create_never_sent(self, make_client, fake_api):
        async with make_client() as client:
            await client.login("alice@example.com", "secret")
            with pytest.raises(ValidationError):
                await client.create_todo({"title": "  "})
            assert fake_api.calls("POST", "todos") == 0

    async def test_failed_create_is_not_retried(self, make_client, fake_api):
        fake_api.queue("POST", "todos", httpx.Response(503, json=error_body(503, "Unavailable", "busy")))
        async with make_client() as client:
            await client.login("alice@example.com", "secret")
            with pytest.raises(ServerError):
                await client.create_todo({"title": "x", "due_date": "2025-03-01T09:00:00Z"})
            assert fake_api.calls("POST", "todos") == 1

    async def test_delete(self, make_client, fake_api):
        async with make_client() as client:
            await client.login("alice@example.com", "secret")
            await client.todo(9)
            await client.delete_todo(9)
            assert 9 not in fake_api.todos
            with pytest.raises(ClientError):
                await client.todo(9)
