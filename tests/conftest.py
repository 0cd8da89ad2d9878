"""Pytest configuration and shared fixtures."""

import sys
import asyncio
import inspect
from pathlib import Path

import pytest

# Ensure src directory is in Python path for all tests
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from todo_sync.config import ClientConfig, TransportConfig  # noqa: E402
from todo_sync.session_storage import MemorySessionStorage  # noqa: E402

from fakes import FakeClock, FakeTodoApi, make_todo, no_sleep  # noqa: E402


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem):
    """Execute async tests without external plugins."""
    testfunction = pyfuncitem.obj
    if inspect.iscoroutinefunction(testfunction):
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            sig = inspect.signature(testfunction)
            call_kwargs = {name: pyfuncitem.funcargs[name] for name in sig.parameters}
            loop.run_until_complete(testfunction(**call_kwargs))
        finally:
            asyncio.set_event_loop(None)
            loop.close()
        return True
    return None


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_api():
    """API with two HIGH priority todos and one LOW, logged in as user 1."""
    return FakeTodoApi(todos=[
        make_todo(7, "Write report", priority="HIGH", assignedTo=[{"id": 1, "username": "alice", "email": "alice@example.com"}]),
        make_todo(8, "Call plumber", priority="HIGH", status="IN_PROGRESS", starred=True),
        make_todo(9, "Water plants", priority="LOW", description="Balcony ones too"),
    ])


@pytest.fixture
def memory_storage():
    return MemorySessionStorage()


@pytest.fixture
def client_config(tmp_path):
    return ClientConfig(
        api_url="https://api.test",
        session_backend="memory",
        data_dir=str(tmp_path),
        backoff_factor=0.0,
    )


@pytest.fixture
def transport_config():
    return TransportConfig(base_url="https://api.test", backoff_factor=0.0)


@pytest.fixture
def sleep_calls():
    return []


@pytest.fixture
def fake_sleep(sleep_calls):
    return no_sleep(sleep_calls)
