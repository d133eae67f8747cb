"""Shared pytest fixtures for provisioning tracker tests."""
import asyncio
import os
from typing import Callable

import pytest

# Deterministic test environment: no .env lookups leaking real endpoints
os.environ.setdefault("CONTROL_PLANE_URL", "http://control-plane.test")
os.environ.setdefault("TRACKER_STORE_BACKEND", "memory")

from provtrack.store import MemoryJobStore

from fakes import FakeStatusClient, RecordingListener, make_state


@pytest.fixture
def fake_client():
    return FakeStatusClient()


@pytest.fixture
def memory_store():
    return MemoryJobStore()


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def state_factory():
    return make_state


@pytest.fixture
def wait_until() -> Callable:
    """Return an async helper that waits for a predicate to become true."""

    async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.005)

    return _wait_until


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    """Reset the settings singleton between tests for isolation."""
    from config.settings import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
