#!/usr/bin/env python3
"""
Pytest configuration and shared fixtures.
Every test gets its own SQLite file and a frozen clock; the remote backend is
an in-process fake behind httpx.MockTransport.
"""

import os
import sys
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
import pytest_asyncio

# Add the project root to Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from meraki.core.config import Settings
from meraki.services.local_store import SqlLocalStore
from meraki.services.remote import RemoteClient
from tests.mocks.remote import FakeRemoteServer

TEST_API_KEY = "test_api_key"
REMOTE_URL = "http://remote.test"
REMOTE_KEY = "test-remote-key-123"

# 09:00 in Guatemala (UTC-6, no DST)
FROZEN_NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock that only moves when told to"""

    def __init__(self, now: datetime = FROZEN_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def setup_test_environment():
    """Keep stray environment from leaking into Settings()"""
    test_env = {
        'APP_ENV': 'testing',
        'API_KEY': TEST_API_KEY,
        'REDIS_URL': '',
        'REMOTE_API_URL': '',
        'REMOTE_API_KEY': '',
        'BACKGROUND_TASKS_ENABLED': 'false',
    }
    with patch.dict(os.environ, test_env):
        yield


@pytest.fixture
def clock():
    return FrozenClock()


@pytest_asyncio.fixture
async def store(tmp_path):
    store = SqlLocalStore.from_url(f"sqlite+aiosqlite:///{tmp_path / 'meraki.db'}")
    await store.init()
    yield store
    await store.close()


@pytest.fixture
def remote_server():
    return FakeRemoteServer()


@pytest_asyncio.fixture
async def remote(remote_server):
    client = RemoteClient(REMOTE_URL, REMOTE_KEY, transport=remote_server.transport())
    yield client
    await client.close()


@pytest.fixture
def app_settings(tmp_path):
    """Settings for a local-only app instance"""
    return Settings(
        _env_file=None,
        APP_ENV="testing",
        LOCAL_DB_URL=f"sqlite+aiosqlite:///{tmp_path / 'app.db'}",
        REDIS_URL=None,
        REMOTE_API_URL=None,
        REMOTE_API_KEY=None,
        API_KEY=TEST_API_KEY,
        SEED_DEMO_DATA=False,
        BACKGROUND_TASKS_ENABLED=False,
    )


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {TEST_API_KEY}"}


@pytest.fixture(autouse=True)
def monitor_test_performance(request):
    """Warn about slow tests"""
    start_time = time.time()
    yield
    duration = time.time() - start_time
    node = request.node
    if node.get_closest_marker("smoke") and duration > 1.0:
        print(f"⚠️ Smoke test {node.name} took {duration:.2f}s (should be < 1s)")
    elif not node.get_closest_marker("slow") and duration > 10.0:
        print(f"⚠️ Test {node.name} took {duration:.2f}s (consider marking as @pytest.mark.slow)")


def pytest_collection_modifyitems(config, items):
    """Run smoke tests first and slow tests last"""
    def test_priority(item):
        if item.get_closest_marker("smoke"):
            return 0
        if item.get_closest_marker("integration"):
            return 2
        if item.get_closest_marker("slow"):
            return 3
        return 1

    items[:] = sorted(items, key=test_priority)
