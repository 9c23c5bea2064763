"""
Pytest configuration and shared fixtures.

This module provides:
- Environment variable setup for tests
- Broker and service fixtures on the memory adapter
- Fake relation targets for population tests
"""

import os

import pytest

# Set test environment variables BEFORE any imports
# This must happen first to ensure settings load with test values
os.environ["DATASERVICE_DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DATASERVICE_CONNECT_MAX_RETRIES"] = "2"
os.environ["DATASERVICE_CONNECT_RETRY_DELAY"] = "0.01"
os.environ["DATASERVICE_LOG_LEVEL"] = "DEBUG"
os.environ["DATASERVICE_REMOTE_BASE_URL"] = "http://remote.test"
os.environ["DATASERVICE_REMOTE_MAX_RETRIES"] = "1"

from dataservice.adapters.memory import MemoryAdapter  # noqa: E402
from dataservice.services.broker import Context, LocalBroker  # noqa: E402
from dataservice.services.database_service import DatabaseService  # noqa: E402

USERS = [
    {"_id": "u1", "name": "Ada", "email": "ada@example.com", "profile": {"city": "London"}},
    {"_id": "u2", "name": "Grace", "email": "grace@example.com", "profile": {"city": "Arlington"}},
    {"_id": "u3", "name": "Linus", "email": "linus@example.com", "profile": {"city": "Helsinki"}},
]

POSTS = [
    {"_id": "p1", "title": "Engines", "author": "u1", "reviewers": ["u2", "u3"], "votes": 3},
    {"_id": "p2", "title": "Compilers", "author": "u2", "reviewers": ["u1"], "votes": 7},
    {"_id": "p3", "title": "Kernels", "author": "u3", "reviewers": [], "votes": 5},
]


class UsersService(DatabaseService):
    name = "users"


class PostsService(DatabaseService):
    name = "posts"
    settings = {
        "populates": {
            "author": "users.get",
            "reviewers": {"action": "users.get", "params": {"fields": ["_id", "name"]}},
        },
    }


class RecordingBroker(LocalBroker):
    """LocalBroker that records every call for assertions."""

    def __init__(self):
        super().__init__()
        self.calls = []

    async def call(self, action, params=None, meta=None):
        self.calls.append((action, params))
        return await super().call(action, params, meta)


@pytest.fixture
async def broker():
    """Broker hosting users and posts on memory adapters, started."""
    broker = RecordingBroker()
    broker.create_service(UsersService(adapter=MemoryAdapter(USERS)))
    broker.create_service(PostsService(adapter=MemoryAdapter(POSTS)))
    await broker.start()
    yield broker
    await broker.stop()


@pytest.fixture
def users(broker):
    return broker.get_service("users")


@pytest.fixture
def posts(broker):
    return broker.get_service("posts")


@pytest.fixture
def make_ctx(broker):
    """Build a call context for an action of a service on the test broker."""

    def _make(action: str, params=None):
        service_name = action.rsplit(".", 1)[0]
        return Context(
            broker=broker,
            action=action,
            params=dict(params or {}),
            service=broker.get_service(service_name),
        )

    return _make
