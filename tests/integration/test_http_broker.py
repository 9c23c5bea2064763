"""
Integration tests for HttpBroker.

A remote node is a create_app() instance hosting the users service; the
local HttpBroker hosts posts and reaches users over httpx via ASGITransport.

Tests follow AAA (Arrange, Act, Assert) pattern.
"""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from dataservice.adapters.memory import MemoryAdapter
from dataservice.core.errors import RemoteCallError
from dataservice.main import create_app
from dataservice.services.broker import LocalBroker
from dataservice.services.database_service import DatabaseService
from dataservice.services.http_broker import HttpBroker

REMOTE_URL = "http://remote.test"

USERS = [
    {"_id": "u1", "name": "Ada"},
    {"_id": "u2", "name": "Grace"},
    {"_id": "u3", "name": "Linus"},
]

POSTS = [
    {"_id": "p2", "title": "Compilers", "author": "u2"},
]


class UsersService(DatabaseService):
    name = "users"


class PostsService(DatabaseService):
    name = "posts"
    settings = {"populates": {"author": "users.get"}}


@pytest.fixture
async def remote_node():
    broker = LocalBroker()
    broker.create_service(UsersService(adapter=MemoryAdapter(USERS)))
    await broker.start()
    yield create_app(broker)
    await broker.stop()


@pytest.fixture
async def http_broker(remote_node):
    client = httpx.AsyncClient(transport=httpx.ASGITransport(app=remote_node), base_url=REMOTE_URL)
    broker = HttpBroker(base_url=REMOTE_URL, client=client)
    broker.create_service(PostsService(adapter=MemoryAdapter(POSTS)))
    await broker.start()
    yield broker
    await broker.stop()
    await client.aclose()


@pytest.mark.asyncio
class TestRemoteCalls:

    async def test_remote_action_result(self, http_broker):
        result = await http_broker.call("users.get", {"id": "u2", "fields": ["name"]})

        assert result == {"name": "Grace"}

    async def test_population_across_nodes(self, http_broker):
        """
        Test a local service populates from a remote one.

        Arrange: posts local, users on the remote node
        Act: get p2 populating author
        Assert: Author record fetched over HTTP and merged
        """
        # Act
        result = await http_broker.call(
            "posts.get", {"id": "p2", "populate": ["author"], "fields": ["title", "author.name"]}
        )

        # Assert
        assert result == {"title": "Compilers", "author": {"name": "Grace"}}

    async def test_remote_error_mapped(self, http_broker):
        """
        Test an error response is re-raised as RemoteCallError.

        Act: get an unknown id on the remote node
        Assert: Code, name and data of the remote error are kept
        """
        # Act
        with pytest.raises(RemoteCallError) as exc_info:
            await http_broker.call("users.get", {"id": "ghost"})

        # Assert
        error = exc_info.value
        assert error.code == 404
        assert error.message == "Entity not found"
        assert error.data == {"action": "users.get", "name": "EntityNotFoundError", "data": {"id": "ghost"}}

    async def test_request_id_forwarded(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.url.path, request.headers.get("X-Request-ID")))
            return httpx.Response(200, json=2)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        broker = HttpBroker(base_url=REMOTE_URL + "/", client=client)

        result = await broker.call("users.count", {}, meta={"request_id": "abc"})

        assert result == 2
        assert seen == [("/users/rpc/count", "abc")]
        await client.aclose()


@pytest.mark.asyncio
class TestTransportFailures:

    async def test_unreachable_node_retried_then_raised(self):
        """
        Test transport errors are retried, then surfaced as RemoteCallError.

        Arrange: Transport that always refuses; one retry; sleep patched
        Act: Call a remote action
        Assert: Two attempts, RemoteCallError raised
        """
        # Arrange
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request.url.path)
            raise httpx.ConnectError("refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        broker = HttpBroker(base_url=REMOTE_URL, client=client, max_retries=1)

        # Act
        with patch("dataservice.core.retry.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(RemoteCallError) as exc_info:
                await broker.call("users.find", {})

        # Assert
        assert len(attempts) == 2
        assert exc_info.value.data["action"] == "users.find"
        await client.aclose()

    async def test_non_json_error_response(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(503, text="down")))
        broker = HttpBroker(base_url=REMOTE_URL, client=client)

        with pytest.raises(RemoteCallError) as exc_info:
            await broker.call("users.find", {})

        assert exc_info.value.code == 503
        await client.aclose()

    async def test_local_services_skip_http(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no HTTP expected")

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        broker = HttpBroker(base_url=REMOTE_URL, client=client)
        broker.create_service(UsersService(adapter=MemoryAdapter(USERS)))
        await broker.start()

        assert await broker.call("users.count", {}) == 3

        await broker.stop()
        await client.aclose()
