"""
Integration tests for the SQLAlchemy adapter on in-memory SQLite.

Each test gets a fresh service whose adapter creates its tables on connect,
so every test starts from an empty database.

Tests follow AAA (Arrange, Act, Assert) pattern.
"""

import logging

import pytest
from sqlalchemy import JSON, Column, Integer, String
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import declarative_base

from dataservice.adapters.sqlalchemy import SQLAlchemyAdapter
from dataservice.core.database import DataSource
from dataservice.core.errors import (
    AlreadyHasActiveConnectionError,
    EntityNotFoundError,
    InvalidRequestError,
)
from dataservice.services.broker import Context, LocalBroker
from dataservice.services.database_service import DatabaseService

Base = declarative_base()

MEMORY_URL = "sqlite+aiosqlite:///:memory:"


class Book(Base):
    __tablename__ = "books"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    author = Column(String(255))
    pages = Column(Integer, default=0)
    meta = Column(JSON, default=dict)


class BooksService(DatabaseService):
    name = "books"
    settings = {"id_field": "id"}

    def decode_id(self, id):
        return int(id)


@pytest.fixture
async def books():
    broker = LocalBroker()
    service = broker.create_service(
        BooksService(adapter=SQLAlchemyAdapter(Book, {"url": MEMORY_URL, "create_all": True}))
    )
    await broker.start()
    await service.insert(None, {"entities": [
        {"title": "Dune", "author": "Herbert", "pages": 412, "meta": {"genre": "scifi"}},
        {"title": "Emma", "author": "Austen", "pages": 474, "meta": {"genre": "novel"}},
        {"title": "Ubik", "author": "Dick", "pages": 202, "meta": {"genre": "scifi"}},
    ]})
    yield service
    await broker.stop()


@pytest.mark.asyncio
class TestSQLAlchemyService:

    async def test_native_id_is_primary_key(self, books):
        assert books.adapter.native_id_field == "id"
        assert isinstance(books.adapter.data_source, DataSource)
        assert books.connections.has("default")

    async def test_find_with_operators_sort_and_paging(self, books):
        """
        Test query operators, sort, limit and offset reach SQL.

        Arrange: Three books
        Act: find pages > 300, sorted by -pages, offset 1
        Assert: Only Dune returned
        """
        # Act
        result = await books.find(None, {"query": {"pages": {"$gt": 300}}, "sort": ["-pages"], "offset": 1, "limit": 5})

        # Assert
        assert [b["title"] for b in result] == ["Dune"]
        assert result[0]["meta"] == {"genre": "scifi"}

    async def test_in_and_equality(self, books):
        result = await books.find(None, {"query": {"author": {"$in": ["Dick", "Austen"]}}, "sort": "title"})

        assert [b["title"] for b in result] == ["Emma", "Ubik"]

    async def test_search_is_case_insensitive(self, books):
        result = await books.find(None, {"search": "UB", "search_fields": ["title"]})

        assert [b["title"] for b in result] == ["Ubik"]

    async def test_unknown_field_rejected(self, books):
        with pytest.raises(InvalidRequestError):
            await books.find(None, {"query": {"isbn": "x"}})

    async def test_list_counts_total(self, books):
        result = await books.list(None, {"page_size": 2, "sort": "title"})

        assert result["total"] == 3
        assert result["total_pages"] == 2
        assert [b["title"] for b in result["rows"]] == ["Dune", "Emma"]

    async def test_get_by_string_id_and_mapping(self, books):
        ctx = Context(broker=books.broker, action="books.get", service=books)

        one = await books.get(ctx, {"id": "1"})
        mapped = await books.get(ctx, {"id": ["3", "1"], "mapping": True, "fields": ["title"]})

        assert one["id"] == 1 and one["title"] == "Dune"
        assert mapped == {3: {"title": "Ubik"}, 1: {"title": "Dune"}}

    async def test_update_with_nested_json_path(self, books):
        """
        Test dotted update keys address into a JSON column.

        Arrange: Dune with meta.genre scifi
        Act: update pages and meta.rating
        Assert: Column and JSON key both changed, genre kept
        """
        # Act
        result = await books.update(None, {"id": "1", "pages": 500, "meta.rating": 5})

        # Assert
        assert result["pages"] == 500
        assert result["meta"] == {"genre": "scifi", "rating": 5}

    async def test_update_missing_raises(self, books):
        with pytest.raises(EntityNotFoundError):
            await books.update(None, {"id": 99, "pages": 1})

    async def test_remove(self, books):
        removed = await books.remove(None, {"id": "2"})

        assert removed["title"] == "Emma"
        assert await books.count(None, {}) == 2

    async def test_bulk_operations(self, books):
        adapter = books.adapter

        assert await adapter.update_many({"meta": {"$ne": None}, "author": "Dick"}, {"$set": {"pages": 1}}) == 1
        assert (await adapter.find_one({"author": "Dick"})).pages == 1
        assert await adapter.remove_many({"pages": {"$lt": 450}}) == 2
        assert await adapter.clear() == 1

    async def test_aggregates(self, books):
        adapter = books.adapter

        assert await adapter.sum("pages") == 1088
        assert await adapter.minimum("pages") == 202
        assert await adapter.maximum("pages", {"author": {"$ne": "Austen"}}) == 412
        assert round(await adapter.average("pages", {"meta": {"$ne": None}})) == 363


@pytest.mark.asyncio
class TestConnections:

    async def test_multi_tenant_connect_invokes_callback(self, caplog):
        """
        Test "mt" mode opens a named connection and hands it to the callback.

        Arrange: Service in mt mode (no connect on start)
        Act: connect("mt", tenant options, callback)
        Assert: Callback got an initialized DataSource registered as tenant_a
        """
        # Arrange
        broker = LocalBroker()
        service = broker.create_service(
            DatabaseService(name="shelf", adapter=SQLAlchemyAdapter(Book), mode="mt")
        )
        await broker.start()
        opened = []

        # Act
        with caplog.at_level(logging.INFO, logger="dataservice.adapters.sqlalchemy"):
            connection = await service.connect(
                "mt", {"name": "tenant_a", "url": MEMORY_URL, "create_all": True}, opened.append
            )

        # Assert
        assert opened == [connection]
        assert connection.is_initialized
        assert service.connections.get("tenant_a") is connection
        assert "shelf has connected to tenant_a database" in caplog.text

        created = await service.create(None, {"title": "Solaris"})
        assert created["_id"] == 1

        await broker.stop()
        assert len(service.connections) == 0
        assert not connection.is_initialized

    async def test_second_tenant_does_not_replace_adapter_source(self):
        broker = LocalBroker()
        service = broker.create_service(DatabaseService(name="shelf", adapter=SQLAlchemyAdapter(Book), mode="mt"))

        first = await service.connect("mt", {"name": "a", "url": MEMORY_URL, "create_all": True})
        second = await service.connect("mt", {"name": "b", "url": MEMORY_URL, "create_all": True})

        assert service.adapter.data_source is first
        service.adapter.use_data_source(second)
        assert service.adapter.data_source is second
        await broker.stop()

    async def test_duplicate_active_connection_rejected(self, books):
        with pytest.raises(AlreadyHasActiveConnectionError):
            await books.connect()

    async def test_disconnect_closes_all_and_logs(self, caplog):
        broker = LocalBroker()
        service = broker.create_service(
            BooksService(adapter=SQLAlchemyAdapter(Book, {"url": MEMORY_URL, "create_all": True}))
        )
        await broker.start()

        with caplog.at_level(logging.INFO, logger="dataservice.adapters.sqlalchemy"):
            await broker.stop()

        assert "Disconnected from database default" in caplog.text
        assert service.adapter.data_source is None
        with pytest.raises(RuntimeError):
            await service.adapter.find()

    async def test_connect_failure_propagates_after_retries(self):
        broker = LocalBroker()
        service = broker.create_service(
            BooksService(adapter=SQLAlchemyAdapter(Book, {"url": "sqlite+aiosqlite:////nonexistent/dir/x.db"}))
        )

        with pytest.raises(OperationalError):
            await service.started()
