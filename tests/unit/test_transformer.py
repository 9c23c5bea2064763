"""
Unit tests for the document transformation pipeline.

Tests follow AAA (Arrange, Act, Assert) pattern.
"""

import pytest

from dataservice.adapters.memory import MemoryAdapter
from dataservice.core.config import ServiceSettings
from dataservice.services.population import PopulationEngine
from dataservice.services.transformer import DocumentTransformer


class StubService:
    def __init__(self, **settings):
        self.settings = ServiceSettings(**settings)
        self.adapter = MemoryAdapter()

    def encode_id(self, id):
        return f"enc-{id}"


class StubContext:
    def __init__(self, responses=None):
        self.responses = responses or {}
        self.calls = []

    async def call(self, action, params=None):
        self.calls.append((action, params))
        return self.responses.get(action, {})


def make_transformer(populates=None, **settings):
    service = StubService(populates=populates, **settings)
    return DocumentTransformer(service, PopulationEngine(populates))


@pytest.mark.asyncio
class TestDocumentTransformer:

    async def test_renames_and_encodes_id(self):
        """
        Test the native id becomes the encoded service id.

        Arrange: id_field "id", memory adapter (native "_id")
        Act: Transform one record
        Assert: "_id" gone, "id" holds the encoded value
        """
        # Arrange
        transformer = make_transformer(id_field="id")

        # Act
        result = await transformer.transform(None, {}, {"_id": 1, "title": "T"})

        # Assert
        assert result == {"title": "T", "id": "enc-1"}

    async def test_list_in_list_out(self):
        transformer = make_transformer()

        result = await transformer.transform(None, {}, [{"_id": 1}, {"_id": 2}])

        assert result == [{"_id": "enc-1"}, {"_id": "enc-2"}]

    async def test_scalars_returned_untouched(self):
        transformer = make_transformer()

        assert await transformer.transform(None, {}, 5) == 5
        assert await transformer.transform(None, {}, None) is None

    async def test_default_fields_applied_without_context(self):
        transformer = make_transformer(fields="_id title")

        result = await transformer.transform(None, {"fields": ["votes"]}, {"_id": 1, "title": "T", "votes": 2})

        assert result == {"_id": "enc-1", "title": "T"}

    async def test_caller_fields_authorized_against_settings(self):
        """
        Test requested fields cannot widen the allow-list.

        Arrange: Allow-list _id, title
        Act: Request title and secret with a context
        Assert: Only title returned
        """
        # Arrange
        transformer = make_transformer(fields=["_id", "title"])

        # Act
        result = await transformer.transform(
            StubContext(), {"fields": ["title", "secret"]}, {"_id": 1, "title": "T", "secret": "s"}
        )

        # Assert
        assert result == {"title": "T"}

    async def test_exclusions_from_caller_and_settings(self):
        transformer = make_transformer(exclude_fields=["password"])

        result = await transformer.transform(
            StubContext(),
            {"exclude_fields": "email"},
            {"_id": 1, "name": "A", "email": "e", "password": "p"},
        )

        assert result == {"_id": "enc-1", "name": "A"}

    async def test_populates_before_filtering(self):
        """
        Test population runs first so allowed nested fields survive filtering.

        Arrange: author -> users.get; fields allow author.name only
        Act: Transform with populate ["author"]
        Assert: author replaced by {"name": ...} and filtered
        """
        # Arrange
        transformer = make_transformer(
            populates={"author": "users.get"},
            fields=["title", "author.name"],
        )
        ctx = StubContext({"users.get": {"u1": {"name": "Ada", "email": "e"}}})

        # Act
        result = await transformer.transform(ctx, {"populate": ["author"]}, [{"_id": 1, "title": "T", "author": "u1"}])

        # Assert
        assert result == [{"title": "T", "author": {"name": "Ada"}}]
        assert len(ctx.calls) == 1

    async def test_no_population_without_context(self):
        transformer = make_transformer(populates={"author": "users.get"})

        result = await transformer.transform(None, {"populate": ["author"]}, {"_id": 1, "author": "u1"})

        assert result["author"] == "u1"
