"""
Unit tests for identity field renaming.

Tests follow AAA (Arrange, Act, Assert) pattern.
"""

import pytest

from dataservice.services.identity import after_retrieve_transform_id, before_save_transform_id


class TestBeforeSaveTransformId:

    def test_moves_service_id_to_native_field(self):
        # Arrange
        entity = {"id": 5, "name": "A", "tags": ["x"]}

        # Act
        result = before_save_transform_id(entity, "id", "_id")

        # Assert
        assert result == {"_id": 5, "name": "A", "tags": ["x"]}
        assert entity == {"id": 5, "name": "A", "tags": ["x"]}

    def test_returns_deep_copy(self):
        entity = {"_id": 1, "tags": ["x"]}

        result = before_save_transform_id(entity, "_id", "_id")
        result["tags"].append("y")

        assert entity["tags"] == ["x"]

    def test_absent_id_field_is_left_alone(self):
        assert before_save_transform_id({"name": "A"}, "id", "_id") == {"name": "A"}


class TestAfterRetrieveTransformId:

    def test_moves_native_field_in_place(self):
        # Arrange
        doc = {"_id": 5, "name": "A"}

        # Act
        result = after_retrieve_transform_id(doc, "id", "_id")

        # Assert
        assert result is doc
        assert doc == {"name": "A", "id": 5}

    def test_missing_native_value_becomes_none(self):
        doc = {"name": "A"}

        after_retrieve_transform_id(doc, "id", "_id")

        assert doc == {"name": "A", "id": None}

    def test_same_names_is_noop(self):
        doc = {"_id": 5}

        assert after_retrieve_transform_id(doc, "_id", "_id") == {"_id": 5}


class TestIdentityRoundTrip:

    @pytest.mark.parametrize("identity", [5, 0, "abc", "", None, ("a", 1)])
    @pytest.mark.parametrize(("id_field", "native_field"), [("id", "_id"), ("_id", "_id"), ("key", "pk")])
    def test_retrieve_after_save_restores_document(self, identity, id_field, native_field):
        """
        Test saving then retrieving gives the service-form document back.

        Arrange: Document with the identity under the service id field
        Act: before_save_transform_id, then after_retrieve_transform_id
        Assert: Equal to the original, which is left untouched
        """
        # Arrange
        entity = {id_field: identity, "name": "A", "tags": ["x"]}

        # Act
        stored = before_save_transform_id(entity, id_field, native_field)
        restored = after_retrieve_transform_id(stored, id_field, native_field)

        # Assert
        assert restored == entity
        assert entity == {id_field: identity, "name": "A", "tags": ["x"]}
