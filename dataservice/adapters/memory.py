"""
In-process memory adapter.

Default storage for services that do not configure one. Records are plain
dicts keyed by "_id" and kept in insertion order; every read and write goes
through a deep copy so callers never share state with the store.
"""

import copy
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional

from dataservice.adapters.query import match_query, match_search, sort_documents
from dataservice.core.paths import set_path, unset_path
from dataservice.services.interfaces.storage_adapter import IStorageAdapter

logger = logging.getLogger(__name__)


class MemoryAdapter(IStorageAdapter):
    """
    Memory-backed storage adapter.

    Attributes:
        records: Stored records keyed by _id (None until connected)
    """

    native_id_field = "_id"

    def __init__(self, initial: Optional[List[Dict[str, Any]]] = None):
        self._initial = initial or []
        self.records: Optional[Dict[Any, Dict[str, Any]]] = None

    async def connect(
        self,
        mode: Optional[str] = None,
        options: Any = None,
        callback: Optional[Callable[[Any], Any]] = None,
    ) -> "MemoryAdapter":
        self.records = {}
        for entity in self._initial:
            self._store(entity)
        if callback is not None:
            callback(self)
        return self

    async def disconnect(self) -> None:
        self.records = None

    def _require_records(self) -> Dict[Any, Dict[str, Any]]:
        if self.records is None:
            raise RuntimeError("MemoryAdapter is not connected. Call connect() first.")
        return self.records

    def _store(self, entity: Dict[str, Any]) -> Dict[str, Any]:
        records = self._require_records()
        doc = copy.deepcopy(entity)
        if doc.get("_id") is None:
            doc["_id"] = uuid.uuid4().hex
        if doc["_id"] in records:
            raise ValueError(f"Duplicate _id: {doc['_id']!r}")
        records[doc["_id"]] = doc
        return copy.deepcopy(doc)

    def _select(self, filters: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
        filters = filters or {}
        docs = list(self._require_records().values())

        search = filters.get("search")
        if isinstance(search, str) and search != "":
            fields = filters.get("search_fields")
            if isinstance(fields, str):
                fields = fields.split()
            docs = [d for d in docs if match_search(d, search, fields)]
        elif filters.get("query"):
            docs = [d for d in docs if match_query(d, filters["query"])]

        if filters.get("sort"):
            docs = sort_documents(docs, filters["sort"])

        offset = filters.get("offset")
        if isinstance(offset, int) and offset > 0:
            docs = docs[offset:]

        limit = filters.get("limit")
        if isinstance(limit, int) and limit > 0:
            docs = docs[:limit]

        return docs

    async def find(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return copy.deepcopy(self._select(filters))

    async def find_one(self, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        for doc in self._require_records().values():
            if match_query(doc, query):
                return copy.deepcopy(doc)
        return None

    async def find_by_id(self, id: Any) -> Optional[Dict[str, Any]]:
        doc = self._require_records().get(id)
        return copy.deepcopy(doc) if doc is not None else None

    async def find_by_ids(self, ids: List[Any]) -> List[Dict[str, Any]]:
        records = self._require_records()
        return [copy.deepcopy(records[i]) for i in ids if i in records]

    async def count(self, filters: Optional[Dict[str, Any]] = None) -> int:
        filters = dict(filters or {})
        filters.pop("limit", None)
        filters.pop("offset", None)
        return len(self._select(filters))

    async def insert(self, entity: Dict[str, Any]) -> Dict[str, Any]:
        return self._store(entity)

    async def insert_many(self, entities: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [self._store(entity) for entity in entities]

    @staticmethod
    def _apply_update(doc: Dict[str, Any], update: Dict[str, Any]) -> None:
        if "$set" not in update and "$unset" not in update:
            update = {"$set": update}
        for path, value in (update.get("$set") or {}).items():
            if path == "_id":
                continue
            set_path(doc, path, copy.deepcopy(value))
        for path in update.get("$unset") or {}:
            unset_path(doc, path)

    async def update_many(self, query: Dict[str, Any], update: Dict[str, Any]) -> int:
        matched = [d for d in self._require_records().values() if match_query(d, query)]
        for doc in matched:
            self._apply_update(doc, update)
        return len(matched)

    async def update_by_id(self, id: Any, update: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        doc = self._require_records().get(id)
        if doc is None:
            return None
        self._apply_update(doc, update)
        return copy.deepcopy(doc)

    async def remove_many(self, query: Dict[str, Any]) -> int:
        records = self._require_records()
        matched = [key for key, doc in records.items() if match_query(doc, query)]
        for key in matched:
            del records[key]
        return len(matched)

    async def remove_by_id(self, id: Any) -> Optional[Dict[str, Any]]:
        return self._require_records().pop(id, None)

    async def clear(self) -> int:
        records = self._require_records()
        count = len(records)
        records.clear()
        return count

    def entity_to_object(self, entity: Any) -> Dict[str, Any]:
        return entity
