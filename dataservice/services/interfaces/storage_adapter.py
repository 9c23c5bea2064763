"""
Storage adapter interface.

Defines the contract between a DatabaseService and its storage driver.
Adapters translate the generic filter/update vocabulary into native queries
and own the identity rename for their native id attribute.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from dataservice.services.identity import (
    after_retrieve_transform_id,
    before_save_transform_id,
)


class IStorageAdapter(ABC):
    """
    Abstract interface for storage drivers.

    Filters accepted by find() and count():
        query: Dict of field -> value or operator dict
            ($in, $nin, $ne, $gt, $gte, $lt, $lte)
        search: Case-insensitive substring searched in search_fields
        search_fields: Fields to search (all fields when omitted)
        sort: List of field names, "-" prefix for descending
        limit: Max number of rows
        offset: Number of rows skipped

    Updates accepted by update_by_id() and update_many():
        {"$set": {field: value}}
    """

    # Name of the identity attribute in storage form
    native_id_field: str = "_id"

    def init(self, service: Any) -> None:
        """
        Bind the adapter to its owning service.

        Args:
            service: DatabaseService instance
        """
        self.service = service

    @abstractmethod
    async def connect(
        self,
        mode: Optional[str] = None,
        options: Any = None,
        callback: Optional[Callable[[Any], Any]] = None,
    ) -> Any:
        """
        Connect to the storage backend.

        Args:
            mode: None/"standard" for the adapter's own connection,
                "mt" to open an additional tenant connection
            options: Connection options for "mt" mode
            callback: Receives the opened connection in "mt" mode
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass

    @abstractmethod
    async def find(self, filters: Optional[Dict[str, Any]] = None) -> List[Any]:
        pass

    @abstractmethod
    async def find_one(self, query: Dict[str, Any]) -> Optional[Any]:
        pass

    @abstractmethod
    async def find_by_id(self, id: Any) -> Optional[Any]:
        pass

    @abstractmethod
    async def find_by_ids(self, ids: List[Any]) -> List[Any]:
        pass

    @abstractmethod
    async def count(self, filters: Optional[Dict[str, Any]] = None) -> int:
        pass

    @abstractmethod
    async def insert(self, entity: Dict[str, Any]) -> Any:
        pass

    @abstractmethod
    async def insert_many(self, entities: List[Dict[str, Any]]) -> List[Any]:
        pass

    @abstractmethod
    async def update_many(self, query: Dict[str, Any], update: Dict[str, Any]) -> int:
        """
        Returns:
            Number of updated records
        """
        pass

    @abstractmethod
    async def update_by_id(self, id: Any, update: Dict[str, Any]) -> Optional[Any]:
        """
        Returns:
            The updated record, or None if no record has that id
        """
        pass

    @abstractmethod
    async def remove_many(self, query: Dict[str, Any]) -> int:
        pass

    @abstractmethod
    async def remove_by_id(self, id: Any) -> Optional[Any]:
        """
        Returns:
            The removed record, or None if no record has that id
        """
        pass

    @abstractmethod
    async def clear(self) -> int:
        pass

    @abstractmethod
    def entity_to_object(self, entity: Any) -> Dict[str, Any]:
        """Convert a stored record into a plain document."""
        pass

    def before_save_transform_id(self, entity: Dict[str, Any], id_field: str) -> Dict[str, Any]:
        return before_save_transform_id(entity, id_field, self.native_id_field)

    def after_retrieve_transform_id(self, entity: Dict[str, Any], id_field: str) -> Dict[str, Any]:
        return after_retrieve_transform_id(entity, id_field, self.native_id_field)
