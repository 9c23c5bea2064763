"""
SQLAlchemy storage adapter.

Stores entities of one mapped model class through a DataSource obtained from
the owning service's ConnectionRegistry. Supports a standard single
connection and a multi-tenant mode where additional named connections are
opened on demand and handed to a callback.
"""

import inspect as pyinspect
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from sqlalchemy import String, cast, delete, func, inspect, or_, select, update
from sqlalchemy.sql import ColumnElement

from dataservice.core.database import DataSource, DataSourceOptions
from dataservice.core.errors import InvalidRequestError
from dataservice.core.logging_config import log_with_context
from dataservice.core.paths import set_path, split_path
from dataservice.services.interfaces.storage_adapter import IStorageAdapter

logger = logging.getLogger(__name__)

MULTI_TENANT = "mt"


class SQLAlchemyAdapter(IStorageAdapter):
    """
    Storage adapter for a SQLAlchemy mapped model.

    Attributes:
        model: Declarative mapped class
        options: Options of the adapter's own (standard mode) connection
        data_source: Connection used for queries once connected
    """

    def __init__(
        self,
        model: type,
        options: Union[DataSourceOptions, Dict[str, Any], None] = None,
    ):
        self.model = model
        self.mapper = inspect(model)
        if len(self.mapper.primary_key) != 1:
            raise ValueError(f"{model.__name__} must have exactly one primary key column")

        if isinstance(options, dict):
            options = DataSourceOptions(**options)
        options = options or DataSourceOptions()
        if options.metadata is None:
            options = options.model_copy(update={"metadata": model.metadata})
        self.options = options

        self.columns = {attr.key: attr for attr in self.mapper.column_attrs}
        pk_column = self.mapper.primary_key[0]
        self.native_id_field = self.mapper.get_property_by_column(pk_column).key
        self.data_source: Optional[DataSource] = None
        self.connections = None

    def init(self, service: Any) -> None:
        super().init(service)
        self.connections = service.connections

    @property
    def service_name(self) -> str:
        return getattr(getattr(self, "service", None), "name", "")

    def use_data_source(self, data_source: DataSource) -> None:
        """Route subsequent queries through another (e.g. tenant) connection."""
        self.data_source = data_source

    async def connect(
        self,
        mode: Optional[str] = None,
        options: Any = None,
        callback: Optional[Callable[[Any], Any]] = None,
    ) -> DataSource:
        """
        Open a connection through the service's registry.

        Standard mode opens the adapter's own connection. Multi-tenant mode
        ("mt") opens a connection from the given options, passes it to the
        callback and adopts it for queries if the adapter has none yet.

        Returns:
            The initialized connection
        """
        if self.connections is None:
            raise RuntimeError("Adapter is not bound to a service. Call init() first.")

        is_tenant = (mode or "").lower() == MULTI_TENANT
        if is_tenant:
            if options is None:
                raise InvalidRequestError("Multi-tenant connect requires connection options")
            if isinstance(options, dict):
                options = DataSourceOptions(**options)
            if options.metadata is None:
                options = options.model_copy(update={"metadata": self.model.metadata})
        else:
            options = self.options

        connection = await self.connections.create(options)
        data_source = await connection.initialize()

        log_with_context(
            logger, "info",
            f"{self.service_name} has connected to {data_source.name} database",
            service=self.service_name,
            connection=data_source.name,
        )

        if not is_tenant or self.data_source is None:
            self.data_source = data_source

        if is_tenant and callback is not None:
            result = callback(data_source)
            if pyinspect.isawaitable(result):
                await result
        return data_source

    async def disconnect(self) -> None:
        """Close every connection registered for the service and log each outcome."""
        if self.connections is None:
            return
        names = [connection.name for connection in self.connections.connections]
        outcomes = await self.connections.close(names)
        for name, outcome in zip(names, outcomes):
            if outcome is True:
                log_with_context(
                    logger, "info", f"Disconnected from database {name}",
                    service=self.service_name, connection=name,
                )
            else:
                log_with_context(
                    logger, "warning", f"Failed to disconnect from database {name}",
                    service=self.service_name, connection=name,
                )
        self.data_source = None

    def _require_data_source(self) -> DataSource:
        if self.data_source is None or not self.data_source.is_initialized:
            raise RuntimeError(f"{self.model.__name__} adapter is not connected")
        return self.data_source

    def _column(self, name: str):
        attr = self.columns.get(name)
        if attr is None:
            raise InvalidRequestError(
                f"Unknown field '{name}' for {self.model.__name__}",
                data={"field": name},
            )
        return getattr(self.model, name)

    def _conditions(self, query: Optional[Dict[str, Any]]) -> List[ColumnElement]:
        conditions: List[ColumnElement] = []
        for name, condition in (query or {}).items():
            column = self._column(name)
            if not isinstance(condition, dict):
                conditions.append(column.is_(None) if condition is None else column == condition)
                continue
            for op, value in condition.items():
                if op == "$in":
                    conditions.append(column.in_(list(value)))
                elif op == "$nin":
                    conditions.append(column.not_in(list(value)))
                elif op == "$ne":
                    conditions.append(column.is_not(None) if value is None else column != value)
                elif op == "$gt":
                    conditions.append(column > value)
                elif op == "$gte":
                    conditions.append(column >= value)
                elif op == "$lt":
                    conditions.append(column < value)
                elif op == "$lte":
                    conditions.append(column <= value)
                else:
                    raise InvalidRequestError(f"Unsupported query operator '{op}'", data={"operator": op})
        return conditions

    def _filtered(self, stmt, filters: Dict[str, Any]):
        search = filters.get("search")
        if isinstance(search, str) and search != "":
            fields: Sequence[str] = filters.get("search_fields") or [
                key for key, attr in self.columns.items()
                if isinstance(attr.columns[0].type, String)
            ]
            if isinstance(fields, str):
                fields = fields.split()
            pattern = f"%{search}%"
            stmt = stmt.where(or_(*(cast(self._column(f), String).ilike(pattern) for f in fields)))
        else:
            for condition in self._conditions(filters.get("query")):
                stmt = stmt.where(condition)
        return stmt

    async def find(self, filters: Optional[Dict[str, Any]] = None) -> List[Any]:
        filters = filters or {}
        stmt = self._filtered(select(self.model), filters)

        for entry in filters.get("sort") or []:
            descending = entry.startswith("-")
            column = self._column(entry[1:] if descending else entry)
            stmt = stmt.order_by(column.desc() if descending else column.asc())

        offset = filters.get("offset")
        if isinstance(offset, int) and offset > 0:
            stmt = stmt.offset(offset)
        limit = filters.get("limit")
        if isinstance(limit, int) and limit > 0:
            stmt = stmt.limit(limit)

        async with self._require_data_source().session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def find_one(self, query: Dict[str, Any]) -> Optional[Any]:
        stmt = select(self.model)
        for condition in self._conditions(query):
            stmt = stmt.where(condition)
        async with self._require_data_source().session() as session:
            result = await session.execute(stmt.limit(1))
            return result.scalars().first()

    async def find_by_id(self, id: Any) -> Optional[Any]:
        async with self._require_data_source().session() as session:
            return await session.get(self.model, id)

    async def find_by_ids(self, ids: List[Any]) -> List[Any]:
        if not ids:
            return []
        stmt = select(self.model).where(self._column(self.native_id_field).in_(list(ids)))
        async with self._require_data_source().session() as session:
            result = await session.execute(stmt)
            by_id = {getattr(row, self.native_id_field): row for row in result.scalars().all()}
        return [by_id[i] for i in ids if i in by_id]

    async def count(self, filters: Optional[Dict[str, Any]] = None) -> int:
        stmt = self._filtered(select(func.count()).select_from(self.model), filters or {})
        async with self._require_data_source().session() as session:
            result = await session.execute(stmt)
            return int(result.scalar_one())

    def _build(self, entity: Dict[str, Any]) -> Any:
        for key in entity:
            self._column(key)
        return self.model(**entity)

    async def insert(self, entity: Dict[str, Any]) -> Any:
        instance = self._build(entity)
        async with self._require_data_source().session() as session:
            session.add(instance)
            await session.flush()
            await session.refresh(instance)
        return instance

    async def insert_many(self, entities: List[Dict[str, Any]]) -> List[Any]:
        instances = [self._build(entity) for entity in entities]
        async with self._require_data_source().session() as session:
            session.add_all(instances)
            await session.flush()
            for instance in instances:
                await session.refresh(instance)
        return instances

    def _sets(self, update_doc: Dict[str, Any]) -> Dict[str, Any]:
        sets = update_doc.get("$set", update_doc)
        return {k: v for k, v in sets.items() if k != self.native_id_field}

    def _assign(self, instance: Any, path: str, value: Any) -> None:
        segments = split_path(path)
        self._column(segments[0])
        if len(segments) == 1:
            setattr(instance, path, value)
            return
        # Dotted keys address into a JSON column; assign a new object so the
        # change is detected without MutableDict
        current = dict(getattr(instance, segments[0]) or {})
        set_path(current, ".".join(segments[1:]), value)
        setattr(instance, segments[0], current)

    async def update_many(self, query: Dict[str, Any], update_doc: Dict[str, Any]) -> int:
        sets = self._sets(update_doc)
        for key in sets:
            self._column(key)
        stmt = update(self.model).values(**sets)
        for condition in self._conditions(query):
            stmt = stmt.where(condition)
        async with self._require_data_source().session() as session:
            result = await session.execute(stmt)
            return int(result.rowcount or 0)

    async def update_by_id(self, id: Any, update_doc: Dict[str, Any]) -> Optional[Any]:
        async with self._require_data_source().session() as session:
            instance = await session.get(self.model, id)
            if instance is None:
                return None
            for path, value in self._sets(update_doc).items():
                self._assign(instance, path, value)
            await session.flush()
            await session.refresh(instance)
            return instance

    async def remove_many(self, query: Dict[str, Any]) -> int:
        stmt = delete(self.model)
        for condition in self._conditions(query):
            stmt = stmt.where(condition)
        async with self._require_data_source().session() as session:
            result = await session.execute(stmt)
            return int(result.rowcount or 0)

    async def remove_by_id(self, id: Any) -> Optional[Any]:
        async with self._require_data_source().session() as session:
            instance = await session.get(self.model, id)
            if instance is None:
                return None
            await session.delete(instance)
            return instance

    async def clear(self) -> int:
        async with self._require_data_source().session() as session:
            result = await session.execute(delete(self.model))
            return int(result.rowcount or 0)

    async def _aggregate(self, fn, column: str, query: Optional[Dict[str, Any]]) -> Optional[Any]:
        stmt = select(fn(self._column(column)))
        for condition in self._conditions(query):
            stmt = stmt.where(condition)
        async with self._require_data_source().session() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def sum(self, column: str, query: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        return await self._aggregate(func.sum, column, query)

    async def average(self, column: str, query: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        return await self._aggregate(func.avg, column, query)

    async def minimum(self, column: str, query: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        return await self._aggregate(func.min, column, query)

    async def maximum(self, column: str, query: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        return await self._aggregate(func.max, column, query)

    def entity_to_object(self, entity: Any) -> Dict[str, Any]:
        """Convert a model instance into a dict of its column attributes."""
        if isinstance(entity, dict):
            return entity
        return {key: getattr(entity, key) for key in self.columns}
