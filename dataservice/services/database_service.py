"""
DatabaseService: generic CRUD actions on top of a storage adapter.

A service subclasses DatabaseService, names itself and configures its
adapter and ServiceSettings:

    class PostsService(DatabaseService):
        name = "posts"
        settings = {
            "fields": ["_id", "title", "author"],
            "populates": {"author": "users.get"},
        }

    broker.create_service(PostsService(adapter=SQLAlchemyAdapter(Post)))

Every action takes a call Context and a params dict and returns plain
documents shaped by the transformation pipeline. Optional lifecycle hooks
are plain methods on the subclass:

    before_entity_create(entity, ctx) / before_entity_update(params, ctx) /
    before_entity_remove(params, ctx)   -> may return a replacement value
    entity_created(json, ctx) / entity_updated(json, ctx) /
    entity_removed(json, ctx)           -> called after the cache is cleaned
    after_connected()                   -> called after every connect
"""

import asyncio
import inspect
import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Union

import pydantic
from pydantic import BaseModel

from dataservice.adapters.memory import MemoryAdapter
from dataservice.core.config import ServiceSettings, get_settings
from dataservice.core.errors import (
    ConfigurationError,
    EntityNotFoundError,
    InvalidRequestError,
    ServiceNotFoundError,
    ValidationError,
)
from dataservice.core.logging_config import log_with_context
from dataservice.core.paths import flatten_dict
from dataservice.core.retry import retry_with_backoff
from dataservice.services.connection_manager import ConnectionRegistry
from dataservice.services.interfaces.storage_adapter import IStorageAdapter
from dataservice.services.population import PopulationEngine
from dataservice.services.transformer import DocumentTransformer

logger = logging.getLogger(__name__)

STANDARD_MODE = "standard"
MULTI_TENANT_MODE = "mt"

_LIST_SEPARATOR = re.compile(r"[,\s]+")
_INT_PARAMS = ("limit", "offset", "page", "page_size")
_LIST_PARAMS = ("sort", "fields", "exclude_fields", "populate", "search_fields")


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class DatabaseService:
    """
    Base class of data services.

    Attributes:
        name: Service name, used for action names ("posts.get") and events
        settings: ServiceSettings (a dict is accepted and validated)
        adapter: Storage adapter; MemoryAdapter when none is given
        mode: None/"standard" connects on start, "mt" leaves connecting to
            explicit connect() calls
        connections: This service's registry of named connections
        broker: Set by the broker when the service is registered
    """

    name: str = ""
    settings: Any = None
    mode: Optional[str] = None

    actions = ("find", "count", "list", "create", "insert", "get", "update", "remove")

    def __init__(
        self,
        name: Optional[str] = None,
        adapter: Optional[IStorageAdapter] = None,
        settings: Union[ServiceSettings, Dict[str, Any], None] = None,
        mode: Optional[str] = None,
    ):
        if name is not None:
            self.name = name
        if not self.name:
            raise ConfigurationError("A DatabaseService needs a name")
        if mode is not None:
            self.mode = mode

        raw = settings if settings is not None else type(self).settings
        if isinstance(raw, ServiceSettings):
            self.settings = raw.model_copy(deep=True)
        else:
            self.settings = ServiceSettings(**(raw or {}))

        self.adapter: Optional[IStorageAdapter] = adapter
        self.connections = ConnectionRegistry()
        self.broker: Any = None
        self.population: Optional[PopulationEngine] = None
        self.transformer: Optional[DocumentTransformer] = None

    # Lifecycle

    def created(self) -> None:
        """Bind the adapter and compile relation rules."""
        if self.adapter is None:
            self.adapter = MemoryAdapter()
        self.adapter.init(self)

        mode = (self.mode or "").lower()
        if mode == MULTI_TENANT_MODE:
            message = (
                f"Database {self.name} connection set to multi-tenant. "
                f"Use connect() to open connections and disconnect() to close them."
            )
        elif mode == STANDARD_MODE:
            message = f"Database {self.name} connection set to standard. Use the adapter to interact with the database."
        else:
            message = f"Database {self.name} connection set to default. Use the adapter to interact with the database."
        log_with_context(logger, "info", message, service=self.name, mode=mode or "default")

        validator = self.settings.entity_validator
        if validator is not None and not self._is_model_validator(validator) and not callable(validator):
            raise ConfigurationError(
                "entity_validator must be a callable or a pydantic model class",
                data={"service": self.name},
            )

        self.population = PopulationEngine(self.settings.populates)
        self.transformer = DocumentTransformer(self, self.population)

    async def started(self) -> None:
        """Connect in standard mode, retrying with backoff until it succeeds or retries run out."""
        if (self.mode or STANDARD_MODE).lower() != STANDARD_MODE:
            return
        if self.adapter is None:
            raise ConfigurationError("Please set the store adapter on the service")

        config = get_settings()

        @retry_with_backoff(
            max_retries=config.connect_max_retries,
            base_delay=config.connect_retry_delay,
            jitter=False,
        )
        async def connecting():
            return await self.connect()

        await connecting()

    async def stopped(self) -> None:
        if self.adapter is not None:
            await self.disconnect()
        if len(self.connections):
            await self.connections.close_all()

    async def connect(
        self,
        mode: Optional[str] = None,
        options: Any = None,
        callback: Optional[Callable[[Any], Any]] = None,
    ) -> Any:
        """
        Connect the adapter and run the after_connected hook.

        Without a mode the adapter opens its own connection. With mode "mt"
        a named connection is opened from options and passed to callback:

            await self.connect("mt", {"name": "tenant_a", "url": url}, on_open)

        Adapter errors propagate; after_connected errors are logged only.

        Returns:
            Whatever the adapter's connect returned (usually the connection)
        """
        if mode:
            result = await self.adapter.connect(mode, options, callback)
        else:
            result = await self.adapter.connect()

        hook = getattr(self, "after_connected", None)
        if callable(hook):
            try:
                await _maybe_await(hook())
            except Exception:
                logger.error("after_connected error!", extra={"service": self.name}, exc_info=True)
        return result

    async def disconnect(self) -> None:
        await self.adapter.disconnect()

    # Dispatch

    async def call_action(self, action: str, ctx: Any, params: Optional[Dict[str, Any]] = None) -> Any:
        """Run an action by its short name."""
        if action not in self.actions:
            raise ServiceNotFoundError(f"{self.name}.{action}")
        handler = getattr(self, action)
        log_with_context(logger, "debug", "Calling action", service=self.name, action=action)
        return await handler(ctx, params if params is not None else {})

    # Parameters

    def sanitize_params(self, ctx: Any, params: Optional[Dict[str, Any]], action: Optional[str] = None) -> Dict[str, Any]:
        """
        Normalize the string forms of action parameters.

        Numeric strings become ints, a JSON string query is parsed, and
        comma or space separated strings become lists. For the list action
        page and page_size get defaults and limit/offset are derived from
        them. limit is capped by max_limit when that is positive.
        """
        p = dict(params or {})
        if action is None:
            action = getattr(ctx, "action_name", None) or ""

        for key in _INT_PARAMS:
            if isinstance(p.get(key), str):
                try:
                    p[key] = int(p[key])
                except ValueError:
                    raise InvalidRequestError(
                        f"Parameter '{key}' must be a number", data={key: p[key]}
                    )

        if isinstance(p.get("query"), str):
            try:
                p["query"] = json.loads(p["query"])
            except ValueError:
                raise InvalidRequestError("Parameter 'query' must be valid JSON", data={"query": p["query"]})

        for key in _LIST_PARAMS:
            if isinstance(p.get(key), str):
                p[key] = [part for part in _LIST_SEPARATOR.split(p[key]) if part]

        if action == "list":
            if not p.get("page_size"):
                p["page_size"] = self.settings.page_size
            if not p.get("page"):
                p["page"] = 1
            if 0 < self.settings.max_page_size < p["page_size"]:
                p["page_size"] = self.settings.max_page_size
            p["limit"] = p["page_size"]
            p["offset"] = (p["page"] - 1) * p["page_size"]

        if self.settings.max_limit > 0 and isinstance(p.get("limit"), int) and p["limit"] > self.settings.max_limit:
            p["limit"] = self.settings.max_limit

        return p

    # Identity

    def encode_id(self, id: Any) -> Any:
        return id

    def decode_id(self, id: Any) -> Any:
        return id

    async def get_by_id(self, id: Union[Any, List[Any]], decoding: bool = False) -> Any:
        """Fetch one record by id, or a list of records by a list of ids."""
        if isinstance(id, list):
            ids = [self.decode_id(i) for i in id] if decoding else id
            return await self.adapter.find_by_ids(ids)
        return await self.adapter.find_by_id(self.decode_id(id) if decoding else id)

    async def transform_documents(self, ctx: Any, params: Optional[Dict[str, Any]], docs: Any) -> Any:
        return await self.transformer.transform(ctx, params, docs)

    # Entity lifecycle

    async def before_entity_change(self, type: str, entity: Any, ctx: Any) -> Any:
        hook = getattr(self, f"before_entity_{type}", None)
        if hook is None:
            return entity
        return await _maybe_await(hook(entity, ctx))

    async def entity_changed(self, type: str, json: Any, ctx: Any) -> None:
        await self.clear_cache()
        hook = getattr(self, f"entity_{type}", None)
        if hook is not None:
            await _maybe_await(hook(json, ctx))

    async def clear_cache(self) -> None:
        """Signal cache invalidation for this service and clean its cache keys."""
        if self.broker is None:
            return
        send = getattr(self.broker, self.settings.cache_clean_event_type)
        await send(f"cache.clean.{self.name}")
        if getattr(self.broker, "cacher", None) is not None:
            await self.broker.cacher.clean(f"{self.name}.**")

    @staticmethod
    def _is_model_validator(validator: Any) -> bool:
        return inspect.isclass(validator) and issubclass(validator, BaseModel)

    async def validate_entity(self, entity: Any) -> Any:
        """
        Run entity_validator over one entity or a list of them.

        A pydantic model class validates with model_validate. A callable may
        raise, or return False to reject.

        Raises:
            ValidationError: When any entity is rejected
        """
        validator = self.settings.entity_validator
        if validator is None:
            return entity

        entities = entity if isinstance(entity, list) else [entity]
        if self._is_model_validator(validator):
            for item in entities:
                try:
                    validator.model_validate(item)
                except pydantic.ValidationError as e:
                    raise ValidationError(data=e.errors(include_url=False))
            return entity

        results = await asyncio.gather(*(_maybe_await(validator(item)) for item in entities))
        for item, result in zip(entities, results):
            if result is False:
                raise ValidationError(data={"entity": item})
        return entity

    # Actions

    async def find(self, ctx: Any, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Find entities by query.

        Params: populate, fields, exclude_fields, limit, offset, sort,
        search, search_fields, query.
        """
        params = self.sanitize_params(ctx, params, action="find")
        docs = await self.adapter.find(params)
        return await self.transform_documents(ctx, params, docs)

    async def count(self, ctx: Any, params: Optional[Dict[str, Any]] = None) -> int:
        params = self.sanitize_params(ctx, params, action="count")
        params["limit"] = None
        params["offset"] = None
        return await self.adapter.count(params)

    async def list(self, ctx: Any, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        List entities page by page.

        Returns:
            {"rows", "total", "page", "page_size", "total_pages"}
        """
        params = self.sanitize_params(ctx, params, action="list")
        count_params = dict(params, limit=None, offset=None)
        if params.get("limit") is None:
            params["limit"] = params["page_size"]

        docs = await self.adapter.find(params)
        total = await self.adapter.count(count_params)
        rows = await self.transform_documents(ctx, params, docs)
        page_size = params["page_size"]
        return {
            "rows": rows,
            "total": total,
            "page": params["page"],
            "page_size": page_size,
            "total_pages": (total + page_size - 1) // page_size,
        }

    async def _prepare_for_insert(self, entity: Dict[str, Any], ctx: Any) -> Dict[str, Any]:
        entity = await self.before_entity_change("create", entity, ctx)
        await self.validate_entity(entity)
        return self.adapter.before_save_transform_id(entity, self.settings.id_field)

    async def create(self, ctx: Any, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Create an entity from the params themselves."""
        entity = await self._prepare_for_insert(dict(params or {}), ctx)
        doc = await self.adapter.insert(entity)
        json = await self.transform_documents(ctx, {}, doc)
        await self.entity_changed("created", json, ctx)
        return json

    async def insert(self, ctx: Any, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Create one entity (params["entity"]) or many (params["entities"]).

        Raises:
            InvalidRequestError: When neither is given
        """
        params = params or {}
        if isinstance(params.get("entities"), list):
            entities = [
                await self.before_entity_change("create", entity, ctx)
                for entity in params["entities"]
            ]
            await self.validate_entity(entities)
            entities = [
                self.adapter.before_save_transform_id(entity, self.settings.id_field)
                for entity in entities
            ]
            docs = await self.adapter.insert_many(entities)
        elif params.get("entity"):
            entity = await self._prepare_for_insert(params["entity"], ctx)
            docs = await self.adapter.insert(entity)
        else:
            raise InvalidRequestError(
                "Invalid request! The 'params' must contain 'entity' or 'entities'!"
            )

        json = await self.transform_documents(ctx, {}, docs)
        await self.entity_changed("created", json, ctx)
        return json

    def _mapping_key(self, doc: Any) -> Any:
        obj = dict(self.adapter.entity_to_object(doc))
        obj = self.adapter.after_retrieve_transform_id(obj, self.settings.id_field)
        return self.encode_id(obj[self.settings.id_field])

    async def get(self, ctx: Any, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Get an entity by id, or several by a list of ids.

        With mapping=True the result is a dict keyed by encoded id.

        Raises:
            EntityNotFoundError: When a single id matches nothing. A list of
                ids returns only the entities found, possibly none.
        """
        params = self.sanitize_params(ctx, params, action="get")
        id = params.get("id")
        if id is None:
            raise InvalidRequestError("Parameter 'id' is required")

        doc = await self.get_by_id(id, decoding=True)
        if doc is None:
            raise EntityNotFoundError(id)

        if params.get("mapping") is not True:
            return await self.transform_documents(ctx, params, doc)

        # Keys come from the records before transformation, which may drop
        # or rename the id field
        originals = doc if isinstance(doc, list) else [doc]
        keys = [self._mapping_key(d) for d in originals]
        json = await self.transform_documents(ctx, params, doc)
        docs = json if isinstance(json, list) else [json]
        return dict(zip(keys, docs))

    async def update(self, ctx: Any, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Update an entity by id. Every param other than the id is set.

        Raises:
            EntityNotFoundError: When the id matches no entity
        """
        params = await self.before_entity_change("update", dict(params or {}), ctx)

        id = None
        sets: Dict[str, Any] = {}
        for prop, value in params.items():
            if prop == "id" or prop == self.settings.id_field:
                id = self.decode_id(value)
            else:
                sets[prop] = value
        if id is None:
            raise InvalidRequestError("Parameter 'id' is required")

        if self.settings.use_dot_notation:
            sets = flatten_dict(sets)

        doc = await self.adapter.update_by_id(id, {"$set": sets})
        if not doc:
            raise EntityNotFoundError(id)

        json = await self.transform_documents(ctx, {}, doc)
        await self.entity_changed("updated", json, ctx)
        return json

    async def remove(self, ctx: Any, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Remove an entity by id.

        Raises:
            EntityNotFoundError: When the id matches no entity
        """
        params = params or {}
        if params.get("id") is None:
            raise InvalidRequestError("Parameter 'id' is required")
        id = self.decode_id(params["id"])

        await self.before_entity_change("remove", params, ctx)
        doc = await self.adapter.remove_by_id(id)
        if not doc:
            raise EntityNotFoundError(params["id"])

        json = await self.transform_documents(ctx, {}, doc)
        await self.entity_changed("removed", json, ctx)
        return json
