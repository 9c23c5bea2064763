"""
In-process service broker and call context.

LocalBroker hosts DatabaseService instances in one process and dispatches
"<service>.<action>" calls to them. It is the default remote-invocation
collaborator for population; HttpBroker reaches services on another node.
"""

import asyncio
import fnmatch
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from dataservice.core.errors import ServiceNotFoundError
from dataservice.services.interfaces.broker import ICacher, IServiceBroker

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], Any]


@dataclass
class Context:
    """
    Context of one action call.

    Attributes:
        broker: Broker used for nested calls
        action: Full name of the called action ("posts.list")
        params: Action parameters
        meta: Call metadata, forwarded to nested calls
        service: The service handling the call, once dispatched
    """

    broker: Optional[IServiceBroker] = None
    action: Optional[str] = None
    params: Dict[str, Any] = field(default_factory=dict)
    meta: Dict[str, Any] = field(default_factory=dict)
    service: Any = None

    @property
    def action_name(self) -> str:
        """Short action name ("list" for "posts.list")."""
        return (self.action or "").rsplit(".", 1)[-1]

    async def call(self, action: str, params: Optional[Dict[str, Any]] = None) -> Any:
        if self.broker is None:
            raise ServiceNotFoundError(action)
        return await self.broker.call(action, params, meta=self.meta)


class MemoryCacher(ICacher):
    """Dict-backed cacher with glob-pattern cleaning ("posts.**")."""

    def __init__(self):
        self.store: Dict[str, Any] = {}

    async def clean(self, pattern: str = "**") -> None:
        # fnmatch's "*" already crosses dots, so "**" behaves like "*"
        glob = pattern.replace("**", "*")
        for key in [k for k in self.store if fnmatch.fnmatchcase(k, glob)]:
            del self.store[key]


def split_action(action: str) -> Tuple[str, str]:
    """Split "users.get" into ("users", "get"); service names may contain dots."""
    if "." not in action:
        raise ServiceNotFoundError(action)
    service_name, action_name = action.rsplit(".", 1)
    return service_name, action_name


class LocalBroker(IServiceBroker):
    """
    Broker for services living in the same process.

    Attributes:
        services: Registered services keyed by name
        cacher: Optional cacher cleaned on entity changes
    """

    def __init__(self, cacher: Optional[ICacher] = None):
        self.services: Dict[str, Any] = {}
        self.cacher = cacher
        self._listeners: Dict[str, List[Tuple[str, EventHandler]]] = {}
        self.started = False

    def create_service(self, service: Any) -> Any:
        """
        Register a service and run its created() hook.

        Returns:
            The service
        """
        if service.name in self.services:
            raise ValueError(f"Service '{service.name}' is already registered")
        service.broker = self
        self.services[service.name] = service
        service.created()
        logger.info("Service created", extra={"service": service.name})
        return service

    def get_service(self, name: str) -> Any:
        service = self.services.get(name)
        if service is None:
            raise ServiceNotFoundError(name)
        return service

    async def start(self) -> None:
        """Start every registered service."""
        for service in self.services.values():
            await service.started()
        self.started = True

    async def stop(self) -> None:
        """Stop services in reverse registration order."""
        for service in reversed(list(self.services.values())):
            try:
                await service.stopped()
            except Exception:
                logger.error("Service stop failed", extra={"service": service.name}, exc_info=True)
        self.started = False

    async def call(
        self,
        action: str,
        params: Optional[Dict[str, Any]] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> Any:
        service_name, action_name = split_action(action)
        service = self.services.get(service_name)
        if service is None:
            raise ServiceNotFoundError(action)

        ctx = Context(
            broker=self,
            action=action,
            params=dict(params or {}),
            meta=dict(meta or {}),
            service=service,
        )
        return await service.call_action(action_name, ctx, ctx.params)

    def on(self, event: str, handler: EventHandler, group: Optional[str] = None) -> None:
        """
        Subscribe to an event.

        Args:
            event: Event name or glob pattern ("cache.clean.*")
            handler: Sync or async callable receiving the payload
            group: Listener group; emit() reaches one handler per group
        """
        self._listeners.setdefault(event, []).append((group or str(id(handler)), handler))

    def _matching(self, event: str) -> List[Tuple[str, EventHandler]]:
        matched: List[Tuple[str, EventHandler]] = []
        for pattern, handlers in self._listeners.items():
            if fnmatch.fnmatchcase(event, pattern):
                matched.extend(handlers)
        return matched

    async def _deliver(self, handlers: List[EventHandler], payload: Any) -> None:
        awaitables: List[Awaitable[Any]] = []
        for handler in handlers:
            result = handler(payload)
            if inspect.isawaitable(result):
                awaitables.append(result)
        if awaitables:
            await asyncio.gather(*awaitables)

    async def emit(self, event: str, payload: Any = None) -> None:
        seen_groups = set()
        handlers: List[EventHandler] = []
        for group, handler in self._matching(event):
            if group in seen_groups:
                continue
            seen_groups.add(group)
            handlers.append(handler)
        await self._deliver(handlers, payload)

    async def broadcast(self, event: str, payload: Any = None) -> None:
        await self._deliver([handler for _, handler in self._matching(event)], payload)
