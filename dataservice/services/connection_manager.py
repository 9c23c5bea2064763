"""
Connection registry for multi-connection (multi-tenant) deployments.

Stores logical connections by name and guarantees that at most one
initialized connection exists per name. A registry belongs to one service
instance; it is created when the service is created and emptied when the
service stops.

Lifecycle per name:
    Unregistered --create()--> Registered (not initialized)
    Registered --connection.initialize()--> Initialized
    Initialized --close()--> Unregistered

Error discipline:
    get/remove/create and close(name) fail fast with an exception.
    close([names]) never raises as a whole: every element of the result is
    True, False (destroy failed) or the ConnectionNotFoundError for that name.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from dataservice.core.database import DataSource, DataSourceOptions
from dataservice.core.errors import (
    AlreadyHasActiveConnectionError,
    ConnectionNotFoundError,
)

logger = logging.getLogger(__name__)

DEFAULT_CONNECTION = "default"

ConnectionFactory = Callable[[Any], Any]


def _option_name(options: Any) -> str:
    if isinstance(options, dict):
        name = options.get("name")
    else:
        name = getattr(options, "name", None)
    return name or DEFAULT_CONNECTION


class ConnectionRegistry:
    """
    Registry of named connections.

    Attributes:
        factory: Builds a new, unconnected connection from options. The result
            must expose initialize(), destroy(), is_initialized and name.
    """

    def __init__(self, factory: Optional[ConnectionFactory] = None):
        self.factory: ConnectionFactory = factory or DataSource
        self._connections: Dict[str, Any] = {}
        self._lock = asyncio.Lock()

    @property
    def connections(self) -> List[Any]:
        """List of connections registered in this registry."""
        return list(self._connections.values())

    def has(self, name: str) -> bool:
        return name in self._connections

    def get(self, name: str = DEFAULT_CONNECTION) -> Any:
        """
        Get the registered connection with the given name.

        Raises:
            ConnectionNotFoundError: If no connection is registered under name
        """
        connection = self._connections.get(name)
        if connection is None:
            raise ConnectionNotFoundError(name)
        return connection

    def remove(self, name: str = DEFAULT_CONNECTION) -> None:
        """
        Remove the registry entry without tearing the connection down.

        Use close() to destroy the connection and remove it in one step.

        Raises:
            ConnectionNotFoundError: If no connection is registered under name
        """
        if name not in self._connections:
            raise ConnectionNotFoundError(name)
        del self._connections[name]

    async def create(self, options: Union[DataSourceOptions, Dict[str, Any], None] = None) -> Any:
        """
        Create a new connection and register it without connecting.

        A stale entry that was never initialized (or was destroyed) is
        replaced. The caller is responsible for calling initialize().

        Args:
            options: Backend-specific options; options.name is the logical
                name (default "default")

        Returns:
            The new, unconnected connection

        Raises:
            AlreadyHasActiveConnectionError: If an initialized connection is
                already registered under the same name
        """
        if options is None:
            options = DataSourceOptions()
        name = _option_name(options)

        async with self._lock:
            existing = self._connections.get(name)
            if existing is not None and existing.is_initialized:
                raise AlreadyHasActiveConnectionError(name)

            connection = self.factory(options)
            self._connections[name] = connection

        logger.debug("Connection registered", extra={"connection": name})
        return connection

    async def _close_one(self, name: str) -> bool:
        if name not in self._connections:
            raise ConnectionNotFoundError(name)

        connection = self._connections[name]
        try:
            await connection.destroy()
        except Exception:
            logger.error(
                "Failed to destroy connection",
                extra={"connection": name},
                exc_info=True,
            )
            return False

        async with self._lock:
            # A concurrent create() may have replaced the entry meanwhile
            if self._connections.get(name) is connection:
                del self._connections[name]
        return True

    async def close(
        self, name: Union[str, Sequence[str]] = DEFAULT_CONNECTION
    ) -> Union[bool, List[Union[bool, ConnectionNotFoundError]]]:
        """
        Destroy registered connection(s) and remove them from the registry.

        Args:
            name: A single logical name or a list of names

        Returns:
            For a single name: True on success, False if destroy() failed.
            For a list: one outcome per name, in order. Outcomes are True,
            False, or the ConnectionNotFoundError raised for that name.

        Raises:
            ConnectionNotFoundError: Single-name form only, when the name is
                not registered
        """
        if isinstance(name, str):
            return await self._close_one(name)

        results = await asyncio.gather(
            *(self._close_one(n) for n in name),
            return_exceptions=True,
        )
        outcomes: List[Union[bool, ConnectionNotFoundError]] = []
        for result in results:
            if isinstance(result, (bool, ConnectionNotFoundError)):
                outcomes.append(result)
            else:
                raise result
        return outcomes

    async def close_all(self) -> List[Union[bool, ConnectionNotFoundError]]:
        """Close every registered connection."""
        return await self.close(list(self._connections))

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, name: object) -> bool:
        return name in self._connections
