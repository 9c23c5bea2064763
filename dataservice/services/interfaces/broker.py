"""
Service broker interface.

The broker is the remote-invocation collaborator: it calls actions of peer
services by name ("users.get") and carries events between services.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class ICacher(ABC):
    """Cache backend whose entries can be dropped by glob pattern."""

    @abstractmethod
    async def clean(self, pattern: str = "**") -> None:
        pass


class IServiceBroker(ABC):
    """
    Abstract interface for action calls and events.

    Attributes:
        cacher: Optional cache backend, cleaned when entities change
    """

    cacher: Optional[ICacher] = None

    @abstractmethod
    async def call(
        self,
        action: str,
        params: Optional[Dict[str, Any]] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Invoke an action by its full name.

        Args:
            action: "<service>.<action>", e.g. "users.get"
            params: Action parameters
            meta: Call metadata forwarded to the callee's context

        Returns:
            The action's result. For get with mapping=True this is a dict
            keyed by entity id.
        """
        pass

    @abstractmethod
    async def emit(self, event: str, payload: Any = None) -> None:
        """Deliver an event to one listener group per service."""
        pass

    @abstractmethod
    async def broadcast(self, event: str, payload: Any = None) -> None:
        """Deliver an event to every listener."""
        pass
