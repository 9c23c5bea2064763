"""
HTTP broker for services hosted on another node.

Actions of services registered locally run in-process exactly like
LocalBroker. Any other action is sent to the remote node's RPC endpoint:

    POST {base_url}/{service}/rpc/{action}
    {"params": {...}, "meta": {...}}

A successful response body is the action's result. An error response
carries the serialized DataServiceError ({name, message, code, type, data})
and is re-raised as RemoteCallError. Transport failures (connection refused,
timeouts) are retried with exponential backoff; error responses are not.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from dataservice.core.config import get_settings
from dataservice.core.errors import RemoteCallError
from dataservice.core.retry import retry_with_backoff
from dataservice.services.broker import LocalBroker, split_action
from dataservice.services.interfaces.broker import ICacher

logger = logging.getLogger(__name__)


class HttpBroker(LocalBroker):
    """
    Broker reaching remote services over HTTP.

    Attributes:
        base_url: Root URL of the remote node
        client: httpx.AsyncClient used for remote calls
        max_retries: Retries after a transport failure
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        client: Optional[httpx.AsyncClient] = None,
        cacher: Optional[ICacher] = None,
    ):
        super().__init__(cacher=cacher)
        config = get_settings()
        self.base_url = (base_url or config.remote_base_url).rstrip("/")
        self.max_retries = config.remote_max_retries if max_retries is None else max_retries
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=timeout if timeout is not None else config.remote_timeout_seconds
        )

    async def stop(self) -> None:
        await super().stop()
        if self._owns_client:
            await self.client.aclose()

    async def call(
        self,
        action: str,
        params: Optional[Dict[str, Any]] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> Any:
        service_name, action_name = split_action(action)
        if service_name in self.services:
            return await super().call(action, params, meta)
        return await self.remote_call(service_name, action_name, params, meta)

    async def remote_call(
        self,
        service_name: str,
        action_name: str,
        params: Optional[Dict[str, Any]] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Call an action on the remote node.

        Raises:
            RemoteCallError: The remote action failed, or the node could
                not be reached after all retries
        """
        url = f"{self.base_url}/{service_name}/rpc/{action_name}"
        body = {"params": params or {}, "meta": meta or {}}
        headers = {}
        request_id = (meta or {}).get("request_id")
        if request_id:
            headers["X-Request-ID"] = str(request_id)

        @retry_with_backoff(
            max_retries=self.max_retries,
            base_delay=0.2,
            max_delay=5.0,
            exceptions=(httpx.TransportError,),
        )
        async def post() -> httpx.Response:
            return await self.client.post(url, json=body, headers=headers)

        logger.debug(
            "Calling remote action",
            extra={"service": service_name, "action": action_name, "url": url},
        )
        try:
            response = await post()
        except httpx.TransportError as e:
            raise RemoteCallError(
                f"Remote node unreachable: {e}",
                data={"action": f"{service_name}.{action_name}", "url": url},
            )

        if response.is_success:
            return response.json()

        raise self._error_from_response(service_name, action_name, response)

    @staticmethod
    def _error_from_response(service_name: str, action_name: str, response: httpx.Response) -> RemoteCallError:
        try:
            payload = response.json()
        except ValueError:
            payload = None

        action = f"{service_name}.{action_name}"
        if not isinstance(payload, dict):
            return RemoteCallError(
                f"Remote action {action} failed with HTTP {response.status_code}",
                code=response.status_code,
                data={"action": action},
            )

        logger.warning(
            f"Remote action {action} failed: {payload.get('message')}",
            extra={"service": service_name, "action": action_name, "status_code": response.status_code},
        )
        return RemoteCallError(
            payload.get("message") or f"Remote action {action} failed",
            code=payload.get("code") or response.status_code,
            type=payload.get("type") or None,
            data={"action": action, "name": payload.get("name"), "data": payload.get("data")},
        )
