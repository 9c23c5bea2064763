"""
REST and RPC endpoints for a DatabaseService.

build_router(service, broker) exposes the service's actions:

    GET    /            list    (query string: page, page_size, sort, ...)
    GET    /{id}        get     (query string: fields, populate, mapping)
    POST   /            create  (JSON body is the entity)
    PUT    /{id}        update  (JSON body holds the fields to set)
    DELETE /{id}        remove
    POST   /rpc/{action}        any action, body {"params": {}, "meta": {}}

The RPC endpoint is what HttpBroker calls on a remote node. Errors raised
by actions are rendered by the DataServiceError handler in main.py.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Request
from pydantic import BaseModel, Field

from dataservice.services.broker import Context
from dataservice.services.interfaces.broker import IServiceBroker

logger = logging.getLogger(__name__)

_BOOLEAN_STRINGS = {"true": True, "1": True, "false": False, "0": False}


class RpcRequest(BaseModel):
    """Body of a remote action call."""

    params: Dict[str, Any] = Field(default_factory=dict)
    meta: Dict[str, Any] = Field(default_factory=dict)


def query_params(request: Request) -> Dict[str, Any]:
    """
    Read the query string into action params.

    Repeated keys become lists (?id=1&id=2). "mapping" is parsed as a
    boolean; everything else is left to the service's sanitizer.
    """
    params: Dict[str, Any] = {}
    for key in request.query_params.keys():
        values = request.query_params.getlist(key)
        params[key] = values if len(values) > 1 else values[0]

    mapping = params.get("mapping")
    if isinstance(mapping, str):
        params["mapping"] = _BOOLEAN_STRINGS.get(mapping.lower(), False)
    return params


def build_router(service: Any, broker: IServiceBroker) -> APIRouter:
    """
    Build the router of one service.

    Args:
        service: A DatabaseService registered on broker
        broker: Broker used for nested calls made while handling requests

    Returns:
        APIRouter, to be mounted under /{service.name}
    """
    router = APIRouter(tags=[service.name])

    async def dispatch(
        action: str,
        params: Dict[str, Any],
        request: Request,
        meta: Optional[Dict[str, Any]] = None,
    ) -> Any:
        meta = dict(meta or {})
        request_id = getattr(request.state, "request_id", None)
        if request_id and "request_id" not in meta:
            meta["request_id"] = request_id

        ctx = Context(
            broker=broker,
            action=f"{service.name}.{action}",
            params=params,
            meta=meta,
            service=service,
        )
        return await service.call_action(action, ctx, params)

    @router.get("/", summary=f"List {service.name}")
    async def list_entities(request: Request) -> Any:
        return await dispatch("list", query_params(request), request)

    @router.get("/{id}", summary=f"Get one of {service.name}")
    async def get_entity(id: str, request: Request) -> Any:
        params = query_params(request)
        params["id"] = id
        return await dispatch("get", params, request)

    @router.post("/", status_code=201, summary=f"Create one of {service.name}")
    async def create_entity(request: Request, entity: Dict[str, Any] = Body(...)) -> Any:
        return await dispatch("create", entity, request)

    @router.put("/{id}", summary=f"Update one of {service.name}")
    async def update_entity(id: str, request: Request, changes: Dict[str, Any] = Body(...)) -> Any:
        params = dict(changes)
        params["id"] = id
        return await dispatch("update", params, request)

    @router.delete("/{id}", summary=f"Remove one of {service.name}")
    async def remove_entity(id: str, request: Request) -> Any:
        return await dispatch("remove", {"id": id}, request)

    @router.post("/rpc/{action}", summary=f"Call an action of {service.name}")
    async def call_action(action: str, request: Request, body: Optional[RpcRequest] = None) -> Any:
        body = body or RpcRequest()
        return await dispatch(action, body.params, request, meta=body.meta)

    return router
