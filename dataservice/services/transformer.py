"""
Document transformation pipeline.

Reshapes raw stored records into API-facing documents:

    entity_to_object -> identity rename -> encode id -> populate
        -> field filter (authorized) -> exclude fields

A single record in gives a single document out; a list gives a list.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from dataservice.core.config import split_whitespace
from dataservice.services.population import PopulationEngine
from dataservice.services.projection import (
    authorize_fields,
    exclude_fields,
    filter_fields,
)

logger = logging.getLogger(__name__)


class DocumentTransformer:
    """
    Runs the transformation stages for one service.

    Attributes:
        service: Owning DatabaseService (adapter, settings, encode_id)
        population: Relation resolver for the service's populates
    """

    def __init__(self, service: Any, population: PopulationEngine):
        self.service = service
        self.population = population

    @property
    def settings(self):
        return self.service.settings

    def _requested_fields(self, ctx: Any, params: Dict[str, Any], key: str) -> Optional[List[str]]:
        if ctx is None or not params.get(key):
            return None
        return split_whitespace(params[key])

    def select_fields(self, ctx: Any, params: Dict[str, Any]) -> Optional[Sequence[str]]:
        """
        Effective field list: the caller's fields authorized against the
        settings allow-list, or the allow-list itself when nothing was asked.
        """
        asked = self._requested_fields(ctx, params, "fields")
        if asked is not None:
            return authorize_fields(asked, self.settings.fields)
        return self.settings.fields

    def select_exclude_fields(self, ctx: Any, params: Dict[str, Any]) -> List[str]:
        asked = self._requested_fields(ctx, params, "exclude_fields") or []
        return list(asked) + list(self.settings.exclude_fields or [])

    async def transform(self, ctx: Any, params: Optional[Dict[str, Any]], docs: Any) -> Any:
        """
        Transform fetched records into documents.

        Args:
            ctx: Call context; population and caller field requests are
                only honoured when a context is given
            params: Action parameters (populate, fields, exclude_fields)
            docs: A stored record or a list of records

        Returns:
            The transformed document(s), same shape as docs. Anything that is
            neither a record nor a list is returned untouched.
        """
        params = params or {}
        adapter = self.service.adapter
        id_field = self.settings.id_field

        if isinstance(docs, list):
            is_doc = False
            items = docs
        elif docs is not None and not isinstance(docs, (str, bytes, int, float, bool)):
            is_doc = True
            items = [docs]
        else:
            return docs

        json = [adapter.entity_to_object(doc) for doc in items]
        json = [adapter.after_retrieve_transform_id(doc, id_field) for doc in json]
        for doc in json:
            doc[id_field] = self.service.encode_id(doc.get(id_field))

        if ctx is not None and params.get("populate"):
            json = await self.population.populate(ctx, json, split_whitespace(params["populate"]))

        fields = self.select_fields(ctx, params)
        json = [filter_fields(doc, fields) for doc in json]

        excluded = self.select_exclude_fields(ctx, params)
        if excluded:
            json = [exclude_fields(doc, excluded) for doc in json]

        return json[0] if is_doc else json
