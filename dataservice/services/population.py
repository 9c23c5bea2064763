"""
Cross-service relation population.

Replaces foreign keys on documents with the documents they reference. Each
configured relation is resolved with one batched lookup for the whole
document set:

    populates = {
        "author": "users.get",                          # action shorthand
        "reviewers": {"action": "users.get",            # full rule
                      "field": "reviewer_ids",
                      "params": {"fields": ["name"]}},
        "stats": compute_stats,                         # local handler
    }

Requesting "author.profile" populates "author" and forwards ["profile"] to
users.get, which runs this same algorithm on its side. That forwarding is the
only recursion mechanism and it has no depth limit: a relation graph with a
cycle (posts -> author -> posts ...) recurses for as long as callers keep
requesting deeper paths.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from dataservice.core.errors import ConfigurationError
from dataservice.core.paths import MISSING, get_path, set_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionRule:
    """
    Relation resolved by calling a remote action.

    Attributes:
        field: Dotted path holding the key or key list on each document
        action: Full action name, e.g. "users.get"
        params: Static parameters merged into every call
        populate: Populate paths always forwarded to the action
    """

    field: str
    action: str
    params: Dict[str, Any] = field(default_factory=dict)
    populate: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class HandlerRule:
    """
    Relation resolved by a local callback.

    The handler is called as handler(ids, docs, rule, ctx), may be sync or
    async, and must write its results into docs itself.
    """

    field: str
    handler: Callable[..., Any]


RelationRule = Union[ActionRule, HandlerRule]


def compile_rule(name: str, rule: Any) -> RelationRule:
    """
    Turn one configured rule into a RelationRule.

    Args:
        name: Relation name (also the default key field)
        rule: str (action name), callable (handler) or mapping

    Raises:
        ConfigurationError: If the rule has none of the accepted shapes
    """
    if isinstance(rule, (ActionRule, HandlerRule)):
        return rule
    if isinstance(rule, str):
        return ActionRule(field=name, action=rule)
    if callable(rule):
        return HandlerRule(field=name, handler=rule)
    if isinstance(rule, Mapping):
        key_field = rule.get("field") or name
        if callable(rule.get("handler")):
            return HandlerRule(field=key_field, handler=rule["handler"])
        if isinstance(rule.get("action"), str):
            populate = rule.get("populate") or []
            if isinstance(populate, str):
                populate = populate.split()
            return ActionRule(
                field=key_field,
                action=rule["action"],
                params=dict(rule.get("params") or {}),
                populate=list(populate),
            )
    raise ConfigurationError(
        f"Invalid populate rule for '{name}': expected an action name, "
        f"a handler or a mapping with 'action' or 'handler'",
        data={"relation": name},
    )


def compile_populates(populates: Optional[Mapping[str, Any]]) -> Dict[str, RelationRule]:
    """Compile the populates setting of a service, keeping declaration order."""
    return {name: compile_rule(name, rule) for name, rule in (populates or {}).items()}


def group_populate_fields(
    relation_names: Sequence[str],
    populate_fields: Sequence[str],
) -> Dict[str, List[str]]:
    """
    Group requested paths by the configured relation they fall under.

    Example:
        >>> group_populate_fields(["post"], ["post.author", "post", "other"])
        {'post': ['post.author', 'post']}
    """
    grouped: Dict[str, List[str]] = {}
    for path in populate_fields:
        for name in relation_names:
            if path == name or path.startswith(name + "."):
                grouped.setdefault(name, []).append(path)
                break
    return grouped


def collect_ids(docs: Sequence[Dict[str, Any]], key_field: str) -> List[Any]:
    """
    Collect the keys held at key_field across documents.

    One level of nested lists is flattened, falsy keys are dropped and
    duplicates removed, keeping first-seen order.
    """
    ids: List[Any] = []
    seen = set()
    for doc in docs:
        value = get_path(doc, key_field)
        values = value if isinstance(value, (list, tuple)) else [value]
        for item in values:
            if item is MISSING or not item:
                continue
            marker = _hashable(item)
            if marker in seen:
                continue
            seen.add(marker)
            ids.append(item)
    return ids


def _hashable(value: Any) -> Any:
    try:
        hash(value)
        return value
    except TypeError:
        return repr(value)


def _lookup(mapping: Mapping[Any, Any], key: Any) -> Any:
    """Find key in a mapping result, tolerating ids stringified in transit."""
    try:
        if key in mapping:
            return mapping[key]
    except TypeError:
        pass
    return mapping.get(str(key), MISSING)


def merge_populated(
    docs: Sequence[Dict[str, Any]],
    key_field: str,
    name: str,
    populated: Mapping[Any, Any],
) -> None:
    """
    Write resolved sub-documents back onto each document in place.

    A key list becomes the list of found documents (missing keys dropped,
    order kept); a single key becomes the found document and is left as-is
    when the mapping has no entry for it.
    """
    for doc in docs:
        key = get_path(doc, key_field)
        if key is MISSING:
            continue
        if isinstance(key, (list, tuple)):
            found = [_lookup(populated, k) for k in key]
            set_path(doc, name, [d for d in found if d is not MISSING and d is not None])
        else:
            found = _lookup(populated, key) if key is not None else MISSING
            if found is not MISSING:
                set_path(doc, name, found)


class PopulationEngine:
    """
    Resolves configured relations on documents.

    Attributes:
        rules: Compiled relation rules keyed by relation name
    """

    def __init__(self, populates: Optional[Mapping[str, Any]] = None):
        self.rules: Dict[str, RelationRule] = compile_populates(populates)

    def build_params(self, name: str, rule: ActionRule, ids: List[Any], requested: List[str]) -> Dict[str, Any]:
        """
        Build the single remote call's parameters for one relation.

        The relation prefix is stripped from requested paths ("post.author"
        -> "author"); a bare relation name leaves nothing to forward.
        """
        residual = [p[len(name) + 1:] for p in requested]
        populate = [p for p in residual if p != ""] + list(rule.populate)

        params: Dict[str, Any] = {"id": ids, "mapping": True}
        if populate:
            params["populate"] = populate
        params.update(rule.params)
        return params

    async def _run_handler(self, rule: HandlerRule, ids: List[Any], docs: List[Dict[str, Any]], ctx: Any) -> None:
        result = rule.handler(ids, docs, rule, ctx)
        if inspect.isawaitable(result):
            await result

    async def _run_action(
        self,
        name: str,
        rule: ActionRule,
        params: Dict[str, Any],
        docs: List[Dict[str, Any]],
        ctx: Any,
    ) -> None:
        logger.debug(
            "Populating relation",
            extra={"relation": name, "action": rule.action, "id_count": len(params["id"])},
        )
        populated = await ctx.call(rule.action, params)
        merge_populated(docs, rule.field, name, populated or {})

    async def populate(self, ctx: Any, docs: Any, populate_fields: Optional[Sequence[str]]) -> Any:
        """
        Populate the requested relations on one document or a list.

        Args:
            ctx: Call context whose call() reaches peer services
            docs: A document or a list of documents (mutated in place)
            populate_fields: Requested relation paths

        Returns:
            docs, with the same single/list shape as given

        Raises:
            Whatever a relation call raises; the first failure aborts the
            whole population
        """
        if not self.rules or not populate_fields:
            return docs
        if not isinstance(docs, (dict, list)):
            return docs

        grouped = group_populate_fields(list(self.rules), populate_fields)
        arr: List[Dict[str, Any]] = docs if isinstance(docs, list) else [docs]

        tasks = []
        for name, rule in self.rules.items():
            requested = grouped.get(name)
            if not requested:
                continue

            ids = collect_ids(arr, rule.field)
            if isinstance(rule, HandlerRule):
                tasks.append(self._run_handler(rule, ids, arr, ctx))
            elif ids:
                params = self.build_params(name, rule, ids, requested)
                tasks.append(self._run_action(name, rule, params, arr, ctx))

        if tasks:
            await asyncio.gather(*tasks)
        return docs
