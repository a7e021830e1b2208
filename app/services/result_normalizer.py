"""
Flattens upstream payloads into ordered record lists.

Two matcher registries are tried in a fixed priority order. A matcher returns
None when it does not recognize the shape and a list when it does; the first
recognized shape wins.
"""

import json
from collections.abc import Callable
from typing import Any

from app.core.config import settings

ShapeMatcher = Callable[[Any], list[Any] | None]


def _connection_items(data: Any, collection_key: str) -> list[Any] | None:
    if not isinstance(data, dict):
        return None
    for value in data.values():
        if not isinstance(value, dict):
            continue
        items = value.get(collection_key)
        if isinstance(items, list):
            return items
    return None


def match_connection_edges(data: Any) -> list[Any] | None:
    """`{field: {edges: [{node}], pageInfo}}`: the first key with an edges array."""
    edges = _connection_items(data, "edges")
    if edges is None:
        return None
    return [edge.get("node") for edge in edges if isinstance(edge, dict)]


def match_connection_nodes(data: Any) -> list[Any] | None:
    """`{field: {nodes: [...]}}` shorthand connections."""
    return _connection_items(data, "nodes")


GRAPHQL_SHAPE_MATCHERS: tuple[ShapeMatcher, ...] = (
    match_connection_edges,
    match_connection_nodes,
)


def extract_results(data: Any) -> list[Any]:
    """Returns the first paginated collection in a GraphQL `data` object, or [] (never raises)."""
    for matcher in GRAPHQL_SHAPE_MATCHERS:
        matched = matcher(data)
        if matched is not None:
            return matched
    return []


def extract_page_info(data: Any) -> dict[str, Any]:
    if not isinstance(data, dict):
        return {}
    for value in data.values():
        if isinstance(value, dict) and isinstance(value.get("edges"), list):
            page_info = value.get("pageInfo")
            return page_info if isinstance(page_info, dict) else {}
    return {}


def match_top_level_list(payload: Any) -> list[Any] | None:
    return payload if isinstance(payload, list) else None


def match_orders_field(payload: Any) -> list[Any] | None:
    if not isinstance(payload, dict) or not payload.get("orders"):
        return None
    orders = payload["orders"]
    return orders if isinstance(orders, list) else [orders]


def match_common_list_field(payload: Any) -> list[Any] | None:
    if not isinstance(payload, dict):
        return None
    for key in ("data", "results", "items", "records"):
        if isinstance(payload.get(key), list):
            return payload[key]
    return None


def match_single_object(payload: Any) -> list[Any] | None:
    return [payload] if isinstance(payload, dict) else None


# Order matters: upstream endpoints return these shapes interchangeably.
PAYLOAD_SHAPE_MATCHERS: tuple[ShapeMatcher, ...] = (
    match_top_level_list,
    match_orders_field,
    match_common_list_field,
    match_single_object,
)


def normalize_payload(payload: Any) -> list[Any]:
    """Normalizes a non-GraphQL JSON payload into a record list."""
    for matcher in PAYLOAD_SHAPE_MATCHERS:
        matched = matcher(payload)
        if matched is not None:
            return matched
    return []


def build_sample(records: list[Any], size: int | None = None) -> str | None:
    """Pretty-printed JSON of the first few records, or None when there are none."""
    if not records:
        return None
    return json.dumps(records[: size or settings.SAMPLE_SIZE], indent=2, default=str)
