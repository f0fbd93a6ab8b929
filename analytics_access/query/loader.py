"""
JSON loader for dashboard query definitions.
"""

from __future__ import annotations

import json
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any
from uuid import UUID

from analytics_access.errors import InvalidQuerySpec
from analytics_access.query.builder import DEFAULT_PAGE_SIZE, Aggregate, QuerySpec
from analytics_access.query.predicates import (
    COMPARISON_OPERATORS,
    STRING_FUNCTIONS,
    AllOf,
    AnyOf,
    Comparison,
    InSet,
    Literal,
    Not,
    Predicate,
    StringFunction,
)


def load_dashboard_queries(*, config_path: str) -> list[QuerySpec]:
    """
    Load query specs from a JSON dashboard definition file.
    """

    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Dashboard query config file not found: {path}")

    raw_data = json.loads(path.read_text(encoding="utf-8"))
    return parse_dashboard_queries(raw_data)


def parse_dashboard_queries(raw_data: object) -> list[QuerySpec]:
    if not isinstance(raw_data, dict):
        raise ValueError("Invalid dashboard config: top level must be an object.")
    queries = raw_data.get("queries", [])
    if not isinstance(queries, list):
        raise ValueError("Invalid dashboard config: 'queries' must be a list.")

    parsed: list[QuerySpec] = []
    for entry in queries:
        if not isinstance(entry, dict):
            continue
        if not _optional_bool(entry.get("enabled"), True):
            continue
        if not str(entry.get("entity") or "").strip():
            continue
        parsed.append(parse_query_definition(entry))
    return parsed


def parse_query_definition(entry: dict[str, Any]) -> QuerySpec:
    """
    Build one QuerySpec from its JSON definition.
    """

    entity = str(entry.get("entity") or "").strip()
    if not entity:
        raise InvalidQuerySpec("Query definition is missing 'entity'.")

    return QuerySpec(
        entity=entity,
        fields=tuple(_string_list(entry.get("fields"))),
        filter=parse_predicate(entry["filter"]) if entry.get("filter") is not None else None,
        order_by=tuple(_string_list(entry.get("order_by"))),
        page_size=_optional_int(entry.get("page_size"), DEFAULT_PAGE_SIZE),
        group_by=tuple(_string_list(entry.get("group_by"))),
        aggregates=tuple(_parse_aggregates(entry.get("aggregates"))),
        name=_optional_str(entry.get("name")),
    )


def parse_predicate(node: object) -> Predicate:
    """
    Convert the JSON form of a filter tree into predicate objects.
    """

    if not isinstance(node, dict):
        raise InvalidQuerySpec(f"Filter node must be an object: {node!r}")

    if "all" in node:
        return AllOf(tuple(parse_predicate(item) for item in _node_list(node["all"], "all")))
    if "any" in node:
        return AnyOf(tuple(parse_predicate(item) for item in _node_list(node["any"], "any")))
    if "not" in node:
        return Not(parse_predicate(node["not"]))

    field_path = node.get("field")
    operator = str(node.get("op", "")).strip().lower()
    if not isinstance(field_path, str):
        raise InvalidQuerySpec(f"Filter node is missing 'field': {node!r}")

    value_type = _optional_str(node.get("type"))
    if operator == "in":
        values = node.get("values")
        if not isinstance(values, list):
            raise InvalidQuerySpec(f"'in' filter on {field_path!r} needs a 'values' list.")
        return InSet(field_path, tuple(_coerce_literal(item, value_type) for item in values))
    if operator in STRING_FUNCTIONS:
        value = node.get("value")
        if not isinstance(value, str):
            raise InvalidQuerySpec(f"{operator} filter on {field_path!r} needs a string value.")
        return StringFunction(operator, field_path, value)
    if operator in COMPARISON_OPERATORS:
        return Comparison(field_path, operator, _coerce_literal(node.get("value"), value_type))

    raise InvalidQuerySpec(f"Unsupported filter operator: {operator!r}")


def _coerce_literal(value: object, value_type: str | None) -> Literal:
    if value_type is None or value is None:
        if isinstance(value, (list, dict)):
            raise InvalidQuerySpec(f"Filter value must be a scalar: {value!r}")
        return value  # type: ignore[return-value]

    text = str(value).strip()
    try:
        if value_type == "datetime":
            normalized = text[:-1] + "+00:00" if text.endswith("Z") else text
            parsed = datetime.fromisoformat(normalized)
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
        if value_type == "date":
            return date.fromisoformat(text)
        if value_type == "uuid":
            return UUID(text)
        if value_type == "decimal":
            return Decimal(text)
    except (ValueError, InvalidOperation) as exc:
        raise InvalidQuerySpec(f"Cannot parse {text!r} as {value_type}.") from exc
    raise InvalidQuerySpec(f"Unsupported filter value type: {value_type!r}")


def _parse_aggregates(raw: object) -> list[Aggregate]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise InvalidQuerySpec("'aggregates' must be a list.")
    aggregates: list[Aggregate] = []
    for item in raw:
        if not isinstance(item, dict) or not _optional_str(item.get("alias")):
            raise InvalidQuerySpec(f"Aggregate entries need an alias: {item!r}")
        aggregates.append(
            Aggregate(
                alias=str(item["alias"]).strip(),
                method=str(item.get("method", "count")).strip().lower(),
                field=_optional_str(item.get("field")),
            )
        )
    return aggregates


def _node_list(value: object, name: str) -> list[Any]:
    if not isinstance(value, list):
        raise InvalidQuerySpec(f"'{name}' must be a list of filter nodes.")
    return value


def _string_list(value: object) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def _optional_str(value: object) -> str | None:
    if value is None or not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def _optional_int(value: object, default: int) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _optional_bool(value: object, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "on"}:
            return True
        if normalized in {"0", "false", "no", "off"}:
            return False
    return default
