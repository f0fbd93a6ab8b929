"""
analytics_access/query/predicates.py

Filter predicate tree and its OData rendering.

Field names are validated against an identifier-path grammar and every
value is rendered as a typed OData literal (strings single-quoted with
embedded quotes doubled). A caller-supplied value can therefore never close
a literal early and add clauses of its own.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Union
from uuid import UUID

from analytics_access.errors import InvalidQuerySpec

_FIELD_PATH_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(/[A-Za-z_][A-Za-z0-9_]*)*$")

COMPARISON_OPERATORS = frozenset({"eq", "ne", "gt", "ge", "lt", "le"})
STRING_FUNCTIONS = frozenset({"contains", "startswith", "endswith"})

Literal = Union[str, bool, int, float, Decimal, date, datetime, UUID, None]


@dataclass(frozen=True)
class Comparison:
    field: str
    operator: str
    value: Literal


@dataclass(frozen=True)
class StringFunction:
    function: str
    field: str
    value: str


@dataclass(frozen=True)
class InSet:
    field: str
    values: tuple[Literal, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", tuple(self.values))


@dataclass(frozen=True)
class AllOf:
    clauses: tuple["Predicate", ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "clauses", tuple(self.clauses))


@dataclass(frozen=True)
class AnyOf:
    clauses: tuple["Predicate", ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "clauses", tuple(self.clauses))


@dataclass(frozen=True)
class Not:
    clause: "Predicate"


Predicate = Union[Comparison, StringFunction, InSet, AllOf, AnyOf, Not]


def eq(field: str, value: Literal) -> Comparison:
    return Comparison(field, "eq", value)


def ne(field: str, value: Literal) -> Comparison:
    return Comparison(field, "ne", value)


def gt(field: str, value: Literal) -> Comparison:
    return Comparison(field, "gt", value)


def ge(field: str, value: Literal) -> Comparison:
    return Comparison(field, "ge", value)


def lt(field: str, value: Literal) -> Comparison:
    return Comparison(field, "lt", value)


def le(field: str, value: Literal) -> Comparison:
    return Comparison(field, "le", value)


def contains(field: str, value: str) -> StringFunction:
    return StringFunction("contains", field, value)


def startswith(field: str, value: str) -> StringFunction:
    return StringFunction("startswith", field, value)


def endswith(field: str, value: str) -> StringFunction:
    return StringFunction("endswith", field, value)


def in_(field: str, *values: Literal) -> InSet:
    return InSet(field, values)


def all_of(*clauses: Predicate) -> AllOf:
    return AllOf(clauses)


def any_of(*clauses: Predicate) -> AnyOf:
    return AnyOf(clauses)


def not_(clause: Predicate) -> Not:
    return Not(clause)


def validate_field_path(path: str) -> str:
    """
    Return ``path`` if it is a plain OData property path, else raise.
    """

    if not isinstance(path, str) or not _FIELD_PATH_PATTERN.match(path):
        raise InvalidQuerySpec(f"Invalid field path: {path!r}")
    return path


def render_literal(value: Literal) -> str:
    """
    Render one Python value as an OData literal.
    """

    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise InvalidQuerySpec("Non-finite numbers cannot be used in filters.")
        return repr(value)
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise InvalidQuerySpec("Non-finite numbers cannot be used in filters.")
        return str(value)
    if isinstance(value, str):
        try:
            value.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise InvalidQuerySpec("Filter text must be valid UTF-8 (lone surrogates are not allowed).") from exc
        return "'" + value.replace("'", "''") + "'"
    if isinstance(value, datetime):
        aware = value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
        return aware.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    raise InvalidQuerySpec(f"Unsupported filter value type: {type(value).__name__}")


def render_filter(predicate: Predicate) -> str:
    """
    Render a predicate tree as an OData ``$filter`` expression.
    """

    if isinstance(predicate, Comparison):
        if predicate.operator not in COMPARISON_OPERATORS:
            raise InvalidQuerySpec(f"Unsupported comparison operator: {predicate.operator!r}")
        return f"{validate_field_path(predicate.field)} {predicate.operator} {render_literal(predicate.value)}"

    if isinstance(predicate, StringFunction):
        if predicate.function not in STRING_FUNCTIONS:
            raise InvalidQuerySpec(f"Unsupported filter function: {predicate.function!r}")
        if not isinstance(predicate.value, str):
            raise InvalidQuerySpec(f"{predicate.function} requires a string value.")
        return f"{predicate.function}({validate_field_path(predicate.field)}, {render_literal(predicate.value)})"

    if isinstance(predicate, InSet):
        if not predicate.values:
            raise InvalidQuerySpec(f"'in' filter on {predicate.field!r} has no values.")
        rendered = ", ".join(render_literal(value) for value in predicate.values)
        return f"{validate_field_path(predicate.field)} in ({rendered})"

    if isinstance(predicate, (AllOf, AnyOf)):
        if not predicate.clauses:
            raise InvalidQuerySpec("Logical filter groups need at least one clause.")
        joiner = " and " if isinstance(predicate, AllOf) else " or "
        return "(" + joiner.join(render_filter(clause) for clause in predicate.clauses) + ")"

    if isinstance(predicate, Not):
        return f"not ({render_filter(predicate.clause)})"

    raise InvalidQuerySpec(f"Unsupported filter node: {type(predicate).__name__}")
