"""
analytics_access/query/builder.py

Query specs and their translation into request descriptors.

``QueryBuilder.build`` is a pure function of (spec, credential, base URL):
the same inputs always produce a byte-identical descriptor.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from functools import cached_property
from typing import Iterable, Union
from urllib.parse import quote, urlparse

from analytics_access.domain.models import Credential
from analytics_access.errors import InvalidQuerySpec
from analytics_access.query.predicates import Predicate, render_filter, validate_field_path

DEFAULT_PAGE_SIZE = 1000
MIN_PAGE_SIZE = 1
MAX_PAGE_SIZE = 5000

ANALYTICS_ENTITIES: frozenset[str] = frozenset(
    {
        "Areas",
        "BoardLocations",
        "Branches",
        "Dates",
        "Iterations",
        "PipelineJobs",
        "PipelineRuns",
        "Pipelines",
        "Processes",
        "Projects",
        "Tags",
        "TaskAgentRequestSnapshots",
        "Teams",
        "TestPoints",
        "TestResultsDaily",
        "TestRuns",
        "Tests",
        "Users",
        "WorkItemBoardSnapshot",
        "WorkItemLinks",
        "WorkItemRevisions",
        "WorkItemSnapshot",
        "WorkItemTypeFields",
        "WorkItems",
    }
)

AGGREGATE_METHODS = frozenset({"sum", "average", "min", "max", "countdistinct"})

_SENSITIVE_HEADERS = frozenset({"authorization"})
_QUERY_SAFE_CHARS = "$'(),/:"


@dataclass(frozen=True)
class OrderKey:
    field: str
    descending: bool = False

    def render(self) -> str:
        path = validate_field_path(self.field)
        return f"{path} desc" if self.descending else path


@dataclass(frozen=True)
class Aggregate:
    """
    One aggregate expression. ``method="count"`` counts rows and needs no field.
    """

    alias: str
    method: str = "count"
    field: str | None = None

    def render(self) -> str:
        alias = validate_field_path(self.alias)
        if "/" in alias:
            raise InvalidQuerySpec(f"Aggregate alias must be a simple name: {self.alias!r}")
        if self.method == "count":
            return f"$count as {alias}"
        if self.method not in AGGREGATE_METHODS:
            raise InvalidQuerySpec(f"Unsupported aggregate method: {self.method!r}")
        if self.field is None:
            raise InvalidQuerySpec(f"Aggregate {self.alias!r} needs a field.")
        return f"{validate_field_path(self.field)} with {self.method} as {alias}"


OrderSpec = Union[str, OrderKey]


@dataclass(frozen=True)
class QuerySpec:
    """
    Shape of one analytics query.

    ``name`` is a display label only and does not take part in equality or
    in the spec key.
    """

    entity: str
    fields: tuple[str, ...]
    filter: Predicate | None = None
    order_by: tuple[OrderKey, ...] = ()
    page_size: int = DEFAULT_PAGE_SIZE
    group_by: tuple[str, ...] = ()
    aggregates: tuple[Aggregate, ...] = ()
    name: str | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", tuple(self.fields))
        object.__setattr__(self, "order_by", tuple(_as_order_key(item) for item in _as_iterable(self.order_by)))
        object.__setattr__(self, "group_by", tuple(self.group_by))
        object.__setattr__(self, "aggregates", tuple(self.aggregates))

    @cached_property
    def key(self) -> str:
        """
        Stable short identifier for this spec's shape.
        """

        canonical = repr(
            (
                self.entity,
                self.fields,
                self.filter,
                self.order_by,
                self.page_size,
                self.group_by,
                self.aggregates,
            )
        )
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]

    @property
    def label(self) -> str:
        return self.name or f"{self.entity}:{self.key}"


@dataclass(frozen=True)
class RequestDescriptor:
    """
    Fully resolved GET request for one query spec.
    """

    spec_key: str
    url: str
    headers: tuple[tuple[str, str], ...]
    method: str = "GET"

    def header_map(self) -> dict[str, str]:
        return dict(self.headers)

    def secret_values(self) -> tuple[str, ...]:
        """
        Header values (and their token parts) that must never be logged.
        """

        secrets: list[str] = []
        for name, value in self.headers:
            if name.lower() in _SENSITIVE_HEADERS:
                secrets.append(value)
                _, _, token = value.partition(" ")
                if token:
                    secrets.append(token)
        return tuple(secrets)

    def to_bytes(self) -> bytes:
        lines = [f"{self.method} {self.url}"]
        lines.extend(f"{name}: {value}" for name, value in self.headers)
        return "\r\n".join(lines).encode("utf-8")

    def __repr__(self) -> str:
        shown = tuple(
            (name, "***" if name.lower() in _SENSITIVE_HEADERS else value) for name, value in self.headers
        )
        return f"RequestDescriptor(spec_key={self.spec_key!r}, method={self.method!r}, url={self.url!r}, headers={shown!r})"


class QueryBuilder:
    """
    Turns query specs into request descriptors against one base address.
    """

    def __init__(self, *, base_url: str) -> None:
        parsed = urlparse(base_url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError(f"Analytics base URL must be an absolute http(s) URL: {base_url!r}")
        self._base_url = base_url.rstrip("/")

    @property
    def base_url(self) -> str:
        return self._base_url

    def validate(self, spec: QuerySpec) -> None:
        """
        Run every spec check that does not need a credential.
        """

        self.query_parameters(spec)

    def build(self, spec: QuerySpec, credential: Credential) -> RequestDescriptor:
        params = self.query_parameters(spec)
        query = "&".join(f"{name}={quote(value, safe=_QUERY_SAFE_CHARS)}" for name, value in params)
        headers = (
            ("Accept", "application/json"),
            ("Authorization", credential.authorization_header()),
            ("OData-MaxVersion", "4.0"),
        )
        return RequestDescriptor(
            spec_key=spec.key,
            url=f"{self._base_url}/{spec.entity}?{query}",
            headers=headers,
        )

    def query_parameters(self, spec: QuerySpec) -> list[tuple[str, str]]:
        """
        Return the ordered OData query parameters for ``spec``.
        """

        if spec.entity not in ANALYTICS_ENTITIES:
            raise InvalidQuerySpec(f"Unknown analytics entity: {spec.entity!r}")
        if not spec.fields:
            raise InvalidQuerySpec(f"Query on {spec.entity!r} selects no fields.")
        fields = [validate_field_path(item) for item in spec.fields]
        page_size = _clamp_page_size(spec.page_size)

        rendered_filter = render_filter(spec.filter) if spec.filter is not None else None
        params: list[tuple[str, str]] = []

        if spec.aggregates or spec.group_by:
            params.append(("$apply", self._render_apply(spec, fields, rendered_filter)))
        else:
            params.append(("$select", ",".join(fields)))
            if rendered_filter is not None:
                params.append(("$filter", rendered_filter))

        if spec.order_by:
            params.append(("$orderby", ", ".join(key.render() for key in spec.order_by)))
        params.append(("$top", str(page_size)))
        return params

    @staticmethod
    def _render_apply(spec: QuerySpec, fields: list[str], rendered_filter: str | None) -> str:
        group_by = [validate_field_path(item) for item in spec.group_by]
        aggregates = [aggregate.render() for aggregate in spec.aggregates]
        produced = set(group_by) | {aggregate.alias for aggregate in spec.aggregates}
        unknown = [item for item in fields if item not in produced]
        if unknown:
            raise InvalidQuerySpec(
                f"Aggregated query selects fields that are neither grouped nor aggregated: {unknown}"
            )

        if group_by and aggregates:
            transform = f"groupby(({', '.join(group_by)}), aggregate({', '.join(aggregates)}))"
        elif group_by:
            transform = f"groupby(({', '.join(group_by)}))"
        else:
            transform = f"aggregate({', '.join(aggregates)})"

        if rendered_filter is not None:
            return f"filter({rendered_filter})/{transform}"
        return transform


def _clamp_page_size(page_size: object) -> int:
    if isinstance(page_size, bool) or not isinstance(page_size, int):
        raise InvalidQuerySpec(f"Page size must be an integer: {page_size!r}")
    return max(MIN_PAGE_SIZE, min(MAX_PAGE_SIZE, page_size))


def _as_iterable(value: object) -> Iterable[object]:
    if isinstance(value, (str, OrderKey)):
        return (value,)
    return value  # type: ignore[return-value]


def _as_order_key(value: object) -> OrderKey:
    if isinstance(value, OrderKey):
        return value
    if isinstance(value, str):
        raw = value.strip()
        if raw.lower().endswith(" desc"):
            return OrderKey(raw[:-5].strip(), descending=True)
        if raw.lower().endswith(" asc"):
            return OrderKey(raw[:-4].strip())
        return OrderKey(raw)
    raise InvalidQuerySpec(f"Unsupported ordering key: {value!r}")
