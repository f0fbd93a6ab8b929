"""
Query specs, filter predicates and request descriptor construction.
"""

from analytics_access.query.builder import (
    ANALYTICS_ENTITIES,
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    MIN_PAGE_SIZE,
    Aggregate,
    OrderKey,
    QueryBuilder,
    QuerySpec,
    RequestDescriptor,
)
from analytics_access.query.loader import (
    load_dashboard_queries,
    parse_dashboard_queries,
    parse_predicate,
    parse_query_definition,
)

__all__ = [
    "ANALYTICS_ENTITIES",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "MIN_PAGE_SIZE",
    "Aggregate",
    "OrderKey",
    "QueryBuilder",
    "QuerySpec",
    "RequestDescriptor",
    "load_dashboard_queries",
    "parse_dashboard_queries",
    "parse_predicate",
    "parse_query_definition",
]
