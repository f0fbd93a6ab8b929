"""
tests/test_dashboard_loader.py

Unit tests for the JSON dashboard query loader.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from analytics_access.errors import InvalidQuerySpec
from analytics_access.query import predicates as p
from analytics_access.query.builder import Aggregate, OrderKey, QueryBuilder
from analytics_access.query.loader import (
    load_dashboard_queries,
    parse_dashboard_queries,
    parse_predicate,
    parse_query_definition,
)

BUNDLED_CONFIG = Path(__file__).resolve().parents[1] / "analytics_access" / "dashboard_queries.json"


class TestParseDashboardQueries:
    def test_minimal_entry(self) -> None:
        specs = parse_dashboard_queries(
            {"queries": [{"name": "items", "entity": "WorkItems", "fields": ["WorkItemId", "Title"]}]}
        )

        assert len(specs) == 1
        spec = specs[0]
        assert spec.label == "items"
        assert spec.fields == ("WorkItemId", "Title")
        assert spec.page_size == 1000
        assert spec.filter is None

    def test_disabled_and_malformed_entries_are_skipped(self) -> None:
        specs = parse_dashboard_queries(
            {
                "queries": [
                    "not-an-object",
                    {"entity": "WorkItems", "fields": ["WorkItemId"], "enabled": False},
                    {"entity": "WorkItems", "fields": ["WorkItemId"], "enabled": "off"},
                    {"fields": ["WorkItemId"]},
                    {"entity": "Pipelines", "fields": ["PipelineId"]},
                ]
            }
        )

        assert [spec.entity for spec in specs] == ["Pipelines"]

    def test_ordering_aggregation_and_page_size(self) -> None:
        specs = parse_dashboard_queries(
            {
                "queries": [
                    {
                        "entity": "WorkItems",
                        "fields": ["State", "Total"],
                        "group_by": ["State"],
                        "aggregates": [{"alias": "Total", "method": "SUM", "field": "StoryPoints"}],
                        "order_by": "State desc",
                        "page_size": "250",
                    }
                ]
            }
        )

        spec = specs[0]
        assert spec.group_by == ("State",)
        assert spec.aggregates == (Aggregate(alias="Total", method="sum", field="StoryPoints"),)
        assert spec.order_by == (OrderKey("State", descending=True),)
        assert spec.page_size == 250

    @pytest.mark.parametrize("raw", [[], {"queries": "all"}])
    def test_invalid_top_level_is_rejected(self, raw: object) -> None:
        with pytest.raises(ValueError):
            parse_dashboard_queries(raw)

    def test_single_definition_needs_an_entity(self) -> None:
        with pytest.raises(InvalidQuerySpec):
            parse_query_definition({"fields": ["WorkItemId"]})

    def test_aggregate_without_alias_is_rejected(self) -> None:
        with pytest.raises(InvalidQuerySpec):
            parse_dashboard_queries(
                {"queries": [{"entity": "WorkItems", "fields": ["State"], "aggregates": [{"method": "count"}]}]}
            )


class TestParsePredicate:
    def test_nested_groups(self) -> None:
        node = {
            "all": [
                {"field": "State", "op": "ne", "value": "Closed"},
                {"any": [{"field": "Priority", "op": "le", "value": 2}, {"not": {"field": "Tags", "op": "contains", "value": "later"}}]},
            ]
        }

        assert parse_predicate(node) == p.all_of(
            p.ne("State", "Closed"),
            p.any_of(p.le("Priority", 2), p.not_(p.contains("Tags", "later"))),
        )

    def test_typed_values(self) -> None:
        predicate = parse_predicate({"field": "ChangedDate", "op": "GE", "value": "2024-01-01T00:00:00Z", "type": "datetime"})

        assert predicate == p.ge("ChangedDate", datetime(2024, 1, 1, tzinfo=timezone.utc))

    def test_in_operator_needs_values(self) -> None:
        assert parse_predicate({"field": "State", "op": "in", "values": ["New", "Active"]}) == p.in_("State", "New", "Active")
        with pytest.raises(InvalidQuerySpec):
            parse_predicate({"field": "State", "op": "in", "value": "New"})

    @pytest.mark.parametrize(
        "node",
        [
            "State eq 'x'",
            {"op": "eq", "value": 1},
            {"field": "State", "op": "like", "value": "x"},
            {"field": "State", "op": "eq", "value": ["x"]},
            {"field": "Id", "op": "eq", "value": "not-a-uuid", "type": "uuid"},
            {"field": "Id", "op": "eq", "value": "1", "type": "binary"},
            {"field": "Title", "op": "startswith", "value": 3},
        ],
    )
    def test_invalid_nodes_are_rejected(self, node: object) -> None:
        with pytest.raises(InvalidQuerySpec):
            parse_predicate(node)


class TestLoadDashboardQueries:
    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_dashboard_queries(config_path=str(tmp_path / "missing.json"))

    def test_reads_file(self, tmp_path: Path) -> None:
        path = tmp_path / "queries.json"
        path.write_text(json.dumps({"queries": [{"entity": "Users", "fields": ["UserName"]}]}), encoding="utf-8")

        specs = load_dashboard_queries(config_path=str(path))

        assert [spec.entity for spec in specs] == ["Users"]

    def test_bundled_queries_are_valid(self, builder: QueryBuilder) -> None:
        specs = load_dashboard_queries(config_path=str(BUNDLED_CONFIG))

        assert len(specs) == 3
        for spec in specs:
            builder.validate(spec)
        assert len({spec.key for spec in specs}) == 3
