"""Tests for report renderers and the JSON schema."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from tunesense.advisor.access_control import CompatibilityReport
from tunesense.advisor.report import (
    Recommendation,
    RecommendationAction,
    RecommendationReport,
    assemble_report,
)
from tunesense.config import AdvisorConfig
from tunesense.engine import AdvisoryService
from tunesense.output import (
    OutputFormat,
    ReportSchema,
    get_json_schema,
    render,
    render_json,
    render_markdown,
    render_text,
)
from tunesense.providers import SnapshotCatalog

FIXTURES = Path(__file__).parent / "fixtures"


def orders_report() -> RecommendationReport:
    catalog = SnapshotCatalog.from_file(FIXTURES / "orders_snapshot.yaml")
    return AdvisoryService(catalog, catalog, catalog, config=AdvisorConfig()).run("orders")


def blocked_report() -> RecommendationReport:
    rec = Recommendation(
        action=RecommendationAction.CREATE_PARTITION_PLAN,
        target="partition:events:range:created_at",
        description="range partition on created_at by year (2 buckets + DEFAULT)",
        ddl="CREATE TABLE events_partitioned (LIKE events INCLUDING ALL) PARTITION BY RANGE (created_at);",
        rationale=(("estimated_pruning_benefit", 1234.5), ("buckets", 3.0)),
        errors=("Partition key created_at is referenced by policy 'recent_only'",),
    )
    return RecommendationReport(
        table="events",
        snapshot_hash="abc123",
        config_hash="def456",
        advisor_version="0.3.0",
        recommendations=(rec,),
        shapes_analyzed=1,
    )


def empty_report() -> RecommendationReport:
    return assemble_report(
        table="ghost",
        snapshot_hash="0" * 16,
        config_hash="1" * 16,
        advisor_version="0.3.0",
        scores=[],
        verdicts=[],
        shapes=[],
        partition_plan=None,
        compatibility=CompatibilityReport(),
        warnings=["b warning", "a warning", "b warning"],
    )


class TestJson:
    def test_schema_round_trip(self) -> None:
        data = json.loads(render_json(orders_report()))
        schema = ReportSchema.model_validate(data)

        assert schema.version == "1.0"
        assert schema.table == "orders"
        assert schema.summary.index_recommendations == 1
        assert schema.summary.partition_recommended is False
        assert schema.summary.dropped_entries == 1
        assert schema.recommendations[0].rationale[0].name == "benefit"

    def test_no_run_dependent_fields(self) -> None:
        text = render_json(orders_report())
        for word in ("timestamp", "duration", "elapsed"):
            assert word not in text

    def test_blocked_flag(self) -> None:
        data = json.loads(render_json(blocked_report()))
        assert data["recommendations"][0]["blocked"] is True
        assert data["summary"]["blocked"] == 1

    def test_warnings_are_sorted_and_unique(self) -> None:
        data = json.loads(render_json(empty_report()))
        assert data["warnings"] == ["a warning", "b warning"]
        assert data["recommendations"] == []

    def test_json_schema_document(self) -> None:
        schema = get_json_schema()
        assert schema["title"] == "ReportSchema"
        assert "reproducibility" in schema["properties"]


class TestText:
    def test_sections(self) -> None:
        text = render_text(orders_report())
        assert "TuneSense Advisory Report: orders" in text
        assert "RECOMMENDATIONS" in text
        assert "CREATE INDEX idx_orders_user_id_transaction_date_" in text
        assert "NOTICES" in text
        assert "SELECT count(*) FROM orders" in text
        assert "Rejected candidates:" in text
        assert "Dropped workload entries: 1" in text

    def test_blocked_marker_and_error(self) -> None:
        text = render_text(blocked_report())
        assert "[1] BLOCKED range partition on created_at" in text
        assert "ERROR: Partition key created_at" in text
        assert "estimated_pruning_benefit: 1,234.5" in text

    def test_empty(self) -> None:
        text = render_text(empty_report())
        assert "No recommendations" in text
        assert "snapshot 0000000000000000  config 1111111111111111  v0.3.0" in text


class TestMarkdown:
    def test_blocked_headline(self) -> None:
        md = render_markdown(blocked_report())
        assert md.startswith("# TuneSense Advisory Report: `events`")
        assert "**Some recommendations are blocked by policy conflicts**" in md
        assert "```sql" in md
        assert "| `buckets` | 3 |" in md

    def test_empty(self) -> None:
        assert "**No recommendations**" in render_markdown(empty_report())


@pytest.mark.parametrize("fmt", list(OutputFormat))
def test_render_dispatch(fmt: OutputFormat) -> None:
    assert "events" in render(blocked_report(), fmt)
