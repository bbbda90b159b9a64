"""
End-to-end tests for AdvisoryService.

Runs use the snapshot fixture in tests/fixtures and small in-memory
catalogs; nothing here touches a database.
"""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from tunesense.advisor.models import TableStatistics
from tunesense.advisor.report import RecommendationAction
from tunesense.config import AdvisorConfig
from tunesense.engine import AdvisoryService
from tunesense.exceptions import TimedOutError
from tunesense.history import WorkloadHistory
from tunesense.observability import AdvisorMetrics
from tunesense.output import render_batch_json, render_json
from tunesense.providers import SnapshotCatalog

FIXTURES = Path(__file__).parent / "fixtures"


def load_catalog() -> SnapshotCatalog:
    return SnapshotCatalog.from_file(FIXTURES / "orders_snapshot.yaml")


def make_service(catalog=None, **kwargs) -> AdvisoryService:
    catalog = catalog or load_catalog()
    kwargs.setdefault("config", AdvisorConfig())
    return AdvisoryService(catalog, catalog, catalog, **kwargs)


def jobs_catalog(policy: str) -> SnapshotCatalog:
    return SnapshotCatalog.from_dict({
        "tables": {
            "jobs": {
                "row_count": 1_000_000,
                "columns": {
                    "errors": {"distinct_count": 100, "null_fraction": 0.05},
                    "queue": {"distinct_count": 10},
                },
                "policies": [{"name": "visible_errors", "role": "analyst", "predicate": policy}],
                "workload": [
                    {"query": "SELECT * FROM jobs WHERE errors IS NULL AND queue = 'mail'", "calls": 10},
                ],
            }
        }
    })


class StallingStatistics:
    """StatisticsProvider that blocks until released."""

    def __init__(self, inner: SnapshotCatalog, stall_tables: set[str]) -> None:
        self.inner = inner
        self.stall_tables = stall_tables
        self.release = threading.Event()

    def get_table_statistics(self, table: str) -> TableStatistics | None:
        if table in self.stall_tables:
            self.release.wait(timeout=5)
        return self.inner.get_table_statistics(table)

    def get_column_statistics(self, table: str, column: str):
        return self.inner.get_column_statistics(table, column)


class FailingWorkload:
    def sample_recent_queries(self, table: str, window: int):
        raise RuntimeError("query log unavailable")


# =============================================================================
# Single runs
# =============================================================================


class TestRun:
    def test_orders_recommendations(self) -> None:
        report = make_service().run("orders")

        (rec,) = report.recommendations
        assert rec.action == RecommendationAction.CREATE_INDEX
        assert rec.description == "composite (user_id, transaction_date)"
        assert rec.ddl.startswith("CREATE INDEX idx_orders_user_id_transaction_date_")
        assert rec.low_confidence
        assert dict(rec.rationale)["net_benefit"] > 0

        (subsumed,) = report.rejected
        assert subsumed.description == "single (user_id)"
        assert subsumed.reason == f"subsumed by {rec.target}"

    def test_unfiltered_aggregation_notice(self) -> None:
        report = make_service().run("orders")
        (notice,) = report.notices
        assert notice.normalized_text == "SELECT count(*) FROM orders"
        assert notice.message.startswith("no indexing benefit")

    def test_workload_counters_and_warnings(self) -> None:
        report = make_service().run("orders")
        assert report.shapes_analyzed == 2
        assert report.dropped_entries == 1
        assert report.write_entries == 100
        assert any("OR predicates are unsupported" in w for w in report.warnings)

    def test_range_partition_plan(self) -> None:
        report = make_service().run("events")
        plan = report.partition_recommendation
        assert plan is not None
        assert plan.target == "partition:events:range:created_at"
        assert "by year" in plan.description
        assert dict(plan.rationale)["estimated_pruning_benefit"] > 0
        assert report.index_recommendations == []

    def test_every_recommendation_has_positive_net_benefit(self) -> None:
        service = make_service()
        for table in ("orders", "events"):
            for rec in service.run(table).index_recommendations:
                assert dict(rec.rationale)["net_benefit"] > 0

    def test_identical_inputs_give_identical_json(self) -> None:
        first = render_json(make_service().run("orders"))
        second = render_json(make_service().run("orders"))
        assert first == second

    def test_missing_table_statistics(self) -> None:
        catalog = SnapshotCatalog.from_dict({"tables": {}})
        report = make_service(catalog).run("ghost")
        assert report.recommendations == ()
        assert any("No statistics for ghost.*" in w for w in report.warnings)

    def test_provider_errors_propagate(self) -> None:
        catalog = load_catalog()
        service = AdvisoryService(catalog, catalog, FailingWorkload(), config=AdvisorConfig())
        with pytest.raises(RuntimeError, match="query log unavailable"):
            service.run("orders")

    def test_metrics(self) -> None:
        metrics = AdvisorMetrics()
        make_service(metrics=metrics).run("orders")
        assert metrics.runs_total == 1
        assert metrics.recommendations_total == 1
        assert metrics.dropped_entries_total == 1


# =============================================================================
# Access control
# =============================================================================


class TestPolicies:
    def test_contradicting_partial_index_is_a_warning_not_an_error(self) -> None:
        report = make_service(jobs_catalog("errors IS NOT NULL")).run("jobs")

        (rec,) = report.recommendations
        assert rec.description == "partial (queue) WHERE errors IS NULL"
        assert rec.errors == ()
        assert any("contradicts policy 'visible_errors'" in w for w in rec.warnings)
        assert not report.has_errors

    def test_policy_on_partition_key_blocks_plan(self) -> None:
        catalog = load_catalog()
        blocked = SnapshotCatalog.from_dict({
            "tables": {
                "events": {
                    "row_count": 2_000_000,
                    "columns": {
                        "created_at": {
                            "distinct_count": -0.5,
                            "histogram": [["2023-01-01", 0.0], ["2024-12-31", 1.0]],
                        }
                    },
                    "policies": [
                        {"name": "recent_only", "role": "support", "predicate": "created_at >= '2024-01-01'"}
                    ],
                    "workload": [{"query": "SELECT * FROM events WHERE created_at >= '2024-06-01'", "calls": 20}],
                }
            }
        })
        report = AdvisoryService(catalog, blocked, blocked, config=AdvisorConfig()).run("events")

        plan = report.partition_recommendation
        assert plan.blocked
        assert "recent_only" in plan.errors[0]
        assert report.has_errors


# =============================================================================
# Timeouts and batches
# =============================================================================


class TestTimeouts:
    def test_stalled_provider_times_out(self) -> None:
        catalog = load_catalog()
        stalling = StallingStatistics(catalog, {"orders"})
        metrics = AdvisorMetrics()
        service = AdvisoryService(stalling, catalog, catalog, config=AdvisorConfig(), metrics=metrics)
        try:
            with pytest.raises(TimedOutError) as exc_info:
                service.run("orders", timeout=0.1)
        finally:
            stalling.release.set()

        error = exc_info.value
        assert error.table == "orders"
        assert error.stage == "statistics"
        assert metrics.timeouts_total == 1
        assert metrics.runs_total == 0

    def test_stalled_worker_is_a_daemon(self) -> None:
        catalog = load_catalog()
        stalling = StallingStatistics(catalog, {"orders"})
        service = AdvisoryService(stalling, catalog, catalog, config=AdvisorConfig())
        try:
            with pytest.raises(TimedOutError):
                service.run("orders", timeout=0.05)
            workers = [t for t in threading.enumerate() if t.name == "tunesense-orders"]
            assert workers
            assert all(t.daemon for t in workers)
        finally:
            stalling.release.set()

    def test_timed_out_run_leaves_history_untouched(self, tmp_path: Path) -> None:
        catalog = load_catalog()
        stalling = StallingStatistics(catalog, {"orders"})
        history = WorkloadHistory(tmp_path / "history.json")
        service = AdvisoryService(stalling, catalog, catalog, config=AdvisorConfig(), history=history)
        with pytest.raises(TimedOutError):
            service.run("orders", timeout=0.05)

        stalling.release.set()
        for worker in [t for t in threading.enumerate() if t.name == "tunesense-orders"]:
            worker.join(timeout=5)
        assert history.frequencies("orders") == {}

    def test_default_timeout_from_config(self) -> None:
        catalog = load_catalog()
        stalling = StallingStatistics(catalog, {"orders"})
        config = AdvisorConfig(run_timeout_seconds=0.1)
        service = AdvisoryService(stalling, catalog, catalog, config=config)
        try:
            with pytest.raises(TimedOutError):
                service.run("orders")
        finally:
            stalling.release.set()


class TestRunMany:
    def test_tables_are_sorted_and_deduplicated(self) -> None:
        batch = make_service().run_many(["orders", "events", "orders"])
        assert batch.succeeded
        assert [r.table for r in batch.reports] == ["events", "orders"]
        assert batch.report_for("orders") is not None
        assert batch.report_for("missing") is None

    def test_one_timeout_does_not_fail_the_batch(self) -> None:
        catalog = load_catalog()
        stalling = StallingStatistics(catalog, {"orders"})
        service = AdvisoryService(stalling, catalog, catalog, config=AdvisorConfig())
        try:
            batch = service.run_many(["orders", "events"], timeout=0.2)
        finally:
            stalling.release.set()

        assert not batch.succeeded
        assert [r.table for r in batch.reports] == ["events"]
        ((table, error),) = batch.failures
        assert table == "orders"
        assert isinstance(error, TimedOutError)
        assert '"error_type": "TimedOutError"' in render_batch_json(batch)


# =============================================================================
# History
# =============================================================================


class TestHistory:
    def test_run_folds_sample_into_history(self, tmp_path: Path) -> None:
        history = WorkloadHistory(tmp_path / "history.json")
        make_service(history=history).run("orders")

        stored = history.frequencies("orders")
        assert sorted(stored.values()) == [5.0, 50.0]
        assert not (tmp_path / "history.json").exists()

    def test_history_weights_the_next_run(self, tmp_path: Path) -> None:
        path = tmp_path / "history.json"
        history = WorkloadHistory(path, weight=0.5, decay=0.5)
        make_service(history=history).run("orders")
        history.save()

        reloaded = WorkloadHistory(path, weight=0.5, decay=0.5)
        report = make_service(history=reloaded).run("orders")
        rec = report.recommendations[0]
        shape_items = [v for name, v in rec.rationale if name.startswith("shape:")]
        # 50 current calls + 0.5 * 50 stored
        single_run = make_service().run("orders").recommendations[0]
        single_items = [v for name, v in single_run.rationale if name.startswith("shape:")]
        assert shape_items[0] == pytest.approx(single_items[0] * 1.5, rel=1e-6)
        assert sorted(reloaded.frequencies("orders").values()) == [7.5, 75.0]
