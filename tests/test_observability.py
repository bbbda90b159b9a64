"""Tests for stage tracing and run metrics."""

from __future__ import annotations

from tunesense.observability import AdvisorMetrics, InMemoryMetricsExporter, Tracer


class TestObservability:
    def test_tracer_builds_a_tree(self) -> None:
        tracer = Tracer()
        tracer.start_span("advise", table="orders")
        tracer.start_span("workload")
        assert tracer.current == "workload"
        tracer.end_span()
        tracer.end_span()

        trace = tracer.get_trace()
        assert trace["name"] == "advise"
        assert trace["attributes"] == {"table": "orders"}
        assert [c["name"] for c in trace["children"]] == ["workload"]

    def test_disabled_tracer(self) -> None:
        tracer = Tracer(enabled=False)
        tracer.start_span("advise")
        tracer.end_span()
        assert tracer.get_trace() is None

    def test_metrics_exporter(self) -> None:
        exporter = InMemoryMetricsExporter()
        metrics = AdvisorMetrics(_exporter=exporter)
        metrics.record_run(12.0, recommendations=2, dropped_entries=1)
        metrics.record_timeout("orders")

        assert exporter.get_counter("runs_total", {"outcome": "ok"}) == 1
        assert exporter.get_counter("runs_total", {"outcome": "timeout"}) == 1
        assert exporter.get_histogram("run_duration_ms") == [12.0]
        assert metrics.to_dict()["recommendations_total"] == 2
        assert metrics.avg_duration_ms == 12.0
