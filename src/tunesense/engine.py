"""
AdvisoryService - orchestration layer for TuneSense.

The single entry point for advisory runs. The CLI and any embedding
application should use this service rather than wiring the stages
themselves.

One run is a pure pipeline over immutable snapshots:

    workload sample -> shapes -> predicates -> candidates
        -> cost model  ┐ (concurrently)
        -> partitioning┘
        -> access-control check -> report

The whole pipeline, provider pulls included, executes in a worker thread
bounded by the caller's timeout. Stages check a cancellation event
between steps; a run that misses its deadline raises TimedOutError and
produces no report.

With a WorkloadHistory attached, a run reads the stored frequencies to
weight its sample and then folds the sample back in. Persisting the
history (history.save()) is left to the caller.

Usage:
    from tunesense.engine import AdvisoryService
    from tunesense.providers import SnapshotCatalog

    catalog = SnapshotCatalog.from_file("snapshot.yaml")
    service = AdvisoryService(catalog, catalog, catalog)

    report = service.run("orders", timeout=10.0)
    batch = service.run_many(["orders", "events"], timeout=10.0)
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, replace
from typing import Sequence

from tunesense.advisor.access_control import CompatibilityChecker
from tunesense.advisor.candidates import CandidateGenerator
from tunesense.advisor.cost import CostModel
from tunesense.advisor.models import (
    BenefitScore,
    ColumnStatistics,
    PartitionPlan,
    QueryShape,
    ShapeCostVerdict,
    StatisticsSnapshot,
    TableStatistics,
)
from tunesense.advisor.partitioning import PartitioningAdvisor, build_profile
from tunesense.advisor.predicates import PredicateAnalyzer
from tunesense.advisor.report import RecommendationReport, assemble_report
from tunesense.config import AdvisorConfig, get_config
from tunesense.diagnostics import Diagnostics
from tunesense.exceptions import MissingStatisticsError, TimedOutError, TuneSenseError
from tunesense.history import WorkloadHistory
from tunesense.observability import AdvisorMetrics, Tracer
from tunesense.providers import PolicyProvider, StatisticsProvider, WorkloadSource
from tunesense.workload.recorder import WorkloadRecorder

logger = logging.getLogger(__name__)


class _RunCancelled(Exception):
    """Raised inside a worker once its run has been abandoned."""


@dataclass(frozen=True)
class BatchAdvisory:
    """Reports and failures of run_many, both ordered by table name."""

    reports: tuple[RecommendationReport, ...] = ()
    failures: tuple[tuple[str, TuneSenseError], ...] = ()

    @property
    def succeeded(self) -> bool:
        return len(self.failures) == 0

    def report_for(self, table: str) -> RecommendationReport | None:
        for report in self.reports:
            if report.table == table:
                return report
        return None


class _RunState:
    """Cancellation flag and current stage of one run."""

    def __init__(self, table: str) -> None:
        self.table = table
        self.cancelled = threading.Event()
        self.stage: str | None = None
        self.shapes: list[QueryShape] = []

    def enter(self, stage: str) -> None:
        if self.cancelled.is_set():
            raise _RunCancelled(stage)
        self.stage = stage

    def check(self) -> None:
        if self.cancelled.is_set():
            raise _RunCancelled(self.stage)


class AdvisoryService:
    """
    Runs index and partition advisory passes for tables.

    Thread-safe: concurrent runs share only the read-only providers,
    configuration and the (locked) metrics.
    """

    def __init__(
        self,
        statistics: StatisticsProvider,
        policies: PolicyProvider,
        workload: WorkloadSource,
        config: AdvisorConfig | None = None,
        history: WorkloadHistory | None = None,
        metrics: AdvisorMetrics | None = None,
        tracing_enabled: bool = False,
    ) -> None:
        self.statistics = statistics
        self.policies = policies
        self.workload = workload
        self.config = config or get_config()
        self.history = history
        self.metrics = metrics if metrics is not None else AdvisorMetrics()
        self.tracing_enabled = tracing_enabled

    def run(self, table: str, timeout: float | None = None) -> RecommendationReport:
        """
        Produce a RecommendationReport for one table.

        Recoverable problems never raise; they surface as report
        warnings. Exceptions raised by a provider propagate unchanged.

        The pipeline runs in a daemon thread. After a timeout that thread
        stops at its next stage check; a provider call that never returns
        keeps it alive but does not hold up interpreter exit.

        The attached history is only updated by runs that return a report.

        Raises:
            TimedOutError: the run did not finish within `timeout` seconds
                (default: config.run_timeout_seconds).
        """
        timeout = self.config.run_timeout_seconds if timeout is None else timeout
        state = _RunState(table)
        future: Future[RecommendationReport] = Future()
        worker = threading.Thread(
            target=self._work, args=(state, future), name=f"tunesense-{table}", daemon=True
        )
        worker.start()
        try:
            report = future.result(timeout=timeout)
        except FutureTimeoutError:
            state.cancelled.set()
            self.metrics.record_timeout(table)
            logger.warning(
                "Advisory run for %s timed out after %.2fs during %s",
                table, timeout, state.stage,
            )
            raise TimedOutError(table, timeout, state.stage) from None
        except TuneSenseError:
            self.metrics.record_failure(table)
            raise

        # Weights for this run were read in the pipeline; fold the sample in for the next one
        if self.history is not None:
            self.history.update(table, state.shapes)
        return report

    def _work(self, state: _RunState, future: Future[RecommendationReport]) -> None:
        future.set_running_or_notify_cancel()
        try:
            future.set_result(self._pipeline(state))
        except Exception as e:
            future.set_exception(e)

    def run_many(self, tables: Sequence[str], timeout: float | None = None) -> BatchAdvisory:
        """Run independent tables in parallel, bounded by max_parallel_runs."""
        reports: list[RecommendationReport] = []
        failures: list[tuple[str, TuneSenseError]] = []
        unique = sorted(set(tables))

        with ThreadPoolExecutor(
            max_workers=self.config.max_parallel_runs,
            thread_name_prefix="tunesense-batch",
        ) as pool:
            futures = {table: pool.submit(self.run, table, timeout) for table in unique}
            for table in unique:
                try:
                    reports.append(futures[table].result())
                except TuneSenseError as e:
                    logger.warning("Advisory run for %s failed: %s", table, e.message)
                    failures.append((table, e))

        return BatchAdvisory(reports=tuple(reports), failures=tuple(failures))

    # ── Pipeline ──────────────────────────────────────────────────────────

    def _pipeline(self, state: _RunState) -> RecommendationReport:
        start = time.perf_counter()
        table = state.table
        config = self.config
        diagnostics = Diagnostics()
        tracer = Tracer(enabled=self.tracing_enabled)
        tracer.start_span("advise", table=table)

        try:
            # Step 1: Sample and normalize the workload
            state.enter("workload")
            tracer.start_span("workload")
            recorder = WorkloadRecorder()
            entries = self.workload.sample_recent_queries(table, config.workload_window_seconds)
            state.check()
            batch = recorder.record_batch(entries)
            diagnostics.extend(list(batch.errors))
            shapes = recorder.shapes(table)
            observed_writes = recorder.write_count(table)
            tracer.end_span()

            # Step 2: Pull one immutable statistics snapshot
            state.enter("statistics")
            tracer.start_span("statistics")
            snapshot = self._snapshot(table, shapes, diagnostics, state)
            tracer.end_span()

            # Step 3: Policies
            state.enter("policies")
            policies = tuple(self.policies.list_policies(table))

            frequencies = self._frequencies(table, shapes)

            # Step 4: Predicates
            state.enter("predicates")
            analyzer = PredicateAnalyzer(config, diagnostics)
            predicates = analyzer.analyze_all(shapes, snapshot)

            # Step 5: Candidates
            state.enter("candidates")
            candidates = CandidateGenerator(config).generate(predicates, shapes)

            # Step 6: Cost model and partitioning, concurrently
            state.enter("cost_and_partitioning")
            tracer.start_span("cost_and_partitioning", candidates=len(candidates))
            cost_model = CostModel(config, diagnostics)
            growth_rate = self._growth_rate(snapshot, observed_writes)
            with ThreadPoolExecutor(max_workers=2, thread_name_prefix=f"tunesense-{table}-stage") as pool:
                cost_future = pool.submit(
                    self._score, cost_model, candidates, snapshot, frequencies,
                    shapes, predicates, observed_writes, state,
                )
                plan_future = pool.submit(
                    self._partition, shapes, predicates, snapshot, frequencies, growth_rate, state,
                )
                verdicts, scores = cost_future.result()
                plan = plan_future.result()
            tracer.end_span()

            # Step 7: Access control
            state.enter("access_control")
            recommended = [s.candidate for s in scores if s.recommended]
            compatibility = CompatibilityChecker().check(recommended, policies, plan)

            # Step 8: Report
            state.enter("report")
            report = assemble_report(
                table=table,
                snapshot_hash=snapshot.content_hash,
                config_hash=config.config_hash(),
                advisor_version=config.advisor_version,
                scores=scores,
                verdicts=verdicts,
                shapes=shapes,
                partition_plan=plan,
                compatibility=compatibility,
                warnings=diagnostics.messages(),
                dropped_entries=batch.dropped,
                write_entries=batch.writes,
            )
            state.check()
            state.shapes = list(shapes)
        finally:
            tracer.end_span()
            trace = tracer.get_trace()
            if trace:
                logger.debug("Advisory trace: %s", trace)

        duration_ms = (time.perf_counter() - start) * 1000
        self.metrics.record_run(duration_ms, len(report.recommendations), report.dropped_entries)
        logger.info(
            "Advised %s: %d shapes, %d recommendations, %d warnings",
            table, report.shapes_analyzed, len(report.recommendations), len(report.warnings),
        )
        return report

    def _snapshot(
        self,
        table: str,
        shapes: Sequence[QueryShape],
        diagnostics: Diagnostics,
        state: _RunState,
    ) -> StatisticsSnapshot:
        table_stats = self.statistics.get_table_statistics(table)
        state.check()
        if table_stats is None:
            diagnostics.add(MissingStatisticsError(table, "*"))
            table_stats = TableStatistics(table=table, row_count=0)

        targets: set[str] = set()
        for shape in shapes:
            for term in shape.terms:
                targets.add(term.target)
                targets.add(term.column)

        columns: list[ColumnStatistics] = []
        for target in sorted(targets):
            stats = self.statistics.get_column_statistics(table, target)
            state.check()
            if stats is None:
                continue
            if stats.column != target:
                stats = replace(stats, column=target)
            columns.append(stats)
        return StatisticsSnapshot(table_stats, columns)

    def _frequencies(self, table: str, shapes: Sequence[QueryShape]) -> dict[str, float]:
        if self.history is not None:
            return self.history.weighted_frequencies(table, shapes)
        return {s.key: float(s.frequency) for s in shapes}

    def _growth_rate(self, snapshot: StatisticsSnapshot, observed_writes: int) -> float:
        """Writes per window relative to the table size, as a growth proxy."""
        rows = snapshot.row_count
        if rows <= 0:
            return 0.0
        rate = snapshot.table.write_rate
        if rate is None:
            rate = float(observed_writes)
        return rate / rows

    def _score(
        self,
        model: CostModel,
        candidates,
        snapshot: StatisticsSnapshot,
        frequencies: dict[str, float],
        shapes: Sequence[QueryShape],
        predicates,
        observed_writes: int,
        state: _RunState,
    ) -> tuple[list[ShapeCostVerdict], list[BenefitScore]]:
        verdicts = [model.assess_shape(s, predicates.get(s.key, ()), snapshot) for s in shapes]
        scores: list[BenefitScore] = []
        for candidate in candidates:
            state.check()
            scores.append(model.estimate(
                candidate, snapshot, frequencies, shapes, predicates,
                observed_writes=observed_writes or None,
            ))
        return verdicts, model.rank(scores)

    def _partition(
        self,
        shapes: Sequence[QueryShape],
        predicates,
        snapshot: StatisticsSnapshot,
        frequencies: dict[str, float],
        growth_rate: float,
        state: _RunState,
    ) -> PartitionPlan | None:
        state.check()
        profile = build_profile(shapes, predicates, snapshot, frequencies, growth_rate, self.config)
        state.check()
        return PartitioningAdvisor(self.config).advise(profile)
