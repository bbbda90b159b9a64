"""
Tests for the cost model.

Reference numbers for a 1M-row table with default parameters:
    pages           = 12,500
    full scan       = 12,500 * 1.0 + 1,000,000 * 0.01 = 22,500
    index (0.001)   = 1000 * 0.005 * log2(1e6) + 1000 * 0.0025 + 1000 * 4 ~= 4,102.2
"""

from __future__ import annotations

import math

import pytest

from tunesense.advisor.candidates import CandidateGenerator
from tunesense.advisor.cost import FULL_SCAN_REASON, CostModel
from tunesense.advisor.models import (
    ColumnStatistics,
    IndexCandidate,
    IndexKind,
    StatisticsSnapshot,
    TableStatistics,
)
from tunesense.advisor.predicates import PredicateAnalyzer
from tunesense.config import AdvisorConfig
from tunesense.diagnostics import Diagnostics
from tunesense.workload import WorkloadRecorder

ROWS = 1_000_000


def make_snapshot(write_rate: float | None = None) -> StatisticsSnapshot:
    return StatisticsSnapshot(
        TableStatistics("orders", ROWS, write_rate=write_rate),
        [
            ColumnStatistics("orders", "user_id", 1000, avg_width=8),
            ColumnStatistics("orders", "status", 2),
            ColumnStatistics("orders", "transaction_date", -0.1, avg_width=8),
        ],
    )


class Workload:
    """Shapes, predicates and frequencies for a list of (sql, calls)."""

    def __init__(self, *queries: tuple[str, int], snapshot: StatisticsSnapshot | None = None) -> None:
        self.config = AdvisorConfig()
        self.snapshot = snapshot or make_snapshot()
        recorder = WorkloadRecorder()
        for sql, calls in queries:
            recorder.record(sql, calls=calls)
        self.shapes = recorder.shapes()
        self.predicates = PredicateAnalyzer(self.config).analyze_all(self.shapes, self.snapshot)
        self.frequencies = {s.key: float(s.frequency) for s in self.shapes}

    def candidates(self) -> list[IndexCandidate]:
        return CandidateGenerator(self.config).generate(self.predicates, self.shapes)

    def score(self, model: CostModel, candidate: IndexCandidate, observed_writes: int | None = None):
        return model.estimate(
            candidate, self.snapshot, self.frequencies, self.shapes, self.predicates, observed_writes
        )


def single(column: str) -> IndexCandidate:
    return IndexCandidate("orders", IndexKind.SINGLE, (column,))


# =============================================================================
# Primitive costs
# =============================================================================


class TestPrimitiveCosts:
    def test_full_scan(self) -> None:
        model = CostModel(AdvisorConfig())
        assert model.pages(ROWS) == 12_500
        assert model.full_scan_cost(ROWS) == pytest.approx(22_500)

    def test_index_scan(self) -> None:
        model = CostModel(AdvisorConfig())
        expected = 1000 * 0.005 * math.log2(ROWS) + 1000 * 0.0025 + 1000 * 4
        assert model.index_scan_cost(ROWS, 0.001) == pytest.approx(expected)
        assert model.index_scan_cost(ROWS, 0.001) == pytest.approx(4102.2, abs=0.1)

    def test_index_scan_is_capped_at_full_scan(self) -> None:
        model = CostModel(AdvisorConfig())
        assert model.index_scan_cost(ROWS, 0.5) == pytest.approx(model.full_scan_cost(ROWS))

    def test_tiny_table_has_one_page(self) -> None:
        assert CostModel(AdvisorConfig()).pages(10) == 1

    def test_index_width(self) -> None:
        model = CostModel(AdvisorConfig())
        snapshot = make_snapshot()
        assert model.index_width(single("user_id"), snapshot) == 22
        composite = IndexCandidate("orders", IndexKind.COMPOSITE, ("user_id", "transaction_date"))
        assert model.index_width(composite, snapshot) == 30


# =============================================================================
# Shape verdicts
# =============================================================================


class TestShapeVerdicts:
    def test_unfiltered_aggregation_needs_full_scan(self) -> None:
        w = Workload(("SELECT count(*) FROM orders", 1))
        (shape,) = w.shapes
        verdict = CostModel(w.config).assess_shape(shape, w.predicates[shape.key], w.snapshot)
        assert verdict.full_scan_required
        assert verdict.reason.startswith(FULL_SCAN_REASON)

    def test_unselective_filter_needs_full_scan(self) -> None:
        w = Workload(("SELECT * FROM orders WHERE status = 'a'", 1))
        (shape,) = w.shapes
        verdict = CostModel(w.config).assess_shape(shape, w.predicates[shape.key], w.snapshot)
        assert verdict.full_scan_required
        assert verdict.combined_selectivity == pytest.approx(0.5)

    def test_selective_filter(self) -> None:
        w = Workload(("SELECT * FROM orders WHERE user_id = 1", 1))
        (shape,) = w.shapes
        verdict = CostModel(w.config).assess_shape(shape, w.predicates[shape.key], w.snapshot)
        assert not verdict.full_scan_required
        assert verdict.reason is None


# =============================================================================
# Benefit scores
# =============================================================================


class TestEstimate:
    def test_single_column_benefit(self) -> None:
        w = Workload(("SELECT * FROM orders WHERE user_id = 1", 1))
        score = w.score(CostModel(w.config), single("user_id"))

        assert score.benefit == pytest.approx(18_397.8, abs=0.1)
        assert score.maintenance_cost == pytest.approx(22.0)
        assert score.low_confidence
        assert score.recommended
        assert score.served_shapes == (w.shapes[0].key,)

    def test_frequency_weights_benefit(self) -> None:
        w = Workload(("SELECT * FROM orders WHERE user_id = 1", 10))
        score = w.score(CostModel(w.config), single("user_id"))
        assert score.benefit == pytest.approx(183_978, rel=1e-4)

    def test_index_cannot_serve_unrelated_shape(self) -> None:
        w = Workload(("SELECT * FROM orders WHERE user_id = 1", 1))
        score = w.score(CostModel(w.config), single("status"))
        assert not score.recommended
        assert score.served_shapes == ()
        assert score.rejection_reason == "serves no shape that an index scan would speed up"

    def test_no_recommendation_when_maintenance_exceeds_benefit(self) -> None:
        w = Workload(
            ("SELECT * FROM orders WHERE user_id = 1", 1),
            snapshot=make_snapshot(write_rate=1_000_000),
        )
        score = w.score(CostModel(w.config), single("user_id"))
        assert score.net_benefit <= 0
        assert not score.recommended
        assert "does not exceed maintenance cost" in score.rejection_reason

    def test_minimum_absolute_benefit(self) -> None:
        config = AdvisorConfig(min_absolute_benefit=50_000)
        w = Workload(("SELECT * FROM orders WHERE user_id = 1", 1))
        score = CostModel(config).estimate(
            single("user_id"), w.snapshot, w.frequencies, w.shapes, w.predicates
        )
        assert score.net_benefit > 0
        assert not score.recommended
        assert "below minimum" in score.rejection_reason

    def test_full_scan_shape_is_never_served(self) -> None:
        w = Workload(("SELECT count(*) FROM orders", 100))
        score = w.score(CostModel(w.config), single("user_id"))
        assert score.benefit == 0
        assert not score.recommended


class TestWriteRate:
    def test_explicit_statistic_wins(self) -> None:
        model = CostModel(AdvisorConfig())
        assert model.resolve_write_rate(make_snapshot(write_rate=5.0), 40) == (5.0, False)

    def test_observed_writes(self) -> None:
        model = CostModel(AdvisorConfig())
        assert model.resolve_write_rate(make_snapshot(), 40) == (40.0, False)

    def test_assumed_rate_is_low_confidence(self) -> None:
        diagnostics = Diagnostics()
        model = CostModel(AdvisorConfig(), diagnostics)
        assert model.resolve_write_rate(make_snapshot(), None) == (100.0, True)
        assert "assuming 100 writes" in diagnostics.messages()[0]


# =============================================================================
# Ranking
# =============================================================================


class TestRank:
    def test_composite_outranks_single(self) -> None:
        w = Workload(("SELECT * FROM orders WHERE user_id = 1 AND transaction_date >= $1", 1))
        model = CostModel(w.config)
        scores = [w.score(model, c, observed_writes=100) for c in w.candidates()]
        ranked = model.rank(scores)

        top, second = ranked[0], ranked[1]
        assert top.candidate.columns == ("user_id", "transaction_date")
        assert top.recommended
        assert top.benefit == pytest.approx(21_132.6, abs=0.5)
        assert top.maintenance_cost == pytest.approx(30.0)

        assert second.candidate.columns == ("user_id",)
        assert not second.recommended
        assert second.rejection_reason == f"subsumed by {top.candidate.index_name}"

    def test_composite_outranks_single_across_shapes(self) -> None:
        w = Workload(
            ("SELECT * FROM orders WHERE user_id = $1 AND transaction_date >= $2", 500),
            ("SELECT id, status FROM orders WHERE user_id = $1 AND transaction_date BETWEEN $2 AND $3", 400),
        )
        model = CostModel(w.config)
        scores = [w.score(model, c, observed_writes=100) for c in w.candidates()]
        by_columns = {s.candidate.columns: s for s in scores}
        composite = by_columns[("user_id", "transaction_date")]
        alone = by_columns[("user_id",)]

        assert len(composite.served_shapes) == 2
        assert len(alone.served_shapes) == 2
        assert composite.benefit > alone.benefit

        ranked = model.rank(scores)
        assert ranked[0].candidate.columns == ("user_id", "transaction_date")
        assert ranked[0].recommended
        demoted = next(s for s in ranked if s.candidate.columns == ("user_id",))
        assert not demoted.recommended
        assert demoted.rejection_reason == f"subsumed by {ranked[0].candidate.index_name}"

    def test_rank_is_deterministic(self) -> None:
        w = Workload(
            ("SELECT * FROM orders WHERE user_id = 1", 1),
            ("SELECT * FROM orders WHERE user_id = 1 AND transaction_date >= $1", 3),
        )
        model = CostModel(w.config)
        scores = [w.score(model, c, observed_writes=10) for c in w.candidates()]
        first = [s.candidate.identity for s in model.rank(scores)]
        second = [s.candidate.identity for s in model.rank(list(reversed(scores)))]
        assert first == second
