"""
Cost model and benefit estimator.

Uses PostgreSQL's cost parameters (configurable, see AdvisorConfig):
- seq_page_cost = 1.0 (sequential I/O)
- random_page_cost = 4.0 (random I/O, HDD default)
- cpu_tuple_cost = 0.01
- cpu_index_tuple_cost = 0.005

Full scan:
    pages * seq_page_cost + rows * cpu_tuple_cost

Index scan (capped at the full scan; the planner would not pick a worse
index):
    matching * cpu_index_tuple_cost * log2(rows)    sorted-structure lookup
  + matching * index_entry_overhead
  + min(matching, pages) * random_page_cost         heap fetch

Benefit is the frequency-weighted sum of (full - indexed) over the shapes
a candidate can serve; maintenance is write_rate * index entry width *
cost per byte.
"""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import Mapping, Sequence

from tunesense.advisor.models import (
    BenefitScore,
    IndexCandidate,
    IndexKind,
    Predicate,
    PredicateOperator,
    QueryShape,
    ShapeCostVerdict,
    StatisticsSnapshot,
)
from tunesense.advisor.predicates import combined_selectivity
from tunesense.config import AdvisorConfig, get_config
from tunesense.diagnostics import Diagnostics
from tunesense.exceptions import TuneSenseError

logger = logging.getLogger(__name__)

# Each index entry: key data + 6 bytes tuple pointer + 8 bytes overhead
TUPLE_POINTER_BYTES = 6
INDEX_TUPLE_OVERHEAD_BYTES = 8

FULL_SCAN_REASON = "no indexing benefit: full scan required"


class CostModel:
    """
    Scores index candidates against a workload.

    Usage:
        model = CostModel(config)
        score = model.estimate(candidate, snapshot, frequencies, shapes, predicates)
    """

    def __init__(
        self,
        config: AdvisorConfig | None = None,
        diagnostics: Diagnostics | None = None,
    ) -> None:
        self.config = config or get_config()
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics()

    # -- primitive costs ----------------------------------------------------

    def pages(self, rows: int) -> int:
        return max(1, rows // self.config.rows_per_page)

    def full_scan_cost(self, rows: int) -> float:
        """Cost = (pages * seq_page_cost) + (rows * cpu_tuple_cost)."""
        c = self.config
        return self.pages(rows) * c.seq_page_cost + rows * c.cpu_tuple_cost

    def index_scan_cost(self, rows: int, selectivity: float) -> float:
        c = self.config
        matching = max(0.0, selectivity) * rows
        lookup = matching * c.cpu_index_tuple_cost * math.log2(max(2, rows))
        overhead = matching * c.index_entry_overhead
        heap = min(matching, self.pages(rows)) * c.random_page_cost
        return min(lookup + overhead + heap, self.full_scan_cost(rows))

    def index_width(self, candidate: IndexCandidate, stats: StatisticsSnapshot) -> int:
        """Bytes per index entry: key widths + tuple pointer + overhead."""
        width = 0
        for column in candidate.key_columns:
            col = stats.column(column)
            if col is not None and col.avg_width:
                width += col.avg_width
            else:
                width += self.config.default_column_width
        return width + TUPLE_POINTER_BYTES + INDEX_TUPLE_OVERHEAD_BYTES

    # -- serving rules ------------------------------------------------------

    def serving_selectivity(
        self,
        candidate: IndexCandidate,
        predicates: Sequence[Predicate],
    ) -> tuple[float, bool] | None:
        """
        Fraction of rows the index reads for a shape, or None when the
        index cannot serve it.

        Returns:
            (selectivity, low_confidence)
        """
        if candidate.kind == IndexKind.EXPRESSION:
            target = candidate.columns[0]
            matches = [
                p for p in predicates
                if p.target == target and p.operator != PredicateOperator.NULL_CHECK
            ]
            if not matches:
                return None
            best = min(matches, key=lambda p: p.estimated_selectivity)
            return best.estimated_selectivity, best.low_confidence

        if candidate.kind == IndexKind.PARTIAL:
            nulls = [
                p for p in predicates
                if p.operator == PredicateOperator.NULL_CHECK and p.text == candidate.predicate
            ]
            if not nulls:
                return None
            null_pred = nulls[0]
            prefix = _leftmost_prefix(candidate.columns, predicates, exclude=null_pred.column)
            sel, low, _ = prefix
            return null_pred.estimated_selectivity * sel, low or null_pred.low_confidence

        sel, low, consumed = _leftmost_prefix(candidate.columns, predicates)
        if consumed == 0:
            return None
        return sel, low

    # -- verdicts and scores ------------------------------------------------

    def assess_shape(
        self,
        shape: QueryShape,
        predicates: Sequence[Predicate],
        stats: StatisticsSnapshot,
    ) -> ShapeCostVerdict:
        """Flag shapes no index can help (unfiltered or unselective)."""
        full = self.full_scan_cost(stats.row_count)
        combined = combined_selectivity(predicates) if shape.has_filter else 1.0
        if not shape.has_filter:
            return ShapeCostVerdict(shape.key, full, 1.0, True, f"{FULL_SCAN_REASON} (no filter)")
        if combined >= self.config.full_scan_selectivity_threshold:
            return ShapeCostVerdict(
                shape.key, full, combined, True,
                f"{FULL_SCAN_REASON} (combined selectivity {combined:.3f})",
            )
        return ShapeCostVerdict(shape.key, full, combined)

    def resolve_write_rate(
        self,
        stats: StatisticsSnapshot,
        observed_writes: int | None,
    ) -> tuple[float, bool]:
        """
        Write rate for maintenance cost: explicit statistic, then writes
        observed in the workload sample, then the configured assumption
        (low-confidence).
        """
        if stats.table.write_rate is not None:
            return float(stats.table.write_rate), False
        if observed_writes:
            return float(observed_writes), False
        self.diagnostics.add(TuneSenseError(
            f"No write rate for {stats.table.table}; assuming "
            f"{self.config.assumed_write_rate:g} writes per window (low-confidence)"
        ))
        return self.config.assumed_write_rate, True

    def estimate(
        self,
        candidate: IndexCandidate,
        stats: StatisticsSnapshot,
        shape_frequencies: Mapping[str, float],
        shapes: Sequence[QueryShape],
        predicates: Mapping[str, Sequence[Predicate]],
        observed_writes: int | None = None,
    ) -> BenefitScore:
        rows = stats.row_count
        full = self.full_scan_cost(rows)
        low_confidence = candidate.low_confidence

        served: list[str] = []
        deltas: list[tuple[str, float]] = []
        benefit = 0.0
        for shape in shapes:
            shape_preds = predicates.get(shape.key, ())
            if self.assess_shape(shape, shape_preds, stats).full_scan_required:
                continue
            serving = self.serving_selectivity(candidate, shape_preds)
            if serving is None:
                continue
            selectivity, low = serving
            delta = full - self.index_scan_cost(rows, selectivity)
            if delta <= 0:
                continue
            weighted = shape_frequencies.get(shape.key, shape.frequency) * delta
            served.append(shape.key)
            deltas.append((shape.key, round(weighted, 6)))
            benefit += weighted
            low_confidence = low_confidence or low

        write_rate, assumed = self.resolve_write_rate(stats, observed_writes)
        maintenance = write_rate * self.index_width(candidate, stats) * self.config.maintenance_cost_per_byte

        recommended, reason = self._verdict(benefit, maintenance, served)
        return BenefitScore(
            candidate=candidate,
            benefit=round(benefit, 6),
            maintenance_cost=round(maintenance, 6),
            served_shapes=tuple(served),
            shape_deltas=tuple(deltas),
            write_rate=write_rate,
            low_confidence=low_confidence or assumed,
            recommended=recommended,
            rejection_reason=reason,
        )

    def _verdict(self, benefit: float, maintenance: float, served: list[str]) -> tuple[bool, str | None]:
        if not served:
            return False, "serves no shape that an index scan would speed up"
        if benefit - maintenance <= 0:
            return False, f"benefit {benefit:.1f} does not exceed maintenance cost {maintenance:.1f}"
        if benefit < self.config.min_absolute_benefit:
            return False, (
                f"benefit {benefit:.1f} below minimum {self.config.min_absolute_benefit:.1f}"
            )
        return True, None

    def rank(self, scores: Sequence[BenefitScore]) -> list[BenefitScore]:
        """
        Order scores by net benefit and reject redundant indexes.

        A single/composite candidate whose columns are a leftmost prefix
        of a higher-ranked accepted candidate is subsumed by it.
        """
        ordered = sorted(scores, key=lambda s: (-s.net_benefit, s.candidate.identity))
        accepted: list[IndexCandidate] = []
        result: list[BenefitScore] = []
        for score in ordered:
            candidate = score.candidate
            if score.recommended and candidate.kind in (IndexKind.SINGLE, IndexKind.COMPOSITE):
                wider = next(
                    (a for a in accepted if _is_prefix(candidate.columns, a.columns)), None
                )
                if wider is not None:
                    score = replace(
                        score,
                        recommended=False,
                        rejection_reason=f"subsumed by {wider.index_name}",
                    )
                else:
                    accepted.append(candidate)
            result.append(score)
        return result


def _is_prefix(columns: tuple[str, ...], other: tuple[str, ...]) -> bool:
    return len(columns) <= len(other) and other[: len(columns)] == columns


def _leftmost_prefix(
    columns: tuple[str, ...],
    predicates: Sequence[Predicate],
    exclude: str | None = None,
) -> tuple[float, bool, int]:
    """
    Walk index columns left to right: any number of equality columns,
    then at most one range column.

    Returns:
        (product of consumed selectivities, any low-confidence, columns consumed)
    """
    equality: dict[str, Predicate] = {}
    ranges: dict[str, Predicate] = {}
    for p in predicates:
        if p.is_expression or p.column == exclude:
            continue
        bucket = equality if p.is_equality else ranges if p.is_range else None
        if bucket is None:
            continue
        current = bucket.get(p.column)
        if current is None or p.estimated_selectivity < current.estimated_selectivity:
            bucket[p.column] = p

    selectivity = 1.0
    low = False
    consumed = 0
    for column in columns:
        if column in equality:
            pred = equality[column]
        elif column in ranges:
            pred = ranges[column]
        else:
            break
        selectivity *= pred.estimated_selectivity
        low = low or pred.low_confidence
        consumed += 1
        if pred.is_range:
            break
    return selectivity, low, consumed
