"""
Predicate analyzer: classifies shape terms and estimates selectivity.

Estimates follow PostgreSQL's planner conventions:
- eq:          (1 - null_frac) / n_distinct
- in:          k * eq, capped at 1 - null_frac
- range:       histogram CDF interpolation, scaled by 1 - null_frac
- null_check:  null_frac or 1 - null_frac

Values that are unknown at analysis time (bind parameters, runtime
expressions) fall back to the planner's defaults for inequalities and
are flagged low-confidence, as are estimates made without statistics.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Mapping, Sequence, Union

from tunesense.advisor.models import (
    BoundValue,
    ColumnStatistics,
    Predicate,
    PredicateOperator,
    QueryShape,
    ShapeTerm,
    StatisticsSnapshot,
)
from tunesense.config import AdvisorConfig, get_config
from tunesense.diagnostics import Diagnostics
from tunesense.exceptions import MissingStatisticsError

logger = logging.getLogger(__name__)

StatsInput = Union[StatisticsSnapshot, Sequence[ColumnStatistics]]

_LOWER = (">", ">=")
_UPPER = ("<", "<=")


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


def _comparable(value: Any, stats: ColumnStatistics) -> bool:
    """True when `value` can be placed on the column's histogram axis."""
    if value is None or isinstance(value, (str, bool)):
        return False
    bound = stats.min_bound
    if bound is None:
        return False
    temporal_value = isinstance(value, (date, datetime))
    return temporal_value == stats.is_temporal


class PredicateAnalyzer:
    """
    Turns the WHERE terms of a shape into ordered Predicates.

    Usage:
        analyzer = PredicateAnalyzer()
        predicates = analyzer.analyze(shape, snapshot)
    """

    def __init__(
        self,
        config: AdvisorConfig | None = None,
        diagnostics: Diagnostics | None = None,
    ) -> None:
        self.config = config or get_config()
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics()

    def analyze(
        self,
        shape: QueryShape,
        stats: StatsInput,
        row_count: int | None = None,
    ) -> list[Predicate]:
        """
        Classify and estimate every term of `shape`.

        Args:
            shape: The query shape.
            stats: A StatisticsSnapshot, or bare ColumnStatistics.
            row_count: Table rows, needed with bare ColumnStatistics that
                use a negative (fractional) distinct count.

        Returns:
            Predicates ordered by selectivity, ties by declaration order.
        """
        columns, rows = self._resolve(stats, row_count)
        predicates: list[Predicate] = []

        lowers: dict[str, ShapeTerm] = {}
        uppers: dict[str, ShapeTerm] = {}
        for term in shape.terms:
            if term.comparator in _LOWER and term.target not in lowers:
                lowers[term.target] = term
            elif term.comparator in _UPPER and term.target not in uppers:
                uppers[term.target] = term
        merged = {t for t in lowers if t in uppers}

        for term in shape.terms:
            if term.target in merged:
                low, high = lowers[term.target], uppers[term.target]
                if term is low:
                    predicates.append(self._merged_range(shape, low, high, columns))
                    continue
                if term is high:
                    continue
            predicates.append(self._estimate(shape, term, columns, rows))

        predicates.sort(key=lambda p: (p.estimated_selectivity, p.position))
        return predicates

    def _resolve(
        self, stats: StatsInput, row_count: int | None
    ) -> tuple[Mapping[str, ColumnStatistics], int | None]:
        if isinstance(stats, StatisticsSnapshot):
            return stats.columns, stats.row_count
        return {s.column: s for s in stats}, row_count

    def _missing(self, shape: QueryShape, term: ShapeTerm) -> None:
        self.diagnostics.add(MissingStatisticsError(shape.table, term.target))
        logger.debug("No statistics for %s.%s", shape.table, term.target)

    def _predicate(
        self,
        shape: QueryShape,
        term: ShapeTerm,
        selectivity: float,
        low_confidence: bool,
        comparator: str | None = None,
        operator: PredicateOperator | None = None,
        position: int | None = None,
    ) -> Predicate:
        return Predicate(
            shape_key=shape.key,
            target=term.target,
            column=term.column,
            operator=operator or term.operator,
            comparator=comparator or term.comparator,
            estimated_selectivity=_clamp(selectivity),
            position=term.position if position is None else position,
            function=term.function,
            low_confidence=low_confidence,
        )

    def _estimate(
        self,
        shape: QueryShape,
        term: ShapeTerm,
        columns: Mapping[str, ColumnStatistics],
        rows: int | None,
    ) -> Predicate:
        stats = columns.get(term.target)
        if stats is None:
            self._missing(shape, term)
            return self._predicate(shape, term, self.config.default_selectivity, True)

        operator = term.operator
        non_null = 1.0 - stats.null_fraction

        if operator == PredicateOperator.NULL_CHECK:
            if term.comparator == "IS NULL":
                return self._predicate(shape, term, stats.null_fraction, False)
            return self._predicate(shape, term, non_null, False)

        if operator == PredicateOperator.EQ:
            eq = non_null / stats.distinct_values(rows)
            return self._predicate(shape, term, eq, False)

        if operator == PredicateOperator.IN:
            eq = non_null / stats.distinct_values(rows)
            k = max(1, len(term.exemplar))
            unknown_list = len(term.exemplar) == 1 and term.exemplar[0] is None
            return self._predicate(shape, term, min(k * eq, non_null), unknown_list)

        if term.comparator == "BETWEEN":
            low, high = (term.exemplar + (None, None))[:2]
            return self._two_sided(shape, term, stats, low, high)

        return self._one_sided(shape, term, stats)

    def _one_sided(self, shape: QueryShape, term: ShapeTerm, stats: ColumnStatistics) -> Predicate:
        value = term.exemplar[0] if term.exemplar else None
        if not _comparable(value, stats):
            return self._predicate(shape, term, self.config.default_inequality_selectivity, True)
        cdf = stats.cumulative_fraction(value)
        fraction = cdf if term.comparator in _UPPER else 1.0 - cdf
        return self._predicate(shape, term, fraction * (1.0 - stats.null_fraction), False)

    def _two_sided(
        self,
        shape: QueryShape,
        term: ShapeTerm,
        stats: ColumnStatistics,
        low: BoundValue | None,
        high: BoundValue | None,
        position: int | None = None,
    ) -> Predicate:
        if not (_comparable(low, stats) and _comparable(high, stats)):
            return self._predicate(
                shape, term, self.config.default_range_selectivity, True,
                comparator="BETWEEN", operator=PredicateOperator.RANGE, position=position,
            )
        fraction = max(0.0, stats.cumulative_fraction(high) - stats.cumulative_fraction(low))
        return self._predicate(
            shape, term, fraction * (1.0 - stats.null_fraction), False,
            comparator="BETWEEN", operator=PredicateOperator.RANGE, position=position,
        )

    def _merged_range(
        self,
        shape: QueryShape,
        low: ShapeTerm,
        high: ShapeTerm,
        columns: Mapping[str, ColumnStatistics],
    ) -> Predicate:
        stats = columns.get(low.target)
        position = min(low.position, high.position)
        if stats is None:
            self._missing(shape, low)
            return self._predicate(
                shape, low, self.config.default_selectivity, True,
                comparator="BETWEEN", operator=PredicateOperator.RANGE, position=position,
            )
        low_value = low.exemplar[0] if low.exemplar else None
        high_value = high.exemplar[0] if high.exemplar else None
        return self._two_sided(shape, low, stats, low_value, high_value, position=position)

    def analyze_all(
        self,
        shapes: Sequence[QueryShape],
        stats: StatsInput,
        row_count: int | None = None,
    ) -> dict[str, list[Predicate]]:
        """Predicates for every shape, keyed by shape key."""
        return {shape.key: self.analyze(shape, stats, row_count) for shape in shapes}


def combined_selectivity(predicates: Sequence[Predicate]) -> float:
    """Independence-assumption product of predicate selectivities."""
    result = 1.0
    for p in predicates:
        result *= p.estimated_selectivity
    return result
