"""
Partitioning advisor.

Decision procedure:

1. High-frequency shapes are those with frequency >= high_frequency_ratio
   times the most frequent shape.
2. Range partitioning needs a column that carries a range predicate in a
   strict majority of those shapes, a table of at least
   partition_min_rows, and a granularity whose projected largest bucket
   fits partition_max_bucket_rows within max_partitions buckets.
   The coarsest such granularity wins.
3. Otherwise list partitioning on a dominant equality column with few
   distinct values whose most-common values cover nearly every row.
4. Otherwise no plan. That is a normal outcome, not an error.

Every plan carries a DEFAULT bucket, so boundaries + DEFAULT route each
value (NULL included) to exactly one bucket.
"""

from __future__ import annotations

import logging
import math
from datetime import date, datetime, timedelta
from types import MappingProxyType
from typing import Any, Iterator, Mapping, Sequence

from tunesense.advisor.cost import CostModel
from tunesense.advisor.models import (
    BoundValue,
    ColumnStatistics,
    PartitionBoundary,
    PartitionPlan,
    PartitionStrategy,
    Predicate,
    QueryShape,
    StatisticsSnapshot,
    TableProfile,
)
from tunesense.config import AdvisorConfig, get_config

logger = logging.getLogger(__name__)

TEMPORAL_GRANULARITIES = ("year", "quarter", "month", "week", "day")


# =============================================================================
# Profile
# =============================================================================


def high_frequency_shapes(
    shapes: Sequence[QueryShape],
    frequencies: Mapping[str, float] | None = None,
    ratio: float = 0.1,
) -> list[QueryShape]:
    """Shapes whose frequency is at least `ratio` times the maximum."""
    if not shapes:
        return []
    freq = {s.key: (frequencies or {}).get(s.key, s.frequency) for s in shapes}
    top = max(freq.values())
    return [s for s in shapes if freq[s.key] >= ratio * top]


def build_profile(
    shapes: Sequence[QueryShape],
    predicates: Mapping[str, Sequence[Predicate]],
    stats: StatisticsSnapshot,
    frequencies: Mapping[str, float] | None = None,
    growth_rate: float = 0.0,
    config: AdvisorConfig | None = None,
) -> TableProfile:
    """Summarize how the high-frequency shapes use each column."""
    config = config or get_config()
    frequencies = frequencies or {}
    hot = high_frequency_shapes(shapes, frequencies, config.high_frequency_ratio)

    range_usage: dict[str, int] = {}
    equality_usage: dict[str, int] = {}
    range_selectivity: dict[str, list[tuple[str, int, float]]] = {}
    equality_shapes: dict[str, list[tuple[str, int]]] = {}

    for shape in hot:
        freq = int(round(frequencies.get(shape.key, shape.frequency)))
        range_cols: dict[str, float] = {}
        eq_cols: set[str] = set()
        shape_preds = predicates.get(shape.key, ())
        for p in shape_preds:
            if p.is_expression:
                continue
            if p.is_range:
                current = range_cols.get(p.column)
                if current is None or p.estimated_selectivity < current:
                    range_cols[p.column] = p.estimated_selectivity
            elif p.is_equality:
                eq_cols.add(p.column)
        for column in sorted(range_cols, key=lambda c: _position(shape_preds, c)):
            range_usage[column] = range_usage.get(column, 0) + 1
            range_selectivity.setdefault(column, []).append((shape.key, freq, range_cols[column]))
        for column in sorted(eq_cols, key=lambda c: _position(shape_preds, c)):
            equality_usage[column] = equality_usage.get(column, 0) + 1
            equality_shapes.setdefault(column, []).append((shape.key, freq))

    used = list(range_usage) + [c for c in equality_usage if c not in range_usage]
    column_stats = {c: stats.columns[c] for c in used if c in stats.columns}

    return TableProfile(
        table=stats.table.table,
        row_count=stats.row_count,
        high_frequency_shapes=len(hot),
        range_usage=tuple(range_usage.items()),
        equality_usage=tuple(equality_usage.items()),
        growth_rate=growth_rate,
        column_stats=MappingProxyType(column_stats),
        range_selectivity=tuple((c, tuple(v)) for c, v in range_selectivity.items()),
        equality_shapes=tuple((c, tuple(v)) for c, v in equality_shapes.items()),
        full_scan_cost=CostModel(config).full_scan_cost(stats.row_count),
    )


def _position(predicates: Sequence[Predicate], column: str) -> int:
    return min((p.position for p in predicates if p.column == column), default=0)


# =============================================================================
# Granularities
# =============================================================================


def _floor_temporal(value: date, granularity: str) -> date:
    if granularity == "year":
        return value.replace(month=1, day=1)
    if granularity == "quarter":
        return value.replace(month=(value.month - 1) // 3 * 3 + 1, day=1)
    if granularity == "month":
        return value.replace(day=1)
    if granularity == "week":
        return value - timedelta(days=value.weekday())
    return value


def _add_months(value: date, months: int) -> date:
    index = value.year * 12 + value.month - 1 + months
    return value.replace(year=index // 12, month=index % 12 + 1)


def _next_temporal(value: date, granularity: str) -> date:
    if granularity == "year":
        return _add_months(value, 12)
    if granularity == "quarter":
        return _add_months(value, 3)
    if granularity == "month":
        return _add_months(value, 1)
    if granularity == "week":
        return value + timedelta(days=7)
    return value + timedelta(days=1)


def _temporal_bounds(low: BoundValue, high: BoundValue, granularity: str, limit: int) -> list[BoundValue] | None:
    """Aligned edges covering [low, high], or None beyond `limit` buckets."""
    is_datetime = isinstance(low, datetime)
    start = _floor_temporal(low.date() if is_datetime else low, granularity)
    top = high.date() if isinstance(high, datetime) else high
    edges: list[date] = [start]
    while edges[-1] <= top:
        edges.append(_next_temporal(edges[-1], granularity))
        if len(edges) - 1 > limit:
            return None
    if is_datetime:
        tz = low.tzinfo
        return [datetime(d.year, d.month, d.day, tzinfo=tz) for d in edges]
    return list(edges)


def _numeric_widths(span: float, minimum: float) -> Iterator[float]:
    """1/2/5 x 10^k widths, coarsest first, down to `minimum`."""
    exponent = math.ceil(math.log10(span)) if span > 0 else 0
    while True:
        for mantissa in (5, 2, 1):
            width = mantissa * 10.0 ** exponent
            if width < minimum:
                return
            yield width
        exponent -= 1


def _numeric_bounds(low: float, high: float, width: float, integral: bool, limit: int) -> list[BoundValue] | None:
    """Edges covering [low, high], or None beyond `limit` buckets."""
    whole = integral and float(width).is_integer()
    first = math.floor(low / width)

    # rounded edges, so the last one is compared exactly as it will be routed
    def edge(i: int) -> BoundValue:
        value = (first + i) * width
        return int(round(value)) if whole else round(value, 10)

    if edge(0) > low:
        first -= 1
    edges = [edge(0)]
    while edges[-1] <= high:
        edges.append(edge(len(edges)))
        if len(edges) - 1 > limit:
            return None
    return edges


def _bucket_rows(stats: ColumnStatistics, edges: Sequence[BoundValue], rows: float) -> list[int]:
    return [
        int(round(max(0.0, stats.cumulative_fraction(hi) - stats.cumulative_fraction(lo)) * rows))
        for lo, hi in zip(edges, edges[1:])
    ]


def _label(width: float) -> str:
    return f"width {int(width)}" if float(width).is_integer() else f"width {width:g}"


# =============================================================================
# Advisor
# =============================================================================


class PartitioningAdvisor:
    """
    Recommends a range or list partition layout for one table.

    Usage:
        advisor = PartitioningAdvisor()
        plan = advisor.advise(build_profile(shapes, predicates, snapshot))
    """

    def __init__(self, config: AdvisorConfig | None = None) -> None:
        self.config = config or get_config()

    def advise(self, profile: TableProfile) -> PartitionPlan | None:
        if profile.high_frequency_shapes == 0:
            logger.debug("No high-frequency shapes for %s", profile.table)
            return None
        if profile.row_count < self.config.partition_min_rows:
            logger.debug(
                "%s has %d rows, below the partitioning minimum of %d",
                profile.table, profile.row_count, self.config.partition_min_rows,
            )
            return None

        key = self._majority(profile.range_usage, profile.high_frequency_shapes)
        if key is not None:
            plan = self._range_plan(profile, key)
            if plan is not None:
                return plan

        key = self._majority(profile.equality_usage, profile.high_frequency_shapes)
        if key is not None:
            return self._list_plan(profile, key)
        return None

    def _majority(self, usage: tuple[tuple[str, int], ...], total: int) -> str | None:
        best: tuple[str, int] | None = None
        for column, count in usage:
            if best is None or count > best[1]:
                best = (column, count)
        if best is None or best[1] / total <= self.config.partition_majority:
            return None
        return best[0]

    # -- range --------------------------------------------------------------

    def _range_plan(self, profile: TableProfile, column: str) -> PartitionPlan | None:
        stats = profile.column_stats.get(column)
        if stats is None or len(stats.histogram_buckets) < 2:
            logger.debug("No histogram for %s.%s; cannot place range boundaries", profile.table, column)
            return None

        low, high = stats.min_bound, stats.max_bound
        projected = profile.row_count * (1.0 - stats.null_fraction) * (1.0 + profile.growth_rate)
        limit = self.config.max_partitions

        for granularity, edges in self._granularities(low, high, limit):
            if len(edges) < 3:
                continue
            bucket_rows = _bucket_rows(stats, edges, projected)
            largest = max(bucket_rows)
            if largest > self.config.partition_max_bucket_rows:
                continue
            mean = sum(bucket_rows) / len(bucket_rows)
            if mean <= 0 or largest / mean > self.config.partition_skew_tolerance:
                continue
            boundaries = tuple(
                PartitionBoundary(lo, hi, rows)
                for (lo, hi), rows in zip(zip(edges, edges[1:]), bucket_rows)
            )
            served, rationale, pruning = self._range_pruning(profile, column, len(boundaries))
            logger.info(
                "Range partitioning %s on %s by %s (%d buckets)",
                profile.table, column, granularity, len(boundaries),
            )
            return PartitionPlan(
                table=profile.table,
                key_column=column,
                strategy=PartitionStrategy.RANGE,
                boundaries=boundaries,
                granularity=granularity,
                default_bucket_rows=int(round(profile.row_count * stats.null_fraction)),
                estimated_pruning_benefit=pruning,
                served_shapes=served,
                rationale=rationale,
            )
        logger.debug("No granularity keeps %s.%s buckets within limits", profile.table, column)
        return None

    def _granularities(self, low: Any, high: Any, limit: int) -> Iterator[tuple[str, list[BoundValue]]]:
        if isinstance(low, date):
            for granularity in TEMPORAL_GRANULARITIES:
                edges = _temporal_bounds(low, high, granularity, limit)
                if edges is None:
                    return
                yield granularity, edges
            return
        span = float(high) - float(low)
        integral = isinstance(low, int) and isinstance(high, int)
        minimum = 1.0 if integral else max(span / limit, 1e-9)
        for width in _numeric_widths(span, minimum):
            edges = _numeric_bounds(float(low), float(high), width, integral, limit)
            if edges is None:
                return
            yield _label(width), edges

    def _range_pruning(
        self, profile: TableProfile, column: str, buckets: int
    ) -> tuple[tuple[str, ...], tuple[tuple[str, float], ...], float]:
        usage = dict(profile.range_selectivity).get(column, ())
        rationale: list[tuple[str, float]] = []
        for shape_key, frequency, selectivity in usage:
            touched = min(1.0, selectivity + 1.0 / buckets)
            rationale.append((shape_key, round(frequency * profile.full_scan_cost * (1.0 - touched), 6)))
        total = round(sum(b for _, b in rationale), 6)
        return tuple(k for k, _ in rationale), tuple(rationale), total

    # -- list ---------------------------------------------------------------

    def _list_plan(self, profile: TableProfile, column: str) -> PartitionPlan | None:
        stats = profile.column_stats.get(column)
        if stats is None or not stats.most_common_values:
            return None
        if stats.distinct_values(profile.row_count) > self.config.list_partition_max_values:
            return None
        coverage = sum(f for _, f in stats.most_common_values)
        if coverage < self.config.list_partition_min_coverage:
            return None

        values = tuple(sorted((v for v, _ in stats.most_common_values), key=lambda v: (type(v).__name__, v)))
        if len(values) < 2:
            return None
        growth = 1.0 + profile.growth_rate
        default_rows = int(round(profile.row_count * max(0.0, 1.0 - coverage) * growth))

        rationale: list[tuple[str, float]] = []
        served: list[str] = []
        eq_shapes = self._equality_shapes(profile, column)
        touched = 1.0 / (len(values) + 1)
        for shape_key, frequency in eq_shapes:
            served.append(shape_key)
            rationale.append((shape_key, round(frequency * profile.full_scan_cost * (1.0 - touched), 6)))

        logger.info("List partitioning %s on %s (%d values)", profile.table, column, len(values))
        return PartitionPlan(
            table=profile.table,
            key_column=column,
            strategy=PartitionStrategy.LIST,
            values=values,
            default_bucket_rows=default_rows,
            estimated_pruning_benefit=round(sum(b for _, b in rationale), 6),
            served_shapes=tuple(served),
            rationale=tuple(rationale),
        )

    def _equality_shapes(self, profile: TableProfile, column: str) -> list[tuple[str, int]]:
        return [(key, freq) for key, freq in dict(profile.equality_shapes).get(column, ())]
