"""
Data models for the advisor.

These models are the immutable snapshots that flow through one advisory
run. They're designed to be:
- Immutable (frozen=True, tuples, read-only mappings): a run never mutates
  its inputs, so stages can safely run concurrently
- Hashable: candidates deduplicate by identity in sets and dicts
- Deterministic: every derived ordering has an explicit tie-breaker
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Union

BoundValue = Union[int, float, date, datetime]

_EPOCH = datetime(1970, 1, 1)
_EPOCH_UTC = datetime(1970, 1, 1, tzinfo=timezone.utc)


def bound_to_number(value: BoundValue) -> float:
    """
    Map a histogram bound or literal onto the real line.

    Dates and datetimes become seconds since the epoch so linear
    interpolation works across all supported bound types. Naive datetimes
    are measured against a naive epoch to stay independent of the local
    timezone.
    """
    if isinstance(value, datetime):
        epoch = _EPOCH_UTC if value.tzinfo is not None else _EPOCH
        return (value - epoch).total_seconds()
    if isinstance(value, date):
        return (datetime(value.year, value.month, value.day) - _EPOCH).total_seconds()
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    raise TypeError(f"Unsupported bound type: {type(value).__name__}")


# =============================================================================
# Workload shapes
# =============================================================================


class PlaceholderKind(str, Enum):
    """Type of a normalized literal or bind parameter."""

    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    TIMESTAMP = "timestamp"
    BOOLEAN = "boolean"
    PARAM = "param"


@dataclass(frozen=True)
class Placeholder:
    """A literal replaced during normalization."""

    kind: PlaceholderKind

    def render(self) -> str:
        return f"?{self.kind.value}"


class PredicateOperator(str, Enum):
    """Tagged predicate classes the analyzer supports."""

    EQ = "eq"
    RANGE = "range"
    NULL_CHECK = "null_check"
    IN = "in"


# Comparator -> operator class
COMPARATOR_CLASSES: dict[str, PredicateOperator] = {
    "=": PredicateOperator.EQ,
    "<": PredicateOperator.RANGE,
    "<=": PredicateOperator.RANGE,
    ">": PredicateOperator.RANGE,
    ">=": PredicateOperator.RANGE,
    "BETWEEN": PredicateOperator.RANGE,
    "IN": PredicateOperator.IN,
    "IS NULL": PredicateOperator.NULL_CHECK,
    "IS NOT NULL": PredicateOperator.NULL_CHECK,
}


@dataclass(frozen=True)
class ShapeTerm:
    """
    One WHERE term of a query shape.

    Attributes:
        target: Column name, or canonical expression text for expression terms
        column: Underlying column the term constrains
        comparator: One of COMPARATOR_CLASSES
        placeholders: Typed placeholders for the compared values
        position: Declaration order within the WHERE clause (0-based)
        function: Wrapping function name for expression terms
        exemplar: Literal values from the first recorded occurrence
            (None entries for bind parameters). Not part of identity.
    """

    target: str
    column: str
    comparator: str
    placeholders: tuple[Placeholder, ...] = ()
    position: int = 0
    function: str | None = None
    exemplar: tuple[Any, ...] = field(default=(), compare=False, hash=False)

    @property
    def operator(self) -> PredicateOperator:
        return COMPARATOR_CLASSES[self.comparator]

    @property
    def is_expression(self) -> bool:
        return self.function is not None

    def render(self) -> str:
        """Normalized text of the term."""
        if self.operator == PredicateOperator.NULL_CHECK:
            return f"{self.target} {self.comparator}"
        if self.comparator == "BETWEEN":
            low, high = self.placeholders
            return f"{self.target} BETWEEN {low.render()} AND {high.render()}"
        if self.comparator == "IN":
            kind = self.placeholders[0].render() if self.placeholders else "?param"
            return f"{self.target} IN ({kind}, ...)"
        value = self.placeholders[0].render() if self.placeholders else "?param"
        return f"{self.target} {self.comparator} {value}"


@dataclass(frozen=True)
class Aggregation:
    """An aggregate call in the projection list, e.g. sum(amount)."""

    function: str
    argument: str

    def render(self) -> str:
        return f"{self.function}({self.argument})"


@dataclass(frozen=True)
class QueryShape:
    """
    Normalized query skeleton with execution statistics.

    Produced by the WorkloadRecorder. Every instance is an immutable
    snapshot; the recorder hands out a new one each time it aggregates.
    """

    key: str
    table: str
    normalized_text: str
    terms: tuple[ShapeTerm, ...] = ()
    projections: tuple[str, ...] = ()
    aggregations: tuple[Aggregation, ...] = ()
    group_by: tuple[str, ...] = ()
    order_by: tuple[str, ...] = ()
    frequency: int = 1
    mean_execution_time_ms: float = 0.0
    execution_time_variance: float = 0.0
    mean_rows_scanned: float = 0.0
    mean_rows_returned: float = 0.0

    @staticmethod
    def key_for(normalized_text: str) -> str:
        """Stable key: hash of the normalized text."""
        return hashlib.sha256(normalized_text.encode()).hexdigest()[:16]

    @property
    def is_aggregation(self) -> bool:
        return len(self.aggregations) > 0

    @property
    def has_filter(self) -> bool:
        return len(self.terms) > 0


@dataclass(frozen=True)
class RawQueryEntry:
    """One query log entry as delivered by a WorkloadSource."""

    query_text: str
    execution_time_ms: float = 0.0
    rows_scanned: int = 0
    rows_returned: int = 0
    calls: int = 1


# =============================================================================
# Statistics snapshot
# =============================================================================


@dataclass(frozen=True)
class TableStatistics:
    """
    Table-level statistics.

    Attributes:
        row_count: Estimated live rows (reltuples)
        avg_row_width: Average row width in bytes
        write_rate: Writes per workload window, when known
    """

    table: str
    row_count: int
    avg_row_width: int = 100
    write_rate: float | None = None


@dataclass(frozen=True)
class HistogramBucket:
    """One histogram boundary with the fraction of non-null rows below it."""

    bound: BoundValue
    cumulative_fraction: float


@dataclass(frozen=True)
class ColumnStatistics:
    """
    Per-column statistics, read-only for the duration of a run.

    distinct_count follows PostgreSQL's n_distinct convention: positive
    values are absolute counts, negative values are a fraction of the
    row count (-1.0 means unique).
    """

    table: str
    column: str
    distinct_count: float
    null_fraction: float = 0.0
    histogram_buckets: tuple[HistogramBucket, ...] = ()
    avg_width: int | None = None
    most_common_values: tuple[tuple[Any, float], ...] = ()

    def __post_init__(self) -> None:
        if not 0.0 <= self.null_fraction <= 1.0:
            raise ValueError(f"null_fraction out of range for {self.column}: {self.null_fraction}")
        fractions = [b.cumulative_fraction for b in self.histogram_buckets]
        if any(b < a for a, b in zip(fractions, fractions[1:])):
            raise ValueError(f"histogram fractions must be non-decreasing for {self.column}")

    def distinct_values(self, row_count: int | None = None) -> float:
        """Absolute number of distinct values."""
        if self.distinct_count < 0:
            rows = row_count or 0
            return max(1.0, -self.distinct_count * rows)
        return max(1.0, float(self.distinct_count))

    @property
    def min_bound(self) -> BoundValue | None:
        return self.histogram_buckets[0].bound if self.histogram_buckets else None

    @property
    def max_bound(self) -> BoundValue | None:
        return self.histogram_buckets[-1].bound if self.histogram_buckets else None

    @property
    def is_temporal(self) -> bool:
        return isinstance(self.min_bound, (date, datetime))

    def cumulative_fraction(self, value: BoundValue) -> float:
        """
        Fraction of non-null rows with a value below `value`.

        Linear interpolation between the surrounding bucket bounds.
        Without a histogram the midpoint 0.5 is returned.
        """
        buckets = self.histogram_buckets
        if not buckets:
            return 0.5
        x = bound_to_number(value)
        first = bound_to_number(buckets[0].bound)
        if x <= first:
            return buckets[0].cumulative_fraction
        for lower, upper in zip(buckets, buckets[1:]):
            lo = bound_to_number(lower.bound)
            hi = bound_to_number(upper.bound)
            if x < hi:
                if hi == lo:
                    return upper.cumulative_fraction
                ratio = (x - lo) / (hi - lo)
                return lower.cumulative_fraction + ratio * (
                    upper.cumulative_fraction - lower.cumulative_fraction
                )
        return buckets[-1].cumulative_fraction


class StatisticsSnapshot:
    """
    Immutable statistics bundle for one advisory run.

    Built once at run start from the StatisticsProvider; every stage
    reads from the same snapshot.
    """

    __slots__ = ("_table", "_columns", "_hash")

    def __init__(
        self,
        table: TableStatistics,
        columns: Iterable[ColumnStatistics] = (),
    ) -> None:
        self._table = table
        self._columns: Mapping[str, ColumnStatistics] = MappingProxyType(
            {c.column: c for c in columns}
        )
        self._hash = self._compute_hash()

    @property
    def table(self) -> TableStatistics:
        return self._table

    @property
    def row_count(self) -> int:
        return self._table.row_count

    @property
    def columns(self) -> Mapping[str, ColumnStatistics]:
        return self._columns

    def column(self, target: str) -> ColumnStatistics | None:
        return self._columns.get(target)

    @property
    def content_hash(self) -> str:
        return self._hash

    def _compute_hash(self) -> str:
        payload = {
            "table": [self._table.table, self._table.row_count,
                      self._table.avg_row_width, self._table.write_rate],
            "columns": [
                [
                    c.column,
                    c.distinct_count,
                    c.null_fraction,
                    [[str(b.bound), b.cumulative_fraction] for b in c.histogram_buckets],
                    c.avg_width,
                    [[str(v), f] for v, f in c.most_common_values],
                ]
                for _, c in sorted(self._columns.items())
            ],
        }
        encoded = json.dumps(payload, sort_keys=True, default=str)
        return hashlib.sha256(encoded.encode()).hexdigest()[:16]


# =============================================================================
# Predicates and candidates
# =============================================================================


@dataclass(frozen=True)
class Predicate:
    """
    A classified WHERE term with its estimated selectivity.

    Derived per shape by the PredicateAnalyzer, never persisted.
    """

    shape_key: str
    target: str
    column: str
    operator: PredicateOperator
    comparator: str
    estimated_selectivity: float
    position: int = 0
    function: str | None = None
    low_confidence: bool = False

    @property
    def is_expression(self) -> bool:
        return self.function is not None

    @property
    def is_equality(self) -> bool:
        return self.operator in (PredicateOperator.EQ, PredicateOperator.IN)

    @property
    def is_range(self) -> bool:
        return self.operator == PredicateOperator.RANGE

    @property
    def text(self) -> str:
        """Predicate text as it would appear in a partial index."""
        if self.operator == PredicateOperator.NULL_CHECK:
            return f"{self.target} {self.comparator}"
        return f"{self.target} {self.comparator} ?"


class IndexKind(str, Enum):
    """Index candidate kinds."""

    SINGLE = "single"
    COMPOSITE = "composite"
    EXPRESSION = "expression"
    PARTIAL = "partial"


@dataclass(frozen=True)
class IndexCandidate:
    """
    A proposed index.

    Identity is (kind, columns, predicate); source_shapes and confidence
    are bookkeeping and do not take part in equality.
    """

    table: str
    kind: IndexKind
    columns: tuple[str, ...]
    predicate: str | None = None
    expression_column: str | None = field(default=None, compare=False)
    source_shapes: tuple[str, ...] = field(default=(), compare=False, hash=False)
    low_confidence: bool = field(default=False, compare=False)

    @property
    def identity(self) -> tuple[str, tuple[str, ...], str]:
        return (self.kind.value, self.columns, self.predicate or "")

    @property
    def key_columns(self) -> tuple[str, ...]:
        """Underlying table columns the index stores."""
        if self.kind == IndexKind.EXPRESSION and self.expression_column:
            return (self.expression_column,)
        return self.columns

    @property
    def index_name(self) -> str:
        """Generate a sensible, stable index name."""
        parts = []
        for col in self.columns[:3]:
            parts.append("".join(ch if ch.isalnum() else "_" for ch in col).strip("_"))
        cols = "_".join(p for p in parts if p)
        if len(self.columns) > 3:
            cols += "_etc"
        suffix = ""
        if self.kind == IndexKind.PARTIAL:
            suffix = "_partial"
        elif self.kind == IndexKind.EXPRESSION:
            suffix = "_expr"
        digest = hashlib.sha256("|".join(self.identity[1]).encode()
                                + (self.predicate or "").encode()).hexdigest()[:6]
        return f"idx_{self.table}_{cols}{suffix}_{digest}"

    @property
    def ddl(self) -> str:
        """CREATE INDEX statement text (never executed by the advisor)."""
        if self.kind == IndexKind.EXPRESSION:
            cols_str = ", ".join(f"({c})" for c in self.columns)
        else:
            cols_str = ", ".join(self.columns)
        sql = f"CREATE INDEX {self.index_name} ON {self.table} ({cols_str})"
        if self.kind == IndexKind.PARTIAL and self.predicate:
            sql += f" WHERE {self.predicate}"
        return sql + ";"

    def describe(self) -> str:
        cols = ", ".join(self.columns)
        if self.predicate:
            return f"{self.kind.value} ({cols}) WHERE {self.predicate}"
        return f"{self.kind.value} ({cols})"


@dataclass(frozen=True)
class BenefitScore:
    """
    Cost-model verdict for one candidate.

    Attributes:
        benefit: Sum over served shapes of frequency * (full - indexed)
        maintenance_cost: write_rate * index width * cost per byte
        served_shapes: Keys of the shapes the index can serve
        shape_deltas: Per-shape (key, frequency-weighted cost delta)
        recommended: Passed both the net-benefit and absolute threshold tests
        rejection_reason: Why the candidate was not recommended
    """

    candidate: IndexCandidate
    benefit: float
    maintenance_cost: float
    served_shapes: tuple[str, ...] = ()
    shape_deltas: tuple[tuple[str, float], ...] = ()
    write_rate: float = 0.0
    low_confidence: bool = False
    recommended: bool = False
    rejection_reason: str | None = None

    @property
    def net_benefit(self) -> float:
        return self.benefit - self.maintenance_cost


@dataclass(frozen=True)
class ShapeCostVerdict:
    """Per-shape cost assessment."""

    shape_key: str
    full_scan_cost: float
    combined_selectivity: float
    full_scan_required: bool = False
    reason: str | None = None


# =============================================================================
# Partitioning
# =============================================================================


class PartitionStrategy(str, Enum):
    RANGE = "range"
    LIST = "list"


DEFAULT_BUCKET = "DEFAULT"


@dataclass(frozen=True)
class PartitionBoundary:
    """Half-open range bucket [lower, upper)."""

    lower: BoundValue
    upper: BoundValue
    estimated_rows: int = 0

    def contains(self, value: BoundValue) -> bool:
        x = bound_to_number(value)
        return bound_to_number(self.lower) <= x < bound_to_number(self.upper)


@dataclass(frozen=True)
class PartitionPlan:
    """
    Proposed partition layout for a table.

    Range plans hold contiguous, strictly increasing half-open buckets;
    list plans hold sorted distinct values. Both always carry a DEFAULT
    bucket that catches every value outside the explicit buckets,
    including NULL.
    """

    table: str
    key_column: str
    strategy: PartitionStrategy
    boundaries: tuple[PartitionBoundary, ...] = ()
    values: tuple[Any, ...] = ()
    granularity: str | None = None
    default_bucket_rows: int = 0
    estimated_pruning_benefit: float = 0.0
    served_shapes: tuple[str, ...] = ()
    rationale: tuple[tuple[str, float], ...] = ()

    @property
    def bucket_count(self) -> int:
        explicit = len(self.boundaries) if self.strategy == PartitionStrategy.RANGE else len(self.values)
        return explicit + 1

    @property
    def identity(self) -> str:
        return f"partition:{self.table}:{self.strategy.value}:{self.key_column}"

    def route(self, value: Any) -> str:
        """
        Return the single bucket a value lands in.

        Buckets are named p0..pN in boundary/value order; everything
        else, NULL included, routes to DEFAULT.
        """
        if value is None:
            return DEFAULT_BUCKET
        if self.strategy == PartitionStrategy.LIST:
            for i, v in enumerate(self.values):
                if v == value:
                    return f"p{i}"
            return DEFAULT_BUCKET
        for i, boundary in enumerate(self.boundaries):
            if boundary.contains(value):
                return f"p{i}"
        return DEFAULT_BUCKET

    def bucket_names(self) -> list[str]:
        return [f"p{i}" for i in range(self.bucket_count - 1)] + [DEFAULT_BUCKET]

    @property
    def ddl(self) -> str:
        """Partition DDL text (never executed by the advisor)."""
        parent = f"{self.table}_partitioned"
        lines = [
            f"CREATE TABLE {parent} (LIKE {self.table} INCLUDING ALL) "
            f"PARTITION BY {self.strategy.value.upper()} ({self.key_column});"
        ]
        if self.strategy == PartitionStrategy.RANGE:
            for i, b in enumerate(self.boundaries):
                lines.append(
                    f"CREATE TABLE {self.table}_p{i} PARTITION OF {parent} "
                    f"FOR VALUES FROM ({_sql_literal(b.lower)}) TO ({_sql_literal(b.upper)});"
                )
        else:
            for i, v in enumerate(self.values):
                lines.append(
                    f"CREATE TABLE {self.table}_p{i} PARTITION OF {parent} "
                    f"FOR VALUES IN ({_sql_literal(v)});"
                )
        lines.append(f"CREATE TABLE {self.table}_default PARTITION OF {parent} DEFAULT;")
        return "\n".join(lines)


def _sql_literal(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return f"'{value.isoformat()}'"
    if isinstance(value, str):
        escaped = value.replace("'", "''")
        return f"'{escaped}'"
    return str(value)


# =============================================================================
# Access control
# =============================================================================


class PolicyEffect(str, Enum):
    ALLOW_ALL = "allow_all"
    FILTER = "filter"


@dataclass(frozen=True)
class AccessPolicy:
    """Row-level security policy; external input, read-only."""

    name: str
    table: str
    role: str
    predicate: str = ""
    effect: PolicyEffect = PolicyEffect.FILTER


@dataclass(frozen=True)
class TableProfile:
    """
    Input to the PartitioningAdvisor.

    Attributes:
        range_usage: (column, high-frequency shapes with a range predicate)
        equality_usage: (column, high-frequency shapes with an eq/in predicate)
        high_frequency_shapes: Number of high-frequency shapes considered
        growth_rate: Expected fractional growth over the planning horizon
        column_stats: Statistics for the usage columns
        range_selectivity: (column, ((shape_key, frequency, selectivity), ...))
        equality_shapes: (column, ((shape_key, frequency), ...))
    """

    table: str
    row_count: int
    high_frequency_shapes: int
    range_usage: tuple[tuple[str, int], ...] = ()
    equality_usage: tuple[tuple[str, int], ...] = ()
    growth_rate: float = 0.0
    column_stats: Mapping[str, ColumnStatistics] = field(
        default_factory=lambda: MappingProxyType({}), compare=False, hash=False
    )
    range_selectivity: tuple[tuple[str, tuple[tuple[str, int, float], ...]], ...] = ()
    equality_shapes: tuple[tuple[str, tuple[tuple[str, int], ...]], ...] = ()
    full_scan_cost: float = 0.0
