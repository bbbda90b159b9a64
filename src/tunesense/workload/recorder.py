"""
Workload recorder: aggregates query log entries into QueryShapes.

Repeated shapes are merged by key. Execution statistics are kept as a
weighted running mean/variance (West's weighted variant of Welford's
algorithm) so an entry carrying `calls=n` counts as n identical
executions without being replayed n times.

Usage:
    from tunesense.workload import WorkloadRecorder

    recorder = WorkloadRecorder()
    recorder.record("SELECT * FROM orders WHERE id = 42", 1.2, 1, 1)
    result = recorder.record_batch(entries)
    shapes = recorder.shapes("orders")
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Iterable

from tunesense.advisor.models import QueryShape, RawQueryEntry
from tunesense.exceptions import MalformedQueryError
from tunesense.workload.shape_parser import ParsedQuery, parse_select
from tunesense.workload.statements import statement_kind

logger = logging.getLogger(__name__)


@dataclass
class _ShapeAccumulator:
    """Mutable aggregate behind one shape; never leaves the recorder."""

    parsed: ParsedQuery
    frequency: int = 0
    mean_time: float = 0.0
    m2_time: float = 0.0
    mean_scanned: float = 0.0
    mean_returned: float = 0.0

    def add(self, execution_time_ms: float, rows_scanned: int, rows_returned: int, calls: int) -> None:
        weight = calls
        total = self.frequency + weight
        delta = execution_time_ms - self.mean_time
        self.mean_time += delta * weight / total
        self.m2_time += weight * delta * (execution_time_ms - self.mean_time)
        self.mean_scanned += (rows_scanned - self.mean_scanned) * weight / total
        self.mean_returned += (rows_returned - self.mean_returned) * weight / total
        self.frequency = total

    def snapshot(self) -> QueryShape:
        p = self.parsed
        variance = self.m2_time / self.frequency if self.frequency > 0 else 0.0
        return QueryShape(
            key=p.key,
            table=p.table,
            normalized_text=p.normalized_text,
            terms=p.terms,
            projections=p.projections,
            aggregations=p.aggregations,
            group_by=p.group_by,
            order_by=p.order_by,
            frequency=self.frequency,
            mean_execution_time_ms=self.mean_time,
            execution_time_variance=max(0.0, variance),
            mean_rows_scanned=self.mean_scanned,
            mean_rows_returned=self.mean_returned,
        )


@dataclass
class BatchResult:
    """Outcome of record_batch."""

    recorded: int = 0
    writes: int = 0
    dropped: int = 0
    errors: list[MalformedQueryError] = field(default_factory=list)


class WorkloadRecorder:
    """
    Thread-safe aggregator of query shapes and write counts.

    Shapes are keyed by the hash of their normalized text; insertion
    order is preserved so "first seen" tie-breaks stay deterministic.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._shapes: dict[str, _ShapeAccumulator] = {}
        self._writes: dict[str, int] = {}
        self._dropped = 0

    def record(
        self,
        query_text: str,
        execution_time_ms: float = 0.0,
        rows_scanned: int = 0,
        rows_returned: int = 0,
        calls: int = 1,
    ) -> QueryShape:
        """
        Record one SELECT and return the updated shape snapshot.

        Raises:
            MalformedQueryError: text outside the supported subset.
        """
        if calls < 1:
            raise ValueError(f"calls must be >= 1, got {calls}")
        if execution_time_ms < 0 or rows_scanned < 0 or rows_returned < 0:
            raise ValueError("execution statistics must be non-negative")

        parsed = parse_select(query_text)
        return self._add(parsed, execution_time_ms, rows_scanned, rows_returned, calls)

    def _add(
        self,
        parsed: ParsedQuery,
        execution_time_ms: float,
        rows_scanned: int,
        rows_returned: int,
        calls: int,
    ) -> QueryShape:
        with self._lock:
            acc = self._shapes.get(parsed.key)
            if acc is None:
                acc = _ShapeAccumulator(parsed)
                self._shapes[parsed.key] = acc
            acc.add(execution_time_ms, rows_scanned, rows_returned, calls)
            return acc.snapshot()

    def record_write(self, table: str, calls: int = 1) -> None:
        with self._lock:
            self._writes[table] = self._writes.get(table, 0) + calls

    def record_batch(self, entries: Iterable[RawQueryEntry]) -> BatchResult:
        """
        Record a batch of log entries.

        Writes feed the per-table write counter; reads become shapes;
        anything else is dropped and counted. Never raises for a bad
        entry.
        """
        result = BatchResult()
        for entry in entries:
            try:
                kind, table = statement_kind(entry.query_text)
                if kind == "write" and table:
                    self.record_write(table, max(1, entry.calls))
                    result.writes += max(1, entry.calls)
                    continue
                if kind != "select":
                    raise MalformedQueryError("only SELECT and INSERT/UPDATE/DELETE entries are used",
                                              entry.query_text)
                self.record(
                    entry.query_text,
                    entry.execution_time_ms,
                    entry.rows_scanned,
                    entry.rows_returned,
                    max(1, entry.calls),
                )
                result.recorded += 1
            except MalformedQueryError as e:
                logger.warning("Dropping workload entry: %s", e.message)
                result.dropped += 1
                result.errors.append(e)
                with self._lock:
                    self._dropped += 1
            except ValueError as e:
                err = MalformedQueryError(str(e), entry.query_text)
                logger.warning("Dropping workload entry: %s", err.message)
                result.dropped += 1
                result.errors.append(err)
                with self._lock:
                    self._dropped += 1
        return result

    def shapes(self, table: str | None = None) -> tuple[QueryShape, ...]:
        """Immutable snapshots of all shapes, in first-seen order."""
        with self._lock:
            return tuple(
                acc.snapshot()
                for acc in self._shapes.values()
                if table is None or acc.parsed.table == table
            )

    def shape(self, key: str) -> QueryShape | None:
        with self._lock:
            acc = self._shapes.get(key)
            return acc.snapshot() if acc is not None else None

    def write_count(self, table: str) -> int:
        with self._lock:
            return self._writes.get(table, 0)

    @property
    def dropped(self) -> int:
        with self._lock:
            return self._dropped

    def __len__(self) -> int:
        with self._lock:
            return len(self._shapes)
