"""
External interfaces of the advisor, plus a file-backed implementation.

The advisor never talks to a database. Statistics, policies and workload
samples arrive through three narrow Protocols; `SnapshotCatalog`
implements all of them from one JSON or YAML document:

    tables:
      orders:
        row_count: 2000000
        avg_row_width: 120
        write_rate: 500                 # optional
        columns:
          user_id: {distinct_count: 1000, avg_width: 8}
          created_at:
            distinct_count: -0.8
            null_fraction: 0.01
            histogram: [["2023-01-01", 0.0], ["2024-12-31", 1.0]]
          status:
            distinct_count: 3
            most_common_values: [["paid", 0.7], ["open", 0.2], ["void", 0.1]]
        policies:
          - {name: own_rows, role: app_user, predicate: "user_id = current_user_id()"}
        workload:
          - "SELECT * FROM orders WHERE user_id = $1"
          - {query: "SELECT ...", execution_time_ms: 3.1, calls: 40}
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any, Mapping, Protocol, Sequence, Union, runtime_checkable

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from tunesense.advisor.models import (
    AccessPolicy,
    ColumnStatistics,
    HistogramBucket,
    PolicyEffect,
    RawQueryEntry,
    TableStatistics,
)
from tunesense.exceptions import SnapshotError

logger = logging.getLogger(__name__)


# =============================================================================
# Protocols
# =============================================================================


@runtime_checkable
class StatisticsProvider(Protocol):
    """Read-only access to planner statistics."""

    def get_table_statistics(self, table: str) -> TableStatistics | None:
        ...

    def get_column_statistics(self, table: str, column: str) -> ColumnStatistics | None:
        ...


@runtime_checkable
class PolicyProvider(Protocol):
    """Row-level security policies defined on a table."""

    def list_policies(self, table: str) -> Sequence[AccessPolicy]:
        ...


@runtime_checkable
class WorkloadSource(Protocol):
    """Recent query log entries touching a table."""

    def sample_recent_queries(self, table: str, window: int) -> Sequence[RawQueryEntry]:
        ...


# =============================================================================
# Document schema
# =============================================================================


def _parse_bound(value: Any) -> Union[int, float, date, datetime]:
    if isinstance(value, bool):
        raise ValueError("histogram bounds cannot be booleans")
    if isinstance(value, (int, float, date, datetime)):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            if len(text) == 10:
                return date.fromisoformat(text)
            return datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            pass
        try:
            return float(text) if any(c in text for c in ".eE") else int(text)
        except ValueError as e:
            raise ValueError(f"unsupported histogram bound {value!r}") from e
    raise ValueError(f"unsupported histogram bound {value!r}")


class _ColumnDoc(BaseModel):
    model_config = ConfigDict(extra="forbid")

    distinct_count: float = Field(..., description="n_distinct; negative = fraction of rows")
    null_fraction: float = Field(0.0, ge=0.0, le=1.0)
    avg_width: int | None = Field(None, ge=1)
    histogram: list[tuple[Any, float]] = Field(default_factory=list)
    most_common_values: list[tuple[Any, float]] = Field(default_factory=list)

    @field_validator("histogram")
    @classmethod
    def _bounds(cls, value: list[tuple[Any, float]]) -> list[tuple[Any, float]]:
        return [(_parse_bound(bound), float(fraction)) for bound, fraction in value]


class _PolicyDoc(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    role: str
    predicate: str = ""
    effect: PolicyEffect = PolicyEffect.FILTER


class _QueryDoc(BaseModel):
    model_config = ConfigDict(extra="forbid")

    query: str
    execution_time_ms: float = Field(0.0, ge=0.0)
    rows_scanned: int = Field(0, ge=0)
    rows_returned: int = Field(0, ge=0)
    calls: int = Field(1, ge=1)


class _TableDoc(BaseModel):
    model_config = ConfigDict(extra="forbid")

    row_count: int = Field(..., ge=0)
    avg_row_width: int = Field(100, ge=1)
    write_rate: float | None = Field(None, ge=0.0)
    columns: dict[str, _ColumnDoc] = Field(default_factory=dict)
    policies: list[_PolicyDoc] = Field(default_factory=list)
    workload: list[Union[str, _QueryDoc]] = Field(default_factory=list)


class _CatalogDoc(BaseModel):
    model_config = ConfigDict(extra="forbid")

    tables: dict[str, _TableDoc] = Field(default_factory=dict)


# =============================================================================
# SnapshotCatalog
# =============================================================================


class SnapshotCatalog:
    """
    StatisticsProvider, PolicyProvider and WorkloadSource over a document.

    Usage:
        catalog = SnapshotCatalog.from_file("snapshot.yaml")
        service = AdvisoryService(catalog, catalog, catalog)
    """

    def __init__(
        self,
        tables: Mapping[str, TableStatistics],
        columns: Mapping[str, Mapping[str, ColumnStatistics]],
        policies: Mapping[str, Sequence[AccessPolicy]],
        workloads: Mapping[str, Sequence[RawQueryEntry]],
        source: str = "memory",
    ) -> None:
        self._tables = dict(tables)
        self._columns = {t: dict(c) for t, c in columns.items()}
        self._policies = {t: tuple(p) for t, p in policies.items()}
        self._workloads = {t: tuple(w) for t, w in workloads.items()}
        self.source = source

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], source: str = "memory") -> "SnapshotCatalog":
        try:
            doc = _CatalogDoc.model_validate(data)
        except ValidationError as e:
            first = e.errors()[0]
            where = ".".join(str(p) for p in first.get("loc", ()))
            raise SnapshotError(f"Invalid snapshot document at {where}: {first.get('msg')}", source) from e

        tables: dict[str, TableStatistics] = {}
        columns: dict[str, dict[str, ColumnStatistics]] = {}
        policies: dict[str, list[AccessPolicy]] = {}
        workloads: dict[str, list[RawQueryEntry]] = {}

        for name, table in doc.tables.items():
            tables[name] = TableStatistics(
                table=name,
                row_count=table.row_count,
                avg_row_width=table.avg_row_width,
                write_rate=table.write_rate,
            )
            try:
                columns[name] = {
                    col: ColumnStatistics(
                        table=name,
                        column=col,
                        distinct_count=c.distinct_count,
                        null_fraction=c.null_fraction,
                        histogram_buckets=tuple(HistogramBucket(b, f) for b, f in c.histogram),
                        avg_width=c.avg_width,
                        most_common_values=tuple((v, float(f)) for v, f in c.most_common_values),
                    )
                    for col, c in table.columns.items()
                }
            except ValueError as e:
                raise SnapshotError(f"Invalid statistics for {name}: {e}", source) from e
            policies[name] = [
                AccessPolicy(p.name, name, p.role, p.predicate, p.effect) for p in table.policies
            ]
            workloads[name] = [
                RawQueryEntry(q) if isinstance(q, str) else RawQueryEntry(
                    q.query, q.execution_time_ms, q.rows_scanned, q.rows_returned, q.calls
                )
                for q in table.workload
            ]

        logger.debug("Loaded snapshot catalog from %s (%d tables)", source, len(tables))
        return cls(tables, columns, policies, workloads, source=source)

    @classmethod
    def from_file(cls, path: str | Path) -> "SnapshotCatalog":
        """Load a JSON or YAML snapshot document."""
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise SnapshotError(f"Cannot read snapshot: {e}", str(path)) from e
        try:
            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(text) or {}
            else:
                data = json.loads(text)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise SnapshotError(f"Cannot parse snapshot: {e}", str(path)) from e
        if not isinstance(data, dict):
            raise SnapshotError("Snapshot document must be a mapping", str(path))
        return cls.from_dict(data, source=str(path))

    # -- StatisticsProvider -------------------------------------------------

    def get_table_statistics(self, table: str) -> TableStatistics | None:
        return self._tables.get(table)

    def get_column_statistics(self, table: str, column: str) -> ColumnStatistics | None:
        return self._columns.get(table, {}).get(column)

    # -- PolicyProvider -----------------------------------------------------

    def list_policies(self, table: str) -> Sequence[AccessPolicy]:
        return self._policies.get(table, ())

    # -- WorkloadSource -----------------------------------------------------

    def sample_recent_queries(self, table: str, window: int) -> Sequence[RawQueryEntry]:
        return self._workloads.get(table, ())

    @property
    def tables(self) -> list[str]:
        return sorted(self._tables)
