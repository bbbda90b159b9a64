"""
Configuration system for TuneSense.

Every heuristic constant the advisor uses (selectivity cutoffs, cost
parameters, partition size caps) is a named, documented field here so
callers can tune per workload without code changes.

Sources, in order:
- TUNESENSE_CONFIG_FILE (JSON or YAML) when set
- TUNESENSE_<FIELD_NAME> environment variables otherwise

Usage:
    from tunesense.config import get_config, AdvisorConfig

    config = get_config()
    config.single_column_selectivity_threshold  # 0.2

    # Explicit override for one run
    tuned = config.model_copy(update={"min_absolute_benefit": 50.0})
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from tunesense.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "TUNESENSE_"


class AdvisorConfig(BaseModel):
    """
    TuneSense configuration.

    Immutable; derive variants with model_copy(update=...).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    advisor_version: str = Field(
        default="0.3.0",
        description="Advisor version, part of the config hash",
    )

    # Predicate analysis
    default_selectivity: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Selectivity used when a column has no statistics (low-confidence)",
    )
    default_inequality_selectivity: float = Field(
        default=1.0 / 3.0,
        ge=0.0,
        le=1.0,
        description="One-sided range selectivity when the bound is a bind parameter",
    )
    default_range_selectivity: float = Field(
        default=0.005,
        ge=0.0,
        le=1.0,
        description="Two-sided range selectivity when the bounds are bind parameters",
    )

    # Candidate generation
    single_column_selectivity_threshold: float = Field(
        default=0.2,
        gt=0.0,
        le=1.0,
        description="Columns with a predicate below this selectivity get a single-column candidate",
    )
    partial_index_selectivity_threshold: float = Field(
        default=0.3,
        gt=0.0,
        le=1.0,
        description="Null-check predicates below this selectivity get a partial candidate",
    )
    expression_min_shapes: int = Field(
        default=1,
        ge=1,
        description="Shapes an expression must recur in before it gets a candidate",
    )
    max_composite_columns: int = Field(
        default=4,
        ge=2,
        le=32,
        description="Maximum key columns in a composite candidate",
    )

    # Cost model (PostgreSQL default cost parameters)
    seq_page_cost: float = Field(default=1.0, gt=0.0, description="Sequential page read cost")
    random_page_cost: float = Field(default=4.0, gt=0.0, description="Random page read cost")
    cpu_tuple_cost: float = Field(default=0.01, ge=0.0, description="Per-row processing cost")
    cpu_index_tuple_cost: float = Field(
        default=0.005,
        ge=0.0,
        description="Per-index-entry cost, multiplied by the lookup log factor",
    )
    index_entry_overhead: float = Field(
        default=0.0025,
        ge=0.0,
        description="Fixed overhead per matching index entry",
    )
    rows_per_page: int = Field(default=80, ge=1, description="Average heap rows per 8KB page")
    default_column_width: int = Field(
        default=8,
        ge=1,
        description="Column width in bytes when statistics do not provide one",
    )
    assumed_write_rate: float = Field(
        default=100.0,
        ge=0.0,
        description="Writes per window assumed when neither statistics nor workload supply one",
    )
    maintenance_cost_per_byte: float = Field(
        default=0.01,
        ge=0.0,
        description="Maintenance cost per written index byte",
    )
    min_absolute_benefit: float = Field(
        default=1000.0,
        ge=0.0,
        description="Minimum total benefit before an index is recommended",
    )
    full_scan_selectivity_threshold: float = Field(
        default=0.5,
        gt=0.0,
        le=1.0,
        description="Shapes whose combined selectivity is at or above this need a full scan",
    )

    # Partitioning
    high_frequency_ratio: float = Field(
        default=0.1,
        gt=0.0,
        le=1.0,
        description="Shapes with frequency >= ratio * max frequency count as high-frequency",
    )
    partition_majority: float = Field(
        default=0.5,
        ge=0.0,
        lt=1.0,
        description="Share of high-frequency shapes a key column must exceed",
    )
    partition_min_rows: int = Field(
        default=1_000_000,
        ge=0,
        description="Tables smaller than this are never partitioned",
    )
    partition_max_bucket_rows: int = Field(
        default=5_000_000,
        ge=1,
        description="Projected rows a single partition may hold",
    )
    max_partitions: int = Field(
        default=1024,
        ge=2,
        description="Upper bound on generated range partitions",
    )
    partition_skew_tolerance: float = Field(
        default=4.0,
        ge=1.0,
        description="Maximum largest/mean bucket ratio for an even enough layout",
    )
    list_partition_max_values: int = Field(
        default=32,
        ge=2,
        description="Maximum distinct values for list partitioning",
    )
    list_partition_min_coverage: float = Field(
        default=0.95,
        gt=0.0,
        le=1.0,
        description="Fraction of rows the most-common values must cover for list partitioning",
    )

    # Workload history
    history_weight: float = Field(
        default=0.5,
        ge=0.0,
        description="Weight of historical frequency added to the current sample",
    )
    history_decay: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Decay applied to stored frequencies each time history is updated",
    )

    # Runs
    run_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Default deadline for one advisory run",
    )
    max_parallel_runs: int = Field(
        default=4,
        ge=1,
        description="Concurrent advisory runs in run_many",
    )
    workload_window_seconds: int = Field(
        default=86_400,
        ge=1,
        description="Workload sampling window passed to the workload source",
    )

    def config_hash(self) -> str:
        """
        Hash of the configuration, embedded in reports.

        Run-control fields do not change recommendations and are excluded.
        """
        config_dict = self.model_dump(
            exclude={"run_timeout_seconds", "max_parallel_runs"}
        )
        config_json = json.dumps(config_dict, sort_keys=True, default=str)
        return hashlib.sha256(config_json.encode()).hexdigest()[:16]


def _parse_env_value(key: str, raw: str, annotation: Any) -> Any:
    """Parse one environment variable according to the field type."""
    try:
        if annotation is int:
            return int(raw.replace("_", ""))
        if annotation is float:
            return float(raw)
        if annotation is bool:
            return raw.lower() in ("true", "1", "yes", "on")
    except ValueError as e:
        raise ConfigurationError(
            f"Could not parse {key}={raw!r}: {e}", config_key=key
        ) from e
    return raw


def load_config_from_env(environ: dict[str, str] | None = None) -> AdvisorConfig:
    """
    Load configuration from environment variables.

    Naming convention: TUNESENSE_<FIELD_NAME>, for example
    TUNESENSE_MIN_ABSOLUTE_BENEFIT=500 or
    TUNESENSE_PARTITION_MIN_ROWS=10_000_000.
    """
    env = os.environ if environ is None else environ
    kwargs: dict[str, Any] = {}

    for name, field_info in AdvisorConfig.model_fields.items():
        key = f"{ENV_PREFIX}{name.upper()}"
        raw = env.get(key)
        if raw is None:
            continue
        kwargs[name] = _parse_env_value(key, raw, field_info.annotation)

    return _build_config(kwargs, source="environment")


def load_config_from_file(path: Path) -> AdvisorConfig:
    """
    Load configuration from a JSON or YAML file.

    A missing file falls back to environment variables; a file with
    invalid content raises ConfigurationError.
    """
    if not path.exists():
        logger.warning("Config file not found: %s, using environment", path)
        return load_config_from_env()

    try:
        with open(path) as f:
            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f) or {}
            else:
                data = json.load(f)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to read config from {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    return _build_config(data, source=str(path))


def _build_config(values: dict[str, Any], source: str) -> AdvisorConfig:
    try:
        return AdvisorConfig(**values)
    except ValidationError as e:
        first = e.errors()[0]
        key = ".".join(str(p) for p in first.get("loc", ()))
        raise ConfigurationError(
            f"Invalid configuration from {source}: {first.get('msg')}",
            config_key=key or None,
        ) from e


@lru_cache(maxsize=1)
def get_config() -> AdvisorConfig:
    """
    Get the global configuration instance.

    Loads from:
    1. TUNESENSE_CONFIG_FILE environment variable (if set)
    2. Environment variables (default)

    Result is cached for the lifetime of the process.
    """
    config_file = os.environ.get("TUNESENSE_CONFIG_FILE")

    if config_file:
        return load_config_from_file(Path(config_file))

    return load_config_from_env()


def reset_config() -> None:
    """Reset the cached configuration (mainly for testing)."""
    get_config.cache_clear()
