"""
JSON Schema definitions for stable report output.

The pydantic models here are the single source of truth for the JSON
form of a RecommendationReport. Field order is fixed by declaration
order, and no field carries run-dependent data (timestamps, durations),
so identical inputs serialize to identical bytes.

The schema is stable across minor versions.
Breaking changes only in major versions.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RationaleItemSchema(BaseModel):
    """One named number behind a decision."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Quantity name, e.g. net_benefit or shape:<key>")
    value: float = Field(..., description="Quantity value")


class RecommendationSchema(BaseModel):
    """Schema for a single recommended action."""

    model_config = ConfigDict(frozen=True)

    action: str = Field(..., description="create_index or create_partition_plan")
    target: str = Field(..., description="Index name or partition plan identity")
    description: str = Field(..., description="One-line summary")
    ddl: str = Field(..., description="DDL for operator review; never executed")
    rationale: list[RationaleItemSchema] = Field(default_factory=list, description="Numbers behind the decision")
    warnings: list[str] = Field(default_factory=list, description="Advisory findings")
    errors: list[str] = Field(default_factory=list, description="Must-fix policy conflicts")
    blocked: bool = Field(False, description="True when errors block applying this item")
    low_confidence: bool = Field(False, description="Estimate used defaulted inputs")


class RejectedSchema(BaseModel):
    """Schema for a candidate that was considered and rejected."""

    model_config = ConfigDict(frozen=True)

    target: str = Field(..., description="Index name")
    description: str = Field(..., description="One-line summary")
    reason: str = Field(..., description="Why the candidate was rejected")
    benefit: float = Field(0.0, description="Estimated benefit")
    maintenance_cost: float = Field(0.0, description="Estimated maintenance cost")


class NoticeSchema(BaseModel):
    """Schema for a per-shape notice."""

    model_config = ConfigDict(frozen=True)

    shape_key: str = Field(..., description="Shape key")
    normalized_text: str = Field(..., description="Normalized query text")
    message: str = Field(..., description="Notice text")


class SummarySchema(BaseModel):
    """Schema for report summary."""

    model_config = ConfigDict(frozen=True)

    shapes_analyzed: int = Field(0, description="Distinct query shapes for the table")
    index_recommendations: int = Field(0, description="Recommended indexes")
    partition_recommended: bool = Field(False, description="Whether a partition plan is recommended")
    rejected: int = Field(0, description="Rejected candidates")
    blocked: int = Field(0, description="Recommendations blocked by policy conflicts")
    dropped_entries: int = Field(0, description="Workload entries that could not be parsed")
    write_entries: int = Field(0, description="Write statements in the workload sample")


class ReproducibilitySchema(BaseModel):
    """Schema for reproducibility information."""

    model_config = ConfigDict(frozen=True)

    snapshot_hash: str = Field(..., description="Hash of the statistics snapshot")
    config_hash: str = Field(..., description="Hash of the advisor configuration")
    advisor_version: str = Field(..., description="TuneSense version")


class ReportSchema(BaseModel):
    """
    Top-level schema for a recommendation report.

    This schema is stable across minor versions.
    Breaking changes require major version bump.
    """

    model_config = ConfigDict(frozen=True)

    version: str = Field("1.0", description="Schema version")
    table: str = Field(..., description="Advised table")
    summary: SummarySchema = Field(..., description="Report summary")
    recommendations: list[RecommendationSchema] = Field(default_factory=list, description="Ranked recommendations")
    notices: list[NoticeSchema] = Field(default_factory=list, description="Per-shape notices")
    rejected: list[RejectedSchema] = Field(default_factory=list, description="Rejected candidates")
    warnings: list[str] = Field(default_factory=list, description="Run-level warnings")
    reproducibility: ReproducibilitySchema = Field(..., description="Reproducibility info")


class FailureSchema(BaseModel):
    """Schema for a failed table in a batch run."""

    model_config = ConfigDict(frozen=True)

    table: str = Field(..., description="Table name")
    error: dict[str, Any] = Field(..., description="Serialized TuneSenseError")


class BatchSchema(BaseModel):
    """Schema for a multi-table run."""

    model_config = ConfigDict(frozen=True)

    version: str = Field("1.0", description="Schema version")
    reports: list[ReportSchema] = Field(default_factory=list, description="Per-table reports")
    failures: list[FailureSchema] = Field(default_factory=list, description="Per-table failures")


def get_json_schema() -> dict[str, Any]:
    """Get the JSON Schema for the report document."""
    return ReportSchema.model_json_schema()


# Schema version - increment on breaking changes
SCHEMA_VERSION = "1.0"
