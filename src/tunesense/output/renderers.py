"""
Output renderers for different formats.

Separates presentation logic from analysis logic.
Uses schema.py Pydantic models as the single source of truth
for JSON serialization, no manual dict construction.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import TYPE_CHECKING, Any

from tunesense.output.schema import (
    BatchSchema,
    FailureSchema,
    NoticeSchema,
    RationaleItemSchema,
    RecommendationSchema,
    RejectedSchema,
    ReportSchema,
    ReproducibilitySchema,
    SummarySchema,
)

if TYPE_CHECKING:
    from tunesense.advisor.report import Recommendation, RecommendationReport
    from tunesense.engine import BatchAdvisory


class OutputFormat(str, Enum):
    """Supported output formats."""

    TEXT = "text"
    JSON = "json"
    MARKDOWN = "markdown"


def render(report: "RecommendationReport", format: OutputFormat = OutputFormat.TEXT) -> str:
    """
    Render a recommendation report in the specified format.

    Args:
        report: Report to render
        format: Output format (text, json, markdown)

    Returns:
        Formatted string
    """
    if format == OutputFormat.TEXT:
        return render_text(report)
    elif format == OutputFormat.JSON:
        return render_json(report)
    elif format == OutputFormat.MARKDOWN:
        return render_markdown(report)
    else:
        raise ValueError(f"Unknown output format: {format}")


# =============================================================================
# Schema-based serialization (single source of truth)
# =============================================================================


def _recommendation_to_schema(rec: "Recommendation") -> RecommendationSchema:
    return RecommendationSchema(
        action=rec.action.value,
        target=rec.target,
        description=rec.description,
        ddl=rec.ddl,
        rationale=[RationaleItemSchema(name=n, value=v) for n, v in rec.rationale],
        warnings=list(rec.warnings),
        errors=list(rec.errors),
        blocked=rec.blocked,
        low_confidence=rec.low_confidence,
    )


def _report_to_schema(report: "RecommendationReport") -> ReportSchema:
    """Convert a RecommendationReport to the Pydantic schema model."""
    return ReportSchema(
        version="1.0",
        table=report.table,
        summary=SummarySchema(
            shapes_analyzed=report.shapes_analyzed,
            index_recommendations=len(report.index_recommendations),
            partition_recommended=report.partition_recommendation is not None,
            rejected=len(report.rejected),
            blocked=sum(1 for r in report.recommendations if r.blocked),
            dropped_entries=report.dropped_entries,
            write_entries=report.write_entries,
        ),
        recommendations=[_recommendation_to_schema(r) for r in report.recommendations],
        notices=[
            NoticeSchema(shape_key=n.shape_key, normalized_text=n.normalized_text, message=n.message)
            for n in report.notices
        ],
        rejected=[
            RejectedSchema(
                target=r.target,
                description=r.description,
                reason=r.reason,
                benefit=r.benefit,
                maintenance_cost=r.maintenance_cost,
            )
            for r in report.rejected
        ],
        warnings=list(report.warnings),
        reproducibility=ReproducibilitySchema(
            snapshot_hash=report.snapshot_hash,
            config_hash=report.config_hash,
            advisor_version=report.advisor_version,
        ),
    )


def _report_to_dict(report: "RecommendationReport") -> dict[str, Any]:
    """Convert a RecommendationReport to a dictionary via the schema model."""
    return _report_to_schema(report).model_dump(mode="json")


# =============================================================================
# Text renderer (terminal)
# =============================================================================


def _format_number(value: float) -> str:
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,.4f}".rstrip("0").rstrip(".")


def render_text(report: "RecommendationReport") -> str:
    """Render a recommendation report as terminal text."""
    lines: list[str] = []

    lines.append("=" * 60)
    lines.append(f"TuneSense Advisory Report: {report.table}")
    lines.append("=" * 60)
    lines.append("")

    lines.append("Summary:")
    lines.append(f"  Shapes analyzed: {report.shapes_analyzed}")
    lines.append(f"  Index recommendations: {len(report.index_recommendations)}")
    lines.append(f"  Partition plan: {'yes' if report.partition_recommendation else 'no'}")
    if report.dropped_entries:
        lines.append(f"  Dropped workload entries: {report.dropped_entries}")
    lines.append("")

    if report.recommendations:
        lines.append("-" * 60)
        lines.append("RECOMMENDATIONS")
        lines.append("-" * 60)

        for i, rec in enumerate(report.recommendations, 1):
            marker = "BLOCKED " if rec.blocked else ""
            lines.append("")
            lines.append(f"[{i}] {marker}{rec.description}")
            lines.append(f"    Target: {rec.target}")
            if rec.low_confidence:
                lines.append("    Confidence: low")
            lines.append("")
            for line in rec.ddl.split("\n"):
                lines.append(f"    {line}")

            if rec.rationale:
                lines.append("")
                lines.append("    Rationale:")
                for name, value in rec.rationale:
                    lines.append(f"      {name}: {_format_number(value)}")

            for error in rec.errors:
                lines.append(f"    ERROR: {error}")
            for warning in rec.warnings:
                lines.append(f"    warning: {warning}")
    else:
        lines.append("No recommendations")

    if report.notices:
        lines.append("")
        lines.append("-" * 60)
        lines.append("NOTICES")
        lines.append("-" * 60)
        for notice in report.notices:
            lines.append(f"  {notice.normalized_text}")
            lines.append(f"    {notice.message}")

    if report.rejected:
        lines.append("")
        lines.append("Rejected candidates:")
        for rejected in report.rejected:
            lines.append(f"  {rejected.description}: {rejected.reason}")

    if report.warnings:
        lines.append("")
        lines.append("Warnings:")
        for warning in report.warnings:
            lines.append(f"  - {warning}")

    lines.append("")
    lines.append(f"snapshot {report.snapshot_hash}  config {report.config_hash}  v{report.advisor_version}")
    lines.append("=" * 60)

    return "\n".join(lines)


# =============================================================================
# JSON renderer (uses schema models)
# =============================================================================


def render_json(report: "RecommendationReport", indent: int = 2) -> str:
    """
    Render a recommendation report as stable JSON.

    Identical reports render to identical bytes.
    """
    return json.dumps(_report_to_dict(report), indent=indent, default=str)


def render_batch_json(batch: "BatchAdvisory", indent: int = 2) -> str:
    """Render a multi-table run as one JSON document."""
    schema = BatchSchema(
        reports=[_report_to_schema(r) for r in batch.reports],
        failures=[FailureSchema(table=t, error=e.to_dict()) for t, e in batch.failures],
    )
    return json.dumps(schema.model_dump(mode="json"), indent=indent, default=str)


# =============================================================================
# Markdown renderer
# =============================================================================


def render_markdown(report: "RecommendationReport") -> str:
    """
    Render a recommendation report as Markdown.

    Suitable for change-review tickets and PR comments.
    """
    lines: list[str] = []

    lines.append(f"# TuneSense Advisory Report: `{report.table}`")
    lines.append("")

    if report.has_errors:
        lines.append("**Some recommendations are blocked by policy conflicts**")
    elif report.recommendations:
        lines.append("**Recommendations available**")
    else:
        lines.append("**No recommendations**")
    lines.append("")

    for i, rec in enumerate(report.recommendations, 1):
        lines.append(f"## {i}. {rec.description}")
        lines.append("")
        lines.append("```sql")
        lines.append(rec.ddl)
        lines.append("```")
        lines.append("")
        if rec.rationale:
            lines.append("| Quantity | Value |")
            lines.append("|----------|-------|")
            for name, value in rec.rationale:
                lines.append(f"| `{name}` | {_format_number(value)} |")
            lines.append("")
        for error in rec.errors:
            lines.append(f"- **Error:** {error}")
        for warning in rec.warnings:
            lines.append(f"- Warning: {warning}")
        if rec.errors or rec.warnings:
            lines.append("")

    if report.notices:
        lines.append("## Notices")
        lines.append("")
        for notice in report.notices:
            lines.append(f"- `{notice.normalized_text}`: {notice.message}")
        lines.append("")

    if report.warnings:
        lines.append("<details>")
        lines.append("<summary>Warnings</summary>")
        lines.append("")
        for warning in report.warnings:
            lines.append(f"- {warning}")
        lines.append("")
        lines.append("</details>")

    return "\n".join(lines)
