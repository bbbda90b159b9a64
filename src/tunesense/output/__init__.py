"""
Output module - Separates rendering from analysis.

Provides multiple output formats:
- render_text: Terminal output for the CLI
- render_json: Stable JSON schema, byte-identical for identical inputs
- render_markdown: Review-ticket friendly format

Usage:
    from tunesense.output import render_text, render_json

    report = service.run("orders")
    print(render_text(report))
"""

from tunesense.output.renderers import (
    OutputFormat,
    render,
    render_batch_json,
    render_json,
    render_markdown,
    render_text,
)
from tunesense.output.schema import (
    RecommendationSchema,
    ReportSchema,
    get_json_schema,
)

__all__ = [
    "OutputFormat",
    "render",
    "render_text",
    "render_json",
    "render_batch_json",
    "render_markdown",
    "RecommendationSchema",
    "ReportSchema",
    "get_json_schema",
]
