"""
Package-level exception hierarchy for TuneSense.

All exceptions inherit from TuneSenseError, enabling:
- Catching all TuneSense errors with a single except clause
- Rich context fields for debugging (query_text, column, policy, stage)
- Structured serialization via to_dict() for report warnings and JSON output

Hierarchy:
    TuneSenseError
    ├── MalformedQueryError     – A workload entry is outside the supported SQL subset
    ├── MissingStatisticsError  – No statistics for a column or expression
    ├── PolicyConflictError     – A recommendation would widen what a role can infer
    ├── TimedOutError           – An advisory run exceeded its deadline
    ├── ConfigurationError      – Invalid advisor configuration
    └── SnapshotError           – A provider document could not be loaded

Only TimedOutError is fatal to a run. The others are recoverable and are
accumulated into the report as warnings or per-item errors.
"""

from __future__ import annotations

from typing import Any


class TuneSenseError(Exception):
    """
    Base exception for all TuneSense errors.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
        }


# ── Workload Errors ──────────────────────────────────────────────────────


class MalformedQueryError(TuneSenseError):
    """
    A query log entry could not be turned into a QueryShape.

    Raised for unparsable text and for SQL outside the supported subset
    (OR, joins, subqueries, ...). Recoverable: the entry is dropped and
    counted, the batch continues.

    Attributes:
        query_text: The offending query text (truncated for display).
        reason: Short machine-friendly reason.
    """

    MAX_QUERY_DISPLAY = 200

    def __init__(self, reason: str, query_text: str | None = None) -> None:
        self.reason = reason
        self.query_text = query_text
        message = f"Malformed query: {reason}"
        if query_text:
            shown = query_text.strip()
            if len(shown) > self.MAX_QUERY_DISPLAY:
                shown = shown[: self.MAX_QUERY_DISPLAY] + "..."
            message += f" ({shown})"
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["reason"] = self.reason
        return result


# ── Statistics Errors ────────────────────────────────────────────────────


class MissingStatisticsError(TuneSenseError):
    """
    No statistics are available for a column or expression.

    Recoverable: the analyzer falls back to a conservative default
    selectivity and marks the estimate low-confidence.

    Attributes:
        table: Table name.
        target: Column name or canonical expression text.
    """

    def __init__(self, table: str, target: str) -> None:
        self.table = table
        self.target = target
        super().__init__(
            f"No statistics for {table}.{target}; using low-confidence default selectivity"
        )

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["table"] = self.table
        result["target"] = self.target
        return result


# ── Access-Control Errors ────────────────────────────────────────────────


class PolicyConflictError(TuneSenseError):
    """
    A recommendation conflicts with a row-level security policy.

    Must-fix: blocks the specific recommendation, never the whole run.

    Attributes:
        policy: Name of the conflicting policy.
        role: Role the policy applies to.
        target: Identifier of the blocked recommendation.
        conflict_class: "a" (side channel, warning) or "b" (inference leak, error).
    """

    def __init__(
        self,
        message: str,
        policy: str,
        role: str,
        target: str,
        conflict_class: str = "b",
    ) -> None:
        self.policy = policy
        self.role = role
        self.target = target
        self.conflict_class = conflict_class
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["policy"] = self.policy
        result["role"] = self.role
        result["target"] = self.target
        result["conflict_class"] = self.conflict_class
        return result


# ── Run Errors ───────────────────────────────────────────────────────────


class TimedOutError(TuneSenseError):
    """
    An advisory run exceeded its caller-supplied timeout.

    Fatal to the run: partial state is discarded and no report is returned.

    Attributes:
        table: Table the run was advising.
        timeout_seconds: The deadline that was exceeded.
        stage: Last pipeline stage that started before the deadline.
    """

    def __init__(
        self,
        table: str,
        timeout_seconds: float,
        stage: str | None = None,
    ) -> None:
        self.table = table
        self.timeout_seconds = timeout_seconds
        self.stage = stage
        message = f"Advisory run for '{table}' timed out after {timeout_seconds:.2f}s"
        if stage:
            message += f" during {stage}"
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["table"] = self.table
        result["timeout_seconds"] = self.timeout_seconds
        result["stage"] = self.stage
        return result


class ConfigurationError(TuneSenseError):
    """
    Error in advisor configuration.

    Attributes:
        config_key: The configuration key that caused the error (if known).
    """

    def __init__(self, message: str, config_key: str | None = None) -> None:
        self.config_key = config_key
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["config_key"] = self.config_key
        return result


class SnapshotError(TuneSenseError):
    """
    A statistics/policy/workload document could not be loaded.

    Attributes:
        source: Description of the input source (file path, "stdin", etc.).
    """

    def __init__(self, message: str, source: str | None = None) -> None:
        self.source = source
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["source"] = self.source
        return result
