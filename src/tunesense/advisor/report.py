"""
Recommendation report assembly.

The report is a pure function of the run's inputs: no timestamps, no
durations, every list in a fixed order. Two runs over identical
snapshots and configuration therefore serialize to identical bytes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from tunesense.advisor.access_control import CompatibilityReport
from tunesense.advisor.models import (
    BenefitScore,
    PartitionPlan,
    PartitionStrategy,
    QueryShape,
    ShapeCostVerdict,
)

logger = logging.getLogger(__name__)


class RecommendationAction(str, Enum):
    CREATE_INDEX = "create_index"
    CREATE_PARTITION_PLAN = "create_partition_plan"


@dataclass(frozen=True)
class Recommendation:
    """
    One recommended action.

    Attributes:
        target: Index name or partition plan identity
        ddl: DDL text for an operator to review (never executed)
        rationale: Named numbers behind the decision, in a fixed order
        warnings: Class-(a) policy findings and confidence notes
        errors: Class-(b) policy conflicts; a recommendation with errors
            is blocked and must not be applied
    """

    action: RecommendationAction
    target: str
    description: str
    ddl: str
    rationale: tuple[tuple[str, float], ...] = ()
    warnings: tuple[str, ...] = ()
    errors: tuple[str, ...] = ()
    low_confidence: bool = False

    @property
    def blocked(self) -> bool:
        return len(self.errors) > 0


@dataclass(frozen=True)
class RejectedCandidate:
    target: str
    description: str
    reason: str
    benefit: float
    maintenance_cost: float


@dataclass(frozen=True)
class Notice:
    """Per-shape notice, e.g. a full-scan verdict."""

    shape_key: str
    normalized_text: str
    message: str


@dataclass(frozen=True)
class RecommendationReport:
    table: str
    snapshot_hash: str
    config_hash: str
    advisor_version: str
    recommendations: tuple[Recommendation, ...] = ()
    notices: tuple[Notice, ...] = ()
    rejected: tuple[RejectedCandidate, ...] = ()
    warnings: tuple[str, ...] = ()
    shapes_analyzed: int = 0
    dropped_entries: int = 0
    write_entries: int = 0

    @property
    def index_recommendations(self) -> list[Recommendation]:
        return [r for r in self.recommendations if r.action == RecommendationAction.CREATE_INDEX]

    @property
    def partition_recommendation(self) -> Recommendation | None:
        for r in self.recommendations:
            if r.action == RecommendationAction.CREATE_PARTITION_PLAN:
                return r
        return None

    @property
    def has_errors(self) -> bool:
        return any(r.blocked for r in self.recommendations)


def _index_rationale(score: BenefitScore) -> tuple[tuple[str, float], ...]:
    items: list[tuple[str, float]] = [
        ("benefit", round(score.benefit, 4)),
        ("maintenance_cost", round(score.maintenance_cost, 4)),
        ("net_benefit", round(score.net_benefit, 4)),
        ("write_rate", round(score.write_rate, 4)),
        ("served_shapes", float(len(score.served_shapes))),
    ]
    items.extend((f"shape:{key}", round(delta, 4)) for key, delta in score.shape_deltas)
    return tuple(items)


def _plan_rationale(plan: PartitionPlan) -> tuple[tuple[str, float], ...]:
    items: list[tuple[str, float]] = [
        ("estimated_pruning_benefit", round(plan.estimated_pruning_benefit, 4)),
        ("buckets", float(plan.bucket_count)),
        ("default_bucket_rows", float(plan.default_bucket_rows)),
    ]
    if plan.strategy == PartitionStrategy.RANGE and plan.boundaries:
        items.append(("largest_bucket_rows", float(max(b.estimated_rows for b in plan.boundaries))))
    items.extend((f"shape:{key}", round(benefit, 4)) for key, benefit in plan.rationale)
    return tuple(items)


def _describe_plan(plan: PartitionPlan) -> str:
    if plan.strategy == PartitionStrategy.RANGE:
        return (
            f"range partition on {plan.key_column} by {plan.granularity} "
            f"({len(plan.boundaries)} buckets + DEFAULT)"
        )
    return f"list partition on {plan.key_column} ({len(plan.values)} values + DEFAULT)"


def assemble_report(
    table: str,
    snapshot_hash: str,
    config_hash: str,
    advisor_version: str,
    scores: Sequence[BenefitScore],
    verdicts: Sequence[ShapeCostVerdict],
    shapes: Sequence[QueryShape],
    partition_plan: PartitionPlan | None,
    compatibility: CompatibilityReport,
    warnings: Sequence[str] = (),
    dropped_entries: int = 0,
    write_entries: int = 0,
) -> RecommendationReport:
    """
    Build the ordered report.

    Args:
        scores: Ranked benefit scores (CostModel.rank order)
        verdicts: Per-shape cost verdicts
    """
    recommendations: list[Recommendation] = []
    rejected: list[RejectedCandidate] = []

    for score in scores:
        candidate = score.candidate
        target = candidate.index_name
        if not score.recommended:
            rejected.append(RejectedCandidate(
                target=target,
                description=candidate.describe(),
                reason=score.rejection_reason or "not recommended",
                benefit=round(score.benefit, 4),
                maintenance_cost=round(score.maintenance_cost, 4),
            ))
            continue
        item_warnings = [w.message for w in compatibility.warnings_for(target)]
        if score.low_confidence:
            item_warnings.append("estimate is low-confidence (defaulted statistics or write rate)")
        recommendations.append(Recommendation(
            action=RecommendationAction.CREATE_INDEX,
            target=target,
            description=candidate.describe(),
            ddl=candidate.ddl,
            rationale=_index_rationale(score),
            warnings=tuple(item_warnings),
            errors=tuple(e.message for e in compatibility.errors_for(target)),
            low_confidence=score.low_confidence,
        ))

    if partition_plan is not None:
        target = partition_plan.identity
        recommendations.append(Recommendation(
            action=RecommendationAction.CREATE_PARTITION_PLAN,
            target=target,
            description=_describe_plan(partition_plan),
            ddl=partition_plan.ddl,
            rationale=_plan_rationale(partition_plan),
            warnings=tuple(w.message for w in compatibility.warnings_for(target)),
            errors=tuple(e.message for e in compatibility.errors_for(target)),
        ))

    texts = {s.key: s.normalized_text for s in shapes}
    notices = tuple(
        Notice(v.shape_key, texts.get(v.shape_key, ""), v.reason or "")
        for v in sorted(verdicts, key=lambda v: (texts.get(v.shape_key, ""), v.shape_key))
        if v.full_scan_required
    )

    policy_warnings = [
        w.message for t, w in compatibility.warnings if t.startswith("policy:")
    ]
    all_warnings = tuple(sorted(set(warnings) | set(policy_warnings)))

    logger.debug(
        "Report for %s: %d recommendations, %d rejected, %d notices",
        table, len(recommendations), len(rejected), len(notices),
    )
    return RecommendationReport(
        table=table,
        snapshot_hash=snapshot_hash,
        config_hash=config_hash,
        advisor_version=advisor_version,
        recommendations=tuple(recommendations),
        notices=notices,
        rejected=tuple(rejected),
        warnings=all_warnings,
        shapes_analyzed=len(shapes),
        dropped_entries=dropped_entries,
        write_entries=write_entries,
    )
