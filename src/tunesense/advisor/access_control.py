"""
Access-control compatibility checker.

Row-level security hides rows from a role, but an index or partition
layout can still reveal them:

Class (a), warning, non-blocking:
    - a partial index whose predicate contradicts the policy on the same
      column holds only rows the role cannot see (existence side channel)
    - an expression index that wraps a policy column in a function not
      known to be leakproof may surface hidden values through errors

Class (b), must-fix, blocks the partition plan:
    - the partition key is referenced by a filter policy: boundaries and
      per-partition row counts in the catalog reveal hidden rows
    - a policy predicate cannot be analyzed (fail closed)

allow_all policies never conflict.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Sequence

from tunesense.advisor.models import (
    AccessPolicy,
    IndexCandidate,
    IndexKind,
    PartitionPlan,
    PolicyEffect,
    PredicateOperator,
    ShapeTerm,
)
from tunesense.exceptions import MalformedQueryError, PolicyConflictError
from tunesense.workload.shape_parser import parse_condition

logger = logging.getLogger(__name__)

# Functions PostgreSQL marks LEAKPROOF (they cannot raise on their input)
LEAKPROOF_FUNCTIONS = frozenset({
    "int2eq", "int4eq", "int8eq", "int4ne", "int8ne", "int4lt", "int4le",
    "int4gt", "int4ge", "texteq", "textne", "bpchareq", "booleq", "boolne",
    "date_eq", "date_lt", "date_gt", "timestamp_eq", "timestamptz_eq",
    "uuid_eq", "oideq", "float8eq",
})

_CALL_RE = re.compile(r"([a-z_][a-z0-9_]*)\s*\(")


@dataclass(frozen=True)
class CompatibilityReport:
    """
    Findings of one compatibility check.

    warnings and errors are (target, finding) pairs where target is an
    index name, a partition plan identity, or "policy:<name>" for
    findings about the policy itself.
    """

    warnings: tuple[tuple[str, PolicyConflictError], ...] = ()
    errors: tuple[tuple[str, PolicyConflictError], ...] = ()
    blocked: frozenset[str] = field(default_factory=frozenset)

    def warnings_for(self, target: str) -> list[PolicyConflictError]:
        return [w for t, w in self.warnings if t == target]

    def errors_for(self, target: str) -> list[PolicyConflictError]:
        return [e for t, e in self.errors if t == target]

    def is_blocked(self, target: str) -> bool:
        return target in self.blocked

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0


def _contradicts(index_term: ShapeTerm, policy_term: ShapeTerm) -> bool:
    """True when no row can satisfy both terms."""
    if index_term.column != policy_term.column or index_term.target != policy_term.target:
        return False
    if index_term.operator == PredicateOperator.NULL_CHECK:
        if policy_term.operator == PredicateOperator.NULL_CHECK:
            return index_term.comparator != policy_term.comparator
        # any comparison in the policy implies NOT NULL
        return index_term.comparator == "IS NULL"
    if policy_term.operator == PredicateOperator.NULL_CHECK:
        return policy_term.comparator == "IS NULL"
    return False


def _is_leakproof(expression: str, known: frozenset[str]) -> bool:
    if "::" in expression or "cast(" in expression.lower():
        return False
    calls = _CALL_RE.findall(expression.lower())
    return bool(calls) and all(name in known for name in calls)


class CompatibilityChecker:
    """
    Checks candidates and partition plans against RLS policies.

    Usage:
        checker = CompatibilityChecker()
        report = checker.check(candidates, policies, plan)
    """

    def __init__(self, leakproof_functions: frozenset[str] = LEAKPROOF_FUNCTIONS) -> None:
        self.leakproof_functions = leakproof_functions

    def check(
        self,
        candidates: Sequence[IndexCandidate],
        policies: Sequence[AccessPolicy],
        partition_plan: PartitionPlan | None = None,
    ) -> CompatibilityReport:
        warnings: list[tuple[str, PolicyConflictError]] = []
        errors: list[tuple[str, PolicyConflictError]] = []
        blocked: set[str] = set()

        for policy in sorted(policies, key=lambda p: (p.name, p.role)):
            if policy.effect == PolicyEffect.ALLOW_ALL:
                continue

            try:
                terms = parse_condition(policy.predicate, policy.table)
            except MalformedQueryError as e:
                logger.warning("Cannot analyze policy %s: %s", policy.name, e.reason)
                warnings.append((
                    f"policy:{policy.name}",
                    PolicyConflictError(
                        f"Policy '{policy.name}' predicate cannot be analyzed ({e.reason})",
                        policy.name, policy.role, f"policy:{policy.name}", "a",
                    ),
                ))
                if partition_plan is not None and partition_plan.table == policy.table:
                    target = partition_plan.identity
                    errors.append((target, PolicyConflictError(
                        f"Partition plan on {partition_plan.key_column} blocked: policy "
                        f"'{policy.name}' for role {policy.role} cannot be analyzed",
                        policy.name, policy.role, target, "b",
                    )))
                    blocked.add(target)
                continue

            policy_columns = {t.column for t in terms}

            for candidate in candidates:
                if candidate.table != policy.table:
                    continue
                finding = self._check_candidate(candidate, policy, terms, policy_columns)
                if finding is not None:
                    warnings.append((candidate.index_name, finding))

            if (
                partition_plan is not None
                and partition_plan.table == policy.table
                and partition_plan.key_column in policy_columns
            ):
                target = partition_plan.identity
                errors.append((target, PolicyConflictError(
                    f"Partition key {partition_plan.key_column} is referenced by policy "
                    f"'{policy.name}' for role {policy.role}; partition bounds and row "
                    f"counts would reveal rows the role cannot see",
                    policy.name, policy.role, target, "b",
                )))
                blocked.add(target)

        for target, finding in warnings:
            logger.info("Policy warning on %s: %s", target, finding.message)
        for target, finding in errors:
            logger.warning("Policy conflict on %s: %s", target, finding.message)

        return CompatibilityReport(
            warnings=tuple(warnings),
            errors=tuple(errors),
            blocked=frozenset(blocked),
        )

    def _check_candidate(
        self,
        candidate: IndexCandidate,
        policy: AccessPolicy,
        policy_terms: Sequence[ShapeTerm],
        policy_columns: set[str],
    ) -> PolicyConflictError | None:
        if candidate.kind == IndexKind.PARTIAL and candidate.predicate:
            try:
                index_terms = parse_condition(candidate.predicate, candidate.table)
            except MalformedQueryError:
                return None
            for index_term in index_terms:
                for policy_term in policy_terms:
                    if _contradicts(index_term, policy_term):
                        return PolicyConflictError(
                            f"Partial index predicate '{candidate.predicate}' contradicts "
                            f"policy '{policy.name}' ({policy.predicate}) for role "
                            f"{policy.role}; the index holds only rows the role cannot see",
                            policy.name, policy.role, candidate.index_name, "a",
                        )

        if candidate.kind == IndexKind.EXPRESSION and candidate.expression_column in policy_columns:
            expression = candidate.columns[0]
            if not _is_leakproof(expression, self.leakproof_functions):
                return PolicyConflictError(
                    f"Expression index on {expression} wraps policy column "
                    f"{candidate.expression_column} (policy '{policy.name}', role "
                    f"{policy.role}) in a function not known to be leakproof",
                    policy.name, policy.role, candidate.index_name, "a",
                )
        return None
