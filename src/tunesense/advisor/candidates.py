"""
Index candidate generator.

Rules, applied per shape over its analyzed predicates:

1. single      - bare column with a selective eq/in/range predicate
2. composite   - equality columns (most selective first) + one range column
3. expression  - deterministic function of one column, recurring in shapes
4. partial     - selective IS [NOT] NULL, keyed on the shape's other columns

Candidates are deduplicated by (kind, columns, predicate) and ordered by
the summed frequency of the shapes that produced them.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Mapping, Sequence

from tunesense.advisor.models import (
    IndexCandidate,
    IndexKind,
    Predicate,
    PredicateOperator,
    QueryShape,
)
from tunesense.config import AdvisorConfig, get_config

logger = logging.getLogger(__name__)

VOLATILE_FUNCTIONS = frozenset({
    "now", "random", "clock_timestamp", "statement_timestamp",
    "transaction_timestamp", "timeofday", "current_timestamp", "current_date",
    "current_time", "localtimestamp", "localtime", "nextval", "currval",
    "setval", "setseed", "gen_random_uuid", "uuid_generate_v4", "txid_current",
})

_CALL_RE = re.compile(r"([a-z_][a-z0-9_]*)\s*\(")
# SQL value functions deparse without parentheses (CURRENT_DATE)
_WORD_RE = re.compile(r"\b(current_date|current_timestamp|current_time|localtimestamp|localtime)\b")


def is_deterministic(expression: str) -> bool:
    """True when no function called in `expression` is volatile."""
    text = expression.lower()
    if _WORD_RE.search(text):
        return False
    return not any(name in VOLATILE_FUNCTIONS for name in _CALL_RE.findall(text))


@dataclass
class _Pending:
    candidate: IndexCandidate
    shapes: list[str] = field(default_factory=list)
    frequency: int = 0
    low_confidence: bool = False


class CandidateGenerator:
    """
    Proposes index candidates from analyzed predicates.

    Usage:
        generator = CandidateGenerator()
        candidates = generator.generate(predicates_by_shape, shapes)
    """

    def __init__(self, config: AdvisorConfig | None = None) -> None:
        self.config = config or get_config()

    def generate(
        self,
        predicates_by_shape: Mapping[str, Sequence[Predicate]],
        shapes: Sequence[QueryShape],
    ) -> list[IndexCandidate]:
        pending: dict[tuple[str, tuple[str, ...], str], _Pending] = {}

        def propose(
            shape: QueryShape,
            kind: IndexKind,
            columns: tuple[str, ...],
            low_confidence: bool,
            predicate: str | None = None,
            expression_column: str | None = None,
        ) -> None:
            candidate = IndexCandidate(
                table=shape.table,
                kind=kind,
                columns=columns,
                predicate=predicate,
                expression_column=expression_column,
            )
            entry = pending.get(candidate.identity)
            if entry is None:
                entry = _Pending(candidate)
                pending[candidate.identity] = entry
            if shape.key not in entry.shapes:
                entry.shapes.append(shape.key)
                entry.frequency += shape.frequency
            entry.low_confidence = entry.low_confidence or low_confidence

        expression_shapes: dict[str, set[str]] = {}
        for shape in shapes:
            for p in predicates_by_shape.get(shape.key, ()):
                if p.is_expression and p.operator != PredicateOperator.NULL_CHECK:
                    expression_shapes.setdefault(p.target, set()).add(shape.key)

        for shape in shapes:
            predicates = list(predicates_by_shape.get(shape.key, ()))
            self._single(shape, predicates, propose)
            self._composite(shape, predicates, propose)
            self._expression(shape, predicates, expression_shapes, propose)
            self._partial(shape, predicates, propose)

        ordered = sorted(pending.values(), key=lambda e: (-e.frequency, e.candidate.identity))
        result = [
            IndexCandidate(
                table=e.candidate.table,
                kind=e.candidate.kind,
                columns=e.candidate.columns,
                predicate=e.candidate.predicate,
                expression_column=e.candidate.expression_column,
                source_shapes=tuple(e.shapes),
                low_confidence=e.low_confidence,
            )
            for e in ordered
        ]
        logger.debug("Generated %d index candidates from %d shapes", len(result), len(shapes))
        return result

    def _single(self, shape, predicates, propose) -> None:
        threshold = self.config.single_column_selectivity_threshold
        for p in predicates:
            if p.is_expression or p.operator == PredicateOperator.NULL_CHECK:
                continue
            if p.estimated_selectivity < threshold:
                propose(shape, IndexKind.SINGLE, (p.column,), p.low_confidence)

    def _composite(self, shape, predicates, propose) -> None:
        bare = [p for p in predicates if not p.is_expression]
        equality = _unique_columns(p for p in bare if p.is_equality)
        ranges = [p for p in bare if p.is_range and p.column not in equality]
        if not equality or not ranges:
            return
        leading = equality[: self.config.max_composite_columns - 1]
        eq_confidence = any(p.low_confidence for p in bare if p.is_equality and p.column in leading)
        seen: set[str] = set()
        for r in ranges:
            if r.column in seen:
                continue
            seen.add(r.column)
            propose(
                shape,
                IndexKind.COMPOSITE,
                tuple(leading) + (r.column,),
                eq_confidence or r.low_confidence,
            )

    def _expression(self, shape, predicates, expression_shapes, propose) -> None:
        for p in predicates:
            if not p.is_expression or p.operator == PredicateOperator.NULL_CHECK:
                continue
            if not is_deterministic(p.target):
                logger.debug("Skipping volatile expression %s", p.target)
                continue
            if len(expression_shapes.get(p.target, ())) < self.config.expression_min_shapes:
                continue
            propose(
                shape,
                IndexKind.EXPRESSION,
                (p.target,),
                p.low_confidence,
                expression_column=p.column,
            )

    def _partial(self, shape, predicates, propose) -> None:
        threshold = self.config.partial_index_selectivity_threshold
        for p in predicates:
            if p.operator != PredicateOperator.NULL_CHECK or p.estimated_selectivity >= threshold:
                continue
            if p.is_expression and not is_deterministic(p.target):
                continue
            others = [o for o in predicates if not o.is_expression and o.column != p.column]
            keys = _unique_columns(o for o in others if o.is_equality)
            keys += [c for c in _unique_columns(o for o in others if o.is_range) if c not in keys]
            keys = keys[: self.config.max_composite_columns]
            if not keys:
                keys = [p.column]
            propose(shape, IndexKind.PARTIAL, tuple(keys), p.low_confidence, predicate=p.text)


def _unique_columns(predicates) -> list[str]:
    columns: list[str] = []
    for p in predicates:
        if p.column not in columns:
            columns.append(p.column)
    return columns
