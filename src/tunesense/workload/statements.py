"""
Internal sqlparse-based statement handling.

Query text is parsed by the PostgreSQL parser (see shape_parser), which
only knows `$n` bind parameters. Workload logs also carry driver-style
placeholders (`?`, `%s`, `%(name)s`, `:name`); sqlparse's lexer finds
them outside string literals so they can be renumbered as `$n` first.

Write statements are never parsed into shapes. The grouped sqlparse
tree is enough to find their target table.
"""

from __future__ import annotations

import logging
import re

import sqlparse
from sqlparse import tokens as T
from sqlparse.sql import Function, Identifier, Statement

from tunesense.exceptions import MalformedQueryError

logger = logging.getLogger(__name__)

_POSITIONAL_RE = re.compile(r"^\$(\d+)$")

# keyword that precedes the target table of each write
_TARGET_ANCHORS = {"INSERT": "INTO", "UPDATE": "UPDATE", "DELETE": "FROM"}


def _has_content(statement: Statement) -> bool:
    for token in statement.flatten():
        if token.is_whitespace or token.ttype in T.Comment:
            continue
        if token.match(T.Punctuation, ";"):
            continue
        return True
    return False


def single_statement(sql: str) -> Statement:
    """
    The one statement in `sql`.

    Raises:
        MalformedQueryError: empty text or more than one statement.
    """
    if not sql or not sql.strip():
        raise MalformedQueryError("empty query text", sql)
    statements = [s for s in sqlparse.parse(sql) if _has_content(s)]
    if not statements:
        raise MalformedQueryError("no statement found", sql)
    if len(statements) > 1:
        raise MalformedQueryError("multiple statements in one entry", sql)
    return statements[0]


def to_positional(sql: str) -> str:
    """Rewrite driver-style placeholders as `$n` parameters."""
    leaves = list(single_statement(sql).flatten())

    numbers = [
        int(match.group(1))
        for leaf in leaves
        if leaf.ttype in T.Name.Placeholder
        for match in [_POSITIONAL_RE.match(leaf.value)]
        if match
    ]
    next_number = max(numbers, default=0)
    named: dict[str, str] = {}

    parts: list[str] = []
    for leaf in leaves:
        value = leaf.value
        if leaf.ttype in T.Name.Placeholder and not _POSITIONAL_RE.match(value):
            if value in ("?", "%s"):
                next_number += 1
                value = f"${next_number}"
            else:
                if value not in named:
                    next_number += 1
                    named[value] = f"${next_number}"
                value = named[value]
        parts.append(value)
    return "".join(parts).strip()


def _identifier_name(identifier: Identifier) -> str | None:
    name = identifier.get_real_name()
    if name is None:
        return None
    return name if f'"{name}"' in identifier.value else name.lower()


def _target_table(statement: Statement, kind: str) -> str | None:
    anchor = _TARGET_ANCHORS[kind]
    seen_anchor = False
    for token in statement.tokens:
        if token.is_whitespace or token.ttype in T.Comment:
            continue
        if not seen_anchor:
            seen_anchor = token.is_keyword and token.normalized == anchor
            continue
        if token.is_keyword and token.normalized == "ONLY":
            continue
        # "INSERT INTO t (a, b)" groups as a call of t
        if isinstance(token, Function):
            token = token.tokens[0]
        if isinstance(token, Identifier):
            return _identifier_name(token)
        if token.ttype in T.Name:
            return token.value.lower()
        return None
    return None


def statement_kind(sql: str) -> tuple[str, str | None]:
    """
    Classify query text as a read or a write.

    Returns:
        ("select", None), ("write", table) for INSERT/UPDATE/DELETE,
        or ("other", None).
    """
    statement = single_statement(sql)
    kind = statement.get_type()
    if kind == "SELECT":
        return ("select", None)
    if kind in _TARGET_ANCHORS:
        return ("write", _target_table(statement, kind))
    return ("other", None)
