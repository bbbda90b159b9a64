"""
Shape reader: turns a SELECT into a normalized query skeleton.

Query text is parsed by pglast (libpg_query, PostgreSQL's own parser);
this module only decides which parts of the tree make up a shape and
how they are normalized.

Supported subset:
    SELECT [DISTINCT] items FROM table [[AS] alias]
    [WHERE term AND term ...]
    [GROUP BY exprs] [HAVING comparisons] [ORDER BY exprs]
    [LIMIT n] [OFFSET n]

Terms:
    expr {= | < | <= | > | >=} value      (sides may be swapped)
    expr BETWEEN value AND value
    expr IS [NOT] NULL
    expr IN (value, ...)  /  expr = ANY(value)

Everything else (OR, NOT, <>, LIKE, joins, subqueries, CTEs, window
functions, column-to-column comparisons) raises MalformedQueryError so
the analyzer stays total over what it accepts.

Normalization rules:
- Literals compared against a column become typed placeholders.
- Expression targets are deparsed by pglast with qualifiers removed, so
  literals inside them (date_trunc('month', created_at)) are kept.
- Keywords are uppercased, unquoted identifiers lowercased, table
  qualifiers and aliases removed.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Union

from pglast import ast, parse_sql
from pglast.enums import (
    A_Expr_Kind,
    BoolExprType,
    MinMaxOp,
    NullTestType,
    SortByDir,
    SQLValueFunctionOp,
)
from pglast.parser import ParseError
from pglast.stream import RawStream
from pglast.visitors import Visitor

from tunesense.advisor.models import (
    Aggregation,
    Placeholder,
    PlaceholderKind,
    QueryShape,
    ShapeTerm,
)
from tunesense.exceptions import MalformedQueryError
from tunesense.workload.statements import to_positional

logger = logging.getLogger(__name__)

AGGREGATE_FUNCTIONS = frozenset({
    "count", "sum", "avg", "min", "max", "array_agg", "string_agg",
    "bool_and", "bool_or", "every", "stddev", "stddev_pop", "stddev_samp",
    "variance", "var_pop", "var_samp", "json_agg", "jsonb_agg",
})

_COMPARATORS = ("=", "<", "<=", ">", ">=")
_MIRRORED = {"=": "=", "<": ">", "<=": ">=", ">": "<", ">=": "<="}
_ARITHMETIC = ("+", "-", "*", "/", "%", "||")

# Type names as the parser reports them (pg_catalog names for SQL-standard types)
_CAST_KINDS: dict[str, PlaceholderKind] = {
    "date": PlaceholderKind.DATE,
    "timestamp": PlaceholderKind.TIMESTAMP,
    "timestamptz": PlaceholderKind.TIMESTAMP,
    "int2": PlaceholderKind.NUMBER,
    "int4": PlaceholderKind.NUMBER,
    "int8": PlaceholderKind.NUMBER,
    "numeric": PlaceholderKind.NUMBER,
    "float4": PlaceholderKind.NUMBER,
    "float8": PlaceholderKind.NUMBER,
    "text": PlaceholderKind.TEXT,
    "varchar": PlaceholderKind.TEXT,
    "bpchar": PlaceholderKind.TEXT,
    "uuid": PlaceholderKind.TEXT,
    "bool": PlaceholderKind.BOOLEAN,
}

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIMESTAMP_RE = re.compile(r"^\d{4}-\d{2}-\d{2}[ T]\d{2}:\d{2}(:\d{2}(\.\d+)?)?(Z|[+-]\d{2}(:?\d{2})?)?$")


# =============================================================================
# Expression nodes
# =============================================================================


@dataclass(frozen=True)
class Column:
    name: str
    qualifier: str | None = None


@dataclass(frozen=True)
class Literal:
    value: Any
    kind: PlaceholderKind
    raw: str


@dataclass(frozen=True)
class Param:
    number: int


@dataclass(frozen=True)
class Func:
    name: str
    args: tuple["Expr", ...] = ()
    distinct: bool = False
    star: bool = False


@dataclass(frozen=True)
class Cast:
    expr: "Expr"
    type_name: str


@dataclass(frozen=True)
class BinOp:
    op: str
    left: "Expr"
    right: "Expr"


@dataclass(frozen=True)
class Star:
    pass


@dataclass(frozen=True)
class KeywordArg:
    word: str


Expr = Union[Column, Literal, Param, Func, Cast, BinOp, Star, KeywordArg]


@dataclass(frozen=True)
class _RawTerm:
    left: Expr
    comparator: str
    values: tuple[Expr, ...]
    left_node: Any = None
    value_nodes: tuple[Any, ...] = ()


@dataclass
class ParsedQuery:
    """Result of reading one SELECT statement."""

    table: str
    terms: tuple[ShapeTerm, ...]
    projections: tuple[str, ...]
    aggregations: tuple[Aggregation, ...]
    group_by: tuple[str, ...]
    order_by: tuple[str, ...]
    normalized_text: str
    distinct: bool = False
    having: tuple[str, ...] = field(default_factory=tuple)

    @property
    def key(self) -> str:
        return QueryShape.key_for(self.normalized_text)


# =============================================================================
# Literal typing
# =============================================================================


def _string_literal(value: str) -> Literal:
    if _DATE_RE.match(value):
        try:
            return Literal(date.fromisoformat(value), PlaceholderKind.DATE, value)
        except ValueError:
            pass
    if _TIMESTAMP_RE.match(value):
        try:
            normalized = value.replace("Z", "+00:00")
            return Literal(datetime.fromisoformat(normalized), PlaceholderKind.TIMESTAMP, value)
        except ValueError:
            pass
    return Literal(value, PlaceholderKind.TEXT, value)


def _number_literal(raw: str) -> Literal:
    try:
        value: int | float = int(raw)
    except ValueError:
        value = float(raw)
    return Literal(value, PlaceholderKind.NUMBER, raw)


def _cast_literal(lit: Literal, type_name: str) -> Literal:
    kind = _CAST_KINDS.get(type_name)
    if kind is None or kind == lit.kind:
        return lit
    if kind == PlaceholderKind.DATE and isinstance(lit.value, str):
        typed = _string_literal(lit.value)
        if typed.kind == PlaceholderKind.DATE:
            return typed
        if typed.kind == PlaceholderKind.TIMESTAMP:
            return Literal(typed.value.date(), PlaceholderKind.DATE, lit.raw)
    if kind == PlaceholderKind.TIMESTAMP and isinstance(lit.value, str):
        typed = _string_literal(lit.value)
        if typed.kind == PlaceholderKind.TIMESTAMP:
            return typed
        if typed.kind == PlaceholderKind.DATE:
            d = typed.value
            return Literal(datetime(d.year, d.month, d.day), PlaceholderKind.TIMESTAMP, lit.raw)
    if kind == PlaceholderKind.NUMBER and isinstance(lit.value, str):
        try:
            return _number_literal(lit.value.strip())
        except ValueError:
            return Literal(lit.value, kind, lit.raw)
    return Literal(lit.value, kind, lit.raw)


# =============================================================================
# pglast tree -> shape parts
# =============================================================================


def _names(nodes: Any) -> list[str]:
    return [n.sval for n in nodes or () if isinstance(n, ast.String)]


def _operator(node: ast.A_Expr) -> str:
    names = _names(node.name)
    return names[-1] if names else ""


def _type_name(type_name: ast.TypeName) -> str:
    names = _names(type_name.names)
    name = names[-1].lower() if names else ""
    if type_name.arrayBounds:
        name += "[]"
    return name


def _is_null_const(node: Any) -> bool:
    return isinstance(node, ast.A_Const) and bool(node.isnull)


class _Converter:
    """Maps the supported part of a pglast tree onto expression nodes."""

    def __init__(self, sql: str) -> None:
        self.sql = sql

    def fail(self, reason: str) -> None:
        raise MalformedQueryError(reason, self.sql)

    # -- expressions --------------------------------------------------------

    def expr(self, node: Any) -> Expr:
        tag = type(node).__name__ if isinstance(node, ast.Node) else None

        if tag == "ColumnRef":
            fields = node.fields
            if isinstance(fields[-1], ast.A_Star):
                return Star() if len(fields) == 1 else Column("*", fields[-2].sval)
            names = _names(fields)
            return Column(names[-1], names[-2] if len(names) > 1 else None)

        if tag == "A_Const":
            return self.const(node)

        if tag == "ParamRef":
            return Param(node.number)

        if tag == "TypeCast":
            inner = self.expr(node.arg)
            type_name = _type_name(node.typeName)
            if isinstance(inner, Literal):
                return _cast_literal(inner, type_name)
            return Cast(inner, type_name)

        if tag == "FuncCall":
            return self.call(node)

        if tag == "SQLValueFunction":
            name = SQLValueFunctionOp(node.op).name.removeprefix("SVFOP_").removesuffix("_N")
            return Func(name.lower())

        if tag == "CoalesceExpr":
            return Func("coalesce", tuple(self.expr(a) for a in node.args))

        if tag == "MinMaxExpr":
            name = "greatest" if node.op == MinMaxOp.IS_GREATEST else "least"
            return Func(name, tuple(self.expr(a) for a in node.args))

        if tag == "A_Expr" and node.kind == A_Expr_Kind.AEXPR_OP:
            op = _operator(node)
            if op in _ARITHMETIC and node.lexpr is not None:
                return BinOp(op, self.expr(node.lexpr), self.expr(node.rexpr))
            self.fail(f"operator {op} is unsupported in expressions")

        if tag == "SubLink":
            self.fail("subqueries are unsupported")
        if tag in ("CaseExpr", "A_ArrayExpr", "RowExpr"):
            self.fail(f"{tag} expressions are unsupported")
        self.fail(f"unsupported expression {tag}")
        raise AssertionError("unreachable")

    def const(self, node: ast.A_Const) -> Literal:
        if node.isnull:
            return Literal(None, PlaceholderKind.TEXT, "NULL")
        value = node.val
        if isinstance(value, ast.Integer):
            return _number_literal(str(value.ival or 0))
        if isinstance(value, ast.Float):
            return _number_literal(value.fval)
        if isinstance(value, ast.Boolean):
            flag = bool(value.boolval)
            return Literal(flag, PlaceholderKind.BOOLEAN, "TRUE" if flag else "FALSE")
        if isinstance(value, ast.String):
            return _string_literal(value.sval)
        self.fail("bit-string literals are unsupported")
        raise AssertionError("unreachable")

    def call(self, node: ast.FuncCall) -> Func:
        names = _names(node.funcname)
        name = names[-1].lower()
        if node.over is not None:
            self.fail("window functions are unsupported")
        if node.agg_filter is not None:
            self.fail("aggregate FILTER clauses are unsupported")
        if node.agg_within_group or node.agg_order:
            self.fail("ordered aggregates are unsupported")
        if node.agg_star:
            return Func(name, star=True)

        args = [self.expr(a) for a in node.args or ()]
        if name in ("extract", "date_part") and args and isinstance(args[0], Literal):
            args[0] = KeywordArg(str(args[0].value).lower())
        return Func(name, tuple(args), distinct=bool(node.agg_distinct))

    # -- conditions ---------------------------------------------------------

    def conjuncts(self, node: Any) -> list[_RawTerm]:
        tag = type(node).__name__ if isinstance(node, ast.Node) else None

        if tag == "BoolExpr":
            if node.boolop == BoolExprType.OR_EXPR:
                self.fail("OR predicates are unsupported")
            if node.boolop == BoolExprType.NOT_EXPR:
                self.fail("NOT predicates are unsupported")
            terms: list[_RawTerm] = []
            for arg in node.args:
                terms.extend(self.conjuncts(arg))
            return terms

        if tag == "NullTest":
            comparator = "IS NULL" if node.nulltesttype == NullTestType.IS_NULL else "IS NOT NULL"
            return [_RawTerm(self.expr(node.arg), comparator, (), node.arg)]

        if tag == "A_Expr":
            return [self.comparison(node)]

        if tag == "SubLink":
            self.fail("subqueries are unsupported")
        self.fail(f"unsupported condition {tag}")
        raise AssertionError("unreachable")

    def comparison(self, node: ast.A_Expr) -> _RawTerm:
        kind = node.kind
        op = _operator(node)

        if kind == A_Expr_Kind.AEXPR_OP:
            if op == "<>":
                self.fail("inequality predicates are unsupported")
            if op not in _COMPARATORS:
                self.fail(f"operator {op} is unsupported")
            return self._term(node.lexpr, op, [node.rexpr])

        if kind == A_Expr_Kind.AEXPR_OP_ANY:
            if op != "=":
                self.fail("only = ANY(...) is supported")
            values = node.rexpr
            if isinstance(values, ast.A_ArrayExpr):
                return self._term(node.lexpr, "IN", list(values.elements or ()))
            return self._term(node.lexpr, "IN", [values])

        if kind == A_Expr_Kind.AEXPR_IN:
            if op != "=":
                self.fail("NOT IN predicates are unsupported")
            return self._term(node.lexpr, "IN", list(node.rexpr))

        if kind == A_Expr_Kind.AEXPR_BETWEEN:
            return self._term(node.lexpr, "BETWEEN", list(node.rexpr))

        if kind in (A_Expr_Kind.AEXPR_LIKE, A_Expr_Kind.AEXPR_ILIKE, A_Expr_Kind.AEXPR_SIMILAR):
            self.fail("pattern predicates are unsupported")
        self.fail(f"{A_Expr_Kind(kind).name} predicates are unsupported")
        raise AssertionError("unreachable")

    def _term(self, left: Any, comparator: str, values: list[Any]) -> _RawTerm:
        for value in values:
            if comparator != "=" and _is_null_const(value):
                self.fail("comparison with NULL; use IS [NOT] NULL")
        return _RawTerm(
            self.expr(left),
            comparator,
            tuple(self.expr(v) for v in values),
            left,
            tuple(values),
        )


class _StripQualifiers(Visitor):
    """Drops table and schema qualifiers from column references."""

    def visit_ColumnRef(self, ancestors: Any, node: ast.ColumnRef) -> None:
        if len(node.fields) > 1:
            node.fields = node.fields[-1:]


def _deparse(node: Any) -> str:
    return RawStream()(node)


# =============================================================================
# Rendering
# =============================================================================


def _columns_in(expr: Expr) -> list[Column]:
    if isinstance(expr, Column):
        return [] if expr.name == "*" else [expr]
    if isinstance(expr, Func):
        found: list[Column] = []
        for arg in expr.args:
            found.extend(_columns_in(arg))
        return found
    if isinstance(expr, Cast):
        return _columns_in(expr.expr)
    if isinstance(expr, BinOp):
        return _columns_in(expr.left) + _columns_in(expr.right)
    return []


def _literal_sql(lit: Literal) -> str:
    if lit.value is None:
        return "NULL"
    if lit.kind == PlaceholderKind.BOOLEAN:
        return "TRUE" if lit.value else "FALSE"
    if lit.kind == PlaceholderKind.NUMBER:
        return lit.raw
    escaped = str(lit.raw).replace("'", "''")
    return f"'{escaped}'"


def render_expr(expr: Expr, keep_literals: bool = False) -> str:
    """
    Canonical text of a projected or grouped expression.

    Literals become typed placeholders unless keep_literals is set or
    they sit inside a function call that references a column.
    """
    if isinstance(expr, Column):
        return expr.name
    if isinstance(expr, Literal):
        if expr.value is None:
            return "NULL"
        if keep_literals:
            return _literal_sql(expr)
        return Placeholder(expr.kind).render()
    if isinstance(expr, Param):
        return Placeholder(PlaceholderKind.PARAM).render()
    if isinstance(expr, Star):
        return "*"
    if isinstance(expr, KeywordArg):
        return expr.word
    if isinstance(expr, Func):
        if expr.star:
            return f"{expr.name}(*)"
        keep = keep_literals or bool(_columns_in(expr))
        if expr.name == "extract" and len(expr.args) == 2:
            return f"extract({render_expr(expr.args[0])} FROM {render_expr(expr.args[1], keep)})"
        args = ", ".join(render_expr(a, keep) for a in expr.args)
        prefix = "DISTINCT " if expr.distinct else ""
        return f"{expr.name}({prefix}{args})"
    if isinstance(expr, Cast):
        inner = expr.expr
        if isinstance(inner, Param) and not keep_literals:
            kind = _CAST_KINDS.get(expr.type_name, PlaceholderKind.PARAM)
            return Placeholder(kind).render()
        return f"{render_expr(inner, keep_literals)}::{expr.type_name}"
    if isinstance(expr, BinOp):
        def side(e: Expr) -> str:
            text = render_expr(e, keep_literals)
            return f"({text})" if isinstance(e, BinOp) else text
        return f"{side(expr.left)} {expr.op} {side(expr.right)}"
    raise TypeError(f"Unknown expression node: {expr!r}")


def _value_placeholder(expr: Expr) -> tuple[Placeholder, Any]:
    """Placeholder and exemplar value for the value side of a term."""
    if isinstance(expr, Literal):
        if expr.value is None:
            raise ValueError("NULL comparison")
        return Placeholder(expr.kind), expr.value
    if isinstance(expr, Cast) and isinstance(expr.expr, Param):
        return Placeholder(_CAST_KINDS.get(expr.type_name, PlaceholderKind.PARAM)), None
    return Placeholder(PlaceholderKind.PARAM), None


def _function_of(expr: Expr) -> str | None:
    """Wrapping function name for expression targets (None for bare columns)."""
    if isinstance(expr, Column):
        return None
    if isinstance(expr, Func):
        return expr.name
    if isinstance(expr, Cast):
        return "cast"
    return "expr"


# =============================================================================
# Public API
# =============================================================================


def _check_qualifiers(exprs: list[Expr], names: set[str], sql: str) -> None:
    for expr in exprs:
        for col in _columns_in(expr):
            if col.qualifier is not None and col.qualifier not in names:
                raise MalformedQueryError(
                    f"column {col.qualifier}.{col.name} references another relation", sql
                )


def _build_term(raw: _RawTerm, position: int, sql: str) -> ShapeTerm:
    left, left_node = raw.left, raw.left_node
    comparator = raw.comparator
    values = raw.values

    left_cols = _columns_in(left)
    if comparator in _COMPARATORS and not left_cols and values:
        right = values[0]
        if _columns_in(right):
            left, left_node, values = right, raw.value_nodes[0], (raw.left,)
            comparator = _MIRRORED[comparator]
            left_cols = _columns_in(left)

    if not left_cols:
        raise MalformedQueryError("predicate does not reference a column", sql)
    if len({c.name for c in left_cols}) > 1:
        raise MalformedQueryError("predicate expression spans multiple columns", sql)
    for value in values:
        if _columns_in(value):
            raise MalformedQueryError("column-to-column comparisons are unsupported", sql)

    placeholders: list[Placeholder] = []
    exemplar: list[Any] = []
    for value in values:
        try:
            placeholder, sample = _value_placeholder(value)
        except ValueError:
            raise MalformedQueryError("comparison with NULL; use IS [NOT] NULL", sql) from None
        placeholders.append(placeholder)
        exemplar.append(sample)

    if comparator == "IN":
        kinds = {p.kind for p in placeholders}
        kind = kinds.pop() if len(kinds) == 1 else PlaceholderKind.PARAM
        placeholders = [Placeholder(kind)]
        if len(values) == 1 and isinstance(values[0], (Param, Cast)):
            exemplar = [None]

    function = _function_of(left)
    target = left_cols[0].name if function is None else _deparse(left_node)

    return ShapeTerm(
        target=target,
        column=left_cols[0].name,
        comparator=comparator,
        placeholders=tuple(placeholders),
        position=position,
        function=function,
        exemplar=tuple(exemplar),
    )


def _aggregation_of(expr: Expr) -> Aggregation | None:
    if isinstance(expr, Cast):
        return _aggregation_of(expr.expr)
    if isinstance(expr, Func) and expr.name in AGGREGATE_FUNCTIONS:
        if expr.star:
            return Aggregation(expr.name, "*")
        argument = ", ".join(render_expr(a) for a in expr.args)
        if expr.distinct:
            argument = f"DISTINCT {argument}"
        return Aggregation(expr.name, argument)
    return None


def _select_statement(sql: str) -> ast.SelectStmt:
    try:
        tree = parse_sql(to_positional(sql))
    except ParseError as e:
        raise MalformedQueryError(f"syntax error: {e}", sql) from e

    stmt = tree[0].stmt
    if not isinstance(stmt, ast.SelectStmt):
        raise MalformedQueryError("only SELECT statements describe query shapes", sql)
    if stmt.withClause is not None:
        raise MalformedQueryError("CTEs are unsupported", sql)
    if stmt.larg is not None or stmt.valuesLists:
        raise MalformedQueryError("set operations and VALUES lists are unsupported", sql)
    if stmt.lockingClause:
        raise MalformedQueryError("locking clauses are unsupported", sql)
    if stmt.windowClause:
        raise MalformedQueryError("window functions are unsupported", sql)
    if stmt.intoClause is not None:
        raise MalformedQueryError("SELECT INTO is unsupported", sql)
    return stmt


def _from_table(stmt: ast.SelectStmt, sql: str) -> tuple[str, str | None]:
    items = stmt.fromClause or ()
    if not items:
        raise MalformedQueryError("a FROM clause naming one table is required", sql)
    if len(items) > 1 or isinstance(items[0], ast.JoinExpr):
        raise MalformedQueryError("joins are unsupported", sql)
    item = items[0]
    if not isinstance(item, ast.RangeVar):
        raise MalformedQueryError("subqueries and function scans are unsupported", sql)
    alias = item.alias.aliasname if item.alias is not None else None
    return item.relname, alias


def parse_select(sql: str) -> ParsedQuery:
    """
    Read one SELECT statement into a ParsedQuery.

    Raises:
        MalformedQueryError: input outside the supported subset.
    """
    stmt = _select_statement(sql)
    table, alias = _from_table(stmt, sql)
    names = {table} | ({alias} if alias else set())
    convert = _Converter(sql)

    distinct_clause = stmt.distinctClause
    distinct = distinct_clause is not None
    if distinct and any(isinstance(e, ast.Node) for e in distinct_clause):
        raise MalformedQueryError("DISTINCT ON is unsupported", sql)

    items = [convert.expr(target.val) for target in stmt.targetList or ()]
    group_exprs = [convert.expr(node) for node in stmt.groupClause or ()]
    order_items = [
        (convert.expr(sort.node), sort.sortby_dir == SortByDir.SORTBY_DESC)
        for sort in stmt.sortClause or ()
    ]
    raw_terms = convert.conjuncts(stmt.whereClause) if stmt.whereClause is not None else []
    having_terms = convert.conjuncts(stmt.havingClause) if stmt.havingClause is not None else []
    for raw in having_terms:
        if raw.comparator not in _COMPARATORS:
            raise MalformedQueryError("unsupported HAVING condition", sql)

    all_exprs: list[Expr] = list(items) + list(group_exprs) + [e for e, _ in order_items]
    for raw in raw_terms + having_terms:
        all_exprs.append(raw.left)
        all_exprs.extend(raw.values)
    _check_qualifiers(all_exprs, names, sql)

    _StripQualifiers()(stmt)
    terms = tuple(_build_term(raw, i, sql) for i, raw in enumerate(raw_terms))

    projections = tuple(render_expr(e) for e in items)
    aggregations = tuple(a for a in (_aggregation_of(e) for e in items) if a is not None)
    group_by = tuple(render_expr(e) for e in group_exprs)
    order_by = tuple(render_expr(e) + (" DESC" if desc else "") for e, desc in order_items)
    having = tuple(
        f"{render_expr(raw.left)} {raw.comparator} {render_expr(raw.values[0])}"
        for raw in having_terms
    )
    limit = stmt.limitCount is not None and not _is_null_const(stmt.limitCount)
    offset = stmt.limitOffset is not None

    text = "SELECT "
    if distinct:
        text += "DISTINCT "
    text += ", ".join(projections) + f" FROM {table}"
    if terms:
        text += " WHERE " + " AND ".join(t.render() for t in terms)
    if group_by:
        text += " GROUP BY " + ", ".join(group_by)
    if having:
        text += " HAVING " + " AND ".join(having)
    if order_by:
        text += " ORDER BY " + ", ".join(order_by)
    if limit:
        text += " LIMIT ?number"
    if offset:
        text += " OFFSET ?number"

    logger.debug("Parsed shape on %s: %s", table, text)
    return ParsedQuery(
        table=table,
        terms=terms,
        projections=projections,
        aggregations=aggregations,
        group_by=group_by,
        order_by=order_by,
        normalized_text=text,
        distinct=distinct,
        having=having,
    )


def normalize(sql: str) -> str:
    """Normalized text of a SELECT (convenience for the CLI)."""
    return parse_select(sql).normalized_text


def parse_condition(text: str, table: str = "_") -> tuple[ShapeTerm, ...]:
    """
    Read a bare boolean condition (e.g. an RLS policy predicate).

    Goes through the same parser and term rules as WHERE clauses.
    """
    return parse_select(f"SELECT 1 FROM {table} WHERE {text}").terms
