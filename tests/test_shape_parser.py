"""
Tests for the shape reader and normalizer.

Test philosophy:
- Normalization must be stable: equal shapes get equal keys
- Everything outside the supported subset is an explicit MalformedQueryError
- Expression and partial-index inputs keep enough structure to be indexed
"""

from __future__ import annotations

from datetime import date

import pytest

from tunesense.advisor.models import PlaceholderKind, PredicateOperator
from tunesense.exceptions import MalformedQueryError
from tunesense.workload.shape_parser import normalize, parse_condition, parse_select
from tunesense.workload.statements import statement_kind, to_positional


# =============================================================================
# Normalization
# =============================================================================


class TestNormalization:
    """Literals become typed placeholders; identifiers are canonicalized."""

    def test_number_literal_becomes_placeholder(self) -> None:
        text = normalize("SELECT * FROM orders WHERE user_id = 42")
        assert text == "SELECT * FROM orders WHERE user_id = ?number"

    def test_different_literals_share_a_key(self) -> None:
        a = parse_select("SELECT * FROM orders WHERE user_id = 42")
        b = parse_select("SELECT * FROM orders WHERE user_id = 7")
        assert a.key == b.key
        assert a.normalized_text == b.normalized_text

    def test_bind_parameter(self) -> None:
        text = normalize("SELECT * FROM orders WHERE user_id = $1")
        assert text == "SELECT * FROM orders WHERE user_id = ?param"

    def test_date_literal_is_typed(self) -> None:
        parsed = parse_select("SELECT id FROM orders WHERE created_at >= '2024-01-01'")
        term = parsed.terms[0]
        assert term.placeholders[0].kind == PlaceholderKind.DATE
        assert term.exemplar == (date(2024, 1, 1),)
        assert parsed.normalized_text == "SELECT id FROM orders WHERE created_at >= ?date"

    def test_text_and_date_literals_are_different_shapes(self) -> None:
        a = parse_select("SELECT id FROM orders WHERE note = 'hello'")
        b = parse_select("SELECT id FROM orders WHERE note = '2024-01-01'")
        assert a.key != b.key

    def test_case_alias_and_qualifier(self) -> None:
        text = normalize("select o.id from Orders o where o.User_Id = 5")
        assert text == "SELECT id FROM orders WHERE user_id = ?number"

    def test_whitespace_and_trailing_semicolon(self) -> None:
        a = normalize("SELECT *   FROM orders\n WHERE user_id = 1;")
        b = normalize("SELECT * FROM orders WHERE user_id = 2")
        assert a == b

    def test_swapped_sides_are_mirrored(self) -> None:
        parsed = parse_select("SELECT id FROM payments WHERE 100 < amount")
        term = parsed.terms[0]
        assert term.target == "amount"
        assert term.comparator == ">"
        assert parsed.normalized_text.endswith("WHERE amount > ?number")

    def test_order_by_and_limit(self) -> None:
        text = normalize(
            "SELECT id FROM orders WHERE user_id = 1 ORDER BY created_at DESC LIMIT 10"
        )
        assert text == (
            "SELECT id FROM orders WHERE user_id = ?number "
            "ORDER BY created_at DESC LIMIT ?number"
        )


# =============================================================================
# Terms
# =============================================================================


class TestTerms:
    """Each supported term form maps onto one tagged operator class."""

    def test_between(self) -> None:
        parsed = parse_select("SELECT id FROM payments WHERE amount BETWEEN 1 AND 10")
        term = parsed.terms[0]
        assert term.comparator == "BETWEEN"
        assert term.operator == PredicateOperator.RANGE
        assert term.exemplar == (1, 10)
        assert "amount BETWEEN ?number AND ?number" in parsed.normalized_text

    def test_in_list_length_does_not_change_shape(self) -> None:
        a = parse_select("SELECT id FROM orders WHERE status IN ('paid', 'open')")
        b = parse_select("SELECT id FROM orders WHERE status IN ('paid', 'open', 'void')")
        assert a.key == b.key
        assert a.terms[0].operator == PredicateOperator.IN
        assert len(b.terms[0].exemplar) == 3

    def test_any_parameter_is_in(self) -> None:
        parsed = parse_select("SELECT id FROM orders WHERE user_id = ANY($1)")
        term = parsed.terms[0]
        assert term.comparator == "IN"
        assert term.exemplar == (None,)

    def test_null_checks(self) -> None:
        parsed = parse_select(
            "SELECT id FROM jobs WHERE errors IS NOT NULL AND finished_at IS NULL"
        )
        assert [t.comparator for t in parsed.terms] == ["IS NOT NULL", "IS NULL"]
        assert all(t.operator == PredicateOperator.NULL_CHECK for t in parsed.terms)

    def test_positions_follow_declaration_order(self) -> None:
        parsed = parse_select(
            "SELECT id FROM orders WHERE user_id = 1 AND created_at > '2024-01-01' AND status = 'paid'"
        )
        assert [(t.target, t.position) for t in parsed.terms] == [
            ("user_id", 0),
            ("created_at", 1),
            ("status", 2),
        ]

    def test_parenthesized_conjunction(self) -> None:
        parsed = parse_select("SELECT id FROM orders WHERE (user_id = 1 AND status = 'paid')")
        assert [t.target for t in parsed.terms] == ["user_id", "status"]

    def test_expression_target(self) -> None:
        parsed = parse_select("SELECT id FROM users WHERE lower(email) = 'a@b.c'")
        term = parsed.terms[0]
        assert term.target == "lower(email)"
        assert term.column == "email"
        assert term.function == "lower"
        assert term.is_expression

    def test_literals_inside_expression_are_kept(self) -> None:
        parsed = parse_select(
            "SELECT id FROM orders WHERE date_trunc('month', created_at) = '2024-01-01'"
        )
        term = parsed.terms[0]
        assert term.target == "date_trunc('month', created_at)"
        assert parsed.normalized_text.endswith("date_trunc('month', created_at) = ?date")


class TestAggregation:
    """Aggregations are recorded; they do not add terms."""

    def test_count_star(self) -> None:
        parsed = parse_select("SELECT count(*) FROM events")
        assert parsed.terms == ()
        assert [(a.function, a.argument) for a in parsed.aggregations] == [("count", "*")]
        assert parsed.normalized_text == "SELECT count(*) FROM events"

    def test_group_by(self) -> None:
        parsed = parse_select(
            "SELECT status, sum(amount) FROM orders WHERE user_id = 3 GROUP BY status"
        )
        assert parsed.group_by == ("status",)
        assert parsed.aggregations[0].function == "sum"


# =============================================================================
# Rejections
# =============================================================================


class TestUnsupportedSyntax:
    """Unsupported SQL raises MalformedQueryError instead of being guessed at."""

    @pytest.mark.parametrize(
        "sql",
        [
            "SELECT id FROM orders WHERE user_id = 1 OR user_id = 2",
            "SELECT id FROM orders WHERE NOT user_id = 1",
            "SELECT id FROM orders WHERE user_id <> 1",
            "SELECT id FROM orders WHERE note LIKE 'a%'",
            "SELECT o.id FROM orders o JOIN users u ON u.id = o.user_id",
            "SELECT id FROM orders WHERE user_id IN (SELECT id FROM users)",
            "SELECT id FROM orders WHERE user_id = account_id",
            "SELECT id FROM orders WHERE user_id = NULL",
            "WITH x AS (SELECT 1) SELECT * FROM x",
            "SELECT id FROM orders WHERE user_id NOT IN (1, 2)",
            "SELECT id FROM orders WHERE email ILIKE 'a%'",
            "SELECT DISTINCT ON (user_id) id FROM orders",
            "SELECT id, row_number() OVER () FROM orders",
            "SELECT id FROM (SELECT id FROM orders) sub",
            "SELECT id FROM orders UNION SELECT id FROM refunds",
            "SELECT id FROM orders o WHERE u.user_id = 1",
            "SELECT id FROM orders WHERE",
        ],
    )
    def test_rejected(self, sql: str) -> None:
        with pytest.raises(MalformedQueryError):
            parse_select(sql)

    def test_empty_text(self) -> None:
        with pytest.raises(MalformedQueryError) as exc_info:
            parse_select("   ")
        assert exc_info.value.reason == "empty query text"

    def test_multiple_statements(self) -> None:
        with pytest.raises(MalformedQueryError):
            parse_select("SELECT 1 FROM a; SELECT 2 FROM b")

    def test_write_statement_is_not_a_shape(self) -> None:
        with pytest.raises(MalformedQueryError):
            parse_select("UPDATE orders SET status = 'void' WHERE id = 1")

    def test_error_carries_query_text(self) -> None:
        with pytest.raises(MalformedQueryError) as exc_info:
            parse_select("SELECT id FROM orders WHERE a = 1 OR b = 2")
        error = exc_info.value
        assert "OR" in error.reason
        assert error.to_dict()["error_type"] == "MalformedQueryError"


# =============================================================================
# Conditions and statement kinds
# =============================================================================


class TestParseCondition:
    def test_policy_predicate(self) -> None:
        terms = parse_condition("errors IS NOT NULL")
        assert len(terms) == 1
        assert terms[0].column == "errors"
        assert terms[0].comparator == "IS NOT NULL"

    def test_session_function_is_not_a_column(self) -> None:
        terms = parse_condition("owner = current_user")
        assert terms[0].column == "owner"

    def test_function_call_value(self) -> None:
        terms = parse_condition("user_id = current_user_id()")
        assert terms[0].target == "user_id"


class TestStatementKind:
    @pytest.mark.parametrize(
        "sql, expected",
        [
            ("SELECT * FROM orders", ("select", None)),
            ("INSERT INTO orders (id) VALUES (1)", ("write", "orders")),
            ("UPDATE public.orders SET status = 'x'", ("write", "orders")),
            ("DELETE FROM orders WHERE id = 1", ("write", "orders")),
            ("VACUUM orders", ("other", None)),
        ],
    )
    def test_classification(self, sql: str, expected: tuple[str, str | None]) -> None:
        assert statement_kind(sql) == expected


class TestDriverPlaceholders:
    """Driver-style placeholders read the same as PostgreSQL bind parameters."""

    @pytest.mark.parametrize(
        "sql",
        [
            "SELECT * FROM orders WHERE user_id = ?",
            "SELECT * FROM orders WHERE user_id = %s",
            "SELECT * FROM orders WHERE user_id = %(uid)s",
            "SELECT * FROM orders WHERE user_id = :uid",
        ],
    )
    def test_same_shape_as_positional(self, sql: str) -> None:
        assert normalize(sql) == "SELECT * FROM orders WHERE user_id = ?param"

    def test_numbering_continues_after_existing_parameters(self) -> None:
        rewritten = to_positional("SELECT * FROM t WHERE a = $1 AND b = ? AND c = ?")
        assert rewritten == "SELECT * FROM t WHERE a = $1 AND b = $2 AND c = $3"

    def test_named_parameter_reused(self) -> None:
        rewritten = to_positional("SELECT * FROM t WHERE a = :x AND b > :x")
        assert rewritten == "SELECT * FROM t WHERE a = $1 AND b > $1"

    def test_question_mark_inside_string_untouched(self) -> None:
        rewritten = to_positional("SELECT * FROM t WHERE note = 'why?'")
        assert "'why?'" in rewritten


class TestExpressions:
    """Expression forms accepted by the parser and how they render."""

    def test_typed_parameter(self) -> None:
        text = normalize("SELECT id FROM orders WHERE created_at >= $1::date")
        assert text == "SELECT id FROM orders WHERE created_at >= ?date"

    def test_cast_literal(self) -> None:
        parsed = parse_select("SELECT id FROM orders WHERE created_at >= '2024-03-01'::timestamp")
        assert parsed.terms[0].placeholders[0].kind == PlaceholderKind.TIMESTAMP

    def test_arithmetic_projection(self) -> None:
        parsed = parse_select("SELECT amount * 2 FROM payments WHERE user_id = 1")
        assert parsed.projections == ("amount * ?number",)

    def test_qualified_expression_target_is_stripped(self) -> None:
        parsed = parse_select("SELECT u.id FROM users u WHERE lower(u.email) = $1")
        assert parsed.terms[0].target == "lower(email)"

    def test_negative_number(self) -> None:
        parsed = parse_select("SELECT id FROM payments WHERE amount > -5")
        assert parsed.terms[0].exemplar == (-5,)

    def test_volatile_value_function(self) -> None:
        terms = parse_condition("created_at > current_date")
        assert terms[0].column == "created_at"
