"""Unit tests for SQL parameter binding and delete-statement rewriting."""

import math

import pytest

from libs.query_rewrite import (
    QueryRewriteError,
    bind_parameters,
    escape_sql_value,
    is_delete_intent,
    rewrite_delete_statement,
    unwrap_join_tables,
)


class TestEscapeSqlValue:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (None, "NULL"),
            (True, "true"),
            (False, "false"),
            (5, "5"),
            (-2.5, "-2.5"),
            ("abc", "'abc'"),
            ("O'Brien", "'O''Brien'"),
            ("", "''"),
        ],
    )
    def test_literals(self, value, expected):
        assert escape_sql_value(value) == expected

    @pytest.mark.parametrize("value", [math.inf, -math.inf, math.nan])
    def test_rejects_non_finite_numbers(self, value):
        with pytest.raises(ValueError, match="Invalid number"):
            escape_sql_value(value)

    @pytest.mark.parametrize("value", [[1], {"a": 1}, object(), b"x"])
    def test_rejects_unsupported_types(self, value):
        with pytest.raises(ValueError, match="Unsupported data type"):
            escape_sql_value(value)


class TestBindParameters:
    def test_args_and_source(self):
        statement = "SELECT * FROM follows f WHERE f.a = $args.id AND f.b = $source.owner"
        bound = bind_parameters(statement, {"id": "u1"}, {"owner": "u2"})
        assert bound == "SELECT * FROM follows f WHERE f.a = 'u1' AND f.b = 'u2'"

    def test_longest_key_first(self):
        bound = bind_parameters("x = $args.id AND y = $args.id2", {"id": 1, "id2": 2})
        assert bound == "x = 1 AND y = 2"

    def test_arguments_also_bind_source_placeholders(self):
        assert bind_parameters("x = $source.id", {"id": "u1"}) == "x = 'u1'"

    def test_source_wins_for_source_placeholders(self):
        assert bind_parameters("x = $source.id", {"id": "a"}, {"id": "b"}) == "x = 'b'"

    def test_unknown_placeholders_left_alone(self):
        assert bind_parameters("x = $args.missing", {}) == "x = $args.missing"

    def test_unsupported_value_raises(self):
        with pytest.raises(ValueError):
            bind_parameters("x = $args.v", {"v": [1, 2]})

    def test_quote_injection_is_escaped(self):
        bound = bind_parameters("x = $args.v", {"v": "'; DROP TABLE t; --"})
        assert bound == "x = '''; DROP TABLE t; --'"


class TestUnwrapJoinTables:
    def test_unwraps_every_reference(self):
        statement = "SELECT * FROM $join_table(follows) f JOIN $join_table( likes ) l ON true"
        assert unwrap_join_tables(statement) == "SELECT * FROM follows f JOIN likes l ON true"


class TestDeleteRewrite:
    def test_is_delete_intent(self):
        assert is_delete_intent("  delete A FROM T A WHERE A.x = 1")
        assert not is_delete_intent("SELECT * FROM t")

    def test_basic_rewrite(self):
        assert rewrite_delete_statement("DELETE A FROM T A WHERE A.x = 5") == (
            "SELECT A.artifactLocation, A.relationId FROM T A WHERE A.x = 5"
        )

    def test_join_table_wrapper(self):
        rewritten = rewrite_delete_statement(
            "DELETE f FROM $join_table(follows) f WHERE f.since < '2020-01-01T00:00:00Z'"
        )
        assert rewritten == (
            "SELECT f.artifactLocation, f.relationId FROM follows f "
            "WHERE f.since < '2020-01-01T00:00:00Z'"
        )

    def test_as_keyword_and_trailing_semicolon(self):
        assert rewrite_delete_statement("delete a from t as a where a.x = 1;") == (
            "SELECT a.artifactLocation, a.relationId FROM t a WHERE a.x = 1"
        )

    def test_multiline_predicate(self):
        rewritten = rewrite_delete_statement("DELETE A FROM T A\nWHERE A.x = 1\n  AND A.y = 2")
        assert rewritten.endswith("WHERE A.x = 1\n  AND A.y = 2")

    def test_missing_alias(self):
        with pytest.raises(QueryRewriteError):
            rewrite_delete_statement("DELETE FROM T WHERE x = 5")

    def test_alias_mismatch(self):
        with pytest.raises(QueryRewriteError, match="does not match"):
            rewrite_delete_statement("DELETE A FROM T B WHERE B.x = 5")

    def test_missing_where(self):
        with pytest.raises(QueryRewriteError):
            rewrite_delete_statement("DELETE A FROM T A")

    def test_rewrite_error_is_a_value_error(self):
        assert issubclass(QueryRewriteError, ValueError)
