"""Tests for the read-only query policy."""

from __future__ import annotations

import pytest

from tabletalk.query.validator import (
    BLOCKED_KEYWORDS,
    READ_ONLY_ERROR,
    QueryType,
    QueryValidator,
    validate_query,
)


class TestStatementType:
    """Test the SELECT-only check."""

    def test_valid_select_query(self) -> None:
        result = QueryValidator().validate("SELECT region, total FROM data_sales LIMIT 5")

        assert result.valid
        assert result.query_type == QueryType.SELECT
        assert result.tables_accessed == ["data_sales"]
        assert result.error is None

    def test_leading_whitespace_and_lowercase(self) -> None:
        assert validate_query("  \n select a from t limit 1").valid

    @pytest.mark.parametrize(
        "sql",
        [
            "INSERT INTO t VALUES (1)",
            "UPDATE t SET a = 1",
            "WITH x AS (SELECT 1) SELECT * FROM x",
            "EXPLAIN SELECT 1",
            "",
        ],
    )
    def test_non_select_rejected(self, sql: str) -> None:
        result = validate_query(sql)

        assert not result.valid
        assert result.sql == sql
        assert result.error == READ_ONLY_ERROR

    def test_detects_statement_type(self) -> None:
        assert validate_query("DELETE FROM t").query_type == QueryType.DELETE
        assert validate_query("PRAGMA table_info(t)").query_type == QueryType.OTHER

    def test_informational_reply_becomes_error(self) -> None:
        """A model reply explaining the question can't be answered is surfaced as-is."""
        reply = "The salary information is not available in the uploaded file."
        result = validate_query(reply)

        assert not result.valid
        assert result.error == reply
        assert result.sql == reply


class TestBlockedKeywords:
    """Test the substring keyword blocklist."""

    @pytest.mark.parametrize("keyword", BLOCKED_KEYWORDS)
    def test_each_keyword_named_in_error(self, keyword: str) -> None:
        sql = f"SELECT a FROM t; {keyword.upper()} something"
        result = validate_query(sql)

        assert not result.valid
        assert result.blocked_keyword == keyword
        assert result.error is not None
        assert keyword.upper() in result.error
        assert result.sql == sql

    def test_case_insensitive(self) -> None:
        result = validate_query("SELECT * FROM t; dRoP TABLE t")
        assert result.blocked_keyword == "drop"

    def test_substring_false_positive_on_column_name(self) -> None:
        """created_at contains 'create'; the coarse check rejects it anyway."""
        result = validate_query("SELECT created_at FROM t")

        assert not result.valid
        assert result.blocked_keyword == "create"

    def test_substring_false_positive_on_literal(self) -> None:
        result = validate_query("SELECT * FROM t WHERE status = 'update pending'")
        assert result.blocked_keyword == "update"

    def test_custom_blocklist(self) -> None:
        validator = QueryValidator(blocked_keywords=["sleep"])
        assert validator.validate("SELECT created_at FROM t").valid
        assert not validator.validate("SELECT sleep(5)").valid


class TestTableScope:
    """Test the optional table allow-list."""

    def test_allowed_table_passes(self) -> None:
        validator = QueryValidator(allowed_tables=["data_sales_1a2b3c4d"])
        assert validator.validate("SELECT * FROM data_sales_1a2b3c4d LIMIT 1").valid

    def test_other_table_denied(self) -> None:
        validator = QueryValidator(allowed_tables=["data_sales_1a2b3c4d"])
        result = validator.validate("SELECT * FROM tt_query_log")

        assert not result.valid
        assert result.error is not None
        assert "Access denied" in result.error
        assert "tt_query_log" in result.error

    def test_join_and_quoted_names(self) -> None:
        validator = QueryValidator(allowed_tables=["a", "b"])
        result = validator.validate('SELECT * FROM "a" JOIN b ON a.id = b.id LIMIT 5')

        assert result.valid
        assert result.tables_accessed == ["a", "b"]

    def test_table_names_case_insensitive(self) -> None:
        validator = QueryValidator(allowed_tables=["Data_Sales"])
        assert validator.validate("SELECT * FROM data_sales LIMIT 1").valid

    def test_no_allow_list_means_no_scope_check(self) -> None:
        assert validate_query("SELECT * FROM anything LIMIT 1").valid


class TestWarnings:
    def test_select_star_and_missing_limit(self) -> None:
        result = validate_query("SELECT * FROM t")

        assert result.valid
        assert len(result.warnings) == 2

    def test_no_warnings(self) -> None:
        assert validate_query("SELECT a FROM t LIMIT 10").warnings == []


class TestTableExtraction:
    """Test that every referenced table reaches the allow-list."""

    @pytest.mark.parametrize(
        "sql",
        [
            "SELECT salary FROM mine, theirs",
            "SELECT salary FROM mine AS m, theirs AS t WHERE m.id = t.id",
            "SELECT salary FROM mine m, theirs t",
            'SELECT salary FROM mine, "theirs"',
            "SELECT salary FROM mine, [theirs]",
            "SELECT salary FROM mine, `theirs`",
            "SELECT salary FROM mine JOIN other ON mine.id = other.id, theirs",
            "SELECT salary FROM (SELECT * FROM mine) AS s, theirs",
            "SELECT salary FROM mine\n, /* note */ theirs",
        ],
    )
    def test_every_from_list_item_is_checked(self, sql: str) -> None:
        validator = QueryValidator(allowed_tables=["mine", "other"])
        result = validator.validate(sql)

        assert not result.valid
        assert result.error is not None
        assert "theirs" in result.error

    def test_comma_join_to_meta_table_denied(self) -> None:
        validator = QueryValidator(allowed_tables=["data_sales_1a2b3c4d"])
        result = validator.validate(
            "SELECT question FROM data_sales_1a2b3c4d, tt_query_log LIMIT 5"
        )

        assert not result.valid
        assert result.error is not None
        assert "tt_query_log" in result.error

    def test_schema_qualified_name_not_matched_to_bare_name(self) -> None:
        validator = QueryValidator(allowed_tables=["t"])
        assert not validator.validate("SELECT a FROM main.t LIMIT 1").valid

    def test_allowed_comma_join(self) -> None:
        validator = QueryValidator(allowed_tables=["a", "b"])
        result = validator.validate("SELECT x FROM a, b WHERE a.id = b.id LIMIT 5")

        assert result.valid
        assert result.tables_accessed == ["a", "b"]

    def test_literals_and_comments_ignored(self) -> None:
        validator = QueryValidator(allowed_tables=["t"])
        result = validator.validate(
            "SELECT a FROM t WHERE note = 'from elsewhere, x' LIMIT 1 -- from nowhere"
        )

        assert result.valid
        assert result.tables_accessed == ["t"]

    def test_select_list_commas_are_not_tables(self) -> None:
        result = validate_query("SELECT a, b, c FROM t WHERE a IN (1, 2) ORDER BY b, c LIMIT 3")
        assert result.tables_accessed == ["t"]
