"""Tests for core types."""

import pytest
from pydantic import ValidationError

from tabletalk.core.types import (
    ColumnContext,
    ColumnMapping,
    ColumnMergeSpec,
    ColumnType,
    MatchType,
    QueryRequest,
    QueryResult,
    SchemaColumnSpec,
    SchemaContext,
    TableContext,
)


class TestColumnType:
    """Tests for ColumnType enum."""

    def test_all_types_exist(self):
        assert ColumnType.values() == ["text", "numeric", "boolean", "timestamp"]

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("number", ColumnType.NUMERIC),
            ("Integer", ColumnType.NUMERIC),
            ("bool", ColumnType.BOOLEAN),
            ("date", ColumnType.TIMESTAMP),
            ("string", ColumnType.TEXT),
            ("", ColumnType.TEXT),
            (None, ColumnType.TEXT),
        ],
    )
    def test_from_file_type(self, raw, expected):
        """Inferred file types map onto schema column types; unknown is text."""
        assert ColumnType.from_file_type(raw) == expected


class TestSchemaColumnSpec:
    def test_minimal_spec(self):
        spec = SchemaColumnSpec(name="email")
        assert spec.type == "text"
        assert not spec.required

    def test_enum_values_stored(self):
        spec = SchemaColumnSpec(name="total", type="numeric")
        assert spec.type == "numeric"
        assert spec.model_dump()["type"] == "numeric"

    def test_invalid_type(self):
        with pytest.raises(ValidationError):
            SchemaColumnSpec(name="x", type="money")

    def test_empty_name(self):
        with pytest.raises(ValidationError):
            SchemaColumnSpec(name="")


class TestColumnMapping:
    def test_confidence_bounds(self):
        with pytest.raises(ValidationError):
            ColumnMapping(file_column="a", match_type=MatchType.FUZZY, confidence=1.5)

    def test_match_type_serialized_as_value(self):
        mapping = ColumnMapping(file_column="a", match_type=MatchType.NONE)
        assert mapping.model_dump()["match_type"] == "none"


class TestColumnMergeSpec:
    def test_needs_two_columns(self):
        with pytest.raises(ValidationError):
            ColumnMergeSpec(owner_id="u", file_id="f", merge_name="m", column_list=["a"])

    def test_default_delimiter(self):
        spec = ColumnMergeSpec(owner_id="u", file_id="f", merge_name="m", column_list=["a", "b"])
        assert spec.delimiter == " "


class TestQueryRequest:
    def test_defaults(self):
        request = QueryRequest(question="How many?", user_id="alice")
        assert request.page == 1
        assert request.page_size == 10
        assert request.history == []

    def test_immutable(self):
        request = QueryRequest(question="How many?", user_id="alice")
        with pytest.raises(ValidationError):
            request.page = 2

    @pytest.mark.parametrize("field", [{"page": 0}, {"page_size": 0}, {"question": ""}])
    def test_invalid(self, field):
        with pytest.raises(ValidationError):
            QueryRequest(**{"question": "q", "user_id": "u", **field})


class TestQueryResult:
    def test_success_flag(self):
        assert QueryResult(sql_query="SELECT 1").success
        assert not QueryResult(sql_query="", error="boom", error_type="GenerationError").success

    def test_json_round_trip_keeps_fields(self):
        result = QueryResult(sql_query="SELECT 1", rows=[{"a": 1}], total_rows=1, total_pages=1)
        data = result.model_dump(mode="json")

        assert data["sql_query"] == "SELECT 1"
        assert data["rows"] == [{"a": 1}]
        assert "success" not in data


class TestSchemaContext:
    def test_table_names_lowercased(self):
        context = SchemaContext(
            dialect="sqlite",
            tables=[
                TableContext(
                    table_name="Data_X",
                    label="x.csv",
                    columns=[ColumnContext(name="a", type="text")],
                )
            ],
        )
        assert context.table_names() == {"data_x"}

    def test_merge_source_line(self):
        context = SchemaContext(
            dialect="postgresql",
            tables=[
                TableContext(
                    table_name="merged_full_name_0123456789",
                    label="people.csv (full_name = first + last)",
                    kind="merge",
                    columns=[ColumnContext(name="full_name", type="text")],
                    row_count=2,
                    sample_rows=[{"full_name": "Jane Doe"}],
                )
            ],
        )
        prompt = context.to_prompt()

        assert "Source: merged view of people.csv (full_name = first + last)" in prompt
        assert "Rows: 2" in prompt
        assert "{'full_name': 'Jane Doe'}" in prompt
