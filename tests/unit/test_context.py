"""Tests for the generation context builder."""

from __future__ import annotations

import pytest

from tabletalk.core.connection import DatabaseConnection
from tabletalk.exceptions import FileTableNotFoundError
from tabletalk.merge.manager import ColumnMergeViewManager
from tabletalk.query.context import (
    COMMON_GUIDELINES,
    DIALECT_GUIDELINES,
    SchemaContextBuilder,
    get_schema_context,
)
from tabletalk.schema.cache import SchemaCache
from tabletalk.storage.rows import RowStore


@pytest.fixture
def merges(
    connection: DatabaseConnection, rows: RowStore, cache: SchemaCache
) -> ColumnMergeViewManager:
    return ColumnMergeViewManager(connection, rows, cache=cache)


@pytest.fixture
def builder(
    rows: RowStore, merges: ColumnMergeViewManager, cache: SchemaCache
) -> SchemaContextBuilder:
    return SchemaContextBuilder(rows, merges, cache=cache, sample_rows=2)


@pytest.fixture
def files(rows: RowStore) -> None:
    rows.create_file_table(
        "people.csv", "alice", [{"name": "first"}, {"name": "last"}, {"name": "age", "type": "int"}]
    )
    rows.insert_rows(
        "people.csv",
        [
            {"first": "Jane", "last": "Doe", "age": 30},
            {"first": "John", "last": "Roe", "age": 41},
            {"first": "Ana", "last": "Lima", "age": 25},
        ],
    )
    rows.create_file_table("empty.csv", "alice", [{"name": "note"}])
    rows.create_file_table("secret.csv", "bob", [{"name": "salary", "type": "number"}])


@pytest.mark.usefixtures("files")
class TestSchemaContextBuilder:
    def test_only_own_files(self, builder: SchemaContextBuilder, rows: RowStore) -> None:
        context = builder.build("alice")

        assert [t.label for t in context.tables] == ["people.csv", "empty.csv"]
        assert rows.get_file("secret.csv").table_name not in context.table_names()

    def test_table_details(self, builder: SchemaContextBuilder) -> None:
        people = builder.build("alice").tables[0]

        assert people.kind == "file"
        assert people.row_count == 3
        assert [(c.name, c.type) for c in people.columns] == [
            ("first", "text"),
            ("last", "text"),
            ("age", "numeric"),
        ]
        assert len(people.sample_rows) == 2
        assert people.sample_rows[0]["first"] == "Jane"

    def test_empty_file_has_no_samples(self, builder: SchemaContextBuilder) -> None:
        empty = builder.build("alice").tables[1]

        assert empty.row_count == 0
        assert empty.sample_rows == []

    def test_guidelines_follow_dialect(self, builder: SchemaContextBuilder) -> None:
        context = builder.build("alice")

        assert context.dialect == "sqlite"
        assert context.guidelines == [*DIALECT_GUIDELINES["sqlite"], *COMMON_GUIDELINES]

    def test_merge_views_included(
        self, builder: SchemaContextBuilder, merges: ColumnMergeViewManager
    ) -> None:
        merges.create("alice", "people.csv", "full_name", ["first", "last"])
        context = builder.build("alice")

        views = [t for t in context.tables if t.kind == "merge"]
        assert len(views) == 1
        view = views[0]
        assert view.columns[-1].name == "full_name"
        assert view.sample_rows[0]["full_name"] == "Jane Doe"
        assert "full_name = first + last" in view.label
        assert view.table_name in context.table_names()

    def test_file_scope(self, builder: SchemaContextBuilder) -> None:
        context = builder.build("alice", "empty.csv")
        assert [t.label for t in context.tables] == ["empty.csv"]

    def test_other_users_file_is_not_found(self, builder: SchemaContextBuilder) -> None:
        with pytest.raises(FileTableNotFoundError):
            builder.build("alice", "secret.csv")

    def test_cached_until_mutation(
        self, builder: SchemaContextBuilder, rows: RowStore, cache: SchemaCache
    ) -> None:
        first = builder.build("alice")
        assert builder.build("alice") is first

        rows.insert_rows("empty.csv", [{"note": "hello"}])
        rebuilt = builder.build("alice")
        assert rebuilt is not first
        assert rebuilt.tables[1].row_count == 1

    def test_bypass_cache(self, builder: SchemaContextBuilder) -> None:
        first = builder.build("alice")
        assert builder.build("alice", bypass_cache=True) is not first

    def test_prompt_rendering(self, builder: SchemaContextBuilder) -> None:
        prompt = builder.build("alice").to_prompt()

        assert "Database dialect: sqlite" in prompt
        assert "Source: uploaded file people.csv" in prompt
        assert "- age (numeric)" in prompt
        assert "Sample data not available" in prompt
        assert "Guidelines:" in prompt

    def test_uncached_helper(self, rows: RowStore, merges: ColumnMergeViewManager) -> None:
        context = get_schema_context(rows, merges, "bob")
        assert [t.label for t in context.tables] == ["secret.csv"]


def test_user_without_files(builder: SchemaContextBuilder) -> None:
    context = builder.build("nobody")

    assert context.tables == []
    assert context.to_prompt() == "No tables are available."
