"""Unit tests for the TableTalk MCP server tools.

FastMCP tools take typed Python objects directly; the MCP framework
handles JSON at the transport layer, so tools are called as functions.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Generator

import pytest

# Skip entire module if mcp is not installed (optional dependency)
pytest.importorskip("mcp", reason="mcp not installed (install with: pip install tabletalk[mcp])")

from conftest import FakeCompletionProvider, first_table  # noqa: E402

from tabletalk import TableTalk  # noqa: E402
from tabletalk.integrations.mcp import server as mcp_server  # noqa: E402

PEOPLE_COLUMNS = [{"name": "first"}, {"name": "last"}, {"name": "age", "type": "number"}]
PEOPLE_ROWS = [
    {"first": "Jane", "last": "Doe", "age": 30},
    {"first": "John", "last": "", "age": 41},
]


@pytest.fixture
def provider() -> FakeCompletionProvider:
    return FakeCompletionProvider([lambda prompt: f"SELECT * FROM {first_table(prompt)}"])


@pytest.fixture
def db(provider: FakeCompletionProvider) -> Generator[TableTalk, None, None]:
    """In-memory SQLite DB for MCP tests."""
    database = TableTalk("sqlite:///:memory:", completion_provider=provider)
    yield database
    database.close()


@pytest.fixture(autouse=True)
def set_mcp_db(db: TableTalk) -> Generator[None, None, None]:
    """Inject db into the MCP server global before each test."""
    mcp_server._db = db
    yield
    mcp_server._db = None


def _ok(result: str) -> dict | list:
    data = json.loads(result)
    if isinstance(data, dict):
        assert data.get("error") is None, f"Unexpected error: {data['error']}"
    return data


def _err(result: str) -> dict:
    data = json.loads(result)
    assert data.get("error") is not None, f"Expected error, got: {data}"
    return data


def _register(db: TableTalk) -> str:
    return db.register_file("people.csv", "alice", PEOPLE_COLUMNS, rows=PEOPLE_ROWS).table_name


class TestFileTools:
    def test_list_files_empty(self) -> None:
        assert _ok(mcp_server.tabletalk_list_files()) == []

    def test_register_and_list(self) -> None:
        info = _ok(
            mcp_server.tabletalk_register_file(
                "people.csv", "alice", PEOPLE_COLUMNS, rows=PEOPLE_ROWS
            )
        )
        assert info["table_name"].startswith("data_people_csv_")
        assert info["row_count"] == 2

        (listed,) = _ok(mcp_server.tabletalk_list_files("alice"))
        assert listed["file_id"] == "people.csv"
        assert _ok(mcp_server.tabletalk_list_files("bob")) == []

    def test_register_twice(self, db: TableTalk) -> None:
        _register(db)
        data = _err(mcp_server.tabletalk_register_file("people.csv", "alice", PEOPLE_COLUMNS))
        assert "already registered" in data["error"]

    def test_insert_rows(self, db: TableTalk) -> None:
        _register(db)
        data = json.loads(mcp_server.tabletalk_insert_rows("people.csv", [{"first": "Ana"}]))
        assert data == {"success": True, "count": 1}

        data = json.loads(mcp_server.tabletalk_insert_rows("people.csv", [{"nope": 1}]))
        assert data["success"] is False


class TestQueryTools:
    def test_ask(self, db: TableTalk) -> None:
        table = _register(db)
        data = _ok(asyncio.run(mcp_server.tabletalk_ask("Who?", "alice", page_size=1)))

        assert data["sql_query"] == f"SELECT * FROM {table}"
        assert data["total_rows"] == 2
        assert data["total_pages"] == 2
        assert len(data["rows"]) == 1

    def test_ask_failure_in_result(self, db: TableTalk, provider: FakeCompletionProvider) -> None:
        _register(db)
        provider.replies = ["DELETE FROM people"]
        data = json.loads(asyncio.run(mcp_server.tabletalk_ask("Delete all", "alice")))

        assert data["error_type"] == "ValidationError"
        assert data["sql_query"] == "DELETE FROM people"

    def test_execute_sql(self, db: TableTalk) -> None:
        table = _register(db)
        data = _ok(
            asyncio.run(
                mcp_server.tabletalk_execute_sql(f"SELECT first FROM {table}", "alice")
            )
        )
        assert [r["first"] for r in data["rows"]] == ["Jane", "John"]

    def test_execute_sql_blocked(self, db: TableTalk) -> None:
        table = _register(db)
        data = _err(asyncio.run(mcp_server.tabletalk_execute_sql(f"DROP TABLE {table}", "alice")))
        assert "SELECT" in data["error"]

    def test_schema_context(self, db: TableTalk) -> None:
        table = _register(db)
        data = _ok(mcp_server.tabletalk_get_schema_context("alice"))

        assert data["context"]["tables"][0]["table_name"] == table
        assert f"Table: {table}" in data["prompt"]

    def test_query_history(self, db: TableTalk) -> None:
        _register(db)
        asyncio.run(mcp_server.tabletalk_ask("Who?", "alice"))

        (entry,) = _ok(mcp_server.tabletalk_query_history("alice"))
        assert entry["question"] == "Who?"
        assert entry["status"] == "success"


class TestSchemaTools:
    def test_create_and_get(self) -> None:
        created = _ok(
            mcp_server.tabletalk_create_schema(
                "customers", [{"name": "email"}, {"name": "age", "type": "numeric"}]
            )
        )
        assert created["current_version"] == 1

        fetched = _ok(mcp_server.tabletalk_get_schema(created["id"]))
        assert [c["name"] for c in fetched["columns"]] == ["email", "age"]

    def test_get_unknown(self) -> None:
        assert "not found" in _err(mcp_server.tabletalk_get_schema("nope"))["error"]

    def test_identify_and_evolve(self) -> None:
        schema_id = _ok(mcp_server.tabletalk_create_schema("customers", [{"name": "email"}]))["id"]

        identified = _ok(
            mcp_server.tabletalk_identify_columns(
                schema_id, [{"name": "e_mail"}, {"name": "phone"}]
            )
        )
        assert [m["match_type"] for m in identified["mappings"]] == ["fuzzy", "none"]

        evolved = _ok(mcp_server.tabletalk_evolve_schema(schema_id, identified["new_columns"]))
        assert evolved["success"] is True
        assert evolved["added_columns"] == ["phone"]
        assert evolved["version"] == 2

        versioned = _ok(mcp_server.tabletalk_get_schema(schema_id, version=1))
        assert [c["name"] for c in versioned["columns"]] == ["email"]

    def test_evolve_conflict(self) -> None:
        schema_id = _ok(mcp_server.tabletalk_create_schema("customers"))["id"]
        mcp_server.tabletalk_evolve_schema(schema_id, [{"name": "a"}])

        data = json.loads(
            mcp_server.tabletalk_evolve_schema(schema_id, [{"name": "b"}], expected_revision=0)
        )
        assert data["success"] is False
        assert "modified concurrently" in data["error"]

    def test_changelog(self) -> None:
        schema_id = _ok(mcp_server.tabletalk_create_schema("customers"))["id"]
        entries = _ok(mcp_server.tabletalk_get_changelog(schema_id))

        assert [e["operation"] for e in entries] == ["create_schema"]
        assert entries[0]["created_by"] == "mcp"


class TestMergeTools:
    def test_lifecycle(self, db: TableTalk) -> None:
        _register(db)
        merge_id = _ok(
            mcp_server.tabletalk_create_merge("alice", "people.csv", "full_name", ["first", "last"])
        )["id"]

        merges = _ok(mcp_server.tabletalk_list_merges("people.csv"))["column_merges"]
        assert [m["id"] for m in merges] == [merge_id]

        context = db.get_schema_context("alice")
        assert merges[0]["view_name"] in context.table_names()

        assert json.loads(mcp_server.tabletalk_delete_merge(merge_id)) == {"success": True}
        assert json.loads(mcp_server.tabletalk_delete_merge(merge_id)) == {"success": True}
        assert _ok(mcp_server.tabletalk_list_merges("people.csv"))["column_merges"] == []

    def test_update(self, db: TableTalk) -> None:
        _register(db)
        merge_id = _ok(
            mcp_server.tabletalk_create_merge("alice", "people.csv", "full_name", ["first", "last"])
        )["id"]

        updated = _ok(mcp_server.tabletalk_update_merge(merge_id, ["last", "first"], ", "))
        assert updated["column_list"] == ["last", "first"]
        assert updated["delimiter"] == ", "

        data = _err(mcp_server.tabletalk_update_merge("missing", delimiter="-"))
        assert "not found" in data["error"]

    def test_duplicate_name(self, db: TableTalk) -> None:
        _register(db)
        mcp_server.tabletalk_create_merge("alice", "people.csv", "full_name", ["first", "last"])
        data = _err(
            mcp_server.tabletalk_create_merge("alice", "people.csv", "full_name", ["last", "first"])
        )
        assert "already exists" in data["error"]

    def test_unknown_column(self, db: TableTalk) -> None:
        _register(db)
        data = _err(
            mcp_server.tabletalk_create_merge("alice", "people.csv", "x", ["first", "surname"])
        )
        assert "surname" in data["error"]

    def test_preview(self, db: TableTalk) -> None:
        _register(db)
        data = _ok(mcp_server.tabletalk_preview_merge("people.csv", ["first", "last"], ", "))

        assert [r["merged_value"] for r in data["preview_data"]] == ["Jane, Doe", "John"]


class TestServerSetup:
    def test_get_db_requires_initialization(self) -> None:
        mcp_server._db = None
        with pytest.raises(RuntimeError):
            mcp_server.get_db()

    def test_create_server(self, provider: FakeCompletionProvider) -> None:
        server = mcp_server.create_server("sqlite:///:memory:", completion_provider=provider)
        try:
            assert server is mcp_server.mcp
            assert mcp_server.get_db() is not None
        finally:
            mcp_server.get_db().close()
