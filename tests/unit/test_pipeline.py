"""Tests for the question-to-rows pipeline."""

from __future__ import annotations

import asyncio
from collections.abc import Generator

import pytest
from conftest import FakeCompletionProvider, first_table

from tabletalk import PipelineSettings, TableTalk
from tabletalk.core.types import QueryRequest
from tabletalk.exceptions import ExecutionError, GenerationError, ValidationError
from tabletalk.query.validator import READ_ONLY_ERROR

PEOPLE = [
    {"first": "Jane", "city": "Lisbon", "age": 30},
    {"first": "John", "city": "Porto", "age": 41},
    {"first": "Ana", "city": "Lisbon", "age": 25},
]


def make_db(provider: FakeCompletionProvider, **settings: object) -> TableTalk:
    db = TableTalk(
        "sqlite:///:memory:",
        settings=PipelineSettings(retry_backoff=0, **settings),  # type: ignore[arg-type]
        completion_provider=provider,
    )
    db.register_file(
        "people.csv",
        "alice",
        [{"name": "first"}, {"name": "city"}, {"name": "age", "type": "number"}],
        rows=PEOPLE,
    )
    db.register_file("secret.csv", "bob", [{"name": "salary", "type": "number"}])
    return db


@pytest.fixture
def provider() -> FakeCompletionProvider:
    return FakeCompletionProvider([lambda prompt: f"SELECT * FROM {first_table(prompt)}"])


@pytest.fixture
def db(provider: FakeCompletionProvider) -> Generator[TableTalk, None, None]:
    database = make_db(provider)
    yield database
    database.close()


def people_table(db: TableTalk) -> str:
    return db.get_file("people.csv").table_name


class TestSuccess:
    def test_answers_question(self, db: TableTalk) -> None:
        result = db.ask_sync("Who is in the file?", "alice")

        assert result.success
        assert result.sql_query == f"SELECT * FROM {people_table(db)}"
        assert result.total_rows == 3
        assert result.total_pages == 1
        assert [r["first"] for r in result.rows] == ["Jane", "John", "Ana"]
        assert result.error is None
        assert result.error_type is None

    def test_pagination(self, db: TableTalk) -> None:
        result = db.ask_sync("Who?", "alice", page=2, page_size=2)

        assert result.total_pages == 2
        assert result.current_page == 2
        assert [r["first"] for r in result.rows] == ["Ana"]

    def test_prompt_includes_context_and_history(
        self, db: TableTalk, provider: FakeCompletionProvider
    ) -> None:
        db.ask_sync("And in Porto?", "alice", history=["People in Lisbon?"])
        _, prompt = provider.calls[-1]

        assert f"Table: {people_table(db)}" in prompt
        assert "salary" not in prompt
        assert "- People in Lisbon?" in prompt
        assert "Question: And in Porto?" in prompt

    def test_truncated_query_is_repaired(self, provider: FakeCompletionProvider) -> None:
        provider.replies = [
            lambda prompt: f"SELECT first FROM {first_table(prompt)} WHERE first IN ('Jane', 'Jo"
        ]
        db = make_db(provider)
        try:
            result = db.ask_sync("Jane or Jo?", "alice")
        finally:
            db.close()

        assert result.success
        assert result.sql_query.endswith("IN ('Jane', 'Jo')")
        assert result.rows == [{"first": "Jane"}]
        assert "Generated query looked truncated and was repaired." in result.warnings

    def test_page_size_clamped(self, provider: FakeCompletionProvider) -> None:
        db = make_db(provider, max_page_size=2)
        try:
            result = db.ask_sync("Who?", "alice", page_size=50)
        finally:
            db.close()

        assert result.page_size == 2
        assert len(result.rows) == 2
        assert "Page size 50 exceeds the maximum; using 2." in result.warnings

    def test_row_cap_warning(self, provider: FakeCompletionProvider) -> None:
        db = make_db(provider, max_rows=2)
        try:
            result = db.ask_sync("Who?", "alice")
        finally:
            db.close()

        assert result.total_rows == 2
        assert any("more than 2 rows" in w for w in result.warnings)


class TestFailures:
    """Every failure is reported in the result with the SQL that was reached."""

    def test_modifying_query_blocked(self, provider: FakeCompletionProvider) -> None:
        provider.replies = ["DELETE FROM people"]
        db = make_db(provider)
        try:
            result = db.ask_sync("Remove everyone", "alice")
        finally:
            db.close()

        assert not result.success
        assert result.error_type == "ValidationError"
        assert result.error == READ_ONLY_ERROR
        assert result.sql_query == "DELETE FROM people"
        assert result.rows == []

    def test_blocked_keyword_in_select(self, provider: FakeCompletionProvider) -> None:
        provider.replies = ["SELECT 1; DROP TABLE people"]
        db = make_db(provider)
        try:
            result = db.ask_sync("Sneaky", "alice")
        finally:
            db.close()

        assert result.error_type == "ValidationError"
        assert "DROP" in (result.error or "")
        assert result.sql_query == "SELECT 1; DROP TABLE people"

    def test_other_users_table_denied(self, provider: FakeCompletionProvider) -> None:
        db = make_db(provider)
        secret = db.get_file("secret.csv").table_name
        provider.replies = [f"SELECT * FROM {secret}"]
        try:
            result = db.ask_sync("Salaries?", "alice")
        finally:
            db.close()

        assert result.error_type == "ValidationError"
        assert "Access denied" in (result.error or "")

    def test_meta_table_denied(self, provider: FakeCompletionProvider) -> None:
        provider.replies = ["SELECT * FROM tt_query_log"]
        db = make_db(provider)
        try:
            result = db.ask_sync("History?", "alice")
        finally:
            db.close()

        assert result.error_type == "ValidationError"

    def test_unrepairable_query(self, provider: FakeCompletionProvider) -> None:
        provider.replies = ["SELECT age) FROM people"]
        db = make_db(provider)
        try:
            result = db.ask_sync("Ages?", "alice")
        finally:
            db.close()

        assert result.error_type == "RepairFailure"
        assert result.sql_query == "SELECT age) FROM people"

    def test_generation_failure(self, provider: FakeCompletionProvider) -> None:
        provider.replies = [RuntimeError("service unavailable")]
        db = make_db(provider)
        try:
            result = db.ask_sync("Who?", "alice")
        finally:
            db.close()

        assert result.error_type == "GenerationError"
        assert result.sql_query == ""
        assert "service unavailable" in (result.error or "")
        assert len(provider.calls) == 2

    def test_execution_failure(self, provider: FakeCompletionProvider) -> None:
        provider.replies = [lambda prompt: f"SELECT salary FROM {first_table(prompt)}"]
        db = make_db(provider)
        try:
            result = db.ask_sync("Salaries?", "alice")
        finally:
            db.close()

        assert result.error_type == "ExecutionError"
        assert result.sql_query.startswith("SELECT salary FROM data_people_csv_")

    def test_user_without_files(self, db: TableTalk, provider: FakeCompletionProvider) -> None:
        result = db.ask_sync("Anything?", "carol")

        assert result.error_type == "GenerationError"
        assert "no files" in (result.error or "")
        assert provider.calls == []

    def test_file_of_another_user(self, db: TableTalk) -> None:
        result = db.ask_sync("Salaries?", "alice", file_id="secret.csv")
        assert result.error_type == "FileTableNotFoundError"

    def test_no_provider_available(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        db = TableTalk("sqlite:///:memory:")
        try:
            db.register_file("a.csv", "alice", [{"name": "x"}])
            result = db.ask_sync("Anything?", "alice")
        finally:
            db.close()

        assert result.error_type == "GenerationError"
        assert "No completion provider configured" in (result.error or "")


class TestRaisingVariants:
    def test_run_or_raise(self, provider: FakeCompletionProvider) -> None:
        provider.replies = ["UPDATE people SET age = 0"]
        db = make_db(provider)
        request = QueryRequest(question="Reset ages", user_id="alice")
        try:
            with pytest.raises(ValidationError) as exc_info:
                asyncio.run(db._pipeline.run_or_raise(request))
            assert db.query_history("alice")[0].error_type == "ValidationError"
        finally:
            db.close()

        assert exc_info.value.sql_query == "UPDATE people SET age = 0"

    def test_execute_sql(self, db: TableTalk) -> None:
        result = db.execute_sql(
            f"SELECT first FROM {people_table(db)} WHERE city = 'Lisbon' ORDER BY first;",
            "alice",
        )
        assert result.rows == [{"first": "Ana"}, {"first": "Jane"}]

    def test_execute_sql_rejects_writes(self, db: TableTalk) -> None:
        with pytest.raises(ValidationError):
            db.execute_sql(f"DELETE FROM {people_table(db)}", "alice")

    def test_execute_sql_store_error(self, db: TableTalk) -> None:
        with pytest.raises(ExecutionError):
            db.execute_sql(f"SELECT nope FROM {people_table(db)}", "alice")

    def test_execute_sql_scoped_to_user(self, db: TableTalk) -> None:
        with pytest.raises(ValidationError, match="Access denied"):
            db.execute_sql(f"SELECT * FROM {people_table(db)}", "bob")

    def test_execute_sql_comma_join_to_other_users_table(self, db: TableTalk) -> None:
        secret = db.get_file("secret.csv").table_name
        with pytest.raises(ValidationError, match=secret):
            db.execute_sql(f"SELECT salary FROM {people_table(db)}, {secret}", "alice")

    def test_execute_sql_comma_join_to_meta_table(self, db: TableTalk) -> None:
        with pytest.raises(ValidationError, match="tt_query_log"):
            db.execute_sql(f"SELECT question FROM {people_table(db)} p, tt_query_log q", "alice")

    def test_generation_error_type(self, provider: FakeCompletionProvider) -> None:
        provider.replies = [RuntimeError("down")]
        db = make_db(provider)
        request = QueryRequest(question="Who?", user_id="alice")
        try:
            with pytest.raises(GenerationError):
                asyncio.run(db._pipeline.run_or_raise(request))
        finally:
            db.close()


class TestHistory:
    def test_runs_are_recorded(self, db: TableTalk, provider: FakeCompletionProvider) -> None:
        db.ask_sync("Who?", "alice")
        provider.replies = ["DROP TABLE x"]
        db.ask_sync("Drop it", "alice")

        entries = db.query_history("alice")
        assert {(e.question, e.status) for e in entries} == {
            ("Who?", "success"),
            ("Drop it", "error"),
        }
        success = next(e for e in entries if e.status == "success")
        assert success.row_count == 3
        assert success.sql_query.startswith("SELECT * FROM")
        assert db.query_history("bob") == []

    def test_history_disabled(self, provider: FakeCompletionProvider) -> None:
        db = make_db(provider, record_history=False)
        try:
            db.ask_sync("Who?", "alice")
            assert db.query_history("alice") == []
        finally:
            db.close()
