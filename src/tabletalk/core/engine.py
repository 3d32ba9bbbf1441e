"""Main TableTalk engine."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

from tabletalk.core.connection import DatabaseConnection
from tabletalk.core.locks import KeyedLocks
from tabletalk.core.types import (
    ChangelogEntry,
    ColumnMergeInfo,
    EvolutionOptions,
    EvolutionResult,
    FileColumn,
    FileTableInfo,
    GlobalSchemaInfo,
    IdentifyResult,
    PipelineSettings,
    QueryLogEntry,
    QueryRequest,
    QueryResult,
    SchemaColumnSpec,
    SchemaContext,
    SchemaVersionInfo,
    VersionComparison,
)
from tabletalk.merge.manager import ColumnMergeViewManager
from tabletalk.query.context import SchemaContextBuilder
from tabletalk.query.executor import QueryExecutor
from tabletalk.query.generator import CompletionProvider, OpenAICompletionProvider, QueryGenerator
from tabletalk.query.history import QueryHistory
from tabletalk.query.pipeline import QueryPipeline
from tabletalk.schema.cache import SchemaCache
from tabletalk.schema.engine import SchemaStore
from tabletalk.schema.evolution import SchemaEvolutionMatcher
from tabletalk.storage.rows import RowStore

logger = logging.getLogger(__name__)


class TableTalk:
    """Natural-language querying over uploaded tabular files.

    Wires the row store, the versioned global schema store, merged-column
    views and the question-to-SQL pipeline over one database. All methods
    return pydantic models, which serialize cleanly for agents.

    Example:
        db = TableTalk("sqlite:///tabletalk.db")
        db.register_file(
            "sales.csv",
            owner_id="alice",
            columns=[{"name": "region", "type": "string"}, {"name": "total", "type": "number"}],
            rows=[{"region": "north", "total": 120}],
        )
        result = db.ask_sync("What is the total per region?", user_id="alice")
        print(result.sql_query, result.rows)
    """

    def __init__(
        self,
        url: str,
        echo: bool = False,
        settings: PipelineSettings | None = None,
        completion_provider: CompletionProvider | None = None,
        cache: SchemaCache | None = None,
    ) -> None:
        """Initialize TableTalk.

        Args:
            url: Database connection URL
            echo: Whether to echo SQL statements (for debugging)
            settings: Pipeline tunables (defaults if not provided)
            completion_provider: Text-completion backend. Without one, the
                OpenAI provider is created on first ask() from OPENAI_API_KEY.
            cache: Schema/context cache shared by all components
        """
        self._settings = settings or PipelineSettings()
        self._connection = DatabaseConnection(url, echo=echo)
        self._cache = cache or SchemaCache(ttl=self._settings.cache_ttl)

        schema_locks = KeyedLocks()
        self._schema_store = SchemaStore(self._connection, cache=self._cache)
        self._rows = RowStore(self._connection, cache=self._cache)
        self._matcher = SchemaEvolutionMatcher(
            self._schema_store,
            rows=self._rows,
            threshold=self._settings.fuzzy_threshold,
            locks=schema_locks,
        )
        self._merges = ColumnMergeViewManager(
            self._connection, self._rows, schema_store=self._schema_store, cache=self._cache
        )
        self._context_builder = SchemaContextBuilder(
            self._rows, self._merges, cache=self._cache, sample_rows=self._settings.sample_rows
        )
        self._history = QueryHistory(self._connection.engine, enabled=self._settings.record_history)

        self._provider = completion_provider
        self._provider_resolved = completion_provider is not None
        generator = (
            QueryGenerator.from_settings(completion_provider, self._settings)
            if completion_provider is not None
            else None
        )
        self._pipeline = QueryPipeline(
            self._context_builder,
            generator,
            QueryExecutor.from_settings(self._connection, self._settings),
            history=self._history,
            settings=self._settings,
        )

        # Initialize meta-tables
        self._schema_store.initialize()

    @property
    def settings(self) -> PipelineSettings:
        return self._settings

    @property
    def cache(self) -> SchemaCache:
        return self._cache

    @property
    def connection(self) -> DatabaseConnection:
        return self._connection

    def close(self) -> None:
        """Close the database connection."""
        self._connection.close()

    def __enter__(self) -> TableTalk:
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        """Context manager exit."""
        self.close()

    # === Files ===

    def register_file(
        self,
        file_id: str,
        owner_id: str,
        columns: Sequence[FileColumn | dict[str, Any]],
        rows: Sequence[dict[str, Any]] | None = None,
        schema_id: str | None = None,
    ) -> FileTableInfo:
        """Create the table for an uploaded file and optionally load its rows.

        Args:
            file_id: Identifier of the uploaded file
            owner_id: User who owns the file
            columns: Typed column descriptors
            rows: Initial rows (column name -> value)
            schema_id: Global schema the file is bound to, for data migration

        Returns:
            FileTableInfo including the generated table name
        """
        if schema_id is not None:
            self._schema_store.get_schema(schema_id)
        info = self._rows.create_file_table(file_id, owner_id, columns, schema_id=schema_id)
        if rows:
            info.row_count = self._rows.insert_rows(file_id, rows)
        self._schema_store.log_change(
            "register_file",
            file_id,
            new_value={"table_name": info.table_name, "columns": [c.name for c in info.columns]},
            created_by=owner_id,
        )
        return info

    def insert_rows(self, file_id: str, rows: Sequence[dict[str, Any]]) -> int:
        """Append rows to a registered file. Returns the number inserted."""
        return self._rows.insert_rows(file_id, rows)

    def list_files(self, owner_id: str | None = None) -> list[FileTableInfo]:
        """List registered files with their row counts."""
        files = self._rows.list_files(owner_id)
        for file in files:
            file.row_count = self._rows.row_count(file.file_id)
        return files

    def get_file(self, file_id: str) -> FileTableInfo:
        info = self._rows.get_file(file_id)
        info.row_count = self._rows.row_count(file_id)
        return info

    def delete_file(self, file_id: str) -> bool:
        """Drop a file's merges, table and registration.

        Returns:
            True if the file existed
        """
        self._merges.delete_for_file(file_id)
        return self._rows.drop_file(file_id)

    # === Queries ===

    def _ensure_generator(self) -> None:
        """Create the default OpenAI provider on first use if none was given."""
        if self._provider_resolved:
            return
        self._provider_resolved = True
        try:
            self._provider = OpenAICompletionProvider(
                model=self._settings.model,
                temperature=self._settings.temperature,
                max_tokens=self._settings.max_tokens,
            )
        except (ImportError, ValueError) as e:
            logger.warning(f"Query generation unavailable: {e}")
            return
        self._pipeline.generator = QueryGenerator.from_settings(self._provider, self._settings)

    async def ask(
        self,
        question: str,
        user_id: str,
        file_id: str | None = None,
        page: int = 1,
        page_size: int | None = None,
        history: Sequence[str] | None = None,
    ) -> QueryResult:
        """Answer a natural-language question about the user's files.

        Failures are reported in the result (``error``, ``error_type``),
        together with the SQL that was reached.

        Args:
            question: Natural-language question
            user_id: Requesting user; only their files are queried
            file_id: Restrict the question to one file
            page: 1-based page number
            page_size: Rows per page (default from settings)
            history: Earlier questions of the conversation, oldest first

        Returns:
            QueryResult with the SQL, one page of rows and pagination facts
        """
        self._ensure_generator()
        request = QueryRequest(
            question=question,
            user_id=user_id,
            file_id=file_id,
            page=page,
            page_size=page_size or self._settings.default_page_size,
            history=list(history or []),
        )
        return await self._pipeline.run(request)

    def ask_sync(
        self,
        question: str,
        user_id: str,
        file_id: str | None = None,
        page: int = 1,
        page_size: int | None = None,
        history: Sequence[str] | None = None,
    ) -> QueryResult:
        """Blocking variant of ask() for scripts and the CLI."""
        return asyncio.run(self.ask(question, user_id, file_id, page, page_size, history))

    async def execute_sql_async(
        self,
        sql: str,
        user_id: str,
        file_id: str | None = None,
        page: int = 1,
        page_size: int | None = None,
    ) -> QueryResult:
        """Validate and run caller-written SQL over the user's files.

        Raises:
            ValidationError: If the SQL is not a permitted read-only query
            ExecutionError: If the store rejects the query or it times out
        """
        return await self._pipeline.execute_sql(sql, user_id, file_id, page, page_size)

    def execute_sql(
        self,
        sql: str,
        user_id: str,
        file_id: str | None = None,
        page: int = 1,
        page_size: int | None = None,
    ) -> QueryResult:
        """Blocking variant of execute_sql_async()."""
        return asyncio.run(self.execute_sql_async(sql, user_id, file_id, page, page_size))

    def get_schema_context(
        self, user_id: str, file_id: str | None = None, bypass_cache: bool = False
    ) -> SchemaContext:
        """Get the context the generator sees for a user (or one of their files)."""
        return self._context_builder.build(user_id, file_id, bypass_cache=bypass_cache)

    def query_history(self, user_id: str, limit: int = 20) -> list[QueryLogEntry]:
        """Get a user's most recent questions, newest first."""
        return self._history.recent(user_id, limit)

    # === Global schemas ===

    def create_schema(
        self,
        name: str,
        columns: Sequence[SchemaColumnSpec | dict[str, Any]] | None = None,
        project_id: str | None = None,
        description: str | None = None,
        created_by: str | None = None,
    ) -> GlobalSchemaInfo:
        """Create a global schema at version 1."""
        return self._schema_store.create_schema(
            name, columns, project_id=project_id, description=description, created_by=created_by
        )

    def get_schema(
        self, schema_id: str, version: int | None = None
    ) -> GlobalSchemaInfo | SchemaVersionInfo:
        """Get a schema's head, or one of its versions when ``version`` is given."""
        if version is not None:
            return self._schema_store.get_version(schema_id, version)
        return self._schema_store.get_schema(schema_id)

    def list_schemas(self, project_id: str | None = None) -> list[GlobalSchemaInfo]:
        return self._schema_store.list_schemas(project_id)

    def identify_columns(
        self, file_columns: Sequence[FileColumn | dict[str, Any]], schema_id: str
    ) -> IdentifyResult:
        """Classify file columns against a schema as exact, fuzzy or new."""
        return self._matcher.identify(file_columns, schema_id)

    def evolve_schema(
        self,
        schema_id: str,
        new_columns: Sequence[FileColumn | dict[str, Any]],
        options: EvolutionOptions | dict[str, Any] | None = None,
        created_by: str | None = None,
        expected_revision: int | None = None,
    ) -> EvolutionResult:
        """Append accepted new columns to a schema.

        Raises:
            ConflictError: If the schema changed since expected_revision
        """
        if isinstance(options, dict):
            options = EvolutionOptions(**options)
        return self._matcher.evolve(
            schema_id,
            new_columns,
            options,
            created_by=created_by,
            expected_revision=expected_revision,
        )

    def list_schema_versions(self, schema_id: str) -> list[SchemaVersionInfo]:
        return self._schema_store.list_versions(schema_id)

    def compare_schema_versions(
        self, schema_id: str, from_version: int, to_version: int
    ) -> VersionComparison:
        return self._schema_store.compare_versions(schema_id, from_version, to_version)

    def rollback_schema(
        self,
        schema_id: str,
        version: int,
        created_by: str | None = None,
        expected_revision: int | None = None,
    ) -> EvolutionResult:
        """Create a new version whose columns equal those of ``version``."""
        return self._matcher.rollback(
            schema_id, version, created_by=created_by, expected_revision=expected_revision
        )

    def get_changelog(self, target: str | None = None, limit: int = 50) -> list[ChangelogEntry]:
        """Get schema, file and merge change log entries, newest first."""
        return self._schema_store.get_changelog(target, limit)

    # === Column merges ===

    def create_merge(
        self,
        owner_id: str,
        file_id: str,
        merge_name: str,
        column_list: Sequence[str],
        delimiter: str = " ",
    ) -> str:
        """Create a merged-column view. Returns the merge id."""
        return self._merges.create(owner_id, file_id, merge_name, column_list, delimiter)

    def update_merge(
        self,
        merge_id: str,
        column_list: Sequence[str] | None = None,
        delimiter: str | None = None,
    ) -> ColumnMergeInfo:
        """Change a merged column's source columns or delimiter and rebuild its view."""
        return self._merges.update(merge_id, column_list, delimiter)

    def list_merges(self, file_id: str) -> list[ColumnMergeInfo]:
        return self._merges.list(file_id)

    def delete_merge(self, merge_id: str) -> bool:
        """Delete a merged column. Unknown ids succeed as a no-op."""
        return self._merges.delete(merge_id)

    def preview_merge(
        self,
        file_id: str,
        column_list: Sequence[str],
        delimiter: str = " ",
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Compute merged values for the first rows without saving anything."""
        return self._merges.preview(
            file_id, column_list, delimiter, limit or self._settings.preview_limit
        )
