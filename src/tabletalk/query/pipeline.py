"""Question-to-rows pipeline.

One run goes context -> generate -> repair -> validate -> execute, and is
then written to the query history. Each stage failure stops the run; the
SQL text the run had reached travels with the error.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from tabletalk.core.types import PipelineSettings, QueryRequest, QueryResult
from tabletalk.exceptions import (
    GenerationError,
    TableTalkError,
    ValidationError,
)
from tabletalk.query.repair import repair_query
from tabletalk.query.validator import QueryValidator

if TYPE_CHECKING:
    from tabletalk.core.types import ExecutionOutcome
    from tabletalk.query.context import SchemaContextBuilder
    from tabletalk.query.executor import QueryExecutor
    from tabletalk.query.generator import QueryGenerator
    from tabletalk.query.history import QueryHistory

logger = logging.getLogger(__name__)


class QueryPipeline:
    """Answers natural-language questions against a user's files."""

    def __init__(
        self,
        context_builder: SchemaContextBuilder,
        generator: QueryGenerator | None,
        executor: QueryExecutor,
        history: QueryHistory | None = None,
        settings: PipelineSettings | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            context_builder: Builds the grounding context per request
            generator: Question-to-SQL generator (None = ask() unavailable)
            executor: Paginated executor
            history: Query log (None = runs are not recorded)
            settings: Pipeline tunables
        """
        self._context = context_builder
        self._generator = generator
        self._executor = executor
        self._history = history
        self._settings = settings or PipelineSettings()

    @property
    def generator(self) -> QueryGenerator | None:
        return self._generator

    @generator.setter
    def generator(self, generator: QueryGenerator | None) -> None:
        self._generator = generator

    async def run(self, request: QueryRequest) -> QueryResult:
        """Answer a question, reporting any failure inside the result.

        Returns:
            QueryResult; on failure ``error``/``error_type`` are set and
            ``sql_query`` holds the text the failing stage was given
        """
        warnings: list[str] = []
        try:
            result = await self._answer(request, warnings)
        except TableTalkError as e:
            sql_query = getattr(e, "sql_query", "")
            logger.info(f"Query failed ({type(e).__name__}): {e.message}")
            result = QueryResult(
                sql_query=sql_query,
                current_page=request.page,
                page_size=request.page_size,
                error=e.message,
                error_type=type(e).__name__,
                warnings=warnings,
            )
        await self._record(request, result)
        return result

    async def run_or_raise(self, request: QueryRequest) -> QueryResult:
        """Answer a question, raising the typed exception on failure.

        Raises:
            GenerationError: If the completion service fails twice
            RepairFailure: If the generated text cannot be repaired
            ValidationError: If the text is not a permitted read-only query
            ExecutionError: If the store rejects the query or it times out
        """
        try:
            result = await self._answer(request, [])
        except TableTalkError as e:
            await self._record(
                request,
                QueryResult(
                    sql_query=getattr(e, "sql_query", ""),
                    error=e.message,
                    error_type=type(e).__name__,
                ),
            )
            raise
        await self._record(request, result)
        return result

    async def execute_sql(
        self,
        sql: str,
        user_id: str,
        file_id: str | None = None,
        page: int = 1,
        page_size: int | None = None,
    ) -> QueryResult:
        """Validate and execute caller-written SQL, scoped like a generated query.

        Raises:
            ValidationError: If the text is not a permitted read-only query
            ExecutionError: If the store rejects the query or it times out
        """
        warnings: list[str] = []
        page_size = self._page_size(page_size or self._settings.default_page_size, warnings)
        context = await asyncio.to_thread(self._context.build, user_id, file_id)
        return await self._validate_and_execute(
            sql, context.table_names(), page, page_size, warnings
        )

    async def _answer(self, request: QueryRequest, warnings: list[str]) -> QueryResult:
        if self._generator is None:
            raise GenerationError(
                "No completion provider configured. Install tabletalk[openai] and set "
                "OPENAI_API_KEY, or pass completion_provider to TableTalk."
            )
        page_size = self._page_size(request.page_size, warnings)

        context = await asyncio.to_thread(self._context.build, request.user_id, request.file_id)
        if not context.tables:
            raise GenerationError(
                f"User '{request.user_id}' has no files to query. Register a file first."
            )

        raw = await self._generator.generate(request.question, context, request.history)
        sql = repair_query(raw)
        if sql != raw:
            warnings.append("Generated query looked truncated and was repaired.")

        return await self._validate_and_execute(
            sql, context.table_names(), request.page, page_size, warnings
        )

    async def _validate_and_execute(
        self,
        sql: str,
        allowed_tables: set[str],
        page: int,
        page_size: int,
        warnings: list[str],
    ) -> QueryResult:
        validation = QueryValidator(allowed_tables=allowed_tables).validate(sql)
        if not validation.valid:
            raise ValidationError(
                validation.error or "Query rejected.", validation.sql, validation.blocked_keyword
            )
        warnings.extend(validation.warnings)

        outcome: ExecutionOutcome = await self._executor.execute(sql, page, page_size)
        if outcome.truncated:
            warnings.append(
                f"Result has more than {self._settings.max_rows} rows; "
                f"only the first {self._settings.max_rows} are reachable."
            )
        return QueryResult(
            sql_query=sql,
            rows=outcome.rows,
            execution_time_ms=outcome.execution_time_ms,
            total_rows=outcome.total_rows,
            total_pages=outcome.total_pages,
            current_page=outcome.current_page,
            page_size=outcome.page_size,
            warnings=warnings,
        )

    def _page_size(self, requested: int, warnings: list[str]) -> int:
        limit = self._settings.max_page_size
        if requested > limit:
            warnings.append(f"Page size {requested} exceeds the maximum; using {limit}.")
            return limit
        return requested

    async def _record(self, request: QueryRequest, result: QueryResult) -> None:
        if self._history is None or not self._history.enabled:
            return
        try:
            await asyncio.to_thread(self._history.record, request, result)
        except Exception as e:
            # History failures never fail the query
            logger.warning(f"Failed to record query history: {e}")

