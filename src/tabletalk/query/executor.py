"""Paginated, time-bounded execution of validated queries."""

from __future__ import annotations

import asyncio
import logging
import math
import re
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy import text

from tabletalk.core.types import ExecutionOutcome
from tabletalk.exceptions import ExecutionError

if TYPE_CHECKING:
    from sqlalchemy import Connection

    from tabletalk.core.connection import DatabaseConnection
    from tabletalk.core.types import PipelineSettings

logger = logging.getLogger(__name__)

# SQLite progress handler granularity (virtual machine instructions)
_PROGRESS_STEPS = 1000

# Text that text() would otherwise read as a :name bind parameter
_BIND_LIKE = re.compile(r"(?<![:\w\\]):(\w+)(?![:\w])")


def strip_terminator(sql: str) -> str:
    """Remove surrounding whitespace and trailing semicolons."""
    return sql.strip().rstrip(";").rstrip()


def escape_binds(sql: str) -> str:
    """Escape ``:name`` sequences so ``text()`` passes user SQL through unbound.

    Literals like ``'see :ref'`` reach the driver unchanged instead of
    becoming bind parameters.
    """
    return _BIND_LIKE.sub(r"\\:\1", sql)


def total_pages(total_rows: int, page_size: int) -> int:
    """Number of pages needed for total_rows at page_size rows per page."""
    return math.ceil(total_rows / page_size) if total_rows > 0 else 0


class QueryExecutor:
    """Runs read-only SQL against the row store, one page at a time.

    The user's query is wrapped as a subquery for both the page fetch and
    the row count, so its own ORDER BY/LIMIT are respected. Every call is
    bounded by a statement timeout in the database and by an outer
    ``asyncio`` timeout, and no page reads past ``max_rows``.
    """

    def __init__(
        self,
        connection: DatabaseConnection,
        statement_timeout: float = 30.0,
        max_rows: int = 10_000,
    ) -> None:
        """Initialize the executor.

        Args:
            connection: Database connection
            statement_timeout: Seconds a single execution may take
            max_rows: Cap on rows counted and paged through
        """
        self._connection = connection
        self._statement_timeout = statement_timeout
        self._max_rows = max_rows

    @classmethod
    def from_settings(
        cls, connection: DatabaseConnection, settings: PipelineSettings
    ) -> QueryExecutor:
        return cls(
            connection, statement_timeout=settings.statement_timeout, max_rows=settings.max_rows
        )

    async def execute(self, sql: str, page: int = 1, page_size: int = 10) -> ExecutionOutcome:
        """Execute one page of a query.

        Args:
            sql: Validated SELECT query
            page: 1-based page number
            page_size: Rows per page

        Returns:
            ExecutionOutcome with rows, counts and timing

        Raises:
            ExecutionError: If the store rejects the query or it times out
        """
        if page < 1 or page_size < 1:
            raise ExecutionError("Page and page size must be positive integers.", sql)

        try:
            # Small grace period so the in-database timeout normally fires first
            return await asyncio.wait_for(
                asyncio.to_thread(self._execute_sync, sql, page, page_size),
                timeout=self._statement_timeout + 1.0,
            )
        except TimeoutError as e:
            raise ExecutionError(
                f"Query timed out after {self._statement_timeout:g}s.", sql
            ) from e

    def _execute_sync(self, sql: str, page: int, page_size: int) -> ExecutionOutcome:
        # Newline before the closing parenthesis keeps a trailing -- comment closed
        inner = escape_binds(strip_terminator(sql)) + "\n"
        offset = (page - 1) * page_size
        limit = max(0, min(page_size, self._max_rows - offset))

        count_sql = text(f"SELECT COUNT(*) FROM ({inner}) AS count_query")
        page_sql = text(f"SELECT * FROM ({inner}) AS paged_query LIMIT :limit OFFSET :offset")

        start_time = time.perf_counter()
        deadline = time.monotonic() + self._statement_timeout
        try:
            with self._connection.engine.connect() as conn, self._deadline(conn, deadline):
                counted = int(conn.execute(count_sql).scalar_one())
                rows: list[dict[str, Any]] = []
                if limit > 0:
                    result = conn.execute(page_sql, {"limit": limit, "offset": offset})
                    rows = [dict(row._mapping) for row in result]
                conn.rollback()
        except Exception as e:
            if time.monotonic() > deadline:
                raise ExecutionError(
                    f"Query timed out after {self._statement_timeout:g}s.", sql
                ) from e
            logger.info(f"Query execution failed: {e}")
            raise ExecutionError(f"Query execution failed: {e}", sql) from e

        execution_time_ms = (time.perf_counter() - start_time) * 1000
        capped = min(counted, self._max_rows)
        logger.debug(
            f"Executed query in {execution_time_ms:.2f}ms "
            f"(page {page}, {len(rows)} rows of {counted})"
        )
        return ExecutionOutcome(
            rows=rows,
            total_rows=capped,
            total_pages=total_pages(capped, page_size),
            current_page=page,
            page_size=page_size,
            execution_time_ms=execution_time_ms,
            truncated=counted > self._max_rows,
        )

    @contextmanager
    def _deadline(self, conn: Connection, deadline: float) -> Iterator[None]:
        """Apply the statement timeout for the duration of the block."""
        if self._connection.is_postgresql:
            timeout_ms = int(self._statement_timeout * 1000)
            conn.execute(text(f"SET LOCAL statement_timeout = {timeout_ms}"))
            yield
            return

        dbapi_conn: Any = conn.connection.dbapi_connection

        def _abort_when_late() -> int:
            return 1 if time.monotonic() > deadline else 0

        dbapi_conn.set_progress_handler(_abort_when_late, _PROGRESS_STEPS)
        try:
            yield
        finally:
            dbapi_conn.set_progress_handler(None, 0)
