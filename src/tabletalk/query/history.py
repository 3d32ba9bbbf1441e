"""Query history for TableTalk.

Every pipeline run, successful or not, is logged with its question, the
SQL it produced and how it ended. The log backs the CLI's history view
and lets users re-ask earlier questions.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from tabletalk.core.types import QueryLogEntry
from tabletalk.schema.models import QueryLog

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from tabletalk.core.types import QueryRequest, QueryResult


class QueryHistory:
    """Records query runs and reads them back per user."""

    def __init__(self, engine: Engine, enabled: bool = True) -> None:
        """Initialize the history.

        Args:
            engine: SQLAlchemy engine
            enabled: Whether runs are recorded
        """
        self._engine = engine
        self._enabled = enabled

    @property
    def enabled(self) -> bool:
        return self._enabled

    def record(self, request: QueryRequest, result: QueryResult) -> str | None:
        """Record one run.

        Args:
            request: The question that was asked
            result: What the pipeline returned

        Returns:
            Log entry ID if recorded, None if disabled
        """
        if not self._enabled:
            return None

        with Session(self._engine) as session:
            entry = QueryLog(
                user_id=request.user_id,
                file_id=request.file_id,
                question=request.question,
                sql_query=result.sql_query,
                status="success" if result.success else "error",
                error=result.error,
                error_type=result.error_type,
                execution_time_ms=result.execution_time_ms,
                row_count=result.total_rows,
            )
            session.add(entry)
            session.commit()
            return entry.id

    def recent(self, user_id: str, limit: int = 20) -> list[QueryLogEntry]:
        """Get a user's most recent runs, newest first."""
        with Session(self._engine) as session:
            stmt = (
                select(QueryLog)
                .where(QueryLog.user_id == user_id)
                .order_by(QueryLog.created_at.desc())
                .limit(limit)
            )
            return [
                QueryLogEntry(
                    id=row.id,
                    user_id=row.user_id,
                    question=row.question,
                    sql_query=row.sql_query,
                    file_id=row.file_id,
                    status="success" if row.status == "success" else "error",
                    error=row.error,
                    error_type=row.error_type,
                    execution_time_ms=row.execution_time_ms,
                    row_count=row.row_count,
                    created_at=row.created_at,
                )
                for row in session.scalars(stmt)
            ]

    def count(self, user_id: str | None = None) -> int:
        """Count recorded runs, optionally for one user."""
        with Session(self._engine) as session:
            stmt = select(func.count()).select_from(QueryLog)
            if user_id is not None:
                stmt = stmt.where(QueryLog.user_id == user_id)
            return int(session.execute(stmt).scalar_one())
