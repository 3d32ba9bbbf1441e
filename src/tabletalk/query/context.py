"""Schema context builder for SQL generation.

Generates the grounding context a completion model needs to write correct
SQL against a user's uploaded files: one entry per file table and per
merged-column view, each with typed columns, a row count and a few sample
rows, followed by dialect-specific guidelines.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import text

from tabletalk.core.types import ColumnContext, SchemaContext, TableContext
from tabletalk.exceptions import FileTableNotFoundError

if TYPE_CHECKING:
    from tabletalk.core.connection import DatabaseConnection
    from tabletalk.core.types import ColumnMergeInfo, FileTableInfo
    from tabletalk.merge.manager import ColumnMergeViewManager
    from tabletalk.schema.cache import SchemaCache
    from tabletalk.storage.rows import RowStore

logger = logging.getLogger(__name__)


COMMON_GUIDELINES = [
    "Only reference the tables listed above, by their exact names",
    "Column names containing spaces, capitals or punctuation must be double-quoted",
    "Text comparisons on free-form values should be case-insensitive",
    "Prefer selecting specific columns over SELECT *",
    "Results are paginated by the caller; add LIMIT only when the question asks for a top N",
]

DIALECT_GUIDELINES = {
    "sqlite": [
        "The database is SQLite: use LOWER(col) LIKE LOWER('%term%') for text search",
        "Timestamps are ISO-8601 text; compare them as strings or with date()/strftime()",
        "Booleans are stored as 0 and 1",
        "Use || to concatenate strings and CAST(col AS REAL) for arithmetic on text",
    ],
    "postgresql": [
        "The database is PostgreSQL: use ILIKE for case-insensitive text search",
        "Timestamps are ISO-8601 text; cast with col::timestamptz before date arithmetic",
        "Booleans are native; compare with TRUE or FALSE",
        "Numeric columns are double precision; use ROUND(col::numeric, 2) for rounding",
    ],
}


class SchemaContextBuilder:
    """Builds the grounding context for one user, optionally scoped to one file.

    Contexts are cached under ``context:<user>:<file or *>``; every file or
    merge mutation drops them all.
    """

    def __init__(
        self,
        rows: RowStore,
        merges: ColumnMergeViewManager,
        cache: SchemaCache | None = None,
        sample_rows: int = 3,
    ) -> None:
        """Initialize the context builder.

        Args:
            rows: Row store holding the file tables
            merges: Merge manager, for the views of each file
            cache: Context cache (None = always rebuild)
            sample_rows: Sample rows shown per table
        """
        self._rows = rows
        self._merges = merges
        self._cache = cache
        self._sample_rows = sample_rows

    @property
    def connection(self) -> DatabaseConnection:
        return self._rows.connection

    def build(
        self, user_id: str, file_id: str | None = None, bypass_cache: bool = False
    ) -> SchemaContext:
        """Build the context for a user.

        Args:
            user_id: Requesting user; only their files are included
            file_id: Restrict the context to one file and its merges
            bypass_cache: Force a rebuild even if a cached context exists

        Returns:
            SchemaContext with tables in registration order

        Raises:
            FileTableNotFoundError: If file_id is not one of the user's files
        """
        key = f"context:{user_id}:{file_id or '*'}"
        if self._cache is not None:
            cached = self._cache.get(key, bypass=bypass_cache)
            if cached is not None:
                return cached

        context = self._build(user_id, file_id)
        if self._cache is not None:
            self._cache.set(key, context)
        return context

    def _build(self, user_id: str, file_id: str | None) -> SchemaContext:
        if file_id is not None:
            file = self._rows.get_file(file_id)
            if file.owner_id != user_id:
                raise FileTableNotFoundError(file_id)
            files = [file]
        else:
            files = self._rows.list_files(owner_id=user_id)

        tables: list[TableContext] = []
        for file in files:
            row_count = self._rows.row_count(file.file_id)
            tables.append(self._file_context(file, row_count))
            for merge in self._merges.list(file.file_id):
                tables.append(self._merge_context(file, merge, row_count))

        dialect = self.connection.dialect
        logger.debug(
            f"Built context for user '{user_id}' ({len(tables)} tables, dialect {dialect})"
        )
        return SchemaContext(
            dialect=dialect,
            tables=tables,
            guidelines=[*DIALECT_GUIDELINES.get(dialect, []), *COMMON_GUIDELINES],
        )

    def _file_context(self, file: FileTableInfo, row_count: int) -> TableContext:
        return TableContext(
            table_name=file.table_name,
            label=file.file_id,
            kind="file",
            columns=[ColumnContext(name=c.name, type=c.type) for c in file.columns],
            row_count=row_count,
            sample_rows=self._rows.sample_rows(file.file_id, self._sample_rows)
            if row_count
            else [],
        )

    def _merge_context(
        self, file: FileTableInfo, merge: ColumnMergeInfo, row_count: int
    ) -> TableContext:
        columns = [ColumnContext(name=c.name, type=c.type) for c in file.columns]
        columns.append(ColumnContext(name=merge.merge_name, type="text"))
        return TableContext(
            table_name=merge.view_name,
            label=f"{file.file_id} ({merge.merge_name} = {' + '.join(merge.column_list)})",
            kind="merge",
            columns=columns,
            row_count=row_count,
            sample_rows=self._view_samples(merge.view_name) if row_count else [],
        )

    def _view_samples(self, view_name: str) -> list[dict[str, Any]]:
        quoted = self.connection.quote(view_name)
        with self.connection.engine.connect() as conn:
            result = conn.execute(
                text(f"SELECT * FROM {quoted} LIMIT :limit"), {"limit": self._sample_rows}
            )
            return [dict(row._mapping) for row in result]


def get_schema_context(
    rows: RowStore,
    merges: ColumnMergeViewManager,
    user_id: str,
    file_id: str | None = None,
) -> SchemaContext:
    """Convenience function to build an uncached context.

    Args:
        rows: Row store
        merges: Merge manager
        user_id: Requesting user
        file_id: Optional file scope

    Returns:
        SchemaContext for the user's files
    """
    return SchemaContextBuilder(rows, merges).build(user_id, file_id)
