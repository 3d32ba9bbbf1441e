"""Merged-column views.

A column merge is a view over a file's table that adds one derived
column: the trimmed, non-empty values of the source columns joined with a
delimiter. Merge names, column names and delimiters all come from users,
so the view is composed with SQLAlchemy Core rather than string
concatenation:

- source columns are looked up in ``Table.c`` of the file's table, which
  only holds the file's real columns (the allow-list);
- identifiers are rendered by the dialect's identifier preparer;
- the delimiter is a literal, escaped by the dialect when the view is
  compiled and bound as a parameter when previewing.
"""

from __future__ import annotations

import hashlib
import logging
import re
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from sqlalchemy import String, case, cast, func, literal, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.schema import ExecutableDDLElement

from tabletalk.core.locks import KeyedLocks
from tabletalk.core.types import ColumnMergeInfo
from tabletalk.exceptions import (
    InvalidMergeError,
    MergeAlreadyExistsError,
    MergeNotFoundError,
    SchemaMismatchError,
)
from tabletalk.schema.models import ColumnMerge

if TYPE_CHECKING:
    from sqlalchemy import ColumnElement, Select, Table
    from sqlalchemy.sql.compiler import DDLCompiler

    from tabletalk.core.connection import DatabaseConnection
    from tabletalk.schema.cache import SchemaCache
    from tabletalk.schema.engine import SchemaStore
    from tabletalk.storage.rows import RowStore

logger = logging.getLogger(__name__)

PREVIEW_LABEL = "merged_value"
MAX_DELIMITER_LENGTH = 50


class CreateView(ExecutableDDLElement):
    """``CREATE VIEW <name> AS <select>`` with the select's literals inlined."""

    inherit_cache = False

    def __init__(self, name: str, selectable: Select[Any]) -> None:
        self.name = name
        self.selectable = selectable


class DropView(ExecutableDDLElement):
    """``DROP VIEW IF EXISTS <name>``."""

    inherit_cache = False

    def __init__(self, name: str) -> None:
        self.name = name


@compiles(CreateView)
def _compile_create_view(element: CreateView, compiler: DDLCompiler, **kw: Any) -> str:
    body = compiler.sql_compiler.process(element.selectable, literal_binds=True)
    return f"CREATE VIEW {compiler.preparer.quote(element.name)} AS {body}"


@compiles(DropView)
def _compile_drop_view(element: DropView, compiler: DDLCompiler, **kw: Any) -> str:
    return f"DROP VIEW IF EXISTS {compiler.preparer.quote(element.name)}"


def merged_expression(columns: Sequence[ColumnElement[Any]], delimiter: str) -> ColumnElement[str]:
    """Build the SQL expression for a merged value.

    Each value is cast to text and trimmed; NULL, empty and blank values
    contribute nothing. Every kept value is prefixed with the delimiter and
    the first delimiter is cut off with SUBSTR, so skipped values never
    leave a leading, trailing or doubled delimiter.
    """
    delim = literal(delimiter, String)
    pieces: list[ColumnElement[Any]] = []
    for column in columns:
        value = func.trim(func.coalesce(cast(column, String), ""), type_=String)
        pieces.append(case((value != "", delim.concat(value)), else_=""))
    if not pieces:
        raise InvalidMergeError("A merged value needs at least one source column.")
    joined = pieces[0]
    for piece in pieces[1:]:
        joined = joined.concat(piece)
    return func.substr(joined, len(delimiter) + 1, type_=String)


def generate_view_name(file_id: str, merge_name: str) -> str:
    """Generate a view name for a merge, at most 63 characters."""
    slug = re.sub(r"[^a-z0-9]+", "_", merge_name.lower()).strip("_")[:24] or "merge"
    digest = hashlib.sha1(f"{file_id}\x00{merge_name}".encode()).hexdigest()[:10]
    return f"merged_{slug}_{digest}"


class ColumnMergeViewManager:
    """Creates, updates, deletes and previews merged-column views."""

    def __init__(
        self,
        connection: DatabaseConnection,
        rows: RowStore,
        schema_store: SchemaStore | None = None,
        cache: SchemaCache | None = None,
        locks: KeyedLocks | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            connection: Database connection
            rows: Row store that owns the file tables
            schema_store: Used for changelog entries
            cache: Context cache, invalidated on every mutation
            locks: Per-(file, merge name) lock registry
        """
        self._connection = connection
        self._rows = rows
        self._schema_store = schema_store
        self._cache = cache
        self._locks = locks or KeyedLocks()

    def _invalidate_contexts(self) -> None:
        if self._cache is not None:
            self._cache.invalidate_prefix("context:")

    def _lock_key(self, file_id: str, merge_name: str) -> str:
        return f"merge:{file_id}:{merge_name.lower()}"

    def _resolve_columns(
        self, table: Table, file_id: str, column_list: Sequence[str]
    ) -> list[ColumnElement[Any]]:
        """Look up user-supplied names among the file's real columns."""
        if len(column_list) < 2:
            raise InvalidMergeError(
                "A merged column needs at least two source columns.",
                {"column_list": list(column_list)},
            )
        if len({c.lower() for c in column_list}) != len(column_list):
            raise InvalidMergeError(
                "Source columns must not repeat.", {"column_list": list(column_list)}
            )

        available = [c.name for c in table.c]
        missing = [name for name in column_list if name not in table.c]
        if missing:
            raise SchemaMismatchError(
                f"Columns not found in file '{file_id}': {', '.join(missing)}.",
                missing,
                available,
            )
        return [table.c[name] for name in column_list]

    def _check_delimiter(self, delimiter: str) -> None:
        if len(delimiter) > MAX_DELIMITER_LENGTH:
            raise InvalidMergeError(
                f"Delimiter is longer than {MAX_DELIMITER_LENGTH} characters.",
                {"delimiter": delimiter},
            )

    def _to_info(self, record: ColumnMerge) -> ColumnMergeInfo:
        return ColumnMergeInfo(
            id=record.id,
            owner_id=record.owner_id,
            file_id=record.file_id,
            merge_name=record.merge_name,
            column_list=list(record.column_list),
            delimiter=record.delimiter,
            view_name=record.view_name,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    def create(
        self,
        owner_id: str,
        file_id: str,
        merge_name: str,
        column_list: Sequence[str],
        delimiter: str = " ",
    ) -> str:
        """Create a merged-column view and persist its definition.

        Args:
            owner_id: User creating the merge
            file_id: File whose columns are merged
            merge_name: Name of the derived column
            column_list: Two or more of the file's columns, in merge order
            delimiter: Text placed between non-empty values

        Returns:
            The new merge id

        Raises:
            SchemaMismatchError: If a source column is not a column of the file
            MergeAlreadyExistsError: If the file already has a merge with this name
            InvalidMergeError: If the definition is malformed
        """
        merge_name = merge_name.strip()
        if not merge_name:
            raise InvalidMergeError("Merge name must not be blank.", {"file_id": file_id})
        self._check_delimiter(delimiter)

        table = self._rows.get_table(file_id)
        columns = self._resolve_columns(table, file_id, column_list)
        if merge_name.lower() in {c.name.lower() for c in table.c}:
            raise InvalidMergeError(
                f"Merge name '{merge_name}' collides with an existing column of file '{file_id}'.",
                {"file_id": file_id, "merge_name": merge_name},
            )

        view_name = generate_view_name(file_id, merge_name)
        view_select = select(*table.c, merged_expression(columns, delimiter).label(merge_name))

        with self._locks.hold(self._lock_key(file_id, merge_name)):
            with self._connection.get_session() as session:
                exists = session.scalar(
                    select(ColumnMerge.id).where(
                        ColumnMerge.file_id == file_id, ColumnMerge.merge_name == merge_name
                    )
                )
                if exists is not None:
                    raise MergeAlreadyExistsError(file_id, merge_name)

                record = ColumnMerge(
                    owner_id=owner_id,
                    file_id=file_id,
                    merge_name=merge_name,
                    column_list=list(column_list),
                    delimiter=delimiter,
                    view_name=view_name,
                )
                session.add(record)
                try:
                    session.flush()
                except IntegrityError as e:
                    session.rollback()
                    raise MergeAlreadyExistsError(file_id, merge_name) from e

                conn = session.connection()
                conn.execute(DropView(view_name))
                conn.execute(CreateView(view_name, view_select))
                session.commit()
                merge_id = record.id

        self._invalidate_contexts()
        if self._schema_store is not None:
            self._schema_store.log_change(
                "create_merge",
                file_id,
                new_value={"merge_name": merge_name, "columns": list(column_list)},
                created_by=owner_id,
            )
        logger.info(f"Created merged column '{merge_name}' on file '{file_id}' as {view_name}")
        return merge_id

    def list(self, file_id: str) -> list[ColumnMergeInfo]:
        """List the merges defined on a file, oldest first."""
        with self._connection.get_session() as session:
            stmt = (
                select(ColumnMerge)
                .where(ColumnMerge.file_id == file_id)
                .order_by(ColumnMerge.created_at, ColumnMerge.merge_name)
            )
            return [self._to_info(r) for r in session.scalars(stmt)]

    def get(self, merge_id: str) -> ColumnMergeInfo | None:
        with self._connection.get_session() as session:
            record = session.get(ColumnMerge, merge_id)
            return self._to_info(record) if record is not None else None

    def update(
        self,
        merge_id: str,
        column_list: Sequence[str] | None = None,
        delimiter: str | None = None,
    ) -> ColumnMergeInfo:
        """Change a merge's source columns or delimiter and rebuild its view.

        The record update and the view rebuild commit in one transaction.
        Arguments left as None keep their current value.

        Raises:
            MergeNotFoundError: If no merge has this id
            SchemaMismatchError: If a source column is not a column of the file
            InvalidMergeError: If the new definition is malformed
        """
        existing = self.get(merge_id)
        if existing is None:
            raise MergeNotFoundError(merge_id)
        new_columns = list(column_list) if column_list is not None else existing.column_list
        new_delimiter = delimiter if delimiter is not None else existing.delimiter
        self._check_delimiter(new_delimiter)

        table = self._rows.get_table(existing.file_id)
        columns = self._resolve_columns(table, existing.file_id, new_columns)
        view_select = select(
            *table.c, merged_expression(columns, new_delimiter).label(existing.merge_name)
        )

        with self._locks.hold(self._lock_key(existing.file_id, existing.merge_name)):
            with self._connection.get_session() as session:
                record = session.get(ColumnMerge, merge_id)
                if record is None:
                    raise MergeNotFoundError(merge_id)
                record.column_list = new_columns
                record.delimiter = new_delimiter
                session.flush()

                conn = session.connection()
                conn.execute(DropView(record.view_name))
                conn.execute(CreateView(record.view_name, view_select))
                session.commit()
                updated = self._to_info(record)

        self._invalidate_contexts()
        if self._schema_store is not None:
            self._schema_store.log_change(
                "update_merge",
                existing.file_id,
                old_value={"columns": existing.column_list, "delimiter": existing.delimiter},
                new_value={"columns": new_columns, "delimiter": new_delimiter},
                created_by=existing.owner_id,
            )
        logger.info(f"Updated merged column '{existing.merge_name}' on file '{existing.file_id}'")
        return updated

    def delete(self, merge_id: str) -> bool:
        """Drop a merge's view and definition.

        Deleting an unknown id is a successful no-op.

        Returns:
            Always True
        """
        existing = self.get(merge_id)
        if existing is None:
            logger.debug(f"Merge {merge_id} not found; nothing to delete")
            return True

        with self._locks.hold(self._lock_key(existing.file_id, existing.merge_name)):
            with self._connection.get_session() as session:
                record = session.get(ColumnMerge, merge_id)
                if record is None:
                    return True
                session.connection().execute(DropView(record.view_name))
                session.delete(record)
                session.commit()

        self._invalidate_contexts()
        if self._schema_store is not None:
            self._schema_store.log_change(
                "delete_merge",
                existing.file_id,
                old_value={"merge_name": existing.merge_name, "columns": existing.column_list},
            )
        logger.info(f"Deleted merged column '{existing.merge_name}' on file '{existing.file_id}'")
        return True

    def delete_for_file(self, file_id: str) -> int:
        """Delete every merge of a file. Returns the number deleted."""
        merges = self.list(file_id)
        for merge in merges:
            self.delete(merge.id)
        return len(merges)

    def preview(
        self,
        file_id: str,
        column_list: Sequence[str],
        delimiter: str = " ",
        limit: int = 5,
    ) -> list[dict[str, Any]]:
        """Compute merged values for the first rows without persisting anything.

        Returns:
            Rows holding the source columns plus ``merged_value``
        """
        self._check_delimiter(delimiter)
        table = self._rows.get_table(file_id)
        columns = self._resolve_columns(table, file_id, column_list)
        stmt = select(*columns, merged_expression(columns, delimiter).label(PREVIEW_LABEL)).limit(
            max(1, limit)
        )
        with self._connection.engine.connect() as conn:
            return [dict(row._mapping) for row in conn.execute(stmt)]
