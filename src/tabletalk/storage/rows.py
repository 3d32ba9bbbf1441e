"""Row storage for uploaded files.

Each file gets its own physical table with one real column per file
column, so generated SQL can address columns directly instead of going
through JSON extraction. Table and column names are always emitted through
SQLAlchemy's identifier quoting; user text never reaches DDL unquoted.
"""

from __future__ import annotations

import hashlib
import logging
import re
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING, Any

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    MetaData,
    Table,
    Text,
    func,
    insert,
    select,
    text,
    update,
)
from sqlalchemy.exc import IntegrityError

from tabletalk.core.types import ColumnType, FileColumn, FileTableInfo
from tabletalk.exceptions import (
    FileTableAlreadyExistsError,
    FileTableNotFoundError,
    SchemaMismatchError,
    TableTalkError,
)
from tabletalk.schema.models import FileTable

if TYPE_CHECKING:
    from sqlalchemy.types import TypeEngine

    from tabletalk.core.connection import DatabaseConnection
    from tabletalk.schema.cache import SchemaCache

logger = logging.getLogger(__name__)


# Mapping from column types to SQLAlchemy column types.
# Timestamps are kept as ISO-8601 text so both dialects compare them lexically.
COLUMN_TYPE_MAP = {
    ColumnType.TEXT: lambda: Text(),
    ColumnType.NUMERIC: lambda: Float(),
    ColumnType.BOOLEAN: lambda: Boolean(),
    ColumnType.TIMESTAMP: lambda: Text(),
}

# Value written into existing rows when a column is added with back-fill
MIGRATION_DEFAULTS: dict[ColumnType, Any] = {
    ColumnType.NUMERIC: 0,
    ColumnType.BOOLEAN: False,
    ColumnType.TEXT: None,
    ColumnType.TIMESTAMP: None,
}

_TRUE_STRINGS = {"true", "t", "yes", "y", "1"}
_FALSE_STRINGS = {"false", "f", "no", "n", "0"}


def generate_table_name(file_id: str) -> str:
    """Generate a table name for a file.

    The readable part is a slug of the file id; the hash suffix keeps ids
    that slug identically ("a-b" and "a_b") apart.

    Returns:
        Table name (e.g., "data_sales_2024_csv_1a2b3c4d")
    """
    slug = re.sub(r"[^a-z0-9]+", "_", file_id.lower()).strip("_")[:40] or "file"
    digest = hashlib.sha1(file_id.encode("utf-8")).hexdigest()[:8]
    return f"data_{slug}_{digest}"


def coerce_value(value: Any, column_type: ColumnType) -> Any:
    """Coerce a raw cell value to the storage type of its column.

    Blank strings become NULL for every non-text type.
    """
    if value is None:
        return None
    if column_type == ColumnType.TEXT:
        return value if isinstance(value, str) else str(value)
    if isinstance(value, str) and not value.strip():
        return None
    if column_type == ColumnType.NUMERIC:
        try:
            return float(value)
        except (TypeError, ValueError) as e:
            raise TableTalkError(f"Invalid numeric value: {value!r}", {"value": value}) from e
    if column_type == ColumnType.BOOLEAN:
        if isinstance(value, bool):
            return value
        lowered = str(value).strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
        raise TableTalkError(f"Invalid boolean value: {value!r}", {"value": value})
    # timestamp
    return value.isoformat() if hasattr(value, "isoformat") else str(value)


class RowStore:
    """Creates, fills and describes per-file tables."""

    def __init__(self, connection: DatabaseConnection, cache: SchemaCache | None = None) -> None:
        """Initialize the row store.

        Args:
            connection: Database connection
            cache: Context cache; file mutations drop every cached context
        """
        self._connection = connection
        self._cache = cache
        self._tables: dict[str, Table] = {}

    @property
    def connection(self) -> DatabaseConnection:
        return self._connection

    def _invalidate_contexts(self) -> None:
        if self._cache is not None:
            self._cache.invalidate_prefix("context:")

    def _record(self, session: Any, file_id: str) -> FileTable:
        record = session.get(FileTable, file_id)
        if record is None:
            raise FileTableNotFoundError(file_id)
        return record

    def _to_info(self, record: FileTable, row_count: int | None = None) -> FileTableInfo:
        return FileTableInfo(
            file_id=record.file_id,
            owner_id=record.owner_id,
            table_name=record.table_name,
            columns=[FileColumn(name=c["name"], type=c["type"]) for c in record.columns],
            schema_id=record.schema_id,
            row_count=row_count,
            created_at=record.created_at,
        )

    def _build_table(self, table_name: str, columns: Iterable[dict[str, Any]]) -> Table:
        sa_columns = [
            Column(c["name"], COLUMN_TYPE_MAP[ColumnType(c["type"])](), nullable=True)
            for c in columns
        ]
        # Fresh metadata per table so redefinitions never conflict
        return Table(table_name, MetaData(), *sa_columns)

    # === Registration ===

    def create_file_table(
        self,
        file_id: str,
        owner_id: str,
        columns: Sequence[FileColumn | dict[str, Any]],
        schema_id: str | None = None,
    ) -> FileTableInfo:
        """Create the physical table for an uploaded file.

        Args:
            file_id: Identifier of the uploaded file
            owner_id: User who owns the file
            columns: Typed column descriptors (types are mapped onto ColumnType)
            schema_id: Optional global schema the file is bound to

        Raises:
            FileTableAlreadyExistsError: If the file is already registered
            SchemaMismatchError: If column names collide case-insensitively
        """
        descriptors = [c if isinstance(c, FileColumn) else FileColumn(**c) for c in columns]
        if not descriptors:
            raise SchemaMismatchError(f"File '{file_id}' has no columns.", [])

        seen: set[str] = set()
        duplicates: list[str] = []
        for descriptor in descriptors:
            key = descriptor.name.lower()
            if key in seen:
                duplicates.append(descriptor.name)
            seen.add(key)
        if duplicates:
            raise SchemaMismatchError(
                f"File '{file_id}' has duplicate column names: {', '.join(duplicates)}.",
                duplicates,
            )

        stored = [
            {"name": d.name, "type": ColumnType.from_file_type(d.type).value} for d in descriptors
        ]
        table_name = generate_table_name(file_id)
        table = self._build_table(table_name, stored)

        with self._connection.get_session() as session:
            if session.get(FileTable, file_id) is not None:
                raise FileTableAlreadyExistsError(file_id)
            record = FileTable(
                file_id=file_id,
                owner_id=owner_id,
                table_name=table_name,
                columns=stored,
                schema_id=schema_id,
            )
            session.add(record)
            try:
                session.flush()
            except IntegrityError as e:
                session.rollback()
                raise FileTableAlreadyExistsError(file_id) from e

            table.create(session.connection())
            session.commit()
            info = self._to_info(record, row_count=0)

        self._tables[file_id] = table
        self._invalidate_contexts()
        logger.info(f"Created table {table_name} for file '{file_id}' ({len(stored)} columns)")
        return info

    def insert_rows(self, file_id: str, rows: Sequence[dict[str, Any]]) -> int:
        """Insert rows into a file's table.

        Missing keys are stored as NULL.

        Returns:
            Number of rows inserted

        Raises:
            SchemaMismatchError: If a row has keys that are not file columns
        """
        if not rows:
            return 0
        info = self.get_file(file_id)
        types = {c.name: ColumnType(c.type) for c in info.columns}

        prepared = []
        for row in rows:
            unknown = [k for k in row if k not in types]
            if unknown:
                raise SchemaMismatchError(
                    f"Row has columns that file '{file_id}' does not define.",
                    unknown,
                    list(types),
                )
            prepared.append({name: coerce_value(row.get(name), t) for name, t in types.items()})

        table = self.get_table(file_id)
        with self._connection.engine.begin() as conn:
            conn.execute(insert(table), prepared)

        self._invalidate_contexts()
        logger.debug(f"Inserted {len(prepared)} rows into file '{file_id}'")
        return len(prepared)

    def drop_file(self, file_id: str) -> bool:
        """Drop a file's table and registration.

        Returns:
            True if the file existed
        """
        with self._connection.get_session() as session:
            record = session.get(FileTable, file_id)
            if record is None:
                return False
            table_name = record.table_name
            session.delete(record)
            quoted = self._connection.quote(table_name)
            suffix = " CASCADE" if self._connection.is_postgresql else ""
            session.execute(text(f"DROP TABLE IF EXISTS {quoted}{suffix}"))
            session.commit()

        self._tables.pop(file_id, None)
        self._invalidate_contexts()
        logger.info(f"Dropped table {table_name} for file '{file_id}'")
        return True

    # === Reads ===

    def get_file(self, file_id: str) -> FileTableInfo:
        """Get a registered file.

        Raises:
            FileTableNotFoundError: If the file is not registered
        """
        with self._connection.get_session() as session:
            return self._to_info(self._record(session, file_id))

    def list_files(self, owner_id: str | None = None) -> list[FileTableInfo]:
        """List registered files, optionally for one owner."""
        with self._connection.get_session() as session:
            stmt = select(FileTable)
            if owner_id is not None:
                stmt = stmt.where(FileTable.owner_id == owner_id)
            return [self._to_info(r) for r in session.scalars(stmt.order_by(FileTable.created_at))]

    def files_for_schema(self, schema_id: str) -> list[FileTableInfo]:
        """List files bound to a global schema."""
        with self._connection.get_session() as session:
            stmt = select(FileTable).where(FileTable.schema_id == schema_id)
            return [self._to_info(r) for r in session.scalars(stmt)]

    def get_table(self, file_id: str) -> Table:
        """Get the SQLAlchemy Table of a file.

        The returned Table's columns are exactly the file's real columns,
        which makes ``table.c`` the allow-list for user-supplied names.
        """
        table = self._tables.get(file_id)
        if table is None:
            with self._connection.get_session() as session:
                record = self._record(session, file_id)
                table = self._build_table(record.table_name, record.columns)
            self._tables[file_id] = table
        return table

    def row_count(self, file_id: str) -> int:
        table = self.get_table(file_id)
        with self._connection.engine.connect() as conn:
            return int(conn.execute(select(func.count()).select_from(table)).scalar_one())

    def sample_rows(self, file_id: str, limit: int = 3) -> list[dict[str, Any]]:
        """Return the first rows of a file's table."""
        table = self.get_table(file_id)
        with self._connection.engine.connect() as conn:
            result = conn.execute(select(table).limit(limit))
            return [dict(row._mapping) for row in result]

    # === Migration ===

    def add_columns(
        self,
        file_id: str,
        columns: Sequence[tuple[str, ColumnType]],
        fill_default: bool = False,
    ) -> int:
        """Add columns to an existing file table.

        Columns the file already has (case-insensitive) are skipped.

        Args:
            file_id: File to migrate
            columns: (name, type) pairs to add
            fill_default: Write the type's default into existing rows

        Returns:
            Number of existing rows updated with defaults
        """
        info = self.get_file(file_id)
        existing = {c.name.lower() for c in info.columns}
        to_add = [(n, t) for n, t in columns if n.lower() not in existing]
        if not to_add:
            return 0

        engine = self._connection.engine
        quoted_table = self._connection.quote(info.table_name)
        updated = 0
        with self._connection.get_session() as session:
            record = self._record(session, file_id)
            for name, column_type in to_add:
                sa_type: TypeEngine[Any] = COLUMN_TYPE_MAP[column_type]()
                ddl = (
                    f"ALTER TABLE {quoted_table} ADD COLUMN "
                    f"{self._connection.quote(name)} {sa_type.compile(dialect=engine.dialect)}"
                )
                session.execute(text(ddl))

            record.columns = [*record.columns, *({"name": n, "type": t.value} for n, t in to_add)]
            table = self._build_table(record.table_name, record.columns)

            if fill_default:
                values = {
                    n: MIGRATION_DEFAULTS[t]
                    for n, t in to_add
                    if MIGRATION_DEFAULTS[t] is not None
                }
                if values:
                    result = session.execute(update(table).values(values))
                    updated = result.rowcount or 0
            session.commit()

        self._tables[file_id] = table
        self._invalidate_contexts()
        logger.info(
            f"Added columns {[n for n, _ in to_add]} to file '{file_id}' "
            f"({updated} rows back-filled)"
        )
        return updated
