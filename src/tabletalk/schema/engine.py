"""Schema store for versioned global schemas."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tabletalk.core.types import (
    ChangelogEntry,
    GlobalSchemaInfo,
    SchemaColumnInfo,
    SchemaColumnSpec,
    SchemaVersionInfo,
    VersionComparison,
)
from tabletalk.exceptions import (
    ConflictError,
    SchemaChangeError,
    SchemaNotFoundError,
    SchemaVersionNotFoundError,
)
from tabletalk.schema.models import (
    Base,
    GlobalSchema,
    SchemaChangelog,
    SchemaColumnDefinition,
    SchemaVersion,
    SchemaVersionColumn,
    utc_now,
)

if TYPE_CHECKING:
    from tabletalk.core.connection import DatabaseConnection
    from tabletalk.schema.cache import SchemaCache

logger = logging.getLogger(__name__)


def _column_info(column: SchemaColumnDefinition) -> SchemaColumnInfo:
    return SchemaColumnInfo(
        id=column.id,
        name=column.name,
        type=column.column_type,
        required=column.is_required,
        primary_key=column.is_primary_key,
        description=column.description,
        validation_rules=column.validation_rules,
    )


def _version_info(version: SchemaVersion) -> SchemaVersionInfo:
    return SchemaVersionInfo(
        id=version.id,
        schema_id=version.schema_id,
        version=version.version,
        previous_version_id=version.previous_version_id,
        columns=[_column_info(c) for c in version.columns],
        superseded=version.superseded,
        comment=version.comment,
        created_by=version.created_by,
        created_at=version.created_at,
    )


class SchemaStore:
    """Persistent, versioned store of global schemas.

    Each schema is a chain of version nodes linked backwards through
    ``previous_version_id``. Only the head node may be changed; once a new
    head is appended the old one is marked superseded and never written
    again. Every mutation bumps ``revision`` with a compare-and-swap, so
    a writer that read a stale revision gets a ``ConflictError`` instead of
    silently overwriting a concurrent change.
    """

    def __init__(self, connection: DatabaseConnection, cache: SchemaCache | None = None) -> None:
        """Initialize the schema store.

        Args:
            connection: Database connection to use
            cache: Optional snapshot cache, invalidated on every mutation
        """
        self._connection = connection
        self._cache = cache
        self._initialized = False

    def initialize(self) -> None:
        """Create meta-tables if they don't exist."""
        if not self._initialized:
            Base.metadata.create_all(self._connection.engine)
            self._initialized = True

    def _get_session(self) -> Session:
        return self._connection.get_session()

    def _log_change(
        self,
        session: Session,
        operation: str,
        target: str,
        old_value: Any = None,
        new_value: Any = None,
        created_by: str | None = None,
        reason: str | None = None,
    ) -> None:
        """Log a change to the changelog."""
        entry = SchemaChangelog(
            operation=operation,
            target=target,
            old_value=json.dumps(old_value) if old_value is not None else None,
            new_value=json.dumps(new_value) if new_value is not None else None,
            created_by=created_by,
            reason=reason,
        )
        session.add(entry)

    def _cache_key(self, schema_id: str) -> str:
        return f"schema:{schema_id}"

    def _invalidate(self, schema_id: str) -> None:
        if self._cache is not None:
            self._cache.invalidate(self._cache_key(schema_id))

    def _load(self, session: Session, schema_id: str) -> tuple[GlobalSchema, SchemaVersion]:
        schema = session.get(GlobalSchema, schema_id)
        if schema is None or not schema.is_active or schema.head_version_id is None:
            raise SchemaNotFoundError(schema_id)
        head = session.get(SchemaVersion, schema.head_version_id)
        if head is None:
            raise SchemaNotFoundError(schema_id)
        return schema, head

    def _to_info(self, schema: GlobalSchema, head: SchemaVersion) -> GlobalSchemaInfo:
        return GlobalSchemaInfo(
            id=schema.id,
            name=schema.name,
            project_id=schema.project_id,
            description=schema.description,
            current_version=schema.current_version,
            revision=schema.revision,
            head_version_id=head.id,
            previous_version_id=head.previous_version_id,
            columns=[_column_info(c) for c in head.columns],
            created_at=schema.created_at,
            updated_at=schema.updated_at,
        )

    def _new_column(self, schema_id: str, spec: SchemaColumnSpec) -> SchemaColumnDefinition:
        return SchemaColumnDefinition(
            schema_id=schema_id,
            name=spec.name,
            column_type=str(spec.type),
            is_required=spec.required,
            is_primary_key=spec.primary_key,
            description=spec.description,
            validation_rules=spec.validation_rules,
        )

    # === Reads ===

    def get_schema(self, schema_id: str, bypass_cache: bool = False) -> GlobalSchemaInfo:
        """Get a schema with its head version's columns.

        Args:
            schema_id: Schema identifier
            bypass_cache: Read from the store even if a cached snapshot exists

        Raises:
            SchemaNotFoundError: If the schema does not exist
        """
        if self._cache is not None:
            cached = self._cache.get(self._cache_key(schema_id), bypass=bypass_cache)
            if cached is not None:
                return cached

        with self._get_session() as session:
            info = self._to_info(*self._load(session, schema_id))

        if self._cache is not None:
            self._cache.set(self._cache_key(schema_id), info)
        return info

    def list_schemas(self, project_id: str | None = None) -> list[GlobalSchemaInfo]:
        """List active schemas, optionally within one project."""
        with self._get_session() as session:
            stmt = select(GlobalSchema).where(GlobalSchema.is_active == True)  # noqa: E712
            if project_id is not None:
                stmt = stmt.where(GlobalSchema.project_id == project_id)
            result = []
            for schema in session.scalars(stmt.order_by(GlobalSchema.name)):
                head = session.get(SchemaVersion, schema.head_version_id)
                if head is not None:
                    result.append(self._to_info(schema, head))
            return result

    def list_versions(self, schema_id: str) -> list[SchemaVersionInfo]:
        """List every version of a schema, oldest first."""
        with self._get_session() as session:
            schema, _ = self._load(session, schema_id)
            return [_version_info(v) for v in schema.versions]

    def get_version(self, schema_id: str, version: int) -> SchemaVersionInfo:
        """Get one version node of a schema.

        Raises:
            SchemaVersionNotFoundError: If no such version exists
        """
        with self._get_session() as session:
            return _version_info(self._load_version(session, schema_id, version))

    def _load_version(self, session: Session, schema_id: str, version: int) -> SchemaVersion:
        schema, _ = self._load(session, schema_id)
        for node in schema.versions:
            if node.version == version:
                return node
        raise SchemaVersionNotFoundError(schema_id, version, [v.version for v in schema.versions])

    # === Mutations ===

    def create_schema(
        self,
        name: str,
        columns: Sequence[SchemaColumnSpec | dict[str, Any]] | None = None,
        project_id: str | None = None,
        description: str | None = None,
        created_by: str | None = None,
    ) -> GlobalSchemaInfo:
        """Create a schema with version 1.

        Args:
            name: Schema name (unique within a project)
            columns: Initial column specs
            project_id: Owning project
            description: Human-readable description
            created_by: Who created this schema

        Raises:
            SchemaChangeError: If column names collide or the name is taken
        """
        specs = [
            c if isinstance(c, SchemaColumnSpec) else SchemaColumnSpec(**c) for c in columns or []
        ]
        seen: set[str] = set()
        for spec in specs:
            key = spec.name.lower()
            if key in seen:
                raise SchemaChangeError(f"Duplicate column '{spec.name}' in schema '{name}'.")
            seen.add(key)

        with self._get_session() as session:
            schema = GlobalSchema(
                name=name,
                project_id=project_id,
                description=description,
                current_version=1,
                revision=0,
                created_by=created_by,
            )
            session.add(schema)
            session.flush()

            head = SchemaVersion(
                schema_id=schema.id, version=1, comment="Initial version", created_by=created_by
            )
            for position, spec in enumerate(specs):
                head.column_links.append(
                    SchemaVersionColumn(column=self._new_column(schema.id, spec), position=position)
                )
            session.add(head)
            session.flush()
            schema.head_version_id = head.id

            self._log_change(
                session,
                "create_schema",
                schema.id,
                new_value={"name": name, "columns": [s.name for s in specs]},
                created_by=created_by,
            )
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise SchemaChangeError(
                    f"Schema '{name}' already exists in project '{project_id}'."
                ) from e
            info = self._to_info(schema, head)

        logger.info(f"Created schema '{name}' ({info.id}) with {len(specs)} columns")
        return info

    def append_columns(
        self,
        schema_id: str,
        columns: Sequence[SchemaColumnSpec],
        create_new_version: bool = True,
        expected_revision: int | None = None,
        created_by: str | None = None,
        comment: str | None = None,
    ) -> GlobalSchemaInfo:
        """Add columns to a schema, in place or as a new version.

        A new version re-links every column row of the current head and
        appends the new definitions after them. In-place updates add to the
        head node, which is never a superseded one.

        Args:
            schema_id: Schema to change
            columns: Column specs to append (names must not already exist)
            create_new_version: Append a new version node instead of updating the head
            expected_revision: Revision the caller read; defaults to the current one
            created_by: Who made the change
            comment: Version comment

        Raises:
            ConflictError: If the schema changed since expected_revision
            SchemaChangeError: If a column name already exists
        """
        with self._get_session() as session:
            schema, head = self._load(session, schema_id)
            read_revision = schema.revision
            if expected_revision is not None and expected_revision != read_revision:
                raise ConflictError(schema_id, expected_revision, read_revision)

            existing = {c.name.lower() for c in head.columns}
            for spec in columns:
                if spec.name.lower() in existing:
                    raise SchemaChangeError(
                        f"Column '{spec.name}' already exists in schema '{schema.name}'."
                    )
                existing.add(spec.name.lower())

            values: dict[str, Any] = {"revision": read_revision + 1, "updated_at": utc_now()}
            if create_new_version:
                target = SchemaVersion(
                    schema_id=schema.id,
                    version=schema.current_version + 1,
                    previous_version_id=head.id,
                    comment=comment,
                    created_by=created_by,
                )
                for link in head.column_links:
                    target.column_links.append(
                        SchemaVersionColumn(column_id=link.column_id, position=link.position)
                    )
                head.superseded = True
                session.add(target)
                values["current_version"] = target.version
            else:
                if head.superseded:
                    raise SchemaChangeError(
                        f"Version {head.version} of schema '{schema.name}' is superseded."
                    )
                target = head

            position = len(target.column_links)
            for spec in columns:
                target.column_links.append(
                    SchemaVersionColumn(column=self._new_column(schema.id, spec), position=position)
                )
                position += 1

            self._commit_revision(session, schema_id, read_revision, target, values)
            self._log_change(
                session,
                "create_version" if create_new_version else "update_schema",
                schema_id,
                old_value={"version": head.version, "revision": read_revision},
                new_value={"version": target.version, "added": [c.name for c in columns]},
                created_by=created_by,
                reason=comment,
            )
            self._finish(session, schema_id, read_revision)

        self._invalidate(schema_id)
        return self.get_schema(schema_id, bypass_cache=True)

    def rollback(
        self,
        schema_id: str,
        version: int,
        expected_revision: int | None = None,
        created_by: str | None = None,
    ) -> GlobalSchemaInfo:
        """Make a new head version whose columns equal those of an older version.

        History stays append-only: the rolled-back-to version is re-linked,
        not revived.
        """
        with self._get_session() as session:
            schema, head = self._load(session, schema_id)
            read_revision = schema.revision
            if expected_revision is not None and expected_revision != read_revision:
                raise ConflictError(schema_id, expected_revision, read_revision)
            source = self._load_version(session, schema_id, version)

            target = SchemaVersion(
                schema_id=schema.id,
                version=schema.current_version + 1,
                previous_version_id=head.id,
                comment=f"Rollback to version {version}",
                created_by=created_by,
            )
            for link in source.column_links:
                target.column_links.append(
                    SchemaVersionColumn(column_id=link.column_id, position=link.position)
                )
            head.superseded = True
            session.add(target)

            self._commit_revision(
                session,
                schema_id,
                read_revision,
                target,
                {
                    "revision": read_revision + 1,
                    "current_version": target.version,
                    "updated_at": utc_now(),
                },
            )
            self._log_change(
                session,
                "rollback",
                schema_id,
                old_value={"version": head.version},
                new_value={"version": target.version, "restored": version},
                created_by=created_by,
            )
            self._finish(session, schema_id, read_revision)

        logger.info(f"Rolled back schema {schema_id} to the columns of version {version}")
        self._invalidate(schema_id)
        return self.get_schema(schema_id, bypass_cache=True)

    def _commit_revision(
        self,
        session: Session,
        schema_id: str,
        read_revision: int,
        head: SchemaVersion,
        values: dict[str, Any],
    ) -> None:
        """Flush pending rows, then compare-and-swap the revision."""
        try:
            session.flush()
        except IntegrityError as e:
            session.rollback()
            raise ConflictError(schema_id, read_revision, None) from e

        values["head_version_id"] = head.id
        result = session.execute(
            update(GlobalSchema)
            .where(GlobalSchema.id == schema_id, GlobalSchema.revision == read_revision)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            session.rollback()
            actual = session.scalar(
                select(GlobalSchema.revision).where(GlobalSchema.id == schema_id)
            )
            raise ConflictError(schema_id, read_revision, actual)

    def _finish(self, session: Session, schema_id: str, read_revision: int) -> None:
        try:
            session.commit()
        except IntegrityError as e:
            session.rollback()
            raise ConflictError(schema_id, read_revision, None) from e

    # === History ===

    def compare_versions(
        self, schema_id: str, from_version: int, to_version: int
    ) -> VersionComparison:
        """Compare the columns of two versions by name (case-insensitive)."""
        older = self.get_version(schema_id, from_version)
        newer = self.get_version(schema_id, to_version)

        def signature(c: SchemaColumnInfo) -> tuple[Any, ...]:
            rules = json.dumps(c.validation_rules, sort_keys=True)
            return (c.type, c.required, c.primary_key, rules)

        old_by_name = {c.name.lower(): c for c in older.columns}
        new_by_name = {c.name.lower(): c for c in newer.columns}

        comparison = VersionComparison(
            schema_id=schema_id, from_version=from_version, to_version=to_version
        )
        for key, column in new_by_name.items():
            if key not in old_by_name:
                comparison.added.append(column.name)
            elif signature(old_by_name[key]) != signature(column):
                comparison.modified.append(column.name)
            else:
                comparison.unchanged.append(column.name)
        comparison.removed = [c.name for k, c in old_by_name.items() if k not in new_by_name]
        return comparison

    def get_changelog(self, target: str | None = None, limit: int = 50) -> list[ChangelogEntry]:
        """Get recent changelog entries, newest first."""
        with self._get_session() as session:
            stmt = select(SchemaChangelog)
            if target is not None:
                stmt = stmt.where(SchemaChangelog.target == target)
            stmt = stmt.order_by(SchemaChangelog.timestamp.desc()).limit(limit)

            entries = []
            for row in session.scalars(stmt):
                details: dict[str, Any] = {}
                if row.old_value:
                    details["old"] = json.loads(row.old_value)
                if row.new_value:
                    details["new"] = json.loads(row.new_value)
                entries.append(
                    ChangelogEntry(
                        id=row.id,
                        timestamp=row.timestamp,
                        operation=row.operation,  # type: ignore[arg-type]
                        target=row.target,
                        details=details,
                        created_by=row.created_by,
                        reason=row.reason,
                    )
                )
            return entries

    def log_change(
        self,
        operation: str,
        target: str,
        new_value: Any = None,
        old_value: Any = None,
        created_by: str | None = None,
    ) -> None:
        """Record a change made outside the schema tables (files, merges)."""
        with self._get_session() as session:
            self._log_change(session, operation, target, old_value, new_value, created_by)
            session.commit()
