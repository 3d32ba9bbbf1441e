"""Schema evolution: match file columns to a global schema and grow it.

``identify`` classifies every file column as an exact, fuzzy or new
match. The caller picks which new columns to accept and hands them to
``evolve``, which appends them to the schema either in place or as a new
version. Re-applying the same accepted set leaves the schema unchanged
and only adds columns that bound files are still missing.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from tabletalk.core.locks import KeyedLocks
from tabletalk.core.types import (
    ColumnMapping,
    ColumnType,
    EvolutionOptions,
    EvolutionResult,
    FileColumn,
    GlobalSchemaInfo,
    IdentifyResult,
    MatchType,
    SchemaColumnSpec,
)

if TYPE_CHECKING:
    from tabletalk.schema.engine import SchemaStore
    from tabletalk.storage.rows import RowStore

logger = logging.getLogger(__name__)

DEFAULT_FUZZY_THRESHOLD = 0.7


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance between two strings (insert, delete, substitute)."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (char_a != char_b),
                )
            )
        previous = current
    return previous[-1]


def name_similarity(a: str, b: str) -> float:
    """Similarity of two column names in [0, 1], case-insensitive.

    ``1 - distance / max(len)``; two empty names are identical.
    """
    a, b = a.lower(), b.lower()
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / longest


class SchemaEvolutionMatcher:
    """Classifies file columns against a schema and applies accepted ones."""

    def __init__(
        self,
        schema_store: SchemaStore,
        rows: RowStore | None = None,
        threshold: float = DEFAULT_FUZZY_THRESHOLD,
        locks: KeyedLocks | None = None,
    ) -> None:
        """Initialize the matcher.

        Args:
            schema_store: Versioned schema store
            rows: Row store, needed for data migration
            threshold: Similarity a fuzzy match must exceed
            locks: Per-schema lock registry
        """
        self._schemas = schema_store
        self._rows = rows
        self._threshold = threshold
        self._locks = locks or KeyedLocks()

    @property
    def threshold(self) -> float:
        return self._threshold

    def match_column(self, file_column: str, schema_columns: Sequence[str]) -> ColumnMapping:
        """Classify one file column name against schema column names."""
        lowered = file_column.lower()
        for name in schema_columns:
            if name.lower() == lowered:
                return ColumnMapping(
                    file_column=file_column,
                    schema_column=name,
                    match_type=MatchType.EXACT,
                    confidence=1.0,
                )

        best_name: str | None = None
        best_score = 0.0
        for name in schema_columns:
            score = name_similarity(file_column, name)
            if score > best_score:
                best_name, best_score = name, score

        if best_name is not None and best_score > self._threshold:
            return ColumnMapping(
                file_column=file_column,
                schema_column=best_name,
                match_type=MatchType.FUZZY,
                confidence=round(best_score, 4),
            )
        return ColumnMapping(
            file_column=file_column,
            schema_column=None,
            match_type=MatchType.NONE,
            confidence=round(best_score, 4),
        )

    def identify(
        self, file_columns: Sequence[FileColumn | dict[str, Any]], schema_id: str
    ) -> IdentifyResult:
        """Classify file columns against a schema's current version.

        Returns:
            IdentifyResult with one mapping per file column, and the columns
            with no match listed again as ``new_columns`` for the caller to
            accept or ignore
        """
        columns = [c if isinstance(c, FileColumn) else FileColumn(**c) for c in file_columns]
        schema = self._schemas.get_schema(schema_id)
        schema_columns = schema.column_names()

        mappings = [self.match_column(c.name, schema_columns) for c in columns]
        new_columns = [
            column
            for column, mapping in zip(columns, mappings, strict=True)
            if mapping.match_type == MatchType.NONE
        ]
        logger.debug(
            f"Identified {len(columns)} columns against schema {schema_id}: "
            f"{len(new_columns)} new"
        )
        return IdentifyResult(schema_id=schema_id, mappings=mappings, new_columns=new_columns)

    def _schema_types(
        self, schema: GlobalSchemaInfo, names: Sequence[str]
    ) -> list[tuple[str, ColumnType]]:
        by_name = {c.name.lower(): c for c in schema.columns}
        return [
            (by_name[n.lower()].name, ColumnType(by_name[n.lower()].type))
            for n in names
            if n.lower() in by_name
        ]

    def _migrate_existing(
        self,
        schema: GlobalSchemaInfo,
        names: Sequence[str],
        options: EvolutionOptions,
        created_by: str | None,
    ) -> tuple[list[str], int]:
        """Add schema columns that bound files are still missing."""
        if not options.migrate_data:
            return [], 0
        additions = self._schema_types(schema, names)
        return self._migrate_files(
            schema.id, additions, options.update_existing_records, created_by
        )

    def _migrate_files(
        self,
        schema_id: str,
        additions: Sequence[tuple[str, ColumnType]],
        fill_default: bool,
        created_by: str | None,
    ) -> tuple[list[str], int]:
        """Add columns to every file bound to a schema that lacks them.

        Files that already have all the columns are left alone, so applying
        the same columns again completes a migration that failed part way.
        """
        migrated_files: list[str] = []
        updated_rows = 0
        if self._rows is None:
            return migrated_files, updated_rows
        for file in self._rows.files_for_schema(schema_id):
            present = {c.name.lower() for c in file.columns}
            missing = [(n, t) for n, t in additions if n.lower() not in present]
            if not missing:
                continue
            updated_rows += self._rows.add_columns(file.file_id, missing, fill_default=fill_default)
            migrated_files.append(file.file_id)
            self._schemas.log_change(
                "migrate_file",
                file.file_id,
                new_value={"schema_id": schema_id, "added": [n for n, _ in missing]},
                created_by=created_by,
            )
        return migrated_files, updated_rows

    def evolve(
        self,
        schema_id: str,
        new_columns: Sequence[FileColumn | dict[str, Any]],
        options: EvolutionOptions | None = None,
        created_by: str | None = None,
        expected_revision: int | None = None,
    ) -> EvolutionResult:
        """Apply accepted new columns to a schema.

        Args:
            schema_id: Schema to evolve
            new_columns: Columns the caller accepted
            options: How to apply them (defaults: new version, no data migration)
            created_by: Who made the change
            expected_revision: Revision the caller based the change on

        Returns:
            EvolutionResult describing what changed

        Raises:
            ConflictError: If the schema changed since expected_revision, or a
                concurrent writer won the compare-and-swap
        """
        options = options or EvolutionOptions()
        columns = [c if isinstance(c, FileColumn) else FileColumn(**c) for c in new_columns]

        with self._locks.hold(f"schema:{schema_id}"):
            schema = self._schemas.get_schema(schema_id, bypass_cache=True)

            if not options.add_new_columns or not columns:
                return EvolutionResult(
                    success=True,
                    message="No columns to add.",
                    schema_id=schema_id,
                    version=schema.current_version,
                    version_id=schema.head_version_id,
                )

            existing = {name.lower() for name in schema.column_names()}
            specs: list[SchemaColumnSpec] = []
            skipped: list[str] = []
            for column in columns:
                key = column.name.lower()
                if key in existing:
                    skipped.append(column.name)
                    continue
                existing.add(key)
                specs.append(
                    SchemaColumnSpec(
                        name=column.name,
                        type=ColumnType.from_file_type(column.type),
                        description=f"Added from file column: {column.name}",
                    )
                )

            if not specs:
                migrated_files, updated_rows = self._migrate_existing(
                    schema, skipped, options, created_by
                )
                message = "All columns already exist in the schema; nothing changed."
                if migrated_files:
                    message = (
                        "All columns already exist in the schema; "
                        f"migrated {len(migrated_files)} files."
                    )
                return EvolutionResult(
                    success=True,
                    message=message,
                    schema_id=schema_id,
                    version=schema.current_version,
                    version_id=schema.head_version_id,
                    skipped_columns=skipped,
                    migrated_files=migrated_files,
                    updated_rows=updated_rows,
                )

            updated = self._schemas.append_columns(
                schema_id,
                specs,
                create_new_version=options.create_new_version,
                expected_revision=(
                    expected_revision if expected_revision is not None else schema.revision
                ),
                created_by=created_by,
                comment=f"Added columns: {', '.join(s.name for s in specs)}",
            )

            migrated_files: list[str] = []
            updated_rows = 0
            if options.migrate_data:
                additions = [(s.name, ColumnType(s.type)) for s in specs]
                additions += self._schema_types(updated, skipped)
                migrated_files, updated_rows = self._migrate_files(
                    schema_id, additions, options.update_existing_records, created_by
                )

        added = [s.name for s in specs]
        if options.create_new_version:
            message = f"Created version {updated.current_version} with {len(added)} new columns."
        else:
            message = f"Added {len(added)} columns to version {updated.current_version}."
        if migrated_files:
            message += f" Migrated {len(migrated_files)} files."

        logger.info(f"Evolved schema {schema_id}: {message}")
        return EvolutionResult(
            success=True,
            message=message,
            schema_id=schema_id,
            version=updated.current_version,
            version_id=updated.head_version_id,
            added_columns=added,
            skipped_columns=skipped,
            migrated_files=migrated_files,
            updated_rows=updated_rows,
        )

    def rollback(
        self,
        schema_id: str,
        version: int,
        created_by: str | None = None,
        expected_revision: int | None = None,
    ) -> EvolutionResult:
        """Append a new version whose columns equal those of an older one."""
        with self._locks.hold(f"schema:{schema_id}"):
            restored = self._schemas.rollback(
                schema_id, version, expected_revision=expected_revision, created_by=created_by
            )
        return EvolutionResult(
            success=True,
            message=f"Created version {restored.current_version} from version {version}.",
            schema_id=schema_id,
            version=restored.current_version,
            version_id=restored.head_version_id,
        )
