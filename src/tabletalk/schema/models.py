"""SQLAlchemy ORM models for TableTalk meta-tables.

Global schemas are stored as a backward-linked chain of version nodes.
Column definitions live in their own table and are linked to versions
through ``tt_schema_version_columns``, so a new version re-links the
unchanged column rows of its predecessor instead of copying them.

File rows are not stored here: each uploaded file gets its own physical
table (see ``tabletalk.storage.rows``), described by a ``FileTable`` row.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# JSONB on PostgreSQL, JSON on SQLite
JSONType = JSONB().with_variant(JSON(), "sqlite")


def generate_uuid() -> str:
    """Generate a new UUID as string."""
    return str(uuid4())


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all TableTalk models."""

    pass


class GlobalSchema(Base):
    """Stable identity of a versioned global schema.

    ``revision`` is bumped on every mutation and used for optimistic
    compare-and-swap; ``current_version`` counts version nodes.
    """

    __tablename__ = "tt_global_schemas"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    project_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    current_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    revision: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    head_version_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    versions: Mapped[list[SchemaVersion]] = relationship(
        "SchemaVersion",
        back_populates="schema",
        cascade="all, delete-orphan",
        order_by="SchemaVersion.version",
    )

    __table_args__ = (UniqueConstraint("project_id", "name", name="uq_tt_schema_project_name"),)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "project_id": self.project_id,
            "description": self.description,
            "current_version": self.current_version,
            "revision": self.revision,
            "head_version_id": self.head_version_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "created_by": self.created_by,
        }


class SchemaColumnDefinition(Base):
    """A column definition, shared by every version that links it."""

    __tablename__ = "tt_schema_columns"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    schema_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tt_global_schemas.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    column_type: Mapped[str] = mapped_column(String(50), nullable=False)
    is_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_primary_key: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    validation_rules: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (Index("ix_tt_schema_columns_schema", "schema_id"),)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "type": self.column_type,
            "required": self.is_required,
            "primary_key": self.is_primary_key,
            "description": self.description,
            "validation_rules": self.validation_rules,
        }


class SchemaVersionColumn(Base):
    """Ordered link between a version node and a column definition."""

    __tablename__ = "tt_schema_version_columns"

    version_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tt_schema_versions.id", ondelete="CASCADE"), primary_key=True
    )
    column_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tt_schema_columns.id", ondelete="CASCADE"), primary_key=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    column: Mapped[SchemaColumnDefinition] = relationship("SchemaColumnDefinition")


class SchemaVersion(Base):
    """One immutable-once-superseded node of a schema's version chain."""

    __tablename__ = "tt_schema_versions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    schema_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tt_global_schemas.id", ondelete="CASCADE"), nullable=False
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    previous_version_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("tt_schema_versions.id"), nullable=True
    )
    superseded: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    schema: Mapped[GlobalSchema] = relationship("GlobalSchema", back_populates="versions")
    column_links: Mapped[list[SchemaVersionColumn]] = relationship(
        "SchemaVersionColumn",
        cascade="all, delete-orphan",
        order_by="SchemaVersionColumn.position",
    )

    __table_args__ = (UniqueConstraint("schema_id", "version", name="uq_tt_schema_version"),)

    @property
    def columns(self) -> list[SchemaColumnDefinition]:
        """Column definitions in schema order."""
        return [link.column for link in self.column_links]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "schema_id": self.schema_id,
            "version": self.version,
            "previous_version_id": self.previous_version_id,
            "superseded": self.superseded,
            "comment": self.comment,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "created_by": self.created_by,
            "columns": [c.to_dict() for c in self.columns],
        }


class FileTable(Base):
    """Registry of per-file physical tables."""

    __tablename__ = "tt_file_tables"

    file_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    table_name: Mapped[str] = mapped_column(String(63), unique=True, nullable=False)
    # Ordered list of {"name": ..., "type": ...}
    columns: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False)
    schema_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("tt_global_schemas.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "file_id": self.file_id,
            "owner_id": self.owner_id,
            "table_name": self.table_name,
            "columns": self.columns,
            "schema_id": self.schema_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class ColumnMerge(Base):
    """A merged-column view definition."""

    __tablename__ = "tt_column_merges"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)
    file_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("tt_file_tables.file_id", ondelete="CASCADE"), nullable=False
    )
    merge_name: Mapped[str] = mapped_column(String(255), nullable=False)
    column_list: Mapped[list[str]] = mapped_column(JSONType, nullable=False)
    delimiter: Mapped[str] = mapped_column(String(50), default=" ", nullable=False)
    view_name: Mapped[str] = mapped_column(String(63), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("file_id", "merge_name", name="uq_tt_column_merge_name"),
        Index("ix_tt_column_merges_file", "file_id"),
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "file_id": self.file_id,
            "merge_name": self.merge_name,
            "column_list": self.column_list,
            "delimiter": self.delimiter,
            "view_name": self.view_name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class SchemaChangelog(Base):
    """Audit trail for schema, file and merge changes."""

    __tablename__ = "tt_changelog"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False, index=True
    )
    operation: Mapped[str] = mapped_column(String(50), nullable=False)
    target: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    old_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    new_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)


class QueryLog(Base):
    """One natural-language query run, successful or not."""

    __tablename__ = "tt_query_log"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    file_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    sql_query: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    execution_time_ms: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    row_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (Index("ix_tt_query_log_user_time", "user_id", "created_at"),)
