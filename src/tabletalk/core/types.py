"""Core types and specifications for TableTalk.

All types are pydantic models so they serialize cleanly for the CLI's
``--json`` mode and the MCP tools.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field


class ColumnType(StrEnum):
    """Column types of the global schema and of file tables."""

    TEXT = "text"
    NUMERIC = "numeric"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"

    @classmethod
    def values(cls) -> list[str]:
        """Return all valid column type values."""
        return [t.value for t in cls]

    @classmethod
    def from_file_type(cls, raw: str | None) -> ColumnType:
        """Map an inferred file column type onto a schema column type.

        Unknown or missing types fall back to text.
        """
        normalized = (raw or "").strip().lower()
        if normalized in ("number", "numeric", "integer", "int", "float", "double", "decimal"):
            return cls.NUMERIC
        if normalized in ("boolean", "bool"):
            return cls.BOOLEAN
        if normalized in ("date", "datetime", "timestamp"):
            return cls.TIMESTAMP
        return cls.TEXT


class MatchType(StrEnum):
    """How a file column corresponds to a schema column."""

    EXACT = "exact"
    FUZZY = "fuzzy"
    NONE = "none"


# === Files ===


class FileColumn(BaseModel):
    """A typed column descriptor of an uploaded file.

    Type inference happens upstream; ``type`` is the inferred type name
    (e.g. "number", "string", "date").
    """

    name: str = Field(..., min_length=1, description="Column name as it appears in the file")
    type: str = Field(default="text", description="Inferred type of the column")
    sample_values: list[Any] = Field(default_factory=list, description="A few example values")


class FileTableInfo(BaseModel):
    """Information about a registered file table (output format)."""

    file_id: str
    owner_id: str
    table_name: str
    columns: list[FileColumn]
    schema_id: str | None = None
    row_count: int | None = None
    created_at: datetime | None = None


# === Global schema ===


class SchemaColumnSpec(BaseModel):
    """Specification for a global schema column (input format)."""

    name: str = Field(..., min_length=1, description="Column name")
    type: ColumnType = Field(default=ColumnType.TEXT, description="Column data type")
    required: bool = Field(default=False, description="Whether values are required")
    primary_key: bool = Field(default=False, description="Whether column is part of the key")
    description: str | None = Field(default=None, description="Human-readable description")
    validation_rules: dict[str, Any] | None = Field(
        default=None, description="Optional validation rules (e.g. pattern, min, max)"
    )

    model_config = {"use_enum_values": True}


class SchemaColumnInfo(BaseModel):
    """A column of a schema version (output format)."""

    id: str
    name: str
    type: str
    required: bool = False
    primary_key: bool = False
    description: str | None = None
    validation_rules: dict[str, Any] | None = None


class SchemaVersionInfo(BaseModel):
    """One node of a schema's version chain."""

    id: str
    schema_id: str
    version: int
    previous_version_id: str | None = None
    columns: list[SchemaColumnInfo]
    superseded: bool = False
    comment: str | None = None
    created_by: str | None = None
    created_at: datetime | None = None


class GlobalSchemaInfo(BaseModel):
    """A global schema with its current head version's columns."""

    id: str
    name: str
    project_id: str | None = None
    description: str | None = None
    current_version: int
    revision: int
    head_version_id: str
    previous_version_id: str | None = None
    columns: list[SchemaColumnInfo]
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def column_names(self) -> list[str]:
        """Return column names in schema order."""
        return [c.name for c in self.columns]


class ColumnMapping(BaseModel):
    """Correspondence between a file column and a schema column."""

    file_column: str
    schema_column: str | None = None
    match_type: MatchType
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    model_config = {"use_enum_values": True}


class IdentifyResult(BaseModel):
    """Result of classifying file columns against a schema."""

    schema_id: str
    mappings: list[ColumnMapping]
    new_columns: list[FileColumn]


class EvolutionOptions(BaseModel):
    """Options controlling how accepted new columns are applied."""

    add_new_columns: bool = True
    migrate_data: bool = False
    update_existing_records: bool = False
    create_new_version: bool = True


class EvolutionResult(BaseModel):
    """Outcome of a schema evolution."""

    success: bool
    message: str
    schema_id: str
    version: int
    version_id: str
    added_columns: list[str] = Field(default_factory=list)
    skipped_columns: list[str] = Field(default_factory=list)
    migrated_files: list[str] = Field(default_factory=list)
    updated_rows: int = 0


class VersionComparison(BaseModel):
    """Column-level differences between two versions of a schema."""

    schema_id: str
    from_version: int
    to_version: int
    added: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)
    modified: list[str] = Field(default_factory=list)
    unchanged: list[str] = Field(default_factory=list)


class ChangelogEntry(BaseModel):
    """A schema or merge change log entry."""

    id: str
    timestamp: datetime
    operation: Literal[
        "create_schema",
        "update_schema",
        "create_version",
        "rollback",
        "create_merge",
        "delete_merge",
        "register_file",
        "migrate_file",
    ]
    target: str
    details: dict[str, Any] = Field(default_factory=dict)
    created_by: str | None = None
    reason: str | None = None


# === Column merges ===


class ColumnMergeSpec(BaseModel):
    """Specification for a merged column (input format)."""

    owner_id: str = Field(..., min_length=1)
    file_id: str = Field(..., min_length=1)
    merge_name: str = Field(..., min_length=1, description="Name of the derived column")
    column_list: list[str] = Field(..., min_length=2, description="Source columns, in order")
    delimiter: str = Field(default=" ", description="Inserted between non-empty values")


class ColumnMergeInfo(BaseModel):
    """A persisted merged column (output format)."""

    id: str
    owner_id: str
    file_id: str
    merge_name: str
    column_list: list[str]
    delimiter: str
    view_name: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


# === Schema context ===


class ColumnContext(BaseModel):
    """A column as presented to the generation step."""

    name: str
    type: str


class TableContext(BaseModel):
    """A table or view as presented to the generation step."""

    table_name: str
    label: str
    kind: Literal["file", "merge"] = "file"
    columns: list[ColumnContext]
    row_count: int = 0
    sample_rows: list[dict[str, Any]] = Field(default_factory=list)


class SchemaContext(BaseModel):
    """Grounding context for query generation."""

    dialect: str
    tables: list[TableContext]
    guidelines: list[str] = Field(default_factory=list)

    def table_names(self) -> set[str]:
        """Return the set of table and view names in scope."""
        return {t.table_name.lower() for t in self.tables}

    def to_prompt(self) -> str:
        """Render the context as prompt text."""
        if not self.tables:
            return "No tables are available."

        lines: list[str] = [f"Database dialect: {self.dialect}", ""]
        for table in self.tables:
            lines.append(f"Table: {table.table_name}")
            source = "merged view of" if table.kind == "merge" else "uploaded file"
            lines.append(f"Source: {source} {table.label}")
            lines.append(f"Rows: {table.row_count}")
            lines.append("Columns:")
            for column in table.columns:
                lines.append(f"- {column.name} ({column.type})")
            if table.sample_rows:
                lines.append("Sample data:")
                for row in table.sample_rows:
                    lines.append(f"  {row}")
            else:
                lines.append("Sample data not available")
            lines.append("")

        if self.guidelines:
            lines.append("Guidelines:")
            lines.extend(f"- {g}" for g in self.guidelines)
        return "\n".join(lines).rstrip() + "\n"


# === Queries ===


class QueryRequest(BaseModel):
    """A natural-language question to answer. Immutable once issued."""

    question: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    file_id: str | None = Field(default=None, description="Restrict the query to one file")
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=10, ge=1)
    history: list[str] = Field(default_factory=list, description="Prior turns, oldest first")

    model_config = {"frozen": True}


class ExecutionOutcome(BaseModel):
    """Rows and pagination facts from one execution."""

    rows: list[dict[str, Any]]
    total_rows: int
    total_pages: int
    current_page: int
    page_size: int
    execution_time_ms: float
    truncated: bool = False


class QueryResult(BaseModel):
    """Answer to a QueryRequest.

    ``sql_query`` is always set, on failure too; it is empty only when
    generation itself produced nothing.
    """

    sql_query: str
    rows: list[dict[str, Any]] = Field(default_factory=list)
    execution_time_ms: float = 0.0
    total_rows: int = 0
    total_pages: int = 0
    current_page: int = 1
    page_size: int = 10
    error: str | None = None
    error_type: str | None = None
    warnings: list[str] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        """Whether the query ran without error."""
        return self.error is None


class QueryLogEntry(BaseModel):
    """A recorded query run."""

    id: str
    user_id: str
    question: str
    sql_query: str
    file_id: str | None = None
    status: Literal["success", "error"]
    error: str | None = None
    error_type: str | None = None
    execution_time_ms: float = 0.0
    row_count: int = 0
    created_at: datetime | None = None


# === Configuration ===


class CacheStats(BaseModel):
    """Observable cache counters. Not authoritative for correctness."""

    hits: int = 0
    misses: int = 0
    size: int = 0
    ttl: float = 0.0


class PipelineSettings(BaseModel):
    """Tunables for generation, execution, matching and caching."""

    # Generation
    model: str = "gpt-4o-mini"
    temperature: float = 0.0
    max_tokens: int = 1000
    generation_timeout: float = 30.0  # seconds per attempt
    retry_backoff: float = 1.0  # seconds before the single retry

    # Execution
    statement_timeout: float = 30.0  # seconds
    max_rows: int = 10_000
    default_page_size: int = 10
    max_page_size: int = 1000

    # Context
    sample_rows: int = 3
    cache_ttl: float = 300.0

    # Schema evolution
    fuzzy_threshold: float = Field(default=0.7, ge=0.0, le=1.0)

    # Column merges
    preview_limit: int = 5

    record_history: bool = True
