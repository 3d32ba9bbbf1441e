"""Custom exceptions for TableTalk.

Every error carries an actionable message plus a JSON-serializable context,
so the CLI and MCP surfaces can report failures without losing detail.
Query-path errors always carry the SQL text they were raised for.
"""

from __future__ import annotations

from typing import Any


class TableTalkError(Exception):
    """Base exception for all TableTalk errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Return error as JSON-serializable dict."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
        }


class ConnectionError(TableTalkError):
    """Failed to connect to the database."""

    pass


# === Query pipeline errors ===


class GenerationError(TableTalkError):
    """The completion provider failed or timed out, including the retry."""

    def __init__(self, message: str, attempts: int = 0) -> None:
        super().__init__(message, {"attempts": attempts})
        self.attempts = attempts


class ValidationError(TableTalkError):
    """Query text was rejected by the read-only policy."""

    def __init__(self, message: str, sql_query: str, keyword: str | None = None) -> None:
        super().__init__(message, {"sql_query": sql_query, "keyword": keyword})
        self.sql_query = sql_query
        self.keyword = keyword


class RepairFailure(ValidationError):
    """Query text is still structurally invalid after truncation repair."""

    pass


class ExecutionError(TableTalkError):
    """The row store rejected the query or it timed out."""

    def __init__(self, message: str, sql_query: str) -> None:
        super().__init__(message, {"sql_query": sql_query})
        self.sql_query = sql_query


# === Schema errors ===


class SchemaNotFoundError(TableTalkError):
    """Global schema does not exist."""

    def __init__(self, schema_id: str) -> None:
        message = f"Schema '{schema_id}' not found. Use list_schemas() to see available schemas."
        super().__init__(message, {"schema_id": schema_id})
        self.schema_id = schema_id


class SchemaVersionNotFoundError(TableTalkError):
    """Requested version of a schema does not exist."""

    def __init__(self, schema_id: str, version: int, available: list[int] | None = None) -> None:
        available = available or []
        message = (
            f"Version {version} of schema '{schema_id}' not found. "
            f"Available versions: {', '.join(str(v) for v in available) or 'none'}"
        )
        super().__init__(
            message, {"schema_id": schema_id, "version": version, "available_versions": available}
        )
        self.schema_id = schema_id
        self.version = version


class SchemaMismatchError(TableTalkError):
    """Referenced columns are absent from the schema or file."""

    def __init__(
        self, message: str, missing: list[str], available: list[str] | None = None
    ) -> None:
        available = available or []
        if available:
            message = f"{message} Available columns: {', '.join(available)}"
        super().__init__(message, {"missing_columns": missing, "available_columns": available})
        self.missing = missing
        self.available = available


class ConflictError(TableTalkError):
    """A concurrent schema mutation won the race."""

    def __init__(self, schema_id: str, expected_revision: int, actual_revision: int | None) -> None:
        message = (
            f"Schema '{schema_id}' was modified concurrently "
            f"(expected revision {expected_revision}, found {actual_revision}). "
            "Re-fetch the schema and resubmit the change."
        )
        super().__init__(
            message,
            {
                "schema_id": schema_id,
                "expected_revision": expected_revision,
                "actual_revision": actual_revision,
            },
        )
        self.schema_id = schema_id
        self.expected_revision = expected_revision
        self.actual_revision = actual_revision


class SchemaChangeError(TableTalkError):
    """Schema change operation is not allowed."""

    pass


# === File and merge errors ===


class FileTableNotFoundError(TableTalkError):
    """No table has been registered for the file."""

    def __init__(self, file_id: str) -> None:
        message = f"File '{file_id}' not found. Register it with register_file() first."
        super().__init__(message, {"file_id": file_id})
        self.file_id = file_id


class FileTableAlreadyExistsError(TableTalkError):
    """A table is already registered for the file."""

    def __init__(self, file_id: str) -> None:
        message = f"File '{file_id}' is already registered. Use insert_rows() to add data."
        super().__init__(message, {"file_id": file_id})
        self.file_id = file_id


class MergeAlreadyExistsError(TableTalkError):
    """A merged column with this name already exists for the file."""

    def __init__(self, file_id: str, merge_name: str) -> None:
        message = (
            f"Merged column '{merge_name}' already exists for file '{file_id}'. "
            "Delete it first or choose a different name."
        )
        super().__init__(message, {"file_id": file_id, "merge_name": merge_name})
        self.file_id = file_id
        self.merge_name = merge_name


class MergeNotFoundError(TableTalkError):
    """No merged column has this id."""

    def __init__(self, merge_id: str) -> None:
        message = f"Merged column '{merge_id}' not found. Use list_merges() to see a file's merges."
        super().__init__(message, {"merge_id": merge_id})
        self.merge_id = merge_id


class InvalidMergeError(TableTalkError):
    """Merge definition is malformed."""

    pass
