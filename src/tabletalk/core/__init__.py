"""Core components for TableTalk."""

from tabletalk.core.connection import DatabaseConnection
from tabletalk.core.locks import KeyedLocks
from tabletalk.core.types import (
    ColumnType,
    FileColumn,
    PipelineSettings,
    QueryRequest,
    QueryResult,
    SchemaContext,
)

__all__ = [
    "DatabaseConnection",
    "KeyedLocks",
    "ColumnType",
    "FileColumn",
    "PipelineSettings",
    "QueryRequest",
    "QueryResult",
    "SchemaContext",
]
