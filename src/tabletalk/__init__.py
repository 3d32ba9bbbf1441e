"""TableTalk - ask questions of uploaded tabular files in plain language.

Each uploaded file becomes its own table. Questions go through a pipeline
that builds a schema context, asks a completion model for SQL, repairs
truncated output, enforces a read-only policy and executes one page at a
time. Files can be reconciled against a versioned global schema, and
users can define merged columns that appear as views.

Example:
    from tabletalk import TableTalk

    db = TableTalk("sqlite:///tabletalk.db")

    db.register_file(
        "contacts.csv",
        owner_id="alice",
        columns=[
            {"name": "first_name", "type": "string"},
            {"name": "last_name", "type": "string"},
            {"name": "age", "type": "number"},
        ],
        rows=[{"first_name": "Ada", "last_name": "Lovelace", "age": 36}],
    )

    # Merge two columns into a derived "full_name" column
    db.create_merge("alice", "contacts.csv", "full_name", ["first_name", "last_name"])

    # Ask a question (uses OPENAI_API_KEY unless a provider is passed in)
    result = db.ask_sync("Who is older than 30?", user_id="alice")
    print(result.sql_query, result.rows)
"""

from tabletalk.core.engine import TableTalk
from tabletalk.core.types import (
    ChangelogEntry,
    ColumnMapping,
    ColumnMergeInfo,
    ColumnMergeSpec,
    ColumnType,
    EvolutionOptions,
    EvolutionResult,
    FileColumn,
    FileTableInfo,
    GlobalSchemaInfo,
    IdentifyResult,
    MatchType,
    PipelineSettings,
    QueryLogEntry,
    QueryRequest,
    QueryResult,
    SchemaColumnSpec,
    SchemaContext,
    SchemaVersionInfo,
    VersionComparison,
)
from tabletalk.exceptions import (
    ConflictError,
    ExecutionError,
    FileTableAlreadyExistsError,
    FileTableNotFoundError,
    GenerationError,
    InvalidMergeError,
    MergeAlreadyExistsError,
    MergeNotFoundError,
    RepairFailure,
    SchemaChangeError,
    SchemaMismatchError,
    SchemaNotFoundError,
    SchemaVersionNotFoundError,
    TableTalkError,
    ValidationError,
)
from tabletalk.query import (
    CompletionProvider,
    QueryValidator,
    SchemaContextBuilder,
    ValidationResult,
    fix_truncated_query,
    get_schema_context,
)

__version__ = "0.1.0"

__all__ = [
    # Main class
    "TableTalk",
    # Types
    "ColumnType",
    "MatchType",
    "FileColumn",
    "FileTableInfo",
    "SchemaColumnSpec",
    "GlobalSchemaInfo",
    "SchemaVersionInfo",
    "VersionComparison",
    "ColumnMapping",
    "IdentifyResult",
    "EvolutionOptions",
    "EvolutionResult",
    "ChangelogEntry",
    "ColumnMergeSpec",
    "ColumnMergeInfo",
    "SchemaContext",
    "QueryRequest",
    "QueryResult",
    "QueryLogEntry",
    "PipelineSettings",
    # Query pipeline
    "CompletionProvider",
    "SchemaContextBuilder",
    "QueryValidator",
    "ValidationResult",
    "fix_truncated_query",
    "get_schema_context",
    # Exceptions
    "TableTalkError",
    "GenerationError",
    "ValidationError",
    "RepairFailure",
    "ExecutionError",
    "SchemaNotFoundError",
    "SchemaVersionNotFoundError",
    "SchemaMismatchError",
    "SchemaChangeError",
    "ConflictError",
    "FileTableNotFoundError",
    "FileTableAlreadyExistsError",
    "MergeAlreadyExistsError",
    "MergeNotFoundError",
    "InvalidMergeError",
]
