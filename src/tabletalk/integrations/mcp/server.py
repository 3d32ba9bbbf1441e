"""MCP server for TableTalk.

Exposes TableTalk operations as MCP tools for AI agents.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Any

from mcp.server.fastmcp import FastMCP  # type: ignore[import-not-found]

from tabletalk import PipelineSettings, TableTalk
from tabletalk.query.generator import CompletionProvider

# Configure logging to stderr (important for stdio transport)
logging.basicConfig(level=logging.INFO, stream=sys.stderr)
logger = logging.getLogger(__name__)

# Create MCP server
mcp = FastMCP("tabletalk")

# Global database instance (set during server startup)
_db: TableTalk | None = None


def get_db() -> TableTalk:
    """Get the TableTalk instance."""
    if _db is None:
        raise RuntimeError("Database not initialized. Call create_server() first.")
    return _db


def _dump(data: Any) -> str:
    if hasattr(data, "model_dump"):
        data = data.model_dump(mode="json")
    elif isinstance(data, list):
        data = [d.model_dump(mode="json") if hasattr(d, "model_dump") else d for d in data]
    return json.dumps(data, default=str)


# === File Tools ===


@mcp.tool()
def tabletalk_list_files(owner_id: str | None = None) -> str:
    """List registered files with their table names, columns and row counts.

    Use this first to see what data a user can ask about.

    Args:
        owner_id: Only list files of this user

    Returns:
        JSON array of files.
    """
    try:
        return _dump(get_db().list_files(owner_id))
    except Exception as e:
        return json.dumps({"error": str(e)})


@mcp.tool()
def tabletalk_register_file(
    file_id: str,
    owner_id: str,
    columns: list[dict[str, Any]],
    rows: list[dict[str, Any]] | None = None,
    schema_id: str | None = None,
) -> str:
    """Create the table for an uploaded file and optionally load its rows.

    Args:
        file_id: Identifier of the uploaded file (e.g., "sales_2024.csv")
        owner_id: User who owns the file
        columns: Column descriptors, each with:
            - name: Column name as it appears in the file
            - type: Inferred type (string, number, boolean, date)
        rows: Rows to load, as column name -> value objects
        schema_id: Global schema the file is bound to (optional)

    Returns:
        JSON with the file's table name and columns.
    """
    try:
        info = get_db().register_file(file_id, owner_id, columns, rows=rows, schema_id=schema_id)
        return _dump(info)
    except Exception as e:
        return json.dumps({"error": str(e)})


@mcp.tool()
def tabletalk_insert_rows(file_id: str, rows: list[dict[str, Any]]) -> str:
    """Append rows to a registered file.

    Returns:
        JSON with the number of rows inserted.
    """
    try:
        return json.dumps({"success": True, "count": get_db().insert_rows(file_id, rows)})
    except Exception as e:
        return json.dumps({"success": False, "error": str(e)})


# === Query Tools ===


@mcp.tool()
async def tabletalk_ask(
    question: str,
    user_id: str,
    file_id: str | None = None,
    page: int = 1,
    page_size: int = 10,
) -> str:
    """Answer a natural-language question about a user's files.

    The question is turned into a read-only SQL query, which is validated
    and executed one page at a time.

    Args:
        question: Question in plain language
        user_id: Requesting user; only their files are queried
        file_id: Restrict the question to one file (optional)
        page: 1-based page number
        page_size: Rows per page

    Returns:
        JSON with sql_query, rows, execution_time_ms, total_rows, total_pages,
        current_page and, on failure, error and error_type.
    """
    try:
        result = await get_db().ask(question, user_id, file_id, page=page, page_size=page_size)
        return _dump(result)
    except Exception as e:
        return json.dumps({"error": str(e)})


@mcp.tool()
async def tabletalk_execute_sql(
    sql: str,
    user_id: str,
    file_id: str | None = None,
    page: int = 1,
    page_size: int = 10,
) -> str:
    """Execute a read-only SQL query over a user's files.

    Use tabletalk_get_schema_context first for exact table and column names.
    Only SELECT queries over the user's own tables are accepted.

    Returns:
        JSON with rows and pagination, or an error.
    """
    try:
        result = await get_db().execute_sql_async(sql, user_id, file_id, page, page_size)
        return _dump(result)
    except Exception as e:
        return json.dumps({"error": str(e)})


@mcp.tool()
def tabletalk_get_schema_context(user_id: str, file_id: str | None = None) -> str:
    """Get the tables, columns, samples and guidelines for a user's files.

    Returns:
        JSON with the structured context and its prompt rendering.
    """
    try:
        context = get_db().get_schema_context(user_id, file_id)
        return json.dumps(
            {"context": context.model_dump(mode="json"), "prompt": context.to_prompt()},
            default=str,
        )
    except Exception as e:
        return json.dumps({"error": str(e)})


@mcp.tool()
def tabletalk_query_history(user_id: str, limit: int = 20) -> str:
    """Get a user's recent questions, newest first."""
    try:
        return _dump(get_db().query_history(user_id, limit))
    except Exception as e:
        return json.dumps({"error": str(e)})


# === Schema Tools ===


@mcp.tool()
def tabletalk_create_schema(
    name: str,
    columns: list[dict[str, Any]] | None = None,
    project_id: str | None = None,
    description: str | None = None,
) -> str:
    """Create a global schema at version 1.

    Args:
        name: Schema name (unique within a project)
        columns: Column specs, each with name, type (text, numeric, boolean,
            timestamp), and optional required, description
        project_id: Owning project
        description: Human-readable description

    Returns:
        JSON with the created schema.
    """
    try:
        schema = get_db().create_schema(
            name, columns, project_id=project_id, description=description, created_by="mcp"
        )
        return _dump(schema)
    except Exception as e:
        return json.dumps({"error": str(e)})


@mcp.tool()
def tabletalk_get_schema(schema_id: str, version: int | None = None) -> str:
    """Get a schema's head version, or one specific version."""
    try:
        return _dump(get_db().get_schema(schema_id, version))
    except Exception as e:
        return json.dumps({"error": str(e)})


@mcp.tool()
def tabletalk_identify_columns(schema_id: str, file_columns: list[dict[str, Any]]) -> str:
    """Classify a file's columns against a schema.

    Each column is an exact match, a fuzzy match (with confidence) or new.

    Returns:
        JSON with mappings and new_columns.
    """
    try:
        return _dump(get_db().identify_columns(file_columns, schema_id))
    except Exception as e:
        return json.dumps({"error": str(e)})


@mcp.tool()
def tabletalk_evolve_schema(
    schema_id: str,
    new_columns: list[dict[str, Any]],
    create_new_version: bool = True,
    migrate_data: bool = False,
    update_existing_records: bool = False,
    expected_revision: int | None = None,
) -> str:
    """Append accepted new columns to a schema.

    Columns that already exist are skipped, so repeating a call is safe.

    Args:
        schema_id: Schema to evolve
        new_columns: Columns to add, each with name and type
        create_new_version: Append a new version (false = update the head in place)
        migrate_data: Also add the columns to files bound to the schema
        update_existing_records: Back-fill existing rows with type defaults
        expected_revision: Fail with a conflict if the schema moved past this revision

    Returns:
        JSON with success, message, version and added_columns.
    """
    try:
        result = get_db().evolve_schema(
            schema_id,
            new_columns,
            {
                "create_new_version": create_new_version,
                "migrate_data": migrate_data,
                "update_existing_records": update_existing_records,
            },
            created_by="mcp",
            expected_revision=expected_revision,
        )
        return _dump(result)
    except Exception as e:
        return json.dumps({"success": False, "error": str(e)})


@mcp.tool()
def tabletalk_get_changelog(target: str | None = None, limit: int = 50) -> str:
    """Get schema, file and merge changes, newest first."""
    try:
        return _dump(get_db().get_changelog(target, limit))
    except Exception as e:
        return json.dumps({"error": str(e)})


# === Merge Tools ===


@mcp.tool()
def tabletalk_create_merge(
    owner_id: str,
    file_id: str,
    merge_name: str,
    column_list: list[str],
    delimiter: str = " ",
) -> str:
    """Create a merged column that joins the non-empty values of source columns.

    Args:
        owner_id: User creating the merge
        file_id: File whose columns are merged
        merge_name: Name of the derived column
        column_list: Two or more of the file's columns, in order
        delimiter: Text placed between non-empty values

    Returns:
        JSON with the new merge id.
    """
    try:
        merge_id = get_db().create_merge(owner_id, file_id, merge_name, column_list, delimiter)
        return json.dumps({"id": merge_id})
    except Exception as e:
        return json.dumps({"error": str(e)})


@mcp.tool()
def tabletalk_update_merge(
    merge_id: str,
    column_list: list[str] | None = None,
    delimiter: str | None = None,
) -> str:
    """Change a merged column's source columns or delimiter and rebuild its view.

    Args:
        merge_id: Merge to update
        column_list: New source columns, in order (omit to keep the current ones)
        delimiter: New delimiter (omit to keep the current one)

    Returns:
        JSON with the updated merge.
    """
    try:
        return _dump(get_db().update_merge(merge_id, column_list, delimiter))
    except Exception as e:
        return json.dumps({"error": str(e)})


@mcp.tool()
def tabletalk_list_merges(file_id: str) -> str:
    """List the merged columns of a file."""
    try:
        merges = get_db().list_merges(file_id)
        return json.dumps({"column_merges": [m.model_dump(mode="json") for m in merges]})
    except Exception as e:
        return json.dumps({"error": str(e)})


@mcp.tool()
def tabletalk_delete_merge(merge_id: str) -> str:
    """Delete a merged column. Unknown IDs succeed without changes."""
    try:
        return json.dumps({"success": get_db().delete_merge(merge_id)})
    except Exception as e:
        return json.dumps({"success": False, "error": str(e)})


@mcp.tool()
def tabletalk_preview_merge(
    file_id: str,
    column_list: list[str],
    delimiter: str = " ",
    limit: int = 5,
) -> str:
    """Show merged values for the first rows without saving anything."""
    try:
        rows = get_db().preview_merge(file_id, column_list, delimiter, limit)
        return json.dumps({"preview_data": rows}, default=str)
    except Exception as e:
        return json.dumps({"error": str(e)})


def create_server(
    database_url: str,
    echo: bool = False,
    model: str | None = None,
    completion_provider: CompletionProvider | None = None,
) -> FastMCP:
    """Create and configure the MCP server with a database connection.

    Args:
        database_url: Database URL (e.g., "sqlite:///tabletalk.db")
        echo: Whether to echo SQL statements
        model: Completion model for tabletalk_ask
        completion_provider: Completion backend (default: OpenAI from OPENAI_API_KEY)

    Returns:
        Configured FastMCP server instance
    """
    global _db
    settings = PipelineSettings(model=model) if model else None
    _db = TableTalk(
        database_url, echo=echo, settings=settings, completion_provider=completion_provider
    )
    logger.info(f"TableTalk initialized with {database_url}")
    return mcp


def main() -> None:
    """Entry point for running the MCP server."""
    parser = argparse.ArgumentParser(description="TableTalk MCP Server")
    parser.add_argument(
        "--database",
        "-d",
        default=os.getenv("TABLETALK_URL", "sqlite:///./tabletalk.db"),
        help="Database URL (default: $TABLETALK_URL or sqlite:///./tabletalk.db)",
    )
    parser.add_argument(
        "--model",
        "-m",
        default=os.getenv("TABLETALK_MODEL"),
        help="Completion model (default: $TABLETALK_MODEL or gpt-4o-mini)",
    )
    parser.add_argument(
        "--echo",
        action="store_true",
        help="Echo SQL statements",
    )
    args = parser.parse_args()

    create_server(args.database, echo=args.echo, model=args.model)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
