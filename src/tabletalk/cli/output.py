"""Output formatting for CLI commands."""

import json
from typing import Any

from pydantic import BaseModel
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from tabletalk.core.types import GlobalSchemaInfo, QueryResult, SchemaVersionInfo
from tabletalk.exceptions import TableTalkError

console = Console()


def _plain(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    if isinstance(data, list):
        return [_plain(item) for item in data]
    return data


class OutputFormatter:
    """Formats output for terminal or JSON mode."""

    def __init__(self, json_mode: bool = False) -> None:
        """Initialize formatter.

        Args:
            json_mode: If True, output JSON instead of Rich formatting
        """
        self.json_mode = json_mode

    def print_table(
        self,
        title: str,
        data: list[dict[str, Any]],
        columns: list[str],
    ) -> None:
        """Print data as Rich table or JSON array.

        Args:
            title: Table title
            data: List of row dictionaries
            columns: Column names to display
        """
        if self.json_mode:
            print(json.dumps(data, default=str, indent=2))
        else:
            table = Table(title=title, show_header=True, header_style="bold magenta")
            for col in columns:
                table.add_column(col)
            for row in data:
                table.add_row(*[str(row.get(col, "")) for col in columns])
            console.print(table)

    def print_rows(self, title: str, rows: list[dict[str, Any]]) -> None:
        """Print result rows, taking the columns from the first row."""
        columns = list(rows[0]) if rows else []
        self.print_table(title, rows, columns)

    def print_query_result(self, result: QueryResult) -> None:
        """Print a query answer: SQL, one page of rows and pagination."""
        if self.json_mode:
            print(json.dumps(result.model_dump(mode="json"), default=str, indent=2))
            return

        if result.sql_query:
            console.print(Syntax(result.sql_query, "sql", word_wrap=True))
        if result.error:
            console.print(
                Panel(
                    result.error,
                    title=f"[red]{result.error_type or 'Error'}[/red]",
                    border_style="red",
                )
            )
            return

        if result.rows:
            self.print_rows(
                f"Page {result.current_page} of {result.total_pages} "
                f"({result.total_rows} rows)",
                result.rows,
            )
        else:
            console.print("Query returned no rows", style="dim")
        console.print(f"Execution time: {result.execution_time_ms:.2f}ms", style="dim")
        for warning in result.warnings:
            console.print(f"! {warning}", style="yellow")

    def print_schema(self, schema: GlobalSchemaInfo | SchemaVersionInfo) -> None:
        """Print a schema head or a single version with its columns."""
        if self.json_mode:
            print(json.dumps(schema.model_dump(mode="json"), indent=2))
            return

        if isinstance(schema, GlobalSchemaInfo):
            console.print(f"\n[bold]Schema:[/bold] {schema.name} ({schema.id})")
            console.print(f"Version: {schema.current_version} (revision {schema.revision})")
            if schema.description:
                console.print(f"Description: {schema.description}")
        else:
            console.print(f"\n[bold]Schema:[/bold] {schema.schema_id}")
            console.print(f"Version: {schema.version}")
            if schema.comment:
                console.print(f"Comment: {schema.comment}")

        columns_table = Table(show_header=True, header_style="bold cyan")
        columns_table.add_column("Name")
        columns_table.add_column("Type")
        columns_table.add_column("Required")
        columns_table.add_column("Description")
        for column in schema.columns:
            columns_table.add_row(
                column.name,
                column.type,
                "✓" if column.required else "",
                column.description or "",
            )
        console.print(columns_table)

    def print_success(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Print success message.

        Args:
            message: Success message
            details: Optional details to display
        """
        if self.json_mode:
            output = {"success": True, "message": message}
            if details:
                output.update(details)
            print(json.dumps(output, default=str, indent=2))
        else:
            console.print(f"✓ {message}", style="green")
            if details:
                for key, value in details.items():
                    console.print(f"  {key}: {value}", style="dim")

    def print_error(self, error: Exception) -> None:
        """Print error message.

        Args:
            error: Exception to display
        """
        if self.json_mode:
            if isinstance(error, TableTalkError):
                print(json.dumps(error.to_dict(), default=str, indent=2))
            else:
                print(json.dumps({"error": str(error)}, indent=2))
        else:
            error_text = str(error)
            if isinstance(error, TableTalkError) and error.context:
                context_str = "\n".join(
                    f"{k}: {v}" for k, v in error.context.items() if v is not None
                )
                error_text = f"{error_text}\n\n{context_str}"

            panel = Panel(
                error_text,
                title="[red]Error[/red]",
                border_style="red",
            )
            console.print(panel)

    def print_data(self, data: Any) -> None:
        """Print generic data (models, dicts, lists)."""
        data = _plain(data)
        if self.json_mode:
            print(json.dumps(data, default=str, indent=2))
        else:
            console.print_json(json.dumps(data, default=str))
