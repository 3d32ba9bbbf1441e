"""SQL execution, validation and history commands."""

from pathlib import Path
from typing import Annotated

import typer

from tabletalk.cli.context import CLIContext
from tabletalk.cli.output import OutputFormatter
from tabletalk.query.repair import fix_truncated_query
from tabletalk.query.validator import validate_query

# Create query subcommand group
app = typer.Typer(help="Run, validate and inspect SQL queries")


def _read_sql(sql: str | None, from_file: str | None) -> str:
    if from_file:
        return Path(from_file).read_text()
    if sql:
        return sql
    raise typer.BadParameter("Either provide SQL or use --file")


@app.command("run")
def query_run(
    ctx: typer.Context,
    sql: Annotated[str | None, typer.Argument(help="SQL query to execute")] = None,
    user: Annotated[str, typer.Option("--user", "-u", help="Requesting user")] = "cli",
    file_id: Annotated[
        str | None, typer.Option("--file-id", help="Restrict the query to one file")
    ] = None,
    from_file: Annotated[
        str | None, typer.Option("--file", "-f", help="Load SQL from file")
    ] = None,
    page: Annotated[int, typer.Option("--page", "-p", min=1, help="Page number")] = 1,
    page_size: Annotated[
        int | None, typer.Option("--page-size", "-n", min=1, help="Rows per page")
    ] = None,
) -> None:
    """Execute a read-only SQL query over a user's files, one page at a time.

    Examples:

        tabletalk query run "SELECT region FROM data_sales_csv_1a2b3c4d" -u alice
        tabletalk query run --file query.sql -u alice --page 2
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        result = cli_ctx.get_db().execute_sql(
            _read_sql(sql, from_file), user, file_id=file_id, page=page, page_size=page_size
        )
        formatter.print_query_result(result)
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()


@app.command("validate")
def query_validate(
    ctx: typer.Context,
    sql: Annotated[str | None, typer.Argument(help="SQL query to validate")] = None,
    from_file: Annotated[
        str | None, typer.Option("--file", "-f", help="Load SQL from file")
    ] = None,
) -> None:
    """Check SQL against the read-only policy without executing it.

    Examples:

        tabletalk query validate "SELECT * FROM data_sales_csv_1a2b3c4d"
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        result = validate_query(_read_sql(sql, from_file))
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)

    if cli_ctx.json_output:
        formatter.print_data(
            {
                "valid": result.valid,
                "error": result.error,
                "query_type": result.query_type.value,
                "blocked_keyword": result.blocked_keyword,
                "tables": result.tables_accessed,
                "warnings": result.warnings,
            }
        )
    elif result.valid:
        formatter.print_success("Query is valid", {"tables": ", ".join(result.tables_accessed)})
        for warning in result.warnings:
            typer.echo(f"  ! {warning}")
    else:
        formatter.print_error(ValueError(result.error))
    if not result.valid:
        raise typer.Exit(code=1)


@app.command("repair")
def query_repair(
    ctx: typer.Context,
    sql: Annotated[str, typer.Argument(help="Possibly truncated SQL")],
) -> None:
    """Show what truncation repair makes of a query.

    Examples:

        tabletalk query repair "SELECT * FROM t WHERE c IN ('a', 'b"
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    fixed = fix_truncated_query(sql)
    if cli_ctx.json_output:
        formatter.print_data({"original": sql, "repaired": fixed, "changed": fixed != sql})
    else:
        typer.echo(fixed)


@app.command("history")
def query_history(
    ctx: typer.Context,
    user: Annotated[str, typer.Option("--user", "-u", help="User whose questions to show")],
    limit: Annotated[int, typer.Option("--limit", "-l", min=1, help="Max entries")] = 20,
) -> None:
    """Show a user's recent questions, newest first."""
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        entries = cli_ctx.get_db().query_history(user, limit)
        if cli_ctx.json_output:
            formatter.print_data(entries)
        else:
            formatter.print_table(
                f"Query history for {user} ({len(entries)} entries)",
                [
                    {
                        "When": e.created_at.strftime("%Y-%m-%d %H:%M:%S") if e.created_at else "",
                        "Question": e.question,
                        "Status": e.status,
                        "Rows": e.row_count,
                        "Time (ms)": f"{e.execution_time_ms:.1f}",
                    }
                    for e in entries
                ],
                ["When", "Question", "Status", "Rows", "Time (ms)"],
            )
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()


@app.command("context")
def query_context(
    ctx: typer.Context,
    user: Annotated[str, typer.Option("--user", "-u", help="Requesting user")],
    file_id: Annotated[
        str | None, typer.Option("--file-id", help="Restrict the context to one file")
    ] = None,
) -> None:
    """Print the schema context the generator is given for a user."""
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        context = cli_ctx.get_db().get_schema_context(user, file_id)
        if cli_ctx.json_output:
            formatter.print_data(context)
        else:
            typer.echo(context.to_prompt())
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()
