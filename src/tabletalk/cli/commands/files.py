"""File registration commands."""

from typing import Annotated

import typer

from tabletalk.cli.context import CLIContext
from tabletalk.cli.output import OutputFormatter
from tabletalk.cli.parsing import parse_column_spec, read_json_file, read_rows_file

# Create files subcommand group
app = typer.Typer(help="Register uploaded files and load their rows")


@app.command("register")
def files_register(
    ctx: typer.Context,
    file_id: Annotated[str, typer.Argument(help="Identifier of the uploaded file")],
    owner: Annotated[str, typer.Option("--owner", "-o", help="User who owns the file")],
    columns: Annotated[
        list[str] | None,
        typer.Option("--column", "-c", help="Column spec: name[:type]. Can be repeated."),
    ] = None,
    columns_file: Annotated[
        str | None,
        typer.Option("--columns-file", help="JSON array of {name, type} column descriptors"),
    ] = None,
    rows_file: Annotated[
        str | None,
        typer.Option("--rows", "-r", help="Rows to load (JSON array or JSONL)"),
    ] = None,
    schema_id: Annotated[
        str | None,
        typer.Option("--schema", "-s", help="Global schema the file is bound to"),
    ] = None,
) -> None:
    """Create the table for an uploaded file.

    Examples:

        tabletalk files register sales.csv --owner alice -c region -c total:number
        tabletalk files register sales.csv --owner alice --columns-file cols.json --rows rows.jsonl
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        if columns_file:
            descriptors = read_json_file(columns_file)
        elif columns:
            descriptors = [parse_column_spec(spec) for spec in columns]
        else:
            raise typer.BadParameter("Provide --column at least once or --columns-file")
        rows = read_rows_file(rows_file) if rows_file else None

        db = cli_ctx.get_db()
        info = db.register_file(file_id, owner, descriptors, rows=rows, schema_id=schema_id)
        formatter.print_success(
            f"Registered file '{file_id}'",
            {
                "table_name": info.table_name,
                "columns": len(info.columns),
                "rows": info.row_count or 0,
            },
        )
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()


@app.command("insert")
def files_insert(
    ctx: typer.Context,
    file_id: Annotated[str, typer.Argument(help="Registered file")],
    rows_file: Annotated[str, typer.Argument(help="Rows to load (JSON array or JSONL)")],
) -> None:
    """Append rows to a registered file."""
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        inserted = cli_ctx.get_db().insert_rows(file_id, read_rows_file(rows_file))
        formatter.print_success(f"Inserted {inserted} rows into '{file_id}'", {"count": inserted})
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()


@app.command("list")
def files_list(
    ctx: typer.Context,
    owner: Annotated[
        str | None, typer.Option("--owner", "-o", help="Only files of this user")
    ] = None,
) -> None:
    """List registered files."""
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        files = cli_ctx.get_db().list_files(owner)
        if cli_ctx.json_output:
            formatter.print_data(files)
        else:
            formatter.print_table(
                f"Files ({len(files)} total)",
                [
                    {
                        "File": f.file_id,
                        "Owner": f.owner_id,
                        "Table": f.table_name,
                        "Columns": len(f.columns),
                        "Rows": f.row_count or 0,
                    }
                    for f in files
                ],
                ["File", "Owner", "Table", "Columns", "Rows"],
            )
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()


@app.command("delete")
def files_delete(
    ctx: typer.Context,
    file_id: Annotated[str, typer.Argument(help="Registered file")],
    force: Annotated[bool, typer.Option("--force", "-f", help="Skip confirmation")] = False,
) -> None:
    """Drop a file's table, its merged columns and its registration."""
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        if not force and not cli_ctx.json_output:
            typer.confirm(f"Delete file '{file_id}' and all of its rows?", abort=True)
        existed = cli_ctx.get_db().delete_file(file_id)
        if existed:
            formatter.print_success(f"Deleted file '{file_id}'")
        else:
            formatter.print_success(f"File '{file_id}' was not registered", {"deleted": False})
    except typer.Abort:
        raise
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()
