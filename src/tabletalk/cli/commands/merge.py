"""Merged-column commands."""

from typing import Annotated

import typer

from tabletalk.cli.context import CLIContext
from tabletalk.cli.output import OutputFormatter

# Create merge subcommand group
app = typer.Typer(help="Create, update, list, delete and preview merged columns")


@app.command("create")
def merge_create(
    ctx: typer.Context,
    file_id: Annotated[str, typer.Argument(help="File whose columns are merged")],
    merge_name: Annotated[str, typer.Argument(help="Name of the derived column")],
    columns: Annotated[list[str], typer.Argument(help="Two or more source columns, in order")],
    owner: Annotated[str, typer.Option("--owner", "-o", help="User creating the merge")],
    delimiter: Annotated[
        str, typer.Option("--delimiter", help="Text placed between non-empty values")
    ] = " ",
) -> None:
    """Create a merged column as a view over a file.

    Examples:

        tabletalk merge create contacts.csv full_name first_name last_name --owner alice
        tabletalk merge create contacts.csv address street city zip --owner alice --delimiter ", "
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        merge_id = cli_ctx.get_db().create_merge(owner, file_id, merge_name, columns, delimiter)
        formatter.print_success(f"Created merged column '{merge_name}'", {"id": merge_id})
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()


@app.command("list")
def merge_list(
    ctx: typer.Context,
    file_id: Annotated[str, typer.Argument(help="Registered file")],
) -> None:
    """List the merged columns of a file."""
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        merges = cli_ctx.get_db().list_merges(file_id)
        if cli_ctx.json_output:
            formatter.print_data({"column_merges": [m.model_dump(mode="json") for m in merges]})
        else:
            formatter.print_table(
                f"Merged columns of {file_id}",
                [
                    {
                        "ID": m.id,
                        "Name": m.merge_name,
                        "Columns": ", ".join(m.column_list),
                        "Delimiter": repr(m.delimiter),
                        "View": m.view_name,
                    }
                    for m in merges
                ],
                ["ID", "Name", "Columns", "Delimiter", "View"],
            )
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()


@app.command("update")
def merge_update(
    ctx: typer.Context,
    merge_id: Annotated[str, typer.Argument(help="Merge ID")],
    columns: Annotated[
        list[str] | None, typer.Argument(help="New source columns, in order (default: keep)")
    ] = None,
    delimiter: Annotated[
        str | None, typer.Option("--delimiter", help="New delimiter (default: keep)")
    ] = None,
) -> None:
    """Change a merged column's source columns or delimiter.

    Examples:

        tabletalk merge update <merge-id> first_name middle_name last_name
        tabletalk merge update <merge-id> --delimiter ", "
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        merge = cli_ctx.get_db().update_merge(merge_id, columns or None, delimiter)
        formatter.print_success(
            f"Updated merged column '{merge.merge_name}'",
            {"id": merge.id, "columns": merge.column_list, "delimiter": merge.delimiter},
        )
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()


@app.command("delete")
def merge_delete(
    ctx: typer.Context,
    merge_id: Annotated[str, typer.Argument(help="Merge ID")],
) -> None:
    """Delete a merged column. Unknown IDs succeed without changes."""
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        cli_ctx.get_db().delete_merge(merge_id)
        formatter.print_success(f"Deleted merged column {merge_id}")
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()


@app.command("preview")
def merge_preview(
    ctx: typer.Context,
    file_id: Annotated[str, typer.Argument(help="File whose columns are merged")],
    columns: Annotated[list[str], typer.Argument(help="Two or more source columns, in order")],
    delimiter: Annotated[
        str, typer.Option("--delimiter", help="Text placed between non-empty values")
    ] = " ",
    limit: Annotated[int, typer.Option("--limit", "-l", min=1, help="Rows to preview")] = 5,
) -> None:
    """Show merged values for the first rows without saving anything."""
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        rows = cli_ctx.get_db().preview_merge(file_id, columns, delimiter, limit)
        if cli_ctx.json_output:
            formatter.print_data({"preview_data": rows})
        else:
            formatter.print_rows(f"Preview of {file_id}", rows)
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()
