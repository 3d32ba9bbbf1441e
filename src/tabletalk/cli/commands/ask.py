"""Natural-language question command."""

from typing import Annotated

import typer

from tabletalk.cli.context import CLIContext
from tabletalk.cli.output import OutputFormatter


def ask_command(
    ctx: typer.Context,
    question: Annotated[str, typer.Argument(help="Question in plain language")],
    user: Annotated[str, typer.Option("--user", "-u", help="Requesting user")],
    file_id: Annotated[
        str | None, typer.Option("--file", "-f", help="Restrict the question to one file")
    ] = None,
    page: Annotated[int, typer.Option("--page", "-p", min=1, help="Page number")] = 1,
    page_size: Annotated[
        int | None, typer.Option("--page-size", "-n", min=1, help="Rows per page")
    ] = None,
) -> None:
    """Ask a question about your files.

    Examples:

        tabletalk ask "Which region sold the most?" --user alice
        tabletalk ask "List customers in Lisbon" --user alice --file customers.csv --page 2
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        result = cli_ctx.get_db().ask_sync(
            question, user_id=user, file_id=file_id, page=page, page_size=page_size
        )
        formatter.print_query_result(result)
        if not result.success:
            raise typer.Exit(code=1)
    except typer.Exit:
        raise
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()
