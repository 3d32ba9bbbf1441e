"""TableTalk CLI - Main entry point."""

import logging
import sys
from typing import Annotated

import typer

import tabletalk
from tabletalk.cli.context import CLIContext, get_database_url

# Create main Typer app
app = typer.Typer(
    name="tabletalk",
    help="TableTalk CLI - Ask questions of your tabular files",
    no_args_is_help=True,
)

# Store CLI context globally (will be set in callback)
state: dict[str, CLIContext] = {}


@app.callback()
def main_callback(
    ctx: typer.Context,
    database: Annotated[
        str | None,
        typer.Option(
            "--database",
            "-d",
            envvar="TABLETALK_URL",
            help="Database URL (SQLite or PostgreSQL)",
        ),
    ] = None,
    model: Annotated[
        str | None,
        typer.Option(
            "--model",
            "-m",
            envvar="TABLETALK_MODEL",
            help="Completion model used by 'ask'",
        ),
    ] = None,
    echo: Annotated[
        bool,
        typer.Option(
            "--echo",
            "-e",
            help="Echo SQL statements to console",
        ),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            "-j",
            help="Output as JSON (machine-readable)",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Log prompts, generated SQL and repairs to stderr",
        ),
    ] = False,
) -> None:
    """Initialize CLI context with global options."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        stream=sys.stderr,
        format="%(levelname)s %(name)s: %(message)s",
    )

    cli_ctx = CLIContext(
        database_url=get_database_url(database),
        echo=echo,
        json_output=json_output,
        model=model,
    )

    # Store in Typer context for command access
    ctx.obj = cli_ctx
    state["cli_ctx"] = cli_ctx


@app.command()
def version() -> None:
    """Show version information."""
    typer.echo(f"TableTalk v{tabletalk.__version__}")


# Register command groups
from tabletalk.cli.commands import ask, files, merge, query, schema

app.add_typer(files.app, name="files")
app.add_typer(query.app, name="query")
app.add_typer(schema.app, name="schema")
app.add_typer(merge.app, name="merge")

# Register ask as a standalone command (not a group)
app.command(name="ask")(ask.ask_command)


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
