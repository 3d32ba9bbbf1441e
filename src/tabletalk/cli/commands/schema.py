"""Global schema commands."""

from typing import Annotated

import typer

from tabletalk.cli.context import CLIContext
from tabletalk.cli.output import OutputFormatter
from tabletalk.cli.parsing import parse_column_spec, read_json_file, to_schema_column
from tabletalk.core.types import EvolutionOptions

# Create schema subcommand group
app = typer.Typer(help="Manage versioned global schemas")


@app.command("list")
def schema_list(
    ctx: typer.Context,
    project: Annotated[str | None, typer.Option("--project", help="Project filter")] = None,
) -> None:
    """List global schemas."""
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        schemas = cli_ctx.get_db().list_schemas(project)
        if cli_ctx.json_output:
            formatter.print_data(schemas)
        else:
            formatter.print_table(
                f"Schemas ({len(schemas)} total)",
                [
                    {
                        "ID": s.id,
                        "Name": s.name,
                        "Version": s.current_version,
                        "Columns": len(s.columns),
                    }
                    for s in schemas
                ],
                ["ID", "Name", "Version", "Columns"],
            )
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()


@app.command("show")
def schema_show(
    ctx: typer.Context,
    schema_id: Annotated[str, typer.Argument(help="Schema ID")],
    version: Annotated[
        int | None, typer.Option("--version", help="Show this version instead of the head")
    ] = None,
) -> None:
    """Show a schema's columns."""
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        formatter.print_schema(cli_ctx.get_db().get_schema(schema_id, version))
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()


@app.command("create")
def schema_create(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Schema name")],
    columns: Annotated[
        list[str] | None,
        typer.Option("--column", "-c", help="Column spec: name[:type][:required]. Repeatable."),
    ] = None,
    from_file: Annotated[
        str | None, typer.Option("--from-file", help="Load schema from JSON file")
    ] = None,
    project: Annotated[str | None, typer.Option("--project", help="Owning project")] = None,
    description: Annotated[
        str | None, typer.Option("--description", help="Schema description")
    ] = None,
    created_by: Annotated[
        str | None, typer.Option("--created-by", help="Creator identifier for audit trail")
    ] = None,
) -> None:
    """Create a global schema at version 1.

    Examples:

        tabletalk schema create customers -c id:text:required -c name -c age:number
        tabletalk schema create customers --from-file schema.json
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        specs = []
        if from_file:
            data = read_json_file(from_file)
            name = data.get("name", name)
            description = data.get("description", description)
            specs = [to_schema_column(c) for c in data.get("columns", [])]
        elif columns:
            specs = [to_schema_column(parse_column_spec(spec)) for spec in columns]

        schema = cli_ctx.get_db().create_schema(
            name, specs, project_id=project, description=description, created_by=created_by
        )
        formatter.print_success(
            f"Created schema '{schema.name}'",
            {"id": schema.id, "version": schema.current_version, "columns": len(schema.columns)},
        )
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()


@app.command("identify")
def schema_identify(
    ctx: typer.Context,
    schema_id: Annotated[str, typer.Argument(help="Schema ID")],
    columns: Annotated[
        list[str],
        typer.Option("--column", "-c", help="File column spec: name[:type]. Repeatable."),
    ],
) -> None:
    """Classify file columns against a schema as exact, fuzzy or new."""
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        result = cli_ctx.get_db().identify_columns(
            [parse_column_spec(spec) for spec in columns], schema_id
        )
        if cli_ctx.json_output:
            formatter.print_data(result)
        else:
            formatter.print_table(
                "Column matches",
                [
                    {
                        "File column": m.file_column,
                        "Schema column": m.schema_column or "",
                        "Match": m.match_type,
                        "Confidence": f"{m.confidence:.2f}",
                    }
                    for m in result.mappings
                ],
                ["File column", "Schema column", "Match", "Confidence"],
            )
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()


@app.command("evolve")
def schema_evolve(
    ctx: typer.Context,
    schema_id: Annotated[str, typer.Argument(help="Schema ID")],
    columns: Annotated[
        list[str],
        typer.Option("--column", "-c", help="Accepted column spec: name[:type]. Repeatable."),
    ],
    in_place: Annotated[
        bool, typer.Option("--in-place", help="Update the head version instead of appending one")
    ] = False,
    migrate: Annotated[
        bool, typer.Option("--migrate", help="Add the columns to files bound to the schema")
    ] = False,
    backfill: Annotated[
        bool, typer.Option("--backfill", help="Fill existing rows with type defaults")
    ] = False,
    expected_revision: Annotated[
        int | None, typer.Option("--expected-revision", help="Fail if the schema moved on")
    ] = None,
    created_by: Annotated[
        str | None, typer.Option("--created-by", help="Creator identifier for audit trail")
    ] = None,
) -> None:
    """Append accepted new columns to a schema.

    Examples:

        tabletalk schema evolve <id> -c loyalty_tier -c signup_date:date --migrate --backfill
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        result = cli_ctx.get_db().evolve_schema(
            schema_id,
            [parse_column_spec(spec) for spec in columns],
            EvolutionOptions(
                create_new_version=not in_place,
                migrate_data=migrate,
                update_existing_records=backfill,
            ),
            created_by=created_by,
            expected_revision=expected_revision,
        )
        formatter.print_success(
            result.message,
            {
                "version": result.version,
                "added": ", ".join(result.added_columns) or "none",
                "skipped": ", ".join(result.skipped_columns) or "none",
                "migrated_files": len(result.migrated_files),
            },
        )
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()


@app.command("versions")
def schema_versions(
    ctx: typer.Context,
    schema_id: Annotated[str, typer.Argument(help="Schema ID")],
) -> None:
    """List a schema's versions, oldest first."""
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        versions = cli_ctx.get_db().list_schema_versions(schema_id)
        if cli_ctx.json_output:
            formatter.print_data(versions)
        else:
            formatter.print_table(
                f"Versions of {schema_id}",
                [
                    {
                        "Version": v.version,
                        "Columns": len(v.columns),
                        "Superseded": "✓" if v.superseded else "",
                        "Comment": v.comment or "",
                        "Created by": v.created_by or "",
                    }
                    for v in versions
                ],
                ["Version", "Columns", "Superseded", "Comment", "Created by"],
            )
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()


@app.command("compare")
def schema_compare(
    ctx: typer.Context,
    schema_id: Annotated[str, typer.Argument(help="Schema ID")],
    from_version: Annotated[int, typer.Argument(help="Older version")],
    to_version: Annotated[int, typer.Argument(help="Newer version")],
) -> None:
    """Show column differences between two versions."""
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        comparison = cli_ctx.get_db().compare_schema_versions(schema_id, from_version, to_version)
        formatter.print_data(comparison)
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()


@app.command("rollback")
def schema_rollback(
    ctx: typer.Context,
    schema_id: Annotated[str, typer.Argument(help="Schema ID")],
    version: Annotated[int, typer.Argument(help="Version whose columns to restore")],
    created_by: Annotated[
        str | None, typer.Option("--created-by", help="Creator identifier for audit trail")
    ] = None,
) -> None:
    """Create a new version with the columns of an older one."""
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        result = cli_ctx.get_db().rollback_schema(schema_id, version, created_by=created_by)
        formatter.print_success(result.message, {"version": result.version})
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()


@app.command("changelog")
def schema_changelog(
    ctx: typer.Context,
    target: Annotated[
        str | None, typer.Option("--target", "-t", help="Schema or file ID filter")
    ] = None,
    limit: Annotated[int, typer.Option("--limit", "-l", min=1, help="Max entries")] = 50,
) -> None:
    """Show schema, file and merge changes, newest first."""
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        entries = cli_ctx.get_db().get_changelog(target, limit)
        if cli_ctx.json_output:
            formatter.print_data(entries)
        else:
            formatter.print_table(
                f"Changelog ({len(entries)} entries)",
                [
                    {
                        "When": e.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
                        "Operation": e.operation,
                        "Target": e.target,
                        "By": e.created_by or "",
                    }
                    for e in entries
                ],
                ["When", "Operation", "Target", "By"],
            )
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()
