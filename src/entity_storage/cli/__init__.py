"""estore CLI: operator console for file-backed entity stores."""

from __future__ import annotations

from typing import Optional

import typer

from entity_storage.cli import entities, schema, serve

app = typer.Typer(
    name="estore",
    help="Entity storage CLI: inspect and edit file-backed entity stores.",
    no_args_is_help=True,
)


class _State:
    """Global CLI state shared across subcommands."""

    directory: str = "."
    base_filename: str = "entity-storage"
    schema: str | None = None
    schema_origin: str = "--schema"
    json_output: bool = False


state = _State()


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError, version

        try:
            v = version("entity-storage")
        except PackageNotFoundError:
            v = "unknown"
        print(f"estore {v}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    directory: Optional[str] = typer.Option(
        None,
        "--directory",
        "-d",
        envvar="ESTORE_DIRECTORY",
        help="Store directory (default: current directory)",
    ),
    base_filename: Optional[str] = typer.Option(
        None,
        "--base-filename",
        envvar="ESTORE_BASE_FILENAME",
        help="Base name of the store files (default: entity-storage)",
    ),
    schema_file: Optional[str] = typer.Option(
        None,
        "--schema",
        "-s",
        envvar="ESTORE_SCHEMA",
        help="Entity descriptor file (JSON or YAML)",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output when supported"),
    version: bool = typer.Option(
        False, "--version", help="Show version", is_eager=True, callback=_version_callback
    ),
) -> None:
    """Global options for all estore commands."""
    if base_filename is not None and ("/" in base_filename or "\\" in base_filename):
        raise typer.BadParameter("--base-filename must be a plain file name")

    state.directory = directory or "."
    state.base_filename = base_filename or "entity-storage"
    state.schema = schema_file
    # name the environment variable in errors when the path came from there
    source = ctx.get_parameter_source("schema_file")
    # typer may bundle its own click, so compare by member name
    if source is not None and source.name == "ENVIRONMENT":
        state.schema_origin = "ESTORE_SCHEMA"
    else:
        state.schema_origin = "--schema"
    state.json_output = json_output
    if ctx.invoked_subcommand is None and not version:
        print(ctx.get_help())
        raise typer.Exit()


# Register subcommand groups
app.add_typer(schema.app, name="schema", help="Inspect the entity descriptor")

# Register top-level commands
app.command(name="get")(entities.get_cmd)
app.command(name="set")(entities.set_cmd)
app.command(name="remove")(entities.remove_cmd)
app.command(name="query")(entities.query_cmd)
app.command(name="tenants")(entities.tenants_cmd)
app.command(name="serve")(serve.serve_cmd)


def main() -> None:
    """Entry point for the estore CLI."""
    app()
