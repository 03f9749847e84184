"""estore schema: inspect the entity descriptor the CLI operates on."""

from __future__ import annotations

import json

import typer
import yaml

from entity_storage.cli import _exitcodes as ec
from entity_storage.cli._output import print_error
from entity_storage.cli._storage import load_descriptor

app = typer.Typer(no_args_is_help=True)


@app.command(name="show")
def schema_show_cmd(
    fmt: str = typer.Option("json", "--format", help="Output format: json or yaml"),
) -> None:
    """Print the loaded schema in its normalised form."""
    from entity_storage.cli import state

    if fmt not in ("json", "yaml"):
        print_error("--format must be 'json' or 'yaml'")
        raise typer.Exit(ec.USAGE_ERROR)

    try:
        descriptor = load_descriptor(state.schema)
    except (OSError, ValueError, KeyError) as e:
        print_error(f"Failed to load schema ({state.schema_origin}): {e}")
        raise typer.Exit(ec.USAGE_ERROR)

    data = descriptor.to_dict()
    if fmt == "yaml":
        print(yaml.dump(data, default_flow_style=False, sort_keys=False), end="")
    else:
        print(json.dumps(data, indent=2))
