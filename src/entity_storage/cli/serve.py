"""estore serve: expose the file-backed store over HTTP."""

from __future__ import annotations

import typer

from entity_storage.cli import _exitcodes as ec
from entity_storage.cli._output import print_error
from entity_storage.cli._storage import COMPONENT_NAME, load_descriptor, register_file_component


def serve_cmd(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind"),
    port: int = typer.Option(8000, "--port", help="Port to listen on"),
) -> None:
    """Serve the entity storage REST routes."""
    import uvicorn

    from entity_storage.cli import state
    from entity_storage.rest import create_app

    try:
        descriptor = load_descriptor(state.schema)
    except (OSError, ValueError, KeyError) as e:
        print_error(f"Failed to load schema ({state.schema_origin}): {e}")
        raise typer.Exit(ec.USAGE_ERROR)

    register_file_component(descriptor)
    app = create_app(COMPONENT_NAME, bootstrap=True)
    uvicorn.run(app, host=host, port=port, log_level="info")
