"""estore get/set/remove/query/tenants: manual reads and writes against a file store."""

from __future__ import annotations

from typing import Awaitable, Callable, Optional, TypeVar

import typer

from entity_storage.cli import _exitcodes as ec
from entity_storage.cli._filters import group_where_args, parse_cli_conditions
from entity_storage.cli._output import print_entity, print_error, print_json, print_page
from entity_storage.cli._storage import load_descriptor, parse_entity_json, run_with_component
from entity_storage.component import EntityStorageComponent
from entity_storage.errors import EntityStorageError
from entity_storage.schema import EntityDescriptor

T = TypeVar("T")

_TENANT_HELP = "Tenant (node identity) to operate on"


def _descriptor() -> EntityDescriptor:
    from entity_storage.cli import state

    try:
        return load_descriptor(state.schema)
    except (OSError, ValueError, KeyError) as e:
        print_error(f"Failed to load schema ({state.schema_origin}): {e}")
        raise typer.Exit(ec.USAGE_ERROR)


def _run(
    descriptor: EntityDescriptor,
    operation: Callable[[EntityStorageComponent], Awaitable[T]],
) -> T:
    try:
        return run_with_component(descriptor, operation)
    except EntityStorageError as e:
        print_error(f"[{e.kind}] {e.message}")
        raise typer.Exit(ec.EXECUTION_FAILURE)
    except OSError as e:
        print_error(str(e))
        raise typer.Exit(ec.EXECUTION_FAILURE)


def get_cmd(
    id: str = typer.Argument(..., help="Primary key, or the index value with --index"),
    index: Optional[str] = typer.Option(None, "--index", help="Secondary index property"),
    tenant: str = typer.Option("default", "--tenant", help=_TENANT_HELP),
) -> None:
    """Fetch one entity."""
    from entity_storage.cli import state

    descriptor = _descriptor()
    entity = _run(descriptor, lambda component: component.get(id, index, node_identity=tenant))
    if entity is None:
        print_error(f"Entity '{id}' not found in tenant '{tenant}'")
        raise typer.Exit(ec.NOT_FOUND)
    if state.json_output:
        print_json(entity)
    else:
        print_entity(entity, descriptor.property_names)


def set_cmd(
    entity_json: str = typer.Argument(..., help="Entity as a JSON object"),
    tenant: str = typer.Option("default", "--tenant", help=_TENANT_HELP),
) -> None:
    """Create or fully replace an entity."""
    from entity_storage.cli import state

    descriptor = _descriptor()
    try:
        entity = parse_entity_json(entity_json)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)

    _run(descriptor, lambda component: component.set(entity, node_identity=tenant))
    key = entity[descriptor.primary_key.name]
    if state.json_output:
        print_json({"set": key, "tenant": tenant})
    else:
        print(f"Set '{key}' in tenant '{tenant}'")


def remove_cmd(
    id: str = typer.Argument(..., help="Primary key of the entity to remove"),
    tenant: str = typer.Option("default", "--tenant", help=_TENANT_HELP),
) -> None:
    """Remove an entity. Removing an absent entity succeeds."""
    from entity_storage.cli import state

    descriptor = _descriptor()
    _run(descriptor, lambda component: component.remove(id, node_identity=tenant))
    if state.json_output:
        print_json({"removed": id, "tenant": tenant})
    else:
        print(f"Removed '{id}' from tenant '{tenant}'")


def query_cmd(
    where_args: Optional[list[str]] = typer.Option(
        None, "--where", help="PROP OP VALUE_JSON (repeatable, AND-combined)"
    ),
    order_by: Optional[str] = typer.Option(None, "--order-by", help="Property to sort by"),
    direction: str = typer.Option("asc", "--direction", help="Sort direction: asc or desc"),
    properties: Optional[str] = typer.Option(
        None, "--properties", help="Comma-separated properties to return"
    ),
    cursor: Optional[str] = typer.Option(None, "--cursor", help="Cursor from a previous page"),
    page_size: Optional[int] = typer.Option(None, "--page-size", help="Entities per page"),
    tenant: str = typer.Option("default", "--tenant", help=_TENANT_HELP),
) -> None:
    """Query one page of entities."""
    from entity_storage.cli import state

    if direction not in ("asc", "desc"):
        print_error("--direction must be 'asc' or 'desc'")
        raise typer.Exit(ec.USAGE_ERROR)
    try:
        conditions = parse_cli_conditions(group_where_args(where_args))
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)

    descriptor = _descriptor()
    property_list = [p.strip() for p in properties.split(",") if p.strip()] if properties else None
    result = _run(
        descriptor,
        lambda component: component.query(
            conditions,
            order_by,
            direction if order_by else None,
            property_list,
            cursor,
            page_size,
            node_identity=tenant,
        ),
    )

    if state.json_output:
        print_json(result.to_dict())
        return

    print_page(result, property_list or descriptor.property_names)


def tenants_cmd() -> None:
    """List the tenants recorded in the tenant index."""
    from entity_storage.cli import state

    descriptor = _descriptor()
    tenants = _run(descriptor, lambda component: component.connector.tenants())
    if state.json_output:
        print_json(tenants)
        return
    for tenant in tenants:
        print(tenant)
