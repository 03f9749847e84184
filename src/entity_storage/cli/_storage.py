"""CLI helpers for schema loading and file-backed component construction."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar

import yaml

from entity_storage.component import EntityStorageComponent
from entity_storage.config import ConnectorOptions, FileEntityStorageConnectorConfig
from entity_storage.connectors.file import FileEntityStorageConnector
from entity_storage.factory import ComponentFactory, EntityStorageConnectorFactory
from entity_storage.schema import EntityDescriptor, register_schema

CONNECTOR_NAME = "file"
COMPONENT_NAME = "entity-storage"

T = TypeVar("T")


def load_descriptor(path: str | None) -> EntityDescriptor:
    """Load an entity descriptor from a JSON or YAML file."""
    if not path:
        raise ValueError("A schema file is required (--schema or ESTORE_SCHEMA)")
    schema_path = Path(path)
    if not schema_path.exists():
        raise FileNotFoundError(f"Schema file not found: {path}")
    text = schema_path.read_text(encoding="utf-8")
    if schema_path.suffix.lower() in (".yaml", ".yml"):
        data = yaml.safe_load(text)
    else:
        data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"Schema file {path} must contain an object")
    return EntityDescriptor.from_dict(data)


def register_file_component(descriptor: EntityDescriptor) -> None:
    """Register the schema plus a file connector and component built from CLI state."""
    from entity_storage.cli import state

    register_schema(descriptor)
    options = ConnectorOptions(
        entity_schema=descriptor.name,
        config=FileEntityStorageConnectorConfig(
            directory=state.directory, base_filename=state.base_filename
        ),
    )
    EntityStorageConnectorFactory.register(
        CONNECTOR_NAME, lambda: FileEntityStorageConnector(options)
    )
    ComponentFactory.register(COMPONENT_NAME, lambda: EntityStorageComponent(CONNECTOR_NAME))


def unregister_file_component() -> None:
    EntityStorageConnectorFactory.unregister(CONNECTOR_NAME)
    ComponentFactory.unregister(COMPONENT_NAME)


def run_with_component(
    descriptor: EntityDescriptor,
    operation: Callable[[EntityStorageComponent], Awaitable[T]],
) -> T:
    """Bootstrap a file-backed component, run one operation on it and close it."""

    async def _run() -> T:
        register_file_component(descriptor)
        component: EntityStorageComponent = ComponentFactory.get(COMPONENT_NAME)
        try:
            await component.bootstrap()
            return await operation(component)
        finally:
            await component.connector.close()
            unregister_file_component()

    return asyncio.run(_run())


def parse_entity_json(value: str) -> Any:
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise ValueError(f"Entity is not valid JSON: {e}") from e
