"""Shared test fixtures for entity storage tests."""

from __future__ import annotations

import pytest

from entity_storage.config import (
    ConnectorOptions,
    FileEntityStorageConnectorConfig,
    MemoryEntityStorageConnectorConfig,
)
from entity_storage.connectors import FileEntityStorageConnector, MemoryEntityStorageConnector
from entity_storage.factory import ComponentFactory, EntityStorageConnectorFactory
from entity_storage.schema import (
    EntityDescriptor,
    EntityProperty,
    build_validation_model,
    register_schema,
    schema_registry,
)

# --- Test descriptors ---

ITEM = EntityDescriptor(
    "Item",
    (
        EntityProperty("id", "string", primary_key=True),
        EntityProperty("name", "string", secondary_index=True, optional=True),
        EntityProperty("n", "integer", optional=True),
        EntityProperty("score", "float", optional=True),
        EntityProperty("active", "boolean", optional=True),
        EntityProperty("created", "timestamp", optional=True),
        EntityProperty("tags", "array", optional=True, item_type="string"),
        EntityProperty("meta", "object", optional=True),
    ),
)

BOOK = EntityDescriptor(
    "Book",
    (
        EntityProperty("isbn", "string", primary_key=True),
        EntityProperty("title", "string"),
        EntityProperty("year", "integer", sort_direction="desc"),
    ),
)


@pytest.fixture(autouse=True)
def _reset_registries():
    """Process-wide registries start empty for every test."""
    schema_registry.clear()
    EntityStorageConnectorFactory.reset()
    ComponentFactory.reset()
    build_validation_model.cache_clear()
    yield
    schema_registry.clear()
    EntityStorageConnectorFactory.reset()
    ComponentFactory.reset()


@pytest.fixture
def item_schema() -> EntityDescriptor:
    return register_schema(ITEM)


@pytest.fixture
def book_schema() -> EntityDescriptor:
    return register_schema(BOOK)


@pytest.fixture
def store_dir(tmp_path):
    return tmp_path / "es"


def make_memory_connector(schema: str = "Item", **config) -> MemoryEntityStorageConnector:
    return MemoryEntityStorageConnector(
        ConnectorOptions(entity_schema=schema, config=MemoryEntityStorageConnectorConfig(**config))
    )


def make_file_connector(directory, schema: str = "Item", base_filename: str = "store"):
    return FileEntityStorageConnector(
        ConnectorOptions(
            entity_schema=schema,
            config=FileEntityStorageConnectorConfig(
                directory=str(directory), base_filename=base_filename
            ),
        )
    )


@pytest.fixture
async def memory_connector(item_schema):
    connector = make_memory_connector()
    await connector.bootstrap()
    yield connector
    await connector.close()


@pytest.fixture
async def file_connector(item_schema, store_dir):
    connector = make_file_connector(store_dir)
    await connector.bootstrap()
    yield connector
    await connector.close()


@pytest.fixture(params=["memory", "file"])
async def connector(request, item_schema, store_dir):
    """Each reference engine, bootstrapped against the Item schema."""
    if request.param == "memory":
        engine = make_memory_connector()
    else:
        engine = make_file_connector(store_dir)
    await engine.bootstrap()
    yield engine
    await engine.close()


@pytest.fixture
def new_memory_connector():
    """Build (not bootstrap) memory connectors with custom options."""
    return make_memory_connector


@pytest.fixture
def new_file_connector():
    """Build (not bootstrap) file connectors with custom options."""
    return make_file_connector
