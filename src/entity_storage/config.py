"""Configuration for entity storage connectors, components and REST routes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union


@dataclass
class MemoryEntityStorageConnectorConfig:
    """Configuration for the in-memory connector."""

    # tenant id -> records, copied into the store on bootstrap
    initial_values: dict[str, list[dict[str, Any]]] | None = None


@dataclass
class FileEntityStorageConnectorConfig:
    """Configuration for the file connector."""

    directory: str
    base_filename: str


ConnectorConfig = Union[MemoryEntityStorageConnectorConfig, FileEntityStorageConnectorConfig]


@dataclass
class ConnectorOptions:
    """Constructor options shared by every connector."""

    entity_schema: str
    logging_connector_type: str = "logging"
    config: Any = None


@dataclass
class EntityStorageComponentConfig:
    """Configuration for the identity-aware component."""

    default_node_identity: str = "default"
    require_user_identity: bool = False


@dataclass
class RestConfig:
    """Configuration for the REST routes."""

    base_path: str = "/entity-storage"
    user_identity_header: str = "X-User-Identity"
    node_identity_header: str = "X-Node-Identity"
    tags: list[str] = field(default_factory=lambda: ["EntityStorage"])
