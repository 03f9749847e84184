"""Storage connectors: the contract and the two reference engines."""

from entity_storage.connectors.base import (
    BaseEntityStorageConnector,
    EntityStorageConnector,
    connector_logger,
)
from entity_storage.connectors.file import FileEntityStorageConnector
from entity_storage.connectors.memory import MemoryEntityStorageConnector

__all__ = [
    "EntityStorageConnector",
    "BaseEntityStorageConnector",
    "MemoryEntityStorageConnector",
    "FileEntityStorageConnector",
    "connector_logger",
]
