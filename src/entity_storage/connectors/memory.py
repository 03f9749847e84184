"""In-process reference connector."""

from __future__ import annotations

import copy
from typing import TYPE_CHECKING, Any

from entity_storage.config import ConnectorOptions, MemoryEntityStorageConnectorConfig
from entity_storage.connectors.base import BaseEntityStorageConnector, first_match
from entity_storage.errors import ConfigurationError
from entity_storage.query import QueryResult, execute_query
from entity_storage.schema import EntityDescriptor, SchemaRegistry

if TYPE_CHECKING:
    import asyncio

    from entity_storage.conditions import Condition
    from entity_storage.query import SortSpec


class MemoryEntityStorageConnector(BaseEntityStorageConnector):
    """Keeps each partition as an insertion-ordered list plus a key -> position map."""

    def __init__(
        self,
        options: ConnectorOptions,
        *,
        registry: SchemaRegistry | None = None,
    ) -> None:
        super().__init__(options, registry=registry)
        config = options.config
        if config is None:
            config = MemoryEntityStorageConnectorConfig()
        if not isinstance(config, MemoryEntityStorageConnectorConfig):
            raise ConfigurationError(
                f"{self.class_name} expects MemoryEntityStorageConnectorConfig, "
                f"got {type(config).__name__}"
            )
        self._initial_values = config.initial_values
        self._store: dict[str, list[dict[str, Any]]] = {}
        self._positions: dict[str, dict[str, int]] = {}

    async def _bootstrap_backend(self, descriptor: EntityDescriptor, *, first: bool) -> None:
        if not first or not self._initial_values:
            return
        for partition, records in self._initial_values.items():
            for record in records:
                self._upsert(partition, self._validate(descriptor, record), record)
        self._logger.info(
            "%s seeded %d partition(s) from initial values",
            self.class_name,
            len(self._initial_values),
        )

    def _upsert(self, partition: str, key: str, entity: dict[str, Any]) -> None:
        records = self._store.setdefault(partition, [])
        positions = self._positions.setdefault(partition, {})
        stored = copy.deepcopy(entity)
        index = positions.get(key)
        if index is None:
            positions[key] = len(records)
            records.append(stored)
        else:
            records[index] = stored

    async def get(
        self, partition: str, id: str, secondary_index: str | None = None
    ) -> dict[str, Any] | None:
        descriptor = self._ready(partition)
        self._check_id(descriptor, id)
        lookup = self._lookup_property(descriptor, secondary_index)
        records = self._store.get(partition, [])

        if secondary_index is None:
            index = self._positions.get(partition, {}).get(id)
            found = records[index] if index is not None else None
        else:
            found = first_match(records, lookup, id, descriptor.primary_key.name)
        return copy.deepcopy(found) if found is not None else None

    async def set(self, partition: str, entity: dict[str, Any]) -> None:
        descriptor = self._ready(partition)
        key = self._validate(descriptor, entity)
        self._upsert(partition, key, entity)
        self._logger.debug("%s set '%s' in partition '%s'", self.class_name, key, partition)

    async def remove(self, partition: str, id: str) -> None:
        descriptor = self._ready(partition)
        self._check_id(descriptor, id)
        positions = self._positions.get(partition)
        if not positions or id not in positions:
            return
        index = positions.pop(id)
        records = self._store[partition]
        del records[index]
        pk = descriptor.primary_key.name
        for i in range(index, len(records)):
            positions[records[i][pk]] = i
        self._logger.debug("%s removed '%s' from partition '%s'", self.class_name, id, partition)

    async def query(
        self,
        partition: str,
        conditions: Condition | None = None,
        sort_properties: SortSpec | None = None,
        properties: list[str] | None = None,
        cursor: str | None = None,
        page_size: int | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> QueryResult:
        descriptor = self._ready(partition)
        return execute_query(
            self._store.get(partition, []),
            descriptor,
            conditions,
            sort_properties,
            properties,
            cursor,
            page_size,
            cancel_event=cancel_event,
        )

    def get_store(self, partition: str) -> list[dict[str, Any]] | None:
        """Return a copy of a partition's records in insertion order."""
        records = self._store.get(partition)
        return copy.deepcopy(records) if records is not None else None
