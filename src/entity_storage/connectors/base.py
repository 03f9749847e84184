"""The storage connector contract and the shared base for reference connectors."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from entity_storage.config import ConnectorOptions
from entity_storage.errors import (
    BootstrapFailedError,
    EntityStorageError,
    MissingIdentityError,
    MissingPrimaryKeyError,
    NotBootstrappedError,
)
from entity_storage.query import text_sort_key
from entity_storage.schema import (
    EntityDescriptor,
    SchemaRegistry,
    check_secondary_index,
    schema_registry,
    validate_entity,
)

if TYPE_CHECKING:
    import asyncio

    from entity_storage.conditions import Condition
    from entity_storage.query import QueryResult, SortSpec


def connector_logger(logging_connector_type: str) -> logging.Logger:
    """Logger used by connectors configured with the given logging connector type."""
    return logging.getLogger(f"entity_storage.{logging_connector_type}")


@runtime_checkable
class EntityStorageConnector(Protocol):
    """Interface every storage engine implements.

    Connectors know nothing about identities: each data operation is scoped to
    the partition passed in by the caller.
    """

    async def bootstrap(self) -> None: ...

    def get_schema(self) -> EntityDescriptor: ...

    async def get(
        self, partition: str, id: str, secondary_index: str | None = None
    ) -> dict[str, Any] | None: ...

    async def set(self, partition: str, entity: dict[str, Any]) -> None: ...

    async def remove(self, partition: str, id: str) -> None: ...

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
    ) -> QueryResult: ...

    async def close(self) -> None: ...


class BaseEntityStorageConnector:
    """State machine, schema lookup and argument checks shared by the reference connectors."""

    def __init__(
        self,
        options: ConnectorOptions,
        *,
        registry: SchemaRegistry | None = None,
    ) -> None:
        if not options.entity_schema:
            raise ValueError("ConnectorOptions.entity_schema must not be empty")
        self._schema_name = options.entity_schema
        self._registry = registry if registry is not None else schema_registry
        self._logger = connector_logger(options.logging_connector_type)
        self._bootstrapped = False

    @property
    def class_name(self) -> str:
        return type(self).__name__

    @property
    def bootstrapped(self) -> bool:
        return self._bootstrapped

    def get_schema(self) -> EntityDescriptor:
        # looked up on every call so registry changes are visible
        return self._registry.lookup(self._schema_name)

    async def bootstrap(self) -> None:
        """Initialise the backend. Safe to call any number of times."""
        try:
            descriptor = self.get_schema()
            await self._bootstrap_backend(descriptor, first=not self._bootstrapped)
        except BootstrapFailedError:
            raise
        except (EntityStorageError, OSError) as e:
            self._logger.error("%s bootstrap failed: %s", self.class_name, e)
            raise BootstrapFailedError(f"{self.class_name} bootstrap failed: {e}", str(e)) from e
        self._bootstrapped = True

    async def _bootstrap_backend(self, descriptor: EntityDescriptor, *, first: bool) -> None:
        """Create backend resources. Subclasses must not destroy existing data."""

    async def close(self) -> None:
        self._bootstrapped = False

    # --- Guards ---

    def _ready(self, partition: str) -> EntityDescriptor:
        if not self._bootstrapped:
            raise NotBootstrappedError(self.class_name)
        if not isinstance(partition, str) or not partition:
            raise MissingIdentityError("partition")
        return self.get_schema()

    def _check_id(self, descriptor: EntityDescriptor, id: Any) -> None:
        if not isinstance(id, str) or not id:
            raise MissingPrimaryKeyError(descriptor.name, descriptor.primary_key.name)

    def _lookup_property(self, descriptor: EntityDescriptor, secondary_index: str | None) -> str:
        if secondary_index is None:
            return descriptor.primary_key.name
        check_secondary_index(descriptor, secondary_index)
        return secondary_index

    def _validate(self, descriptor: EntityDescriptor, entity: Any) -> str:
        validate_entity(descriptor, entity)
        return str(entity[descriptor.primary_key.name])


def first_match(
    records: list[dict[str, Any]], lookup_property: str, value: str, primary_key: str
) -> dict[str, Any] | None:
    """Return the record whose property equals value, smallest primary key first."""
    matches = [r for r in records if r.get(lookup_property) == value]
    if not matches:
        return None
    return min(matches, key=lambda r: text_sort_key(r[primary_key]))
