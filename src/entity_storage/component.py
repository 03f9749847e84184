"""Identity-aware facade over a single named connector."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from entity_storage.conditions import Condition, condition_from_dict
from entity_storage.config import EntityStorageComponentConfig
from entity_storage.connectors.base import EntityStorageConnector
from entity_storage.errors import (
    BackendUnavailableError,
    EntityStorageError,
    InvalidConditionError,
    MissingIdentityError,
    MissingPrimaryKeyError,
)
from entity_storage.factory import EntityStorageConnectorFactory
from entity_storage.query import QueryResult, SortProperty, SortSpec
from entity_storage.schema import EntityDescriptor, SortDirection

logger = logging.getLogger(__name__)


class EntityStorageComponent:
    """Maps the caller's node identity onto a connector partition.

    The connector is resolved from ``EntityStorageConnectorFactory`` once, at
    construction. Identities never reach the connector; the node identity (or
    the configured default) selects the partition and the user identity is
    only checked for presence when the config requires it.
    """

    def __init__(
        self,
        entity_storage_type: str,
        config: EntityStorageComponentConfig | None = None,
    ) -> None:
        if not entity_storage_type:
            raise ValueError("entity_storage_type must not be empty")
        self._entity_storage_type = entity_storage_type
        self._config = config or EntityStorageComponentConfig()
        self._connector: EntityStorageConnector = EntityStorageConnectorFactory.get(
            entity_storage_type
        )

    @property
    def connector(self) -> EntityStorageConnector:
        return self._connector

    @property
    def config(self) -> EntityStorageComponentConfig:
        return self._config

    def get_schema(self) -> EntityDescriptor:
        return self._connector.get_schema()

    def _partition(self, user_identity: str | None, node_identity: str | None) -> str:
        if self._config.require_user_identity and not user_identity:
            raise MissingIdentityError("user identity")
        partition = node_identity or self._config.default_node_identity
        if not partition:
            raise MissingIdentityError("node identity")
        return partition

    async def _call(self, operation: str, coro: Any) -> Any:
        """Await a connector call, wrapping non-taxonomy failures."""
        try:
            return await coro
        except EntityStorageError:
            raise
        except OSError as e:
            logger.warning("%s failed in %s: %s", operation, self._entity_storage_type, e)
            raise BackendUnavailableError(operation, str(e), e) from e

    async def bootstrap(self) -> None:
        await self._call("bootstrap", self._connector.bootstrap())

    async def set(
        self,
        entity: dict[str, Any],
        *,
        user_identity: str | None = None,
        node_identity: str | None = None,
    ) -> None:
        partition = self._partition(user_identity, node_identity)
        logger.debug("set in '%s' for user '%s'", partition, user_identity)
        await self._call("set", self._connector.set(partition, entity))

    async def get(
        self,
        id: str,
        secondary_index: str | None = None,
        *,
        user_identity: str | None = None,
        node_identity: str | None = None,
    ) -> dict[str, Any] | None:
        """Return the matching entity, or None when there is none."""
        partition = self._partition(user_identity, node_identity)
        return await self._call("get", self._connector.get(partition, id, secondary_index))

    async def remove(
        self,
        id: str,
        *,
        user_identity: str | None = None,
        node_identity: str | None = None,
    ) -> None:
        partition = self._partition(user_identity, node_identity)
        if not isinstance(id, str) or not id:
            descriptor = self.get_schema()
            raise MissingPrimaryKeyError(descriptor.name, descriptor.primary_key.name)
        await self._call("remove", self._connector.remove(partition, id))

    async def query(
        self,
        conditions: Condition | dict[str, Any] | None = None,
        order_by: str | None = None,
        order_by_direction: SortDirection | str | None = None,
        properties: list[str] | None = None,
        cursor: str | None = None,
        page_size: int | None = None,
        *,
        sort_properties: SortSpec | None = None,
        user_identity: str | None = None,
        node_identity: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> QueryResult:
        """Query a partition.

        Sorting is given either as a single ``order_by`` / ``order_by_direction``
        pair or as a full ``sort_properties`` list, not both.
        """
        partition = self._partition(user_identity, node_identity)
        if isinstance(conditions, dict):
            conditions = condition_from_dict(conditions)

        if order_by is not None:
            if sort_properties:
                raise InvalidConditionError("Pass either order_by or sort_properties, not both")
            try:
                sort_properties = [SortProperty(order_by, order_by_direction or SortDirection.ASC)]
            except ValueError as e:
                raise InvalidConditionError(str(e)) from e

        return await self._call(
            "query",
            self._connector.query(
                partition,
                conditions,
                sort_properties,
                properties,
                cursor,
                page_size,
                cancel_event=cancel_event,
            ),
        )
