"""HTTP client speaking to the entity storage routes with the component's interface."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

import httpx

from entity_storage.conditions import Condition, condition_from_dict, encode_conditions
from entity_storage.config import RestConfig
from entity_storage.errors import (
    BackendTimeoutError,
    BackendUnavailableError,
    InvalidConditionError,
    error_from_dict,
)
from entity_storage.query import QueryResult, SortSpec, normalize_sort_properties
from entity_storage.schema import SortDirection, parse_sort_direction


class EntityStorageClient:
    """Remote entity storage with the same calls as EntityStorageComponent.

    Pass either ``base_url`` or a preconfigured ``httpx.AsyncClient`` (for
    example one using ``httpx.ASGITransport`` in tests). A client passed in is
    not closed by ``aclose()``.
    """

    def __init__(
        self,
        base_url: str = "",
        *,
        config: RestConfig | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._config = config or RestConfig()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._prefix = self._config.base_path.rstrip("/")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> EntityStorageClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def _headers(self, user_identity: str | None, node_identity: str | None) -> dict[str, str]:
        headers: dict[str, str] = {}
        if user_identity:
            headers[self._config.user_identity_header] = user_identity
        if node_identity:
            headers[self._config.node_identity_header] = node_identity
        return headers

    def _entity_url(self, id: str) -> str:
        if not isinstance(id, str) or not id:
            raise error_from_dict(
                {"error": {"kind": "missing-primary-key", "message": "An entity id is required"}}
            )
        return f"{self._prefix}/{quote(id, safe='')}"

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise BackendTimeoutError(f"{method} {url} timed out", str(e)) from e
        except httpx.TransportError as e:
            raise BackendUnavailableError(f"{method} {url}", str(e), str(e)) from e

    def _raise_for_error(self, response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            raise error_from_dict(body)
        raise BackendUnavailableError(
            f"{response.request.method} {response.request.url.path}",
            f"HTTP {response.status_code}",
            response.text or None,
        )

    async def set(
        self,
        entity: dict[str, Any],
        *,
        user_identity: str | None = None,
        node_identity: str | None = None,
    ) -> None:
        response = await self._request(
            "POST",
            f"{self._prefix}/",
            json=entity,
            headers=self._headers(user_identity, node_identity),
        )
        self._raise_for_error(response)

    async def get(
        self,
        id: str,
        secondary_index: str | None = None,
        *,
        user_identity: str | None = None,
        node_identity: str | None = None,
    ) -> dict[str, Any] | None:
        params = {"secondaryIndex": secondary_index} if secondary_index else None
        response = await self._request(
            "GET",
            self._entity_url(id),
            params=params,
            headers=self._headers(user_identity, node_identity),
        )
        if response.status_code == 404:
            return None
        self._raise_for_error(response)
        return response.json()

    async def remove(
        self,
        id: str,
        *,
        user_identity: str | None = None,
        node_identity: str | None = None,
    ) -> None:
        response = await self._request(
            "DELETE",
            self._entity_url(id),
            headers=self._headers(user_identity, node_identity),
        )
        self._raise_for_error(response)

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
    ) -> QueryResult:
        """Query over HTTP. The routes accept a single sort key."""
        if sort_properties:
            keys = normalize_sort_properties(sort_properties)
            if order_by is not None or len(keys) > 1:
                raise InvalidConditionError("The REST interface accepts a single sort property")
            order_by, order_by_direction = keys[0].property, keys[0].direction

        params: dict[str, Any] = {}
        if conditions is not None:
            if isinstance(conditions, dict):
                conditions = condition_from_dict(conditions)
            params["conditions"] = encode_conditions(conditions)
        if order_by:
            params["orderBy"] = order_by
            if order_by_direction is not None:
                params["orderByDirection"] = parse_sort_direction(order_by_direction).value
        if properties:
            params["properties"] = ",".join(properties)
        if cursor:
            params["cursor"] = cursor
        if page_size is not None:
            params["pageSize"] = str(page_size)

        response = await self._request(
            "GET",
            f"{self._prefix}/",
            params=params,
            headers=self._headers(user_identity, node_identity),
        )
        self._raise_for_error(response)
        data = response.json()
        return QueryResult(
            entities=data.get("entities", []),
            cursor=data.get("cursor"),
            page_size=data.get("pageSize"),
            total_entities=data.get("totalEntities", 0),
        )

