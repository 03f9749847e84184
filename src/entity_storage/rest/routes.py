"""FastAPI bindings exposing an entity storage component over HTTP."""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import APIRouter, FastAPI, Request, status
from fastapi.responses import JSONResponse, Response

from entity_storage.conditions import decode_conditions
from entity_storage.config import RestConfig
from entity_storage.errors import EntityStorageError, InvalidConditionError, SchemaViolationError
from entity_storage.factory import ComponentFactory

logger = logging.getLogger(__name__)

STATUS_BY_KIND: dict[str, int] = {
    "unknown-schema": status.HTTP_400_BAD_REQUEST,
    "schema-violation": status.HTTP_400_BAD_REQUEST,
    "missing-primary-key": status.HTTP_400_BAD_REQUEST,
    "unknown-secondary-index": status.HTTP_400_BAD_REQUEST,
    "invalid-cursor": status.HTTP_400_BAD_REQUEST,
    "invalid-condition": status.HTTP_400_BAD_REQUEST,
    "missing-identity": status.HTTP_400_BAD_REQUEST,
    "schema-conflict": status.HTTP_409_CONFLICT,
    "cancelled": status.HTTP_503_SERVICE_UNAVAILABLE,
    "backend-timeout": status.HTTP_504_GATEWAY_TIMEOUT,
}


def status_for(error: EntityStorageError) -> int:
    """HTTP status for an error; store and bootstrap failures are 500."""
    return STATUS_BY_KIND.get(error.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)


async def entity_storage_error_handler(request: Request, exc: EntityStorageError) -> JSONResponse:
    code = status_for(exc)
    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=code, content=exc.to_dict())


def _parse_page_size(value: str | None) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        raise InvalidConditionError(f"pageSize must be an integer, got '{value}'") from None


def _parse_properties(value: str | None) -> list[str] | None:
    if value is None or value == "":
        return None
    return [p.strip() for p in value.split(",") if p.strip()]


def create_router(
    component_name: str = "entity-storage", config: RestConfig | None = None
) -> APIRouter:
    """Build the four entity storage routes under ``config.base_path``.

    The component is resolved from ``ComponentFactory`` on each request, so it
    may be registered after the router is built.
    """
    config = config or RestConfig()
    router = APIRouter(prefix=config.base_path.rstrip("/"), tags=list(config.tags))

    def identities(request: Request) -> dict[str, str | None]:
        return {
            "user_identity": request.headers.get(config.user_identity_header),
            "node_identity": request.headers.get(config.node_identity_header),
        }

    @router.post("/", status_code=status.HTTP_204_NO_CONTENT)
    async def entity_storage_set(request: Request) -> Response:
        try:
            entity = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise SchemaViolationError("Request body must be a JSON object", str(e)) from e
        component = ComponentFactory.get(component_name)
        await component.set(entity, **identities(request))
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @router.get("/")
    async def entity_storage_list(request: Request) -> dict[str, Any]:
        params = request.query_params
        token = params.get("conditions")
        conditions = decode_conditions(token) if token else None
        component = ComponentFactory.get(component_name)
        result = await component.query(
            conditions,
            params.get("orderBy") or None,
            params.get("orderByDirection") or None,
            _parse_properties(params.get("properties")),
            params.get("cursor") or None,
            _parse_page_size(params.get("pageSize")),
            **identities(request),
        )
        return result.to_dict()

    @router.get("/{id:path}")
    async def entity_storage_get(id: str, request: Request) -> Any:
        secondary_index = request.query_params.get("secondaryIndex") or None
        component = ComponentFactory.get(component_name)
        entity = await component.get(id, secondary_index, **identities(request))
        if entity is None:
            return JSONResponse(
                status_code=status.HTTP_404_NOT_FOUND,
                content={"error": {"kind": "not-found", "message": f"Entity '{id}' not found"}},
            )
        return entity

    @router.delete("/{id:path}", status_code=status.HTTP_204_NO_CONTENT)
    async def entity_storage_remove(id: str, request: Request) -> Response:
        component = ComponentFactory.get(component_name)
        await component.remove(id, **identities(request))
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    return router


def install_error_handler(app: FastAPI) -> None:
    """Render EntityStorageError as the ``{"error": {...}}`` body with its mapped status."""
    app.add_exception_handler(EntityStorageError, entity_storage_error_handler)


def create_app(
    component_name: str = "entity-storage",
    config: RestConfig | None = None,
    *,
    bootstrap: bool = False,
) -> FastAPI:
    """Build a FastAPI app serving one component.

    With ``bootstrap=True`` the component is bootstrapped at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if bootstrap:
            await ComponentFactory.get(component_name).bootstrap()
        yield

    app = FastAPI(title="Entity Storage", lifespan=lifespan)
    app.include_router(create_router(component_name, config))
    install_error_handler(app)
    return app
