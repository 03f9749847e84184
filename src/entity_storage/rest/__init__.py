"""REST surface: FastAPI routes and the matching HTTP client."""

from entity_storage.rest.client import EntityStorageClient
from entity_storage.rest.routes import (
    STATUS_BY_KIND,
    create_app,
    create_router,
    install_error_handler,
    status_for,
)

__all__ = [
    "EntityStorageClient",
    "STATUS_BY_KIND",
    "create_app",
    "create_router",
    "install_error_handler",
    "status_for",
]
