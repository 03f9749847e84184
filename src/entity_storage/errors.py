"""Structured error types for entity storage.

Every error carries a ``kind`` tag. The tags are the wire-level taxonomy used
by the REST adapter and the REST client to round-trip failures.
"""

from __future__ import annotations

from typing import Any


class EntityStorageError(Exception):
    """Base error for all entity storage errors."""

    kind: str = "entity-storage-error"

    def __init__(self, message: str, cause: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause

    def to_dict(self) -> dict[str, Any]:
        """Return the error as the JSON body used by the REST adapter."""
        body: dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.cause is not None:
            cause = self.cause
            body["cause"] = cause if isinstance(cause, (str, list, dict)) else str(cause)
        return {"error": body}


class ConfigurationError(EntityStorageError):
    """Raised when constructor options are invalid."""

    kind = "configuration"


class UnknownSchemaError(EntityStorageError):
    """Raised when a schema name is not registered."""

    kind = "unknown-schema"

    def __init__(self, schema_name: str, available: list[str] | None = None) -> None:
        self.schema_name = schema_name
        self.available = available or []
        if self.available:
            message = (
                f"Schema '{schema_name}' is not registered. "
                f"Registered schemas: {', '.join(self.available)}"
            )
        else:
            message = f"Schema '{schema_name}' is not registered. No schemas registered yet."
        super().__init__(message)


class SchemaConflictError(EntityStorageError):
    """Raised when a different descriptor is registered under an existing name."""

    kind = "schema-conflict"

    def __init__(self, schema_name: str) -> None:
        self.schema_name = schema_name
        super().__init__(
            f"Schema '{schema_name}' is already registered with a different descriptor"
        )


class SchemaViolationError(EntityStorageError):
    """Raised when an entity does not conform to its schema."""

    kind = "schema-violation"


class MissingPrimaryKeyError(EntityStorageError):
    """Raised when an entity has no value for its primary key property."""

    kind = "missing-primary-key"

    def __init__(self, schema_name: str, property_name: str) -> None:
        self.schema_name = schema_name
        self.property_name = property_name
        super().__init__(
            f"Entity of schema '{schema_name}' is missing primary key '{property_name}'"
        )


class UnknownSecondaryIndexError(EntityStorageError):
    """Raised when a lookup uses a property that is not marked as indexable."""

    kind = "unknown-secondary-index"

    def __init__(self, schema_name: str, property_name: str, available: list[str]) -> None:
        self.schema_name = schema_name
        self.property_name = property_name
        self.available = available
        indexes = ", ".join(available) if available else "none"
        super().__init__(
            f"Property '{property_name}' is not a secondary index of '{schema_name}'. "
            f"Secondary indexes: {indexes}"
        )


class NotBootstrappedError(EntityStorageError):
    """Raised when a data operation runs before bootstrap()."""

    kind = "not-bootstrapped"

    def __init__(self, connector_name: str) -> None:
        self.connector_name = connector_name
        super().__init__(f"{connector_name} has not been bootstrapped; call bootstrap() first")


class BootstrapFailedError(EntityStorageError):
    """Raised when a connector cannot initialise its backend."""

    kind = "bootstrap-failed"


class CorruptStoreError(EntityStorageError):
    """Raised when a stored partition cannot be decoded."""

    kind = "corrupt-store"

    def __init__(self, path: str, cause: Any = None) -> None:
        self.path = path
        super().__init__(f"Store file '{path}' could not be decoded", cause)


class BackendUnavailableError(EntityStorageError):
    """Raised when backend storage operations fail."""

    kind = "backend-unavailable"

    def __init__(self, operation: str, detail: str, cause: Any = None) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage backend error during {operation}: {detail}", cause)


class BackendTimeoutError(EntityStorageError):
    """Raised when a backend does not answer within its configured timeout."""

    kind = "backend-timeout"


class OperationCancelledError(EntityStorageError):
    """Raised when a caller cancels an operation in progress."""

    kind = "cancelled"

    def __init__(self, operation: str = "query") -> None:
        self.operation = operation
        super().__init__(f"Operation '{operation}' was cancelled")


class InvalidCursorError(EntityStorageError):
    """Raised when a paging cursor cannot be decoded."""

    kind = "invalid-cursor"

    def __init__(self, cursor: str) -> None:
        self.cursor = cursor
        super().__init__(f"Cursor '{cursor}' is not a valid page cursor")


class InvalidConditionError(EntityStorageError):
    """Raised when a condition tree is malformed or does not match the schema."""

    kind = "invalid-condition"


class MissingIdentityError(EntityStorageError):
    """Raised when a required identity is not supplied."""

    kind = "missing-identity"

    def __init__(self, identity_name: str) -> None:
        self.identity_name = identity_name
        super().__init__(f"The {identity_name} is required for entity storage operations")


ERROR_KINDS: dict[str, type[EntityStorageError]] = {
    cls.kind: cls
    for cls in (
        ConfigurationError,
        UnknownSchemaError,
        SchemaConflictError,
        SchemaViolationError,
        MissingPrimaryKeyError,
        UnknownSecondaryIndexError,
        NotBootstrappedError,
        BootstrapFailedError,
        CorruptStoreError,
        BackendUnavailableError,
        BackendTimeoutError,
        OperationCancelledError,
        InvalidCursorError,
        InvalidConditionError,
        MissingIdentityError,
    )
}


def error_from_dict(body: dict[str, Any]) -> EntityStorageError:
    """Rebuild an error from its REST body without calling subclass constructors."""
    payload = body.get("error", body)
    kind = str(payload.get("kind", EntityStorageError.kind))
    message = str(payload.get("message", "Unknown entity storage error"))
    cls = ERROR_KINDS.get(kind, EntityStorageError)
    err = cls.__new__(cls)
    EntityStorageError.__init__(err, message, payload.get("cause"))
    return err
