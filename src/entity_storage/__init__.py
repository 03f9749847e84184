"""Entity storage: one contract for schema-described records over pluggable engines."""

__version__ = "0.1.0"

from entity_storage.component import EntityStorageComponent
from entity_storage.conditions import (
    ComparisonCondition,
    ComparisonOperator,
    Condition,
    LogicalCondition,
    LogicalOperator,
    and_,
    condition_from_dict,
    condition_to_dict,
    decode_conditions,
    encode_conditions,
    evaluate,
    or_,
    prop,
)
from entity_storage.config import (
    ConnectorOptions,
    EntityStorageComponentConfig,
    FileEntityStorageConnectorConfig,
    MemoryEntityStorageConnectorConfig,
    RestConfig,
)
from entity_storage.connectors import (
    EntityStorageConnector,
    FileEntityStorageConnector,
    MemoryEntityStorageConnector,
)
from entity_storage.errors import (
    BackendTimeoutError,
    BackendUnavailableError,
    BootstrapFailedError,
    ConfigurationError,
    CorruptStoreError,
    EntityStorageError,
    InvalidConditionError,
    InvalidCursorError,
    MissingIdentityError,
    MissingPrimaryKeyError,
    NotBootstrappedError,
    OperationCancelledError,
    SchemaConflictError,
    SchemaViolationError,
    UnknownSchemaError,
    UnknownSecondaryIndexError,
)
from entity_storage.factory import ComponentFactory, EntityStorageConnectorFactory, Factory
from entity_storage.query import QueryResult, SortProperty, execute_query
from entity_storage.schema import (
    EntityDescriptor,
    EntityProperty,
    PropertyType,
    SchemaRegistry,
    SortDirection,
    get_schema,
    register_schema,
    schema_registry,
)

__all__ = [
    "__version__",
    "EntityProperty",
    "EntityDescriptor",
    "PropertyType",
    "SortDirection",
    "SchemaRegistry",
    "schema_registry",
    "register_schema",
    "get_schema",
    "Condition",
    "ComparisonCondition",
    "ComparisonOperator",
    "LogicalCondition",
    "LogicalOperator",
    "prop",
    "and_",
    "or_",
    "evaluate",
    "condition_to_dict",
    "condition_from_dict",
    "encode_conditions",
    "decode_conditions",
    "SortProperty",
    "QueryResult",
    "execute_query",
    "ConnectorOptions",
    "MemoryEntityStorageConnectorConfig",
    "FileEntityStorageConnectorConfig",
    "EntityStorageComponentConfig",
    "RestConfig",
    "EntityStorageConnector",
    "MemoryEntityStorageConnector",
    "FileEntityStorageConnector",
    "Factory",
    "EntityStorageConnectorFactory",
    "ComponentFactory",
    "EntityStorageComponent",
    "EntityStorageError",
    "ConfigurationError",
    "UnknownSchemaError",
    "SchemaConflictError",
    "SchemaViolationError",
    "MissingPrimaryKeyError",
    "UnknownSecondaryIndexError",
    "NotBootstrappedError",
    "BootstrapFailedError",
    "CorruptStoreError",
    "BackendUnavailableError",
    "BackendTimeoutError",
    "OperationCancelledError",
    "InvalidCursorError",
    "InvalidConditionError",
    "MissingIdentityError",
]
