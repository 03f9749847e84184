"""Entity descriptors, the process-wide schema registry and record validation."""

from __future__ import annotations

import copy
import json
import threading
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from functools import lru_cache
from typing import Annotated, Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, create_model
from pydantic import Field as PydanticField
from pydantic import ValidationError as PydanticValidationError

from entity_storage.errors import (
    MissingPrimaryKeyError,
    SchemaConflictError,
    SchemaViolationError,
    UnknownSchemaError,
    UnknownSecondaryIndexError,
)


class PropertyType(str, Enum):
    """Closed set of semantic property types."""

    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    BLOB = "blob"
    OBJECT = "object"
    ARRAY = "array"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


_TYPE_ALIASES: dict[str, PropertyType] = {
    "number": PropertyType.FLOAT,
    "floating": PropertyType.FLOAT,
    "datetime": PropertyType.TIMESTAMP,
    "opaque-blob": PropertyType.BLOB,
    "nested-object": PropertyType.OBJECT,
    "list": PropertyType.ARRAY,
}


def parse_property_type(value: str | PropertyType) -> PropertyType:
    """Resolve a type name (or alias) to a PropertyType."""
    if isinstance(value, PropertyType):
        return value
    try:
        return PropertyType(value)
    except ValueError:
        if value in _TYPE_ALIASES:
            return _TYPE_ALIASES[value]
        valid = ", ".join(t.value for t in PropertyType)
        raise ValueError(f"Unknown property type '{value}'. Valid types: {valid}") from None


def parse_sort_direction(value: str | SortDirection) -> SortDirection:
    if isinstance(value, SortDirection):
        return value
    try:
        return SortDirection(str(value).lower())
    except ValueError:
        raise ValueError(f"Unknown sort direction '{value}'. Use 'asc' or 'desc'") from None


@dataclass(frozen=True)
class EntityProperty:
    """One property of an entity descriptor."""

    name: str
    type: PropertyType
    primary_key: bool = False
    secondary_index: bool = False
    optional: bool = False
    sort_direction: SortDirection | None = None
    item_type: PropertyType | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", parse_property_type(self.type))
        if self.item_type is not None:
            object.__setattr__(self, "item_type", parse_property_type(self.item_type))
        if self.sort_direction is not None:
            object.__setattr__(self, "sort_direction", parse_sort_direction(self.sort_direction))
        if not self.name:
            raise ValueError("Property name must not be empty")
        if self.type is PropertyType.ARRAY and self.item_type is None:
            raise ValueError(f"Array property '{self.name}' requires an item_type")
        if self.item_type is PropertyType.ARRAY:
            raise ValueError(f"Array property '{self.name}' cannot nest arrays")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"property": self.name, "type": self.type.value}
        if self.primary_key:
            data["isPrimary"] = True
        if self.secondary_index:
            data["isSecondary"] = True
        if self.optional:
            data["optional"] = True
        if self.sort_direction is not None:
            data["sortDirection"] = self.sort_direction.value
        if self.item_type is not None:
            data["itemType"] = self.item_type.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EntityProperty:
        return cls(
            name=data.get("property") or data.get("name") or "",
            type=data["type"],
            primary_key=bool(data.get("isPrimary", data.get("primary_key", False))),
            secondary_index=bool(data.get("isSecondary", data.get("secondary_index", False))),
            optional=bool(data.get("optional", False)),
            sort_direction=data.get("sortDirection", data.get("sort_direction")),
            item_type=data.get("itemType", data.get("item_type")),
        )


@dataclass(frozen=True)
class EntityDescriptor:
    """A named schema: an ordered list of properties with exactly one primary key."""

    name: str
    properties: tuple[EntityProperty, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        props = tuple(self.properties)
        object.__setattr__(self, "properties", props)
        if not self.name:
            raise ValueError("Schema name must not be empty")

        names = [p.name for p in props]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ValueError(f"Schema '{self.name}' has duplicate properties: {dupes}")

        pk_props = [p for p in props if p.primary_key]
        if len(pk_props) == 0:
            raise ValueError(f"Schema '{self.name}' must define exactly one primary key property")
        if len(pk_props) > 1:
            raise ValueError(
                f"Schema '{self.name}' has multiple primary keys: {[p.name for p in pk_props]}"
            )
        pk = pk_props[0]
        if pk.type is not PropertyType.STRING:
            raise ValueError(
                f"Schema '{self.name}' primary key '{pk.name}' must be of type string"
            )
        if pk.optional:
            raise ValueError(f"Schema '{self.name}' primary key '{pk.name}' cannot be optional")
        for prop in props:
            if prop.secondary_index and prop.type is not PropertyType.STRING:
                raise ValueError(
                    f"Schema '{self.name}' secondary index '{prop.name}' must be of type string"
                )

    @property
    def primary_key(self) -> EntityProperty:
        return next(p for p in self.properties if p.primary_key)

    @property
    def secondary_indexes(self) -> list[str]:
        return [p.name for p in self.properties if p.secondary_index]

    @property
    def property_names(self) -> list[str]:
        return [p.name for p in self.properties]

    @property
    def sort_defaults(self) -> list[tuple[str, SortDirection]]:
        return [(p.name, p.sort_direction) for p in self.properties if p.sort_direction]

    def get_property(self, name: str) -> EntityProperty | None:
        for prop in self.properties:
            if prop.name == name:
                return prop
        return None

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "properties": [p.to_dict() for p in self.properties]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EntityDescriptor:
        name = data.get("name") or data.get("type") or ""
        return cls(
            name=name,
            properties=tuple(EntityProperty.from_dict(p) for p in data.get("properties", [])),
        )


# --- Registry ---


class SchemaRegistry:
    """Mapping from schema name to descriptor, safe to share across threads."""

    def __init__(self) -> None:
        self._schemas: dict[str, EntityDescriptor] = {}
        self._lock = threading.Lock()

    def register(self, name: str, descriptor: EntityDescriptor) -> EntityDescriptor:
        """Register a descriptor. Idempotent for an identical descriptor."""
        with self._lock:
            existing = self._schemas.get(name)
            if existing is not None:
                if existing != descriptor:
                    raise SchemaConflictError(name)
                return existing
            self._schemas[name] = descriptor
            return descriptor

    def lookup(self, name: str) -> EntityDescriptor:
        with self._lock:
            descriptor = self._schemas.get(name)
            if descriptor is None:
                raise UnknownSchemaError(name, sorted(self._schemas))
            return descriptor

    def unregister(self, name: str) -> None:
        with self._lock:
            self._schemas.pop(name, None)

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._schemas)

    def clear(self) -> None:
        with self._lock:
            self._schemas.clear()

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._schemas


schema_registry = SchemaRegistry()


def register_schema(descriptor: EntityDescriptor, name: str | None = None) -> EntityDescriptor:
    """Register a descriptor on the process-wide registry under its own name."""
    return schema_registry.register(name or descriptor.name, descriptor)


def get_schema(name: str) -> EntityDescriptor:
    return schema_registry.lookup(name)


# --- Validation ---

_LAX = PydanticField(strict=False)

_SCALAR_ANNOTATIONS: dict[PropertyType, Any] = {
    PropertyType.STRING: str,
    PropertyType.INTEGER: int,
    PropertyType.FLOAT: float,
    PropertyType.BOOLEAN: bool,
    # ISO-8601 strings and epoch numbers are both accepted for timestamps
    PropertyType.TIMESTAMP: Annotated[datetime, _LAX],
    PropertyType.BLOB: str,
    PropertyType.OBJECT: dict[str, Any],
}


def _annotation_for(prop: EntityProperty) -> Any:
    if prop.type is PropertyType.ARRAY:
        assert prop.item_type is not None
        return list[_SCALAR_ANNOTATIONS[prop.item_type]]  # type: ignore[misc]
    return _SCALAR_ANNOTATIONS[prop.type]


@lru_cache(maxsize=256)
def build_validation_model(descriptor: EntityDescriptor) -> type[BaseModel]:
    """Build a strict Pydantic model from a descriptor."""
    pydantic_fields: dict[str, Any] = {}
    for prop in descriptor.properties:
        ann = _annotation_for(prop)
        if prop.optional:
            pydantic_fields[prop.name] = (Optional[ann], None)
        else:
            pydantic_fields[prop.name] = (ann, ...)

    return create_model(  # type: ignore[call-overload]
        f"_{descriptor.name}Model",
        __config__=ConfigDict(strict=True, extra="forbid"),
        **pydantic_fields,
    )


def _format_errors(err: PydanticValidationError) -> list[dict[str, str]]:
    return [
        {"property": ".".join(str(p) for p in e["loc"]), "message": e["msg"]}
        for e in err.errors()
    ]


def json_default(value: Any) -> Any:
    # datetimes are accepted for timestamp properties and stored as ISO-8601
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def validate_entity(descriptor: EntityDescriptor, entity: Any) -> None:
    """Check an entity against its descriptor.

    Raises MissingPrimaryKeyError when the key is absent or empty and
    SchemaViolationError for any other mismatch, including unknown properties.
    """
    if not isinstance(entity, dict):
        raise SchemaViolationError(
            f"Entity of schema '{descriptor.name}' must be an object, "
            f"got {type(entity).__name__}"
        )
    pk = descriptor.primary_key.name
    key = entity.get(pk)
    if key is None or key == "":
        raise MissingPrimaryKeyError(descriptor.name, pk)

    model = build_validation_model(descriptor)
    try:
        model.model_validate(entity)
    except PydanticValidationError as e:
        raise SchemaViolationError(
            f"Entity does not match schema '{descriptor.name}'", _format_errors(e)
        ) from e
    try:
        json.dumps(entity, default=json_default, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise SchemaViolationError(
            f"Entity of schema '{descriptor.name}' cannot be stored as JSON", str(e)
        ) from e


def primary_key_of(descriptor: EntityDescriptor, entity: dict[str, Any]) -> str:
    return entity[descriptor.primary_key.name]


def check_secondary_index(descriptor: EntityDescriptor, property_name: str) -> None:
    """Raise UnknownSecondaryIndexError unless the property is indexable."""
    indexes = descriptor.secondary_indexes
    if property_name not in indexes:
        raise UnknownSecondaryIndexError(descriptor.name, property_name, indexes)


def project(record: dict[str, Any], properties: Iterable[str] | None) -> dict[str, Any]:
    """Return a copy of the record, restricted to the requested properties."""
    if properties is None:
        return copy.deepcopy(record)
    return {p: copy.deepcopy(record[p]) for p in properties if p in record}
