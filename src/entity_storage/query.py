"""Backend-agnostic query execution: filter, sort, page and project records."""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable, Sequence

from entity_storage.conditions import Condition, evaluate, to_instant, validate_condition
from entity_storage.errors import (
    InvalidConditionError,
    InvalidCursorError,
    OperationCancelledError,
)
from entity_storage.schema import (
    EntityDescriptor,
    PropertyType,
    SortDirection,
    parse_sort_direction,
    project,
)

if TYPE_CHECKING:
    import asyncio

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

_UNSORTABLE = {PropertyType.OBJECT, PropertyType.ARRAY}


def text_sort_key(value: str) -> tuple[int, int, str]:
    """Sort key for string values: all-digit strings first, by numeric value."""
    if value.isascii() and value.isdigit():
        return (0, int(value), value)
    return (1, 0, value)


@dataclass
class SortProperty:
    """A single sort key."""

    property: str
    direction: SortDirection = SortDirection.ASC

    def __post_init__(self) -> None:
        self.direction = parse_sort_direction(self.direction)

    def to_dict(self) -> dict[str, str]:
        return {"property": self.property, "sortDirection": self.direction.value}


SortSpec = Sequence["SortProperty | dict[str, Any] | tuple[str, str]"]


@dataclass
class QueryResult:
    """One page of query results."""

    entities: list[dict[str, Any]] = field(default_factory=list)
    cursor: str | None = None
    page_size: int | None = None
    total_entities: int = 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"entities": self.entities}
        if self.cursor is not None:
            data["cursor"] = self.cursor
        if self.page_size is not None:
            data["pageSize"] = self.page_size
        data["totalEntities"] = self.total_entities
        return data


# --- Cursors ---


def encode_cursor(offset: int) -> str:
    raw = json.dumps({"offset": offset}, separators=(",", ":"))
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def decode_cursor(cursor: str | None) -> int:
    """Decode a cursor produced by encode_cursor(); None means the first page."""
    if cursor is None or cursor == "":
        return 0
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise InvalidCursorError(cursor) from e
    offset = data.get("offset") if isinstance(data, dict) else None
    if not isinstance(offset, int) or isinstance(offset, bool) or offset < 0:
        raise InvalidCursorError(cursor)
    return offset


def resolve_page_size(page_size: int | None) -> int:
    """Effective page size: absent means the default, large values are capped."""
    if page_size is None:
        return DEFAULT_PAGE_SIZE
    if isinstance(page_size, bool) or not isinstance(page_size, int) or page_size < 1:
        raise InvalidConditionError(f"pageSize must be a positive integer, got {page_size!r}")
    return min(page_size, MAX_PAGE_SIZE)


# --- Sorting ---


def normalize_sort_properties(sort_properties: SortSpec | None) -> list[SortProperty]:
    """Accept SortProperty objects, {"property", "sortDirection"} dicts or (name, dir) pairs."""
    if not sort_properties:
        return []
    result: list[SortProperty] = []
    for item in sort_properties:
        if isinstance(item, SortProperty):
            result.append(item)
        elif isinstance(item, dict):
            direction = item.get("sortDirection", item.get("direction", SortDirection.ASC))
            result.append(SortProperty(item["property"], direction))
        else:
            name, direction = item
            result.append(SortProperty(name, direction))
    return result


def build_sort_keys(
    descriptor: EntityDescriptor, sort_properties: SortSpec | None = None
) -> list[SortProperty]:
    """Resolve the effective sort keys for a query.

    Explicit keys win, then the descriptor's sort defaults. The primary key
    ascending is always the final tie-break.
    """
    try:
        keys = normalize_sort_properties(sort_properties)
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidConditionError(f"Invalid sort properties: {e}") from e

    if not keys:
        keys = [SortProperty(name, direction) for name, direction in descriptor.sort_defaults]

    for key in keys:
        schema_prop = descriptor.get_property(key.property)
        if schema_prop is None:
            raise InvalidConditionError(
                f"Cannot sort by '{key.property}': not a property of '{descriptor.name}'"
            )
        if schema_prop.type in _UNSORTABLE:
            raise InvalidConditionError(
                f"Cannot sort by '{key.property}': {schema_prop.type.value} is not orderable"
            )

    pk = descriptor.primary_key.name
    if not any(k.property == pk for k in keys):
        keys = [*keys, SortProperty(pk, SortDirection.ASC)]
    return keys


def sort_records(
    records: list[dict[str, Any]],
    sort_keys: list[SortProperty],
    descriptor: EntityDescriptor,
) -> list[dict[str, Any]]:
    """Stable multi-key sort. Missing values order before present ones."""
    ordered = list(records)
    for key in reversed(sort_keys):
        schema_prop = descriptor.get_property(key.property)
        is_timestamp = schema_prop is not None and schema_prop.type is PropertyType.TIMESTAMP
        is_text = schema_prop is not None and schema_prop.type is PropertyType.STRING

        def sort_value(
            record: dict[str, Any],
            name: str = key.property,
            is_timestamp: bool = is_timestamp,
            is_text: bool = is_text,
        ) -> tuple[int, Any]:
            value = record.get(name)
            if value is None:
                return (0, 0)
            if is_timestamp:
                value = to_instant(value)
            elif is_text and isinstance(value, str):
                value = text_sort_key(value)
            return (1, value)

        try:
            ordered.sort(key=sort_value, reverse=key.direction is SortDirection.DESC)
        except TypeError as e:
            raise InvalidConditionError(
                f"Values of '{key.property}' cannot be ordered against each other"
            ) from e
    return ordered


# --- Execution ---


def _check_cancelled(cancel_event: asyncio.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise OperationCancelledError("query")


def execute_query(
    records: Iterable[dict[str, Any]],
    descriptor: EntityDescriptor,
    conditions: Condition | None = None,
    sort_properties: SortSpec | None = None,
    properties: list[str] | None = None,
    cursor: str | None = None,
    page_size: int | None = None,
    *,
    cancel_event: asyncio.Event | None = None,
) -> QueryResult:
    """Run a query over an in-memory sequence of records.

    The total is counted after filtering. The cursor encodes the exclusive
    offset into the sorted, filtered sequence and is only present when more
    records follow the returned page.
    """
    if conditions is not None:
        validate_condition(conditions, descriptor)
    sort_keys = build_sort_keys(descriptor, sort_properties)
    offset = decode_cursor(cursor)
    size = resolve_page_size(page_size)

    matched: list[dict[str, Any]] = []
    for record in records:
        _check_cancelled(cancel_event)
        if evaluate(record, conditions, descriptor):
            matched.append(record)

    _check_cancelled(cancel_event)
    ordered = sort_records(matched, sort_keys, descriptor)
    total = len(ordered)

    page = ordered[offset : offset + size]
    end = offset + len(page)
    next_cursor = encode_cursor(end) if page and end < total else None

    logger.debug("query matched %d records, returning %d from offset %d", total, len(page), offset)
    return QueryResult(
        entities=[project(r, properties) for r in page],
        cursor=next_cursor,
        page_size=size,
        total_entities=total,
    )
