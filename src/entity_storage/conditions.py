"""Condition expressions over entity properties and their evaluator."""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from entity_storage.errors import InvalidConditionError
from entity_storage.schema import EntityDescriptor, PropertyType


class ComparisonOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not-equals"
    LESS_THAN = "less-than"
    LESS_THAN_OR_EQUAL = "less-than-or-equal"
    GREATER_THAN = "greater-than"
    GREATER_THAN_OR_EQUAL = "greater-than-or-equal"
    IN = "in"
    CONTAINS = "contains"
    STARTS_WITH = "starts-with"
    ENDS_WITH = "ends-with"


class LogicalOperator(str, Enum):
    AND = "and"
    OR = "or"


_OPERATOR_ALIASES: dict[str, ComparisonOperator] = {
    "==": ComparisonOperator.EQUALS,
    "=": ComparisonOperator.EQUALS,
    "!=": ComparisonOperator.NOT_EQUALS,
    "<": ComparisonOperator.LESS_THAN,
    "<=": ComparisonOperator.LESS_THAN_OR_EQUAL,
    ">": ComparisonOperator.GREATER_THAN,
    ">=": ComparisonOperator.GREATER_THAN_OR_EQUAL,
    "eq": ComparisonOperator.EQUALS,
    "ne": ComparisonOperator.NOT_EQUALS,
    "lt": ComparisonOperator.LESS_THAN,
    "lte": ComparisonOperator.LESS_THAN_OR_EQUAL,
    "gt": ComparisonOperator.GREATER_THAN,
    "gte": ComparisonOperator.GREATER_THAN_OR_EQUAL,
}

_STRING_OPERATORS = {
    ComparisonOperator.CONTAINS,
    ComparisonOperator.STARTS_WITH,
    ComparisonOperator.ENDS_WITH,
}


def parse_operator(value: str | ComparisonOperator) -> ComparisonOperator:
    if isinstance(value, ComparisonOperator):
        return value
    op = _OPERATOR_ALIASES.get(value)
    if op is not None:
        return op
    try:
        return ComparisonOperator(value)
    except ValueError:
        valid = ", ".join(o.value for o in ComparisonOperator)
        raise InvalidConditionError(
            f"Unknown comparison operator '{value}'. Valid operators: {valid}"
        ) from None


def parse_logical_operator(value: str | LogicalOperator) -> LogicalOperator:
    if isinstance(value, LogicalOperator):
        return value
    try:
        return LogicalOperator(str(value).lower())
    except ValueError:
        raise InvalidConditionError(
            f"Unknown logical operator '{value}'. Use 'and' or 'or'"
        ) from None


class Condition:
    """Base class for condition expressions."""

    def __and__(self, other: Condition) -> LogicalCondition:
        return LogicalCondition(LogicalOperator.AND, [self, other])

    def __or__(self, other: Condition) -> LogicalCondition:
        return LogicalCondition(LogicalOperator.OR, [self, other])


@dataclass(eq=False)
class ComparisonCondition(Condition):
    """A comparison between a property and a value."""

    property: str
    operator: ComparisonOperator
    value: Any = None

    def __post_init__(self) -> None:
        self.operator = parse_operator(self.operator)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ComparisonCondition):
            return NotImplemented
        return (
            self.property == other.property
            and self.operator == other.operator
            and self.value == other.value
        )

    def __hash__(self) -> int:
        v = self.value
        if isinstance(v, list):
            v = tuple(v)
        return hash((self.property, self.operator, v))


@dataclass
class LogicalCondition(Condition):
    """A logical combination of conditions."""

    operator: LogicalOperator
    children: list[Condition] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.operator = parse_logical_operator(self.operator)


class PropertyRef:
    """Proxy that builds conditions from Python operators.

    Usage: (prop("n") >= 2) & (prop("n") < 3)
    """

    def __init__(self, name: str) -> None:
        self._name = name

    def __eq__(self, other: object) -> ComparisonCondition:  # type: ignore[override]
        return ComparisonCondition(self._name, ComparisonOperator.EQUALS, other)

    def __ne__(self, other: object) -> ComparisonCondition:  # type: ignore[override]
        return ComparisonCondition(self._name, ComparisonOperator.NOT_EQUALS, other)

    def __lt__(self, other: Any) -> ComparisonCondition:
        return ComparisonCondition(self._name, ComparisonOperator.LESS_THAN, other)

    def __le__(self, other: Any) -> ComparisonCondition:
        return ComparisonCondition(self._name, ComparisonOperator.LESS_THAN_OR_EQUAL, other)

    def __gt__(self, other: Any) -> ComparisonCondition:
        return ComparisonCondition(self._name, ComparisonOperator.GREATER_THAN, other)

    def __ge__(self, other: Any) -> ComparisonCondition:
        return ComparisonCondition(self._name, ComparisonOperator.GREATER_THAN_OR_EQUAL, other)

    def in_(self, values: list[Any]) -> ComparisonCondition:
        return ComparisonCondition(self._name, ComparisonOperator.IN, list(values))

    def contains(self, substring: str) -> ComparisonCondition:
        return ComparisonCondition(self._name, ComparisonOperator.CONTAINS, substring)

    def startswith(self, prefix: str) -> ComparisonCondition:
        return ComparisonCondition(self._name, ComparisonOperator.STARTS_WITH, prefix)

    def endswith(self, suffix: str) -> ComparisonCondition:
        return ComparisonCondition(self._name, ComparisonOperator.ENDS_WITH, suffix)

    __hash__ = None  # type: ignore[assignment]


def prop(name: str) -> PropertyRef:
    return PropertyRef(name)


def and_(*children: Condition) -> LogicalCondition:
    return LogicalCondition(LogicalOperator.AND, list(children))


def or_(*children: Condition) -> LogicalCondition:
    return LogicalCondition(LogicalOperator.OR, list(children))


# --- Serialisation ---


def condition_to_dict(condition: Condition) -> dict[str, Any]:
    if isinstance(condition, ComparisonCondition):
        return {
            "property": condition.property,
            "comparison": condition.operator.value,
            "value": condition.value,
        }
    if isinstance(condition, LogicalCondition):
        return {
            "logicalOperator": condition.operator.value,
            "conditions": [condition_to_dict(c) for c in condition.children],
        }
    raise InvalidConditionError(f"Unknown condition type: {type(condition).__name__}")


def condition_from_dict(data: Any) -> Condition:
    """Rebuild a condition tree from its JSON form."""
    if not isinstance(data, dict):
        raise InvalidConditionError(f"Condition must be an object, got {type(data).__name__}")
    if "conditions" in data:
        children = data["conditions"]
        if not isinstance(children, list):
            raise InvalidConditionError("'conditions' must be a list")
        return LogicalCondition(
            data.get("logicalOperator", LogicalOperator.AND.value),
            [condition_from_dict(c) for c in children],
        )
    if "property" in data and "comparison" in data:
        if not isinstance(data["property"], str):
            raise InvalidConditionError("'property' must be a string")
        return ComparisonCondition(data["property"], data["comparison"], data.get("value"))
    raise InvalidConditionError(
        "Condition must have either 'conditions' or 'property' and 'comparison'"
    )


def encode_conditions(condition: Condition) -> str:
    """Encode a condition tree as a URL-safe token."""
    raw = json.dumps(condition_to_dict(condition), separators=(",", ":"), default=str)
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def decode_conditions(token: str) -> Condition:
    """Decode a token from encode_conditions(); plain JSON is accepted too."""
    text = token.strip()
    if not text.startswith("{"):
        try:
            padded = text + "=" * (-len(text) % 4)
            text = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
        except (binascii.Error, UnicodeError, ValueError) as e:
            raise InvalidConditionError(f"Conditions token could not be decoded: {e}") from e
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise InvalidConditionError(f"Conditions are not valid JSON: {e}") from e
    return condition_from_dict(data)


# --- Validation ---

_VALUE_TYPES: dict[PropertyType, tuple[type, ...]] = {
    PropertyType.STRING: (str,),
    PropertyType.INTEGER: (int,),
    PropertyType.FLOAT: (int, float),
    PropertyType.BOOLEAN: (bool,),
    PropertyType.TIMESTAMP: (str, int, float, datetime),
    PropertyType.BLOB: (str,),
    PropertyType.OBJECT: (dict,),
}


def _value_matches(prop_type: PropertyType, item_type: PropertyType | None, value: Any) -> bool:
    if value is None:
        return True
    if prop_type is PropertyType.ARRAY:
        # equality against a whole list, or membership tests against an item
        if isinstance(value, list):
            return all(_value_matches(item_type, None, v) for v in value)  # type: ignore[arg-type]
        return _value_matches(item_type, None, value)  # type: ignore[arg-type]
    allowed = _VALUE_TYPES[prop_type]
    if isinstance(value, bool) and bool not in allowed:
        return False
    return isinstance(value, allowed)


def validate_condition(condition: Condition, descriptor: EntityDescriptor) -> None:
    """Check that a condition only references schema properties with compatible values."""
    if isinstance(condition, LogicalCondition):
        for child in condition.children:
            validate_condition(child, descriptor)
        return
    if not isinstance(condition, ComparisonCondition):
        raise InvalidConditionError(f"Unknown condition type: {type(condition).__name__}")

    schema_prop = descriptor.get_property(condition.property)
    if schema_prop is None:
        raise InvalidConditionError(
            f"Property '{condition.property}' does not exist in schema '{descriptor.name}'. "
            f"Available properties: {', '.join(descriptor.property_names)}"
        )

    op = condition.operator
    if op is ComparisonOperator.IN:
        if not isinstance(condition.value, list):
            raise InvalidConditionError(
                f"Operator 'in' on '{condition.property}' requires a list value"
            )
        values: list[Any] = condition.value
    else:
        values = [condition.value]

    if op in _STRING_OPERATORS and not isinstance(condition.value, str):
        raise InvalidConditionError(
            f"Operator '{op.value}' on '{condition.property}' requires a string value"
        )

    for value in values:
        if not _value_matches(schema_prop.type, schema_prop.item_type, value):
            raise InvalidConditionError(
                f"Value {value!r} is not compatible with property '{condition.property}' "
                f"of type {schema_prop.type.value}"
            )
        if schema_prop.type is PropertyType.TIMESTAMP and op not in _STRING_OPERATORS:
            to_instant(value)


# --- Evaluation ---

_MISSING = object()


# the lax parser entity validation applies to timestamp properties
_INSTANT = TypeAdapter(datetime)


def to_instant(value: Any) -> datetime | None:
    """Parse a timestamp value: ISO-8601 text, or epoch seconds or milliseconds.

    Naive results are taken as UTC.
    """
    if value is None:
        return None
    try:
        instant = _INSTANT.validate_python(value)
    except PydanticValidationError as e:
        raise InvalidConditionError(f"{value!r} is not a valid timestamp") from e
    return instant if instant.tzinfo else instant.replace(tzinfo=timezone.utc)


def _compare(op: ComparisonOperator, left: Any, right: Any) -> bool:
    if op is ComparisonOperator.EQUALS:
        return bool(left == right)
    if op is ComparisonOperator.NOT_EQUALS:
        return bool(left != right)
    if op is ComparisonOperator.IN:
        return isinstance(right, list) and any(left == v for v in right)
    if op in _STRING_OPERATORS:
        if not isinstance(left, str) or not isinstance(right, str):
            return False
        if op is ComparisonOperator.CONTAINS:
            return right in left
        if op is ComparisonOperator.STARTS_WITH:
            return left.startswith(right)
        return left.endswith(right)
    try:
        if op is ComparisonOperator.LESS_THAN:
            return bool(left < right)
        if op is ComparisonOperator.LESS_THAN_OR_EQUAL:
            return bool(left <= right)
        if op is ComparisonOperator.GREATER_THAN:
            return bool(left > right)
        return bool(left >= right)
    except TypeError:
        # incomparable values never match an ordering comparison
        return False


def evaluate(
    record: dict[str, Any],
    condition: Condition | None,
    descriptor: EntityDescriptor | None = None,
) -> bool:
    """Evaluate a condition against a record.

    A missing property is false for every operator except not-equals.
    AND over no children is true, OR over no children is false.
    """
    if condition is None:
        return True
    if isinstance(condition, LogicalCondition):
        if condition.operator is LogicalOperator.AND:
            return all(evaluate(record, c, descriptor) for c in condition.children)
        return any(evaluate(record, c, descriptor) for c in condition.children)
    if not isinstance(condition, ComparisonCondition):
        raise InvalidConditionError(f"Unknown condition type: {type(condition).__name__}")

    left = record.get(condition.property, _MISSING)
    op = condition.operator
    if left is _MISSING:
        return op is ComparisonOperator.NOT_EQUALS

    right = condition.value
    schema_prop = descriptor.get_property(condition.property) if descriptor else None
    if (
        schema_prop is not None
        and schema_prop.type is PropertyType.TIMESTAMP
        and op not in _STRING_OPERATORS
    ):
        left = to_instant(left)
        right = [to_instant(v) for v in right] if isinstance(right, list) else to_instant(right)
    elif (
        schema_prop is not None
        and schema_prop.type is PropertyType.ARRAY
        and isinstance(left, list)
        and not isinstance(right, list)
        and op in (ComparisonOperator.EQUALS, ComparisonOperator.CONTAINS)
    ):
        # array membership
        return right in left

    return _compare(op, left, right)

