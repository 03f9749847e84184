"""CLI condition parser: converts PROP OP VALUE_JSON triples to a condition tree."""

from __future__ import annotations

import json
from typing import Any

from entity_storage.conditions import (
    ComparisonCondition,
    ComparisonOperator,
    Condition,
    LogicalCondition,
    LogicalOperator,
)

# CLI operator tokens
_OP_MAP: dict[str, ComparisonOperator] = {
    "eq": ComparisonOperator.EQUALS,
    "ne": ComparisonOperator.NOT_EQUALS,
    "gt": ComparisonOperator.GREATER_THAN,
    "gte": ComparisonOperator.GREATER_THAN_OR_EQUAL,
    "lt": ComparisonOperator.LESS_THAN,
    "lte": ComparisonOperator.LESS_THAN_OR_EQUAL,
    "in": ComparisonOperator.IN,
    "contains": ComparisonOperator.CONTAINS,
    "starts-with": ComparisonOperator.STARTS_WITH,
    "ends-with": ComparisonOperator.ENDS_WITH,
}


def group_where_args(where_args: list[str] | None) -> list[tuple[str, str, str]]:
    """Group repeated --where values into (PROP, OP, VALUE_JSON) triples.

    Accepts either three consecutive values per condition or one
    space-separated "PROP OP VALUE_JSON" string per condition.
    """
    if not where_args:
        return []
    if len(where_args) % 3 == 0 and where_args[1] in _OP_MAP:
        return [
            (where_args[i], where_args[i + 1], where_args[i + 2])
            for i in range(0, len(where_args), 3)
        ]
    triples: list[tuple[str, str, str]] = []
    for arg in where_args:
        parts = arg.split(None, 2)
        if len(parts) != 3:
            raise ValueError(f"Invalid condition (expected 'PROP OP VALUE_JSON'): {arg}")
        triples.append((parts[0], parts[1], parts[2]))
    return triples


def parse_cli_conditions(triples: list[tuple[str, str, str]]) -> Condition | None:
    """Parse CLI triples into a condition. Multiple triples are AND-combined."""
    if not triples:
        return None

    children: list[Condition] = []
    for name, op_token, value_json in triples:
        op = _OP_MAP.get(op_token)
        if op is None:
            raise ValueError(
                f"Unknown operator '{op_token}'. "
                f"Valid operators: {', '.join(sorted(_OP_MAP.keys()))}"
            )
        try:
            value: Any = json.loads(value_json)
        except json.JSONDecodeError as e:
            raise ValueError(f"Value for '{name}' is not valid JSON: {value_json}") from e
        children.append(ComparisonCondition(name, op, value))

    if len(children) == 1:
        return children[0]
    return LogicalCondition(LogicalOperator.AND, children)
