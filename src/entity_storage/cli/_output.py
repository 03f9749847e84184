"""Rendering of entities, query pages and errors for the estore CLI."""

from __future__ import annotations

import json
import sys
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from entity_storage.query import QueryResult


def print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def format_value(value: Any) -> str:
    """Single-line text for a property value; absent values render empty."""
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def print_entity(entity: dict[str, Any], order: list[str] | None = None) -> None:
    """Print one entity as ``property: value`` lines, schema order first."""
    names = [n for n in order or [] if n in entity]
    names += [n for n in entity if n not in names]
    for name in names:
        print(f"{name}: {format_value(entity[name])}")


def print_page(result: QueryResult, columns: list[str]) -> None:
    """Print a page of entities as aligned columns followed by a paging footer."""
    if result.entities:
        cells = [[format_value(e.get(c)) for c in columns] for e in result.entities]
        widths = [max(len(c), *(len(row[i]) for row in cells)) for i, c in enumerate(columns)]
        print("  ".join(c.ljust(w) for c, w in zip(columns, widths)).rstrip())
        print("  ".join("-" * w for w in widths))
        for row in cells:
            print("  ".join(v.ljust(w) for v, w in zip(row, widths)).rstrip())
        print()
    print(f"{len(result.entities)} of {result.total_entities} entities")
    if result.cursor:
        print(f"Next cursor: {result.cursor}")


def print_error(msg: str) -> None:
    print(f"Error: {msg}", file=sys.stderr)
