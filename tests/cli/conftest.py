"""Shared fixtures for CLI tests."""

from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner, Result

from entity_storage.cli import app

ITEM_SCHEMA = {
    "name": "Item",
    "properties": [
        {"property": "id", "type": "string", "isPrimary": True},
        {"property": "name", "type": "string", "isSecondary": True, "optional": True},
        {"property": "n", "type": "integer", "optional": True},
        {"property": "tags", "type": "array", "itemType": "string", "optional": True},
    ],
}


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def schema_file(tmp_path):
    """Write the Item descriptor as JSON and return its path."""
    path = tmp_path / "item.schema.json"
    path.write_text(json.dumps(ITEM_SCHEMA), encoding="utf-8")
    return str(path)


@pytest.fixture
def store(tmp_path):
    """Directory the CLI stores entities in."""
    return str(tmp_path / "store")


def invoke(
    runner: CliRunner,
    args: list[str],
    schema: str | None = None,
    directory: str | None = None,
    **kwargs,
) -> Result:
    """Invoke the CLI with the global options placed before the subcommand."""
    prefix: list[str] = []
    if directory:
        prefix += ["--directory", directory]
    if schema:
        prefix += ["--schema", schema]
    return runner.invoke(app, prefix + args, catch_exceptions=False, **kwargs)
