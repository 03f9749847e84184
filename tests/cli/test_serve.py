"""Tests for estore serve."""

from fastapi import FastAPI

from entity_storage.cli import _exitcodes as ec
from entity_storage.factory import ComponentFactory, EntityStorageConnectorFactory
from tests.cli.conftest import invoke


def test_serve_runs_uvicorn(runner, schema_file, store, monkeypatch):
    calls = []
    monkeypatch.setattr("uvicorn.run", lambda app, **kwargs: calls.append((app, kwargs)))

    result = invoke(runner, ["serve", "--port", "9001"], schema_file, store)
    assert result.exit_code == ec.SUCCESS
    app, kwargs = calls[0]
    assert isinstance(app, FastAPI)
    assert kwargs["host"] == "127.0.0.1"
    assert kwargs["port"] == 9001
    assert "entity-storage" in ComponentFactory
    assert "file" in EntityStorageConnectorFactory


def test_serve_requires_schema(runner, store, monkeypatch):
    monkeypatch.setattr("uvicorn.run", lambda app, **kwargs: None)
    result = invoke(runner, ["serve"], directory=store)
    assert result.exit_code == ec.USAGE_ERROR
