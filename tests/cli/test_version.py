"""Tests for estore global options."""

from entity_storage.cli import _exitcodes as ec
from tests.cli.conftest import invoke


def test_version(runner):
    result = invoke(runner, ["--version"])
    assert result.exit_code == ec.SUCCESS
    assert result.output.startswith("estore ")


def test_no_command_prints_help(runner):
    result = invoke(runner, [])
    assert "Entity storage CLI" in result.output
