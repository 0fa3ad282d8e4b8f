"""Shared fixtures for CLI tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from typer.testing import CliRunner

from pricevault.cli import app
from pricevault.storage_duckdb import DuckDBRepository

if TYPE_CHECKING:
    from click.testing import Result


@pytest.fixture
def runner(monkeypatch):
    """Create a CLI test runner."""
    # Wide terminal so rich error panels don't wrap messages mid-phrase.
    monkeypatch.setenv("COLUMNS", "200")
    return CliRunner()


@pytest.fixture
def cli_uri(tmp_path, monkeypatch):
    """A DuckDB storage URI in a temp dir, with small native pages."""
    monkeypatch.setenv("PRICEVAULT_PAGE_SIZE", "2")
    db_path = tmp_path / "cli_test.db"
    return f"duckdb:///{db_path}?table=prices"


@pytest.fixture
def seeded_uri(cli_uri, tmp_path):
    """A store holding five btc and two eth prices."""
    repo = DuckDBRepository(str(tmp_path / "cli_test.db"), "prices", key_fields=("id",))
    rows = [
        {"id": f"b{i}", "coin_id": "btc", "timestamp": 1000 + i, "usd": 40000.5 + i}
        for i in range(5)
    ] + [
        {"id": "e0", "coin_id": "eth", "timestamp": 1000, "usd": 2200.25, "tags": "l1 defi"},
        {"id": "e1", "coin_id": "eth", "timestamp": 1001, "usd": 2210.75, "tags": "l1"},
    ]
    repo.put_many([({"id": r["id"]}, r) for r in rows])
    repo.close()
    return cli_uri


def invoke(runner: CliRunner, args: list[str], storage_uri: str | None = None) -> "Result":
    """Invoke the CLI against a storage URI."""
    if storage_uri:
        # Inject --storage-uri before the subcommand
        args = ["--storage-uri", storage_uri] + args
    result = runner.invoke(app, args, catch_exceptions=False)
    return result
