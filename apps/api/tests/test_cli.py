"""Tests for the CLI."""

import json

import pytest
from click.testing import CliRunner

from snapsecure_api import cli as cli_module
from snapsecure_api.models import LedgerEntry


@pytest.fixture
def runner(container, monkeypatch):
    monkeypatch.setattr(cli_module, "_container", lambda: container)
    return CliRunner()


def test_generate_key(runner):
    result = runner.invoke(cli_module.cli, ["generate-key"])
    assert result.exit_code == 0
    assert len(result.output.strip()) >= 32


def test_verify_ledger_ok(runner, container):
    container.audit.record(None, "ping", "ping", "low")
    result = runner.invoke(cli_module.cli, ["verify-ledger"])
    assert result.exit_code == 0
    assert "1 entries verified" in result.output


def test_verify_ledger_corrupted_exits_nonzero(runner, container, session_factory):
    tx_hash = container.audit.record(None, "ping", "ping", "low")
    db = session_factory()
    entry = db.query(LedgerEntry).filter(LedgerEntry.tx_hash == tx_hash).one()
    entry.payload = {**entry.payload, "data": {"eventType": "edited"}}
    db.commit()
    db.close()

    result = runner.invoke(cli_module.cli, ["verify-ledger"])
    assert result.exit_code == 1


def test_chain_stats(runner, container):
    container.audit.record(None, "ping", "ping", "low")
    result = runner.invoke(cli_module.cli, ["chain-stats"])
    assert result.exit_code == 0
    assert json.loads(result.output)["total_entries"] == 1
