"""Tests for the typer CLI commands that need no wallet password."""

from __future__ import annotations

import pytest
import yaml
from typer.testing import CliRunner

from bond_credit import __version__
from bond_credit.cli.app import app

runner = CliRunner()


@pytest.fixture
def root(tmp_path, monkeypatch):
    monkeypatch.delenv("NEAR_NETWORK_ID", raising=False)
    monkeypatch.delenv("NEAR_ACCOUNT_ID", raising=False)
    result = runner.invoke(app, ["--root", str(tmp_path), "init", "--name", "cli-test"])
    assert result.exit_code == 0, result.output
    return tmp_path


def invoke(root, *args):
    return runner.invoke(app, ["--root", str(root), *args])


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


class TestInit:
    def test_creates_setup(self, root):
        assert (root / ".bond-credit" / "config.yaml").exists()
        assert (root / ".bond-credit" / "bond-credit.db").exists()

    def test_refuses_second_init(self, root):
        result = invoke(root, "init")
        assert result.exit_code == 1
        assert "Already initialized" in result.output

    def test_force_with_network(self, root):
        result = invoke(root, "init", "--force", "--network", "testnet")
        assert result.exit_code == 0
        config = yaml.safe_load((root / ".bond-credit" / "config.yaml").read_text())
        assert config["near"]["network_id"] == "testnet"

    def test_commands_need_setup(self, tmp_path):
        result = invoke(tmp_path, "agents")
        assert result.exit_code == 1
        assert "bond-credit init" in result.output


class TestListings:
    def test_agents(self, root):
        result = invoke(root, "agents", "--tier", "platinum")
        assert result.exit_code == 0
        assert "PLATINUM" in result.output
        assert "GOLD" not in result.output

    def test_agents_no_match(self, root):
        result = invoke(root, "agents", "--category", "lending")
        assert result.exit_code == 0
        assert "No agents match" in result.output

    def test_tiers(self, root):
        result = invoke(root, "tiers")
        assert result.exit_code == 0
        for tier in ("PLATINUM", "GOLD", "SILVER", "BRONZE"):
            assert tier in result.output


class TestScoreOpportunities:
    def test_from_file_records_score_events(self, root, tmp_path):
        path = tmp_path / "metrics.yaml"
        path.write_text(yaml.safe_dump({"opportunities": [
            {"id": 1, "name": "NEAR Staking Pool", "performance": {"apy_30d": 12}},
        ]}))
        result = invoke(root, "score-opportunities", "--file", str(path))
        assert result.exit_code == 0, result.output
        assert "Trust Scores" in result.output

        stats = invoke(root, "events", "stats")
        assert stats.exit_code == 0
        assert "Score updates: 1" in stats.output

    def test_invalid_metrics(self, root, tmp_path):
        path = tmp_path / "metrics.yaml"
        path.write_text(yaml.safe_dump([{"id": "not-a-number"}]))
        result = invoke(root, "score-opportunities", "--file", str(path))
        assert result.exit_code == 1
        assert "Invalid metrics" in result.output

    def test_empty_file(self, root, tmp_path):
        path = tmp_path / "metrics.yaml"
        path.write_text("opportunities: []\n")
        result = invoke(root, "score-opportunities", "--file", str(path))
        assert result.exit_code == 0
        assert "No opportunities to score" in result.output


class TestEvents:
    def test_list_system_events(self, root):
        result = invoke(root, "events", "list")
        assert result.exit_code == 0
        assert "System Events" in result.output

    def test_list_empty(self, root):
        result = invoke(root, "events", "list", "--type", "deposits")
        assert result.exit_code == 0
        assert "No deposits events" in result.output

    def test_unknown_type(self, root):
        result = invoke(root, "events", "list", "--type", "bogus")
        assert result.exit_code == 1
        assert "Unknown event type" in result.output


def test_balance_without_wallet(root):
    result = invoke(root, "wallet", "balance")
    assert result.exit_code == 1
    assert "No wallet found" in result.output
