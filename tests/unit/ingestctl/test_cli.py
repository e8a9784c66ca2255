"""
Tests for the ingestctl command line.
"""

import json

import pytest
import yaml
from click.testing import CliRunner

from ingestctl import __version__
from ingestctl.cli import main
from ingestctl.ledger import StepLedger
from ingestctl.registry import LocalDeploymentRegistry
from ingestctl.state import StateStore


@pytest.fixture
def runner(restore_logging):
    return CliRunner()


@pytest.fixture
def restore_logging():
    import logging

    root = logging.getLogger("ingestctl")
    handlers, propagate = list(root.handlers), root.propagate
    yield
    root.handlers[:] = handlers
    root.propagate = propagate


@pytest.fixture
def saved(state_dir):
    store = StateStore(state_dir)
    store.update("acme.com", {"PROJECT_ID": "acme-com-ingestion", "REGION": "us-central1"})
    ledger = StepLedger(store)
    ledger.mark_complete("acme.com", "preflight")
    ledger.mark_failed("acme.com", "company_info", "Invalid email")
    return store


class TestMain:
    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_commands_listed(self, runner):
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        for command in ("setup", "teardown", "bootstrap", "state"):
            assert command in result.output


class TestStateCommands:
    def test_show_text(self, runner, saved):
        result = runner.invoke(main, ["state", "show", "acme.com"])
        assert result.exit_code == 0
        assert "✓ preflight" in result.output
        assert "✗ company_info: Invalid email" in result.output
        assert "PROJECT_ID=acme-com-ingestion" in result.output

    def test_show_json(self, runner, saved):
        result = runner.invoke(main, ["state", "show", "acme.com", "-o", "json"])
        data = json.loads(result.output)
        assert data["domain"] == "acme.com"
        assert data["values"]["REGION"] == "us-central1"
        assert data["steps"]["preflight"]["status"] == "completed"

    def test_show_yaml(self, runner, saved):
        result = runner.invoke(main, ["state", "show", "acme.com", "--output", "yaml"])
        data = yaml.safe_load(result.output)
        assert data["values"]["PROJECT_ID"] == "acme-com-ingestion"

    def test_show_missing(self, runner):
        result = runner.invoke(main, ["state", "show", "other.com"])
        assert result.exit_code == 0
        assert "No saved progress for other.com" in result.output

    def test_clear_confirmed(self, runner, saved):
        result = runner.invoke(main, ["state", "clear", "acme.com"], input="y\n")
        assert result.exit_code == 0
        assert not saved.exists("acme.com")

    def test_clear_aborted(self, runner, saved):
        result = runner.invoke(main, ["state", "clear", "acme.com"], input="n\n")
        assert result.exit_code == 1
        assert saved.exists("acme.com")

    def test_clear_yes(self, runner, saved):
        result = runner.invoke(main, ["state", "clear", "acme.com", "--yes"])
        assert result.exit_code == 0
        assert not saved.exists("acme.com")


class TestTeardownCommand:
    def test_lists_deployments_without_domain(self, runner, state_dir):
        LocalDeploymentRegistry(state_dir).record("acme.com", project_id="acme-com-ingestion", region="us-central1")
        result = runner.invoke(main, ["teardown"])
        assert result.exit_code == 0
        assert "acme.com -> acme-com-ingestion" in result.output
        assert "Usage: ingestctl teardown DOMAIN" in result.output

    def test_no_deployments(self, runner):
        result = runner.invoke(main, ["teardown"])
        assert result.exit_code == 0
        assert "No deployments recorded" in result.output


class TestSetupCommand:
    def test_invalid_domain(self, runner):
        result = runner.invoke(main, ["setup", "--token", "tok-123", "--domain", "localhost"])
        assert result.exit_code == 1
        assert "Invalid domain" in result.output

    def test_unknown_force_step(self, runner):
        result = runner.invoke(main, ["setup", "--token", "tok-123", "--domain", "acme.com", "--force-step", "deploy"])
        assert result.exit_code == 2

    def test_token_required(self, runner, monkeypatch):
        monkeypatch.delenv("INGESTCTL_TOKEN", raising=False)
        result = runner.invoke(main, ["setup", "--domain", "acme.com"])
        assert result.exit_code == 2
        assert "--token" in result.output
