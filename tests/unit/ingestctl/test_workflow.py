"""
Tests for the setup workflow engine: write-through, resume and the finalizer.
"""

from unittest import mock

import pytest

from ingestctl import keys
from ingestctl.errors import FatalProvisioningError
from ingestctl.ledger import STEP_ORDER
from ingestctl.registry import LocalDeploymentRegistry
from ingestctl.state import StateStore, StepStatus
from ingestctl.workflow import SetupWorkflow

DOMAIN = "acme.com"
PROJECT = "acme-com-ingestion"


class StubSteps(dict):
    """Step table whose steps record their calls; ``fail_at`` raises once."""

    def __init__(self, fail_at=None):
        super().__init__()
        self.calls = []
        self.fail_at = fail_at
        for name in STEP_ORDER:
            self[name] = self._make(name)

    def _make(self, name):
        def step(ctx):
            self.calls.append(name)
            if name == self.fail_at:
                self.fail_at = None
                raise FatalProvisioningError(["gcloud", name], 1, "", "boom", context=f"{name} failed")
            if name == "company_info":
                ctx.set(keys.CLIENT_NAME, "Acme Ltd")
            elif name == "gcp_project":
                ctx.update({keys.PROJECT_ID: PROJECT, keys.REGION: "europe-west1"})
            elif name == "credentials":
                ctx.set(keys.SA_EMAIL, f"gmail-sync-sa@{ctx.project_id}.iam.gserviceaccount.com")
            elif name == "registration":
                ctx.set(keys.REGISTERED, True)
        return step


class TestWorkflowContext:
    def test_set_writes_through(self, make_ctx):
        ctx = make_ctx()
        ctx.set(keys.ENABLE_TELEGRAM, True)
        assert ctx.values[keys.ENABLE_TELEGRAM] == "true"
        assert ctx.store.get(DOMAIN, keys.ENABLE_TELEGRAM) == "true"
        assert ctx.flag(keys.ENABLE_TELEGRAM)

    def test_get_treats_empty_as_missing(self, make_ctx):
        ctx = make_ctx()
        ctx.set(keys.ADMIN_PHONE, None)
        assert ctx.get(keys.ADMIN_PHONE, "none") == "none"

    def test_project_id_required(self, make_ctx):
        with pytest.raises(RuntimeError):
            make_ctx().project_id

    def test_region_defaults_to_config(self, make_ctx, config):
        assert make_ctx().region == config.region

    def test_client_data_fetched_once(self, make_ctx):
        ctx = make_ctx()
        ctx.client_data()
        ctx.client_data()
        ctx.registry.get_client.assert_called_once_with()


class TestSetupWorkflow:
    def test_missing_step_rejected(self, make_ctx):
        steps = StubSteps()
        del steps["verification"]
        with pytest.raises(ValueError, match="verification"):
            SetupWorkflow(make_ctx(), steps=steps)

    def test_fresh_run_completes(self, make_ctx, state_dir):
        steps = StubSteps()
        result = SetupWorkflow(make_ctx(), steps=steps).run()

        assert result.completed
        assert steps.calls == list(STEP_ORDER)
        assert result.values[keys.PROJECT_ID] == PROJECT
        assert result.values[keys.REGISTERED] == "true"
        assert not StateStore(state_dir).exists(DOMAIN)
        entry = LocalDeploymentRegistry(state_dir).get(DOMAIN)
        assert entry["gcp"] == {"project_id": PROJECT, "region": "europe-west1"}

    def test_fresh_run_discards_previous_state(self, make_ctx, state_dir):
        StateStore(state_dir).put(DOMAIN, "STALE", "1")
        seen = {}
        steps = StubSteps()
        steps["preflight"] = lambda ctx: seen.update(ctx.values)
        SetupWorkflow(make_ctx(), steps=steps).run()
        assert "STALE" not in seen

    def test_failure_halts_and_keeps_progress(self, make_ctx, state_dir, capsys):
        steps = StubSteps(fail_at="credentials")
        with pytest.raises(FatalProvisioningError):
            SetupWorkflow(make_ctx(), steps=steps).run()

        assert steps.calls[-1] == "credentials"
        assert "historical_import" not in steps.calls
        record = StateStore(state_dir).load(DOMAIN)
        assert record.values[keys.PROJECT_ID] == PROJECT
        assert record.steps["gcp_project"].status == StepStatus.COMPLETED
        assert record.steps["credentials"].status == StepStatus.FAILED
        assert record.steps["credentials"].error == "credentials failed"

        out, err = capsys.readouterr()
        assert "Setup interrupted during step: Integration credentials" in err
        assert (
            "ingestctl setup --token=tok-123 --domain=acme.com "
            "--consultant=consultant@partner.test --resume"
        ) in out
        assert "ingestctl teardown acme.com --all --force" in out

    def test_resume_skips_completed_steps(self, make_ctx, state_dir):
        steps = StubSteps(fail_at="credentials")
        with pytest.raises(FatalProvisioningError):
            SetupWorkflow(make_ctx(), steps=steps).run()

        steps.calls.clear()
        result = SetupWorkflow(make_ctx(resume=True), steps=steps).run()

        assert result.completed
        assert result.skipped == 3
        assert steps.calls[0] == "credentials"
        assert "gcp_project" not in steps.calls
        assert result.values[keys.SA_EMAIL] == f"gmail-sync-sa@{PROJECT}.iam.gserviceaccount.com"
        assert result.values[keys.CLIENT_NAME] == "Acme Ltd"
        assert not StateStore(state_dir).exists(DOMAIN)

    def test_resume_with_forced_step(self, make_ctx):
        steps = StubSteps(fail_at="credentials")
        with pytest.raises(FatalProvisioningError):
            SetupWorkflow(make_ctx(), steps=steps).run()

        steps.calls.clear()
        SetupWorkflow(make_ctx(resume=True, force=["gcp_project"]), steps=steps).run()
        assert steps.calls[:2] == ["gcp_project", "credentials"]

    def test_ctrl_c_leaves_step_incomplete(self, make_ctx, state_dir, capsys):
        steps = StubSteps()

        def interrupted(ctx):
            steps.calls.append("historical_import")
            raise KeyboardInterrupt

        steps["historical_import"] = interrupted
        with pytest.raises(KeyboardInterrupt):
            SetupWorkflow(make_ctx(), steps=steps).run()

        out, err = capsys.readouterr()
        assert "Setup interrupted during step:" in err
        assert "--resume" in out

        ctx = make_ctx(resume=True)
        assert not ctx.ledger.is_complete(DOMAIN, "historical_import")
        for name in ("preflight", "company_info", "gcp_project", "credentials"):
            assert ctx.ledger.is_complete(DOMAIN, name)

        steps = StubSteps()
        result = SetupWorkflow(ctx, steps=steps).run()
        assert result.completed
        assert steps.calls[0] == "historical_import"

    def test_run_without_resume_reruns_everything(self, make_ctx):
        steps = StubSteps(fail_at="credentials")
        with pytest.raises(FatalProvisioningError):
            SetupWorkflow(make_ctx(), steps=steps).run()

        steps.calls.clear()
        SetupWorkflow(make_ctx(), steps=steps).run()
        assert steps.calls == list(STEP_ORDER)

    def test_completed_run_prints_summary(self, make_ctx, capsys):
        SetupWorkflow(make_ctx(), steps=StubSteps()).run()
        out, err = capsys.readouterr()
        assert "Setup complete" in out
        assert "Setup interrupted" not in err

    def test_step_outputs_logged(self, make_ctx):
        ctx = make_ctx()
        ctx.events = mock.Mock()
        SetupWorkflow(ctx, steps=StubSteps()).run()
        ctx.events.step_completed.assert_any_call("gcp_project", outputs=[keys.PROJECT_ID, keys.REGION])
        ctx.events.workflow_completed.assert_called_once_with(project_id=PROJECT)
