"""
Tests for the step ledger: resume gating, forced steps and failure records.
"""

import pytest

from ingestctl.ledger import STEP_ORDER, StepLedger
from ingestctl.state import StateStore, StepStatus

DOMAIN = "acme.com"


@pytest.fixture
def store(tmp_path):
    return StateStore(state_dir=tmp_path / "state")


class TestStepOrder:
    def test_fixed_order(self):
        assert STEP_ORDER[0] == "preflight"
        assert STEP_ORDER[-1] == "verification"
        assert STEP_ORDER.index("gcp_project") < STEP_ORDER.index("credentials")
        assert STEP_ORDER.index("license_check") < STEP_ORDER.index("infrastructure_deploy")
        assert len(STEP_ORDER) == len(set(STEP_ORDER)) == 10


class TestStepLedger:
    def test_nothing_complete_initially(self, store):
        ledger = StepLedger(store, resume=True)
        assert not ledger.is_complete(DOMAIN, "preflight")
        assert ledger.completed_steps(DOMAIN) == []
        assert ledger.next_step(DOMAIN) == "preflight"

    def test_completed_step_skipped_when_resuming(self, store):
        StepLedger(store).mark_complete(DOMAIN, "preflight")
        assert StepLedger(store, resume=True).is_complete(DOMAIN, "preflight")

    def test_completed_step_runs_without_resume(self, store):
        ledger = StepLedger(store, resume=False)
        ledger.mark_complete(DOMAIN, "preflight")
        assert not ledger.is_complete(DOMAIN, "preflight")

    def test_forced_step_always_runs(self, store):
        StepLedger(store).mark_complete(DOMAIN, "gcp_project")
        ledger = StepLedger(store, resume=True, force=["gcp_project"])
        assert not ledger.is_complete(DOMAIN, "gcp_project")

    def test_unknown_forced_step_rejected(self, store):
        with pytest.raises(ValueError, match="bogus"):
            StepLedger(store, force=["bogus"])

    def test_failed_step_is_not_complete(self, store):
        ledger = StepLedger(store, resume=True)
        ledger.mark_failed(DOMAIN, "credentials", "boom")
        assert not ledger.is_complete(DOMAIN, "credentials")
        record = store.load(DOMAIN).steps["credentials"]
        assert record.status == StepStatus.FAILED
        assert record.error == "boom"

    def test_completed_steps_in_workflow_order(self, store):
        ledger = StepLedger(store)
        ledger.mark_complete(DOMAIN, "gcp_project")
        ledger.mark_complete(DOMAIN, "preflight")
        ledger.mark_complete(DOMAIN, "company_info")
        assert ledger.completed_steps(DOMAIN) == ["preflight", "company_info", "gcp_project"]
        assert ledger.next_step(DOMAIN) == "credentials"

    def test_clear_keeps_values(self, store):
        store.put(DOMAIN, "PROJECT_ID", "acme-com-ingestion")
        ledger = StepLedger(store)
        ledger.mark_complete(DOMAIN, "preflight")
        ledger.clear(DOMAIN)
        assert ledger.completed_steps(DOMAIN) == []
        assert store.get(DOMAIN, "PROJECT_ID") == "acme-com-ingestion"

    def test_clear_without_record_is_noop(self, store):
        StepLedger(store).clear(DOMAIN)
        assert not store.exists(DOMAIN)

    def test_ledger_shares_record_with_values(self, store):
        StepLedger(store).mark_complete(DOMAIN, "preflight")
        store.put(DOMAIN, "REGION", "us-central1")
        assert StepLedger(store, resume=True).is_complete(DOMAIN, "preflight")
