"""
Tests for per-domain state persistence - DeploymentRecord and StateStore.
"""

import json
import os
import stat

import pytest

from ingestctl.errors import UserInputError
from ingestctl.state import DeploymentRecord, StateStore, StepRecord, StepStatus, is_true, to_state_value


@pytest.fixture
def store(tmp_path):
    return StateStore(state_dir=tmp_path / "state")


class TestStateValues:
    def test_booleans_are_stored_lowercase(self):
        assert to_state_value(True) == "true"
        assert to_state_value(False) == "false"

    def test_none_is_stored_empty(self):
        assert to_state_value(None) == ""

    def test_numbers_are_stringified(self):
        assert to_state_value(42) == "42"

    def test_is_true(self):
        assert is_true("true")
        assert not is_true("false")
        assert not is_true("")
        assert not is_true(None)


class TestDeploymentRecord:
    def test_round_trip(self):
        record = DeploymentRecord(domain="acme.com", values={"PROJECT_ID": "acme-com-ingestion"})
        record.steps["preflight"] = StepRecord(step_id="preflight")

        restored = DeploymentRecord.from_dict(record.to_dict())

        assert restored.domain == "acme.com"
        assert restored.values == {"PROJECT_ID": "acme-com-ingestion"}
        assert restored.steps["preflight"].status == StepStatus.COMPLETED


class TestStateStore:
    def test_get_missing_returns_default(self, store):
        assert store.get("acme.com", "PROJECT_ID") is None
        assert store.get("acme.com", "PROJECT_ID", "fallback") == "fallback"

    def test_put_then_get(self, store):
        store.put("acme.com", "PROJECT_ID", "acme-com-ingestion")
        assert store.get("acme.com", "PROJECT_ID") == "acme-com-ingestion"

    def test_put_is_idempotent(self, store):
        store.put("acme.com", "REGION", "us-central1")
        first = store.snapshot("acme.com")
        store.put("acme.com", "REGION", "us-central1")
        assert store.snapshot("acme.com") == first

    def test_put_overwrites(self, store):
        store.put("acme.com", "REGION", "us-central1")
        store.put("acme.com", "REGION", "europe-west1")
        assert store.get("acme.com", "REGION") == "europe-west1"

    def test_update_writes_all_keys(self, store):
        store.update("acme.com", {"A": "1", "B": True})
        assert store.snapshot("acme.com") == {"A": "1", "B": "true"}

    def test_domains_are_isolated(self, store):
        store.put("acme.com", "PROJECT_ID", "acme")
        store.put("globex.com", "PROJECT_ID", "globex")
        assert store.get("acme.com", "PROJECT_ID") == "acme"
        assert store.get("globex.com", "PROJECT_ID") == "globex"

    def test_domain_is_normalized(self, store):
        store.put("ACME.com.", "PROJECT_ID", "acme")
        assert store.get("acme.com", "PROJECT_ID") == "acme"

    def test_record_file_is_private(self, store):
        store.put("acme.com", "PROJECT_ID", "acme")
        mode = stat.S_IMODE(os.stat(store.path_for("acme.com")).st_mode)
        assert mode == 0o600

    def test_no_temp_files_left_behind(self, store):
        store.put("acme.com", "PROJECT_ID", "acme")
        assert [p.name for p in store.state_dir.iterdir()] == ["acme.com.json"]

    def test_clear_removes_record(self, store):
        store.put("acme.com", "PROJECT_ID", "acme")
        assert store.clear("acme.com") is True
        assert not store.exists("acme.com")
        assert store.get("acme.com", "PROJECT_ID") is None

    def test_clear_missing_returns_false(self, store):
        assert store.clear("acme.com") is False

    def test_corrupted_record_loads_empty(self, store):
        path = store.path_for("acme.com")
        path.parent.mkdir(parents=True)
        path.write_text("{not json")
        assert store.snapshot("acme.com") == {}

    def test_invalid_domain_rejected(self, store):
        with pytest.raises(UserInputError):
            store.put("../etc/passwd", "X", "1")

    def test_record_is_json_on_disk(self, store):
        store.put("acme.com", "PROJECT_ID", "acme")
        data = json.loads(store.path_for("acme.com").read_text())
        assert data["domain"] == "acme.com"
        assert data["values"]["PROJECT_ID"] == "acme"
