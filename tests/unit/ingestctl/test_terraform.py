"""
Tests for tfvars rendering and the Terraform driver.
"""

import json

import pytest

from ingestctl.terraform import (
    PARTIAL_DESTROY_TARGETS,
    DeploymentVars,
    ImportTarget,
    TerraformClient,
    parse_tfvars,
)


@pytest.fixture
def variables():
    return DeploymentVars(
        gcp_project_id="acme-com-ingestion",
        region="europe-west1",
        workspace_domain="acme.com",
        workspace_admin_email="admin@acme.com",
        gcs_bucket_prefix="acme-com-ingestion",
        enable_telegram=True,
        secret_names={"telegram_bot_token": "CORCO_TELEGRAM_BOT_TOKEN"},
    )


@pytest.fixture
def client(fake_runner, terraform_dir):
    return TerraformClient(fake_runner, terraform_dir)


class TestTfvars:
    def test_render_then_parse(self, variables):
        values = parse_tfvars(variables.render())
        assert values["gcp_project_id"] == "acme-com-ingestion"
        assert values["region"] == "europe-west1"
        assert values["bigquery_dataset"] == "corporate_context"
        assert values["enable_telegram"] == "true"
        assert values["enable_twilio"] == "false"
        assert values["create_telegram_secret"] == "false"
        assert values["secret_name_telegram_bot_token"] == "CORCO_TELEGRAM_BOT_TOKEN"

    def test_parse_skips_comments_and_blank_lines(self):
        text = '# header\n\nregion = "us-central1"  # default\n'
        assert parse_tfvars(text) == {"region": "us-central1"}

    def test_first_assignment_wins(self):
        assert parse_tfvars('region = "a"\nregion = "b"\n') == {"region": "a"}

    def test_write_and_read(self, client, variables):
        path = client.write_tfvars("acme.com", variables)
        assert path == client.workdir / "environments" / "acme.com.tfvars"
        assert client.read_tfvars("acme.com")["gcp_project_id"] == "acme-com-ingestion"

    def test_read_missing(self, client):
        assert client.read_tfvars("acme.com") == {}


class TestTerraformClient:
    def test_init_backend(self, client, fake_runner):
        client.init("acme-com-ingestion-tfstate", "terraform/state")
        (call,) = fake_runner.called("terraform init")
        assert "-backend-config=bucket=acme-com-ingestion-tfstate" in call
        assert "-backend-config=prefix=terraform/state" in call

    def test_import_skipped_when_already_in_state(self, client, fake_runner, tmp_path):
        target = ImportTarget("google_storage_bucket.x", "p/x", exists=True)
        assert client.import_if_exists(target, tmp_path / "v.tfvars") is None
        assert not fake_runner.called("terraform import")

    def test_import_skipped_when_missing_in_cloud(self, client, fake_runner, tmp_path):
        target = ImportTarget("google_storage_bucket.x", "p/x", exists=False)
        assert client.import_if_exists(target, tmp_path / "v.tfvars") is None
        assert not fake_runner.calls

    def test_import_when_not_in_state(self, client, fake_runner, tmp_path):
        fake_runner.on("state show", stderr="No instance found for the given address", exit_code=1)
        target = ImportTarget("google_storage_bucket.x", "p/x", exists=True)
        assert client.import_if_exists(target, tmp_path / "v.tfvars") is True
        assert fake_runner.called("terraform import -input=false")

    def test_partial_destroy_plan_targets(self, client, fake_runner, tmp_path):
        client.plan_destroy(tmp_path / "v.tfvars", targets=PARTIAL_DESTROY_TARGETS,
                            extra_vars={"bigquery_deletion_protection": "false"})
        (call,) = fake_runner.called("plan -destroy")
        assert "-target=module.functions" in call
        assert "-target=module.bigquery" not in call
        assert "-var=bigquery_deletion_protection=false" in call

    def test_apply_plan_removes_plan_file(self, client):
        plan = client.workdir / "destroy.plan"
        plan.write_text("plan")
        client.apply_plan()
        assert not plan.exists()

    def test_outputs(self, client, fake_runner):
        fake_runner.on("output -json", stdout=json.dumps({
            "gmail_sync_url": {"value": "https://fn/gmail", "sensitive": False},
            "unset": {"value": None},
        }))
        assert client.outputs() == {"gmail_sync_url": "https://fn/gmail", "unset": ""}

    def test_outputs_empty_state(self, client, fake_runner):
        assert client.outputs() == {}

    def test_clear_local_cache(self, client):
        (client.workdir / ".terraform").mkdir()
        (client.workdir / ".terraform.lock.hcl").write_text("")
        removed = client.clear_local_cache()
        assert len(removed) == 2
        assert not (client.workdir / ".terraform").exists()
