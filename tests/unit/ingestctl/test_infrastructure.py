"""
Tests for infrastructure deployment: Cloud Build grants, org policy
negotiation, the degrade-on-policy apply and output capture.
"""

import json

import httpx
import pytest

from ingestctl import keys
from ingestctl.errors import FatalProvisioningError, UserInputError
from ingestctl.steps.infrastructure import (
    CLOUDBUILD_ROLES,
    apply,
    configure_telegram_webhook,
    deployment_vars,
    grant_cloudbuild_roles,
    negotiate_public_webhooks,
    run_infrastructure_deploy,
)

PROJECT = "acme-com-ingestion"
VALUES = {
    keys.PROJECT_ID: PROJECT,
    keys.REGION: "us-central1",
    keys.PROJECT_NUMBER: "123456",
    keys.ADMIN_EMAIL: "sam@acme.com",
}
RESTRICTED = json.dumps({"listPolicy": {"allowedValues": ["C0abc123"]}})
ALLOW_ALL = json.dumps({"listPolicy": {"allValues": "ALLOW"}})
POLICY_BLOCKED = "Error 400: One or more users named in the policy do not belong to a permitted customer"


class TestCloudBuildRoles:
    def test_all_granted_and_verified(self, make_ctx, fake_runner, sleeps):
        fake_runner.on("get-iam-policy", stdout="\n".join(CLOUDBUILD_ROLES))
        grant_cloudbuild_roles(make_ctx(values=VALUES))
        member = "--member=serviceAccount:123456@cloudbuild.gserviceaccount.com"
        assert len(fake_runner.called(member)) == len(CLOUDBUILD_ROLES) + 1
        assert sleeps == [10.0]

    def test_unverified_roles_waited_for_once_more(self, make_ctx, fake_runner, sleeps):
        grant_cloudbuild_roles(make_ctx(values=VALUES))
        assert sleeps == [10.0, 10.0]

    def test_failed_grant_declined(self, make_ctx, fake_runner):
        fake_runner.on("--role=roles/run.admin", stderr="PERMISSION_DENIED", exit_code=1)
        with pytest.raises(UserInputError):
            grant_cloudbuild_roles(make_ctx(values=VALUES))

    def test_failed_grant_accepted(self, make_ctx, fake_runner, prompter):
        fake_runner.on("--role=roles/run.admin", stderr="PERMISSION_DENIED", exit_code=1)
        prompter.confirms["Continue anyway?"] = True
        grant_cloudbuild_roles(make_ctx(values=VALUES))


class TestDeploymentVars:
    def test_from_state(self, make_ctx):
        ctx = make_ctx(values={**VALUES, keys.ENABLE_TELEGRAM: True, keys.ENABLE_OPENAI: False})
        tfvars = deployment_vars(ctx)
        assert tfvars.gcp_project_id == PROJECT
        assert tfvars.workspace_admin_email == "sam@acme.com"
        assert tfvars.gcs_bucket_prefix == "acme-com-ingestion"
        assert tfvars.enable_telegram and not tfvars.enable_twilio
        assert tfvars.secret_names["telegram_token"] == "CORCO_TELEGRAM_BOT_TOKEN"


class TestPublicWebhooks:
    def test_not_needed_without_webhook_integrations(self, make_ctx, fake_runner):
        assert negotiate_public_webhooks(make_ctx(values=VALUES)) is True
        assert not fake_runner.called("org-policies")

    def test_no_policy(self, make_ctx, fake_runner):
        assert negotiate_public_webhooks(make_ctx(values={**VALUES, keys.ENABLE_TELEGRAM: True})) is True
        assert fake_runner.called("org-policies describe iam.allowedPolicyMemberDomains")

    def test_operator_declines_exception(self, make_ctx, fake_runner, prompter):
        fake_runner.on("org-policies describe", stdout=RESTRICTED)
        prompter.confirms["project-level exception"] = False
        assert negotiate_public_webhooks(make_ctx(values={**VALUES, keys.ENABLE_TWILIO: True})) is False
        assert not fake_runner.called("set-policy")

    def test_exception_applied(self, make_ctx, fake_runner, sleeps):
        fake_runner.on("org-policies describe", stdout=ALLOW_ALL)
        fake_runner.on("org-policies describe", stdout=RESTRICTED, times=1)
        ctx = make_ctx(values={**VALUES, keys.ENABLE_TELEGRAM: True})
        assert negotiate_public_webhooks(ctx) is True
        assert fake_runner.called("org-policies set-policy")
        assert ctx.flag(keys.ORG_POLICY_OVERRIDDEN)
        assert sleeps == [30.0]

    def test_exception_not_permitted(self, make_ctx, fake_runner, prompter):
        fake_runner.on("org-policies describe", stdout=RESTRICTED)
        fake_runner.on("set-policy", stderr="PERMISSION_DENIED: orgpolicy.policy.set", exit_code=1)
        ctx = make_ctx(values={**VALUES, keys.ENABLE_TELEGRAM: True})
        assert negotiate_public_webhooks(ctx) is False
        assert prompter.pauses == 1
        assert not ctx.flag(keys.ORG_POLICY_OVERRIDDEN)


class TestApply:
    def test_public_apply(self, make_ctx, fake_runner, tmp_path):
        assert apply(make_ctx(values=VALUES), tmp_path / "v.tfvars", allow_public=True) is True
        (call,) = fake_runner.called("terraform apply")
        assert "allow_unauthenticated_invocations" not in call

    def test_restricted_apply(self, make_ctx, fake_runner, tmp_path):
        assert apply(make_ctx(values=VALUES), tmp_path / "v.tfvars", allow_public=False) is False
        (call,) = fake_runner.called("terraform apply")
        assert "-var=allow_unauthenticated_invocations=false" in call

    def test_policy_rejection_degrades_to_restricted(self, make_ctx, fake_runner, tmp_path):
        fake_runner.on("terraform apply", stderr=POLICY_BLOCKED, exit_code=1, times=2)
        assert apply(make_ctx(values=VALUES), tmp_path / "v.tfvars", allow_public=True) is False
        calls = fake_runner.called("terraform apply")
        assert len(calls) == 3
        assert "allow_unauthenticated_invocations" not in calls[0]
        assert "-var=allow_unauthenticated_invocations=false" in calls[-1]

    def test_other_failure_is_fatal(self, make_ctx, fake_runner, tmp_path):
        fake_runner.on("terraform apply", stderr="Error: googleapi: Error 500", exit_code=1)
        with pytest.raises(FatalProvisioningError):
            apply(make_ctx(values=VALUES), tmp_path / "v.tfvars", allow_public=True)


class TestTelegramWebhook:
    def test_webhook_set(self, make_ctx, fake_runner):
        urls = []

        def handler(request):
            urls.append(request.url)
            return httpx.Response(200, json={"ok": True})

        fake_runner.on("--secret=CORCO_TELEGRAM_BOT_TOKEN", stdout="123:abc\n")
        ctx = make_ctx(
            values={**VALUES, keys.ENABLE_TELEGRAM: True, keys.TELEGRAM_WEBHOOK_URL: "https://fn/telegram"},
            transport=httpx.MockTransport(handler),
        )
        configure_telegram_webhook(ctx)
        assert urls[0].path == "/bot123:abc/setWebhook"
        assert urls[0].params["url"] == "https://fn/telegram"

    def test_missing_token(self, make_ctx, capsys):
        ctx = make_ctx(values={**VALUES, keys.ENABLE_TELEGRAM: True, keys.TELEGRAM_WEBHOOK_URL: "https://fn/telegram"})
        configure_telegram_webhook(ctx)
        assert "setWebhook?url=https://fn/telegram" in capsys.readouterr().out


class TestInfrastructureDeploy:
    def test_requires_root_module(self, make_ctx, terraform_dir):
        with pytest.raises(UserInputError, match="main.tf|root module"):
            run_infrastructure_deploy(make_ctx(values=VALUES))

    def test_full_deploy(self, make_ctx, fake_runner, terraform_dir):
        (terraform_dir / "main.tf").write_text("")
        fake_runner.on("get-iam-policy", stdout="\n".join(CLOUDBUILD_ROLES))
        fake_runner.on("output -json", stdout=json.dumps({
            "gmail_sync_url": {"value": "https://fn/gmail-sync"},
            "bigquery_dataset_id": {"value": "corporate_context"},
        }))
        ctx = make_ctx(values=VALUES)
        run_infrastructure_deploy(ctx)

        assert fake_runner.called(f"-backend-config=bucket={PROJECT}-tfstate")
        assert (terraform_dir / "environments" / "acme.com.tfvars").exists()
        assert ctx.get(keys.GMAIL_SYNC_URL) == "https://fn/gmail-sync"
        assert ctx.get(keys.BIGQUERY_DATASET) == "corporate_context"
        assert ctx.flag(keys.ALLOW_PUBLIC_WEBHOOKS)
        assert ctx.store.get("acme.com", keys.GMAIL_SYNC_URL) == "https://fn/gmail-sync"
