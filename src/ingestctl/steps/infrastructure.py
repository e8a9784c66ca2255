"""
Infrastructure deployment with Terraform.

Order within the step:

1. Cloud Build service account roles, then a propagation wait and a
   read-back of the project IAM policy
2. Versioned state bucket and ``terraform init`` against it
3. tfvars generation and import of resources that already exist
4. Organization policy negotiation for public webhooks
5. ``terraform apply``, retried once without public invocations when an
   organization policy rejects ``allUsers``
6. Outputs captured into state; Telegram webhook registration
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path
from typing import Dict, List

from ingestctl import console, keys
from ingestctl.cloud import ProjectState
from ingestctl.errors import FatalProvisioningError, PolicyConflictError, UserInputError
from ingestctl.naming import (
    GMAIL_SYNC_SA,
    bucket_prefix,
    cloudbuild_service_account,
    compute_service_account,
    recordings_bucket,
    secret_name,
    service_account_email,
    tfstate_bucket,
    voice_bucket,
)
from ingestctl.policy import ALLOWED_MEMBER_DOMAINS, allow_all_override
from ingestctl.runner import FailureKind
from ingestctl.telegram import TOKEN_SECRET, TelegramBot
from ingestctl.telemetry import add_event
from ingestctl.terraform import DeploymentVars, ImportTarget
from ingestctl.workflow import WorkflowContext

logger = logging.getLogger(__name__)

CLOUDBUILD_ROLES = (
    "roles/cloudbuild.builds.builder",
    "roles/run.admin",
    "roles/iam.serviceAccountUser",
    "roles/cloudfunctions.developer",
    "roles/artifactregistry.writer",
    "roles/storage.objectViewer",
    "roles/logging.logWriter",
)
TOKEN_CREATOR_ROLE = "roles/iam.serviceAccountTokenCreator"

TWILIO_INGEST_SA = "twilio-ingest-sa"

# Terraform variable suffix -> integration secret key
TERRAFORM_SECRET_VARS = {
    "gmail_sa_key": "GMAIL_SA_KEY",
    "telegram_token": "TELEGRAM_BOT_TOKEN",
    "twilio_sid": "TWILIO_ACCOUNT_SID",
    "twilio_token": "TWILIO_AUTH_TOKEN",
    "openai_key": "OPENAI_API_KEY",
}

ORG_POLICY_CONSOLE_URL = (
    "https://console.cloud.google.com/iam-admin/orgpolicies/iam-allowedPolicyMemberDomains?project={project}"
)


# =============================================================================
# IAM for Cloud Build
# =============================================================================


def grant_cloudbuild_roles(ctx: WorkflowContext) -> None:
    cloud = ctx.cloud
    project = ctx.project_id
    number = ctx.get(keys.PROJECT_NUMBER) or cloud.project_number(project)
    if not number:
        raise UserInputError(f"Could not get project number for {project}; check authentication and permissions")
    member = f"serviceAccount:{cloudbuild_service_account(number)}"
    console.info(f"Granting Cloud Build service account permissions ({cloudbuild_service_account(number)})")

    failed: List[str] = []
    for role in CLOUDBUILD_ROLES:
        if not cloud.add_project_binding(project, member, role, check=False).succeeded:
            failed.append(role)
    # Gen 2 builds act as the default compute service account
    if not cloud.add_service_account_binding(
        compute_service_account(number), project, member, TOKEN_CREATOR_ROLE, check=False,
    ).succeeded:
        failed.append(TOKEN_CREATOR_ROLE)

    if failed:
        console.warning(f"{len(failed)} permission(s) failed to grant: {', '.join(failed)}")
        console.detail("Cloud Function builds may fail. Check your IAM permissions and organization policies.")
        if not ctx.prompter.confirm("Continue anyway?", default=False):
            raise UserInputError("Cloud Build permissions could not be granted")

    console.info(f"Waiting {ctx.config.iam_propagation_wait_s:.0f}s for IAM permissions to propagate")
    ctx.sleep(ctx.config.iam_propagation_wait_s)
    missing = set(CLOUDBUILD_ROLES) - set(failed) - cloud.project_roles_for(project, member)
    if missing:
        ctx.sleep(ctx.config.iam_propagation_wait_s)
        missing -= cloud.project_roles_for(project, member)
    if missing:
        console.warning(f"Some permissions could not be verified yet: {', '.join(sorted(missing))}")
    else:
        console.success("Cloud Build permissions granted")


# =============================================================================
# Terraform preparation
# =============================================================================


def ensure_state_bucket(ctx: WorkflowContext) -> str:
    bucket = tfstate_bucket(ctx.project_id)
    if ctx.cloud.bucket_exists(bucket):
        console.success(f"State bucket exists: {bucket}")
    else:
        ctx.cloud.create_bucket(bucket, ctx.project_id, ctx.region, versioning=True)
        console.success(f"State bucket created: {bucket}")
    return bucket


def deployment_vars(ctx: WorkflowContext) -> DeploymentVars:
    return DeploymentVars(
        gcp_project_id=ctx.project_id,
        region=ctx.region,
        workspace_domain=ctx.domain,
        workspace_admin_email=ctx.get(keys.ADMIN_EMAIL, f"admin@{ctx.domain}"),
        gcs_bucket_prefix=bucket_prefix(ctx.domain),
        bigquery_dataset=ctx.config.bigquery_dataset,
        bigquery_location=ctx.config.bigquery_location,
        enable_telegram=ctx.flag(keys.ENABLE_TELEGRAM),
        enable_twilio=ctx.flag(keys.ENABLE_TWILIO),
        enable_openai=ctx.flag(keys.ENABLE_OPENAI),
        secret_names={
            var: secret_name(key, ctx.config.secret_prefix)
            for var, key in TERRAFORM_SECRET_VARS.items()
        },
    )


def import_targets(ctx: WorkflowContext) -> List[ImportTarget]:
    cloud = ctx.cloud
    project = ctx.project_id
    dataset = ctx.config.bigquery_dataset
    targets = [ImportTarget("google_project.metadata", project, cloud.project_state(project) == ProjectState.ACTIVE)]
    for address, name in (
        ("module.iam.google_service_account.gmail_sync[0]", GMAIL_SYNC_SA),
        ("module.iam.google_service_account.twilio_ingest[0]", TWILIO_INGEST_SA),
    ):
        email = service_account_email(name, project)
        targets.append(ImportTarget(
            address,
            f"projects/{project}/serviceAccounts/{email}",
            cloud.service_account_unique_id(email, project) is not None,
        ))
    targets.append(ImportTarget(
        "module.bigquery.google_bigquery_dataset.main",
        f"projects/{project}/datasets/{dataset}",
        cloud.dataset_exists(project, dataset),
    ))
    for address, bucket in (
        ("module.storage.google_storage_bucket.recordings[0]", recordings_bucket(project)),
        ("module.storage.google_storage_bucket.voice_samples[0]", voice_bucket(project)),
    ):
        targets.append(ImportTarget(address, bucket, cloud.bucket_exists(bucket)))
    return targets


def import_existing(ctx: WorkflowContext, var_file: Path) -> None:
    console.info("Checking for existing resources to import")
    for target in import_targets(ctx):
        outcome = ctx.terraform.import_if_exists(target, var_file)
        if outcome is True:
            console.detail(f"✓ Imported {target.address}")
        elif outcome is False:
            console.warning(f"Import of {target.address} failed")
    console.success("Resource check complete")


# =============================================================================
# Organization policy negotiation
# =============================================================================


def _public_members_blocked(ctx: WorkflowContext) -> bool:
    policy = ctx.cloud.describe_org_policy(ALLOWED_MEMBER_DOMAINS, ctx.project_id)
    logger.debug("%s enforcement on %s: %s", ALLOWED_MEMBER_DOMAINS, ctx.project_id, policy.mode.value)
    return policy.blocks_public_members


def _apply_override(ctx: WorkflowContext) -> bool:
    with tempfile.TemporaryDirectory(prefix="ingestctl-") as tmp:
        policy_file = Path(tmp) / "org_policy_override.yaml"
        policy_file.write_text(allow_all_override())
        try:
            ctx.cloud.set_org_policy(ctx.project_id, str(policy_file))
            return True
        except (PolicyConflictError, FatalProvisioningError) as e:
            logger.warning("Could not set org policy override: %s", e.stderr.strip()[:200])
            return False


def negotiate_public_webhooks(ctx: WorkflowContext) -> bool:
    """
    Decide whether webhook functions may be public.

    Returns:
        True when public invocations are allowed, False to deploy with
        ``allow_unauthenticated_invocations=false``.
    """
    if not (ctx.flag(keys.ENABLE_TELEGRAM) or ctx.flag(keys.ENABLE_TWILIO)):
        return True

    console.info("Checking organization policies")
    if not _public_members_blocked(ctx):
        console.success("Organization policy allows public access")
        return True

    url = ORG_POLICY_CONSOLE_URL.format(project=ctx.project_id)
    console.warning(f"ORGANIZATION POLICY DETECTED: {ALLOWED_MEMBER_DOMAINS} blocks public access")
    console.detail("Webhooks need public endpoints because Telegram and Twilio call your functions directly.")
    console.detail("A project-level exception overrides the policy for this project only.")
    if not ctx.prompter.confirm("Add project-level exception to allow public webhooks?", default=True):
        console.detail("Continuing without public webhook access. You can add the exception later and re-run setup.")
        add_event("org_policy.declined")
        return False

    if _apply_override(ctx):
        console.success("Project-level exception added")
        ctx.set(keys.ORG_POLICY_OVERRIDDEN, True)
    else:
        console.warning("Could not add the exception automatically (Organization Policy Admin is required)")
        console.detail(f"1. Open: {url}")
        console.detail("2. Click 'Manage Policy', select 'Override parent's policy'")
        console.detail("3. Under 'Policy enforcement' select 'Replace', add rule 'Allow All', click 'Set Policy'")
        ctx.prompter.pause("Press Enter after setting the policy (or Enter to continue without)")

    console.info(f"Waiting {ctx.config.org_policy_propagation_wait_s:.0f}s for policy to propagate")
    ctx.sleep(ctx.config.org_policy_propagation_wait_s)
    if _public_members_blocked(ctx):
        console.warning("Policy exception not detected. Continuing with restricted access.")
        add_event("org_policy.degraded")
        return False
    console.success("Policy exception confirmed")
    return True


# =============================================================================
# Apply and outputs
# =============================================================================


def apply(ctx: WorkflowContext, var_file: Path, allow_public: bool) -> bool:
    """Apply the root module. Returns whether webhooks ended up public."""
    restricted = {"allow_unauthenticated_invocations": "false"}
    console.info("Applying infrastructure (this takes 20-30 minutes for a first deployment)")
    result = ctx.terraform.apply(var_file, None if allow_public else restricted)

    if not result.ok and allow_public and result.kind in (
        FailureKind.ORG_POLICY_PROPAGATION, FailureKind.POLICY_VIOLATION,
    ):
        console.warning("Organization policy blocked allUsers during apply. Retrying with public webhooks disabled.")
        add_event("terraform.degraded", reason=result.kind.value)
        allow_public = False
        result = ctx.terraform.apply(var_file, restricted)

    if not result.ok:
        raise FatalProvisioningError.from_result(result, "Terraform apply failed")
    console.success("Infrastructure deployed")
    return allow_public


def capture_outputs(ctx: WorkflowContext) -> Dict[str, str]:
    outputs = ctx.terraform.outputs()
    return {state_key: outputs.get(name, "") for name, state_key in keys.TERRAFORM_OUTPUTS.items()}


def configure_telegram_webhook(ctx: WorkflowContext) -> None:
    url = ctx.get(keys.TELEGRAM_WEBHOOK_URL)
    if not ctx.flag(keys.ENABLE_TELEGRAM) or not url:
        return
    token = ctx.secrets().access(secret_name(TOKEN_SECRET, ctx.config.secret_prefix))
    if not token:
        console.warning("Telegram token not found; configure the webhook manually later:")
        console.detail(f'curl "https://api.telegram.org/bot<YOUR_TOKEN>/setWebhook?url={url}"')
        return
    error = TelegramBot(token, transport=ctx.http_transport).set_webhook(url)
    if error:
        console.warning(f"Telegram webhook not configured: {error}")
    else:
        console.success("Telegram webhook configured")


def run_infrastructure_deploy(ctx: WorkflowContext) -> None:
    workdir = ctx.terraform.workdir
    if not (workdir / "main.tf").exists():
        raise UserInputError(
            f"Terraform root module not found in {workdir}. "
            "Run 'ingestctl bootstrap' or set INGESTCTL_TERRAFORM_DIR."
        )

    grant_cloudbuild_roles(ctx)

    bucket = ensure_state_bucket(ctx)
    ctx.terraform.init(bucket, ctx.config.tfstate_prefix)
    console.success("Terraform initialized with remote state")

    var_file = ctx.terraform.write_tfvars(ctx.domain, deployment_vars(ctx))
    console.success(f"Generated {var_file}")
    import_existing(ctx, var_file)

    allow_public = negotiate_public_webhooks(ctx)
    allow_public = apply(ctx, var_file, allow_public)

    values = capture_outputs(ctx)
    values[keys.ALLOW_PUBLIC_WEBHOOKS] = allow_public
    ctx.update(values)
    configure_telegram_webhook(ctx)

    if not allow_public:
        console.warning("Infrastructure deployed, but webhooks are not publicly accessible.")
        console.detail(f"Add a project-level exception: {ORG_POLICY_CONSOLE_URL.format(project=ctx.project_id)}")
