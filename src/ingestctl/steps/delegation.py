"""
Gmail domain-wide delegation.

The Gmail sync service account authenticates either with a JSON key kept
in Secret Manager or, where an organization policy forbids key creation,
through impersonation by the functions' runtime service accounts. In the
impersonation case the key secret holds a small descriptor instead of a
key so the functions know which mode to use.
"""

from __future__ import annotations

import json
import logging
import tempfile
from pathlib import Path

from ingestctl import console, keys
from ingestctl.errors import FatalProvisioningError
from ingestctl.naming import (
    GMAIL_SYNC_SA,
    appengine_service_account,
    compute_service_account,
    secret_name,
    service_account_email,
)
from ingestctl.runner import FailureKind
from ingestctl.secrets import SecretStore
from ingestctl.telemetry import add_event
from ingestctl.workflow import WorkflowContext

logger = logging.getLogger(__name__)

GMAIL_KEY_SECRET = "GMAIL_SA_KEY"
TOKEN_CREATOR_ROLE = "roles/iam.serviceAccountTokenCreator"

AUTH_KEY = "key"
AUTH_IMPERSONATION = "impersonation"

DWD_SCOPES = (
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/admin.directory.user.readonly",
)
DWD_ADMIN_URL = "https://admin.google.com/ac/owl/domainwidedelegation"


def impersonation_descriptor(sa_email: str) -> str:
    return json.dumps({"type": AUTH_IMPERSONATION, "service_account_email": sa_email})


def auth_method_of(stored: str) -> str:
    """Which auth mode a stored key secret value describes."""
    try:
        data = json.loads(stored)
    except ValueError:
        return AUTH_KEY
    if isinstance(data, dict) and data.get("type") == AUTH_IMPERSONATION:
        return AUTH_IMPERSONATION
    return AUTH_KEY


def _grant_impersonation(ctx: WorkflowContext, sa_email: str) -> None:
    project = ctx.project_id
    number = ctx.get(keys.PROJECT_NUMBER) or ctx.cloud.project_number(project)
    compute_sa = compute_service_account(number)
    ctx.cloud.add_service_account_binding(
        sa_email, project, f"serviceAccount:{compute_sa}", TOKEN_CREATOR_ROLE,
    )
    # The App Engine default account only exists on older projects
    appengine_sa = appengine_service_account(project)
    result = ctx.cloud.add_service_account_binding(
        sa_email, project, f"serviceAccount:{appengine_sa}", TOKEN_CREATOR_ROLE, check=False,
    )
    if not result.succeeded:
        logger.debug("Skipped impersonation grant for %s", appengine_sa)


def provision_credentials(ctx: WorkflowContext, secrets: SecretStore, sa_email: str) -> str:
    """Store a key for ``sa_email``, falling back to impersonation. Returns the auth method."""
    key_secret = secret_name(GMAIL_KEY_SECRET, ctx.config.secret_prefix)
    stored = secrets.access(key_secret)
    if stored:
        console.success("Service account credentials already stored (reusing existing)")
        return auth_method_of(stored)

    console.info("Creating service account key")
    with tempfile.TemporaryDirectory(prefix="ingestctl-") as tmp:
        key_file = Path(tmp) / "gmail-sa-key.json"
        result = ctx.cloud.create_service_account_key(sa_email, ctx.project_id, str(key_file))
        if result.ok:
            secrets.add_value(key_secret, key_file.read_text())
            console.success("Service account key stored")
            return AUTH_KEY

    if result.kind != FailureKind.POLICY_VIOLATION:
        raise FatalProvisioningError.from_result(result, "Creating service account key")

    console.info("Your organization blocks service account keys; setting up impersonation instead")
    add_event("delegation.degraded", reason="key_creation_blocked")
    _grant_impersonation(ctx, sa_email)
    secrets.add_value(key_secret, impersonation_descriptor(sa_email))
    console.success("Service account impersonation configured")
    return AUTH_IMPERSONATION


def run_domain_delegation(ctx: WorkflowContext) -> None:
    cloud = ctx.cloud
    project = ctx.project_id
    sa_email = service_account_email(GMAIL_SYNC_SA, project)
    console.warning("This allows the system to read emails from your organization.")

    client_id = cloud.service_account_unique_id(sa_email, project)
    if client_id:
        console.success("Service account already exists")
    else:
        cloud.create_service_account(GMAIL_SYNC_SA, "Gmail Sync Service Account", project)
        console.success("Service account created")
        client_id = cloud.service_account_unique_id(sa_email, project)
        if not client_id:
            ctx.sleep(ctx.config.iam_propagation_wait_s)
            client_id = cloud.service_account_unique_id(sa_email, project) or ""

    method = provision_credentials(ctx, ctx.secrets(), sa_email)
    ctx.update({
        keys.SA_EMAIL: sa_email,
        keys.CLIENT_ID: client_id,
        keys.GMAIL_AUTH_METHOD: method,
    })

    console.section("Authorize domain-wide delegation")
    console.detail(f"Client ID: {client_id}")
    console.detail("1. Click 'Add new'")
    console.detail(f"2. Paste this Client ID: {client_id}")
    console.detail(f"3. Paste these OAuth scopes: {','.join(DWD_SCOPES)}")
    console.detail("4. Click 'Authorize'")
    ctx.prompter.open_url(DWD_ADMIN_URL)
    ctx.prompter.pause("Press Enter when you've completed Domain-Wide Delegation")
    console.success("Domain-Wide Delegation configured")
