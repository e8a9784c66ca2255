"""License tier verification. Reports only; never blocks setup."""

from __future__ import annotations

import json
import logging
from typing import Optional

from ingestctl import console, keys
from ingestctl.license import LicenseCheck, LicenseInfo, LicenseStatus, classify_license, count_active_users
from ingestctl.naming import secret_name
from ingestctl.steps.delegation import AUTH_IMPERSONATION, GMAIL_KEY_SECRET
from ingestctl.telemetry import add_event
from ingestctl.workflow import WorkflowContext

logger = logging.getLogger(__name__)


def workspace_user_count(ctx: WorkflowContext) -> Optional[int]:
    """Active users through the delegated key; None when it cannot be determined."""
    if ctx.get(keys.GMAIL_AUTH_METHOD) == AUTH_IMPERSONATION:
        logger.info("No service account key available (impersonation mode), skipping user count")
        return None
    stored = ctx.secrets().access(secret_name(GMAIL_KEY_SECRET, ctx.config.secret_prefix))
    if not stored:
        return None
    try:
        key_info = json.loads(stored)
    except ValueError:
        logger.warning("Stored Gmail key is not valid JSON")
        return None
    return count_active_users(key_info, ctx.get(keys.ADMIN_EMAIL, ""), ctx.domain)


def report(check: LicenseCheck) -> None:
    if check.status == LicenseStatus.SKIPPED:
        if check.tier:
            console.success(f"License tier: {check.tier} (unlimited users)")
        else:
            console.warning("Could not retrieve licensed tier from registry. License verification skipped.")
        return

    console.detail(f"License tier: {check.tier} (up to {check.user_limit} users)")
    if check.status == LicenseStatus.UNKNOWN:
        console.warning("Could not verify user count (domain-wide delegation may not be active yet)")
        console.detail("The user count will be verified automatically on first sync.")
        return

    console.detail(f"Active Workspace users: {check.active_users}")
    if check.status == LicenseStatus.COMPLIANT:
        console.success(f"User count ({check.active_users}) within licensed tier ({check.user_limit})")
    elif check.status == LicenseStatus.GRACE_PERIOD:
        console.warning(
            f"User count ({check.active_users}) slightly exceeds license ({check.user_limit}); "
            "this is within the grace period"
        )
    else:
        console.warning(f"LICENSE TIER EXCEEDED: {check.active_users} active users, license covers {check.user_limit}")
        console.detail("Setup will continue. Please contact us to discuss upgrading your license tier.")


def run_license_check(ctx: WorkflowContext) -> None:
    client = ctx.client_data()
    info: Optional[LicenseInfo] = client.license if client else None

    active = None
    if info is not None and info.known and not info.unlimited:
        console.info("Querying the Workspace directory for the active user count")
        active = workspace_user_count(ctx)

    check = classify_license(info, active, ctx.config.license_grace_percent)
    report(check)
    if check.exceeded:
        add_event("license.exceeded", exceeded_by=check.exceeded_by)

    ctx.update({
        keys.LICENSE_TIER: check.tier or "unknown",
        keys.LICENSE_LIMIT: check.user_limit,
        keys.LICENSE_STATUS: check.status.value,
        keys.WORKSPACE_USER_COUNT: check.active_users,
        keys.LICENSE_EXCEEDED_BY: check.exceeded_by,
    })
