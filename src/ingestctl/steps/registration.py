"""Registration with the registry, followed by the historical import triggers."""

from __future__ import annotations

from typing import Mapping, Optional

from ingestctl import console, keys
from ingestctl.registry import (
    DeploymentInfo,
    Endpoints,
    HistoricalImport,
    Identity,
    LicenseReport,
    Modules,
    Onboarding,
    RegistrationPayload,
    Resources,
)
from ingestctl.state import is_true
from ingestctl.steps.imports import trigger_historical_imports
from ingestctl.workflow import WorkflowContext


def _opt(values: Mapping[str, str], key: str) -> Optional[str]:
    return values.get(key) or None


def build_payload(domain: str, token: str, values: Mapping[str, str]) -> RegistrationPayload:
    """Registration body from the collected state values."""
    twilio = is_true(values.get(keys.ENABLE_TWILIO))
    user_count = values.get(keys.WORKSPACE_USER_COUNT)
    status = values.get(keys.LICENSE_STATUS) or "unknown"
    return RegistrationPayload(
        identity=Identity(
            company_name=values.get(keys.CLIENT_NAME, ""),
            domain=domain,
            admin_first_name=values.get(keys.ADMIN_FIRST_NAME, ""),
            admin_surname=values.get(keys.ADMIN_SURNAME, ""),
            admin_email=values.get(keys.ADMIN_EMAIL, ""),
            admin_phone=_opt(values, keys.ADMIN_PHONE),
            admin_telegram=_opt(values, keys.ADMIN_TELEGRAM),
        ),
        onboarding=Onboarding(setup_token=token, consultant_email=_opt(values, keys.CONSULTANT_EMAIL)),
        deployment=DeploymentInfo(
            project_id=values.get(keys.PROJECT_ID, ""),
            region=values.get(keys.REGION, ""),
            deployed_by=_opt(values, keys.OPERATOR_ACCOUNT),
        ),
        modules=Modules(
            telegram=is_true(values.get(keys.ENABLE_TELEGRAM)),
            twilio=twilio,
            voice_enrollment=twilio,
            ai_enrichment=is_true(values.get(keys.ENABLE_OPENAI)),
        ),
        historical_import=HistoricalImport(
            gmail_mode=values.get(keys.GMAIL_IMPORT_MODE) or "none",
            gmail_since=_opt(values, keys.GMAIL_SYNC_SINCE),
            twilio_import=is_true(values.get(keys.TWILIO_IMPORT_EXISTING)),
            twilio_since=_opt(values, keys.TWILIO_IMPORT_SINCE),
            meet_import=is_true(values.get(keys.MEET_IMPORT_EXISTING)),
        ),
        endpoints=Endpoints(
            gmail_sync_url=_opt(values, keys.GMAIL_SYNC_URL),
            telegram_webhook_url=_opt(values, keys.TELEGRAM_WEBHOOK_URL),
            drive_sync_url=_opt(values, keys.DRIVE_SYNC_URL),
            voice_enroll_url=_opt(values, keys.VOICE_ENROLL_URL),
            standardize_utterances_url=_opt(values, keys.STANDARDIZE_UTTERANCES_URL),
        ),
        resources=Resources(
            recordings_bucket=_opt(values, keys.RECORDINGS_BUCKET),
            bigquery_dataset=_opt(values, keys.BIGQUERY_DATASET),
            gmail_service_account=_opt(values, keys.SA_EMAIL),
            gmail_client_id=_opt(values, keys.CLIENT_ID),
        ),
        license=LicenseReport(
            tier=values.get(keys.LICENSE_TIER) or "unknown",
            tier_limit=int(values.get(keys.LICENSE_LIMIT) or 0),
            workspace_user_count=int(user_count) if user_count else None,
            status=status,
            exceeded=status == "exceeded",
            exceeded_by=int(values.get(keys.LICENSE_EXCEEDED_BY) or 0),
        ),
    )


def run_registration(ctx: WorkflowContext) -> None:
    console.info("Registering deployment")
    ack = ctx.registry.register(build_payload(ctx.domain, ctx.token, ctx.values))
    if ack.accepted:
        console.success("Deployment registered")
    else:
        console.warning(f"Registration returned {ack.message} (deployment still successful)")
        console.detail(f"You may need to notify {ctx.config.support_email} manually.")
    ctx.set(keys.REGISTERED, ack.accepted)

    trigger_historical_imports(ctx)
