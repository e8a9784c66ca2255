"""End-to-end verification. Informational only."""

from __future__ import annotations

from ingestctl import console, keys
from ingestctl.verification import ChannelStatus, VerificationReport, VerificationTarget, Verifier
from ingestctl.workflow import WorkflowContext

CHANNEL_LABELS = {
    "email": "Email",
    "telegram": "Telegram",
    "call": "Calls",
}


def verification_target(ctx: WorkflowContext) -> VerificationTarget:
    modules = ["gmail", "google_meet"]
    if ctx.flag(keys.ENABLE_TELEGRAM):
        modules.append("telegram")
    if ctx.flag(keys.ENABLE_TWILIO):
        modules.append("twilio")
    return VerificationTarget(
        project_id=ctx.project_id,
        dataset=ctx.get(keys.BIGQUERY_DATASET, ctx.config.bigquery_dataset),
        client_name=ctx.get(keys.CLIENT_NAME, ctx.domain),
        admin_first_name=ctx.get(keys.ADMIN_FIRST_NAME, ""),
        admin_email=ctx.get(keys.ADMIN_EMAIL, ""),
        enabled_modules=modules,
        gmail_sync_url=ctx.get(keys.GMAIL_SYNC_URL),
        admin_phone=ctx.get(keys.ADMIN_PHONE),
        consultant_email=ctx.get(keys.CONSULTANT_EMAIL),
        telegram_enabled=ctx.flag(keys.ENABLE_TELEGRAM),
        telegram_group_id=ctx.get(keys.TELEGRAM_GROUP_ID),
        twilio_enabled=ctx.flag(keys.ENABLE_TWILIO),
        recordings_bucket=ctx.get(keys.RECORDINGS_BUCKET),
    )


def print_report(report: VerificationReport) -> None:
    console.section("Verification results")
    if report.gmail_sync_ok:
        console.success("Gmail sync operational")
    else:
        console.warning("Gmail sync not answering yet")
    for channel, status in report.channels.items():
        label = CHANNEL_LABELS.get(channel, channel)
        if status == ChannelStatus.OK:
            console.success(f"{label}: welcome message ingested into BigQuery")
        elif status == ChannelStatus.PENDING:
            console.warning(f"{label}: awaiting ingestion")
        else:
            console.detail(f"{label}: not configured")
    for note in report.notes:
        console.detail(note)


def run_verification(ctx: WorkflowContext) -> None:
    console.info("Testing the end-to-end pipeline with welcome messages")
    verifier = Verifier(
        ctx.cloud,
        ctx.config.welcome_base_url,
        sleep=ctx.sleep,
        pipeline_wait_s=ctx.config.pipeline_wait_s,
        transport=ctx.http_transport,
    )
    report = verifier.verify(verification_target(ctx))
    print_report(report)
    ctx.set(keys.VERIFICATION_STATUS, "ok" if report.all_ok else "pending")
