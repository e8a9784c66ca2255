"""
Historical import options, and the triggers fired after registration.

Options are collected before the infrastructure exists; the import
functions are only called once the deployment is registered.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

import httpx

from ingestctl import console, keys
from ingestctl.timeouts import HTTP_CLIENT_TIMEOUT_S
from ingestctl.workflow import WorkflowContext

logger = logging.getLogger(__name__)

GMAIL_MODES = {"1": "all", "2": "since", "3": "none"}

TWILIO_IMPORT_FUNCTION = "twilio-historical-import"
DRIVE_SYNC_FUNCTION = "drive-sync"


def _ask_date(ctx: WorkflowContext, text: str, optional: bool = False) -> str:
    while True:
        value = ctx.prompter.ask(text, optional=optional)
        if not value and optional:
            return ""
        try:
            datetime.strptime(value, "%Y-%m-%d")
            return value
        except ValueError:
            console.warning(f"Not a date in YYYY-MM-DD format: {value}")


def run_historical_import(ctx: WorkflowContext) -> None:
    console.info("Do you want to import existing historical data?")

    console.section("GMAIL")
    console.detail("1) Import ALL emails (full history)")
    console.detail("2) Import from a specific date")
    console.detail("3) New emails only")
    gmail_mode = GMAIL_MODES[ctx.prompter.choose("Gmail import mode", list(GMAIL_MODES), default="1")]
    gmail_since = _ask_date(ctx, "Import emails since (YYYY-MM-DD)") if gmail_mode == "since" else ""
    console.success(f"Gmail: {gmail_mode}{f' (since {gmail_since})' if gmail_since else ''}")

    twilio_import = False
    twilio_since = ""
    if ctx.flag(keys.ENABLE_TWILIO):
        console.section("TWILIO RECORDINGS")
        console.detail("1) Import existing recordings")
        console.detail("2) New calls only")
        twilio_import = ctx.prompter.choose("Twilio import mode", ["1", "2"], default="2") == "1"
        if twilio_import:
            twilio_since = _ask_date(ctx, "Import from (YYYY-MM-DD, or Enter for all)", optional=True)
        console.success(f"Twilio: import_existing={str(twilio_import).lower()}")

    console.section("GOOGLE MEET")
    console.detail("1) Process existing recordings in Drive")
    console.detail("2) New recordings only")
    meet_import = ctx.prompter.choose("Meet import mode", ["1", "2"], default="1") == "1"
    console.success(f"Meet: import_existing={str(meet_import).lower()}")

    ctx.update({
        keys.GMAIL_IMPORT_MODE: gmail_mode,
        keys.GMAIL_SYNC_SINCE: gmail_since,
        keys.TWILIO_IMPORT_EXISTING: twilio_import,
        keys.TWILIO_IMPORT_SINCE: twilio_since,
        keys.MEET_IMPORT_EXISTING: meet_import,
    })
    console.success("Historical import options configured")


def _post(ctx: WorkflowContext, url: str, body: dict, params: Optional[dict] = None) -> Optional[httpx.Response]:
    try:
        with httpx.Client(timeout=HTTP_CLIENT_TIMEOUT_S, transport=ctx.http_transport) as client:
            return client.post(url, json=body, params=params)
    except httpx.HTTPError as e:
        logger.warning("Import trigger %s failed: %s", url, e)
        return None


def trigger_historical_imports(ctx: WorkflowContext) -> None:
    """Kick off the historical imports the operator asked for. Failures only warn."""
    twilio = ctx.flag(keys.TWILIO_IMPORT_EXISTING) and ctx.flag(keys.ENABLE_TWILIO)
    meet = ctx.flag(keys.MEET_IMPORT_EXISTING)
    if not (twilio or meet):
        return
    console.section("Historical data import")
    project, region = ctx.project_id, ctx.region

    if twilio:
        url = ctx.cloud.function_url(TWILIO_IMPORT_FUNCTION, project, region)
        if not url:
            console.warning("Twilio historical import function not found; trigger it manually later")
        else:
            since = ctx.get(keys.TWILIO_IMPORT_SINCE)
            response = _post(ctx, url, {"since_date": since} if since else {})
            if response is not None and response.status_code < 400:
                console.success("Twilio historical import triggered")
                console.detail("This may take several minutes. Check function logs for progress.")
            else:
                console.warning(f"Twilio historical import may not have been triggered. URL: {url}")

    if meet:
        url = ctx.cloud.function_url(DRIVE_SYNC_FUNCTION, project, region) or ctx.get(keys.DRIVE_SYNC_URL)
        if not url:
            console.warning("Google Meet sync function not found; trigger the import manually later")
        else:
            response = _post(ctx, url, {"historical_import": True}, params={"historical_import": "true"})
            if response is not None and response.status_code < 400:
                console.success("Google Meet historical import triggered")
            else:
                console.warning(f"Google Meet import may not have been triggered. Retry via {url}?historical_import=true")
