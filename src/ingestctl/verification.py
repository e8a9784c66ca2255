"""
End-to-end verification of a fresh deployment.

Welcome messages are sent through every enabled channel first, then a
single bounded wait lets the pipelines catch up, then BigQuery is checked
for arrival. Results are informational only; a pending channel never
changes the exit code.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

import httpx

from ingestctl.cloud import GcloudClient
from ingestctl.timeouts import HTTP_CLIENT_TIMEOUT_S, HTTP_HEALTH_CHECK_TIMEOUT_S, PIPELINE_WAIT_S

logger = logging.getLogger(__name__)

ARRIVAL_WINDOW_MINUTES = 15
GMAIL_TRIGGER_SETTLE_S = 10.0

WELCOME_EMAIL_PATH = "/send-welcome-email"
WELCOME_TELEGRAM_PATH = "/send-welcome-telegram"
WELCOME_CALL_PATH = "/make-welcome-call"


class ChannelStatus(str, Enum):
    OK = "ok"
    PENDING = "pending"
    NOT_CONFIGURED = "not_configured"


@dataclass
class VerificationTarget:
    """What to verify and whom to greet."""
    project_id: str
    dataset: str
    client_name: str
    admin_first_name: str
    admin_email: str
    enabled_modules: List[str]
    gmail_sync_url: Optional[str] = None
    admin_phone: Optional[str] = None
    consultant_email: Optional[str] = None
    telegram_enabled: bool = False
    telegram_group_id: Optional[str] = None
    twilio_enabled: bool = False
    recordings_bucket: Optional[str] = None


@dataclass
class VerificationReport:
    channels: Dict[str, ChannelStatus] = field(default_factory=dict)
    gmail_sync_ok: bool = False
    notes: List[str] = field(default_factory=list)

    @property
    def all_ok(self) -> bool:
        return self.gmail_sync_ok and all(
            s != ChannelStatus.PENDING for s in self.channels.values()
        )

    def to_dict(self) -> Dict[str, str]:
        data = {name: status.value for name, status in self.channels.items()}
        data["gmail_sync"] = "ok" if self.gmail_sync_ok else "pending"
        return data


class Verifier:
    """
    Sends welcome messages and checks they reached BigQuery.

    Args:
        cloud: gcloud/bq wrapper used for the arrival queries
        welcome_base_url: Base URL of the welcome message functions
        sleep: Sleep function, injectable for tests
        pipeline_wait_s: Single wait before checking arrival
        transport: Optional httpx transport for tests
    """

    def __init__(
        self,
        cloud: GcloudClient,
        welcome_base_url: str,
        sleep: Callable[[float], None] = time.sleep,
        pipeline_wait_s: float = PIPELINE_WAIT_S,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.cloud = cloud
        self.welcome_base_url = welcome_base_url.rstrip("/")
        self.sleep = sleep
        self.pipeline_wait_s = pipeline_wait_s
        self.transport = transport

    def _post_welcome(self, path: str, body: dict) -> Optional[dict]:
        """POST to a welcome endpoint; the response body when it reports success."""
        try:
            with httpx.Client(timeout=HTTP_CLIENT_TIMEOUT_S, transport=self.transport) as client:
                response = client.post(f"{self.welcome_base_url}{path}", json=body)
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Welcome endpoint %s failed: %s", path, e)
            return None
        if response.status_code == 200 and isinstance(data, dict) and data.get("success") is True:
            return data
        logger.warning("Welcome endpoint %s returned HTTP %d", path, response.status_code)
        return None

    def probe(self, url: Optional[str]) -> bool:
        """True when ``url`` answers a GET with HTTP 200."""
        if not url:
            return False
        try:
            with httpx.Client(timeout=HTTP_HEALTH_CHECK_TIMEOUT_S, transport=self.transport) as client:
                return client.get(url).status_code == 200
        except httpx.HTTPError as e:
            logger.debug("Probe of %s failed: %s", url, e)
            return False

    def send_welcome(self, target: VerificationTarget) -> Dict[str, bool]:
        base = {
            "client_name": target.client_name,
            "admin_first_name": target.admin_first_name,
            "project_id": target.project_id,
            "enabled_modules": target.enabled_modules,
        }
        sent = {"email": False, "telegram": False, "call": False}

        sent["email"] = self._post_welcome(WELCOME_EMAIL_PATH, {
            **base,
            "admin_email": target.admin_email,
            "consultant_email": target.consultant_email,
        }) is not None

        if target.telegram_enabled and target.telegram_group_id:
            sent["telegram"] = self._post_welcome(WELCOME_TELEGRAM_PATH, {
                **base,
                "chat_id": target.telegram_group_id,
                "consultant_email": target.consultant_email,
            }) is not None

        if target.twilio_enabled and target.admin_phone:
            data = self._post_welcome(WELCOME_CALL_PATH, {
                **base,
                "to_number": target.admin_phone,
                "recordings_bucket": target.recordings_bucket,
            })
            if data is not None:
                sent["call"] = True
                logger.info("Welcome call initiated (SID: %s)", data.get("call_sid"))
        return sent

    def _arrived(self, target: VerificationTarget, table: str, where: str) -> bool:
        sql = (
            f"SELECT COUNT(*) AS cnt FROM `{target.project_id}.{target.dataset}.{table}` "
            f"WHERE {where}"
        )
        count = self.cloud.count_rows(target.project_id, sql)
        return bool(count)

    def verify(self, target: VerificationTarget) -> VerificationReport:
        report = VerificationReport()
        sent = self.send_welcome(target)
        report.gmail_sync_ok = self.probe(target.gmail_sync_url)
        if not report.gmail_sync_ok:
            report.notes.append(
                "Gmail sync did not answer yet; domain-wide delegation can take a while to propagate."
            )

        pending_checks = (sent["email"] and report.gmail_sync_ok) or sent["telegram"] or sent["call"]
        if pending_checks:
            logger.info("Waiting %.0fs for pipelines to process", self.pipeline_wait_s)
            self.sleep(self.pipeline_wait_s)
            if report.gmail_sync_ok:
                # Nudge the sync instead of waiting for its schedule
                self.probe(target.gmail_sync_url)
                self.sleep(GMAIL_TRIGGER_SETTLE_S)

        window = f"TIMESTAMP_SUB(CURRENT_TIMESTAMP(), INTERVAL {ARRIVAL_WINDOW_MINUTES} MINUTE)"

        if sent["email"] and report.gmail_sync_ok and self._arrived(
            target, "email_messages",
            f"sender_email LIKE '%corco%' AND subject LIKE '%Welcome%' AND timestamp > {window}",
        ):
            report.channels["email"] = ChannelStatus.OK
        else:
            report.channels["email"] = ChannelStatus.PENDING

        if not target.telegram_enabled:
            report.channels["telegram"] = ChannelStatus.NOT_CONFIGURED
        elif sent["telegram"] and self._arrived(
            target, "telegram_messages",
            f"text LIKE '%Welcome%' AND text LIKE '%Corco%' AND timestamp > {window}",
        ):
            report.channels["telegram"] = ChannelStatus.OK
        else:
            report.channels["telegram"] = ChannelStatus.PENDING

        if not target.twilio_enabled or not target.admin_phone:
            report.channels["call"] = ChannelStatus.NOT_CONFIGURED
        elif sent["call"] and self._arrived(target, "call_transcripts", f"created_at > {window}"):
            report.channels["call"] = ChannelStatus.OK
        else:
            report.channels["call"] = ChannelStatus.PENDING
            if sent["call"]:
                report.notes.append("Call transcript not ingested yet (the call may not have been answered).")

        return report
