"""
Client registry: prefill data, package download, registration and
teardown notifications.

Remote calls go through ``RegistryClient`` (httpx with retry on transient
status codes). Registration and teardown notices never fail a run: a
rejected or unreachable registry is logged as a warning and the caller
carries on.

``LocalDeploymentRegistry`` is the operator-side list of deployments made
from this machine, used by teardown to find a project when no tfvars file
is left.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ingestctl.errors import RegistrationWarning, UserInputError
from ingestctl.license import LicenseInfo
from ingestctl.naming import normalize_domain
from ingestctl.state import atomic_write_json
from ingestctl.timeouts import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_BACKOFF,
    DEFAULT_RETRY_DELAY_S,
    HTTP_CLIENT_TIMEOUT_S,
    RETRYABLE_HTTP_STATUS_CODES,
)

logger = logging.getLogger(__name__)


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


# =============================================================================
# Payload models
# =============================================================================


class Contact(BaseModel):
    model_config = ConfigDict(extra="ignore")

    first_name: Optional[str] = None
    surname: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    telegram_handle: Optional[str] = None


class ClientData(BaseModel):
    """Client record returned for a setup token."""

    model_config = ConfigDict(extra="ignore")

    company_name: Optional[str] = None
    domain: Optional[str] = None
    contact: Contact = Field(default_factory=Contact)
    consultant_email: Optional[str] = None
    license: Optional[LicenseInfo] = None
    error: Optional[str] = None

    @field_validator("contact", mode="before")
    @classmethod
    def null_contact(cls, v: Any) -> Any:
        return {} if v is None else v


class Identity(BaseModel):
    company_name: str
    domain: str
    admin_first_name: str
    admin_surname: str
    admin_email: str
    admin_phone: Optional[str] = None
    admin_telegram: Optional[str] = None


class Onboarding(BaseModel):
    setup_token: str
    consultant_email: Optional[str] = None


class DeploymentInfo(BaseModel):
    project_id: str
    region: str
    deployed_at: str = Field(default_factory=utc_timestamp)
    deployed_by: Optional[str] = None


class Modules(BaseModel):
    gmail: bool = True
    telegram: bool = False
    twilio: bool = False
    google_meet: bool = True
    voice_enrollment: bool = False
    ai_enrichment: bool = False


class HistoricalImport(BaseModel):
    gmail_mode: str = "none"
    gmail_since: Optional[str] = None
    twilio_import: bool = False
    twilio_since: Optional[str] = None
    meet_import: bool = False


class Endpoints(BaseModel):
    gmail_sync_url: Optional[str] = None
    telegram_webhook_url: Optional[str] = None
    drive_sync_url: Optional[str] = None
    voice_enroll_url: Optional[str] = None
    standardize_utterances_url: Optional[str] = None


class Resources(BaseModel):
    recordings_bucket: Optional[str] = None
    bigquery_dataset: Optional[str] = None
    gmail_service_account: Optional[str] = None
    gmail_client_id: Optional[str] = None


class LicenseReport(BaseModel):
    tier: str = "unknown"
    tier_limit: int = 0
    workspace_user_count: Optional[int] = None
    status: str = "unknown"
    exceeded: bool = False
    exceeded_by: int = 0
    verified_at: str = Field(default_factory=utc_timestamp)


class RegistrationPayload(BaseModel):
    """Body of ``POST /register``."""
    identity: Identity
    onboarding: Onboarding
    deployment: DeploymentInfo
    modules: Modules
    historical_import: HistoricalImport
    endpoints: Endpoints
    resources: Resources
    license: LicenseReport


class RegistrationAck(BaseModel):
    accepted: bool
    status_code: Optional[int] = None
    message: Optional[str] = None


class TeardownStarted(BaseModel):
    domain: str
    token: Optional[str] = None
    initiated_by: Optional[str] = None
    timestamp: str = Field(default_factory=utc_timestamp)


class TeardownCompleted(BaseModel):
    domain: str
    token: Optional[str] = None
    delete_data: bool = False
    delete_secrets: bool = False
    timestamp: str = Field(default_factory=utc_timestamp)


# =============================================================================
# Remote registry
# =============================================================================


class RegistryClient:
    """
    HTTP client for the setup registry.

    Args:
        base_url: Registry base URL
        token: Setup token, sent as a bearer token
        timeout: Request timeout in seconds
        transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        sleep: Sleep function used between retries
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = HTTP_CLIENT_TIMEOUT_S,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.transport = transport
        self.sleep = sleep

    def _client(self) -> httpx.Client:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout,
            transport=self.transport,
            follow_redirects=True,
        )

    def _request_with_retry(
        self,
        client: httpx.Client,
        method: str,
        url: str,
        max_retries: int = DEFAULT_MAX_RETRIES,
        **kwargs,
    ) -> httpx.Response:
        """
        Execute an HTTP request, retrying 502/503/504/429 and connection or
        timeout errors with exponential backoff.

        Raises:
            httpx.ConnectError: If all retries exhausted on connection failure
            httpx.TimeoutException: If all retries exhausted on timeout
        """
        delay = DEFAULT_RETRY_DELAY_S
        for attempt in range(max_retries + 1):
            try:
                response = client.request(method, url, **kwargs)
                if response.status_code in RETRYABLE_HTTP_STATUS_CODES and attempt < max_retries:
                    logger.warning(
                        "Registry returned %d for %s, retrying in %.1fs (%d/%d)",
                        response.status_code, url, delay, attempt + 1, max_retries + 1,
                    )
                    self.sleep(delay)
                    delay *= DEFAULT_RETRY_BACKOFF
                    continue
                return response
            except (httpx.TimeoutException, httpx.ConnectError) as e:
                if attempt >= max_retries:
                    logger.error("Registry request to %s failed after %d attempts: %s", url, max_retries + 1, e)
                    raise
                logger.warning(
                    "Registry request to %s failed: %s, retrying in %.1fs (%d/%d)",
                    url, e, delay, attempt + 1, max_retries + 1,
                )
                self.sleep(delay)
                delay *= DEFAULT_RETRY_BACKOFF
        raise RuntimeError("Unexpected retry loop exit")

    def _require_token(self) -> str:
        if not self.token:
            raise UserInputError("A setup token is required (--token)")
        return self.token

    def get_client(self, strict: bool = False) -> Optional[ClientData]:
        """
        Fetch the client record for the setup token.

        Args:
            strict: Raise UserInputError instead of returning None when the
                token is rejected or the registry is unreachable.
        """
        token = self._require_token()
        try:
            with self._client() as client:
                response = self._request_with_retry(client, "GET", f"/api/client/{token}")
        except httpx.HTTPError as e:
            if strict:
                raise UserInputError(f"Could not reach the registry: {e}") from e
            logger.warning("Could not fetch client data: %s", e)
            return None

        data = _json_or_none(response)
        if response.status_code != 200 or not isinstance(data, dict) or data.get("error"):
            message = (data or {}).get("error") if isinstance(data, dict) else None
            if strict:
                raise UserInputError(f"Invalid or expired setup token: {message or f'HTTP {response.status_code}'}")
            logger.warning("Registry did not return client data (HTTP %d)", response.status_code)
            return None
        try:
            return ClientData.model_validate(data)
        except ValidationError as e:
            if strict:
                raise UserInputError(f"Registry returned an unreadable client record: {e.error_count()} invalid field(s)") from e
            logger.warning("Ignoring unreadable client record: %s", e)
            return None

    def get_download_url(self) -> str:
        token = self._require_token()
        try:
            with self._client() as client:
                response = self._request_with_retry(client, "GET", f"/api/download/{token}")
        except httpx.HTTPError as e:
            raise UserInputError(f"Could not reach the registry: {e}") from e
        data = _json_or_none(response)
        url = data.get("download_url") if isinstance(data, dict) else None
        if response.status_code != 200 or not url:
            raise UserInputError(f"Could not get a download URL (HTTP {response.status_code})")
        return url

    def register(self, payload: RegistrationPayload) -> RegistrationAck:
        """POST the deployment record. Never raises."""
        try:
            return self._post("/register", payload.model_dump(mode="json"))
        except RegistrationWarning as w:
            logger.warning("Registration not accepted: %s", w.message)
            return RegistrationAck(accepted=False, status_code=w.status_code, message=w.message)

    def teardown_started(self, notice: TeardownStarted) -> bool:
        return self._notify("/api/teardown/start", notice)

    def teardown_completed(self, notice: TeardownCompleted) -> bool:
        return self._notify("/api/teardown/complete", notice)

    def _notify(self, path: str, body: BaseModel) -> bool:
        try:
            return self._post(path, body.model_dump(mode="json"), max_retries=0).accepted
        except RegistrationWarning as w:
            logger.debug("Teardown notification %s not delivered: %s", path, w.message)
            return False

    def _post(self, path: str, body: Dict[str, Any], max_retries: int = DEFAULT_MAX_RETRIES) -> RegistrationAck:
        try:
            with self._client() as client:
                response = self._request_with_retry(client, "POST", path, max_retries=max_retries, json=body)
        except httpx.HTTPError as e:
            raise RegistrationWarning(f"Registry unreachable: {e}") from e
        if not response.is_success:
            raise RegistrationWarning(
                f"Registry returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        data = _json_or_none(response)
        message = data.get("message") if isinstance(data, dict) else None
        return RegistrationAck(accepted=True, status_code=response.status_code, message=message)


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except (json.JSONDecodeError, ValueError):
        return None


# =============================================================================
# Local deployments registry
# =============================================================================


class DeploymentStatus:
    ACTIVE = "active"
    TORN_DOWN = "torn_down"


class LocalDeploymentRegistry:
    """
    Deployments made from this machine, stored at ``<state_dir>/deployments.json``.

    Layout::

        {"deployments": {"acme.com": {"gcp": {"project_id": ..., "region": ...},
                                      "status": "active", ...}}}
    """

    FILENAME = "deployments.json"

    def __init__(self, state_dir: Path):
        self.path = Path(state_dir) / self.FILENAME

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {"deployments": {}}
        try:
            data = json.loads(self.path.read_text())
        except (json.JSONDecodeError, OSError):
            logger.warning("Unreadable deployments registry %s, ignoring it", self.path)
            return {"deployments": {}}
        if not isinstance(data, dict) or not isinstance(data.get("deployments", {}), dict):
            logger.warning("Malformed deployments registry %s, ignoring it", self.path)
            return {"deployments": {}}
        data.setdefault("deployments", {})
        return data

    def get(self, domain: str) -> Optional[Dict[str, Any]]:
        return self._load()["deployments"].get(normalize_domain(domain))

    def entries(self) -> List[Dict[str, Any]]:
        deployments = self._load()["deployments"]
        return [dict(entry, domain=domain) for domain, entry in sorted(deployments.items())]

    def record(self, domain: str, project_id: str, region: str, **extra: Any) -> None:
        data = self._load()
        data["deployments"][normalize_domain(domain)] = {
            "gcp": {"project_id": project_id, "region": region},
            "status": DeploymentStatus.ACTIVE,
            "deployed_at": utc_timestamp(),
            **extra,
        }
        atomic_write_json(self.path, data)

    def mark_torn_down(self, domain: str, **details: Any) -> bool:
        data = self._load()
        entry = data["deployments"].get(normalize_domain(domain))
        if entry is None:
            return False
        entry["status"] = DeploymentStatus.TORN_DOWN
        entry["torn_down_at"] = utc_timestamp()
        if details:
            entry["teardown"] = details
        atomic_write_json(self.path, data)
        return True

    def remove(self, domain: str) -> bool:
        data = self._load()
        if data["deployments"].pop(normalize_domain(domain), None) is None:
            return False
        atomic_write_json(self.path, data)
        return True
