"""
License tier verification.

The registry reports the licensed tier and user limit for a customer; the
Workspace Directory API reports how many active (not suspended) users the
domain has. The check classifies the pair with a grace band above the limit
and never blocks setup: an exceeded license is reported to the registry and
shown to the operator, nothing more.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from google.auth.exceptions import RefreshError, TransportError
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from pydantic import BaseModel, ConfigDict, field_validator

logger = logging.getLogger(__name__)

DIRECTORY_SCOPE = "https://www.googleapis.com/auth/admin.directory.user.readonly"
UNLIMITED_TIERS = frozenset({"founder"})
DIRECTORY_PAGE_SIZE = 500


class LicenseInfo(BaseModel):
    """License section of the registry's client record."""

    model_config = ConfigDict(extra="ignore")

    tier: Optional[str] = None
    user_limit: int = 0
    billing_status: Optional[str] = None

    @field_validator("user_limit", mode="before")
    @classmethod
    def null_limit(cls, v: Any) -> Any:
        return 0 if v is None else v

    @property
    def unlimited(self) -> bool:
        return (self.tier or "").lower() in UNLIMITED_TIERS or self.user_limit <= 0

    @property
    def known(self) -> bool:
        return bool(self.tier) and self.tier.lower() != "unknown"


class LicenseStatus(str, Enum):
    COMPLIANT = "compliant"
    GRACE_PERIOD = "grace_period"
    EXCEEDED = "exceeded"
    SKIPPED = "skipped"
    UNKNOWN = "unknown"


@dataclass
class LicenseCheck:
    """Outcome of comparing active users against the licensed limit."""
    status: LicenseStatus
    tier: Optional[str] = None
    user_limit: int = 0
    active_users: Optional[int] = None
    grace_limit: Optional[int] = None
    exceeded_by: int = 0

    @property
    def exceeded(self) -> bool:
        return self.status == LicenseStatus.EXCEEDED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "tier": self.tier,
            "user_limit": self.user_limit,
            "active_users": self.active_users,
            "grace_limit": self.grace_limit,
            "exceeded": self.exceeded,
            "exceeded_by": self.exceeded_by,
        }


def grace_limit(user_limit: int, grace_percent: int = 10) -> int:
    """Limit plus the grace band, rounded down: 100 users at 10% -> 110."""
    return user_limit + (user_limit * grace_percent) // 100


def classify_license(
    info: Optional[LicenseInfo],
    active_users: Optional[int],
    grace_percent: int = 10,
) -> LicenseCheck:
    """
    Classify the active user count against the license.

    - unknown tier, founder tier or no limit: ``skipped``
    - no usable count (None or 0): ``unknown``
    - count <= limit: ``compliant``
    - limit < count <= limit + grace: ``grace_period``
    - count > limit + grace: ``exceeded``; ``exceeded_by`` counts from the limit
    """
    if info is None or not info.known or info.unlimited:
        return LicenseCheck(
            status=LicenseStatus.SKIPPED,
            tier=info.tier if info else None,
            user_limit=info.user_limit if info else 0,
        )

    limit = info.user_limit
    grace = grace_limit(limit, grace_percent)
    check = LicenseCheck(
        status=LicenseStatus.UNKNOWN,
        tier=info.tier,
        user_limit=limit,
        active_users=active_users or None,
        grace_limit=grace,
    )
    if not active_users:
        return check

    if active_users > grace:
        check.status = LicenseStatus.EXCEEDED
        check.exceeded_by = active_users - limit
    elif active_users > limit:
        check.status = LicenseStatus.GRACE_PERIOD
    else:
        check.status = LicenseStatus.COMPLIANT
    return check


def count_active_users(key_info: Dict[str, Any], admin_email: str, domain: str) -> Optional[int]:
    """
    Count active Workspace users through the Directory API.

    Uses the delegated service account key, impersonating ``admin_email``.
    Returns None when delegation is not active yet or the call fails.
    """
    try:
        credentials = service_account.Credentials.from_service_account_info(
            key_info, scopes=[DIRECTORY_SCOPE],
        ).with_subject(admin_email)
        service = build("admin", "directory_v1", credentials=credentials, cache_discovery=False)

        count = 0
        page_token = None
        while True:
            results = service.users().list(
                domain=domain,
                query="isSuspended=false",
                maxResults=DIRECTORY_PAGE_SIZE,
                pageToken=page_token,
            ).execute()
            count += len(results.get("users", []))
            page_token = results.get("nextPageToken")
            if not page_token:
                break
        return count
    except HttpError as e:
        logger.warning("Directory API error while counting users: %s", e)
        return None
    except (ValueError, KeyError) as e:
        logger.warning("Unusable service account key for user count: %s", e)
        return None
    except (RefreshError, TransportError) as e:
        # Delegation not propagated yet
        logger.warning("Could not count Workspace users: %s", e)
        return None
