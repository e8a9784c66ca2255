"""
Deterministic names for the cloud resources owned by a deployment.

Every name is a pure function of the customer domain (and, for a few,
the project id or number), so setup and teardown agree without a lookup.
"""

from __future__ import annotations

import re
from typing import List

PROJECT_SUFFIX = "-ingestion"
MAX_PROJECT_ID_LENGTH = 30
MAX_DISPLAY_NAME_LENGTH = 30
MAX_DISAMBIGUATION_SUFFIX = 9

GMAIL_SYNC_SA = "gmail-sync-sa"

_DOMAIN_RE = re.compile(r"^(?=.{3,253}$)([a-z0-9]([a-z0-9-]*[a-z0-9])?\.)+[a-z]{2,63}$")


def normalize_domain(domain: str) -> str:
    return domain.strip().lower().rstrip(".")


def is_valid_domain(domain: str) -> bool:
    return bool(_DOMAIN_RE.match(normalize_domain(domain)))


def project_id(domain: str, suffix: int = 1, max_length: int = MAX_PROJECT_ID_LENGTH) -> str:
    """
    Project id for a domain: ``acme.com`` -> ``acme-com-ingestion``.

    ``suffix`` >= 2 appends ``-<n>`` for disambiguation. The suffix counts
    against ``max_length``; the base is truncated to make room.
    """
    base = normalize_domain(domain).replace(".", "-") + PROJECT_SUFFIX
    tail = f"-{suffix}" if suffix > 1 else ""
    base = base[: max_length - len(tail)].rstrip("-")
    return base + tail


def project_id_candidates(domain: str, max_length: int = MAX_PROJECT_ID_LENGTH) -> List[str]:
    """The base id followed by ``-2`` ... ``-9`` variants."""
    return [
        project_id(domain, n, max_length)
        for n in range(1, MAX_DISAMBIGUATION_SUFFIX + 1)
    ]


def project_display_name(domain: str) -> str:
    """``acme.co.uk`` -> ``Ingestion - acme co`` (TLD dropped, 30 chars max)."""
    labels = normalize_domain(domain).split(".")
    stem = " ".join(labels[:-1]) if len(labels) > 1 else labels[0]
    return f"Ingestion - {stem}"[:MAX_DISPLAY_NAME_LENGTH].rstrip()


def tfstate_bucket(project: str) -> str:
    return f"{project}-tfstate"


def recordings_bucket(project: str) -> str:
    return f"{project}-recordings"


def voice_bucket(project: str) -> str:
    return f"{project}-voice"


def function_source_bucket(project: str) -> str:
    return f"{project}-function-source"


def data_buckets(project: str) -> List[str]:
    return [recordings_bucket(project), voice_bucket(project)]


def bucket_prefix(domain: str) -> str:
    return normalize_domain(domain).replace(".", "-") + PROJECT_SUFFIX


def service_account_email(name: str, project: str) -> str:
    return f"{name}@{project}.iam.gserviceaccount.com"


def compute_service_account(project_number: str) -> str:
    return f"{project_number}-compute@developer.gserviceaccount.com"


def appengine_service_account(project: str) -> str:
    return f"{project}@appspot.gserviceaccount.com"


def cloudbuild_service_account(project_number: str) -> str:
    return f"{project_number}@cloudbuild.gserviceaccount.com"


def secret_name(integration_key: str, prefix: str = "CORCO_") -> str:
    """``TELEGRAM_BOT_TOKEN`` -> ``CORCO_TELEGRAM_BOT_TOKEN``."""
    return f"{prefix}{integration_key}"


def tfvars_filename(domain: str) -> str:
    return f"{normalize_domain(domain)}.tfvars"
