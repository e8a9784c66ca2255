"""
Secret Manager access for integration credentials.

A secret has two independent axes: the container exists or not, and it
holds a value (at least one version) or not. ``ensure_secret`` and
``add_value`` manage them separately and are both idempotent; a value that
already exists is only replaced when the caller passes ``replace=True``.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from ingestctl.runner import CommandRunner

logger = logging.getLogger(__name__)

SECRET_MANAGER_URL = "https://console.cloud.google.com/security/secret-manager/secret"


class SecretStore:
    """Secret Manager operations scoped to one project."""

    def __init__(self, runner: CommandRunner, project: str, prefix: str = "CORCO_"):
        self.runner = runner
        self.project = project
        self.prefix = prefix

    def _gcloud(self, *args: str, **kwargs):
        return self.runner.run("gcloud", ["secrets", *args, f"--project={self.project}"], **kwargs)

    def exists(self, name: str) -> bool:
        return self._gcloud("describe", name, "--format=value(name)", check=False).ok

    def ensure_secret(self, name: str) -> bool:
        """
        Create an empty secret container if missing.

        Returns:
            True if the container was created, False if it already existed.
        """
        if self.exists(name):
            return False
        result = self._gcloud(
            "create", name, "--replication-policy=automatic", "--quiet",
            context=f"Creating secret {name}",
        )
        # Lost a race with another creator
        return result.ok

    def has_value(self, name: str) -> bool:
        result = self._gcloud(
            "versions", "list", name, "--limit=1", "--filter=state=ENABLED", "--format=value(name)",
            check=False,
        )
        return result.ok and bool(result.output)

    def add_value(self, name: str, value: str, replace: bool = False) -> bool:
        """
        Add a version holding ``value``.

        Returns:
            True if a version was added, False if a value existed and
            ``replace`` was not requested.
        """
        self.ensure_secret(name)
        if not replace and self.has_value(name):
            logger.debug("Secret %s already has a value, keeping it", name)
            return False
        self._gcloud(
            "versions", "add", name, "--data-file=-",
            input_text=value, context=f"Storing value in secret {name}",
        )
        return True

    def access(self, name: str) -> Optional[str]:
        """Latest value, or None when the secret or its value is missing."""
        result = self.runner.run(
            "gcloud",
            ["secrets", "versions", "access", "latest", f"--secret={name}", f"--project={self.project}"],
            check=False,
        )
        return result.stdout if result.ok else None

    def list_managed(self) -> List[str]:
        """Secrets in the project carrying the product prefix."""
        result = self._gcloud("list", f"--filter=name~^{self.prefix}", "--format=value(name)", check=False)
        if not result.ok:
            return []
        return [line.rsplit("/", 1)[-1] for line in result.lines()]

    def delete(self, name: str) -> bool:
        return self._gcloud("delete", name, "--quiet", check=False).ok

    def console_url(self, name: str) -> str:
        return f"{SECRET_MANAGER_URL}/{name}?project={self.project}"
