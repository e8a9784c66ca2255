"""
External command runner for gcloud, gsutil, bq and terraform.

Every CLI invocation goes through ``CommandRunner.run``. Failures are
classified from the captured output:

- ``AUTH_EXPIRED``: credentials are refreshed and the command retried once
- ``IAM_PROPAGATION``: wait ``iam_wait_s`` and retry once
- ``ORG_POLICY_PROPAGATION``: wait ``org_policy_wait_s`` and retry once
- ``ALREADY_EXISTS``: treated as success
- ``POLICY_VIOLATION``: raised as ``PolicyConflictError`` for the caller to degrade
- anything else: ``FatalProvisioningError`` with the captured stderr

Probes (describe, list) pass ``check=False`` and inspect the returned
``CommandResult`` instead of catching exceptions.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from ingestctl.errors import (
    AuthError,
    FatalProvisioningError,
    PolicyConflictError,
    ToolMissingError,
    TransientCloudError,
)
from ingestctl.telemetry import add_event
from ingestctl.timeouts import (
    IAM_PROPAGATION_WAIT_S,
    ORG_POLICY_PROPAGATION_WAIT_S,
    SUBPROCESS_DEFAULT_TIMEOUT_S,
)

logger = logging.getLogger(__name__)

TOKEN_ENV_VAR = "GOOGLE_OAUTH_ACCESS_TOKEN"

INSTALL_HINTS = {
    "gcloud": "Install the Google Cloud SDK: https://cloud.google.com/sdk/docs/install",
    "gsutil": "gsutil ships with the Google Cloud SDK: https://cloud.google.com/sdk/docs/install",
    "bq": "bq ships with the Google Cloud SDK: https://cloud.google.com/sdk/docs/install",
    "terraform": "Install Terraform: https://developer.hashicorp.com/terraform/install",
}


class FailureKind(str, Enum):
    """Classification of a failed command."""
    AUTH_EXPIRED = "auth_expired"
    IAM_PROPAGATION = "iam_propagation"
    ORG_POLICY_PROPAGATION = "org_policy_propagation"
    POLICY_VIOLATION = "policy_violation"
    ALREADY_EXISTS = "already_exists"
    NOT_FOUND = "not_found"
    FATAL = "fatal"


# Checked in order; first match wins.
_SIGNATURES = [
    (FailureKind.AUTH_EXPIRED, re.compile(
        r"invalid token json|oauth2/google|token (has )?expired|invalid_grant"
        r"|reauthentication (is )?required|unexpected eof|refresh token",
        re.IGNORECASE,
    )),
    (FailureKind.ALREADY_EXISTS, re.compile(
        r"already exists|already granted|already has|alreadyexists|already own",
        re.IGNORECASE,
    )),
    (FailureKind.POLICY_VIOLATION, re.compile(
        r"disableserviceaccountkeycreation|custom_org_policy_violation",
        re.IGNORECASE,
    )),
    (FailureKind.ORG_POLICY_PROPAGATION, re.compile(
        r"allowedpolicymemberdomains|do not belong to a permitted customer"
        r"|constraints/iam\.",
        re.IGNORECASE,
    )),
    (FailureKind.IAM_PROPAGATION, re.compile(
        r"service account .* does not exist|iam\.serviceaccounts\.actas"
        r"|is not a valid service account|permission .* denied on service account"
        r"|does not have permission to act as",
        re.IGNORECASE,
    )),
    (FailureKind.NOT_FOUND, re.compile(
        r"not found|does not exist|notfound|\b404\b",
        re.IGNORECASE,
    )),
]

RETRYABLE = frozenset({
    FailureKind.AUTH_EXPIRED,
    FailureKind.IAM_PROPAGATION,
    FailureKind.ORG_POLICY_PROPAGATION,
})


def classify_failure(stdout: str, stderr: str) -> FailureKind:
    """Classify a failed command from its output."""
    text = f"{stderr}\n{stdout}"
    for kind, pattern in _SIGNATURES:
        if pattern.search(text):
            return kind
    return FailureKind.FATAL


@dataclass
class CommandResult:
    """Captured outcome of one command invocation."""
    cmd: List[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    kind: Optional[FailureKind] = None
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def succeeded(self) -> bool:
        """Zero exit, or a create that found the resource already there."""
        return self.ok or self.kind == FailureKind.ALREADY_EXISTS

    @property
    def output(self) -> str:
        return self.stdout.strip()

    def lines(self) -> List[str]:
        return [line.strip() for line in self.stdout.splitlines() if line.strip()]


class CommandRunner:
    """
    Run CLI commands with failure classification and one-shot retry.

    Args:
        sleep: Sleep function, injectable so tests do not wait
        iam_wait_s: Wait before retrying an IAM propagation failure
        org_policy_wait_s: Wait before retrying an org policy propagation failure
        timeout: Default per-command timeout in seconds
    """

    def __init__(
        self,
        sleep: Callable[[float], None] = time.sleep,
        iam_wait_s: float = IAM_PROPAGATION_WAIT_S,
        org_policy_wait_s: float = ORG_POLICY_PROPAGATION_WAIT_S,
        timeout: float = SUBPROCESS_DEFAULT_TIMEOUT_S,
    ):
        self.sleep = sleep
        self.iam_wait_s = iam_wait_s
        self.org_policy_wait_s = org_policy_wait_s
        self.timeout = timeout
        self.env: Dict[str, str] = {}

    def require(self, tools: Iterable[str]) -> None:
        """Raise ToolMissingError for the first tool not on PATH."""
        for tool in tools:
            if not shutil.which(tool):
                raise ToolMissingError(tool, INSTALL_HINTS.get(tool, ""))

    def run(
        self,
        command: str,
        args: Sequence[str],
        *,
        check: bool = True,
        context: str = "",
        input_text: Optional[str] = None,
        cwd: Optional[Path] = None,
        timeout: Optional[float] = None,
        retry: bool = True,
        interactive: bool = False,
    ) -> CommandResult:
        """
        Run ``command args...`` synchronously.

        Args:
            command: Executable name (gcloud, gsutil, bq, terraform)
            args: Arguments
            check: Raise on unrecoverable failure instead of returning the result
            context: What the command is doing, for error messages
            input_text: Optional stdin
            cwd: Working directory
            timeout: Override the default timeout
            retry: Allow the single classified retry
            interactive: Inherit the terminal instead of capturing output

        Returns:
            CommandResult. ``kind`` is set when the exit code was non-zero.

        Raises:
            AuthError, TransientCloudError, PolicyConflictError,
            FatalProvisioningError: when ``check`` and the failure is not recoverable
            ToolMissingError: the executable is not installed
        """
        cmd = [command, *args]
        result = self._attempt(cmd, input_text, cwd, timeout, interactive)

        if result.ok or result.kind == FailureKind.ALREADY_EXISTS:
            if result.kind == FailureKind.ALREADY_EXISTS:
                logger.debug("Treating as success (already exists): %s", " ".join(cmd))
            return result

        if retry and result.kind in RETRYABLE:
            self._prepare_retry(cmd, result.kind)
            retried = self._attempt(cmd, input_text, cwd, timeout, interactive)
            retried.attempts = 2
            result = retried
            if result.succeeded:
                return result

        if not check:
            return result
        raise self._error_for(result, context, retried=result.attempts > 1)

    def _attempt(
        self,
        cmd: List[str],
        input_text: Optional[str],
        cwd: Optional[Path],
        timeout: Optional[float],
        interactive: bool,
    ) -> CommandResult:
        logger.debug("Running: %s", " ".join(cmd))
        result = self._execute(cmd, input_text, cwd, timeout or self.timeout, interactive)
        if not result.ok:
            result.kind = classify_failure(result.stdout, result.stderr)
            logger.debug("Command failed (%s, exit %d): %s", result.kind.value, result.exit_code, " ".join(cmd))
        return result

    def _execute(
        self,
        cmd: List[str],
        input_text: Optional[str],
        cwd: Optional[Path],
        timeout: float,
        interactive: bool,
    ) -> CommandResult:
        env = {**os.environ, **self.env}
        try:
            proc = subprocess.run(
                cmd,
                input=input_text,
                capture_output=not interactive,
                text=True,
                cwd=cwd,
                env=env,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(cmd, 124, "", f"Command timed out after {timeout:.0f} seconds")
        except FileNotFoundError:
            raise ToolMissingError(cmd[0], INSTALL_HINTS.get(cmd[0], ""))
        return CommandResult(cmd, proc.returncode, proc.stdout or "", proc.stderr or "")

    def _prepare_retry(self, cmd: List[str], kind: FailureKind) -> None:
        add_event("command.retry", command=cmd[0], reason=kind.value)
        if kind == FailureKind.AUTH_EXPIRED:
            logger.info("Credentials expired, refreshing access token")
            self.refresh_credentials()
        elif kind == FailureKind.IAM_PROPAGATION:
            logger.info("Waiting %.0fs for IAM propagation", self.iam_wait_s)
            self.sleep(self.iam_wait_s)
        else:
            logger.info("Waiting %.0fs for org policy propagation", self.org_policy_wait_s)
            self.sleep(self.org_policy_wait_s)

    def refresh_credentials(self) -> str:
        """Mint a fresh access token and export it to later child processes."""
        self.env.pop(TOKEN_ENV_VAR, None)
        result = self._execute(
            ["gcloud", "auth", "print-access-token"], None, None, self.timeout, False,
        )
        token = result.output
        if not result.ok or not token:
            raise AuthError(
                "Could not refresh Google credentials.\n"
                "Run: gcloud auth login && gcloud auth application-default login"
            )
        self.env[TOKEN_ENV_VAR] = token
        return token

    def _error_for(self, result: CommandResult, context: str, retried: bool):
        kind = result.kind
        args = dict(
            cmd=result.cmd,
            returncode=result.exit_code,
            stdout=result.stdout,
            stderr=result.stderr,
            context=context,
        )
        if kind == FailureKind.AUTH_EXPIRED:
            return AuthError(
                f"{context or 'Command'} failed: credentials expired.\n"
                "Run: gcloud auth login && gcloud auth application-default login"
            )
        if kind in (FailureKind.ORG_POLICY_PROPAGATION, FailureKind.POLICY_VIOLATION):
            return PolicyConflictError(**args)
        if kind == FailureKind.IAM_PROPAGATION and retried:
            return TransientCloudError(**args)
        return FatalProvisioningError(**args)
