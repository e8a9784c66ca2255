"""
Terraform driver and tfvars generation.

One tfvars file per deployment lives at
``<terraform_dir>/environments/<domain>.tfvars``. Setup writes it; teardown
reads it back to find the project. State is kept in a versioned GCS bucket
(``<project>-tfstate``) under the configured prefix.
"""

from __future__ import annotations

import json
import logging
import re
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

from ingestctl.naming import tfvars_filename
from ingestctl.runner import CommandResult, CommandRunner
from ingestctl.timeouts import TERRAFORM_TIMEOUT_S

logger = logging.getLogger(__name__)

# Modules removed by a partial teardown; BigQuery is left alone
PARTIAL_DESTROY_TARGETS = [
    "module.functions",
    "module.iam",
    "module.scheduler",
    "module.secrets",
    "module.storage",
    "module.monitoring",
]

_TFVAR_LINE = re.compile(r'^\s*([A-Za-z_][A-Za-z0-9_]*)\s*=\s*"?([^"#]*?)"?\s*(#.*)?$')


@dataclass
class DeploymentVars:
    """Variables handed to the Terraform root module."""
    gcp_project_id: str
    region: str
    workspace_domain: str
    workspace_admin_email: str
    gcs_bucket_prefix: str
    bigquery_dataset: str = "corporate_context"
    bigquery_location: str = "EU"
    enable_telegram: bool = False
    enable_twilio: bool = False
    enable_openai: bool = False
    secret_names: Dict[str, str] = field(default_factory=dict)

    def render(self) -> str:
        """Render as HCL. Secrets are created by setup, never by Terraform."""
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        lines = [
            f"# Generated by ingestctl on {stamp}",
            f"# Domain: {self.workspace_domain}",
            "",
            _assign("gcp_project_id", self.gcp_project_id),
            _assign("region", self.region),
            "",
            _assign("workspace_domain", self.workspace_domain),
            _assign("workspace_admin_email", self.workspace_admin_email),
            "",
            _assign("bigquery_dataset", self.bigquery_dataset),
            _assign("bigquery_location", self.bigquery_location),
            "",
            _assign("gcs_bucket_prefix", self.gcs_bucket_prefix),
            "",
            "# Enabled modules",
            _assign("enable_gmail", True),
            _assign("enable_google_meet", True),
            _assign("enable_telegram", self.enable_telegram),
            _assign("enable_twilio", self.enable_twilio),
            _assign("enable_voice_enrollment", self.enable_twilio),
            _assign("enable_ai_enrichment", self.enable_openai),
            "",
            "# Secrets (already created)",
            _assign("create_gmail_secret", False),
            _assign("create_telegram_secret", False),
            _assign("create_twilio_secrets", False),
            _assign("create_openai_secret", False),
            "",
        ]
        for key in sorted(self.secret_names):
            lines.append(_assign(f"secret_name_{key}", self.secret_names[key]))
        return "\n".join(lines) + "\n"


def _assign(key: str, value) -> str:
    if isinstance(value, bool):
        rendered = "true" if value else "false"
    else:
        rendered = json.dumps(str(value))
    return f"{key} = {rendered}"


def parse_tfvars(text: str) -> Dict[str, str]:
    """Read flat ``key = value`` assignments; first assignment wins."""
    values: Dict[str, str] = {}
    for line in text.splitlines():
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        match = _TFVAR_LINE.match(line)
        if match and match.group(1) not in values:
            values[match.group(1)] = match.group(2).strip()
    return values


@dataclass
class ImportTarget:
    """A pre-existing resource to adopt into Terraform state."""
    address: str
    resource_id: str
    exists: bool


class TerraformClient:
    """Runs terraform in the root module directory."""

    def __init__(self, runner: CommandRunner, workdir: Path):
        self.runner = runner
        self.workdir = Path(workdir)

    def tfvars_path(self, domain: str) -> Path:
        return self.workdir / "environments" / tfvars_filename(domain)

    def read_tfvars(self, domain: str) -> Dict[str, str]:
        path = self.tfvars_path(domain)
        if not path.exists():
            return {}
        return parse_tfvars(path.read_text())

    def write_tfvars(self, domain: str, variables: DeploymentVars) -> Path:
        path = self.tfvars_path(domain)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(variables.render())
        logger.info("Generated %s", path)
        return path

    def _tf(self, args: List[str], **kwargs) -> CommandResult:
        kwargs.setdefault("timeout", TERRAFORM_TIMEOUT_S)
        return self.runner.run("terraform", args, cwd=self.workdir, **kwargs)

    def init(self, bucket: str, prefix: str, check: bool = True) -> CommandResult:
        """Initialize the GCS backend. Expired tokens are refreshed by the runner."""
        return self._tf(
            [
                "init", "-input=false", "-reconfigure",
                f"-backend-config=bucket={bucket}",
                f"-backend-config=prefix={prefix}",
            ],
            check=check,
            context="Initializing Terraform",
        )

    def in_state(self, address: str) -> bool:
        return self._tf(["state", "show", address], check=False, retry=False).ok

    def import_if_exists(self, target: ImportTarget, var_file: Path) -> Optional[bool]:
        """
        Adopt ``target`` into state when it exists in the cloud but not in state.

        Returns:
            None if nothing was needed, True if imported, False if the import failed.
        """
        if not target.exists or self.in_state(target.address):
            return None
        result = self._tf(
            ["import", "-input=false", f"-var-file={var_file}", target.address, target.resource_id],
            check=False,
        )
        if not result.ok:
            logger.warning("Import of %s failed: %s", target.address, _first_error(result))
        return result.ok

    def apply(self, var_file: Path, extra_vars: Optional[Mapping[str, str]] = None) -> CommandResult:
        """Apply and return the result; the caller decides how to react to failures."""
        args = ["apply", "-input=false", "-auto-approve", f"-var-file={var_file}"]
        args += _var_args(extra_vars)
        return self._tf(args, check=False)

    def plan_destroy(
        self,
        var_file: Path,
        plan_file: str = "destroy.plan",
        targets: Iterable[str] = (),
        extra_vars: Optional[Mapping[str, str]] = None,
    ) -> CommandResult:
        args = ["plan", "-destroy", "-input=false", f"-var-file={var_file}", f"-out={plan_file}"]
        args += _var_args(extra_vars)
        args += [f"-target={t}" for t in targets]
        return self._tf(args, check=False)

    def apply_plan(self, plan_file: str = "destroy.plan") -> CommandResult:
        try:
            return self._tf(["apply", "-input=false", plan_file], check=False)
        finally:
            (self.workdir / plan_file).unlink(missing_ok=True)

    def outputs(self) -> Dict[str, str]:
        """All root outputs as strings; empty when state has none."""
        result = self._tf(["output", "-json"], check=False)
        if not result.ok or not result.output:
            return {}
        try:
            data = json.loads(result.output)
        except json.JSONDecodeError:
            logger.warning("Could not parse terraform output")
            return {}
        values = {}
        for name, entry in data.items():
            value = entry.get("value") if isinstance(entry, dict) else entry
            values[name] = "" if value is None else str(value)
        return values

    def clear_local_cache(self) -> List[Path]:
        """Remove ``.terraform/`` and the lock file."""
        removed = []
        cache = self.workdir / ".terraform"
        if cache.is_dir():
            shutil.rmtree(cache)
            removed.append(cache)
        lock = self.workdir / ".terraform.lock.hcl"
        if lock.exists():
            lock.unlink()
            removed.append(lock)
        return removed


def _var_args(extra_vars: Optional[Mapping[str, str]]) -> List[str]:
    return [f"-var={k}={v}" for k, v in (extra_vars or {}).items()]


def _first_error(result: CommandResult) -> str:
    for line in (result.stderr + "\n" + result.stdout).splitlines():
        if "error" in line.lower():
            return line.strip()
    return result.stderr.strip()[:200]
