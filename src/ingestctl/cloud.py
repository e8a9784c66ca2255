"""
Thin wrappers over gcloud, gsutil and bq.

Each method maps to one CLI invocation through ``CommandRunner`` so that
failure classification and retries apply uniformly. Probes return plain
values (``None``, ``False``, empty lists) for missing resources; mutations
raise.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Set

from ingestctl.policy import OrgPolicy
from ingestctl.runner import CommandResult, CommandRunner, FailureKind

logger = logging.getLogger(__name__)

# Enabled first: every other services enable call depends on it
BOOTSTRAP_API = "cloudresourcemanager.googleapis.com"

REQUIRED_APIS = [
    "storage.googleapis.com",
    "iam.googleapis.com",
    "cloudfunctions.googleapis.com",
    "run.googleapis.com",
    "cloudbuild.googleapis.com",
    "bigquery.googleapis.com",
    "secretmanager.googleapis.com",
    "cloudscheduler.googleapis.com",
    "eventarc.googleapis.com",
    "artifactregistry.googleapis.com",
    "admin.googleapis.com",
    "gmail.googleapis.com",
    "drive.googleapis.com",
    "aiplatform.googleapis.com",
]


class ProjectState(str, Enum):
    """Lifecycle state of a GCP project as seen by the operator."""
    NOT_FOUND = "NOT_FOUND"
    ACTIVE = "ACTIVE"
    DELETE_REQUESTED = "DELETE_REQUESTED"

    @classmethod
    def parse(cls, value: str) -> "ProjectState":
        try:
            return cls(value.strip().upper())
        except ValueError:
            return cls.NOT_FOUND


@dataclass
class BillingAccount:
    account_id: str
    display_name: str

    @classmethod
    def parse_line(cls, line: str) -> "BillingAccount":
        name, _, display = line.partition("\t")
        return cls(account_id=name.replace("billingAccounts/", "").strip(), display_name=display.strip())


@dataclass
class CloudFunction:
    name: str
    region: str
    gen2: bool = True


class GcloudClient:
    """Typed access to the gcloud, gsutil and bq CLIs."""

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def _gcloud(self, *args: str, **kwargs) -> CommandResult:
        return self.runner.run("gcloud", list(args), **kwargs)

    # -------------------------------------------------------------------------
    # Operator account
    # -------------------------------------------------------------------------

    def active_account(self) -> Optional[str]:
        result = self._gcloud("config", "get-value", "account", check=False)
        account = result.output if result.ok else ""
        return account or None

    def login(self) -> None:
        self._gcloud("auth", "login", interactive=True, retry=False, context="Logging in to Google Cloud")

    def set_project(self, project: str) -> None:
        self._gcloud("config", "set", "project", project, "--quiet", context="Selecting project")

    def check_auth(self) -> bool:
        """True when an access token can be minted for the active account."""
        result = self._gcloud("auth", "print-access-token", check=False, retry=False)
        return result.ok and bool(result.output)

    # -------------------------------------------------------------------------
    # Projects and billing
    # -------------------------------------------------------------------------

    def project_state(self, project: str) -> ProjectState:
        result = self._gcloud(
            "projects", "describe", project, "--format=value(lifecycleState)", check=False,
        )
        if not result.ok:
            return ProjectState.NOT_FOUND
        return ProjectState.parse(result.output)

    def create_project(self, project: str, display_name: str) -> None:
        self._gcloud(
            "projects", "create", project, f"--name={display_name}", "--quiet",
            context=f"Creating project {project}",
        )

    def undelete_project(self, project: str) -> None:
        self._gcloud("projects", "undelete", project, "--quiet", context=f"Restoring project {project}")

    def delete_project(self, project: str) -> None:
        self._gcloud("projects", "delete", project, "--quiet", context=f"Deleting project {project}")

    def project_number(self, project: str) -> str:
        result = self._gcloud(
            "projects", "describe", project, "--format=value(projectNumber)",
            context=f"Reading project number of {project}",
        )
        return result.output

    def billing_accounts(self) -> List[BillingAccount]:
        result = self._gcloud(
            "billing", "accounts", "list", "--filter=open=true",
            "--format=value(name,displayName)", check=False,
        )
        if not result.ok:
            return []
        return [BillingAccount.parse_line(line) for line in result.lines()]

    def link_billing(self, project: str, account_id: str) -> None:
        self._gcloud(
            "billing", "projects", "link", project, f"--billing-account={account_id}", "--quiet",
            context="Linking billing account",
        )

    def enable_services(self, project: str, services: Iterable[str]) -> None:
        self._gcloud(
            "services", "enable", *services, f"--project={project}", "--quiet",
            context="Enabling APIs",
        )

    # -------------------------------------------------------------------------
    # IAM
    # -------------------------------------------------------------------------

    def service_account_unique_id(self, email: str, project: str) -> Optional[str]:
        """OAuth client id of a service account, None when it does not exist."""
        result = self._gcloud(
            "iam", "service-accounts", "describe", email, f"--project={project}",
            "--format=value(uniqueId)", check=False,
        )
        return result.output if result.ok and result.output else None

    def create_service_account(self, name: str, display_name: str, project: str) -> None:
        self._gcloud(
            "iam", "service-accounts", "create", name, f"--display-name={display_name}",
            f"--project={project}", "--quiet",
            context=f"Creating service account {name}",
        )

    def create_service_account_key(self, email: str, project: str, key_file: str) -> CommandResult:
        """Returns the raw result; policy refusals are the caller's decision."""
        return self._gcloud(
            "iam", "service-accounts", "keys", "create", key_file,
            f"--iam-account={email}", f"--project={project}",
            check=False, retry=False,
        )

    def add_project_binding(self, project: str, member: str, role: str, check: bool = True) -> CommandResult:
        return self._gcloud(
            "projects", "add-iam-policy-binding", project,
            f"--member={member}", f"--role={role}", "--condition=None", "--quiet",
            check=check, context=f"Granting {role} to {member}",
        )

    def add_service_account_binding(
        self, email: str, project: str, member: str, role: str, check: bool = True,
    ) -> CommandResult:
        return self._gcloud(
            "iam", "service-accounts", "add-iam-policy-binding", email,
            f"--member={member}", f"--role={role}", f"--project={project}", "--quiet",
            check=check, context=f"Granting {role} on {email} to {member}",
        )

    def project_roles_for(self, project: str, member: str) -> Set[str]:
        result = self._gcloud(
            "projects", "get-iam-policy", project,
            "--flatten=bindings[].members",
            f"--filter=bindings.members:{member}",
            "--format=value(bindings.role)", check=False,
        )
        return set(result.lines()) if result.ok else set()

    # -------------------------------------------------------------------------
    # Organization policy
    # -------------------------------------------------------------------------

    def describe_org_policy(self, constraint: str, project: str) -> OrgPolicy:
        result = self._gcloud(
            "resource-manager", "org-policies", "describe", constraint,
            f"--project={project}", "--effective", "--format=json", check=False,
        )
        if not result.ok or not result.output:
            return OrgPolicy(constraint=constraint)
        return OrgPolicy.from_gcloud(json.loads(result.output), constraint)

    def set_org_policy(self, project: str, policy_file: str) -> None:
        self._gcloud(
            "resource-manager", "org-policies", "set-policy", policy_file,
            f"--project={project}", context="Setting project org policy override",
        )

    def delete_org_policy(self, constraint: str, project: str) -> bool:
        result = self._gcloud(
            "resource-manager", "org-policies", "delete", constraint,
            f"--project={project}", check=False,
        )
        return result.ok

    # -------------------------------------------------------------------------
    # Serverless resources (teardown sweep)
    # -------------------------------------------------------------------------

    def list_functions(self, project: str) -> List[CloudFunction]:
        functions: List[CloudFunction] = []
        for gen2 in (True, False):
            args = ["functions", "list", f"--project={project}", "--format=value(name,region)"]
            if not gen2:
                args.append("--no-gen2")
            result = self._gcloud(*args, check=False)
            if not result.ok:
                continue
            for line in result.lines():
                name, _, region = line.partition("\t")
                functions.append(CloudFunction(name=name.rsplit("/", 1)[-1], region=region.strip(), gen2=gen2))
        return functions

    def function_url(self, name: str, project: str, region: str) -> Optional[str]:
        """HTTPS trigger URL of a deployed function, None when it is not deployed."""
        result = self._gcloud(
            "functions", "describe", name, f"--project={project}", f"--region={region}",
            "--format=value(serviceConfig.uri,httpsTrigger.url)", check=False,
        )
        if not result.ok:
            return None
        urls = [u.strip() for u in result.output.split("\t") if u.strip()]
        return urls[0] if urls else None

    def delete_function(self, fn: CloudFunction, project: str) -> bool:
        args = ["functions", "delete", fn.name, f"--region={fn.region}", f"--project={project}", "--quiet"]
        if fn.gen2:
            args.append("--gen2")
        result = self._gcloud(*args, check=False)
        return result.ok or result.kind == FailureKind.NOT_FOUND

    def list_run_services(self, project: str, region: str) -> List[str]:
        result = self._gcloud(
            "run", "services", "list", f"--project={project}", f"--region={region}",
            "--format=value(metadata.name)", check=False,
        )
        return result.lines() if result.ok else []

    def delete_run_service(self, name: str, project: str, region: str) -> bool:
        result = self._gcloud(
            "run", "services", "delete", name, f"--project={project}", f"--region={region}", "--quiet",
            check=False,
        )
        return result.ok or result.kind == FailureKind.NOT_FOUND

    def list_scheduler_jobs(self, project: str, region: str) -> List[str]:
        result = self._gcloud(
            "scheduler", "jobs", "list", f"--project={project}", f"--location={region}",
            "--format=value(ID)", check=False,
        )
        return [line.rsplit("/", 1)[-1] for line in result.lines()] if result.ok else []

    def delete_scheduler_job(self, name: str, project: str, region: str) -> bool:
        result = self._gcloud(
            "scheduler", "jobs", "delete", name, f"--project={project}", f"--location={region}", "--quiet",
            check=False,
        )
        return result.ok or result.kind == FailureKind.NOT_FOUND

    # -------------------------------------------------------------------------
    # Cloud Storage (gsutil)
    # -------------------------------------------------------------------------

    def bucket_exists(self, bucket: str) -> bool:
        return self.runner.run("gsutil", ["ls", "-b", f"gs://{bucket}"], check=False).ok

    def create_bucket(self, bucket: str, project: str, region: str, versioning: bool = False) -> None:
        self.runner.run(
            "gsutil", ["mb", "-l", region, "-p", project, f"gs://{bucket}"],
            context=f"Creating bucket {bucket}",
        )
        if versioning:
            self.runner.run(
                "gsutil", ["versioning", "set", "on", f"gs://{bucket}"],
                context=f"Enabling versioning on {bucket}",
            )

    def delete_bucket(self, bucket: str) -> bool:
        """Empty and remove a bucket. False when it did not exist."""
        if not self.bucket_exists(bucket):
            return False
        self.runner.run("gsutil", ["-m", "rm", "-r", f"gs://{bucket}/**"], check=False)
        result = self.runner.run("gsutil", ["rb", f"gs://{bucket}"], check=False)
        return result.ok

    # -------------------------------------------------------------------------
    # BigQuery (bq)
    # -------------------------------------------------------------------------

    def dataset_exists(self, project: str, dataset: str) -> bool:
        return self.runner.run("bq", ["show", f"--project_id={project}", dataset], check=False).ok

    def delete_dataset(self, project: str, dataset: str) -> bool:
        result = self.runner.run(
            "bq", ["rm", "-r", "-f", "-d", f"{project}:{dataset}"], check=False,
        )
        return result.ok

    def count_rows(self, project: str, sql: str) -> Optional[int]:
        """Run a COUNT query; None when the query fails."""
        result = self.runner.run(
            "bq",
            ["query", f"--project_id={project}", "--use_legacy_sql=false", "--format=csv", "--quiet", sql],
            check=False,
        )
        if not result.ok:
            return None
        lines = result.lines()
        try:
            return int(lines[-1]) if lines else 0
        except ValueError:
            logger.debug("Unexpected bq output: %s", result.output)
            return None
