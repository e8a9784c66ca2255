"""
Deployment teardown.

A ``RetentionPolicy`` decides which resource categories are destroyed. The
default keeps everything that holds customer data (the BigQuery dataset,
the integration secrets and the local configuration) and removes only the
serving infrastructure. ``plan_teardown`` turns the policy into a
``TeardownPlan``; ``TeardownRunner`` executes it in one of three modes:

- ``keep_project``: sweep functions, Cloud Run services, scheduler jobs and
  buckets with gcloud, leaving the project and its billing link in place
- ``delete_project``: with every deletion flag set, delete the project
- ``partial``: ``terraform destroy`` scoped to the serving modules, or the
  whole state when data deletion was requested

Teardown never raises for resources that are already gone. Only a failed
confirmation stops it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Set

import httpx

from ingestctl import console
from ingestctl.cloud import GcloudClient, ProjectState
from ingestctl.config import IngestCtlConfig
from ingestctl.console import Prompter
from ingestctl.errors import CommandFailure, UserInputError
from ingestctl.logger import StepLogger
from ingestctl.naming import (
    GMAIL_SYNC_SA,
    data_buckets,
    function_source_bucket,
    normalize_domain,
    project_id_candidates,
    secret_name,
    service_account_email,
    tfstate_bucket,
)
from ingestctl.policy import ALLOWED_MEMBER_DOMAINS, EnforcementMode
from ingestctl.registry import LocalDeploymentRegistry, RegistryClient, TeardownCompleted, TeardownStarted
from ingestctl.runner import CommandRunner
from ingestctl.secrets import SecretStore
from ingestctl.state import StateStore
from ingestctl.telegram import TOKEN_SECRET, TelegramBot
from ingestctl.telemetry import add_event, run_span
from ingestctl.terraform import PARTIAL_DESTROY_TARGETS, TerraformClient

logger = logging.getLogger(__name__)

DWD_ADMIN_URL = "https://admin.google.com/ac/owl/domainwidedelegation"
PROJECT_SETTINGS_URL = "https://console.cloud.google.com/iam-admin/settings"


# =============================================================================
# Policy and plan
# =============================================================================


class ResourceCategory(str, Enum):
    """Groups of resources a teardown may destroy or preserve."""
    INFRASTRUCTURE = "infrastructure"
    DATASET = "dataset"
    SECRETS = "secrets"
    CONFIG = "config"
    PROJECT = "project"


class TeardownMode(str, Enum):
    KEEP_PROJECT = "keep_project"
    DELETE_PROJECT = "delete_project"
    PARTIAL = "partial"


@dataclass(frozen=True)
class RetentionPolicy:
    """
    What a teardown may delete. Supplied per invocation, never persisted.

    Attributes:
        delete_data: Delete the BigQuery dataset
        delete_secrets: Delete the product's Secret Manager secrets
        delete_config: Delete the tfvars file, Terraform state and local cache
        keep_project: Keep the GCP project even when everything else goes
    """
    delete_data: bool = False
    delete_secrets: bool = False
    delete_config: bool = False
    keep_project: bool = False

    @classmethod
    def everything(cls, keep_project: bool = False) -> "RetentionPolicy":
        return cls(delete_data=True, delete_secrets=True, delete_config=True, keep_project=keep_project)

    @property
    def deletes_everything(self) -> bool:
        return self.delete_data and self.delete_secrets and self.delete_config


@dataclass
class TeardownPlan:
    mode: TeardownMode
    policy: RetentionPolicy
    deleted: Set[ResourceCategory]
    preserved: Set[ResourceCategory]

    @property
    def destroy_targets(self) -> List[str]:
        """Terraform targets for a partial destroy; empty means the whole state."""
        if self.mode != TeardownMode.PARTIAL or self.policy.delete_data:
            return []
        return list(PARTIAL_DESTROY_TARGETS)

    def deletes(self, category: ResourceCategory) -> bool:
        return category in self.deleted


def plan_teardown(policy: RetentionPolicy) -> TeardownPlan:
    """Map a retention policy to a mode and the categories it destroys."""
    if policy.keep_project:
        mode = TeardownMode.KEEP_PROJECT
    elif policy.deletes_everything:
        mode = TeardownMode.DELETE_PROJECT
    else:
        mode = TeardownMode.PARTIAL

    deleted = {ResourceCategory.INFRASTRUCTURE}
    if policy.delete_data:
        deleted.add(ResourceCategory.DATASET)
    if policy.delete_secrets:
        deleted.add(ResourceCategory.SECRETS)
    if policy.delete_config:
        deleted.add(ResourceCategory.CONFIG)
    if mode == TeardownMode.DELETE_PROJECT:
        deleted.add(ResourceCategory.PROJECT)
    preserved = set(ResourceCategory) - deleted
    return TeardownPlan(mode=mode, policy=policy, deleted=deleted, preserved=preserved)


# =============================================================================
# Execution
# =============================================================================


@dataclass
class ProjectTarget:
    """Where the deployment lives and how that was determined."""
    project_id: Optional[str]
    region: str
    dataset: str
    source: str


@dataclass
class TeardownOutcome:
    domain: str
    project_id: Optional[str]
    mode: TeardownMode
    project_deleted: bool = False
    remote_skipped: bool = False
    removed: List[str] = field(default_factory=list)
    secrets_remaining: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "domain": self.domain,
            "project_id": self.project_id,
            "mode": self.mode.value,
            "project_deleted": self.project_deleted,
            "remote_skipped": self.remote_skipped,
            "removed": list(self.removed),
            "secrets_remaining": list(self.secrets_remaining),
            "warnings": list(self.warnings),
        }


class TeardownRunner:
    """
    Executes a teardown plan for one domain.

    Args:
        domain: Customer domain
        policy: Retention policy for this invocation
        config: Loaded configuration
        runner: Command runner for gcloud, gsutil, bq and terraform
        registry: Registry client used for start and completion notices
        store: State store whose record for the domain is cleared
        prompter: Source of confirmations
        force: Skip confirmations
        restore_org_policy: Remove the project-level public-members exception
        project_id: Explicit project id, skipping resolution
        token: Setup token included in registry notices
        http_transport: Optional httpx transport for the Telegram call
    """

    def __init__(
        self,
        domain: str,
        policy: RetentionPolicy,
        config: IngestCtlConfig,
        runner: CommandRunner,
        registry: RegistryClient,
        store: StateStore,
        prompter: Prompter,
        force: bool = False,
        restore_org_policy: bool = False,
        project_id: Optional[str] = None,
        token: Optional[str] = None,
        http_transport: Optional[httpx.BaseTransport] = None,
    ):
        self.domain = normalize_domain(domain)
        self.policy = policy
        self.plan = plan_teardown(policy)
        self.config = config
        self.runner = runner
        self.cloud = GcloudClient(runner)
        self.terraform = TerraformClient(runner, config.get_terraform_path())
        self.registry = registry
        self.local_registry = LocalDeploymentRegistry(config.get_state_path())
        self.store = store
        self.prompter = prompter
        self.force = force
        self.restore_org_policy = restore_org_policy
        self.explicit_project = project_id
        self.token = token
        self.http_transport = http_transport
        self.events = StepLogger(self.domain)

    # -------------------------------------------------------------------------
    # Resolution and confirmation
    # -------------------------------------------------------------------------

    def resolve_project(self) -> ProjectTarget:
        """Explicit id, then the tfvars file, then the local registry, then derived ids."""
        region = self.config.region
        dataset = self.config.bigquery_dataset
        if self.explicit_project:
            return ProjectTarget(self.explicit_project, region, dataset, "explicit")

        tfvars = self.terraform.read_tfvars(self.domain)
        dataset = tfvars.get("bigquery_dataset") or dataset
        if tfvars.get("gcp_project_id"):
            return ProjectTarget(tfvars["gcp_project_id"], tfvars.get("region") or region, dataset, "tfvars")

        entry = self.local_registry.get(self.domain) or {}
        gcp = entry.get("gcp") or {}
        if gcp.get("project_id"):
            console.warning(f"Using project ID from the local registry: {gcp['project_id']}")
            return ProjectTarget(gcp["project_id"], gcp.get("region") or region, dataset, "registry")

        for candidate in project_id_candidates(self.domain, self.config.project_id_max_length):
            if self.cloud.project_state(candidate) != ProjectState.NOT_FOUND:
                console.warning(f"Derived project ID from domain: {candidate}")
                return ProjectTarget(candidate, region, dataset, "derived")

        console.warning("Could not determine the project ID; only local files will be cleaned up")
        return ProjectTarget(None, region, dataset, "none")

    def describe(self, target: ProjectTarget) -> None:
        plan = self.plan
        console.section(f"Teardown: {self.domain}")
        console.detail(f"Project:  {target.project_id or 'unknown'}")
        console.detail(f"Mode:     {plan.mode.value}")
        console.detail("Infrastructure (functions, scheduler jobs, buckets): WILL DELETE")
        for category, label in (
            (ResourceCategory.DATASET, f"BigQuery dataset ({target.dataset})"),
            (ResourceCategory.SECRETS, f"Secrets ({self.config.secret_prefix}*)"),
            (ResourceCategory.CONFIG, f"Config ({self.terraform.tfvars_path(self.domain)})"),
            (ResourceCategory.PROJECT, "GCP project"),
        ):
            console.detail(f"{label}: {'WILL DELETE' if plan.deletes(category) else 'preserved'}")

    def confirm(self) -> None:
        if self.force:
            return
        answer = self.prompter.ask("Type the domain name to confirm")
        if normalize_domain(answer) != self.domain:
            raise UserInputError("Teardown cancelled: confirmation did not match the domain")

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def run(self) -> TeardownOutcome:
        target = self.resolve_project()
        self.describe(target)
        self.confirm()

        outcome = TeardownOutcome(domain=self.domain, project_id=target.project_id, mode=self.plan.mode)
        operator = self.cloud.active_account()
        self.events.teardown_started(target.project_id, self.plan.mode.value)
        self.registry.teardown_started(
            TeardownStarted(domain=self.domain, token=self.token, initiated_by=operator)
        )

        with run_span(self.domain, "teardown", target.project_id):
            exists = self._project_reachable(target)
            if exists and self.plan.mode == TeardownMode.DELETE_PROJECT and not self._confirm_project(target.project_id):
                # Nothing remote is touched once the project confirmation fails
                outcome.warnings.append("Project deletion skipped (confirmation mismatch); cloud resources left untouched")
                outcome.remote_skipped = True
                exists = False
            if exists:
                self._remove_telegram_webhook(target.project_id, outcome)
                if self.plan.mode == TeardownMode.KEEP_PROJECT:
                    self._sweep(target, outcome)
                elif self.plan.mode == TeardownMode.DELETE_PROJECT:
                    outcome.project_deleted = self._delete_project(target.project_id, outcome)
                else:
                    self._terraform_destroy(target, outcome)

            live = exists and not outcome.project_deleted
            if live and self.policy.delete_secrets:
                self._delete_secrets(target.project_id, outcome)
            if live and self.policy.delete_config:
                if self.cloud.delete_bucket(tfstate_bucket(target.project_id)):
                    outcome.removed.append(f"gs://{tfstate_bucket(target.project_id)}")
            if live and self.restore_org_policy:
                self._restore_org_policy(target.project_id, outcome)
            self._clean_local(outcome)

        self.registry.teardown_completed(
            TeardownCompleted(
                domain=self.domain,
                token=self.token,
                delete_data=self.policy.delete_data,
                delete_secrets=self.policy.delete_secrets,
            )
        )
        self.events.teardown_completed(target.project_id, outcome.removed)
        print_manual_steps(target.project_id, self.policy)
        print_teardown_summary(outcome, self.plan)
        return outcome

    def _project_reachable(self, target: ProjectTarget) -> bool:
        project = target.project_id
        if not project:
            return False
        if self.plan.mode == TeardownMode.KEEP_PROJECT:
            self.cloud.set_project(project)
            return True
        if self.cloud.project_state(project) != ProjectState.ACTIVE:
            console.warning(f"Project {project} does not exist or is not accessible; continuing with local cleanup")
            return False
        return True

    def _remove_telegram_webhook(self, project: str, outcome: TeardownOutcome) -> None:
        secrets = SecretStore(self.runner, project, self.config.secret_prefix)
        token = secrets.access(secret_name(TOKEN_SECRET, self.config.secret_prefix))
        if not token:
            logger.debug("No Telegram bot token in %s", project)
            return
        error = TelegramBot(token, transport=self.http_transport).delete_webhook()
        if error:
            outcome.warnings.append(f"Telegram webhook not removed: {error}")
        else:
            console.success("Telegram webhook removed")
            outcome.removed.append("telegram webhook")

    def _sweep(self, target: ProjectTarget, outcome: TeardownOutcome) -> None:
        project, region = target.project_id, target.region
        console.section("Cleaning resources (keeping project)")

        for fn in self.cloud.list_functions(project):
            if self.cloud.delete_function(fn, project):
                outcome.removed.append(f"function {fn.name}")
            else:
                outcome.warnings.append(f"Could not delete function {fn.name}")
        for service in self.cloud.list_run_services(project, region):
            if self.cloud.delete_run_service(service, project, region):
                outcome.removed.append(f"run service {service}")
            else:
                outcome.warnings.append(f"Could not delete Cloud Run service {service}")
        leftover = [fn.name for fn in self.cloud.list_functions(project)]
        leftover += self.cloud.list_run_services(project, region)
        if leftover:
            outcome.warnings.append(f"Still present after sweep: {', '.join(leftover)}")
        else:
            console.success("Functions and Cloud Run services deleted")

        for job in self.cloud.list_scheduler_jobs(project, region):
            if self.cloud.delete_scheduler_job(job, project, region):
                outcome.removed.append(f"scheduler job {job}")
            else:
                outcome.warnings.append(f"Could not delete scheduler job {job}")

        # The tfstate bucket stays unless config deletion was requested
        for bucket in data_buckets(project) + [function_source_bucket(project)]:
            if self.cloud.delete_bucket(bucket):
                outcome.removed.append(f"gs://{bucket}")

        if self.policy.delete_data and self.cloud.dataset_exists(project, target.dataset):
            if self.cloud.delete_dataset(project, target.dataset):
                outcome.removed.append(f"dataset {target.dataset}")
            else:
                outcome.warnings.append(f"Could not delete dataset {target.dataset}")

        console.success(f"Resources removed; project {project} kept with billing and service accounts")

    def _confirm_project(self, project: str) -> bool:
        if self.force:
            return True
        answer = self.prompter.ask("Type the project ID to confirm deletion")
        if answer.strip() != project:
            console.warning("Project confirmation failed; only local files will be cleaned up")
            return False
        return True

    def _delete_project(self, project: str, outcome: TeardownOutcome) -> bool:
        console.section("Deleting GCP project")
        try:
            self.cloud.delete_project(project)
        except CommandFailure as e:
            if self.cloud.project_state(project) == ProjectState.ACTIVE:
                logger.warning("Project deletion failed: %s", e)
                outcome.warnings.append(
                    f"Could not delete project; remove it manually: {PROJECT_SETTINGS_URL}?project={project}"
                )
                return False
        console.success("GCP project deleted")
        outcome.removed.append(f"project {project}")
        return True

    def _terraform_destroy(self, target: ProjectTarget, outcome: TeardownOutcome) -> None:
        console.section("Running Terraform destroy")
        var_file = self.terraform.tfvars_path(self.domain)
        if not var_file.exists():
            outcome.warnings.append(f"No configuration at {var_file}; skipped Terraform destroy")
            return
        init = self.terraform.init(tfstate_bucket(target.project_id), self.config.tfstate_prefix, check=False)
        if not init.ok:
            outcome.warnings.append("Could not initialize Terraform; resources may already be gone")
            return

        extra_vars = {}
        if self.policy.delete_data:
            console.warning("BigQuery deletion protection will be disabled; all data will be deleted")
            extra_vars["bigquery_deletion_protection"] = "false"
        else:
            console.info("BigQuery data will be preserved")

        plan = self.terraform.plan_destroy(var_file, targets=self.plan.destroy_targets, extra_vars=extra_vars)
        if not plan.ok:
            outcome.warnings.append("Terraform plan failed; resources may already be deleted")
            return
        if not self.force and not self.prompter.confirm("Apply the destruction plan?", default=False):
            (self.terraform.workdir / "destroy.plan").unlink(missing_ok=True)
            raise UserInputError("Teardown cancelled")
        result = self.terraform.apply_plan()
        if result.ok:
            console.success("Terraform destroy complete")
            outcome.removed.append("terraform-managed resources")
        else:
            outcome.warnings.append("Terraform destroy reported errors; re-run teardown to retry")

    def _delete_secrets(self, project: str, outcome: TeardownOutcome) -> None:
        secrets = SecretStore(self.runner, project, self.config.secret_prefix)
        names = secrets.list_managed()
        if not names:
            console.detail(f"No {self.config.secret_prefix}* secrets found")
            return
        for name in names:
            if secrets.delete(name):
                outcome.removed.append(f"secret {name}")
        remaining = secrets.list_managed()
        if remaining:
            outcome.secrets_remaining = remaining
            outcome.warnings.append(f"Secrets not deleted: {', '.join(remaining)}")
            add_event("teardown.secrets_incomplete", remaining=len(remaining))
        else:
            console.success("Secrets deleted and verified")

    def _restore_org_policy(self, project: str, outcome: TeardownOutcome) -> None:
        policy = self.cloud.describe_org_policy(ALLOWED_MEMBER_DOMAINS, project)
        if policy.mode != EnforcementMode.ALLOW_ALL:
            console.detail("No project-level public members exception found")
            return
        if self.cloud.delete_org_policy(ALLOWED_MEMBER_DOMAINS, project):
            console.success("Project-level org policy exception removed")
            outcome.removed.append("org policy exception")
        else:
            outcome.warnings.append("Could not remove the org policy exception")

    def _clean_local(self, outcome: TeardownOutcome) -> None:
        if self.policy.delete_config:
            for path in self.terraform.clear_local_cache():
                outcome.removed.append(str(path))
            tfvars: Path = self.terraform.tfvars_path(self.domain)
            if tfvars.exists():
                tfvars.unlink()
                outcome.removed.append(str(tfvars))
            self.local_registry.remove(self.domain)
        else:
            self.local_registry.mark_torn_down(
                self.domain,
                delete_data=self.policy.delete_data,
                delete_secrets=self.policy.delete_secrets,
            )
        self.store.clear(self.domain)


# =============================================================================
# Output
# =============================================================================


def print_manual_steps(project: Optional[str], policy: RetentionPolicy) -> None:
    console.section("Manual steps required")
    console.detail("Remove the service account's Domain-Wide Delegation entry:")
    console.detail(f"1. Open: {DWD_ADMIN_URL}")
    if project:
        console.detail(f"2. Find the entry for: {service_account_email(GMAIL_SYNC_SA, project)}")
    else:
        console.detail(f"2. Find the entry for: {GMAIL_SYNC_SA}")
    console.detail("3. Delete it (re-add it during setup if you reinstall)")
    if policy.delete_secrets:
        console.detail("Consider cleaning up external services as well:")
        console.detail("Telegram: delete the bot via @BotFather with /deletebot")
        console.detail("Twilio: release or reconfigure numbers dedicated to this deployment")
        console.detail("OpenAI: revoke the API key at platform.openai.com/api-keys")


def print_teardown_summary(outcome: TeardownOutcome, plan: TeardownPlan) -> None:
    console.section("Teardown complete")
    console.detail(f"Domain:   {outcome.domain}")
    console.detail(f"Project:  {outcome.project_id or 'unknown'}")
    for category in sorted(plan.deleted | plan.preserved, key=lambda c: c.value):
        state = "DELETED" if category in plan.deleted else "PRESERVED"
        if category == ResourceCategory.PROJECT and category in plan.deleted and not outcome.project_deleted:
            state = "NOT DELETED"
        if category == ResourceCategory.SECRETS and outcome.secrets_remaining:
            state = "PARTIAL"
        if outcome.remote_skipped and category in plan.deleted:
            state = "LOCAL ONLY" if category == ResourceCategory.CONFIG else "KEPT"
        console.detail(f"{category.value.capitalize():<16}{state}")
    for warning in outcome.warnings:
        console.warning(warning)
    if plan.mode == TeardownMode.KEEP_PROJECT:
        console.success("Project preserved and ready for a fresh install")
    elif outcome.project_deleted:
        console.success("Full cleanup complete")
    elif not plan.policy.delete_data:
        console.success("Safe teardown complete; data preserved for reinstall")


def print_deployments(state_dir: Path) -> None:
    """List deployments made from this machine."""
    entries = LocalDeploymentRegistry(state_dir).entries()
    if not entries:
        console.info("No deployments recorded on this machine")
        return
    console.section("Available deployments")
    for entry in entries:
        project = (entry.get("gcp") or {}).get("project_id", "unknown")
        console.detail(f"{entry['domain']} -> {project} ({entry.get('status', 'unknown')})")
