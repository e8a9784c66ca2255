"""
Setup workflow engine.

Runs the fixed step sequence from ``ingestctl.ledger.STEP_ORDER`` against one
deployment domain. For each step:

- in resume mode, a step the ledger reports complete is skipped; its outputs
  are already in the state record and are loaded into the context
- otherwise the step runs; every value it sets is written through to the
  state store immediately, and the step is marked complete when it returns

A failing step halts the run without rollback. Whatever happens, a finalizer
prints how to resume, retry or wipe the deployment unless the run completed.
On success the state record is cleared and the deployment is added to the
local deployments registry.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Mapping, Optional

import httpx

from ingestctl import console, keys
from ingestctl.cloud import GcloudClient
from ingestctl.config import IngestCtlConfig
from ingestctl.console import Prompter
from ingestctl.ledger import STEP_ORDER, STEP_TITLES, StepLedger
from ingestctl.logger import StepLogger
from ingestctl.naming import normalize_domain
from ingestctl.registry import ClientData, LocalDeploymentRegistry, RegistryClient
from ingestctl.runner import CommandRunner
from ingestctl.secrets import SecretStore
from ingestctl.state import StateStore, is_true, to_state_value
from ingestctl.telemetry import run_span, step_span
from ingestctl.terraform import TerraformClient

logger = logging.getLogger(__name__)


@dataclass
class WorkflowContext:
    """
    Everything a step needs, passed explicitly.

    ``values`` mirrors the domain's state record; ``set`` writes through.
    """
    domain: str
    token: str
    config: IngestCtlConfig
    store: StateStore
    ledger: StepLedger
    runner: CommandRunner
    cloud: GcloudClient
    terraform: TerraformClient
    registry: RegistryClient
    prompter: Prompter
    events: StepLogger
    sleep: Callable[[float], None] = time.sleep
    consultant_email: Optional[str] = None
    http_transport: Optional[httpx.BaseTransport] = None
    values: Dict[str, str] = field(default_factory=dict)
    _client_data: Optional[ClientData] = None
    _client_data_loaded: bool = False

    def __post_init__(self):
        self.domain = normalize_domain(self.domain)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self.values.get(key)
        return value if value not in (None, "") else default

    def flag(self, key: str) -> bool:
        return is_true(self.values.get(key))

    def set(self, key: str, value) -> None:
        self.update({key: value})

    def update(self, values: Mapping[str, object]) -> None:
        self.store.update(self.domain, values)
        for key, value in values.items():
            self.values[key] = to_state_value(value)

    def reload(self) -> None:
        self.values = self.store.snapshot(self.domain)

    @property
    def project_id(self) -> str:
        project = self.get(keys.PROJECT_ID)
        if not project:
            raise RuntimeError("Project id is not known yet; gcp_project has not run")
        return project

    @property
    def region(self) -> str:
        return self.get(keys.REGION, self.config.region)

    def secrets(self) -> SecretStore:
        return SecretStore(self.runner, self.project_id, self.config.secret_prefix)

    def client_data(self) -> Optional[ClientData]:
        """Registry record for the token, fetched once per run."""
        if not self._client_data_loaded:
            self._client_data = self.registry.get_client()
            self._client_data_loaded = True
        return self._client_data


StepFn = Callable[[WorkflowContext], None]


@dataclass
class WorkflowResult:
    completed: bool
    values: Dict[str, str]
    skipped: int = 0


class SetupWorkflow:
    """
    Sequences the setup steps for one domain.

    Args:
        ctx: Workflow context
        steps: Step name -> callable. Defaults to the built-in steps.
    """

    def __init__(self, ctx: WorkflowContext, steps: Optional[Mapping[str, StepFn]] = None):
        if steps is None:
            from ingestctl.steps import STEPS
            steps = STEPS
        missing = [name for name in STEP_ORDER if name not in steps]
        if missing:
            raise ValueError(f"No implementation for step(s): {', '.join(missing)}")
        self.ctx = ctx
        self.steps = steps

    def run(self) -> WorkflowResult:
        ctx = self.ctx
        domain = ctx.domain
        if ctx.ledger.resume:
            ctx.reload()
            done = ctx.ledger.completed_steps(domain)
            if done:
                console.info(f"Resuming: {len(done)}/{len(STEP_ORDER)} steps already completed")
        else:
            # A fresh run starts from an empty record
            ctx.store.clear(domain)
            ctx.values = {}

        completed = False
        current: Optional[str] = None
        skipped = 0
        try:
            with run_span(domain, "setup"):
                for number, name in enumerate(STEP_ORDER, 1):
                    title = STEP_TITLES[name]
                    if ctx.ledger.is_complete(domain, name):
                        console.step_header(number, len(STEP_ORDER), f"{title} (already completed)")
                        ctx.events.step_skipped(name)
                        skipped += 1
                        continue

                    current = name
                    console.step_header(number, len(STEP_ORDER), title)
                    ctx.events.step_started(name)
                    before = dict(ctx.values)
                    with step_span(domain, name):
                        try:
                            self.steps[name](ctx)
                        except Exception as e:
                            ctx.ledger.mark_failed(domain, name, _describe(e))
                            ctx.events.step_failed(name, _describe(e))
                            raise
                    ctx.ledger.mark_complete(domain, name)
                    changed = [k for k, v in ctx.values.items() if before.get(k) != v]
                    ctx.events.step_completed(name, outputs=changed)
                current = None

            values = dict(ctx.values)
            self._finish(values)
            completed = True
            return WorkflowResult(completed=True, values=values, skipped=skipped)
        finally:
            if not completed:
                self._print_interrupted(current)

    def _finish(self, values: Dict[str, str]) -> None:
        ctx = self.ctx
        project = values.get(keys.PROJECT_ID, "")
        LocalDeploymentRegistry(ctx.config.get_state_path()).record(
            ctx.domain,
            project_id=project,
            region=values.get(keys.REGION, ctx.config.region),
            admin_email=values.get(keys.ADMIN_EMAIL),
        )
        logger.info("Setup of %s complete (project %s)", ctx.domain, project)
        ctx.store.clear(ctx.domain)
        ctx.events.workflow_completed(project_id=project)
        print_setup_summary(ctx.domain, values, ctx.config)

    def _print_interrupted(self, step: Optional[str]) -> None:
        ctx = self.ctx
        ctx.events.workflow_interrupted(step)
        base = f"ingestctl setup --token={ctx.token} --domain={ctx.domain}"
        if ctx.consultant_email:
            base += f" --consultant={ctx.consultant_email}"
        console.error(f"Setup interrupted{f' during step: {STEP_TITLES.get(step, step)}' if step else ''}")
        console.detail("Progress has been saved. To continue where you left off:")
        console.detail(f"  {base} --resume")
        console.detail("To start over (existing resources are reused):")
        console.detail(f"  {base}")
        console.detail("To remove everything and start from scratch:")
        console.detail(f"  ingestctl teardown {ctx.domain} --all --force && {base}")
        console.detail(f"Need help? Contact {ctx.config.support_email}")


def _describe(error: BaseException) -> str:
    message = getattr(error, "message", None) or str(error)
    return message.splitlines()[0] if message else type(error).__name__


def print_setup_summary(domain: str, values: Mapping[str, str], config: IngestCtlConfig) -> None:
    console.section("Setup complete")
    project = values.get(keys.PROJECT_ID, "")
    console.detail(f"Domain:          {domain}")
    console.detail(f"Project:         {project}")
    console.detail(f"Region:          {values.get(keys.REGION, config.region)}")
    modules = ["gmail", "google_meet"]
    for key, name in ((keys.ENABLE_TELEGRAM, "telegram"), (keys.ENABLE_TWILIO, "twilio"), (keys.ENABLE_OPENAI, "openai")):
        if is_true(values.get(key)):
            modules.append(name)
    console.detail(f"Modules:         {', '.join(modules)}")
    console.detail(f"Gmail auth:      {values.get(keys.GMAIL_AUTH_METHOD, 'key')}")
    console.detail(f"License status:  {values.get(keys.LICENSE_STATUS, 'unknown')}")
    if values.get(keys.VERIFICATION_STATUS):
        console.detail(f"Verification:    {values[keys.VERIFICATION_STATUS]}")
    if values.get(keys.ALLOW_PUBLIC_WEBHOOKS) == "false":
        console.warning(
            "Webhooks are not publicly reachable. Add a project-level exception for "
            "iam.allowedPolicyMemberDomains and re-run setup."
        )
    if project:
        console.detail(f"Console:         https://console.cloud.google.com/home/dashboard?project={project}")
