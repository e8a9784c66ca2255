"""ingestctl CLI - setup command."""

from pathlib import Path
from typing import Iterable, Optional

import click

from ingestctl.cloud import GcloudClient
from ingestctl.config import get_config
from ingestctl.console import Prompter
from ingestctl.errors import UserInputError
from ingestctl.ledger import STEP_ORDER, StepLedger
from ingestctl.logger import StepLogger
from ingestctl.naming import is_valid_domain, normalize_domain
from ingestctl.registry import RegistryClient
from ingestctl.runner import CommandRunner
from ingestctl.state import StateStore
from ingestctl.terraform import TerraformClient
from ingestctl.workflow import SetupWorkflow, WorkflowContext, WorkflowResult


def build_context(
    token: str,
    domain: str,
    consultant_email: Optional[str] = None,
    resume: bool = False,
    force_steps: Iterable[str] = (),
    terraform_dir: Optional[Path] = None,
    prompter: Optional[Prompter] = None,
) -> WorkflowContext:
    """Wire the clients a setup run needs from the loaded configuration."""
    config = get_config()
    domain = normalize_domain(domain)
    if not is_valid_domain(domain):
        raise UserInputError(f"Invalid domain: {domain!r}")

    runner = CommandRunner(
        iam_wait_s=config.iam_propagation_wait_s,
        org_policy_wait_s=config.org_policy_propagation_wait_s,
    )
    store = StateStore(config.get_state_path())
    return WorkflowContext(
        domain=domain,
        token=token,
        config=config,
        store=store,
        ledger=StepLedger(store, resume=resume, force=force_steps),
        runner=runner,
        cloud=GcloudClient(runner),
        terraform=TerraformClient(runner, terraform_dir or config.get_terraform_path()),
        registry=RegistryClient(config.registry_url, token, timeout=config.http_timeout_s),
        prompter=prompter or Prompter(),
        events=StepLogger(domain),
        consultant_email=consultant_email,
    )


def run_setup(
    token: str,
    domain: str,
    consultant_email: Optional[str] = None,
    resume: bool = False,
    force_steps: Iterable[str] = (),
    terraform_dir: Optional[Path] = None,
) -> WorkflowResult:
    ctx = build_context(token, domain, consultant_email, resume, force_steps, terraform_dir)
    return SetupWorkflow(ctx).run()


@click.command()
@click.option("--token", required=True, envvar="INGESTCTL_TOKEN", help="Setup token from the onboarding email")
@click.option("--domain", required=True, help="Customer Google Workspace domain")
@click.option("--consultant", "consultant_email", default=None, help="Consultant email for the registration")
@click.option("--resume", is_flag=True, help="Skip steps completed by a previous run")
@click.option(
    "--force-step",
    "force_steps",
    multiple=True,
    type=click.Choice(list(STEP_ORDER)),
    help="Re-run this step even when resuming (repeatable)",
)
@click.option(
    "--terraform-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Terraform root module (default: INGESTCTL_TERRAFORM_DIR)",
)
def setup(token, domain, consultant_email, resume, force_steps, terraform_dir):
    """
    Provision a deployment for DOMAIN.

    Progress is saved after every step; after an interruption re-run with
    --resume to continue where it stopped.

    Examples:
        ingestctl setup --token=abc123 --domain=acme.com
        ingestctl setup --token=abc123 --domain=acme.com --resume
    """
    run_setup(token, domain, consultant_email, resume, force_steps, terraform_dir)
