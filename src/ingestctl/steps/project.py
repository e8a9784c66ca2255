"""
GCP project: billing account, project create/reuse/restore, API enablement.

The project id is derived from the domain. When the derived id is taken
(or the operator declines to reuse it) the ``-2`` ... ``-9`` variants are
offered in turn.
"""

from __future__ import annotations

import logging
from typing import List

from ingestctl import console, keys
from ingestctl.cloud import BOOTSTRAP_API, REQUIRED_APIS, BillingAccount, ProjectState
from ingestctl.errors import UserInputError
from ingestctl.naming import project_display_name, project_id_candidates
from ingestctl.workflow import WorkflowContext

logger = logging.getLogger(__name__)

BILLING_CREATE_URL = "https://console.cloud.google.com/billing/create"


def _billing_accounts(ctx: WorkflowContext) -> List[BillingAccount]:
    accounts = ctx.cloud.billing_accounts()
    while not accounts:
        console.warning("No billing account found")
        console.detail("You need a Google Cloud billing account to create a project.")
        console.detail("Create one in the browser, then return here.")
        ctx.prompter.open_url(BILLING_CREATE_URL)
        ctx.prompter.pause("Press Enter when you've created a billing account (we'll check again)")
        accounts = ctx.cloud.billing_accounts()
        if accounts:
            break
        console.warning("Still no billing accounts found.")
        console.detail("The account may still be in setup, or belong to another Google account or organization.")
        if not ctx.prompter.confirm("Try again?", default=True):
            raise UserInputError("Cannot proceed without a billing account. Re-run setup after setting up billing.")
    return accounts


def select_billing_account(ctx: WorkflowContext) -> BillingAccount:
    accounts = _billing_accounts(ctx)
    console.success("Billing account(s) found")
    for i, account in enumerate(accounts, 1):
        console.detail(f"{i}) {account.display_name} ({account.account_id})")
    if len(accounts) == 1:
        return accounts[0]
    choice = ctx.prompter.choose(
        "Select billing account (number)", [str(i) for i in range(1, len(accounts) + 1)], default="1",
    )
    return accounts[int(choice) - 1]


def reconcile_project(ctx: WorkflowContext) -> str:
    """Create, reuse or restore the deployment's project. Returns its id."""
    cloud = ctx.cloud
    candidates = project_id_candidates(ctx.domain, ctx.config.project_id_max_length)
    for i, candidate in enumerate(candidates):
        state = cloud.project_state(candidate)
        logger.debug("Project %s is %s", candidate, state.value)

        if state == ProjectState.NOT_FOUND:
            console.info(f"Creating project: {candidate}")
            cloud.create_project(candidate, project_display_name(ctx.domain))
            console.success("Project created")
            return candidate

        if state == ProjectState.ACTIVE:
            console.warning(f"Project {candidate} already exists")
            if ctx.prompter.confirm("Use existing project?", default=True):
                console.success("Using existing project")
                return candidate
        else:
            console.warning(f"Project {candidate} exists but is pending deletion")
            if ctx.prompter.confirm("Restore and reuse it?", default=True):
                cloud.undelete_project(candidate)
                console.success("Project restored")
                return candidate
            console.detail("A project id stays reserved for up to 30 days after deletion.")

        if i + 1 < len(candidates) and ctx.prompter.confirm(
            f"Use {candidates[i + 1]} instead?", default=False,
        ):
            continue
        raise UserInputError(f"Project {candidate} was not reused. Choose a different domain or wait.")
    raise UserInputError(f"No free project id left for {ctx.domain}")


def run_gcp_project(ctx: WorkflowContext) -> None:
    cloud = ctx.cloud
    region = ctx.config.region
    console.detail(f"GCP Project ID: {project_id_candidates(ctx.domain, ctx.config.project_id_max_length)[0]} (derived from domain)")
    console.detail(f"GCP Region:     {region}")

    billing = select_billing_account(ctx)
    project = reconcile_project(ctx)
    # Persist as soon as the project exists so an interrupted run reuses it
    ctx.update({keys.PROJECT_ID: project, keys.REGION: region})

    cloud.link_billing(project, billing.account_id)
    console.success("Billing linked")
    cloud.set_project(project)

    console.info("Enabling required APIs (this takes 1-2 minutes)")
    cloud.enable_services(project, [BOOTSTRAP_API])
    cloud.enable_services(project, REQUIRED_APIS)
    console.success("APIs enabled")

    ctx.update({
        keys.PROJECT_NUMBER: cloud.project_number(project),
        keys.BILLING_ACCOUNT: billing.account_id,
    })
