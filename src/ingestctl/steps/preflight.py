"""Preflight: required tools and the operator's Google account."""

from __future__ import annotations

import logging

import click

from ingestctl import console, keys
from ingestctl.errors import AuthError, UserInputError
from ingestctl.workflow import WorkflowContext

logger = logging.getLogger(__name__)

REQUIRED_TOOLS = ("gcloud", "gsutil", "bq", "terraform")


def _login(ctx: WorkflowContext) -> str:
    ctx.cloud.login()
    account = ctx.cloud.active_account()
    if not account:
        raise AuthError("Login failed or was cancelled")
    return account


def run_preflight(ctx: WorkflowContext) -> None:
    ctx.runner.require(REQUIRED_TOOLS)
    console.success(f"Found {', '.join(REQUIRED_TOOLS)}")

    account = ctx.cloud.active_account()
    if not account:
        console.warning("Not logged in to gcloud, starting authentication")
        console.detail("Use your organization's Workspace admin account.")
        account = _login(ctx)

    click.echo()
    console.detail("You are currently logged in as:")
    console.detail(click.style(account, fg="green", bold=True))
    console.detail("This must be a Workspace admin account for your organization.")
    if not ctx.prompter.confirm("Is this the correct admin account for your organization?", default=True):
        console.info("Sign in with your organization's Workspace admin account")
        account = _login(ctx)
        console.detail(f"Now logged in as: {account}")
        if not ctx.prompter.confirm("Continue with this account?", default=True):
            raise UserInputError("Setup cancelled. Re-run when ready.")

    if not ctx.cloud.check_auth():
        logger.info("Access token for %s is stale, refreshing", account)
        ctx.runner.refresh_credentials()

    ctx.set(keys.OPERATOR_ACCOUNT, account)
    console.success(f"Account confirmed: {account}")
