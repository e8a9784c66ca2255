"""ingestctl CLI - teardown command."""

from typing import Optional

import click

from ingestctl.config import get_config
from ingestctl.console import Prompter
from ingestctl.registry import RegistryClient
from ingestctl.runner import CommandRunner
from ingestctl.state import StateStore
from ingestctl.teardown import RetentionPolicy, TeardownRunner, print_deployments


@click.command()
@click.argument("domain", required=False)
@click.option("--token", default=None, envvar="INGESTCTL_TOKEN", help="Setup token, included in registry notices")
@click.option("--delete-data", is_flag=True, help="Also delete the BigQuery dataset (irreversible)")
@click.option("--delete-secrets", is_flag=True, help="Also delete the product's secrets")
@click.option("--delete-config", is_flag=True, help="Also delete the tfvars file and Terraform state")
@click.option("--all", "delete_all", is_flag=True, help="Delete data, secrets, config and the project")
@click.option("--keep-project", is_flag=True, help="Remove resources but keep the GCP project and billing")
@click.option("--project", "project_id", default=None, help="Explicit project id (skips resolution)")
@click.option("--force", "-f", is_flag=True, help="Skip confirmation prompts")
@click.option("--restore-org-policy", is_flag=True, help="Remove the project-level public webhook exception")
def teardown(
    domain: Optional[str],
    token,
    delete_data,
    delete_secrets,
    delete_config,
    delete_all,
    keep_project,
    project_id,
    force,
    restore_org_policy,
):
    """
    Tear down the deployment for DOMAIN.

    By default only infrastructure is removed; the BigQuery dataset, the
    secrets and the configuration are preserved for a reinstall.

    Without DOMAIN, lists the deployments made from this machine.

    Examples:
        ingestctl teardown acme.com
        ingestctl teardown acme.com --delete-secrets
        ingestctl teardown acme.com --all --keep-project
        ingestctl teardown acme.com --all --force
    """
    config = get_config()
    if not domain:
        print_deployments(config.get_state_path())
        click.echo()
        click.echo("Usage: ingestctl teardown DOMAIN [OPTIONS]")
        return

    if delete_all:
        policy = RetentionPolicy.everything(keep_project=keep_project)
    else:
        policy = RetentionPolicy(
            delete_data=delete_data,
            delete_secrets=delete_secrets,
            delete_config=delete_config,
            keep_project=keep_project,
        )

    runner = TeardownRunner(
        domain,
        policy,
        config,
        CommandRunner(
            iam_wait_s=config.iam_propagation_wait_s,
            org_policy_wait_s=config.org_policy_propagation_wait_s,
        ),
        RegistryClient(config.registry_url, token, timeout=config.http_timeout_s),
        StateStore(config.get_state_path()),
        Prompter(),
        force=force,
        restore_org_policy=restore_org_policy,
        project_id=project_id,
        token=token,
    )
    runner.run()
