"""ingestctl CLI - bootstrap command."""

from pathlib import Path

import click

from ingestctl import console
from ingestctl.bundle import download_package, extract_package, find_terraform_dir
from ingestctl.config import get_config
from ingestctl.errors import UserInputError
from ingestctl.registry import RegistryClient

from .setup import run_setup


@click.command()
@click.option("--token", required=True, envvar="INGESTCTL_TOKEN", help="Setup token from the onboarding email")
@click.option(
    "--dest",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("corco-installer"),
    show_default=True,
    help="Directory the deployment package is unpacked into",
)
@click.option("--resume", is_flag=True, help="Skip steps completed by a previous run")
def bootstrap(token, dest: Path, resume):
    """
    Validate TOKEN, download the deployment package and run setup.

    The domain comes from the token and cannot be changed.
    """
    config = get_config()
    registry = RegistryClient(config.registry_url, token, timeout=config.http_timeout_s)

    client = registry.get_client(strict=True)
    if not client.domain:
        raise UserInputError("The setup token has no domain attached; contact support")
    console.success(f"Token valid for {client.company_name or client.domain} ({client.domain})")

    console.info("Downloading deployment package")
    archive = download_package(registry.get_download_url(), dest)
    root = extract_package(archive, dest)
    archive.unlink(missing_ok=True)
    terraform_dir = find_terraform_dir(root)
    if terraform_dir is None:
        raise UserInputError(f"No Terraform module found in the package at {root}")
    console.success(f"Package extracted to {root}")

    run_setup(
        token,
        client.domain,
        consultant_email=client.consultant_email,
        resume=resume,
        terraform_dir=terraform_dir,
    )
