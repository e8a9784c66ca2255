"""ingestctl CLI - saved setup progress."""

import json

import click
import yaml

from ingestctl.config import get_config
from ingestctl.ledger import STEP_ORDER
from ingestctl.state import StateStore


@click.group()
def state():
    """Inspect or clear saved setup progress."""
    pass


@state.command("show")
@click.argument("domain")
@click.option(
    "--output", "-o",
    "output_format",
    type=click.Choice(["json", "yaml", "text"]),
    default="text",
    help="Output format",
)
def state_show(domain: str, output_format: str):
    """Show the saved values and step outcomes for DOMAIN."""
    store = StateStore(get_config().get_state_path())
    if not store.exists(domain):
        click.echo(f"No saved progress for {domain}")
        return
    record = store.load(domain)
    data = record.to_dict()

    if output_format == "json":
        click.echo(json.dumps(data, indent=2))
        return
    if output_format == "yaml":
        click.echo(yaml.safe_dump(data, sort_keys=False), nl=False)
        return

    click.echo(click.style(f"Setup progress: {record.domain}", bold=True))
    click.echo(f"Updated: {record.updated_at}")
    click.echo()
    for step in STEP_ORDER:
        entry = record.steps.get(step)
        if entry is None:
            click.echo(f"  · {step}")
        elif entry.error:
            click.echo(click.style(f"  ✗ {step}: {entry.error}", fg="red"))
        else:
            click.echo(click.style(f"  ✓ {step}", fg="green"))
    if record.values:
        click.echo()
        for key in sorted(record.values):
            click.echo(f"  {key}={record.values[key]}")


@state.command("clear")
@click.argument("domain")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
def state_clear(domain: str, yes: bool):
    """Delete the saved progress for DOMAIN. Cloud resources are untouched."""
    store = StateStore(get_config().get_state_path())
    if not store.exists(domain):
        click.echo(f"No saved progress for {domain}")
        return
    if not yes:
        click.confirm(f"Delete saved progress for {domain}?", abort=True)
    store.clear(domain)
    click.echo(click.style(f"Cleared saved progress for {domain}", fg="green"))
