"""
ingestctl CLI - provision and tear down customer deployments.

Commands:
    ingestctl setup       Run (or resume) the setup workflow for a domain
    ingestctl teardown    Remove a deployment under a retention policy
    ingestctl bootstrap   Download the deployment package for a token, then run setup
    ingestctl state       Inspect or clear the saved progress of a domain
"""

import click

from ingestctl import __version__
from ingestctl.config import get_config
from ingestctl.logger import configure_logging
from ingestctl.telemetry import configure_tracing, shutdown_tracing

from .bootstrap import bootstrap
from .setup import setup
from .state import state
from .teardown import teardown


@click.group()
@click.version_option(version=__version__, prog_name="ingestctl")
@click.pass_context
def main(ctx):
    """ingestctl - customer tenant provisioning for the ingestion product."""
    config = get_config()
    configure_logging(config.log_level, config.log_format)
    if config.otlp_endpoint and configure_tracing(config.otlp_endpoint):
        ctx.call_on_close(shutdown_tracing)


main.add_command(setup)
main.add_command(teardown)
main.add_command(bootstrap)
main.add_command(state)


if __name__ == "__main__":
    main()
