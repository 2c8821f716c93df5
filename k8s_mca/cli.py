"""CLI interface for k8s-mca."""

import asyncio
import logging
import sys

import click
from pydantic import ValidationError

from k8s_mca.config import InjectionConfig, Settings
from k8s_mca.exceptions import MCAError
from k8s_mca.inject import via_cli
from k8s_mca.serve import start_proxy, start_webhook

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _load(config_cls):
    try:
        return config_cls.from_env()
    except ValidationError as e:
        raise click.ClickException(f"Invalid configuration: {e}")


@click.group()
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level",
)
def cli(log_level):
    """MCA - Kubernetes API proxy sidecar."""
    logging.basicConfig(level=log_level.upper(), format=LOG_FORMAT, stream=sys.stderr)


@cli.command()
@click.option("-f", "--file", "input_file", type=click.File("rb"), default="-", help="Pod manifest (default: stdin)")
@click.option("-o", "--output", "output_file", type=click.Path(dir_okay=False), help="Output file (default: stdout)")
def inject(input_file, output_file):
    """Inject the MCA sidecar into a Pod manifest."""
    config = _load(InjectionConfig)
    try:
        output = via_cli(input_file.read(), config)
    except MCAError as e:
        raise click.ClickException(f"Injection failed: {e}")

    # Only open the destination once the whole pod has been mutated
    with click.open_file(output_file or "-", "wb") as out:
        out.write(output)


@cli.command()
def proxy():
    """Run the MCA proxy server (sidecar mode)."""
    try:
        asyncio.run(start_proxy(_load(Settings)))
    except MCAError as e:
        raise click.ClickException(f"Server failed: {e}")


@cli.command()
def webhook():
    """Run the MCA admission webhook server."""
    try:
        asyncio.run(start_webhook(_load(Settings)))
    except MCAError as e:
        raise click.ClickException(f"Server failed: {e}")


if __name__ == "__main__":
    cli()
