# Simple CLI for the trade partitioning pipeline
import asyncio
import sys
import click
from pydantic import ValidationError

from core.config.settings import Settings, Role, Transport
from core.streaming.partitioning import select_partition
from core.utils.exceptions import InvalidConfigurationError


@click.group()
def cli():
    """Trade Partitioning CLI"""
    pass


@cli.command()
@click.option("--roles", default=None,
              help="Comma-separated roles to host: " + ",".join(r.value for r in Role))
@click.option("--transport", type=click.Choice([t.value for t in Transport]), default=None,
              help="Message transport (overrides TRANSPORT)")
def run(roles, transport):
    """Run the pipeline roles hosted by this process"""
    from app.main import main as run_app

    overrides = {}
    if roles:
        overrides["roles"] = roles
    if transport:
        overrides["transport"] = transport
    try:
        settings = Settings(**overrides)
    except ValidationError as e:
        click.echo(f"Invalid configuration, refusing to start: {e}", err=True)
        sys.exit(1)

    click.echo(f"Starting Trade Partitioning ({settings.transport.value}): "
               f"{', '.join(r.value for r in settings.roles)}")
    asyncio.run(run_app(settings))


@cli.command()
def bootstrap():
    """Bootstrap topics in Redpanda"""
    click.echo("Bootstrapping topics...")
    from scripts.bootstrap_topics import main as bootstrap_main
    summary = asyncio.run(bootstrap_main())
    if summary["mismatched"]:
        click.echo(f"Partition count mismatch on: {', '.join(summary['mismatched'])}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("account", type=int)
@click.option("--partitions", type=int, default=None,
              help="Partition count (defaults to PARTITIONING__PARTITION_COUNT)")
def partition(account, partitions):
    """Print the partition index an account is routed to"""
    if partitions is None:
        partitions = Settings().partitioning.partition_count
    try:
        click.echo(select_partition(account, partitions))
    except InvalidConfigurationError as e:
        raise click.BadParameter(e.message, param_hint="--partitions")
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="ACCOUNT")


if __name__ == "__main__":
    cli()
