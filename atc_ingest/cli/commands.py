"""
Command line interface for the ATC ingest service.
Provides the service entry point and name cache maintenance using click and rich.
"""

import asyncio
import logging
import sys

import click
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from .. import __version__
from ..ble.decoder import LAYOUTS, DecodeError, decode, get_layout
from ..metadata.names import NameResolver
from ..metadata.store import FileKeyValueStore, StoreError
from ..service.daemon import IngestDaemonError, run_daemon
from ..utils.config import Config, ConfigurationError


console = Console()


def _load_config(ctx: click.Context, **overrides) -> Config:
    try:
        return Config(env_file=ctx.obj.get("env_file"), overrides=overrides)
    except ConfigurationError as e:
        console.print(f"[red]Configuration Error: {e}[/red]")
        sys.exit(1)


def _name_resolver(config: Config) -> NameResolver:
    store = FileKeyValueStore(config.names_dir, cache_size_max=config.names_cache_size)
    return NameResolver(store, logging.getLogger('atc.names'), label_template=config.names_label_template)


@click.group()
@click.version_option(version=__version__, prog_name="atc-ingest")
@click.option("--env-file", type=click.Path(dir_okay=False), default=None, help="Path to .env file")
@click.pass_context
def cli(ctx, env_file):
    """ATC ingest - BLE thermometer advertisements to InfluxDB."""
    ctx.ensure_object(dict)
    ctx.obj["env_file"] = env_file


@cli.command()
@click.option("--url", default=None, help="InfluxDB URL")
@click.option("--token", default=None, help="InfluxDB token")
@click.option("--database", "--bucket", "bucket", default=None, help="InfluxDB database / bucket")
@click.option("--org", default=None, help="InfluxDB organization")
@click.option("--names-dir", default=None, help="Directory of the sensor name cache")
@click.option("--log-level", default=None, help="Logging level")
@click.pass_context
def run(ctx, url, token, bucket, org, names_dir, log_level):
    """Ingest advertisements until interrupted."""
    config = _load_config(
        ctx,
        INFLUXDB_URL=url,
        INFLUXDB_TOKEN=token,
        INFLUXDB_BUCKET=bucket,
        INFLUXDB_ORG=org,
        NAMES_DIR=names_dir,
        LOG_LEVEL=log_level,
    )

    try:
        asyncio.run(run_daemon(config))
    except IngestDaemonError as e:
        console.print(f"[red]Startup failed: {e}[/red]")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[blue]Interrupted[/blue]")


@cli.group()
def names():
    """Inspect and edit the sensor name cache."""
    pass


@names.command("list")
@click.pass_context
def list_names(ctx):
    """List known sensors and their names."""
    config = _load_config(ctx)
    entries = _name_resolver(config).list_names()

    if not entries:
        console.print(f"[yellow]No sensors in {config.names_dir}[/yellow]")
        return

    table = Table(title="Sensor Names", show_header=True, header_style="bold magenta")
    table.add_column("Address", style="cyan")
    table.add_column("Name", style="green")
    for entry in entries:
        table.add_row(entry.address, entry.name)
    console.print(table)


@names.command("set")
@click.argument("address")
@click.argument("name")
@click.pass_context
def set_name(ctx, address, name):
    """Give the sensor at ADDRESS the display name NAME."""
    config = _load_config(ctx)
    try:
        entry = _name_resolver(config).set_name(address, name)
    except ValidationError as e:
        console.print(f"[red]Invalid entry: {e.errors()[0]['msg']}[/red]")
        sys.exit(1)
    except StoreError as e:
        console.print(f"[red]Could not save name: {e}[/red]")
        sys.exit(1)
    console.print(f"[green]{entry.address} -> {entry.name}[/green]")


@cli.command("decode")
@click.argument("payload_hex")
@click.option("--format", "payload_format", type=click.Choice(sorted(LAYOUTS)), default="pvvx",
              help="Advertisement payload format")
def decode_payload(payload_hex, payload_format):
    """Decode a hex-encoded service-data payload."""
    try:
        payload = bytes.fromhex(payload_hex.replace(':', '').replace(' ', ''))
        reading = decode(payload, get_layout(payload_format))
    except ValueError as e:
        console.print(f"[red]Invalid hex payload: {e}[/red]")
        sys.exit(1)
    except DecodeError as e:
        console.print(f"[red]Decode error ({e.kind.value}): {e}[/red]")
        sys.exit(1)

    table = Table(title=f"Reading ({payload_format})", show_header=True, header_style="bold blue")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("address", str(reading.address))
    table.add_row("temperature", f"{reading.temperature:.2f} °C")
    table.add_row("humidity", f"{reading.humidity_percent:.2f} %")
    table.add_row("battery", f"{reading.battery_millivolt} mV / {reading.battery_percent} %")
    table.add_row("counter", str(reading.measurement_counter))
    table.add_row("flags", f"0x{reading.flags:02x}")
    console.print(table)


if __name__ == "__main__":
    cli()
