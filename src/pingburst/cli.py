"""PingBurst command-line interface.

Run the keep-alive monitor, fire a one-off probe round, or inspect the
effective configuration.
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

import click
import yaml
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import ENV_VARS, MonitorConfig, load_config
from .core.targets import TargetRegistry
from .errors import ConfigurationError
from .health.prober import ProbeOutcome, ProbeStatus, Prober
from .logging_config import configure_logging
from .main import run_service
from .metrics.statistics import StatisticsSnapshot, StatisticsStore

console = Console()

# Read from the working directory when --env-file is not given
DEFAULT_ENV_FILE = ".env"

STATUS_STYLES = {
    ProbeStatus.SUCCESS: "green",
    ProbeStatus.FAILED: "yellow",
    ProbeStatus.ERROR: "red",
    ProbeStatus.TIMEOUT: "magenta",
}


def _load(config_file: Optional[str], env_file: Optional[str] = None, **overrides) -> MonitorConfig:
    """Load configuration or exit with status 1."""
    if env_file is None and Path(DEFAULT_ENV_FILE).is_file():
        env_file = DEFAULT_ENV_FILE
    try:
        return load_config(config_file, env_file=env_file, **overrides)
    except ConfigurationError as e:
        console.print(f"[bold red]✗ Configuration error: {e}[/bold red]")
        sys.exit(1)


def _print_banner(config: MonitorConfig) -> None:
    table = Table(title=f"PingBurst {__version__}")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Backends", "\n".join(config.backend_urls))
    table.add_row("Ping endpoint", config.ping_endpoint)
    table.add_row("Cron schedule", config.cron_schedule)
    table.add_row("Burst", f"every {config.ping_interval:g}s for {config.burst_duration:g}s")
    table.add_row("Request timeout", f"{config.request_timeout:g}s")
    table.add_row("Status API", f"http://{config.host}:{config.port}")

    console.print(table)


@click.group()
@click.version_option(version=__version__, prog_name='PingBurst')
def cli():
    """PingBurst keep-alive monitor.

    Periodically pings backend health endpoints in short bursts and serves
    the resulting statistics over HTTP.
    """
    pass


@cli.command()
@click.option('--config', '-c', 'config_file', type=click.Path(dir_okay=False), help='YAML configuration file')
@click.option('--env-file', '-e', type=click.Path(dir_okay=False), help='dotenv file (default: ./.env if present)')
@click.option('--host', help='Host to bind the status API to')
@click.option('--port', '-p', type=int, help='Port for the status API')
@click.option('--log-level', '-l', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False))
def run(config_file, env_file, host, port, log_level):
    """Start the scheduler and status API."""
    config = _load(config_file, env_file, host=host, port=port, log_level=log_level)
    configure_logging(config.log_level)

    _print_banner(config)
    console.print("[bold green]Starting PingBurst...[/bold green]")

    try:
        asyncio.run(run_service(config))
    except KeyboardInterrupt:
        pass
    console.print("[bold green]✓ PingBurst stopped[/bold green]")


async def _check_once(config: MonitorConfig):
    registry = TargetRegistry.from_urls(config.backend_urls, config.ping_endpoint)
    store = StatisticsStore(registry.identities())
    async with Prober(timeout=config.request_timeout, verify_tls=config.verify_tls) as prober:
        outcomes = await prober.probe_all(registry)
    for outcome in outcomes:
        store.record_outcome(outcome)
    return outcomes, store.snapshot()


def _print_outcomes(outcomes: List[ProbeOutcome], snapshot: StatisticsSnapshot) -> None:
    table = Table(title="Probe Results")
    table.add_column("Backend", style="cyan")
    table.add_column("Status")
    table.add_column("Code", style="blue")
    table.add_column("Time", style="yellow")
    table.add_column("Detail", style="dim")

    for outcome in outcomes:
        style = STATUS_STYLES[outcome.status]
        table.add_row(
            outcome.target,
            f"[{style}]{outcome.status.value}[/{style}]",
            str(outcome.status_code or "-"),
            f"{outcome.response_time_ms}ms" if outcome.response_time_ms is not None else "-",
            outcome.error or "",
        )

    console.print(table)
    totals = snapshot.global_stats
    console.print(f"{totals.successful_pings}/{totals.total_pings} succeeded")


@cli.command()
@click.option('--config', '-c', 'config_file', type=click.Path(dir_okay=False), help='YAML configuration file')
@click.option('--env-file', '-e', type=click.Path(dir_okay=False), help='dotenv file (default: ./.env if present)')
@click.option('--format', '-f', 'output_format', type=click.Choice(['table', 'json', 'yaml']), default='table')
def check(config_file, env_file, output_format):
    """Ping every backend once and report the results."""
    config = _load(config_file, env_file)
    configure_logging("WARNING")

    outcomes, snapshot = asyncio.run(_check_once(config))

    if output_format == 'table':
        _print_outcomes(outcomes, snapshot)
    elif output_format == 'json':
        click.echo(json.dumps(snapshot.to_dict(), indent=2))
    else:
        click.echo(yaml.safe_dump(snapshot.to_dict(), sort_keys=False))

    if not all(o.succeeded for o in outcomes):
        sys.exit(2)


@cli.group()
def config():
    """Inspect configuration."""
    pass


@config.command('validate')
@click.argument('config_file', required=False, type=click.Path(dir_okay=False))
@click.option('--env-file', '-e', type=click.Path(dir_okay=False), help='dotenv file (default: ./.env if present)')
def validate_config(config_file, env_file):
    """Validate configuration (file plus environment)."""
    console.print(f"[bold blue]Validating configuration{': ' + config_file if config_file else ''}[/bold blue]")
    _load(config_file, env_file)
    console.print("[bold green]✓ Configuration is valid[/bold green]")


@config.command('show')
@click.option('--config', '-c', 'config_file', type=click.Path(dir_okay=False), help='YAML configuration file')
@click.option('--env-file', '-e', type=click.Path(dir_okay=False), help='dotenv file (default: ./.env if present)')
def show_config(config_file, env_file):
    """Print the effective configuration as YAML."""
    cfg = _load(config_file, env_file)
    click.echo(yaml.safe_dump(cfg.to_dict(), sort_keys=False))


@config.command('env')
def list_env():
    """List the environment variables PingBurst reads."""
    defaults = MonitorConfig()
    table = Table(title="Environment Variables")
    table.add_column("Variable", style="cyan")
    table.add_column("Default", style="green")
    for var, name in ENV_VARS.items():
        default = getattr(defaults, name)
        table.add_row(var, "(required)" if name == "backend_urls" else str(default))
    console.print(table)


def main():
    cli()


if __name__ == '__main__':
    main()
