"""Autoheal CLI application."""

from __future__ import annotations

import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import Optional

import typer
import yaml
from loguru import logger
from rich.console import Console
from rich.table import Table

from autoheal import __version__
from autoheal.config import ConfigError, ConfigWatcher, load_config
from autoheal.errors import AutohealError
from autoheal.models import (
    Alert,
    AlertmanagerMessage,
    AutohealConfig,
    BatchJobAction,
    JobAction,
    action_type,
    parse_duration,
)

# Initialize
app = typer.Typer(
    name="autoheal",
    help="Autoheal - runs healing actions in response to alerts",
    no_args_is_help=True,
)
console = Console()

CONFIG_FILE_HELP = "Configuration file or directory, can be repeated"


def setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration."""
    logger.remove()

    level = "DEBUG" if verbose else "INFO"

    # Console logging
    logger.add(
        sys.stderr,
        format="<level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
        level=level,
        colorize=True,
    )


def _load_config_or_exit(config_files: list[Path]) -> AutohealConfig:
    try:
        return load_config(config_files)
    except ConfigError as e:
        console.print(f"[red]✗ Configuration error: {e}[/red]")
        raise typer.Exit(1)


# ============================================================================
# Server
# ============================================================================


async def _serve(config: AutohealConfig, config_files: list[Path]) -> None:
    """Wire the clients, the healer and the API, and run until stopped."""
    from autoheal.api.server import create_app, run_server
    from autoheal.awx import AWXClient
    from autoheal.core.healer import Healer
    from autoheal.core.poller import ActiveJobs
    from autoheal.kube import KubeClient
    from autoheal.metrics import PrometheusMetrics
    from autoheal.runners.awx import AWXRunner
    from autoheal.runners.batch import BatchRunner

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    # Setup signal handlers
    def handle_signal(signum: int) -> None:
        logger.info(f"Received signal {signum}")
        stop_event.set()

    for signum in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(signum, handle_signal, signum)

    metrics = PrometheusMetrics()
    active_jobs = ActiveJobs()
    runners = {}
    awx_client = None
    kube_client = None

    if config.awx.address:
        awx_client = AWXClient.from_config(config.awx)
        runners[JobAction] = AWXRunner(awx_client, config.awx.project, active_jobs, metrics)
    else:
        logger.warning("AWX address isn't configured, AWX job actions will fail")

    try:
        kube_client = KubeClient.from_config(config.kubernetes)
        runners[BatchJobAction] = BatchRunner(kube_client, metrics)
    except AutohealError as e:
        logger.warning(f"Batch job actions are disabled: {e}")

    healer = Healer.from_config(
        config,
        runners,
        querier=awx_client,
        metrics=metrics,
        active_jobs=active_jobs,
    )

    watcher = None
    if config_files:
        watcher = ConfigWatcher(config_files, healer.on_config_change, loop=loop)
        watcher.start()

    healer_task = asyncio.create_task(healer.run(stop_event))
    api = create_app(healer, metrics)
    logger.info(f"Listening for alerts on {config.server.host}:{config.server.port}")

    try:
        await run_server(api, config.server.host, config.server.port, stop_event)
    finally:
        stop_event.set()
        await healer_task
        if watcher is not None:
            watcher.stop()
        if awx_client is not None:
            await awx_client.close()
        if kube_client is not None:
            await kube_client.close()


@app.command("server")
def server(
    config_files: list[Path] = typer.Option([], "--config-file", "-c", help=CONFIG_FILE_HELP),
    throttling_interval: Optional[str] = typer.Option(
        None, "--throttling-interval", help="How long executed actions are remembered, for example 1h"
    ),
    job_status_interval: Optional[str] = typer.Option(
        None, "--job-status-interval", help="How often AWX job status is checked, for example 5m"
    ),
    host: Optional[str] = typer.Option(None, "--host", help="Address to listen on"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port to listen on"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """Start the healer and listen for alert notifications."""
    setup_logging(verbose)

    config = _load_config_or_exit(config_files)

    try:
        if throttling_interval is not None:
            config.throttling.interval = parse_duration(throttling_interval)
        if job_status_interval is not None:
            config.awx.job_status_check_interval = parse_duration(job_status_interval)
    except ValueError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(1)
    if host is not None:
        config.server.host = host
    if port is not None:
        config.server.port = port

    try:
        asyncio.run(_serve(config, config_files))
    except Exception as e:
        logger.error(f"Server error: {e}")
        raise typer.Exit(1)


# ============================================================================
# Rules
# ============================================================================


@app.command("rules")
def list_rules(
    config_files: list[Path] = typer.Option([], "--config-file", "-c", help=CONFIG_FILE_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """List the healing rules in the configuration."""
    setup_logging(verbose)
    config = _load_config_or_exit(config_files)

    if not config.rules:
        console.print("[yellow]No rules configured[/yellow]")
        return

    table = Table(title="Healing Rules")
    table.add_column("Rule", style="cyan")
    table.add_column("Namespace")
    table.add_column("Action")
    table.add_column("Labels")
    table.add_column("Annotations")

    for rule in config.rules:
        action = rule.action
        if action is None:
            action_str = "[dim]none[/dim]"
        elif isinstance(action, JobAction):
            action_str = f"{action_type(action)} ({action.template})"
        else:
            action_str = f"{action_type(action)} ({action.name or '-'})"

        table.add_row(
            rule.name,
            rule.namespace,
            action_str,
            ", ".join(f"{k}={v}" for k, v in rule.labels.items()) or "-",
            ", ".join(f"{k}={v}" for k, v in rule.annotations.items()) or "-",
        )

    console.print(table)


def _read_alerts(path: Path) -> list[Alert]:
    with open(path) as f:
        data = yaml.safe_load(f)
    if isinstance(data, dict) and "alerts" in data:
        return AlertmanagerMessage.model_validate(data).alerts
    if isinstance(data, list):
        return [Alert.model_validate(item) for item in data]
    return [Alert.model_validate(data)]


@app.command("check")
def check(
    alert_file: Path = typer.Option(..., "--alert", "-a", help="JSON or YAML file with an alert or notification"),
    config_files: list[Path] = typer.Option([], "--config-file", "-c", help=CONFIG_FILE_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """Show which rules an alert activates and the actions they would run.

    Nothing is executed.
    """
    from autoheal.core.dispatcher import Dispatcher
    from autoheal.core.memory import ShortTermMemory
    from autoheal.core.rules import RuleStore
    from autoheal.errors import TemplateExpansionError

    setup_logging(verbose)
    config = _load_config_or_exit(config_files)

    try:
        alerts = _read_alerts(alert_file)
    except Exception as e:
        console.print(f"[red]✗ Can't read alerts from {alert_file}: {e}[/red]")
        raise typer.Exit(1)

    store = RuleStore()
    for rule in config.rules:
        store.upsert(rule)
    dispatcher = Dispatcher(store, ShortTermMemory(0), runners={})

    for alert in alerts:
        console.print(f"\n[bold]Alert '{alert.name}'[/bold] ({alert.status})")
        rules = dispatcher.find_rules(alert)
        if not rules:
            console.print("  [yellow]No rule matches[/yellow]")
            continue

        for rule in rules:
            try:
                action = dispatcher.expand_action(rule, alert)
            except TemplateExpansionError as e:
                console.print(f"  [red]✗ {rule.name}: {e}[/red]")
                continue
            if action is None:
                console.print(f"  [dim]{rule.name}: no action[/dim]")
                continue
            console.print(f"  [green]✓ {rule.name}[/green] → {action_type(action)}")
            document = action.model_dump(mode="json", by_alias=True, exclude_none=True)
            console.print_json(json.dumps(document))


@app.command("version")
def version() -> None:
    """Show version."""
    console.print(f"Autoheal v{__version__}")


# ============================================================================
# Entry Point
# ============================================================================


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
