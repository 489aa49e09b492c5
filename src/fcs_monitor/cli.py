"""CLI commands for fcs-monitor."""

import click


@click.group()
@click.version_option()
def main() -> None:
    """Flow complexity and health scoring for a flow engine."""
    pass


@main.command()
def daemon() -> None:
    """Run the polling daemon."""
    import asyncio

    from fcs_monitor.daemon import run_daemon

    asyncio.run(run_daemon())


def _print_snapshot(snapshot, fmt: str) -> None:
    """Print a MetricSnapshot as aligned rows or JSON."""
    import json
    from datetime import datetime

    if fmt == "json":
        click.echo(json.dumps(snapshot.to_dict(), indent=2))
        return

    if snapshot.is_empty:
        click.echo("No metrics (empty topology).")
        return

    captured = datetime.fromtimestamp(snapshot.captured_at)
    click.echo(f"Captured: {captured.strftime('%Y-%m-%d %H:%M:%S')}")
    width = max(len(key) for key in snapshot)
    for key, value in snapshot.items():
        shown = f"{value:.0f}" if float(value).is_integer() else f"{value:.3f}"
        click.echo(f"  {key:<{width}}  {shown:>12}")


def _load_config():
    from fcs_monitor.config import Config

    try:
        return Config.load()
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)


@main.command()
@click.option("--format", "-f", "fmt", type=click.Choice(["table", "json"]), default="table")
def snapshot(fmt: str) -> None:
    """Run one refresh cycle and print the metrics."""
    from fcs_monitor.client import FetchError, FlowApiClient
    from fcs_monitor.daemon import Refresher

    config = _load_config()

    with FlowApiClient(config.api) as client:
        refresher = Refresher(config, client)
        try:
            result = refresher.refresh()
        except FetchError as e:
            click.echo(f"Error: {e}", err=True)
            raise SystemExit(1)

    if result is None:
        click.echo("Refresh already running.", err=True)
        raise SystemExit(1)
    _print_snapshot(result, fmt)


@main.command()
@click.argument("group_id")
@click.option("--format", "-f", "fmt", type=click.Choice(["table", "json"]), default="table")
def group(group_id: str, fmt: str) -> None:
    """Print topology metrics for a single process group."""
    from fcs_monitor.client import FetchError, FlowApiClient
    from fcs_monitor.metrics import MetricsEngine

    config = _load_config()

    with FlowApiClient(config.api) as client:
        engine = MetricsEngine(client, config.polling.root_group_id)
        try:
            result = engine.metrics_for_group(group_id)
        except FetchError as e:
            click.echo(f"Error: {e}", err=True)
            raise SystemExit(1)

    _print_snapshot(result, fmt)


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
def config_show() -> None:
    """Display current configuration."""
    from dataclasses import fields

    cfg = _load_config()

    click.echo(f"Config file: {cfg.config_path}")
    click.echo(f"Exists: {cfg.config_path.exists()}")
    for section in ("api", "polling", "trends", "weights", "system"):
        values = getattr(cfg, section)
        click.echo()
        click.echo(f"[{section}]")
        for f in fields(values):
            value = getattr(values, f.name)
            if f.name == "token" and value:
                value = "********"
            click.echo(f"  {f.name} = {value}")


@config.command("edit")
def config_edit() -> None:
    """Open config file in editor."""
    import os
    import subprocess

    from fcs_monitor import logging as console
    from fcs_monitor.config import Config

    cfg = Config()

    if not cfg.config_path.exists():
        cfg.save()
        console.config_created(str(cfg.config_path))

    editor = os.environ.get("EDITOR", "nano")
    subprocess.run([editor, str(cfg.config_path)])


@config.command("reset")
@click.confirmation_option(prompt="Reset config to defaults?")
def config_reset() -> None:
    """Reset configuration to defaults."""
    from fcs_monitor.config import Config

    cfg = Config()
    cfg.save()
    click.echo(f"Config reset to defaults at {cfg.config_path}")


if __name__ == "__main__":
    main()
