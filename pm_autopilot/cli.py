"""pm-autopilot CLI."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import typer

from pm_autopilot.control_plane.app import AutomationApp, create_app
from pm_autopilot.control_plane.automation.events import stream_events
from pm_autopilot.shared.settings import configure_logging, get_settings

logger = logging.getLogger(__name__)

app = typer.Typer(add_completion=False, help="pm-autopilot: scheduled PM checks and approvals")


def _open_app() -> AutomationApp:
    settings = get_settings()
    configure_logging(settings.log_level)
    return create_app(settings)


def _echo(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, sort_keys=True))


def _fail(exc: ValueError) -> None:
    typer.echo(json.dumps({"error": str(exc)}), err=True)
    raise typer.Exit(code=1) from exc


@app.command("run-cycle")
def run_cycle() -> None:
    """Run every enabled check module once."""
    automation = _open_app()
    try:
        outcome = automation.run_cycle()
    finally:
        automation.close()
    _echo(outcome)
    if not outcome["success"]:
        raise typer.Exit(code=1)


@app.command()
def runs(limit: int = typer.Option(20, "--limit", min=1)) -> None:
    automation = _open_app()
    try:
        _echo(automation.list_runs(limit=limit))
    finally:
        automation.close()


@app.command()
def actions(
    status: str = typer.Option("", "--status"),
    action_type: str = typer.Option("", "--type"),
) -> None:
    automation = _open_app()
    try:
        _echo(automation.list_actions(status=status or None, action_type=action_type or None))
    finally:
        automation.close()


@app.command()
def approve(action_id: str, actor: str = typer.Option("user", "--actor")) -> None:
    automation = _open_app()
    try:
        _echo(automation.approve_action(action_id, actor=actor))
    except ValueError as exc:
        _fail(exc)
    finally:
        automation.close()


@app.command()
def reject(action_id: str, actor: str = typer.Option("user", "--actor")) -> None:
    automation = _open_app()
    try:
        _echo(automation.reject_action(action_id, actor=actor))
    except ValueError as exc:
        _fail(exc)
    finally:
        automation.close()


@app.command()
def execute(action_id: str) -> None:
    """Execute an approved action against the issue tracker."""
    automation = _open_app()
    try:
        _echo(automation.execute_action(action_id))
    except ValueError as exc:
        _fail(exc)
    finally:
        automation.close()


@app.command("config-show")
def config_show() -> None:
    automation = _open_app()
    try:
        _echo(automation.get_config())
    finally:
        automation.close()


@app.command("config-set")
def config_set(
    enabled: bool = typer.Option(None, "--enabled/--disabled"),
    interval_hours: float = typer.Option(None, "--interval-hours"),
    auto_approve_threshold: float = typer.Option(None, "--auto-approve-threshold"),
    auto_execute: bool = typer.Option(None, "--auto-execute/--no-auto-execute"),
) -> None:
    automation = _open_app()
    try:
        _echo(
            automation.set_config(
                enabled=enabled,
                interval_hours=interval_hours,
                auto_approve_threshold=auto_approve_threshold,
                auto_execute=auto_execute,
            )
        )
    except ValueError as exc:
        _fail(exc)
    finally:
        automation.close()


@app.command("load-fixture")
def load_fixture(file: Path = typer.Argument(..., exists=True, dir_okay=False)) -> None:
    """Load team members, tickets, and code activity from a YAML file."""
    automation = _open_app()
    try:
        _echo(automation.load_fixture(file))
    except ValueError as exc:
        _fail(exc)
    finally:
        automation.close()


@app.command()
def serve(
    heartbeat_seconds: float = typer.Option(30.0, "--heartbeat-seconds", min=0.01),
    max_events: int = typer.Option(0, "--max-events", min=0),
) -> None:
    """Start the scheduler and stream lifecycle events as SSE frames until interrupted."""
    automation = _open_app()
    subscription = automation.subscribe()
    if not automation.engine.start():
        typer.echo("Automation is disabled; enable it with `config-set --enabled`.", err=True)
    seen = 0
    try:
        for frame in stream_events(subscription, heartbeat_seconds=heartbeat_seconds):
            typer.echo(frame, nl=False)
            if not frame.startswith(":"):
                seen += 1
            if max_events and seen >= max_events:
                break
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        subscription.close()
        automation.close()


if __name__ == "__main__":
    app()
