#!/usr/bin/env python3
"""
Offboard Control CLI - Command Line Interface for the Offboard Engine.

Provides commands for disabling departing identities, running the
reconciliation cycle and the delayed license reclamation, and inspecting
the audit trail and tracked set.
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..audit import AuditTrailStore
from ..config import load_config
from ..connectors import BaseConnector, build_connector
from ..engine import ReclamationScheduler, ReconciliationEngine, TrackedSetStore
from ..exceptions import ConfigurationError, OffboardEngineError
from ..workflows import DisableWorkflow, ReclaimWorkflow, create_disable_summary

logger = logging.getLogger(__name__)

# Rich console for pretty output
console = Console()

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Used with --simulate when no configuration file is given
SIMULATION_DEFAULTS: Dict[str, Any] = {
    "eligibility_scope": "au-disabled-users",
    "quarantine_scope": "au-quarantine",
    "tracked_set_path": "state/tracked.txt",
    "license_group_ids": ["grp-license-e3"],
    "mfa_group_ids": ["grp-mfa"],
    "upn_domain": "contoso.com",
}


def setup_logging(log_dir: Path, level: int = logging.INFO) -> None:
    """Log to the console and to a daily file under ``log_dir``."""
    if logging.getLogger().handlers:
        return

    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"offboard-{datetime.now(timezone.utc).strftime('%Y-%m-%d')}.log"

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(), logging.FileHandler(log_file, encoding="utf-8")],
    )


class OffboardController:
    """Main controller for Offboard Engine operations."""

    def __init__(self, config_path: Optional[str] = None, simulate: bool = False):
        """Load configuration; the connector is built on first use."""
        overrides: Dict[str, Any] = {}
        if simulate:
            overrides["simulation"] = True
            if not config_path:
                overrides.update(SIMULATION_DEFAULTS)

        self.config = load_config(config_path, **overrides)
        self._connector: Optional[BaseConnector] = None

        mode = "simulation" if self.config.simulation else "live"
        console.print(f"[green]Offboard Engine initialized ({mode})[/green]")

    @property
    def connector(self) -> BaseConnector:
        # One connector per invocation so a simulated directory keeps its state across steps
        if self._connector is None:
            self._connector = build_connector(self.config)
        return self._connector


@click.group()
@click.option('--config', '-c', type=click.Path(), help='Path to YAML or JSON configuration file')
@click.option('--simulate', is_flag=True, default=False, help='Run against the simulated directory')
@click.option('--verbose', '-v', is_flag=True, default=False, help='Enable debug logging')
@click.pass_context
def cli(ctx, config, simulate, verbose):
    """Offboard Engine Control CLI - Employee Offboarding Automation"""
    ctx.ensure_object(dict)
    try:
        controller = OffboardController(config, simulate)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        sys.exit(2)

    setup_logging(controller.config.log_dir, logging.DEBUG if verbose else logging.INFO)
    ctx.obj['controller'] = controller


@cli.command()
@click.argument('identifiers', nargs=-1, required=True)
@click.pass_context
def disable(ctx, identifiers):
    """Disable one or more departing identities."""
    controller = ctx.obj['controller']

    workflow = DisableWorkflow(controller.config, controller.connector)
    outcomes = workflow.execute_many(identifiers)

    table = Table(title="Disable Results")
    table.add_column("Identifier", style="cyan")
    table.add_column("User", style="green")
    table.add_column("Status", style="yellow")
    table.add_column("Steps", style="magenta")
    table.add_column("Errors", style="red")

    for outcome in outcomes:
        summary = create_disable_summary(outcome)
        table.add_row(
            summary["identifier"],
            summary["user"] or "-",
            summary["status"],
            f"{summary['successful_steps']}/{summary['total_steps']}",
            str(summary["error_count"]),
        )

    console.print(table)

    for outcome in outcomes:
        for error in outcome.errors:
            console.print(f"  [red]-[/red] {outcome.identifier}: {error}")

    if any(o.record is None for o in outcomes):
        sys.exit(1)


@cli.command()
@click.option('--json', 'as_json', is_flag=True, default=False, help='Print the cycle summary as JSON')
@click.pass_context
def reconcile(ctx, as_json):
    """Run one reconciliation cycle."""
    controller = ctx.obj['controller']

    try:
        engine = ReconciliationEngine(controller.config, controller.connector)
        summary = engine.run_cycle()
    except OffboardEngineError as e:
        console.print(f"[red]Reconciliation aborted: {e}[/red]")
        logger.error(f"Reconciliation aborted: {e}")
        sys.exit(1)

    if as_json:
        click.echo(summary.model_dump_json(indent=2))
        return

    table = Table(title="Reconciliation Cycle")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="magenta")

    table.add_row("Timestamp", summary.timestamp.strftime("%Y-%m-%d %H:%M:%S"))
    table.add_row("Simulation", str(summary.simulation))
    table.add_row("Identified", str(summary.identified))
    table.add_row("Applied", str(summary.applied))
    table.add_row("Previously Processed", str(summary.previously_processed))
    table.add_row("Evicted", str(len(summary.evicted)))
    table.add_row("Pending Reclamation", str(summary.pending))
    table.add_row("Skipped (unresolved)", str(summary.skipped_unresolved))
    table.add_row("Errors", str(summary.error_count))

    console.print(table)

    for name in summary.evicted:
        console.print(f"  [yellow]Re-queued[/yellow] {name}")


@cli.command()
@click.pass_context
def reclaim(ctx):
    """Reclaim licenses from held principals whose reclamation is due."""
    controller = ctx.obj['controller']

    try:
        summary = ReclaimWorkflow(controller.config, controller.connector).execute()
    except OffboardEngineError as e:
        console.print(f"[red]Reclamation aborted: {e}[/red]")
        sys.exit(1)

    console.print(Panel.fit(
        f"Due: {summary.due}\nReclaimed: {summary.reclaimed}\nNot yet due: {summary.not_due}",
        title="License Reclamation",
    ))

    if summary.errors:
        console.print("[red]Errors:[/red]")
        for error in summary.errors:
            console.print(f"  - {error}")


@cli.command(name='audit-trail')
@click.argument('user', required=False)
@click.option('--limit', default=50, help='Maximum number of records to show')
@click.pass_context
def audit_trail(ctx, user, limit):
    """Show the audit trail, or one identifier's full history."""
    controller = ctx.obj['controller']
    store = AuditTrailStore(controller.config.audit_trail_path)

    try:
        records = store.history(user) if user else store.load_all()
    except OffboardEngineError as e:
        console.print(f"[red]Error retrieving audit trail: {e}[/red]")
        sys.exit(1)

    if not records:
        console.print(f"[yellow]No audit records found{' for ' + user if user else ''}[/yellow]")
        return

    table = Table(title=f"Audit Trail{' for ' + user if user else ''}")
    table.add_column("User", style="cyan")
    table.add_column("Principal Name", style="blue")
    table.add_column("Status", style="green")
    table.add_column("Timestamp", style="yellow")
    table.add_column("Groups", style="magenta")
    table.add_column("Backup", style="white")

    for record in records[-limit:]:
        table.add_row(
            record.user,
            record.principal_name,
            record.status.value,
            record.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            str(len(record.groups)),
            record.backup_path or "N/A",
        )

    console.print(table)


@cli.command()
@click.pass_context
def tracked(ctx):
    """Show principals with the hold applied and their reclamation due time."""
    controller = ctx.obj['controller']

    names = TrackedSetStore(controller.config.tracked_set_path).load()
    try:
        schedule = ReclamationScheduler(controller.config.resolved_schedule_path).load()
    except OffboardEngineError as e:
        console.print(f"[red]Error reading reclamation schedule: {e}[/red]")
        sys.exit(1)

    if not names:
        console.print("[yellow]No tracked principals[/yellow]")
        return

    table = Table(title=f"Tracked Principals ({len(names)})")
    table.add_column("Principal Name", style="cyan")
    table.add_column("Reclamation Due", style="magenta")

    for name in names:
        entry = schedule.get(name.lower())
        table.add_row(name, entry.due_at.strftime("%Y-%m-%d %H:%M:%S") if entry else "N/A")

    console.print(table)


@cli.command()
@click.option('--port', default=8000, help='Port to run the API server on')
@click.option('--host', default='127.0.0.1', help='Host to bind the API server to')
@click.pass_context
def serve(ctx, port, host):
    """Start the Offboard Engine API server."""
    from ..api.server import configure, start_server

    configure(ctx.obj['controller'].config)

    console.print(f"[green]Starting Offboard Engine API server on {host}:{port}[/green]")
    console.print("[blue]Press Ctrl+C to stop[/blue]")

    try:
        start_server(host=host, port=port, reload=False)
    except KeyboardInterrupt:
        console.print("[yellow]Server stopped[/yellow]")


def main():
    """Console script entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
