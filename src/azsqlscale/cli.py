"""azsqlscale command-line interface.

Commands:
    up       Add vCores to a database (and its replicas)
    down     Remove vCores from a database (and its replicas)
    config   Show or initialise configuration

Exit codes:
    0  Success, partial success (replica failures) or intentional skip
    1  Scaling or configuration failure
    2  Usage error
"""

import logging
import sys
from collections.abc import Callable
from typing import Any

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from azsqlscale import __version__
from azsqlscale.config import ConfigError, ConfigManager, ScalerConfig, with_overrides
from azsqlscale.control_plane import build_control_plane
from azsqlscale.errors import ScalingError
from azsqlscale.log_sanitizer import LogSanitizer
from azsqlscale.models import (
    ExecutionSummary,
    OutcomeStatus,
    RunStatus,
    ScaleDirection,
    ScalingRequest,
    TriggerContext,
)
from azsqlscale.notifications import build_notifier
from azsqlscale.orchestrator import Orchestrator
from azsqlscale.window_gate import describe_hours, parse_hours

logger = logging.getLogger(__name__)
console = Console()

STATUS_STYLE = {
    RunStatus.SUCCESS: "green",
    RunStatus.PARTIAL_SUCCESS: "yellow",
    RunStatus.FAILED: "red",
    RunStatus.SKIPPED: "cyan",
}
OUTCOME_STYLE = {
    OutcomeStatus.SUCCESS: "green",
    OutcomeStatus.SKIPPED: "cyan",
    OutcomeStatus.FAILED: "red",
}


class HoursParamType(click.ParamType):
    """Click type for hour expressions such as ``8-18`` or ``0-6,22,23``."""

    name = "hours"

    def convert(self, value: Any, param: click.Parameter | None, ctx: click.Context | None):
        if isinstance(value, frozenset):
            return value
        try:
            return parse_hours(str(value))
        except ValueError as e:
            self.fail(str(e), param, ctx)


HOURS = HoursParamType()


def scaling_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by ``up`` and ``down``."""
    options = [
        click.option("--database", "-d", required=True, envvar="AZSQLSCALE_DATABASE",
                     help="Database name (same on primary and replicas)"),
        click.option("--server", "-s", required=True, envvar="AZSQLSCALE_SERVER",
                     help="Primary logical server name"),
        click.option("--resource-group", "--rg", required=True,
                     envvar="AZSQLSCALE_RESOURCE_GROUP", help="Azure resource group"),
        click.option("--subscription", required=True, envvar="AZSQLSCALE_SUBSCRIPTION",
                     help="Azure subscription id"),
        click.option("--max-cores", type=click.IntRange(min=1), required=True,
                     envvar="AZSQLSCALE_MAX_CORES", help="Ceiling for scale-up"),
        click.option("--min-cores", type=click.IntRange(min=0), required=True,
                     envvar="AZSQLSCALE_MIN_CORES", help="Floor for scale-down"),
        click.option("--num-cores", "step_cores", type=click.IntRange(min=1), required=True,
                     envvar="AZSQLSCALE_NUM_CORES", help="vCores to add or remove"),
        click.option("--replica", "replicas", multiple=True,
                     help="Replica server name, in processing order (repeatable)"),
        click.option("--slack-webhook-url", envvar="AZSQLSCALE_SLACK_WEBHOOK_URL",
                     help="Webhook for notifications (default: from config)"),
        click.option("--allowed-hours", type=HOURS,
                     help="Allowed local hours, e.g. 8-18 (default: from config)"),
        click.option("--timezone-offset", type=click.IntRange(-23, 23),
                     help="Offset from UTC in hours for the allowed window"),
        click.option("--gate/--no-gate", default=None,
                     help="Force the time-window gate on or off for this direction"),
        click.option("--dry-run", is_flag=True,
                     help="Read and report, but do not change capacity"),
        click.option("--source", help="Trigger source, e.g. azure-monitor"),
        click.option("--alert-rule", help="Alert rule that fired"),
        click.option("--job-id", help="Automation job id"),
        click.option("--triggered-by", help="Identity that triggered the run"),
        click.option("--correlation-id", help="Correlation id (generated if omitted)"),
        click.option("--metric-value", type=float, help="Metric value that fired the alert"),
        click.option("--threshold-value", type=float, help="Alert threshold"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "config_path", type=click.Path(dir_okay=False),
              help="Config file (default: ~/.azsqlscale/config.toml)")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """Scale Azure SQL Database vCores up or down within bounds.

    Designed to be called from a scheduler or an alert-triggered runbook.
    Every step is reported to the configured chat webhook.

    \b
    EXAMPLES:
        # Add 2 vCores to the primary, never above 16
        $ azsqlscale up -d orders -s sql-prod --rg data-rg \\
            --subscription $SUB --num-cores 2 --min-cores 4 --max-cores 16

        # Remove 2 vCores from two replicas and then the primary
        $ azsqlscale down -d orders -s sql-prod --rg data-rg --subscription $SUB \\
            --num-cores 2 --min-cores 4 --max-cores 16 \\
            --replica sql-prod-weu --replica sql-prod-neu

    \b
    CONFIGURATION:
        Config file: ~/.azsqlscale/config.toml (create with: azsqlscale config init)
        Environment: AZSQLSCALE_* variables
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(message)s")
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


def _load_config(ctx: click.Context, overrides: dict[str, Any]) -> ScalerConfig:
    try:
        return ConfigManager.load_config(ctx.obj.get("config_path"), overrides=overrides)
    except ConfigError as e:
        console.print(f"[red]Configuration error: {escape(str(e))}[/red]")
        sys.exit(1)


def _apply_gate_override(
    config: ScalerConfig, direction: ScaleDirection, gate: bool | None
) -> ScalerConfig:
    if gate is None:
        return config
    gated = set(config.gated_directions)
    if gate:
        gated.add(direction)
    else:
        gated.discard(direction)
    return with_overrides(config, gated_directions=frozenset(gated))


def _run_scaling(ctx: click.Context, direction: ScaleDirection, **opts: Any) -> None:
    """Build request, config and collaborators, run, and map the result to an exit code."""
    config = _load_config(
        ctx,
        {
            "slack_webhook_url": opts["slack_webhook_url"],
            "allowed_hours": opts["allowed_hours"],
            "timezone_offset_hours": opts["timezone_offset"],
        },
    )
    config = _apply_gate_override(config, direction, opts["gate"])

    trigger = TriggerContext.from_environment(
        source=opts["source"],
        alert_rule=opts["alert_rule"],
        automation_job_id=opts["job_id"],
        triggered_by=opts["triggered_by"],
        correlation_id=opts["correlation_id"],
        metric_value=opts["metric_value"],
        threshold_value=opts["threshold_value"],
    )

    try:
        request = ScalingRequest(
            database_name=opts["database"],
            server_name=opts["server"],
            resource_group=opts["resource_group"],
            subscription_id=opts["subscription"],
            direction=direction,
            step_cores=opts["step_cores"],
            min_cores=opts["min_cores"],
            max_cores=opts["max_cores"],
            replica_server_names=tuple(opts["replicas"]),
            allowed_hours=config.allowed_hours,
            timezone_offset_hours=config.timezone_offset_hours,
            trigger=trigger,
        )
    except ValueError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(1)

    try:
        notifier = build_notifier(
            config.slack_webhook_url,
            username=config.notification_username,
            timeout=config.webhook_timeout_seconds,
            max_attempts=config.webhook_max_attempts,
        )
    except ValueError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(1)
    control_plane = build_control_plane(config, dry_run=opts["dry_run"])
    orchestrator = Orchestrator(config, control_plane, notifier)

    if opts["dry_run"]:
        console.print("[yellow]Dry run: capacity changes will not be applied[/yellow]")

    try:
        summary = orchestrator.run(request)
    except ScalingError as e:
        console.print(f"[red]{e.kind}: {escape(LogSanitizer.sanitize(str(e)))}[/red]")
        if e.detail:
            console.print(f"[red]  {escape(LogSanitizer.sanitize(e.detail))}[/red]")
        sys.exit(1)

    print_summary(summary)


def print_summary(summary: ExecutionSummary) -> None:
    """Print a per-server outcome table and the overall status."""
    request = summary.request
    style = STATUS_STYLE[summary.status]

    if summary.skip_reason:
        console.print(f"[{style}]Skipped: {escape(summary.skip_reason)}[/{style}]")

    if summary.outcomes:
        table = Table(title=f"{request.database_name} scale-{request.direction.value}")
        table.add_column("Server", style="bold")
        table.add_column("Role")
        table.add_column("Before", justify="right")
        table.add_column("Target", justify="right")
        table.add_column("After", justify="right")
        table.add_column("Status")
        table.add_column("Notes")

        for outcome in summary.outcomes:
            outcome_style = OUTCOME_STYLE[outcome.status]
            table.add_row(
                outcome.server_name,
                outcome.role.value,
                _fmt(outcome.previous_capacity),
                _fmt(outcome.target_capacity),
                _fmt(outcome.final_capacity),
                f"[{outcome_style}]{outcome.status.value}[/{outcome_style}]",
                escape(outcome.reason or outcome.error_detail or ""),
            )
        console.print(table)

    for error in summary.errors:
        console.print(f"[yellow]  {escape(error)}[/yellow]")

    console.print(
        f"[{style}]Status: {summary.status.value}[/{style}] "
        f"(final capacity: {_fmt(summary.final_capacity)} vCores, "
        f"{summary.duration_seconds:.0f}s)"
    )


def _fmt(value: int | None) -> str:
    return "-" if value is None else str(value)


@main.command(name="up")
@scaling_options
@click.pass_context
def scale_up(ctx: click.Context, **opts: Any) -> None:
    """Add --num-cores vCores, failing if that exceeds --max-cores.

    Only runs inside the allowed hours (see --allowed-hours); outside them
    a notification asks for manual intervention and the command exits 0.
    """
    _run_scaling(ctx, ScaleDirection.UP, **opts)


@main.command(name="down")
@scaling_options
@click.pass_context
def scale_down(ctx: click.Context, **opts: Any) -> None:
    """Remove --num-cores vCores, never going below --min-cores.

    Databases already at the floor are skipped (exit 0).
    """
    _run_scaling(ctx, ScaleDirection.DOWN, **opts)


@main.group(name="config")
def config_group() -> None:
    """Show or initialise configuration."""
    pass


@config_group.command(name="show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show the effective configuration (secrets masked)."""
    config = _load_config(ctx, {})
    data = LogSanitizer.sanitize_dict(config.to_dict())
    data["allowed_hours"] = describe_hours(config.allowed_hours)

    table = Table(title="azsqlscale configuration")
    table.add_column("Key", style="bold")
    table.add_column("Value")
    for key, value in data.items():
        if isinstance(value, list):
            value = ", ".join(str(v) for v in value)
        table.add_row(key, escape(str(value)))
    console.print(table)


@config_group.command(name="init")
@click.option("--force", is_flag=True, help="Overwrite an existing config file")
@click.pass_context
def config_init(ctx: click.Context, force: bool) -> None:
    """Write a commented default config file."""
    try:
        path = ConfigManager.write_default_config(ctx.obj.get("config_path"), force)
    except ConfigError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        sys.exit(1)
    console.print(f"[green]Wrote {path}[/green]")


if __name__ == "__main__":
    main()
