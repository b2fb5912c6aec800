"""Command-line interface for registration-mailer.

Operator commands to inspect the SMTP configuration and to send a test
message through the same delivery engine used by the application.

Usage:
    registration-mailer status
    registration-mailer --config /etc/mailer.ini status --json
    registration-mailer send-test someone@example.com --sent-by ops@example.com
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from .content import build_test_message
from .delivery import DeliveryEngine
from .errors import ConfigurationError
from .logger import configure_logging

console = Console()
err_console = Console(stderr=True)


def run_async(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    err_console.print(f"[red]Error:[/red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def print_json(data: Any) -> None:
    """Print data as formatted JSON."""
    console.print_json(json.dumps(data, indent=2, default=str))


def recommendations(info: dict[str, Any]) -> list[str]:
    """Operator hints derived from a configuration snapshot."""
    hints = []
    if info["missing"]:
        hints.append(f"Configure missing settings: {', '.join(info['missing'])}")
    if not info["admin_recipients"]:
        hints.append("Set ADMIN_EMAILS to receive new registration alerts")
    if info["configured"] and info["execution_mode"] == "development":
        hints.append("Development mode: delivery failures are not masked")
    return hints


def _load_engine(ctx: click.Context) -> DeliveryEngine:
    try:
        return DeliveryEngine.from_environment(config_path=ctx.obj.get("config"))
    except ConfigurationError as exc:
        print_error(str(exc))
        ctx.exit(2)


@click.group()
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None,
              help="INI configuration file (default: $MAILER_CONFIG or mailer.ini).")
@click.option("--log-level", default=None, help="Logging level (default: $MAILER_LOG_LEVEL or INFO).")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, log_level: str | None) -> None:
    """Registration notification delivery tools."""
    configure_logging(log_level)
    ctx.ensure_object(dict)
    ctx.obj["config"] = config_path


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Print the status as JSON.")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show the email configuration status."""
    engine = _load_engine(ctx)
    info = engine.describe_configuration()
    hints = recommendations(info)

    if as_json:
        print_json({"configuration": info, "recommendations": hints})
    else:
        table = Table(title="Email configuration")
        table.add_column("Setting", style="cyan")
        table.add_column("Value")
        for key, value in info.items():
            if isinstance(value, bool):
                value = "[green]yes[/green]" if value else "[red]no[/red]"
            elif isinstance(value, list):
                value = ", ".join(value) or "-"
            table.add_row(key, str(value if value is not None else "-"))
        console.print(table)
        for hint in hints:
            console.print(f"[yellow]•[/yellow] {hint}")

    if not info["configured"]:
        ctx.exit(1)


@main.command("send-test")
@click.argument("address")
@click.option("--sent-by", default="registration-mailer CLI", help="Name shown as the sender of the test.")
@click.pass_context
def send_test(ctx: click.Context, address: str, sent_by: str) -> None:
    """Send a test email to ADDRESS using the configured transport."""
    engine = _load_engine(ctx)
    content = build_test_message(sent_by, datetime.now(timezone.utc))

    async def _send():
        async with engine:
            return await engine.send(content.to_message([address]))

    result = run_async(_send())
    print_json(result.model_dump(mode="json", exclude={"attempts"}))
    if result.error or not result.success:
        print_error(result.error or "Failed to send email")
        ctx.exit(1)
    print_success(f"Test email sent to {address} ({result.message_id})")
