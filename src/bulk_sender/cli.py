# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Command-line interface for the bulk sender.

Usage:
    bulk-sender send "Meeting moved to 10:00" -r +390611 -r +390612
    bulk-sender send "Reminder" --recipients-file numbers.txt --dry-run
    bulk-sender config
    bulk-sender failures --limit 20
    bulk-sender serve --port 8000

Every command accepts ``--config`` pointing at an INI file; see
:mod:`bulk_sender.config_loader` for the format and the ``BULK_*``
environment variables.
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from bulk_sender.config_loader import DispatcherConfig, load_config
from bulk_sender.core import BulkSenderCore
from bulk_sender.delivery import LoggingDeliveryClient
from bulk_sender.errors import ConfigError
from bulk_sender.logger import configure_logging
from bulk_sender.persistence import FailureStore

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


def read_recipients(path: Path) -> list[str]:
    """Read one recipient per line, skipping blank lines and ``#`` comments."""
    recipients = []
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            recipients.append(line)
    return recipients


def _load(config_path: str | None) -> DispatcherConfig:
    try:
        return load_config(config_path)
    except ConfigError as exc:
        print_error(str(exc))
        sys.exit(1)


async def _send(
    config: DispatcherConfig,
    message: str,
    recipients: list[str],
    dry_run: bool,
    timeout: float | None,
) -> tuple[dict[str, Any], dict[str, Any] | None, list[dict[str, Any]]]:
    core = BulkSenderCore(config, client=LoggingDeliveryClient() if dry_run else None)
    await core.start()
    try:
        result = await core.handle_command("sendBulk", {"message": message, "recipients": recipients})
        if not result.get("ok"):
            return result, None, []
        try:
            await core.wait_idle(timeout)
        except asyncio.TimeoutError:
            err_console.print("[yellow]Timed out, unfinished tasks are abandoned[/yellow]")
        batch = await core.handle_command("getBatch", {"batch_id": result["batch_id"]})
        failures = (await core.handle_command("listFailures", {})).get("failures", [])
        return result, batch.get("summary"), failures
    finally:
        await core.stop()


@click.group()
@click.version_option(package_name="bulk-sender")
def main() -> None:
    """Rate-limited bulk message dispatcher."""


@main.command("send")
@click.argument("message")
@click.option("-r", "--recipient", "recipients", multiple=True, help="Recipient identifier (repeatable).")
@click.option(
    "--recipients-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="File with one recipient per line.",
)
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="INI configuration file.")
@click.option("--dry-run", is_flag=True, help="Log messages instead of calling the provider.")
@click.option("--timeout", type=float, default=None, help="Give up waiting after this many seconds.")
@click.option("--json", "as_json", is_flag=True, help="Print the summary as JSON.")
def send_cmd(message, recipients, recipients_file, config_path, dry_run, timeout, as_json):
    """Send MESSAGE to every recipient and wait for the outcome."""
    all_recipients = list(recipients)
    if recipients_file is not None:
        all_recipients.extend(read_recipients(recipients_file))
    config = _load(config_path)
    configure_logging(config.log_level)

    result, summary, failures = run_async(_send(config, message, all_recipients, dry_run, timeout))
    if not result.get("ok"):
        print_error(f"{result.get('error')} ({result.get('code')})")
        sys.exit(1)

    if as_json:
        print_json({"batch_id": result["batch_id"], "summary": summary, "failures": failures})
    else:
        table = Table(title=f"Batch {result['batch_id']}")
        for column in ("total", "succeeded", "failed", "deferred", "pending"):
            table.add_column(column.capitalize(), justify="right")
        table.add_row(*(str((summary or {}).get(column, 0)) for column in ("total", "succeeded", "failed", "deferred", "pending")))
        console.print(table)
        if failures:
            failure_table = Table(title="Failures")
            failure_table.add_column("Recipient")
            failure_table.add_column("Attempts", justify="right")
            failure_table.add_column("Kind")
            failure_table.add_column("Error")
            for item in failures:
                failure_table.add_row(item["recipient"], str(item["attempts"]), item["error_kind"], item["error"])
            console.print(failure_table)

    if summary and summary.get("failed"):
        sys.exit(2)
    if not as_json:
        print_success(
            f"Delivered {summary.get('succeeded', 0) if summary else 0} message(s)"
        )


@main.command("config")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="INI configuration file.")
@click.option("--json", "as_json", is_flag=True, help="Print as JSON.")
def config_cmd(config_path, as_json):
    """Show the effective configuration (secrets redacted)."""
    data = _load(config_path).to_dict()
    if as_json:
        print_json(data)
        return
    table = Table(title="Configuration")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for key, value in data.items():
        table.add_row(key, "-" if value is None else str(value))
    console.print(table)


@main.command("failures")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="INI configuration file.")
@click.option("--limit", type=click.IntRange(min=0), default=50, show_default=True, help="Newest failures to show.")
def failures_cmd(config_path, limit):
    """List failures recorded in the SQLite failure log."""
    config = _load(config_path)
    if not config.failure_db_path:
        print_error("failure_db_path is not configured")
        sys.exit(1)
    store = FailureStore(config.failure_db_path)

    async def _list():
        await store.init_db()
        return await store.list_failures(limit=limit)

    rows = run_async(_list())
    if not rows:
        console.print("No failures recorded")
        return
    table = Table(title="Failures")
    table.add_column("Recipient")
    table.add_column("Attempts", justify="right")
    table.add_column("Kind")
    table.add_column("Error")
    for row in rows:
        table.add_row(row["recipient"], str(row["attempts"]), row["error_kind"] or "-", row["error"] or "-")
    console.print(table)


@main.command("serve")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="INI configuration file.")
@click.option("--host", default=None, help="Bind address (overrides config).")
@click.option("--port", type=int, default=None, help="Port (overrides config).")
def serve_cmd(config_path, host, port):
    """Run the HTTP API with uvicorn."""
    import uvicorn

    if config_path:
        os.environ["BULK_CONFIG"] = str(config_path)
    config = _load(config_path)
    uvicorn.run(
        "bulk_sender.server:app",
        host=host or config.host,
        port=port or config.port,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
