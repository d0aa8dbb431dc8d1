# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

"""Rich output formatters for the CLI."""

from __future__ import annotations

import dataclasses
import json
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from algosandbox.errors import SandboxError
    from algosandbox.networks import NetworkProfile
    from algosandbox.types import CleanReport, ExecResult, UpResult

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

_console = Console()
_err_console = Console(stderr=True)

_LEVEL_STYLES = {
    "debug": "dim",
    "info": "green",
    "warning": "yellow",
    "warn": "yellow",
    "error": "bold red",
    "fatal": "bold magenta",
    "panic": "bold magenta",
}


def format_error(err: SandboxError | OSError) -> None:
    """Print an error as a rich panel with a remediation hint."""
    title, suggestion = _error_info(err)
    lines = [escape(str(err))]
    if suggestion:
        lines.append(f"\n[dim]{suggestion}[/dim]")

    panel = Panel(
        "\n".join(lines),
        title=f"[red]{title}[/red]",
        expand=False,
    )
    _err_console.print(panel)


def _error_info(err: SandboxError | OSError) -> tuple[str, str]:
    """Map an error to a title and suggestion string."""
    from algosandbox.errors import (  # noqa: PLC0415
        BuildFailed,
        ConflictError,
        ContainerExists,
        ContainerNotFound,
        ContainerNotRunning,
        DataDirectoryExists,
        EngineNotRunning,
        FetchError,
        NodeUnreachable,
        UnknownNetwork,
        UnsupportedError,
    )

    if isinstance(err, UnknownNetwork):
        return "Unknown Network", "Run 'algosandbox networks' to see available networks."
    if isinstance(err, ContainerExists):
        return (
            "Sandbox Exists",
            "Run 'algosandbox up' without a network to resume it, "
            "or 'algosandbox clean' to remove it.",
        )
    if isinstance(err, DataDirectoryExists):
        return (
            "Data Directory Exists",
            "Run 'algosandbox up' without a network to reuse it, "
            "or 'algosandbox clean' to start over.",
        )
    if isinstance(err, ConflictError):
        return "Conflict", "Remove the existing sandbox with 'algosandbox clean'."
    if isinstance(err, UnsupportedError):
        return "Not Supported", "Run 'algosandbox up' without --use-snapshot."
    if isinstance(err, EngineNotRunning):
        return "Engine Not Found", "Start Podman or Docker and try again."
    if isinstance(err, ContainerNotFound):
        return "Sandbox Not Found", "Run 'algosandbox up' to create it."
    if isinstance(err, ContainerNotRunning):
        return "Sandbox Not Running", "Run 'algosandbox up' to start it."
    if isinstance(err, BuildFailed):
        return "Build Failed", ""
    if isinstance(err, FetchError):
        return "Download Failed", "Check your network connection and try again."
    if isinstance(err, NodeUnreachable):
        return "Node Unreachable", "The node may still be starting; try again shortly."
    if isinstance(err, FileNotFoundError):
        return "File Not Found", ""
    return "Error", ""


def print_success(msg: str) -> None:
    """Print a success message with a checkmark."""
    _console.print(f"[green]✓[/green] {escape(msg)}")


def print_warning(msg: str) -> None:
    _err_console.print(f"[yellow]![/yellow] {escape(msg)}")


def format_up_result(result: UpResult, *, verbose: bool = False) -> None:
    """Summarize what ``up`` did."""
    for warning in result.warnings:
        print_warning(warning)
    if result.action == "resumed":
        print_success("Resumed existing sandbox")
        return
    network = result.network.name if result.network is not None else "unknown"
    seeded = "new data directory" if result.seeded else "existing data directory"
    print_success(f"Sandbox started on {network} ({result.image}, {seeded})")
    if result.node_ready:
        print_success("Node is answering on its REST endpoint")
    if verbose and result.container_id:
        _console.print(f"[dim]container {result.container_id[:12]}[/dim]")


def format_exec_result(result: ExecResult) -> None:
    """Print exec result stdout/stderr to their respective streams."""
    if result.stdout:
        sys.stdout.write(result.stdout)
        if not result.stdout.endswith("\n"):
            sys.stdout.write("\n")
    if result.stderr:
        sys.stderr.write(result.stderr)
        if not result.stderr.endswith("\n"):
            sys.stderr.write("\n")


def format_clean_report(report: CleanReport, *, json_output: bool = False) -> None:
    """Print cleanup step results as a table or JSON."""
    if json_output:
        click_echo_json([dataclasses.asdict(s) for s in report.steps])
        return

    table = Table(title="Clean")
    table.add_column("Step", style="cyan")
    table.add_column("Result")
    table.add_column("Detail", style="dim")
    styles = {"ok": "green", "skipped": "dim", "failed": "red"}
    for step in report.steps:
        style = styles.get(step.status, "")
        table.add_row(step.name, f"[{style}]{step.status}[/{style}]", escape(step.detail))
    _console.print(table)


def format_network_list(profiles: list[NetworkProfile], *, json_output: bool = False) -> None:
    """Print network profiles as a table or JSON."""
    if json_output:
        click_echo_json(
            [
                {**dataclasses.asdict(p), "genesis_url": p.genesis_url}
                for p in profiles
            ]
        )
        return

    table = Table(title="Networks")
    table.add_column("Name", style="cyan")
    table.add_column("Channel")
    table.add_column("Genesis")
    table.add_column("Snapshot")
    for p in profiles:
        snapshot = "[green]available[/green]" if p.has_snapshot else "[dim]none[/dim]"
        table.add_row(p.name, p.channel, p.genesis_version, snapshot)
    _console.print(table)


def format_node_status(status: dict[str, object], *, json_output: bool = False) -> None:
    """Print the node REST status payload."""
    if json_output:
        click_echo_json(status)
        return
    lines = [f"[bold]{escape(str(k))}:[/bold] {escape(str(v))}" for k, v in status.items()]
    _console.print(Panel("\n".join(lines) or "[dim]empty[/dim]", title="Node Status", expand=False))


def format_log_line(line: str) -> Text:
    """Render one node log line.

    The node writes JSON objects with ``time``, ``level`` and ``msg`` keys;
    anything else is shown verbatim.
    """
    try:
        entry = json.loads(line)
    except json.JSONDecodeError:
        return Text(line)
    if not isinstance(entry, dict):
        return Text(line)

    level = str(entry.get("level", "")).lower()
    text = Text()
    if entry.get("time"):
        text.append(f"{entry['time']} ", style="dim")
    text.append(f"{level.upper() or '-':<7} ", style=_LEVEL_STYLES.get(level, ""))
    text.append(str(entry.get("msg", "")))
    if entry.get("file"):
        text.append(f"  ({entry['file']}:{entry.get('line', '')})", style="dim")
    return text


def print_log_line(line: str, *, raw: bool) -> None:
    if raw:
        sys.stdout.write(line + "\n")
        sys.stdout.flush()
        return
    _console.print(format_log_line(line))


def format_history(entries: list[dict[str, object]], *, json_output: bool = False) -> None:
    """Print lifecycle history entries as a table or JSON."""
    if json_output:
        click_echo_json(entries)
        return

    if not entries:
        _console.print("[dim]No history entries found.[/dim]")
        return

    table = Table(title="Sandbox History")
    table.add_column("Timestamp", style="dim")
    table.add_column("Action", style="cyan")
    table.add_column("Status")
    table.add_column("Detail")
    for entry in entries:
        status = str(entry.get("status", ""))
        style = "green" if status == "ok" else "red" if status == "failed" else "dim"
        detail = ", ".join(
            f"{k}={v}"
            for k, v in entry.items()
            if k not in {"timestamp", "action", "status"}
        )
        table.add_row(
            str(entry.get("timestamp", "")),
            str(entry.get("action", "")),
            f"[{style}]{status}[/{style}]",
            escape(detail)[:80],
        )
    _console.print(table)


def click_echo_json(data: object) -> None:
    """Serialize data to JSON and echo to stdout."""
    sys.stdout.write(json.dumps(data, indent=2, default=str) + "\n")
