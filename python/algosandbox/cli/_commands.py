# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

"""CLI command implementations."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import click

if TYPE_CHECKING:
    from algosandbox import SandboxManager
    from algosandbox.cli.main import CliContext

from algosandbox.cli._output import (
    format_error,
    print_success,
)


def _get_ctx(ctx: click.Context) -> CliContext:
    """Extract the CliContext from Click's context object."""
    return ctx.obj  # type: ignore[no-any-return]


def _open_manager(ctx: click.Context) -> SandboxManager:
    """Build a SandboxManager for the selected sandbox directory."""
    import algosandbox  # noqa: PLC0415

    cli_ctx = _get_ctx(ctx)
    sandbox_dir = Path(cli_ctx.sandbox_dir) if cli_ctx.sandbox_dir else None
    return algosandbox.open_sandbox(sandbox_dir, socket_path=cli_ctx.socket)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@click.command("up")
@click.argument("network", required=False, default=None)
@click.option(
    "--use-snapshot",
    "-s",
    "use_snapshot",
    is_flag=True,
    help="Seed the data directory from the network's ledger snapshot.",
)
@click.option("--no-wait", is_flag=True, help="Do not poll the node status after starting.")
@click.pass_context
def up_cmd(
    ctx: click.Context,
    network: str | None,
    *,
    use_snapshot: bool,
    no_wait: bool,
) -> None:
    """Start the sandbox, creating it on NETWORK (default: testnet) if needed."""
    import algosandbox  # noqa: PLC0415
    from algosandbox.cli._output import format_up_result  # noqa: PLC0415

    request = algosandbox.LaunchRequest(network=network, use_snapshot=use_snapshot)
    try:
        manager = _open_manager(ctx)
        result = manager.up(request, wait=not no_wait)
    except (algosandbox.SandboxError, OSError) as exc:
        format_error(exc)
        raise SystemExit(1) from exc
    format_up_result(result, verbose=_get_ctx(ctx).verbose)


@click.command("down")
@click.pass_context
def down_cmd(ctx: click.Context) -> None:
    """Stop the sandbox container."""
    import algosandbox  # noqa: PLC0415

    try:
        _open_manager(ctx).down()
    except algosandbox.SandboxError as exc:
        format_error(exc)
        raise SystemExit(1) from exc
    print_success("Sandbox stopped")


@click.command("restart")
@click.pass_context
def restart_cmd(ctx: click.Context) -> None:
    """Restart the sandbox container."""
    import algosandbox  # noqa: PLC0415

    try:
        _open_manager(ctx).restart()
    except algosandbox.SandboxError as exc:
        format_error(exc)
        raise SystemExit(1) from exc
    print_success("Sandbox restarted")


@click.command("clean")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON.")
@click.pass_context
def clean_cmd(ctx: click.Context, *, json_output: bool) -> None:
    """Remove the sandbox container, its images and the data directory."""
    from algosandbox.cli._output import format_clean_report, print_warning  # noqa: PLC0415

    report = _open_manager(ctx).clean()
    format_clean_report(report, json_output=json_output)
    for step in report.failed:
        print_warning(f"{step.name}: {step.detail}")


# ---------------------------------------------------------------------------
# Forwarding
# ---------------------------------------------------------------------------


@click.command("status")
@click.pass_context
def status_cmd(ctx: click.Context) -> None:
    """Show the node status reported by goal."""
    import algosandbox  # noqa: PLC0415
    from algosandbox.cli._output import format_exec_result  # noqa: PLC0415

    try:
        result = _open_manager(ctx).status()
    except algosandbox.SandboxError as exc:
        format_error(exc)
        raise SystemExit(1) from exc
    format_exec_result(result)
    raise SystemExit(result.exit_code)


@click.command(
    "goal",
    context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False},
)
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def goal_cmd(ctx: click.Context, args: tuple[str, ...]) -> None:
    """Run goal inside the sandbox against its data directory."""
    import algosandbox  # noqa: PLC0415

    try:
        code = _open_manager(ctx).goal(args)
    except algosandbox.SandboxError as exc:
        format_error(exc)
        raise SystemExit(1) from exc
    raise SystemExit(code)


@click.command("enter")
@click.pass_context
def enter_cmd(ctx: click.Context) -> None:
    """Open an interactive shell inside the sandbox."""
    import algosandbox  # noqa: PLC0415

    try:
        code = _open_manager(ctx).enter()
    except algosandbox.SandboxError as exc:
        format_error(exc)
        raise SystemExit(1) from exc
    raise SystemExit(code)


@click.command("logs")
@click.argument("mode", required=False, default=None, type=click.Choice(["raw"]))
@click.pass_context
def logs_cmd(ctx: click.Context, mode: str | None) -> None:
    """Follow the node log (pass 'raw' for unformatted lines)."""
    import algosandbox  # noqa: PLC0415
    from algosandbox.cli._output import print_log_line  # noqa: PLC0415

    raw = mode == "raw"
    try:
        for line in _open_manager(ctx).logs():
            print_log_line(line, raw=raw)
    except KeyboardInterrupt:
        return
    except algosandbox.SandboxError as exc:
        format_error(exc)
        raise SystemExit(1) from exc


@click.command("test")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON.")
@click.pass_context
def test_cmd(ctx: click.Context, *, json_output: bool) -> None:
    """Query the node REST endpoint with the sandbox API token."""
    import algosandbox  # noqa: PLC0415
    from algosandbox.cli._output import format_node_status  # noqa: PLC0415

    try:
        status = _open_manager(ctx).test()
    except (algosandbox.SandboxError, OSError) as exc:
        format_error(exc)
        raise SystemExit(1) from exc
    format_node_status(status, json_output=json_output)


# ---------------------------------------------------------------------------
# Read-only
# ---------------------------------------------------------------------------


@click.command("networks")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON.")
def networks_cmd(*, json_output: bool) -> None:
    """List the networks a sandbox can join."""
    from algosandbox.cli._output import format_network_list  # noqa: PLC0415
    from algosandbox.networks import list_networks  # noqa: PLC0415

    format_network_list(list_networks(), json_output=json_output)


@click.command("history")
@click.option("--last", "last_n", type=int, default=20, help="Number of entries to show.")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON.")
@click.pass_context
def history_cmd(ctx: click.Context, *, last_n: int, json_output: bool) -> None:
    """Show recorded sandbox lifecycle actions."""
    from algosandbox._config import load_config  # noqa: PLC0415
    from algosandbox._logger import read_history  # noqa: PLC0415
    from algosandbox.cli._output import format_history  # noqa: PLC0415

    cli_ctx = _get_ctx(ctx)
    sandbox_dir = Path(cli_ctx.sandbox_dir) if cli_ctx.sandbox_dir else None
    config = load_config(sandbox_dir)
    entries = read_history(config.state_dir)[-last_n:]
    format_history(entries, json_output=json_output)
