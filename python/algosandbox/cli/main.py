# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

"""CLI entry point for algosandbox."""

from __future__ import annotations

import dataclasses

import click

from algosandbox import __version__


@dataclasses.dataclass
class CliContext:
    """Shared state passed through Click's context object."""

    socket: str | None = None
    sandbox_dir: str | None = None
    verbose: bool = False


class SandboxGroup(click.Group):
    """Command group that answers unknown commands with the help text."""

    def resolve_command(
        self, ctx: click.Context, args: list[str]
    ) -> tuple[str | None, click.Command | None, list[str]]:
        if args and self.get_command(ctx, args[0]) is None and not args[0].startswith("-"):
            click.echo(ctx.get_help())
            ctx.exit(0)
        return super().resolve_command(ctx, args)


@click.group(cls=SandboxGroup, invoke_without_command=True)
@click.option(
    "--socket",
    envvar="ALGOSANDBOX_SOCKET",
    default=None,
    help="Path to container engine socket.",
)
@click.option(
    "--sandbox-dir",
    envvar="ALGOSANDBOX_DIR",
    default=None,
    type=click.Path(file_okay=False),
    help="Directory holding the sandbox data and configuration (default: cwd).",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.version_option(version=__version__, prog_name="algosandbox")
@click.pass_context
def cli(
    ctx: click.Context,
    socket: str | None,
    sandbox_dir: str | None,
    *,
    verbose: bool,
) -> None:
    """Run a local Algorand node in a container."""
    ctx.ensure_object(dict)
    ctx.obj = CliContext(socket=socket, sandbox_dir=sandbox_dir, verbose=verbose)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit(1)


# --- Register commands ---

from algosandbox.cli._commands import (  # noqa: E402
    clean_cmd,
    down_cmd,
    enter_cmd,
    goal_cmd,
    history_cmd,
    logs_cmd,
    networks_cmd,
    restart_cmd,
    status_cmd,
    test_cmd,
    up_cmd,
)

cli.add_command(up_cmd)
cli.add_command(down_cmd)
cli.add_command(restart_cmd)
cli.add_command(enter_cmd)
cli.add_command(logs_cmd)
cli.add_command(status_cmd)
cli.add_command(goal_cmd)
cli.add_command(clean_cmd)
cli.add_command(test_cmd)
cli.add_command(networks_cmd)
cli.add_command(history_cmd)
