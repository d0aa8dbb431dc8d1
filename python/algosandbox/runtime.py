# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

"""Sync facade over the engine socket client.

Every call drives its coroutine to completion with :func:`asyncio.run`; the
sandbox tool runs one command per process, so there is no long-lived loop to
share.  Interactive commands (shell entry, ``goal``) need a TTY, which the
socket API cannot provide, so those go through the engine's own CLI.
"""

from __future__ import annotations

import asyncio
import io
import shutil
import subprocess  # nosec B404
import tarfile
from typing import TYPE_CHECKING, Any

from algosandbox import _socket_client as sc
from algosandbox.errors import EngineNotRunning
from algosandbox.types import ImageInfo

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator
    from pathlib import Path

    from algosandbox.types import ExecResult


def build_tar_context(dockerfile_dir: Path) -> bytes:
    """Create a tar archive from a Dockerfile directory for the build API."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        for item in sorted(dockerfile_dir.iterdir()):
            tar.add(str(item), arcname=item.name)
    return buf.getvalue()


def detect_engine_cli(socket_path: str | None) -> str:
    """Detect which container engine CLI to use (podman or docker)."""
    if socket_path and "podman" in socket_path:
        return "podman"
    if socket_path and "docker" in socket_path:
        return "docker"
    if shutil.which("podman"):
        return "podman"
    return "docker"


async def _next_frame(frames: AsyncIterator[tuple[int, bytes]]) -> tuple[int, bytes]:
    return await frames.__anext__()


class ContainerRuntime:
    """Container engine operations used by the sandbox lifecycle."""

    def __init__(self, socket_path: str | None = None) -> None:
        self._socket_path = socket_path

    @property
    def socket_path(self) -> str:
        """The engine socket, auto-detected on first use."""
        if self._socket_path is None:
            self._socket_path = sc.detect_socket()
            if self._socket_path is None:
                raise EngineNotRunning
        return self._socket_path

    # --- containers ---

    def find_container(self, name: str) -> dict[str, Any] | None:
        """Return the engine listing entry for *name* (any state), or ``None``."""
        found = asyncio.run(sc.list_containers(self.socket_path, name=name))
        return found[0] if found else None

    def start(self, name: str) -> None:
        asyncio.run(sc.start_container(self.socket_path, name))

    def stop(self, name: str) -> None:
        asyncio.run(sc.stop_container(self.socket_path, name))

    def restart(self, name: str) -> None:
        asyncio.run(sc.restart_container(self.socket_path, name))

    def remove(self, name: str, *, force: bool = False) -> None:
        asyncio.run(sc.remove_container(self.socket_path, name, force=force))

    def run_container(  # noqa: PLR0913
        self,
        image: str,
        name: str,
        *,
        binds: dict[str, str],
        ports: dict[int, int],
        user: str,
        labels: dict[str, str] | None = None,
    ) -> str:
        """Create and start a detached container; return its ID.

        Args:
            image: Image tag to run.
            name: Container name.
            binds: Host path -> container path bind mounts.
            ports: Container port -> host port mappings (TCP).
            user: ``uid:gid`` for the container process.
            labels: OCI labels to attach.

        """
        host_config: dict[str, Any] = {
            "Binds": [f"{h}:{c}" for h, c in binds.items()],
            "PortBindings": {
                f"{cport}/tcp": [{"HostPort": str(hport)}] for cport, hport in ports.items()
            },
        }

        async def _create_and_start() -> str:
            container_id = await sc.create_container(
                self.socket_path,
                image,
                name=name,
                labels=labels,
                host_config=host_config,
                exposed_ports=[f"{p}/tcp" for p in ports],
                user=user,
            )
            await sc.start_container(self.socket_path, container_id)
            return container_id

        return asyncio.run(_create_and_start())

    # --- exec ---

    def exec(self, name: str, command: list[str]) -> ExecResult:
        """Run *command* in the container and collect its output."""
        return asyncio.run(sc.exec_command(self.socket_path, name, command))

    def stream(self, name: str, command: list[str]) -> Iterator[tuple[int, bytes]]:
        """Run *command* and yield output frames until it exits.

        An interrupt while waiting for a frame cancels the pending read before
        the stream is closed, then propagates unchanged.
        """
        loop = asyncio.new_event_loop()
        frames = sc.exec_stream(self.socket_path, name, command)
        try:
            while True:
                step = loop.create_task(_next_frame(frames))
                try:
                    yield loop.run_until_complete(step)
                except StopAsyncIteration:
                    return
                except BaseException:
                    step.cancel()
                    loop.run_until_complete(asyncio.gather(step, return_exceptions=True))
                    raise
        finally:
            loop.run_until_complete(frames.aclose())
            loop.close()

    def attach(self, name: str, command: list[str]) -> int:
        """Run *command* interactively through the engine CLI; return its exit code."""
        engine = detect_engine_cli(self._socket_path)
        ret = subprocess.run(  # noqa: S603  # nosec B603
            [engine, "exec", "-it", name, *command],
            check=False,
        )
        return ret.returncode

    # --- images ---

    def build_image(
        self,
        dockerfile_dir: Path,
        tag: str,
        buildargs: dict[str, str] | None = None,
    ) -> str:
        """Build *tag* from *dockerfile_dir*; return the build log."""
        context = build_tar_context(dockerfile_dir)
        return asyncio.run(sc.build_image(self.socket_path, context, tag, buildargs))

    def list_images(self, reference: str) -> list[ImageInfo]:
        raw = asyncio.run(sc.list_images(self.socket_path, reference=reference))
        return [
            ImageInfo(id=str(img.get("Id", "")), tags=tuple(img.get("RepoTags") or ()))
            for img in raw
        ]

    def remove_image(self, image: str, *, force: bool = False) -> None:
        asyncio.run(sc.remove_image(self.socket_path, image, force=force))

    def prune_images(self) -> list[str]:
        return asyncio.run(sc.prune_images(self.socket_path))
