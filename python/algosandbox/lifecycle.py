# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

"""Sandbox lifecycle: create, resume, or reject a sandbox and seed its data directory.

The sandbox is a named container plus a bind-mounted data directory.  Neither
is tracked in a state file; :meth:`SandboxManager.compute_state` queries the
engine and the filesystem at the start of every operation.  Conflicts between
the request and existing resources are detected before anything is mutated.
"""

from __future__ import annotations

import json
import os
import pathlib
import shutil
from typing import TYPE_CHECKING, Callable

from algosandbox._logger import ActionLogger
from algosandbox.errors import (
    ContainerExists,
    ContainerNotFound,
    DataDirectoryExists,
    ImageNotFound,
    SandboxRuntimeError,
    SnapshotUnavailable,
)
from algosandbox.fetcher import ArchiveFetcher
from algosandbox.networks import NetworkProfile, network_for_genesis, resolve_network
from algosandbox.node import node_status, wait_for_node
from algosandbox.types import (
    CleanReport,
    LaunchRequest,
    SandboxPhase,
    SandboxState,
    UpResult,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path
    from typing import Any

    from algosandbox._config import SandboxConfig
    from algosandbox.runtime import ContainerRuntime
    from algosandbox.types import ExecResult

_PACKAGE_DIR = pathlib.Path(__file__).resolve().parent
_BUNDLED_CONFIG_DIR = _PACKAGE_DIR / "_assets" / "config"
_BUNDLED_DOCKERFILE_DIR = _PACKAGE_DIR / "_images" / "node"

GENESIS_FILENAME = "genesis.json"
NODE_LOG_FILENAME = "node.log"
NODE_PORT = 4001

# Docker and Podman report a missing exec binary as 126 and 127.
_MISSING_COMMAND_CODES = (126, 127)


class SandboxManager:
    """Environment lifecycle manager for one local sandbox."""

    def __init__(  # noqa: PLR0913
        self,
        config: SandboxConfig,
        runtime: ContainerRuntime,
        *,
        fetcher: ArchiveFetcher | None = None,
        logger: ActionLogger | None = None,
        uid: int | None = None,
        gid: int | None = None,
    ) -> None:
        self._config = config
        self._runtime = runtime
        self._fetcher = fetcher or ArchiveFetcher()
        self._logger = logger or ActionLogger(config.state_dir, enabled=config.auto_log)
        self._uid = os.getuid() if uid is None else uid
        self._gid = os.getgid() if gid is None else gid

    @property
    def config(self) -> SandboxConfig:
        return self._config

    @property
    def data_dir(self) -> Path:
        return self._config.data_dir

    @property
    def container_name(self) -> str:
        return self._config.container_name

    def compute_state(self) -> SandboxState:
        """Query the engine and filesystem for the current sandbox resources."""
        container = self._runtime.find_container(self.container_name)
        return SandboxState(
            container_exists=container is not None,
            data_dir_exists=self.data_dir.is_dir(),
            container_status=str(container.get("State", "")) if container else "",
        )

    # ------------------------------------------------------------------
    # up
    # ------------------------------------------------------------------

    def up(self, request: LaunchRequest, *, wait: bool = False) -> UpResult:
        """Start the sandbox according to *request*.

        Raises:
            ContainerExists: A container exists and a network was named.
            DataDirectoryExists: Only a data directory exists and a network was named.
            UnknownNetwork: The named network has no profile.
            SnapshotUnavailable: A snapshot was requested for a network without one.
            SandboxRuntimeError: The engine or a download failed.

        """
        state = self.compute_state()

        if state.phase is SandboxPhase.CONTAINER:
            if request.network_named:
                raise ContainerExists(self.container_name)
            self._runtime.start(self.container_name)
            self._logger.log("up", action_taken="resume", container=self.container_name)
            return UpResult(action="resumed")

        warnings: list[str] = []
        if state.phase is SandboxPhase.DATA_ONLY:
            if request.network_named:
                raise DataDirectoryExists(self.data_dir)
            profile = self._profile_from_data_dir(warnings)
            if request.use_snapshot:
                warnings.append(
                    f"Ignoring --use-snapshot: reusing existing data directory {self.data_dir}"
                )
            seeded = False
        else:
            profile = resolve_network(
                request.network if request.network_named else self._config.default_network,
                snapshot_overrides=self._config.snapshots,
            )
            if request.use_snapshot and not profile.has_snapshot:
                raise SnapshotUnavailable(profile.name)
            self._seed_data_dir(profile, use_snapshot=request.use_snapshot)
            seeded = True

        image = self._build(profile)
        container_id = self._run(image, profile)

        node_ready = False
        if wait:
            status = wait_for_node(
                self.data_dir, self._config.host_port, timeout=self._config.status_timeout
            )
            node_ready = status is not None
            if not node_ready:
                warnings.append("Node did not answer its status endpoint yet")

        return UpResult(
            action="created",
            network=profile,
            image=image,
            container_id=container_id,
            seeded=seeded,
            node_ready=node_ready,
            warnings=tuple(warnings),
        )

    def _profile_from_data_dir(self, warnings: list[str]) -> NetworkProfile:
        """Infer the network an existing data directory was seeded for."""
        fallback = resolve_network(
            self._config.default_network, snapshot_overrides=self._config.snapshots
        )
        genesis_path = self.data_dir / GENESIS_FILENAME
        try:
            genesis = json.loads(genesis_path.read_text())
        except (OSError, ValueError):
            warnings.append(
                f"Cannot read {genesis_path}; assuming network {fallback.name!r}"
            )
            return fallback
        profile = network_for_genesis(genesis) if isinstance(genesis, dict) else None
        if profile is None:
            warnings.append(
                f"{genesis_path} does not match a known network; assuming {fallback.name!r}"
            )
            return fallback
        return profile

    def _seed_data_dir(self, profile: NetworkProfile, *, use_snapshot: bool) -> None:
        """Populate a new data directory.

        Seeding happens in a staging directory renamed into place at the end,
        so a failed or interrupted seed never leaves a data directory behind.
        """
        staging = self._config.staging_dir
        if staging.exists():
            shutil.rmtree(staging)
        staging.mkdir(parents=True)
        try:
            if use_snapshot and profile.snapshot_url:
                self._install_snapshot(profile.snapshot_url, staging)
            copied = self._copy_config_files(staging)
            self._install_genesis(profile, staging)
            staging.rename(self.data_dir)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            self._logger.log("seed", status="failed", network=profile.name)
            raise
        self._logger.log(
            "seed",
            network=profile.name,
            snapshot=use_snapshot,
            config_files=copied,
            data_dir=str(self.data_dir),
        )

    def _install_snapshot(self, url: str, dest: Path) -> None:
        archive = self._config.sandbox_dir / f"{self._config.data_dir_name}.snapshot.tar.gz"
        try:
            size = self._fetcher.fetch(url, archive)
            members = self._fetcher.extract(archive, dest)
        finally:
            archive.unlink(missing_ok=True)
        self._logger.log("snapshot", url=url, bytes=size, members=len(members))

    def _copy_config_files(self, dest: Path) -> list[str]:
        source = self._resolve_dir(self._config.config_dir, _BUNDLED_CONFIG_DIR)
        copied: list[str] = []
        for item in sorted(source.iterdir()):
            if item.is_file():
                shutil.copy2(item, dest / item.name)
                copied.append(item.name)
        return copied

    def _install_genesis(self, profile: NetworkProfile, dest: Path) -> None:
        """Copy the local genesis definition, or download the upstream one."""
        target = dest / GENESIS_FILENAME
        genesis_root = self._resolve_dir(
            self._config.genesis_dir, self._config.sandbox_dir / "genesis"
        )
        local = genesis_root / profile.name / GENESIS_FILENAME
        if local.is_file():
            shutil.copy2(local, target)
            return
        self._fetcher.fetch(profile.genesis_url, target)

    def _resolve_dir(self, configured: str | None, default: Path) -> Path:
        if configured is None:
            return default
        path = pathlib.Path(configured).expanduser()
        return path if path.is_absolute() else self._config.sandbox_dir / path

    def _build(self, profile: NetworkProfile) -> str:
        tag = self._config.image_tag(profile.channel)
        dockerfile_dir = self._resolve_dir(self._config.dockerfile_dir, _BUNDLED_DOCKERFILE_DIR)
        try:
            self._runtime.build_image(
                dockerfile_dir,
                tag,
                {
                    "CHANNEL": profile.channel,
                    "USER_ID": str(self._uid),
                    "GROUP_ID": str(self._gid),
                },
            )
        except SandboxRuntimeError as exc:
            self._logger.log("build", status="failed", image=tag, error=str(exc))
            raise
        self._logger.log("build", image=tag)
        return tag

    def _run(self, image: str, profile: NetworkProfile) -> str:
        try:
            container_id = self._runtime.run_container(
                image,
                self.container_name,
                binds={str(self.data_dir): self._config.container_data_path},
                ports={NODE_PORT: self._config.host_port},
                user=f"{self._uid}:{self._gid}",
                labels={
                    "algosandbox.managed": "true",
                    "algosandbox.network": profile.name,
                    "algosandbox.channel": profile.channel,
                },
            )
        except SandboxRuntimeError as exc:
            self._logger.log("run", status="failed", image=image, error=str(exc))
            raise
        self._logger.log("run", image=image, container=self.container_name, id=container_id)
        return container_id

    # ------------------------------------------------------------------
    # Forwarding operations
    # ------------------------------------------------------------------

    def down(self) -> None:
        self._runtime.stop(self.container_name)
        self._logger.log("down", container=self.container_name)

    def restart(self) -> None:
        self._runtime.restart(self.container_name)
        self._logger.log("restart", container=self.container_name)

    def status(self) -> ExecResult:
        """Run ``goal node status`` inside the container."""
        return self._runtime.exec(
            self.container_name,
            ["goal", "node", "status", "-d", self._config.container_data_path],
        )

    def goal(self, args: list[str] | tuple[str, ...]) -> int:
        """Forward *args* to ``goal`` with the data directory flag appended."""
        return self._runtime.attach(
            self.container_name,
            ["goal", *args, "-d", self._config.container_data_path],
        )

    def enter(self) -> int:
        """Open an interactive shell in the container."""
        code = self._runtime.attach(self.container_name, ["/bin/bash"])
        if code in _MISSING_COMMAND_CODES:
            code = self._runtime.attach(self.container_name, ["/bin/sh"])
        return code

    def logs(self) -> Iterator[str]:
        """Follow the node log, yielding complete lines."""
        log_path = f"{self._config.container_data_path}/{NODE_LOG_FILENAME}"
        pending = ""
        for _stream, payload in self._runtime.stream(
            self.container_name, ["tail", "-F", log_path]
        ):
            pending += payload.decode("utf-8", errors="replace")
            *lines, pending = pending.split("\n")
            yield from lines
        if pending:
            yield pending

    def test(self) -> dict[str, Any]:
        """Query the node REST status endpoint with the API token from the data directory."""
        return node_status(self.data_dir, self._config.host_port)

    # ------------------------------------------------------------------
    # clean
    # ------------------------------------------------------------------

    def clean(self) -> CleanReport:
        """Remove every sandbox resource, best effort.

        Each step runs regardless of earlier failures.  Missing resources are
        reported as ``skipped``; engine failures as ``failed``.
        """
        report = CleanReport()
        steps: list[tuple[str, Callable[[], str | None]]] = [
            ("stop container", self._clean_stop),
            ("remove container", self._clean_remove_container),
            ("remove images", self._clean_remove_images),
            ("prune dangling images", self._clean_prune_images),
            ("remove data directory", self._clean_remove_data),
        ]
        for name, step in steps:
            try:
                detail = step()
            except (ContainerNotFound, ImageNotFound):
                report.add(name, "skipped", "not found")
            except (SandboxRuntimeError, OSError) as exc:
                report.add(name, "failed", str(exc))
            else:
                if detail is None:
                    report.add(name, "skipped", "not found")
                else:
                    report.add(name, "ok", detail)
        for step_result in report.steps:
            self._logger.log(
                "clean", status=step_result.status, step=step_result.name, detail=step_result.detail
            )
        return report

    def _clean_stop(self) -> str:
        self._runtime.stop(self.container_name)
        return self.container_name

    def _clean_remove_container(self) -> str:
        self._runtime.remove(self.container_name, force=True)
        return self.container_name

    def _clean_remove_images(self) -> str | None:
        removed: list[str] = []
        for image in self._runtime.list_images(f"{self._config.image_repo}:*"):
            for tag in image.tags or (image.id,):
                try:
                    self._runtime.remove_image(tag)
                except ImageNotFound:
                    continue
                removed.append(tag)
        return ", ".join(removed) if removed else None

    def _clean_prune_images(self) -> str:
        deleted = self._runtime.prune_images()
        return f"{len(deleted)} removed"

    def _clean_remove_data(self) -> str | None:
        removed: list[str] = []
        for path in (self.data_dir, self._config.staging_dir):
            if path.exists():
                shutil.rmtree(path)
                removed.append(str(path))
        return ", ".join(removed) if removed else None
