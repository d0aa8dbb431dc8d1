# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

from __future__ import annotations

from importlib.metadata import version
from typing import TYPE_CHECKING

from algosandbox._config import SandboxConfig, load_config
from algosandbox.errors import (
    BuildFailed,
    ConflictError,
    ContainerError,
    ContainerExists,
    ContainerNotFound,
    ContainerNotRunning,
    DataDirectoryExists,
    EngineNotRunning,
    FetchError,
    ImageNotFound,
    NodeUnreachable,
    SandboxError,
    SandboxRuntimeError,
    SnapshotUnavailable,
    SocketCommunicationError,
    SocketConnectionError,
    SocketError,
    UnknownNetwork,
    UnsupportedError,
    ValidationError,
)
from algosandbox.lifecycle import SandboxManager
from algosandbox.networks import NetworkProfile, list_networks, resolve_network
from algosandbox.runtime import ContainerRuntime
from algosandbox.types import CleanReport, ExecResult, LaunchRequest, SandboxState, UpResult

if TYPE_CHECKING:
    from pathlib import Path

__version__ = version("algosandbox")


def get_version() -> str:
    """Return the algosandbox package version string."""
    return __version__


def open_sandbox(
    sandbox_dir: Path | None = None,
    *,
    socket_path: str | None = None,
) -> SandboxManager:
    """Load configuration for *sandbox_dir* and return a manager bound to the engine."""
    config = load_config(sandbox_dir, socket=socket_path)
    return SandboxManager(config, ContainerRuntime(config.socket))


__all__ = [
    "BuildFailed",
    "CleanReport",
    "ConflictError",
    "ContainerError",
    "ContainerExists",
    "ContainerNotFound",
    "ContainerNotRunning",
    "ContainerRuntime",
    "DataDirectoryExists",
    "EngineNotRunning",
    "ExecResult",
    "FetchError",
    "ImageNotFound",
    "LaunchRequest",
    "NetworkProfile",
    "NodeUnreachable",
    "SandboxConfig",
    "SandboxError",
    "SandboxManager",
    "SandboxRuntimeError",
    "SandboxState",
    "SnapshotUnavailable",
    "SocketCommunicationError",
    "SocketConnectionError",
    "SocketError",
    "UnknownNetwork",
    "UnsupportedError",
    "UpResult",
    "ValidationError",
    "__version__",
    "get_version",
    "list_networks",
    "load_config",
    "open_sandbox",
    "resolve_network",
]
