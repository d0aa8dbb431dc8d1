# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path


class SandboxError(Exception):
    """Base exception for all algosandbox errors."""


# ---------------------------------------------------------------------------
# Request validation
# ---------------------------------------------------------------------------


class ValidationError(SandboxError):
    """The request itself is invalid."""


class UnknownNetwork(ValidationError):
    """Requested network has no profile."""

    def __init__(self, name: str, known: list[str] | None = None) -> None:
        self.name = name
        msg = f"Unknown network {name!r}"
        if known:
            msg = f"{msg}. Known networks: {', '.join(known)}"
        super().__init__(msg)


# ---------------------------------------------------------------------------
# Lifecycle conflicts
# ---------------------------------------------------------------------------


class ConflictError(SandboxError):
    """Existing sandbox resources are incompatible with the request."""


class ContainerExists(ConflictError):
    """A sandbox container exists and a new network was requested."""

    def __init__(self, container_name: str) -> None:
        self.container_name = container_name
        super().__init__(
            f"Found existing sandbox container {container_name!r}. "
            "It must be removed before starting with new parameters."
        )


class DataDirectoryExists(ConflictError):
    """A data directory exists and a new network was requested."""

    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(
            f"Found existing data directory {path}. "
            "Remove it before starting a different network, or run 'up' without a network "
            "to reuse it."
        )


class UnsupportedError(SandboxError):
    """The request is valid but cannot be served for this network."""


class SnapshotUnavailable(UnsupportedError):
    """Snapshot requested for a network that does not publish one."""

    def __init__(self, network: str) -> None:
        self.network = network
        super().__init__(f"No snapshot is available for network {network!r}")


# ---------------------------------------------------------------------------
# Engine / fetch failures
# ---------------------------------------------------------------------------


class SandboxRuntimeError(SandboxError):
    """A collaborator (container engine, remote host, node) failed."""


class SocketError(SandboxRuntimeError):
    """Error related to socket communication with the container engine."""


class SocketConnectionError(SocketError):
    """Cannot connect to the container engine socket."""

    def __init__(self, socket_path: str, detail: str = "") -> None:
        self.socket_path = socket_path
        msg = f"Cannot connect to socket at {socket_path}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class SocketCommunicationError(SocketError):
    """Error during communication over the socket."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        msg = "Socket communication error"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class EngineNotRunning(SocketError):
    """No container engine socket found."""

    def __init__(self) -> None:
        super().__init__(
            "No container engine socket found. "
            "Is Podman or Docker running? "
            "Try: systemctl --user start podman.socket"
        )


class ContainerError(SandboxRuntimeError):
    """Error related to a specific container."""

    def __init__(self, container_id: str, detail: str = "") -> None:
        self.container_id = container_id
        msg = f"Container {container_id}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class ContainerNotFound(ContainerError):
    """Container does not exist (HTTP 404)."""

    def __init__(self, container_id: str) -> None:
        super().__init__(container_id, "not found")


class ContainerNotRunning(ContainerError):
    """Container exists but is not running (HTTP 409)."""

    def __init__(self, container_id: str) -> None:
        super().__init__(container_id, "is not running")


class ImageNotFound(SandboxRuntimeError):
    """Requested image does not exist locally."""

    def __init__(self, image: str) -> None:
        self.image = image
        super().__init__(f"Image not found: {image}")


class BuildFailed(SandboxRuntimeError):
    """The engine reported an image build error."""

    def __init__(self, tag: str, detail: str = "") -> None:
        self.tag = tag
        self.detail = detail
        msg = f"Build of {tag} failed"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class FetchError(SandboxRuntimeError):
    """Downloading or extracting a remote archive failed."""

    def __init__(self, url: str, detail: str = "") -> None:
        self.url = url
        self.detail = detail
        msg = f"Failed to fetch {url}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class NodeUnreachable(SandboxRuntimeError):
    """The node REST endpoint did not answer."""

    def __init__(self, url: str, detail: str = "") -> None:
        self.url = url
        msg = f"Node not reachable at {url}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)
