# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

from __future__ import annotations

import dataclasses
import enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from algosandbox.networks import NetworkProfile


@dataclasses.dataclass(frozen=True)
class LaunchRequest:
    """What the operator asked ``up`` to do."""

    network: str | None = None
    use_snapshot: bool = False

    @property
    def network_named(self) -> bool:
        """Whether the caller explicitly named a network."""
        return self.network is not None


class SandboxPhase(enum.Enum):
    """Coarse lifecycle position derived from on-disk and engine state."""

    FRESH = "fresh"
    DATA_ONLY = "data-only"
    CONTAINER = "container"


@dataclasses.dataclass(frozen=True)
class SandboxState:
    """Snapshot of the sandbox resources at the start of an invocation."""

    container_exists: bool
    data_dir_exists: bool
    container_status: str = ""

    @property
    def phase(self) -> SandboxPhase:
        if self.container_exists:
            return SandboxPhase.CONTAINER
        if self.data_dir_exists:
            return SandboxPhase.DATA_ONLY
        return SandboxPhase.FRESH


@dataclasses.dataclass(frozen=True)
class UpResult:
    """Outcome of a successful ``up``."""

    action: str
    network: NetworkProfile | None = None
    image: str = ""
    container_id: str = ""
    seeded: bool = False
    node_ready: bool = False
    warnings: tuple[str, ...] = ()


@dataclasses.dataclass(frozen=True)
class ExecResult:
    """Result of executing a command inside a container."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: float = 0.0
    truncated: bool = False

    @property
    def ok(self) -> bool:
        """Return True if the command exited successfully (exit code 0)."""
        return self.exit_code == 0


@dataclasses.dataclass(frozen=True)
class ImageInfo:
    """Minimal image listing entry."""

    id: str
    tags: tuple[str, ...] = ()


@dataclasses.dataclass(frozen=True)
class CleanStep:
    """Result of one best-effort cleanup step."""

    name: str
    status: str
    detail: str = ""


@dataclasses.dataclass
class CleanReport:
    """Accumulated results of ``clean``."""

    steps: list[CleanStep] = dataclasses.field(default_factory=list)

    def add(self, name: str, status: str, detail: str = "") -> None:
        self.steps.append(CleanStep(name=name, status=status, detail=detail))

    @property
    def failed(self) -> list[CleanStep]:
        return [s for s in self.steps if s.status == "failed"]
