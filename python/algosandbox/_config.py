# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

"""Configuration loading with install-level -> sandbox-level precedence."""

from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import Any

import yaml

_CONFIG_FILENAME = "algosandbox.yaml"


@dataclasses.dataclass(frozen=True)
class SandboxConfig:
    """Resolved algosandbox configuration."""

    sandbox_dir: Path = dataclasses.field(default_factory=Path.cwd)
    container_name: str = "algorand-sandbox"
    image_repo: str = "algorand-sandbox"
    data_dir_name: str = "data"
    container_data_path: str = "/opt/data"
    host_port: int = 4001
    default_network: str = "testnet"
    status_timeout: float = 30.0
    socket: str | None = None
    auto_log: bool = True
    config_dir: str | None = None
    genesis_dir: str | None = None
    dockerfile_dir: str | None = None
    snapshots: dict[str, str] = dataclasses.field(default_factory=dict)

    @property
    def data_dir(self) -> Path:
        return self.sandbox_dir / self.data_dir_name

    @property
    def staging_dir(self) -> Path:
        return self.sandbox_dir / f"{self.data_dir_name}.partial"

    @property
    def state_dir(self) -> Path:
        return self.sandbox_dir / ".algosandbox"

    def image_tag(self, channel: str) -> str:
        return f"{self.image_repo}:{channel}"


def load_config(sandbox_dir: Path | None = None, **overrides: Any) -> SandboxConfig:
    """Load configuration with precedence: keyword overrides > sandbox > install > defaults.

    1. Start with defaults
    2. Overlay install-level ``~/.algosandbox/algosandbox.yaml`` (if exists)
    3. Overlay sandbox-level ``<sandbox_dir>/algosandbox.yaml`` (if exists)
    4. Overlay non-``None`` keyword overrides (CLI options)
    """
    root = (sandbox_dir or Path.cwd()).resolve()
    merged: dict[str, Any] = {}

    install_config = Path.home() / ".algosandbox" / _CONFIG_FILENAME
    if install_config.is_file():
        _merge_yaml(merged, install_config)

    sandbox_config = root / _CONFIG_FILENAME
    if sandbox_config.is_file():
        _merge_yaml(merged, sandbox_config)

    merged.update({k: v for k, v in overrides.items() if v is not None})
    merged["sandbox_dir"] = root
    return _build_config(merged)


def _merge_yaml(target: dict[str, Any], path: Path) -> None:
    """Parse a YAML file and merge its values into *target*."""
    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError:
        return
    if not isinstance(data, dict):
        return

    for key, value in data.items():
        if key == "snapshots" and isinstance(value, dict):
            # Merge per-network overrides instead of replacing the whole map
            snapshots = dict(target.get("snapshots", {}))
            snapshots.update({str(k): str(v) if v else "" for k, v in value.items()})
            target["snapshots"] = snapshots
        else:
            target[key] = value


def _build_config(overrides: dict[str, Any]) -> SandboxConfig:
    """Build a ``SandboxConfig`` from a dict of overrides."""
    field_names = {f.name for f in dataclasses.fields(SandboxConfig)}
    filtered = {k: v for k, v in overrides.items() if k in field_names}
    if "sandbox_dir" in filtered:
        filtered["sandbox_dir"] = Path(filtered["sandbox_dir"])
    return SandboxConfig(**filtered)
