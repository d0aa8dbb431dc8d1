"""Shared fixtures for algosandbox tests."""

from __future__ import annotations

import io
import json
import tarfile
from typing import TYPE_CHECKING
from unittest.mock import MagicMock

import pytest
from algosandbox._config import SandboxConfig
from algosandbox._logger import ActionLogger
from algosandbox.lifecycle import SandboxManager
from algosandbox.runtime import ContainerRuntime

if TYPE_CHECKING:
    from pathlib import Path

GENESIS_IDS = {"mainnet": "v1.0", "testnet": "v1.0", "betanet": "v1.0"}


def make_tar_gz(members: dict[str, bytes]) -> bytes:
    """Build an in-memory gzipped tar archive."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for name, data in members.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


class FakeFetcher:
    """Stands in for ArchiveFetcher: serves canned bytes per URL, extracts for real."""

    def __init__(self, payloads: dict[str, bytes] | None = None) -> None:
        self.payloads = payloads or {}
        self.fetched: list[tuple[str, Path]] = []
        self.extracted: list[tuple[Path, Path]] = []
        self.fail_with: Exception | None = None

    def fetch(self, url: str, dest: Path) -> int:
        self.fetched.append((url, dest))
        if self.fail_with is not None:
            raise self.fail_with
        data = self.payloads.get(url, b"")
        dest.write_bytes(data)
        return len(data)

    def extract(self, archive: Path, dest: Path) -> list[str]:
        from algosandbox.fetcher import extract_archive

        self.extracted.append((archive, dest))
        return extract_archive(archive, dest)


@pytest.fixture
def sandbox_dir(tmp_path: Path) -> Path:
    """A sandbox directory with static config files and per-network genesis files."""
    root = tmp_path / "sandbox"
    config_dir = root / "config"
    config_dir.mkdir(parents=True)
    (config_dir / "config.json").write_text('{"EndpointAddress": "0.0.0.0:4001"}\n')
    (config_dir / "kmd_config.json").write_text('{"address": "0.0.0.0:4002"}\n')
    for network, genesis_id in GENESIS_IDS.items():
        genesis = root / "genesis" / network
        genesis.mkdir(parents=True)
        (genesis / "genesis.json").write_text(
            json.dumps({"id": genesis_id, "network": network, "alloc": []})
        )
    return root


@pytest.fixture
def config(sandbox_dir: Path) -> SandboxConfig:
    return SandboxConfig(sandbox_dir=sandbox_dir, config_dir="config", genesis_dir="genesis")


@pytest.fixture
def runtime() -> MagicMock:
    """A ContainerRuntime double with no container and successful engine calls."""
    rt = MagicMock(spec=ContainerRuntime)
    rt.find_container.return_value = None
    rt.build_image.return_value = "Successfully built"
    rt.run_container.return_value = "c0ffee" * 10
    rt.list_images.return_value = []
    rt.prune_images.return_value = []
    return rt


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def tar_gz() -> object:
    """Return the in-memory archive builder."""
    return make_tar_gz


@pytest.fixture
def manager(config: SandboxConfig, runtime: MagicMock, fetcher: FakeFetcher) -> SandboxManager:
    return SandboxManager(
        config,
        runtime,
        fetcher=fetcher,  # type: ignore[arg-type]
        logger=ActionLogger(config.state_dir),
        uid=1234,
        gid=5678,
    )
