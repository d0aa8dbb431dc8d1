"""Unit tests for the sandbox lifecycle manager with a mocked engine."""

from __future__ import annotations

import dataclasses
import json
from typing import TYPE_CHECKING
from unittest.mock import ANY, patch

import pytest
from algosandbox.errors import (
    BuildFailed,
    ConflictError,
    ContainerExists,
    DataDirectoryExists,
    FetchError,
    SnapshotUnavailable,
    UnknownNetwork,
    UnsupportedError,
    ValidationError,
)
from algosandbox.lifecycle import SandboxManager
from algosandbox.networks import NETWORKS
from algosandbox.types import LaunchRequest, SandboxPhase, SandboxState

if TYPE_CHECKING:
    from pathlib import Path
    from unittest.mock import MagicMock

    from algosandbox._config import SandboxConfig

TESTNET_SNAPSHOT = NETWORKS["testnet"].snapshot_url


def _assert_no_mutation(manager: SandboxManager, runtime: MagicMock, fetcher: object) -> None:
    runtime.start.assert_not_called()
    runtime.build_image.assert_not_called()
    runtime.run_container.assert_not_called()
    assert fetcher.fetched == []  # type: ignore[attr-defined]
    assert not manager.data_dir.exists()
    assert not manager.config.staging_dir.exists()


def _write_data_dir(manager: SandboxManager, genesis: dict[str, object] | str) -> None:
    manager.data_dir.mkdir(parents=True)
    text = genesis if isinstance(genesis, str) else json.dumps(genesis)
    (manager.data_dir / "genesis.json").write_text(text)
    (manager.data_dir / "node.log").write_text("existing\n")


# --- compute_state ---


def test_compute_state_fresh(manager: SandboxManager) -> None:
    state = manager.compute_state()
    assert state.container_exists is False
    assert state.data_dir_exists is False
    assert state.phase is SandboxPhase.FRESH


def test_compute_state_with_container(manager: SandboxManager, runtime: MagicMock) -> None:
    runtime.find_container.return_value = {"Id": "abc", "State": "exited"}
    state = manager.compute_state()
    assert state.container_exists is True
    assert state.container_status == "exited"
    assert state.phase is SandboxPhase.CONTAINER
    runtime.find_container.assert_called_once_with("algorand-sandbox")


def test_compute_state_data_only(manager: SandboxManager) -> None:
    manager.data_dir.mkdir()
    assert manager.compute_state().phase is SandboxPhase.DATA_ONLY


def test_compute_state_is_not_cached(manager: SandboxManager, runtime: MagicMock) -> None:
    assert manager.compute_state().container_exists is False
    runtime.find_container.return_value = {"Id": "abc", "State": "running"}
    assert manager.compute_state().container_exists is True


# --- validation ---


@pytest.mark.parametrize("name", ["devnet", "MainNet", "", "testnet "])
def test_up_unknown_network_fails_without_mutation(
    manager: SandboxManager, runtime: MagicMock, fetcher: object, name: str
) -> None:
    with pytest.raises(UnknownNetwork) as exc_info:
        manager.up(LaunchRequest(network=name))
    assert isinstance(exc_info.value, ValidationError)
    _assert_no_mutation(manager, runtime, fetcher)


def test_up_unknown_network_with_snapshot_is_still_validation_error(
    manager: SandboxManager, runtime: MagicMock, fetcher: object
) -> None:
    with pytest.raises(ValidationError):
        manager.up(LaunchRequest(network="nope", use_snapshot=True))
    _assert_no_mutation(manager, runtime, fetcher)


# --- existing container ---


def test_up_existing_container_with_network_conflicts(
    manager: SandboxManager, runtime: MagicMock, fetcher: object
) -> None:
    runtime.find_container.return_value = {"Id": "abc", "State": "exited"}
    with pytest.raises(ContainerExists) as exc_info:
        manager.up(LaunchRequest(network="mainnet"))
    assert isinstance(exc_info.value, ConflictError)
    assert "must be removed" in str(exc_info.value)
    _assert_no_mutation(manager, runtime, fetcher)


def test_up_existing_container_resumes_without_rebuild(
    manager: SandboxManager, runtime: MagicMock
) -> None:
    runtime.find_container.return_value = {"Id": "abc", "State": "exited"}
    result = manager.up(LaunchRequest())
    assert result.action == "resumed"
    runtime.start.assert_called_once_with("algorand-sandbox")
    runtime.build_image.assert_not_called()
    runtime.run_container.assert_not_called()


def test_up_existing_container_ignores_data_dir(
    manager: SandboxManager, runtime: MagicMock
) -> None:
    runtime.find_container.return_value = {"Id": "abc", "State": "running"}
    manager.data_dir.mkdir()
    result = manager.up(LaunchRequest())
    assert result.action == "resumed"


# --- existing data directory ---


def test_up_data_dir_with_network_conflicts(
    manager: SandboxManager, runtime: MagicMock, fetcher: object
) -> None:
    _write_data_dir(manager, {"id": "v1.0", "network": "testnet"})
    with pytest.raises(DataDirectoryExists) as exc_info:
        manager.up(LaunchRequest(network="testnet"))
    assert isinstance(exc_info.value, ConflictError)
    runtime.build_image.assert_not_called()
    runtime.run_container.assert_not_called()
    assert fetcher.fetched == []  # type: ignore[attr-defined]


def test_up_data_dir_reused_without_reseed(
    manager: SandboxManager, runtime: MagicMock, fetcher: object
) -> None:
    _write_data_dir(manager, {"id": "v1.0", "network": "betanet"})
    before = sorted(p.name for p in manager.data_dir.iterdir())

    result = manager.up(LaunchRequest())

    assert result.action == "created"
    assert result.seeded is False
    assert result.network is not None
    assert result.network.name == "betanet"
    assert result.image == "algorand-sandbox:beta"
    assert sorted(p.name for p in manager.data_dir.iterdir()) == before
    assert (manager.data_dir / "node.log").read_text() == "existing\n"
    assert fetcher.fetched == []  # type: ignore[attr-defined]
    runtime.build_image.assert_called_once()
    runtime.run_container.assert_called_once()


def test_up_data_dir_ignores_snapshot_flag(
    manager: SandboxManager, fetcher: object
) -> None:
    _write_data_dir(manager, {"id": "v1.0", "network": "testnet"})
    result = manager.up(LaunchRequest(use_snapshot=True))
    assert fetcher.fetched == []  # type: ignore[attr-defined]
    assert any("use-snapshot" in w for w in result.warnings)


def test_up_branches_on_computed_phase(
    manager: SandboxManager, runtime: MagicMock, fetcher: object
) -> None:
    state = SandboxState(container_exists=False, data_dir_exists=True)
    with patch.object(manager, "compute_state", return_value=state):
        result = manager.up(LaunchRequest())
    assert result.seeded is False
    assert fetcher.fetched == []  # type: ignore[attr-defined]
    runtime.start.assert_not_called()
    runtime.run_container.assert_called_once()


def test_up_data_dir_unreadable_genesis_falls_back(manager: SandboxManager) -> None:
    _write_data_dir(manager, "not json {")
    result = manager.up(LaunchRequest())
    assert result.network is not None
    assert result.network.name == "testnet"
    assert any("assuming network 'testnet'" in w for w in result.warnings)


def test_up_data_dir_foreign_genesis_falls_back(manager: SandboxManager) -> None:
    _write_data_dir(manager, {"id": "v1", "network": "devnet"})
    result = manager.up(LaunchRequest())
    assert result.network is not None
    assert result.network.name == "testnet"
    assert any("does not match a known network" in w for w in result.warnings)


# --- snapshot ---


@pytest.mark.parametrize("network", ["mainnet", "betanet"])
def test_up_snapshot_unavailable(
    manager: SandboxManager, runtime: MagicMock, fetcher: object, network: str
) -> None:
    with pytest.raises(SnapshotUnavailable) as exc_info:
        manager.up(LaunchRequest(network=network, use_snapshot=True))
    assert isinstance(exc_info.value, UnsupportedError)
    assert network in str(exc_info.value)
    _assert_no_mutation(manager, runtime, fetcher)


def test_up_testnet_snapshot_seeds_data_dir(
    manager: SandboxManager, runtime: MagicMock, fetcher: object, tar_gz: object
) -> None:
    fetcher.payloads[TESTNET_SNAPSHOT] = tar_gz(  # type: ignore[attr-defined,operator]
        {
            "testnet-v1.0/ledger.block.sqlite": b"blocks",
            "testnet-v1.0/ledger.tracker.sqlite": b"tracker",
        }
    )

    result = manager.up(LaunchRequest(network="testnet", use_snapshot=True))

    assert result.seeded is True
    assert fetcher.fetched[0][0] == TESTNET_SNAPSHOT  # type: ignore[attr-defined]
    archive = fetcher.fetched[0][1]  # type: ignore[attr-defined]
    assert not archive.exists()

    data = manager.data_dir
    assert (data / "testnet-v1.0" / "ledger.block.sqlite").read_bytes() == b"blocks"
    assert (data / "testnet-v1.0" / "ledger.tracker.sqlite").read_bytes() == b"tracker"
    assert (data / "config.json").is_file()
    assert (data / "kmd_config.json").is_file()
    genesis = json.loads((data / "genesis.json").read_text())
    assert genesis["network"] == "testnet"
    assert not manager.config.staging_dir.exists()

    runtime.build_image.assert_called_once()
    runtime.run_container.assert_called_once()


def test_up_snapshot_override_from_config(
    config: SandboxConfig, runtime: MagicMock, fetcher: object, tar_gz: object
) -> None:
    url = "https://mirror.invalid/mainnet.tar.gz"
    cfg = dataclasses.replace(config, snapshots={"mainnet": url})
    fetcher.payloads[url] = tar_gz({"ledger.sqlite": b"x"})  # type: ignore[attr-defined,operator]
    manager = SandboxManager(cfg, runtime, fetcher=fetcher, uid=1, gid=1)  # type: ignore[arg-type]

    manager.up(LaunchRequest(network="mainnet", use_snapshot=True))

    assert (manager.data_dir / "ledger.sqlite").read_bytes() == b"x"


def test_up_snapshot_fetch_failure_leaves_nothing(
    manager: SandboxManager, runtime: MagicMock, fetcher: object
) -> None:
    fetcher.fail_with = FetchError(TESTNET_SNAPSHOT, "HTTP 503")  # type: ignore[attr-defined]
    with pytest.raises(FetchError):
        manager.up(LaunchRequest(network="testnet", use_snapshot=True))
    assert not manager.data_dir.exists()
    assert not manager.config.staging_dir.exists()
    assert list(manager.config.sandbox_dir.glob("*.tar.gz")) == []
    runtime.build_image.assert_not_called()


def test_up_snapshot_corrupt_archive_leaves_nothing(
    manager: SandboxManager, runtime: MagicMock, fetcher: object
) -> None:
    fetcher.payloads[TESTNET_SNAPSHOT] = b"this is not a tarball"  # type: ignore[attr-defined]
    with pytest.raises(FetchError, match="cannot extract"):
        manager.up(LaunchRequest(network="testnet", use_snapshot=True))
    assert not manager.data_dir.exists()
    assert not manager.config.staging_dir.exists()
    runtime.run_container.assert_not_called()


# --- fresh sandbox ---


def test_up_fresh_defaults_to_testnet(
    manager: SandboxManager, runtime: MagicMock, fetcher: object
) -> None:
    result = manager.up(LaunchRequest())
    assert result.network is not None
    assert result.network.name == "testnet"
    assert result.image == "algorand-sandbox:stable"
    assert fetcher.fetched == []  # type: ignore[attr-defined]
    assert json.loads((manager.data_dir / "genesis.json").read_text())["network"] == "testnet"


def test_up_fresh_builds_with_invoking_user(manager: SandboxManager, runtime: MagicMock) -> None:
    manager.up(LaunchRequest(network="betanet"))
    runtime.build_image.assert_called_once_with(
        ANY,
        "algorand-sandbox:beta",
        {"CHANNEL": "beta", "USER_ID": "1234", "GROUP_ID": "5678"},
    )


def test_up_fresh_runs_detached_with_port_and_bind(
    manager: SandboxManager, runtime: MagicMock
) -> None:
    result = manager.up(LaunchRequest(network="mainnet"))
    runtime.run_container.assert_called_once_with(
        "algorand-sandbox:stable",
        "algorand-sandbox",
        binds={str(manager.data_dir): "/opt/data"},
        ports={4001: 4001},
        user="1234:5678",
        labels=ANY,
    )
    assert result.container_id == "c0ffee" * 10


def test_up_fresh_downloads_missing_genesis(
    manager: SandboxManager, fetcher: object, sandbox_dir: Path
) -> None:
    (sandbox_dir / "genesis" / "mainnet" / "genesis.json").unlink()
    manager.up(LaunchRequest(network="mainnet"))
    urls = [url for url, _ in fetcher.fetched]  # type: ignore[attr-defined]
    assert urls == [NETWORKS["mainnet"].genesis_url]


def test_up_removes_stale_staging_dir(manager: SandboxManager) -> None:
    staging = manager.config.staging_dir
    staging.mkdir()
    (staging / "leftover").write_text("x")
    manager.up(LaunchRequest())
    assert not staging.exists()
    assert not (manager.data_dir / "leftover").exists()


def test_up_build_failure_propagates(manager: SandboxManager, runtime: MagicMock) -> None:
    runtime.build_image.side_effect = BuildFailed("algorand-sandbox:stable", "step 3 failed")
    with pytest.raises(BuildFailed):
        manager.up(LaunchRequest())
    runtime.run_container.assert_not_called()
    assert manager.data_dir.is_dir()


def test_up_wait_reports_node_ready(manager: SandboxManager) -> None:
    with patch("algosandbox.lifecycle.wait_for_node", return_value={"last-round": 7}) as waiter:
        result = manager.up(LaunchRequest(), wait=True)
    assert result.node_ready is True
    waiter.assert_called_once_with(manager.data_dir, 4001, timeout=30.0)


def test_up_wait_is_not_fatal(manager: SandboxManager) -> None:
    with patch("algosandbox.lifecycle.wait_for_node", return_value=None):
        result = manager.up(LaunchRequest(), wait=True)
    assert result.action == "created"
    assert result.node_ready is False
    assert result.warnings


def test_up_records_history(manager: SandboxManager) -> None:
    manager.up(LaunchRequest())
    lines = manager.config.state_dir.joinpath("history.jsonl").read_text().splitlines()
    actions = [json.loads(line)["action"] for line in lines]
    assert actions == ["seed", "build", "run"]


# --- forwarding ---


def test_down_stops_container(manager: SandboxManager, runtime: MagicMock) -> None:
    manager.down()
    runtime.stop.assert_called_once_with("algorand-sandbox")


def test_restart_restarts_container(manager: SandboxManager, runtime: MagicMock) -> None:
    manager.restart()
    runtime.restart.assert_called_once_with("algorand-sandbox")


def test_status_runs_goal_node_status(manager: SandboxManager, runtime: MagicMock) -> None:
    manager.status()
    runtime.exec.assert_called_once_with(
        "algorand-sandbox", ["goal", "node", "status", "-d", "/opt/data"]
    )


def test_goal_appends_data_dir(manager: SandboxManager, runtime: MagicMock) -> None:
    runtime.attach.return_value = 3
    assert manager.goal(("account", "list")) == 3
    runtime.attach.assert_called_once_with(
        "algorand-sandbox", ["goal", "account", "list", "-d", "/opt/data"]
    )


@pytest.mark.parametrize("missing_code", [126, 127])
def test_enter_falls_back_to_sh(
    manager: SandboxManager, runtime: MagicMock, missing_code: int
) -> None:
    runtime.attach.side_effect = [missing_code, 0]
    assert manager.enter() == 0
    assert runtime.attach.call_args_list[1].args == ("algorand-sandbox", ["/bin/sh"])


def test_enter_keeps_shell_exit_code(manager: SandboxManager, runtime: MagicMock) -> None:
    runtime.attach.return_value = 1
    assert manager.enter() == 1
    runtime.attach.assert_called_once_with("algorand-sandbox", ["/bin/bash"])


def test_logs_reassembles_lines_across_frames(
    manager: SandboxManager, runtime: MagicMock
) -> None:
    runtime.stream.return_value = iter([(1, b"first li"), (1, b"ne\nsecond\nthi"), (1, b"rd")])
    assert list(manager.logs()) == ["first line", "second", "third"]
    runtime.stream.assert_called_once_with(
        "algorand-sandbox", ["tail", "-F", "/opt/data/node.log"]
    )


def test_test_queries_node_status(manager: SandboxManager) -> None:
    with patch("algosandbox.lifecycle.node_status", return_value={"last-round": 1}) as status_call:
        assert manager.test() == {"last-round": 1}
    status_call.assert_called_once_with(manager.data_dir, 4001)


# --- clean ---


def _statuses(report: object) -> dict[str, str]:
    return {step.name: step.status for step in report.steps}  # type: ignore[attr-defined]


def test_clean_removes_everything(manager: SandboxManager, runtime: MagicMock) -> None:
    from algosandbox.types import ImageInfo

    manager.data_dir.mkdir()
    manager.config.staging_dir.mkdir()
    runtime.list_images.return_value = [
        ImageInfo(id="sha256:1", tags=("algorand-sandbox:stable",)),
        ImageInfo(id="sha256:2", tags=("algorand-sandbox:beta",)),
    ]
    runtime.prune_images.return_value = ["sha256:9"]

    report = manager.clean()

    assert _statuses(report) == {
        "stop container": "ok",
        "remove container": "ok",
        "remove images": "ok",
        "prune dangling images": "ok",
        "remove data directory": "ok",
    }
    runtime.stop.assert_called_once_with("algorand-sandbox")
    runtime.remove.assert_called_once_with("algorand-sandbox", force=True)
    runtime.list_images.assert_called_once_with("algorand-sandbox:*")
    assert [c.args[0] for c in runtime.remove_image.call_args_list] == [
        "algorand-sandbox:stable",
        "algorand-sandbox:beta",
    ]
    assert not manager.data_dir.exists()
    assert not manager.config.staging_dir.exists()


def test_clean_is_idempotent(manager: SandboxManager, runtime: MagicMock) -> None:
    from algosandbox.errors import ContainerNotFound

    runtime.stop.side_effect = ContainerNotFound("algorand-sandbox")
    runtime.remove.side_effect = ContainerNotFound("algorand-sandbox")

    first = manager.clean()
    second = manager.clean()

    for report in (first, second):
        assert report.failed == []
        statuses = _statuses(report)
        assert statuses["stop container"] == "skipped"
        assert statuses["remove container"] == "skipped"
        assert statuses["remove images"] == "skipped"
        assert statuses["remove data directory"] == "skipped"


def test_clean_continues_after_engine_failure(
    manager: SandboxManager, runtime: MagicMock
) -> None:
    from algosandbox.errors import EngineNotRunning

    manager.data_dir.mkdir()
    runtime.stop.side_effect = EngineNotRunning()
    runtime.remove.side_effect = EngineNotRunning()
    runtime.list_images.side_effect = EngineNotRunning()
    runtime.prune_images.side_effect = EngineNotRunning()

    report = manager.clean()

    assert [s.name for s in report.failed] == [
        "stop container",
        "remove container",
        "remove images",
        "prune dangling images",
    ]
    assert _statuses(report)["remove data directory"] == "ok"
    assert not manager.data_dir.exists()


def test_clean_skips_images_removed_concurrently(
    manager: SandboxManager, runtime: MagicMock
) -> None:
    from algosandbox.errors import ImageNotFound
    from algosandbox.types import ImageInfo

    runtime.list_images.return_value = [ImageInfo(id="sha256:1", tags=("algorand-sandbox:stable",))]
    runtime.remove_image.side_effect = ImageNotFound("algorand-sandbox:stable")

    report = manager.clean()

    assert _statuses(report)["remove images"] == "skipped"


def test_clean_logs_every_step(manager: SandboxManager) -> None:
    manager.clean()
    lines = manager.config.state_dir.joinpath("history.jsonl").read_text().splitlines()
    entries = [json.loads(line) for line in lines]
    assert [e["action"] for e in entries] == ["clean"] * 5
