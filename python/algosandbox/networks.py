# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

"""Network profile registry and resolution.

Maps network names (``"mainnet"``, ``"testnet"``, ``"betanet"``) to the node
release channel, genesis identity and optional ledger snapshot used to seed a
new sandbox.
"""

from __future__ import annotations

import dataclasses

from algosandbox.errors import UnknownNetwork

DEFAULT_NETWORK = "testnet"

_GENESIS_BASE_URL = "https://raw.githubusercontent.com/algorand/go-algorand/master/installer/genesis"


@dataclasses.dataclass(frozen=True)
class NetworkProfile:
    """Static description of a network the sandbox can join."""

    name: str
    channel: str
    genesis_version: str
    snapshot_url: str | None = None

    @property
    def genesis_url(self) -> str:
        """Upstream location of this network's ``genesis.json``."""
        return f"{_GENESIS_BASE_URL}/{self.name}/genesis.json"

    @property
    def has_snapshot(self) -> bool:
        return bool(self.snapshot_url)


NETWORKS: dict[str, NetworkProfile] = {
    "mainnet": NetworkProfile(
        name="mainnet",
        channel="stable",
        genesis_version="mainnet-v1.0",
    ),
    "testnet": NetworkProfile(
        name="testnet",
        channel="stable",
        genesis_version="testnet-v1.0",
        snapshot_url="https://algorand-snapshots.s3.amazonaws.com/network/testnet-v1.0/latest.tar.gz",
    ),
    "betanet": NetworkProfile(
        name="betanet",
        channel="beta",
        genesis_version="betanet-v1.0",
    ),
}


def resolve_network(
    name: str | None = None,
    *,
    snapshot_overrides: dict[str, str] | None = None,
) -> NetworkProfile:
    """Look up a network profile by name.

    Args:
        name: One of ``"mainnet"``, ``"testnet"``, ``"betanet"``.  ``None``
              resolves to :data:`DEFAULT_NETWORK`.
        snapshot_overrides: Per-network snapshot URLs that replace the
              built-in ones (from configuration).

    Returns:
        The corresponding :class:`NetworkProfile`.

    Raises:
        UnknownNetwork: If *name* is not a known network.

    """
    key = DEFAULT_NETWORK if name is None else name
    try:
        profile = NETWORKS[key]
    except KeyError:
        raise UnknownNetwork(key, sorted(NETWORKS)) from None
    if snapshot_overrides and key in snapshot_overrides:
        profile = dataclasses.replace(profile, snapshot_url=snapshot_overrides[key] or None)
    return profile


def list_networks() -> list[NetworkProfile]:
    """Return all built-in network profiles."""
    return list(NETWORKS.values())


def network_for_genesis(genesis: dict[str, object]) -> NetworkProfile | None:
    """Return the profile a parsed ``genesis.json`` belongs to, if any.

    Genesis files carry ``network`` and ``id`` fields whose combination is the
    genesis version (``testnet`` + ``v1.0`` -> ``testnet-v1.0``).
    """
    network = genesis.get("network")
    genesis_id = genesis.get("id")
    if not isinstance(network, str) or not isinstance(genesis_id, str):
        return None
    version = f"{network}-{genesis_id}"
    for profile in NETWORKS.values():
        if profile.genesis_version == version:
            return profile
    return None
