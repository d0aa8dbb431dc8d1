# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

"""Node REST probe over the published host port."""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any

import aiohttp

from algosandbox.errors import NodeUnreachable

if TYPE_CHECKING:
    from pathlib import Path

TOKEN_FILENAME = "algod.token"
TOKEN_HEADER = "X-Algo-API-Token"
STATUS_PATH = "/v2/status"


def read_token(data_dir: Path) -> str:
    """Return the node API token from ``<data_dir>/algod.token``.

    Raises:
        FileNotFoundError: If the node has not written its token yet.

    """
    return (data_dir / TOKEN_FILENAME).read_text().strip()


async def fetch_status(
    host_port: int,
    token: str,
    *,
    host: str = "localhost",
    timeout: float = 5.0,
) -> dict[str, Any]:
    """Query the node status endpoint.

    Raises:
        NodeUnreachable: On connection errors, a non-200 answer or a body
            that is not a JSON object.

    """
    url = f"http://{host}:{host_port}{STATUS_PATH}"
    client_timeout = aiohttp.ClientTimeout(total=timeout)
    try:
        async with aiohttp.ClientSession(timeout=client_timeout) as session, session.get(
            url, headers={TOKEN_HEADER: token}
        ) as response:
            if response.status != 200:  # noqa: PLR2004
                text = await response.text()
                raise NodeUnreachable(url, f"HTTP {response.status}: {text.strip()}")
            try:
                data = await response.json(content_type=None)
            except ValueError as exc:
                raise NodeUnreachable(url, f"invalid JSON status payload: {exc}") from exc
    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        raise NodeUnreachable(url, str(exc) or type(exc).__name__) from exc
    if not isinstance(data, dict):
        raise NodeUnreachable(url, "unexpected status payload")
    return data


def node_status(data_dir: Path, host_port: int, *, timeout: float = 5.0) -> dict[str, Any]:
    """Read the token and return the node's current status (sync)."""
    token = read_token(data_dir)
    return asyncio.run(fetch_status(host_port, token, timeout=timeout))


def wait_for_node(
    data_dir: Path,
    host_port: int,
    *,
    timeout: float = 30.0,
    interval: float = 1.0,
) -> dict[str, Any] | None:
    """Poll until the node answers or *timeout* elapses.

    Returns:
        The first status payload, or ``None`` if the node never answered.

    """
    deadline = time.monotonic() + timeout
    while True:
        try:
            return node_status(data_dir, host_port, timeout=max(interval, 1.0))
        except (OSError, NodeUnreachable):
            pass
        if time.monotonic() + interval > deadline:
            return None
        time.sleep(interval)
