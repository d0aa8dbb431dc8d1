# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

"""Download and extract remote archives (ledger snapshots, genesis files)."""

from __future__ import annotations

import asyncio
import tarfile
from typing import TYPE_CHECKING

import aiohttp

from algosandbox.errors import FetchError

if TYPE_CHECKING:
    from pathlib import Path

_CHUNK_SIZE = 64 * 1024


async def download_file(
    url: str,
    dest: Path,
    *,
    headers: dict[str, str] | None = None,
    timeout: float | None = None,
) -> int:
    """Stream *url* into *dest*.

    Returns:
        Number of bytes written.

    Raises:
        FetchError: On any HTTP or connection failure.

    """
    client_timeout = aiohttp.ClientTimeout(total=timeout)
    written = 0
    try:
        async with aiohttp.ClientSession(timeout=client_timeout) as session, session.get(
            url, headers=headers
        ) as response:
            if response.status != 200:  # noqa: PLR2004
                raise FetchError(url, f"HTTP {response.status} {response.reason or ''}".strip())
            with dest.open("wb") as f:
                async for chunk in response.content.iter_chunked(_CHUNK_SIZE):
                    f.write(chunk)
                    written += len(chunk)
    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        raise FetchError(url, str(exc) or type(exc).__name__) from exc
    return written


def extract_archive(archive: Path, dest: Path) -> list[str]:
    """Extract a (optionally compressed) tar archive into *dest*.

    Members that would land outside *dest* are rejected.

    Returns:
        Names of the extracted members.

    Raises:
        FetchError: If the archive is unreadable or unsafe.

    """
    dest.mkdir(parents=True, exist_ok=True)
    try:
        with tarfile.open(archive, mode="r:*") as tar:
            members = tar.getmembers()
            _check_members(members, archive)
            if hasattr(tarfile, "data_filter"):
                tar.extractall(dest, filter="data")  # noqa: S202
            else:
                tar.extractall(dest)  # noqa: S202  # nosec B202
    except (tarfile.TarError, OSError) as exc:
        raise FetchError(str(archive), f"cannot extract: {exc}") from exc
    return [m.name for m in members]


def _check_members(members: list[tarfile.TarInfo], archive: Path) -> None:
    for member in members:
        parts = member.name.replace("\\", "/").split("/")
        if member.name.startswith("/") or ".." in parts:
            raise FetchError(str(archive), f"unsafe member path {member.name!r}")


class ArchiveFetcher:
    """Network resource fetcher used to seed new data directories."""

    def __init__(self, *, timeout: float | None = None) -> None:
        self._timeout = timeout

    def fetch(self, url: str, dest: Path) -> int:
        """Download *url* to *dest*; return the byte count."""
        return asyncio.run(download_file(url, dest, timeout=self._timeout))

    def extract(self, archive: Path, dest: Path) -> list[str]:
        return extract_archive(archive, dest)
