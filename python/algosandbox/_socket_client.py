# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

"""Async HTTP-over-Unix-socket client for Podman/Docker.

Each function opens its own connection to the Unix socket, performs the
HTTP request, and closes the connection.  This is the connection-per-operation
model: Unix sockets are free, and isolation prevents streaming from blocking
other operations.

Uses unversioned Docker-compatible API paths (``/containers/create``, not
``/v4.0.0/libpod/...``) for Podman + Docker compatibility.
"""

from __future__ import annotations

import asyncio
import json
import os
import pathlib
import time
import urllib.parse
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

from algosandbox._stream import (
    HEADER_SIZE as _DEMUX_HEADER_SIZE,
)
from algosandbox._stream import (
    DemuxResult,
    demux_stream,
    demux_stream_iter,
    parse_stream_header,
)
from algosandbox.errors import (
    BuildFailed,
    ContainerNotFound,
    ContainerNotRunning,
    ImageNotFound,
    SocketCommunicationError,
    SocketConnectionError,
)
from algosandbox.types import ExecResult

# ---------------------------------------------------------------------------
# Socket detection
# ---------------------------------------------------------------------------


def detect_socket() -> str | None:
    """Auto-detect an available container engine socket.

    Detection order:
    1. ``ALGOSANDBOX_SOCKET`` env var
    2. Podman rootless: ``$XDG_RUNTIME_DIR/podman/podman.sock``
    3. Podman system: ``/run/podman/podman.sock``
    4. Docker: ``/var/run/docker.sock``

    Returns:
        The path to the first socket found, or ``None``.

    """
    explicit = os.environ.get("ALGOSANDBOX_SOCKET")
    if explicit and pathlib.Path(explicit).exists():
        return explicit

    xdg = os.environ.get("XDG_RUNTIME_DIR", f"/run/user/{os.getuid()}")
    candidates = [
        pathlib.Path(xdg) / "podman" / "podman.sock",
        pathlib.Path("/run/podman/podman.sock"),
        pathlib.Path("/var/run/docker.sock"),
    ]
    for candidate in candidates:
        if candidate.exists():
            return str(candidate)
    return None


# ---------------------------------------------------------------------------
# Raw HTTP helpers
# ---------------------------------------------------------------------------


async def _open_connection(
    socket_path: str,
) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """Open an async connection to a Unix socket."""
    try:
        return await asyncio.open_unix_connection(socket_path)
    except (OSError, ConnectionRefusedError) as exc:
        raise SocketConnectionError(socket_path, str(exc)) from exc


async def _send_request(
    writer: asyncio.StreamWriter,
    method: str,
    path: str,
    body: bytes | None = None,
    content_type: str = "application/json",
) -> None:
    """Write an HTTP/1.1 request to the writer."""
    lines = [
        f"{method} {path} HTTP/1.1",
        "Host: localhost",
    ]
    if body is not None:
        lines.append(f"Content-Type: {content_type}")
        lines.append(f"Content-Length: {len(body)}")
    lines.append("Connection: close")
    lines.append("")
    lines.append("")

    header_bytes = "\r\n".join(lines).encode("ascii")
    writer.write(header_bytes)
    if body is not None:
        writer.write(body)
    await writer.drain()


async def _read_status_line(reader: asyncio.StreamReader) -> int:
    """Read the HTTP status line and return the status code."""
    line = await reader.readline()
    if not line:
        msg = "empty response"
        raise SocketCommunicationError(msg)
    parts = line.decode("ascii", errors="replace").split(None, 2)
    if len(parts) < 2:  # noqa: PLR2004
        msg = f"malformed status line: {line!r}"
        raise SocketCommunicationError(msg)
    return int(parts[1])


async def _read_headers(reader: asyncio.StreamReader) -> dict[str, str]:
    """Read HTTP headers until the blank line."""
    headers: dict[str, str] = {}
    while True:
        line = await reader.readline()
        stripped = line.strip()
        if not stripped:
            break
        decoded = stripped.decode("ascii", errors="replace")
        if ":" in decoded:
            key, value = decoded.split(":", 1)
            headers[key.strip().lower()] = value.strip()
    return headers


async def _read_body(
    reader: asyncio.StreamReader,
    headers: dict[str, str],
) -> bytes:
    """Read the HTTP response body, handling Content-Length and chunked TE."""
    if headers.get("transfer-encoding", "").lower() == "chunked":
        return await _read_chunked(reader)

    content_length_str = headers.get("content-length")
    if content_length_str is not None:
        length = int(content_length_str)
        return await _read_exact_body(reader, length)

    # No Content-Length, no chunked: read until EOF
    parts: list[bytes] = []
    while True:
        chunk = await reader.read(65536)
        if not chunk:
            break
        parts.append(chunk)
    return b"".join(parts)


async def _read_exact_body(reader: asyncio.StreamReader, length: int) -> bytes:
    """Read exactly ``length`` bytes from the reader."""
    data = b""
    while len(data) < length:
        chunk = await reader.read(length - len(data))
        if not chunk:
            break
        data += chunk
    return data


async def _read_chunked(reader: asyncio.StreamReader) -> bytes:
    """Read a chunked transfer-encoded body."""
    parts: list[bytes] = []
    while True:
        size_line = await reader.readline()
        if not size_line:
            break
        size_str = size_line.strip().decode("ascii", errors="replace")
        if not size_str:
            continue
        chunk_size = int(size_str, 16)
        if chunk_size == 0:
            await reader.readline()  # trailing \r\n
            break
        chunk_data = await _read_exact_body(reader, chunk_size)
        parts.append(chunk_data)
        await reader.readline()  # trailing \r\n after chunk
    return b"".join(parts)


async def _request(
    socket_path: str,
    method: str,
    path: str,
    body: dict[str, Any] | None = None,
) -> tuple[int, bytes]:
    """Make an HTTP request and return (status_code, response_body).

    Opens a new connection per call.
    """
    body_bytes = json.dumps(body).encode("utf-8") if body is not None else None
    return await _request_raw(socket_path, method, path, body_bytes, "application/json")


async def _request_raw(
    socket_path: str,
    method: str,
    path: str,
    body: bytes | None = None,
    content_type: str = "application/x-tar",
) -> tuple[int, bytes]:
    """Make an HTTP request with a raw byte body."""
    reader, writer = await _open_connection(socket_path)
    try:
        await _send_request(writer, method, path, body, content_type=content_type)
        status = await _read_status_line(reader)
        headers = await _read_headers(reader)
        response_body = await _read_body(reader, headers)
    except SocketConnectionError:
        raise
    except (OSError, asyncio.IncompleteReadError) as exc:
        raise SocketCommunicationError(str(exc)) from exc
    else:
        return status, response_body
    finally:
        writer.close()
        await writer.wait_closed()


async def _request_stream(
    socket_path: str,
    method: str,
    path: str,
    body: dict[str, Any] | None = None,
) -> tuple[int, dict[str, str], asyncio.StreamReader, asyncio.StreamWriter]:
    """Make an HTTP request and return (status, headers, reader, writer) for streaming.

    The caller is responsible for closing the writer.
    """
    reader, writer = await _open_connection(socket_path)
    try:
        body_bytes = json.dumps(body).encode("utf-8") if body is not None else None
        await _send_request(writer, method, path, body_bytes)

        status = await _read_status_line(reader)
        headers = await _read_headers(reader)
    except Exception:
        writer.close()
        await writer.wait_closed()
        raise
    else:
        return status, headers, reader, writer


def _body_text(body: bytes) -> str:
    return body.decode("utf-8", errors="replace")


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


def _check_container_response(
    status: int,
    body: bytes,
    container_id: str,
) -> None:
    """Raise appropriate errors based on HTTP status codes."""
    if status < 400:  # noqa: PLR2004
        return
    if status == 404:  # noqa: PLR2004
        raise ContainerNotFound(container_id)
    if status == 409:  # noqa: PLR2004
        raise ContainerNotRunning(container_id)
    msg = f"HTTP {status}: {_body_text(body)}"
    raise SocketCommunicationError(msg)


# ---------------------------------------------------------------------------
# Containers
# ---------------------------------------------------------------------------


async def list_containers(
    socket_path: str,
    *,
    name: str | None = None,
    label_filter: str | None = None,
) -> list[dict[str, Any]]:
    """List containers in any state, optionally filtered.

    Uses ``GET /containers/json?all=true``.  The engine's ``name`` filter is a
    substring match, so results are narrowed to exact name matches here.

    Args:
        socket_path: Path to the container engine Unix socket.
        name: Exact container name.
        label_filter: Label filter string (e.g. ``"algosandbox.managed=true"``).

    Returns:
        List of container JSON objects from the engine.

    """
    filters: dict[str, list[str]] = {}
    if name is not None:
        filters["name"] = [name]
    if label_filter is not None:
        filters["label"] = [label_filter]

    path = "/containers/json?all=true"
    if filters:
        path = f"{path}&filters={urllib.parse.quote(json.dumps(filters))}"
    status, body = await _request(socket_path, "GET", path)
    if status >= 400:  # noqa: PLR2004
        msg = f"list containers failed: HTTP {status}: {_body_text(body)}"
        raise SocketCommunicationError(msg)

    containers: list[dict[str, Any]] = json.loads(body)
    if name is not None:
        containers = [c for c in containers if _has_name(c, name)]
    return containers


def _has_name(container: dict[str, Any], name: str) -> bool:
    """Match an engine listing entry against an exact container name."""
    names = container.get("Names") or []
    return any(str(n).lstrip("/") == name for n in names)


async def create_container(  # noqa: PLR0913
    socket_path: str,
    image: str,
    *,
    name: str | None = None,
    command: list[str] | None = None,
    labels: dict[str, str] | None = None,
    host_config: dict[str, Any] | None = None,
    exposed_ports: list[str] | None = None,
    user: str | None = None,
) -> str:
    """Create a container and return its ID.

    Args:
        socket_path: Path to the container engine Unix socket.
        image: Image name to use.
        name: Container name.
        command: Command to run (default: image CMD).
        labels: OCI labels to attach.
        host_config: Docker-compatible ``HostConfig`` dict (binds, ports, etc.).
        exposed_ports: Ports to expose, e.g. ``["4001/tcp"]``.
        user: ``uid:gid`` to run the container process as.

    Returns:
        The container ID (full hex string).

    """
    payload: dict[str, Any] = {"Image": image}
    if command is not None:
        payload["Cmd"] = command
    if labels is not None:
        payload["Labels"] = labels
    if host_config is not None:
        payload["HostConfig"] = host_config
    if exposed_ports:
        payload["ExposedPorts"] = {p: {} for p in exposed_ports}
    if user is not None:
        payload["User"] = user

    path = "/containers/create"
    if name is not None:
        path = f"{path}?{urllib.parse.urlencode({'name': name})}"
    status, body = await _request(socket_path, "POST", path, payload)

    if status == 404:  # noqa: PLR2004
        raise ImageNotFound(image)
    if status >= 400:  # noqa: PLR2004
        msg = f"create failed: HTTP {status}: {_body_text(body)}"
        raise SocketCommunicationError(msg)

    data = json.loads(body)
    return str(data["Id"])


async def start_container(socket_path: str, container_id: str) -> None:
    """Start a created container."""
    status, body = await _request(socket_path, "POST", f"/containers/{container_id}/start")
    # 204 = success, 304 = already started
    if status not in (204, 304):
        _check_container_response(status, body, container_id)


async def stop_container(socket_path: str, container_id: str, timeout: int = 10) -> None:
    """Stop a running container."""
    status, body = await _request(
        socket_path, "POST", f"/containers/{container_id}/stop?t={timeout}"
    )
    # 204 = success, 304 = already stopped
    if status not in (204, 304):
        _check_container_response(status, body, container_id)


async def restart_container(
    socket_path: str,
    container_id: str,
    timeout: int = 10,
) -> None:
    """Restart a container.

    Uses ``POST /containers/{id}/restart?t={timeout}``.
    """
    status, body = await _request(
        socket_path,
        "POST",
        f"/containers/{container_id}/restart?t={timeout}",
    )
    if status != 204:  # noqa: PLR2004
        _check_container_response(status, body, container_id)


async def remove_container(
    socket_path: str,
    container_id: str,
    *,
    force: bool = False,
) -> None:
    """Remove a container."""
    force_param = "true" if force else "false"
    status, body = await _request(
        socket_path,
        "DELETE",
        f"/containers/{container_id}?force={force_param}",
    )
    if status not in (200, 204):
        _check_container_response(status, body, container_id)


# ---------------------------------------------------------------------------
# Exec
# ---------------------------------------------------------------------------


async def exec_command(
    socket_path: str,
    container_id: str,
    command: list[str],
    max_output: int = 10 * 1024 * 1024,
) -> ExecResult:
    """Execute a command inside a running container.

    This performs three HTTP calls:
    1. Create exec instance (``POST /containers/{id}/exec``)
    2. Start exec and read multiplexed stream (``POST /exec/{id}/start``)
    3. Inspect exec to get exit code (``GET /exec/{id}/json``)
    """
    start_time = time.monotonic()

    exec_id = await _exec_create(socket_path, container_id, command)
    demux_result = await _exec_start(socket_path, exec_id, max_output)
    exit_code = await _exec_inspect_exit_code(socket_path, exec_id)

    duration_ms = (time.monotonic() - start_time) * 1000

    return ExecResult(
        exit_code=exit_code,
        stdout=demux_result.stdout_text(),
        stderr=demux_result.stderr_text(),
        duration_ms=duration_ms,
        truncated=demux_result.truncated,
    )


async def exec_stream(
    socket_path: str,
    container_id: str,
    command: list[str],
) -> AsyncGenerator[tuple[int, bytes], None]:
    """Execute a command and yield ``(stream_type, payload)`` frames as they arrive.

    Used for long-running commands (``tail -F``); the connection is closed
    when the generator is closed or the command exits.
    """
    exec_id = await _exec_create(socket_path, container_id, command)
    frames, writer = await _exec_start_stream(socket_path, exec_id)
    try:
        async for frame in frames:
            yield frame
    finally:
        writer.close()
        await writer.wait_closed()


async def _exec_create(
    socket_path: str,
    container_id: str,
    command: list[str],
) -> str:
    """Create an exec instance and return its ID."""
    payload: dict[str, object] = {
        "AttachStdout": True,
        "AttachStderr": True,
        "Cmd": command,
    }
    status, body = await _request(
        socket_path,
        "POST",
        f"/containers/{container_id}/exec",
        payload,
    )
    if status == 404:  # noqa: PLR2004
        raise ContainerNotFound(container_id)
    if status == 409:  # noqa: PLR2004
        raise ContainerNotRunning(container_id)
    if status >= 400:  # noqa: PLR2004
        body_text = _body_text(body)
        # Podman returns 500 with "container state improper" for stopped containers
        if "container state improper" in body_text:
            raise ContainerNotRunning(container_id)
        msg = f"exec create failed: HTTP {status}: {body_text}"
        raise SocketCommunicationError(msg)

    data = json.loads(body)
    return str(data["Id"])


async def _exec_start(
    socket_path: str,
    exec_id: str,
    max_output: int,
) -> DemuxResult:
    """Start an exec instance and read the multiplexed stream."""
    payload = {"Detach": False, "Tty": False}
    status, headers, reader, writer = await _request_stream(
        socket_path,
        "POST",
        f"/exec/{exec_id}/start",
        payload,
    )
    try:
        if status >= 400:  # noqa: PLR2004
            rest = await reader.read(65536)
            msg = f"exec start failed: HTTP {status}: {_body_text(rest)}"
            raise SocketCommunicationError(msg)

        # Docker wraps the multiplexed stream in chunked transfer encoding;
        # Podman sends the raw multiplexed stream directly.
        if headers.get("transfer-encoding", "").lower() == "chunked":
            raw = await _read_chunked(reader)
            mem_reader = asyncio.StreamReader()
            mem_reader.feed_data(raw)
            mem_reader.feed_eof()
            return await demux_stream(mem_reader, max_output)
        return await demux_stream(reader, max_output)
    finally:
        writer.close()
        await writer.wait_closed()


async def _exec_start_stream(
    socket_path: str,
    exec_id: str,
) -> tuple[AsyncGenerator[tuple[int, bytes], None], asyncio.StreamWriter]:
    """Start an exec and return a (frame_generator, writer) pair for streaming.

    The caller must close the writer when done.
    """
    payload = {"Detach": False, "Tty": False}
    status, headers, reader, writer = await _request_stream(
        socket_path,
        "POST",
        f"/exec/{exec_id}/start",
        payload,
    )
    if status >= 400:  # noqa: PLR2004
        rest = await reader.read(65536)
        writer.close()
        await writer.wait_closed()
        msg = f"exec start failed: HTTP {status}: {_body_text(rest)}"
        raise SocketCommunicationError(msg)

    if headers.get("transfer-encoding", "").lower() == "chunked":
        gen: AsyncGenerator[tuple[int, bytes], None] = _demux_chunked_stream(reader)
    else:
        gen = demux_stream_iter(reader)
    return gen, writer


async def _demux_chunked_stream(
    reader: asyncio.StreamReader,
) -> AsyncGenerator[tuple[int, bytes], None]:
    """Parse multiplexed frames from a chunked transfer-encoded stream.

    HTTP chunk boundaries may not align with demux frame boundaries, so
    unchunked data is accumulated and complete frames parsed from it.
    """
    buf = bytearray()
    while True:
        size_line = await reader.readline()
        if not size_line:
            break
        size_str = size_line.strip().decode("ascii", errors="replace")
        if not size_str:
            continue
        chunk_size = int(size_str, 16)
        if chunk_size == 0:
            await reader.readline()  # trailing CRLF
            break
        chunk_data = await _read_exact_body(reader, chunk_size)
        await reader.readline()  # trailing CRLF after chunk
        buf.extend(chunk_data)

        while len(buf) >= _DEMUX_HEADER_SIZE:
            stream_type, payload_length = parse_stream_header(bytes(buf[:_DEMUX_HEADER_SIZE]))
            total_frame = _DEMUX_HEADER_SIZE + payload_length
            if len(buf) < total_frame:
                break
            payload = bytes(buf[_DEMUX_HEADER_SIZE:total_frame])
            del buf[:total_frame]
            if payload_length > 0:
                yield stream_type, payload


async def _exec_inspect_exit_code(socket_path: str, exec_id: str) -> int:
    """Inspect an exec instance and return its exit code."""
    status, body = await _request(socket_path, "GET", f"/exec/{exec_id}/json")
    if status >= 400:  # noqa: PLR2004
        msg = f"exec inspect failed: HTTP {status}: {_body_text(body)}"
        raise SocketCommunicationError(msg)
    data = json.loads(body)
    return int(data["ExitCode"])


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------


async def build_image(
    socket_path: str,
    context: bytes,
    tag: str,
    buildargs: dict[str, str] | None = None,
) -> str:
    """Build an image from a tar build context.

    Uses ``POST /build?t={tag}&buildargs={json}``.  The engine answers 200
    even when a build step fails and reports the failure as an ``error``
    entry in its JSON progress stream, so that stream is checked too.

    Returns:
        The build log text.

    """
    params = {"t": tag, "rm": "true"}
    if buildargs:
        params["buildargs"] = json.dumps(buildargs)
    status, body = await _request_raw(
        socket_path,
        "POST",
        f"/build?{urllib.parse.urlencode(params)}",
        context,
    )
    if status >= 400:  # noqa: PLR2004
        raise BuildFailed(tag, f"HTTP {status}: {_body_text(body)}")

    log_parts: list[str] = []
    for line in _body_text(body).splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        try:
            entry = json.loads(stripped)
        except json.JSONDecodeError:
            log_parts.append(stripped)
            continue
        if not isinstance(entry, dict):
            continue
        if entry.get("error"):
            raise BuildFailed(tag, str(entry["error"]).strip())
        if entry.get("stream"):
            log_parts.append(str(entry["stream"]))
    return "".join(log_parts)


async def list_images(
    socket_path: str,
    *,
    reference: str | None = None,
) -> list[dict[str, Any]]:
    """List local images, optionally filtered by reference pattern."""
    filters: dict[str, list[str]] = {}
    if reference is not None:
        filters["reference"] = [reference]

    path = "/images/json"
    if filters:
        path = f"{path}?filters={urllib.parse.quote(json.dumps(filters))}"
    status, body = await _request(socket_path, "GET", path)
    if status >= 400:  # noqa: PLR2004
        msg = f"list images failed: HTTP {status}: {_body_text(body)}"
        raise SocketCommunicationError(msg)
    return json.loads(body)  # type: ignore[no-any-return]


async def remove_image(socket_path: str, image: str, *, force: bool = False) -> None:
    """Remove an image by name or ID."""
    force_param = "true" if force else "false"
    status, body = await _request(
        socket_path,
        "DELETE",
        f"/images/{urllib.parse.quote(image, safe='')}?force={force_param}",
    )
    if status == 404:  # noqa: PLR2004
        raise ImageNotFound(image)
    if status >= 400:  # noqa: PLR2004
        msg = f"remove image failed: HTTP {status}: {_body_text(body)}"
        raise SocketCommunicationError(msg)


async def prune_images(socket_path: str) -> list[str]:
    """Remove dangling images.

    Uses ``POST /images/prune`` (dangling-only is the engine default).

    Returns:
        IDs of deleted images.

    """
    status, body = await _request(socket_path, "POST", "/images/prune")
    if status >= 400:  # noqa: PLR2004
        msg = f"prune images failed: HTTP {status}: {_body_text(body)}"
        raise SocketCommunicationError(msg)
    data = json.loads(body) if body else {}
    deleted = data.get("ImagesDeleted") or []
    return [str(d.get("Deleted") or d.get("Untagged", "")) for d in deleted]
