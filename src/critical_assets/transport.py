# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Blocking WebSocket transport over a raw TCP socket.

Performs the HTTP/1.1 Upgrade handshake (RFC 6455 §4.1) and moves whole
frames through ``ws_frame``. The accept key is not validated: a ``101``
status line is trusted.

NOTE: single consumer. One transport belongs to one CdpSession and is
never shared across threads.
"""

from __future__ import annotations

import base64
import logging
import os
import socket
from contextlib import suppress
from urllib.parse import urlsplit

from .errors import BrowserError, HandshakeError
from .ws_frame import decode_frame, encode_text_frame

logger = logging.getLogger(__name__)

_CONNECT_TIMEOUT_S = 10.0
_FRAME_BODY_TIMEOUT_S = 30.0  # once a header arrived, the rest of the frame is in flight
_MAX_HANDSHAKE_BYTES = 16 * 1024
_RECV_CHUNK = 256 * 1024


def parse_ws_url(url: str) -> tuple[str, int, str]:
    """Split ``ws://host:port/path?query`` into ``(host, port, path)``."""
    parts = urlsplit(url)
    if parts.scheme not in ("ws", ""):
        raise BrowserError(f"Unsupported WebSocket URL scheme: {url}")
    host = parts.hostname or "127.0.0.1"
    port = parts.port or 80
    path = parts.path or "/"
    if parts.query:
        path = f"{path}?{parts.query}"
    return host, port, path


class WebSocketTransport:
    """One client WebSocket connection: ``send`` / ``receive`` / ``close``."""

    def __init__(self, sock: socket.socket, *, buffered: bytes = b"") -> None:
        self._sock: socket.socket | None = sock
        # Bytes that arrived together with the handshake response.
        self._buffer = buffered

    @classmethod
    def connect(
        cls,
        host: str,
        port: int,
        path: str,
        *,
        timeout: float = _CONNECT_TIMEOUT_S,
    ) -> WebSocketTransport:
        """Open a TCP connection and upgrade it to a WebSocket.

        Raises:
            BrowserError: TCP connect failed.
            HandshakeError: the server did not answer ``101 Switching Protocols``.
        """
        try:
            sock = socket.create_connection((host, port), timeout=timeout)
        except OSError as exc:
            raise BrowserError(f"Cannot connect to Chromium WebSocket tcp://{host}:{port}: {exc}") from exc

        try:
            leftover = _handshake(sock, host, port, path)
        except BaseException:
            with suppress(OSError):
                sock.close()
            raise

        logger.debug("WebSocket connected: ws://%s:%d%s", host, port, path)
        return cls(sock, buffered=leftover)

    @property
    def closed(self) -> bool:
        return self._sock is None

    def send(self, payload: bytes) -> None:
        """Write *payload* as a single masked text frame."""
        if self._sock is None:
            raise BrowserError("WebSocket transport is closed")
        try:
            self._sock.sendall(encode_text_frame(payload))
        except OSError as exc:
            raise BrowserError(f"WebSocket send failed: {exc}") from exc

    def receive(self, timeout: float) -> bytes:
        """Return the next frame payload, or ``b""`` if none arrived within *timeout* seconds."""
        sock = self._sock
        if sock is None:
            return b""

        started = False

        def _read(n: int) -> bytes:
            nonlocal started
            if self._buffer:
                chunk, self._buffer = self._buffer[:n], self._buffer[n:]
                started = True
                return chunk
            sock.settimeout(_FRAME_BODY_TIMEOUT_S if started else max(timeout, 0.001))
            try:
                chunk = sock.recv(min(n, _RECV_CHUNK))
            except OSError:  # includes TimeoutError
                return b""
            if chunk:
                started = True
            return chunk

        return decode_frame(_read)

    def close(self) -> None:
        """Close the socket. Safe to call repeatedly."""
        sock, self._sock = self._sock, None
        self._buffer = b""
        if sock is None:
            return
        with suppress(OSError):
            sock.close()
        logger.debug("WebSocket closed")


def _handshake(sock: socket.socket, host: str, port: int, path: str) -> bytes:
    """Send the Upgrade request, read headers to the blank line, return any surplus bytes."""
    key = base64.b64encode(os.urandom(16)).decode("ascii")
    request = (
        f"GET {path} HTTP/1.1\r\n"
        f"Host: {host}:{port}\r\n"
        "Upgrade: websocket\r\n"
        "Connection: Upgrade\r\n"
        f"Sec-WebSocket-Key: {key}\r\n"
        "Sec-WebSocket-Version: 13\r\n\r\n"
    )
    response = b""
    try:
        sock.sendall(request.encode("ascii"))
        while b"\r\n\r\n" not in response and len(response) < _MAX_HANDSHAKE_BYTES:
            chunk = sock.recv(4096)
            if not chunk:
                break
            response += chunk
    except OSError as exc:
        raise HandshakeError(f"WebSocket upgrade failed: {exc}") from exc

    head, _, rest = response.partition(b"\r\n\r\n")
    status_line = head.split(b"\r\n", 1)[0].decode("latin-1").strip()
    parts = status_line.split()
    if len(parts) < 2 or parts[1] != "101":
        raise HandshakeError(
            f"WebSocket upgrade rejected by Chromium: {status_line or '(empty response)'}",
            status_line=status_line,
        )
    return rest
