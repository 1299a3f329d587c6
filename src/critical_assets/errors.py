# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Critical assets exception hierarchy.

All package errors inherit from CriticalAssetsError, allowing callers
(the extract command in particular) to catch the base class for any
per-page failure or specific subclasses for targeted handling.
"""

from __future__ import annotations


class CriticalAssetsError(Exception):
    """Base exception for all critical assets errors."""


class ConfigurationError(CriticalAssetsError):
    """Unusable configuration (binary path, viewports). Raised before any spawn."""


class BrowserError(CriticalAssetsError):
    """Browser startup, connection, or protocol failure."""


class StartupTimeoutError(BrowserError):
    """Chromium did not answer on its debug endpoint within the connect timeout."""

    def __init__(self, binary: str, timeout_ms: int) -> None:
        super().__init__(
            f"Chromium did not become ready within {timeout_ms} ms. "
            f'Check that the binary at "{binary}" works and has sufficient permissions.'
        )
        self.binary = binary
        self.timeout_ms = timeout_ms


class HandshakeError(BrowserError):
    """WebSocket upgrade was not answered with 101 Switching Protocols."""

    def __init__(self, message: str, *, status_line: str = "") -> None:
        super().__init__(message)
        self.status_line = status_line


class ProtocolError(BrowserError):
    """Unexpected DevTools HTTP or CDP response shape."""


class CdpCommandError(ProtocolError):
    """The browser answered a CDP command with an error object."""

    def __init__(self, method: str, *, code: int = 0, message: str = "") -> None:
        super().__init__(f"CDP command '{method}' failed ({code}): {message}")
        self.method = method
        self.code = code
        self.message = message


class CommandTimeoutError(BrowserError):
    """No matching CDP response or event arrived before the deadline."""

    def __init__(self, method: str, timeout_ms: int, *, kind: str = "command") -> None:
        if kind == "event":
            text = f"Timed out waiting for CDP event '{method}' after {timeout_ms} ms"
        else:
            text = f"CDP command '{method}' timed out after {timeout_ms} ms"
        super().__init__(text)
        self.method = method
        self.timeout_ms = timeout_ms
        self.kind = kind


class CoverageStateError(CriticalAssetsError):
    """CSS rule-usage tracking started twice or stopped without being started."""
