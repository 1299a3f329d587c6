# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Headless Chromium process supervision.

Spawns Chromium with a hardened, container-safe flag set and a random
DevTools port, waits for ``/json/version``, opens a tab via ``/json/new``
and tears the process down again. One process per CdpSession.
"""

from __future__ import annotations

import json
import logging
import os
import random
import shutil
import subprocess
import time
import urllib.error
import urllib.request
from contextlib import suppress

from .errors import ConfigurationError, ProtocolError, StartupTimeoutError

logger = logging.getLogger(__name__)

DEBUG_HOST = "127.0.0.1"
DEBUG_PORT_RANGE = (9100, 9999)

_READY_POLL_INTERVAL_S = 0.1
_READY_POLL_TIMEOUT_S = 0.5
_TAB_TIMEOUT_S = 5.0
_STOP_GRACE_S = 3.0

CHROMIUM_CANDIDATES = (
    "chromium-browser",
    "chromium",
    "google-chrome",
    "google-chrome-stable",
    "/usr/bin/chromium-browser",
    "/usr/bin/chromium",
    "/usr/bin/google-chrome",
    "/usr/bin/google-chrome-stable",
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
    "/Applications/Chromium.app/Contents/MacOS/Chromium",
)


def chromium_launch_args(port: int) -> list[str]:
    """Return hardened headless launch arguments for DevTools on *port*."""
    return [
        "--headless=new",
        "--no-sandbox",
        "--disable-gpu",
        "--disable-dev-shm-usage",
        "--no-first-run",
        "--no-default-browser-check",
        "--disable-extensions",
        "--disable-background-networking",
        "--disable-background-timer-throttling",
        "--disable-renderer-backgrounding",
        "--disable-breakpad",
        "--disable-client-side-phishing-detection",
        "--disable-default-apps",
        "--disable-hang-monitor",
        "--disable-prompt-on-repost",
        "--disable-sync",
        "--disable-translate",
        "--metrics-recording-only",
        "--safebrowsing-disable-auto-update",
        f"--remote-debugging-port={port}",
        f"--remote-debugging-address={DEBUG_HOST}",
        "about:blank",
    ]


def random_debug_port() -> int:
    """Random port in DEBUG_PORT_RANGE (inclusive) to avoid clashing with parallel runs."""
    return random.randint(*DEBUG_PORT_RANGE)


def validate_binary(path: str) -> None:
    """Raise ConfigurationError unless *path* is an executable file."""
    if not path:
        raise ConfigurationError(
            "Chromium binary not configured. Pass --chromium-bin=/path/to/chromium "
            "or set CRITICAL_ASSETS_CHROMIUM_BIN."
        )
    if not os.path.isfile(path) or not os.access(path, os.X_OK):
        raise ConfigurationError(f"Chromium binary not found or not executable: {path}")


def detect_chromium() -> str:
    """Return the first usable Chromium/Chrome binary from well-known locations, or ""."""
    for candidate in CHROMIUM_CANDIDATES:
        if os.path.isabs(candidate):
            if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
                return candidate
            continue
        found = shutil.which(candidate)
        if found:
            return found
    return ""


class ChromiumProcess:
    """A single headless Chromium with its DevTools HTTP endpoint."""

    def __init__(self, binary: str, *, port: int | None = None) -> None:
        self.binary = binary
        self.port = port if port is not None else random_debug_port()
        self._process: subprocess.Popen | None = None

    @property
    def base_url(self) -> str:
        return f"http://{DEBUG_HOST}:{self.port}"

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def spawn(self) -> None:
        """Launch Chromium. Output is discarded; DevTools is the only channel."""
        args = [self.binary, *chromium_launch_args(self.port)]
        try:
            self._process = subprocess.Popen(
                args,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as exc:
            raise ConfigurationError(f"Cannot execute Chromium binary {self.binary}: {exc}") from exc
        logger.info("Chromium spawned: pid=%s port=%d", self._process.pid, self.port)

    def await_ready(self, timeout_ms: int) -> None:
        """Poll ``/json/version`` every ~100 ms until it answers or *timeout_ms* elapses."""
        deadline = time.monotonic() + timeout_ms / 1000
        url = f"{self.base_url}/json/version"
        while time.monotonic() < deadline:
            try:
                with urllib.request.urlopen(url, timeout=_READY_POLL_TIMEOUT_S) as resp:  # noqa: S310  # nosec B310
                    resp.read()
                logger.debug("Chromium ready on port %d", self.port)
                return
            except (urllib.error.URLError, OSError, ValueError):
                pass
            if self._process is not None and self._process.poll() is not None:
                logger.warning("Chromium exited early (rc=%s)", self._process.returncode)
                break
            time.sleep(_READY_POLL_INTERVAL_S)
        raise StartupTimeoutError(self.binary, timeout_ms)

    def open_tab(self, timeout: float = _TAB_TIMEOUT_S) -> str:
        """Create a tab via ``/json/new`` and return its ``webSocketDebuggerUrl``.

        Current Chrome only accepts PUT on this endpoint; GET is retried for
        older builds that reject PUT with 405.
        """
        url = f"{self.base_url}/json/new"
        try:
            body = self._request(url, "PUT", timeout)
        except urllib.error.HTTPError as exc:
            if exc.code != 405:
                raise ProtocolError(f"Failed to create a Chromium tab via /json/new: HTTP {exc.code}") from exc
            try:
                body = self._request(url, "GET", timeout)
            except urllib.error.HTTPError as retry_exc:
                raise ProtocolError(
                    f"Failed to create a Chromium tab via /json/new: HTTP {retry_exc.code}"
                ) from retry_exc

        try:
            data = json.loads(body)
        except ValueError as exc:
            raise ProtocolError("Unexpected response from /json/new: not JSON") from exc

        ws_url = data.get("webSocketDebuggerUrl") if isinstance(data, dict) else None
        if not isinstance(ws_url, str) or not ws_url:
            raise ProtocolError("Unexpected response from /json/new: webSocketDebuggerUrl missing")
        return ws_url

    @staticmethod
    def _request(url: str, method: str, timeout: float) -> bytes:
        req = urllib.request.Request(url, method=method)
        try:
            with urllib.request.urlopen(req, timeout=timeout) as resp:  # noqa: S310  # nosec B310
                return resp.read()
        except urllib.error.HTTPError:
            raise
        except (urllib.error.URLError, OSError) as exc:
            raise ProtocolError(f"Failed to create a Chromium tab via /json/new: {exc}") from exc

    def terminate(self, grace: float = _STOP_GRACE_S) -> None:
        """Stop the process (SIGTERM, then SIGKILL after *grace* seconds). Safe to call repeatedly."""
        proc, self._process = self._process, None
        if proc is None:
            return
        if proc.poll() is None:
            with suppress(OSError):
                proc.terminate()
            try:
                proc.wait(timeout=grace)
            except subprocess.TimeoutExpired:
                with suppress(OSError):
                    proc.kill()
                with suppress(subprocess.TimeoutExpired):
                    proc.wait(timeout=grace)
        logger.debug("Chromium terminated: pid=%s rc=%s", proc.pid, proc.returncode)
