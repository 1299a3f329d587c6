# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Minimal Chrome DevTools Protocol client over the hand-rolled WebSocket transport.

Only the subset needed for critical asset extraction: viewport emulation,
navigation with load wait, CSS rule-usage coverage, stylesheet text and
``Runtime.evaluate`` with JSON return values.

Typical usage::

    with CdpSession("/usr/bin/chromium") as cdp:
        cdp.set_viewport(375, 667)
        cdp.navigate("https://example.com/about")
        ...

Blocking and single-consumer: every ``call`` waits for its own response
before the next command is sent. A session owns exactly one Chromium
process and one WebSocket and lives as long as one page extraction.
"""

from __future__ import annotations

import json
import logging
import time
from collections import deque
from contextlib import suppress
from typing import Any, Protocol

from . import CoverageRange
from .chromium import ChromiumProcess, validate_binary
from .errors import CdpCommandError, CommandTimeoutError, CoverageStateError
from .transport import WebSocketTransport, parse_ws_url

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT_MS = 5000
DEFAULT_PAGE_LOAD_TIMEOUT_MS = 15000

_POLL_INTERVAL_S = 1.0
_MAX_BUFFERED_EVENTS = 256
_CLOSE_GRACE_S = 0.2
_MOBILE_MAX_WIDTH = 768


class Transport(Protocol):
    """What CdpSession needs from a WebSocket connection."""

    def send(self, payload: bytes) -> None: ...

    def receive(self, timeout: float) -> bytes: ...

    def close(self) -> None: ...


class CdpSession:
    """One Chromium process + one DevTools WebSocket + monotonically increasing command ids."""

    def __init__(
        self,
        chromium_bin: str = "",
        connect_timeout_ms: int = DEFAULT_CONNECT_TIMEOUT_MS,
        page_load_timeout_ms: int = DEFAULT_PAGE_LOAD_TIMEOUT_MS,
        *,
        transport: Transport | None = None,
    ) -> None:
        """
        Args:
            chromium_bin: Chromium/Chrome executable spawned by ``start()``.
            connect_timeout_ms: Budget for Chromium to answer on its debug port.
            page_load_timeout_ms: Default budget for every command and event wait.
            transport: Already-connected transport; ``start()`` then only enables domains.
        """
        self.chromium_bin = chromium_bin
        self.connect_timeout_ms = connect_timeout_ms
        self.page_load_timeout_ms = page_load_timeout_ms
        self._transport: Transport | None = transport
        self._process: ChromiumProcess | None = None
        self._next_id = 1
        self._events: deque[dict] = deque(maxlen=_MAX_BUFFERED_EVENTS)
        self._coverage_active = False
        self._closed = False

    # -- Lifecycle --

    @property
    def is_connected(self) -> bool:
        return self._transport is not None and not self._closed

    @property
    def coverage_active(self) -> bool:
        return self._coverage_active

    def start(self) -> None:
        """Spawn Chromium, open a tab, connect to it and enable the CDP domains.

        Raises ConfigurationError, StartupTimeoutError, ProtocolError,
        HandshakeError or BrowserError; call ``close()`` afterwards either way.
        """
        if self._transport is None:
            validate_binary(self.chromium_bin)
            self._process = ChromiumProcess(self.chromium_bin)
            self._process.spawn()
            self._process.await_ready(self.connect_timeout_ms)
            ws_url = self._process.open_tab()
            host, port, path = parse_ws_url(ws_url)
            self._transport = WebSocketTransport.connect(host, port, path)
        self.enable_domains()
        logger.info("CDP session started")

    def close(self) -> None:
        """Close the WebSocket and terminate Chromium. Safe to call repeatedly or before ``start()``."""
        if self._closed:
            return
        self._closed = True

        transport = self._transport
        if transport is not None:
            with suppress(Exception):
                self._send("Browser.close")
                time.sleep(_CLOSE_GRACE_S)
            with suppress(Exception):
                transport.close()
        self._transport = None

        process, self._process = self._process, None
        if process is not None:
            with suppress(Exception):
                process.terminate()

        self._events.clear()
        self._coverage_active = False
        logger.debug("CDP session closed")

    def __enter__(self) -> CdpSession:
        self.start()
        return self

    def __exit__(self, *args) -> None:
        self.close()

    # -- Protocol primitives --

    def _send(self, method: str, params: dict | None = None) -> int:
        """Fire-and-forget: write one command envelope and return its id."""
        if self._transport is None:
            raise RuntimeError("CDP session not started. Use with or call start().")
        cmd_id = self._next_id
        self._next_id += 1
        message = {"id": cmd_id, "method": method, "params": params or {}}
        self._transport.send(json.dumps(message).encode("utf-8"))
        return cmd_id

    def _receive_message(self, timeout: float) -> dict | None:
        """Next decoded JSON object, or None on timeout / non-JSON / non-object frames."""
        if self._transport is None:
            return None
        frame = self._transport.receive(timeout)
        if not frame:
            return None
        try:
            data = json.loads(frame)
        except ValueError:
            logger.debug("Discarding non-JSON frame (%d bytes)", len(frame))
            return None
        return data if isinstance(data, dict) else None

    def call(self, method: str, params: dict | None = None, timeout_ms: int | None = None) -> dict:
        """Send a command and block until the response with the same id arrives.

        Returns the response's ``result`` object. Responses for other ids are
        ignored; events seen meanwhile are buffered for ``wait_for_event``.

        Raises:
            CommandTimeoutError: no matching response before the deadline.
            CdpCommandError: the browser answered with an ``error`` object.
        """
        if timeout_ms is None:
            timeout_ms = self.page_load_timeout_ms
        cmd_id = self._send(method, params)
        deadline = time.monotonic() + timeout_ms / 1000

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            data = self._receive_message(min(_POLL_INTERVAL_S, remaining))
            if data is None:
                continue
            if data.get("id") == cmd_id:
                error = data.get("error")
                if isinstance(error, dict):
                    raise CdpCommandError(
                        method,
                        code=int(error.get("code", 0) or 0),
                        message=str(error.get("message", "")),
                    )
                result = data.get("result")
                return result if isinstance(result, dict) else {}
            if "id" not in data and "method" in data:
                self._events.append(data)

        raise CommandTimeoutError(method, timeout_ms)

    def wait_for_event(self, method: str, timeout_ms: int | None = None) -> dict:
        """Block until an event named *method* arrives; return its ``params``.

        Raises CommandTimeoutError (kind="event") on deadline.
        """
        if timeout_ms is None:
            timeout_ms = self.page_load_timeout_ms

        for event in list(self._events):
            if event.get("method") == method:
                self._events.remove(event)
                return event.get("params") or {}

        deadline = time.monotonic() + timeout_ms / 1000
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            data = self._receive_message(min(_POLL_INTERVAL_S, remaining))
            if data is None:
                continue
            if data.get("method") == method:
                return data.get("params") or {}

        raise CommandTimeoutError(method, timeout_ms, kind="event")

    # -- Capabilities --

    def enable_domains(self) -> None:
        """Page, CSS and Runtime must be enabled before navigation, coverage or evaluation."""
        self.call("Page.enable")
        self.call("CSS.enable")
        self.call("Runtime.enable")

    def set_viewport(self, width: int, height: int) -> None:
        """Override the viewport; ``mobile`` (touch + mobile UA) is set for widths <= 768."""
        self.call(
            "Emulation.setDeviceMetricsOverride",
            {
                "width": width,
                "height": height,
                "deviceScaleFactor": 1,
                "mobile": width <= _MOBILE_MAX_WIDTH,
                "screenWidth": width,
                "screenHeight": height,
            },
        )

    def start_coverage(self) -> None:
        if self._coverage_active:
            raise CoverageStateError("CSS rule usage tracking is already running")
        self.call("CSS.startRuleUsageTracking")
        self._coverage_active = True

    def navigate(self, url: str) -> None:
        """Start CSS coverage, navigate to *url* and block until ``Page.loadEventFired``."""
        self.start_coverage()
        # Only load events caused by this navigation may satisfy the wait below.
        self._events.clear()
        self.call("Page.navigate", {"url": url})
        self.wait_for_event("Page.loadEventFired")
        logger.debug("Loaded %s", url)

    def get_coverage_and_stop(self) -> list[CoverageRange]:
        """Stop CSS coverage and return the collected rule usage."""
        if not self._coverage_active:
            raise CoverageStateError("CSS rule usage tracking was not started")
        self._coverage_active = False
        result = self.call("CSS.stopRuleUsageTracking")
        return [CoverageRange.from_cdp(r) for r in result.get("ruleUsage", []) if isinstance(r, dict)]

    def get_stylesheet_text(self, style_sheet_id: str) -> str:
        result = self.call("CSS.getStyleSheetText", {"styleSheetId": style_sheet_id})
        text = result.get("text", "")
        return text if isinstance(text, str) else ""

    def evaluate(self, expression: str, default: Any = None) -> Any:
        """Evaluate *expression* with ``returnByValue`` and decode a JSON string result.

        Scripts return ``JSON.stringify(...)``; anything that does not decode
        yields *default* instead of raising.
        """
        result = self.call("Runtime.evaluate", {"expression": expression, "returnByValue": True})
        remote = result.get("result")
        value = remote.get("value") if isinstance(remote, dict) else None
        if value is None:
            return default
        if not isinstance(value, str):
            return value
        try:
            return json.loads(value)
        except ValueError:
            logger.debug("Runtime.evaluate returned non-JSON value (%d chars)", len(value))
            return default
