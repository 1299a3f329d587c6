# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures.

No test launches a real Chromium: sessions talk to ``FakeTransport``, whose
replies come from a scripted ``FakeBrowser``.
"""

try:
    import critical_assets  # noqa: F401
except ImportError:
    raise ImportError("critical_assets is not installed. Run: pip install -e '.[dev]'") from None

import json
import time
from collections import deque

import pytest

from critical_assets.cdp_client import CdpSession

# ---------------------------------------------------------------------------
# Fake DevTools endpoint
# ---------------------------------------------------------------------------

DEFAULT_STYLESHEET = "@media (min-width: 768px){.grid{display:grid}}\ndiv.hero{color:red}\n.footer{color:blue}"


def rule_offsets(text: str, rule: str) -> tuple[int, int]:
    start = text.index(rule)
    return start, start + len(rule)


class FakeTransport:
    """In-process stand-in for WebSocketTransport.

    Every sent command is decoded and handed to *responder*, which returns
    the messages the "browser" answers with.
    """

    def __init__(self, responder=None):
        self.responder = responder
        self.sent: list[dict] = []
        self.inbox: deque[bytes] = deque()
        self.close_calls = 0

    def push(self, message) -> None:
        self.inbox.append(message if isinstance(message, bytes) else json.dumps(message).encode())

    def send(self, payload: bytes) -> None:
        msg = json.loads(payload)
        self.sent.append(msg)
        if self.responder is not None:
            for reply in self.responder(msg) or []:
                self.push(reply)

    def receive(self, timeout: float) -> bytes:
        if self.inbox:
            return self.inbox.popleft()
        time.sleep(min(timeout, 0.005))
        return b""

    def close(self) -> None:
        self.close_calls += 1

    @property
    def methods(self) -> list[str]:
        return [m["method"] for m in self.sent]


class FakeBrowser:
    """Scripted CDP responder modelling one page with one stylesheet.

    ``tokens_by_width`` maps viewport width to the tokens the page reports
    above the fold; ``scripts`` is what the inline script collector returns.
    Methods outside ``METHODS`` get the -32601 error Chromium sends for
    methods it does not implement.
    """

    METHODS = frozenset(
        {
            "Page.enable",
            "CSS.enable",
            "Runtime.enable",
            "Emulation.setDeviceMetricsOverride",
            "CSS.startRuleUsageTracking",
            "Page.navigate",
            "CSS.stopRuleUsageTracking",
            "CSS.getStyleSheetText",
            "Runtime.evaluate",
            "Browser.close",
        }
    )

    def __init__(
        self,
        *,
        stylesheet: str = DEFAULT_STYLESHEET,
        tokens_by_width: dict[int, list[str]] | None = None,
        scripts: list[str] | None = None,
        fail_method: str | None = None,
    ):
        self.stylesheet = stylesheet
        self.tokens_by_width = tokens_by_width or {}
        self.scripts = scripts if scripts is not None else ["window.__init=1"]
        self.fail_method = fail_method
        self.width = 0
        self.text_fetches = 0
        self.navigations: list[str] = []

    def _usage(self) -> list[dict]:
        # One rule per line, all used.
        ranges = []
        for rule in filter(None, self.stylesheet.split("\n")):
            start, end = rule_offsets(self.stylesheet, rule)
            ranges.append({"styleSheetId": "s1", "startOffset": start, "endOffset": end, "used": True})
        return ranges

    def __call__(self, msg: dict) -> list[dict]:
        method = msg["method"]
        params = msg.get("params", {})
        reply = {"id": msg["id"], "result": {}}

        if method not in self.METHODS:
            return [{"id": msg["id"], "error": {"code": -32601, "message": f"'{method}' wasn't found"}}]
        if method == self.fail_method:
            return [{"id": msg["id"], "error": {"code": -32000, "message": f"{method} failed"}}]
        if method == "Emulation.setDeviceMetricsOverride":
            self.width = params["width"]
        elif method == "Page.navigate":
            self.navigations.append(params["url"])
            reply["result"] = {"frameId": "F1"}
            return [reply, {"method": "Page.loadEventFired", "params": {"timestamp": 1.0}}]
        elif method == "CSS.stopRuleUsageTracking":
            reply["result"] = {"ruleUsage": self._usage()}
        elif method == "CSS.getStyleSheetText":
            self.text_fetches += 1
            reply["result"] = {"text": self.stylesheet}
        elif method == "Runtime.evaluate":
            expression = params["expression"]
            if "script:not([src])" in expression:
                value = json.dumps(self.scripts)
            else:
                value = json.dumps(["html", "body", "div", *self.tokens_by_width.get(self.width, [])])
            reply["result"] = {"result": {"type": "string", "value": value}}
        elif method == "Browser.close":
            return []
        return [reply]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def fake_browser():
    return FakeBrowser(tokens_by_width={375: ["div.hero", ".hero"], 1440: ["div.hero", ".hero", ".footer"]})


@pytest.fixture
def make_session():
    """Factory: ``make_session(responder)`` -> started-able CdpSession on a FakeTransport."""

    def _make(responder=None, *, page_load_timeout_ms: int = 1000) -> CdpSession:
        transport = FakeTransport(responder)
        return CdpSession("", 100, page_load_timeout_ms, transport=transport)

    return _make


@pytest.fixture(autouse=True)
def _no_close_grace(monkeypatch):
    """Skip the Browser.close grace sleep in unit tests."""
    monkeypatch.setattr("critical_assets.cdp_client._CLOSE_GRACE_S", 0)
