# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for critical_assets.chromium: launch flags, binary checks, readiness and tab creation."""

from __future__ import annotations

import io
import json
import os
import subprocess
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from critical_assets.chromium import (
    DEBUG_PORT_RANGE,
    ChromiumProcess,
    chromium_launch_args,
    detect_chromium,
    random_debug_port,
    validate_binary,
)
from critical_assets.errors import ConfigurationError, ProtocolError, StartupTimeoutError

# ── Helpers ──────────────────────────────────────────────────────────


def _response(body: bytes):
    resp = MagicMock()
    resp.read.return_value = body
    resp.__enter__.return_value = resp
    resp.__exit__.return_value = False
    return resp


def _http_error(code: int) -> urllib.error.HTTPError:
    return urllib.error.HTTPError("http://127.0.0.1/json/new", code, "err", {}, io.BytesIO(b""))


@pytest.fixture
def fake_binary(tmp_path):
    path = tmp_path / "chromium"
    path.write_text("#!/bin/sh\nexit 0\n")
    path.chmod(0o755)
    return str(path)


# ── Launch arguments ─────────────────────────────────────────────────


class TestLaunchArgs:
    def test_headless_and_debug_flags(self):
        args = chromium_launch_args(9222)
        assert "--headless=new" in args
        assert "--no-sandbox" in args
        assert "--disable-gpu" in args
        assert "--disable-extensions" in args
        assert "--disable-background-networking" in args
        assert "--remote-debugging-port=9222" in args
        assert "--remote-debugging-address=127.0.0.1" in args
        assert args[-1] == "about:blank"

    def test_random_port_in_range(self):
        for _ in range(50):
            assert DEBUG_PORT_RANGE[0] <= random_debug_port() <= DEBUG_PORT_RANGE[1]


# ── Binary validation / detection ────────────────────────────────────


class TestBinary:
    def test_empty_path(self):
        with pytest.raises(ConfigurationError, match="not configured"):
            validate_binary("")

    def test_missing_path(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            validate_binary(str(tmp_path / "nope"))

    @pytest.mark.skipif(os.geteuid() == 0, reason="root can execute any file")
    def test_not_executable(self, tmp_path):
        path = tmp_path / "chromium"
        path.write_text("")
        path.chmod(0o644)
        with pytest.raises(ConfigurationError):
            validate_binary(str(path))

    def test_executable_ok(self, fake_binary):
        validate_binary(fake_binary)

    def test_detect_uses_path_lookup(self):
        with patch("critical_assets.chromium.shutil.which", side_effect=lambda n: "/opt/bin/chromium" if n == "chromium" else None):
            assert detect_chromium() == "/opt/bin/chromium"

    def test_detect_nothing_found(self):
        with (
            patch("critical_assets.chromium.shutil.which", return_value=None),
            patch("critical_assets.chromium.os.path.isfile", return_value=False),
        ):
            assert detect_chromium() == ""


# ── Process lifecycle ────────────────────────────────────────────────


class TestChromiumProcess:
    def test_spawn_passes_flags(self, fake_binary):
        with patch("critical_assets.chromium.subprocess.Popen") as popen:
            proc = ChromiumProcess(fake_binary, port=9444)
            proc.spawn()
        argv = popen.call_args.args[0]
        assert argv[0] == fake_binary
        assert "--remote-debugging-port=9444" in argv

    def test_spawn_os_error_is_configuration_error(self):
        with patch("critical_assets.chromium.subprocess.Popen", side_effect=PermissionError("denied")):
            with pytest.raises(ConfigurationError):
                ChromiumProcess("/usr/bin/chromium", port=9444).spawn()

    def test_await_ready_success(self):
        proc = ChromiumProcess("/usr/bin/chromium", port=9444)
        with patch("critical_assets.chromium.urllib.request.urlopen", return_value=_response(b"{}")) as urlopen:
            proc.await_ready(1000)
        assert urlopen.call_args.args[0] == "http://127.0.0.1:9444/json/version"

    def test_await_ready_timeout_names_binary(self):
        proc = ChromiumProcess("/opt/chrome/bin", port=9444)
        with patch("critical_assets.chromium.urllib.request.urlopen", side_effect=urllib.error.URLError("refused")):
            with pytest.raises(StartupTimeoutError) as exc_info:
                proc.await_ready(150)
        assert "/opt/chrome/bin" in str(exc_info.value)
        assert exc_info.value.timeout_ms == 150

    def test_await_ready_stops_when_process_exits(self):
        proc = ChromiumProcess("/usr/bin/chromium", port=9444)
        proc._process = MagicMock()
        proc._process.poll.return_value = 1
        with patch("critical_assets.chromium.urllib.request.urlopen", side_effect=urllib.error.URLError("refused")):
            with pytest.raises(StartupTimeoutError):
                proc.await_ready(60_000)

    def test_open_tab_put(self):
        body = json.dumps({"id": "T", "webSocketDebuggerUrl": "ws://127.0.0.1:9444/devtools/page/T"}).encode()
        proc = ChromiumProcess("/usr/bin/chromium", port=9444)
        with patch("critical_assets.chromium.urllib.request.urlopen", return_value=_response(body)) as urlopen:
            assert proc.open_tab() == "ws://127.0.0.1:9444/devtools/page/T"
        assert urlopen.call_args.args[0].get_method() == "PUT"

    def test_open_tab_falls_back_to_get_on_405(self):
        body = json.dumps({"webSocketDebuggerUrl": "ws://127.0.0.1:9444/devtools/page/T"}).encode()
        proc = ChromiumProcess("/usr/bin/chromium", port=9444)
        with patch(
            "critical_assets.chromium.urllib.request.urlopen",
            side_effect=[_http_error(405), _response(body)],
        ) as urlopen:
            assert proc.open_tab().endswith("/devtools/page/T")
        assert [c.args[0].get_method() for c in urlopen.call_args_list] == ["PUT", "GET"]

    @pytest.mark.parametrize("retry_code", [404, 500])
    def test_open_tab_get_fallback_http_error_is_typed(self, retry_code):
        proc = ChromiumProcess("/usr/bin/chromium", port=9444)
        with patch(
            "critical_assets.chromium.urllib.request.urlopen",
            side_effect=[_http_error(405), _http_error(retry_code)],
        ):
            with pytest.raises(ProtocolError, match=f"HTTP {retry_code}"):
                proc.open_tab()

    def test_open_tab_put_error_is_typed(self):
        proc = ChromiumProcess("/usr/bin/chromium", port=9444)
        with patch("critical_assets.chromium.urllib.request.urlopen", side_effect=_http_error(500)):
            with pytest.raises(ProtocolError, match="HTTP 500"):
                proc.open_tab()

    @pytest.mark.parametrize(
        "body",
        [b"not json", b"[]", b'{"id": "T"}', b'{"webSocketDebuggerUrl": 42}'],
    )
    def test_open_tab_bad_response(self, body):
        proc = ChromiumProcess("/usr/bin/chromium", port=9444)
        with patch("critical_assets.chromium.urllib.request.urlopen", return_value=_response(body)):
            with pytest.raises(ProtocolError):
                proc.open_tab()

    def test_terminate_escalates_to_kill(self):
        proc = ChromiumProcess("/usr/bin/chromium", port=9444)
        popen = MagicMock()
        popen.poll.return_value = None
        popen.wait.side_effect = [subprocess.TimeoutExpired("chromium", 0.01), 0]
        proc._process = popen
        proc.terminate(grace=0.01)
        popen.terminate.assert_called_once()
        popen.kill.assert_called_once()
        assert not proc.is_running

    def test_terminate_never_started(self):
        ChromiumProcess("/usr/bin/chromium", port=9444).terminate()
