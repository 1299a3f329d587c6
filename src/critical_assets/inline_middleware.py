# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Critical asset inlining middleware: cached CSS/JS injected before ``</head>``.

Standalone leaf module; reads the cache through ``CriticalAssetService``.

Design choices:

- **Pure ASGI**: only ``text/html`` responses are buffered; everything
  else streams through untouched.
- **Media-scoped styles**: mobile CSS under ``(max-width: 767px)``,
  desktop CSS under ``(min-width: 768px)``, so one document serves both.
- **One script**: mobile JS preferred, desktop JS as fallback.
- **CSP nonce**: read from ``scope["state"]["csp_nonce"]`` when an outer
  middleware set one.
- Cold cache, unresolved page, compressed body or missing ``</head>``
  leave the response byte-identical.
"""

from __future__ import annotations

import html
import logging
import re
from collections.abc import Callable
from typing import NamedTuple

from .service import CriticalAssetService

logger = logging.getLogger(__name__)

# ── Constants ──────────────────────────────────────────────────────────

MOBILE_MEDIA = "screen and (max-width: 767px)"
DESKTOP_MEDIA = "screen and (min-width: 768px)"

_HEAD_CLOSE = re.compile(rb"</head\s*>", re.IGNORECASE)


class PageRef(NamedTuple):
    """Which cached page a request renders."""

    page_id: int
    language_id: int = 0
    workspace_id: int = 0


PageResolver = Callable[[dict], PageRef | None]

# ── Helpers ────────────────────────────────────────────────────────────


def build_injection(
    mobile_css: str | None,
    desktop_css: str | None,
    mobile_js: str | None,
    desktop_js: str | None,
    *,
    nonce: str | None = None,
) -> str:
    """Markup to insert before ``</head>``; ``""`` when nothing is cached."""
    nonce_attr = f' nonce="{html.escape(nonce, quote=True)}"' if nonce else ""
    parts: list[str] = []
    if mobile_css:
        parts.append(f'<style media="{MOBILE_MEDIA}"{nonce_attr}>{mobile_css}</style>')
    if desktop_css:
        parts.append(f'<style media="{DESKTOP_MEDIA}"{nonce_attr}>{desktop_css}</style>')
    js = mobile_js or desktop_js
    if js:
        parts.append(f"<script{nonce_attr}>{js}</script>")
    return "".join(parts)


def inject_before_head_close(body: bytes, injection: str) -> bytes | None:
    """Insert *injection* before the first ``</head>``; None if there is none."""
    if not injection:
        return None
    match = _HEAD_CLOSE.search(body)
    if match is None:
        return None
    pos = match.start()
    return body[:pos] + injection.encode("utf-8") + body[pos:]


def _header(headers: list[tuple[bytes, bytes]], name: bytes) -> bytes:
    for key, value in headers:
        if key.lower() == name:
            return value
    return b""


def _is_plain_html(headers: list[tuple[bytes, bytes]]) -> bool:
    content_type = _header(headers, b"content-type").lower()
    encoding = _header(headers, b"content-encoding").lower()
    return content_type.startswith(b"text/html") and encoding in (b"", b"identity")


def _nonce(scope: dict) -> str | None:
    nonce = scope.get("state", {}).get("csp_nonce")
    return nonce if isinstance(nonce, str) and nonce else None


# ── ASGI Middleware ────────────────────────────────────────────────────


class CriticalAssetsInlineMiddleware:
    """Pure ASGI middleware inlining cached critical assets into HTML responses.

    *resolve_page* maps the request scope to a ``PageRef`` (or None to skip).
    """

    def __init__(self, app, service: CriticalAssetService, resolve_page: PageResolver) -> None:
        self.app = app
        self.service = service
        self.resolve_page = resolve_page

    def _injection_for(self, ref: PageRef, nonce: str | None) -> str:
        svc = self.service
        return build_injection(
            svc.get_critical_css(ref.page_id, "mobile", ref.language_id, ref.workspace_id),
            svc.get_critical_css(ref.page_id, "desktop", ref.language_id, ref.workspace_id),
            svc.get_critical_js(ref.page_id, "mobile", ref.language_id, ref.workspace_id),
            svc.get_critical_js(ref.page_id, "desktop", ref.language_id, ref.workspace_id),
            nonce=nonce,
        )

    async def __call__(self, scope, receive, send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        ref = self.resolve_page(scope)
        if ref is None:
            await self.app(scope, receive, send)
            return

        start_message: dict | None = None
        chunks: list[bytes] = []
        passthrough = False

        async def _send_with_inlining(message) -> None:
            nonlocal start_message, passthrough
            if passthrough:
                await send(message)
                return

            if message["type"] == "http.response.start":
                if not _is_plain_html(list(message.get("headers", []))):
                    passthrough = True
                    await send(message)
                    return
                start_message = message
                return

            if message["type"] != "http.response.body" or start_message is None:
                await send(message)
                return

            chunks.append(message.get("body", b""))
            if message.get("more_body", False):
                return

            body = b"".join(chunks)
            modified = inject_before_head_close(body, self._injection_for(ref, _nonce(scope)))
            headers = list(start_message.get("headers", []))
            if modified is not None:
                body = modified
                headers = [(k, v) for k, v in headers if k.lower() != b"content-length"]
                headers.append((b"content-length", str(len(body)).encode("latin-1")))
                logger.debug("Inlined critical assets: page=%d bytes=%d", ref.page_id, len(body))
            await send({**start_message, "headers": headers})
            await send({"type": "http.response.body", "body": body, "more_body": False})

        await self.app(scope, receive, _send_with_inlining)
