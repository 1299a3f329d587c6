# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Critical asset service: extraction orchestration plus cache reads and purges.

``extract_for_page`` owns one CdpSession for its whole duration:

    start -> (set_viewport -> navigate -> extract CSS -> extract JS
              -> hook -> cache) per viewport -> close

The session is closed in a ``finally`` block whatever happens. Viewports
run sequentially in the order given.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

from . import DEFAULT_VIEWPORTS, ExtractionResult, Viewport
from .above_fold import extract_critical_css, extract_critical_js
from .cache import (
    CRITICAL_TAG,
    CacheStoreProtocol,
    build_critical_css_key,
    build_critical_js_key,
    build_page_tags,
    page_tag,
)
from .cdp_client import DEFAULT_CONNECT_TIMEOUT_MS, DEFAULT_PAGE_LOAD_TIMEOUT_MS, CdpSession
from .errors import ConfigurationError
from .events import CriticalAssetsExtracted, EventDispatcher

logger = logging.getLogger(__name__)

SessionFactory = Callable[[str, int, int], CdpSession]


def validate_viewports(viewports: Sequence[Viewport]) -> None:
    """Raise ConfigurationError for an empty list or non-positive dimensions."""
    if not viewports:
        raise ConfigurationError("At least one viewport is required")
    for vp in viewports:
        if vp.width <= 0 or vp.height <= 0:
            raise ConfigurationError(f"Invalid viewport {vp.name}: {vp.width}x{vp.height}")


class CriticalAssetService:
    """Extracts critical CSS/JS per viewport and serves it from the cache."""

    def __init__(
        self,
        cache: CacheStoreProtocol,
        dispatcher: EventDispatcher | None = None,
        *,
        session_factory: SessionFactory = CdpSession,
        lifetime: int = 0,
    ) -> None:
        """
        Args:
            cache: Tag-aware store receiving one CSS and one JS entry per viewport.
            dispatcher: Post-extraction hook; listeners may rewrite css/js.
            session_factory: ``(chromium_bin, connect_timeout_ms, page_load_timeout_ms)``
                -> unstarted session.
            lifetime: Cache lifetime in seconds for every write (0 = unlimited).
        """
        self.cache = cache
        self.dispatcher = dispatcher or EventDispatcher()
        self._session_factory = session_factory
        self.lifetime = lifetime

    # -- Extraction --

    def extract_for_page(
        self,
        page_id: int,
        url: str,
        chromium_bin: str,
        viewports: Sequence[Viewport] = DEFAULT_VIEWPORTS,
        language_id: int = 0,
        workspace_id: int = 0,
        connect_timeout_ms: int = DEFAULT_CONNECT_TIMEOUT_MS,
        page_load_timeout_ms: int = DEFAULT_PAGE_LOAD_TIMEOUT_MS,
    ) -> list[ExtractionResult]:
        """Extract and cache critical assets of *url* for every viewport.

        Returns the per-viewport results (after hook modification) for
        reporting. Empty CSS/JS are returned but not cached.

        Raises:
            ConfigurationError: invalid viewports or unusable binary (before spawn).
            BrowserError: startup, handshake, protocol or timeout failure.
        """
        validate_viewports(viewports)

        results: list[ExtractionResult] = []
        session = self._session_factory(chromium_bin, connect_timeout_ms, page_load_timeout_ms)
        try:
            session.start()
            for vp in viewports:
                results.append(self._extract_viewport(session, vp, page_id, url, language_id, workspace_id))
        finally:
            session.close()

        logger.info(
            "Extracted critical assets: page=%d language=%d viewports=%d",
            page_id,
            language_id,
            len(results),
        )
        return results

    def _extract_viewport(
        self,
        session: CdpSession,
        viewport: Viewport,
        page_id: int,
        url: str,
        language_id: int,
        workspace_id: int,
    ) -> ExtractionResult:
        session.set_viewport(viewport.width, viewport.height)
        session.navigate(url)
        css = extract_critical_css(session, viewport.height)
        js = extract_critical_js(session, viewport.height)

        event = self.dispatcher.dispatch(
            CriticalAssetsExtracted(
                page_id=page_id,
                viewport=viewport.name,
                css=css,
                js=js,
                language_id=language_id,
                workspace_id=workspace_id,
            )
        )

        tags = build_page_tags(page_id, language_id, workspace_id)
        if event.css:
            key = build_critical_css_key(page_id, viewport.name, language_id, workspace_id)
            self.cache.set(key, event.css, tags, self.lifetime)
        if event.js:
            key = build_critical_js_key(page_id, viewport.name, language_id, workspace_id)
            self.cache.set(key, event.js, tags, self.lifetime)

        logger.debug(
            "Viewport %s: css=%d bytes js=%d bytes",
            viewport.name,
            len(event.css),
            len(event.js),
        )
        return ExtractionResult(
            page_id=page_id,
            viewport_name=viewport.name,
            css=event.css,
            js=event.js,
            language_id=language_id,
            workspace_id=workspace_id,
        )

    # -- Cache reads --

    def get_critical_css(self, page_id: int, viewport: str, language_id: int = 0, workspace_id: int = 0) -> str | None:
        """Cached critical CSS, or None on a cold cache."""
        return self.cache.get(build_critical_css_key(page_id, viewport, language_id, workspace_id))

    def get_critical_js(self, page_id: int, viewport: str, language_id: int = 0, workspace_id: int = 0) -> str | None:
        """Cached critical JS, or None on a cold cache."""
        return self.cache.get(build_critical_js_key(page_id, viewport, language_id, workspace_id))

    # -- Invalidation --

    def purge_page(self, page_id: int, language_id: int | None = None, workspace_id: int | None = None) -> int:
        """Flush a page's entries, optionally only one language and/or workspace."""
        removed = self.cache.flush_by_tag(page_tag(page_id, language_id, workspace_id))
        logger.info("Purged critical assets: page=%d removed=%d", page_id, removed or 0)
        return removed

    def purge_all(self) -> int:
        removed = self.cache.flush_by_tag(CRITICAL_TAG)
        logger.info("Purged all critical assets: removed=%d", removed or 0)
        return removed
