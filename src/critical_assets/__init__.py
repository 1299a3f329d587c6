# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Critical assets: above-the-fold CSS and inline JS extraction per page and viewport.

Drives a headless Chromium over a hand-rolled Chrome DevTools Protocol client and
stores the result in a tagged cache so it can be inlined into ``<head>`` later:
- css: used stylesheet rules that target elements visible without scrolling
- js: small synchronous inline scripts from ``<head>`` or the first screen
"""

from __future__ import annotations

from dataclasses import dataclass

__version__ = "0.3.0"


@dataclass(frozen=True, slots=True)
class Viewport:
    """A named device class used for emulation and cache keys."""

    name: str  # "mobile", "desktop", ...
    width: int  # CSS pixels
    height: int  # CSS pixels

    @property
    def is_mobile(self) -> bool:
        # Emulation.setDeviceMetricsOverride mobile flag (touch + mobile UA)
        return self.width <= 768

    def __str__(self) -> str:
        return f"{self.name} ({self.width}x{self.height})"


MOBILE = Viewport("mobile", 375, 667)
DESKTOP = Viewport("desktop", 1440, 900)
DEFAULT_VIEWPORTS: tuple[Viewport, ...] = (MOBILE, DESKTOP)


@dataclass(frozen=True, slots=True)
class CoverageRange:
    """One entry of ``CSS.stopRuleUsageTracking`` ruleUsage."""

    style_sheet_id: str
    start: int  # startOffset into the stylesheet text
    end: int  # endOffset (exclusive)
    used: bool

    @classmethod
    def from_cdp(cls, raw: dict) -> CoverageRange:
        return cls(
            style_sheet_id=str(raw.get("styleSheetId", "")),
            start=int(raw.get("startOffset", 0)),
            end=int(raw.get("endOffset", 0)),
            used=bool(raw.get("used", False)),
        )


@dataclass(slots=True)
class ExtractionResult:
    """Critical CSS/JS for one page/viewport pair (after the post-extraction hook)."""

    page_id: int
    viewport_name: str
    css: str
    js: str
    language_id: int = 0
    workspace_id: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.css and not self.js


__all__ = [
    "DEFAULT_VIEWPORTS",
    "DESKTOP",
    "MOBILE",
    "CoverageRange",
    "ExtractionResult",
    "Viewport",
    "__version__",
]
