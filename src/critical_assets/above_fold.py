# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Above-the-fold analysis: which CSS rules and inline scripts matter for first paint.

Three steps per viewport pass, after navigation:
1. Token collection (injected JS): tag / #id / .class / tag.class of every
   element whose box overlaps the viewport vertically.
2. Rule filtering (host side): used coverage ranges are sliced out of their
   stylesheet text and kept when they are at-rules, root/universal/pseudo
   rules, or their selector contains a collected token as a substring.
3. Inline script collection (injected JS): small synchronous inline scripts
   in ``<head>`` or overlapping the viewport, minus tracking snippets.

The selector match is a plain substring test (``.nav`` also keeps
``.navigation-wrapper``).

Malformed evaluate results degrade to an empty token set / script list.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from typing import Any, Protocol

from . import CoverageRange

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ALWAYS_TOKENS: frozenset[str] = frozenset(
    {"html", "body", "*", ":root", "::before", "::after", "::placeholder", "::selection"}
)

MAX_INLINE_SCRIPT_CHARS = 30_000

# Mirrored in _CRITICAL_JS_JS (JS regex literal).
TRACKING_PATTERN = re.compile(r"gtag|ga\(|fbq|analytics|dataLayer", re.IGNORECASE)

_ALWAYS_KEEP_SELECTOR = re.compile(r"^(html|body|\*|:root|::?[a-z])", re.IGNORECASE)

# ---------------------------------------------------------------------------
# Injected scripts: IIFEs taking the viewport height, returning JSON strings
# ---------------------------------------------------------------------------

_TOKENS_JS = """(function(vh) {
  var t = new Set(["html", "body", "*", ":root", "::before", "::after", "::placeholder", "::selection"]);
  document.querySelectorAll("*").forEach(function(el) {
    var r = el.getBoundingClientRect();
    if (r.top < vh && r.bottom >= 0) {
      var tag = el.tagName.toLowerCase();
      t.add(tag);
      if (el.id) { t.add("#" + el.id); }
      el.classList.forEach(function(c) {
        t.add("." + c);
        t.add(tag + "." + c);
      });
    }
  });
  return JSON.stringify(Array.from(t));
})(%d)"""

_CRITICAL_JS_JS = """(function(vh) {
  var out = [];
  document.querySelectorAll('script:not([src]):not([type="module"])').forEach(function(el) {
    var r = el.getBoundingClientRect();
    var content = (el.textContent || "").trim();
    var inHead = !!el.closest("head");
    var aboveFold = r.top < vh && r.bottom >= 0;
    if ((inHead || aboveFold) && content.length > 0 && content.length < %d) {
      if (!/gtag|ga\\(|fbq|analytics|dataLayer/i.test(content)) {
        out.push(content);
      }
    }
  });
  return JSON.stringify(out);
})(%d)"""


class AnalyzerSession(Protocol):
    """The CdpSession capabilities the analyzer uses."""

    def evaluate(self, expression: str, default: Any = None) -> Any: ...

    def get_coverage_and_stop(self) -> list[CoverageRange]: ...

    def get_stylesheet_text(self, style_sheet_id: str) -> str: ...


# ---------------------------------------------------------------------------
# Pure filtering
# ---------------------------------------------------------------------------


def rule_is_above_fold(rule_text: str, tokens: Iterable[str]) -> bool:
    """True when *rule_text* should be kept as critical CSS.

    Order: at-rules always; html/body/*/:root/pseudo rules always; otherwise
    any token occurring in the selector (text before the first ``{``).
    """
    trimmed = rule_text.lstrip()
    if trimmed.startswith("@"):
        return True
    if _ALWAYS_KEEP_SELECTOR.match(trimmed):
        return True
    selector = rule_text.split("{", 1)[0]
    return any(token and token in selector for token in tokens)


def select_critical_rules(
    usage: Iterable[CoverageRange],
    fetch_text: Callable[[str], str],
    tokens: Iterable[str],
) -> list[str]:
    """Slice used rules out of their stylesheets and keep the above-fold ones.

    Each stylesheet with at least one used range is fetched exactly once.
    Output order: stylesheets in the order they first appear in *usage*,
    then coverage order within a sheet.
    """
    used_by_sheet: dict[str, list[CoverageRange]] = {}
    for rng in usage:
        if rng.used:
            used_by_sheet.setdefault(rng.style_sheet_id, []).append(rng)
    if not used_by_sheet:
        return []

    token_list = [t for t in set(tokens) if t]
    rules: list[str] = []
    for sheet_id, ranges in used_by_sheet.items():
        text = fetch_text(sheet_id)
        if not text:
            continue
        for rng in ranges:
            rule = text[rng.start : rng.end].strip()
            if rule and rule_is_above_fold(rule, token_list):
                rules.append(rule)
    return rules


# ---------------------------------------------------------------------------
# Browser-side passes
# ---------------------------------------------------------------------------


def collect_above_fold_tokens(session: AnalyzerSession, viewport_height: int) -> frozenset[str]:
    """Selector tokens of every element overlapping the first *viewport_height* pixels."""
    raw = session.evaluate(_TOKENS_JS % int(viewport_height), default=[])
    if not isinstance(raw, list):
        logger.debug("Token collection returned %s, using empty set", type(raw).__name__)
        return frozenset()
    return frozenset(t for t in raw if isinstance(t, str) and t)


def extract_critical_css(session: AnalyzerSession, viewport_height: int) -> str:
    """Critical CSS for the current page. Stops the running coverage pass.

    Tokens are collected before coverage is stopped so both reflect the
    same loaded document.
    """
    tokens = collect_above_fold_tokens(session, viewport_height)
    usage = session.get_coverage_and_stop()
    if not any(r.used for r in usage):
        return ""

    rules = select_critical_rules(usage, session.get_stylesheet_text, tokens)
    logger.debug(
        "Critical CSS: tokens=%d ranges=%d sheets=%d kept=%d",
        len(tokens),
        len(usage),
        len({r.style_sheet_id for r in usage if r.used}),
        len(rules),
    )
    return "\n".join(rules)


def extract_critical_js(session: AnalyzerSession, viewport_height: int) -> str:
    """Synchronous inline scripts from ``<head>`` or the first screen, in DOM order."""
    raw = session.evaluate(_CRITICAL_JS_JS % (MAX_INLINE_SCRIPT_CHARS, int(viewport_height)), default=[])
    if not isinstance(raw, list):
        logger.debug("Inline script collection returned %s, using empty list", type(raw).__name__)
        return ""
    scripts = [s for s in raw if isinstance(s, str) and s and not is_tracking_script(s)]
    return "\n".join(scripts)


def is_tracking_script(content: str) -> bool:
    """Host-side copy of the in-page tracking denylist."""
    return TRACKING_PATTERN.search(content) is not None
