# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Critical asset cache: key/tag scheme, store protocol and in-memory store.

Pure Python module, no browser dependencies.

Every extracted viewport result is stored under two independent keys (CSS
and JS), each derived from page id + viewport name + language + workspace.
Entries carry tags so a page (optionally narrowed by language/workspace) or
everything can be flushed at once.

NOTE: stores are not thread-safe. Extraction is single-threaded; readers in
a server process should use one store per worker.
"""

from __future__ import annotations

import hashlib
import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

CRITICAL_TAG = "critical_assets"
CSS_KEY_PREFIX = "critical_css_"
JS_KEY_PREFIX = "critical_js_"


# ---------------------------------------------------------------------------
# Keys and tags
# ---------------------------------------------------------------------------


def _entry_hash(page_id: int, viewport: str, language_id: int, workspace_id: int) -> str:
    raw = f"{page_id}|{viewport}|{language_id}|{workspace_id}"
    return hashlib.sha1(raw.encode("utf-8"), usedforsecurity=False).hexdigest()


def build_critical_css_key(page_id: int, viewport: str, language_id: int = 0, workspace_id: int = 0) -> str:
    """``critical_css_<sha1(page|viewport|language|workspace)>``."""
    return CSS_KEY_PREFIX + _entry_hash(page_id, viewport, language_id, workspace_id)


def build_critical_js_key(page_id: int, viewport: str, language_id: int = 0, workspace_id: int = 0) -> str:
    """``critical_js_<sha1(page|viewport|language|workspace)>``."""
    return JS_KEY_PREFIX + _entry_hash(page_id, viewport, language_id, workspace_id)


def page_tag(page_id: int, language_id: int | None = None, workspace_id: int | None = None) -> str:
    """Tag for a page, optionally narrowed to one language and/or workspace."""
    tag = f"{CRITICAL_TAG}_p{page_id}"
    if language_id is not None:
        tag += f"_l{language_id}"
    if workspace_id is not None:
        tag += f"_w{workspace_id}"
    return tag


def build_page_tags(page_id: int, language_id: int = 0, workspace_id: int = 0) -> list[str]:
    """All tags an entry for this page/language/workspace carries."""
    return [
        CRITICAL_TAG,
        page_tag(page_id),
        page_tag(page_id, language_id),
        page_tag(page_id, workspace_id=workspace_id),
        page_tag(page_id, language_id, workspace_id),
    ]


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class CacheStoreProtocol(Protocol):
    """Tag-aware key/value store, in-memory or SQLite."""

    def has(self, key: str) -> bool: ...

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str, tags: Iterable[str] = (), lifetime: int = 0) -> None: ...

    def flush_by_tag(self, tag: str) -> int: ...


# ---------------------------------------------------------------------------
# Cache stats (observability)
# ---------------------------------------------------------------------------


@dataclass
class CacheStats:
    """Counters for cache behaviour, used for logging and CLI output."""

    hits: int = 0
    misses: int = 0
    writes: int = 0
    expirations: int = 0
    flushed: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------


@dataclass
class _Entry:
    value: str
    tags: frozenset[str]
    expires_at: float | None = None  # time.monotonic()

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


@dataclass
class InMemoryCacheStore:
    """Dict-backed store for tests and single-process use.

    ``lifetime`` is in seconds; 0 means the entry never expires.
    """

    _entries: dict[str, _Entry] = field(default_factory=dict)
    _stats: CacheStats = field(default_factory=CacheStats)

    def _live(self, key: str) -> _Entry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(time.monotonic()):
            del self._entries[key]
            self._stats.expirations += 1
            logger.debug("Cache entry expired: %s", key)
            return None
        return entry

    def has(self, key: str) -> bool:
        return self._live(key) is not None

    def get(self, key: str) -> str | None:
        entry = self._live(key)
        if entry is None:
            self._stats.misses += 1
            return None
        self._stats.hits += 1
        return entry.value

    def set(self, key: str, value: str, tags: Iterable[str] = (), lifetime: int = 0) -> None:
        expires_at = time.monotonic() + lifetime if lifetime > 0 else None
        self._entries[key] = _Entry(value=value, tags=frozenset(tags), expires_at=expires_at)
        self._stats.writes += 1

    def flush_by_tag(self, tag: str) -> int:
        """Remove every entry carrying *tag*; return how many were removed."""
        doomed = [k for k, e in self._entries.items() if tag in e.tags]
        for key in doomed:
            del self._entries[key]
        self._stats.flushed += len(doomed)
        logger.debug("Cache flush: tag=%s removed=%d", tag, len(doomed))
        return len(doomed)

    @property
    def stats(self) -> CacheStats:
        return self._stats

    def __len__(self) -> int:
        return len(self._entries)
