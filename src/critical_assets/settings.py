# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Extraction settings and the YAML sites file.

Precedence: explicit CLI flags > ``CRITICAL_ASSETS_*`` environment > defaults.

Sites file format::

    sites:
      main:
        languages: [0, 1]
        pages:
          - uid: 1
            urls: {0: https://example.com/, 1: https://example.com/de/}
          - uid: 12
            url: https://example.com/about      # language 0 only
"""

from __future__ import annotations

import os
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path

from . import DESKTOP, MOBILE, Viewport
from .cache_sqlite import DEFAULT_DB_PATH
from .cdp_client import DEFAULT_CONNECT_TIMEOUT_MS, DEFAULT_PAGE_LOAD_TIMEOUT_MS
from .errors import ConfigurationError

ENV_CHROMIUM_BIN = "CRITICAL_ASSETS_CHROMIUM_BIN"
ENV_DB_PATH = "CRITICAL_ASSETS_DB_PATH"
ENV_CONNECT_TIMEOUT = "CRITICAL_ASSETS_CONNECT_TIMEOUT"
ENV_PAGE_TIMEOUT = "CRITICAL_ASSETS_PAGE_TIMEOUT"
ENV_CACHE_TTL = "CRITICAL_ASSETS_CACHE_TTL"


# ---------------------------------------------------------------------------
# Extraction settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ExtractSettings:
    """Everything one ``extract`` run needs besides the page list."""

    chromium_bin: str = ""
    viewports: tuple[Viewport, ...] = (MOBILE, DESKTOP)
    connect_timeout_ms: int = DEFAULT_CONNECT_TIMEOUT_MS
    page_load_timeout_ms: int = DEFAULT_PAGE_LOAD_TIMEOUT_MS
    workspace_id: int = 0
    db_path: str = DEFAULT_DB_PATH
    cache_ttl: int = 0

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> ExtractSettings:
        """Defaults overlaid with ``CRITICAL_ASSETS_*`` variables.

        Raises ConfigurationError for non-integer numeric variables.
        """
        env = os.environ if env is None else env
        settings = cls()
        overrides: dict[str, object] = {}
        if env.get(ENV_CHROMIUM_BIN):
            overrides["chromium_bin"] = env[ENV_CHROMIUM_BIN]
        if env.get(ENV_DB_PATH):
            overrides["db_path"] = env[ENV_DB_PATH]
        for var, attr in (
            (ENV_CONNECT_TIMEOUT, "connect_timeout_ms"),
            (ENV_PAGE_TIMEOUT, "page_load_timeout_ms"),
            (ENV_CACHE_TTL, "cache_ttl"),
        ):
            if env.get(var):
                overrides[attr] = _env_int(var, env[var])
        return replace(settings, **overrides) if overrides else settings

    def with_overrides(self, **overrides: object) -> ExtractSettings:
        """Copy with every non-None override applied."""
        applied = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **applied) if applied else self

    def as_rows(self) -> list[tuple[str, str]]:
        """(setting, value) pairs for the CLI settings table."""
        return [
            ("Chromium", self.chromium_bin or "(not found)"),
            *((f"Viewport {vp.name}", f"{vp.width}x{vp.height}") for vp in self.viewports),
            ("Connect timeout", f"{self.connect_timeout_ms} ms"),
            ("Page load timeout", f"{self.page_load_timeout_ms} ms"),
            ("Workspace", str(self.workspace_id)),
            ("Cache database", self.db_path),
            ("Cache lifetime", f"{self.cache_ttl} s" if self.cache_ttl else "unlimited"),
        ]


def _env_int(name: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None


# ---------------------------------------------------------------------------
# Sites file
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SitePage:
    """A page id with its URL per language."""

    uid: int
    urls: dict[int, str] = field(default_factory=dict)

    def url_for(self, language_id: int) -> str | None:
        return self.urls.get(language_id)


@dataclass(frozen=True, slots=True)
class Site:
    site_id: str
    languages: tuple[int, ...] = (0,)
    pages: tuple[SitePage, ...] = ()

    def iter_units(self, page_ids: set[int] | None = None) -> Iterator[tuple[SitePage, int, str]]:
        """(page, language_id, url) for every page/language pair with a URL.

        Pages lacking a URL for a language are skipped for that language.
        """
        for page in self.pages:
            if page_ids is not None and page.uid not in page_ids:
                continue
            for language_id in self.languages:
                url = page.url_for(language_id)
                if url:
                    yield page, language_id, url


def _parse_page(site_id: str, raw: object) -> SitePage:
    if not isinstance(raw, dict) or "uid" not in raw:
        raise ConfigurationError(f"Site {site_id!r}: every page needs a 'uid'")
    try:
        uid = int(raw["uid"])
    except (TypeError, ValueError):
        raise ConfigurationError(f"Site {site_id!r}: invalid page uid {raw['uid']!r}") from None

    urls: dict[int, str] = {}
    if isinstance(raw.get("urls"), dict):
        for lang, url in raw["urls"].items():
            try:
                urls[int(lang)] = str(url)
            except (TypeError, ValueError):
                raise ConfigurationError(f"Site {site_id!r}, page {uid}: invalid language id {lang!r}") from None
    elif raw.get("url"):
        urls[0] = str(raw["url"])
    else:
        raise ConfigurationError(f"Site {site_id!r}, page {uid}: 'url' or 'urls' is required")
    return SitePage(uid=uid, urls=urls)


def parse_sites(config: object) -> dict[str, Site]:
    """Validate a loaded sites document and build ``Site`` objects keyed by id."""
    if not isinstance(config, dict) or not isinstance(config.get("sites"), dict):
        raise ConfigurationError("Sites file must contain a 'sites' mapping")

    sites: dict[str, Site] = {}
    for site_id, raw in config["sites"].items():
        raw = raw or {}
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Site {site_id!r} must be a mapping")
        try:
            languages = tuple(int(lang) for lang in raw.get("languages", [0]))
        except (TypeError, ValueError):
            raise ConfigurationError(f"Site {site_id!r}: languages must be integers") from None
        pages = tuple(_parse_page(str(site_id), p) for p in raw.get("pages", []) or [])
        sites[str(site_id)] = Site(site_id=str(site_id), languages=languages or (0,), pages=pages)
    return sites


def load_sites(path: str | Path) -> dict[str, Site]:
    """Read and parse a YAML sites file (requires the ``cli`` extra)."""
    import yaml

    path = Path(path).expanduser()
    try:
        with open(path, encoding="utf-8") as f:
            config = yaml.safe_load(f)
    except OSError as exc:
        raise ConfigurationError(f"Cannot read sites file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in sites file {path}: {exc}") from exc
    return parse_sites(config)


def parse_page_ids(raw: str | None) -> set[int] | None:
    """``"1,12"`` -> ``{1, 12}``; empty/None means all pages."""
    if not raw:
        return None
    try:
        return {int(part) for part in raw.split(",") if part.strip()}
    except ValueError:
        raise ConfigurationError(f"--pages must be a comma-separated list of integers, got {raw!r}") from None
