# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Critical assets CLI: extract, show and purge commands.

Usage:
    critical-assets extract --sites sites.yaml [--site ID] [--pages 1,12] [--chromium-bin PATH]
    critical-assets extract --url URL --page-id N [--language L]
    critical-assets show --page-id N [--viewport mobile] [--language 0] [--workspace 0] [--js]
    critical-assets purge (--page-id N [--language L] [--workspace W] | --all)
"""

from __future__ import annotations

import argparse
import logging
import sys

import structlog

from . import Viewport
from .cache_sqlite import SqliteCacheStore
from .cdp_client import CdpSession
from .chromium import detect_chromium, validate_binary
from .errors import ConfigurationError
from .logging_config import configure_from_env
from .service import CriticalAssetService
from .settings import ExtractSettings, load_sites, parse_page_ids

logger = logging.getLogger(__name__)


def _require_cli_deps() -> None:
    """Check that CLI optional dependencies are installed."""
    try:
        import rich  # noqa: F401
        import yaml  # noqa: F401
        from tabulate import tabulate  # noqa: F401
    except ImportError as e:
        print(
            f"Missing CLI dependency: {e.name}\nInstall with: pip install critical-assets[cli]",
            file=sys.stderr,
        )
        sys.exit(1)


def _open_service(db_path: str, cache_ttl: int = 0) -> tuple[CriticalAssetService, SqliteCacheStore]:
    store = SqliteCacheStore.open(db_path)
    return CriticalAssetService(store, session_factory=CdpSession, lifetime=cache_ttl), store


def _settings_from_args(args: argparse.Namespace) -> ExtractSettings:
    settings = ExtractSettings.from_env().with_overrides(
        chromium_bin=args.chromium_bin,
        connect_timeout_ms=args.connect_timeout,
        page_load_timeout_ms=args.page_timeout,
        workspace_id=args.workspace,
        db_path=args.db_path,
        cache_ttl=args.cache_ttl,
    )
    mobile, desktop = settings.viewports
    viewports = (
        Viewport(mobile.name, args.mobile_width or mobile.width, args.mobile_height or mobile.height),
        Viewport(desktop.name, args.desktop_width or desktop.width, args.desktop_height or desktop.height),
    )
    settings = settings.with_overrides(viewports=viewports)
    if not settings.chromium_bin:
        settings = settings.with_overrides(chromium_bin=detect_chromium() or None)
    return settings


def _collect_units(args: argparse.Namespace) -> list[tuple[int, int, str]]:
    """(page_id, language_id, url) work units from --url or the sites file."""
    if args.url:
        if args.page_id is None:
            raise ConfigurationError("--url requires --page-id")
        return [(args.page_id, args.language, args.url)]

    if not args.sites:
        raise ConfigurationError("Either --sites FILE or --url URL --page-id N is required")

    sites = load_sites(args.sites)
    if args.site:
        if args.site not in sites:
            raise ConfigurationError(f"Unknown site: {args.site} (available: {', '.join(sorted(sites))})")
        selected = [sites[args.site]]
    else:
        selected = list(sites.values())

    page_ids = parse_page_ids(args.pages)
    return [(page.uid, language_id, url) for site in selected for page, language_id, url in site.iter_units(page_ids)]


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_extract(args: argparse.Namespace) -> int:
    """Extract critical CSS/JS for every page x language and cache it."""
    _require_cli_deps()
    from tabulate import tabulate

    from ._progress import print_result, status_spinner

    try:
        settings = _settings_from_args(args)
        validate_binary(settings.chromium_bin)
        units = _collect_units(args)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(tabulate(settings.as_rows(), headers=["Setting", "Value"], tablefmt="simple"))
    print()

    if not units:
        print("No pages to process.")
        return 0

    service, store = _open_service(settings.db_path, settings.cache_ttl)
    failures = 0
    try:
        for page_id, language_id, url in units:
            structlog.contextvars.bind_contextvars(page_id=page_id, language_id=language_id)
            label = f"Page {page_id} (language {language_id})"
            try:
                with status_spinner(f"{label}: {url}"):
                    results = service.extract_for_page(
                        page_id,
                        url,
                        settings.chromium_bin,
                        settings.viewports,
                        language_id=language_id,
                        workspace_id=settings.workspace_id,
                        connect_timeout_ms=settings.connect_timeout_ms,
                        page_load_timeout_ms=settings.page_load_timeout_ms,
                    )
            except Exception as e:
                failures += 1
                logger.warning("Extraction failed for %s: %s", url, e)
                print_result(False, label, f"{url}: {e}")
                continue
            finally:
                structlog.contextvars.unbind_contextvars("page_id", "language_id")

            sizes = ", ".join(f"{r.viewport_name} css={len(r.css)}B js={len(r.js)}B" for r in results)
            print_result(True, label, f"{url} [{sizes}]")
    finally:
        store.close()

    print()
    if failures:
        print(f"Finished with {failures} failure(s) out of {len(units)} page(s).")
        return 1
    print(f"Extracted critical assets for {len(units)} page(s).")
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    """Print cached critical CSS (or JS) for one page/viewport."""
    db_path = args.db_path or ExtractSettings.from_env().db_path
    service, store = _open_service(db_path)
    try:
        getter = service.get_critical_js if args.js else service.get_critical_css
        value = getter(args.page_id, args.viewport, args.language, args.workspace)
    finally:
        store.close()

    if value is None:
        kind = "JS" if args.js else "CSS"
        print(
            f"No critical {kind} cached for page {args.page_id} ({args.viewport}, "
            f"language {args.language}, workspace {args.workspace}).",
            file=sys.stderr,
        )
        return 1
    print(value)
    return 0


def cmd_purge(args: argparse.Namespace) -> int:
    """Flush cached critical assets for one page or everything."""
    if not args.all and args.page_id is None:
        print("Error: purge requires --page-id N or --all", file=sys.stderr)
        return 1

    db_path = args.db_path or ExtractSettings.from_env().db_path
    service, store = _open_service(db_path)
    try:
        if args.all:
            removed = service.purge_all()
            print(f"Purged all critical assets ({removed} entries).")
        else:
            removed = service.purge_page(args.page_id, args.language, args.workspace)
            print(f"Purged critical assets for page {args.page_id} ({removed} entries).")
    finally:
        store.close()
    return 0


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Extract above-the-fold CSS and inline JS with headless Chromium",
        prog="critical-assets",
    )
    parser.add_argument("--log-level", type=str, default=None, help="DEBUG, INFO, WARNING, ... (default: INFO)")
    parser.add_argument("--log-json", action="store_true", help="Emit JSON log lines")
    subparsers = parser.add_subparsers(dest="command", required=True)

    _extract_epilog = """\
examples:
  %(prog)s --sites sites.yaml                       All sites, all pages
  %(prog)s --sites sites.yaml --site main --pages 1,12
  %(prog)s --url https://example.com/ --page-id 1   One ad-hoc page
"""
    p_extract = subparsers.add_parser(
        "extract",
        help="Extract and cache critical CSS/JS",
        epilog=_extract_epilog,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p_extract.add_argument("--sites", type=str, metavar="FILE", help="YAML sites file")
    p_extract.add_argument("--site", type=str, help="Only this site id from the sites file")
    p_extract.add_argument("--pages", type=str, help="Comma-separated page ids (default: all)")
    p_extract.add_argument("--url", type=str, help="Extract a single URL (requires --page-id)")
    p_extract.add_argument("--page-id", type=int, default=None)
    p_extract.add_argument("--language", type=int, default=0, help="Language id for --url (default: 0)")
    p_extract.add_argument("--chromium-bin", type=str, default=None, help="Path to Chromium/Chrome (auto-detected)")
    p_extract.add_argument("--mobile-width", type=int, default=None, help="Mobile viewport width (default: 375)")
    p_extract.add_argument("--mobile-height", type=int, default=None, help="Mobile viewport height (default: 667)")
    p_extract.add_argument("--desktop-width", type=int, default=None, help="Desktop viewport width (default: 1440)")
    p_extract.add_argument("--desktop-height", type=int, default=None, help="Desktop viewport height (default: 900)")
    p_extract.add_argument("--connect-timeout", type=int, default=None, help="Chromium startup timeout in ms (default: 5000)")
    p_extract.add_argument("--page-timeout", type=int, default=None, help="Page load timeout in ms (default: 15000)")
    p_extract.add_argument("--workspace", type=int, default=None, help="Workspace id (default: 0)")
    p_extract.add_argument("--db-path", type=str, default=None, help="Cache database path")
    p_extract.add_argument("--cache-ttl", type=int, default=None, help="Cache lifetime in seconds (0 = unlimited)")

    p_show = subparsers.add_parser("show", help="Print cached critical CSS or JS")
    p_show.add_argument("--page-id", type=int, required=True)
    p_show.add_argument("--viewport", type=str, default="mobile")
    p_show.add_argument("--language", type=int, default=0)
    p_show.add_argument("--workspace", type=int, default=0)
    p_show.add_argument("--js", action="store_true", help="Show critical JS instead of CSS")
    p_show.add_argument("--db-path", type=str, default=None)

    p_purge = subparsers.add_parser("purge", help="Flush cached critical assets")
    p_purge.add_argument("--page-id", type=int, default=None)
    p_purge.add_argument("--language", type=int, default=None)
    p_purge.add_argument("--workspace", type=int, default=None)
    p_purge.add_argument("--all", action="store_true", help="Flush every critical asset entry")
    p_purge.add_argument("--db-path", type=str, default=None)

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_from_env(json_output=True if args.log_json else None, level=args.log_level)

    commands = {
        "extract": cmd_extract,
        "show": cmd_show,
        "purge": cmd_purge,
    }

    try:
        rc = commands[args.command](args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    except SystemExit:
        raise
    except Exception as e:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    if rc:
        sys.exit(rc)


if __name__ == "__main__":
    main()
