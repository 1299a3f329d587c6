# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Logging setup for the CLI and for host applications embedding the service.

Every record, structlog or stdlib, goes through one stderr handler. Console
rendering for terminals, JSON lines when ``CRITICAL_ASSETS_LOG_FORMAT=json``
or ``--log-json`` is given. String fields are clipped to ``MAX_FIELD_CHARS``
because CDP error texts can quote whole evaluated scripts.

Leaf module, no critical_assets imports.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog

ENV_LOG_LEVEL = "CRITICAL_ASSETS_LOG_LEVEL"
ENV_LOG_FORMAT = "CRITICAL_ASSETS_LOG_FORMAT"

MAX_FIELD_CHARS = 2000


def clip_long_fields(_logger: Any, _method: str, event_dict: dict) -> dict:
    """structlog processor: shorten oversized string values in place."""
    for name, value in event_dict.items():
        if isinstance(value, str) and len(value) > MAX_FIELD_CHARS:
            event_dict[name] = f"{value[:MAX_FIELD_CHARS]}... (+{len(value) - MAX_FIELD_CHARS} chars)"
    return event_dict


def _pre_chain() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        clip_long_fields,
    ]


def _stderr_handler(json_output: bool, pre_chain: list) -> logging.Handler:
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(colors=False)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=pre_chain,
        )
    )
    return handler


def configure(*, json_output: bool = False, level: str = "INFO") -> None:
    """Route structlog and stdlib logging to a single stderr handler.

    Args:
        json_output: True for JSON lines, False for console output.
        level: Root logger level name. Unknown names fall back to INFO.

    Calling it again replaces the previous handler.
    """
    pre_chain = _pre_chain()
    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(_stderr_handler(json_output, pre_chain))
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


def configure_from_env(*, json_output: bool | None = None, level: str | None = None) -> None:
    """Configure from ``CRITICAL_ASSETS_LOG_*`` env vars; explicit arguments win."""
    if level is None:
        level = os.environ.get(ENV_LOG_LEVEL, "").strip() or "INFO"
    if json_output is None:
        json_output = os.environ.get(ENV_LOG_FORMAT, "").strip().lower() == "json"
    configure(json_output=json_output, level=level)
