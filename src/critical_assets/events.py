# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Post-extraction hook.

Listeners receive a mutable ``CriticalAssetsExtracted`` event, one per
viewport pass, and may rewrite ``css`` / ``js`` before the service caches
them. Listeners run sequentially in registration order, each seeing the
previous listener's modifications. Listener exceptions propagate.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CriticalAssetsExtracted:
    """One viewport's freshly extracted assets, before caching."""

    page_id: int
    viewport: str
    css: str
    js: str
    language_id: int = 0
    workspace_id: int = 0


Listener = Callable[[CriticalAssetsExtracted], None]


class EventDispatcher:
    """Ordered listener list for ``CriticalAssetsExtracted``."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        """Remove *listener*; unknown listeners are ignored."""
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def dispatch(self, event: CriticalAssetsExtracted) -> CriticalAssetsExtracted:
        """Run every listener on *event* and return it."""
        if self._listeners:
            logger.debug(
                "Dispatching extracted event: page=%d viewport=%s (%d listeners)",
                event.page_id,
                event.viewport,
                len(self._listeners),
            )
        for listener in self._listeners:
            listener(event)
        return event
