# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Progress output for the extract command.

A ``rich`` spinner while a page is being extracted on an interactive
terminal (silent when stderr is piped), and one ✓/✗ line per unit on stdout.
"""

from __future__ import annotations

import contextlib
import sys
from collections.abc import Generator

from rich.console import Console

OK_MARK = "✓"
FAIL_MARK = "✗"


@contextlib.contextmanager
def status_spinner(msg: str) -> Generator[None, None, None]:
    """Context manager showing a spinner with *msg* while active.

    Silent when stderr is not a TTY (piped output).
    """
    if not sys.stderr.isatty():
        yield
        return

    console = Console(stderr=True)
    with console.status(msg):
        yield


def print_result(ok: bool, label: str, detail: str) -> None:
    """``  ✓ label detail`` or ``  ✗ label detail`` on stdout."""
    print(f"  {OK_MARK if ok else FAIL_MARK} {label} {detail}")
