from __future__ import annotations

import logging
import sys
from typing import Protocol, TextIO

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def post(self, *, title: str, body: str) -> None: ...


class NullNotifier:
    def post(self, *, title: str, body: str) -> None:
        logger.debug("Notification suppressed: %s: %s", title, body)


class BellNotifier:
    """Rings the terminal bell and prints a one-line summary to stderr."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream if stream is not None else sys.stderr

    def post(self, *, title: str, body: str) -> None:
        try:
            self._stream.write(f"\a[{title}] {body}\n")
            self._stream.flush()
        except (OSError, ValueError):
            logger.debug("Failed to post notification %r", title, exc_info=True)
