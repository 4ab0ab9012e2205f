from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from .ids import now_ts_ms

logger = logging.getLogger(__name__)


class SessionEventKind(StrEnum):
    TURN_CHANGED = "turn_changed"
    TURNS_RESET = "turns_reset"
    APPROVAL_REQUESTED = "approval_requested"
    APPROVAL_RESOLVED = "approval_resolved"
    EXECUTE_COMMAND = "execute_command"
    COMMAND_FINISHED = "command_finished"


@dataclass(frozen=True, slots=True)
class SessionEvent:
    kind: SessionEventKind
    session_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: int = field(default_factory=now_ts_ms)


EventHandler = Callable[[SessionEvent], None]


class EventBus:
    """
    Synchronous fan-out of session events to external collaborators (UI, terminal runner).

    Handlers run on the publishing thread; a failing handler is logged and does not stop
    delivery to the others.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: list[tuple[EventHandler, frozenset[SessionEventKind] | None]] = []

    def subscribe(
        self,
        handler: EventHandler,
        *,
        kinds: set[SessionEventKind] | frozenset[SessionEventKind] | None = None,
    ) -> Callable[[], None]:
        entry = (handler, frozenset(kinds) if kinds is not None else None)
        with self._lock:
            self._handlers.append(entry)

        def _unsubscribe() -> None:
            with self._lock:
                try:
                    self._handlers.remove(entry)
                except ValueError:
                    pass

        return _unsubscribe

    def publish(self, event: SessionEvent) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for handler, kinds in handlers:
            if kinds is not None and event.kind not in kinds:
                continue
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", event.kind)
