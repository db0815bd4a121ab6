# src/dagrun/engine/events.py
from __future__ import annotations

import threading
from enum import StrEnum
from typing import Any, Callable

from dagrun.logging import get_logger

_LOG = get_logger(__name__)


class RunEvent(StrEnum):
    STATUS_CHANGE = "status_change"
    TASK_COMPLETED = "task_completed"
    TASK_FAILED = "task_failed"
    TASK_SKIPPED = "task_skipped"


Listener = Callable[[Any], None]


class EventBus:
    """
    Explicit observer list per event.

    Notifications are side effects only: a listener that raises is logged and
    the remaining listeners still run.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: dict[RunEvent, list[Listener]] = {e: [] for e in RunEvent}

    def subscribe(self, event: RunEvent | str, listener: Listener) -> Callable[[], None]:
        """
        Registers `listener` for `event`. Returns a callable that unsubscribes it.
        """
        key = RunEvent(event)
        with self._lock:
            self._listeners[key].append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                try:
                    self._listeners[key].remove(listener)
                except ValueError:
                    pass

        return _unsubscribe

    def emit(self, event: RunEvent, payload: Any) -> None:
        with self._lock:
            listeners = list(self._listeners[event])
        for listener in listeners:
            try:
                listener(payload)
            except Exception:
                _LOG.exception("Listener for %s raised (continuing).", event.value)
