"""Bounded log of recent connection activity."""

import logging
from collections import deque
from typing import Callable, List

from bulletproof_ui.models import EventKind, EventRecord

log = logging.getLogger(__name__)

EVENT_CAPACITY = 3


class EventLog:
    """Most-recent-first record of the last few transitions.

    Pure in-memory; the oldest record is evicted on overflow.
    """

    def __init__(self, capacity: int = EVENT_CAPACITY):
        self._records = deque(maxlen=capacity)
        self._listeners: List[Callable[[EventRecord], None]] = []

    def add_listener(self, listener: Callable[[EventRecord], None]) -> None:
        self._listeners.append(listener)

    def push(self, text: str, kind: EventKind = EventKind.INFO) -> EventRecord:
        record = EventRecord(text=text, kind=kind)
        self._records.appendleft(record)
        log.debug(f"event[{kind.value}] {text}")
        for listener in list(self._listeners):
            try:
                listener(record)
            except Exception:
                log.exception("Event listener failed")
        return record

    def records(self) -> List[EventRecord]:
        return list(self._records)

    def count(self, kind: EventKind) -> int:
        return sum(1 for r in self._records if r.kind == kind)

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)
