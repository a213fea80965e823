"""Holder of the single authoritative connection state."""

import logging
from collections import deque
from dataclasses import replace
from typing import Callable, List, Optional

from bulletproof_ui.models import ConnectionState

log = logging.getLogger(__name__)

StateListener = Callable[[ConnectionState, ConnectionState], None]


class StateStore:
    """Owns the ConnectionState snapshot and notifies on change.

    Writes happen only on the control loop thread; listeners receive
    (old, new) immutable snapshots. An update made from inside a listener
    is queued, so every listener sees the snapshots in write order.
    """

    def __init__(self, initial: Optional[ConnectionState] = None):
        self._state = initial or ConnectionState()
        self._listeners: List[StateListener] = []
        self._pending = deque()
        self._notifying = False
        self._phase_epoch = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def phase_epoch(self) -> int:
        """Number of phase changes so far."""
        return self._phase_epoch

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def update(self, **changes) -> ConnectionState:
        old = self._state
        new = replace(old, **changes)
        if new == old:
            return old
        self._state = new
        if new.phase != old.phase:
            self._phase_epoch += 1
            log.info(f"Phase {old.phase.name} -> {new.phase.name} ({new.message})")

        self._pending.append((old, new))
        if not self._notifying:
            self._notify()
        return new

    def _notify(self) -> None:
        self._notifying = True
        try:
            while self._pending:
                old, new = self._pending.popleft()
                for listener in list(self._listeners):
                    try:
                        listener(old, new)
                    except Exception:
                        log.exception("State listener failed")
        finally:
            self._notifying = False
