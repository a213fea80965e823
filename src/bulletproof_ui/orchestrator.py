"""Connection state machine driving user connect/disconnect intent.

Connecting is a three step negotiation: the daemon accepts the command,
the daemon reports itself connected, then the local listener is checked.
The daemon's connected flag can flip before its SOCKS port accepts
sockets, so the probe and proxy test run before the UI says "Connected".
The daemon's view is authoritative: a failed proxy test downgrades the
message, it does not undo the connection.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from bulletproof_ui.backend.client import ControlPlaneClient, DaemonStatus
from bulletproof_ui.config import ControllerConfig
from bulletproof_ui.constants import (
    MSG_CONNECTING,
    MSG_DAEMON_EXITED,
    MSG_DISCONNECTED,
    MSG_DISCONNECTING,
    MSG_PORT_WAIT,
    MSG_PROBE_FAILED,
)
from bulletproof_ui.errors import (
    CommandRejected,
    ConnectTimeout,
    DaemonExited,
    ProbeFailed,
    ProxyTestFailed,
)
from bulletproof_ui.events import EventLog
from bulletproof_ui.models import ConnectRequest, EventKind, Phase
from bulletproof_ui.state import StateStore

log = logging.getLogger(__name__)


def connected_message(bind: Optional[str]) -> str:
    return f"Connected · {bind}" if bind else "Connected"


class Orchestrator:
    """Single-flight connect/disconnect state machine.

    Args:
        client: Control-plane client
        store: Shared connection state
        events: Activity log fed by transitions
        request_factory: Builds a fresh ConnectRequest for every attempt
        config: Timings
        clock: Monotonic clock in seconds
        sleep: Coroutine used for every wait
    """

    def __init__(
        self,
        client: ControlPlaneClient,
        store: StateStore,
        events: EventLog,
        request_factory: Callable[[], ConnectRequest],
        config: Optional[ControllerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._client = client
        self._store = store
        self._events = events
        self._request_factory = request_factory
        self._config = config or ControllerConfig()
        self._clock = clock
        self._sleep = sleep
        self._inflight = False
        self._daemon_gone = False

    @property
    def busy(self) -> bool:
        return self._inflight

    async def toggle(self) -> bool:
        """Connect when idle, disconnect when connected.

        Returns:
            True if a transition ran, False if the toggle was ignored
        """
        if self._inflight:
            log.debug("Toggle ignored: an operation is already in flight")
            return False

        phase = self._store.state.phase
        if phase == Phase.IDLE:
            operation = self._connect
        elif phase == Phase.CONNECTED:
            operation = self._disconnect
        else:
            log.debug(f"Toggle ignored in phase {phase.name}")
            return False

        self._inflight = True
        self._daemon_gone = False
        try:
            await operation()
        except Exception as e:
            # Never leave the machine stuck in a transitional phase
            log.exception("Unexpected error during connection toggle")
            self._fail(str(e) or type(e).__name__)
        finally:
            self._inflight = False
        return True

    async def _connect(self) -> None:
        request = self._request_factory()
        self._store.update(phase=Phase.CONNECTING, last_error=None, message=MSG_CONNECTING)
        self._events.push(MSG_CONNECTING, EventKind.INFO)
        log.info(f"Connecting via {request.provider} ({request.options.integration})")

        try:
            reply = await self._client.connect(request)
            self._check_daemon()
            if not reply.ok:
                raise CommandRejected(reply.error)
            status = await self._await_connected()
            await self._verify(status.bind or None)
        except (CommandRejected, ConnectTimeout, DaemonExited) as e:
            log.warning(f"Connect failed: {e}")
            self._fail(str(e))

    async def _await_connected(self) -> DaemonStatus:
        """Poll status until the daemon reports connected.

        Raises:
            ConnectTimeout: If the window closes first
            DaemonExited: If the daemon died while waiting
        """
        deadline = self._clock() + self._config.connect_timeout
        polls = 0
        while self._clock() < deadline:
            self._check_daemon()
            status = await self._client.get_status()
            polls += 1
            if status.connected:
                log.debug(f"Daemon connected after {polls} status polls")
                return status
            await self._sleep(self._config.status_poll_interval)
        raise ConnectTimeout()

    async def _verify(self, bind: Optional[str]) -> None:
        """Probe the local listener, then test through it."""
        if bind:
            self._store.update(bind=bind)

        try:
            await self._ensure_listening(bind)
        except ProbeFailed as e:
            log.info(f"{e}, waiting {self._config.port_grace}s")
            self._store.update(message=MSG_PORT_WAIT)
            await self._sleep(self._config.port_grace)

        self._check_daemon()
        test = await self._client.test_proxy(bind)
        if test.ok:
            message = connected_message(bind)
            self._store.update(phase=Phase.CONNECTED, bind=bind, message=message, last_error=None)
            self._events.push(message, EventKind.SUCCESS)
            return

        error = str(ProxyTestFailed(test.error))
        log.warning(f"Daemon reports connected but proxy test failed: {error}")
        self._store.update(
            phase=Phase.CONNECTED,
            bind=bind,
            message=MSG_PROBE_FAILED,
            last_error=error,
        )
        self._events.push(f"{MSG_PROBE_FAILED}: {error}", EventKind.ERROR)

    async def _ensure_listening(self, bind: Optional[str]) -> None:
        """Check that the bind address accepts TCP connections.

        Raises:
            ProbeFailed: If nothing accepts connections on the bind address
        """
        if not await self._client.probe_port(bind):
            raise ProbeFailed(bind or self._config.default_bind)

    async def _disconnect(self) -> None:
        self._store.update(phase=Phase.DISCONNECTING, message=MSG_DISCONNECTING)
        reply = await self._client.disconnect()

        # Disconnect always completes the transition
        self._store.update(
            phase=Phase.IDLE,
            bind=None,
            message=MSG_DISCONNECTED,
            last_error=reply.error,
        )
        if reply.ok:
            self._events.push(MSG_DISCONNECTED, EventKind.INFO)
        else:
            log.warning(f"Disconnect reported an error: {reply.error}")
            self._events.push(f"Disconnected with error: {reply.error}", EventKind.ERROR)

    def _fail(self, error: str) -> None:
        self._store.update(phase=Phase.IDLE, bind=None, message=error, last_error=error)
        self._events.push(error, EventKind.ERROR)

    def _check_daemon(self) -> None:
        if self._daemon_gone:
            raise DaemonExited()

    def daemon_exited(self) -> None:
        """Drop to idle after the daemon died underneath us.

        An in-flight connect notices at its next step and fails with
        "Daemon exited"; a disconnect completes on its own.
        """
        if self._inflight:
            log.warning("Daemon exited during a connection change")
            self._daemon_gone = True
            return
        if self._store.state.phase == Phase.CONNECTED:
            self._store.update(
                phase=Phase.IDLE,
                bind=None,
                message=MSG_DAEMON_EXITED,
                last_error=MSG_DAEMON_EXITED,
            )
            self._events.push(MSG_DAEMON_EXITED, EventKind.ERROR)
        else:
            self._store.update(last_error=MSG_DAEMON_EXITED)
