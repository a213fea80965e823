"""Background status reconciliation.

Two timers refresh what the daemon reports independently of user actions:

- coarse loop (always on): connected flag, bind, message, capability flags
- fine loop (only while CONNECTED): port liveness, latency, egress identity

Phase is never written here; it belongs to the orchestrator.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional

from bulletproof_ui.backend.client import ControlPlaneClient, DaemonStatus
from bulletproof_ui.backend.net import tcp_connect_time
from bulletproof_ui.config import ControllerConfig
from bulletproof_ui.constants import FAILURE_KEYWORDS
from bulletproof_ui.models import ConnectionState, Egress, Phase, ProbeSample
from bulletproof_ui.state import StateStore

log = logging.getLogger(__name__)


def looks_like_failure(message: Optional[str]) -> bool:
    """True if a daemon status message reads like an error."""
    if not message:
        return False
    lowered = message.lower()
    return any(word in lowered for word in FAILURE_KEYWORDS)


def _first(data: dict, *keys) -> Optional[str]:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def parse_egress(payload: Any) -> Optional[Egress]:
    """Extract egress identity from a proxy-test reply body.

    The body is an ip-api style JSON document, possibly still as a string.
    Missing fields are tolerated; garbage yields None.
    """
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="replace")
    if isinstance(payload, str):
        start = payload.find("{")
        if start < 0:
            return None
        try:
            payload = json.loads(payload[start:payload.rfind("}") + 1])
        except json.JSONDecodeError:
            return None
    if not isinstance(payload, dict):
        return None

    egress = Egress(
        ip=_first(payload, "query", "ip"),
        country=_first(payload, "country", "country_name", "countryCode"),
        isp=_first(payload, "isp", "org"),
        asn=_first(payload, "as", "asn"),
    )
    if egress == Egress():
        return None
    return egress


class Reconciler:
    """Coarse and fine polling loops over the shared state."""

    def __init__(
        self,
        client: ControlPlaneClient,
        store: StateStore,
        config: Optional[ControllerConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._client = client
        self._store = store
        self._config = config or ControllerConfig()
        self._sleep = sleep
        self._running = False
        self._coarse_task: Optional[asyncio.Task] = None
        self._fine_task: Optional[asyncio.Task] = None
        store.add_listener(self._on_state_change)

    @property
    def fine_running(self) -> bool:
        return self._fine_task is not None and not self._fine_task.done()

    def start(self) -> None:
        """Start the loops. Must be called on the control loop."""
        if self._running:
            return
        self._running = True
        self._coarse_task = asyncio.ensure_future(self._coarse_loop())
        if self._store.state.phase == Phase.CONNECTED:
            self._start_fine()

    async def stop(self) -> None:
        self._running = False
        tasks = [t for t in (self._coarse_task, self._fine_task) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._coarse_task = None
        self._fine_task = None

    # Coarse loop

    async def tick_coarse(self) -> Optional[DaemonStatus]:
        """Merge one ``/v1/status`` reading into the shared state."""
        epoch = self._store.phase_epoch
        status = await self._client.get_status()
        if status.error:
            log.debug(f"Status refresh failed: {status.error}")
            return None

        changes = {
            "daemon_connected": status.connected,
            "pac_enabled": status.pac_enabled,
            "tun_active": status.sing_box,
        }
        state = self._store.state
        # bind/message/last_error are shared with the orchestrator; a reading
        # taken across a transition describes the previous phase
        if state.busy or self._store.phase_epoch != epoch:
            log.debug("Phase moved during status refresh, keeping transition fields")
        else:
            if state.phase == Phase.IDLE and not status.connected:
                changes["bind"] = None
            elif status.bind:
                changes["bind"] = status.bind
            if status.message:
                changes["message"] = status.message
                if looks_like_failure(status.message):
                    changes["last_error"] = status.message
        self._store.update(**changes)
        return status

    async def _coarse_loop(self) -> None:
        while self._running:
            try:
                await self.tick_coarse()
            except Exception:
                log.exception("Coarse status refresh failed")
            await self._sleep(self._config.coarse_interval)

    # Fine loop

    async def tick_fine(self) -> ProbeSample:
        """Take one port/latency/egress sample while connected."""
        state = self._store.state
        if state.phase != Phase.CONNECTED:
            self._clear_probe()
            return ProbeSample.empty()

        epoch = self._store.phase_epoch
        listening, latency, egress = await asyncio.gather(
            self._client.probe_port(state.bind),
            tcp_connect_time(
                self._config.latency_host,
                self._config.latency_port,
                self._config.latency_timeout,
            ),
            self._sample_egress(state.bind),
            return_exceptions=True,
        )
        for result in (listening, latency, egress):
            if isinstance(result, Exception):
                log.debug(f"Probe sample failed: {result!r}")

        sample = ProbeSample(
            listening=listening if isinstance(listening, bool) else False,
            latency_ms=None if isinstance(latency, Exception) else latency,
            egress=None if isinstance(egress, Exception) else egress,
        )
        # The phase may have moved while sampling
        if self._store.phase_epoch != epoch or self._store.state.phase != Phase.CONNECTED:
            self._clear_probe()
            return ProbeSample.empty()
        self._store.update(probe=sample)
        return sample

    async def _sample_egress(self, bind: Optional[str]) -> Optional[Egress]:
        reply = await self._client.test_proxy(bind)
        if not reply.ok:
            log.debug(f"Egress lookup failed: {reply.error}")
            return None
        return parse_egress(reply.data.get("body", reply.data))

    async def _fine_loop(self) -> None:
        while self._running and self._store.state.phase == Phase.CONNECTED:
            try:
                await self.tick_fine()
            except Exception:
                log.exception("Fine probe failed")
            await self._sleep(self._config.fine_interval)

    def _start_fine(self) -> None:
        if not self._running or self.fine_running:
            return
        self._fine_task = asyncio.ensure_future(self._fine_loop())

    def _stop_fine(self) -> None:
        if self._fine_task is not None:
            self._fine_task.cancel()
            self._fine_task = None
        self._clear_probe()

    def _clear_probe(self) -> None:
        if self._store.state.probe != ProbeSample.empty():
            self._store.update(probe=ProbeSample.empty())

    def _on_state_change(self, old: ConnectionState, new: ConnectionState) -> None:
        if new.phase == Phase.CONNECTED and old.phase != Phase.CONNECTED:
            self._start_fine()
        elif old.phase == Phase.CONNECTED and new.phase != Phase.CONNECTED:
            self._stop_fine()
