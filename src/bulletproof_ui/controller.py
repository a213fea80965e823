"""Wiring of the connection-lifecycle controller.

All state-changing work runs as coroutines on one asyncio loop, owned by a
dedicated controller thread. UI code talks to it through :meth:`submit`
and receives snapshots through StateStore/EventLog listeners.
"""

import asyncio
import atexit
import concurrent.futures
import logging
import signal
import threading
from dataclasses import asdict
from typing import Callable, Coroutine, Optional

from bulletproof_ui.backend import get_client
from bulletproof_ui.backend.client import ControlPlaneClient, Reply
from bulletproof_ui.backend.net import tcp_connect_time
from bulletproof_ui.config import ControllerConfig
from bulletproof_ui.errors import BinaryNotFound, SpawnFailed
from bulletproof_ui.events import EventLog
from bulletproof_ui.models import ConnectSettings, EventKind
from bulletproof_ui.orchestrator import Orchestrator
from bulletproof_ui.reconciler import Reconciler, parse_egress
from bulletproof_ui.state import StateStore
from bulletproof_ui.supervisor import Supervisor

log = logging.getLogger(__name__)


class Controller:
    """Owns the control loop, the daemon and the connection state."""

    def __init__(
        self,
        config: Optional[ControllerConfig] = None,
        settings: Optional[ConnectSettings] = None,
        client: Optional[ControlPlaneClient] = None,
        supervisor: Optional[Supervisor] = None,
        manage_daemon: bool = True,
        auto_connect: bool = False,
    ):
        self.config = config or ControllerConfig()
        self.settings = settings or ConnectSettings()
        self.client = client or get_client(self.config)
        self.store = StateStore()
        self.events = EventLog()
        self.supervisor = supervisor or Supervisor(self.config, self.client)
        self.orchestrator = Orchestrator(
            self.client,
            self.store,
            self.events,
            self.settings.build_request,
            self.config,
        )
        self.reconciler = Reconciler(self.client, self.store, self.config)
        self._manage_daemon = manage_daemon
        self._auto_connect = auto_connect

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._shutdown_lock = threading.Lock()
        self._shut_down = False

        self.supervisor.add_exit_listener(self._on_daemon_exit)

    # Startup

    def start(self) -> concurrent.futures.Future:
        """Spawn the daemon and the control loop.

        Returns:
            Future resolving to True once the daemon is healthy (False on
            timeout) and any automatic connect has finished; the UI need
            not wait for it
        """
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._run_loop, name="bp-control", daemon=True
        )
        self._thread.start()
        atexit.register(self.shutdown)

        if self._manage_daemon:
            try:
                self.supervisor.start()
            except (BinaryNotFound, SpawnFailed) as e:
                # Supervision failed: carry on without a daemon
                log.error(str(e))
                self.submit(self._record_error(str(e)))

        return self.submit(self._startup())

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_forever()
        finally:
            self._loop.close()

    async def _startup(self) -> bool:
        self.store.update(daemon_alive=self.supervisor.alive or not self._manage_daemon)
        healthy = await self.supervisor.wait_healthy()
        self.reconciler.start()
        if healthy and self._auto_connect:
            await self.orchestrator.toggle()
        return healthy

    async def _record_error(self, text: str) -> None:
        self.store.update(last_error=text, message=text)
        self.events.push(text, EventKind.ERROR)

    def install_signal_handlers(self, on_signal: Optional[Callable[[], None]] = None) -> None:
        """Route SIGINT/SIGTERM into shutdown. Main thread only."""
        def handler(signum, frame):
            log.info(f"Received signal {signum}, shutting down...")
            self.shutdown()
            if on_signal is not None:
                on_signal()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                signal.signal(sig, handler)
            except (ValueError, OSError) as e:
                log.debug(f"Cannot install handler for {sig}: {e}")

    # Intents

    def submit(self, coro: Coroutine) -> concurrent.futures.Future:
        """Schedule ``coro`` on the control loop from any thread."""
        if self._loop is None or self._loop.is_closed():
            coro.close()
            raise RuntimeError("Controller is not running")
        return asyncio.run_coroutine_threadsafe(coro, self._loop)

    def toggle(self) -> concurrent.futures.Future:
        return self.submit(self.orchestrator.toggle())

    def refresh(self) -> concurrent.futures.Future:
        return self.submit(self.reconciler.tick_coarse())

    def get_identity(self) -> concurrent.futures.Future:
        return self.submit(self.client.get_identity())

    def reset_identity(self) -> concurrent.futures.Future:
        return self.submit(self._reset_identity())

    def diagnostics(self) -> concurrent.futures.Future:
        return self.submit(self.client.get_diagnostics())

    def proxy_test(self, bind: Optional[str] = None) -> concurrent.futures.Future:
        return self.submit(self._proxy_test(bind))

    def measure_latency(self) -> concurrent.futures.Future:
        return self.submit(self._measure_latency())

    def set_system_proxy(self, enabled: bool) -> concurrent.futures.Future:
        return self.submit(self._set_system_proxy(enabled))

    async def _set_system_proxy(self, enabled: bool) -> Reply:
        if enabled:
            reply = await self.client.enable_system_proxy(self.store.state.bind)
        else:
            reply = await self.client.disable_system_proxy()
        if reply.ok:
            self.store.update(pac_enabled=enabled)
            self.events.push(
                "System proxy enabled" if enabled else "System proxy disabled",
                EventKind.INFO,
            )
        else:
            self.events.push(f"System proxy change failed: {reply.error}", EventKind.ERROR)
        return reply

    async def _proxy_test(self, bind: Optional[str]) -> Reply:
        """Fetch a page through ``bind`` (default: the current listener).

        Returns:
            The daemon reply, with the bind used and the parsed egress
            identity added to its data when the test succeeded
        """
        bind = bind or self.store.state.bind or self.config.default_bind
        reply = await self.client.test_proxy(bind)
        if not reply.ok:
            return reply
        data = dict(reply.data, bind=bind)
        egress = parse_egress(reply.data.get("body", reply.data))
        if egress is not None:
            data["egress"] = asdict(egress)
        return Reply(data=data)

    async def _measure_latency(self) -> Reply:
        """TCP connect time to the reference host."""
        config = self.config
        target = f"{config.latency_host}:{config.latency_port}"
        elapsed = await tcp_connect_time(
            config.latency_host, config.latency_port, config.latency_timeout
        )
        if elapsed is None:
            return Reply(
                data={"target": target},
                error=f"No answer from {target} within {config.latency_timeout:.1f}s",
            )
        return Reply(data={"target": target, "latency_ms": round(elapsed, 1)})

    async def _reset_identity(self) -> Reply:
        reply = await self.client.reset_identity()
        if reply.ok:
            self.events.push("Identity reset", EventKind.SUCCESS)
        else:
            self.events.push(f"Identity reset failed: {reply.error}", EventKind.ERROR)
        return reply

    # Daemon exit

    def _on_daemon_exit(self, code: Optional[int], expected: bool) -> None:
        # Called on the supervisor's watcher thread
        if expected or self._loop is None or self._loop.is_closed():
            return
        try:
            self._loop.call_soon_threadsafe(self._handle_daemon_exit)
        except RuntimeError:
            pass

    def _handle_daemon_exit(self) -> None:
        self.store.update(daemon_alive=False, daemon_connected=False)
        self.orchestrator.daemon_exited()

    # Shutdown

    def shutdown(self) -> None:
        """Stop the daemon and the control loop. Idempotent."""
        with self._shutdown_lock:
            if self._shut_down:
                return
            self._shut_down = True

        self.supervisor.stop()

        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            asyncio.run_coroutine_threadsafe(self._drain(), loop).result(timeout=3)
        except Exception as e:
            log.debug(f"Control loop drain failed: {e!r}")
        try:
            loop.call_soon_threadsafe(loop.stop)
        except RuntimeError:
            pass
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=3)

    async def _drain(self) -> None:
        await self.reconciler.stop()
        current = asyncio.current_task()
        pending = [t for t in asyncio.all_tasks() if t is not current]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
