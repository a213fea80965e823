"""Supervision of the bulletproofd daemon process.

The supervisor is the only component allowed to start or kill the daemon.
Every shutdown trigger (tray Quit, OS signal, interpreter exit, unexpected
daemon exit) ends up in :meth:`Supervisor.stop`, which is idempotent and
never raises.
"""

import asyncio
import logging
import os
import subprocess
import sys
import threading
from pathlib import Path
from typing import Callable, List, Mapping, Optional

import psutil

from bulletproof_ui.backend.client import ControlPlaneClient
from bulletproof_ui.config import ControllerConfig
from bulletproof_ui.constants import DAEMON_ENV_DEFAULTS, SINGBOX_NAMES, WARPPLUS_NAME
from bulletproof_ui.errors import BinaryNotFound, HealthCheckTimeout, SpawnFailed
from bulletproof_ui.models import DaemonProcess
from bulletproof_ui.platform.binaries import (
    daemon_candidates,
    find_first,
    find_helper,
    has_quarantine_flag,
)
from bulletproof_ui.platform.process import ProcessTreeKiller, children_of, get_tree_killer

log = logging.getLogger(__name__)

# (returncode, expected) -> None
ExitListener = Callable[[Optional[int], bool], None]


class Supervisor:
    """Starts, health-checks and tears down the daemon."""

    def __init__(
        self,
        config: Optional[ControllerConfig] = None,
        client: Optional[ControlPlaneClient] = None,
        killer: Optional[ProcessTreeKiller] = None,
        environ: Optional[Mapping[str, str]] = None,
        cwd: Optional[Path] = None,
        popen=subprocess.Popen,
    ):
        self._config = config or ControllerConfig()
        self._client = client or ControlPlaneClient(self._config)
        self._killer = killer or get_tree_killer()
        self._environ = os.environ if environ is None else environ
        self._cwd = cwd
        self._popen = popen

        self._lock = threading.Lock()
        self._proc: Optional[subprocess.Popen] = None
        self._daemon: Optional[DaemonProcess] = None
        self._stopping = False
        self._exit_listeners: List[ExitListener] = []
        self._watcher: Optional[threading.Thread] = None

    # Introspection

    @property
    def daemon(self) -> Optional[DaemonProcess]:
        return self._daemon

    @property
    def alive(self) -> bool:
        with self._lock:
            return self._proc is not None and self._daemon is not None and self._daemon.alive

    def add_exit_listener(self, listener: ExitListener) -> None:
        """Register a callback run (on the watcher thread) when the daemon exits."""
        self._exit_listeners.append(listener)

    # Resolution

    def resolve_binary(self) -> Path:
        """Locate the daemon executable.

        Returns:
            Path to bulletproofd

        Raises:
            BinaryNotFound: If no candidate exists
        """
        candidates = daemon_candidates(self._environ, self._cwd)
        found = find_first(candidates)
        if found is None:
            raise BinaryNotFound(candidates)
        return found

    def build_environment(self) -> dict:
        """Environment for the daemon: ours plus helper paths and defaults.

        Values already present in the inherited environment always win.
        """
        env = dict(self._environ)

        warp_plus = find_helper([WARPPLUS_NAME], self._cwd)
        if warp_plus and not env.get("WARPPLUS_BIN"):
            env["WARPPLUS_BIN"] = str(warp_plus)
            if has_quarantine_flag(warp_plus):
                log.warning(
                    f"warp-plus has quarantine attribute. If execution fails, run: "
                    f"xattr -d com.apple.quarantine {warp_plus}"
                )

        sing_box = find_helper(SINGBOX_NAMES, self._cwd)
        if sing_box and not env.get("SINGBOX_BIN"):
            env["SINGBOX_BIN"] = str(sing_box)

        for key, value in DAEMON_ENV_DEFAULTS.items():
            if not env.get(key):
                env[key] = value

        log.info(f"warp-plus bin={env.get('WARPPLUS_BIN') or '(none)'}")
        log.info(f"sing-box bin={env.get('SINGBOX_BIN') or '(none)'}")
        return env

    # Lifecycle

    def start(self) -> DaemonProcess:
        """Launch the daemon.

        Returns:
            The running DaemonProcess (the existing one if already started)

        Raises:
            BinaryNotFound: If the executable cannot be located
            SpawnFailed: If the OS cannot create the process
        """
        with self._lock:
            if self._proc is not None and self._daemon is not None:
                return self._daemon

        binary = self.resolve_binary()
        env = self.build_environment()
        cmd = [str(binary), "-addr", self._config.api_addr]

        kwargs = {"env": env}
        if sys.platform == "win32":
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            # Own session so the whole tree can be signalled as a group
            kwargs["start_new_session"] = True
        if self._config.capture_output:
            kwargs.update(
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
            )

        log.info(f"cwd={self._cwd or Path.cwd()}")
        log.info(f"Starting daemon: {' '.join(cmd)}")
        try:
            proc = self._popen(cmd, **kwargs)
        except (OSError, ValueError) as e:
            raise SpawnFailed(f"Failed to spawn {binary}: {e}") from e

        daemon = DaemonProcess(pid=proc.pid, binary_path=str(binary), environment=env)
        with self._lock:
            self._proc = proc
            self._daemon = daemon
            self._stopping = False

        if self._config.capture_output and proc.stdout is not None:
            threading.Thread(
                target=self._read_output, args=(proc,), daemon=True
            ).start()

        self._watcher = threading.Thread(
            target=self._watch, args=(proc,), name="daemon-exit-watcher", daemon=True
        )
        self._watcher.start()

        log.info(f"Daemon started (PID {proc.pid})")
        return daemon

    async def wait_healthy(self, timeout: Optional[float] = None) -> bool:
        """Poll the health endpoint until it answers or ``timeout`` elapses.

        Returns:
            True if healthy, False on timeout or if the daemon died
        """
        timeout = self._config.health_timeout if timeout is None else timeout
        try:
            return await self._poll_health(timeout)
        except HealthCheckTimeout as e:
            log.warning(str(e))
            return False

    async def _poll_health(self, timeout: float) -> bool:
        """Health polling loop behind :meth:`wait_healthy`.

        Raises:
            HealthCheckTimeout: If the endpoint never answered in time
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            if await self._client.health():
                log.info("Backend healthy")
                return True
            if self._daemon is not None and not self._daemon.alive:
                log.warning("Daemon exited before becoming healthy")
                return False
            if loop.time() >= deadline:
                raise HealthCheckTimeout(f"Backend health check timed out after {timeout:.1f}s")
            await asyncio.sleep(self._config.health_interval)

    def stop(self) -> None:
        """Terminate the daemon and its whole process tree.

        Safe to call any number of times, from any thread.
        """
        with self._lock:
            proc = self._proc
            if proc is None:
                return
            # Claim the process so concurrent callers return immediately
            self._proc = None
            self._stopping = True

        pid = proc.pid
        log.info(f"Stopping daemon (PID {pid})")
        try:
            self._terminate_tree(proc)
        except Exception as e:
            log.debug(f"Daemon teardown error (ignored): {e!r}")
        finally:
            if self._daemon is not None:
                self._daemon.alive = False
        log.info("Daemon stopped")

    def _terminate_tree(self, proc: subprocess.Popen) -> None:
        pid = proc.pid
        # Snapshot now: descendants are reparented once the daemon exits
        descendants = children_of(pid)

        self._killer.terminate(pid)
        try:
            proc.terminate()
        except OSError as e:
            log.debug(f"terminate({pid}) failed: {e}")

        try:
            proc.wait(timeout=self._config.stop_grace)
        except subprocess.TimeoutExpired:
            log.warning(f"Daemon did not exit within {self._config.stop_grace}s, force killing")

        leftovers = []
        for child in descendants:
            try:
                if child.is_running():
                    leftovers.append(child)
            except psutil.Error:
                continue

        if proc.poll() is None or leftovers:
            self._killer.kill(pid)
            for child in leftovers:
                try:
                    child.kill()
                except psutil.Error as e:
                    log.debug(f"Killing leftover {child.pid} failed: {e}")
            try:
                proc.wait(timeout=1.0)
            except subprocess.TimeoutExpired:
                log.error(f"Daemon (PID {pid}) survived forced kill")

    # Background threads

    def _watch(self, proc: subprocess.Popen) -> None:
        """Wait for the daemon to exit and invalidate liveness at once."""
        try:
            code = proc.wait()
        except Exception as e:
            log.debug(f"Exit watcher error: {e!r}")
            code = None

        with self._lock:
            expected = self._stopping
            if self._proc is proc:
                self._proc = None
            if self._daemon is not None and self._daemon.pid == proc.pid:
                self._daemon.alive = False

        if expected:
            log.info(f"Daemon exited (code={code})")
        else:
            log.error(f"Daemon exited unexpectedly (code={code})")

        for listener in list(self._exit_listeners):
            try:
                listener(code, expected)
            except Exception:
                log.exception("Exit listener failed")

    def _read_output(self, proc: subprocess.Popen) -> None:
        """Forward captured daemon output to the log."""
        try:
            for line in proc.stdout:
                log.debug(f"[bulletproofd] {line.rstrip()}")
        except (OSError, ValueError):
            pass
