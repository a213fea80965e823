"""Process-tree termination strategies.

- Unix: signal the process group, then kill leftover children found by
  parent PID (covers children that left the group)
- Windows: recursive tree kill with taskkill

Every step is best-effort. Callers get a boolean, never an exception.
"""

import logging
import os
import signal
import subprocess
import sys
from typing import List

import psutil

log = logging.getLogger(__name__)


def children_of(pid: int) -> List[psutil.Process]:
    """List descendants of ``pid`` by parent-PID lookup.

    Args:
        pid: Parent process ID

    Returns:
        Descendant processes (empty if the parent is gone)
    """
    try:
        return psutil.Process(pid).children(recursive=True)
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return []


class ProcessTreeKiller:
    """Terminate a process and everything it spawned."""

    def terminate(self, pid: int) -> None:
        """Ask the process tree to exit gracefully."""
        raise NotImplementedError

    def kill(self, pid: int) -> None:
        """Force-kill the process tree."""
        raise NotImplementedError


class PosixTreeKiller(ProcessTreeKiller):
    """Process-group signalling with a parent-PID sweep."""

    def _signal_group(self, pid: int, sig: int) -> None:
        try:
            pgid = os.getpgid(pid)
            # Never signal our own group
            if pgid == os.getpgrp():
                return
            os.killpg(pgid, sig)
        except OSError as e:
            log.debug(f"killpg({pid}, {sig}) failed: {e}")

    def _signal_children(self, pid: int, force: bool) -> None:
        for child in children_of(pid):
            try:
                if force:
                    child.kill()
                else:
                    child.terminate()
            except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
                log.debug(f"Signalling child {child.pid} failed: {e}")

    def terminate(self, pid: int) -> None:
        self._signal_children(pid, force=False)
        self._signal_group(pid, signal.SIGTERM)

    def kill(self, pid: int) -> None:
        # Collect children first: once the parent dies they get reparented
        children = children_of(pid)
        self._signal_group(pid, signal.SIGKILL)
        for child in children:
            try:
                child.kill()
            except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
                log.debug(f"Killing child {child.pid} failed: {e}")
        try:
            psutil.Process(pid).kill()
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            log.debug(f"Killing {pid} failed: {e}")


class WindowsTreeKiller(ProcessTreeKiller):
    """taskkill based tree termination."""

    def _taskkill(self, pid: int, force: bool) -> None:
        cmd = ["taskkill", "/pid", str(pid), "/t"]
        if force:
            cmd.append("/f")
        try:
            subprocess.run(
                cmd,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=10,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            log.debug(f"taskkill {pid} failed: {e}")

    def terminate(self, pid: int) -> None:
        self._taskkill(pid, force=False)

    def kill(self, pid: int) -> None:
        self._taskkill(pid, force=True)


def get_tree_killer() -> ProcessTreeKiller:
    """Get the tree-kill strategy for the current platform."""
    if sys.platform == "win32":
        return WindowsTreeKiller()
    return PosixTreeKiller()
