"""Tests for platform helpers."""

import os
import re
import signal
import subprocess

import pytest

from bulletproof_ui.platform import binaries, process
from bulletproof_ui.platform.process import (
    PosixTreeKiller,
    WindowsTreeKiller,
    children_of,
    get_tree_killer,
)


class TestBinaries:
    """Tests for binary lookup."""

    def test_platform_key_format(self):
        assert re.match(r"^(darwin|win32|linux|[a-z0-9]+)-[a-z0-9_]+$", binaries.platform_key())

    @pytest.mark.parametrize("machine,arch", [("x86_64", "x64"), ("AMD64", "x64"), ("aarch64", "arm64")])
    def test_arch_aliases(self, monkeypatch, machine, arch):
        monkeypatch.setattr(binaries.platform, "machine", lambda: machine)
        assert binaries.platform_key().endswith(f"-{arch}")

    def test_exe_name(self, monkeypatch):
        monkeypatch.setattr(binaries.sys, "platform", "win32")
        assert binaries.exe_name("bulletproofd") == "bulletproofd.exe"
        monkeypatch.setattr(binaries.sys, "platform", "linux")
        assert binaries.exe_name("bulletproofd") == "bulletproofd"

    def test_daemon_candidate_order(self, tmp_path):
        candidates = binaries.daemon_candidates({"BACKEND_BIN": "/opt/bp/bulletproofd"}, tmp_path)

        key = binaries.platform_key()
        name = binaries.exe_name("bulletproofd")
        assert candidates == [
            binaries.Path("/opt/bp/bulletproofd"),
            binaries.BIN_RESOURCES_DIR / key / name,
            tmp_path / "resources" / "bin" / key / name,
            tmp_path.parent / "backend" / name,
        ]

    def test_find_first_skips_missing(self, tmp_path):
        real = tmp_path / "real"
        real.write_text("")
        assert binaries.find_first([tmp_path / "missing", real]) == real
        assert binaries.find_first([tmp_path / "missing"]) is None

    def test_find_helper_prefers_first_name(self, tmp_path, monkeypatch):
        monkeypatch.setattr(binaries, "BIN_RESOURCES_DIR", tmp_path / "packaged")
        bin_dir = tmp_path / "resources" / "bin" / binaries.platform_key()
        bin_dir.mkdir(parents=True)
        for name in ("sb-helper", "sing-box"):
            (bin_dir / binaries.exe_name(name)).write_text("")

        found = binaries.find_helper(["sb-helper", "sing-box"], tmp_path)

        assert found.name == binaries.exe_name("sb-helper")

    def test_quarantine_only_on_macos(self, monkeypatch, tmp_path):
        monkeypatch.setattr(binaries.sys, "platform", "linux")
        assert binaries.has_quarantine_flag(tmp_path) is False


class TestTreeKillers:
    """Tests for process-tree termination strategies."""

    def test_windows_taskkill(self, monkeypatch):
        commands = []
        monkeypatch.setattr(process.subprocess, "run", lambda cmd, **kw: commands.append(cmd))

        killer = WindowsTreeKiller()
        killer.terminate(321)
        killer.kill(321)

        assert commands == [
            ["taskkill", "/pid", "321", "/t"],
            ["taskkill", "/pid", "321", "/t", "/f"],
        ]

    def test_windows_taskkill_failure_swallowed(self, monkeypatch):
        def missing(cmd, **kw):
            raise FileNotFoundError("taskkill")

        monkeypatch.setattr(process.subprocess, "run", missing)
        WindowsTreeKiller().kill(321)

    @pytest.mark.skipif(os.name != "posix", reason="process groups are POSIX only")
    def test_posix_never_signals_own_group(self, monkeypatch):
        sent = []
        monkeypatch.setattr(process.os, "getpgid", lambda pid: os.getpgrp())
        monkeypatch.setattr(process.os, "killpg", lambda pgid, sig: sent.append((pgid, sig)))
        monkeypatch.setattr(process, "children_of", lambda pid: [])

        PosixTreeKiller()._signal_group(999999, signal.SIGTERM)

        assert sent == []

    @pytest.mark.skipif(os.name != "posix", reason="process groups are POSIX only")
    def test_posix_signals_daemon_group(self, monkeypatch):
        sent = []
        monkeypatch.setattr(process.os, "getpgid", lambda pid: 777777)
        monkeypatch.setattr(process.os, "killpg", lambda pgid, sig: sent.append((pgid, sig)))
        monkeypatch.setattr(process, "children_of", lambda pid: [])

        PosixTreeKiller().terminate(999999)

        assert sent == [(777777, signal.SIGTERM)]

    @pytest.mark.skipif(os.name != "posix", reason="process groups are POSIX only")
    def test_posix_kills_real_tree(self):
        """A child in its own session is gone after a tree kill."""
        proc = subprocess.Popen(
            ["sh", "-c", "sleep 30 & sleep 30"],
            start_new_session=True,
        )
        try:
            killer = PosixTreeKiller()
            killer.kill(proc.pid)
            assert proc.wait(timeout=5) is not None
            assert children_of(proc.pid) == []
        finally:
            if proc.poll() is None:
                proc.kill()

    def test_children_of_missing_pid(self):
        assert children_of(2 ** 22 + 12345) == []

    def test_get_tree_killer(self):
        expected = WindowsTreeKiller if os.name == "nt" else PosixTreeKiller
        assert isinstance(get_tree_killer(), expected)
