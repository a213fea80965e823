"""Cross-platform lookup of the daemon and its helper binaries."""

import os
import platform
import subprocess
import sys
from pathlib import Path
from typing import Iterable, List, Mapping, Optional

from bulletproof_ui.constants import BIN_RESOURCES_DIR, DAEMON_NAME

_ARCH_ALIASES = {
    "x86_64": "x64",
    "amd64": "x64",
    "x64": "x64",
    "arm64": "arm64",
    "aarch64": "arm64",
    "i386": "ia32",
    "i686": "ia32",
    "x86": "ia32",
}


def platform_key() -> str:
    """Return the ``{platform}-{arch}`` resource directory name.

    Platform is one of darwin, win32, linux; arch is x64, arm64 or ia32.
    """
    plat = sys.platform
    if plat.startswith("linux"):
        plat = "linux"
    machine = platform.machine().lower()
    arch = _ARCH_ALIASES.get(machine, machine or "x64")
    return f"{plat}-{arch}"


def exe_name(name: str) -> str:
    """Append ``.exe`` on Windows."""
    return f"{name}.exe" if sys.platform == "win32" else name


def resource_candidates(name: str, cwd: Optional[Path] = None) -> List[Path]:
    """Candidate paths for a packaged helper binary.

    Args:
        name: Binary name without extension
        cwd: Working directory used for the development-tree fallback

    Returns:
        Packaged resource path first, then the development-tree path
    """
    key = platform_key()
    cwd = Path.cwd() if cwd is None else cwd
    binary = exe_name(name)
    return [
        BIN_RESOURCES_DIR / key / binary,
        cwd / "resources" / "bin" / key / binary,
    ]


def find_first(paths: Iterable[Path]) -> Optional[Path]:
    """Return the first path that exists as a file."""
    for path in paths:
        if path.is_file():
            return path
    return None


def daemon_candidates(environ: Optional[Mapping[str, str]] = None,
                      cwd: Optional[Path] = None) -> List[Path]:
    """Ordered search list for the daemon executable.

    Precedence: ``BACKEND_BIN`` override, packaged resource keyed by
    platform and architecture, then the development tree.
    """
    env = os.environ if environ is None else environ
    cwd = Path.cwd() if cwd is None else cwd
    candidates = []
    if env.get("BACKEND_BIN"):
        candidates.append(Path(env["BACKEND_BIN"]))
    candidates.extend(resource_candidates(DAEMON_NAME, cwd))
    # Development: project root is one level up, binary under ../backend
    candidates.append(cwd.parent / "backend" / exe_name(DAEMON_NAME))
    return candidates


def find_helper(names: Iterable[str], cwd: Optional[Path] = None) -> Optional[Path]:
    """Resolve the first available companion binary among ``names``."""
    for name in names:
        found = find_first(resource_candidates(name, cwd))
        if found:
            return found
    return None


def has_quarantine_flag(path: Path) -> bool:
    """Check for the macOS quarantine attribute on a binary.

    Returns:
        True if the attribute is present (always False off macOS)
    """
    if sys.platform != "darwin":
        return False
    try:
        result = subprocess.run(
            ["xattr", "-p", "com.apple.quarantine", str(path)],
            capture_output=True,
            timeout=5,
        )
        return result.returncode == 0
    except (OSError, subprocess.TimeoutExpired):
        return False
