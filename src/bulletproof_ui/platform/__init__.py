"""Platform-specific modules.

This package provides platform-specific implementations for:
- binaries: locating the daemon and its companion executables
- process: terminating the daemon's whole process tree

The appropriate strategy is selected based on sys.platform.
"""

from bulletproof_ui.platform.process import ProcessTreeKiller, get_tree_killer

__all__ = ["ProcessTreeKiller", "get_tree_killer"]
