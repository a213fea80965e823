"""Constants and paths for the Bulletproof controller."""

import sys
from pathlib import Path

# Application info
APP_NAME = "Bulletproof"
APP_ID = "com.github.bulletproof-ui"
VERSION = "0.3.0"

# Paths
PACKAGE_DIR = Path(__file__).parent
RESOURCES_DIR = PACKAGE_DIR / "resources"
BIN_RESOURCES_DIR = RESOURCES_DIR / "bin"
ICONS_DIR = RESOURCES_DIR / "icons"

# Platform-specific paths
if sys.platform == "darwin":
    LOGS_DIR = Path.home() / "Library" / "Logs" / "Bulletproof"
elif sys.platform == "win32":
    LOGS_DIR = Path.home() / "AppData" / "Local" / "Bulletproof" / "logs"
else:
    # Linux paths (XDG)
    LOGS_DIR = Path.home() / ".local" / "share" / "bulletproof-ui" / "logs"

LOG_FILE = LOGS_DIR / "controller.log"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Daemon
DAEMON_NAME = "bulletproofd"
WARPPLUS_NAME = "warp-plus"
SINGBOX_NAMES = ("sb-helper", "sing-box")
DEFAULT_API_ADDR = "127.0.0.1:4765"
DEFAULT_BIND = "127.0.0.1:8086"

# Environment defaults handed to the daemon unless the caller set them
DAEMON_ENV_DEFAULTS = {
    "WARPPLUS_IPV4": "1",
    "WARPPLUS_VERBOSE": "1",
    "WARPPLUS_TEST_URL": "https://1.1.1.1/cdn-cgi/trace",
    "BP_SOCKS_DIRECT_FALLBACK": "1",
}

# Status constants (tray)
STATUS_DISCONNECTED = "disconnected"
STATUS_CONNECTING = "connecting"
STATUS_CONNECTED = "connected"

# Messages
MSG_CONNECTING = "Connecting…"
MSG_DISCONNECTING = "Disconnecting…"
MSG_DISCONNECTED = "Disconnected"
MSG_TIMED_OUT = "Connection timed out"
MSG_PORT_WAIT = "Port not listening yet…"
MSG_PROBE_FAILED = "Connected (probe failed)"
MSG_DAEMON_EXITED = "Daemon exited"

# Status messages containing any of these are treated as failures
FAILURE_KEYWORDS = ("fail", "error", "timeout", "denied", "not ready")

PROVIDERS = {
    "warp": {"name": "Cloudflare WARP"},
    "gool": {"name": "WARP-in-WARP (gool)"},
    "psiphon": {"name": "Psiphon"},
}

INTEGRATIONS = {
    "direct": "SOCKS proxy only",
    "pac": "System proxy (PAC)",
    "tun": "TUN (sing-box)",
}
