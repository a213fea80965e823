"""Data models shared by the controller components."""

import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from bulletproof_ui.constants import INTEGRATIONS, PROVIDERS

VALID_PROVIDERS = set(PROVIDERS)
VALID_INTEGRATIONS = set(INTEGRATIONS)

# Hostname or IP: alphanumeric, dots, hyphens, colons (IPv6)
RE_SERVER = re.compile(r"^[a-zA-Z0-9:\[][-a-zA-Z0-9.:\]]*$")
RE_COUNTRY = re.compile(r"^[A-Z]{2}$")

MAX_SERVER_LEN = 253


class Phase(Enum):
    """Connection phase owned by the orchestrator."""
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"


class EventKind(Enum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class Egress:
    """Public egress identity as seen through the proxy."""
    ip: Optional[str] = None
    country: Optional[str] = None
    isp: Optional[str] = None
    asn: Optional[str] = None


@dataclass(frozen=True)
class ProbeSample:
    """One fine-loop sample: port liveness, latency and egress."""
    listening: bool = False
    latency_ms: Optional[float] = None
    egress: Optional[Egress] = None

    @classmethod
    def empty(cls) -> "ProbeSample":
        return cls()


@dataclass(frozen=True)
class ConnectionState:
    """Snapshot of the authoritative connection state."""
    phase: Phase = Phase.IDLE
    bind: Optional[str] = None
    message: str = ""
    last_error: Optional[str] = None
    # Fields below are reported by the daemon, not owned by the orchestrator
    daemon_connected: bool = False
    daemon_alive: bool = False
    pac_enabled: bool = False
    tun_active: bool = False
    probe: ProbeSample = field(default_factory=ProbeSample.empty)

    @property
    def busy(self) -> bool:
        return self.phase in (Phase.CONNECTING, Phase.DISCONNECTING)


@dataclass(frozen=True)
class ConnectOptions:
    key: Optional[str] = None
    integration: str = "direct"


@dataclass(frozen=True)
class ConnectRequest:
    """Immutable connect payload, built fresh for every attempt."""
    provider: str = "warp"
    server: Optional[str] = None
    port: Optional[int] = None
    exit_country: Optional[str] = None
    options: ConnectOptions = field(default_factory=ConnectOptions)

    def __post_init__(self):
        if self.provider not in VALID_PROVIDERS:
            raise ValueError(f"Invalid provider: {self.provider}")
        if self.server is not None:
            if len(self.server) > MAX_SERVER_LEN or not RE_SERVER.match(self.server):
                raise ValueError("Invalid server format")
        if self.port is not None:
            if isinstance(self.port, bool) or not isinstance(self.port, int):
                raise ValueError("Port must be an integer")
            if not 1 <= self.port <= 65535:
                raise ValueError(f"Port out of range: {self.port}")
        if self.exit_country is not None and not RE_COUNTRY.match(self.exit_country):
            raise ValueError(f"Invalid exit country: {self.exit_country}")
        if self.options.integration not in VALID_INTEGRATIONS:
            raise ValueError(f"Invalid integration: {self.options.integration}")

    def to_payload(self) -> dict:
        """Serialize to the daemon's JSON shape, omitting unset fields."""
        payload = {"provider": self.provider}
        if self.server:
            payload["server"] = self.server
        if self.port:
            payload["port"] = self.port
        if self.exit_country:
            payload["exitCountry"] = self.exit_country
        options = {"integration": self.options.integration}
        if self.options.key:
            options["key"] = self.options.key
        payload["options"] = options
        return payload


@dataclass
class ConnectSettings:
    """In-memory user settings the connect request is built from."""
    provider: str = "warp"
    server: str = ""
    port: int = 0
    exit_country: str = "US"
    key: str = ""
    integration: str = "direct"

    def build_request(self) -> ConnectRequest:
        # Empty server/port let the daemon auto-select endpoints
        return ConnectRequest(
            provider=self.provider,
            server=self.server or None,
            port=self.port or None,
            exit_country=(self.exit_country or "").upper() or None,
            options=ConnectOptions(
                key=self.key or None,
                integration=self.integration,
            ),
        )


@dataclass(frozen=True)
class EventRecord:
    text: str
    kind: EventKind = EventKind.INFO
    timestamp: float = field(default_factory=time.time)


@dataclass
class DaemonProcess:
    """The supervised daemon child process."""
    pid: int
    binary_path: str
    environment: dict
    alive: bool = True
