"""Tunable timings and addresses for the controller."""

import logging
import os
from dataclasses import dataclass, replace

from bulletproof_ui.constants import DEFAULT_API_ADDR, DEFAULT_BIND

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ControllerConfig:
    """Intervals and timeouts (seconds unless noted).

    The defaults were tuned against a real daemon; override them here
    rather than in control flow.
    """

    api_addr: str = DEFAULT_API_ADDR
    default_bind: str = DEFAULT_BIND

    # Supervisor
    health_timeout: float = 5.0
    health_interval: float = 0.3
    stop_grace: float = 3.0
    capture_output: bool = False

    # Orchestrator
    status_poll_interval: float = 0.3
    connect_timeout: float = 75.0
    port_grace: float = 0.8

    # Client
    http_timeout: float = 10.0
    probe_timeout: float = 0.8

    # Reconciliation
    coarse_interval: float = 2.0
    fine_interval: float = 4.0
    latency_host: str = "1.1.1.1"
    latency_port: int = 443
    latency_timeout: float = 3.0

    # UI
    toast_ms: int = 1800

    @property
    def base_url(self) -> str:
        return f"http://{self.api_addr}"

    @classmethod
    def from_env(cls, environ=None, **overrides) -> "ControllerConfig":
        """Build a config, honouring BP_* environment overrides."""
        env = os.environ if environ is None else environ
        config = cls()
        if env.get("BP_API_ADDR"):
            config = replace(config, api_addr=env["BP_API_ADDR"])
        if env.get("BP_CONNECT_TIMEOUT"):
            try:
                config = replace(config, connect_timeout=float(env["BP_CONNECT_TIMEOUT"]))
            except ValueError:
                log.warning(f"Ignoring invalid BP_CONNECT_TIMEOUT={env['BP_CONNECT_TIMEOUT']!r}")
        if env.get("BP_LATENCY_HOST"):
            config = replace(config, latency_host=env["BP_LATENCY_HOST"])
        overrides = {k: v for k, v in overrides.items() if v is not None}
        return replace(config, **overrides)
