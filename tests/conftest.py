"""Shared fakes for controller tests."""

import asyncio
import json

import pytest

from bulletproof_ui.backend.client import DaemonStatus, Reply
from bulletproof_ui.config import ControllerConfig
from bulletproof_ui.events import EventLog
from bulletproof_ui.models import ConnectSettings
from bulletproof_ui.orchestrator import Orchestrator
from bulletproof_ui.state import StateStore

BIND = "127.0.0.1:8086"

EGRESS_BODY = json.dumps({
    "query": "104.28.1.2",
    "country": "Germany",
    "isp": "Cloudflare, Inc.",
    "as": "AS13335 Cloudflare, Inc.",
})


class FakeClock:
    """Virtual monotonic clock; ``sleep`` advances it instead of waiting."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class FakeClient:
    """In-memory stand-in for ControlPlaneClient."""

    def __init__(self, clock=None):
        self.clock = clock
        self.calls = []
        self.status_times = []
        self.healthy = True
        self.connect_reply = Reply(data={"ok": True})
        self.connect_error = None
        self.connect_gate = None
        self.disconnect_reply = Reply(data={"ok": True})
        self.statuses = []
        self.status = DaemonStatus(connected=True, bind=BIND, message="connected")
        self.listening = True
        self.test_reply = Reply(data={"status": 200, "body": EGRESS_BODY})
        self.identity_reply = Reply(data={"id": "abc"})
        self.diag_reply = Reply(data={"version": "1.2.3"})
        self.proxy_reply = Reply(data={"ok": True})

    def names(self):
        return [name for name, _ in self.calls]

    async def health(self):
        self.calls.append(("health", None))
        return self.healthy

    async def get_status(self):
        self.calls.append(("status", None))
        if self.clock is not None:
            self.status_times.append(self.clock.now)
        if self.statuses:
            return self.statuses.pop(0)
        return self.status

    async def connect(self, request):
        self.calls.append(("connect", request))
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        if self.connect_error is not None:
            raise self.connect_error
        return self.connect_reply

    async def disconnect(self):
        self.calls.append(("disconnect", None))
        return self.disconnect_reply

    async def test_proxy(self, bind=None):
        self.calls.append(("test_proxy", bind))
        return self.test_reply

    async def probe_port(self, bind=None):
        self.calls.append(("probe_port", bind))
        return self.listening

    async def get_identity(self):
        self.calls.append(("identity", None))
        return self.identity_reply

    async def reset_identity(self):
        self.calls.append(("identity_reset", None))
        return self.identity_reply

    async def get_diagnostics(self):
        self.calls.append(("diag", None))
        return self.diag_reply

    async def enable_system_proxy(self, bind=None):
        self.calls.append(("proxy_enable", bind))
        return self.proxy_reply

    async def disable_system_proxy(self):
        self.calls.append(("proxy_disable", None))
        return self.proxy_reply


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def client(clock):
    return FakeClient(clock)


@pytest.fixture
def store():
    return StateStore()


@pytest.fixture
def events():
    return EventLog()


@pytest.fixture
def config():
    return ControllerConfig()


@pytest.fixture
def orchestrator(client, store, events, config, clock):
    return Orchestrator(
        client,
        store,
        events,
        ConnectSettings().build_request,
        config,
        clock=clock,
        sleep=clock.sleep,
    )
