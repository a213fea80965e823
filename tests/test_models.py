"""Tests for models, events, state store and configuration."""

import pytest

from bulletproof_ui.config import ControllerConfig
from bulletproof_ui.errors import ConnectTimeout, ControllerError, ProbeFailed
from bulletproof_ui.events import EVENT_CAPACITY, EventLog
from bulletproof_ui.models import (
    ConnectionState,
    ConnectOptions,
    ConnectRequest,
    ConnectSettings,
    EventKind,
    Phase,
    ProbeSample,
)
from bulletproof_ui.state import StateStore


class TestConnectRequest:
    """Tests for request validation and serialization."""

    def test_minimal_payload(self):
        assert ConnectRequest().to_payload() == {
            "provider": "warp",
            "options": {"integration": "direct"},
        }

    def test_full_payload(self):
        request = ConnectRequest(
            provider="psiphon",
            server="engage.cloudflareclient.com",
            port=2408,
            exit_country="CA",
            options=ConnectOptions(key="abc", integration="tun"),
        )
        assert request.to_payload() == {
            "provider": "psiphon",
            "server": "engage.cloudflareclient.com",
            "port": 2408,
            "exitCountry": "CA",
            "options": {"integration": "tun", "key": "abc"},
        }

    @pytest.mark.parametrize("kwargs", [
        {"provider": "openvpn"},
        {"server": "bad host; rm -rf /"},
        {"server": "a" * 300},
        {"port": 0},
        {"port": 70000},
        {"port": True},
        {"port": "443"},
        {"exit_country": "usa"},
        {"exit_country": "us"},
        {"options": ConnectOptions(integration="wireguard")},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            ConnectRequest(**kwargs)

    def test_ipv6_server_accepted(self):
        assert ConnectRequest(server="[2606:4700::1]").server == "[2606:4700::1]"


class TestConnectSettings:
    """Tests for building requests from settings."""

    def test_empty_fields_are_omitted(self):
        request = ConnectSettings().build_request()
        assert request.server is None
        assert request.port is None
        assert request.options.key is None
        assert request.exit_country == "US"

    def test_country_uppercased(self):
        assert ConnectSettings(exit_country="de").build_request().exit_country == "DE"

    def test_each_build_is_fresh(self):
        settings = ConnectSettings()
        first = settings.build_request()
        settings.provider = "gool"
        assert first.provider == "warp"
        assert settings.build_request().provider == "gool"


class TestConnectionState:
    """Tests for state snapshots."""

    def test_defaults(self):
        state = ConnectionState()
        assert state.phase == Phase.IDLE
        assert state.probe == ProbeSample.empty()
        assert not state.busy

    @pytest.mark.parametrize("phase,busy", [
        (Phase.IDLE, False),
        (Phase.CONNECTING, True),
        (Phase.CONNECTED, False),
        (Phase.DISCONNECTING, True),
    ])
    def test_busy(self, phase, busy):
        assert ConnectionState(phase=phase).busy is busy


class TestEventLog:
    """Tests for the bounded activity log."""

    def test_most_recent_first_and_bounded(self):
        log = EventLog()
        for i in range(5):
            log.push(f"event {i}")

        assert len(log) == EVENT_CAPACITY == 3
        assert [r.text for r in log.records()] == ["event 4", "event 3", "event 2"]

    def test_listener_and_count(self):
        log = EventLog()
        seen = []
        log.add_listener(seen.append)

        log.push("Connecting…")
        log.push("boom", EventKind.ERROR)

        assert [r.text for r in seen] == ["Connecting…", "boom"]
        assert log.count(EventKind.ERROR) == 1
        assert log.count(EventKind.SUCCESS) == 0

    def test_broken_listener_does_not_block_push(self):
        log = EventLog()

        def broken(record):
            raise RuntimeError("listener bug")

        log.add_listener(broken)
        log.push("still recorded")

        assert log.records()[0].text == "still recorded"

    def test_clear(self):
        log = EventLog()
        log.push("x")
        log.clear()
        assert log.records() == []


class TestStateStore:
    """Tests for the state holder."""

    def test_update_notifies(self):
        store = StateStore()
        seen = []
        store.add_listener(lambda old, new: seen.append((old.phase, new.phase)))

        store.update(phase=Phase.CONNECTING)

        assert seen == [(Phase.IDLE, Phase.CONNECTING)]
        assert store.state.phase == Phase.CONNECTING

    def test_no_op_update_is_silent(self):
        store = StateStore()
        seen = []
        store.add_listener(lambda old, new: seen.append(new))

        store.update(phase=Phase.IDLE, message="")

        assert seen == []

    def test_update_from_listener_keeps_order(self):
        """Writes made by a listener reach later listeners after the current one."""
        store = StateStore()
        seen = []

        def follow_up(old, new):
            if new.phase == Phase.CONNECTING:
                store.update(message="Connecting…")

        store.add_listener(follow_up)
        store.add_listener(lambda old, new: seen.append((old.message, new.message)))

        store.update(phase=Phase.CONNECTING)

        assert seen == [("", ""), ("", "Connecting…")]
        assert store.state.message == "Connecting…"

    def test_phase_epoch_counts_phase_changes(self):
        store = StateStore()

        store.update(message="x")
        store.update(phase=Phase.CONNECTING)
        store.update(phase=Phase.CONNECTED)

        assert store.phase_epoch == 2


class TestControllerConfig:
    """Tests for configuration."""

    def test_defaults(self):
        config = ControllerConfig()
        assert config.base_url == "http://127.0.0.1:4765"
        assert config.connect_timeout == 75.0
        assert config.status_poll_interval == 0.3
        assert config.default_bind == "127.0.0.1:8086"
        assert config.toast_ms == 1800

    def test_from_env(self):
        config = ControllerConfig.from_env({
            "BP_API_ADDR": "127.0.0.1:5000",
            "BP_CONNECT_TIMEOUT": "30",
            "BP_LATENCY_HOST": "9.9.9.9",
        })
        assert config.api_addr == "127.0.0.1:5000"
        assert config.connect_timeout == 30.0
        assert config.latency_host == "9.9.9.9"

    def test_invalid_timeout_ignored(self):
        config = ControllerConfig.from_env({"BP_CONNECT_TIMEOUT": "soon"})
        assert config.connect_timeout == 75.0

    def test_overrides_beat_env(self):
        config = ControllerConfig.from_env({"BP_API_ADDR": "127.0.0.1:5000"}, api_addr="127.0.0.1:6000")
        assert config.api_addr == "127.0.0.1:6000"

    def test_none_overrides_ignored(self):
        config = ControllerConfig.from_env({}, api_addr=None)
        assert config.api_addr == "127.0.0.1:4765"


class TestErrors:
    """Tests for error types."""

    def test_hierarchy(self):
        assert issubclass(ConnectTimeout, ControllerError)
        assert str(ConnectTimeout()) == "Connection timed out"

    def test_probe_failed_names_bind(self):
        assert str(ProbeFailed("127.0.0.1:8086")) == "Nothing listening on 127.0.0.1:8086"
