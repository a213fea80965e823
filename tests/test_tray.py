"""Tests for tray rendering helpers (no display needed)."""

import pytest

pytest.importorskip("PyQt6.QtWidgets")

from bulletproof_ui.constants import STATUS_CONNECTED, STATUS_CONNECTING, STATUS_DISCONNECTED
from bulletproof_ui.models import ConnectionState, Egress, Phase, ProbeSample
from bulletproof_ui.tray import describe_probe, status_for


class TestTrayHelpers:
    """Tests for state-to-text mapping."""

    @pytest.mark.parametrize("phase,status", [
        (Phase.IDLE, STATUS_DISCONNECTED),
        (Phase.CONNECTING, STATUS_CONNECTING),
        (Phase.DISCONNECTING, STATUS_CONNECTING),
        (Phase.CONNECTED, STATUS_CONNECTED),
    ])
    def test_status_for(self, phase, status):
        assert status_for(phase) == status

    def test_probe_hidden_when_not_connected(self):
        assert describe_probe(ConnectionState()) is None

    def test_probe_summary(self):
        state = ConnectionState(
            phase=Phase.CONNECTED,
            probe=ProbeSample(
                listening=True,
                latency_ms=23.4,
                egress=Egress(ip="104.28.1.2", country="Germany"),
            ),
        )
        assert describe_probe(state) == "listening · 23 ms · 104.28.1.2 / Germany"

    def test_empty_probe(self):
        assert describe_probe(ConnectionState(phase=Phase.CONNECTED)) == "not listening"
