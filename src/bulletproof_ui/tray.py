"""System tray icon and menu for the controller."""

import time
from typing import List, Optional

from PyQt6.QtCore import QObject, pyqtSignal
from PyQt6.QtGui import QIcon
from PyQt6.QtWidgets import QMenu, QSystemTrayIcon

from bulletproof_ui.constants import (
    APP_NAME,
    ICONS_DIR,
    MSG_CONNECTING,
    MSG_DISCONNECTING,
    STATUS_CONNECTED,
    STATUS_CONNECTING,
    STATUS_DISCONNECTED,
)
from bulletproof_ui.models import ConnectionState, EventKind, EventRecord, Phase

EVENT_MARKS = {
    EventKind.INFO: "•",
    EventKind.SUCCESS: "✓",
    EventKind.ERROR: "✗",
}


def get_icon(name: str) -> QIcon:
    """Get an icon, trying bundled resources first, then system icons.

    Args:
        name: Icon name (without extension)

    Returns:
        QIcon instance
    """
    for ext in [".svg", ".png"]:
        resource_path = ICONS_DIR / f"{name}{ext}"
        if resource_path.exists():
            return QIcon(str(resource_path))

    fallbacks = {
        "vpn-connected": "network-vpn-symbolic",
        "vpn-disconnected": "network-vpn-disconnected-symbolic",
        "vpn-connecting": "network-vpn-acquiring-symbolic",
        "app-icon": "network-vpn",
    }
    icon = QIcon.fromTheme(fallbacks.get(name, name))
    if not icon.isNull():
        return icon

    # Last resort: return empty icon
    return QIcon()


def status_for(phase: Phase) -> str:
    if phase == Phase.CONNECTED:
        return STATUS_CONNECTED
    if phase in (Phase.CONNECTING, Phase.DISCONNECTING):
        return STATUS_CONNECTING
    return STATUS_DISCONNECTED


def describe_probe(state: ConnectionState) -> Optional[str]:
    """One-line summary of the latest fine-loop sample."""
    if state.phase != Phase.CONNECTED:
        return None
    probe = state.probe
    parts = ["listening" if probe.listening else "not listening"]
    if probe.latency_ms is not None:
        parts.append(f"{probe.latency_ms:.0f} ms")
    if probe.egress is not None:
        egress = probe.egress
        where = " / ".join(p for p in (egress.ip, egress.country, egress.isp) if p)
        if where:
            parts.append(where)
    return " · ".join(parts)


class VPNTrayIcon(QObject):
    """System tray icon rendering the connection state."""

    # Signals
    toggle_requested = pyqtSignal()
    diagnostics_requested = pyqtSignal()
    reset_identity_requested = pyqtSignal()
    identity_requested = pyqtSignal()
    proxy_test_requested = pyqtSignal()
    latency_requested = pyqtSignal()
    system_proxy_toggled = pyqtSignal(bool)
    quit_requested = pyqtSignal()

    def __init__(self, parent: Optional[QObject] = None):
        super().__init__(parent)

        self.tray = QSystemTrayIcon(parent)
        self.tray.setToolTip(APP_NAME)
        self._current_status = STATUS_DISCONNECTED

        # Load icons
        self._icons = {
            STATUS_DISCONNECTED: get_icon("vpn-disconnected"),
            STATUS_CONNECTING: get_icon("vpn-connecting"),
            STATUS_CONNECTED: get_icon("vpn-connected"),
        }
        app_icon = get_icon("app-icon")
        if not app_icon.isNull():
            for status, icon in self._icons.items():
                if icon.isNull():
                    self._icons[status] = app_icon

        self._setup_menu()
        self._update_icon()
        self.tray.activated.connect(self._on_activated)

    def _setup_menu(self) -> None:
        self.menu = QMenu()

        # Status header (non-clickable)
        self._status_action = self.menu.addAction("Not Connected")
        self._status_action.setEnabled(False)
        self._probe_action = self.menu.addAction("")
        self._probe_action.setEnabled(False)
        self._probe_action.setVisible(False)
        self._error_action = self.menu.addAction("")
        self._error_action.setEnabled(False)
        self._error_action.setVisible(False)

        self.menu.addSeparator()

        self._toggle_action = self.menu.addAction("Connect")
        self._toggle_action.triggered.connect(self.toggle_requested.emit)

        self._proxy_action = self.menu.addAction("Use System Proxy")
        self._proxy_action.setCheckable(True)
        self._proxy_action.setEnabled(False)
        self._proxy_action.triggered.connect(self.system_proxy_toggled.emit)

        self._history_menu = self.menu.addMenu("Recent Activity")
        self._history_menu.setEnabled(False)

        tools = self.menu.addMenu("Tools")
        diag_action = tools.addAction("Diagnostics…")
        diag_action.triggered.connect(self.diagnostics_requested.emit)
        proxy_test_action = tools.addAction("Proxy Test…")
        proxy_test_action.triggered.connect(self.proxy_test_requested.emit)
        latency_action = tools.addAction("Latency…")
        latency_action.triggered.connect(self.latency_requested.emit)
        identity_action = tools.addAction("Identity…")
        identity_action.triggered.connect(self.identity_requested.emit)
        reset_action = tools.addAction("Reset Identity")
        reset_action.triggered.connect(self.reset_identity_requested.emit)

        self.menu.addSeparator()

        quit_action = self.menu.addAction("Quit")
        quit_action.triggered.connect(self.quit_requested.emit)

        self.tray.setContextMenu(self.menu)

    def _on_activated(self, reason: QSystemTrayIcon.ActivationReason) -> None:
        if reason == QSystemTrayIcon.ActivationReason.DoubleClick:
            self.toggle_requested.emit()

    def render(self, state: ConnectionState) -> None:
        """Update text, icon and actions from a state snapshot."""
        self._current_status = status_for(state.phase)
        self._update_icon()

        if state.phase == Phase.CONNECTED:
            text = state.message or "Connected"
            self._toggle_action.setText("Disconnect")
        elif state.phase == Phase.CONNECTING:
            text = state.message or MSG_CONNECTING
            self._toggle_action.setText(MSG_CONNECTING)
        elif state.phase == Phase.DISCONNECTING:
            text = MSG_DISCONNECTING
            self._toggle_action.setText(MSG_DISCONNECTING)
        else:
            text = state.message or "Not Connected"
            self._toggle_action.setText("Connect")

        self._toggle_action.setEnabled(not state.busy and state.daemon_alive)
        self._proxy_action.setEnabled(state.phase == Phase.CONNECTED)
        self._proxy_action.setChecked(state.pac_enabled)
        self._status_action.setText(text)
        self.tray.setToolTip(f"{APP_NAME} - {text}")

        probe = describe_probe(state)
        self._probe_action.setVisible(probe is not None)
        self._probe_action.setText(probe or "")

        self._error_action.setVisible(bool(state.last_error))
        self._error_action.setText(f"Last error: {state.last_error}" if state.last_error else "")

    def render_history(self, records: List[EventRecord]) -> None:
        """Rebuild the recent activity submenu (newest first)."""
        self._history_menu.clear()
        self._history_menu.setEnabled(bool(records))
        for record in records:
            stamp = time.strftime("%H:%M:%S", time.localtime(record.timestamp))
            action = self._history_menu.addAction(
                f"{EVENT_MARKS[record.kind]} {stamp}  {record.text}"
            )
            action.setEnabled(False)

    def _update_icon(self) -> None:
        icon = self._icons.get(self._current_status, self._icons[STATUS_DISCONNECTED])
        self.tray.setIcon(icon)

    def show(self) -> None:
        self.tray.show()

    def hide(self) -> None:
        self.tray.hide()

    @staticmethod
    def is_system_tray_available() -> bool:
        return QSystemTrayIcon.isSystemTrayAvailable()
