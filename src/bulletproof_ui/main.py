"""Tray application for the Bulletproof controller."""

import json
import logging
import sys

from PyQt6.QtCore import QObject, pyqtSignal
from PyQt6.QtWidgets import QApplication, QInputDialog, QMessageBox

from bulletproof_ui.constants import APP_ID, APP_NAME, VERSION
from bulletproof_ui.controller import Controller
from bulletproof_ui.models import ConnectionState, EventRecord
from bulletproof_ui.notifications import NotificationManager
from bulletproof_ui.tray import VPNTrayIcon, get_icon

log = logging.getLogger(__name__)


class ControllerBridge(QObject):
    """Carries controller callbacks onto the GUI thread.

    Listeners fire on the control thread; emitting a signal owned by a
    GUI-thread QObject queues delivery to the GUI thread.
    """

    state_changed = pyqtSignal(object)
    event_pushed = pyqtSignal(object)
    reply_ready = pyqtSignal(str, object)

    def __init__(self, controller: Controller):
        super().__init__()
        controller.store.add_listener(lambda old, new: self.state_changed.emit(new))
        controller.events.add_listener(self.event_pushed.emit)

    def forward(self, title: str, future) -> None:
        """Emit ``reply_ready`` with the future's result once it completes."""
        def done(fut):
            try:
                self.reply_ready.emit(title, fut.result())
            except Exception as e:
                self.reply_ready.emit(title, e)

        future.add_done_callback(done)


class BulletproofApplication:
    """Main tray application controller."""

    def __init__(self, controller: Controller):
        self.app = QApplication(sys.argv)
        self.app.setApplicationName(APP_NAME)
        self.app.setApplicationDisplayName(APP_NAME)
        self.app.setApplicationVersion(VERSION)
        self.app.setDesktopFileName(APP_ID)
        self.app.setQuitOnLastWindowClosed(False)  # Keep running in tray

        app_icon = get_icon("app-icon")
        if not app_icon.isNull():
            self.app.setWindowIcon(app_icon)

        self.controller = controller
        self.bridge = ControllerBridge(controller)

        if not VPNTrayIcon.is_system_tray_available() and sys.platform != "darwin":
            QMessageBox.warning(
                None,
                "System Tray Not Available",
                "System tray is not available on your system.\n\n"
                "On GNOME, you may need to install the "
                "'gnome-shell-extension-appindicator' extension."
            )

        self.tray = VPNTrayIcon()
        self.notifications = NotificationManager(
            self.tray.tray, duration_ms=controller.config.toast_ms
        )

        self.tray.toggle_requested.connect(self._on_toggle)
        self.tray.diagnostics_requested.connect(self._on_diagnostics)
        self.tray.reset_identity_requested.connect(self._on_reset_identity)
        self.tray.identity_requested.connect(self._on_identity)
        self.tray.proxy_test_requested.connect(self._on_proxy_test)
        self.tray.latency_requested.connect(self._on_latency)
        self.tray.system_proxy_toggled.connect(self.controller.set_system_proxy)
        self.tray.quit_requested.connect(self._quit)

        self.bridge.state_changed.connect(self._on_state_changed)
        self.bridge.event_pushed.connect(self._on_event)
        self.bridge.reply_ready.connect(self._on_reply)

        self.tray.render(controller.store.state)

    def run(self) -> int:
        """Run the application.

        Returns:
            Exit code
        """
        self.tray.show()
        log.info(f"{APP_NAME} {VERSION} tray started")
        # Daemon readiness is awaited on the control loop, not here
        self.controller.start()
        self.controller.install_signal_handlers(on_signal=self.app.quit)
        try:
            return self.app.exec()
        finally:
            self.controller.shutdown()

    def _on_toggle(self) -> None:
        self.controller.toggle()

    def _on_diagnostics(self) -> None:
        self.bridge.forward("Diagnostics", self.controller.diagnostics())

    def _on_reset_identity(self) -> None:
        self.bridge.forward("Identity", self.controller.reset_identity())

    def _on_identity(self) -> None:
        self.bridge.forward("Identity", self.controller.get_identity())

    def _on_proxy_test(self) -> None:
        bind, ok = QInputDialog.getText(
            None, "Proxy Test", "Bind address:",
            text=self.controller.store.state.bind or self.controller.config.default_bind,
        )
        if ok:
            self.bridge.forward("Proxy Test", self.controller.proxy_test(bind.strip() or None))

    def _on_latency(self) -> None:
        self.bridge.forward("Latency", self.controller.measure_latency())

    def _on_state_changed(self, state: ConnectionState) -> None:
        self.tray.render(state)

    def _on_event(self, record: EventRecord) -> None:
        self.notifications.show_event(record)
        self.tray.render_history(self.controller.events.records())

    def _on_reply(self, title: str, reply) -> None:
        if isinstance(reply, Exception):
            QMessageBox.critical(None, title, str(reply))
            return
        if reply.error:
            QMessageBox.warning(None, title, reply.error)
            return
        QMessageBox.information(None, title, json.dumps(reply.data, indent=2)[:4000])

    def _quit(self) -> None:
        self.controller.shutdown()
        self.tray.hide()
        self.app.quit()


def run_tray(controller: Controller) -> int:
    """Start the tray UI around ``controller``."""
    app = BulletproofApplication(controller)
    return app.run()
