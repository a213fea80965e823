"""Toast notifications for connection events."""

from PyQt6.QtWidgets import QSystemTrayIcon

from bulletproof_ui.models import EventKind, EventRecord

TITLES = {
    EventKind.INFO: "Bulletproof",
    EventKind.SUCCESS: "VPN Connected",
    EventKind.ERROR: "VPN Error",
}


class NotificationManager:
    """Shows transient toasts through the system tray."""

    def __init__(self, tray_icon: QSystemTrayIcon, duration_ms: int = 1800):
        """Initialize the notification manager.

        Args:
            tray_icon: System tray icon to use for notifications
            duration_ms: Auto-dismiss delay for each toast
        """
        self.tray = tray_icon
        self.duration_ms = duration_ms

    def show_event(self, record: EventRecord) -> None:
        """Show a toast for an event log record."""
        icon = (
            QSystemTrayIcon.MessageIcon.Critical
            if record.kind == EventKind.ERROR
            else QSystemTrayIcon.MessageIcon.Information
        )
        self.tray.showMessage(TITLES[record.kind], record.text, icon, self.duration_ms)
