"""Error types for the connection controller."""

from bulletproof_ui.constants import MSG_DAEMON_EXITED, MSG_TIMED_OUT


class ControllerError(Exception):
    """Base error for the connection controller."""
    pass


class BinaryNotFound(ControllerError):
    """The daemon executable could not be located."""

    def __init__(self, searched):
        self.searched = [str(p) for p in searched]
        super().__init__(
            "Cannot find bulletproofd. Searched: " + ", ".join(self.searched)
        )


class SpawnFailed(ControllerError):
    """The OS refused to create the daemon process."""
    pass


class HealthCheckTimeout(ControllerError):
    """The daemon did not answer its health endpoint in time."""
    pass


class ControlPlaneUnreachable(ControllerError):
    """The daemon's HTTP API could not be reached."""
    pass


class CommandRejected(ControllerError):
    """The daemon answered with an error body."""
    pass


class ConnectTimeout(ControllerError):
    """Status never reported connected within the connect window."""

    def __init__(self, message: str = MSG_TIMED_OUT):
        super().__init__(message)


class DaemonExited(ControllerError):
    """The daemon process died while an operation was in flight."""

    def __init__(self, message: str = MSG_DAEMON_EXITED):
        super().__init__(message)


class ProbeFailed(ControllerError):
    """Nothing is listening on the bind address."""

    def __init__(self, bind: str):
        self.bind = bind
        super().__init__(f"Nothing listening on {bind}")


class ProxyTestFailed(ControllerError):
    """A request through the local proxy failed."""
    pass
