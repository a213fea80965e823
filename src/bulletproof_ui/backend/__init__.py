"""Backend module - access to the bulletproofd control-plane."""

from typing import Optional

from bulletproof_ui.backend.client import ControlPlaneClient, DaemonStatus, Reply
from bulletproof_ui.config import ControllerConfig

__all__ = ["ControlPlaneClient", "DaemonStatus", "Reply", "get_client"]

# Singleton instance
_client_instance = None


def get_client(config: Optional[ControllerConfig] = None) -> ControlPlaneClient:
    """Get the shared control-plane client.

    Args:
        config: Configuration used when the client is first created

    Returns:
        ControlPlaneClient instance
    """
    global _client_instance
    if _client_instance is None:
        _client_instance = ControlPlaneClient(config)
    return _client_instance
