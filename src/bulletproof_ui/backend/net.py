"""Local TCP helpers used for port probes and latency samples."""

import asyncio
import logging
import time
from typing import Optional, Tuple

log = logging.getLogger(__name__)


def parse_bind(bind: Optional[str], default: str) -> Tuple[str, int]:
    """Split a ``host:port`` bind string, falling back to ``default``.

    Args:
        bind: Address such as ``127.0.0.1:8086`` or ``[::1]:8086``
        default: Address used when ``bind`` is empty or malformed

    Returns:
        (host, port) tuple
    """
    addr = bind or default
    host, sep, port_str = addr.rpartition(":")
    if not sep:
        host, port_str = addr, ""
    host = host.strip("[]") or "127.0.0.1"
    try:
        port = int(port_str)
    except ValueError:
        port = int(default.rpartition(":")[2])
    return host, port


async def tcp_connect_time(host: str, port: int, timeout: float) -> Optional[float]:
    """Open and close a TCP connection, returning the handshake time in ms.

    Returns:
        Milliseconds taken to connect, or None if the connection failed
    """
    started = time.perf_counter()
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), timeout=timeout
        )
    except (OSError, asyncio.TimeoutError) as e:
        log.debug(f"TCP connect to {host}:{port} failed: {e!r}")
        return None
    elapsed = (time.perf_counter() - started) * 1000.0
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return elapsed
