"""Client for the bulletproofd local HTTP control-plane."""

import asyncio
import http.client
import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Optional

from bulletproof_ui.backend.net import parse_bind, tcp_connect_time
from bulletproof_ui.config import ControllerConfig
from bulletproof_ui.errors import ControlPlaneUnreachable
from bulletproof_ui.models import ConnectRequest

log = logging.getLogger(__name__)


def normalize_error(data: Any) -> Optional[str]:
    """Return the daemon's error text, whichever casing it used.

    The daemon reports failures as either ``error`` or ``Error``; a
    JSON-RPC style ``{"message": ...}`` object is unwrapped as well.
    """
    if not isinstance(data, dict):
        return None
    err = data.get("error") or data.get("Error")
    if not err:
        return None
    if isinstance(err, dict):
        err = err.get("message") or err.get("Message") or json.dumps(err)
    return str(err)


def _pick(data: dict, key: str, default=None):
    """Read ``key`` or its capitalized twin from a daemon payload."""
    if key in data:
        return data[key]
    return data.get(key[:1].upper() + key[1:], default)


@dataclass(frozen=True)
class Reply:
    """Normalized control-plane response."""
    data: dict = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class DaemonStatus:
    """Normalized ``/v1/status`` payload."""
    connected: bool = False
    bind: Optional[str] = None
    message: str = ""
    pac_enabled: bool = False
    sing_box: bool = False
    error: Optional[str] = None

    @classmethod
    def from_reply(cls, reply: Reply) -> "DaemonStatus":
        if not reply.ok:
            return cls(error=reply.error)
        data = reply.data
        return cls(
            connected=bool(_pick(data, "connected", False)),
            bind=_pick(data, "bind") or None,
            message=_pick(data, "message") or "",
            pac_enabled=bool(_pick(data, "pacEnabled", False)),
            sing_box=bool(_pick(data, "singBox", False)),
        )


class ControlPlaneClient:
    """Stateless wrapper over the daemon API.

    Every call returns a normalized result; network failures never
    propagate past this class. Retries are the caller's business.
    """

    def __init__(self, config: Optional[ControllerConfig] = None):
        self._config = config or ControllerConfig()
        self._base_url = self._config.base_url

    # Transport

    def _open(self, method: str, path: str, params: Optional[dict] = None,
              body: Optional[dict] = None):
        """Perform one HTTP request.

        Returns:
            (status_code, raw_body) tuple

        Raises:
            ControlPlaneUnreachable: If the daemon cannot be reached
        """
        url = self._base_url + path
        if params:
            url += "?" + urllib.parse.urlencode(params)
        data = None
        headers = {}
        if body is not None:
            data = json.dumps(body).encode("utf-8")
            headers["Content-Type"] = "application/json"
        req = urllib.request.Request(url, data=data, headers=headers, method=method)
        try:
            with urllib.request.urlopen(req, timeout=self._config.http_timeout) as resp:
                return resp.status, resp.read()
        except urllib.error.HTTPError as e:
            # Error statuses still carry a JSON body we want to read
            try:
                raw = e.read()
            except OSError:
                raw = b""
            return e.code, raw
        except (OSError, http.client.HTTPException) as e:
            reason = getattr(e, "reason", e)
            raise ControlPlaneUnreachable(f"{method} {path} failed: {reason}")

    def _request(self, method: str, path: str, params: Optional[dict] = None,
                 body: Optional[dict] = None) -> Reply:
        try:
            status, raw = self._open(method, path, params, body)
        except ControlPlaneUnreachable as e:
            log.debug(str(e))
            return Reply(error=str(e))

        try:
            payload = json.loads(raw.decode("utf-8")) if raw else {}
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            return Reply(error=f"Invalid response from daemon: {e}")

        if not isinstance(payload, dict):
            payload = {"items": payload}

        error = normalize_error(payload)
        if error is None and status >= 400:
            error = f"Daemon returned HTTP {status}"
        return Reply(data=payload, error=error)

    async def _call(self, method: str, path: str, params: Optional[dict] = None,
                    body: Optional[dict] = None) -> Reply:
        return await asyncio.to_thread(self._request, method, path, params, body)

    # Operations

    async def health(self) -> bool:
        """Check ``/v1/health``.

        Returns:
            True if the daemon answered 200
        """
        def check() -> bool:
            try:
                status, _ = self._open("GET", "/v1/health")
            except ControlPlaneUnreachable:
                return False
            return status == 200

        return await asyncio.to_thread(check)

    async def get_status(self) -> DaemonStatus:
        return DaemonStatus.from_reply(await self._call("GET", "/v1/status"))

    async def connect(self, request: ConnectRequest) -> Reply:
        return await self._call("POST", "/v1/connect", body=request.to_payload())

    async def disconnect(self) -> Reply:
        return await self._call("POST", "/v1/disconnect")

    async def test_proxy(self, bind: Optional[str] = None) -> Reply:
        """Fetch a small page through the daemon's SOCKS listener.

        The reply's ``body`` field is the raw page, used for egress identity.
        """
        params = {"bind": bind} if bind else None
        return await self._call("GET", "/v1/test/socks", params=params)

    async def probe_port(self, bind: Optional[str] = None) -> bool:
        """Confirm something is listening on ``bind`` with a TCP connect."""
        host, port = parse_bind(bind, self._config.default_bind)
        elapsed = await tcp_connect_time(host, port, self._config.probe_timeout)
        return elapsed is not None

    async def get_identity(self) -> Reply:
        return await self._call("GET", "/v1/identity")

    async def reset_identity(self) -> Reply:
        return await self._call("POST", "/v1/identity/reset")

    async def get_diagnostics(self) -> Reply:
        return await self._call("GET", "/v1/diag")

    async def enable_system_proxy(self, bind: Optional[str] = None) -> Reply:
        params = {"bind": bind} if bind else None
        return await self._call("POST", "/v1/proxy/enable", params=params)

    async def disable_system_proxy(self) -> Reply:
        return await self._call("POST", "/v1/proxy/disable")
