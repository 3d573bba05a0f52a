"""Signed HTTP transport for the Property Manager API.

The gateway sends exactly one request and returns either a :class:`Response`
or ``None`` when nothing came back (connection failure or timeout). Signing
is delegated to ``edgegrid-python``; status interpretation is left to callers.
"""
from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import urlencode

import requests
from akamai.edgegrid import EdgeGridAuth, EdgeRc

from . import __version__

LOGGER = logging.getLogger(__name__)


class CredentialsError(RuntimeError):
    """Raised when ``.edgerc`` credentials cannot be loaded."""


@dataclass(slots=True, frozen=True)
class RequestContext:
    """Per-call values threaded through every remote operation."""

    account_switch_key: str | None = None

    def query(self) -> dict[str, str]:
        """Return the query parameters contributed by this context."""
        if self.account_switch_key:
            return {"accountSwitchKey": self.account_switch_key}
        return {}


@dataclass(slots=True, frozen=True)
class Request:
    """One API request before signing."""

    method: str
    path: str
    query: Mapping[str, object] = field(default_factory=dict)
    body: object | None = None
    headers: Mapping[str, str] = field(default_factory=dict)

    def target(self) -> str:
        """Return the path with its encoded query string."""
        params = {key: value for key, value in self.query.items() if value is not None}
        if not params:
            return self.path
        return f"{self.path}?{urlencode(params)}"


@dataclass(slots=True, frozen=True)
class Response:
    """A definitive response from the remote API."""

    status_code: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: str = ""

    @property
    def ok(self) -> bool:
        """Return ``True`` for statuses in ``[200, 400)``."""
        return 200 <= self.status_code < 400

    @property
    def is_json(self) -> bool:
        """Return ``True`` when the content type announces JSON."""
        content_type = ""
        for key, value in self.headers.items():
            if key.lower() == "content-type":
                content_type = value
                break
        return "json" in content_type.lower()

    def json(self) -> Any:
        """Decode the body as JSON (raises ``ValueError`` when malformed)."""
        return json.loads(self.body)


class Transport(Protocol):
    """Anything able to send a :class:`Request`."""

    def send(self, request: Request) -> Response | None:
        """Send *request*; return ``None`` when no response was received."""
        ...


@dataclass(slots=True)
class EdgeGridTransport:
    """``requests``-based gateway signed with EdgeGrid credentials."""

    base_url: str
    session: requests.Session
    timeout: float = 60.0

    @classmethod
    def from_edgerc(
        cls,
        edgerc: Path,
        section: str = "default",
        *,
        timeout: float = 60.0,
    ) -> EdgeGridTransport:
        """Load credentials from an ``.edgerc`` file and build a transport."""
        path = edgerc.expanduser()
        if not path.exists():
            raise CredentialsError(f"Credentials file {path} does not exist.")
        rc = EdgeRc(str(path))
        if not rc.has_section(section):
            raise CredentialsError(f"Section [{section}] not found in {path}.")
        host = rc.get(section, "host", fallback="").strip()
        if not host:
            raise CredentialsError(f"Section [{section}] in {path} has no host entry.")
        session = requests.Session()
        session.auth = EdgeGridAuth.from_edgerc(rc, section)
        session.headers["User-Agent"] = f"propctl/{__version__}"
        if not host.startswith("http"):
            host = f"https://{host}"
        return cls(base_url=host.rstrip("/"), session=session, timeout=timeout)

    def send(self, request: Request) -> Response | None:
        """Send *request* and return the response, or ``None`` on no response."""
        url = f"{self.base_url}{request.target()}"
        headers = dict(request.headers)
        data: str | None = None
        if request.body is not None:
            data = json.dumps(request.body)
            headers.setdefault("Content-Type", "application/json")
        LOGGER.debug("%s %s", request.method, request.target())
        try:
            raw = self.session.request(
                request.method,
                url,
                data=data,
                headers=headers,
                timeout=self.timeout,
                allow_redirects=False,
            )
        except (requests.ConnectionError, requests.Timeout) as exc:
            LOGGER.warning("No response from server for %s %s: %s", request.method, request.path, exc)
            return None
        return Response(
            status_code=raw.status_code,
            headers=dict(raw.headers),
            body=raw.text,
        )


__all__ = [
    "CredentialsError",
    "EdgeGridTransport",
    "Request",
    "RequestContext",
    "Response",
    "Transport",
]
