"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import json
import threading
from collections.abc import Callable

import pytest

from propctl.activation import ActivationStateMachine
from propctl.manager import PropertyManager
from propctl.models import PropertyRecord
from propctl.papi import PapiClient
from propctl.resolver import IdentityResolver
from propctl.retry import RetryPolicy
from propctl.transport import Request, RequestContext, Response

PROPERTY_ITEM: dict[str, object] = {
    "accountId": "act_A-1",
    "contractId": "ctr_C-1",
    "groupId": "grp_100",
    "propertyId": "prp_1",
    "propertyName": "www.example.com",
    "assetId": "aid_1",
    "productId": "prd_SPM",
    "latestVersion": 3,
    "stagingVersion": 2,
    "productionVersion": 1,
}


class FakeTransport:
    """Scripted transport returning queued replies per ``(method, path)``.

    The last reply queued for a route is sticky so polling loops and
    repeated lookups keep receiving it.
    """

    def __init__(self) -> None:
        self.requests: list[Request] = []
        self._replies: dict[tuple[str, str], list[Response | None]] = {}
        self._lock = threading.Lock()

    def reply(
        self,
        method: str,
        path: str,
        payload: object | None = None,
        *,
        status: int = 200,
        body: str | None = None,
    ) -> None:
        """Queue a JSON reply (or a raw *body*) for a route."""
        if body is None:
            body = "" if payload is None else json.dumps(payload)
        self._queue(method, path, Response(status, {"Content-Type": "application/json"}, body))

    def drop(self, method: str, path: str) -> None:
        """Queue a "no response" for a route."""
        self._queue(method, path, None)

    def calls(self, method: str, path: str | None = None) -> list[Request]:
        """Return the recorded requests matching *method* (and *path*)."""
        return [
            request
            for request in self.requests
            if request.method == method and (path is None or request.path == path)
        ]

    def send(self, request: Request) -> Response | None:
        with self._lock:
            self.requests.append(request)
            replies = self._replies.get((request.method, request.path))
            if not replies:
                raise AssertionError(f"Unexpected request {request.method} {request.target()}")
            return replies.pop(0) if len(replies) > 1 else replies[0]

    def _queue(self, method: str, path: str, response: Response | None) -> None:
        self._replies.setdefault((method, path), []).append(response)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def client(transport: FakeTransport) -> PapiClient:
    return PapiClient(transport, RetryPolicy(max_attempts=1))


@pytest.fixture
def ctx() -> RequestContext:
    return RequestContext()


@pytest.fixture
def resolver(client: PapiClient) -> IdentityResolver:
    return IdentityResolver(client, max_workers=1)


@pytest.fixture
def property_item() -> dict[str, object]:
    return dict(PROPERTY_ITEM)


@pytest.fixture
def record(resolver: IdentityResolver, property_item: dict[str, object]) -> PropertyRecord:
    return resolver.register(property_item)


@pytest.fixture
def waits() -> list[float]:
    return []


@pytest.fixture
def waiter(waits: list[float]) -> Callable[[float, threading.Event], bool]:
    def _wait(interval: float, event: threading.Event) -> bool:
        waits.append(interval)
        return event.is_set()

    return _wait


@pytest.fixture
def activations(
    client: PapiClient,
    resolver: IdentityResolver,
    waiter: Callable[[float, threading.Event], bool],
) -> ActivationStateMachine:
    return ActivationStateMachine(client, resolver.store, poll_interval=5.0, waiter=waiter)


@pytest.fixture
def manager(
    client: PapiClient,
    resolver: IdentityResolver,
    activations: ActivationStateMachine,
) -> PropertyManager:
    return PropertyManager(client, resolver=resolver, activations=activations, max_workers=1)
