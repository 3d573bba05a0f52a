"""Tests for the no-response retry policy and the PAPI status conventions."""
from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from propctl.errors import PermissionDeniedError, RemoteRejectedError, TransientError
from propctl.models import PropertyRecord
from propctl.papi import PapiClient
from propctl.retry import NO_RETRY, RetryPolicy
from propctl.transport import RequestContext, Response

if TYPE_CHECKING:
    from conftest import FakeTransport


def test_retry_returns_first_response() -> None:
    """A response on the first attempt is returned without sleeping."""
    sleeps: list[float] = []
    policy = RetryPolicy(max_attempts=3, backoff=1.0, sleep=sleeps.append)

    response = policy.call("demo", lambda: Response(200))

    assert response.status_code == 200
    assert sleeps == []


def test_retry_recovers_after_missing_response() -> None:
    """A missing response is retried and the later response returned."""
    replies: list[Response | None] = [None, None, Response(204)]
    sleeps: list[float] = []
    policy = RetryPolicy(max_attempts=2, backoff=0.5, sleep=sleeps.append)

    response = policy.call("demo", lambda: replies.pop(0))

    assert response.status_code == 204
    assert sleeps == [0.5, 1.0]


def test_retry_gives_up_after_budget() -> None:
    """Exhausting the budget raises ``TransientError``."""
    calls: list[int] = []

    def send() -> Response | None:
        calls.append(1)
        return None

    with pytest.raises(TransientError, match="No response from server for demo"):
        RetryPolicy(max_attempts=1).call("demo", send)
    assert len(calls) == 2

    calls.clear()
    with pytest.raises(TransientError):
        NO_RETRY.call("demo", send)
    assert len(calls) == 1


def test_retry_never_retries_definitive_errors() -> None:
    """Error statuses are responses and are handed back untouched."""
    calls: list[int] = []

    def send() -> Response | None:
        calls.append(1)
        return Response(500, body="boom")

    response = RetryPolicy(max_attempts=5).call("demo", send)

    assert response.status_code == 500
    assert calls == [1]


def test_group_listing_is_retried_once(
    client: PapiClient,
    transport: FakeTransport,
    ctx: RequestContext,
) -> None:
    """The group listing survives one dropped response."""
    transport.drop("GET", "/papi/v1/groups")
    transport.reply("GET", "/papi/v1/groups", {"groups": {"items": []}})

    assert client.list_groups(ctx) == {"groups": {"items": []}}
    assert len(transport.calls("GET", "/papi/v1/groups")) == 2


def test_version_copy_is_not_retried(
    client: PapiClient,
    transport: FakeTransport,
    ctx: RequestContext,
    record: PropertyRecord,
) -> None:
    """Creating a version is never retried, so no orphan copies appear."""
    transport.drop("POST", "/papi/v1/properties/prp_1/versions")

    with pytest.raises(TransientError):
        client.create_version(ctx, record, 3)
    assert len(transport.calls("POST")) == 1


def test_status_mapping(client: PapiClient, transport: FakeTransport, ctx: RequestContext) -> None:
    """403 maps to a permission error, other failures to a rejection."""
    transport.reply("GET", "/papi/v1/rule-formats", status=403, body="denied")
    with pytest.raises(PermissionDeniedError):
        client.rule_formats(ctx)

    transport.reply("POST", "/papi/v1/search/find-by-value", status=400, body="bad")
    with pytest.raises(RemoteRejectedError) as excinfo:
        client.search(ctx, "propertyName", "x")
    assert excinfo.value.status_code == 400
    assert excinfo.value.body == "bad"


def test_forbidden_listing_can_be_skipped(
    client: PapiClient,
    transport: FakeTransport,
    ctx: RequestContext,
) -> None:
    """List calls made with ``skip_forbidden`` turn a 403 into ``None``."""
    transport.reply("GET", "/papi/v1/properties", status=403, body="denied")

    assert client.list_properties(ctx, "ctr_1", "grp_1", skip_forbidden=True) is None
    with pytest.raises(PermissionDeniedError):
        client.list_properties(ctx, "ctr_1", "grp_1")


def test_account_switch_key_is_sent(client: PapiClient, transport: FakeTransport) -> None:
    """The request context contributes the account switch key."""
    transport.reply("GET", "/papi/v1/rule-formats", {"ruleFormats": {"items": ["v2020-01-01"]}})

    formats = client.rule_formats(RequestContext(account_switch_key="1-ABC"))

    assert formats == ["v2020-01-01"]
    request = transport.calls("GET")[0]
    assert request.query["accountSwitchKey"] == "1-ABC"
    assert request.target() == "/papi/v1/rule-formats?accountSwitchKey=1-ABC"
