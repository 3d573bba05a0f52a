"""Tests for the activation state machine."""
from __future__ import annotations

import threading
from typing import TYPE_CHECKING

import pytest

from propctl.activation import (
    ActivationOutcome,
    ActivationStateMachine,
    is_not_active_response,
    job_state,
    parse_activation_link,
    unacknowledged_warnings,
)
from propctl.errors import ProtocolError, RemoteRejectedError
from propctl.models import ActivationJob, Network, PropertyRecord
from propctl.papi import PapiClient
from propctl.resolver import IdentityResolver
from propctl.transport import RequestContext

if TYPE_CHECKING:
    from conftest import FakeTransport

ACTIVATIONS = "/papi/v1/properties/prp_1/activations"
STATUS = f"{ACTIVATIONS}/atv_1"
LINK = {"activationLink": f"{ACTIVATIONS}/atv_1?contractId=ctr_C-1&groupId=grp_100"}


def _status(*statuses: str) -> dict[str, object]:
    return {"activations": {"items": [{"status": status} for status in statuses]}}


def _warnings(*message_ids: str) -> dict[str, object]:
    return {
        "type": "https://problems.example.net/papi/v0/activation-warnings-not-acknowledged",
        "warnings": [{"messageId": mid, "detail": f"warning {mid}"} for mid in message_ids],
    }


def test_job_state_collapses_statuses() -> None:
    """All active is active, any failure is failed, anything else pends."""
    assert job_state([{"status": "ACTIVE"}, {"status": "ACTIVE"}]) == "ACTIVE"
    assert job_state([{"status": "ACTIVE"}, {"status": "ABORTED"}]) == "FAILED"
    assert job_state([{"status": "PENDING"}, {"status": "ACTIVE"}]) == "PENDING"
    assert job_state([]) == "FAILED"


def test_response_helpers() -> None:
    """Links, warnings and not-active bodies are recognised."""
    assert parse_activation_link(LINK) == "atv_1"
    with pytest.raises(ProtocolError):
        parse_activation_link({"activationLink": "/nothing"})
    assert unacknowledged_warnings(LINK) is None
    assert [item["messageId"] for item in unacknowledged_warnings(_warnings("m1")) or []] == ["m1"]
    assert is_not_active_response('{"type": "property_version_not_active"}')
    assert is_not_active_response("Property not active in PRODUCTION")
    assert not is_not_active_response("something else")


def test_activation_waits_exactly_between_polls(
    activations: ActivationStateMachine,
    record: PropertyRecord,
    transport: FakeTransport,
    ctx: RequestContext,
    waits: list[float],
) -> None:
    """Two pending polls followed by active means exactly two waits."""
    transport.reply("POST", ACTIVATIONS, LINK, status=201)
    transport.reply("GET", STATUS, _status("PENDING"))
    transport.reply("GET", STATUS, _status("PENDING"))
    transport.reply("GET", STATUS, _status("ACTIVE"))

    result = activations.activate(ctx, record, 3, Network.STAGING, note="ship it")

    assert result.outcome is ActivationOutcome.ACTIVE
    assert result.succeeded
    assert waits == [5.0, 5.0]
    assert len(transport.calls("GET", STATUS)) == 3
    assert record.staging_version == 3
    body = transport.calls("POST", ACTIVATIONS)[0].body
    assert body == {
        "propertyVersion": 3,
        "network": "STAGING",
        "note": "ship it",
        "notifyEmails": ["test@example.com"],
        "acknowledgeWarnings": [],
        "complianceRecord": {"noncomplianceReason": "NO_PRODUCTION_TRAFFIC"},
    }


def test_status_500_counts_as_pending(
    activations: ActivationStateMachine,
    record: PropertyRecord,
    transport: FakeTransport,
    ctx: RequestContext,
    waits: list[float],
) -> None:
    """A 500 from the status endpoint keeps polling."""
    transport.reply("POST", ACTIVATIONS, LINK, status=201)
    transport.reply("GET", STATUS, status=500, body="")
    transport.reply("GET", STATUS, _status("ACTIVE"))

    result = activations.activate(ctx, record, 3, Network.PRODUCTION)

    assert result.outcome is ActivationOutcome.ACTIVE
    assert waits == [5.0]
    assert record.production_version == 3


def test_warnings_are_acknowledged_and_resubmitted(
    activations: ActivationStateMachine,
    record: PropertyRecord,
    transport: FakeTransport,
    ctx: RequestContext,
) -> None:
    """Warnings are acknowledged by message id on the resubmission."""
    transport.reply("POST", ACTIVATIONS, _warnings("msg_1", "msg_2"), status=400)
    transport.reply("POST", ACTIVATIONS, _warnings("msg_3"), status=400)
    transport.reply("POST", ACTIVATIONS, LINK, status=201)

    result = activations.activate(ctx, record, 3, Network.STAGING, wait=False)

    assert result.outcome is ActivationOutcome.SUBMITTED
    assert result.job is not None and result.job.activation_id == "atv_1"
    acknowledged = [request.body["acknowledgeWarnings"] for request in transport.calls("POST")]  # type: ignore[index]
    assert acknowledged == [[], ["msg_1", "msg_2"], ["msg_1", "msg_2", "msg_3"]]
    assert record.staging_version == 3


def test_warning_loop_is_bounded(
    client: PapiClient,
    resolver: IdentityResolver,
    record: PropertyRecord,
    transport: FakeTransport,
    ctx: RequestContext,
) -> None:
    """Warnings that never clear end the request instead of looping forever."""
    machine = ActivationStateMachine(
        client,
        resolver.store,
        max_warning_acknowledgements=2,
    )
    transport.reply("POST", ACTIVATIONS, _warnings("msg_1"), status=400)

    result = machine.activate(ctx, record, 3, Network.STAGING)

    assert result.outcome is ActivationOutcome.WARNINGS_EXCEEDED
    assert not result.succeeded
    assert result.warnings == ["msg_1"]
    assert len(transport.calls("POST", ACTIVATIONS)) == 3
    assert record.staging_version == 2


def test_plain_400_is_rejected(
    activations: ActivationStateMachine,
    record: PropertyRecord,
    transport: FakeTransport,
    ctx: RequestContext,
) -> None:
    """A 400 that is not a warnings response is a rejection."""
    transport.reply("POST", ACTIVATIONS, {"type": "invalid-version"}, status=400)

    with pytest.raises(RemoteRejectedError):
        activations.activate(ctx, record, 3, Network.STAGING)


def test_failed_activation_reports_body(
    activations: ActivationStateMachine,
    record: PropertyRecord,
    transport: FakeTransport,
    ctx: RequestContext,
) -> None:
    """A failure status ends polling with the FAILED outcome."""
    transport.reply("POST", ACTIVATIONS, LINK, status=201)
    transport.reply("GET", STATUS, _status("FAILED"))

    result = activations.activate(ctx, record, 3, Network.STAGING)

    assert result.outcome is ActivationOutcome.FAILED
    assert result.body and "FAILED" in result.body
    assert record.staging_version == 2


def test_deactivating_inactive_version_is_idempotent(
    activations: ActivationStateMachine,
    record: PropertyRecord,
    transport: FakeTransport,
    ctx: RequestContext,
) -> None:
    """An already inactive version is a success, and repeating it changes nothing."""
    transport.reply(
        "POST",
        ACTIVATIONS,
        status=422,
        body='{"type": "https://problems.example.net/papi/v0/property_version_not_active"}',
    )

    first = activations.deactivate(ctx, record, Network.PRODUCTION)
    second = activations.deactivate(ctx, record, Network.PRODUCTION)

    assert first.outcome is second.outcome is ActivationOutcome.ALREADY_INACTIVE
    assert first.succeeded
    assert record.production_version is None
    body = transport.calls("POST")[0].body
    assert body["activationType"] == "DEACTIVATE"  # type: ignore[index]
    assert body["propertyVersion"] == 1  # type: ignore[index]


def test_deactivation_clears_network_pointer(
    activations: ActivationStateMachine,
    record: PropertyRecord,
    transport: FakeTransport,
    ctx: RequestContext,
) -> None:
    """A completed deactivation leaves no version live on the network."""
    transport.reply("POST", ACTIVATIONS, LINK, status=201)
    transport.reply("GET", STATUS, _status("ACTIVE"))

    result = activations.deactivate(ctx, record, Network.STAGING, emails=["ops@example.com"])

    assert result.outcome is ActivationOutcome.ACTIVE
    assert record.staging_version is None
    assert transport.calls("POST")[0].body["notifyEmails"] == ["ops@example.com"]  # type: ignore[index]


def test_cancel_stops_polling(
    client: PapiClient,
    resolver: IdentityResolver,
    record: PropertyRecord,
    transport: FakeTransport,
    ctx: RequestContext,
) -> None:
    """Setting the cancel event ends the wait with CANCELLED."""
    cancel = threading.Event()

    def cancelling_waiter(interval: float, event: threading.Event) -> bool:
        event.set()
        return True

    machine = ActivationStateMachine(
        client,
        resolver.store,
        waiter=cancelling_waiter,
    )
    transport.reply("POST", ACTIVATIONS, LINK, status=201)
    transport.reply("GET", STATUS, _status("PENDING"))

    result = machine.activate(ctx, record, 3, Network.STAGING, cancel=cancel)

    assert result.outcome is ActivationOutcome.CANCELLED
    assert cancel.is_set()
    assert len(transport.calls("GET", STATUS)) == 1
    assert record.staging_version == 2


def test_pre_cancelled_poll_makes_no_request(
    activations: ActivationStateMachine,
    record: PropertyRecord,
    transport: FakeTransport,
    ctx: RequestContext,
) -> None:
    """Polling with an already-set event returns without a status call."""
    cancel = threading.Event()
    cancel.set()
    job = ActivationJob("prp_1", 3, Network.STAGING, "atv_1")

    result = activations.poll(ctx, record, job, cancel=cancel)

    assert result.outcome is ActivationOutcome.CANCELLED
    assert transport.requests == []


def test_timeout_acts_as_deadline(
    client: PapiClient,
    resolver: IdentityResolver,
    record: PropertyRecord,
    transport: FakeTransport,
    ctx: RequestContext,
) -> None:
    """Waits are clipped to the deadline and the job ends CANCELLED."""
    now = [100.0]
    waits: list[float] = []

    def waiter(interval: float, event: threading.Event) -> bool:
        waits.append(interval)
        now[0] += interval
        return False

    machine = ActivationStateMachine(
        client,
        resolver.store,
        poll_interval=30.0,
        waiter=waiter,
        clock=lambda: now[0],
    )
    transport.reply("POST", ACTIVATIONS, LINK, status=201)
    transport.reply("GET", STATUS, _status("PENDING"))

    result = machine.activate(ctx, record, 3, Network.STAGING, timeout=45.0)

    assert result.outcome is ActivationOutcome.CANCELLED
    assert waits == [30.0, 15.0]
    assert result.to_dict()["activationId"] == "atv_1"
