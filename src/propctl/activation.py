"""Activation and deactivation state machine.

A job moves ``SUBMITTED -> (WARNINGS_PENDING <-> SUBMITTED) -> POLLING`` and
ends in one of the outcomes of :class:`ActivationOutcome`. Warning
acknowledgement is bounded; polling waits on a :class:`threading.Event` so a
caller can cancel it, and an optional timeout acts as a deadline. No cache
lock is held while waiting.
"""
from __future__ import annotations

import logging
import re
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import ProtocolError, RemoteRejectedError
from .models import ActivationJob, Network, PropertyRecord
from .papi import PapiClient, decode_body
from .resolver import PropertyStore
from .transport import RequestContext, Response

LOGGER = logging.getLogger(__name__)

DEFAULT_NOTIFY_EMAILS = ("test@example.com",)
DEFAULT_POLL_INTERVAL = 30.0
NONCOMPLIANCE_REASON = "NO_PRODUCTION_TRAFFIC"

STATUS_ACTIVE = "ACTIVE"
STATUS_PENDING = "PENDING"
FAILURE_STATUSES = frozenset({"ABORTED", "FAILED", "DEACTIVATED", "INACTIVE", "CANCELLED"})

_ACTIVATION_LINK = re.compile(r"activations/([a-z0-9_]+)\b")
_WARNINGS_TYPE = "warnings-not-acknowledged"
_VERSION_NOT_ACTIVE = re.compile(r"property_version_not_active")
_PROPERTY_NOT_ACTIVE = re.compile(r"Property not active in (STAGING|PRODUCTION)")

Waiter = Callable[[float, threading.Event], bool]


class ActivationOutcome(str, Enum):
    """Terminal (or hand-off) outcomes of an activation request."""

    ACTIVE = "ACTIVE"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    WARNINGS_EXCEEDED = "WARNINGS_EXCEEDED"
    SUBMITTED = "SUBMITTED"
    ALREADY_INACTIVE = "ALREADY_INACTIVE"


@dataclass(slots=True)
class ActivationResult:
    """What an activation or deactivation request ended with."""

    outcome: ActivationOutcome
    network: Network
    version: int
    job: ActivationJob | None = None
    warnings: list[str] = field(default_factory=list)
    body: str | None = None

    @property
    def succeeded(self) -> bool:
        """Return ``True`` when the request reached a non-failure outcome."""
        return self.outcome in {
            ActivationOutcome.ACTIVE,
            ActivationOutcome.SUBMITTED,
            ActivationOutcome.ALREADY_INACTIVE,
        }

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        payload: dict[str, object] = {
            "outcome": self.outcome.value,
            "network": self.network.value,
            "version": self.version,
            "activationId": self.job.activation_id if self.job else None,
        }
        if self.warnings:
            payload["warnings"] = list(self.warnings)
        if self.body:
            payload["body"] = self.body
        return payload


def _event_wait(interval: float, event: threading.Event) -> bool:
    return event.wait(interval)


def job_state(items: Sequence[Mapping[str, Any]]) -> str:
    """Collapse the status list of an activation into one state.

    Returns ``ACTIVE`` when every item is active, ``FAILED`` when the list is
    empty or an item reached a failure status, ``PENDING`` otherwise.
    """
    if not items:
        return "FAILED"
    statuses = [str(item.get("status", "")) for item in items]
    if all(status == STATUS_ACTIVE for status in statuses):
        return STATUS_ACTIVE
    if any(status in FAILURE_STATUSES for status in statuses):
        return "FAILED"
    return STATUS_PENDING


def parse_activation_link(payload: object) -> str:
    """Return the activation id embedded in ``activationLink``."""
    link = payload.get("activationLink") if isinstance(payload, Mapping) else None
    match = _ACTIVATION_LINK.search(str(link)) if link else None
    if match is None:
        raise ProtocolError("Cannot find activation id in the activation response.")
    return match.group(1)


def unacknowledged_warnings(payload: object) -> list[Mapping[str, Any]] | None:
    """Return the warnings of a warnings-not-acknowledged response, else ``None``."""
    if not isinstance(payload, Mapping):
        return None
    if _WARNINGS_TYPE not in str(payload.get("type") or ""):
        return None
    warnings = payload.get("warnings")
    if not isinstance(warnings, list):
        return []
    return [item for item in warnings if isinstance(item, Mapping)]


def is_not_active_response(body: str) -> bool:
    """Return ``True`` when *body* reports the version is already inactive."""
    return bool(_VERSION_NOT_ACTIVE.search(body) or _PROPERTY_NOT_ACTIVE.search(body))


@dataclass
class ActivationStateMachine:
    """Submit activations, acknowledge warnings and poll jobs to completion."""

    client: PapiClient
    store: PropertyStore
    poll_interval: float = DEFAULT_POLL_INTERVAL
    max_warning_acknowledgements: int = 3
    notify_emails: Sequence[str] = DEFAULT_NOTIFY_EMAILS
    waiter: Waiter = _event_wait
    clock: Callable[[], float] = time.monotonic

    # ------------------------------------------------------------------
    def activate(
        self,
        ctx: RequestContext,
        record: PropertyRecord,
        version: int,
        network: Network,
        *,
        note: str = "",
        emails: Sequence[str] | None = None,
        wait: bool = True,
        cancel: threading.Event | None = None,
        timeout: float | None = None,
    ) -> ActivationResult:
        """Activate *version* of *record* on *network*."""
        LOGGER.info(
            "... activating property (%s) v%s on %s", record.property_name, version, network.value
        )
        body = self._request_body(version, network, note, emails)
        result = self._submit(ctx, record, version, network, body, deactivation=False)
        return self._finish(ctx, record, result, wait, cancel, timeout, deactivation=False)

    def deactivate(
        self,
        ctx: RequestContext,
        record: PropertyRecord,
        network: Network,
        *,
        note: str = "",
        emails: Sequence[str] | None = None,
        wait: bool = True,
        cancel: threading.Event | None = None,
        timeout: float | None = None,
    ) -> ActivationResult:
        """Deactivate whatever version of *record* is live on *network*."""
        version = record.network_version(network) or 1
        LOGGER.info(
            "... deactivating property (%s) v%s on %s", record.property_name, version, network.value
        )
        body = self._request_body(version, network, note, emails)
        body["activationType"] = "DEACTIVATE"
        result = self._submit(ctx, record, version, network, body, deactivation=True)
        if result.outcome is ActivationOutcome.ALREADY_INACTIVE:
            self._record_network(record, network, None)
            return result
        return self._finish(ctx, record, result, wait, cancel, timeout, deactivation=True)

    def poll(
        self,
        ctx: RequestContext,
        record: PropertyRecord,
        job: ActivationJob,
        *,
        cancel: threading.Event | None = None,
        timeout: float | None = None,
    ) -> ActivationResult:
        """Poll *job* until it is terminal, cancelled or past its deadline."""
        event = cancel or threading.Event()
        deadline = self.clock() + timeout if timeout is not None else None
        while True:
            if event.is_set():
                return self._cancelled(job)

            response = self.client.get_activation(ctx, record, job.activation_id)
            items = self._status_items(response)
            state = job_state(items)
            job.status = state
            if state == STATUS_ACTIVE:
                return ActivationResult(ActivationOutcome.ACTIVE, job.network, job.version, job)
            if state == "FAILED":
                return ActivationResult(
                    ActivationOutcome.FAILED,
                    job.network,
                    job.version,
                    job,
                    body=response.body,
                )

            interval = self.poll_interval
            if deadline is not None:
                remaining = deadline - self.clock()
                if remaining <= 0:
                    return self._cancelled(job)
                interval = min(interval, remaining)
            LOGGER.info("... waiting %ss", int(interval))
            if self.waiter(interval, event):
                return self._cancelled(job)

    # ------------------------------------------------------------------
    def _request_body(
        self,
        version: int,
        network: Network,
        note: str,
        emails: Sequence[str] | None,
    ) -> dict[str, Any]:
        return {
            "propertyVersion": version,
            "network": network.value,
            "note": note,
            "notifyEmails": list(emails or self.notify_emails),
            "acknowledgeWarnings": [],
            "complianceRecord": {"noncomplianceReason": NONCOMPLIANCE_REASON},
        }

    def _submit(
        self,
        ctx: RequestContext,
        record: PropertyRecord,
        version: int,
        network: Network,
        body: dict[str, Any],
        *,
        deactivation: bool,
    ) -> ActivationResult:
        acknowledged: list[str] = []
        resubmissions = 0
        while True:
            body["acknowledgeWarnings"] = list(acknowledged)
            response = self.client.submit_activation(ctx, record, body)

            if (
                deactivation
                and response.status_code >= 400
                and is_not_active_response(response.body)
            ):
                LOGGER.info("Version not active on %s", network.value)
                return ActivationResult(ActivationOutcome.ALREADY_INACTIVE, network, version)
            if not 200 <= response.status_code <= 400:
                raise RemoteRejectedError(
                    response.body or f"Activation request failed (HTTP {response.status_code}).",
                    status_code=response.status_code,
                    body=response.body,
                )

            payload = decode_body(response, "activation request")
            warnings = unacknowledged_warnings(payload)
            if warnings is None:
                if response.status_code == 400:
                    raise RemoteRejectedError(
                        response.body,
                        status_code=response.status_code,
                        body=response.body,
                    )
                activation_id = parse_activation_link(payload)
                job = ActivationJob(record.property_id, version, network, activation_id)
                return ActivationResult(ActivationOutcome.SUBMITTED, network, version, job)

            message_ids = [str(item.get("messageId")) for item in warnings if item.get("messageId")]
            for item in warnings:
                LOGGER.warning("Warnings: %s", item.get("detail", item.get("messageId")))
            if resubmissions >= self.max_warning_acknowledgements:
                LOGGER.error(
                    "Warnings still unacknowledged after %d resubmissions", resubmissions
                )
                return ActivationResult(
                    ActivationOutcome.WARNINGS_EXCEEDED,
                    network,
                    version,
                    warnings=message_ids,
                    body=response.body,
                )
            resubmissions += 1
            LOGGER.info("... automatically acknowledging %s warnings!", len(message_ids))
            for message_id in message_ids:
                if message_id not in acknowledged:
                    acknowledged.append(message_id)

    def _finish(
        self,
        ctx: RequestContext,
        record: PropertyRecord,
        result: ActivationResult,
        wait: bool,
        cancel: threading.Event | None,
        timeout: float | None,
        *,
        deactivation: bool,
    ) -> ActivationResult:
        if result.outcome is not ActivationOutcome.SUBMITTED or result.job is None:
            return result
        if wait:
            result = self.poll(ctx, record, result.job, cancel=cancel, timeout=timeout)
        if result.outcome in {ActivationOutcome.ACTIVE, ActivationOutcome.SUBMITTED}:
            self._record_network(record, result.network, None if deactivation else result.version)
        return result

    def _record_network(self, record: PropertyRecord, network: Network, version: int | None) -> None:
        if network is Network.STAGING:
            self.store.update(record, staging_version=version)
        else:
            self.store.update(record, production_version=version)

    def _status_items(self, response: Response) -> list[Mapping[str, Any]]:
        if response.status_code == 500:
            LOGGER.warning("Activation caused a 500 response. Retrying...")
            return [{"status": STATUS_PENDING}]
        if response.status_code != 200:
            raise RemoteRejectedError(
                f"Activation status check failed (HTTP {response.status_code}).",
                status_code=response.status_code,
                body=response.body,
            )
        payload = decode_body(response, "activation status")
        container = payload.get("activations") if isinstance(payload, Mapping) else None
        items = container.get("items") if isinstance(container, Mapping) else None
        if not isinstance(items, list):
            raise ProtocolError(
                "Activation status has no activations.items list.",
                status_code=response.status_code,
                body=response.body,
            )
        return [item for item in items if isinstance(item, Mapping)]

    @staticmethod
    def _cancelled(job: ActivationJob) -> ActivationResult:
        LOGGER.info("Stopped waiting for activation %s", job.activation_id)
        return ActivationResult(ActivationOutcome.CANCELLED, job.network, job.version, job)


__all__ = [
    "ActivationOutcome",
    "ActivationResult",
    "ActivationStateMachine",
    "FAILURE_STATUSES",
    "is_not_active_response",
    "job_state",
    "parse_activation_link",
    "unacknowledged_warnings",
]
