"""Hostname reconciliation and hostname-level operations.

The remote API only offers a full replace of a version's hostname list, so
every add, removal or edge hostname change is computed as the complete
resulting list by :func:`reconcile` and sent in one PUT.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from .errors import NoEndpointError, ProtocolError
from .models import (
    CNAME_TYPE_EDGE_HOSTNAME,
    EDGE_HOSTNAME_ID_PREFIX,
    HostnameBinding,
    Network,
    PropertyRecord,
    VersionSelector,
    VersionSpec,
)
from .papi import PapiClient, decode_body, expect_ok
from .resolver import IdentityResolver
from .transport import RequestContext, Response
from .versions import VersionWorkflow, select_version

LOGGER = logging.getLogger(__name__)

# Statuses the hostname listing returns for properties it cannot describe.
KNOWN_LISTING_FAILURES = frozenset({400, 403, 500})

HostnameEntry = str | HostnameBinding


def is_edge_hostname_id(value: str) -> bool:
    """Return ``True`` when *value* is a canonical edge hostname id."""
    return value.startswith(EDGE_HOSTNAME_ID_PREFIX)


def infer_endpoint(current: Sequence[HostnameBinding]) -> str | None:
    """Return the endpoint of the first current binding that names one."""
    for binding in current:
        if binding.endpoint:
            return binding.endpoint
    return None


def reconcile(
    adds: Iterable[str],
    removes: Iterable[str],
    current: Sequence[HostnameBinding],
    endpoint_ref: str | None = None,
) -> list[HostnameBinding]:
    """Return the complete hostname list after applying *adds* and *removes*.

    New hostnames are listed ahead of the current bindings, so an added name
    that is already bound gets rebound to the endpoint. Removal wins over
    addition and the result holds at most one binding per ``cnameFrom``.

    Raises :class:`~propctl.errors.NoEndpointError` when *endpoint_ref* is
    not given and cannot be inferred from *current*.
    """
    endpoint = endpoint_ref or infer_endpoint(current)
    if not endpoint:
        raise NoEndpointError()

    entries: list[HostnameEntry] = [str(name) for name in adds]
    entries.extend(current)

    dropped = set(removes)
    if dropped:
        entries = [entry for entry in entries if _entry_name(entry) not in dropped]

    emitted: set[str] = set()
    result: list[HostnameBinding] = []
    for entry in entries:
        name = _entry_name(entry)
        if name in emitted:
            LOGGER.info("Skipping duplicate %s", name)
            continue
        emitted.add(name)
        if isinstance(entry, HostnameBinding):
            result.append(entry)
        else:
            result.append(_bind(name, endpoint))
    return result


def _entry_name(entry: HostnameEntry) -> str:
    return entry.cname_from if isinstance(entry, HostnameBinding) else entry


def _bind(hostname: str, endpoint: str) -> HostnameBinding:
    if is_edge_hostname_id(endpoint):
        return HostnameBinding(
            cname_from=hostname,
            edge_hostname_id=endpoint,
            cname_type=CNAME_TYPE_EDGE_HOSTNAME,
        )
    return HostnameBinding(
        cname_from=hostname,
        cname_to=endpoint,
        cname_type=CNAME_TYPE_EDGE_HOSTNAME,
    )


def parse_bindings(payload: object) -> list[HostnameBinding]:
    """Return the bindings from a hostname listing payload."""
    if not isinstance(payload, Mapping):
        raise ProtocolError("Hostname listing is not an object.")
    container = payload.get("hostnames")
    items = container.get("items") if isinstance(container, Mapping) else None
    if not isinstance(items, list):
        raise ProtocolError("Hostname listing has no hostnames.items list.")
    bindings: list[HostnameBinding] = []
    for item in items:
        if not isinstance(item, Mapping) or "cnameFrom" not in item:
            raise ProtocolError("Hostname entry without cnameFrom.")
        bindings.append(HostnameBinding.from_api(item))
    return bindings


@dataclass(slots=True)
class HostnameChange:
    """Result of a hostname mutation."""

    property_name: str
    version: int
    bindings: list[HostnameBinding]

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "propertyName": self.property_name,
            "version": self.version,
            "hostnames": [binding.to_dict() for binding in self.bindings],
        }


@dataclass(slots=True)
class HostnameService:
    """Read and replace the hostnames of property versions."""

    client: PapiClient
    resolver: IdentityResolver
    workflow: VersionWorkflow

    # ------------------------------------------------------------------
    def listing(
        self,
        ctx: RequestContext,
        record: PropertyRecord,
        version: VersionSpec = VersionSelector.LATEST,
    ) -> dict[str, Any] | str:
        """Return the raw hostname listing, or the bare property id on a known failure.

        Used by list-style operations, which skip properties the remote API
        cannot describe instead of failing.
        """
        number = select_version(record, version)
        response = self.client.get_hostnames(ctx, record, number)
        if response.status_code in KNOWN_LISTING_FAILURES:
            if response.status_code == 403:
                LOGGER.warning("... No permissions for property %s", record.property_id)
            else:
                LOGGER.warning("... Error from server for %s, skipping", record.property_id)
            return record.property_id
        payload = decode_body(expect_ok(response, "hostname listing"), "hostname listing")
        self._index(record, number, parse_bindings(payload))
        return payload

    def current(
        self,
        ctx: RequestContext,
        record: PropertyRecord,
        version: VersionSpec = VersionSelector.LATEST,
    ) -> list[HostnameBinding]:
        """Return the bindings of *version*, raising on any failure."""
        number = select_version(record, version)
        response = self.client.get_hostnames(ctx, record, number)
        bindings = parse_bindings(self._strict_payload(response))
        self._index(record, number, bindings)
        return bindings

    # ------------------------------------------------------------------
    def add(
        self,
        ctx: RequestContext,
        record: PropertyRecord,
        hostnames: Iterable[str],
        *,
        edge_hostname: str | None = None,
        base_version: VersionSpec = VersionSelector.LATEST,
    ) -> HostnameChange:
        """Bind *hostnames* on a new version copied from *base_version*."""
        return self._replace(
            ctx,
            record,
            adds=list(hostnames),
            removes=[],
            edge_hostname=edge_hostname,
            base_version=base_version,
        )

    def delete(
        self,
        ctx: RequestContext,
        record: PropertyRecord,
        hostnames: Iterable[str],
        *,
        base_version: VersionSpec = VersionSelector.LATEST,
    ) -> HostnameChange:
        """Unbind *hostnames* on a new version copied from *base_version*."""
        return self._replace(
            ctx,
            record,
            adds=[],
            removes=list(hostnames),
            edge_hostname=None,
            base_version=base_version,
        )

    def assign_edge_hostname(
        self,
        ctx: RequestContext,
        record: PropertyRecord,
        edge_hostname: str,
        *,
        base_version: VersionSpec = VersionSelector.LATEST,
    ) -> HostnameChange:
        """Point every hostname of the property at *edge_hostname*."""
        current = self.current(ctx, record, base_version)
        bindings = reconcile([b.cname_from for b in current], [], [], edge_hostname)
        return self._write(ctx, record, bindings, base_version)

    # ------------------------------------------------------------------
    def _replace(
        self,
        ctx: RequestContext,
        record: PropertyRecord,
        *,
        adds: list[str],
        removes: list[str],
        edge_hostname: str | None,
        base_version: VersionSpec,
    ) -> HostnameChange:
        # Reconcile against the base before copying so a NoEndpointError
        # does not leave an orphan version behind.
        current = self.current(ctx, record, base_version)
        bindings = reconcile(adds, removes, current, edge_hostname)
        return self._write(ctx, record, bindings, base_version)

    def _write(
        self,
        ctx: RequestContext,
        record: PropertyRecord,
        bindings: list[HostnameBinding],
        base_version: VersionSpec,
    ) -> HostnameChange:
        version = self.workflow.prepare_writable_version(ctx, record, base_version)
        LOGGER.info("Updating property hostnames")
        for binding in bindings:
            LOGGER.info("Adding hostname %s", binding.cname_from)
        self.client.put_hostnames(ctx, record, version, bindings)
        return HostnameChange(record.property_name, version, bindings)

    def _strict_payload(self, response: Response) -> Any:
        return decode_body(expect_ok(response, "hostname listing"), "hostname listing")

    def _index(
        self,
        record: PropertyRecord,
        version: int,
        bindings: list[HostnameBinding],
    ) -> None:
        for network in Network:
            if record.network_version(network) == version:
                self.resolver.index_hostnames(record, network, bindings)


__all__ = [
    "HostnameChange",
    "HostnameService",
    "KNOWN_LISTING_FAILURES",
    "infer_endpoint",
    "is_edge_hostname_id",
    "parse_bindings",
    "reconcile",
]
