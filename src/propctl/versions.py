"""Copy-then-mutate version workflow.

Structural edits never target an existing version in place: the base version
is copied into a brand-new version first and every mutation is issued against
the copy. Copies are not retried; a repeated copy could leave orphan versions.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .errors import ProtocolError, RemoteRejectedError
from .models import PropertyRecord, VersionSelector, VersionSpec
from .papi import PapiClient
from .resolver import PropertyStore
from .transport import RequestContext

LOGGER = logging.getLogger(__name__)

_VERSION_LINK = re.compile(r"versions/(\d+)")


def parse_version_link(payload: object) -> int:
    """Extract the version number from a ``versionLink`` response field."""
    link = payload.get("versionLink") if isinstance(payload, Mapping) else None
    match = _VERSION_LINK.search(str(link)) if link else None
    if match is None:
        raise ProtocolError("Cannot find version in the version copy response.")
    return int(match.group(1))


def select_version(record: PropertyRecord, spec: VersionSpec) -> int:
    """Return the concrete version number for *spec* or raise."""
    version = record.version_for(spec)
    if version is None:
        label = spec.value if isinstance(spec, VersionSelector) else str(spec)
        raise RemoteRejectedError(
            f"Unable to find requested version ({label}) for {record.property_name}."
        )
    return version


@dataclass(slots=True)
class VersionWorkflow:
    """Produce writable versions for structural changes."""

    client: PapiClient
    store: PropertyStore

    def prepare_writable_version(
        self,
        ctx: RequestContext,
        record: PropertyRecord,
        base_version: VersionSpec = VersionSelector.LATEST,
    ) -> int:
        """Copy *base_version* into a new version and return its number."""
        source = select_version(record, base_version)
        LOGGER.info("... copy property (%s) v%s", record.property_name, source)
        payload = self.client.create_version(ctx, record, source)
        new_version = parse_version_link(payload)
        self.store.update(record, latest_version=new_version)
        LOGGER.info("... created %s v%s", record.property_name, new_version)
        return new_version

    def replace_rules(
        self,
        ctx: RequestContext,
        record: PropertyRecord,
        document: Mapping[str, Any],
        *,
        base_version: VersionSpec = VersionSelector.LATEST,
    ) -> tuple[int, dict[str, Any]]:
        """Copy *base_version* and PUT *document* onto the new version."""
        version = self.prepare_writable_version(ctx, record, base_version)
        payload = dict(document)
        payload.pop("errors", None)
        return version, self.client.put_rules(ctx, record, version, payload)


__all__ = ["VersionWorkflow", "parse_version_link", "select_version"]
