"""Data models shared across the propctl engine."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Network(str, Enum):
    """Activation networks understood by the remote API."""

    STAGING = "STAGING"
    PRODUCTION = "PRODUCTION"

    @classmethod
    def parse(cls, value: str | Network) -> Network:
        """Return the network named by *value* (case-insensitive)."""
        if isinstance(value, Network):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError as exc:
            raise ValueError(
                f"Unknown network '{value}'. Expected STAGING or PRODUCTION."
            ) from exc


class VersionSelector(str, Enum):
    """Symbolic version selectors resolved through a property record."""

    LATEST = "LATEST"
    STAGING = "STAGING"
    PRODUCTION = "PRODUCTION"


VersionSpec = int | VersionSelector


def parse_version_spec(value: str | int | VersionSelector | None) -> VersionSpec:
    """Parse CLI/user input into a version number or a selector.

    Accepts positive integers, ``LATEST``, ``STAGING``/``STAGING-version`` and
    ``PRODUCTION``/``PRODUCTION-version``. ``None`` and ``0`` mean latest.
    """
    if value is None:
        return VersionSelector.LATEST
    if isinstance(value, VersionSelector):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return _from_int(value)
    text = str(value).strip()
    if not text:
        return VersionSelector.LATEST
    try:
        return _from_int(int(text))
    except ValueError:
        pass
    normalized = text.upper()
    if normalized.endswith("-VERSION"):
        normalized = normalized[: -len("-VERSION")]
    try:
        return VersionSelector(normalized)
    except ValueError as exc:
        raise ValueError(
            f"Invalid version '{value}'. Use a number, LATEST, STAGING or PRODUCTION."
        ) from exc


def _from_int(value: int) -> VersionSpec:
    # Legacy numeric sentinels: 0 latest, -1 production, -2 staging.
    if value > 0:
        return value
    if value == 0:
        return VersionSelector.LATEST
    if value == -1:
        return VersionSelector.PRODUCTION
    if value == -2:
        return VersionSelector.STAGING
    raise ValueError(f"Invalid version number {value}.")


@dataclass(slots=True)
class PropertyRecord:
    """Canonical identity and version pointers for one property.

    Records are owned by :class:`~propctl.resolver.PropertyStore`; every index
    hands out the same instance so version updates are visible everywhere.
    """

    property_id: str
    property_name: str
    contract_id: str
    group_id: str
    account_id: str | None = None
    asset_id: str | None = None
    product_id: str | None = None
    latest_version: int | None = None
    staging_version: int | None = None
    production_version: int | None = None

    @classmethod
    def from_api(cls, item: Mapping[str, Any]) -> PropertyRecord:
        """Build a record from a PAPI property item."""
        return cls(
            property_id=str(item["propertyId"]),
            property_name=str(item.get("propertyName") or item["propertyId"]),
            contract_id=str(item["contractId"]),
            group_id=str(item["groupId"]),
            account_id=_optional_str(item.get("accountId")),
            asset_id=_optional_str(item.get("assetId")),
            product_id=_optional_str(item.get("productId")),
            latest_version=_optional_int(item.get("latestVersion")),
            staging_version=_optional_int(item.get("stagingVersion")),
            production_version=_optional_int(item.get("productionVersion")),
        )

    def version_for(self, spec: VersionSpec) -> int | None:
        """Return the concrete version number selected by *spec*."""
        if isinstance(spec, VersionSelector):
            if spec is VersionSelector.LATEST:
                return self.latest_version
            if spec is VersionSelector.STAGING:
                return self.staging_version
            return self.production_version
        return spec

    def network_version(self, network: Network) -> int | None:
        """Return the version currently active on *network*."""
        if network is Network.STAGING:
            return self.staging_version
        return self.production_version

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "propertyId": self.property_id,
            "propertyName": self.property_name,
            "contractId": self.contract_id,
            "groupId": self.group_id,
            "accountId": self.account_id,
            "assetId": self.asset_id,
            "productId": self.product_id,
            "latestVersion": self.latest_version,
            "stagingVersion": self.staging_version,
            "productionVersion": self.production_version,
        }


CNAME_TYPE_EDGE_HOSTNAME = "EDGE_HOSTNAME"
EDGE_HOSTNAME_ID_PREFIX = "ehn_"


@dataclass(slots=True, frozen=True)
class HostnameBinding:
    """A single hostname mapped to an edge hostname."""

    cname_from: str
    cname_to: str | None = None
    edge_hostname_id: str | None = None
    cname_type: str = CNAME_TYPE_EDGE_HOSTNAME
    extra: Mapping[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_api(cls, item: Mapping[str, Any]) -> HostnameBinding:
        """Build a binding from a PAPI hostname item, keeping unknown fields."""
        known = {"cnameFrom", "cnameTo", "edgeHostnameId", "cnameType"}
        return cls(
            cname_from=str(item["cnameFrom"]),
            cname_to=_optional_str(item.get("cnameTo")),
            edge_hostname_id=_optional_str(item.get("edgeHostnameId")),
            cname_type=str(item.get("cnameType") or CNAME_TYPE_EDGE_HOSTNAME),
            extra={key: value for key, value in item.items() if key not in known},
        )

    @property
    def endpoint(self) -> str | None:
        """Return the edge endpoint this binding points at."""
        return self.cname_to or self.edge_hostname_id

    def to_dict(self) -> dict[str, object]:
        """Return the wire representation used by the hostnames PUT."""
        payload: dict[str, object] = dict(self.extra)
        payload["cnameType"] = self.cname_type
        if self.edge_hostname_id is not None:
            payload["edgeHostnameId"] = self.edge_hostname_id
        if self.cname_to is not None:
            payload["cnameTo"] = self.cname_to
        payload["cnameFrom"] = self.cname_from
        return payload


@dataclass(slots=True)
class ActivationJob:
    """A submitted activation or deactivation."""

    property_id: str
    version: int
    network: Network
    activation_id: str
    status: str = "SUBMITTED"


def _optional_str(value: object) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _optional_int(value: object) -> int | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return int(str(value))
    except ValueError:
        return None


__all__ = [
    "ActivationJob",
    "CNAME_TYPE_EDGE_HOSTNAME",
    "EDGE_HOSTNAME_ID_PREFIX",
    "HostnameBinding",
    "Network",
    "PropertyRecord",
    "VersionSelector",
    "VersionSpec",
    "parse_version_spec",
]
