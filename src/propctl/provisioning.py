"""Create new properties, either from scratch or cloned from an existing one.

Provisioning writes version 1 of a brand-new property directly: the version
was created by the property creation call itself, so no copy is needed.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from .errors import PropctlError, RemoteRejectedError
from .hostnames import HostnameService, reconcile
from .models import HostnameBinding, PropertyRecord, VersionSelector, VersionSpec
from .papi import PapiClient
from .resolver import IdentityResolver, normalize_name
from .rules import (
    apply_property_defaults,
    cpcode_id,
    find_cpcode,
    latest_rule_format,
    set_rule_format,
)
from .transport import RequestContext
from .versions import select_version

LOGGER = logging.getLogger(__name__)

# Delivery products picked, in listing order, when no product is requested.
DELIVERY_PRODUCTS = frozenset(
    {
        "prd_SPM",
        "prd_Dynamic_Site_Del",
        "prd_Alta",
        "prd_Rich_Media_Accel",
        "prd_Download_Delivery",
        "prd_IoT",
        "prd_Site_Del",
        "prd_Site_Accel",
        "prd_Fresca",
        "prd_Site_Defender",
    }
)
DEFAULT_EDGE_SUFFIX = "edgesuite.net"
SECURE_EDGE_SUFFIX = "edgekey.net"
IP_VERSION_BEHAVIOR = "IPV6_COMPLIANCE"
FIRST_VERSION = 1


class ProvisioningError(PropctlError):
    """Raised when a property cannot be created as requested."""


def property_and_hostnames(
    config_name: str | None,
    hostnames: Sequence[str] | str | None,
) -> tuple[str, list[str]]:
    """Return the normalised property name and the hostnames to bind.

    The first hostname names the property when no name is given; the
    property name doubles as the only hostname when none are given.
    """
    if isinstance(hostnames, str):
        names = [hostnames]
    else:
        names = [item for item in (hostnames or []) if item]
    if not config_name and not names:
        raise ProvisioningError("A property name or at least one hostname is required.")
    name = config_name or names[0]
    if not names:
        names = [name]
    return normalize_name(name), names


def is_secure_edge_hostname(edge_hostname: str | None) -> bool:
    """Return ``True`` for edge hostnames on the secure (edgekey) network."""
    return bool(edge_hostname) and "edgekey" in str(edge_hostname)


def edge_hostname_request(
    product_id: str,
    config_name: str,
    edge_hostname: str | None = None,
    *,
    secure: bool = False,
) -> dict[str, object]:
    """Return the creation body for an edge hostname.

    ``www.example.com.edgesuite.net`` splits into the prefix
    ``www.example.com`` and the suffix ``edgesuite.net``. Without an explicit
    edge hostname the property name is used as the prefix.
    """
    if edge_hostname:
        parts = edge_hostname.split(".")
        prefix = ".".join(parts[:-2])
        suffix = ".".join(parts[-2:])
    else:
        prefix = config_name
        suffix = SECURE_EDGE_SUFFIX if secure else DEFAULT_EDGE_SUFFIX
    return {
        "productId": product_id,
        "domainPrefix": prefix,
        "domainSuffix": suffix,
        "secure": secure,
        "ipVersionBehavior": IP_VERSION_BEHAVIOR,
    }


def _prefixed(value: str | None, prefix: str) -> str | None:
    if not value:
        return None
    return value if value.startswith(prefix) else f"{prefix}{value}"


@dataclass(slots=True)
class ProvisionResult:
    """Outcome of a property creation."""

    record: PropertyRecord
    version: int
    cpcode: int | None
    edge_hostname: str | None
    bindings: list[HostnameBinding] = field(default_factory=list)
    cloned_from: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        payload: dict[str, object] = {
            "property": self.record.to_dict(),
            "version": self.version,
            "cpcode": self.cpcode,
            "edgeHostname": self.edge_hostname,
            "hostnames": [binding.to_dict() for binding in self.bindings],
        }
        if self.cloned_from:
            payload["clonedFrom"] = self.cloned_from
        return payload


@dataclass(slots=True)
class Provisioner:
    """Create properties and prepare their first version."""

    client: PapiClient
    resolver: IdentityResolver
    hostnames: HostnameService

    # ------------------------------------------------------------------
    def create(
        self,
        ctx: RequestContext,
        hostnames: Sequence[str] | str | None = None,
        *,
        config_name: str | None = None,
        group_id: str | None = None,
        contract_id: str | None = None,
        product_id: str | None = None,
        cpcode: str | int | None = None,
        cpcode_name: str | None = None,
        origin: str | None = None,
        edge_hostname: str | None = None,
        rules: Mapping[str, Any] | None = None,
        rule_format: str | None = None,
        secure: bool = False,
    ) -> ProvisionResult:
        """Create a new property, its rules and its hostname bindings."""
        name, names = property_and_hostnames(config_name, hostnames)
        if not edge_hostname:
            LOGGER.warning(
                "EdgeHostname should be specified as new edge hostnames take several minutes to appear."
            )
        if rules is not None:
            group_id = group_id or _optional(rules.get("groupId"))
            contract_id = contract_id or _optional(rules.get("contractId"))
            if cpcode is None:
                cpcode = find_cpcode(rules)
        if is_secure_edge_hostname(edge_hostname):
            secure = True
        group, contract = self._group_and_contract(ctx, group_id, contract_id)
        product = self._product(ctx, contract, group, product_id)

        record = self._create_record(ctx, contract, group, name, product)
        code = self._cpcode(ctx, contract, group, product, name, cpcode, cpcode_name)
        base = dict(rules) if rules is not None else self.client.get_rules(ctx, record, FIRST_VERSION)
        document = apply_property_defaults(
            base,
            name,
            code,
            origin=origin or f"origin-{name}",
            secure=secure,
        )
        if rule_format:
            document = set_rule_format(document, rule_format)
        self.client.put_rules(ctx, record, FIRST_VERSION, document)

        endpoint = self._edge_hostname(ctx, contract, group, product, name, edge_hostname, secure)
        bindings = self._bind(ctx, record, names, endpoint)
        return ProvisionResult(record, FIRST_VERSION, code, endpoint, bindings)

    def clone(
        self,
        ctx: RequestContext,
        source: str | PropertyRecord,
        hostnames: Sequence[str] | str | None = None,
        *,
        config_name: str | None = None,
        source_version: VersionSpec = VersionSelector.LATEST,
        group_id: str | None = None,
        contract_id: str | None = None,
        cpcode: str | int | None = None,
        cpcode_name: str | None = None,
        origin: str | None = None,
        edge_hostname: str | None = None,
        rule_format: str | None = None,
        secure: bool = False,
    ) -> ProvisionResult:
        """Create a property from *source*, inheriting product, CP code and edge hostname."""
        name, names = property_and_hostnames(config_name, hostnames)
        parent = self.resolver.resolve(ctx, source)
        version = select_version(parent, source_version)
        LOGGER.info("... retrieving clone info")
        version_info = self.client.get_version(ctx, parent, version)
        product = _optional(version_info.get("productId")) or parent.product_id
        if not product:
            raise ProvisioningError(f"Cannot determine the product of {parent.property_name}.")
        LOGGER.info("... retrieving clone rules for cpcode")
        if cpcode is None:
            cpcode = find_cpcode(self.client.get_rules(ctx, parent, version))
        if group_id:
            group, contract = self._group_and_contract(ctx, group_id, contract_id)
        else:
            group, contract = parent.group_id, parent.contract_id

        if is_secure_edge_hostname(edge_hostname):
            secure = True
        endpoint = edge_hostname or self._inherited_endpoint(ctx, parent, version)
        if not endpoint:
            endpoint = self._edge_hostname(ctx, contract, group, product, name, None, secure)

        clone_from: dict[str, object] = {
            "propertyId": parent.property_id,
            "version": version,
            "copyHostnames": False,
        }
        etag = version_info.get("etag")
        if etag:
            clone_from["cloneFromVersionEtag"] = etag
        record = self._create_record(ctx, contract, group, name, product, clone_from=clone_from)
        code = self._cpcode(ctx, contract, group, product, name, cpcode, cpcode_name)

        if not rule_format:
            rule_format = latest_rule_format(self.client.rule_formats(ctx))
        document = apply_property_defaults(
            self.client.get_rules(ctx, record, FIRST_VERSION),
            name,
            code,
            origin=origin,
            secure=secure,
        )
        if rule_format:
            document = set_rule_format(document, rule_format)
        self.client.put_rules(ctx, record, FIRST_VERSION, document)

        bindings = self._bind(ctx, record, names, endpoint)
        return ProvisionResult(
            record,
            FIRST_VERSION,
            code,
            endpoint,
            bindings,
            cloned_from=f"{parent.property_name} v{version}",
        )

    # ------------------------------------------------------------------
    def _group_and_contract(
        self,
        ctx: RequestContext,
        group_id: str | None,
        contract_id: str | None,
    ) -> tuple[str, str]:
        group = _prefixed(group_id, "grp_")
        contract = _prefixed(contract_id, "ctr_")
        if group and contract:
            return group, contract
        if group:
            pairs = self.resolver.group_contract_pairs(ctx, group_id=group)
            if pairs:
                return pairs[0]
        raise ProvisioningError("Group/Contract combination doesn't exist")

    def _product(
        self,
        ctx: RequestContext,
        contract: str,
        group: str,
        product_id: str | None,
    ) -> str:
        products = [str(item.get("productId")) for item in self.client.list_products(ctx, contract, group)]
        if product_id:
            wanted = _prefixed(product_id, "prd_")
            if wanted in products:
                return str(wanted)
            raise ProvisioningError(f"Unable to find the Product '{product_id}' in this group/contract.")
        for candidate in products:
            if candidate in DELIVERY_PRODUCTS:
                return candidate
        raise ProvisioningError(
            "Unable to find a delivery product in this group/contract. "
            "Please specify a product id."
        )

    def _create_record(
        self,
        ctx: RequestContext,
        contract: str,
        group: str,
        name: str,
        product: str,
        *,
        clone_from: Mapping[str, object] | None = None,
    ) -> PropertyRecord:
        property_id = self.client.create_property(
            ctx, contract, group, name, product, clone_from=clone_from
        )
        item = self.client.get_property(ctx, property_id, contract, group)
        record = self.resolver.register(item)
        self.resolver.store.alias(name, record)
        if record.product_id is None:
            self.resolver.store.update(record, product_id=product)
        if record.latest_version is None:
            self.resolver.store.update(record, latest_version=FIRST_VERSION)
        return record

    def _cpcode(
        self,
        ctx: RequestContext,
        contract: str,
        group: str,
        product: str,
        name: str,
        cpcode: str | int | None,
        cpcode_name: str | None,
    ) -> int:
        if cpcode is not None and not cpcode_name:
            return cpcode_id(cpcode)
        try:
            created = self.client.create_cpcode(ctx, contract, group, product, cpcode_name or name)
        except RemoteRejectedError as exc:
            raise ProvisioningError(
                "Unable to create new cpcode. Likely this means you have reached the limit "
                "of new cpcodes for this contract. Please try the request again with a "
                "specified cpcode."
            ) from exc
        return int(created)

    def _edge_hostname(
        self,
        ctx: RequestContext,
        contract: str,
        group: str,
        product: str,
        name: str,
        edge_hostname: str | None,
        secure: bool,
    ) -> str:
        existing = self.client.list_edge_hostnames(ctx, contract, group) or []
        for item in existing:
            if edge_hostname and item.get("edgeHostnameDomain") == edge_hostname:
                return edge_hostname
            if not edge_hostname and item.get("domainPrefix") == name and item.get("edgeHostnameId"):
                return str(item["edgeHostnameId"])
        LOGGER.info("Creating edge hostname for property: %s", name)
        body = edge_hostname_request(product, name, edge_hostname, secure=secure)
        return self.client.create_edge_hostname(ctx, contract, group, body)

    def _inherited_endpoint(self, ctx: RequestContext, parent: PropertyRecord, version: int) -> str | None:
        for binding in self.hostnames.current(ctx, parent, version):
            endpoint = binding.edge_hostname_id or binding.cname_to
            if endpoint:
                return endpoint
        return None

    def _bind(
        self,
        ctx: RequestContext,
        record: PropertyRecord,
        names: list[str],
        endpoint: str,
    ) -> list[HostnameBinding]:
        bindings = reconcile(names, [], [], endpoint)
        for binding in bindings:
            LOGGER.info("Adding hostname %s", binding.cname_from)
        self.client.put_hostnames(ctx, record, FIRST_VERSION, bindings)
        return bindings


def _optional(value: object) -> str | None:
    return str(value) if value else None


__all__ = [
    "DELIVERY_PRODUCTS",
    "ProvisionResult",
    "Provisioner",
    "ProvisioningError",
    "edge_hostname_request",
    "is_secure_edge_hostname",
    "property_and_hostnames",
]
