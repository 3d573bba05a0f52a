"""Public property operations built on the resolver, workflow and state machine.

:class:`PropertyManager` is the single entry point used by the CLI. Every
operation takes an explicit :class:`~propctl.transport.RequestContext` and
accepts any lookup key (property id, name or hostname).
"""
from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TextIO

from .activation import ActivationResult, ActivationStateMachine
from .errors import NotFoundError, PropctlError, ProtocolError
from .hostnames import HostnameChange, HostnameService
from .models import Network, PropertyRecord, VersionSelector, VersionSpec
from .papi import PapiClient
from .pool import fan_out
from .provisioning import Provisioner, ProvisionResult
from .resolver import IdentityResolver
from .rulefiles import read_document, write_document
from .rules import (
    get_variables,
    latest_rule_format,
    set_comments,
    set_cpcode,
    set_origin,
    set_rule_format,
    set_sureroute,
    set_variables,
)
from .transport import RequestContext
from .versions import VersionWorkflow, select_version

LOGGER = logging.getLogger(__name__)

RulePatch = Callable[[Mapping[str, Any]], dict[str, Any]]


@dataclass(slots=True)
class RulesChange:
    """Result of writing a rule tree onto a new version."""

    property_name: str
    version: int
    rules: dict[str, Any]

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "propertyName": self.property_name,
            "version": self.version,
            "rules": self.rules,
        }


def _strip(value: str, prefix: str) -> str:
    return value[len(prefix):] if value.startswith(prefix) else value


class PropertyManager:
    """Look up, change and activate properties."""

    def __init__(
        self,
        client: PapiClient,
        *,
        resolver: IdentityResolver | None = None,
        activations: ActivationStateMachine | None = None,
        max_workers: int = 10,
    ) -> None:
        """Wire the services around one client and one property store."""
        self.client = client
        self.resolver = resolver or IdentityResolver(client, max_workers=max_workers)
        self.store = self.resolver.store
        self.workflow = VersionWorkflow(client, self.store)
        self.hostnames = HostnameService(client, self.resolver, self.workflow)
        self.activations = activations or ActivationStateMachine(client, self.store)
        self.provisioner = Provisioner(client, self.resolver, self.hostnames)
        self.max_workers = max_workers

    # ------------------------------------------------------------------
    # Lookup and listings
    # ------------------------------------------------------------------
    def lookup(
        self,
        ctx: RequestContext,
        key: str,
        network: Network = Network.PRODUCTION,
    ) -> PropertyRecord:
        """Resolve *key*; hostnames use the binding active on *network*."""
        return self.resolver.resolve(ctx, key, network)

    def search(self, ctx: RequestContext, name: str) -> list[dict[str, Any]]:
        """Return the raw search hits for a property name."""
        return self.client.search(ctx, "propertyName", name)

    def list_groups(self, ctx: RequestContext) -> list[dict[str, Any]]:
        """Return every group the credentials can see."""
        listing = self.client.list_groups(ctx)
        groups = listing.get("groups") if isinstance(listing, Mapping) else None
        items = groups.get("items") if isinstance(groups, Mapping) else None
        return [dict(item) for item in items or [] if isinstance(item, Mapping)]

    def list_properties(
        self,
        ctx: RequestContext,
        group_id: str,
        contract_id: str,
    ) -> list[dict[str, Any]]:
        """Return the properties of one group/contract pair and index them."""
        listing = self.client.list_properties(ctx, contract_id, group_id) or {}
        properties = listing.get("properties")
        items = properties.get("items") if isinstance(properties, Mapping) else None
        result: list[dict[str, Any]] = []
        for item in items or []:
            if not isinstance(item, Mapping):
                continue
            self.resolver.register(item)
            result.append(dict(item))
        return result

    def list_edge_hostnames(
        self,
        ctx: RequestContext,
        group_id: str | None = None,
        contract_id: str | None = None,
    ) -> list[dict[str, Any]]:
        """Return edge hostnames for one pair, or for every accessible pair.

        Pairs the credentials cannot read are skipped.
        """
        if group_id and contract_id:
            return list(self.client.list_edge_hostnames(ctx, contract_id, group_id) or [])
        pairs = self.resolver.group_contract_pairs(ctx, group_id=group_id, contract_id=contract_id)
        listings = fan_out(
            lambda pair: self.client.list_edge_hostnames(ctx, pair[1], pair[0], skip_forbidden=True),
            pairs,
            max_workers=self.max_workers,
        )
        result: list[dict[str, Any]] = []
        for listing in listings:
            result.extend(listing or [])
        return result

    def rule_formats(self, ctx: RequestContext, *, latest: bool = False) -> list[str] | str | None:
        """Return the available rule formats, or only the newest ``v2`` one."""
        formats = self.client.rule_formats(ctx)
        if latest:
            return latest_rule_format(formats)
        return formats

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------
    def retrieve_rules(
        self,
        ctx: RequestContext,
        key: str,
        version: VersionSpec = VersionSelector.LATEST,
    ) -> dict[str, Any]:
        """Return the rule tree of a property version."""
        record = self.resolver.resolve(ctx, key)
        number = select_version(record, version)
        LOGGER.info("Retrieving %s v%s", record.property_name, number)
        return self.client.get_rules(ctx, record, number)

    def export_rules(
        self,
        ctx: RequestContext,
        key: str,
        destination: str | Path,
        version: VersionSpec = VersionSelector.LATEST,
        *,
        stream: TextIO | None = None,
    ) -> Path | None:
        """Write the rule tree of a property version to *destination* (``-`` for stdout)."""
        document = self.retrieve_rules(ctx, key, version)
        LOGGER.info("Writing %s rules to %s", key, destination)
        return write_document(destination, document, stream=stream)

    def retrieve_hostnames(
        self,
        ctx: RequestContext,
        key: str,
        version: VersionSpec = VersionSelector.LATEST,
    ) -> dict[str, Any] | str:
        """Return the hostname listing of a property version.

        Properties the remote API cannot describe yield their bare id.
        """
        record = self.resolver.resolve(ctx, key)
        LOGGER.info("Retrieving hostnames for %s", record.property_name)
        return self.hostnames.listing(ctx, record, version)

    def rule_format(
        self,
        ctx: RequestContext,
        key: str,
        version: VersionSpec = VersionSelector.LATEST,
    ) -> str | None:
        """Return the rule format a property version is written in."""
        document = self.retrieve_rules(ctx, key, version)
        rule_format = document.get("ruleFormat")
        return str(rule_format) if rule_format else None

    # ------------------------------------------------------------------
    # Versions and rules
    # ------------------------------------------------------------------
    def create_version(
        self,
        ctx: RequestContext,
        key: str,
        base: VersionSpec = VersionSelector.LATEST,
    ) -> int:
        """Copy *base* into a new version and return its number."""
        record = self.resolver.resolve(ctx, key)
        LOGGER.info("Creating new version for %s", record.property_name)
        return self.workflow.prepare_writable_version(ctx, record, base)

    def update_rules(
        self,
        ctx: RequestContext,
        key: str,
        document: Mapping[str, Any],
        comment: str | None = None,
    ) -> RulesChange:
        """Copy the latest version and replace its rules with *document*."""
        record = self.resolver.resolve(ctx, key)
        LOGGER.info("Updating %s", record.property_name)
        payload = set_comments(document, comment) if comment else dict(document)
        version, rules = self.workflow.replace_rules(ctx, record, payload)
        return RulesChange(record.property_name, version, rules)

    def update_rules_from_file(
        self,
        ctx: RequestContext,
        key: str,
        source: str | Path,
        comment: str | None = None,
    ) -> RulesChange:
        """Like :meth:`update_rules` with the document read from *source*."""
        document = read_document(source)
        if not isinstance(document, Mapping):
            raise PropctlError(f"Rule file {source} does not contain an object.")
        return self.update_rules(ctx, key, document, comment)

    def copy_rules(
        self,
        ctx: RequestContext,
        from_key: str,
        to_key: str,
        *,
        from_version: VersionSpec = VersionSelector.LATEST,
        comment: str | None = None,
    ) -> RulesChange:
        """Write the rules of one property version onto a new version of another."""
        document = self.retrieve_rules(ctx, from_key, from_version)
        LOGGER.info("Copy %s v%s to %s", from_key, document.get("propertyVersion"), to_key)
        return self.update_rules(ctx, to_key, document, comment)

    def set_cpcode(self, ctx: RequestContext, key: str, cpcode: str | int) -> RulesChange:
        """Point the default rule at *cpcode* on a new version."""
        return self._patch_rules(ctx, key, lambda document: set_cpcode(document, cpcode))

    def set_origin(
        self,
        ctx: RequestContext,
        key: str,
        hostname: str | None = None,
        forward: str | None = None,
    ) -> RulesChange:
        """Change the origin hostname and forward host header on a new version."""
        return self._patch_rules(ctx, key, lambda document: set_origin(document, hostname, forward))

    def set_sureroute(
        self,
        ctx: RequestContext,
        key: str,
        *,
        custom_map: str | None = None,
        test_object_url: str | None = None,
        to_host: str | None = None,
    ) -> RulesChange:
        """Change the SureRoute settings on a new version."""
        return self._patch_rules(
            ctx,
            key,
            lambda document: set_sureroute(document, custom_map, test_object_url, to_host),
        )

    def set_rule_format(self, ctx: RequestContext, key: str, rule_format: str) -> RulesChange:
        """Change the rule format on a new version."""
        return self._patch_rules(ctx, key, lambda document: set_rule_format(document, rule_format))

    def set_comments(self, ctx: RequestContext, key: str, comment: str) -> RulesChange:
        """Change the version notes on a new version."""
        return self._patch_rules(ctx, key, lambda document: set_comments(document, comment))

    def get_variables(
        self,
        ctx: RequestContext,
        key: str,
        version: VersionSpec = VersionSelector.LATEST,
    ) -> list[dict[str, Any]]:
        """Return the property variables of a version."""
        return get_variables(self.retrieve_rules(ctx, key, version))

    def set_variables(
        self,
        ctx: RequestContext,
        key: str,
        changes: Sequence[Mapping[str, Any]],
    ) -> RulesChange:
        """Apply create/update/delete variable actions on a new version."""
        return self._patch_rules(ctx, key, lambda document: set_variables(document, changes))

    def set_variables_from_file(self, ctx: RequestContext, key: str, source: str | Path) -> RulesChange:
        """Like :meth:`set_variables` with the actions read from *source*."""
        changes = read_document(source)
        if isinstance(changes, Mapping):
            changes = [changes]
        if not isinstance(changes, list):
            raise PropctlError(f"Variable file {source} must contain a list of variables.")
        return self.set_variables(ctx, key, changes)

    # ------------------------------------------------------------------
    # Hostnames
    # ------------------------------------------------------------------
    def add_hostnames(
        self,
        ctx: RequestContext,
        key: str,
        hostnames: Sequence[str],
        *,
        edge_hostname: str | None = None,
        base: VersionSpec = VersionSelector.LATEST,
    ) -> HostnameChange:
        """Bind *hostnames* on a new version."""
        record = self.resolver.resolve(ctx, key)
        return self.hostnames.add(ctx, record, hostnames, edge_hostname=edge_hostname, base_version=base)

    def delete_hostnames(
        self,
        ctx: RequestContext,
        key: str,
        hostnames: Sequence[str],
        *,
        base: VersionSpec = VersionSelector.LATEST,
    ) -> HostnameChange:
        """Unbind *hostnames* on a new version."""
        record = self.resolver.resolve(ctx, key)
        return self.hostnames.delete(ctx, record, hostnames, base_version=base)

    def assign_edge_hostname(
        self,
        ctx: RequestContext,
        key: str,
        edge_hostname: str,
        *,
        base: VersionSpec = VersionSelector.LATEST,
    ) -> HostnameChange:
        """Point every hostname at *edge_hostname* on a new version."""
        record = self.resolver.resolve(ctx, key)
        return self.hostnames.assign_edge_hostname(ctx, record, edge_hostname, base_version=base)

    # ------------------------------------------------------------------
    # Activation
    # ------------------------------------------------------------------
    def activate(
        self,
        ctx: RequestContext,
        key: str,
        network: Network = Network.STAGING,
        version: VersionSpec = VersionSelector.LATEST,
        *,
        note: str = "",
        emails: Sequence[str] | None = None,
        wait: bool = True,
        cancel: threading.Event | None = None,
        timeout: float | None = None,
    ) -> ActivationResult:
        """Activate a property version on *network*."""
        record = self.resolver.resolve(ctx, key)
        number = select_version(record, version)
        return self.activations.activate(
            ctx,
            record,
            number,
            network,
            note=note,
            emails=emails,
            wait=wait,
            cancel=cancel,
            timeout=timeout,
        )

    def deactivate(
        self,
        ctx: RequestContext,
        key: str,
        network: Network = Network.STAGING,
        *,
        note: str = "",
        emails: Sequence[str] | None = None,
        wait: bool = True,
        cancel: threading.Event | None = None,
        timeout: float | None = None,
    ) -> ActivationResult:
        """Deactivate the version live on *network*."""
        record = self.resolver.resolve(ctx, key)
        return self.activations.deactivate(
            ctx,
            record,
            network,
            note=note,
            emails=emails,
            wait=wait,
            cancel=cancel,
            timeout=timeout,
        )

    def promote(
        self,
        ctx: RequestContext,
        key: str,
        *,
        note: str = "",
        emails: Sequence[str] | None = None,
        wait: bool = True,
        cancel: threading.Event | None = None,
        timeout: float | None = None,
    ) -> ActivationResult | None:
        """Activate the staging version on production.

        Returns ``None`` when production already runs the staging version.
        """
        record = self.resolver.resolve(ctx, key)
        staging = record.staging_version
        if not staging:
            raise PropctlError(f"No version in Staging for {record.property_name}")
        if record.production_version == staging:
            LOGGER.info("Version %s already active in Production", staging)
            return None
        return self.activations.activate(
            ctx,
            record,
            staging,
            Network.PRODUCTION,
            note=note,
            emails=emails,
            wait=wait,
            cancel=cancel,
            timeout=timeout,
        )

    # ------------------------------------------------------------------
    # Property lifecycle
    # ------------------------------------------------------------------
    def create_property(self, ctx: RequestContext, hostnames: Sequence[str], **options: Any) -> ProvisionResult:
        """Create a new property; see :meth:`Provisioner.create`."""
        return self.provisioner.create(ctx, hostnames, **options)

    def create_property_from_file(
        self,
        ctx: RequestContext,
        hostnames: Sequence[str],
        source: str | Path,
        **options: Any,
    ) -> ProvisionResult:
        """Create a new property seeded with the rule tree stored in *source*."""
        document = read_document(source)
        if not isinstance(document, Mapping):
            raise PropctlError(f"Rule file {source} does not contain an object.")
        return self.provisioner.create(ctx, hostnames, rules=document, **options)

    def clone_property(
        self,
        ctx: RequestContext,
        source: str,
        hostnames: Sequence[str],
        **options: Any,
    ) -> ProvisionResult:
        """Create a new property from *source*; see :meth:`Provisioner.clone`."""
        return self.provisioner.clone(ctx, source, hostnames, **options)

    def delete_property(self, ctx: RequestContext, key: str) -> dict[str, Any]:
        """Delete a property and drop the local cache."""
        record = self.resolver.resolve(ctx, key)
        LOGGER.info("Deleting %s", record.property_name)
        payload = self.client.delete_property(ctx, record)
        self.resolver.reset()
        return payload

    def move_property(self, ctx: RequestContext, key: str, destination_group: str) -> dict[str, object]:
        """Move a property to *destination_group* through user administration."""
        record = self.resolver.resolve(ctx, key)
        LOGGER.info("Moving %s to %s", record.property_name, destination_group)
        if not record.account_id:
            raise ProtocolError(f"Property {record.property_id} has no account id.")
        account = _strip(record.account_id, "act_")
        try:
            source_group = int(_strip(record.group_id, "grp_"))
            target_group = int(_strip(str(destination_group), "grp_"))
        except ValueError as exc:
            raise PropctlError(f"Invalid group id: {exc}") from exc

        wanted = record.property_name.lower()
        asset_id: str | None = None
        for entry in self.client.list_group_assets(ctx, account, source_group):
            if str(entry.get("assetName", "")).lower() == wanted:
                asset_id = str(entry.get("assetId"))
                break
        if asset_id is None:
            raise NotFoundError(record.property_name)

        self.client.move_asset(ctx, account, asset_id, source_group, target_group)
        LOGGER.info("Successfully moved %s to group %s", record.property_name, target_group)
        self.store.update(record, group_id=f"grp_{target_group}", asset_id=asset_id)
        return {
            "propertyName": record.property_name,
            "assetId": asset_id,
            "sourceGroupId": source_group,
            "destinationGroupId": target_group,
        }

    # ------------------------------------------------------------------
    def _patch_rules(self, ctx: RequestContext, key: str, patch: RulePatch) -> RulesChange:
        record = self.resolver.resolve(ctx, key)
        base = select_version(record, VersionSelector.LATEST)
        document = patch(self.client.get_rules(ctx, record, base))
        version, rules = self.workflow.replace_rules(ctx, record, document, base_version=base)
        return RulesChange(record.property_name, version, rules)


__all__ = ["PropertyManager", "RulesChange"]
