"""Thin, parameterised calls against the Property Manager API.

Each method builds one request, sends it through the transport and applies
the status conventions of the remote API:

* ``[200, 400)`` is success;
* ``403`` is a permission error, or ``None`` for list calls made with
  ``skip_forbidden=True``;
* anything else is a :class:`~propctl.errors.RemoteRejectedError`.

Methods that return raw :class:`~propctl.transport.Response` objects leave
status interpretation to their caller (hostname listing, activations).
"""
from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from .errors import (
    PermissionDeniedError,
    ProtocolError,
    RemoteRejectedError,
    TransientError,
)
from .models import HostnameBinding, PropertyRecord
from .retry import RetryPolicy
from .transport import Request, RequestContext, Response, Transport

LOGGER = logging.getLogger(__name__)

PAPI = "/papi/v1"
USER_ADMIN = "/user-admin/v1"

_PROPERTY_LINK = re.compile(r"/properties/(prp_[A-Za-z0-9_]+)")
_CPCODE_LINK = re.compile(r"/cpcodes/cpc_([0-9]+)")
_EDGE_HOSTNAME_LINK = re.compile(r"/edgehostnames/(ehn_[A-Za-z0-9_]+)")


@dataclass(slots=True)
class PapiClient:
    """Property Manager API calls, one method per endpoint."""

    transport: Transport
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    # ------------------------------------------------------------------
    # Groups, properties and search
    # ------------------------------------------------------------------
    def list_groups(self, ctx: RequestContext) -> dict[str, Any]:
        """Return the raw group listing (retried on no response)."""
        LOGGER.info("... retrieving list of Group Ids")
        response = self._send(ctx, "GET", f"{PAPI}/groups", retry="group listing")
        return decode_body(expect_ok(response, "group listing"), "group listing")

    def list_properties(
        self,
        ctx: RequestContext,
        contract_id: str,
        group_id: str,
        *,
        skip_forbidden: bool = False,
    ) -> dict[str, Any] | None:
        """Return the properties in one group/contract pair."""
        response = self._send(
            ctx,
            "GET",
            f"{PAPI}/properties",
            query={"contractId": contract_id, "groupId": group_id},
        )
        if skip_forbidden and response.status_code == 403:
            LOGGER.info(
                "... your client credentials have no access to this group, skipping {%s : %s}",
                contract_id,
                group_id,
            )
            return None
        return decode_body(expect_ok(response, "property listing"), "property listing")

    def get_property(
        self,
        ctx: RequestContext,
        property_id: str,
        contract_id: str,
        group_id: str,
    ) -> dict[str, Any]:
        """Return the full metadata item for a single property."""
        LOGGER.info("... getting info for %s", property_id)
        response = self._send(
            ctx,
            "GET",
            f"{PAPI}/properties/{property_id}",
            query={"contractId": contract_id, "groupId": group_id},
        )
        payload = decode_body(expect_ok(response, "property lookup"), "property lookup")
        return _first_item(payload, "properties", "property lookup")

    def search(self, ctx: RequestContext, field_name: str, value: str) -> list[dict[str, Any]]:
        """Run a find-by-value search and return the matching version items."""
        LOGGER.info("... searching %s for %s", field_name, value)
        response = self._send(
            ctx,
            "POST",
            f"{PAPI}/search/find-by-value",
            body={field_name: value},
        )
        payload = decode_body(expect_ok(response, "search"), "search")
        return _items(payload, "versions")

    def rule_formats(self, ctx: RequestContext) -> list[str]:
        """Return the rule formats known to the remote API."""
        response = self._send(ctx, "GET", f"{PAPI}/rule-formats")
        payload = decode_body(expect_ok(response, "rule format listing"), "rule format listing")
        return [str(item) for item in _items(payload, "ruleFormats")]

    def list_products(self, ctx: RequestContext, contract_id: str, group_id: str) -> list[dict[str, Any]]:
        """Return the products available to a group/contract pair."""
        LOGGER.info("... retrieving list of Products for this contract")
        response = self._send(
            ctx,
            "GET",
            f"{PAPI}/products",
            query={"contractId": contract_id, "groupId": group_id},
        )
        payload = decode_body(expect_ok(response, "product listing"), "product listing")
        return _items(payload, "products")

    # ------------------------------------------------------------------
    # Versions and rules
    # ------------------------------------------------------------------
    def get_version(self, ctx: RequestContext, record: PropertyRecord, version: int) -> dict[str, Any]:
        """Return the metadata item for one property version."""
        response = self._send(
            ctx,
            "GET",
            f"{PAPI}/properties/{record.property_id}/versions/{version}",
            query=_scope(record),
        )
        payload = decode_body(expect_ok(response, "version lookup"), "version lookup")
        return _first_item(payload, "versions", "version lookup")

    def create_version(
        self,
        ctx: RequestContext,
        record: PropertyRecord,
        base_version: int,
        *,
        etag: str | None = None,
    ) -> dict[str, Any]:
        """Create a new version copied from *base_version*."""
        body: dict[str, object] = {"createFromVersion": base_version}
        if etag:
            body["createFromVersionEtag"] = etag
        response = self._send(
            ctx,
            "POST",
            f"{PAPI}/properties/{record.property_id}/versions",
            query=_scope(record),
            body=body,
        )
        return decode_body(expect_ok(response, "version copy"), "version copy")

    def get_rules(self, ctx: RequestContext, record: PropertyRecord, version: int) -> dict[str, Any]:
        """Return the rule tree document for a version."""
        LOGGER.info("... retrieving property (%s) v%s", record.property_name, version)
        response = self._send(
            ctx,
            "GET",
            f"{PAPI}/properties/{record.property_id}/versions/{version}/rules",
            query=_scope(record),
        )
        return decode_body(expect_ok(response, "rule retrieval"), "rule retrieval")

    def put_rules(
        self,
        ctx: RequestContext,
        record: PropertyRecord,
        version: int,
        document: Mapping[str, Any],
    ) -> dict[str, Any]:
        """Replace the rule tree of *version* with *document*."""
        LOGGER.info("... updating property (%s) v%s", record.property_name, version)
        headers: dict[str, str] = {}
        rule_format = document.get("ruleFormat")
        if rule_format and rule_format != "latest":
            headers["Content-Type"] = f"application/vnd.akamai.papirules.{rule_format}+json"
        response = self._send(
            ctx,
            "PUT",
            f"{PAPI}/properties/{record.property_id}/versions/{version}/rules",
            query=_scope(record),
            body=dict(document),
            headers=headers,
        )
        return decode_body(expect_ok(response, "rule update"), "rule update")

    # ------------------------------------------------------------------
    # Hostnames and edge hostnames
    # ------------------------------------------------------------------
    def get_hostnames(self, ctx: RequestContext, record: PropertyRecord, version: int) -> Response:
        """Return the raw hostname listing response (retried on no response)."""
        LOGGER.info(
            "... retrieving list of hostnames {%s : %s : %s}",
            record.contract_id,
            record.group_id,
            record.property_id,
        )
        return self._send(
            ctx,
            "GET",
            f"{PAPI}/properties/{record.property_id}/versions/{version}/hostnames",
            query=_scope(record),
            retry=f"hostname listing of {record.property_id}",
        )

    def put_hostnames(
        self,
        ctx: RequestContext,
        record: PropertyRecord,
        version: int,
        bindings: Sequence[HostnameBinding],
    ) -> dict[str, Any]:
        """Replace the full hostname list of *version*."""
        response = self._send(
            ctx,
            "PUT",
            f"{PAPI}/properties/{record.property_id}/versions/{version}/hostnames",
            query=_scope(record),
            body=[binding.to_dict() for binding in bindings],
        )
        if response.status_code in (400, 403):
            raise RemoteRejectedError(
                "Unable to assign hostname. Please try to add the hostname again in 30 minutes.",
                status_code=response.status_code,
                body=response.body,
            )
        return decode_body(expect_ok(response, "hostname update"), "hostname update")

    def list_edge_hostnames(
        self,
        ctx: RequestContext,
        contract_id: str,
        group_id: str,
        *,
        skip_forbidden: bool = False,
    ) -> list[dict[str, Any]] | None:
        """Return the edge hostnames of a group/contract pair."""
        response = self._send(
            ctx,
            "GET",
            f"{PAPI}/edgehostnames",
            query={"contractId": contract_id, "groupId": group_id},
        )
        if skip_forbidden and response.status_code == 403:
            LOGGER.info("... no permissions, ignoring {%s : %s}", contract_id, group_id)
            return None
        payload = decode_body(expect_ok(response, "edge hostname listing"), "edge hostname listing")
        return _items(payload, "edgeHostnames")

    def create_edge_hostname(
        self,
        ctx: RequestContext,
        contract_id: str,
        group_id: str,
        body: Mapping[str, object],
    ) -> str:
        """Create an edge hostname and return its ``ehn_`` id."""
        response = self._send(
            ctx,
            "POST",
            f"{PAPI}/edgehostnames",
            query={"contractId": contract_id, "groupId": group_id},
            body=dict(body),
        )
        payload = decode_body(expect_ok(response, "edge hostname creation"), "edge hostname creation")
        return _link_match(payload, "edgeHostnameLink", _EDGE_HOSTNAME_LINK)

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------
    def create_cpcode(
        self,
        ctx: RequestContext,
        contract_id: str,
        group_id: str,
        product_id: str,
        name: str,
    ) -> str:
        """Create a CP code and return its numeric id as a string."""
        LOGGER.info("Creating new CPCode for property")
        response = self._send(
            ctx,
            "POST",
            f"{PAPI}/cpcodes",
            query={"contractId": contract_id, "groupId": group_id},
            body={"productId": product_id, "cpcodeName": name},
        )
        payload = decode_body(expect_ok(response, "cp code creation"), "cp code creation")
        return _link_match(payload, "cpcodeLink", _CPCODE_LINK)

    def create_property(
        self,
        ctx: RequestContext,
        contract_id: str,
        group_id: str,
        name: str,
        product_id: str,
        *,
        clone_from: Mapping[str, object] | None = None,
    ) -> str:
        """Create a property and return its ``prp_`` id."""
        LOGGER.info("Creating property config %s", name)
        body: dict[str, object] = {"productId": product_id, "propertyName": name}
        if clone_from:
            body["cloneFrom"] = dict(clone_from)
        response = self._send(
            ctx,
            "POST",
            f"{PAPI}/properties",
            query={"contractId": contract_id, "groupId": group_id},
            body=body,
        )
        payload = decode_body(expect_ok(response, "property creation"), "property creation")
        return _link_match(payload, "propertyLink", _PROPERTY_LINK)

    def delete_property(self, ctx: RequestContext, record: PropertyRecord) -> dict[str, Any]:
        """Delete a property."""
        response = self._send(
            ctx,
            "DELETE",
            f"{PAPI}/properties/{record.property_id}",
            query=_scope(record),
        )
        return decode_body(expect_ok(response, "property deletion"), "property deletion")

    # ------------------------------------------------------------------
    # Activations
    # ------------------------------------------------------------------
    def submit_activation(
        self,
        ctx: RequestContext,
        record: PropertyRecord,
        body: Mapping[str, object],
    ) -> Response:
        """Post an activation or deactivation request; return the raw response."""
        return self._send(
            ctx,
            "POST",
            f"{PAPI}/properties/{record.property_id}/activations",
            query=_scope(record),
            body=dict(body),
        )

    def get_activation(
        self,
        ctx: RequestContext,
        record: PropertyRecord,
        activation_id: str,
    ) -> Response:
        """Return the raw activation status response."""
        return self._send(
            ctx,
            "GET",
            f"{PAPI}/properties/{record.property_id}/activations/{activation_id}",
            query=_scope(record),
        )

    # ------------------------------------------------------------------
    # User administration (property moves)
    # ------------------------------------------------------------------
    def list_group_assets(
        self,
        ctx: RequestContext,
        account_id: str,
        group_id: int,
    ) -> list[dict[str, Any]]:
        """Return the user-admin asset entries of a group."""
        LOGGER.info("Gathering asset ID for property")
        response = self._send(
            ctx,
            "GET",
            f"{USER_ADMIN}/accounts/{account_id}/groups/{group_id}/properties",
        )
        if not response.ok:
            raise RemoteRejectedError(
                "Unable to access user administration. "
                "Please ensure your credentials allow user admin access.",
                status_code=response.status_code,
                body=response.body,
            )
        payload = decode_body(response, "asset listing")
        if not isinstance(payload, list):
            raise ProtocolError("Asset listing did not return a list.", body=response.body)
        return [dict(item) for item in payload if isinstance(item, Mapping)]

    def move_asset(
        self,
        ctx: RequestContext,
        account_id: str,
        asset_id: str,
        source_group: int,
        destination_group: int,
    ) -> Response:
        """Move an asset between groups (retried on no response)."""
        response = self._send(
            ctx,
            "PUT",
            f"{USER_ADMIN}/accounts/{account_id}/properties/{asset_id}",
            body={"sourceGroupId": source_group, "destinationGroupId": destination_group},
            retry="property move",
        )
        return expect_ok(response, "property move")

    # ------------------------------------------------------------------
    def _send(
        self,
        ctx: RequestContext,
        method: str,
        path: str,
        *,
        query: Mapping[str, object] | None = None,
        body: object | None = None,
        headers: Mapping[str, str] | None = None,
        retry: str | None = None,
    ) -> Response:
        params: dict[str, object] = dict(query or {})
        params.update(ctx.query())
        request = Request(
            method=method,
            path=path,
            query=params,
            body=body,
            headers=dict(headers or {}),
        )
        if retry is not None:
            return self.retry.call(retry, lambda: self.transport.send(request))
        response = self.transport.send(request)
        if response is None:
            raise TransientError(f"No response from server for {method} {path}.")
        return response


def _scope(record: PropertyRecord) -> dict[str, object]:
    return {"contractId": record.contract_id, "groupId": record.group_id}


def expect_ok(response: Response, operation: str) -> Response:
    """Return *response* when successful, otherwise raise the mapped error."""
    if response.ok:
        return response
    if response.status_code == 403:
        raise PermissionDeniedError(
            f"Permission denied for {operation}.",
            status_code=403,
            body=response.body,
        )
    raise RemoteRejectedError(
        f"{operation.capitalize()} failed (HTTP {response.status_code}): {response.body}",
        status_code=response.status_code,
        body=response.body,
    )


def decode_body(response: Response, operation: str) -> Any:
    """Decode a JSON body; an empty body decodes to an empty mapping."""
    if not response.body:
        return {}
    try:
        return response.json()
    except ValueError as exc:
        raise ProtocolError(
            f"Unparseable response for {operation}.",
            status_code=response.status_code,
            body=response.body,
        ) from exc


def _items(payload: object, key: str) -> list[Any]:
    if not isinstance(payload, Mapping):
        return []
    container = payload.get(key)
    if not isinstance(container, Mapping):
        return []
    items = container.get("items")
    return list(items) if isinstance(items, list) else []


def _first_item(payload: object, key: str, operation: str) -> dict[str, Any]:
    items = _items(payload, key)
    if not items or not isinstance(items[0], Mapping):
        raise ProtocolError(f"Response for {operation} has no {key} items.")
    return dict(items[0])


def _link_match(payload: object, key: str, pattern: re.Pattern[str]) -> str:
    link = payload.get(key) if isinstance(payload, Mapping) else None
    match = pattern.search(str(link)) if link else None
    if match is None:
        raise ProtocolError(f"Response is missing a usable {key}.")
    return match.group(1)


__all__ = ["PAPI", "PapiClient", "USER_ADMIN", "decode_body", "expect_ok"]
