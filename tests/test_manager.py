"""Tests for the public property operations."""
from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from propctl.activation import ActivationOutcome
from propctl.errors import (
    NotFoundError,
    PermissionDeniedError,
    PropctlError,
    RemoteRejectedError,
)
from propctl.manager import PropertyManager
from propctl.models import Network, PropertyRecord, VersionSelector
from propctl.rules import find_cpcode
from propctl.transport import RequestContext

if TYPE_CHECKING:
    from conftest import FakeTransport

BASE = "/papi/v1/properties/prp_1/versions"
ACTIVATIONS = "/papi/v1/properties/prp_1/activations"
ASSETS = "/user-admin/v1/accounts/A-1/groups/100/properties"

RULES = {
    "propertyVersion": 3,
    "ruleFormat": "v2020-03-04",
    "rules": {
        "name": "default",
        "behaviors": [{"name": "cpCode", "options": {"value": {"id": 111}}}],
        "variables": [],
    },
}


def _script_patch(transport: FakeTransport) -> None:
    transport.reply("GET", f"{BASE}/3/rules", RULES)
    transport.reply("POST", BASE, {"versionLink": f"{BASE}/4"})
    transport.reply("PUT", f"{BASE}/4/rules", {"propertyVersion": 4})


def test_set_cpcode_copies_then_patches(
    manager: PropertyManager,
    record: PropertyRecord,
    transport: FakeTransport,
    ctx: RequestContext,
) -> None:
    """Rule patches read the latest version and write onto a fresh copy."""
    _script_patch(transport)

    change = manager.set_cpcode(ctx, "www.example.com", "cpc_222")

    assert change.version == 4
    assert change.to_dict()["propertyName"] == "www.example.com"
    assert transport.calls("POST", BASE)[0].body == {"createFromVersion": 3}
    written = transport.calls("PUT", f"{BASE}/4/rules")[0].body
    assert find_cpcode(written) == 222  # type: ignore[arg-type]
    assert record.latest_version == 4


def test_update_rules_from_file_sets_comment(
    manager: PropertyManager,
    record: PropertyRecord,
    transport: FakeTransport,
    ctx: RequestContext,
    tmp_path: Path,
) -> None:
    """Rules read from disk are written with the version notes applied."""
    source = tmp_path / "rules.json"
    source.write_text(json.dumps(RULES), encoding="utf-8")
    transport.reply("POST", BASE, {"versionLink": f"{BASE}/4"})
    transport.reply("PUT", f"{BASE}/4/rules", {"propertyVersion": 4})

    manager.update_rules_from_file(ctx, "prp_1", source, comment="from disk")

    written = transport.calls("PUT", f"{BASE}/4/rules")[0].body
    assert written["comments"] == "from disk"  # type: ignore[index]


def test_update_rules_from_file_requires_object(
    manager: PropertyManager,
    record: PropertyRecord,
    ctx: RequestContext,
    tmp_path: Path,
) -> None:
    """A rule file holding a list is refused."""
    source = tmp_path / "rules.json"
    source.write_text("[]", encoding="utf-8")

    with pytest.raises(PropctlError, match="does not contain an object"):
        manager.update_rules_from_file(ctx, "prp_1", source)


def test_copy_rules_between_properties(
    manager: PropertyManager,
    record: PropertyRecord,
    transport: FakeTransport,
    ctx: RequestContext,
    property_item: dict[str, object],
) -> None:
    """Rules of one property version land on a new version of another."""
    manager.resolver.register(
        {**property_item, "propertyId": "prp_2", "propertyName": "other.example.com", "latestVersion": 7}
    )
    transport.reply("GET", f"{BASE}/2/rules", RULES)
    other = "/papi/v1/properties/prp_2/versions"
    transport.reply("POST", other, {"versionLink": f"{other}/8"})
    transport.reply("PUT", f"{other}/8/rules", {"propertyVersion": 8})

    change = manager.copy_rules(
        ctx, "www.example.com", "other.example.com", from_version=VersionSelector.STAGING
    )

    assert change.property_name == "other.example.com"
    assert change.version == 8
    assert transport.calls("POST", other)[0].body == {"createFromVersion": 7}


def test_export_rules_writes_file(
    manager: PropertyManager,
    record: PropertyRecord,
    transport: FakeTransport,
    ctx: RequestContext,
    tmp_path: Path,
) -> None:
    """Exported rules are written to disk."""
    transport.reply("GET", f"{BASE}/1/rules", RULES)
    target = tmp_path / "out.json"

    assert manager.export_rules(ctx, "prp_1", target, VersionSelector.PRODUCTION) == target
    assert json.loads(target.read_text(encoding="utf-8")) == RULES


def test_variables_round_trip(
    manager: PropertyManager,
    record: PropertyRecord,
    transport: FakeTransport,
    ctx: RequestContext,
    tmp_path: Path,
) -> None:
    """Variable actions read from a YAML file are applied on a new version."""
    _script_patch(transport)
    source = tmp_path / "vars.yml"
    source.write_text(
        "- name: PMUSER_ORIGIN\n  value: origin.example.com\n  action: [create]\n",
        encoding="utf-8",
    )

    manager.set_variables_from_file(ctx, "prp_1", source)

    written = transport.calls("PUT", f"{BASE}/4/rules")[0].body
    assert written["rules"]["variables"] == [  # type: ignore[index]
        {"name": "PMUSER_ORIGIN", "value": "origin.example.com"}
    ]
    transport.reply("GET", f"{BASE}/4/rules", RULES)
    assert manager.get_variables(ctx, "prp_1") == []


def test_rule_formats_latest(manager: PropertyManager, transport: FakeTransport, ctx: RequestContext) -> None:
    """``latest`` narrows the listing to the newest v2 format."""
    transport.reply("GET", "/papi/v1/rule-formats", {"ruleFormats": {"items": ["v2018-02-27", "v2021-09-22"]}})

    assert manager.rule_formats(ctx) == ["v2018-02-27", "v2021-09-22"]
    assert manager.rule_formats(ctx, latest=True) == "v2021-09-22"


def test_list_edge_hostnames_skips_forbidden_groups(
    manager: PropertyManager,
    transport: FakeTransport,
    ctx: RequestContext,
) -> None:
    """Aggregation across groups ignores groups the credentials cannot read."""
    transport.reply(
        "GET",
        "/papi/v1/groups",
        {
            "groups": {
                "items": [
                    {"groupId": "grp_1", "contractIds": ["ctr_A"]},
                    {"groupId": "grp_2", "contractIds": ["ctr_A"]},
                ]
            }
        },
    )
    transport.reply("GET", "/papi/v1/edgehostnames", {"edgeHostnames": {"items": [{"edgeHostnameId": "ehn_1"}]}})
    transport.reply("GET", "/papi/v1/edgehostnames", status=403, body="denied")

    assert manager.list_edge_hostnames(ctx) == [{"edgeHostnameId": "ehn_1"}]


def test_list_edge_hostnames_for_one_pair_propagates_denial(
    manager: PropertyManager,
    transport: FakeTransport,
    ctx: RequestContext,
) -> None:
    """An explicit pair is a single-entity call, so a 403 is an error."""
    transport.reply("GET", "/papi/v1/edgehostnames", status=403, body="denied")

    with pytest.raises(PermissionDeniedError):
        manager.list_edge_hostnames(ctx, "grp_1", "ctr_A")


def test_list_properties_indexes_results(
    manager: PropertyManager,
    transport: FakeTransport,
    ctx: RequestContext,
    property_item: dict[str, object],
) -> None:
    """Listed properties become resolvable without a search."""
    transport.reply("GET", "/papi/v1/properties", {"properties": {"items": [property_item]}})

    assert manager.list_properties(ctx, "grp_100", "ctr_C-1") == [property_item]
    assert manager.lookup(ctx, "www.example.com").property_id == "prp_1"
    assert transport.calls("POST") == []


def test_promote_activates_staging_on_production(
    manager: PropertyManager,
    record: PropertyRecord,
    transport: FakeTransport,
    ctx: RequestContext,
) -> None:
    """The staging version is activated on production once."""
    transport.reply("POST", ACTIVATIONS, {"activationLink": f"{ACTIVATIONS}/atv_9"}, status=201)
    transport.reply("GET", f"{ACTIVATIONS}/atv_9", {"activations": {"items": [{"status": "ACTIVE"}]}})

    result = manager.promote(ctx, "www.example.com")

    assert result is not None
    assert result.outcome is ActivationOutcome.ACTIVE
    assert result.network is Network.PRODUCTION
    assert result.version == 2
    assert record.production_version == 2
    assert manager.promote(ctx, "www.example.com") is None
    assert len(transport.calls("POST", ACTIVATIONS)) == 1


def test_promote_requires_staging_version(
    manager: PropertyManager,
    record: PropertyRecord,
    ctx: RequestContext,
) -> None:
    """Nothing on staging means nothing to promote."""
    record.staging_version = None

    with pytest.raises(PropctlError, match="No version in Staging for www.example.com"):
        manager.promote(ctx, "prp_1")


def test_activate_defaults_to_latest_on_staging(
    manager: PropertyManager,
    record: PropertyRecord,
    transport: FakeTransport,
    ctx: RequestContext,
) -> None:
    """Without arguments the latest version goes to staging."""
    transport.reply("POST", ACTIVATIONS, {"activationLink": f"{ACTIVATIONS}/atv_1"}, status=201)

    result = manager.activate(ctx, "prp_1", wait=False)

    assert result.outcome is ActivationOutcome.SUBMITTED
    body = transport.calls("POST", ACTIVATIONS)[0].body
    assert body["propertyVersion"] == 3  # type: ignore[index]
    assert body["network"] == "STAGING"  # type: ignore[index]


def test_move_property_between_groups(
    manager: PropertyManager,
    record: PropertyRecord,
    transport: FakeTransport,
    ctx: RequestContext,
) -> None:
    """The first asset matching the name is moved through user administration."""
    transport.reply(
        "GET",
        ASSETS,
        [
            {"assetId": "aid_0", "assetName": "other.example.com"},
            {"assetId": "aid_1", "assetName": "WWW.EXAMPLE.COM"},
            {"assetId": "aid_9", "assetName": "www.example.com"},
        ],
    )
    transport.reply("PUT", "/user-admin/v1/accounts/A-1/properties/aid_1", status=204, body="")

    summary = manager.move_property(ctx, "www.example.com", "grp_200")

    assert summary == {
        "propertyName": "www.example.com",
        "assetId": "aid_1",
        "sourceGroupId": 100,
        "destinationGroupId": 200,
    }
    move = transport.calls("PUT")[0]
    assert move.body == {"sourceGroupId": 100, "destinationGroupId": 200}
    assert record.group_id == "grp_200"


def test_move_property_unknown_asset(
    manager: PropertyManager,
    record: PropertyRecord,
    transport: FakeTransport,
    ctx: RequestContext,
) -> None:
    """A property missing from the asset listing cannot be moved."""
    transport.reply("GET", ASSETS, [{"assetId": "aid_0", "assetName": "other.example.com"}])

    with pytest.raises(NotFoundError):
        manager.move_property(ctx, "prp_1", "200")
    assert transport.calls("PUT") == []


def test_move_property_without_user_admin_access(
    manager: PropertyManager,
    record: PropertyRecord,
    transport: FakeTransport,
    ctx: RequestContext,
) -> None:
    """Missing user administration access is reported clearly."""
    transport.reply("GET", ASSETS, status=403, body="denied")

    with pytest.raises(RemoteRejectedError, match="user admin access"):
        manager.move_property(ctx, "prp_1", "200")


def test_delete_property_resets_cache(
    manager: PropertyManager,
    record: PropertyRecord,
    transport: FakeTransport,
    ctx: RequestContext,
) -> None:
    """Deleting drops every cached record."""
    transport.reply("DELETE", "/papi/v1/properties/prp_1", {"message": "Deletion Successful."})

    assert manager.delete_property(ctx, "prp_1") == {"message": "Deletion Successful."}
    assert len(manager.store) == 0
    with pytest.raises(NotFoundError):
        manager.lookup(ctx, "prp_1")


def test_create_version_from_production(
    manager: PropertyManager,
    record: PropertyRecord,
    transport: FakeTransport,
    ctx: RequestContext,
) -> None:
    """A new version can be based on the production version."""
    transport.reply("POST", BASE, {"versionLink": f"{BASE}/4"})

    assert manager.create_version(ctx, "prp_1", VersionSelector.PRODUCTION) == 4
    assert transport.calls("POST", BASE)[0].body == {"createFromVersion": 1}
