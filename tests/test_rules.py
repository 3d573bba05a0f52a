"""Tests for the rule-tree patch helpers."""
from __future__ import annotations

from typing import Any

import pytest

from propctl.errors import RuleTreeError
from propctl.rules import (
    SUREROUTE_TEST_OBJECT,
    apply_property_defaults,
    cpcode_id,
    find_cpcode,
    forward_host_header,
    get_variables,
    latest_rule_format,
    set_comments,
    set_cpcode,
    set_origin,
    set_rule_format,
    set_sureroute,
    set_variables,
)


def _document() -> dict[str, Any]:
    return {
        "propertyVersion": 3,
        "ruleFormat": "v2020-03-04",
        "errors": [{"type": "missing"}],
        "rules": {
            "name": "default",
            "behaviors": [
                {"name": "origin", "options": {"hostname": "origin.example.com"}},
                {"name": "cpCode", "options": {"value": {"id": 111}}},
            ],
            "children": [
                {
                    "name": "Performance",
                    "behaviors": [{"name": "sureRoute", "options": {"enabled": True}}],
                }
            ],
            "variables": [{"name": "PMUSER_A", "value": "1"}],
        },
    }


def test_cpcode_id_accepts_prefixed_values() -> None:
    """Both bare and ``cpc_`` prefixed codes parse."""
    assert cpcode_id("cpc_123") == 123
    assert cpcode_id(456) == 456
    with pytest.raises(RuleTreeError, match="Invalid CP code"):
        cpcode_id("abc")


def test_require_rules_rejects_documents_without_rules() -> None:
    """Patches need a ``rules`` object to work on."""
    with pytest.raises(RuleTreeError, match="no 'rules' object"):
        set_cpcode({"ruleFormat": "latest"}, 1)


def test_set_cpcode_replaces_or_appends() -> None:
    """The default rule's cpCode is replaced, or added when missing."""
    original = _document()
    patched = set_cpcode(original, "cpc_222")

    assert find_cpcode(patched) == 222
    assert find_cpcode(original) == 111

    bare = set_cpcode({"rules": {"name": "default"}}, 5)
    assert bare["rules"]["behaviors"] == [{"name": "cpCode", "options": {"value": {"id": 5}}}]
    assert find_cpcode({"rules": {"behaviors": []}}) is None


@pytest.mark.parametrize(
    ("forward", "expected"),
    [
        (None, (None, None)),
        ("origin", ("ORIGIN_HOSTNAME", None)),
        ("incoming", ("REQUEST_HOST_HEADER", None)),
        ("static.example.com", ("CUSTOM", "static.example.com")),
    ],
)
def test_forward_host_header_modes(forward: str | None, expected: tuple[str | None, str | None]) -> None:
    """Forward modes map to the PAPI header options."""
    assert forward_host_header(forward) == expected


def test_set_origin_updates_hostname_and_forward_header() -> None:
    """Origin hostname and custom forward header are written together."""
    patched = set_origin(_document(), "new-origin.example.com", "static.example.com")
    options = patched["rules"]["behaviors"][0]["options"]

    assert options == {
        "hostname": "new-origin.example.com",
        "forwardHostHeader": "CUSTOM",
        "customForwardHostHeader": "static.example.com",
    }

    again = set_origin(patched, forward="origin")
    assert again["rules"]["behaviors"][0]["options"] == {
        "hostname": "new-origin.example.com",
        "forwardHostHeader": "ORIGIN_HOSTNAME",
    }


def test_set_sureroute_patches_children() -> None:
    """SureRoute options in top-level children are updated."""
    patched = set_sureroute(_document(), "map.example.net", "/probe.html", "probe.example.com")
    options = patched["rules"]["children"][0]["behaviors"][0]["options"]

    assert options == {
        "enabled": True,
        "customMap": "map.example.net",
        "type": "CUSTOM_MAP",
        "testObjectUrl": "/probe.html",
        "toHost": "probe.example.com",
        "toHostStatus": "OTHER",
    }


def test_apply_property_defaults_prepares_template() -> None:
    """New properties get their CP code, origin and SureRoute defaults."""
    prepared = apply_property_defaults(
        _document(),
        "www.example.com",
        "cpc_999",
        origin="origin.www.example.com",
        secure=True,
    )

    assert "errors" not in prepared
    assert find_cpcode(prepared) == 999
    assert prepared["rules"]["behaviors"][0]["options"]["hostname"] == "origin.www.example.com"
    sureroute = prepared["rules"]["children"][0]["behaviors"][0]["options"]
    assert sureroute["testObjectUrl"] == SUREROUTE_TEST_OBJECT
    assert sureroute["enableCustomKey"] is False
    assert sureroute["customStatKey"] == "default"
    assert prepared["rules"]["options"] == {"is_secure": True}


def test_apply_property_defaults_keeps_origin_for_default_name() -> None:
    """The conventional ``origin-<name>`` hostname is not written."""
    prepared = apply_property_defaults(
        _document(), "www.example.com", 1, origin="origin-www.example.com"
    )

    assert prepared["rules"]["behaviors"][0]["options"]["hostname"] == "origin.example.com"
    assert "options" not in prepared["rules"]


def test_document_fields() -> None:
    """Rule format and comments are replaced on a copy."""
    original = _document()

    assert set_rule_format(original, "v2023-01-05")["ruleFormat"] == "v2023-01-05"
    assert set_comments(original, "hello")["comments"] == "hello"
    assert "comments" not in original


def test_latest_rule_format_picks_newest_v2() -> None:
    """Only ``v2`` formats are considered and the newest wins."""
    formats = ["latest", "v2018-02-27", "v2023-01-05", "v2020-03-04", "v1"]

    assert latest_rule_format(formats) == "v2023-01-05"
    assert latest_rule_format(["latest"]) is None


def test_set_variables_create_update_delete() -> None:
    """Variable actions are applied with create-before-delete-before-update."""
    changes = [
        {"name": "PMUSER_A", "value": "ignored", "action": ["create"]},
        {"name": "PMUSER_B", "value": "2", "action": "create"},
        {"name": "PMUSER_A", "action": ["delete"]},
        {"name": "PMUSER_B", "value": "3", "action": ["update"]},
        {"name": "PMUSER_C", "value": "4", "action": ["update"]},
    ]

    patched = set_variables(_document(), changes)

    assert get_variables(patched) == [{"name": "PMUSER_B", "value": "3"}]


def test_set_variables_rejects_bad_entries() -> None:
    """Unnamed entries and unknown actions are refused."""
    with pytest.raises(RuleTreeError, match="needs a 'name'"):
        set_variables(_document(), [{"value": "1", "action": ["create"]}])
    with pytest.raises(RuleTreeError, match="Unknown variable action 'rename'"):
        set_variables(_document(), [{"name": "PMUSER_A", "action": ["rename"]}])
