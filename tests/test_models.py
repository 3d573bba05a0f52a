"""Tests for the shared data models."""
from __future__ import annotations

import pytest

from propctl.models import (
    HostnameBinding,
    Network,
    PropertyRecord,
    VersionSelector,
    parse_version_spec,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (None, VersionSelector.LATEST),
        ("", VersionSelector.LATEST),
        ("0", VersionSelector.LATEST),
        (0, VersionSelector.LATEST),
        ("7", 7),
        (12, 12),
        ("latest", VersionSelector.LATEST),
        ("STAGING", VersionSelector.STAGING),
        ("staging-version", VersionSelector.STAGING),
        ("PRODUCTION-version", VersionSelector.PRODUCTION),
        (-1, VersionSelector.PRODUCTION),
        ("-2", VersionSelector.STAGING),
    ],
)
def test_parse_version_spec_accepts_numbers_and_selectors(raw: object, expected: object) -> None:
    """Numbers, selector names and legacy sentinels parse to a version spec."""
    assert parse_version_spec(raw) == expected  # type: ignore[arg-type]


@pytest.mark.parametrize("raw", ["newest", "-3", "v2"])
def test_parse_version_spec_rejects_garbage(raw: str) -> None:
    """Unknown selectors raise ``ValueError`` with guidance."""
    with pytest.raises(ValueError, match="Invalid version"):
        parse_version_spec(raw)


def test_network_parse_is_case_insensitive() -> None:
    """Network names are matched regardless of case."""
    assert Network.parse("staging") is Network.STAGING
    assert Network.parse(" Production ") is Network.PRODUCTION
    with pytest.raises(ValueError, match="Unknown network"):
        Network.parse("qa")


def test_property_record_from_api_and_version_for(property_item: dict[str, object]) -> None:
    """Records parse PAPI items and resolve selectors to numbers."""
    record = PropertyRecord.from_api(property_item)

    assert record.property_id == "prp_1"
    assert record.account_id == "act_A-1"
    assert record.version_for(VersionSelector.LATEST) == 3
    assert record.version_for(VersionSelector.STAGING) == 2
    assert record.version_for(VersionSelector.PRODUCTION) == 1
    assert record.version_for(9) == 9
    assert record.network_version(Network.STAGING) == 2
    assert record.to_dict()["propertyName"] == "www.example.com"


def test_property_record_tolerates_missing_versions() -> None:
    """Absent or null version pointers become ``None``."""
    record = PropertyRecord.from_api(
        {
            "propertyId": "prp_9",
            "contractId": "ctr_1",
            "groupId": "grp_1",
            "productionVersion": None,
        }
    )

    assert record.property_name == "prp_9"
    assert record.production_version is None
    assert record.version_for(VersionSelector.PRODUCTION) is None


def test_hostname_binding_keeps_unknown_fields() -> None:
    """Fields the engine does not model survive a parse/serialise pass."""
    item = {
        "cnameFrom": "www.example.com",
        "cnameTo": "www.example.com.edgesuite.net",
        "cnameType": "EDGE_HOSTNAME",
        "certProvisioningType": "CPS_MANAGED",
    }
    binding = HostnameBinding.from_api(item)

    assert binding.endpoint == "www.example.com.edgesuite.net"
    assert binding.to_dict()["certProvisioningType"] == "CPS_MANAGED"
    assert binding == HostnameBinding("www.example.com", "www.example.com.edgesuite.net")
