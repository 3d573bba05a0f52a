"""Narrow rule-tree patches applied on the way to a new property version.

The rule tree itself is treated as an opaque document; only the handful of
fields touched here are inspected. Every helper works on a deep copy and
returns it, leaving the caller's document untouched.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, MutableMapping, Sequence
from copy import deepcopy
from typing import Any

from .errors import RuleTreeError

LOGGER = logging.getLogger(__name__)

SUREROUTE_TEST_OBJECT = "/akamai/sureroute-testobject.html"
FORWARD_HOST_HEADERS = {
    "origin": "ORIGIN_HOSTNAME",
    "incoming": "REQUEST_HOST_HEADER",
}
VARIABLE_ACTIONS = ("create", "update", "delete")

Document = dict[str, Any]


def require_rules(document: Mapping[str, Any]) -> Document:
    """Return a deep copy of *document* after checking it carries ``rules``."""
    if not isinstance(document, Mapping):
        raise RuleTreeError("Rule document must be a JSON object.")
    rules = document.get("rules")
    if not isinstance(rules, Mapping):
        raise RuleTreeError("Rule document has no 'rules' object.")
    return deepcopy(dict(document))


def _behaviors(node: MutableMapping[str, Any]) -> list[MutableMapping[str, Any]]:
    behaviors = node.get("behaviors")
    if behaviors is None:
        behaviors = []
        node["behaviors"] = behaviors
    if not isinstance(behaviors, list):
        raise RuleTreeError("Rule 'behaviors' must be a list.")
    return behaviors


def _children(node: Mapping[str, Any]) -> list[MutableMapping[str, Any]]:
    children = node.get("children") or []
    if not isinstance(children, list):
        raise RuleTreeError("Rule 'children' must be a list.")
    return [child for child in children if isinstance(child, MutableMapping)]


def _options(behavior: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    options = behavior.get("options")
    if not isinstance(options, MutableMapping):
        options = {}
        behavior["options"] = options
    return options


def cpcode_id(cpcode: str | int) -> int:
    """Return the numeric CP code for ``123`` or ``cpc_123``."""
    text = str(cpcode).strip()
    if text.startswith("cpc_"):
        text = text[4:]
    try:
        return int(text)
    except ValueError as exc:
        raise RuleTreeError(f"Invalid CP code '{cpcode}'.") from exc


def find_cpcode(document: Mapping[str, Any]) -> int | None:
    """Return the CP code of the default rule's ``cpCode`` behaviour, if any."""
    rules = document.get("rules") if isinstance(document, Mapping) else None
    if not isinstance(rules, Mapping):
        return None
    for behavior in rules.get("behaviors") or []:
        if not isinstance(behavior, Mapping) or behavior.get("name") != "cpCode":
            continue
        options = behavior.get("options")
        value = options.get("value") if isinstance(options, Mapping) else None
        if isinstance(value, Mapping) and value.get("id") is not None:
            return cpcode_id(value["id"])
    return None


# ----------------------------------------------------------------------
# Behaviour patches
# ----------------------------------------------------------------------
def set_cpcode(document: Mapping[str, Any], cpcode: str | int) -> Document:
    """Point the default rule's ``cpCode`` behaviour at *cpcode*, adding it if absent."""
    result = require_rules(document)
    value = {"value": {"id": cpcode_id(cpcode)}}
    behaviors = _behaviors(result["rules"])
    found = False
    for behavior in behaviors:
        if behavior.get("name") == "cpCode":
            behavior["options"] = deepcopy(value)
            found = True
    if not found:
        behaviors.append({"name": "cpCode", "options": value})
    return result


def forward_host_header(forward: str | None) -> tuple[str | None, str | None]:
    """Map a forward mode to ``(forwardHostHeader, customForwardHostHeader)``."""
    if not forward:
        return None, None
    mapped = FORWARD_HOST_HEADERS.get(forward)
    if mapped:
        return mapped, None
    return "CUSTOM", forward


def set_origin(
    document: Mapping[str, Any],
    hostname: str | None = None,
    forward: str | None = None,
) -> Document:
    """Patch the ``origin`` behaviour hostname and forward host header."""
    result = require_rules(document)
    header, custom = forward_host_header(forward)
    for behavior in _behaviors(result["rules"]):
        if behavior.get("name") != "origin":
            continue
        options = _options(behavior)
        if hostname:
            options["hostname"] = hostname
        if header:
            options["forwardHostHeader"] = header
            if custom:
                options["customForwardHostHeader"] = custom
            else:
                options.pop("customForwardHostHeader", None)
    return result


def set_sureroute(
    document: Mapping[str, Any],
    custom_map: str | None = None,
    test_object_url: str | None = None,
    to_host: str | None = None,
) -> Document:
    """Patch every ``sureRoute`` behaviour found in the top-level children."""
    result = require_rules(document)
    for child in _children(result["rules"]):
        for behavior in _behaviors(child):
            if behavior.get("name") != "sureRoute":
                continue
            options = _options(behavior)
            if custom_map:
                options["customMap"] = custom_map
                options["type"] = "CUSTOM_MAP"
            if test_object_url:
                options["testObjectUrl"] = test_object_url
            if to_host:
                options["toHost"] = to_host
                options["toHostStatus"] = "OTHER"
    return result


def apply_property_defaults(
    document: Mapping[str, Any],
    config_name: str,
    cpcode: str | int,
    *,
    origin: str | None = None,
    secure: bool = False,
) -> Document:
    """Prepare a template rule tree for a newly created property.

    Sets the CP code, the origin hostname (unless it is the default
    ``origin-<config_name>``), fills SureRoute defaults and drops the
    ``errors`` block returned alongside fetched rules.
    """
    result = set_cpcode(document, cpcode)
    rules = result["rules"]
    if origin and origin != f"origin-{config_name}":
        for behavior in _behaviors(rules):
            if behavior.get("name") == "origin":
                _options(behavior)["hostname"] = origin

    for child in _children(rules):
        for behavior in _behaviors(child):
            if behavior.get("name") != "sureRoute":
                continue
            options = _options(behavior)
            if not options.get("testObjectUrl"):
                options["testObjectUrl"] = SUREROUTE_TEST_OBJECT
            if not options.get("enableCustomKey"):
                options["enableCustomKey"] = False
            if not options.get("customStatKey") or not options["enableCustomKey"]:
                options["customStatKey"] = "default"

    if secure:
        rules["options"] = {"is_secure": True}
    result.pop("errors", None)
    return result


# ----------------------------------------------------------------------
# Document-level fields
# ----------------------------------------------------------------------
def set_rule_format(document: Mapping[str, Any], rule_format: str) -> Document:
    """Return *document* with ``ruleFormat`` replaced."""
    result = deepcopy(dict(document))
    result["ruleFormat"] = rule_format
    return result


def set_comments(document: Mapping[str, Any], comment: str) -> Document:
    """Return *document* with the version notes replaced."""
    result = deepcopy(dict(document))
    result["comments"] = comment
    return result


def latest_rule_format(formats: Iterable[str]) -> str | None:
    """Return the newest ``v2…`` rule format, or ``None`` when there is none."""
    candidates = sorted((item for item in formats if "v2" in item), reverse=True)
    return candidates[0] if candidates else None


# ----------------------------------------------------------------------
# Variables
# ----------------------------------------------------------------------
def get_variables(document: Mapping[str, Any]) -> list[dict[str, Any]]:
    """Return the property variables declared on the default rule."""
    rules = require_rules(document)["rules"]
    variables = rules.get("variables") or []
    if not isinstance(variables, list):
        raise RuleTreeError("Rule 'variables' must be a list.")
    return variables


def _variable_changes(changes: Sequence[Mapping[str, Any]]) -> dict[str, list[dict[str, Any]]]:
    grouped: dict[str, list[dict[str, Any]]] = {action: [] for action in VARIABLE_ACTIONS}
    for change in changes:
        if not isinstance(change, Mapping) or not change.get("name"):
            raise RuleTreeError("Every variable entry needs a 'name'.")
        actions = change.get("action") or []
        if isinstance(actions, str):
            actions = [actions]
        variable = {key: value for key, value in change.items() if key != "action"}
        for action in actions:
            if action not in grouped:
                raise RuleTreeError(
                    f"Unknown variable action '{action}' for {change['name']}. "
                    f"Expected one of: {', '.join(VARIABLE_ACTIONS)}."
                )
            grouped[action].append(variable)
    return grouped


def set_variables(document: Mapping[str, Any], changes: Sequence[Mapping[str, Any]]) -> Document:
    """Apply create/update/delete variable actions to the default rule.

    Each entry of *changes* is a variable definition plus an ``action`` list.
    Creating an existing variable and updating a missing one are skipped.
    """
    result = require_rules(document)
    grouped = _variable_changes(changes)
    variables = list(result["rules"].get("variables") or [])
    names = [str(item.get("name")) for item in variables]

    for variable in grouped["create"]:
        if variable["name"] in names:
            LOGGER.info("... not creating existing variable %s", variable["name"])
            continue
        variables.append(variable)
        names.append(variable["name"])

    for variable in grouped["delete"]:
        if variable["name"] in names:
            LOGGER.info("... deleting variable %s", variable["name"])
            index = names.index(variable["name"])
            del variables[index]
            del names[index]

    for variable in grouped["update"]:
        if variable["name"] in names:
            LOGGER.info("... updating existing variable %s", variable["name"])
            variables[names.index(variable["name"])] = variable

    result["rules"]["variables"] = variables
    return result


__all__ = [
    "FORWARD_HOST_HEADERS",
    "SUREROUTE_TEST_OBJECT",
    "apply_property_defaults",
    "cpcode_id",
    "find_cpcode",
    "forward_host_header",
    "get_variables",
    "latest_rule_format",
    "require_rules",
    "set_comments",
    "set_cpcode",
    "set_origin",
    "set_rule_format",
    "set_sureroute",
    "set_variables",
]
