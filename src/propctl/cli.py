"""Typer-powered command line interface for ``propctl``.

Every command resolves its property through the shared
:class:`~propctl.manager.PropertyManager`, runs inside a structured logging
operation and maps engine failures onto :class:`~propctl.exit_codes.ExitCode`.
"""
from __future__ import annotations

import json
import logging
import textwrap
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .activation import ActivationResult, ActivationStateMachine
from .config import AppConfig, ConfigError, load_config
from .errors import PropctlError, RemoteError
from .exit_codes import ExitCode
from .hostnames import HostnameChange
from .logging import OperationScope, StructuredLogger
from .manager import PropertyManager, RulesChange
from .models import Network, PropertyRecord, VersionSpec, parse_version_spec
from .papi import PapiClient
from .resolver import IdentityResolver
from .retry import RetryPolicy
from .rulefiles import STDOUT, RuleFileError
from .transport import CredentialsError, EdgeGridTransport, RequestContext, Transport

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to propctl's YAML config file.",
)
VERSION_OPTION = typer.Option(
    None,
    "--version",
    help="Version number, or LATEST, STAGING or PRODUCTION (default LATEST).",
)
NETWORK_OPTION = typer.Option(
    "STAGING",
    "--network",
    "-n",
    help="Activation network: STAGING or PRODUCTION.",
)
NOTE_OPTION = typer.Option("", "--note", help="Activation note.")
EMAIL_OPTION = typer.Option(
    None,
    "--email",
    help="Notification email address (repeatable; defaults to the configured list).",
)
NO_WAIT_OPTION = typer.Option(
    False,
    "--no-wait",
    help="Return once the request is accepted instead of polling to completion.",
)
TIMEOUT_OPTION = typer.Option(
    None,
    "--timeout",
    min=0.0,
    help="Stop polling after this many seconds (defaults to the configured timeout).",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit JSON instead of a table.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Manage CDN property configurations through the Property Manager API.

        Properties can be named by property id (prp_123), property name or
        any hostname they serve. Structural changes are always written onto
        a fresh copy of the base version.
        """
    ).strip(),
)

hostnames_app = typer.Typer(help="Inspect and change the hostnames bound to a property.")
modify_app = typer.Typer(help="Patch rule settings on a new property version.")
variables_app = typer.Typer(help="Inspect and change property variables.")
config_app = typer.Typer(help="Inspect the effective configuration.")

app.add_typer(hostnames_app, name="hostname")
app.add_typer(modify_app, name="modify")
app.add_typer(variables_app, name="variables")
app.add_typer(config_app, name="config")

_HANDLED_ERRORS = (PropctlError, ConfigError, CredentialsError, RuleFileError)
_OUTCOME_STYLE = {
    "ACTIVE": "green",
    "SUBMITTED": "yellow",
    "ALREADY_INACTIVE": "green",
}


# ----------------------------------------------------------------------
# Runtime wiring
# ----------------------------------------------------------------------
@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    request: RequestContext
    _manager: PropertyManager | None = field(default=None, repr=False)

    def manager(self) -> PropertyManager:
        """Return the property manager, building the signed transport on first use."""
        if self._manager is None:
            self._manager = _build_manager(self.config)
        return self._manager


def _build_transport(config: AppConfig) -> Transport:
    return EdgeGridTransport.from_edgerc(
        config.edgerc,
        config.section,
        timeout=config.request_timeout,
    )


def _build_manager(config: AppConfig) -> PropertyManager:
    client = PapiClient(
        _build_transport(config),
        RetryPolicy(max_attempts=config.retry.max_attempts, backoff=config.retry.backoff),
    )
    resolver = IdentityResolver(
        client,
        max_workers=config.request_throttle,
        warm_on_miss=config.resolver.warm_cache,
    )
    activations = ActivationStateMachine(
        client,
        resolver.store,
        poll_interval=config.activation.poll_interval,
        max_warning_acknowledgements=config.activation.max_warning_acknowledgements,
        notify_emails=config.activation.notify_emails,
    )
    return PropertyManager(
        client,
        resolver=resolver,
        activations=activations,
        max_workers=config.request_throttle,
    )


def _configure_logging(verbose: bool) -> None:
    logger = logging.getLogger("propctl")
    logger.setLevel(logging.INFO if verbose else logging.WARNING)
    if not any(isinstance(handler, RichHandler) for handler in logger.handlers):
        handler = RichHandler(
            console=Console(stderr=True),
            show_time=False,
            show_path=False,
        )
        logger.addHandler(handler)


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    *,
    edgerc: Path | None = None,
    section: str | None = None,
    account_key: str | None = None,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    overrides: dict[str, object] = {
        "edgerc": str(edgerc) if edgerc is not None else None,
        "section": section,
        "account_switch_key": account_key,
    }
    config = load_config(config_file=config_file, overrides=overrides)
    logger = StructuredLogger(config.logs_dir)
    runtime = RuntimeContext(
        config=config,
        logger=logger,
        request=RequestContext(account_switch_key=config.account_switch_key),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the propctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    edgerc: Path | None = typer.Option(
        None,
        "--edgerc",
        dir_okay=False,
        help="Location of the credentials file (default ~/.edgerc).",
    ),
    section: str | None = typer.Option(
        None,
        "--section",
        help="Section of the credentials file to use.",
    ),
    account_key: str | None = typer.Option(
        None,
        "--account-key",
        help="Account switch key for multi-account credentials.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show progress messages on stderr.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    _configure_logging(verbose)
    try:
        runtime = _ensure_runtime(
            ctx,
            config_file,
            edgerc=edgerc,
            section=section,
            account_key=account_key,
        )
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=int(ExitCode.ENVIRONMENT)) from exc

    if version:
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"propctl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=0)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------
def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = 2,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=rc)
    raise typer.Exit(code=rc)


def _exit_code_for(exc: Exception) -> ExitCode:
    if isinstance(exc, (ConfigError, CredentialsError, RuleFileError)):
        return ExitCode.ENVIRONMENT
    if isinstance(exc, RemoteError):
        return ExitCode.PROVIDER
    return ExitCode.VALIDATION


def _fail(op: OperationScope, exc: Exception) -> NoReturn:
    _command_error(op, str(exc) or exc.__class__.__name__, rc=int(_exit_code_for(exc)))


def _version(op: OperationScope, raw: str | None) -> VersionSpec:
    try:
        return parse_version_spec(raw)
    except ValueError as exc:
        _command_error(op, str(exc), rc=int(ExitCode.VALIDATION))


def _network(op: OperationScope, raw: str) -> Network:
    try:
        return Network.parse(raw)
    except ValueError as exc:
        _command_error(op, str(exc), rc=int(ExitCode.VALIDATION))


def _print_json(payload: object) -> None:
    console.print_json(data=payload)


def _render_record(record: PropertyRecord) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Key", style="bold")
    table.add_column("Value")
    for key, value in record.to_dict().items():
        table.add_row(key, "" if value is None else str(value))
    console.print(table)


def _render_activation(op: OperationScope, result: ActivationResult, verb: str) -> None:
    payload = result.to_dict()
    if not result.succeeded:
        _print_json(payload)
        _command_error(
            op,
            f"{verb} of v{result.version} on {result.network.value} ended with {result.outcome.value}.",
            rc=int(ExitCode.PROVIDER),
        )
    style = _OUTCOME_STYLE.get(result.outcome.value, "green")
    console.print(
        f"[{style}]{verb} of v{result.version} on {result.network.value}: "
        f"{result.outcome.value}[/{style}]"
    )
    op.success(
        f"{verb} {result.outcome.value.lower()}.",
        changed=1 if result.outcome.value != "ALREADY_INACTIVE" else 0,
        context=payload,
    )


def _timeout(runtime: RuntimeContext, value: float | None) -> float | None:
    return value if value is not None else runtime.config.activation.timeout


# ----------------------------------------------------------------------
# Lookup and listings
# ----------------------------------------------------------------------
@app.command("lookup")
def lookup(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Property id, property name or hostname."),
    network: str = typer.Option(
        "PRODUCTION",
        "--network",
        "-n",
        help="Network whose hostname bindings are consulted.",
    ),
    json_output: bool = JSON_OPTION,
) -> None:
    """Resolve a lookup key to its property."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "lookup",
        args={"key": key, "network": network, "json": json_output},
        target={"kind": "property", "key": key},
    ) as op:
        selected = _network(op, network)
        try:
            record = runtime.manager().lookup(runtime.request, key, selected)
        except _HANDLED_ERRORS as exc:
            _fail(op, exc)
        if json_output:
            _print_json(record.to_dict())
        else:
            _render_record(record)
        op.success("Resolved property.", changed=0, context={"property_id": record.property_id})


@app.command("search")
def search(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Property name to search for."),
) -> None:
    """Search properties by name."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "search",
        args={"name": name},
        target={"kind": "property", "key": name},
    ) as op:
        try:
            hits = runtime.manager().search(runtime.request, name)
        except _HANDLED_ERRORS as exc:
            _fail(op, exc)
        _print_json({"versions": {"items": hits}})
        op.success("Reported search results.", changed=0, context={"hits": len(hits)})


@app.command("groups")
def groups(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """List the groups the credentials can access."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "groups",
        args={"json": json_output},
        target={"kind": "group"},
    ) as op:
        try:
            items = runtime.manager().list_groups(runtime.request)
        except _HANDLED_ERRORS as exc:
            _fail(op, exc)
        if json_output:
            _print_json({"groups": items})
            op.success("Reported groups as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Group", style="bold")
        table.add_column("Name")
        table.add_column("Contracts")
        if not items:
            table.add_row("(none)", "", "")
        for item in items:
            table.add_row(
                str(item.get("groupId", "")),
                str(item.get("groupName", "")),
                ", ".join(str(contract) for contract in item.get("contractIds") or []),
            )
        console.print(table)
        op.success("Reported groups.", changed=0)


@app.command("list")
def list_properties(
    ctx: typer.Context,
    group_id: str = typer.Option(..., "--group", "-g", help="Group id (grp_...)."),
    contract_id: str = typer.Option(..., "--contract", "-c", help="Contract id (ctr_...)."),
    json_output: bool = JSON_OPTION,
) -> None:
    """List the properties of one group and contract."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "list",
        args={"group": group_id, "contract": contract_id, "json": json_output},
        target={"kind": "group", "group_id": group_id, "contract_id": contract_id},
    ) as op:
        try:
            items = runtime.manager().list_properties(runtime.request, group_id, contract_id)
        except _HANDLED_ERRORS as exc:
            _fail(op, exc)
        if json_output:
            _print_json({"properties": {"items": items}})
            op.success("Reported properties as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Property", style="bold")
        table.add_column("Id")
        table.add_column("Latest")
        table.add_column("Staging")
        table.add_column("Production")
        if not items:
            table.add_row("(none)", "", "", "", "")
        for item in items:
            table.add_row(
                str(item.get("propertyName", "")),
                str(item.get("propertyId", "")),
                str(item.get("latestVersion") or ""),
                str(item.get("stagingVersion") or ""),
                str(item.get("productionVersion") or ""),
            )
        console.print(table)
        op.success("Reported properties.", changed=0, context={"count": len(items)})


@app.command("edge-hostnames")
def edge_hostnames(
    ctx: typer.Context,
    group_id: str | None = typer.Option(None, "--group", "-g", help="Limit to one group."),
    contract_id: str | None = typer.Option(None, "--contract", "-c", help="Limit to one contract."),
    json_output: bool = JSON_OPTION,
) -> None:
    """List edge hostnames across every accessible group and contract."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "edge-hostnames",
        args={"group": group_id, "contract": contract_id, "json": json_output},
        target={"kind": "edge_hostname"},
    ) as op:
        try:
            items = runtime.manager().list_edge_hostnames(runtime.request, group_id, contract_id)
        except _HANDLED_ERRORS as exc:
            _fail(op, exc)
        if json_output:
            _print_json({"edgeHostnames": items})
            op.success("Reported edge hostnames as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Edge hostname", style="bold")
        table.add_column("Id")
        table.add_column("Product")
        if not items:
            table.add_row("(none)", "", "")
        for item in items:
            table.add_row(
                str(item.get("edgeHostnameDomain", "")),
                str(item.get("edgeHostnameId", "")),
                str(item.get("productId", "") or ""),
            )
        console.print(table)
        op.success("Reported edge hostnames.", changed=0, context={"count": len(items)})


@app.command("formats")
def formats(
    ctx: typer.Context,
    latest: bool = typer.Option(False, "--latest", help="Only print the newest rule format."),
) -> None:
    """List the available rule formats."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "formats",
        args={"latest": latest},
        target={"kind": "rule_format"},
    ) as op:
        try:
            result = runtime.manager().rule_formats(runtime.request, latest=latest)
        except _HANDLED_ERRORS as exc:
            _fail(op, exc)
        _print_json(result)
        op.success("Reported rule formats.", changed=0)


@app.command("retrieve")
def retrieve(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Property id, property name or hostname."),
    version: str | None = VERSION_OPTION,
    to_file: str | None = typer.Option(
        None,
        "--file",
        "-f",
        help="Write the rules to this file ('-' for stdout).",
    ),
    hostnames: bool = typer.Option(False, "--hostnames", help="Retrieve hostnames instead of rules."),
    rule_format: bool = typer.Option(False, "--format", help="Only print the rule format."),
) -> None:
    """Retrieve the rules, hostnames or rule format of a property version."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "retrieve",
        args={
            "key": key,
            "version": version,
            "file": to_file,
            "hostnames": hostnames,
            "format": rule_format,
        },
        target={"kind": "property", "key": key},
    ) as op:
        spec = _version(op, version)
        try:
            manager = runtime.manager()
            if hostnames:
                _print_json(manager.retrieve_hostnames(runtime.request, key, spec))
                op.success("Reported hostnames.", changed=0)
                return
            if rule_format:
                _print_json(manager.rule_format(runtime.request, key, spec))
                op.success("Reported rule format.", changed=0)
                return
            if to_file:
                written = manager.export_rules(runtime.request, key, to_file, spec)
                if written is not None:
                    console.print(f"[green]Wrote rules to {written}.[/green]")
                op.success(
                    "Exported rules.",
                    changed=1 if written is not None else 0,
                    context={"file": str(written) if written else STDOUT},
                )
                return
            _print_json(manager.retrieve_rules(runtime.request, key, spec))
        except _HANDLED_ERRORS as exc:
            _fail(op, exc)
        op.success("Reported rules.", changed=0)


# ----------------------------------------------------------------------
# Versions and rules
# ----------------------------------------------------------------------
@app.command("create-version")
def create_version(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Property id, property name or hostname."),
    base: str | None = typer.Option(None, "--base", help="Version to copy (default LATEST)."),
) -> None:
    """Copy a version into a new editable version."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "create-version",
        args={"key": key, "base": base},
        target={"kind": "property", "key": key},
    ) as op:
        spec = _version(op, base)
        try:
            number = runtime.manager().create_version(runtime.request, key, spec)
        except _HANDLED_ERRORS as exc:
            _fail(op, exc)
        console.print(f"[green]Created version {number}.[/green]")
        op.success("Created property version.", changed=1, context={"version": number})


@app.command("update")
def update(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Property id, property name or hostname."),
    src_file: Path = typer.Option(..., "--file", "-f", dir_okay=False, help="Rule document to upload."),
    comment: str | None = typer.Option(None, "--comment", help="Version notes for the new version."),
) -> None:
    """Write a rule document onto a new version of the property."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "update",
        args={"key": key, "file": src_file, "comment": comment},
        target={"kind": "property", "key": key},
    ) as op:
        try:
            change = runtime.manager().update_rules_from_file(runtime.request, key, src_file, comment)
        except _HANDLED_ERRORS as exc:
            _fail(op, exc)
        console.print(f"[green]Updated {change.property_name} v{change.version}.[/green]")
        op.success("Updated property rules.", changed=1, context={"version": change.version})


@app.command("copy")
def copy(
    ctx: typer.Context,
    from_key: str = typer.Argument(..., help="Property to copy rules from."),
    to_key: str = typer.Argument(..., help="Property to copy rules to."),
    from_version: str | None = typer.Option(
        None,
        "--from-version",
        help="Source version (default LATEST).",
    ),
    comment: str | None = typer.Option(None, "--comment", help="Version notes for the new version."),
) -> None:
    """Copy the rules of one property onto a new version of another."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "copy",
        args={"from": from_key, "to": to_key, "from_version": from_version, "comment": comment},
        target={"kind": "property", "key": to_key},
    ) as op:
        spec = _version(op, from_version)
        try:
            change = runtime.manager().copy_rules(
                runtime.request,
                from_key,
                to_key,
                from_version=spec,
                comment=comment,
            )
        except _HANDLED_ERRORS as exc:
            _fail(op, exc)
        console.print(f"[green]Copied rules to {change.property_name} v{change.version}.[/green]")
        op.success("Copied property rules.", changed=1, context={"version": change.version})


# ----------------------------------------------------------------------
# Activation
# ----------------------------------------------------------------------
@app.command("activate")
def activate(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Property id, property name or hostname."),
    network: str = NETWORK_OPTION,
    version: str | None = VERSION_OPTION,
    note: str = NOTE_OPTION,
    email: list[str] | None = EMAIL_OPTION,
    no_wait: bool = NO_WAIT_OPTION,
    timeout: float | None = TIMEOUT_OPTION,
) -> None:
    """Activate a property version on a network."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "activate",
        args={"key": key, "network": network, "version": version, "wait": not no_wait},
        target={"kind": "property", "key": key},
    ) as op:
        selected = _network(op, network)
        spec = _version(op, version)
        try:
            result = runtime.manager().activate(
                runtime.request,
                key,
                selected,
                spec,
                note=note,
                emails=email or None,
                wait=not no_wait,
                timeout=_timeout(runtime, timeout),
            )
        except _HANDLED_ERRORS as exc:
            _fail(op, exc)
        _render_activation(op, result, "Activation")


@app.command("deactivate")
def deactivate(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Property id, property name or hostname."),
    network: str = NETWORK_OPTION,
    note: str = NOTE_OPTION,
    email: list[str] | None = EMAIL_OPTION,
    no_wait: bool = NO_WAIT_OPTION,
    timeout: float | None = TIMEOUT_OPTION,
) -> None:
    """Deactivate the version live on a network."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "deactivate",
        args={"key": key, "network": network, "wait": not no_wait},
        target={"kind": "property", "key": key},
    ) as op:
        selected = _network(op, network)
        try:
            result = runtime.manager().deactivate(
                runtime.request,
                key,
                selected,
                note=note,
                emails=email or None,
                wait=not no_wait,
                timeout=_timeout(runtime, timeout),
            )
        except _HANDLED_ERRORS as exc:
            _fail(op, exc)
        _render_activation(op, result, "Deactivation")


@app.command("promote")
def promote(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Property id, property name or hostname."),
    note: str = NOTE_OPTION,
    email: list[str] | None = EMAIL_OPTION,
    no_wait: bool = NO_WAIT_OPTION,
    timeout: float | None = TIMEOUT_OPTION,
) -> None:
    """Activate the staging version on production."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "promote",
        args={"key": key, "wait": not no_wait},
        target={"kind": "property", "key": key},
    ) as op:
        try:
            result = runtime.manager().promote(
                runtime.request,
                key,
                note=note,
                emails=email or None,
                wait=not no_wait,
                timeout=_timeout(runtime, timeout),
            )
        except _HANDLED_ERRORS as exc:
            _fail(op, exc)
        if result is None:
            console.print("[yellow]Production already runs the staging version.[/yellow]")
            op.success("Nothing to promote.", changed=0)
            return
        _render_activation(op, result, "Promotion")


# ----------------------------------------------------------------------
# Property lifecycle
# ----------------------------------------------------------------------
def _provision_options(**values: Any) -> dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


@app.command("create")
def create(
    ctx: typer.Context,
    hostnames: list[str] = typer.Argument(None, help="Hostnames to serve from the new property."),
    name: str | None = typer.Option(None, "--name", help="Property name (defaults to the first hostname)."),
    group_id: str | None = typer.Option(None, "--group", "-g", help="Group id."),
    contract_id: str | None = typer.Option(None, "--contract", "-c", help="Contract id."),
    product_id: str | None = typer.Option(None, "--product", help="Product id (prd_...)."),
    cpcode: str | None = typer.Option(None, "--cpcode", help="Existing CP code to reuse."),
    cpcode_name: str | None = typer.Option(None, "--new-cpcode-name", help="Create a CP code with this name."),
    origin: str | None = typer.Option(None, "--origin", help="Origin hostname."),
    edge_hostname: str | None = typer.Option(None, "--edge-hostname", help="Edge hostname to bind to."),
    rule_format: str | None = typer.Option(None, "--rule-format", help="Rule format for version 1."),
    src_file: Path | None = typer.Option(
        None,
        "--file",
        "-f",
        dir_okay=False,
        help="Seed version 1 with this rule document.",
    ),
    clone: str | None = typer.Option(None, "--clone", help="Clone from this property."),
    clone_version: str | None = typer.Option(None, "--clone-version", help="Version to clone from."),
    secure: bool = typer.Option(False, "--secure", help="Create a secure (edgekey) property."),
) -> None:
    """Create a new property, optionally seeded from a file or cloned."""
    runtime = _get_runtime(ctx)
    hostnames = list(hostnames or [])
    with runtime.logger.operation(
        "create",
        args={
            "hostnames": hostnames,
            "name": name,
            "group": group_id,
            "contract": contract_id,
            "file": src_file,
            "clone": clone,
        },
        target={"kind": "property", "key": name or (hostnames[0] if hostnames else None)},
    ) as op:
        options = _provision_options(
            config_name=name,
            group_id=group_id,
            contract_id=contract_id,
            cpcode=cpcode,
            cpcode_name=cpcode_name,
            origin=origin,
            edge_hostname=edge_hostname,
            rule_format=rule_format,
        )
        spec = _version(op, clone_version)
        try:
            manager = runtime.manager()
            if clone:
                result = manager.clone_property(
                    runtime.request,
                    clone,
                    hostnames,
                    source_version=spec,
                    secure=secure,
                    **options,
                )
            elif src_file is not None:
                result = manager.create_property_from_file(
                    runtime.request,
                    hostnames,
                    src_file,
                    product_id=product_id,
                    secure=secure,
                    **options,
                )
            else:
                result = manager.create_property(
                    runtime.request,
                    hostnames,
                    product_id=product_id,
                    secure=secure,
                    **options,
                )
        except _HANDLED_ERRORS as exc:
            _fail(op, exc)
        console.print(
            f"[green]Created {result.record.property_name} ({result.record.property_id}).[/green]"
        )
        op.success("Created property.", changed=1, context=result.to_dict())


@app.command("delete")
def delete(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Property id, property name or hostname."),
) -> None:
    """Delete a property."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "delete",
        args={"key": key},
        target={"kind": "property", "key": key},
    ) as op:
        try:
            runtime.manager().delete_property(runtime.request, key)
        except _HANDLED_ERRORS as exc:
            _fail(op, exc)
        console.print(f"[green]Deleted {key}.[/green]")
        op.success("Deleted property.", changed=1)


@app.command("move")
def move(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Property id, property name or hostname."),
    destination: str = typer.Option(..., "--group", "-g", help="Destination group id."),
) -> None:
    """Move a property to another group."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "move",
        args={"key": key, "group": destination},
        target={"kind": "property", "key": key},
    ) as op:
        try:
            summary = runtime.manager().move_property(runtime.request, key, destination)
        except _HANDLED_ERRORS as exc:
            _fail(op, exc)
        console.print(
            f"[green]Moved {summary['propertyName']} to group {summary['destinationGroupId']}.[/green]"
        )
        op.success("Moved property.", changed=1, context=summary)


# ----------------------------------------------------------------------
# Hostnames
# ----------------------------------------------------------------------
@hostnames_app.command("list")
def hostname_list(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Property id, property name or hostname."),
    version: str | None = VERSION_OPTION,
) -> None:
    """List the hostnames of a property version."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "hostname list",
        args={"key": key, "version": version},
        target={"kind": "property", "key": key},
    ) as op:
        spec = _version(op, version)
        try:
            listing = runtime.manager().retrieve_hostnames(runtime.request, key, spec)
        except _HANDLED_ERRORS as exc:
            _fail(op, exc)
        _print_json(listing)
        op.success("Reported hostnames.", changed=0)


def _report_hostname_change(op: OperationScope, change: HostnameChange, message: str) -> None:
    console.print(f"[green]{message} on {change.property_name} v{change.version}.[/green]")
    op.success(message, changed=1, context=change.to_dict())


@hostnames_app.command("add")
def hostname_add(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Property id, property name or hostname."),
    hostnames: list[str] = typer.Argument(..., help="Hostnames to add."),
    edge_hostname: str | None = typer.Option(
        None,
        "--edge-hostname",
        help="Edge hostname (or ehn_ id) to bind to; inferred when omitted.",
    ),
    base: str | None = typer.Option(None, "--base", help="Version to copy (default LATEST)."),
) -> None:
    """Bind hostnames to a property on a new version."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "hostname add",
        args={"key": key, "hostnames": hostnames, "edge_hostname": edge_hostname, "base": base},
        target={"kind": "property", "key": key},
    ) as op:
        spec = _version(op, base)
        try:
            change = runtime.manager().add_hostnames(
                runtime.request,
                key,
                hostnames,
                edge_hostname=edge_hostname,
                base=spec,
            )
        except _HANDLED_ERRORS as exc:
            _fail(op, exc)
        _report_hostname_change(op, change, "Added hostnames")


@hostnames_app.command("delete")
def hostname_delete(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Property id, property name or hostname."),
    hostnames: list[str] = typer.Argument(..., help="Hostnames to remove."),
    base: str | None = typer.Option(None, "--base", help="Version to copy (default LATEST)."),
) -> None:
    """Unbind hostnames from a property on a new version."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "hostname delete",
        args={"key": key, "hostnames": hostnames, "base": base},
        target={"kind": "property", "key": key},
    ) as op:
        spec = _version(op, base)
        try:
            change = runtime.manager().delete_hostnames(runtime.request, key, hostnames, base=spec)
        except _HANDLED_ERRORS as exc:
            _fail(op, exc)
        _report_hostname_change(op, change, "Removed hostnames")


@hostnames_app.command("assign")
def hostname_assign(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Property id, property name or hostname."),
    edge_hostname: str = typer.Argument(..., help="Edge hostname (or ehn_ id) for every hostname."),
    base: str | None = typer.Option(None, "--base", help="Version to copy (default LATEST)."),
) -> None:
    """Point every hostname of a property at one edge hostname."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "hostname assign",
        args={"key": key, "edge_hostname": edge_hostname, "base": base},
        target={"kind": "property", "key": key},
    ) as op:
        spec = _version(op, base)
        try:
            change = runtime.manager().assign_edge_hostname(
                runtime.request,
                key,
                edge_hostname,
                base=spec,
            )
        except _HANDLED_ERRORS as exc:
            _fail(op, exc)
        _report_hostname_change(op, change, "Assigned edge hostname")


# ----------------------------------------------------------------------
# Rule patches
# ----------------------------------------------------------------------
def _report_rules_change(op: OperationScope, change: RulesChange, message: str) -> None:
    console.print(f"[green]{message} on {change.property_name} v{change.version}.[/green]")
    op.success(message, changed=1, context={"version": change.version})


@modify_app.command("cpcode")
def modify_cpcode(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Property id, property name or hostname."),
    cpcode: str = typer.Argument(..., help="CP code (123 or cpc_123)."),
) -> None:
    """Point the default rule at a CP code."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "modify cpcode",
        args={"key": key, "cpcode": cpcode},
        target={"kind": "property", "key": key},
    ) as op:
        try:
            change = runtime.manager().set_cpcode(runtime.request, key, cpcode)
        except _HANDLED_ERRORS as exc:
            _fail(op, exc)
        _report_rules_change(op, change, "Set CP code")


@modify_app.command("origin")
def modify_origin(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Property id, property name or hostname."),
    hostname: str | None = typer.Option(None, "--hostname", help="Origin hostname."),
    forward: str | None = typer.Option(
        None,
        "--forward",
        help="Forward host header: origin, incoming or a custom value.",
    ),
) -> None:
    """Change the origin hostname and forward host header."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "modify origin",
        args={"key": key, "hostname": hostname, "forward": forward},
        target={"kind": "property", "key": key},
    ) as op:
        if not hostname and not forward:
            _command_error(op, "Specify --hostname and/or --forward.", rc=int(ExitCode.VALIDATION))
        try:
            change = runtime.manager().set_origin(runtime.request, key, hostname, forward)
        except _HANDLED_ERRORS as exc:
            _fail(op, exc)
        _report_rules_change(op, change, "Set origin")


@modify_app.command("sureroute")
def modify_sureroute(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Property id, property name or hostname."),
    custom_map: str | None = typer.Option(None, "--map", help="SureRoute custom map."),
    test_object: str | None = typer.Option(None, "--test-object", help="SureRoute test object URL."),
    to_host: str | None = typer.Option(None, "--to-host", help="SureRoute test host."),
) -> None:
    """Change the SureRoute settings."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "modify sureroute",
        args={"key": key, "map": custom_map, "test_object": test_object, "to_host": to_host},
        target={"kind": "property", "key": key},
    ) as op:
        try:
            change = runtime.manager().set_sureroute(
                runtime.request,
                key,
                custom_map=custom_map,
                test_object_url=test_object,
                to_host=to_host,
            )
        except _HANDLED_ERRORS as exc:
            _fail(op, exc)
        _report_rules_change(op, change, "Set SureRoute")


@modify_app.command("rule-format")
def modify_rule_format(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Property id, property name or hostname."),
    rule_format: str = typer.Argument(..., help="Rule format, e.g. v2020-03-04 or latest."),
) -> None:
    """Change the rule format."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "modify rule-format",
        args={"key": key, "rule_format": rule_format},
        target={"kind": "property", "key": key},
    ) as op:
        try:
            change = runtime.manager().set_rule_format(runtime.request, key, rule_format)
        except _HANDLED_ERRORS as exc:
            _fail(op, exc)
        _report_rules_change(op, change, "Set rule format")


@modify_app.command("comments")
def modify_comments(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Property id, property name or hostname."),
    comment: str = typer.Argument(..., help="Version notes."),
) -> None:
    """Change the version notes."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "modify comments",
        args={"key": key, "comment": comment},
        target={"kind": "property", "key": key},
    ) as op:
        try:
            change = runtime.manager().set_comments(runtime.request, key, comment)
        except _HANDLED_ERRORS as exc:
            _fail(op, exc)
        _report_rules_change(op, change, "Set comments")


# ----------------------------------------------------------------------
# Variables
# ----------------------------------------------------------------------
@variables_app.command("show")
def variables_show(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Property id, property name or hostname."),
    version: str | None = VERSION_OPTION,
) -> None:
    """Print the property variables of a version."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "variables show",
        args={"key": key, "version": version},
        target={"kind": "property", "key": key},
    ) as op:
        spec = _version(op, version)
        try:
            variables = runtime.manager().get_variables(runtime.request, key, spec)
        except _HANDLED_ERRORS as exc:
            _fail(op, exc)
        _print_json(variables)
        op.success("Reported variables.", changed=0, context={"count": len(variables)})


@variables_app.command("set")
def variables_set(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Property id, property name or hostname."),
    src_file: Path = typer.Option(
        ...,
        "--file",
        "-f",
        dir_okay=False,
        help="JSON or YAML list of variables with create/update/delete actions.",
    ),
) -> None:
    """Create, update or delete property variables on a new version."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "variables set",
        args={"key": key, "file": src_file},
        target={"kind": "property", "key": key},
    ) as op:
        try:
            change = runtime.manager().set_variables_from_file(runtime.request, key, src_file)
        except _HANDLED_ERRORS as exc:
            _fail(op, exc)
        _report_rules_change(op, change, "Updated variables")


# ----------------------------------------------------------------------
# Configuration
# ----------------------------------------------------------------------
@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit configuration as JSON instead of a table.",
    ),
) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for config_key, value in data.items():
            if isinstance(value, Mapping):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(config_key, rendered)

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
