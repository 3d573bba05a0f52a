"""Configuration loader for propctl.

Values are read from several sources, later ones winning:

1. Built-in defaults.
2. ``~/.config/propctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``PROPCTL_``.
4. Explicit overrides supplied programmatically (CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export PROPCTL_ACTIVATION__POLL_INTERVAL=10
    export PROPCTL_RESOLVER__WARM_CACHE=true

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The historical ``REQUEST_THROTTLE`` variable is honoured when
``PROPCTL_REQUEST_THROTTLE`` is absent. The resulting configuration is exposed
as immutable ``dataclasses``.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load propctl configuration. Install with "
        "`pip install propctl` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "PROPCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
LEGACY_THROTTLE_ENV_VAR = "REQUEST_THROTTLE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class RetryConfig:
    """Retry behaviour for calls that received no response."""

    max_attempts: int = 1
    backoff: float = 0.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"max_attempts": self.max_attempts, "backoff": self.backoff}


@dataclass(frozen=True)
class ActivationConfig:
    """Activation polling and notification defaults."""

    poll_interval: float = 30.0
    max_warning_acknowledgements: int = 3
    notify_emails: tuple[str, ...] = ("test@example.com",)
    timeout: float | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "poll_interval": self.poll_interval,
            "max_warning_acknowledgements": self.max_warning_acknowledgements,
            "notify_emails": list(self.notify_emails),
            "timeout": self.timeout,
        }


@dataclass(frozen=True)
class ResolverConfig:
    """Identity resolver behaviour."""

    warm_cache: bool = False

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"warm_cache": self.warm_cache}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for propctl."""

    config_file: Path
    edgerc: Path
    section: str
    account_switch_key: str | None
    logs_dir: Path
    request_timeout: float
    request_throttle: int
    retry: RetryConfig
    activation: ActivationConfig
    resolver: ResolverConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "edgerc": str(self.edgerc),
            "section": self.section,
            "account_switch_key": self.account_switch_key,
            "logs_dir": str(self.logs_dir),
            "request_timeout": self.request_timeout,
            "request_throttle": self.request_throttle,
            "retry": self.retry.to_dict(),
            "activation": self.activation.to_dict(),
            "resolver": self.resolver.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "~/.config/propctl/config.yml",
    "edgerc": "~/.edgerc",
    "section": "default",
    "account_switch_key": None,
    "logs_dir": "~/.local/state/propctl/logs",
    "request_timeout": 60.0,
    "request_throttle": 10,
    "retry": {
        "max_attempts": 1,
        "backoff": 0.0,
    },
    "activation": {
        "poll_interval": 30.0,
        "max_warning_acknowledgements": 3,
        "notify_emails": ["test@example.com"],
        "timeout": None,
    },
    "resolver": {
        "warm_cache": False,
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_SECTION_KEYS = {
    "retry": {"max_attempts", "backoff"},
    "activation": {"poll_interval", "max_warning_acknowledgements", "notify_emails", "timeout"},
    "resolver": {"warm_cache"},
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, {key: value for key, value in overrides.items() if value is not None})

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override).expanduser()
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR]).expanduser()
    return Path(default_path).expanduser()


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in ALLOWED_SECTION_KEYS.items():
        value = raw.get(section)
        if value is None:
            continue
        mapping = _as_dict(value, section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    emails = _as_dict(raw.get("activation"), "activation").get("notify_emails")
    if emails is not None and not isinstance(emails, str):
        for index, entry in enumerate(_as_sequence(emails, "activation.notify_emails")):
            if not isinstance(entry, str) or not entry.strip():
                raise ConfigError(
                    f"activation.notify_emails[{index}] must be a non-empty string."
                )


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    edgerc = _to_path(raw.get("edgerc"))
    logs_dir = _to_path(raw.get("logs_dir"))
    section = str(raw.get("section") or "default")
    switch_key_value = raw.get("account_switch_key")
    account_switch_key = str(switch_key_value).strip() if switch_key_value else None

    request_timeout = _expect_positive_float(
        raw.get("request_timeout"), "request_timeout", default=60.0
    )
    request_throttle = _expect_int(raw.get("request_throttle"), "request_throttle", default=10)
    if request_throttle <= 0:
        raise ConfigError("request_throttle must be greater than zero.")

    retry_mapping = _as_dict(raw.get("retry"), "retry")
    max_attempts = _expect_int(retry_mapping.get("max_attempts"), "retry.max_attempts", default=1)
    if max_attempts < 0:
        raise ConfigError("retry.max_attempts must be non-negative.")
    backoff = _expect_non_negative_float(retry_mapping.get("backoff"), "retry.backoff", default=0.0)
    retry = RetryConfig(max_attempts=max_attempts, backoff=backoff)

    activation_mapping = _as_dict(raw.get("activation"), "activation")
    max_acks = _expect_int(
        activation_mapping.get("max_warning_acknowledgements"),
        "activation.max_warning_acknowledgements",
        default=3,
    )
    if max_acks < 0:
        raise ConfigError("activation.max_warning_acknowledgements must be non-negative.")
    timeout_value = activation_mapping.get("timeout")
    activation = ActivationConfig(
        poll_interval=_expect_positive_float(
            activation_mapping.get("poll_interval"), "activation.poll_interval", default=30.0
        ),
        max_warning_acknowledgements=max_acks,
        notify_emails=_to_emails(activation_mapping.get("notify_emails")),
        timeout=(
            _expect_positive_float(timeout_value, "activation.timeout", default=1.0)
            if timeout_value not in (None, "")
            else None
        ),
    )

    resolver_mapping = _as_dict(raw.get("resolver"), "resolver")
    resolver = ResolverConfig(
        warm_cache=_expect_bool(resolver_mapping.get("warm_cache"), "resolver.warm_cache"),
    )

    return AppConfig(
        config_file=config_file,
        edgerc=edgerc,
        section=section,
        account_switch_key=account_switch_key,
        logs_dir=logs_dir,
        request_timeout=request_timeout,
        request_throttle=request_throttle,
        retry=retry,
        activation=activation,
        resolver=resolver,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    legacy = env.get(LEGACY_THROTTLE_ENV_VAR)
    if legacy and "request_throttle" not in overrides:
        overrides["request_throttle"] = _coerce_value(legacy)
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _to_emails(value: object) -> tuple[str, ...]:
    if value is None:
        return ActivationConfig().notify_emails
    if isinstance(value, str):
        entries = [item.strip() for item in value.split(",")]
    else:
        entries = [str(item).strip() for item in _as_sequence(value, "activation.notify_emails")]
    emails = tuple(entry for entry in entries if entry)
    if not emails:
        raise ConfigError("activation.notify_emails must list at least one address.")
    return emails


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_bool(value: object | None, label: str, *, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_number(value: object, label: str) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be numeric. Got {type(value).__name__}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    numeric = _expect_number(value, label)
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _expect_non_negative_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    numeric = _expect_number(value, label)
    if numeric < 0:
        raise ConfigError(f"{label} must be non-negative. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "ActivationConfig",
    "AppConfig",
    "ConfigError",
    "ResolverConfig",
    "RetryConfig",
    "load_config",
]
