"""
Configuration loader (``payment_config.loader``).

Responsibility
--------------
Builds a ``PaymentSettings`` from three layers, later layers winning:

1. the packaged ``defaults.yaml``;
2. an optional override file (argument, or the ``PAYMENT_CONFIG``
   environment variable);
3. environment variables:

   ========================== =====================================
   Variable                   Setting
   ========================== =====================================
   PAYMENT_DATABASE_URL       database.url (DATABASE_URL also read)
   PAYMENT_STORAGE_ROOT       storage.root
   PAYMENT_STORAGE_BASE_URL   storage.base_url
   PAYMENT_DEFAULT_TIMEZONE   default_timezone
   PAYMENT_RETENTION_DAYS     jobs.requisites_retention_days
   PAYMENT_JOBS_DEBUG         jobs.debug
   ========================== =====================================

Failure modes
-------------
* Missing override file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys, wrong types, unknown timezone  -> ``ConfigurationError``.
"""

from __future__ import annotations

import os
from dataclasses import fields
from pathlib import Path
from typing import Any, Mapping
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from payment_config.schema import (
    DatabaseSettings,
    JobSettings,
    PaymentSettings,
    ScheduleSettings,
    StorageSettings,
)
from payment_kernel.exceptions import ConfigurationError

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

_ENV_OVERRIDES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("DATABASE_URL", ("database", "url")),
    ("PAYMENT_DATABASE_URL", ("database", "url")),
    ("PAYMENT_STORAGE_ROOT", ("storage", "root")),
    ("PAYMENT_STORAGE_BASE_URL", ("storage", "base_url")),
    ("PAYMENT_DEFAULT_TIMEZONE", ("default_timezone",)),
    ("PAYMENT_RETENTION_DAYS", ("jobs", "requisites_retention_days")),
    ("PAYMENT_JOBS_DEBUG", ("jobs", "debug")),
)

_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off", ""}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file; an empty file yields an empty dict."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(str(path), "top level must be a mapping")
    return data


def merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Recursive dict merge; ``override`` wins on scalar conflicts."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _apply_env(data: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    for variable, path in _ENV_OVERRIDES:
        if variable not in environ:
            continue
        target = data
        for key in path[:-1]:
            target = target.setdefault(key, {})
        target[path[-1]] = environ[variable]
    return data


# ---------------------------------------------------------------------------
# Coercion
# ---------------------------------------------------------------------------


def _as_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in _TRUE_STRINGS | _FALSE_STRINGS:
        return value.strip().lower() in _TRUE_STRINGS
    raise ConfigurationError(key, "must be a boolean", value)


def _as_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(key, "must be an integer", value)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(key, "must be an integer", value) from None


def _as_str(key: str, value: Any) -> str:
    if not isinstance(value, str) or not value:
        raise ConfigurationError(key, "must be a non-empty string", value)
    return value


def _as_uuid(key: str, value: Any) -> UUID | None:
    if value in (None, ""):
        return None
    try:
        return UUID(str(value))
    except ValueError:
        raise ConfigurationError(key, "must be a UUID", value) from None


# Keyed by the (string) annotations of the schema dataclasses.
_COERCERS = {
    "bool": _as_bool,
    "int": _as_int,
    "str": _as_str,
    "UUID | None": _as_uuid,
}


def _parse_section(cls: type, section: str, data: Any) -> Any:
    if data is None:
        return cls()
    if not isinstance(data, Mapping):
        raise ConfigurationError(section, "must be a mapping", data)

    known = {f.name: f for f in fields(cls)}
    unknown = sorted(set(data) - set(known))
    if unknown:
        raise ConfigurationError(section, f"unknown keys: {', '.join(unknown)}")

    kwargs: dict[str, Any] = {}
    for name, value in data.items():
        annotation = known[name].type
        type_name = annotation if isinstance(annotation, str) else annotation.__name__
        coerce = _COERCERS[type_name]
        kwargs[name] = coerce(f"{section}.{name}", value)
    return cls(**kwargs)


def parse_settings(data: Mapping[str, Any]) -> PaymentSettings:
    """Build and validate a ``PaymentSettings`` from a merged mapping."""
    sections = {
        "database": DatabaseSettings,
        "storage": StorageSettings,
        "jobs": JobSettings,
        "scheduling": ScheduleSettings,
    }
    unknown = sorted(set(data) - set(sections) - {"default_timezone"})
    if unknown:
        raise ConfigurationError("<root>", f"unknown keys: {', '.join(unknown)}")

    timezone = _as_str("default_timezone", data.get("default_timezone", "Europe/Kyiv"))
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise ConfigurationError("default_timezone", "unknown timezone", timezone) from None

    settings = PaymentSettings(
        default_timezone=timezone,
        **{name: _parse_section(cls, name, data.get(name)) for name, cls in sections.items()},
    )

    if settings.jobs.rule_batch_size < 1 or settings.jobs.prune_batch_size < 1:
        raise ConfigurationError("jobs", "batch sizes must be at least 1")
    if settings.jobs.commit_every < 0:
        raise ConfigurationError("jobs.commit_every", "must not be negative")
    if settings.jobs.lock_ttl_seconds < 1:
        raise ConfigurationError("jobs.lock_ttl_seconds", "must be at least 1")
    if settings.scheduling.tick_interval_seconds < 1:
        raise ConfigurationError("scheduling.tick_interval_seconds", "must be at least 1")
    return settings


def load_settings(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> PaymentSettings:
    """
    Load settings from defaults, an optional override file and the environment.

    Args:
        path: Override file.  Defaults to ``$PAYMENT_CONFIG`` when set.
        environ: Environment mapping (defaults to ``os.environ``).
    """
    env = os.environ if environ is None else environ
    data = load_yaml_file(DEFAULTS_PATH)

    override = path if path is not None else env.get("PAYMENT_CONFIG")
    if override:
        data = merge(data, load_yaml_file(Path(override)))

    return parse_settings(_apply_env(data, env))
