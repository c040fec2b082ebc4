"""
Platform settings (``automation_kernel.settings``).

Responsibility
--------------
Holds every tunable of the rule engine, the bulk orchestrator and the
scheduler in one frozen dataclass.  Values come from, in order of
precedence: ``AUTOMATION_<FIELD>`` environment variables, an optional YAML
file, then the dataclass defaults.

Failure modes
-------------
* Unknown YAML key or unparseable override -> ``InvalidSettingsError``.
* Malformed YAML -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

from automation_kernel.exceptions import InvalidSettingsError

ENV_PREFIX = "AUTOMATION_"


@dataclass(frozen=True)
class AutomationSettings:
    """Immutable platform settings."""

    # Bulk operations
    bulk_batch_size: int = 25
    bulk_max_workers: int = 1  # 1 = sequential within a batch
    approval_large_batch_threshold: int = 50
    approval_review_threshold: int = 10
    high_risk_bulk_types: tuple[str, ...] = (
        "DELETE_DOCUMENTS",
        "SYNC_TO_LEDGER",
        "UPDATE_ACCOUNTS",
    )

    # Retention (TTL emulation)
    event_ttl_days: int = 7
    execution_ttl_days: int = 30
    bulk_operation_ttl_days: int = 90
    scheduled_action_grace_hours: int = 24

    # Action pipeline
    retry_backoff_seconds: float = 0.0  # 0 = retry immediately
    default_task_due_days: int = 3
    webhook_timeout_seconds: float = 10.0

    # Scheduler
    scheduler_tick_seconds: int = 60
    scheduler_batch_limit: int = 100

    # Queries
    list_limit: int = 50


def _coerce(name: str, raw: Any, default: Any) -> Any:
    """Convert a raw YAML/env value to the type of the field default."""
    try:
        if isinstance(default, bool):
            if isinstance(raw, bool):
                return raw
            return str(raw).strip().lower() in ("1", "true", "yes", "on")
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, float):
            return float(raw)
        if isinstance(default, tuple):
            if isinstance(raw, str):
                return tuple(p.strip() for p in raw.split(",") if p.strip())
            return tuple(str(v) for v in raw)
    except (TypeError, ValueError) as exc:
        raise InvalidSettingsError(name, str(exc)) from exc
    return raw


def load_settings(
    path: Path | str | None = None,
    env: Mapping[str, str] | None = None,
) -> AutomationSettings:
    """
    Build settings from an optional YAML file plus environment overrides.

    Args:
        path: YAML file with a flat mapping of field names to values.
        env: Environment mapping (defaults to ``os.environ``).

    Raises:
        InvalidSettingsError: Unknown key or value of the wrong type.
    """
    base = AutomationSettings()
    known = {f.name: getattr(base, f.name) for f in fields(AutomationSettings)}
    overrides: dict[str, Any] = {}

    if path is not None:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise InvalidSettingsError(str(path), "top level must be a mapping")
        for key, raw in data.items():
            if key not in known:
                raise InvalidSettingsError(key, "unknown setting")
            overrides[key] = _coerce(key, raw, known[key])

    source = os.environ if env is None else env
    for name, default in known.items():
        env_key = f"{ENV_PREFIX}{name.upper()}"
        if env_key in source:
            overrides[name] = _coerce(name, source[env_key], default)

    return replace(base, **overrides)
