"""
Configuration Loader (``erp_config.loader``).

Responsibility
--------------
Reads a YAML settings file, applies environment overrides, and parses the
result into the frozen dataclasses of ``erp_config.schema``.  Callers use
``erp_config.get_settings()``; this module is the machinery behind it.

Invariants enforced
-------------------
* ``yaml.safe_load`` only; no arbitrary object construction.
* ``database.url`` is required after overrides.
* Unknown invoice-control policies raise ``ValueError``; there is no
  silent fallback.
* ``compute_checksum`` is deterministic for identical effective settings.

Failure modes
-------------
* Missing file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing or invalid values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from erp_config.schema import (
    INVOICE_CONTROL_POLICIES,
    CompanyPolicy,
    DatabaseSettings,
    ErpSettings,
    LoggingSettings,
    RetrySettings,
)

ENV_DATABASE_URL = "DATABASE_URL"
ENV_LOG_LEVEL = "ERP_LOG_LEVEL"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML mapping; an empty file yields an empty dict."""
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Recursive dict merge; ``override`` wins on scalar conflicts."""
    out = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(out.get(key), Mapping):
            out[key] = merge(out[key], value)
        else:
            out[key] = value
    return out


def apply_env_overrides(
    data: Mapping[str, Any], environ: Mapping[str, str] | None = None
) -> dict[str, Any]:
    env = os.environ if environ is None else environ
    out = dict(data)
    if env.get(ENV_DATABASE_URL):
        out["database"] = {**out.get("database", {}), "url": env[ENV_DATABASE_URL]}
    if env.get(ENV_LOG_LEVEL):
        out["logging"] = {**out.get("logging", {}), "level": env[ENV_LOG_LEVEL]}
    return out


def _parse_policy(name: str, data: Mapping[str, Any]) -> CompanyPolicy:
    raw = data.get("invoice_control_policy", "RECEIVED")
    policy = str(raw).upper()
    if policy not in INVOICE_CONTROL_POLICIES:
        raise ValueError(
            f"companies.{name}.invoice_control_policy must be ORDERED or RECEIVED, got {raw!r}"
        )
    return CompanyPolicy(
        invoice_control_policy=policy,
        auto_complete_purchase_orders=bool(data.get("auto_complete_purchase_orders", True)),
    )


def parse_settings(data: Mapping[str, Any]) -> ErpSettings:
    db = data.get("database") or {}
    if not db.get("url"):
        raise ValueError(f"database.url is required (or set {ENV_DATABASE_URL})")
    log = data.get("logging") or {}
    retry = data.get("retry") or {}
    retries = int(retry.get("lock_contention_retries", 1))
    if retries < 0:
        raise ValueError("retry.lock_contention_retries must be >= 0")

    return ErpSettings(
        database=DatabaseSettings(
            url=str(db["url"]),
            echo=bool(db.get("echo", False)),
            pool_size=int(db.get("pool_size", 5)),
            max_overflow=int(db.get("max_overflow", 10)),
            pool_timeout=int(db.get("pool_timeout", 30)),
            lock_timeout_seconds=float(db.get("lock_timeout_seconds", 15)),
        ),
        logging=LoggingSettings(level=str(log.get("level", "INFO")).upper()),
        retry=RetrySettings(lock_contention_retries=retries),
        companies={
            str(name): _parse_policy(str(name), values or {})
            for name, values in (data.get("companies") or {}).items()
        },
        checksum=compute_checksum(data),
    )


def compute_checksum(data: Mapping[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of the effective settings."""
    canonical = json.dumps(data, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(canonical.encode()).hexdigest()
