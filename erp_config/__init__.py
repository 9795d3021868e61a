"""
erp_config -- single public entrypoint for runtime settings.

Responsibility:
    ``get_settings()`` returns the effective ``ErpSettings``: the packaged
    ``defaults.yaml``, merged with an optional override file, with the
    ``DATABASE_URL`` and ``ERP_LOG_LEVEL`` environment variables applied
    last.

Architecture position:
    Configuration -- read by erp_modules and tooling.  The kernel MUST NEVER
    import from ``erp_config``.

Audit relevance:
    Every call emits an ``ERP_CONFIG_TRACE`` record with the settings
    checksum, so an action's log trail names the configuration that
    governed it (e.g. which invoice-control policy applied).
"""

from __future__ import annotations

import logging
from pathlib import Path

from erp_config.loader import apply_env_overrides, load_yaml_file, merge, parse_settings
from erp_config.schema import (
    CompanyPolicy,
    DatabaseSettings,
    ErpSettings,
    LoggingSettings,
    RetrySettings,
)

_logger = logging.getLogger("erp_kernel.config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def get_settings(path: Path | str | None = None) -> ErpSettings:
    """The ONLY public configuration entrypoint."""
    data = load_yaml_file(DEFAULTS_PATH)
    if path is not None:
        data = merge(data, load_yaml_file(Path(path)))
    settings = parse_settings(apply_env_overrides(data))

    _logger.info(
        "ERP_CONFIG_TRACE",
        extra={
            "trace_type": "ERP_CONFIG_TRACE",
            "source": str(path) if path is not None else "defaults",
            "checksum": settings.checksum,
            "company_policies": sorted(settings.companies),
            "log_level": settings.logging.level,
        },
    )
    return settings


__all__ = [
    "CompanyPolicy",
    "DatabaseSettings",
    "ErpSettings",
    "LoggingSettings",
    "RetrySettings",
    "get_settings",
]
