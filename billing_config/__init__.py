"""
billing_config -- single public entrypoint for billing configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_billing_config()``.  YAML loading is internal tooling.

Architecture position:
    Configuration.  Sits above ``ledger_kernel`` and below
    ``billing_services``.  The kernel MUST NEVER import from
    ``billing_config``.
"""

from __future__ import annotations

import logging
from pathlib import Path

from billing_config.loader import load_yaml_file, parse_billing_config
from billing_config.schema import (
    BillingConfig,
    CollaboratorSettings,
    ConcurrencySettings,
    InvoicingSettings,
)

_logger = logging.getLogger("ledger_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "billing.yaml"


def get_billing_config(path: Path | str | None = None) -> BillingConfig:
    """
    Load and validate billing configuration.

    Args:
        path: YAML file to load.  Defaults to the packaged ``billing.yaml``.

    Raises:
        FileNotFoundError: the file does not exist.
        ValueError: unknown keys or invalid values.
    """
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    config = parse_billing_config(load_yaml_file(config_path))
    _logger.info(
        "billing_config_loaded",
        extra={"config_path": str(config_path), "checksum": config.checksum},
    )
    return config


__all__ = [
    "BillingConfig",
    "CollaboratorSettings",
    "ConcurrencySettings",
    "InvoicingSettings",
    "get_billing_config",
    "DEFAULT_CONFIG_PATH",
]
