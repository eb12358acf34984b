"""
Configuration Loader (``billing_config.loader``).

Responsibility
--------------
Loads a billing YAML file and parses it into the typed
``billing_config.schema`` dataclasses.  Runtime code obtains config only
through ``billing_config.get_billing_config()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or invalid values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from billing_config.schema import (
    BillingConfig,
    CollaboratorSettings,
    ConcurrencySettings,
    InvoicingSettings,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _section(data: dict[str, Any], name: str, cls) -> Any:
    raw = data.get(name) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"'{name}' must be a mapping, got {type(raw).__name__}")
    known = set(cls.__dataclass_fields__)
    unknown = set(raw) - known
    if unknown:
        raise ValueError(f"Unknown keys in '{name}': {sorted(unknown)}")
    return cls(**raw)


def parse_billing_config(data: dict[str, Any]) -> BillingConfig:
    """
    Parse a ``BillingConfig`` from a dict.

    Every section is optional; omitted keys keep their defaults.
    """
    unknown = set(data) - {"concurrency", "collaborators", "invoicing"}
    if unknown:
        raise ValueError(f"Unknown billing config sections: {sorted(unknown)}")
    return BillingConfig(
        concurrency=_section(data, "concurrency", ConcurrencySettings),
        collaborators=_section(data, "collaborators", CollaboratorSettings),
        invoicing=_section(data, "invoicing", InvoicingSettings),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
