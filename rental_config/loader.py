"""
Configuration Loader (``rental_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen
``rental_config.schema`` dataclasses.  Runtime callers go through
``rental_config.get_active_config()``.

Invariants enforced
-------------------
* Unknown section keys are rejected with ``ValueError``; a typo never
  falls back to a default silently.
* ``compute_checksum`` is a deterministic SHA-256 over canonical JSON.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing ``config_id``/``version``  -> ``KeyError`` propagates.
* Bad values  -> ``ValueError`` from the schema ``__post_init__``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from rental_config.schema import (
    BillingConfig,
    DatabaseConfig,
    GatewayConfig,
    LeaseConfig,
    LoggingConfig,
    RentalConfig,
    RetryConfig,
)
from rental_modules.directory.models import UserRole


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict (empty if blank)."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def _section(data: dict[str, Any], name: str, cls: type) -> dict[str, Any]:
    raw = data.get(name) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{name}: expected a mapping")
    allowed = {f.name for f in fields(cls)}
    unknown = sorted(set(raw) - allowed)
    if unknown:
        raise ValueError(f"{name}: unknown keys {unknown}")
    return dict(raw)


def parse_gateway(data: dict[str, Any]) -> GatewayConfig:
    raw = _section(data, "gateway", GatewayConfig)
    for key in ("success_statuses", "success_response_codes"):
        if key in raw:
            raw[key] = tuple(str(v) for v in raw[key])
    if "country_code" in raw:
        raw["country_code"] = str(raw["country_code"])
    return GatewayConfig(**raw)


def parse_lease(data: dict[str, Any]) -> LeaseConfig:
    raw = _section(data, "lease", LeaseConfig)
    if "override_roles" in raw:
        raw["override_roles"] = tuple(UserRole(r) for r in raw["override_roles"])
    return LeaseConfig(**raw)


def parse_config(data: dict[str, Any]) -> RentalConfig:
    """Parse a whole configuration mapping."""
    return RentalConfig(
        config_id=str(data["config_id"]),
        version=int(data["version"]),
        database=DatabaseConfig(**_section(data, "database", DatabaseConfig)),
        retry=RetryConfig(**_section(data, "retry", RetryConfig)),
        billing=BillingConfig(**_section(data, "billing", BillingConfig)),
        gateway=parse_gateway(data),
        lease=parse_lease(data),
        logging=LoggingConfig(**_section(data, "logging", LoggingConfig)),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
