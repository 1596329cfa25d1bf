"""
rental_config -- single public entrypoint for runtime configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly.

Invariants enforced:
    - Single entrypoint: all runtime config flows through
      ``get_active_config()``.
    - ``DATABASE_URL`` in the environment overrides ``database.url``.  The
      checksum covers the file as written, so the override never changes it.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ValueError`` -- schema validation failures.

Audit relevance:
    Every successful call emits a ``RENTAL_CONFIG_TRACE`` log entry with the
    config id, version and checksum.
"""

from __future__ import annotations

import os
from dataclasses import replace
from pathlib import Path

from rental_config.loader import load_yaml_file, parse_config
from rental_config.schema import RentalConfig
from rental_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | None = None) -> RentalConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: Override path to a YAML file.  Defaults to
            ``rental_config/sets/default.yaml``.
    """
    path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG_PATH
    config = parse_config(load_yaml_file(path))

    database_url = os.environ.get("DATABASE_URL")
    if database_url:
        config = replace(config, database=replace(config.database, url=database_url))

    _logger.info(
        "RENTAL_CONFIG_TRACE",
        extra={
            "trace_type": "RENTAL_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "config_path": str(path),
            "database_url_overridden": bool(database_url),
        },
    )
    return config


__all__ = ["RentalConfig", "get_active_config"]
