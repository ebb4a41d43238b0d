"""
billing_config -- single public entrypoint for billing configuration.

Responsibility:
    Provides the runtime ``BillingConfig`` through ``get_active_config()``.
    Services receive the returned object through constructor injection and
    never read files or environment variables themselves.

Resolution order:
    1. ``config_path`` argument
    2. ``BILLING_CONFIG`` environment variable
    3. the packaged ``sets/default.yaml``

Every successful call emits a ``billing_config_loaded`` log entry carrying
the config id, version and checksum.
"""

from __future__ import annotations

import os
from pathlib import Path

from billing_config.loader import compute_checksum, load_config, parse_config
from billing_config.schema import BillingConfig
from billing_kernel.logging_config import get_logger

logger = get_logger("config")

_DEFAULT_CONFIG_FILE = Path(__file__).parent / "sets" / "default.yaml"

CONFIG_ENV_VAR = "BILLING_CONFIG"


def get_active_config(config_path: Path | None = None) -> BillingConfig:
    """Load the active configuration."""
    if config_path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        config_path = Path(env_path) if env_path else _DEFAULT_CONFIG_FILE

    config = load_config(config_path)
    logger.info(
        "billing_config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": compute_checksum(config),
            "path": str(config_path),
        },
    )
    return config


__all__ = [
    "BillingConfig",
    "CONFIG_ENV_VAR",
    "compute_checksum",
    "get_active_config",
    "load_config",
    "parse_config",
]
