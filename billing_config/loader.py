"""
Configuration Loader (``billing_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the typed, frozen
``BillingConfig`` dataclass.  Callers use ``billing_config.get_active_config()``
rather than this module directly.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Out-of-range values  -> ``ValueError`` with the offending key.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from billing_config.schema import BillingConfig
from billing_kernel.db.types import InvalidCurrencyError, validate_currency


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, key: str) -> Decimal:
    # YAML floats are rejected; rates must be quoted strings or ints
    if isinstance(value, float):
        raise ValueError(f"{key}: write decimal values as quoted strings, got float {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"{key}: not a decimal: {value!r}") from exc


def parse_config(data: dict[str, Any]) -> BillingConfig:
    """Parse a ``BillingConfig`` from a dict, applying defaults for absent keys."""
    defaults = BillingConfig()

    try:
        reporting_currency = validate_currency(
            data.get("reporting_currency", defaults.reporting_currency)
        )
    except InvalidCurrencyError as exc:
        raise ValueError(f"reporting_currency: {exc}") from exc

    timeout = float(data.get("port_timeout_seconds", defaults.port_timeout_seconds))
    if timeout <= 0:
        raise ValueError(f"port_timeout_seconds must be > 0, got {timeout}")

    due_years = int(data.get("retention_due_years", defaults.retention_due_years))
    if due_years < 0:
        raise ValueError(f"retention_due_years must be >= 0, got {due_years}")

    deposit_rate = parse_decimal(
        data.get("default_security_deposit_rate", defaults.default_security_deposit_rate),
        "default_security_deposit_rate",
    )
    if deposit_rate < 0 or deposit_rate > 1:
        raise ValueError(
            f"default_security_deposit_rate must be a fraction in [0, 1], got {deposit_rate}"
        )

    return BillingConfig(
        config_id=str(data.get("config_id", defaults.config_id)),
        version=int(data.get("version", defaults.version)),
        reporting_currency=reporting_currency,
        port_timeout_seconds=timeout,
        retention_due_years=due_years,
        default_security_deposit_rate=deposit_rate,
        retention_memo=str(data.get("retention_memo", defaults.retention_memo)),
    )


def load_config(path: Path) -> BillingConfig:
    """Load and parse a configuration file."""
    return parse_config(load_yaml_file(path))


def compute_checksum(config: BillingConfig) -> str:
    """Deterministic SHA-256 of a configuration, for change detection."""
    payload = {
        "config_id": config.config_id,
        "version": config.version,
        "reporting_currency": config.reporting_currency,
        "port_timeout_seconds": config.port_timeout_seconds,
        "retention_due_years": config.retention_due_years,
        "default_security_deposit_rate": str(config.default_security_deposit_rate),
        "retention_memo": config.retention_memo,
    }
    canonical = json.dumps(payload, sort_keys=True)
    return hashlib.sha256(canonical.encode()).hexdigest()
