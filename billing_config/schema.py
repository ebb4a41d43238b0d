"""
Configuration schema (``billing_config.schema``).

Frozen dataclass produced by the loader.  Rates are fractions, never
percentages; the loader parses them from strings to keep them Decimal.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class BillingConfig:
    """Runtime configuration for the progress billing engine."""
    config_id: str = "default"
    version: int = 1
    reporting_currency: str = "TRY"
    port_timeout_seconds: float = 10.0
    retention_due_years: int = 1
    default_security_deposit_rate: Decimal = Decimal("0")
    retention_memo: str = "Retention Held"
