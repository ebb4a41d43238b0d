"""
Lightweight domain validation helpers.

Pure checks with no I/O.  Used at service boundaries to enforce Decimal
inputs, non-negative amounts, fractional rates and quantity precision.
Every failure raises ``ValidationError`` carrying the offending field.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from billing_kernel.db.types import QUANTITY_DECIMAL_PLACES, fractional_digits
from billing_kernel.exceptions import ValidationError


def require_decimal(value: Any, name: str = "amount") -> Decimal:
    """Reject anything that is not a finite Decimal (floats included)."""
    if not isinstance(value, Decimal) or not value.is_finite():
        raise ValidationError(name, value, "must be a finite Decimal")
    return value


def require_non_negative(value: Any, name: str = "amount") -> Decimal:
    require_decimal(value, name)
    if value < 0:
        raise ValidationError(name, value, "must be >= 0")
    return value


def require_fraction(value: Any, name: str = "rate") -> Decimal:
    """Rates are fractions in [0, 1], never percentages."""
    require_decimal(value, name)
    if value < 0 or value > 1:
        raise ValidationError(name, value, "must be a fraction in [0, 1]")
    return value


def require_quantity(value: Any, name: str = "quantity") -> Decimal:
    """Non-negative Decimal with at most QUANTITY_DECIMAL_PLACES digits."""
    require_non_negative(value, name)
    if fractional_digits(value) > QUANTITY_DECIMAL_PLACES:
        raise ValidationError(
            name, value, f"at most {QUANTITY_DECIMAL_PLACES} fractional digits"
        )
    return value
