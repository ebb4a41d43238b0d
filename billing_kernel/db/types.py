"""
Module: billing_kernel.db.types
Responsibility: Precision constants and helpers for financial figures.
    Centralizes rounding, precision checks and currency validation so that
    every model and service treats amounts the same way.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - ISO 4217 enforcement.  validate_currency() rejects any string that is
      not a recognized 3-character ISO 4217 currency code.
    - round_money() is the ONLY sanctioned rounding function for monetary
      figures.  Amounts carry at least MONEY_DISPLAY_PLACES fractional
      digits; quantities and rates at least QUANTITY_DECIMAL_PLACES.
    - No floats.  All amounts, quantities and rates are Decimal.

Failure modes:
    - InvalidCurrencyError on invalid ISO 4217 code.
"""

from decimal import ROUND_HALF_UP, Decimal

MONEY_DISPLAY_PLACES = 2
QUANTITY_DECIMAL_PLACES = 4
DEFAULT_ROUNDING = ROUND_HALF_UP


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DISPLAY_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the specified decimal places.

    This is the ONLY sanctioned rounding function for monetary values.
    Callers round once, at the final figure, never on intermediates.
    """
    quantize_str = "0." + "0" * decimal_places
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def at_least(value: Decimal, decimal_places: int) -> Decimal:
    """
    Pad a Decimal to at least ``decimal_places`` fractional digits.

    Never rounds: a value that already carries more digits is returned
    unchanged, so exact products keep their full precision.
    """
    value = Decimal(value)
    if value.as_tuple().exponent > -decimal_places:
        return value.quantize(Decimal(1).scaleb(-decimal_places))
    return value


def fractional_digits(value: Decimal) -> int:
    """Number of significant fractional digits in ``value``."""
    normalized = Decimal(value).normalize()
    exponent = normalized.as_tuple().exponent
    return -exponent if exponent < 0 else 0


# ISO 4217 Currency Codes
ISO_4217_CURRENCIES: set[str] = {
    "USD", "EUR", "GBP", "JPY", "CHF", "CAD", "AUD", "NZD",
    "AED", "AFN", "ALL", "AMD", "ANG", "AOA", "ARS", "AWG", "AZN",
    "BAM", "BBD", "BDT", "BGN", "BHD", "BIF", "BMD", "BND", "BOB", "BRL", "BSD", "BTN", "BWP", "BYN", "BZD",
    "CDF", "CLP", "CNY", "COP", "CRC", "CUP", "CVE", "CZK",
    "DJF", "DKK", "DOP", "DZD",
    "EGP", "ERN", "ETB",
    "FJD", "FKP",
    "GEL", "GHS", "GIP", "GMD", "GNF", "GTQ", "GYD",
    "HKD", "HNL", "HTG", "HUF",
    "IDR", "ILS", "INR", "IQD", "IRR", "ISK",
    "JMD", "JOD",
    "KES", "KGS", "KHR", "KMF", "KPW", "KRW", "KWD", "KYD", "KZT",
    "LAK", "LBP", "LKR", "LRD", "LSL", "LYD",
    "MAD", "MDL", "MGA", "MKD", "MMK", "MNT", "MOP", "MRU", "MUR", "MVR", "MWK", "MXN", "MYR", "MZN",
    "NAD", "NGN", "NIO", "NOK", "NPR",
    "OMR",
    "PAB", "PEN", "PGK", "PHP", "PKR", "PLN", "PYG",
    "QAR",
    "RON", "RSD", "RUB", "RWF",
    "SAR", "SBD", "SCR", "SDG", "SEK", "SGD", "SHP", "SLE", "SOS", "SRD", "SSP", "STN", "SVC", "SYP", "SZL",
    "THB", "TJS", "TMT", "TND", "TOP", "TRY", "TTD", "TWD", "TZS",
    "UAH", "UGX", "UYU", "UZS",
    "VES", "VND", "VUV",
    "WST",
    "XAF", "XCD", "XOF", "XPF",
    "YER",
    "ZAR", "ZMW", "ZWL",
}


class InvalidCurrencyError(ValueError):
    """Raised when an invalid ISO 4217 currency code is provided."""

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid ISO 4217 currency code: '{currency}'")


def validate_currency(currency: str) -> str:
    """
    Validate that a currency code is a valid ISO 4217 code.

    Returns:
        The validated currency code (uppercase).

    Raises:
        InvalidCurrencyError: If the currency code is not valid.
    """
    if not currency or not isinstance(currency, str):
        raise InvalidCurrencyError(str(currency))

    normalized = currency.upper().strip()

    if normalized not in ISO_4217_CURRENCIES:
        raise InvalidCurrencyError(currency)

    return normalized
