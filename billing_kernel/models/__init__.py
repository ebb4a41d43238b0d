"""Domain models for the billing kernel."""

from billing_kernel.models.exchange_rate import ExchangeRate
from billing_kernel.services.sequence_service import SequenceCounter

__all__ = [
    "ExchangeRate",
    "SequenceCounter",
]
