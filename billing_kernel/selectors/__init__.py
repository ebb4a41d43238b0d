"""Read-only selectors over kernel tables."""

from billing_kernel.selectors.base import BaseSelector
from billing_kernel.selectors.exchange_rate_selector import ExchangeRateSelector

__all__ = ["BaseSelector", "ExchangeRateSelector"]
