"""
Module: billing_kernel.selectors.exchange_rate_selector
Responsibility: Read-only lookup of the exchange rate in force on a date.
Architecture position: Kernel > Selectors.

Lookup rule: the most recent ``ExchangeRate`` row for the directional pair
whose ``effective_at`` falls on or before the end of the as-of day (UTC).
A pair of identical currencies always resolves to exactly 1 without a query.
"""

from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select

from billing_kernel.models.exchange_rate import ExchangeRate
from billing_kernel.selectors.base import BaseSelector


class ExchangeRateSelector(BaseSelector[ExchangeRate]):
    """Selector for point-in-time exchange rates."""

    def rate_as_of(
        self,
        from_currency: str,
        to_currency: str,
        as_of: date,
    ) -> ExchangeRate | None:
        """Most recent rate effective on or before ``as_of``, or None."""
        cutoff = datetime.combine(as_of + timedelta(days=1), time.min, tzinfo=timezone.utc)
        return self.session.execute(
            select(ExchangeRate)
            .where(
                ExchangeRate.from_currency == from_currency,
                ExchangeRate.to_currency == to_currency,
                ExchangeRate.effective_at < cutoff,
            )
            .order_by(ExchangeRate.effective_at.desc())
            .limit(1)
        ).scalar_one_or_none()

    def rate_value(
        self,
        from_currency: str,
        to_currency: str,
        as_of: date,
    ) -> Decimal | None:
        if from_currency == to_currency:
            return Decimal("1")
        row = self.rate_as_of(from_currency, to_currency, as_of)
        return row.rate if row is not None else None
