"""
Outbound ports of the progress billing engine.

Contract:
    CurrencyRateLookup.get_rate() answers with a RateLookupResult (a rate or
    an error message) instead of raising for "no rate".
    InvoicePort.create_invoice() and ReceivablePort.create_receivable()
    return the id of the document they created, or raise.

Every port call made by ``ProgressPaymentService`` goes through
``call_port``, which bounds it with a timeout and maps failures onto
``DownstreamFailureError`` / ``DownstreamTimeoutError``.

Architecture: billing_modules/progress_billing.  Implementations live in
other subsystems; ``ExchangeRateTableLookup`` is the in-process adapter over
the kernel ``exchange_rates`` table.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Protocol, TypeVar, runtime_checkable
from uuid import UUID

from sqlalchemy.orm import Session

from billing_kernel.exceptions import DownstreamFailureError, DownstreamTimeoutError
from billing_kernel.logging_config import get_logger
from billing_kernel.selectors.exchange_rate_selector import ExchangeRateSelector

logger = get_logger("modules.progress_billing.ports")

T = TypeVar("T")


@dataclass(frozen=True)
class RateLookupResult:
    """Outcome of a currency rate lookup: either ``rate`` or ``error`` is set."""

    rate: Decimal | None = None
    error: str | None = None

    @property
    def is_ok(self) -> bool:
        return self.rate is not None and self.error is None

    @classmethod
    def ok(cls, rate: Decimal) -> RateLookupResult:
        return cls(rate=rate)

    @classmethod
    def failure(cls, error: str) -> RateLookupResult:
        return cls(error=error)


@runtime_checkable
class CurrencyRateLookup(Protocol):
    """Converts between currencies as of a date."""

    def get_rate(
        self,
        tenant_id: UUID,
        from_currency: str,
        to_currency: str,
        as_of: date,
    ) -> RateLookupResult:
        ...


@runtime_checkable
class InvoicePort(Protocol):
    """Sales-side invoice creation."""

    def create_invoice(
        self,
        tenant_id: UUID,
        counterparty_id: UUID,
        amount: Decimal,
        description: str,
        currency: str,
    ) -> UUID:
        ...


@runtime_checkable
class ReceivablePort(Protocol):
    """Finance-side receivable creation (used for retention)."""

    def create_receivable(
        self,
        tenant_id: UUID,
        reference: str,
        counterparty_id: UUID,
        amount: Decimal,
        currency_code: str,
        issue_date: date,
        due_date: date,
        source_payment_id: UUID,
        memo: str,
    ) -> UUID:
        ...


def call_port(
    port: str,
    fn: Callable[..., T],
    *args: Any,
    timeout: float,
    **kwargs: Any,
) -> T:
    """
    Invoke a port callable with a hard timeout.

    Raises:
        DownstreamTimeoutError: the call did not return within ``timeout``.
        DownstreamFailureError: the call raised.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"port-{port}")
    try:
        future = executor.submit(fn, *args, **kwargs)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError as exc:
            logger.warning(
                "port_call_timed_out",
                extra={"port": port, "timeout_seconds": timeout},
            )
            raise DownstreamTimeoutError(port, timeout) from exc
        except Exception as exc:
            logger.warning(
                "port_call_failed",
                extra={"port": port, "error": f"{type(exc).__name__}: {exc}"},
            )
            raise DownstreamFailureError(port, f"{type(exc).__name__}: {exc}") from exc
    finally:
        # A timed-out call keeps running in its thread; do not wait for it.
        executor.shutdown(wait=False, cancel_futures=True)


class ExchangeRateTableLookup:
    """
    ``CurrencyRateLookup`` over the kernel ``exchange_rates`` table.

    Answers with the latest rate effective on or before the as-of date.
    Give it a session of its own: lookups may run on a port worker thread.
    """

    def __init__(self, session: Session):
        self._selector = ExchangeRateSelector(session)

    def get_rate(
        self,
        tenant_id: UUID,
        from_currency: str,
        to_currency: str,
        as_of: date,
    ) -> RateLookupResult:
        rate = self._selector.rate_value(from_currency, to_currency, as_of)
        if rate is None:
            return RateLookupResult.failure(
                f"no {from_currency}->{to_currency} rate effective on or before {as_of}"
            )
        return RateLookupResult.ok(rate)
