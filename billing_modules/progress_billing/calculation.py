"""
Progress Payment Calculations -- Pure Functions.

All functions are pure: no I/O, no side effects, no database.
They derive detail amounts and payment-level deductions from frozen inputs
and are idempotent (the same inputs always give the same figures).

Detail arithmetic is exact: quantities carry at most 4 fractional digits
and unit prices at most 2, so products never need rounding.  Only the
rate-derived deductions are rounded, once, to 2 places (ROUND_HALF_UP).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from billing_kernel.db.types import (
    MONEY_DISPLAY_PLACES,
    QUANTITY_DECIMAL_PLACES,
    at_least,
    round_money,
)

ZERO = Decimal("0")


@dataclass(frozen=True)
class DetailInput:
    """Quantities and unit price of one detail row."""
    boq_line_id: UUID
    previous_cumulative_quantity: Decimal
    current_cumulative_quantity: Decimal
    unit_price: Decimal


@dataclass(frozen=True)
class DetailFigures:
    boq_line_id: UUID
    period_quantity: Decimal
    period_amount: Decimal
    total_amount: Decimal


@dataclass(frozen=True)
class PaymentTerms:
    """Rates and flat adjustments applied on top of the gross work amount."""
    retention_rate: Decimal = ZERO
    withholding_tax_rate: Decimal = ZERO
    security_deposit_rate: Decimal = ZERO
    material_on_site_amount: Decimal = ZERO
    advance_deduction_amount: Decimal = ZERO
    advance_repayment_amount: Decimal = ZERO
    exchange_rate: Decimal | None = None


@dataclass(frozen=True)
class PaymentFigures:
    """Every derived figure of a progress payment."""
    details: tuple[DetailFigures, ...]
    gross_work_amount: Decimal
    cumulative_total_amount: Decimal
    period_delta_amount: Decimal
    retention_amount: Decimal
    withholding_tax_amount: Decimal
    security_deposit_amount: Decimal
    net_payable_amount: Decimal
    net_payable_reporting_amount: Decimal | None


def calculate_detail(detail: DetailInput) -> DetailFigures:
    """Period quantity, period amount and cumulative amount of one detail."""
    period_quantity = (
        detail.current_cumulative_quantity - detail.previous_cumulative_quantity
    )
    return DetailFigures(
        boq_line_id=detail.boq_line_id,
        period_quantity=at_least(period_quantity, QUANTITY_DECIMAL_PLACES),
        period_amount=at_least(period_quantity * detail.unit_price, MONEY_DISPLAY_PLACES),
        total_amount=at_least(
            detail.current_cumulative_quantity * detail.unit_price, MONEY_DISPLAY_PLACES
        ),
    )


def calculate_retention(gross: Decimal, rate: Decimal) -> Decimal:
    """Retention withheld from the gross work amount."""
    return round_money(gross * rate)


def calculate_withholding_tax(
    gross: Decimal,
    retention_amount: Decimal,
    withholding_tax_rate: Decimal,
) -> Decimal:
    """Withholding tax on the gross net of the (rounded) retention amount."""
    return round_money((gross - retention_amount) * withholding_tax_rate)


def calculate_security_deposit(gross: Decimal, rate: Decimal) -> Decimal:
    return round_money(gross * rate)


def calculate_net_payable(
    gross: Decimal,
    material_on_site: Decimal,
    retention: Decimal,
    withholding_tax: Decimal,
    advance_deduction: Decimal,
    security_deposit: Decimal,
    advance_repayment: Decimal,
) -> Decimal:
    """Net payable = gross + material on site - deductions + advance repayment."""
    net = (
        gross
        + material_on_site
        - retention
        - withholding_tax
        - advance_deduction
        - security_deposit
        + advance_repayment
    )
    return at_least(net, MONEY_DISPLAY_PLACES)


def calculate_payment(
    details: tuple[DetailInput, ...] | list[DetailInput],
    terms: PaymentTerms,
) -> PaymentFigures:
    """Run the full calculation for a payment.

    ``period_delta_amount`` equals ``gross_work_amount``: the cumulative
    total of this payment minus that of its baseline.
    """
    detail_figures = tuple(calculate_detail(d) for d in details)

    gross = at_least(sum((f.period_amount for f in detail_figures), ZERO), MONEY_DISPLAY_PLACES)
    cumulative = at_least(
        sum((f.total_amount for f in detail_figures), ZERO), MONEY_DISPLAY_PLACES
    )

    retention = calculate_retention(gross, terms.retention_rate)
    withholding = calculate_withholding_tax(
        gross, retention, terms.withholding_tax_rate
    )
    security_deposit = calculate_security_deposit(gross, terms.security_deposit_rate)
    net = calculate_net_payable(
        gross,
        terms.material_on_site_amount,
        retention,
        withholding,
        terms.advance_deduction_amount,
        security_deposit,
        terms.advance_repayment_amount,
    )

    reporting = None
    if terms.exchange_rate is not None:
        reporting = round_money(net * terms.exchange_rate)

    return PaymentFigures(
        details=detail_figures,
        gross_work_amount=gross,
        cumulative_total_amount=cumulative,
        period_delta_amount=gross,
        retention_amount=retention,
        withholding_tax_amount=withholding,
        security_deposit_amount=security_deposit,
        net_payable_amount=net,
        net_payable_reporting_amount=reporting,
    )
