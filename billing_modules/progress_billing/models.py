"""
Progress Billing Domain Models (``billing_modules.progress_billing.models``).

Responsibility
--------------
Frozen dataclass value objects for the nouns of progress billing: payment
summaries, full payment documents with their detail lines, and the
per-project billing roll-up.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.  Returned by
``ProgressPaymentService``; built from ORM rows via ``to_summary`` /
``to_document``.

Invariants enforced
-------------------
* All models are ``frozen=True`` (immutable after construction).
* All quantities, prices and amounts are ``Decimal`` -- NEVER ``float``.
* ``PaymentDocument.details`` follows BoQ insertion order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class PaymentStatus(str, Enum):
    """Lifecycle state of a progress payment."""
    DRAFT = "draft"
    APPROVED = "approved"
    INVOICED = "invoiced"  # declared, no transition leads here yet


@dataclass(frozen=True)
class PaymentSummary:
    """One row of ``list_payments``."""
    id: UUID
    project_id: UUID
    payment_no: int
    date: date
    period_start: date
    period_end: date
    gross_work_amount: Decimal
    net_payable_amount: Decimal
    status: PaymentStatus
    currency: str | None = None
    is_expense: bool = False


@dataclass(frozen=True)
class PaymentDetailLine:
    """Certified quantities and amounts of one BoQ line in one payment."""
    id: UUID
    boq_line_id: UUID
    item_code: str
    description: str
    unit_of_measure: str
    previous_cumulative_quantity: Decimal
    current_cumulative_quantity: Decimal
    period_quantity: Decimal
    unit_price: Decimal
    period_amount: Decimal
    total_amount: Decimal


@dataclass(frozen=True)
class PaymentDocument:
    """A progress payment with its figures, linkage and detail lines."""
    id: UUID
    tenant_id: UUID
    project_id: UUID
    payment_no: int
    date: date
    period_start: date
    period_end: date
    status: PaymentStatus
    is_expense: bool
    previous_cumulative_amount: Decimal
    gross_work_amount: Decimal
    material_on_site_amount: Decimal
    cumulative_total_amount: Decimal
    period_delta_amount: Decimal
    retention_rate: Decimal
    retention_amount: Decimal
    withholding_tax_rate: Decimal
    withholding_tax_amount: Decimal
    advance_deduction_amount: Decimal
    security_deposit_rate: Decimal
    security_deposit_amount: Decimal
    advance_repayment_amount: Decimal
    net_payable_amount: Decimal
    currency: str | None = None
    exchange_rate: Decimal | None = None
    net_payable_reporting_amount: Decimal | None = None
    invoice_id: UUID | None = None
    retention_receivable_id: UUID | None = None
    approved_at: datetime | None = None
    details: tuple[PaymentDetailLine, ...] = field(default_factory=tuple)

    @property
    def is_draft(self) -> bool:
        return self.status == PaymentStatus.DRAFT


@dataclass(frozen=True)
class ProjectBillingSummary:
    """
    Billing position of a project across its approved payments.

    ``cumulative_certified_amount`` is the cumulative total of the latest
    approved payment; ``completion_ratio`` relates it to the contract amount.
    """
    project_id: UUID
    currency: str | None
    contract_amount: Decimal
    approved_payment_count: int
    draft_payment_count: int
    billed_amount: Decimal
    retention_held: Decimal
    withholding_tax_total: Decimal
    cumulative_certified_amount: Decimal
    completion_ratio: Decimal
