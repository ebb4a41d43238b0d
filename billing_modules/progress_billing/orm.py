"""
SQLAlchemy ORM persistence models for the Progress Billing module.

Responsibility
--------------
Database-backed persistence for progress payments (the periodic billing
documents of a project) and their per-BoQ-line detail rows.

Architecture position
---------------------
**Modules layer** -- ORM models consumed by ``ProgressPaymentService`` and
``PaymentSequencer``.  Inherits from ``TrackedBase`` (kernel db layer).

Invariants enforced
-------------------
* ``(project_id, payment_no)`` is unique -- backs the locked-counter
  numbering against concurrent creation.
* Detail rows are owned by their payment (``cascade="all, delete-orphan"``)
  and reference BoQ lines without owning them.
* All monetary fields use ``Decimal`` (Numeric(38,9)); the exchange rate
  uses ``Rate`` (Numeric(38,18)).
* ``status`` stored as String(20) for readability and portability.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_kernel.db.base import TrackedBase
from billing_modules.progress_billing.calculation import (
    DetailInput,
    PaymentFigures,
    PaymentTerms,
)
from billing_modules.progress_billing.models import PaymentStatus

PAYMENT_NO_CONSTRAINT = "uq_progress_payment_no"

# ---------------------------------------------------------------------------
# ProgressPaymentModel
# ---------------------------------------------------------------------------


class ProgressPaymentModel(TrackedBase):
    """
    A progress payment (hakediş) of a project.

    Maps to ``PaymentDocument`` / ``PaymentSummary`` in
    ``billing_modules.progress_billing.models``.

    Guarantees:
        - ``status`` follows draft -> approved.
        - Figures change only while ``status == "draft"``.
    """

    __tablename__ = "progress_payments"

    __table_args__ = (
        UniqueConstraint("project_id", "payment_no", name=PAYMENT_NO_CONSTRAINT),
        CheckConstraint("payment_no > 0", name="ck_progress_payment_no_positive"),
        Index("idx_progress_payment_tenant_project", "tenant_id", "project_id"),
        Index("idx_progress_payment_status", "status"),
    )

    tenant_id: Mapped[UUID]
    project_id: Mapped[UUID] = mapped_column(ForeignKey("boq_projects.id"), nullable=False)
    payment_no: Mapped[int] = mapped_column(nullable=False)
    payment_date: Mapped[date] = mapped_column("date", Date, nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    previous_cumulative_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    gross_work_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    material_on_site_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    cumulative_total_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    period_delta_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    retention_rate: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    retention_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    withholding_tax_rate: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    withholding_tax_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    advance_deduction_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    security_deposit_rate: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    security_deposit_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    advance_repayment_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    net_payable_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    is_expense: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.DRAFT.value
    )
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    exchange_rate: Mapped[Decimal | None] = mapped_column(Numeric(38, 18), nullable=True)
    net_payable_reporting_amount: Mapped[Decimal | None]

    invoice_id: Mapped[UUID | None]
    retention_receivable_id: Mapped[UUID | None]
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    details: Mapped[list["ProgressPaymentDetailModel"]] = relationship(
        "ProgressPaymentDetailModel",
        back_populates="payment",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ProgressPaymentDetailModel.position",
    )

    # -- calculation plumbing -------------------------------------------------

    def detail_inputs(self) -> tuple[DetailInput, ...]:
        return tuple(
            DetailInput(
                boq_line_id=d.boq_line_id,
                previous_cumulative_quantity=d.previous_cumulative_quantity,
                current_cumulative_quantity=d.current_cumulative_quantity,
                unit_price=d.unit_price,
            )
            for d in self.details
        )

    def terms(self, exchange_rate: Decimal | None = None) -> PaymentTerms:
        return PaymentTerms(
            retention_rate=self.retention_rate,
            withholding_tax_rate=self.withholding_tax_rate,
            security_deposit_rate=self.security_deposit_rate,
            material_on_site_amount=self.material_on_site_amount,
            advance_deduction_amount=self.advance_deduction_amount,
            advance_repayment_amount=self.advance_repayment_amount,
            exchange_rate=exchange_rate if exchange_rate is not None else self.exchange_rate,
        )

    def apply_figures(self, figures: PaymentFigures) -> None:
        """Copy computed figures onto this row and its details."""
        by_line = {f.boq_line_id: f for f in figures.details}
        for detail in self.details:
            f = by_line[detail.boq_line_id]
            detail.period_quantity = f.period_quantity
            detail.period_amount = f.period_amount
            detail.total_amount = f.total_amount

        self.gross_work_amount = figures.gross_work_amount
        self.cumulative_total_amount = figures.cumulative_total_amount
        self.period_delta_amount = figures.period_delta_amount
        self.retention_amount = figures.retention_amount
        self.withholding_tax_amount = figures.withholding_tax_amount
        self.security_deposit_amount = figures.security_deposit_amount
        self.net_payable_amount = figures.net_payable_amount
        self.net_payable_reporting_amount = figures.net_payable_reporting_amount

    # -- DTO conversion -------------------------------------------------------

    def to_summary(self):
        from billing_modules.progress_billing.models import PaymentSummary

        return PaymentSummary(
            id=self.id,
            project_id=self.project_id,
            payment_no=self.payment_no,
            date=self.payment_date,
            period_start=self.period_start,
            period_end=self.period_end,
            gross_work_amount=self.gross_work_amount,
            net_payable_amount=self.net_payable_amount,
            status=PaymentStatus(self.status),
            currency=self.currency,
            is_expense=self.is_expense,
        )

    def to_document(self):
        from billing_modules.progress_billing.models import PaymentDocument

        return PaymentDocument(
            id=self.id,
            tenant_id=self.tenant_id,
            project_id=self.project_id,
            payment_no=self.payment_no,
            date=self.payment_date,
            period_start=self.period_start,
            period_end=self.period_end,
            status=PaymentStatus(self.status),
            is_expense=self.is_expense,
            previous_cumulative_amount=self.previous_cumulative_amount,
            gross_work_amount=self.gross_work_amount,
            material_on_site_amount=self.material_on_site_amount,
            cumulative_total_amount=self.cumulative_total_amount,
            period_delta_amount=self.period_delta_amount,
            retention_rate=self.retention_rate,
            retention_amount=self.retention_amount,
            withholding_tax_rate=self.withholding_tax_rate,
            withholding_tax_amount=self.withholding_tax_amount,
            advance_deduction_amount=self.advance_deduction_amount,
            security_deposit_rate=self.security_deposit_rate,
            security_deposit_amount=self.security_deposit_amount,
            advance_repayment_amount=self.advance_repayment_amount,
            net_payable_amount=self.net_payable_amount,
            currency=self.currency,
            exchange_rate=self.exchange_rate,
            net_payable_reporting_amount=self.net_payable_reporting_amount,
            invoice_id=self.invoice_id,
            retention_receivable_id=self.retention_receivable_id,
            approved_at=self.approved_at,
            details=tuple(d.to_dto() for d in self.details),
        )

    def __repr__(self) -> str:
        return f"<ProgressPaymentModel #{self.payment_no} [{self.status}]>"


# ---------------------------------------------------------------------------
# ProgressPaymentDetailModel
# ---------------------------------------------------------------------------


class ProgressPaymentDetailModel(TrackedBase):
    """
    Certified quantities of one BoQ line within one progress payment.

    Maps to ``PaymentDetailLine``.  ``unit_price`` is a snapshot of the BoQ
    line's contract unit price taken when the payment was created.
    """

    __tablename__ = "progress_payment_details"

    __table_args__ = (
        UniqueConstraint("payment_id", "boq_line_id", name="uq_progress_detail_line"),
        Index("idx_progress_detail_payment", "payment_id"),
    )

    payment_id: Mapped[UUID] = mapped_column(
        ForeignKey("progress_payments.id"), nullable=False
    )
    boq_line_id: Mapped[UUID] = mapped_column(ForeignKey("boq_lines.id"), nullable=False)
    position: Mapped[int] = mapped_column(nullable=False)
    previous_cumulative_quantity: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    current_cumulative_quantity: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    unit_price: Mapped[Decimal]
    period_quantity: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    period_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    payment: Mapped["ProgressPaymentModel"] = relationship(
        "ProgressPaymentModel",
        back_populates="details",
    )
    boq_line: Mapped["BoQLineModel"] = relationship("BoQLineModel", lazy="joined")

    def to_dto(self):
        from billing_modules.progress_billing.models import PaymentDetailLine

        return PaymentDetailLine(
            id=self.id,
            boq_line_id=self.boq_line_id,
            item_code=self.boq_line.item_code,
            description=self.boq_line.description,
            unit_of_measure=self.boq_line.unit_of_measure,
            previous_cumulative_quantity=self.previous_cumulative_quantity,
            current_cumulative_quantity=self.current_cumulative_quantity,
            period_quantity=self.period_quantity,
            unit_price=self.unit_price,
            period_amount=self.period_amount,
            total_amount=self.total_amount,
        )

    def __repr__(self) -> str:
        return (
            f"<ProgressPaymentDetailModel line={self.boq_line_id} "
            f"qty={self.current_cumulative_quantity}>"
        )
