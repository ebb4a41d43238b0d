"""
Progress Billing Module Service (``billing_modules.progress_billing.service``).

Responsibility
--------------
Orchestrates the progress payment lifecycle -- creation from a project's
bill of quantities, cumulative quantity updates, adjustment edits, approval
with downstream invoice and retention receivable creation, and the project
billing roll-up -- by delegating arithmetic to ``calculation.py``, numbering
and baselines to ``PaymentSequencer``, and lifecycle rules to
``workflows.py``.

Architecture position
---------------------
**Modules layer** -- thin facade.  ``ProgressPaymentService`` is the sole
public entry point for progress billing operations.  Reaches other
subsystems only through the injected ports.

Invariants enforced
-------------------
* Each public mutating method owns the transaction boundary
  (``commit`` on success, ``rollback`` and re-raise on exception).
* Payment numbers are strictly increasing per project, from 1, with no
  gaps or duplicates.
* Figures change only while the payment is ``draft``; every change re-runs
  the calculation before it is persisted.
* Approval either completes with both downstream documents linked or
  leaves the payment ``draft`` with nothing persisted.
* A payment is approved only while its previous quantities equal the
  latest approved payment's cumulative quantities, so no work is billed
  twice.
* All monetary calculations use ``Decimal`` -- NEVER ``float``.

Failure modes
-------------
* Missing project / payment / detail  -> ``NotFoundError`` subclass.
* Non-draft payment  -> ``PaymentNotDraftError``.
* Project without customer or currency  -> ``ApprovalGuardError``.
* Draft based on an outdated approved payment  -> ``StaleBaselineError``.
* Port failure or timeout  -> ``DownstreamFailureError``; session rolled back.
* No contract -> reporting rate  -> ``ExchangeRateNotFoundError``.
* Numbering collision on flush  -> ``PaymentNumberConflictError`` (retry).

Audit relevance
---------------
Structured log events for creation, updates, approval and rollback carry
project, payment and downstream document ids.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from billing_config import BillingConfig, get_active_config
from billing_kernel.db.types import round_money
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.validation import (
    require_fraction,
    require_non_negative,
    require_quantity,
)
from billing_kernel.exceptions import (
    ApprovalGuardError,
    DownstreamFailureError,
    ExchangeRateNotFoundError,
    PaymentDetailNotFoundError,
    PaymentNotDraftError,
    PaymentNotFoundError,
    PaymentNumberConflictError,
    ProjectNotFoundError,
    StaleBaselineError,
    ValidationError,
)
from billing_kernel.logging_config import LogContext, get_logger
from billing_modules.boq.models import Project
from billing_modules.boq.orm import ProjectModel
from billing_modules.progress_billing.calculation import calculate_payment
from billing_modules.progress_billing.models import (
    PaymentDocument,
    PaymentStatus,
    PaymentSummary,
    ProjectBillingSummary,
)
from billing_modules.progress_billing.orm import (
    PAYMENT_NO_CONSTRAINT,
    ProgressPaymentModel,
)
from billing_modules.progress_billing.ports import (
    CurrencyRateLookup,
    InvoicePort,
    ReceivablePort,
    call_port,
)
from billing_modules.progress_billing.sequencer import PaymentSequencer
from billing_modules.progress_billing.workflows import (
    APPROVE_ACTION,
    EDITABLE_STATES,
    PROGRESS_PAYMENT_WORKFLOW,
    evaluate_guard,
)

logger = get_logger("modules.progress_billing.service")


def add_years(start: date, years: int) -> date:
    """Same calendar day ``years`` later; Feb 29 falls back to Feb 28."""
    try:
        return start.replace(year=start.year + years)
    except ValueError:
        return start.replace(year=start.year + years, day=28)


def invoice_description(payment_no: int, project_code: str) -> str:
    return f"Progress Payment #{payment_no} for Project {project_code}"


def retention_reference(project_code: str, payment_no: int) -> str:
    return f"RET-{project_code}-{payment_no}"


def is_payment_number_conflict(exc: IntegrityError) -> bool:
    """True when ``exc`` is the ``(project_id, payment_no)`` unique violation.

    PostgreSQL names the constraint; SQLite names the columns.
    """
    message = str(exc.orig)
    return (
        PAYMENT_NO_CONSTRAINT in message
        or "progress_payments.project_id, progress_payments.payment_no" in message
    )


class ProgressPaymentService:
    """
    Orchestrates progress payments through the calculation engine and ports.

    Contract
    --------
    * Read methods return frozen DTOs and never write.
    * ``create_payment`` / ``update_adjustments`` / ``refresh_baseline``
      return the persisted ``PaymentDocument``; ``update_detail_quantity``
      and ``approve`` return None.

    Guarantees
    ----------
    * Clock is injectable for deterministic testing.
    * Every port call is bounded by ``config.port_timeout_seconds``.

    Non-goals
    ---------
    * Does NOT create or edit BoQ lines (``BoQRegistry``).
    * Does NOT delete or renumber payments.
    """

    def __init__(
        self,
        session: Session,
        invoice_port: InvoicePort,
        receivable_port: ReceivablePort,
        rate_lookup: CurrencyRateLookup,
        clock: Clock | None = None,
        config: BillingConfig | None = None,
    ):
        self._session = session
        self._invoice_port = invoice_port
        self._receivable_port = receivable_port
        self._rate_lookup = rate_lookup
        self._clock = clock or SystemClock()
        self._config = config or get_active_config()
        self._sequencer = PaymentSequencer(session)

    # =========================================================================
    # Queries
    # =========================================================================

    def list_payments(self, tenant_id: UUID, project_id: UUID) -> list[PaymentSummary]:
        """Payments of a project in ascending payment number."""
        rows = self._session.execute(
            select(ProgressPaymentModel)
            .where(
                ProgressPaymentModel.tenant_id == tenant_id,
                ProgressPaymentModel.project_id == project_id,
            )
            .order_by(ProgressPaymentModel.payment_no)
        ).scalars()
        return [row.to_summary() for row in rows]

    def get_payment(self, tenant_id: UUID, payment_id: UUID) -> PaymentDocument:
        return self._payment_model(tenant_id, payment_id).to_document()

    def project_billing_summary(
        self,
        tenant_id: UUID,
        project_id: UUID,
    ) -> ProjectBillingSummary:
        """Contract, billed and retained amounts across approved payments."""
        project = self._project_model(tenant_id, project_id)
        payments = self._session.execute(
            select(ProgressPaymentModel)
            .where(
                ProgressPaymentModel.tenant_id == tenant_id,
                ProgressPaymentModel.project_id == project_id,
            )
            .order_by(ProgressPaymentModel.payment_no)
        ).scalars().all()

        approved = [p for p in payments if p.status == PaymentStatus.APPROVED.value]
        drafts = [p for p in payments if p.status == PaymentStatus.DRAFT.value]
        billed = sum((p.net_payable_amount for p in approved), Decimal("0"))
        retention = sum((p.retention_amount for p in approved), Decimal("0"))
        withholding = sum((p.withholding_tax_amount for p in approved), Decimal("0"))
        certified = approved[-1].cumulative_total_amount if approved else Decimal("0")

        ratio = Decimal("0")
        if project.contract_amount > 0:
            ratio = round_money(certified / project.contract_amount, 4)

        return ProjectBillingSummary(
            project_id=project.id,
            currency=project.contract_currency,
            contract_amount=project.contract_amount,
            approved_payment_count=len(approved),
            draft_payment_count=len(drafts),
            billed_amount=round_money(billed),
            retention_held=round_money(retention),
            withholding_tax_total=round_money(withholding),
            cumulative_certified_amount=round_money(certified),
            completion_ratio=ratio,
        )

    # =========================================================================
    # Creation
    # =========================================================================

    def create_payment(
        self,
        tenant_id: UUID,
        user_id: UUID,
        project_id: UUID,
        date: date,
        period_start: date,
        period_end: date,
        material_on_site_amount: Decimal,
        advance_deduction_amount: Decimal,
        is_expense: bool,
        *,
        security_deposit_rate: Decimal | None = None,
        advance_repayment_amount: Decimal = Decimal("0"),
    ) -> PaymentDocument:
        """
        Create the next draft progress payment of a project.

        Every BoQ line gets a detail row starting at its cumulative quantity
        in the latest approved payment.
        """
        require_non_negative(material_on_site_amount, "material_on_site_amount")
        require_non_negative(advance_deduction_amount, "advance_deduction_amount")
        require_non_negative(advance_repayment_amount, "advance_repayment_amount")
        if security_deposit_rate is not None:
            require_fraction(security_deposit_rate, "security_deposit_rate")
        if period_end < period_start:
            raise ValidationError("period_end", period_end, "before period_start")

        with LogContext.bind(tenant_id=tenant_id, actor_id=user_id, project_id=project_id):
            logger.info(
                "progress_payment_create_started",
                extra={"project_id": str(project_id), "payment_date": date},
            )
            try:
                project_row = self._project_model(tenant_id, project_id)
                project = project_row.to_dto()
                exchange_rate = self._exchange_rate(tenant_id, project, date)

                if security_deposit_rate is None:
                    security_deposit_rate = (
                        project.default_security_deposit_rate
                        if project.default_security_deposit_rate is not None
                        else self._config.default_security_deposit_rate
                    )

                # Numbering locks the project counter before the baseline is read
                payment_no = self._sequencer.next_payment_no(project_id)
                baseline = self._sequencer.latest_approved(project_id)
                quantities = self._sequencer.baseline_quantities(baseline)
                lines = [line.to_dto() for line in project_row.lines]

                payment = ProgressPaymentModel(
                    id=uuid4(),
                    tenant_id=tenant_id,
                    project_id=project_id,
                    payment_no=payment_no,
                    payment_date=date,
                    period_start=period_start,
                    period_end=period_end,
                    previous_cumulative_amount=(
                        baseline.cumulative_total_amount if baseline else Decimal("0")
                    ),
                    material_on_site_amount=material_on_site_amount,
                    advance_deduction_amount=advance_deduction_amount,
                    advance_repayment_amount=advance_repayment_amount,
                    retention_rate=project.default_retention_rate,
                    withholding_tax_rate=project.default_withholding_tax_rate,
                    security_deposit_rate=security_deposit_rate,
                    is_expense=is_expense,
                    status=PROGRESS_PAYMENT_WORKFLOW.initial_state,
                    currency=project.contract_currency,
                    exchange_rate=exchange_rate,
                    created_by_id=user_id,
                )
                payment.details = self._sequencer.build_details(lines, quantities, user_id)
                payment.apply_figures(
                    calculate_payment(payment.detail_inputs(), payment.terms())
                )
                self._session.add(payment)
                try:
                    self._session.flush()
                except IntegrityError as exc:
                    if is_payment_number_conflict(exc):
                        raise PaymentNumberConflictError(str(project_id), payment_no) from exc
                    raise

                document = payment.to_document()
                self._session.commit()
            except Exception:
                self._session.rollback()
                logger.warning(
                    "progress_payment_create_rolled_back",
                    extra={"project_id": str(project_id)},
                )
                raise

            logger.info(
                "progress_payment_created",
                extra={
                    "project_id": str(project_id),
                    "payment_id": str(document.id),
                    "payment_no": document.payment_no,
                    "baseline_payment_no": baseline.payment_no if baseline else None,
                    "gross_work_amount": str(document.gross_work_amount),
                    "net_payable_amount": str(document.net_payable_amount),
                },
            )
            return document

    # =========================================================================
    # Draft edits
    # =========================================================================

    def update_detail_quantity(
        self,
        tenant_id: UUID,
        payment_id: UUID,
        detail_id: UUID,
        new_cumulative_quantity: Decimal,
        actor_id: UUID | None = None,
    ) -> None:
        """Set one detail's cumulative quantity and recalculate the payment."""
        require_quantity(new_cumulative_quantity, "new_cumulative_quantity")

        with LogContext.bind(tenant_id=tenant_id, actor_id=actor_id, payment_id=payment_id):
            try:
                payment = self._payment_model(tenant_id, payment_id)
                self._require_editable(payment, "update")

                detail = next((d for d in payment.details if d.id == detail_id), None)
                if detail is None:
                    raise PaymentDetailNotFoundError(str(payment_id), str(detail_id))
                if new_cumulative_quantity < detail.previous_cumulative_quantity:
                    raise ValidationError(
                        "new_cumulative_quantity",
                        new_cumulative_quantity,
                        f"below previous cumulative quantity "
                        f"{detail.previous_cumulative_quantity}",
                    )

                detail.current_cumulative_quantity = new_cumulative_quantity
                if actor_id is not None:
                    detail.updated_by_id = actor_id
                    payment.updated_by_id = actor_id
                payment.apply_figures(
                    calculate_payment(payment.detail_inputs(), payment.terms())
                )
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "progress_payment_detail_updated",
                extra={
                    "payment_id": str(payment_id),
                    "detail_id": str(detail_id),
                    "current_cumulative_quantity": str(new_cumulative_quantity),
                    "gross_work_amount": str(payment.gross_work_amount),
                },
            )

    def update_adjustments(
        self,
        tenant_id: UUID,
        payment_id: UUID,
        *,
        material_on_site_amount: Decimal | None = None,
        advance_deduction_amount: Decimal | None = None,
        advance_repayment_amount: Decimal | None = None,
        security_deposit_rate: Decimal | None = None,
        actor_id: UUID | None = None,
    ) -> PaymentDocument:
        """Change the flat adjustments of a draft payment and recalculate."""
        changes = {
            "material_on_site_amount": material_on_site_amount,
            "advance_deduction_amount": advance_deduction_amount,
            "advance_repayment_amount": advance_repayment_amount,
        }
        for name, value in changes.items():
            if value is not None:
                require_non_negative(value, name)
        if security_deposit_rate is not None:
            require_fraction(security_deposit_rate, "security_deposit_rate")
            changes["security_deposit_rate"] = security_deposit_rate

        with LogContext.bind(tenant_id=tenant_id, actor_id=actor_id, payment_id=payment_id):
            try:
                payment = self._payment_model(tenant_id, payment_id)
                self._require_editable(payment, "adjust")

                for name, value in changes.items():
                    if value is not None:
                        setattr(payment, name, value)
                if actor_id is not None:
                    payment.updated_by_id = actor_id
                payment.apply_figures(
                    calculate_payment(payment.detail_inputs(), payment.terms())
                )
                self._session.flush()
                document = payment.to_document()
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "progress_payment_adjusted",
                extra={
                    "payment_id": str(payment_id),
                    "changed": sorted(k for k, v in changes.items() if v is not None),
                    "net_payable_amount": str(document.net_payable_amount),
                },
            )
            return document

    def refresh_baseline(
        self,
        tenant_id: UUID,
        payment_id: UUID,
        actor_id: UUID | None = None,
    ) -> PaymentDocument:
        """
        Re-base a draft on the project's latest approved payment.

        Needed when another payment was approved after this draft was
        created.  Previous quantities and the previous cumulative amount are
        re-read from the latest approved payment; a current quantity below
        its new previous quantity is raised to it.  A draft numbered below
        the latest approved payment cannot be re-based.
        """
        with LogContext.bind(tenant_id=tenant_id, actor_id=actor_id, payment_id=payment_id):
            try:
                payment = self._payment_model(tenant_id, payment_id)
                self._sequencer.lock_project(payment.project_id)
                self._session.refresh(payment)
                self._require_editable(payment, "refresh baseline of")

                baseline = self._sequencer.latest_approved(payment.project_id)
                if baseline is not None and baseline.payment_no > payment.payment_no:
                    raise StaleBaselineError(
                        str(payment_id),
                        f"later payment #{baseline.payment_no} is already approved",
                    )

                quantities = self._sequencer.baseline_quantities(baseline)
                payment.previous_cumulative_amount = (
                    baseline.cumulative_total_amount if baseline else Decimal("0")
                )
                for detail in payment.details:
                    previous = quantities.get(detail.boq_line_id, Decimal("0"))
                    detail.previous_cumulative_quantity = previous
                    detail.current_cumulative_quantity = max(
                        detail.current_cumulative_quantity, previous
                    )
                    if actor_id is not None:
                        detail.updated_by_id = actor_id
                if actor_id is not None:
                    payment.updated_by_id = actor_id
                payment.apply_figures(
                    calculate_payment(payment.detail_inputs(), payment.terms())
                )
                self._session.flush()
                document = payment.to_document()
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "progress_payment_rebaselined",
                extra={
                    "payment_id": str(payment_id),
                    "baseline_payment_no": baseline.payment_no if baseline else None,
                    "gross_work_amount": str(document.gross_work_amount),
                },
            )
            return document

    # =========================================================================
    # Approval
    # =========================================================================

    def approve(
        self,
        tenant_id: UUID,
        payment_id: UUID,
        actor_id: UUID | None = None,
    ) -> None:
        """
        Approve a draft payment.

        Creates the customer invoice for the net payable and, when retention
        was withheld, a retention receivable due ``retention_due_years``
        after the payment date.  Any failure leaves the payment in draft.
        """
        with LogContext.bind(tenant_id=tenant_id, actor_id=actor_id, payment_id=payment_id):
            try:
                payment = self._payment_model(tenant_id, payment_id)
                self._sequencer.lock_project(payment.project_id)
                # Re-read under the lock; a concurrent approval may have committed
                self._session.refresh(payment)
                transition = PROGRESS_PAYMENT_WORKFLOW.find_transition(
                    payment.status, APPROVE_ACTION
                )
                if transition is None:
                    raise PaymentNotDraftError(str(payment_id), payment.status, APPROVE_ACTION)

                project = self._project_model(tenant_id, payment.project_id).to_dto()
                if transition.guard is not None:
                    reason = evaluate_guard(transition.guard, project)
                    if reason is not None:
                        raise ApprovalGuardError(str(payment_id), str(project.id), reason)

                stale = self._sequencer.stale_baseline_reason(payment)
                if stale is not None:
                    raise StaleBaselineError(str(payment_id), stale)

                timeout = self._config.port_timeout_seconds
                invoice_id = call_port(
                    "invoice",
                    self._invoice_port.create_invoice,
                    tenant_id,
                    project.customer_id,
                    round_money(payment.net_payable_amount),
                    invoice_description(payment.payment_no, project.code),
                    project.contract_currency,
                    timeout=timeout,
                )

                receivable_id = None
                if payment.retention_amount > 0:
                    receivable_id = call_port(
                        "receivable",
                        self._receivable_port.create_receivable,
                        tenant_id,
                        retention_reference(project.code, payment.payment_no),
                        project.customer_id,
                        round_money(payment.retention_amount),
                        project.contract_currency,
                        payment.payment_date,
                        add_years(payment.payment_date, self._config.retention_due_years),
                        payment.id,
                        self._config.retention_memo,
                        timeout=timeout,
                    )

                payment.status = transition.to_state
                payment.invoice_id = invoice_id
                payment.retention_receivable_id = receivable_id
                payment.approved_at = self._clock.now_utc()
                if actor_id is not None:
                    payment.updated_by_id = actor_id
                self._session.commit()
            except Exception as exc:
                self._session.rollback()
                logger.warning(
                    "progress_payment_rolled_back",
                    extra={
                        "payment_id": str(payment_id),
                        "action": APPROVE_ACTION,
                        "error_code": getattr(exc, "code", type(exc).__name__),
                    },
                )
                raise

            logger.info(
                "progress_payment_approved",
                extra={
                    "payment_id": str(payment_id),
                    "payment_no": payment.payment_no,
                    "invoice_id": str(invoice_id),
                    "retention_receivable_id": (
                        str(receivable_id) if receivable_id is not None else None
                    ),
                },
            )

    # =========================================================================
    # Internals
    # =========================================================================

    def _exchange_rate(
        self,
        tenant_id: UUID,
        project: Project,
        as_of: date,
    ) -> Decimal | None:
        """Contract -> reporting currency rate, or None without a contract currency."""
        source = project.contract_currency
        target = self._config.reporting_currency
        if source is None:
            return None
        if source == target:
            return Decimal("1")

        try:
            result = call_port(
                "currency_rate",
                self._rate_lookup.get_rate,
                tenant_id,
                source,
                target,
                as_of,
                timeout=self._config.port_timeout_seconds,
            )
        except DownstreamFailureError as exc:
            raise ExchangeRateNotFoundError(source, target, as_of, exc.reason) from exc

        if not result.is_ok:
            raise ExchangeRateNotFoundError(source, target, as_of, result.error)
        return result.rate

    def _require_editable(self, payment: ProgressPaymentModel, action: str) -> None:
        if payment.status not in EDITABLE_STATES:
            raise PaymentNotDraftError(str(payment.id), payment.status, action)

    def _project_model(self, tenant_id: UUID, project_id: UUID) -> ProjectModel:
        project = self._session.execute(
            select(ProjectModel).where(
                ProjectModel.id == project_id,
                ProjectModel.tenant_id == tenant_id,
            )
        ).scalar_one_or_none()
        if project is None:
            raise ProjectNotFoundError(str(project_id))
        return project

    def _payment_model(self, tenant_id: UUID, payment_id: UUID) -> ProgressPaymentModel:
        payment = self._session.execute(
            select(ProgressPaymentModel).where(
                ProgressPaymentModel.id == payment_id,
                ProgressPaymentModel.tenant_id == tenant_id,
            )
        ).scalar_one_or_none()
        if payment is None:
            raise PaymentNotFoundError(str(payment_id))
        return payment
