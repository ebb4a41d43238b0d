"""
Payment Sequencer (``billing_modules.progress_billing.sequencer``).

Assigns progress payment numbers and builds the baseline a new payment
starts from.

Numbering goes through the kernel ``SequenceService`` counter
``progress_payment:<project_id>``, seeded from the highest existing number
the first time the counter is used.  Concurrent creations therefore
serialize on the counter row instead of racing on ``MAX(payment_no) + 1``.

The baseline is the approved payment with the highest number.  Drafts are
never a baseline.  A draft whose baseline has moved on since it was created
(another payment approved in the meantime) is reported as stale and must not
be approved as is.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from billing_kernel.logging_config import get_logger
from billing_kernel.services.sequence_service import SequenceService
from billing_modules.boq.models import BoQLine
from billing_modules.progress_billing.models import PaymentStatus
from billing_modules.progress_billing.orm import (
    ProgressPaymentDetailModel,
    ProgressPaymentModel,
)

logger = get_logger("modules.progress_billing.sequencer")


def payment_sequence_name(project_id: UUID) -> str:
    return f"progress_payment:{project_id}"


class PaymentSequencer:
    """Numbering and baseline lookup for a project's progress payments.

    Never commits; the calling service owns the transaction.
    """

    def __init__(self, session: Session):
        self._session = session
        self._sequences = SequenceService(session)

    def next_payment_no(self, project_id: UUID) -> int:
        """Next payment number for the project (1 for the first payment)."""
        name = payment_sequence_name(project_id)
        start_after = 0
        if self._sequences.current_value(name) is None:
            start_after = self._max_payment_no(project_id)
        payment_no = self._sequences.next_value(name, start_after=start_after)
        logger.debug(
            "payment_number_assigned",
            extra={"project_id": str(project_id), "payment_no": payment_no},
        )
        return payment_no

    def latest_approved(self, project_id: UUID) -> ProgressPaymentModel | None:
        return self._session.execute(
            select(ProgressPaymentModel)
            .where(
                ProgressPaymentModel.project_id == project_id,
                ProgressPaymentModel.status == PaymentStatus.APPROVED.value,
            )
            .order_by(ProgressPaymentModel.payment_no.desc())
            .limit(1)
        ).scalar_one_or_none()

    def lock_project(self, project_id: UUID) -> None:
        """Serialize approvals and re-baselining of a project's payments.

        Takes the row lock on the project's payment counter, which exists
        once any payment has been created.
        """
        self._sequences.lock(payment_sequence_name(project_id))

    def stale_baseline_reason(self, payment: ProgressPaymentModel) -> str | None:
        """Why ``payment`` no longer starts from the latest approved payment.

        Returns None while the payment's previous quantities and previous
        cumulative amount still match the latest approved payment.
        """
        latest = self.latest_approved(payment.project_id)
        if latest is not None and latest.payment_no > payment.payment_no:
            return f"later payment #{latest.payment_no} is already approved"

        expected_amount = latest.cumulative_total_amount if latest else Decimal("0")
        if payment.previous_cumulative_amount != expected_amount:
            return (
                f"previous cumulative amount {payment.previous_cumulative_amount} "
                f"differs from approved cumulative {expected_amount}"
            )

        expected = self.baseline_quantities(latest)
        for detail in payment.details:
            baseline_quantity = expected.get(detail.boq_line_id, Decimal("0"))
            if detail.previous_cumulative_quantity != baseline_quantity:
                return (
                    f"line {detail.boq_line_id} starts at "
                    f"{detail.previous_cumulative_quantity}, approved cumulative "
                    f"is {baseline_quantity}"
                )
        return None

    @staticmethod
    def baseline_quantities(
        baseline: ProgressPaymentModel | None,
    ) -> dict[UUID, Decimal]:
        """``{boq_line_id: cumulative quantity}`` of the baseline payment."""
        if baseline is None:
            return {}
        return {
            d.boq_line_id: d.current_cumulative_quantity for d in baseline.details
        }

    @staticmethod
    def build_details(
        lines: list[BoQLine],
        baseline_quantities: dict[UUID, Decimal],
        actor_id: UUID,
    ) -> list[ProgressPaymentDetailModel]:
        """One detail per BoQ line, starting at the baseline quantity.

        The line's contract unit price is snapshotted onto the detail.
        """
        details = []
        for position, line in enumerate(lines, start=1):
            previous = baseline_quantities.get(line.id, Decimal("0"))
            details.append(
                ProgressPaymentDetailModel(
                    boq_line_id=line.id,
                    position=position,
                    previous_cumulative_quantity=previous,
                    current_cumulative_quantity=previous,
                    unit_price=line.contract_unit_price,
                    created_by_id=actor_id,
                )
            )
        return details

    def _max_payment_no(self, project_id: UUID) -> int:
        return self._session.execute(
            select(func.coalesce(func.max(ProgressPaymentModel.payment_no), 0))
            .where(ProgressPaymentModel.project_id == project_id)
        ).scalar_one()
