"""
Payment numbering under contention.

Payment numbers come from a locked counter row (SELECT ... FOR UPDATE),
never from MAX(payment_no) + 1 at allocation time.  When two writers still
collide on (project_id, payment_no) the unique constraint rejects the
second insert and the service raises a retryable PaymentNumberConflictError
with nothing of the failed payment left behind.
"""

import inspect
import re

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from billing_kernel.exceptions import ConcurrencyError, PaymentNumberConflictError
from billing_kernel.services.sequence_service import SequenceCounter, SequenceService
from billing_modules.progress_billing.orm import (
    ProgressPaymentDetailModel,
    ProgressPaymentModel,
)
from billing_modules.progress_billing.sequencer import payment_sequence_name
from billing_modules.progress_billing.service import is_payment_number_conflict


def _integrity_error(message: str) -> IntegrityError:
    return IntegrityError("INSERT ...", {}, Exception(message))


def _detail_count(session, project_id) -> int:
    return session.execute(
        select(func.count())
        .select_from(ProgressPaymentDetailModel)
        .join(ProgressPaymentModel, ProgressPaymentDetailModel.payment_id == ProgressPaymentModel.id)
        .where(ProgressPaymentModel.project_id == project_id)
    ).scalar_one()


class TestLockedCounterImplementation:
    """Allocation reads the counter row under a row lock."""

    def test_counter_read_uses_for_update(self):
        source = inspect.getsource(SequenceService._locked_counter)
        assert "with_for_update()" in source

    def test_next_value_goes_through_locked_read(self):
        source = inspect.getsource(SequenceService.next_value)
        assert "self._locked_counter(" in source

    def test_no_max_pattern_in_sequence_service(self):
        source = inspect.getsource(SequenceService)
        for pattern in (r"MAX\s*\(", r"func\.max"):
            assert not re.findall(pattern, source, re.IGNORECASE), pattern


class TestCounterCreationRace:
    """A writer that loses the counter-creation race falls back to the existing row."""

    @pytest.fixture
    def first_read_misses(self, monkeypatch):
        """The first locked read sees no counter, as if another writer created it meanwhile."""
        real = SequenceService._locked_counter
        calls: list[str] = []

        def _locked_counter(self, sequence_name):
            calls.append(sequence_name)
            if len(calls) == 1:
                return None
            return real(self, sequence_name)

        monkeypatch.setattr(SequenceService, "_locked_counter", _locked_counter)
        return calls

    def test_lost_race_increments_existing_counter(self, session, first_read_misses, captured_logs):
        service = SequenceService(session)
        # The winner's counter, committed before the loser inserts
        session.add(SequenceCounter(name="seq:race", current_value=4))
        session.commit()

        assert service.next_value("seq:race") == 5
        assert first_read_misses == ["seq:race", "seq:race"]
        assert any(r["message"] == "sequence_counter_race_retry" for r in captured_logs())

        session.commit()
        assert service.current_value("seq:race") == 5
        assert session.execute(
            select(func.count()).select_from(SequenceCounter).where(SequenceCounter.name == "seq:race")
        ).scalar_one() == 1

    def test_callers_pending_work_survives_lost_race(self, session, monkeypatch):
        service = SequenceService(session)
        session.add(SequenceCounter(name="seq:race-b", current_value=1))
        session.commit()

        # Uncommitted work of the caller, flushed before the race
        assert service.next_value("seq:side") == 1

        real = SequenceService._locked_counter
        misses = iter([True])
        monkeypatch.setattr(
            SequenceService,
            "_locked_counter",
            lambda self, name: None if next(misses, False) else real(self, name),
        )

        assert service.next_value("seq:race-b") == 2
        session.commit()
        assert service.current_value("seq:side") == 1
        assert service.current_value("seq:race-b") == 2


class TestPaymentNumberConflict:
    """Duplicate (project_id, payment_no) on insert."""

    def test_duplicate_number_raises_conflict_and_rolls_back(
        self, session, billable_project, create_draft, payment_service, tenant_id
    ):
        first = create_draft(billable_project)
        assert first.payment_no == 1

        # Rewind the counter so the next allocation hands out #1 again
        name = payment_sequence_name(billable_project.id)
        counter = session.execute(
            select(SequenceCounter).where(SequenceCounter.name == name)
        ).scalar_one()
        counter.current_value = 0
        session.commit()

        with pytest.raises(PaymentNumberConflictError) as exc_info:
            create_draft(billable_project)

        assert isinstance(exc_info.value, ConcurrencyError)
        assert exc_info.value.code == "PAYMENT_NUMBER_CONFLICT"
        assert exc_info.value.payment_no == 1
        assert exc_info.value.project_id == str(billable_project.id)

        payments = payment_service.list_payments(tenant_id, billable_project.id)
        assert [p.id for p in payments] == [first.id]
        assert _detail_count(session, billable_project.id) == len(first.details)
        # The rewound counter is untouched by the failed attempt
        assert SequenceService(session).current_value(name) == 0

    def test_conflict_log_records_rollback(
        self, session, billable_project, create_draft, captured_logs
    ):
        create_draft(billable_project)
        counter = session.execute(
            select(SequenceCounter).where(
                SequenceCounter.name == payment_sequence_name(billable_project.id)
            )
        ).scalar_one()
        counter.current_value = 0
        session.commit()

        with pytest.raises(PaymentNumberConflictError):
            create_draft(billable_project)

        messages = [r["message"] for r in captured_logs()]
        assert "progress_payment_create_rolled_back" in messages


class TestConflictClassification:
    """Only the payment-number constraint is a numbering conflict."""

    @pytest.mark.parametrize(
        "message",
        [
            'duplicate key value violates unique constraint "uq_progress_payment_no"',
            "UNIQUE constraint failed: progress_payments.project_id, progress_payments.payment_no",
        ],
    )
    def test_payment_number_violation(self, message):
        assert is_payment_number_conflict(_integrity_error(message))

    @pytest.mark.parametrize(
        "message",
        [
            'duplicate key value violates unique constraint "uq_progress_detail_line"',
            "UNIQUE constraint failed: progress_payment_details.payment_id, "
            "progress_payment_details.boq_line_id",
            "FOREIGN KEY constraint failed",
            'null value in column "project_id" violates not-null constraint',
        ],
    )
    def test_other_violations_are_not_conflicts(self, message):
        assert not is_payment_number_conflict(_integrity_error(message))
