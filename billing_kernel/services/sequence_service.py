"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly monotonically increasing sequence numbers for named
    sequences (one per project for progress payment numbers and BoQ line
    ordering).  Uses a dedicated counter table with row-level locking
    (``SELECT ... FOR UPDATE``) so concurrent allocations serialize.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by the progress billing sequencer and the BoQ registry.

Invariants enforced:
    - Sequences are strictly monotonic and gap-free under normal
      operation.  The locked counter row is the sole source of truth for
      the next value; reading ``MAX(no) + 1`` from the data table is only
      used once, to seed a counter that does not exist yet.
    - Transactional: the increment is visible only after the caller's
      transaction commits.  Rollback returns the value.

Failure modes:
    - IntegrityError: concurrent counter creation race (handled via
      savepoint rollback and re-read under lock).
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from billing_kernel.db.base import Base
from billing_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row represents a named sequence with its current value.
    """

    __tablename__ = "sequence_counters"

    # e.g. "progress_payment:<project uuid>"
    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Contract:
        Accepts a sequence name and returns the next strictly-monotonic
        integer value.  The increment is committed with the caller's
        transaction.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.

    Usage:
        seq = SequenceService(session).next_value(f"progress_payment:{project_id}")
    """

    def __init__(self, session: Session):
        self._session = session

    def next_value(self, sequence_name: str, start_after: int = 0) -> int:
        """
        Get the next value for a named sequence.

        1. Locks the sequence row (or creates it if it does not exist)
        2. Increments the counter
        3. Returns the new value

        Args:
            sequence_name: Name of the sequence.
            start_after: Value the counter is seeded with when the row is
                created on first use (the next value is ``start_after + 1``).
                Ignored once the counter exists.

        Returns:
            The next sequence value (always > 0).
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            # Savepoint so a lost creation race does not roll back the caller's work
            savepoint = self._session.begin_nested()
            try:
                value = start_after + 1
                counter = SequenceCounter(name=sequence_name, current_value=value)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": value},
                )
                return value
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        assert counter.current_value > 0, "sequence value must be strictly positive"
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def lock(self, sequence_name: str) -> SequenceCounter | None:
        """Lock a sequence row without incrementing it (None if it does not exist)."""
        return self._locked_counter(sequence_name)

    def current_value(self, sequence_name: str) -> int | None:
        """Current value of a sequence without incrementing, or None."""
        counter = self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()

        return counter.current_value if counter else None

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        # populate_existing: never trust a cached counter when expire_on_commit=False
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
