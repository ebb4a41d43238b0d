"""Tests for the engine's transactional scope and the deterministic clock."""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from billing_kernel.db import session_scope
from billing_kernel.domain.clock import DeterministicClock
from billing_kernel.models.exchange_rate import ExchangeRate


def _rate(source: str) -> ExchangeRate:
    return ExchangeRate(
        from_currency="EUR",
        to_currency="TRY",
        rate=Decimal("35.1"),
        effective_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        source=source,
        created_by_id=uuid4(),
    )


def _count(source: str) -> int:
    with session_scope() as session:
        return len(
            session.scalars(select(ExchangeRate).where(ExchangeRate.source == source)).all()
        )


class TestSessionScope:

    def test_commits_on_success(self, db_tables):
        with session_scope() as session:
            session.add(_rate("scope-commit"))
        try:
            assert _count("scope-commit") == 1
        finally:
            with session_scope() as session:
                for row in session.scalars(
                    select(ExchangeRate).where(ExchangeRate.source == "scope-commit")
                ):
                    session.delete(row)

    def test_rolls_back_and_reraises(self, db_tables):
        with pytest.raises(RuntimeError):
            with session_scope() as session:
                session.add(_rate("scope-rollback"))
                session.flush()
                raise RuntimeError("boom")
        assert _count("scope-rollback") == 0


class TestDeterministicClock:

    def test_time_only_moves_when_told(self):
        clock = DeterministicClock()
        first = clock.now()
        assert clock.now() == first
        clock.advance(30)
        assert (clock.now() - first).total_seconds() == 30

    def test_set_time_resets_offset(self):
        clock = DeterministicClock()
        clock.advance(5)
        target = datetime(2025, 6, 1, tzinfo=timezone.utc)
        clock.set_time(target)
        assert clock.now_utc() == target
