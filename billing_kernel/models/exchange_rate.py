"""
Module: billing_kernel.models.exchange_rate
Responsibility: ORM persistence for currency exchange rates.  Each rate record
    is a timestamped, sourced conversion factor between two ISO 4217 currencies.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - rate is positive (CHECK constraint).
    - from_currency and to_currency are 3-character codes, validated by the
      caller before insert.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase


class ExchangeRate(TrackedBase):
    """
    Currency exchange rate record -- one directional conversion factor.

    ``from_amount * rate = to_amount``.  This model does NOT enforce inverse
    rate consistency; reverse direction rates are separate rows.
    """

    __tablename__ = "exchange_rates"

    __table_args__ = (
        CheckConstraint("rate > 0", name="ck_exchange_rate_positive"),
        Index(
            "idx_rate_lookup",
            "from_currency",
            "to_currency",
            "effective_at",
        ),
    )

    from_currency: Mapped[str] = mapped_column(String(3), nullable=False)

    to_currency: Mapped[str] = mapped_column(String(3), nullable=False)

    rate: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)

    effective_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    # Rate provider, e.g. "TCMB", "ECB", "manual"
    source: Mapped[str] = mapped_column(String(50), nullable=False)

    def __repr__(self) -> str:
        return f"<ExchangeRate {self.from_currency}/{self.to_currency} = {self.rate}>"
