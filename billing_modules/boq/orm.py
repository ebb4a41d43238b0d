"""
SQLAlchemy ORM persistence models for the Bill of Quantities registry.

Responsibility
--------------
Database-backed persistence for projects and their BoQ lines.

Architecture position
---------------------
**Modules layer** -- ORM models consumed by ``BoQRegistry`` and read by
``ProgressPaymentService``.  Inherits from ``TrackedBase`` (kernel db layer).

Invariants enforced
-------------------
* ``(tenant_id, code)`` is unique per project.
* ``(project_id, item_code)`` and ``(project_id, sequence)`` are unique.
* Lines are owned by their project (``cascade="all, delete-orphan"``);
  ``parent_id`` is a plain self reference inside the same project and never
  owns its children.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_kernel.db.base import TrackedBase
from billing_modules.boq.models import BoQCategory

# ---------------------------------------------------------------------------
# ProjectModel
# ---------------------------------------------------------------------------


class ProjectModel(TrackedBase):
    """
    A contract project.

    Maps to the ``Project`` DTO in ``billing_modules.boq.models``.
    """

    __tablename__ = "boq_projects"

    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_boq_project_code"),
        CheckConstraint("contract_amount >= 0", name="ck_boq_project_contract_amount"),
        Index("idx_boq_project_tenant", "tenant_id"),
    )

    tenant_id: Mapped[UUID]
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_id: Mapped[UUID | None]
    contract_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    contract_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    default_retention_rate: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    default_withholding_tax_rate: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    default_security_deposit_rate: Mapped[Decimal | None]

    lines: Mapped[list["BoQLineModel"]] = relationship(
        "BoQLineModel",
        back_populates="project",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="BoQLineModel.sequence",
        foreign_keys="BoQLineModel.project_id",
    )

    def to_dto(self):
        from billing_modules.boq.models import Project

        return Project(
            id=self.id,
            tenant_id=self.tenant_id,
            code=self.code,
            name=self.name,
            customer_id=self.customer_id,
            contract_currency=self.contract_currency,
            contract_amount=self.contract_amount,
            default_retention_rate=self.default_retention_rate,
            default_withholding_tax_rate=self.default_withholding_tax_rate,
            default_security_deposit_rate=self.default_security_deposit_rate,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "ProjectModel":
        return cls(
            id=dto.id,
            tenant_id=dto.tenant_id,
            code=dto.code,
            name=dto.name,
            customer_id=dto.customer_id,
            contract_currency=dto.contract_currency,
            contract_amount=dto.contract_amount,
            default_retention_rate=dto.default_retention_rate,
            default_withholding_tax_rate=dto.default_withholding_tax_rate,
            default_security_deposit_rate=dto.default_security_deposit_rate,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return f"<ProjectModel {self.code}: {self.name}>"


# ---------------------------------------------------------------------------
# BoQLineModel
# ---------------------------------------------------------------------------


class BoQLineModel(TrackedBase):
    """
    A bill-of-quantities line.

    Maps to the ``BoQLine`` DTO in ``billing_modules.boq.models``.
    """

    __tablename__ = "boq_lines"

    __table_args__ = (
        UniqueConstraint("project_id", "item_code", name="uq_boq_line_item_code"),
        UniqueConstraint("project_id", "sequence", name="uq_boq_line_sequence"),
        Index("idx_boq_line_project", "project_id"),
        Index("idx_boq_line_parent", "parent_id"),
    )

    project_id: Mapped[UUID] = mapped_column(ForeignKey("boq_projects.id"), nullable=False)
    parent_id: Mapped[UUID | None] = mapped_column(ForeignKey("boq_lines.id"), nullable=True)
    sequence: Mapped[int] = mapped_column(nullable=False)
    item_code: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    quantity: Mapped[Decimal]
    unit_of_measure: Mapped[str] = mapped_column(String(20), nullable=False)
    contract_unit_price: Mapped[Decimal]
    estimated_unit_cost: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    category: Mapped[str] = mapped_column(
        String(50), nullable=False, default=BoQCategory.OTHER.value
    )

    project: Mapped["ProjectModel"] = relationship(
        "ProjectModel",
        back_populates="lines",
        foreign_keys=[project_id],
    )

    def to_dto(self):
        from billing_modules.boq.models import BoQLine

        return BoQLine(
            id=self.id,
            project_id=self.project_id,
            sequence=self.sequence,
            item_code=self.item_code,
            description=self.description,
            quantity=self.quantity,
            unit_of_measure=self.unit_of_measure,
            contract_unit_price=self.contract_unit_price,
            estimated_unit_cost=self.estimated_unit_cost,
            category=BoQCategory(self.category),
            parent_id=self.parent_id,
        )

    def __repr__(self) -> str:
        return f"<BoQLineModel {self.item_code}: {self.description}>"
