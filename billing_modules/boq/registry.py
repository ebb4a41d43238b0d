"""
BoQ Line Registry (``billing_modules.boq.registry``).

Responsibility
--------------
Project administration entry point: creates projects, appends, edits and
removes BoQ lines (optionally nested under a parent line of the same
project) and exposes the read views the billing engine consumes -- the flat
list in insertion order and an arena-indexed tree.

Architecture position
---------------------
**Modules layer** -- thin persistence facade.  The progress billing engine
reads projects and lines but never calls the mutating methods here.

Invariants enforced
-------------------
* Each public mutating method owns the transaction boundary (``commit`` on
  success, ``rollback`` and re-raise on failure).
* Line insertion order comes from the per-project locked counter
  ``boq_line:<project_id>``.
* A parent line must belong to the same project as its child.
* A line is removable only while no child line and no progress payment
  detail references it.
* Quantities carry at most 4 fractional digits, unit prices and costs at
  most 2; rates are fractions in [0, 1].
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from billing_kernel.db.types import (
    MONEY_DISPLAY_PLACES,
    InvalidCurrencyError,
    fractional_digits,
    validate_currency,
)
from billing_kernel.domain.validation import (
    require_fraction,
    require_non_negative,
    require_quantity,
)
from billing_kernel.exceptions import (
    BoQLineInUseError,
    BoQLineNotFoundError,
    ProjectNotFoundError,
    ValidationError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.services.sequence_service import SequenceService
from billing_modules.boq.models import BoQCategory, BoQLine, BoQTreeNode, Project
from billing_modules.boq.orm import BoQLineModel, ProjectModel

logger = get_logger("modules.boq.registry")


def _require_price(value: Decimal, name: str) -> Decimal:
    require_non_negative(value, name)
    if fractional_digits(value) > MONEY_DISPLAY_PLACES:
        raise ValidationError(
            name, value, f"at most {MONEY_DISPLAY_PLACES} fractional digits"
        )
    return value


class BoQRegistry:
    """
    Owns projects and their bill-of-quantities lines.

    Contract
    --------
    * Mutating methods return frozen DTOs and commit on success.
    * Read methods return frozen DTOs and never flush.
    """

    def __init__(self, session: Session):
        self._session = session
        self._sequences = SequenceService(session)

    # =========================================================================
    # Projects
    # =========================================================================

    def create_project(
        self,
        tenant_id: UUID,
        code: str,
        name: str,
        actor_id: UUID,
        customer_id: UUID | None = None,
        contract_currency: str | None = None,
        contract_amount: Decimal = Decimal("0"),
        default_retention_rate: Decimal = Decimal("0"),
        default_withholding_tax_rate: Decimal = Decimal("0"),
        default_security_deposit_rate: Decimal | None = None,
    ) -> Project:
        """Create a project (setup only, no billing)."""
        require_non_negative(contract_amount, "contract_amount")
        require_fraction(default_retention_rate, "default_retention_rate")
        require_fraction(default_withholding_tax_rate, "default_withholding_tax_rate")
        if default_security_deposit_rate is not None:
            require_fraction(default_security_deposit_rate, "default_security_deposit_rate")
        if contract_currency is not None:
            try:
                contract_currency = validate_currency(contract_currency)
            except InvalidCurrencyError as exc:
                raise ValidationError("contract_currency", contract_currency, str(exc)) from exc

        project = Project(
            id=uuid4(),
            tenant_id=tenant_id,
            code=code,
            name=name,
            customer_id=customer_id,
            contract_currency=contract_currency,
            contract_amount=contract_amount,
            default_retention_rate=default_retention_rate,
            default_withholding_tax_rate=default_withholding_tax_rate,
            default_security_deposit_rate=default_security_deposit_rate,
        )
        try:
            existing = self._session.execute(
                select(ProjectModel.id).where(
                    ProjectModel.tenant_id == tenant_id,
                    ProjectModel.code == code,
                )
            ).scalar_one_or_none()
            if existing is not None:
                raise ValidationError("code", code, "project code already in use")

            self._session.add(ProjectModel.from_dto(project, created_by_id=actor_id))
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "project_created",
            extra={"project_id": str(project.id), "project_code": code},
        )
        return project

    def get_project(self, tenant_id: UUID, project_id: UUID) -> Project:
        return self._project_model(tenant_id, project_id).to_dto()

    # =========================================================================
    # Lines
    # =========================================================================

    def add_line(
        self,
        tenant_id: UUID,
        project_id: UUID,
        item_code: str,
        description: str,
        quantity: Decimal,
        unit_of_measure: str,
        contract_unit_price: Decimal,
        actor_id: UUID,
        estimated_unit_cost: Decimal = Decimal("0"),
        category: BoQCategory = BoQCategory.OTHER,
        parent_id: UUID | None = None,
    ) -> BoQLine:
        """Append a BoQ line to a project, optionally under a parent line."""
        require_quantity(quantity, "quantity")
        _require_price(contract_unit_price, "contract_unit_price")
        _require_price(estimated_unit_cost, "estimated_unit_cost")

        try:
            project = self._project_model(tenant_id, project_id)

            if any(line.item_code == item_code for line in project.lines):
                raise ValidationError("item_code", item_code, "already used in this project")

            if parent_id is not None:
                parent = self._session.get(BoQLineModel, parent_id)
                if parent is None:
                    raise BoQLineNotFoundError(str(parent_id))
                if parent.project_id != project.id:
                    raise ValidationError(
                        "parent_id", parent_id, "parent line belongs to another project"
                    )

            sequence = self._sequences.next_value(f"boq_line:{project.id}")
            orm_line = BoQLineModel(
                id=uuid4(),
                project_id=project.id,
                parent_id=parent_id,
                sequence=sequence,
                item_code=item_code,
                description=description,
                quantity=quantity,
                unit_of_measure=unit_of_measure,
                contract_unit_price=contract_unit_price,
                estimated_unit_cost=estimated_unit_cost,
                category=BoQCategory(category).value,
                created_by_id=actor_id,
            )
            project.lines.append(orm_line)
            self._session.flush()
            line = orm_line.to_dto()
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "boq_line_added",
            extra={
                "project_id": str(project_id),
                "item_code": item_code,
                "sequence": sequence,
            },
        )
        return line

    def update_line(
        self,
        tenant_id: UUID,
        line_id: UUID,
        actor_id: UUID,
        *,
        item_code: str | None = None,
        description: str | None = None,
        quantity: Decimal | None = None,
        unit_of_measure: str | None = None,
        contract_unit_price: Decimal | None = None,
        estimated_unit_cost: Decimal | None = None,
        category: BoQCategory | None = None,
    ) -> BoQLine:
        """
        Edit a BoQ line in place.

        Progress payments keep the unit price they snapshotted when they
        were created; a price change only affects payments created later.
        """
        if quantity is not None:
            require_quantity(quantity, "quantity")
        if contract_unit_price is not None:
            _require_price(contract_unit_price, "contract_unit_price")
        if estimated_unit_cost is not None:
            _require_price(estimated_unit_cost, "estimated_unit_cost")

        changes = {
            "item_code": item_code,
            "description": description,
            "quantity": quantity,
            "unit_of_measure": unit_of_measure,
            "contract_unit_price": contract_unit_price,
            "estimated_unit_cost": estimated_unit_cost,
            "category": BoQCategory(category).value if category is not None else None,
        }
        changed = sorted(name for name, value in changes.items() if value is not None)

        try:
            orm_line = self._line_model(tenant_id, line_id)

            if item_code is not None and item_code != orm_line.item_code:
                if any(l.item_code == item_code for l in orm_line.project.lines):
                    raise ValidationError("item_code", item_code, "already used in this project")

            for name in changed:
                setattr(orm_line, name, changes[name])
            orm_line.updated_by_id = actor_id
            self._session.flush()
            line = orm_line.to_dto()
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "boq_line_updated",
            extra={"line_id": str(line_id), "changed": changed},
        )
        return line

    def remove_line(self, tenant_id: UUID, line_id: UUID, actor_id: UUID) -> None:
        """
        Remove a BoQ line that nothing references yet.

        Lines with child lines, or certified on any progress payment, stay.
        """
        try:
            orm_line = self._line_model(tenant_id, line_id)
            project = orm_line.project

            if any(l.parent_id == orm_line.id for l in project.lines):
                raise BoQLineInUseError(str(line_id), "line has child lines")

            project.lines.remove(orm_line)
            try:
                self._session.flush()
            except IntegrityError as exc:
                # progress_payment_details.boq_line_id still points here
                raise BoQLineInUseError(
                    str(line_id), "line is certified on a progress payment"
                ) from exc
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "boq_line_removed",
            extra={
                "line_id": str(line_id),
                "project_id": str(project.id),
                "actor_id": str(actor_id),
            },
        )

    def list_lines(self, tenant_id: UUID, project_id: UUID) -> list[BoQLine]:
        """All lines of a project in insertion order."""
        project = self._project_model(tenant_id, project_id)
        return [line.to_dto() for line in sorted(project.lines, key=lambda l: l.sequence)]

    def line_tree(self, tenant_id: UUID, project_id: UUID) -> list[BoQTreeNode]:
        """
        Arena view of a project's BoQ tree, in insertion order.

        A parent is always inserted before its children, so one pass over
        the ordered lines resolves every ``parent_index``.
        """
        lines = self.list_lines(tenant_id, project_id)
        index_by_id: dict[UUID, int] = {}
        depths: list[int] = []
        parents: list[int | None] = []
        children: list[list[int]] = []

        for position, line in enumerate(lines):
            parent_index = index_by_id.get(line.parent_id) if line.parent_id else None
            index_by_id[line.id] = position
            parents.append(parent_index)
            depths.append(0 if parent_index is None else depths[parent_index] + 1)
            children.append([])
            if parent_index is not None:
                children[parent_index].append(position)

        return [
            BoQTreeNode(
                line=line,
                depth=depths[i],
                parent_index=parents[i],
                child_indices=tuple(children[i]),
            )
            for i, line in enumerate(lines)
        ]

    # =========================================================================
    # Internals
    # =========================================================================

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

    def _line_model(self, tenant_id: UUID, line_id: UUID) -> BoQLineModel:
        line = self._session.execute(
            select(BoQLineModel)
            .join(ProjectModel, BoQLineModel.project_id == ProjectModel.id)
            .where(
                BoQLineModel.id == line_id,
                ProjectModel.tenant_id == tenant_id,
            )
        ).scalar_one_or_none()
        if line is None:
            raise BoQLineNotFoundError(str(line_id))
        return line
