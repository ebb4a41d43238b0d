"""
Bill of Quantities Domain Models (``billing_modules.boq.models``).

Responsibility
--------------
Frozen dataclass value objects for the nouns of the BoQ registry:
projects, BoQ lines and the tree view over a project's lines.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.  Returned by
``BoQRegistry``; read (never mutated) by the progress billing engine.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* All quantities, prices and amounts are ``Decimal`` -- NEVER ``float``.
* Rates are fractions in [0, 1].
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID


class BoQCategory(str, Enum):
    """Cost category of a BoQ line."""
    MATERIAL = "material"
    LABOR = "labor"
    SUBCONTRACTOR = "subcontractor"
    EQUIPMENT = "equipment"
    OVERHEAD = "overhead"
    OTHER = "other"


@dataclass(frozen=True)
class Project:
    """A contract project with billing defaults."""
    id: UUID
    tenant_id: UUID
    code: str
    name: str
    customer_id: UUID | None = None
    contract_currency: str | None = None
    contract_amount: Decimal = Decimal("0")
    default_retention_rate: Decimal = Decimal("0")
    default_withholding_tax_rate: Decimal = Decimal("0")
    default_security_deposit_rate: Decimal | None = None


@dataclass(frozen=True)
class BoQLine:
    """A billable item of a project's bill of quantities."""
    id: UUID
    project_id: UUID
    sequence: int
    item_code: str
    description: str
    quantity: Decimal
    unit_of_measure: str
    contract_unit_price: Decimal
    estimated_unit_cost: Decimal = Decimal("0")
    category: BoQCategory = BoQCategory.OTHER
    parent_id: UUID | None = None

    @property
    def total_contract_amount(self) -> Decimal:
        return self.quantity * self.contract_unit_price

    @property
    def total_estimated_cost(self) -> Decimal:
        return self.quantity * self.estimated_unit_cost


@dataclass(frozen=True)
class BoQTreeNode:
    """
    One slot of the arena returned by ``BoQRegistry.line_tree``.

    ``parent_index`` and ``child_indices`` are positions in the same arena,
    never object references.
    """
    line: BoQLine
    depth: int
    parent_index: int | None = None
    child_indices: tuple[int, ...] = ()
