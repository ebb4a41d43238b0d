"""
Bill of Quantities Module (``billing_modules.boq``).

Responsibility
--------------
Projects and their hierarchical bill of quantities: the billable line items
(quantity, unit of measure, contract unit price) that progress payments
certify period by period.

Architecture position
---------------------
**Modules layer** -- frozen DTOs, ORM models and the ``BoQRegistry``
facade.  Read-only from the point of view of the progress billing engine.
"""

from billing_modules.boq.models import BoQCategory, BoQLine, BoQTreeNode, Project
from billing_modules.boq.registry import BoQRegistry

__all__ = [
    "BoQCategory",
    "BoQLine",
    "BoQRegistry",
    "BoQTreeNode",
    "Project",
]
