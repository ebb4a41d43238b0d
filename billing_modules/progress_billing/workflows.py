"""Progress Payment Workflows."""

from __future__ import annotations

from billing_kernel.domain.workflow import Guard, Transition, Workflow
from billing_modules.boq.models import Project
from billing_modules.progress_billing.models import PaymentStatus

PROJECT_BILLABLE_GUARD = Guard(
    name="project_billable",
    description="Project has a customer and a contract currency",
)

APPROVE_ACTION = "approve"

PROGRESS_PAYMENT_WORKFLOW = Workflow(
    name="progress_payment",
    description="Progress payment lifecycle",
    initial_state=PaymentStatus.DRAFT.value,
    states=(
        PaymentStatus.DRAFT.value,
        PaymentStatus.APPROVED.value,
        PaymentStatus.INVOICED.value,
    ),
    transitions=(
        Transition(
            PaymentStatus.DRAFT.value,
            PaymentStatus.APPROVED.value,
            action=APPROVE_ACTION,
            guard=PROJECT_BILLABLE_GUARD,
            has_side_effects=True,
        ),
    ),
    terminal_states=(PaymentStatus.INVOICED.value,),
)

# Figures and quantities may only change in these states
EDITABLE_STATES = frozenset({PaymentStatus.DRAFT.value})


def evaluate_guard(guard: Guard, project: Project) -> str | None:
    """Return the reason ``guard`` fails for ``project``, or None if it holds."""
    if guard.name == PROJECT_BILLABLE_GUARD.name:
        if project.customer_id is None:
            return "project has no customer"
        if not project.contract_currency:
            return "project has no contract currency"
        return None
    raise ValueError(f"Unknown guard: {guard.name}")
