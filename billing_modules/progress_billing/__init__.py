"""
Progress Billing Module (``billing_modules.progress_billing``).

Responsibility
--------------
Periodic progress payments (hakediş) of construction projects: numbering
and baseline carry-over, cumulative quantity certification per BoQ line,
retention / withholding tax / security deposit / advance calculations, and
the draft -> approved lifecycle that raises the customer invoice and the
retention receivable in other subsystems.

Architecture position
---------------------
**Modules layer** -- pure calculation functions (``calculation.py``), ORM
persistence, a sequencer, declarative workflow, outbound ports and the
``ProgressPaymentService`` facade.

Failure modes
-------------
* See ``billing_kernel.exceptions`` -- every failure is a typed
  ``BillingKernelError`` subclass.
"""

from billing_modules.progress_billing.models import (
    PaymentDetailLine,
    PaymentDocument,
    PaymentStatus,
    PaymentSummary,
    ProjectBillingSummary,
)
from billing_modules.progress_billing.ports import (
    CurrencyRateLookup,
    ExchangeRateTableLookup,
    InvoicePort,
    RateLookupResult,
    ReceivablePort,
)
from billing_modules.progress_billing.service import ProgressPaymentService

__all__ = [
    "CurrencyRateLookup",
    "ExchangeRateTableLookup",
    "InvoicePort",
    "PaymentDetailLine",
    "PaymentDocument",
    "PaymentStatus",
    "PaymentSummary",
    "ProgressPaymentService",
    "ProjectBillingSummary",
    "RateLookupResult",
    "ReceivablePort",
]
