"""
Typed Exception Hierarchy for the Billing Kernel.

Every error has a typed class (catch by type, not by message), a ``code``
class attribute (machine-readable, API-safe) and structured attributes
carrying the identifiers involved.

    BillingKernelError (base)
    |
    +-- NotFoundError
    |   +-- ProjectNotFoundError
    |   +-- BoQLineNotFoundError
    |   +-- PaymentNotFoundError
    |   +-- PaymentDetailNotFoundError
    |
    +-- InvalidStateError
    |   +-- PaymentNotDraftError
    |   +-- ApprovalGuardError
    |   +-- StaleBaselineError
    |   +-- BoQLineInUseError
    |
    +-- ValidationError
    |
    +-- DownstreamFailureError
    |   +-- DownstreamTimeoutError
    |
    +-- CurrencyError
    |   +-- ExchangeRateNotFoundError
    |
    +-- ConcurrencyError
        +-- PaymentNumberConflictError

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
NotFound        | PROJECT_NOT_FOUND           | Project ID doesn't exist for the tenant
                | BOQ_LINE_NOT_FOUND          | BoQ line ID doesn't exist
                | PAYMENT_NOT_FOUND           | Progress payment ID doesn't exist
                | PAYMENT_DETAIL_NOT_FOUND    | Detail ID not on the payment
----------------|-----------------------------|-----------------------------------------
InvalidState    | PAYMENT_NOT_DRAFT           | Mutating/approving a non-draft payment
                | APPROVAL_GUARD_FAILED       | Project lacks customer or currency
                | STALE_BASELINE              | Draft not based on latest approved payment
                | BOQ_LINE_IN_USE             | Removing a referenced BoQ line
----------------|-----------------------------|-----------------------------------------
Validation      | VALIDATION_FAILED           | Malformed quantity, rate or amount
----------------|-----------------------------|-----------------------------------------
Downstream      | DOWNSTREAM_FAILURE          | Invoice/receivable port raised
                | DOWNSTREAM_TIMEOUT          | Port did not answer within the timeout
----------------|-----------------------------|-----------------------------------------
Currency        | EXCHANGE_RATE_NOT_FOUND     | No rate for currency pair/date
----------------|-----------------------------|-----------------------------------------
Concurrency     | PAYMENT_NUMBER_CONFLICT     | Duplicate (project, payment_no) on flush

NotFound and InvalidState are surfaced to the caller with no retry.
DownstreamFailure aborts the enclosing transaction; the caller may retry the
whole approval.  ConcurrencyError is retryable.
"""

from datetime import date


class BillingKernelError(Exception):
    """
    Base exception for all billing kernel errors.

    All subclasses must have a ``code`` class attribute.
    """

    code: str = "BILLING_KERNEL_ERROR"


# Not found


class NotFoundError(BillingKernelError):
    """Base exception for missing referenced entities."""

    code: str = "NOT_FOUND"


class ProjectNotFoundError(NotFoundError):
    """Project with given ID was not found for the tenant."""

    code: str = "PROJECT_NOT_FOUND"

    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__(f"Project not found: {project_id}")


class BoQLineNotFoundError(NotFoundError):
    """BoQ line with given ID was not found."""

    code: str = "BOQ_LINE_NOT_FOUND"

    def __init__(self, line_id: str):
        self.line_id = line_id
        super().__init__(f"BoQ line not found: {line_id}")


class PaymentNotFoundError(NotFoundError):
    """Progress payment with given ID was not found for the tenant."""

    code: str = "PAYMENT_NOT_FOUND"

    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__(f"Progress payment not found: {payment_id}")


class PaymentDetailNotFoundError(NotFoundError):
    """Detail row is not part of the given progress payment."""

    code: str = "PAYMENT_DETAIL_NOT_FOUND"

    def __init__(self, payment_id: str, detail_id: str):
        self.payment_id = payment_id
        self.detail_id = detail_id
        super().__init__(
            f"Detail {detail_id} not found on progress payment {payment_id}"
        )


# Invalid state


class InvalidStateError(BillingKernelError):
    """Operation is illegal for the entity's current state."""

    code: str = "INVALID_STATE"


class PaymentNotDraftError(InvalidStateError):
    """
    Progress payment is no longer in draft.

    Raised for detail edits, adjustment edits and repeated approvals.
    """

    code: str = "PAYMENT_NOT_DRAFT"

    def __init__(self, payment_id: str, status: str, action: str):
        self.payment_id = payment_id
        self.status = status
        self.action = action
        super().__init__(
            f"Cannot {action} progress payment {payment_id}: status is {status}"
        )


class ApprovalGuardError(InvalidStateError):
    """Project is missing the customer or contract currency needed to bill."""

    code: str = "APPROVAL_GUARD_FAILED"

    def __init__(self, payment_id: str, project_id: str, reason: str):
        self.payment_id = payment_id
        self.project_id = project_id
        self.reason = reason
        super().__init__(
            f"Cannot approve progress payment {payment_id}: {reason}"
        )


class StaleBaselineError(InvalidStateError):
    """
    Draft no longer starts from the project's latest approved payment.

    Raised when another payment was approved after the draft was created,
    or when a higher-numbered payment is already approved.
    """

    code: str = "STALE_BASELINE"

    def __init__(self, payment_id: str, reason: str):
        self.payment_id = payment_id
        self.reason = reason
        super().__init__(
            f"Progress payment {payment_id} has a stale baseline: {reason}"
        )


class BoQLineInUseError(InvalidStateError):
    """BoQ line cannot be removed while payments or child lines reference it."""

    code: str = "BOQ_LINE_IN_USE"

    def __init__(self, line_id: str, reason: str):
        self.line_id = line_id
        self.reason = reason
        super().__init__(f"Cannot remove BoQ line {line_id}: {reason}")


# Validation


class ValidationError(BillingKernelError):
    """Malformed quantity, rate or amount."""

    code: str = "VALIDATION_FAILED"

    def __init__(self, field: str, value: object, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field}={value!r}: {reason}")


# Downstream


class DownstreamFailureError(BillingKernelError):
    """An outbound integration port failed; the transaction is aborted."""

    code: str = "DOWNSTREAM_FAILURE"

    def __init__(self, port: str, reason: str):
        self.port = port
        self.reason = reason
        super().__init__(f"Downstream port {port} failed: {reason}")


class DownstreamTimeoutError(DownstreamFailureError):
    """An outbound integration port did not answer within the timeout."""

    code: str = "DOWNSTREAM_TIMEOUT"

    def __init__(self, port: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(port, f"no response within {timeout_seconds}s")


# Currency


class CurrencyError(BillingKernelError):
    """Base exception for currency-related errors."""

    code: str = "CURRENCY_ERROR"


class ExchangeRateNotFoundError(CurrencyError):
    """No usable exchange rate for the currency pair at the given date."""

    code: str = "EXCHANGE_RATE_NOT_FOUND"

    def __init__(
        self,
        from_currency: str,
        to_currency: str,
        as_of: date,
        reason: str | None = None,
    ):
        self.from_currency = from_currency
        self.to_currency = to_currency
        self.as_of = as_of
        self.reason = reason
        message = f"No exchange rate {from_currency}->{to_currency} as of {as_of}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


# Concurrency


class ConcurrencyError(BillingKernelError):
    """Base exception for concurrency conflicts.  Safe to retry."""

    code: str = "CONCURRENCY_ERROR"


class PaymentNumberConflictError(ConcurrencyError):
    """Another transaction already holds this (project, payment_no) pair."""

    code: str = "PAYMENT_NUMBER_CONFLICT"

    def __init__(self, project_id: str, payment_no: int):
        self.project_id = project_id
        self.payment_no = payment_no
        super().__init__(
            f"Payment number {payment_no} already used for project {project_id}"
        )

