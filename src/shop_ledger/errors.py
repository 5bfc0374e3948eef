"""Exception hierarchy for the shop ledger.

Store errors come from the ledger store adapter, ``StatusError`` from the
lifecycle state machines, and the ``PaymentError`` family from the payment
recording protocol. ``PartialWriteFailure`` and ``WriteFailure`` carry the saga
outcome so the caller can see exactly which writes landed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from shop_ledger.payments import SagaOutcome


class LedgerError(Exception):
    """Base exception for all ledger errors."""


# === Store errors ===


class StoreError(LedgerError):
    """A ledger store request failed."""

    def __init__(self, message: str, status_code: int | None = None, details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class NotFoundError(StoreError):
    """Requested row does not exist (or is not visible to this session)."""


class AuthenticationError(StoreError):
    """Authentication failed."""


class RateLimitError(StoreError):
    """Rate limit exceeded."""


# === Lifecycle errors ===


class StatusError(LedgerError):
    """A status transition or status-dependent edit is not allowed."""

    def __init__(self, message: str, current: str | None = None, requested: str | None = None):
        super().__init__(message)
        self.current = current
        self.requested = requested


# === Payment protocol errors ===


class PaymentError(LedgerError):
    """Base exception for the payment recording protocol."""


class ValidationError(PaymentError):
    """A precondition failed before any write was attempted."""


class DuplicateSubmissionError(ValidationError):
    """The same action is already in flight for this target."""


class TransactionLogFailure(PaymentError):
    """Inserting the income/expense row failed. Non-fatal for payments."""

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause


class StaleReadError(PaymentError):
    """The store returned a value inconsistent with what was written."""

    def __init__(self, table: str, row_id: str, field: str, expected: Any, actual: Any):
        super().__init__(
            f"{table} {row_id}: expected {field}={expected}, store returned {actual}"
        )
        self.table = table
        self.row_id = row_id
        self.field = field
        self.expected = expected
        self.actual = actual


class PartialWriteFailure(PaymentError):
    """Some but not all of the saga's writes were applied.

    The outcome is attached verbatim. Nothing is rolled back.
    """

    def __init__(self, outcome: SagaOutcome):
        self.outcome = outcome
        succeeded = ", ".join(outcome.succeeded_steps) or "none"
        failed = ", ".join(outcome.failed_steps) or "none"
        super().__init__(
            f"{outcome.operation} partially applied: succeeded [{succeeded}], failed [{failed}]"
        )

    @property
    def succeeded(self) -> list[str]:
        return self.outcome.succeeded_steps

    @property
    def failed(self) -> list[str]:
        return self.outcome.failed_steps


class WriteFailure(PaymentError):
    """None of the saga's primary writes were applied."""

    def __init__(self, outcome: SagaOutcome):
        self.outcome = outcome
        failed = ", ".join(outcome.failed_steps)
        super().__init__(f"{outcome.operation} failed: [{failed}]")
