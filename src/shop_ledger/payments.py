"""Payment recording protocol and the other multi-row ledger writes.

The ledger store commits one row at a time, so every operation here is a saga:
a fixed sequence of independently durable writes whose individual results are
reported back in a ``SagaOutcome``. Nothing is rolled back. When some writes
land and others do not, ``PartialWriteFailure`` names both sides.

Payment order of writes:

1. Insert the income/expense transaction. Best effort: a failure becomes a
   ``TransactionLogFailure`` warning on the outcome and the saga continues.
2. Update the order/bill and the account balance concurrently, then inspect
   both results.

In-flight writes are shielded from caller cancellation.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, TypeVar

import structlog

from shop_ledger.config.defaults import LedgerDefaults
from shop_ledger.errors import (
    DuplicateSubmissionError,
    NotFoundError,
    PartialWriteFailure,
    PaymentError,
    StaleReadError,
    TransactionLogFailure,
    ValidationError,
    WriteFailure,
)
from shop_ledger.models import (
    ZERO,
    Account,
    Actor,
    Bill,
    Document,
    EntityKind,
    EntityRef,
    NewTransaction,
    Order,
    Table,
    Transaction,
    TransactionType,
)
from shop_ledger.repository import LedgerRepository
from shop_ledger.state_machines import settle

logger = structlog.get_logger(__name__)

T = TypeVar("T")

TRANSFER_CATEGORY = "transfer"


# =============================================================================
# SAGA RESULT TYPES
# =============================================================================


class StepStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class StepResult:
    """Tagged result of one write in a saga."""

    step: str
    status: StepStatus
    value: Any = None
    error: BaseException | None = None
    reason: str = ""

    @classmethod
    def success(cls, step: str, value: Any) -> StepResult:
        return cls(step, StepStatus.SUCCESS, value=value)

    @classmethod
    def failure(cls, step: str, error: BaseException) -> StepResult:
        return cls(step, StepStatus.FAILURE, error=error, reason=str(error))

    @classmethod
    def skipped(cls, step: str, reason: str) -> StepResult:
        return cls(step, StepStatus.SKIPPED, reason=reason)

    @property
    def ok(self) -> bool:
        return self.status is StepStatus.SUCCESS

    @property
    def failed(self) -> bool:
        return self.status is StepStatus.FAILURE

    def to_dict(self) -> dict[str, Any]:
        return {"step": self.step, "status": self.status.value, "reason": self.reason}


@dataclass
class SagaOutcome:
    """Per-step results of a saga.

    ``primary`` names the steps that decide success. For payments that is the
    entity and account updates; the transaction insert only adds a warning.
    """

    operation: str
    primary: tuple[str, ...]
    steps: dict[str, StepResult] = field(default_factory=dict)
    warnings: list[PaymentError] = field(default_factory=list)

    def add(self, result: StepResult) -> StepResult:
        self.steps[result.step] = result
        return result

    def result(self, step: str) -> StepResult:
        return self.steps.get(step) or StepResult.skipped(step, "not attempted")

    def value(self, step: str) -> Any:
        result = self.steps.get(step)
        return result.value if result is not None and result.ok else None

    @property
    def entity_result(self) -> StepResult:
        return self.result("entity")

    @property
    def transaction_result(self) -> StepResult:
        return self.result("transaction")

    @property
    def account_result(self) -> StepResult:
        return self.result("account")

    @property
    def entity(self) -> Document | None:
        return self.value("entity")

    @property
    def transaction(self) -> Transaction | None:
        return self.value("transaction")

    @property
    def account(self) -> Account | None:
        return self.value("account")

    @property
    def succeeded_steps(self) -> list[str]:
        return [name for name, result in self.steps.items() if result.ok]

    @property
    def failed_steps(self) -> list[str]:
        return [name for name, result in self.steps.items() if result.failed]

    @property
    def fully_applied(self) -> bool:
        return all(self.result(step).ok for step in self.primary)

    @property
    def nothing_applied(self) -> bool:
        return not any(self.result(step).ok for step in self.primary)

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "steps": [result.to_dict() for result in self.steps.values()],
            "warnings": [str(w) for w in self.warnings],
        }


PaymentOutcome = SagaOutcome


# =============================================================================
# REQUESTS
# =============================================================================


@dataclass(frozen=True)
class PaymentRequest:
    """A payment against one order or bill."""

    target: EntityRef
    amount: Decimal
    paid_on: date
    account_id: str | None = None
    payment_method: str | None = None
    memo: str | None = None


@dataclass(frozen=True)
class EntryRequest:
    """A manual income or expense entry not tied to an order or bill."""

    type: TransactionType
    amount: Decimal
    category: str
    entry_date: date
    account_id: str | None = None
    description: str = ""
    contact_id: str | None = None
    payment_method: str | None = None


@dataclass(frozen=True)
class TransferRequest:
    from_account_id: str
    to_account_id: str
    amount: Decimal
    transfer_date: date
    description: str = ""


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _positive_amount(amount: Decimal | int | str) -> Decimal:
    """Coerce ``amount`` to a Decimal and require it to be positive."""
    if isinstance(amount, bool):
        raise ValidationError(f"Amount must be a number, got {amount!r}")
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except InvalidOperation as e:
        raise ValidationError(f"Amount must be a number, got {amount!r}") from e
    if not value.is_finite() or value <= ZERO:
        raise ValidationError(f"Amount must be a positive number, got {amount}")
    return value


def payment_key(target: EntityRef) -> tuple[str, ...]:
    """In-flight key that allows one payment per order or bill at a time."""
    return ("payment", target.kind.value, target.id)


def _payment_changes(doc: Document) -> dict[str, Any]:
    """Columns a payment writes on the order/bill row."""
    row = doc.to_row()
    changes = {key: row[key] for key in ("paid_amount", "status", "history")}
    if "paid_at" in row:
        changes["paid_at"] = row["paid_at"]
    return changes


# =============================================================================
# RECORDER
# =============================================================================


class PaymentRecorder:
    """Runs payment, entry and transfer sagas against a repository."""

    def __init__(
        self,
        repository: LedgerRepository,
        defaults: LedgerDefaults,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.repository = repository
        self.defaults = defaults
        self._clock = clock
        self._in_flight: set[tuple[str, ...]] = set()
        self._logger = logger.bind(component="payment_recorder")

    def is_in_flight(self, key: tuple[str, ...]) -> bool:
        return key in self._in_flight

    async def _shielded(
        self, key: tuple[str, ...] | None, work: Coroutine[Any, Any, T]
    ) -> T:
        """Run a saga as a task the caller cannot cancel.

        When ``key`` is given, a second submission with the same key is
        refused until the first one finishes.
        """
        if key is not None and key in self._in_flight:
            work.close()
            raise DuplicateSubmissionError(f"{key[0]} already in progress for {key[1:]}")

        task = asyncio.ensure_future(work)
        if key is not None:
            self._in_flight.add(key)

            def release(done: asyncio.Future[T]) -> None:
                self._in_flight.discard(key)
                if not done.cancelled() and done.exception() is not None:
                    self._logger.debug("saga_finished_with_error", key=key)

            task.add_done_callback(release)
        return await asyncio.shield(task)

    async def _resolve_account(self, account_id: str | None) -> Account:
        resolved = account_id or self.defaults.account_id
        if not resolved:
            raise ValidationError("No account selected and no default account configured")
        try:
            return await self.repository.get_account(resolved, fresh=True)
        except NotFoundError as e:
            raise ValidationError(f"Account {resolved} not found") from e

    async def _attempt(self, outcome: SagaOutcome, step: str, write: Awaitable[Any]) -> StepResult:
        try:
            value = await write
        except Exception as e:
            return outcome.add(StepResult.failure(step, e))
        return outcome.add(StepResult.success(step, value))

    def _settle_outcome(self, outcome: SagaOutcome, **context: Any) -> SagaOutcome:
        """Raise for failed primary steps, otherwise return the outcome."""
        if outcome.fully_applied:
            return outcome
        if outcome.nothing_applied:
            self._logger.error(
                "saga_write_failed",
                operation=outcome.operation,
                failed=outcome.failed_steps,
                transaction_logged=outcome.transaction_result.ok,
                **context,
            )
            raise WriteFailure(outcome)
        self._logger.error(
            "partial_write_failure",
            operation=outcome.operation,
            succeeded=outcome.succeeded_steps,
            failed=outcome.failed_steps,
            **context,
        )
        raise PartialWriteFailure(outcome)

    def _check_account(self, outcome: SagaOutcome, step: str, expected: Decimal) -> None:
        """Patch the cache with the stored account, or invalidate it if inconsistent."""
        result = outcome.result(step)
        account = result.value
        if not result.ok or account is None:
            return
        if account.current_balance != expected:
            stale = StaleReadError(
                Table.ACCOUNTS.value,
                account.id,
                "current_balance",
                expected,
                account.current_balance,
            )
            self._logger.warning("stale_read", error=str(stale), step=step)
            outcome.warnings.append(stale)
            self.repository.forget(Table.ACCOUNTS, account.id)
        else:
            self.repository.remember(Table.ACCOUNTS, account.id, account)

    # === Payments ===

    async def record_payment(self, request: PaymentRequest, actor: Actor) -> PaymentOutcome:
        """Record a payment against an order or bill.

        Raises:
            ValidationError: Nothing was written.
            PartialWriteFailure: Exactly one of the entity/account updates landed.
            WriteFailure: Neither update landed (the transaction row may exist).
        """
        return await self._shielded(
            payment_key(request.target), self._record_payment(request, actor)
        )

    async def _record_payment(self, request: PaymentRequest, actor: Actor) -> PaymentOutcome:
        request = replace(request, amount=_positive_amount(request.amount))
        target = request.target
        try:
            doc = await self.repository.get_document(target, fresh=True)
        except NotFoundError as e:
            raise ValidationError(f"{target.kind.value.title()} {target.id} not found") from e
        account = await self._resolve_account(request.account_id)

        is_bill = target.kind is EntityKind.BILL
        amount = request.amount
        updated = settle(doc, amount, actor, request.paid_on, self._clock())
        log = self._logger.bind(
            kind=target.kind.value, entity_id=doc.id, number=doc.number, amount=str(amount)
        )

        outcome = SagaOutcome(operation="payment", primary=("entity", "account"))

        # Step 1: transaction log (best effort)
        new_tx = NewTransaction(
            date=request.paid_on,
            type=TransactionType.EXPENSE if is_bill else TransactionType.INCOME,
            category=self.defaults.purchase_category if is_bill else self.defaults.sale_category,
            account_id=account.id,
            amount=amount,
            description=request.memo or f"Payment for {target.kind.value} {doc.number}",
            reference_id=doc.id,
            contact_id=doc.contact_id,
            payment_method=request.payment_method or self.defaults.payment_method,
            created_by=actor.id,
        )
        tx_result = await self._attempt(
            outcome, "transaction", self.repository.insert_transaction(new_tx)
        )
        if tx_result.failed:
            failure = TransactionLogFailure(
                f"Could not log transaction for {target.kind.value} {doc.number}",
                cause=tx_result.error,
            )
            outcome.warnings.append(failure)
            log.warning("transaction_log_failed", error=tx_result.reason)

        # Step 2: entity and account updates, concurrently
        delta = -amount if is_bill else amount
        expected_balance = account.current_balance + delta
        await asyncio.gather(
            self._attempt(
                outcome,
                "entity",
                self.repository.update_document(updated, _payment_changes(updated)),
            ),
            self._attempt(
                outcome,
                "account",
                self.repository.update_account_balance(account.id, expected_balance),
            ),
        )
        # Keep a stable step order regardless of completion order
        outcome.steps = {
            step: outcome.steps[step] for step in ("transaction", "entity", "account")
        }

        self._check_entity(outcome, updated)
        self._check_account(outcome, "account", expected_balance)
        if outcome.entity_result.failed:
            self.repository.forget(target.kind.table, doc.id)

        self._settle_outcome(outcome, entity_id=doc.id, account_id=account.id)
        log.info(
            "payment_recorded",
            paid_amount=str(updated.paid_amount),
            status=updated.status.value,
            transaction_logged=outcome.transaction_result.ok,
        )
        return outcome

    def _check_entity(self, outcome: SagaOutcome, expected: Order | Bill) -> None:
        result = outcome.entity_result
        stored = result.value
        if not result.ok or stored is None:
            return
        table = expected.kind.table
        for name in ("paid_amount", "status"):
            want, got = getattr(expected, name), getattr(stored, name)
            if want != got:
                stale = StaleReadError(table, stored.id, name, want, got)
                self._logger.warning("stale_read", error=str(stale), step="entity")
                outcome.warnings.append(stale)
                self.repository.forget(table, stored.id)
                return
        self.repository.remember(table, stored.id, stored)

    # === Manual entries ===

    async def record_entry(self, request: EntryRequest, actor: Actor) -> SagaOutcome:
        """Record a manual income or expense and apply its balance delta.

        The transaction is inserted first; if the balance update then fails
        the transaction stays and ``PartialWriteFailure`` is raised.
        """
        return await self._shielded(None, self._record_entry(request, actor))

    async def _record_entry(self, request: EntryRequest, actor: Actor) -> SagaOutcome:
        request = replace(request, amount=_positive_amount(request.amount))
        if request.type is TransactionType.TRANSFER:
            raise ValidationError("Use record_transfer for transfers")
        if not request.category:
            raise ValidationError("A category is required")
        account = await self._resolve_account(request.account_id)

        outcome = SagaOutcome(operation="entry", primary=("transaction", "account"))
        new_tx = NewTransaction(
            date=request.entry_date,
            type=request.type,
            category=request.category,
            account_id=account.id,
            amount=request.amount,
            description=request.description,
            contact_id=request.contact_id,
            payment_method=request.payment_method or self.defaults.payment_method,
            created_by=actor.id,
        )
        tx_result = await self._attempt(
            outcome, "transaction", self.repository.insert_transaction(new_tx)
        )
        if tx_result.failed:
            outcome.add(StepResult.skipped("account", "transaction was not recorded"))
            self._settle_outcome(outcome, account_id=account.id)

        delta = request.amount if request.type is TransactionType.INCOME else -request.amount
        expected_balance = account.current_balance + delta
        await self._attempt(
            outcome,
            "account",
            self.repository.update_account_balance(account.id, expected_balance),
        )
        self._check_account(outcome, "account", expected_balance)
        self._settle_outcome(outcome, account_id=account.id)

        self._logger.info(
            "entry_recorded",
            type=request.type.value,
            category=request.category,
            account_id=account.id,
            amount=str(request.amount),
        )
        return outcome

    # === Transfers ===

    async def record_transfer(self, request: TransferRequest, actor: Actor) -> SagaOutcome:
        """Move money between two accounts.

        One Transfer transaction is inserted, then both balance legs are
        written concurrently.
        """
        key = ("transfer", request.from_account_id, request.to_account_id)
        return await self._shielded(key, self._record_transfer(request, actor))

    async def _record_transfer(self, request: TransferRequest, actor: Actor) -> SagaOutcome:
        request = replace(request, amount=_positive_amount(request.amount))
        if request.from_account_id == request.to_account_id:
            raise ValidationError("Cannot transfer to the same account")
        source = await self._resolve_account(request.from_account_id)
        destination = await self._resolve_account(request.to_account_id)
        if source.current_balance < request.amount:
            raise ValidationError(
                f"Insufficient balance in {source.name}: "
                f"{source.current_balance} available, {request.amount} requested"
            )

        outcome = SagaOutcome(
            operation="transfer",
            primary=("transaction", "source_account", "destination_account"),
        )
        new_tx = NewTransaction(
            date=request.transfer_date,
            type=TransactionType.TRANSFER,
            category=TRANSFER_CATEGORY,
            account_id=source.id,
            to_account_id=destination.id,
            amount=request.amount,
            description=request.description or f"Transfer from {source.name} to {destination.name}",
            created_by=actor.id,
        )
        tx_result = await self._attempt(
            outcome, "transaction", self.repository.insert_transaction(new_tx)
        )
        if tx_result.failed:
            outcome.add(StepResult.skipped("source_account", "transaction was not recorded"))
            outcome.add(StepResult.skipped("destination_account", "transaction was not recorded"))
            self._settle_outcome(outcome, from_account=source.id, to_account=destination.id)

        source_balance = source.current_balance - request.amount
        destination_balance = destination.current_balance + request.amount
        await asyncio.gather(
            self._attempt(
                outcome,
                "source_account",
                self.repository.update_account_balance(source.id, source_balance),
            ),
            self._attempt(
                outcome,
                "destination_account",
                self.repository.update_account_balance(destination.id, destination_balance),
            ),
        )
        outcome.steps = {
            step: outcome.steps[step]
            for step in ("transaction", "source_account", "destination_account")
        }
        self._check_account(outcome, "source_account", source_balance)
        self._check_account(outcome, "destination_account", destination_balance)
        self._settle_outcome(outcome, from_account=source.id, to_account=destination.id)

        self._logger.info(
            "transfer_recorded",
            from_account=source.id,
            to_account=destination.id,
            amount=str(request.amount),
        )
        return outcome
