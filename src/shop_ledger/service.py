"""Ledger service: the entry point for callers.

Binds a repository, the resolved ``LedgerDefaults`` and the acting user, and
exposes payments, status transitions, document creation and reports.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any, cast

import structlog

from shop_ledger.cache import ReadCache
from shop_ledger.config import LedgerDefaults, get_settings
from shop_ledger.config.settings import FlatSettings
from shop_ledger.errors import StaleReadError, StatusError
from shop_ledger.models import (
    BILL_MILESTONE_COLUMNS,
    ORDER_MILESTONE_COLUMNS,
    ZERO,
    Actor,
    Bill,
    Document,
    EntityKind,
    EntityRef,
    LineItem,
    Order,
)
from shop_ledger.payments import (
    EntryRequest,
    PaymentOutcome,
    PaymentRecorder,
    PaymentRequest,
    SagaOutcome,
    TransferRequest,
)
from shop_ledger.reports import DateRange, ReportInput, ReportKind, aggregate
from shop_ledger.repository import LedgerRepository
from shop_ledger.state_machines import (
    BILL_MILESTONES,
    ORDER_MILESTONES,
    BillAction,
    OrderAction,
    edit_order_items,
    new_bill,
    new_order,
    transition_bill,
    transition_order,
)
from shop_ledger.store.base import LedgerStore, ListQuery

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class LedgerService:
    """Facade over the ledger for one acting user."""

    def __init__(
        self,
        repository: LedgerRepository,
        defaults: LedgerDefaults,
        actor: Actor,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.repository = repository
        self.defaults = defaults
        self.actor = actor
        self._clock = clock
        self.payments = PaymentRecorder(repository, defaults, clock=clock)
        self._logger = logger.bind(component="ledger_service", actor=actor.id)

    @classmethod
    def from_settings(
        cls,
        actor: Actor,
        store: LedgerStore | None = None,
        settings: FlatSettings | None = None,
        cache: ReadCache | None = None,
    ) -> LedgerService:
        """Build a service with defaults resolved from settings."""
        settings = settings or get_settings()
        if store is None:
            from shop_ledger.store.rest import RestLedgerStore

            store = RestLedgerStore()
        return cls(LedgerRepository(store, cache), LedgerDefaults.from_settings(settings), actor)

    def today(self) -> date:
        return self._clock().date()

    # === Payments ===

    async def record_payment(
        self,
        target: EntityRef,
        amount: Decimal,
        account_id: str | None = None,
        paid_on: date | None = None,
        payment_method: str | None = None,
        memo: str | None = None,
    ) -> PaymentOutcome:
        request = PaymentRequest(
            target=target,
            amount=amount,
            paid_on=paid_on or self.today(),
            account_id=account_id,
            payment_method=payment_method,
            memo=memo,
        )
        return await self.payments.record_payment(request, self.actor)

    async def record_entry(self, request: EntryRequest) -> SagaOutcome:
        return await self.payments.record_entry(request, self.actor)

    async def record_transfer(self, request: TransferRequest) -> SagaOutcome:
        return await self.payments.record_transfer(request, self.actor)

    # === Status transitions ===

    async def transition_status(
        self, target: EntityRef, action: OrderAction | BillAction
    ) -> Document:
        """Move an order or bill to the action's status.

        Returns the stored document. When the document is already in the
        target status nothing is written and the current document is returned.
        """
        doc = await self.repository.get_document(target, fresh=True)
        now = self._clock()

        if target.kind is EntityKind.ORDER:
            if not isinstance(action, OrderAction):
                raise StatusError(f"{action} is not an order action")
            updated: Document = transition_order(cast(Order, doc), action, self.actor, now)
            column = ORDER_MILESTONE_COLUMNS[ORDER_MILESTONES[action].slot]
        else:
            if not isinstance(action, BillAction):
                raise StatusError(f"{action} is not a bill action")
            updated = transition_bill(cast(Bill, doc), action, self.actor, now)
            column = BILL_MILESTONE_COLUMNS[BILL_MILESTONES[action].slot]

        if updated is doc:
            self._logger.debug("transition_noop", entity_id=doc.id, status=doc.status.value)
            return doc

        row = updated.to_row()
        changes = {"status": row["status"], "history": row["history"], column: row[column]}
        stored = await self.repository.update_document(updated, changes)

        table = target.kind.table
        if stored.status != updated.status:
            self.repository.forget(table, doc.id)
            raise StaleReadError(table, doc.id, "status", updated.status, stored.status)
        self.repository.remember(table, stored.id, stored)

        self._logger.info(
            "status_changed",
            kind=target.kind.value,
            entity_id=stored.id,
            number=stored.number,
            from_status=doc.status.value,
            to_status=stored.status.value,
        )
        return stored

    # === Documents ===

    async def create_order(
        self,
        number: str,
        customer_id: str,
        items: Iterable[LineItem],
        order_date: date | None = None,
        discount: Decimal = ZERO,
        shipping: Decimal = ZERO,
        notes: str | None = None,
    ) -> Order:
        order = new_order(
            number,
            order_date or self.today(),
            customer_id,
            items,
            self.actor,
            self._clock(),
            discount=discount,
            shipping=shipping,
            notes=notes,
        )
        stored = await self.repository.create_document(order)
        self._logger.info("order_created", order_id=stored.id, number=number, total=str(stored.total))
        return cast(Order, stored)

    async def create_bill(
        self,
        number: str,
        vendor_id: str,
        items: Iterable[LineItem],
        bill_date: date | None = None,
        discount: Decimal = ZERO,
        shipping: Decimal = ZERO,
        notes: str | None = None,
    ) -> Bill:
        bill = new_bill(
            number,
            bill_date or self.today(),
            vendor_id,
            items,
            self.actor,
            self._clock(),
            discount=discount,
            shipping=shipping,
            notes=notes,
        )
        stored = await self.repository.create_document(bill)
        self._logger.info("bill_created", bill_id=stored.id, number=number, total=str(stored.total))
        return cast(Bill, stored)

    async def edit_order_items(
        self,
        order_id: str,
        items: Iterable[LineItem],
        discount: Decimal | None = None,
        shipping: Decimal | None = None,
    ) -> Order:
        """Replace the line items of an on-hold order and store the new totals."""
        order = await self.repository.get_order(order_id, fresh=True)
        updated = edit_order_items(order, items, discount=discount, shipping=shipping)
        row = updated.to_row()
        changes = {
            key: row[key] for key in ("items", "subtotal", "discount", "shipping", "total")
        }
        stored = await self.repository.update_document(updated, changes)
        self.repository.remember(EntityKind.ORDER.table, stored.id, stored)
        self._logger.info("order_items_edited", order_id=order_id, total=str(stored.total))
        return cast(Order, stored)

    # === Reports ===

    async def load_report_input(self, date_range: DateRange) -> ReportInput:
        """Fetch the orders, bills and transactions inside ``date_range``."""
        start, end = date_range.bounds(self.today())

        def window(column: str) -> ListQuery:
            return ListQuery(date_column=column, date_from=start, date_to=end, order_by=column)

        return ReportInput(
            orders=await self.repository.list_orders(window("order_date")),
            bills=await self.repository.list_bills(window("bill_date")),
            transactions=await self.repository.list_transactions(window("date")),
        )

    async def aggregate(
        self,
        kind: ReportKind,
        date_range: DateRange,
        entities: ReportInput | None = None,
    ) -> list[dict[str, Any]]:
        """Compute a report, loading the in-range entities when none are given."""
        if entities is None:
            entities = await self.load_report_input(date_range)
        return aggregate(kind, date_range, entities, self.defaults, today=self.today())
