"""Typed, cached access to ledger rows.

Reads go through the shared ``ReadCache`` unless ``fresh=True``. Writes return
the row exactly as the store returned it and leave the decision to patch or
invalidate the row key to the caller; list keys for the written table are
always invalidated.
"""

from decimal import Decimal
from typing import Any

import structlog

from shop_ledger.cache import ReadCache, list_key, row_key
from shop_ledger.models import (
    Account,
    Bill,
    Document,
    EntityKind,
    EntityRef,
    NewTransaction,
    Order,
    Table,
    Transaction,
    document_from_row,
)
from shop_ledger.store.base import LedgerStore, ListQuery

logger = structlog.get_logger(__name__)


def _query_token(query: ListQuery | None) -> str:
    if query is None:
        return "all"
    equals = ",".join(f"{k}={v}" for k, v in sorted(query.equals.items()))
    return (
        f"{equals}|{query.date_column}|{query.date_from}|{query.date_to}"
        f"|{query.order_by}|{query.descending}|{query.limit}"
    )


class LedgerRepository:
    """Store plus cache, speaking domain models instead of rows."""

    def __init__(self, store: LedgerStore, cache: ReadCache | None = None):
        self.store = store
        self.cache = cache if cache is not None else ReadCache()

    # === Reads ===

    async def _get(self, table: Table, row_id: str, parse: Any, fresh: bool) -> Any:
        key = row_key(table.value, row_id)

        async def fetch() -> Any:
            return parse(await self.store.get(table.value, row_id))

        return await self.cache.get_or_fetch(key, fetch, refresh=fresh)

    async def get_order(self, order_id: str, fresh: bool = False) -> Order:
        return await self._get(Table.ORDERS, order_id, Order.from_row, fresh)

    async def get_bill(self, bill_id: str, fresh: bool = False) -> Bill:
        return await self._get(Table.BILLS, bill_id, Bill.from_row, fresh)

    async def get_document(self, ref: EntityRef, fresh: bool = False) -> Document:
        if ref.kind is EntityKind.ORDER:
            return await self.get_order(ref.id, fresh=fresh)
        return await self.get_bill(ref.id, fresh=fresh)

    async def get_account(self, account_id: str, fresh: bool = False) -> Account:
        return await self._get(Table.ACCOUNTS, account_id, Account.from_row, fresh)

    async def _list(self, table: Table, query: ListQuery | None, parse: Any) -> list[Any]:
        key = list_key(table.value, _query_token(query))

        async def fetch() -> list[Any]:
            rows = await self.store.list(table.value, query)
            return [parse(row) for row in rows]

        return await self.cache.get_or_fetch(key, fetch)

    async def list_orders(self, query: ListQuery | None = None) -> list[Order]:
        return await self._list(Table.ORDERS, query, Order.from_row)

    async def list_bills(self, query: ListQuery | None = None) -> list[Bill]:
        return await self._list(Table.BILLS, query, Bill.from_row)

    async def list_transactions(self, query: ListQuery | None = None) -> list[Transaction]:
        return await self._list(Table.TRANSACTIONS, query, Transaction.from_row)

    # === Writes ===

    async def create_document(self, doc: Document) -> Document:
        """Insert a new order or bill; the stored row is cached."""
        table = doc.kind.table
        row = await self.store.create(table, doc.to_row())
        stored = document_from_row(doc.kind, row)
        self.cache.patch(row_key(table, stored.id), stored)
        self.cache.invalidate_lists(table)
        return stored

    async def update_document(self, doc: Document, changes: dict[str, Any]) -> Document:
        """Write ``changes`` to ``doc``'s row and return the stored document."""
        table = doc.kind.table
        row = await self.store.update(table, doc.id, changes)
        self.cache.invalidate_lists(table)
        return document_from_row(doc.kind, row)

    async def update_account_balance(self, account_id: str, balance: Decimal) -> Account:
        table = Table.ACCOUNTS.value
        row = await self.store.update(table, account_id, {"current_balance": str(balance)})
        self.cache.invalidate_lists(table)
        return Account.from_row(row)

    async def insert_transaction(self, new: NewTransaction) -> Transaction:
        table = Table.TRANSACTIONS.value
        row = await self.store.create(table, new.to_row())
        stored = Transaction.from_row(row)
        self.cache.patch(row_key(table, stored.id), stored)
        self.cache.invalidate_lists(table)
        return stored

    # === Cache decisions ===

    def remember(self, table: Table | str, row_id: str, value: Any) -> None:
        self.cache.patch(row_key(Table(table).value, row_id), value)

    def forget(self, table: Table | str, row_id: str) -> None:
        self.cache.invalidate(row_key(Table(table).value, row_id))
