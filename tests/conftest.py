"""Pytest configuration and fixtures."""

import asyncio
import os
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any

import pytest

# Set test environment variables before importing settings
os.environ.setdefault("LEDGER_API_KEY", "anon-test-key")
os.environ.setdefault("LEDGER_API_URL", "http://localhost:54321")

from shop_ledger.cache import ReadCache  # noqa: E402
from shop_ledger.config import LedgerDefaults  # noqa: E402
from shop_ledger.errors import NotFoundError, StoreError  # noqa: E402
from shop_ledger.models import Actor, Table  # noqa: E402
from shop_ledger.payments import PaymentRecorder  # noqa: E402
from shop_ledger.repository import LedgerRepository  # noqa: E402
from shop_ledger.service import LedgerService  # noqa: E402
from shop_ledger.store.base import ListQuery  # noqa: E402

NOW = datetime(2024, 3, 15, 10, 30, tzinfo=UTC)
TODAY = NOW.date()


@dataclass
class FakeLedgerStore:
    """In-memory ledger store with per-operation fault injection.

    ``fail(op, table)`` makes every ``op`` on ``table`` raise. ``override``
    forces values into rows returned by ``update`` without storing them, the
    way a lagging replica or another writer would. ``hold`` pauses writes
    until the event is set; ``pause(op, table)`` holds back the response of a
    ``get`` or ``list`` after the rows were read, like a slow network reply.
    """

    rows: dict[str, dict[str, dict[str, Any]]] = field(
        default_factory=lambda: {t.value: {} for t in Table}
    )
    calls: list[tuple[str, str]] = field(default_factory=list)
    failures: dict[tuple[str, ...], Exception] = field(default_factory=dict)
    overrides: dict[tuple[str, str], dict[str, Any]] = field(default_factory=dict)
    hold: asyncio.Event | None = None
    holds: dict[tuple[str, str], asyncio.Event] = field(default_factory=dict)
    _counter: int = 0

    def fail(
        self, op: str, table: str, row_id: str | None = None, error: Exception | None = None
    ) -> None:
        key = (op, table) if row_id is None else (op, table, row_id)
        self.failures[key] = error or StoreError("store unavailable", status_code=503)

    def override(self, table: str, row_id: str, **values: Any) -> None:
        self.overrides[(table, row_id)] = values

    def pause(self, op: str, table: str) -> asyncio.Event:
        gate = self.holds[(op, table)] = asyncio.Event()
        return gate

    def seed(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        self.rows[table][str(row["id"])] = dict(row)
        return row

    def count(self, op: str, table: str) -> int:
        return sum(1 for call in self.calls if call == (op, table))

    async def _enter(self, op: str, table: str, row_id: str | None = None) -> None:
        self.calls.append((op, table))
        if self.hold is not None and op in ("create", "update"):
            await self.hold.wait()
        error = self.failures.get((op, table, row_id)) or self.failures.get((op, table))
        if error is not None:
            raise error

    async def _deliver(self, op: str, table: str, result: Any) -> Any:
        gate = self.holds.get((op, table))
        if gate is not None:
            await gate.wait()
        return result

    async def create(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        await self._enter("create", table)
        self._counter += 1
        row_id = str(row.get("id") or f"{table}-{self._counter}")
        stored = dict(row, id=row_id)
        self.rows[table][row_id] = stored
        return dict(stored)

    async def get(self, table: str, row_id: str) -> dict[str, Any]:
        await self._enter("get", table, row_id)
        if row_id not in self.rows[table]:
            raise NotFoundError(f"{table} {row_id} not found", status_code=404)
        return await self._deliver("get", table, dict(self.rows[table][row_id]))

    async def update(self, table: str, row_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        await self._enter("update", table, row_id)
        if row_id not in self.rows[table]:
            raise NotFoundError(f"{table} {row_id} not found", status_code=404)
        self.rows[table][row_id].update(changes)
        returned = dict(self.rows[table][row_id])
        returned.update(self.overrides.get((table, row_id), {}))
        return returned

    async def list(self, table: str, query: ListQuery | None = None) -> list[dict[str, Any]]:
        await self._enter("list", table)
        query = query or ListQuery()
        result = []
        for row in self.rows[table].values():
            if any(str(row.get(k)) != str(v) for k, v in query.equals.items()):
                continue
            if query.date_column:
                day = date.fromisoformat(str(row[query.date_column])[:10])
                if query.date_from and day < query.date_from:
                    continue
                if query.date_to and day > query.date_to:
                    continue
            result.append(dict(row))
        return await self._deliver("list", table, result)


# =============================================================================
# ROW BUILDERS
# =============================================================================


def order_row(
    order_id: str = "ord-1",
    total: str = "1000",
    paid: str = "0",
    status: str = "On Hold",
    order_date: str = "2024-03-10",
    customer_id: str = "cust-1",
    **extra: Any,
) -> dict[str, Any]:
    return {
        "id": order_id,
        "order_number": f"ORD-{order_id}",
        "order_date": order_date,
        "customer_id": customer_id,
        "status": status,
        "items": [{"productId": "prod-1", "productName": "Widget", "rate": total, "quantity": "1"}],
        "discount": "0",
        "shipping": "0",
        "paid_amount": paid,
        "history": {},
        **extra,
    }


def bill_row(
    bill_id: str = "bill-1",
    total: str = "400",
    paid: str = "0",
    status: str = "On Hold",
    bill_date: str = "2024-03-12",
    vendor_id: str = "vend-1",
    **extra: Any,
) -> dict[str, Any]:
    return {
        "id": bill_id,
        "bill_number": f"BILL-{bill_id}",
        "bill_date": bill_date,
        "vendor_id": vendor_id,
        "status": status,
        "items": [{"productId": "prod-2", "productName": "Stock", "rate": total, "quantity": "1"}],
        "discount": "0",
        "shipping": "0",
        "paid_amount": paid,
        "history": {},
        **extra,
    }


def account_row(
    account_id: str = "acc-cash", balance: str = "5000", name: str = "Cash Box", type: str = "Cash"
) -> dict[str, Any]:
    return {
        "id": account_id,
        "name": name,
        "type": type,
        "opening_balance": balance,
        "current_balance": balance,
    }


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def store():
    """Fake store seeded with one order, one bill and two accounts."""
    fake = FakeLedgerStore()
    fake.seed("orders", order_row())
    fake.seed("bills", bill_row())
    fake.seed("accounts", account_row())
    fake.seed("accounts", account_row("acc-bank", balance="200", name="Bank", type="Bank"))
    return fake


@pytest.fixture
def cache():
    return ReadCache()


@pytest.fixture
def repository(store, cache):
    return LedgerRepository(store, cache)


@pytest.fixture
def defaults():
    return LedgerDefaults(account_id="acc-cash")


@pytest.fixture
def actor():
    return Actor(id="user-1", name="Rahim")


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def recorder(repository, defaults, clock):
    return PaymentRecorder(repository, defaults, clock=clock)


@pytest.fixture
def service(repository, defaults, actor, clock):
    return LedgerService(repository, defaults, actor, clock=clock)
