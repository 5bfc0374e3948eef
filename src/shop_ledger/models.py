"""Domain models for orders, bills, transactions and accounts.

Models are frozen dataclasses; every change produces a new value via
``dataclasses.replace``. Rows coming from the ledger store use snake_case
columns, but the camelCase spelling written by older clients is accepted too.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

ZERO = Decimal("0")


class OrderStatus(str, Enum):
    """Lifecycle status of a sales order."""

    ON_HOLD = "On Hold"
    PROCESSING = "Processing"
    PICKED = "Picked"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class BillStatus(str, Enum):
    """Lifecycle status of a purchase bill."""

    ON_HOLD = "On Hold"
    PROCESSING = "Processing"
    RECEIVED = "Received"
    PAID = "Paid"


class TransactionType(str, Enum):
    INCOME = "Income"
    EXPENSE = "Expense"
    TRANSFER = "Transfer"


class AccountType(str, Enum):
    BANK = "Bank"
    CASH = "Cash"


class EntityKind(str, Enum):
    """Kind of document a payment can settle."""

    ORDER = "order"
    BILL = "bill"

    @property
    def table(self) -> str:
        return "orders" if self is EntityKind.ORDER else "bills"


class Table(str, Enum):
    """Ledger store tables."""

    ORDERS = "orders"
    BILLS = "bills"
    TRANSACTIONS = "transactions"
    ACCOUNTS = "accounts"


@dataclass(frozen=True)
class EntityRef:
    """Typed pointer to an order or bill."""

    kind: EntityKind
    id: str

    @classmethod
    def order(cls, order_id: str) -> EntityRef:
        return cls(EntityKind.ORDER, order_id)

    @classmethod
    def bill(cls, bill_id: str) -> EntityRef:
        return cls(EntityKind.BILL, bill_id)


# =============================================================================
# ROW PARSING HELPERS
# =============================================================================


def to_decimal(value: Any) -> Decimal:
    """Convert a store value to Decimal, treating empty values as zero."""
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount {value!r}") from exc


def parse_date(value: Any) -> date:
    """Parse a date column that may hold a date or a full ISO timestamp."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        return date.fromisoformat(value[:10])
    raise ValueError(f"Invalid date {value!r}")


def parse_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _pick(row: dict[str, Any], snake: str, camel: str, default: Any = None) -> Any:
    value = row.get(snake)
    if value is None:
        value = row.get(camel, default)
    return value


def _money(value: Decimal) -> str:
    return str(value)


# =============================================================================
# LINE ITEMS AND DOCUMENTS
# =============================================================================


@dataclass(frozen=True)
class LineItem:
    """A product line on an order or bill. Amount is always rate * quantity."""

    product_id: str
    rate: Decimal
    quantity: Decimal
    product_name: str = ""

    @property
    def amount(self) -> Decimal:
        return self.rate * self.quantity

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> LineItem:
        return cls(
            product_id=str(_pick(row, "product_id", "productId", "")),
            product_name=str(_pick(row, "product_name", "productName", "")),
            rate=to_decimal(row.get("rate")),
            quantity=to_decimal(row.get("quantity")),
        )

    def to_row(self) -> dict[str, Any]:
        return {
            "productId": self.product_id,
            "productName": self.product_name,
            "rate": _money(self.rate),
            "quantity": _money(self.quantity),
            "amount": _money(self.amount),
        }


class _DocumentTotals:
    """Totals shared by orders and bills, derived from items and adjustments."""

    items: tuple[LineItem, ...]
    discount: Decimal
    shipping: Decimal
    paid_amount: Decimal

    @property
    def subtotal(self) -> Decimal:
        return sum((item.amount for item in self.items), ZERO)

    @property
    def total(self) -> Decimal:
        return self.subtotal - self.discount + self.shipping

    @property
    def balance_due(self) -> Decimal:
        """Unpaid remainder; negative when the document was overpaid."""
        return self.total - self.paid_amount


def _items_from_row(row: dict[str, Any]) -> tuple[LineItem, ...]:
    return tuple(LineItem.from_row(item) for item in (row.get("items") or []))


def _milestones_from_row(
    row: dict[str, Any], columns: dict[str, str]
) -> dict[str, datetime]:
    stamps: dict[str, datetime] = {}
    for milestone, column in columns.items():
        value = parse_datetime(row.get(column))
        if value is not None:
            stamps[milestone] = value
    return stamps


def _document_row(doc: Order | Bill, columns: dict[str, str]) -> dict[str, Any]:
    row: dict[str, Any] = {
        "status": doc.status.value,
        "items": [item.to_row() for item in doc.items],
        "subtotal": _money(doc.subtotal),
        "discount": _money(doc.discount),
        "shipping": _money(doc.shipping),
        "total": _money(doc.total),
        "paid_amount": _money(doc.paid_amount),
        "history": dict(doc.history),
        "notes": doc.notes,
    }
    if doc.created_by:
        row["created_by"] = doc.created_by
    for milestone, column in columns.items():
        stamp = doc.milestone_at.get(milestone)
        if stamp is not None:
            row[column] = stamp.isoformat()
    return row


ORDER_MILESTONE_COLUMNS: dict[str, str] = {
    "processing": "processed_at",
    "picked": "picked_at",
    "completed": "completed_at",
    "cancelled": "cancelled_at",
    "payment": "paid_at",
}

BILL_MILESTONE_COLUMNS: dict[str, str] = {
    "processing": "processed_at",
    "received": "received_at",
    "paid": "paid_at",
}


@dataclass(frozen=True)
class Order(_DocumentTotals):
    """A sales order."""

    id: str
    number: str
    date: date
    customer_id: str
    status: OrderStatus = OrderStatus.ON_HOLD
    items: tuple[LineItem, ...] = ()
    discount: Decimal = ZERO
    shipping: Decimal = ZERO
    paid_amount: Decimal = ZERO
    history: dict[str, str] = field(default_factory=dict)
    milestone_at: dict[str, datetime] = field(default_factory=dict)
    created_by: str | None = None
    notes: str | None = None

    kind = EntityKind.ORDER

    @property
    def contact_id(self) -> str:
        return self.customer_id

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Order:
        return cls(
            id=str(row["id"]),
            number=str(_pick(row, "order_number", "orderNumber", "")),
            date=parse_date(_pick(row, "order_date", "orderDate")),
            customer_id=str(_pick(row, "customer_id", "customerId", "")),
            status=OrderStatus(row.get("status") or OrderStatus.ON_HOLD.value),
            items=_items_from_row(row),
            discount=to_decimal(row.get("discount")),
            shipping=to_decimal(row.get("shipping")),
            paid_amount=to_decimal(_pick(row, "paid_amount", "paidAmount")),
            history=dict(row.get("history") or {}),
            milestone_at=_milestones_from_row(row, ORDER_MILESTONE_COLUMNS),
            created_by=_pick(row, "created_by", "createdBy"),
            notes=row.get("notes"),
        )

    def to_row(self) -> dict[str, Any]:
        row = _document_row(self, ORDER_MILESTONE_COLUMNS)
        row.update(
            {
                "order_number": self.number,
                "order_date": self.date.isoformat(),
                "customer_id": self.customer_id,
            }
        )
        return row


@dataclass(frozen=True)
class Bill(_DocumentTotals):
    """A purchase bill."""

    id: str
    number: str
    date: date
    vendor_id: str
    status: BillStatus = BillStatus.ON_HOLD
    items: tuple[LineItem, ...] = ()
    discount: Decimal = ZERO
    shipping: Decimal = ZERO
    paid_amount: Decimal = ZERO
    history: dict[str, str] = field(default_factory=dict)
    milestone_at: dict[str, datetime] = field(default_factory=dict)
    created_by: str | None = None
    notes: str | None = None

    kind = EntityKind.BILL

    @property
    def contact_id(self) -> str:
        return self.vendor_id

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Bill:
        return cls(
            id=str(row["id"]),
            number=str(_pick(row, "bill_number", "billNumber", "")),
            date=parse_date(_pick(row, "bill_date", "billDate")),
            vendor_id=str(_pick(row, "vendor_id", "vendorId", "")),
            status=BillStatus(row.get("status") or BillStatus.ON_HOLD.value),
            items=_items_from_row(row),
            discount=to_decimal(row.get("discount")),
            shipping=to_decimal(row.get("shipping")),
            paid_amount=to_decimal(_pick(row, "paid_amount", "paidAmount")),
            history=dict(row.get("history") or {}),
            milestone_at=_milestones_from_row(row, BILL_MILESTONE_COLUMNS),
            created_by=_pick(row, "created_by", "createdBy"),
            notes=row.get("notes"),
        )

    def to_row(self) -> dict[str, Any]:
        row = _document_row(self, BILL_MILESTONE_COLUMNS)
        row.update(
            {
                "bill_number": self.number,
                "bill_date": self.date.isoformat(),
                "vendor_id": self.vendor_id,
            }
        )
        return row


Document = Order | Bill


# =============================================================================
# TRANSACTIONS AND ACCOUNTS
# =============================================================================


@dataclass(frozen=True)
class Transaction:
    """An income, expense or transfer line. Never mutated once stored."""

    id: str
    date: date
    type: TransactionType
    category: str
    account_id: str
    amount: Decimal
    description: str = ""
    to_account_id: str | None = None
    reference_id: str | None = None
    contact_id: str | None = None
    payment_method: str = ""
    created_by: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Transaction:
        return cls(
            id=str(row["id"]),
            date=parse_date(row.get("date") or _pick(row, "created_at", "createdAt")),
            type=TransactionType(row["type"]),
            category=str(row.get("category") or ""),
            account_id=str(_pick(row, "account_id", "accountId", "")),
            amount=to_decimal(row.get("amount")),
            description=str(row.get("description") or ""),
            to_account_id=_pick(row, "to_account_id", "toAccountId"),
            reference_id=_pick(row, "reference_id", "referenceId"),
            contact_id=_pick(row, "contact_id", "contactId"),
            payment_method=str(_pick(row, "payment_method", "paymentMethod", "") or ""),
            created_by=_pick(row, "created_by", "createdBy"),
            created_at=parse_datetime(_pick(row, "created_at", "createdAt")),
        )


@dataclass(frozen=True)
class NewTransaction:
    """Insert payload for a transaction row; the store assigns the id."""

    date: date
    type: TransactionType
    category: str
    account_id: str
    amount: Decimal
    description: str = ""
    to_account_id: str | None = None
    reference_id: str | None = None
    contact_id: str | None = None
    payment_method: str = ""
    created_by: str | None = None

    def to_row(self) -> dict[str, Any]:
        # Only columns with values; the store validates empty strings as UUIDs.
        row: dict[str, Any] = {
            "date": self.date.isoformat(),
            "type": self.type.value,
            "category": self.category,
            "account_id": self.account_id,
            "amount": _money(self.amount),
            "description": self.description,
            "payment_method": self.payment_method,
        }
        optional = {
            "to_account_id": self.to_account_id,
            "reference_id": self.reference_id,
            "contact_id": self.contact_id,
            "created_by": self.created_by,
        }
        row.update({key: value for key, value in optional.items() if value})
        return row


@dataclass(frozen=True)
class Account:
    """A bank or cash account with a running balance."""

    id: str
    name: str
    type: AccountType
    opening_balance: Decimal = ZERO
    current_balance: Decimal = ZERO

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Account:
        return cls(
            id=str(row["id"]),
            name=str(row.get("name") or ""),
            type=AccountType(row.get("type") or AccountType.CASH.value),
            opening_balance=to_decimal(_pick(row, "opening_balance", "openingBalance")),
            current_balance=to_decimal(_pick(row, "current_balance", "currentBalance")),
        )


@dataclass(frozen=True)
class Actor:
    """The user performing an action, for history attribution."""

    id: str
    name: str


def document_from_row(kind: EntityKind, row: dict[str, Any]) -> Document:
    if kind is EntityKind.ORDER:
        return Order.from_row(row)
    return Bill.from_row(row)
