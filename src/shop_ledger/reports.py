"""Financial report aggregation.

Every function here is pure: it folds the orders, bills and transactions it is
given into a summary and keeps no state between calls. Date filtering uses
``DateRange``; all bounds are inclusive and weeks run Sunday to Saturday.

Transactions in the purchase settlement category mirror bill totals that are
already counted as purchases, so they never count as "other" or operating
expenses.
"""

from __future__ import annotations

import calendar
from collections import defaultdict
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, TypeVar

from shop_ledger.config.defaults import LedgerDefaults
from shop_ledger.models import (
    ZERO,
    Bill,
    Order,
    OrderStatus,
    Transaction,
    TransactionType,
)

T = TypeVar("T")

PURCHASES_BUCKET = "Purchases"
UNCATEGORIZED = "Uncategorized"
MONTH_NAMES = tuple(calendar.month_abbr[1:])


# =============================================================================
# DATE RANGES
# =============================================================================


class RangeKind(str, Enum):
    ALL_TIME = "All Time"
    TODAY = "Today"
    THIS_WEEK = "This Week"
    THIS_MONTH = "This Month"
    THIS_YEAR = "This Year"
    CUSTOM = "Custom"


@dataclass(frozen=True)
class DateRange:
    """A report window, resolved against "today" when it is evaluated.

    A custom range with a missing bound is open on that side.
    """

    kind: RangeKind = RangeKind.ALL_TIME
    start: date | None = None
    end: date | None = None

    def __post_init__(self) -> None:
        if self.start and self.end and self.start > self.end:
            raise ValueError(f"Range start {self.start} is after end {self.end}")

    @classmethod
    def all_time(cls) -> DateRange:
        return cls(RangeKind.ALL_TIME)

    @classmethod
    def custom(cls, start: date | None, end: date | None) -> DateRange:
        return cls(RangeKind.CUSTOM, start, end)

    @classmethod
    def parse(cls, kind: str, start: date | None = None, end: date | None = None) -> DateRange:
        """Build a range from its display name, e.g. ``"This Week"``."""
        range_kind = RangeKind(kind)
        if range_kind is RangeKind.CUSTOM:
            return cls.custom(start, end)
        return cls(range_kind)

    def bounds(self, today: date) -> tuple[date | None, date | None]:
        """Concrete inclusive bounds; ``None`` means unbounded."""
        if self.kind is RangeKind.ALL_TIME:
            return None, None
        if self.kind is RangeKind.TODAY:
            return today, today
        if self.kind is RangeKind.THIS_WEEK:
            # date.weekday() is Monday=0, so Sunday is 6
            start = today - timedelta(days=(today.weekday() + 1) % 7)
            return start, start + timedelta(days=6)
        if self.kind is RangeKind.THIS_MONTH:
            last_day = calendar.monthrange(today.year, today.month)[1]
            return today.replace(day=1), today.replace(day=last_day)
        if self.kind is RangeKind.THIS_YEAR:
            return date(today.year, 1, 1), date(today.year, 12, 31)
        return self.start, self.end

    def contains(self, day: date, today: date) -> bool:
        start, end = self.bounds(today)
        if start is not None and day < start:
            return False
        if end is not None and day > end:
            return False
        return True

    def label(self) -> str:
        if self.kind is not RangeKind.CUSTOM:
            return self.kind.value
        start = self.start.isoformat() if self.start else "..."
        end = self.end.isoformat() if self.end else "..."
        return f"{start} to {end}"


def filter_range(
    items: Iterable[T], date_range: DateRange, today: date, key: Callable[[T], date]
) -> list[T]:
    return [item for item in items if date_range.contains(key(item), today)]


# =============================================================================
# REPORT RESULT TYPES
# =============================================================================


@dataclass(frozen=True)
class MonthlyCashFlow:
    month: int
    name: str
    income: Decimal = ZERO
    expense: Decimal = ZERO

    @property
    def profit(self) -> Decimal:
        return self.income - self.expense

    def to_dict(self) -> dict[str, Any]:
        return {
            "month": self.month,
            "name": self.name,
            "income": self.income,
            "expense": self.expense,
            "profit": self.profit,
        }


@dataclass(frozen=True)
class CategoryAmount:
    category: str
    name: str
    amount: Decimal

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ProfitAndLoss:
    gross_sales: Decimal
    cost_of_goods_sold: Decimal
    operating_expenses: Decimal

    @property
    def gross_profit(self) -> Decimal:
        return self.gross_sales - self.cost_of_goods_sold

    @property
    def net_profit(self) -> Decimal:
        return self.gross_profit - self.operating_expenses

    def to_dict(self) -> dict[str, Any]:
        return {
            "gross_sales": self.gross_sales,
            "cost_of_goods_sold": self.cost_of_goods_sold,
            "gross_profit": self.gross_profit,
            "operating_expenses": self.operating_expenses,
            "net_profit": self.net_profit,
        }


@dataclass(frozen=True)
class ReceivablesPayables:
    receivables: Decimal
    payables: Decimal

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DashboardSummary:
    """Headline numbers for the dashboard."""

    order_counts: dict[OrderStatus, int]
    order_totals: dict[OrderStatus, Decimal]
    total_orders: int
    total_order_value: Decimal
    average_order_value: Decimal
    total_sales: Decimal
    purchases: Decimal
    other_expenses: Decimal
    receivables: Decimal
    payables: Decimal

    @property
    def profit(self) -> Decimal:
        return self.total_sales - self.purchases - self.other_expenses

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_counts": {s.value: n for s, n in self.order_counts.items()},
            "order_totals": {s.value: v for s, v in self.order_totals.items()},
            "total_orders": self.total_orders,
            "total_order_value": self.total_order_value,
            "average_order_value": self.average_order_value,
            "total_sales": self.total_sales,
            "purchases": self.purchases,
            "other_expenses": self.other_expenses,
            "profit": self.profit,
            "receivables": self.receivables,
            "payables": self.payables,
        }


@dataclass(frozen=True)
class CustomerRevenue:
    customer_id: str
    name: str
    revenue: Decimal

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CashFlowHighlights:
    highest_revenue_month: MonthlyCashFlow
    least_expense_month: MonthlyCashFlow
    average_monthly_profit: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "highest_revenue_month": self.highest_revenue_month.name,
            "highest_revenue": self.highest_revenue_month.income,
            "least_expense_month": self.least_expense_month.name,
            "least_expense": self.least_expense_month.expense,
            "average_monthly_profit": self.average_monthly_profit,
        }


# =============================================================================
# AGGREGATIONS
# =============================================================================


def _sum(values: Iterable[Decimal]) -> Decimal:
    return sum(values, ZERO)


def other_expenses(
    transactions: Iterable[Transaction], defaults: LedgerDefaults
) -> list[Transaction]:
    """Expense transactions outside the purchase settlement category."""
    return [
        t
        for t in transactions
        if t.type is TransactionType.EXPENSE and t.category != defaults.purchase_category
    ]


def cash_flow_by_month(
    orders: Iterable[Order],
    bills: Iterable[Bill],
    transactions: Iterable[Transaction],
    year: int,
    defaults: LedgerDefaults,
) -> list[MonthlyCashFlow]:
    """Income and expense per calendar month of ``year``.

    Income is the total of every order dated in the month. Expense is bill
    totals plus non-settlement expense transactions.
    """
    income: dict[int, Decimal] = defaultdict(lambda: ZERO)
    expense: dict[int, Decimal] = defaultdict(lambda: ZERO)

    for order in orders:
        if order.date.year == year:
            income[order.date.month] += order.total
    for bill in bills:
        if bill.date.year == year:
            expense[bill.date.month] += bill.total
    for txn in other_expenses(transactions, defaults):
        if txn.date.year == year:
            expense[txn.date.month] += txn.amount

    return [
        MonthlyCashFlow(month, MONTH_NAMES[month - 1], income[month], expense[month])
        for month in range(1, 13)
    ]


def expense_by_category(
    bills: Iterable[Bill],
    transactions: Iterable[Transaction],
    defaults: LedgerDefaults,
    category_names: Mapping[str, str] | None = None,
) -> list[CategoryAmount]:
    """The "Purchases" bucket followed by one bucket per expense category."""
    names = category_names or {}
    buckets: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for txn in other_expenses(transactions, defaults):
        buckets[txn.category] += txn.amount

    purchases = CategoryAmount(
        defaults.purchase_category, PURCHASES_BUCKET, _sum(b.total for b in bills)
    )
    others = sorted(
        (
            CategoryAmount(category, names.get(category) or category or UNCATEGORIZED, amount)
            for category, amount in buckets.items()
        ),
        key=lambda bucket: (-bucket.amount, bucket.name),
    )
    return [purchases, *others]


def income_by_category(
    transactions: Iterable[Transaction],
    category_names: Mapping[str, str] | None = None,
) -> list[CategoryAmount]:
    names = category_names or {}
    buckets: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for txn in transactions:
        if txn.type is TransactionType.INCOME:
            buckets[txn.category] += txn.amount
    return sorted(
        (
            CategoryAmount(category, names.get(category) or category or UNCATEGORIZED, amount)
            for category, amount in buckets.items()
        ),
        key=lambda bucket: (-bucket.amount, bucket.name),
    )


def profit_and_loss(
    orders: Iterable[Order],
    bills: Iterable[Bill],
    transactions: Iterable[Transaction],
    defaults: LedgerDefaults,
) -> ProfitAndLoss:
    """Gross sales count completed orders only; COGS counts every bill."""
    return ProfitAndLoss(
        gross_sales=_sum(o.total for o in orders if o.status is OrderStatus.COMPLETED),
        cost_of_goods_sold=_sum(b.total for b in bills),
        operating_expenses=_sum(t.amount for t in other_expenses(transactions, defaults)),
    )


def receivables_payables(orders: Iterable[Order], bills: Iterable[Bill]) -> ReceivablesPayables:
    """Unpaid balances regardless of status."""
    return ReceivablesPayables(
        receivables=_sum(o.balance_due for o in orders),
        payables=_sum(b.balance_due for b in bills),
    )


def dashboard_summary(
    orders: Sequence[Order],
    bills: Sequence[Bill],
    transactions: Sequence[Transaction],
    defaults: LedgerDefaults,
) -> DashboardSummary:
    counts = {status: 0 for status in OrderStatus}
    totals = {status: ZERO for status in OrderStatus}
    for order in orders:
        counts[order.status] += 1
        totals[order.status] += order.total

    pnl = profit_and_loss(orders, bills, transactions, defaults)
    balances = receivables_payables(orders, bills)
    completed = counts[OrderStatus.COMPLETED]
    average = pnl.gross_sales / completed if completed else ZERO

    return DashboardSummary(
        order_counts=counts,
        order_totals=totals,
        total_orders=len(orders),
        total_order_value=_sum(totals.values()),
        average_order_value=average,
        total_sales=pnl.gross_sales,
        purchases=pnl.cost_of_goods_sold,
        other_expenses=pnl.operating_expenses,
        receivables=balances.receivables,
        payables=balances.payables,
    )


def top_customers(
    orders: Iterable[Order],
    limit: int = 3,
    customer_names: Mapping[str, str] | None = None,
) -> list[CustomerRevenue]:
    """Customers ranked by completed-order revenue."""
    names = customer_names or {}
    revenue: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for order in orders:
        if order.status is OrderStatus.COMPLETED:
            revenue[order.customer_id] += order.total
    ranked = sorted(
        (
            CustomerRevenue(customer_id, names.get(customer_id, customer_id), amount)
            for customer_id, amount in revenue.items()
            if amount > ZERO
        ),
        key=lambda c: (-c.revenue, c.name),
    )
    return ranked[:limit]


def cash_flow_highlights(months: Sequence[MonthlyCashFlow]) -> CashFlowHighlights:
    """Best revenue month, cheapest month, and mean profit across ``months``.

    Ties go to the earliest month.
    """
    if not months:
        raise ValueError("No months to summarize")
    highest = months[0]
    least = months[0]
    for month in months[1:]:
        if month.income > highest.income:
            highest = month
        if month.expense < least.expense:
            least = month
    average = _sum(m.profit for m in months) / len(months)
    return CashFlowHighlights(highest, least, average)


# =============================================================================
# DISPATCH
# =============================================================================


class ReportKind(str, Enum):
    CASH_FLOW = "cash_flow"
    CASH_FLOW_HIGHLIGHTS = "cash_flow_highlights"
    EXPENSE_BY_CATEGORY = "expense_by_category"
    INCOME_BY_CATEGORY = "income_by_category"
    PROFIT_AND_LOSS = "profit_and_loss"
    RECEIVABLES_PAYABLES = "receivables_payables"
    DASHBOARD = "dashboard"
    TOP_CUSTOMERS = "top_customers"


@dataclass(frozen=True)
class ReportInput:
    """The full entity set a report is computed from, before range filtering."""

    orders: Sequence[Order] = ()
    bills: Sequence[Bill] = ()
    transactions: Sequence[Transaction] = ()
    category_names: Mapping[str, str] = field(default_factory=dict)
    customer_names: Mapping[str, str] = field(default_factory=dict)

    def in_range(self, date_range: DateRange, today: date) -> ReportInput:
        return ReportInput(
            orders=filter_range(self.orders, date_range, today, lambda o: o.date),
            bills=filter_range(self.bills, date_range, today, lambda b: b.date),
            transactions=filter_range(self.transactions, date_range, today, lambda t: t.date),
            category_names=self.category_names,
            customer_names=self.customer_names,
        )


def report_year(date_range: DateRange, today: date) -> int:
    """Year a monthly report covers.

    A custom range reports its start year. Relative ranges report the year
    they end in, so a week spanning New Year covers the new January.
    """
    start, end = date_range.bounds(today)
    if date_range.kind is RangeKind.CUSTOM and start is not None:
        return start.year
    return end.year if end is not None else today.year


def aggregate(
    kind: ReportKind,
    date_range: DateRange,
    entities: ReportInput,
    defaults: LedgerDefaults,
    today: date | None = None,
) -> list[dict[str, Any]]:
    """Compute report ``kind`` over the in-range entities as a list of rows."""
    today = today or date.today()
    data = entities.in_range(date_range, today)

    if kind in (ReportKind.CASH_FLOW, ReportKind.CASH_FLOW_HIGHLIGHTS):
        months = cash_flow_by_month(
            data.orders, data.bills, data.transactions, report_year(date_range, today), defaults
        )
        if kind is ReportKind.CASH_FLOW:
            return [m.to_dict() for m in months]
        return [cash_flow_highlights(months).to_dict()]
    if kind is ReportKind.EXPENSE_BY_CATEGORY:
        buckets = expense_by_category(data.bills, data.transactions, defaults, data.category_names)
        return [b.to_dict() for b in buckets]
    if kind is ReportKind.INCOME_BY_CATEGORY:
        return [b.to_dict() for b in income_by_category(data.transactions, data.category_names)]
    if kind is ReportKind.PROFIT_AND_LOSS:
        return [profit_and_loss(data.orders, data.bills, data.transactions, defaults).to_dict()]
    if kind is ReportKind.RECEIVABLES_PAYABLES:
        return [receivables_payables(data.orders, data.bills).to_dict()]
    if kind is ReportKind.DASHBOARD:
        return [dashboard_summary(data.orders, data.bills, data.transactions, defaults).to_dict()]
    if kind is ReportKind.TOP_CUSTOMERS:
        return [
            c.to_dict() for c in top_customers(data.orders, customer_names=data.customer_names)
        ]
    raise ValueError(f"Unknown report kind: {kind}")
