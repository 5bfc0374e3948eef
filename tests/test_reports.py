"""Tests for the report aggregator."""

from datetime import date
from decimal import Decimal

import pytest

from shop_ledger.config import LedgerDefaults
from shop_ledger.models import (
    Bill,
    LineItem,
    Order,
    OrderStatus,
    Transaction,
    TransactionType,
)
from shop_ledger.reports import (
    DateRange,
    RangeKind,
    ReportInput,
    ReportKind,
    aggregate,
    cash_flow_by_month,
    cash_flow_highlights,
    dashboard_summary,
    expense_by_category,
    income_by_category,
    profit_and_loss,
    receivables_payables,
    report_year,
    top_customers,
)

TODAY = date(2024, 3, 15)
DEFAULTS = LedgerDefaults()


def order(total, day=date(2024, 3, 10), status=OrderStatus.COMPLETED, paid="0", customer="cust-1", oid="o"):
    return Order(
        id=oid,
        number=oid,
        date=day,
        customer_id=customer,
        status=status,
        items=(LineItem("p", Decimal(total), Decimal("1")),),
        paid_amount=Decimal(paid),
    )


def bill(total, day=date(2024, 3, 12), paid="0"):
    return Bill(
        id="b",
        number="b",
        date=day,
        vendor_id="vend-1",
        items=(LineItem("p", Decimal(total), Decimal("1")),),
        paid_amount=Decimal(paid),
    )


def txn(amount, category, type=TransactionType.EXPENSE, day=date(2024, 3, 13)):
    return Transaction(
        id=f"t-{category}-{amount}",
        date=day,
        type=type,
        category=category,
        account_id="acc-cash",
        amount=Decimal(amount),
    )


@pytest.fixture
def scenario():
    """One completed order of 1000, one bill of 400, one rent expense of 100."""
    return ReportInput(
        orders=[order("1000")],
        bills=[bill("400")],
        transactions=[txn("100", "expense_rent")],
    )


class TestDateRange:
    """Tests for report date windows."""

    def test_week_runs_sunday_to_saturday(self):
        # 15 Mar 2024 is a Friday
        start, end = DateRange(RangeKind.THIS_WEEK).bounds(TODAY)

        assert start == date(2024, 3, 10)
        assert end == date(2024, 3, 16)
        assert start.weekday() == 6

    def test_week_starting_on_sunday(self):
        start, end = DateRange(RangeKind.THIS_WEEK).bounds(date(2024, 3, 10))

        assert (start, end) == (date(2024, 3, 10), date(2024, 3, 16))

    def test_month_and_year(self):
        assert DateRange(RangeKind.THIS_MONTH).bounds(date(2024, 2, 10)) == (
            date(2024, 2, 1),
            date(2024, 2, 29),
        )
        assert DateRange(RangeKind.THIS_YEAR).bounds(TODAY) == (date(2024, 1, 1), date(2024, 12, 31))

    def test_custom_bounds_are_inclusive(self):
        window = DateRange.custom(date(2024, 3, 1), date(2024, 3, 31))

        assert window.contains(date(2024, 3, 1), TODAY)
        assert window.contains(date(2024, 3, 31), TODAY)
        assert not window.contains(date(2024, 2, 29), TODAY)
        assert not window.contains(date(2024, 4, 1), TODAY)

    def test_open_ended_custom_range(self):
        window = DateRange.custom(date(2024, 3, 1), None)

        assert window.contains(date(2030, 1, 1), TODAY)
        assert not window.contains(date(2024, 2, 1), TODAY)

    def test_inverted_custom_range_rejected(self):
        with pytest.raises(ValueError):
            DateRange.custom(date(2024, 4, 1), date(2024, 3, 1))

    def test_parse_display_name(self):
        assert DateRange.parse("Today").bounds(TODAY) == (TODAY, TODAY)
        assert DateRange.parse("All Time").bounds(TODAY) == (None, None)


class TestScenario:
    """Completed order 1000, bill 400, other expense 100 in the same month."""

    def test_cash_flow_month(self, scenario):
        months = cash_flow_by_month(scenario.orders, scenario.bills, scenario.transactions, 2024, DEFAULTS)
        march = months[2]

        assert len(months) == 12
        assert march.name == "Mar"
        assert march.income == Decimal("1000")
        assert march.expense == Decimal("500")
        assert march.profit == Decimal("500")
        assert months[0].income == Decimal("0")

    def test_profit_and_loss(self, scenario):
        pnl = profit_and_loss(scenario.orders, scenario.bills, scenario.transactions, DEFAULTS)

        assert pnl.gross_sales == Decimal("1000")
        assert pnl.cost_of_goods_sold == Decimal("400")
        assert pnl.gross_profit == Decimal("600")
        assert pnl.operating_expenses == Decimal("100")
        assert pnl.net_profit == Decimal("500")

    def test_aggregate_dispatch(self, scenario):
        rows = aggregate(ReportKind.PROFIT_AND_LOSS, DateRange(RangeKind.THIS_MONTH), scenario, DEFAULTS, TODAY)

        assert rows == [
            {
                "gross_sales": Decimal("1000"),
                "cost_of_goods_sold": Decimal("400"),
                "gross_profit": Decimal("600"),
                "operating_expenses": Decimal("100"),
                "net_profit": Decimal("500"),
            }
        ]


class TestSettlementExclusion:
    """Settlement transactions are represented only through bill totals."""

    def test_excluded_everywhere(self, scenario):
        data = ReportInput(
            orders=scenario.orders,
            bills=scenario.bills,
            transactions=[*scenario.transactions, txn("400", "expense_purchases")],
        )

        months = cash_flow_by_month(data.orders, data.bills, data.transactions, 2024, DEFAULTS)
        pnl = profit_and_loss(data.orders, data.bills, data.transactions, DEFAULTS)
        buckets = expense_by_category(data.bills, data.transactions, DEFAULTS)

        assert months[2].expense == Decimal("500")
        assert pnl.operating_expenses == Decimal("100")
        assert [(b.name, b.amount) for b in buckets] == [
            ("Purchases", Decimal("400")),
            ("expense_rent", Decimal("100")),
        ]

    def test_configured_category_is_used(self):
        defaults = LedgerDefaults(purchase_category="cat-purchases")
        transactions = [txn("50", "cat-purchases"), txn("20", "expense_purchases")]

        pnl = profit_and_loss([], [], transactions, defaults)

        assert pnl.operating_expenses == Decimal("20")


class TestRangeFiltering:
    """Entities outside the window never appear; boundary dates do."""

    def test_custom_window(self):
        data = ReportInput(
            orders=[
                order("100", day=date(2024, 3, 1), oid="a"),
                order("200", day=date(2024, 3, 31), oid="b"),
                order("999", day=date(2024, 4, 1), oid="c"),
            ],
            bills=[bill("50", day=date(2024, 2, 29))],
            transactions=[txn("30", "expense_rent", day=date(2024, 3, 31))],
        )
        window = DateRange.custom(date(2024, 3, 1), date(2024, 3, 31))

        (pnl,) = aggregate(ReportKind.PROFIT_AND_LOSS, window, data, DEFAULTS, TODAY)

        assert pnl["gross_sales"] == Decimal("300")
        assert pnl["cost_of_goods_sold"] == Decimal("0")
        assert pnl["operating_expenses"] == Decimal("30")

    def test_week_across_new_year_reports_the_new_january(self):
        # 2 Jan 2025 is a Thursday; the week runs 29 Dec 2024 to 4 Jan 2025
        today = date(2025, 1, 2)
        data = ReportInput(orders=[order("500", day=date(2025, 1, 1))])

        months = aggregate(ReportKind.CASH_FLOW, DateRange(RangeKind.THIS_WEEK), data, DEFAULTS, today)

        assert report_year(DateRange(RangeKind.THIS_WEEK), today) == 2025
        assert months[0]["income"] == Decimal("500")

    def test_custom_range_reports_its_start_year(self):
        window = DateRange.custom(date(2023, 5, 1), date(2024, 2, 1))

        assert report_year(window, TODAY) == 2023
        assert report_year(DateRange.custom(None, date(2022, 6, 30)), TODAY) == 2022
        assert report_year(DateRange.all_time(), TODAY) == 2024


class TestOtherReports:
    """Tests for the remaining summaries."""

    def test_receivables_payables_any_status(self):
        orders = [
            order("100", status=OrderStatus.ON_HOLD, paid="20"),
            order("50", status=OrderStatus.CANCELLED),
        ]

        result = receivables_payables(orders, [bill("400", paid="400"), bill("30")])

        assert result.receivables == Decimal("130")
        assert result.payables == Decimal("30")

    def test_expense_buckets_use_category_names(self):
        buckets = expense_by_category(
            [],
            [txn("10", "expense_rent"), txn("5", "")],
            DEFAULTS,
            category_names={"expense_rent": "Rent"},
        )

        assert [(b.name, b.amount) for b in buckets] == [
            ("Purchases", Decimal("0")),
            ("Rent", Decimal("10")),
            ("Uncategorized", Decimal("5")),
        ]

    def test_income_by_category(self):
        transactions = [
            txn("100", "income_sales", TransactionType.INCOME),
            txn("40", "income_other", TransactionType.INCOME),
            txn("60", "income_sales", TransactionType.INCOME),
            txn("70", "expense_rent"),
        ]

        buckets = income_by_category(transactions)

        assert [(b.category, b.amount) for b in buckets] == [
            ("income_sales", Decimal("160")),
            ("income_other", Decimal("40")),
        ]

    def test_top_customers_completed_only(self):
        orders = [
            order("300", customer="c1", oid="1"),
            order("500", customer="c2", oid="2"),
            order("100", customer="c1", oid="3"),
            order("900", customer="c3", status=OrderStatus.PROCESSING, oid="4"),
            order("50", customer="c4", oid="5"),
        ]

        top = top_customers(orders, customer_names={"c2": "Karim"})

        assert [(c.customer_id, c.revenue) for c in top] == [
            ("c2", Decimal("500")),
            ("c1", Decimal("400")),
            ("c4", Decimal("50")),
        ]
        assert top[0].name == "Karim"

    def test_dashboard_summary(self, scenario):
        orders = [*scenario.orders, order("200", status=OrderStatus.PICKED, paid="50", oid="x")]

        summary = dashboard_summary(orders, scenario.bills, scenario.transactions, DEFAULTS)

        assert summary.order_counts[OrderStatus.COMPLETED] == 1
        assert summary.order_counts[OrderStatus.PICKED] == 1
        assert summary.order_totals[OrderStatus.PICKED] == Decimal("200")
        assert summary.total_orders == 2
        assert summary.total_order_value == Decimal("1200")
        assert summary.average_order_value == Decimal("1000")
        assert summary.profit == Decimal("500")
        assert summary.receivables == Decimal("1150")
        assert summary.payables == Decimal("400")

    def test_cash_flow_highlights(self, scenario):
        months = cash_flow_by_month(scenario.orders, scenario.bills, scenario.transactions, 2024, DEFAULTS)

        highlights = cash_flow_highlights(months)

        assert highlights.highest_revenue_month.name == "Mar"
        assert highlights.least_expense_month.name == "Jan"
        assert highlights.average_monthly_profit == Decimal("500") / 12

    def test_recomputed_on_every_call(self, scenario):
        first = aggregate(ReportKind.CASH_FLOW, DateRange.all_time(), scenario, DEFAULTS, TODAY)
        data = ReportInput(
            orders=[*scenario.orders, order("10", day=date(2024, 3, 20), oid="late")],
            bills=scenario.bills,
            transactions=scenario.transactions,
        )

        second = aggregate(ReportKind.CASH_FLOW, DateRange.all_time(), data, DEFAULTS, TODAY)

        assert first[2]["income"] == Decimal("1000")
        assert second[2]["income"] == Decimal("1010")
