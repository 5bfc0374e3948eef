"""Order and bill lifecycle state machines.

The status enum is the only behavioral source of truth. Each transition also
stamps a human-readable history entry into the slot named after its milestone;
that text is an audit trail and is never parsed back into state.

All functions here are pure: they take a document and return a new one.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TypeVar

from shop_ledger.errors import StatusError
from shop_ledger.models import (
    ZERO,
    Actor,
    Bill,
    BillStatus,
    LineItem,
    Order,
    OrderStatus,
)


class OrderAction(str, Enum):
    """User-selectable order transitions."""

    MARK_PROCESSING = "mark_processing"
    MARK_PICKED = "mark_picked"
    MARK_COMPLETED = "mark_completed"
    CANCEL = "cancel"


class BillAction(str, Enum):
    """User-selectable bill transitions. ``Paid`` is only reached by payment."""

    MARK_PROCESSING = "mark_processing"
    MARK_RECEIVED = "mark_received"


@dataclass(frozen=True)
class Milestone:
    """Target status of an action plus the history slot it stamps."""

    status: OrderStatus | BillStatus
    slot: str
    verb: str


ORDER_MILESTONES: dict[OrderAction, Milestone] = {
    OrderAction.MARK_PROCESSING: Milestone(OrderStatus.PROCESSING, "processing", "processing"),
    OrderAction.MARK_PICKED: Milestone(OrderStatus.PICKED, "picked", "picked"),
    OrderAction.MARK_COMPLETED: Milestone(OrderStatus.COMPLETED, "completed", "completed"),
    OrderAction.CANCEL: Milestone(OrderStatus.CANCELLED, "cancelled", "cancelled"),
}

BILL_MILESTONES: dict[BillAction, Milestone] = {
    BillAction.MARK_PROCESSING: Milestone(BillStatus.PROCESSING, "processing", "processing"),
    BillAction.MARK_RECEIVED: Milestone(BillStatus.RECEIVED, "received", "received"),
}

# Forward order of the non-cancel milestones
ORDER_RANK: dict[OrderStatus, int] = {
    OrderStatus.ON_HOLD: 0,
    OrderStatus.PROCESSING: 1,
    OrderStatus.PICKED: 2,
    OrderStatus.COMPLETED: 3,
}

BILL_RANK: dict[BillStatus, int] = {
    BillStatus.ON_HOLD: 0,
    BillStatus.PROCESSING: 1,
    BillStatus.RECEIVED: 2,
}

ORDER_TERMINAL = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})
BILL_TERMINAL = frozenset({BillStatus.PAID})

ORDER_PAYMENT_SLOT = "payment"
BILL_PAYMENT_SLOT = "paid"

DocT = TypeVar("DocT", Order, Bill)


# =============================================================================
# HISTORY TEXT
# =============================================================================


def _stamp(moment: datetime) -> str:
    return f"on {moment.day} {moment:%b %Y}, at {moment:%H:%M}"


def format_money(amount: Decimal) -> str:
    return f"{amount:,.2f}"


def transition_history(verb: str, actor: Actor, now: datetime) -> str:
    return f"Marked as {verb} by {actor.name}, {_stamp(now)}"


def payment_history(amount: Decimal, actor: Actor, paid_on: date, now: datetime) -> str:
    return (
        f"Payment of {format_money(amount)} received by {actor.name} "
        f"on {paid_on.day} {paid_on:%b %Y}, at {now:%H:%M}"
    )


def created_history(noun: str, actor: Actor, now: datetime) -> str:
    return f"{actor.name} created this {noun} {_stamp(now)}"


# =============================================================================
# TRANSITIONS
# =============================================================================


def _stamped(doc: DocT, milestone: Milestone, actor: Actor, now: datetime) -> DocT:
    history = dict(doc.history)
    history[milestone.slot] = transition_history(milestone.verb, actor, now)
    stamps = dict(doc.milestone_at)
    stamps[milestone.slot] = now
    return replace(doc, status=milestone.status, history=history, milestone_at=stamps)


def transition_order(order: Order, action: OrderAction, actor: Actor, now: datetime) -> Order:
    """Apply an order action.

    Re-invoking the action for the status the order is already in returns the
    order unchanged. Milestones may be skipped but never walked backwards.
    """
    milestone = ORDER_MILESTONES[action]
    target = OrderStatus(milestone.status)
    current = order.status

    if current is target:
        return order
    if current in ORDER_TERMINAL:
        raise StatusError(
            f"Order {order.number} is {current.value}; cannot {action.value}",
            current=current.value,
            requested=target.value,
        )
    if target is not OrderStatus.CANCELLED and ORDER_RANK[target] < ORDER_RANK[current]:
        raise StatusError(
            f"Order {order.number} cannot move back from {current.value} to {target.value}",
            current=current.value,
            requested=target.value,
        )

    return _stamped(order, milestone, actor, now)


def transition_bill(bill: Bill, action: BillAction, actor: Actor, now: datetime) -> Bill:
    """Apply a bill action. A paid bill accepts no further manual transitions."""
    milestone = BILL_MILESTONES[action]
    target = BillStatus(milestone.status)
    current = bill.status

    if current is target:
        return bill
    if current in BILL_TERMINAL:
        raise StatusError(
            f"Bill {bill.number} is {current.value}; cannot {action.value}",
            current=current.value,
            requested=target.value,
        )
    if BILL_RANK[target] < BILL_RANK[current]:
        raise StatusError(
            f"Bill {bill.number} cannot move back from {current.value} to {target.value}",
            current=current.value,
            requested=target.value,
        )

    return _stamped(bill, milestone, actor, now)


def allowed_order_actions(order: Order) -> list[OrderAction]:
    """Actions that would change the order's status."""
    if order.status in ORDER_TERMINAL:
        return []
    actions = [
        action
        for action, milestone in ORDER_MILESTONES.items()
        if milestone.status is not OrderStatus.CANCELLED
        and ORDER_RANK[OrderStatus(milestone.status)] > ORDER_RANK[order.status]
    ]
    actions.append(OrderAction.CANCEL)
    return actions


def allowed_bill_actions(bill: Bill) -> list[BillAction]:
    if bill.status in BILL_TERMINAL:
        return []
    return [
        action
        for action, milestone in BILL_MILESTONES.items()
        if BILL_RANK[BillStatus(milestone.status)] > BILL_RANK[bill.status]
    ]


# =============================================================================
# PAYMENT SETTLEMENT
# =============================================================================


def settle(
    doc: DocT,
    amount: Decimal,
    actor: Actor,
    paid_on: date,
    now: datetime,
) -> DocT:
    """Return the document after a payment of ``amount``.

    Bills become ``Paid`` once the paid amount reaches the total. Order status
    is left alone; completing an order is a separate transition. Overpayment
    is not clamped.
    """
    new_paid = doc.paid_amount + amount
    slot = ORDER_PAYMENT_SLOT if isinstance(doc, Order) else BILL_PAYMENT_SLOT

    history = dict(doc.history)
    history[slot] = payment_history(amount, actor, paid_on, now)
    stamps = dict(doc.milestone_at)
    stamps[slot] = now

    if isinstance(doc, Bill):
        status = BillStatus.PAID if new_paid >= doc.total else doc.status
        return replace(
            doc, paid_amount=new_paid, status=status, history=history, milestone_at=stamps
        )
    return replace(doc, paid_amount=new_paid, history=history, milestone_at=stamps)


# =============================================================================
# CREATION AND EDITING
# =============================================================================


def _check_adjustments(discount: Decimal, shipping: Decimal) -> None:
    if discount < ZERO or shipping < ZERO:
        raise ValueError("discount and shipping must be non-negative")


def edit_order_items(
    order: Order,
    items: Iterable[LineItem],
    discount: Decimal | None = None,
    shipping: Decimal | None = None,
) -> Order:
    """Replace an order's line items; only allowed while the order is on hold.

    Subtotal and total follow from the new items, so they cannot drift.
    """
    if order.status is not OrderStatus.ON_HOLD:
        raise StatusError(
            f"Order {order.number} is {order.status.value}; items can only be edited on hold",
            current=order.status.value,
        )
    new_discount = order.discount if discount is None else discount
    new_shipping = order.shipping if shipping is None else shipping
    _check_adjustments(new_discount, new_shipping)
    return replace(order, items=tuple(items), discount=new_discount, shipping=new_shipping)


def new_order(
    number: str,
    order_date: date,
    customer_id: str,
    items: Iterable[LineItem],
    actor: Actor,
    now: datetime,
    discount: Decimal = ZERO,
    shipping: Decimal = ZERO,
    notes: str | None = None,
) -> Order:
    """Build an on-hold, unpaid order ready to insert. The id is assigned by the store."""
    _check_adjustments(discount, shipping)
    return Order(
        id="",
        number=number,
        date=order_date,
        customer_id=customer_id,
        items=tuple(items),
        discount=discount,
        shipping=shipping,
        history={"created": created_history("order", actor, now)},
        created_by=actor.id,
        notes=notes,
    )


def new_bill(
    number: str,
    bill_date: date,
    vendor_id: str,
    items: Iterable[LineItem],
    actor: Actor,
    now: datetime,
    discount: Decimal = ZERO,
    shipping: Decimal = ZERO,
    notes: str | None = None,
) -> Bill:
    _check_adjustments(discount, shipping)
    return Bill(
        id="",
        number=number,
        date=bill_date,
        vendor_id=vendor_id,
        items=tuple(items),
        discount=discount,
        shipping=shipping,
        history={"created": created_history("bill", actor, now)},
        created_by=actor.id,
        notes=notes,
    )
