"""
State graphs and pure decision rules shared by the services and the stores.

Both sides enforce the same rules: the services check preconditions before
asking for a change (so they can answer users precisely), and the stores
re-check them inside the atomic update (so a lost race can never slip a
forbidden transition through).
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from uuid import UUID

from fulfillment.exceptions import (
    InvalidTransition,
    IssueAlreadyResolved,
    StaleState,
    ValidationError,
)
from fulfillment.models import IssueStatus, Order, OrderStatus, RefundType
from fulfillment.types import format_money, to_money

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.IN_PROGRESS, OrderStatus.CANCELLED}),
    OrderStatus.IN_PROGRESS: frozenset(
        {OrderStatus.AWAITING_CONFIRM, OrderStatus.DISPUTED, OrderStatus.CANCELLED}
    ),
    OrderStatus.AWAITING_CONFIRM: frozenset(
        {OrderStatus.COMPLETED, OrderStatus.DISPUTED, OrderStatus.CANCELLED}
    ),
    # DISPUTED -> COMPLETED goes through AWAITING_CONFIRM (admin override)
    OrderStatus.DISPUTED: frozenset(
        {OrderStatus.AWAITING_CONFIRM, OrderStatus.IN_PROGRESS, OrderStatus.CANCELLED}
    ),
    OrderStatus.COMPLETED: frozenset(),  # Terminal state
    OrderStatus.CANCELLED: frozenset(),  # Terminal state
}

ISSUE_TRANSITIONS: dict[IssueStatus, frozenset[IssueStatus]] = {
    IssueStatus.OPEN: frozenset({IssueStatus.IN_REVIEW, IssueStatus.RESOLVED}),
    # A customer may re-escalate after a corrections round
    IssueStatus.IN_REVIEW: frozenset({IssueStatus.OPEN, IssueStatus.RESOLVED}),
    IssueStatus.RESOLVED: frozenset(),
}


def can_transition(from_status: OrderStatus, to_status: OrderStatus) -> bool:
    """Check whether ``from_status -> to_status`` is an edge of the order graph."""
    return to_status in ORDER_TRANSITIONS.get(from_status, frozenset())


def check_transition(
    order: Order,
    to_status: OrderStatus,
    *,
    expected_status: OrderStatus | None = None,
) -> None:
    """
    Validate a requested order transition against a fresh snapshot.

    Args:
        order: Snapshot read just before the change
        to_status: Requested status
        expected_status: Status the caller believed the order was in

    Raises:
        StaleState: If the order is no longer in ``expected_status``
        InvalidTransition: If the edge does not exist
    """
    if expected_status is not None and order.status != expected_status:
        raise StaleState(order.id, expected_status, order.status)
    if not can_transition(order.status, to_status):
        raise InvalidTransition(order.id, order.status, to_status)


def check_issue_transition(
    issue_id: UUID,
    from_status: IssueStatus,
    to_status: IssueStatus,
    resolution: str | None = None,
) -> None:
    if from_status == IssueStatus.RESOLVED:
        raise IssueAlreadyResolved(issue_id, resolution)
    if to_status not in ISSUE_TRANSITIONS[from_status]:
        raise InvalidTransition(
            None,
            from_status,
            to_status,
            message=f"Issue {issue_id} cannot move from {from_status} to {to_status}",
        )


def compute_refund(
    order: Order,
    refund_type: RefundType,
    refund_amount: Decimal | None = None,
) -> Decimal:
    """
    Work out the refunded amount for a cancellation.

    FULL refunds the order value and ignores any supplied amount. PARTIAL
    needs an amount greater than zero and no larger than the order value.
    NONE refunds nothing.

    Raises:
        ValidationError: If a PARTIAL amount is missing or out of range
    """
    if refund_type == RefundType.FULL:
        return order.value
    if refund_type == RefundType.NONE:
        return Decimal("0.00")

    if refund_amount is None:
        raise ValidationError(
            "A partial refund needs an amount. Enter the amount to refund, e.g. 40.00.",
            field="refund_amount",
        )
    try:
        amount = to_money(refund_amount)
    except InvalidOperation:
        amount = None
    if amount is None or not amount.is_finite():
        raise ValidationError(
            f"{refund_amount} is not a refund amount. Enter an amount such as 40.00.",
            field="refund_amount",
        )
    if amount <= 0:
        raise ValidationError(
            "A partial refund must be greater than $0.00. Enter a positive amount, "
            "or choose NONE for no refund.",
            field="refund_amount",
        )
    if amount > order.value:
        raise ValidationError(
            f"A partial refund cannot exceed the order value of "
            f"{format_money(order.value, order.currency)}. Enter a smaller amount, "
            "or choose FULL.",
            field="refund_amount",
        )
    return amount


def describe_refund(refund_type: RefundType, amount: Decimal, currency: str = "USD") -> str:
    """Human-readable refund summary, e.g. ``$40.00 partial refund``."""
    if refund_type == RefundType.NONE:
        return "no refund"
    return f"{format_money(amount, currency)} {refund_type.value.lower()} refund"


__all__ = [
    "ORDER_TRANSITIONS",
    "ISSUE_TRANSITIONS",
    "can_transition",
    "check_transition",
    "check_issue_transition",
    "compute_refund",
    "describe_refund",
]
