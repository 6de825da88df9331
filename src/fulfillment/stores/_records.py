"""
Snapshot arithmetic shared by the store backends.

Each function takes the current snapshot, checks the precondition and
returns the next snapshot. Backends call them while holding their write
lock and then persist the result conditionally, so in-memory and SQLite
stores apply exactly the same rules.
"""

from datetime import datetime
from uuid import UUID

from fulfillment.exceptions import ItemUnavailable, ReservationMismatch, ValidationError
from fulfillment.models import (
    Issue,
    IssueStatus,
    Item,
    Order,
    OrderStatus,
    Payout,
    Refund,
    Reservation,
    StatusChange,
    evolve,
)
from fulfillment.transitions import check_issue_transition, check_transition
from fulfillment.types import ActorId, format_money


def next_status(
    order: Order,
    status: OrderStatus,
    now: datetime,
    *,
    notes: str | None = None,
    worker_id: ActorId | None = None,
    expected_status: OrderStatus | None = None,
) -> Order:
    if status.is_terminal:
        raise ValueError(f"{status} carries a money decision; use complete_order/cancel_order")
    check_transition(order, status, expected_status=expected_status)

    changes: dict[str, object] = {"status": status, "updated_at": now}
    if worker_id is not None and order.worker_id is None:
        changes["worker_id"] = worker_id
    if status == OrderStatus.IN_PROGRESS and order.started_at is None:
        changes["started_at"] = now
    if status == OrderStatus.AWAITING_CONFIRM:
        changes["completed_at"] = now
        if notes:
            changes["completion_notes"] = notes
    return evolve(order, **changes)


def completed(
    order: Order,
    payout: Payout,
    now: datetime,
    *,
    feedback: str | None,
    rating: int | None,
    expected_status: OrderStatus,
) -> Order:
    check_transition(order, OrderStatus.COMPLETED, expected_status=expected_status)
    return evolve(
        order,
        status=OrderStatus.COMPLETED,
        payout=payout,
        customer_feedback=feedback,
        customer_rating=rating,
        confirmed_at=now,
        updated_at=now,
    )


def cancelled(
    order: Order,
    reason: str,
    refund: Refund,
    now: datetime,
    *,
    expected_status: OrderStatus | None,
) -> Order:
    check_transition(order, OrderStatus.CANCELLED, expected_status=expected_status)
    if refund.amount < 0 or refund.amount > order.value:
        raise ValidationError(
            f"Refund of {format_money(refund.amount, order.currency)} is outside the order "
            f"value of {format_money(order.value, order.currency)}.",
            field="refund_amount",
        )
    return evolve(
        order,
        status=OrderStatus.CANCELLED,
        cancellation_reason=reason,
        refund=refund,
        cancelled_at=now,
        updated_at=now,
    )


def audit_row(
    before: Order,
    after: Order,
    actor_id: ActorId,
    reason: str,
    now: datetime,
    *,
    notes: str | None = None,
    is_admin_override: bool = False,
) -> StatusChange:
    return StatusChange(
        order_id=before.id,
        from_status=before.status,
        to_status=after.status,
        actor_id=actor_id,
        reason=reason,
        notes=notes,
        is_admin_override=is_admin_override,
        changed_at=now,
    )


def issue_updated(
    issue: Issue,
    status: IssueStatus,
    now: datetime,
    *,
    resolution: str | None,
    resolver_id: ActorId | None,
) -> Issue:
    check_issue_transition(issue.id, issue.status, status, issue.resolution)
    if status == IssueStatus.RESOLVED:
        return evolve(
            issue,
            status=status,
            resolution=resolution,
            resolver_id=resolver_id,
            resolved_at=now,
        )
    if resolution is not None:
        return evolve(issue, status=status, resolution=resolution)
    return evolve(issue, status=status)


def reserved(item: Item, ticket_id: UUID, customer_id: ActorId, now: datetime) -> Item:
    if not item.available or item.sold:
        raise ItemUnavailable(item.id, item.state)
    return evolve(
        item,
        available=False,
        reservation=Reservation(ticket_id=ticket_id, customer_id=customer_id, reserved_at=now),
    )


def sold(
    item: Item,
    ticket_id: UUID,
    customer_id: ActorId,
    support_actor_id: ActorId | None,
    now: datetime,
) -> Item:
    if item.reservation is None or not item.reservation.held_by(ticket_id, customer_id):
        raise ReservationMismatch(item.id, ticket_id, customer_id)
    return evolve(
        item,
        reservation=None,
        sold=True,
        sold_to=customer_id,
        sold_by=support_actor_id,
        sold_at=now,
    )


def released(item: Item) -> Item:
    if item.reservation is None:
        return item
    return evolve(item, available=True, reservation=None)
