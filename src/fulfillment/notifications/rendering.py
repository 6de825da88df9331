"""
Plain-text rendering of notification events.

The chat layer turns OutboundMessage into its own embed format; this module
only decides the wording, the fields and which actions a message carries.
Action ids have the form ``<scope>:<verb>:<record id>``.
"""

from __future__ import annotations

from fulfillment.events import (
    CorrectionsRequested,
    FulfillmentEvent,
    IssueReported,
    IssueResolved,
    ItemDelivered,
    OrderCancelled,
    OrderConfirmed,
    WorkStarted,
    WorkSubmitted,
)
from fulfillment.models import Order
from fulfillment.notifications.interface import MessageAction, OutboundMessage, Recipient
from fulfillment.transitions import describe_refund
from fulfillment.types import format_money

CONFIRM_ACTION = "order:confirm"
REPORT_ACTION = "order:report"
APPROVE_WORK_ACTION = "issue:approve_work"
CORRECTIONS_ACTION = "issue:request_corrections"
REFUND_ACTION = "issue:approve_refund"


def action_id(verb: str, record_id: object) -> str:
    return f"{verb}:{record_id}"


def _order_fields(order: Order) -> tuple[tuple[str, str], ...]:
    fields = [
        ("Order", order.label),
        ("Status", order.status.value.replace("_", " ").title()),
        ("Value", format_money(order.value, order.currency)),
        ("Customer", f"<@{order.customer_id}>"),
    ]
    if order.worker_id:
        fields.append(("Worker", f"<@{order.worker_id}>"))
    if order.service_name:
        fields.append(("Service", order.service_name))
    return tuple(fields)


def render(event: FulfillmentEvent, recipient: Recipient) -> OutboundMessage:
    """Build the message for one recipient of an event."""
    match event:
        case WorkStarted(order=order):
            return OutboundMessage(
                title=f"{order.label} started",
                body=f"<@{order.worker_id}> has started working on {order.label}.",
                fields=_order_fields(order),
            )

        case WorkSubmitted(order=order, notes=notes):
            actions: tuple[MessageAction, ...] = ()
            if recipient == Recipient.ORDER_CHANNEL:
                actions = (
                    MessageAction(
                        action_id(CONFIRM_ACTION, order.id),
                        "Confirm completion",
                        allowed_user_id=order.customer_id,
                    ),
                    MessageAction(
                        action_id(REPORT_ACTION, order.id),
                        "Report issue",
                        allowed_user_id=order.customer_id,
                    ),
                )
            return OutboundMessage(
                title=f"{order.label} is ready for review",
                body=(
                    f"<@{order.worker_id}> marked {order.label} as complete. "
                    f"<@{order.customer_id}>, please confirm the work or report an issue."
                ),
                fields=(*_order_fields(order), ("Completion notes", notes)),
                actions=actions,
            )

        case OrderConfirmed(order=order, is_admin_override=override):
            by = "confirmed by staff" if override else "confirmed by the customer"
            fields = _order_fields(order)
            if order.payout is not None and recipient in (
                Recipient.WORKER_DM,
                Recipient.STAFF_LOG,
                Recipient.COMPLETED_LEDGER,
            ):
                fields = (
                    *fields,
                    ("Worker payout", format_money(order.payout.worker_amount, order.currency)),
                    (
                        "Deposit returned",
                        format_money(order.payout.deposit_returned, order.currency),
                    ),
                )
            if order.customer_rating is not None:
                fields = (*fields, ("Rating", "★" * order.customer_rating))
            return OutboundMessage(
                title=f"{order.label} completed",
                body=f"{order.label} was {by}. Thank you!",
                fields=fields,
            )

        case OrderCancelled(order=order, reason=reason):
            refund = describe_refund(event.refund_type, event.refund_amount, order.currency)
            return OutboundMessage(
                title=f"{order.label} cancelled",
                body=f"{order.label} was cancelled: {reason}",
                fields=(*_order_fields(order), ("Refund", refund)),
            )

        case IssueReported(order=order, issue=issue, reopened=reopened):
            actions = ()
            if recipient == Recipient.STAFF_ALERTS:
                actions = (
                    MessageAction(
                        action_id(APPROVE_WORK_ACTION, issue.id), "Worker is right", staff_only=True
                    ),
                    MessageAction(
                        action_id(CORRECTIONS_ACTION, issue.id),
                        "Request corrections",
                        staff_only=True,
                    ),
                    MessageAction(
                        action_id(REFUND_ACTION, issue.id), "Refund customer", staff_only=True
                    ),
                )
            verb = "re-opened an issue" if reopened else "reported an issue"
            return OutboundMessage(
                title=f"Issue on {order.label}",
                body=(
                    f"<@{issue.reporter_id}> {verb} on {order.label}. "
                    "Staff will review it shortly."
                ),
                fields=(
                    *_order_fields(order),
                    ("Priority", issue.priority.value.title()),
                    ("Description", issue.description),
                ),
                actions=actions,
            )

        case CorrectionsRequested(order=order, instructions=instructions):
            return OutboundMessage(
                title=f"Corrections requested on {order.label}",
                body=(
                    f"Staff reviewed the issue on {order.label} and asked the worker to "
                    "make corrections. The order is back in progress."
                ),
                fields=(*_order_fields(order), ("Fix instructions", instructions)),
            )

        case IssueResolved(order=order, resolution=resolution):
            return OutboundMessage(
                title=f"Issue on {order.label} resolved",
                body=resolution,
                fields=_order_fields(order),
            )

        case ItemDelivered(item=item, credentials=credentials):
            return OutboundMessage(
                title="Your purchase",
                body=(
                    f"Thank you for buying {item.title or item.category}. Your account "
                    "details are below. Keep them private."
                ),
                fields=(("Credentials", credentials.get_secret_value()),),
            )

    raise ValueError(f"No rendering for event type {event.event_type}")


__all__ = [
    "APPROVE_WORK_ACTION",
    "CONFIRM_ACTION",
    "CORRECTIONS_ACTION",
    "REFUND_ACTION",
    "REPORT_ACTION",
    "action_id",
    "render",
]
