"""
Notification events.

Events are immutable records of something that already happened to an
order, an issue or a ticket. They carry the snapshot taken right after the
change, so rendering a notification never re-reads the store.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from fulfillment.models import Issue, Item, Order, Refund, RefundType, Ticket, utcnow
from fulfillment.types import ActorId, ChannelId


class FulfillmentEvent(BaseModel):
    """
    Base class for notification events.

    Subclasses expose who the event concerns through ``customer_id``,
    ``worker_id`` and ``channel_id``; the fanout uses them to resolve the
    direct-message and order-channel recipients.

    Attributes:
        event_id: Unique identifier for this event instance
        actor_id: User who caused the event
        occurred_at: When the event occurred (UTC timestamp)
    """

    model_config = ConfigDict(frozen=True)

    event_id: UUID = Field(default_factory=uuid4)
    actor_id: ActorId
    occurred_at: datetime = Field(default_factory=utcnow)

    @property
    def event_type(self) -> str:
        return type(self).__name__

    @property
    def customer_id(self) -> ActorId | None:
        return None

    @property
    def worker_id(self) -> ActorId | None:
        return None

    @property
    def channel_id(self) -> ChannelId | None:
        return None


class OrderEvent(FulfillmentEvent):
    """Event about one order; ``order`` is the snapshot after the change."""

    order: Order

    @property
    def customer_id(self) -> ActorId | None:
        return self.order.customer_id

    @property
    def worker_id(self) -> ActorId | None:
        return self.order.worker_id

    @property
    def channel_id(self) -> ChannelId | None:
        return self.order.channel_id


class WorkStarted(OrderEvent):
    pass


class WorkSubmitted(OrderEvent):
    """The worker marked the order complete and is waiting for the customer."""

    notes: str


class OrderConfirmed(OrderEvent):
    is_admin_override: bool = False


class OrderCancelled(OrderEvent):
    reason: str

    @property
    def refund(self) -> Refund | None:
        return self.order.refund

    @property
    def refund_type(self) -> RefundType:
        return self.order.refund.refund_type if self.order.refund else RefundType.NONE

    @property
    def refund_amount(self) -> Decimal:
        return self.order.refund.amount if self.order.refund else Decimal("0.00")


class IssueReported(OrderEvent):
    issue: Issue
    reopened: bool = False


class CorrectionsRequested(OrderEvent):
    issue: Issue
    instructions: str


class IssueResolved(OrderEvent):
    """Staff closed a dispute; ``resolution`` is the text stored on the issue."""

    issue: Issue | None
    resolution: str


class ItemDelivered(FulfillmentEvent):
    """
    Credentials for a purchased item.

    Only ever sent to the buyer's direct messages. ``credentials`` is a
    SecretStr so it never appears in logs or reprs.
    """

    ticket: Ticket
    item: Item
    credentials: SecretStr

    @property
    def customer_id(self) -> ActorId | None:
        return self.ticket.customer_id

    @property
    def channel_id(self) -> ChannelId | None:
        return self.ticket.channel_id


__all__ = [
    "FulfillmentEvent",
    "OrderEvent",
    "WorkStarted",
    "WorkSubmitted",
    "OrderConfirmed",
    "OrderCancelled",
    "IssueReported",
    "CorrectionsRequested",
    "IssueResolved",
    "ItemDelivered",
]
