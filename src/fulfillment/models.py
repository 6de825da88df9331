"""
Record types returned by the persistence API.

Every model here is a frozen pydantic snapshot. The store owns the mutable
state; callers read a snapshot, decide, and ask the store for a conditional
change. A snapshot is never modified and written back.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any, TypeVar
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from fulfillment.types import ActorId, ChannelId, MessageId, to_money


def utcnow() -> datetime:
    return datetime.now(UTC)


class OrderStatus(StrEnum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    AWAITING_CONFIRM = "AWAITING_CONFIRM"
    DISPUTED = "DISPUTED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.COMPLETED, OrderStatus.CANCELLED)


class RefundType(StrEnum):
    FULL = "FULL"
    PARTIAL = "PARTIAL"
    NONE = "NONE"


class IssueStatus(StrEnum):
    OPEN = "OPEN"
    IN_REVIEW = "IN_REVIEW"
    RESOLVED = "RESOLVED"


class IssuePriority(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class TicketType(StrEnum):
    SERVICE_ORDER = "SERVICE_ORDER"
    ITEM_PURCHASE = "ITEM_PURCHASE"
    SUPPORT = "SUPPORT"


class ItemState(StrEnum):
    AVAILABLE = "AVAILABLE"
    RESERVED = "RESERVED"
    SOLD = "SOLD"


class MessageRef(BaseModel):
    """Location of a message posted by the bot, so its controls can be disabled later."""

    model_config = ConfigDict(frozen=True)

    channel_id: ChannelId
    message_id: MessageId


class Payout(BaseModel):
    """Split of a completed order's value, committed together with COMPLETED."""

    model_config = ConfigDict(frozen=True)

    worker_amount: Decimal
    support_amount: Decimal
    system_amount: Decimal
    deposit_returned: Decimal
    processed_at: datetime = Field(default_factory=utcnow)

    @property
    def total(self) -> Decimal:
        return self.worker_amount + self.support_amount + self.system_amount


class Refund(BaseModel):
    """Refund decision committed together with CANCELLED."""

    model_config = ConfigDict(frozen=True)

    refund_type: RefundType
    amount: Decimal
    processed_at: datetime = Field(default_factory=utcnow)


class Order(BaseModel):
    """A paid unit of work tracked through the status lifecycle."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    number: int = Field(ge=1)
    status: OrderStatus = OrderStatus.PENDING
    value: Decimal = Field(ge=0)
    deposit: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str = "USD"
    customer_id: ActorId
    worker_id: ActorId | None = None
    support_id: ActorId | None = None
    channel_id: ChannelId | None = None
    item_id: UUID | None = None
    service_name: str | None = None
    completion_notes: str | None = None
    cancellation_reason: str | None = None
    customer_rating: int | None = Field(default=None, ge=1, le=5)
    customer_feedback: str | None = None
    payout: Payout | None = None
    refund: Refund | None = None
    prompt_message: MessageRef | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    confirmed_at: datetime | None = None
    cancelled_at: datetime | None = None

    @field_validator("value", "deposit")
    @classmethod
    def _quantize(cls, value: Decimal) -> Decimal:
        return to_money(value)

    @model_validator(mode="after")
    def _terminal_records(self) -> Order:
        if self.status == OrderStatus.COMPLETED and self.payout is None:
            raise ValueError("a COMPLETED order must carry its payout decision")
        if self.status == OrderStatus.CANCELLED and self.refund is None:
            raise ValueError("a CANCELLED order must carry its refund decision")
        return self

    @property
    def label(self) -> str:
        return f"Order #{self.number}"


class NewOrder(BaseModel):
    """Purchase intent accepted by the storefront, before it is numbered."""

    model_config = ConfigDict(frozen=True)

    value: Decimal = Field(ge=0)
    deposit: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str = "USD"
    customer_id: ActorId
    worker_id: ActorId | None = None
    support_id: ActorId | None = None
    channel_id: ChannelId | None = None
    item_id: UUID | None = None
    service_name: str | None = None


class StatusChange(BaseModel):
    """Audit row written with every order transition."""

    model_config = ConfigDict(frozen=True)

    order_id: UUID
    from_status: OrderStatus
    to_status: OrderStatus
    actor_id: ActorId
    reason: str
    notes: str | None = None
    is_admin_override: bool = False
    changed_at: datetime = Field(default_factory=utcnow)


class Reservation(BaseModel):
    model_config = ConfigDict(frozen=True)

    ticket_id: UUID
    customer_id: ActorId
    reserved_at: datetime = Field(default_factory=utcnow)

    def held_by(self, ticket_id: UUID, customer_id: ActorId) -> bool:
        return self.ticket_id == ticket_id and self.customer_id == customer_id


class Item(BaseModel):
    """
    A unique, non-fungible inventory unit.

    Exactly one of these holds at any time: the item is available, or it is
    reserved by one ticket, or it is sold to one customer.
    """

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    category: str
    title: str = ""
    price: Decimal = Field(ge=0)
    available: bool = True
    reservation: Reservation | None = None
    sold: bool = False
    sold_to: ActorId | None = None
    sold_by: ActorId | None = None
    sold_at: datetime | None = None

    @model_validator(mode="after")
    def _exactly_one_state(self) -> Item:
        flags = [self.available, self.reservation is not None, self.sold]
        if sum(flags) != 1:
            raise ValueError(
                "item must be exactly one of available, reserved or sold "
                f"(available={self.available}, reserved={self.reservation is not None}, "
                f"sold={self.sold})"
            )
        if self.sold and self.sold_to is None:
            raise ValueError("a sold item must record who it was sold to")
        return self

    @property
    def state(self) -> ItemState:
        if self.sold:
            return ItemState.SOLD
        if self.reservation is not None:
            return ItemState.RESERVED
        return ItemState.AVAILABLE


class Issue(BaseModel):
    """A customer-raised dispute against an order."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    order_id: UUID
    reporter_id: ActorId
    description: str
    priority: IssuePriority = IssuePriority.MEDIUM
    status: IssueStatus = IssueStatus.OPEN
    resolution: str | None = None
    resolver_id: ActorId | None = None
    resolved_at: datetime | None = None
    alert_message: MessageRef | None = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_resolved(self) -> bool:
        return self.status == IssueStatus.RESOLVED


class Ticket(BaseModel):
    """Binding between a conversation channel and the order/item/customer it concerns."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    channel_id: ChannelId
    ticket_type: TicketType
    customer_id: ActorId
    order_id: UUID | None = None
    item_id: UUID | None = None
    is_open: bool = True
    delivered: bool = False
    details: dict[str, str] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    closed_at: datetime | None = None


RecordT = TypeVar("RecordT", bound=BaseModel)


def evolve(record: RecordT, **changes: Any) -> RecordT:
    """
    Return a new snapshot with ``changes`` applied and every validator re-run.

    ``model_copy(update=...)`` skips validation, which would let a store
    write an Item that is both reserved and sold.
    """
    data = record.model_dump()
    data.update(changes)
    return type(record).model_validate(data)
