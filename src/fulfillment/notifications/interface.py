"""
Outbound messaging interface and fanout result types.

This module provides:
- Recipient: Where a notification can go
- MessageAction / OutboundMessage: Platform-neutral message content
- MessageTransport: Abstract base class for the chat platform adapter
- DeliveryResult / FanoutReport: Per-recipient outcome of a fanout
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum

from fulfillment.models import MessageRef
from fulfillment.types import ActorId, ChannelId


class Recipient(Enum):
    """Recipient slots a notification can be fanned out to."""

    CUSTOMER_DM = "customer_dm"
    WORKER_DM = "worker_dm"
    ORDER_CHANNEL = "order_channel"
    STAFF_LOG = "staff_log"
    STAFF_ALERTS = "staff_alerts"
    COMPLETED_LEDGER = "completed_ledger"

    @property
    def is_direct(self) -> bool:
        return self in (Recipient.CUSTOMER_DM, Recipient.WORKER_DM)


@dataclass(frozen=True)
class MessageAction:
    """
    A button attached to a message.

    Attributes:
        action_id: Routing id, e.g. ``order:confirm:<order id>``
        label: Button text
        allowed_user_id: If set, only this user may press the button
        staff_only: If True, only staff may press the button
    """

    action_id: str
    label: str
    allowed_user_id: ActorId | None = None
    staff_only: bool = False


@dataclass(frozen=True)
class OutboundMessage:
    title: str
    body: str
    fields: tuple[tuple[str, str], ...] = ()
    actions: tuple[MessageAction, ...] = ()


class MessageTransport(ABC):
    """
    Chat platform adapter.

    Implementations raise NotificationDeliveryFailed when the target cannot
    be reached (closed DMs, deleted channel, missing permission) and
    ExpiredAction when a message's interaction token is gone.
    """

    @abstractmethod
    async def send_direct(self, user_id: ActorId, message: OutboundMessage) -> MessageRef:
        pass

    @abstractmethod
    async def send_to_channel(self, channel_id: ChannelId, message: OutboundMessage) -> MessageRef:
        pass

    @abstractmethod
    async def disable_actions(self, ref: MessageRef) -> None:
        """Remove or disable every action on an earlier message."""
        pass


class DeliveryStatus(Enum):
    DELIVERED = "delivered"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class DeliveryResult:
    """
    Outcome of delivering one notification to one recipient.

    Example:
        >>> result = report[Recipient.CUSTOMER_DM]
        >>> if result.failed:
        ...     print(f"Customer not notified: {result.reason}")
    """

    recipient: Recipient
    status: DeliveryStatus
    reason: str | None = None
    message_ref: MessageRef | None = None

    @classmethod
    def ok(cls, recipient: Recipient, ref: MessageRef) -> DeliveryResult:
        return cls(recipient=recipient, status=DeliveryStatus.DELIVERED, message_ref=ref)

    @classmethod
    def failure(cls, recipient: Recipient, reason: str) -> DeliveryResult:
        return cls(recipient=recipient, status=DeliveryStatus.FAILED, reason=reason)

    @classmethod
    def skip(cls, recipient: Recipient, reason: str) -> DeliveryResult:
        return cls(recipient=recipient, status=DeliveryStatus.SKIPPED, reason=reason)

    @property
    def delivered(self) -> bool:
        return self.status == DeliveryStatus.DELIVERED

    @property
    def failed(self) -> bool:
        return self.status == DeliveryStatus.FAILED


@dataclass(frozen=True)
class FanoutReport(Mapping[Recipient, DeliveryResult]):
    """
    Per-recipient results of one fanout.

    Behaves as a read-only mapping from Recipient to DeliveryResult.
    """

    event_type: str
    results: Mapping[Recipient, DeliveryResult] = field(default_factory=dict)

    def __getitem__(self, recipient: Recipient) -> DeliveryResult:
        return self.results[recipient]

    def __iter__(self) -> Iterator[Recipient]:
        return iter(self.results)

    def __len__(self) -> int:
        return len(self.results)

    @property
    def delivered(self) -> list[Recipient]:
        return [r for r, result in self.results.items() if result.delivered]

    @property
    def failed(self) -> list[Recipient]:
        return [r for r, result in self.results.items() if result.failed]

    @property
    def all_delivered(self) -> bool:
        return all(result.delivered for result in self.results.values())

    def ref(self, recipient: Recipient) -> MessageRef | None:
        result = self.results.get(recipient)
        return result.message_ref if result else None


__all__ = [
    "Recipient",
    "MessageAction",
    "OutboundMessage",
    "MessageTransport",
    "DeliveryStatus",
    "DeliveryResult",
    "FanoutReport",
]
