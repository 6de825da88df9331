"""
In-memory message transport.

Records every message instead of talking to a chat platform. Users can be
marked unreachable and channels missing to exercise the failure paths.
"""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass

from fulfillment.exceptions import ExpiredAction, NotificationDeliveryFailed
from fulfillment.models import MessageRef
from fulfillment.notifications.interface import MessageTransport, OutboundMessage
from fulfillment.types import ActorId, ChannelId


@dataclass(frozen=True)
class SentMessage:
    ref: MessageRef
    message: OutboundMessage
    user_id: ActorId | None = None

    @property
    def is_direct(self) -> bool:
        return self.user_id is not None


class InMemoryTransport(MessageTransport):
    """
    Transport that stores sent messages in lists.

    Example:
        >>> transport = InMemoryTransport()
        >>> transport.make_unreachable("customer-1")
        >>> await transport.send_direct("customer-1", message)  # raises
        NotificationDeliveryFailed: ...
    """

    def __init__(self) -> None:
        self.sent: list[SentMessage] = []
        self.disabled: list[MessageRef] = []
        self._unreachable: set[ActorId] = set()
        self._missing_channels: set[ChannelId] = set()
        self._expired: set[str] = set()
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()

    def make_unreachable(self, user_id: ActorId) -> None:
        """Simulate a user who closed their direct messages."""
        self._unreachable.add(user_id)

    def remove_channel(self, channel_id: ChannelId) -> None:
        """Simulate a deleted channel."""
        self._missing_channels.add(channel_id)

    def expire(self, ref: MessageRef) -> None:
        """Simulate a message whose interaction token has expired."""
        self._expired.add(ref.message_id)

    async def send_direct(self, user_id: ActorId, message: OutboundMessage) -> MessageRef:
        if user_id in self._unreachable:
            raise NotificationDeliveryFailed(f"user:{user_id}", "direct messages are closed")
        async with self._lock:
            ref = MessageRef(channel_id=f"dm-{user_id}", message_id=str(next(self._ids)))
            self.sent.append(SentMessage(ref=ref, message=message, user_id=user_id))
        return ref

    async def send_to_channel(self, channel_id: ChannelId, message: OutboundMessage) -> MessageRef:
        if channel_id in self._missing_channels:
            raise NotificationDeliveryFailed(f"channel:{channel_id}", "unknown channel")
        async with self._lock:
            ref = MessageRef(channel_id=channel_id, message_id=str(next(self._ids)))
            self.sent.append(SentMessage(ref=ref, message=message))
        return ref

    async def disable_actions(self, ref: MessageRef) -> None:
        if ref.message_id in self._expired:
            raise ExpiredAction("disable_actions")
        if ref.channel_id in self._missing_channels:
            raise NotificationDeliveryFailed(f"channel:{ref.channel_id}", "unknown channel")
        async with self._lock:
            self.disabled.append(ref)

    # -------------------------------------------------------------------------
    # Inspection helpers
    # -------------------------------------------------------------------------

    def direct_messages(self, user_id: ActorId) -> list[OutboundMessage]:
        return [s.message for s in self.sent if s.user_id == user_id]

    def channel_messages(self, channel_id: ChannelId) -> list[OutboundMessage]:
        return [s.message for s in self.sent if not s.is_direct and s.ref.channel_id == channel_id]

    def clear(self) -> None:
        self.sent.clear()
        self.disabled.clear()


__all__ = ["InMemoryTransport", "SentMessage"]
