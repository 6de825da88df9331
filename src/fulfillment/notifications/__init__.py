"""
Notification fanout for the fulfillment package.

Example:
    >>> from fulfillment.notifications import NotificationFanout, Recipient, StaffChannels
    >>>
    >>> fanout = NotificationFanout(transport, StaffChannels(staff_log="log-channel"))
    >>> report = await fanout.notify(event, [Recipient.CUSTOMER_DM, Recipient.STAFF_LOG])
"""

from fulfillment.notifications.fanout import NotificationFanout, StaffChannels
from fulfillment.notifications.interface import (
    DeliveryResult,
    DeliveryStatus,
    FanoutReport,
    MessageAction,
    MessageTransport,
    OutboundMessage,
    Recipient,
)
from fulfillment.notifications.memory import InMemoryTransport, SentMessage
from fulfillment.notifications.rendering import render

__all__ = [
    # Fanout
    "NotificationFanout",
    "StaffChannels",
    # Interface
    "MessageTransport",
    "MessageAction",
    "OutboundMessage",
    "Recipient",
    # Results
    "DeliveryResult",
    "DeliveryStatus",
    "FanoutReport",
    # Implementations
    "InMemoryTransport",
    "SentMessage",
    "render",
]
