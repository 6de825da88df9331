"""
Failure-isolated notification fanout.

One event goes to several recipients concurrently. A recipient that cannot
be reached becomes a failed DeliveryResult and a log line; it never raises
into the caller and never prevents the other sends.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from fulfillment.events import FulfillmentEvent
from fulfillment.exceptions import ExpiredAction, NotificationDeliveryFailed
from fulfillment.models import MessageRef
from fulfillment.notifications.interface import (
    DeliveryResult,
    FanoutReport,
    MessageTransport,
    OutboundMessage,
    Recipient,
)
from fulfillment.notifications.rendering import render
from fulfillment.observability import (
    ATTR_DELIVERY_SUCCESS,
    ATTR_EVENT_TYPE,
    ATTR_RECIPIENT,
    ATTR_RECIPIENT_COUNT,
    Tracer,
    create_tracer,
)
from fulfillment.types import ChannelId

logger = logging.getLogger(__name__)

Renderer = Callable[[FulfillmentEvent, Recipient], OutboundMessage]


@dataclass(frozen=True)
class StaffChannels:
    """
    Fixed staff-facing channels.

    Any of them may be None when the server has not configured it; sends to
    an unconfigured channel are reported as skipped.
    """

    staff_log: ChannelId | None = None
    staff_alerts: ChannelId | None = None
    completed_ledger: ChannelId | None = None


class NotificationFanout:
    """
    Delivers one event to a set of recipients with per-recipient isolation.

    Sends run concurrently. Each one is wrapped so that a
    NotificationDeliveryFailed (expected: closed DMs, deleted channels) logs
    a warning, and any other exception logs an error with traceback; both
    are recorded as failed results.

    Example:
        >>> fanout = NotificationFanout(transport, StaffChannels(staff_log="123"))
        >>> report = await fanout.notify(
        ...     WorkStarted(actor_id=worker_id, order=order),
        ...     [Recipient.CUSTOMER_DM, Recipient.ORDER_CHANNEL, Recipient.STAFF_LOG],
        ... )
        >>> report.failed
        []
    """

    def __init__(
        self,
        transport: MessageTransport,
        channels: StaffChannels | None = None,
        *,
        renderer: Renderer = render,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._transport = transport
        self._channels = channels or StaffChannels()
        self._render = renderer
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @property
    def channels(self) -> StaffChannels:
        return self._channels

    async def notify(
        self,
        event: FulfillmentEvent,
        recipients: Iterable[Recipient],
    ) -> FanoutReport:
        """
        Send ``event`` to every recipient.

        Duplicate recipients are sent once. Never raises for a delivery
        failure.

        Returns:
            FanoutReport with one DeliveryResult per distinct recipient
        """
        targets = list(dict.fromkeys(recipients))
        with self._tracer.span(
            "fulfillment.fanout.notify",
            {ATTR_EVENT_TYPE: event.event_type, ATTR_RECIPIENT_COUNT: len(targets)},
        ):
            results = await asyncio.gather(
                *(self._safe_send(event, recipient) for recipient in targets)
            )

        report = FanoutReport(
            event_type=event.event_type,
            results={result.recipient: result for result in results},
        )
        if report.failed:
            logger.info(
                "%s delivered to %d/%d recipients",
                event.event_type,
                len(report.delivered),
                len(report),
                extra={
                    "event_type": event.event_type,
                    "failed": [r.value for r in report.failed],
                },
            )
        return report

    async def retract_actions(self, ref: MessageRef | None) -> bool:
        """
        Disable the actions on an earlier message.

        Returns:
            True if the actions were disabled, False if there was no message
            or the platform refused.
        """
        if ref is None:
            return False
        try:
            await self._transport.disable_actions(ref)
        except ExpiredAction as e:
            logger.debug(
                "Actions on message %s already gone: %s",
                ref.message_id,
                e,
                extra={"channel_id": ref.channel_id, "message_id": ref.message_id},
            )
            return False
        except NotificationDeliveryFailed as e:
            logger.warning(
                "Could not disable actions on message %s: %s",
                ref.message_id,
                e,
                extra={"channel_id": ref.channel_id, "message_id": ref.message_id},
            )
            return False
        except Exception as e:
            logger.error(
                "Unexpected error disabling actions on message %s: %s",
                ref.message_id,
                e,
                exc_info=True,
                extra={"channel_id": ref.channel_id, "message_id": ref.message_id},
            )
            return False
        return True

    async def _safe_send(self, event: FulfillmentEvent, recipient: Recipient) -> DeliveryResult:
        """Send to one recipient, converting every failure into a DeliveryResult."""
        with self._tracer.span(
            "fulfillment.fanout.send",
            {ATTR_EVENT_TYPE: event.event_type, ATTR_RECIPIENT: recipient.value},
        ) as span:
            try:
                result = await self._send(event, recipient)
            except NotificationDeliveryFailed as e:
                logger.warning(
                    "Failed to deliver %s to %s: %s",
                    event.event_type,
                    recipient.value,
                    e.reason,
                    extra={
                        "event_type": event.event_type,
                        "event_id": str(event.event_id),
                        "recipient": recipient.value,
                        "target": e.target,
                    },
                )
                result = DeliveryResult.failure(recipient, e.reason)
            except ExpiredAction as e:
                logger.debug(
                    "Skipped %s to %s: %s",
                    event.event_type,
                    recipient.value,
                    e,
                    extra={
                        "event_type": event.event_type,
                        "event_id": str(event.event_id),
                        "recipient": recipient.value,
                    },
                )
                result = DeliveryResult.failure(recipient, "action expired")
            except Exception as e:
                if span:
                    span.record_exception(e)
                logger.error(
                    f"Unexpected error delivering {event.event_type} to {recipient.value}: {e}",
                    exc_info=True,
                    extra={
                        "event_type": event.event_type,
                        "event_id": str(event.event_id),
                        "recipient": recipient.value,
                        "error": str(e),
                    },
                )
                result = DeliveryResult.failure(recipient, str(e) or type(e).__name__)
            if span:
                span.set_attribute(ATTR_DELIVERY_SUCCESS, result.delivered)
            return result

    async def _send(self, event: FulfillmentEvent, recipient: Recipient) -> DeliveryResult:
        if recipient.is_direct:
            user_id = event.customer_id if recipient == Recipient.CUSTOMER_DM else event.worker_id
            if user_id is None:
                return DeliveryResult.skip(recipient, "no user assigned")
            ref = await self._transport.send_direct(user_id, self._render(event, recipient))
            return DeliveryResult.ok(recipient, ref)

        channel_id = self._channel_for(event, recipient)
        if channel_id is None:
            return DeliveryResult.skip(recipient, "channel not configured")
        ref = await self._transport.send_to_channel(channel_id, self._render(event, recipient))
        return DeliveryResult.ok(recipient, ref)

    def _channel_for(self, event: FulfillmentEvent, recipient: Recipient) -> ChannelId | None:
        if recipient == Recipient.ORDER_CHANNEL:
            return event.channel_id
        if recipient == Recipient.STAFF_LOG:
            return self._channels.staff_log
        if recipient == Recipient.STAFF_ALERTS:
            return self._channels.staff_alerts
        return self._channels.completed_ledger


__all__ = ["NotificationFanout", "StaffChannels"]
