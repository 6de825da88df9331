"""
Binding between conversation channels and the records they concern.

A ticket ties one channel to a customer and, depending on its type, to an
order or a reserved item. Opening an item-purchase ticket reserves the item;
closing an undelivered one releases it explicitly. Closing never changes an
order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from pydantic import SecretStr

from fulfillment.events import ItemDelivered
from fulfillment.exceptions import (
    ItemNotFoundError,
    ItemUnavailable,
    TicketNotFoundError,
    ValidationError,
)
from fulfillment.forms import ItemPurchaseForm, ServiceOrderForm, SupportForm
from fulfillment.models import Item, Order, Ticket, TicketType
from fulfillment.notifications import FanoutReport, NotificationFanout, Recipient
from fulfillment.observability import (
    ATTR_ACTOR_ID,
    ATTR_ITEM_ID,
    ATTR_TICKET_ID,
    Tracer,
    create_tracer,
)
from fulfillment.reservations import ReservationGuard
from fulfillment.roles import StaffRoleChecker
from fulfillment.stores.interface import FulfillmentStore
from fulfillment.types import ActorId, ChannelId

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TicketBinding:
    """A ticket with the order and item it is bound to, read together."""

    ticket: Ticket
    order: Order | None = None
    item: Item | None = None


@dataclass(frozen=True)
class DeliveryReceipt:
    """
    Result of delivering a purchased item.

    Attributes:
        ticket: The ticket, now marked delivered
        item: The item, now sold to the customer
        notifications: Report for the direct message with the credentials
        warnings: Set when the credentials could not be sent privately
    """

    ticket: Ticket
    item: Item
    notifications: FanoutReport
    warnings: tuple[str, ...] = ()

    @property
    def credentials_sent(self) -> bool:
        return self.notifications[Recipient.CUSTOMER_DM].delivered


class TicketBindingService:
    """
    Resolves channels to tickets and manages the item side of tickets.

    Example:
        >>> tickets = TicketBindingService(store, guard, fanout, roles)
        >>> binding = await tickets.open_ticket(
        ...     "channel-1", "customer-1", ItemPurchaseForm(item_id=item.id)
        ... )
        >>> binding.item.state
        <ItemState.RESERVED: 'RESERVED'>
    """

    def __init__(
        self,
        store: FulfillmentStore,
        guard: ReservationGuard,
        fanout: NotificationFanout,
        roles: StaffRoleChecker,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._store = store
        self._guard = guard
        self._fanout = fanout
        self._roles = roles
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def resolve(self, channel_id: ChannelId) -> TicketBinding:
        """
        Look up the open ticket of a channel with its order and item.

        Raises:
            TicketNotFoundError: If the channel has no open ticket
        """
        ticket = await self._store.get_ticket_by_channel(channel_id)
        if ticket is None:
            raise TicketNotFoundError(channel_id)
        return await self._bind(ticket)

    async def open_ticket(
        self,
        channel_id: ChannelId,
        customer_id: ActorId,
        form: ServiceOrderForm | ItemPurchaseForm | SupportForm,
    ) -> TicketBinding:
        """
        Open a ticket from a typed form.

        For an item purchase the item is reserved for the new ticket. If the
        item is taken or unknown, the just-opened ticket is closed again and
        the error propagates.

        Raises:
            ValidationError: If the channel already has an open ticket
            ItemUnavailable: If the item is reserved or sold
        """
        with self._tracer.span(
            "fulfillment.tickets.open_ticket",
            {ATTR_ACTOR_ID: customer_id},
        ):
            if await self._store.get_ticket_by_channel(channel_id) is not None:
                raise ValidationError(
                    "This channel already has an open ticket. Close it before opening "
                    "a new one.",
                    field="channel_id",
                )

            item_id = form.item_id if isinstance(form, ItemPurchaseForm) else None
            ticket = await self._store.create_ticket(
                channel_id,
                TicketType(form.ticket_type),
                customer_id,
                item_id=item_id,
                details=form.details(),
            )
            logger.info(
                "Opened %s ticket %s in %s",
                ticket.ticket_type,
                ticket.id,
                channel_id,
                extra={"ticket_id": str(ticket.id), "customer_id": customer_id},
            )

            item = None
            if item_id is not None:
                try:
                    item = await self._guard.reserve(item_id, ticket.id, customer_id)
                except (ItemUnavailable, ItemNotFoundError):
                    await self._store.close_ticket(ticket.id)
                    logger.info(
                        "Closed ticket %s: item %s is unavailable",
                        ticket.id,
                        item_id,
                        extra={"ticket_id": str(ticket.id), "item_id": str(item_id)},
                    )
                    raise
            return TicketBinding(ticket=ticket, item=item)

    async def attach_order(self, ticket_id: UUID, order_id: UUID) -> TicketBinding:
        ticket = await self._store.attach_order(ticket_id, order_id)
        return await self._bind(ticket)

    async def close_ticket(
        self,
        ticket_id: UUID,
        actor_id: ActorId,
        release_reservation: bool = True,
    ) -> Ticket:
        """
        Close a ticket.

        An undelivered item still held by this ticket is released first,
        unless ``release_reservation`` is False. The linked order is left
        untouched.
        """
        with self._tracer.span(
            "fulfillment.tickets.close_ticket",
            {ATTR_TICKET_ID: str(ticket_id), ATTR_ACTOR_ID: actor_id},
        ):
            ticket = await self._store.get_ticket(ticket_id)
            if release_reservation and ticket.item_id is not None and not ticket.delivered:
                item = await self._store.get_item(ticket.item_id)
                if item.reservation is not None and item.reservation.ticket_id == ticket.id:
                    await self._guard.release(item.id)
            closed = await self._store.close_ticket(ticket_id)
            logger.info(
                "Ticket %s closed by %s",
                ticket_id,
                actor_id,
                extra={"ticket_id": str(ticket_id), "actor_id": actor_id},
            )
            return closed

    async def deliver_item(
        self,
        ticket_id: UUID,
        support_actor_id: ActorId,
        credentials: str,
    ) -> DeliveryReceipt:
        """
        Finalise an item sale and send the credentials to the buyer.

        The credentials only ever go to the customer's direct messages. If
        that fails the sale still stands, nothing is posted publicly, and the
        receipt carries a warning so staff can hand them over another way.

        Raises:
            PermissionDenied: If the caller is not staff
            ValidationError: If the ticket is not an item purchase
            ReservationMismatch: If the item is not held by this ticket
        """
        with self._tracer.span(
            "fulfillment.tickets.deliver_item",
            {ATTR_TICKET_ID: str(ticket_id), ATTR_ACTOR_ID: support_actor_id},
        ) as span:
            await self._roles.require_staff(support_actor_id, "deliver items")
            ticket = await self._store.get_ticket(ticket_id)
            if ticket.item_id is None:
                raise ValidationError(
                    "This ticket is not an item purchase, so there is nothing to deliver.",
                    field="ticket_id",
                )
            if not credentials or not credentials.strip():
                raise ValidationError(
                    "Enter the account credentials to deliver.", field="credentials"
                )
            if span:
                span.set_attribute(ATTR_ITEM_ID, str(ticket.item_id))

            item = await self._guard.finalize_sale(
                ticket.item_id, ticket.id, ticket.customer_id, support_actor_id
            )
            ticket = await self._store.get_ticket(ticket_id)

            report = await self._fanout.notify(
                ItemDelivered(
                    actor_id=support_actor_id,
                    ticket=ticket,
                    item=item,
                    credentials=SecretStr(credentials.strip()),
                ),
                [Recipient.CUSTOMER_DM],
            )
            warnings: tuple[str, ...] = ()
            if not report[Recipient.CUSTOMER_DM].delivered:
                warnings = (
                    "The customer's direct messages are closed, so the credentials were "
                    "not sent. Ask them to open DMs and send the credentials privately.",
                )
            return DeliveryReceipt(
                ticket=ticket, item=item, notifications=report, warnings=warnings
            )

    async def _bind(self, ticket: Ticket) -> TicketBinding:
        order = await self._store.get_order(ticket.order_id) if ticket.order_id else None
        item = await self._store.get_item(ticket.item_id) if ticket.item_id else None
        return TicketBinding(ticket=ticket, order=order, item=item)


__all__ = ["DeliveryReceipt", "TicketBinding", "TicketBindingService"]
