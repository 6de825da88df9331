"""
Mutual exclusion on unique inventory items.

An item is available, reserved by exactly one ticket, or sold to exactly
one customer. The guard holds no state of its own: every check is done by
the store inside a single conditional update, so two tickets racing for the
same item can never both win.
"""

from __future__ import annotations

import logging
from uuid import UUID

from fulfillment.models import Item, Order
from fulfillment.observability import (
    ATTR_ACTOR_ID,
    ATTR_ITEM_ID,
    ATTR_ORDER_ID,
    ATTR_TICKET_ID,
    Tracer,
    create_tracer,
)
from fulfillment.stores.interface import FulfillmentStore
from fulfillment.types import ActorId

logger = logging.getLogger(__name__)


class ReservationGuard:
    """
    Reserve, sell and release unique items.

    Reservations are advisory holds with no expiry; a held item is only made
    available again by an explicit release (ticket closed without delivery,
    order cancelled).

    Example:
        >>> guard = ReservationGuard(store)
        >>> item = await guard.reserve(item_id, ticket.id, customer_id)
        >>> item = await guard.finalize_sale(item_id, ticket.id, customer_id, support_id)
    """

    def __init__(
        self,
        store: FulfillmentStore,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._store = store
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def reserve(self, item_id: UUID, ticket_id: UUID, customer_id: ActorId) -> Item:
        """
        Hold an item for a ticket.

        Raises:
            ItemUnavailable: If the item is already reserved or sold
            ItemNotFoundError: If the item does not exist
        """
        with self._tracer.span(
            "fulfillment.reservation.reserve",
            {ATTR_ITEM_ID: str(item_id), ATTR_TICKET_ID: str(ticket_id)},
        ):
            item = await self._store.reserve_item(item_id, ticket_id, customer_id)
        logger.info(
            "Reserved item %s for ticket %s",
            item_id,
            ticket_id,
            extra={"item_id": str(item_id), "ticket_id": str(ticket_id)},
        )
        return item

    async def finalize_sale(
        self,
        item_id: UUID,
        ticket_id: UUID,
        customer_id: ActorId,
        support_actor_id: ActorId | None = None,
    ) -> Item:
        """
        Sell a reserved item to its holder and mark the ticket delivered.

        Raises:
            ReservationMismatch: Unless the item is reserved by exactly this
                ticket and customer
        """
        with self._tracer.span(
            "fulfillment.reservation.finalize_sale",
            {
                ATTR_ITEM_ID: str(item_id),
                ATTR_TICKET_ID: str(ticket_id),
                ATTR_ACTOR_ID: support_actor_id or customer_id,
            },
        ):
            item = await self._store.complete_item_sale(
                item_id, ticket_id, customer_id, support_actor_id
            )
            await self._store.mark_ticket_delivered(ticket_id)
        logger.info(
            "Sold item %s to %s",
            item_id,
            customer_id,
            extra={"item_id": str(item_id), "ticket_id": str(ticket_id)},
        )
        return item

    async def release(self, item_id: UUID) -> Item:
        """
        Make a reserved item available again.

        Idempotent: releasing an available item does nothing, and a sold
        item stays sold.
        """
        with self._tracer.span("fulfillment.reservation.release", {ATTR_ITEM_ID: str(item_id)}):
            before = await self._store.get_item(item_id)
            item = await self._store.release_item(item_id)
        if before.reservation is not None and item.available:
            logger.info("Released item %s", item_id, extra={"item_id": str(item_id)})
        return item

    async def release_for_order(self, order: Order) -> Item | None:
        """Release the item linked to a cancelled order, if there is one."""
        if order.item_id is None:
            return None
        with self._tracer.span(
            "fulfillment.reservation.release_for_order",
            {ATTR_ORDER_ID: str(order.id), ATTR_ITEM_ID: str(order.item_id)},
        ):
            return await self.release(order.item_id)


__all__ = ["ReservationGuard"]
