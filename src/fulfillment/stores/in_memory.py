"""
In-memory fulfillment store implementation.

Useful for testing and development. Not suitable for production
as all records are lost when the process terminates.
"""

import asyncio
import logging
from collections import defaultdict
from decimal import Decimal
from uuid import UUID

from fulfillment.exceptions import (
    IssueNotFoundError,
    ItemNotFoundError,
    OrderNotFoundError,
    TicketNotFoundError,
    ValidationError,
)
from fulfillment.models import (
    Issue,
    IssuePriority,
    IssueStatus,
    Item,
    MessageRef,
    NewOrder,
    Order,
    OrderStatus,
    Payout,
    Refund,
    StatusChange,
    Ticket,
    TicketType,
    evolve,
    utcnow,
)
from fulfillment.observability import (
    ATTR_ISSUE_ID,
    ATTR_ITEM_ID,
    ATTR_ORDER_ID,
    ATTR_TARGET_STATUS,
    ATTR_TICKET_ID,
    Tracer,
    create_tracer,
)
from fulfillment.stores import _records
from fulfillment.stores.interface import FulfillmentStore
from fulfillment.types import ActorId, ChannelId

logger = logging.getLogger(__name__)


class InMemoryFulfillmentStore(FulfillmentStore):
    """
    In-memory implementation of the fulfillment store.

    Records are kept in dictionaries keyed by id. Suitable for:

    - Unit testing
    - Development environments
    - Single-process bots with ephemeral state

    Concurrency:
        Every request runs under one asyncio.Lock, so each call is atomic
        with respect to other coroutines. Two concurrent reserve_item calls
        for the same item are serialised and the second one observes the
        reservation made by the first.

    Example:
        >>> store = InMemoryFulfillmentStore()
        >>> item = await store.create_item("accounts", Decimal("25.00"))
        >>> await store.reserve_item(item.id, ticket_id, "customer-1")
    """

    def __init__(
        self,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize an empty in-memory store.

        Args:
            tracer: Optional custom Tracer instance. If not provided, one is
                   created based on enable_tracing setting.
            enable_tracing: If True, emit traces (default: True).
                          Ignored if tracer is explicitly provided.
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

        self._orders: dict[UUID, Order] = {}
        self._history: dict[UUID, list[StatusChange]] = defaultdict(list)
        self._issues: dict[UUID, Issue] = {}
        self._items: dict[UUID, Item] = {}
        self._tickets: dict[UUID, Ticket] = {}
        self._order_number = 0
        self._lock: asyncio.Lock = asyncio.Lock()

    # =========================================================================
    # Orders
    # =========================================================================

    async def create_order(self, draft: NewOrder) -> Order:
        async with self._lock:
            self._order_number += 1
            order = Order(number=self._order_number, **draft.model_dump())
            self._orders[order.id] = order
        logger.debug("Created order %s (#%d)", order.id, order.number)
        return order

    async def get_order(self, order_id: UUID) -> Order:
        async with self._lock:
            return self._order(order_id)

    async def set_order_status(
        self,
        order_id: UUID,
        status: OrderStatus,
        actor_id: ActorId,
        reason: str,
        *,
        notes: str | None = None,
        is_admin_override: bool = False,
        expected_status: OrderStatus | None = None,
        worker_id: ActorId | None = None,
    ) -> Order:
        with self._tracer.span(
            "inmemory_fulfillment_store.set_order_status",
            {ATTR_ORDER_ID: str(order_id), ATTR_TARGET_STATUS: status.value},
        ):
            async with self._lock:
                before = self._order(order_id)
                now = utcnow()
                after = _records.next_status(
                    before,
                    status,
                    now,
                    notes=notes,
                    worker_id=worker_id,
                    expected_status=expected_status,
                )
                self._commit_transition(
                    before,
                    after,
                    _records.audit_row(
                        before,
                        after,
                        actor_id,
                        reason,
                        now,
                        notes=notes,
                        is_admin_override=is_admin_override,
                    ),
                )
                return after

    async def complete_order(
        self,
        order_id: UUID,
        actor_id: ActorId,
        payout: Payout,
        *,
        reason: str = "Completion confirmed",
        feedback: str | None = None,
        rating: int | None = None,
        is_admin_override: bool = False,
        expected_status: OrderStatus = OrderStatus.AWAITING_CONFIRM,
    ) -> Order:
        with self._tracer.span(
            "inmemory_fulfillment_store.complete_order",
            {ATTR_ORDER_ID: str(order_id)},
        ):
            async with self._lock:
                before = self._order(order_id)
                now = utcnow()
                after = _records.completed(
                    before,
                    payout,
                    now,
                    feedback=feedback,
                    rating=rating,
                    expected_status=expected_status,
                )
                self._commit_transition(
                    before,
                    after,
                    _records.audit_row(
                        before,
                        after,
                        actor_id,
                        reason,
                        now,
                        notes=feedback,
                        is_admin_override=is_admin_override,
                    ),
                )
                return after

    async def cancel_order(
        self,
        order_id: UUID,
        actor_id: ActorId,
        reason: str,
        refund: Refund,
        *,
        is_admin_override: bool = False,
        expected_status: OrderStatus | None = None,
    ) -> Order:
        with self._tracer.span(
            "inmemory_fulfillment_store.cancel_order",
            {ATTR_ORDER_ID: str(order_id)},
        ):
            async with self._lock:
                before = self._order(order_id)
                now = utcnow()
                after = _records.cancelled(
                    before, reason, refund, now, expected_status=expected_status
                )
                self._commit_transition(
                    before,
                    after,
                    _records.audit_row(
                        before,
                        after,
                        actor_id,
                        reason,
                        now,
                        is_admin_override=is_admin_override,
                    ),
                )
                return after

    async def get_status_history(self, order_id: UUID) -> list[StatusChange]:
        async with self._lock:
            self._order(order_id)
            return list(self._history[order_id])

    async def record_order_message(self, order_id: UUID, ref: MessageRef | None) -> Order:
        async with self._lock:
            order = evolve(self._order(order_id), prompt_message=ref)
            self._orders[order_id] = order
            return order

    # =========================================================================
    # Issues
    # =========================================================================

    async def create_issue(
        self,
        order_id: UUID,
        reporter_id: ActorId,
        description: str,
        priority: IssuePriority = IssuePriority.MEDIUM,
    ) -> Issue:
        async with self._lock:
            self._order(order_id)
            if self._active_issue(order_id) is not None:
                raise ValidationError(
                    "This order already has an open issue. Add details to the existing "
                    "report instead of opening a new one.",
                    field="order_id",
                )
            issue = Issue(
                order_id=order_id,
                reporter_id=reporter_id,
                description=description,
                priority=priority,
            )
            self._issues[issue.id] = issue
            return issue

    async def update_issue(
        self,
        issue_id: UUID,
        status: IssueStatus,
        *,
        resolution: str | None = None,
        resolver_id: ActorId | None = None,
    ) -> Issue:
        with self._tracer.span(
            "inmemory_fulfillment_store.update_issue",
            {ATTR_ISSUE_ID: str(issue_id), ATTR_TARGET_STATUS: status.value},
        ):
            async with self._lock:
                issue = _records.issue_updated(
                    self._issue(issue_id),
                    status,
                    utcnow(),
                    resolution=resolution,
                    resolver_id=resolver_id,
                )
                self._issues[issue_id] = issue
                return issue

    async def get_issue(self, issue_id: UUID) -> Issue:
        async with self._lock:
            return self._issue(issue_id)

    async def get_active_issue(self, order_id: UUID) -> Issue | None:
        async with self._lock:
            return self._active_issue(order_id)

    async def record_issue_message(self, issue_id: UUID, ref: MessageRef | None) -> Issue:
        async with self._lock:
            issue = evolve(self._issue(issue_id), alert_message=ref)
            self._issues[issue_id] = issue
            return issue

    # =========================================================================
    # Items
    # =========================================================================

    async def create_item(
        self,
        category: str,
        price: Decimal,
        *,
        title: str = "",
    ) -> Item:
        async with self._lock:
            item = Item(category=category, price=price, title=title)
            self._items[item.id] = item
            return item

    async def get_item(self, item_id: UUID) -> Item:
        async with self._lock:
            return self._item(item_id)

    async def reserve_item(self, item_id: UUID, ticket_id: UUID, customer_id: ActorId) -> Item:
        with self._tracer.span(
            "inmemory_fulfillment_store.reserve_item",
            {ATTR_ITEM_ID: str(item_id), ATTR_TICKET_ID: str(ticket_id)},
        ):
            async with self._lock:
                item = _records.reserved(self._item(item_id), ticket_id, customer_id, utcnow())
                self._items[item_id] = item
                return item

    async def complete_item_sale(
        self,
        item_id: UUID,
        ticket_id: UUID,
        customer_id: ActorId,
        support_actor_id: ActorId | None = None,
    ) -> Item:
        with self._tracer.span(
            "inmemory_fulfillment_store.complete_item_sale",
            {ATTR_ITEM_ID: str(item_id), ATTR_TICKET_ID: str(ticket_id)},
        ):
            async with self._lock:
                item = _records.sold(
                    self._item(item_id), ticket_id, customer_id, support_actor_id, utcnow()
                )
                self._items[item_id] = item
                return item

    async def release_item(self, item_id: UUID) -> Item:
        async with self._lock:
            item = _records.released(self._item(item_id))
            self._items[item_id] = item
            return item

    # =========================================================================
    # Tickets
    # =========================================================================

    async def create_ticket(
        self,
        channel_id: ChannelId,
        ticket_type: TicketType,
        customer_id: ActorId,
        *,
        item_id: UUID | None = None,
        details: dict[str, str] | None = None,
    ) -> Ticket:
        async with self._lock:
            ticket = Ticket(
                channel_id=channel_id,
                ticket_type=ticket_type,
                customer_id=customer_id,
                item_id=item_id,
                details=details or {},
            )
            self._tickets[ticket.id] = ticket
            return ticket

    async def get_ticket(self, ticket_id: UUID) -> Ticket:
        async with self._lock:
            return self._ticket(ticket_id)

    async def get_ticket_by_channel(self, channel_id: ChannelId) -> Ticket | None:
        async with self._lock:
            for ticket in self._tickets.values():
                if ticket.channel_id == channel_id and ticket.is_open:
                    return ticket
            return None

    async def attach_order(self, ticket_id: UUID, order_id: UUID) -> Ticket:
        async with self._lock:
            self._order(order_id)
            ticket = evolve(self._ticket(ticket_id), order_id=order_id)
            self._tickets[ticket_id] = ticket
            return ticket

    async def mark_ticket_delivered(self, ticket_id: UUID) -> Ticket:
        async with self._lock:
            ticket = evolve(self._ticket(ticket_id), delivered=True)
            self._tickets[ticket_id] = ticket
            return ticket

    async def close_ticket(self, ticket_id: UUID) -> Ticket:
        async with self._lock:
            ticket = self._ticket(ticket_id)
            if ticket.is_open:
                ticket = evolve(ticket, is_open=False, closed_at=utcnow())
                self._tickets[ticket_id] = ticket
            return ticket

    # =========================================================================
    # Helpers (call with the lock held)
    # =========================================================================

    def _commit_transition(self, before: Order, after: Order, change: StatusChange) -> None:
        self._orders[after.id] = after
        self._history[after.id].append(change)
        logger.debug(
            "Order %s: %s -> %s",
            after.id,
            before.status,
            after.status,
            extra={"order_id": str(after.id), "actor_id": change.actor_id},
        )

    def _order(self, order_id: UUID) -> Order:
        try:
            return self._orders[order_id]
        except KeyError:
            raise OrderNotFoundError(order_id) from None

    def _issue(self, issue_id: UUID) -> Issue:
        try:
            return self._issues[issue_id]
        except KeyError:
            raise IssueNotFoundError(issue_id) from None

    def _item(self, item_id: UUID) -> Item:
        try:
            return self._items[item_id]
        except KeyError:
            raise ItemNotFoundError(item_id) from None

    def _ticket(self, ticket_id: UUID) -> Ticket:
        try:
            return self._tickets[ticket_id]
        except KeyError:
            raise TicketNotFoundError(ticket_id) from None

    def _active_issue(self, order_id: UUID) -> Issue | None:
        for issue in self._issues.values():
            if issue.order_id == order_id and not issue.is_resolved:
                return issue
        return None

    async def clear(self) -> None:
        """
        Clear all records from the store.

        Useful for resetting state between tests.
        """
        async with self._lock:
            self._orders.clear()
            self._history.clear()
            self._issues.clear()
            self._items.clear()
            self._tickets.clear()
            self._order_number = 0


__all__ = ["InMemoryFulfillmentStore"]
