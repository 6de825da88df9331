"""
Persistence interface for orders, items, issues and tickets.

The store is the single source of truth. Every method is one atomic
request: callers read snapshots, decide, and ask for a conditional change.
Implementations re-check the precondition inside the change, so two racing
callers can never both succeed.

This module provides:
- FulfillmentStore: Abstract base class for store implementations
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from uuid import UUID

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
)
from fulfillment.types import ActorId, ChannelId


class FulfillmentStore(ABC):
    """
    Abstract base class for fulfillment stores.

    Implementations must handle:
    - Compare-and-set order transitions along the order edge graph, with an
      audit row written in the same transaction
    - Committing the payout together with COMPLETED and the refund together
      with CANCELLED
    - Atomic item reservation (conditional on the item being available)
    - At most one unresolved issue per order

    Concrete implementations:
    - InMemoryFulfillmentStore: For testing and development
    - SQLiteFulfillmentStore: For single-instance deployments

    Example:
        >>> store = InMemoryFulfillmentStore()
        >>> order = await store.create_order(NewOrder(value=Decimal("50"), customer_id="c1"))
        >>> order = await store.set_order_status(
        ...     order.id,
        ...     OrderStatus.IN_PROGRESS,
        ...     actor_id="w1",
        ...     reason="Worker started",
        ...     expected_status=OrderStatus.PENDING,
        ...     worker_id="w1",
        ... )
    """

    # =========================================================================
    # Orders
    # =========================================================================

    @abstractmethod
    async def create_order(self, draft: NewOrder) -> Order:
        """
        Persist a new PENDING order and assign the next sequential number.

        Args:
            draft: Purchase intent accepted by the storefront

        Returns:
            The created order
        """
        pass

    @abstractmethod
    async def get_order(self, order_id: UUID) -> Order:
        """
        Read the current snapshot of an order.

        Raises:
            OrderNotFoundError: If no such order exists
        """
        pass

    @abstractmethod
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
        """
        Move an order to a non-terminal status.

        COMPLETED and CANCELLED carry money decisions and must go through
        complete_order and cancel_order.

        Args:
            order_id: Order to change
            status: Target status (must be an edge from the current status)
            actor_id: Who requested the change (written to the audit row)
            reason: Human-readable audit reason
            notes: Free text stored with the change. For AWAITING_CONFIRM it
                becomes the order's completion notes.
            is_admin_override: Recorded on the audit row
            expected_status: Status the caller validated against. When set,
                the change only applies if the order is still in it.
            worker_id: Assign this worker if none is assigned yet

        Returns:
            The updated order

        Raises:
            OrderNotFoundError: If the order does not exist
            StaleState: If the order is no longer in expected_status
            InvalidTransition: If the edge does not exist
            ValueError: If status is COMPLETED or CANCELLED
        """
        pass

    @abstractmethod
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
        """
        Atomically move an order to COMPLETED and record its payout.

        Calling it twice for the same order fails the second time with
        StaleState, so a payout is never committed twice.

        Raises:
            OrderNotFoundError: If the order does not exist
            StaleState: If the order is no longer in expected_status
            InvalidTransition: If expected_status cannot reach COMPLETED
        """
        pass

    @abstractmethod
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
        """
        Atomically move an order to CANCELLED and record the refund decision.

        Raises:
            OrderNotFoundError: If the order does not exist
            StaleState: If the order is no longer in expected_status
            InvalidTransition: If the order is already terminal
            ValidationError: If the refund exceeds the order value
        """
        pass

    @abstractmethod
    async def get_status_history(self, order_id: UUID) -> list[StatusChange]:
        """Return the audit trail of an order, oldest first."""
        pass

    @abstractmethod
    async def record_order_message(self, order_id: UUID, ref: MessageRef | None) -> Order:
        """Remember (or forget, with None) the message carrying the order's controls."""
        pass

    # =========================================================================
    # Issues
    # =========================================================================

    @abstractmethod
    async def create_issue(
        self,
        order_id: UUID,
        reporter_id: ActorId,
        description: str,
        priority: IssuePriority = IssuePriority.MEDIUM,
    ) -> Issue:
        """
        Open a new issue against an order.

        Raises:
            OrderNotFoundError: If the order does not exist
            ValidationError: If the order already has an unresolved issue
        """
        pass

    @abstractmethod
    async def update_issue(
        self,
        issue_id: UUID,
        status: IssueStatus,
        *,
        resolution: str | None = None,
        resolver_id: ActorId | None = None,
    ) -> Issue:
        """
        Change an issue's status.

        Resolving sets resolution, resolver and resolved_at. Any other status
        keeps the current text unless ``resolution`` is given. A resolved
        issue is never changed again; its first resolution text is kept.

        Raises:
            IssueNotFoundError: If the issue does not exist
            IssueAlreadyResolved: If the issue is already RESOLVED
            InvalidTransition: If the status change is not allowed
        """
        pass

    @abstractmethod
    async def get_issue(self, issue_id: UUID) -> Issue:
        """
        Raises:
            IssueNotFoundError: If the issue does not exist
        """
        pass

    @abstractmethod
    async def get_active_issue(self, order_id: UUID) -> Issue | None:
        """Return the order's unresolved issue, if any."""
        pass

    @abstractmethod
    async def record_issue_message(self, issue_id: UUID, ref: MessageRef | None) -> Issue:
        """Remember the staff alert message posted for an issue."""
        pass

    # =========================================================================
    # Items
    # =========================================================================

    @abstractmethod
    async def create_item(
        self,
        category: str,
        price: Decimal,
        *,
        title: str = "",
    ) -> Item:
        """Add an available item to the inventory."""
        pass

    @abstractmethod
    async def get_item(self, item_id: UUID) -> Item:
        """
        Raises:
            ItemNotFoundError: If the item does not exist
        """
        pass

    @abstractmethod
    async def reserve_item(self, item_id: UUID, ticket_id: UUID, customer_id: ActorId) -> Item:
        """
        Reserve an item for a ticket, only if it is currently available.

        Raises:
            ItemNotFoundError: If the item does not exist
            ItemUnavailable: If the item is reserved or sold
        """
        pass

    @abstractmethod
    async def complete_item_sale(
        self,
        item_id: UUID,
        ticket_id: UUID,
        customer_id: ActorId,
        support_actor_id: ActorId | None = None,
    ) -> Item:
        """
        Mark a reserved item as sold to its reservation holder.

        Raises:
            ItemNotFoundError: If the item does not exist
            ReservationMismatch: Unless the item is reserved by exactly this
                ticket and customer
        """
        pass

    @abstractmethod
    async def release_item(self, item_id: UUID) -> Item:
        """
        Make a reserved item available again.

        Releasing an available item is a no-op and a sold item is never
        made available again.

        Raises:
            ItemNotFoundError: If the item does not exist
        """
        pass

    # =========================================================================
    # Tickets
    # =========================================================================

    @abstractmethod
    async def create_ticket(
        self,
        channel_id: ChannelId,
        ticket_type: TicketType,
        customer_id: ActorId,
        *,
        item_id: UUID | None = None,
        details: dict[str, str] | None = None,
    ) -> Ticket:
        """Open a ticket bound to a conversation channel."""
        pass

    @abstractmethod
    async def get_ticket(self, ticket_id: UUID) -> Ticket:
        """
        Raises:
            TicketNotFoundError: If the ticket does not exist
        """
        pass

    @abstractmethod
    async def get_ticket_by_channel(self, channel_id: ChannelId) -> Ticket | None:
        """Return the open ticket bound to a channel, if any."""
        pass

    @abstractmethod
    async def attach_order(self, ticket_id: UUID, order_id: UUID) -> Ticket:
        """Link an order to a ticket."""
        pass

    @abstractmethod
    async def mark_ticket_delivered(self, ticket_id: UUID) -> Ticket:
        pass

    @abstractmethod
    async def close_ticket(self, ticket_id: UUID) -> Ticket:
        """
        Close a ticket. Closing an already closed ticket is a no-op.

        Never changes the state of the linked order or item.
        """
        pass

    async def close(self) -> None:  # noqa: B027
        """Release backend resources. The default implementation does nothing."""
        pass


__all__ = ["FulfillmentStore"]
