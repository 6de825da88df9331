"""
SQLite fulfillment store implementation.

Lightweight store using SQLite with async support via aiosqlite. Order
transitions are compare-and-set updates (``UPDATE ... WHERE status = ?``)
and reservations are conditional on availability
(``WHERE available = 1 AND sold = 0``); the row count tells the loser of a
race that it lost.

This implementation is suitable for:
- Development and testing environments
- Single-instance deployments
- Embedded applications
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID

import aiosqlite
from pydantic import BaseModel

from fulfillment.exceptions import (
    IssueAlreadyResolved,
    IssueNotFoundError,
    ItemNotFoundError,
    ItemUnavailable,
    OrderNotFoundError,
    StaleState,
    StoreError,
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
    ATTR_DB_NAME,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_ISSUE_ID,
    ATTR_ITEM_ID,
    ATTR_ORDER_ID,
    ATTR_TICKET_ID,
    Tracer,
    create_tracer,
)
from fulfillment.stores import _records
from fulfillment.stores.interface import FulfillmentStore
from fulfillment.stores.schema import SCHEMA_VERSION, get_schema
from fulfillment.types import ActorId, ChannelId

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)


class SQLiteFulfillmentStore(FulfillmentStore):
    """
    SQLite implementation of the fulfillment store.

    SQLite-specific adaptations:
    - UUIDs stored as TEXT (36 characters, hyphenated format)
    - Timestamps stored as TEXT in ISO 8601 format
    - Full snapshots stored as JSON TEXT in a ``payload`` column

    All requests on one store share a single connection and run under an
    asyncio lock, so a multi-statement write (transition plus audit row) is
    never interleaved with another request.

    Example:
        >>> async with SQLiteFulfillmentStore(":memory:") as store:
        ...     await store.initialize()
        ...     order = await store.create_order(NewOrder(value=Decimal("50"), customer_id="c1"))
    """

    def __init__(
        self,
        database: str,
        *,
        wal_mode: bool = True,
        busy_timeout: int = 5000,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the SQLite store.

        Args:
            database: Path to SQLite database file or ':memory:' for in-memory
            wal_mode: If True, enable WAL mode for better concurrency (default: True)
            busy_timeout: Timeout in milliseconds when database is locked (default: 5000)
            tracer: Optional custom Tracer instance. If not provided, one is
                   created based on enable_tracing setting.
            enable_tracing: If True, emit traces (default: True).
                          Ignored if tracer is explicitly provided.
        """
        self._database = database
        self._wal_mode = wal_mode
        self._busy_timeout = busy_timeout
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> SQLiteFulfillmentStore:
        """
        Async context manager entry.

        Opens the database connection and configures SQLite settings.
        """
        await self._connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()

    async def _connect(self) -> None:
        if self._connection is not None:
            return

        self._connection = await aiosqlite.connect(self._database)
        await self._connection.execute("PRAGMA foreign_keys = ON")
        await self._connection.execute(f"PRAGMA busy_timeout = {self._busy_timeout}")
        if self._wal_mode:
            await self._connection.execute("PRAGMA journal_mode = WAL")
        self._connection.row_factory = aiosqlite.Row

        logger.debug(
            "Connected to SQLite database: %s (wal_mode=%s, busy_timeout=%d)",
            self._database,
            self._wal_mode,
            self._busy_timeout,
        )

    async def close(self) -> None:
        """
        Close the database connection.

        Safe to call multiple times.
        """
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.debug("Closed SQLite database connection: %s", self._database)

    async def initialize(self) -> None:
        """
        Create the schema if it does not exist.

        This method is idempotent - safe to call multiple times.
        """
        if self._connection is None:
            await self._connect()
        conn = self._ensure_connected()

        await conn.executescript(get_schema())
        await conn.execute(
            "INSERT INTO schema_info (version) "
            "SELECT ? WHERE NOT EXISTS (SELECT 1 FROM schema_info)",
            (SCHEMA_VERSION,),
        )
        await conn.commit()
        logger.info("Initialized SQLite fulfillment schema: %s", self._database)

    def _ensure_connected(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError(
                "Not connected to database. Use 'async with store:' or call 'initialize()' first."
            )
        return self._connection

    @contextlib.asynccontextmanager
    async def _transaction(
        self,
        operation: str,
        attributes: dict[str, Any] | None = None,
    ) -> AsyncIterator[aiosqlite.Connection]:
        """
        Run one request atomically.

        Commits on success and rolls back on any exception. Driver errors are
        re-raised as StoreError; domain errors propagate unchanged.
        """
        conn = self._ensure_connected()
        with self._tracer.span(
            f"sqlite_fulfillment_store.{operation}",
            {
                ATTR_DB_SYSTEM: "sqlite",
                ATTR_DB_NAME: self._database,
                ATTR_DB_OPERATION: operation,
                **(attributes or {}),
            },
        ):
            async with self._lock:
                try:
                    yield conn
                    await conn.commit()
                except aiosqlite.Error as e:
                    await conn.rollback()
                    logger.error("SQLite %s failed: %s", operation, e, exc_info=True)
                    raise StoreError(f"SQLite {operation} failed: {e}") from e
                except BaseException:
                    await conn.rollback()
                    raise

    # =========================================================================
    # Orders
    # =========================================================================

    async def create_order(self, draft: NewOrder) -> Order:
        async with self._transaction("create_order") as conn:
            cursor = await conn.execute("SELECT COALESCE(MAX(number), 0) + 1 FROM orders")
            row = await cursor.fetchone()
            order = Order(number=row[0], **draft.model_dump())
            await conn.execute(
                """
                INSERT INTO orders (
                    id, number, status, customer_id, worker_id, item_id,
                    payload, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(order.id),
                    order.number,
                    order.status.value,
                    order.customer_id,
                    order.worker_id,
                    str(order.item_id) if order.item_id else None,
                    order.model_dump_json(),
                    order.created_at.isoformat(),
                    order.updated_at.isoformat(),
                ),
            )
        logger.debug("Created order %s (#%d)", order.id, order.number)
        return order

    async def get_order(self, order_id: UUID) -> Order:
        async with self._transaction("get_order") as conn:
            return await self._load_order(conn, order_id)

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
        async with self._transaction(
            "set_order_status", {ATTR_ORDER_ID: str(order_id)}
        ) as conn:
            before = await self._load_order(conn, order_id)
            now = utcnow()
            after = _records.next_status(
                before,
                status,
                now,
                notes=notes,
                worker_id=worker_id,
                expected_status=expected_status,
            )
            await self._swap_order(
                conn,
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
        async with self._transaction(
            "complete_order", {ATTR_ORDER_ID: str(order_id)}
        ) as conn:
            before = await self._load_order(conn, order_id)
            now = utcnow()
            after = _records.completed(
                before,
                payout,
                now,
                feedback=feedback,
                rating=rating,
                expected_status=expected_status,
            )
            await self._swap_order(
                conn,
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
        async with self._transaction("cancel_order", {ATTR_ORDER_ID: str(order_id)}) as conn:
            before = await self._load_order(conn, order_id)
            now = utcnow()
            after = _records.cancelled(before, reason, refund, now, expected_status=expected_status)
            await self._swap_order(
                conn,
                before,
                after,
                _records.audit_row(
                    before, after, actor_id, reason, now, is_admin_override=is_admin_override
                ),
            )
            return after

    async def get_status_history(self, order_id: UUID) -> list[StatusChange]:
        async with self._transaction("get_status_history") as conn:
            await self._load_order(conn, order_id)
            cursor = await conn.execute(
                "SELECT payload FROM order_status_history WHERE order_id = ? ORDER BY id",
                (str(order_id),),
            )
            rows = await cursor.fetchall()
            return [StatusChange.model_validate_json(row["payload"]) for row in rows]

    async def record_order_message(self, order_id: UUID, ref: MessageRef | None) -> Order:
        async with self._transaction("record_order_message") as conn:
            order = evolve(await self._load_order(conn, order_id), prompt_message=ref)
            await conn.execute(
                "UPDATE orders SET payload = ? WHERE id = ?",
                (order.model_dump_json(), str(order_id)),
            )
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
        async with self._transaction("create_issue") as conn:
            await self._load_order(conn, order_id)
            issue = Issue(
                order_id=order_id,
                reporter_id=reporter_id,
                description=description,
                priority=priority,
            )
            try:
                await conn.execute(
                    """
                    INSERT INTO issues (id, order_id, status, payload, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        str(issue.id),
                        str(order_id),
                        issue.status.value,
                        issue.model_dump_json(),
                        issue.created_at.isoformat(),
                    ),
                )
            except aiosqlite.IntegrityError as e:
                raise ValidationError(
                    "This order already has an open issue. Add details to the existing "
                    "report instead of opening a new one.",
                    field="order_id",
                ) from e
            return issue

    async def update_issue(
        self,
        issue_id: UUID,
        status: IssueStatus,
        *,
        resolution: str | None = None,
        resolver_id: ActorId | None = None,
    ) -> Issue:
        async with self._transaction("update_issue", {ATTR_ISSUE_ID: str(issue_id)}) as conn:
            before = await self._load(conn, "issues", issue_id, Issue, IssueNotFoundError)
            after = _records.issue_updated(
                before, status, utcnow(), resolution=resolution, resolver_id=resolver_id
            )
            cursor = await conn.execute(
                "UPDATE issues SET status = ?, payload = ? WHERE id = ? AND status = ?",
                (after.status.value, after.model_dump_json(), str(issue_id), before.status.value),
            )
            if cursor.rowcount != 1:
                current = await self._load(conn, "issues", issue_id, Issue, IssueNotFoundError)
                raise IssueAlreadyResolved(issue_id, current.resolution)
            return after

    async def get_issue(self, issue_id: UUID) -> Issue:
        async with self._transaction("get_issue") as conn:
            return await self._load(conn, "issues", issue_id, Issue, IssueNotFoundError)

    async def get_active_issue(self, order_id: UUID) -> Issue | None:
        async with self._transaction("get_active_issue") as conn:
            cursor = await conn.execute(
                "SELECT payload FROM issues WHERE order_id = ? AND status != 'RESOLVED'",
                (str(order_id),),
            )
            row = await cursor.fetchone()
            return Issue.model_validate_json(row["payload"]) if row else None

    async def record_issue_message(self, issue_id: UUID, ref: MessageRef | None) -> Issue:
        async with self._transaction("record_issue_message") as conn:
            issue = evolve(
                await self._load(conn, "issues", issue_id, Issue, IssueNotFoundError),
                alert_message=ref,
            )
            await conn.execute(
                "UPDATE issues SET payload = ? WHERE id = ?",
                (issue.model_dump_json(), str(issue_id)),
            )
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
        async with self._transaction("create_item") as conn:
            item = Item(category=category, price=price, title=title)
            await conn.execute(
                """
                INSERT INTO items (id, category, available, sold, payload)
                VALUES (?, ?, 1, 0, ?)
                """,
                (str(item.id), category, item.model_dump_json()),
            )
            return item

    async def get_item(self, item_id: UUID) -> Item:
        async with self._transaction("get_item") as conn:
            return await self._load(conn, "items", item_id, Item, ItemNotFoundError)

    async def reserve_item(self, item_id: UUID, ticket_id: UUID, customer_id: ActorId) -> Item:
        async with self._transaction(
            "reserve_item",
            {ATTR_ITEM_ID: str(item_id), ATTR_TICKET_ID: str(ticket_id)},
        ) as conn:
            before = await self._load(conn, "items", item_id, Item, ItemNotFoundError)
            after = _records.reserved(before, ticket_id, customer_id, utcnow())
            cursor = await conn.execute(
                """
                UPDATE items
                SET available = 0, reserved_ticket_id = ?, reserved_customer_id = ?,
                    payload = ?
                WHERE id = ? AND available = 1 AND sold = 0
                """,
                (str(ticket_id), customer_id, after.model_dump_json(), str(item_id)),
            )
            if cursor.rowcount != 1:
                current = await self._load(conn, "items", item_id, Item, ItemNotFoundError)
                raise ItemUnavailable(item_id, current.state)
            return after

    async def complete_item_sale(
        self,
        item_id: UUID,
        ticket_id: UUID,
        customer_id: ActorId,
        support_actor_id: ActorId | None = None,
    ) -> Item:
        async with self._transaction("complete_item_sale") as conn:
            before = await self._load(conn, "items", item_id, Item, ItemNotFoundError)
            after = _records.sold(before, ticket_id, customer_id, support_actor_id, utcnow())
            cursor = await conn.execute(
                """
                UPDATE items
                SET sold = 1, reserved_ticket_id = NULL, reserved_customer_id = NULL,
                    payload = ?
                WHERE id = ? AND reserved_ticket_id = ? AND reserved_customer_id = ?
                """,
                (after.model_dump_json(), str(item_id), str(ticket_id), customer_id),
            )
            if cursor.rowcount != 1:
                raise StoreError(f"Item {item_id} changed during sale")
            return after

    async def release_item(self, item_id: UUID) -> Item:
        async with self._transaction("release_item") as conn:
            before = await self._load(conn, "items", item_id, Item, ItemNotFoundError)
            after = _records.released(before)
            if after is not before:
                await conn.execute(
                    """
                    UPDATE items
                    SET available = 1, reserved_ticket_id = NULL, reserved_customer_id = NULL,
                        payload = ?
                    WHERE id = ? AND sold = 0
                    """,
                    (after.model_dump_json(), str(item_id)),
                )
            return after

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
        async with self._transaction("create_ticket") as conn:
            ticket = Ticket(
                channel_id=channel_id,
                ticket_type=ticket_type,
                customer_id=customer_id,
                item_id=item_id,
                details=details or {},
            )
            await conn.execute(
                """
                INSERT INTO tickets (id, channel_id, customer_id, is_open, payload, created_at)
                VALUES (?, ?, ?, 1, ?, ?)
                """,
                (
                    str(ticket.id),
                    channel_id,
                    customer_id,
                    ticket.model_dump_json(),
                    ticket.created_at.isoformat(),
                ),
            )
            return ticket

    async def get_ticket(self, ticket_id: UUID) -> Ticket:
        async with self._transaction("get_ticket") as conn:
            return await self._load(conn, "tickets", ticket_id, Ticket, TicketNotFoundError)

    async def get_ticket_by_channel(self, channel_id: ChannelId) -> Ticket | None:
        async with self._transaction("get_ticket_by_channel") as conn:
            cursor = await conn.execute(
                """
                SELECT payload FROM tickets
                WHERE channel_id = ? AND is_open = 1
                ORDER BY created_at DESC
                LIMIT 1
                """,
                (channel_id,),
            )
            row = await cursor.fetchone()
            return Ticket.model_validate_json(row["payload"]) if row else None

    async def attach_order(self, ticket_id: UUID, order_id: UUID) -> Ticket:
        async with self._transaction("attach_order") as conn:
            await self._load_order(conn, order_id)
            ticket = evolve(
                await self._load(conn, "tickets", ticket_id, Ticket, TicketNotFoundError),
                order_id=order_id,
            )
            await self._save_ticket(conn, ticket)
            return ticket

    async def mark_ticket_delivered(self, ticket_id: UUID) -> Ticket:
        async with self._transaction("mark_ticket_delivered") as conn:
            ticket = evolve(
                await self._load(conn, "tickets", ticket_id, Ticket, TicketNotFoundError),
                delivered=True,
            )
            await self._save_ticket(conn, ticket)
            return ticket

    async def close_ticket(self, ticket_id: UUID) -> Ticket:
        async with self._transaction("close_ticket", {ATTR_TICKET_ID: str(ticket_id)}) as conn:
            ticket = await self._load(conn, "tickets", ticket_id, Ticket, TicketNotFoundError)
            if ticket.is_open:
                ticket = evolve(ticket, is_open=False, closed_at=utcnow())
                await self._save_ticket(conn, ticket)
            return ticket

    # =========================================================================
    # Helpers (call inside _transaction)
    # =========================================================================

    async def _load_order(self, conn: aiosqlite.Connection, order_id: UUID) -> Order:
        return await self._load(conn, "orders", order_id, Order, OrderNotFoundError)

    async def _load(
        self,
        conn: aiosqlite.Connection,
        table: str,
        record_id: UUID,
        model: type[RecordT],
        not_found: type[Exception],
    ) -> RecordT:
        cursor = await conn.execute(
            f"SELECT payload FROM {table} WHERE id = ?",  # noqa: S608 - table is internal
            (str(record_id),),
        )
        row = await cursor.fetchone()
        if row is None:
            raise not_found(record_id)
        return model.model_validate_json(row["payload"])

    async def _swap_order(
        self,
        conn: aiosqlite.Connection,
        before: Order,
        after: Order,
        change: StatusChange,
    ) -> None:
        """Compare-and-set the order row on its old status and append the audit row."""
        cursor = await conn.execute(
            """
            UPDATE orders
            SET status = ?, worker_id = ?, payload = ?, updated_at = ?
            WHERE id = ? AND status = ?
            """,
            (
                after.status.value,
                after.worker_id,
                after.model_dump_json(),
                after.updated_at.isoformat(),
                str(after.id),
                before.status.value,
            ),
        )
        if cursor.rowcount != 1:
            current = await self._load_order(conn, after.id)
            logger.debug(
                "Lost status race on order %s: expected %s, found %s",
                after.id,
                before.status,
                current.status,
                extra={"order_id": str(after.id)},
            )
            raise StaleState(after.id, before.status, current.status)

        await conn.execute(
            """
            INSERT INTO order_status_history (
                order_id, from_status, to_status, actor_id, payload, changed_at
            )
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                str(change.order_id),
                change.from_status.value,
                change.to_status.value,
                change.actor_id,
                change.model_dump_json(),
                change.changed_at.isoformat(),
            ),
        )
        logger.debug(
            "Order %s: %s -> %s",
            after.id,
            before.status,
            after.status,
            extra={"order_id": str(after.id), "actor_id": change.actor_id},
        )

    async def _save_ticket(self, conn: aiosqlite.Connection, ticket: Ticket) -> None:
        await conn.execute(
            "UPDATE tickets SET is_open = ?, payload = ? WHERE id = ?",
            (1 if ticket.is_open else 0, ticket.model_dump_json(), str(ticket.id)),
        )

    @property
    def database(self) -> str:
        """Get the database path."""
        return self._database

    @property
    def is_connected(self) -> bool:
        """Check if currently connected to database."""
        return self._connection is not None

    @property
    def wal_mode(self) -> bool:
        return self._wal_mode


__all__ = ["SQLiteFulfillmentStore"]
