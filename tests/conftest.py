"""
Shared pytest fixtures for the fulfillment tests.

This module provides:
- Collaborator fixtures (store, transport, role directory)
- Service fixtures wired the way FulfillmentApp wires them
- Order fixtures at each lifecycle stage (pending, in progress, awaiting
  confirmation, disputed)
- SQLite fixtures (sqlite_store)

Tracing is disabled everywhere except where a test passes a MockTracer.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from decimal import Decimal

import pytest
import pytest_asyncio

from fulfillment.actions import ActionDispatcher
from fulfillment.app import FulfillmentApp
from fulfillment.config import AlertPolicy, FulfillmentSettings
from fulfillment.disputes import DisputeResolutionWorkflow, ReportReceipt
from fulfillment.lifecycle import OrderLifecycleManager
from fulfillment.models import Item, Order
from fulfillment.monitoring import ErrorRateTracker
from fulfillment.notifications import InMemoryTransport, NotificationFanout
from fulfillment.reservations import ReservationGuard
from fulfillment.roles import InMemoryRoleDirectory, StaffRoleChecker
from fulfillment.stores import InMemoryFulfillmentStore, SQLiteFulfillmentStore
from fulfillment.testing import FulfillmentAssertions
from fulfillment.tickets import TicketBindingService
from tests.fixtures import (
    ADMIN,
    ADMIN_ROLE,
    CUSTOMER,
    GUILD,
    LEDGER_CHANNEL,
    OTHER_CUSTOMER,
    OTHER_WORKER,
    STAFF_ALERTS_CHANNEL,
    STAFF_LOG_CHANNEL,
    SUPPORT,
    SUPPORT_ROLE,
    WORKER,
    make_draft,
    staff_channels,
)

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for tests."""
    config.addinivalue_line("markers", "sqlite: marks tests that use the SQLite store")


# ============================================================================
# Collaborators
# ============================================================================


@pytest.fixture
def store() -> InMemoryFulfillmentStore:
    return InMemoryFulfillmentStore(enable_tracing=False)


@pytest.fixture
def transport() -> InMemoryTransport:
    return InMemoryTransport()


@pytest.fixture
def directory() -> InMemoryRoleDirectory:
    """
    Provide a role directory with one admin, one support member and plain
    customers and workers.
    """
    directory = InMemoryRoleDirectory()
    directory.grant(GUILD, ADMIN, ADMIN_ROLE)
    directory.grant(GUILD, SUPPORT, SUPPORT_ROLE)
    for member in (CUSTOMER, OTHER_CUSTOMER, WORKER, OTHER_WORKER):
        directory.add_member(GUILD, member)
    return directory


@pytest.fixture
def roles(directory: InMemoryRoleDirectory) -> StaffRoleChecker:
    return StaffRoleChecker(directory, GUILD, ADMIN_ROLE, SUPPORT_ROLE)


# ============================================================================
# Services
# ============================================================================


@pytest.fixture
def fanout(transport: InMemoryTransport) -> NotificationFanout:
    return NotificationFanout(transport, staff_channels(), enable_tracing=False)


@pytest.fixture
def guard(store: InMemoryFulfillmentStore) -> ReservationGuard:
    return ReservationGuard(store, enable_tracing=False)


@pytest.fixture
def lifecycle(
    store: InMemoryFulfillmentStore,
    guard: ReservationGuard,
    fanout: NotificationFanout,
    roles: StaffRoleChecker,
) -> OrderLifecycleManager:
    return OrderLifecycleManager(store, guard, fanout, roles, enable_tracing=False)


@pytest.fixture
def disputes(
    lifecycle: OrderLifecycleManager,
    store: InMemoryFulfillmentStore,
    fanout: NotificationFanout,
    roles: StaffRoleChecker,
) -> DisputeResolutionWorkflow:
    return DisputeResolutionWorkflow(lifecycle, store, fanout, roles, enable_tracing=False)


@pytest.fixture
def tickets(
    store: InMemoryFulfillmentStore,
    guard: ReservationGuard,
    fanout: NotificationFanout,
    roles: StaffRoleChecker,
) -> TicketBindingService:
    return TicketBindingService(store, guard, fanout, roles, enable_tracing=False)


@pytest.fixture
def tracker() -> ErrorRateTracker:
    return ErrorRateTracker(AlertPolicy(threshold=3, window_seconds=60, cooldown_seconds=120))


@pytest.fixture
def dispatcher(tracker: ErrorRateTracker) -> ActionDispatcher:
    return ActionDispatcher(tracker, enable_tracing=False)


@pytest.fixture
def check(
    store: InMemoryFulfillmentStore, transport: InMemoryTransport
) -> FulfillmentAssertions:
    return FulfillmentAssertions(store, transport)


@pytest.fixture
def settings() -> FulfillmentSettings:
    return FulfillmentSettings(
        _env_file=None,
        guild_id=GUILD,
        admin_role_id=ADMIN_ROLE,
        support_role_id=SUPPORT_ROLE,
        staff_log_channel_id=STAFF_LOG_CHANNEL,
        issues_channel_id=STAFF_ALERTS_CHANNEL,
        completed_orders_channel_id=LEDGER_CHANNEL,
        enable_tracing=False,
    )


@pytest.fixture
def app(
    settings: FulfillmentSettings,
    store: InMemoryFulfillmentStore,
    transport: InMemoryTransport,
    directory: InMemoryRoleDirectory,
) -> FulfillmentApp:
    return FulfillmentApp.build(settings, store, transport, directory)


# ============================================================================
# Orders at each lifecycle stage
# ============================================================================


@pytest_asyncio.fixture
async def pending_order(lifecycle: OrderLifecycleManager) -> Order:
    """A 100.00 order with a 20.00 deposit, waiting for a worker."""
    return await lifecycle.create_order(make_draft())


@pytest_asyncio.fixture
async def started_order(lifecycle: OrderLifecycleManager, pending_order: Order) -> Order:
    result = await lifecycle.start_work(pending_order.id, WORKER)
    return result.order


@pytest_asyncio.fixture
async def submitted_order(lifecycle: OrderLifecycleManager, started_order: Order) -> Order:
    """An order awaiting the customer's confirmation, with its prompt recorded."""
    result = await lifecycle.complete_work(started_order.id, WORKER, "Reached Diamond rank")
    return result.order


@pytest_asyncio.fixture
async def disputed(
    disputes: DisputeResolutionWorkflow, submitted_order: Order
) -> ReportReceipt:
    """Receipt for an issue reported on an order awaiting confirmation."""
    return await disputes.report_issue(
        submitted_order.id, CUSTOMER, "The rank reached is Platinum, not Diamond"
    )


@pytest_asyncio.fixture
async def item(store: InMemoryFulfillmentStore) -> Item:
    return await store.create_item("accounts", Decimal("25.00"), title="Level 30 account")


# ============================================================================
# SQLite
# ============================================================================


@pytest_asyncio.fixture
async def sqlite_store() -> AsyncGenerator[SQLiteFulfillmentStore, None]:
    """
    Provide an initialized in-memory SQLite store.

    WAL mode is disabled because it does not apply to in-memory databases.
    """
    async with SQLiteFulfillmentStore(":memory:", wal_mode=False, enable_tracing=False) as s:
        await s.initialize()
        yield s
