"""
Composition root for the fulfillment package.

FulfillmentApp wires the services together from settings and the three
external collaborators (store, message transport, role directory). It holds
no state of its own beyond the objects it builds, so tests can build as many
independent apps as they like.

Example:
    >>> from fulfillment import FulfillmentApp, FulfillmentSettings
    >>> from fulfillment.notifications import InMemoryTransport
    >>> from fulfillment.roles import InMemoryRoleDirectory
    >>> from fulfillment.stores import InMemoryFulfillmentStore
    >>>
    >>> app = FulfillmentApp.build(
    ...     FulfillmentSettings(guild_id="guild", admin_role_id="admin"),
    ...     InMemoryFulfillmentStore(),
    ...     InMemoryTransport(),
    ...     InMemoryRoleDirectory(),
    ... )
    >>> order = await app.lifecycle.create_order(draft)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fulfillment.actions import ActionDispatcher
from fulfillment.config import FulfillmentSettings
from fulfillment.disputes import DisputeResolutionWorkflow
from fulfillment.lifecycle import OrderLifecycleManager
from fulfillment.monitoring import ErrorRateTracker
from fulfillment.notifications import MessageTransport, NotificationFanout, StaffChannels
from fulfillment.observability import Tracer
from fulfillment.reservations import ReservationGuard
from fulfillment.roles import RoleDirectory, StaffRoleChecker
from fulfillment.stores.interface import FulfillmentStore
from fulfillment.tickets import TicketBindingService

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | int = logging.INFO) -> None:
    """Configure root logging for a process that embeds the package."""
    logging.basicConfig(level=level, format=LOG_FORMAT)


@dataclass
class FulfillmentApp:
    """All fulfillment services, built against one store and one transport."""

    settings: FulfillmentSettings
    store: FulfillmentStore
    roles: StaffRoleChecker
    fanout: NotificationFanout
    guard: ReservationGuard
    lifecycle: OrderLifecycleManager
    disputes: DisputeResolutionWorkflow
    tickets: TicketBindingService
    tracker: ErrorRateTracker
    dispatcher: ActionDispatcher

    @classmethod
    def build(
        cls,
        settings: FulfillmentSettings,
        store: FulfillmentStore,
        transport: MessageTransport,
        directory: RoleDirectory,
        *,
        tracer: Tracer | None = None,
    ) -> FulfillmentApp:
        tracing = settings.enable_tracing
        roles = StaffRoleChecker(
            directory, settings.guild_id, settings.admin_role_id, settings.support_role_id
        )
        fanout = NotificationFanout(
            transport,
            StaffChannels(
                staff_log=settings.staff_log_channel_id,
                staff_alerts=settings.issues_channel_id,
                completed_ledger=settings.completed_orders_channel_id,
            ),
            tracer=tracer,
            enable_tracing=tracing,
        )
        guard = ReservationGuard(store, tracer=tracer, enable_tracing=tracing)
        lifecycle = OrderLifecycleManager(
            store,
            guard,
            fanout,
            roles,
            payout_policy=settings.payout_policy(),
            tracer=tracer,
            enable_tracing=tracing,
        )
        disputes = DisputeResolutionWorkflow(
            lifecycle,
            store,
            fanout,
            roles,
            confirmation_phrase=settings.confirmation_phrase,
            tracer=tracer,
            enable_tracing=tracing,
        )
        tickets = TicketBindingService(
            store, guard, fanout, roles, tracer=tracer, enable_tracing=tracing
        )
        tracker = ErrorRateTracker(settings.alert_policy())
        dispatcher = ActionDispatcher(
            tracker,
            validity_seconds=settings.action_validity_seconds,
            tracer=tracer,
            enable_tracing=tracing,
        )
        logger.debug(
            "Built fulfillment app for guild %s",
            settings.guild_id,
            extra={"guild_id": settings.guild_id},
        )
        return cls(
            settings=settings,
            store=store,
            roles=roles,
            fanout=fanout,
            guard=guard,
            lifecycle=lifecycle,
            disputes=disputes,
            tickets=tickets,
            tracker=tracker,
            dispatcher=dispatcher,
        )

    def reset(self) -> None:
        """Clear error-tracking state. Intended for tests."""
        self.tracker.reset()

    async def aclose(self) -> None:
        await self.store.close()

    async def __aenter__(self) -> FulfillmentApp:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()


__all__ = ["FulfillmentApp", "configure_logging"]
