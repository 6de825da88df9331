"""
Order lifecycle orchestration.

Every operation follows the same shape:

1. Re-read the order from the store (never trust a cached snapshot)
2. Check staleness, the precondition and the caller's rights
3. Ask the store for a compare-and-set transition on the status just read
4. Run the follow-up effects (issue bookkeeping, item release)
5. Fan out notifications, which can fail without undoing anything

A committed transition is never rolled back because a later effect failed;
such failures become warnings on the returned TransitionResult.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from fulfillment.config import PayoutPolicy
from fulfillment.events import OrderCancelled, OrderConfirmed, WorkStarted, WorkSubmitted
from fulfillment.exceptions import (
    FulfillmentError,
    InvalidTransition,
    PermissionDenied,
    StaleState,
    ValidationError,
)
from fulfillment.models import (
    IssueStatus,
    NewOrder,
    Order,
    OrderStatus,
    Payout,
    Refund,
    RefundType,
    StatusChange,
)
from fulfillment.notifications import FanoutReport, NotificationFanout, Recipient
from fulfillment.observability import (
    ATTR_ACTOR_ID,
    ATTR_ADMIN_OVERRIDE,
    ATTR_ORDER_ID,
    ATTR_REFUND_TYPE,
    ATTR_TARGET_STATUS,
    Tracer,
    create_tracer,
)
from fulfillment.reservations import ReservationGuard
from fulfillment.roles import StaffRoleChecker
from fulfillment.stores.interface import FulfillmentStore
from fulfillment.transitions import (
    ORDER_TRANSITIONS,
    can_transition,
    compute_refund,
    describe_refund,
)
from fulfillment.types import ActorId

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionResult:
    """
    Result of a lifecycle operation.

    Attributes:
        order: Snapshot after the transition and its follow-up effects
        notifications: Fanout report, or None when notifications were deferred
            to the caller
        warnings: Follow-up effects that failed after the transition committed
    """

    order: Order
    notifications: FanoutReport | None = None
    warnings: tuple[str, ...] = ()


class OrderLifecycleManager:
    """
    Drives orders through PENDING, IN_PROGRESS, AWAITING_CONFIRM and DISPUTED
    to COMPLETED or CANCELLED.

    Callers may pass ``expected_status``, the status their UI rendered. If
    the order moved on in the meantime the operation fails with StaleState
    instead of acting on a state the user never saw.

    Example:
        >>> lifecycle = OrderLifecycleManager(store, guard, fanout, roles)
        >>> result = await lifecycle.start_work(order.id, "worker-1")
        >>> result.order.status
        <OrderStatus.IN_PROGRESS: 'IN_PROGRESS'>
    """

    def __init__(
        self,
        store: FulfillmentStore,
        guard: ReservationGuard,
        fanout: NotificationFanout,
        roles: StaffRoleChecker,
        *,
        payout_policy: PayoutPolicy | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._store = store
        self._guard = guard
        self._fanout = fanout
        self._roles = roles
        self._payout_policy = payout_policy or PayoutPolicy()
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @property
    def roles(self) -> StaffRoleChecker:
        return self._roles

    # =========================================================================
    # Queries
    # =========================================================================

    async def create_order(self, draft: NewOrder) -> Order:
        """Register a paid order in PENDING."""
        order = await self._store.create_order(draft)
        logger.info(
            "Created %s for %s",
            order.label,
            order.customer_id,
            extra={"order_id": str(order.id), "customer_id": order.customer_id},
        )
        return order

    async def get_order(self, order_id: UUID) -> Order:
        return await self._store.get_order(order_id)

    async def get_history(self, order_id: UUID) -> list[StatusChange]:
        """Audit trail of the order's transitions, oldest first."""
        return await self._store.get_status_history(order_id)

    # =========================================================================
    # Transitions
    # =========================================================================

    async def start_work(
        self,
        order_id: UUID,
        worker_id: ActorId,
        *,
        expected_status: OrderStatus | None = None,
    ) -> TransitionResult:
        """
        Move a PENDING order to IN_PROGRESS.

        An unassigned order is claimed by the caller; an assigned order can
        only be started by its worker.

        Raises:
            StaleState: If the order is no longer in expected_status
            InvalidTransition: If the order is not PENDING
            PermissionDenied: If another worker is assigned
        """
        with self._tracer.span(
            "fulfillment.lifecycle.start_work",
            {
                ATTR_ORDER_ID: str(order_id),
                ATTR_ACTOR_ID: worker_id,
                ATTR_TARGET_STATUS: OrderStatus.IN_PROGRESS.value,
            },
        ):
            order = await self._store.get_order(order_id)
            self._check(order, {OrderStatus.PENDING}, OrderStatus.IN_PROGRESS, expected_status)
            if order.worker_id is not None and order.worker_id != worker_id:
                raise PermissionDenied(
                    worker_id,
                    "start work on an order assigned to someone else",
                    user_message=(
                        f"{order.label} is assigned to another worker. Pick an "
                        "unassigned order instead."
                    ),
                )

            updated = await self._store.set_order_status(
                order.id,
                OrderStatus.IN_PROGRESS,
                worker_id,
                "Worker started work",
                expected_status=order.status,
                worker_id=worker_id,
            )
            self._log_transition(order, updated, worker_id)

            report = await self._fanout.notify(
                WorkStarted(actor_id=worker_id, order=updated),
                [Recipient.CUSTOMER_DM, Recipient.ORDER_CHANNEL, Recipient.STAFF_LOG],
            )
            return TransitionResult(order=updated, notifications=report)

    async def complete_work(
        self,
        order_id: UUID,
        worker_id: ActorId,
        notes: str,
        *,
        expected_status: OrderStatus | None = None,
    ) -> TransitionResult:
        """
        Submit finished work for the customer's confirmation.

        Posts a message in the order channel with confirm and report-issue
        actions that only the customer may use, and records its reference on
        the order so the actions can be retracted later.

        Raises:
            StaleState: If the order is no longer in expected_status
            InvalidTransition: If the order is not IN_PROGRESS
            PermissionDenied: If the caller is not the assigned worker
            ValidationError: If the notes are blank
        """
        with self._tracer.span(
            "fulfillment.lifecycle.complete_work",
            {
                ATTR_ORDER_ID: str(order_id),
                ATTR_ACTOR_ID: worker_id,
                ATTR_TARGET_STATUS: OrderStatus.AWAITING_CONFIRM.value,
            },
        ):
            order = await self._store.get_order(order_id)
            self._check(
                order, {OrderStatus.IN_PROGRESS}, OrderStatus.AWAITING_CONFIRM, expected_status
            )
            if order.worker_id != worker_id:
                raise PermissionDenied(
                    worker_id,
                    "complete an order they are not assigned to",
                    user_message=f"Only the worker assigned to {order.label} can mark it complete.",
                )
            if not notes or not notes.strip():
                raise ValidationError(
                    "Completion notes are required. Describe what was delivered so the "
                    "customer can check it.",
                    field="notes",
                )

            updated = await self._store.set_order_status(
                order.id,
                OrderStatus.AWAITING_CONFIRM,
                worker_id,
                "Worker submitted work",
                notes=notes.strip(),
                expected_status=order.status,
            )
            self._log_transition(order, updated, worker_id)

            # A corrections round leaves the previous prompt behind
            await self._fanout.retract_actions(order.prompt_message)

            report = await self._fanout.notify(
                WorkSubmitted(actor_id=worker_id, order=updated, notes=notes.strip()),
                [Recipient.ORDER_CHANNEL, Recipient.CUSTOMER_DM, Recipient.STAFF_LOG],
            )
            warnings: list[str] = []
            prompt = report.ref(Recipient.ORDER_CHANNEL)
            if prompt is not None:
                updated = await self._store.record_order_message(order.id, prompt)
            else:
                warnings.append(
                    "The confirmation prompt could not be posted in the order channel."
                )
            return TransitionResult(order=updated, notifications=report, warnings=tuple(warnings))

    async def confirm_completion(
        self,
        order_id: UUID,
        confirmer_id: ActorId,
        feedback: str | None = None,
        rating: int | None = None,
        is_admin_override: bool = False,
        acting_staff_id: ActorId | None = None,
        *,
        expected_status: OrderStatus | None = None,
        notify: bool = True,
        settle_issue: bool = True,
    ) -> TransitionResult:
        """
        Complete an order and commit its payout.

        Without an override only the customer may confirm, and only from
        AWAITING_CONFIRM. With ``is_admin_override`` a staff member
        (``acting_staff_id``) confirms on the customer's behalf; a DISPUTED
        order is first normalised to AWAITING_CONFIRM.

        Args:
            order_id: Order to complete
            confirmer_id: Customer confirming (or on whose behalf staff confirms)
            feedback: Optional customer feedback
            rating: Optional rating from 1 to 5
            is_admin_override: Staff confirmation on the customer's behalf
            acting_staff_id: Staff member using the override
            expected_status: Status the caller's UI showed
            notify: Fan out the completion notifications
            settle_issue: Resolve an issue left open by a corrections round

        Raises:
            StaleState: If the order is no longer in expected_status, or
                another confirmation won the race
            InvalidTransition: If the order cannot be completed from its status
            PermissionDenied: If the caller may not confirm
            ValidationError: If the rating is out of range
        """
        with self._tracer.span(
            "fulfillment.lifecycle.confirm_completion",
            {
                ATTR_ORDER_ID: str(order_id),
                ATTR_ACTOR_ID: acting_staff_id or confirmer_id,
                ATTR_ADMIN_OVERRIDE: is_admin_override,
                ATTR_TARGET_STATUS: OrderStatus.COMPLETED.value,
            },
        ):
            if rating is not None and not 1 <= rating <= 5:
                raise ValidationError("Ratings go from 1 to 5 stars.", field="rating")

            order = await self._store.get_order(order_id)
            allowed = {OrderStatus.AWAITING_CONFIRM}
            if is_admin_override:
                allowed.add(OrderStatus.DISPUTED)
            self._check(order, allowed, OrderStatus.COMPLETED, expected_status)

            if is_admin_override:
                if acting_staff_id is None:
                    raise PermissionDenied(confirmer_id, "confirm with an admin override")
                await self._roles.require_staff(acting_staff_id, "confirm with an admin override")
                actor_id = acting_staff_id
            else:
                if confirmer_id != order.customer_id:
                    raise PermissionDenied(
                        confirmer_id,
                        "confirm an order they did not place",
                        user_message=f"Only the customer who placed {order.label} can confirm it.",
                    )
                actor_id = confirmer_id

            if order.status == OrderStatus.DISPUTED:
                order = await self._store.set_order_status(
                    order.id,
                    OrderStatus.AWAITING_CONFIRM,
                    actor_id,
                    "Admin override: dispute settled for the worker",
                    is_admin_override=True,
                    expected_status=OrderStatus.DISPUTED,
                )

            completed = await self._store.complete_order(
                order.id,
                actor_id,
                self._payout(order),
                reason=(
                    "Completion confirmed by staff" if is_admin_override else "Customer confirmed"
                ),
                feedback=feedback,
                rating=rating,
                is_admin_override=is_admin_override,
                expected_status=OrderStatus.AWAITING_CONFIRM,
            )
            self._log_transition(order, completed, actor_id, is_admin_override=is_admin_override)

            warnings: list[str] = []
            if settle_issue:
                await self._settle_active_issue(
                    completed,
                    actor_id,
                    "Resolved on completion: the customer confirmed the corrected work.",
                    warnings,
                )
            await self._fanout.retract_actions(order.prompt_message)

            report = None
            if notify:
                report = await self._fanout.notify(
                    OrderConfirmed(
                        actor_id=actor_id,
                        order=completed,
                        is_admin_override=is_admin_override,
                    ),
                    [
                        Recipient.CUSTOMER_DM,
                        Recipient.WORKER_DM,
                        Recipient.ORDER_CHANNEL,
                        Recipient.STAFF_LOG,
                        Recipient.COMPLETED_LEDGER,
                    ],
                )
            return TransitionResult(
                order=completed, notifications=report, warnings=tuple(warnings)
            )

    async def cancel_order(
        self,
        order_id: UUID,
        canceller_id: ActorId,
        reason: str,
        refund_type: RefundType,
        refund_amount: Decimal | None = None,
        *,
        expected_status: OrderStatus | None = None,
        notify: bool = True,
        settle_issue: bool = True,
    ) -> TransitionResult:
        """
        Cancel a non-terminal order with a refund decision.

        Staff may cancel any non-terminal order; the customer may cancel
        their own order while it is still PENDING. A linked item is released
        before this returns.

        Raises:
            StaleState: If the order is no longer in expected_status
            InvalidTransition: If the order is COMPLETED or CANCELLED
            PermissionDenied: If the caller may not cancel
            ValidationError: If the reason is blank or the refund is invalid
        """
        with self._tracer.span(
            "fulfillment.lifecycle.cancel_order",
            {
                ATTR_ORDER_ID: str(order_id),
                ATTR_ACTOR_ID: canceller_id,
                ATTR_REFUND_TYPE: refund_type.value,
                ATTR_TARGET_STATUS: OrderStatus.CANCELLED.value,
            },
        ):
            order = await self._store.get_order(order_id)
            cancellable = {
                status
                for status, targets in ORDER_TRANSITIONS.items()
                if OrderStatus.CANCELLED in targets
            }
            self._check(order, cancellable, OrderStatus.CANCELLED, expected_status)

            is_staff = await self._roles.is_staff(canceller_id)
            if not is_staff:
                if canceller_id != order.customer_id:
                    raise PermissionDenied(canceller_id, "cancel an order")
                if order.status != OrderStatus.PENDING:
                    raise PermissionDenied(
                        canceller_id,
                        "cancel an order after work started",
                        user_message=(
                            f"{order.label} is already being worked on. Report an issue "
                            "instead, and staff will help."
                        ),
                    )

            if not reason or not reason.strip():
                raise ValidationError(
                    "A cancellation reason is required.",
                    field="reason",
                )
            amount = compute_refund(order, refund_type, refund_amount)

            cancelled = await self._store.cancel_order(
                order.id,
                canceller_id,
                reason.strip(),
                Refund(refund_type=refund_type, amount=amount),
                is_admin_override=is_staff and canceller_id != order.customer_id,
                expected_status=order.status,
            )
            self._log_transition(order, cancelled, canceller_id)

            warnings: list[str] = []
            try:
                await self._guard.release_for_order(cancelled)
            except FulfillmentError as e:
                logger.warning(
                    "Could not release item for cancelled %s: %s",
                    cancelled.label,
                    e,
                    extra={"order_id": str(cancelled.id), "item_id": str(cancelled.item_id)},
                )
                warnings.append("The reserved item could not be released; release it manually.")

            if settle_issue:
                refund_text = describe_refund(refund_type, amount, order.currency)
                await self._settle_active_issue(
                    cancelled,
                    canceller_id,
                    f"Resolved by cancellation ({refund_text}): {reason.strip()}",
                    warnings,
                )
            await self._fanout.retract_actions(order.prompt_message)

            report = None
            if notify:
                report = await self._fanout.notify(
                    OrderCancelled(actor_id=canceller_id, order=cancelled, reason=reason.strip()),
                    [
                        Recipient.CUSTOMER_DM,
                        Recipient.WORKER_DM,
                        Recipient.ORDER_CHANNEL,
                        Recipient.STAFF_LOG,
                    ],
                )
            return TransitionResult(
                order=cancelled, notifications=report, warnings=tuple(warnings)
            )

    async def open_dispute(
        self,
        order_id: UUID,
        reporter_id: ActorId,
        description: str,
        *,
        expected_status: OrderStatus | None = None,
    ) -> Order:
        """
        Move an order into DISPUTED on the customer's report.

        Only the transition: issue bookkeeping and alerts belong to the
        dispute workflow. The confirm/report prompt is forgotten, since its
        actions no longer apply.

        Raises:
            StaleState: If the order is no longer in expected_status
            InvalidTransition: If the order is not IN_PROGRESS or AWAITING_CONFIRM
            PermissionDenied: If the reporter is not the customer
        """
        with self._tracer.span(
            "fulfillment.lifecycle.open_dispute",
            {
                ATTR_ORDER_ID: str(order_id),
                ATTR_ACTOR_ID: reporter_id,
                ATTR_TARGET_STATUS: OrderStatus.DISPUTED.value,
            },
        ):
            order = await self._store.get_order(order_id)
            self._check(
                order,
                {OrderStatus.IN_PROGRESS, OrderStatus.AWAITING_CONFIRM},
                OrderStatus.DISPUTED,
                expected_status,
            )
            if reporter_id != order.customer_id:
                raise PermissionDenied(
                    reporter_id,
                    "report an issue on an order they did not place",
                    user_message=(
                        f"Only the customer who placed {order.label} can report an issue. "
                        "Open a support ticket if you need help."
                    ),
                )

            disputed = await self._store.set_order_status(
                order.id,
                OrderStatus.DISPUTED,
                reporter_id,
                "Customer reported an issue",
                notes=description,
                expected_status=order.status,
            )
            self._log_transition(order, disputed, reporter_id)
            if disputed.prompt_message is not None:
                disputed = await self._store.record_order_message(order.id, None)
            return disputed

    async def return_to_worker(
        self,
        order_id: UUID,
        staff_id: ActorId,
        instructions: str,
        *,
        expected_status: OrderStatus | None = OrderStatus.DISPUTED,
    ) -> Order:
        """
        Send a DISPUTED order back to IN_PROGRESS with fix instructions.

        Raises:
            PermissionDenied: If the caller is not staff
            StaleState: If the order is no longer in expected_status
            InvalidTransition: If the order is not DISPUTED
        """
        with self._tracer.span(
            "fulfillment.lifecycle.return_to_worker",
            {
                ATTR_ORDER_ID: str(order_id),
                ATTR_ACTOR_ID: staff_id,
                ATTR_ADMIN_OVERRIDE: True,
                ATTR_TARGET_STATUS: OrderStatus.IN_PROGRESS.value,
            },
        ):
            await self._roles.require_staff(staff_id, "request corrections")
            order = await self._store.get_order(order_id)
            self._check(order, {OrderStatus.DISPUTED}, OrderStatus.IN_PROGRESS, expected_status)

            updated = await self._store.set_order_status(
                order.id,
                OrderStatus.IN_PROGRESS,
                staff_id,
                "Corrections requested",
                notes=instructions,
                is_admin_override=True,
                expected_status=OrderStatus.DISPUTED,
            )
            self._log_transition(order, updated, staff_id, is_admin_override=True)
            return updated

    # =========================================================================
    # Helpers
    # =========================================================================

    def _check(
        self,
        order: Order,
        allowed: set[OrderStatus],
        to_status: OrderStatus,
        expected_status: OrderStatus | None,
    ) -> None:
        if expected_status is not None and order.status != expected_status:
            raise StaleState(order.id, expected_status, order.status)
        if order.status not in allowed:
            raise InvalidTransition(order.id, order.status, to_status)

    def _payout(self, order: Order) -> Payout:
        worker, support, system = self._payout_policy.split(
            order.value, has_support=order.support_id is not None
        )
        return Payout(
            worker_amount=worker,
            support_amount=support,
            system_amount=system,
            deposit_returned=order.deposit,
        )

    async def _settle_active_issue(
        self,
        order: Order,
        actor_id: ActorId,
        resolution: str,
        warnings: list[str],
    ) -> None:
        issue = await self._store.get_active_issue(order.id)
        if issue is None:
            return
        try:
            await self._store.update_issue(
                issue.id, IssueStatus.RESOLVED, resolution=resolution, resolver_id=actor_id
            )
        except FulfillmentError as e:
            logger.warning(
                "Could not resolve issue %s after %s moved to %s: %s",
                issue.id,
                order.label,
                order.status,
                e,
                extra={"order_id": str(order.id), "issue_id": str(issue.id)},
            )
            warnings.append("The open issue on this order could not be closed automatically.")

    def _log_transition(
        self,
        before: Order,
        after: Order,
        actor_id: ActorId,
        *,
        is_admin_override: bool = False,
    ) -> None:
        logger.info(
            "%s: %s -> %s by %s",
            after.label,
            before.status,
            after.status,
            actor_id,
            extra={
                "order_id": str(after.id),
                "from_status": before.status.value,
                "to_status": after.status.value,
                "actor_id": actor_id,
                "admin_override": is_admin_override,
            },
        )


__all__ = [
    "ORDER_TRANSITIONS",
    "OrderLifecycleManager",
    "TransitionResult",
    "can_transition",
]
