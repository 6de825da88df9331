"""
Unit tests for OrderLifecycleManager.

Tests cover:
- Rights checks for each transition (worker, customer, staff)
- Staleness and invalid transitions
- Payout and refund decisions committed with the terminal status
- Follow-up effects: item release, prompt retraction, notifications
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from fulfillment.exceptions import (
    InvalidTransition,
    OrderNotFoundError,
    PermissionDenied,
    StaleState,
    ValidationError,
)
from fulfillment.lifecycle import OrderLifecycleManager
from fulfillment.models import Item, ItemState, Order, OrderStatus, RefundType
from fulfillment.notifications import InMemoryTransport, NotificationFanout, Recipient
from fulfillment.observability import ATTR_ORDER_ID, ATTR_TARGET_STATUS, MockTracer
from fulfillment.reservations import ReservationGuard
from fulfillment.roles import StaffRoleChecker
from fulfillment.stores import InMemoryFulfillmentStore
from fulfillment.testing import FulfillmentAssertions
from tests.fixtures import (
    ADMIN,
    CUSTOMER,
    LEDGER_CHANNEL,
    ORDER_CHANNEL,
    OTHER_CUSTOMER,
    OTHER_WORKER,
    STAFF_LOG_CHANNEL,
    SUPPORT,
    WORKER,
    make_draft,
)

# =============================================================================
# start_work
# =============================================================================


class TestStartWork:
    @pytest.mark.asyncio
    async def test_claims_unassigned_order(
        self, lifecycle: OrderLifecycleManager, pending_order: Order
    ) -> None:
        result = await lifecycle.start_work(pending_order.id, WORKER)

        assert result.order.status == OrderStatus.IN_PROGRESS
        assert result.order.worker_id == WORKER
        assert result.notifications is not None
        assert result.notifications.all_delivered

    @pytest.mark.asyncio
    async def test_notifies_customer_and_channels(
        self,
        lifecycle: OrderLifecycleManager,
        pending_order: Order,
        check: FulfillmentAssertions,
    ) -> None:
        await lifecycle.start_work(pending_order.id, WORKER)

        check.assert_direct_message(CUSTOMER, containing="Order #1 started")
        check.assert_channel_message(ORDER_CHANNEL, containing="Order #1 started")
        check.assert_channel_message(STAFF_LOG_CHANNEL, containing="Order #1 started")

    @pytest.mark.asyncio
    async def test_assigned_order_is_reserved_for_its_worker(
        self, lifecycle: OrderLifecycleManager
    ) -> None:
        order = await lifecycle.create_order(make_draft(worker_id=WORKER))

        with pytest.raises(PermissionDenied) as exc_info:
            await lifecycle.start_work(order.id, OTHER_WORKER)
        assert "another worker" in exc_info.value.user_message

        result = await lifecycle.start_work(order.id, WORKER)
        assert result.order.status == OrderStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_second_start_is_invalid(
        self, lifecycle: OrderLifecycleManager, started_order: Order
    ) -> None:
        with pytest.raises(InvalidTransition):
            await lifecycle.start_work(started_order.id, WORKER)

    @pytest.mark.asyncio
    async def test_stale_ui_is_reported(
        self, lifecycle: OrderLifecycleManager, started_order: Order
    ) -> None:
        with pytest.raises(StaleState) as exc_info:
            await lifecycle.start_work(
                started_order.id, OTHER_WORKER, expected_status=OrderStatus.PENDING
            )
        assert exc_info.value.actual_status == OrderStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_unknown_order(self, lifecycle: OrderLifecycleManager) -> None:
        with pytest.raises(OrderNotFoundError):
            await lifecycle.start_work(uuid4(), WORKER)


# =============================================================================
# complete_work
# =============================================================================


class TestCompleteWork:
    @pytest.mark.asyncio
    async def test_posts_customer_only_prompt(
        self,
        lifecycle: OrderLifecycleManager,
        started_order: Order,
        transport: InMemoryTransport,
    ) -> None:
        result = await lifecycle.complete_work(started_order.id, WORKER, " Reached Diamond rank ")

        assert result.order.status == OrderStatus.AWAITING_CONFIRM
        assert result.order.completion_notes == "Reached Diamond rank"
        assert result.order.prompt_message == result.notifications.ref(Recipient.ORDER_CHANNEL)
        assert result.warnings == ()

        prompt = transport.channel_messages(ORDER_CHANNEL)[-1]
        assert {a.allowed_user_id for a in prompt.actions} == {CUSTOMER}

    @pytest.mark.asyncio
    async def test_only_assigned_worker_can_submit(
        self, lifecycle: OrderLifecycleManager, started_order: Order
    ) -> None:
        with pytest.raises(PermissionDenied):
            await lifecycle.complete_work(started_order.id, OTHER_WORKER, "Done")

    @pytest.mark.asyncio
    async def test_notes_are_required(
        self, lifecycle: OrderLifecycleManager, started_order: Order
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await lifecycle.complete_work(started_order.id, WORKER, "   ")
        assert exc_info.value.field == "notes"

    @pytest.mark.asyncio
    async def test_pending_order_cannot_be_submitted(
        self, lifecycle: OrderLifecycleManager, pending_order: Order
    ) -> None:
        with pytest.raises(InvalidTransition):
            await lifecycle.complete_work(pending_order.id, WORKER, "Done")

    @pytest.mark.asyncio
    async def test_missing_order_channel_is_a_warning(
        self,
        lifecycle: OrderLifecycleManager,
        started_order: Order,
        transport: InMemoryTransport,
    ) -> None:
        transport.remove_channel(ORDER_CHANNEL)

        result = await lifecycle.complete_work(started_order.id, WORKER, "Reached Diamond rank")

        assert result.order.status == OrderStatus.AWAITING_CONFIRM
        assert result.order.prompt_message is None
        assert result.warnings
        assert Recipient.ORDER_CHANNEL in result.notifications.failed


# =============================================================================
# confirm_completion
# =============================================================================


class TestConfirmCompletion:
    @pytest.mark.asyncio
    async def test_customer_confirms_and_payout_is_committed(
        self,
        lifecycle: OrderLifecycleManager,
        submitted_order: Order,
        check: FulfillmentAssertions,
    ) -> None:
        result = await lifecycle.confirm_completion(
            submitted_order.id, CUSTOMER, feedback="Great job", rating=5
        )

        order = await check.assert_order_status(submitted_order.id, OrderStatus.COMPLETED)
        assert order == result.order
        assert order.payout is not None
        assert order.payout.worker_amount == Decimal("80.00")
        assert order.payout.support_amount == Decimal("0.00")
        assert order.payout.system_amount == Decimal("20.00")
        assert order.payout.deposit_returned == Decimal("20.00")
        assert order.customer_rating == 5
        await check.assert_history(
            order.id,
            [OrderStatus.IN_PROGRESS, OrderStatus.AWAITING_CONFIRM, OrderStatus.COMPLETED],
        )

    @pytest.mark.asyncio
    async def test_support_share_comes_out_of_system_share(
        self, lifecycle: OrderLifecycleManager
    ) -> None:
        order = await lifecycle.create_order(make_draft(support_id=SUPPORT))
        await lifecycle.start_work(order.id, WORKER)
        await lifecycle.complete_work(order.id, WORKER, "Reached Diamond rank")

        result = await lifecycle.confirm_completion(order.id, CUSTOMER)

        payout = result.order.payout
        assert payout is not None
        assert (payout.worker_amount, payout.support_amount, payout.system_amount) == (
            Decimal("80.00"),
            Decimal("5.00"),
            Decimal("15.00"),
        )
        assert payout.total == result.order.value

    @pytest.mark.asyncio
    async def test_prompt_actions_are_retracted(
        self,
        lifecycle: OrderLifecycleManager,
        submitted_order: Order,
        check: FulfillmentAssertions,
    ) -> None:
        await lifecycle.confirm_completion(submitted_order.id, CUSTOMER)

        check.assert_actions_disabled(submitted_order.prompt_message)

    @pytest.mark.asyncio
    async def test_completion_reaches_worker_and_ledger(
        self,
        lifecycle: OrderLifecycleManager,
        submitted_order: Order,
        check: FulfillmentAssertions,
    ) -> None:
        await lifecycle.confirm_completion(submitted_order.id, CUSTOMER)

        check.assert_direct_message(WORKER, containing="Worker payout: $80.00")
        check.assert_channel_message(LEDGER_CHANNEL, containing="Order #1 completed")

    @pytest.mark.asyncio
    async def test_customer_dm_does_not_show_payout(
        self,
        lifecycle: OrderLifecycleManager,
        submitted_order: Order,
        check: FulfillmentAssertions,
    ) -> None:
        await lifecycle.confirm_completion(submitted_order.id, CUSTOMER)

        message = check.assert_direct_message(CUSTOMER, containing="completed")
        assert "Worker payout" not in [name for name, _ in message.fields]

    @pytest.mark.asyncio
    async def test_only_the_customer_can_confirm(
        self, lifecycle: OrderLifecycleManager, submitted_order: Order
    ) -> None:
        for actor in (OTHER_CUSTOMER, WORKER):
            with pytest.raises(PermissionDenied):
                await lifecycle.confirm_completion(submitted_order.id, actor)

    @pytest.mark.asyncio
    async def test_second_confirmation_is_invalid(
        self, lifecycle: OrderLifecycleManager, submitted_order: Order
    ) -> None:
        await lifecycle.confirm_completion(submitted_order.id, CUSTOMER)

        with pytest.raises(InvalidTransition):
            await lifecycle.confirm_completion(submitted_order.id, CUSTOMER)

    @pytest.mark.asyncio
    async def test_in_progress_order_cannot_be_confirmed(
        self, lifecycle: OrderLifecycleManager, started_order: Order
    ) -> None:
        with pytest.raises(InvalidTransition):
            await lifecycle.confirm_completion(started_order.id, CUSTOMER)

    @pytest.mark.asyncio
    async def test_rating_out_of_range(
        self, lifecycle: OrderLifecycleManager, submitted_order: Order
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await lifecycle.confirm_completion(submitted_order.id, CUSTOMER, rating=0)
        assert exc_info.value.field == "rating"

    @pytest.mark.asyncio
    async def test_override_requires_staff(
        self, lifecycle: OrderLifecycleManager, submitted_order: Order
    ) -> None:
        with pytest.raises(PermissionDenied):
            await lifecycle.confirm_completion(
                submitted_order.id, CUSTOMER, is_admin_override=True, acting_staff_id=WORKER
            )
        with pytest.raises(PermissionDenied):
            await lifecycle.confirm_completion(submitted_order.id, CUSTOMER, is_admin_override=True)

    @pytest.mark.asyncio
    async def test_staff_override_from_disputed(
        self,
        lifecycle: OrderLifecycleManager,
        submitted_order: Order,
        check: FulfillmentAssertions,
    ) -> None:
        await lifecycle.open_dispute(submitted_order.id, CUSTOMER, "Wrong rank reached")

        result = await lifecycle.confirm_completion(
            submitted_order.id, CUSTOMER, is_admin_override=True, acting_staff_id=ADMIN
        )

        assert result.order.status == OrderStatus.COMPLETED
        await check.assert_history(
            submitted_order.id,
            [
                OrderStatus.IN_PROGRESS,
                OrderStatus.AWAITING_CONFIRM,
                OrderStatus.DISPUTED,
                OrderStatus.AWAITING_CONFIRM,
                OrderStatus.COMPLETED,
            ],
        )
        history = await lifecycle.get_history(submitted_order.id)
        assert history[-1].actor_id == ADMIN
        assert history[-1].is_admin_override

    @pytest.mark.asyncio
    async def test_notifications_can_be_deferred(
        self,
        lifecycle: OrderLifecycleManager,
        submitted_order: Order,
        check: FulfillmentAssertions,
    ) -> None:
        result = await lifecycle.confirm_completion(submitted_order.id, CUSTOMER, notify=False)

        assert result.notifications is None
        with pytest.raises(AssertionError):
            check.assert_channel_message(LEDGER_CHANNEL)


# =============================================================================
# cancel_order
# =============================================================================


class TestCancelOrder:
    @pytest.mark.asyncio
    async def test_customer_cancels_pending_order(
        self, lifecycle: OrderLifecycleManager, pending_order: Order
    ) -> None:
        result = await lifecycle.cancel_order(
            pending_order.id, CUSTOMER, "Changed my mind", RefundType.FULL
        )

        assert result.order.status == OrderStatus.CANCELLED
        assert result.order.refund is not None
        assert result.order.refund.amount == Decimal("100.00")
        history = await lifecycle.get_history(pending_order.id)
        assert not history[-1].is_admin_override

    @pytest.mark.asyncio
    async def test_customer_cannot_cancel_after_work_started(
        self, lifecycle: OrderLifecycleManager, started_order: Order
    ) -> None:
        with pytest.raises(PermissionDenied) as exc_info:
            await lifecycle.cancel_order(
                started_order.id, CUSTOMER, "Taking too long", RefundType.FULL
            )
        assert "Report an issue" in exc_info.value.user_message

    @pytest.mark.asyncio
    async def test_stranger_cannot_cancel(
        self, lifecycle: OrderLifecycleManager, pending_order: Order
    ) -> None:
        with pytest.raises(PermissionDenied):
            await lifecycle.cancel_order(
                pending_order.id, OTHER_CUSTOMER, "Not mine", RefundType.NONE
            )

    @pytest.mark.asyncio
    async def test_staff_partial_refund(
        self,
        lifecycle: OrderLifecycleManager,
        started_order: Order,
        check: FulfillmentAssertions,
    ) -> None:
        result = await lifecycle.cancel_order(
            started_order.id,
            SUPPORT,
            "Worker unavailable",
            RefundType.PARTIAL,
            Decimal("40"),
        )

        assert result.order.refund is not None
        assert result.order.refund.refund_type == RefundType.PARTIAL
        assert result.order.refund.amount == Decimal("40.00")
        history = await lifecycle.get_history(started_order.id)
        assert history[-1].is_admin_override
        check.assert_direct_message(CUSTOMER, containing="$40.00 partial refund")
        check.assert_direct_message(WORKER, containing="Order #1 cancelled")

    @pytest.mark.asyncio
    async def test_invalid_partial_refund_changes_nothing(
        self,
        lifecycle: OrderLifecycleManager,
        started_order: Order,
        check: FulfillmentAssertions,
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await lifecycle.cancel_order(
                started_order.id, SUPPORT, "Too generous", RefundType.PARTIAL, Decimal("150")
            )

        assert exc_info.value.field == "refund_amount"
        await check.assert_order_status(started_order.id, OrderStatus.IN_PROGRESS)

    @pytest.mark.asyncio
    async def test_reason_is_required(
        self, lifecycle: OrderLifecycleManager, pending_order: Order
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await lifecycle.cancel_order(pending_order.id, SUPPORT, " ", RefundType.NONE)
        assert exc_info.value.field == "reason"

    @pytest.mark.asyncio
    async def test_partial_refund_that_is_not_a_number_changes_nothing(
        self,
        lifecycle: OrderLifecycleManager,
        started_order: Order,
        check: FulfillmentAssertions,
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await lifecycle.cancel_order(
                started_order.id, ADMIN, "Half delivered", RefundType.PARTIAL, Decimal("NaN")
            )

        assert exc_info.value.field == "refund_amount"
        await check.assert_order_status(started_order.id, OrderStatus.IN_PROGRESS)

    @pytest.mark.asyncio
    async def test_completed_order_cannot_be_cancelled(
        self, lifecycle: OrderLifecycleManager, submitted_order: Order
    ) -> None:
        await lifecycle.confirm_completion(submitted_order.id, CUSTOMER)

        with pytest.raises(InvalidTransition):
            await lifecycle.cancel_order(
                submitted_order.id, ADMIN, "Too late", RefundType.FULL
            )

    @pytest.mark.asyncio
    async def test_awaiting_confirm_can_be_cancelled_with_full_refund(
        self, lifecycle: OrderLifecycleManager, submitted_order: Order
    ) -> None:
        result = await lifecycle.cancel_order(
            submitted_order.id, ADMIN, "Refund", RefundType.FULL
        )

        assert result.order.status == OrderStatus.CANCELLED
        assert result.order.refund is not None
        assert result.order.refund.amount == submitted_order.value

    @pytest.mark.asyncio
    async def test_linked_item_is_released(
        self,
        lifecycle: OrderLifecycleManager,
        guard: ReservationGuard,
        item: Item,
        check: FulfillmentAssertions,
    ) -> None:
        await guard.reserve(item.id, uuid4(), CUSTOMER)
        order = await lifecycle.create_order(make_draft(item_id=item.id))

        result = await lifecycle.cancel_order(order.id, SUPPORT, "Out of stock", RefundType.FULL)

        assert result.warnings == ()
        await check.assert_item_state(item.id, ItemState.AVAILABLE)

    @pytest.mark.asyncio
    async def test_missing_item_is_a_warning(
        self, lifecycle: OrderLifecycleManager, store: InMemoryFulfillmentStore
    ) -> None:
        order = await lifecycle.create_order(make_draft(item_id=uuid4()))

        result = await lifecycle.cancel_order(order.id, SUPPORT, "Out of stock", RefundType.FULL)

        assert result.order.status == OrderStatus.CANCELLED
        assert any("released" in w for w in result.warnings)
        assert (await store.get_order(order.id)).status == OrderStatus.CANCELLED


# =============================================================================
# Disputes and corrections (transitions only)
# =============================================================================


class TestDisputeTransitions:
    @pytest.mark.asyncio
    async def test_customer_opens_dispute_and_prompt_is_forgotten(
        self, lifecycle: OrderLifecycleManager, submitted_order: Order
    ) -> None:
        assert submitted_order.prompt_message is not None

        disputed = await lifecycle.open_dispute(submitted_order.id, CUSTOMER, "Wrong rank")

        assert disputed.status == OrderStatus.DISPUTED
        assert disputed.prompt_message is None

    @pytest.mark.asyncio
    async def test_dispute_from_in_progress(
        self, lifecycle: OrderLifecycleManager, started_order: Order
    ) -> None:
        disputed = await lifecycle.open_dispute(started_order.id, CUSTOMER, "No progress")
        assert disputed.status == OrderStatus.DISPUTED

    @pytest.mark.asyncio
    async def test_only_the_customer_disputes(
        self, lifecycle: OrderLifecycleManager, submitted_order: Order
    ) -> None:
        with pytest.raises(PermissionDenied):
            await lifecycle.open_dispute(submitted_order.id, WORKER, "Customer is wrong")

    @pytest.mark.asyncio
    async def test_pending_order_cannot_be_disputed(
        self, lifecycle: OrderLifecycleManager, pending_order: Order
    ) -> None:
        with pytest.raises(InvalidTransition):
            await lifecycle.open_dispute(pending_order.id, CUSTOMER, "Nothing happened")

    @pytest.mark.asyncio
    async def test_return_to_worker(
        self, lifecycle: OrderLifecycleManager, submitted_order: Order
    ) -> None:
        await lifecycle.open_dispute(submitted_order.id, CUSTOMER, "Wrong rank")

        order = await lifecycle.return_to_worker(submitted_order.id, SUPPORT, "Reach Diamond")

        assert order.status == OrderStatus.IN_PROGRESS
        history = await lifecycle.get_history(order.id)
        assert history[-1].notes == "Reach Diamond"
        assert history[-1].is_admin_override

    @pytest.mark.asyncio
    async def test_return_to_worker_requires_staff(
        self, lifecycle: OrderLifecycleManager, submitted_order: Order
    ) -> None:
        await lifecycle.open_dispute(submitted_order.id, CUSTOMER, "Wrong rank")

        with pytest.raises(PermissionDenied):
            await lifecycle.return_to_worker(submitted_order.id, CUSTOMER, "Do it again")

    @pytest.mark.asyncio
    async def test_return_to_worker_needs_a_dispute(
        self, lifecycle: OrderLifecycleManager, submitted_order: Order
    ) -> None:
        with pytest.raises(StaleState):
            await lifecycle.return_to_worker(submitted_order.id, SUPPORT, "Do it again")


class TestLifecycleTracing:
    @pytest.mark.asyncio
    async def test_start_work_span(
        self,
        store: InMemoryFulfillmentStore,
        guard: ReservationGuard,
        fanout: NotificationFanout,
        roles: StaffRoleChecker,
        pending_order: Order,
    ) -> None:
        tracer = MockTracer()
        lifecycle = OrderLifecycleManager(store, guard, fanout, roles, tracer=tracer)

        await lifecycle.start_work(pending_order.id, WORKER)

        name, attributes = tracer.spans[0]
        assert name == "fulfillment.lifecycle.start_work"
        assert attributes is not None
        assert attributes[ATTR_ORDER_ID] == str(pending_order.id)
        assert attributes[ATTR_TARGET_STATUS] == "IN_PROGRESS"
