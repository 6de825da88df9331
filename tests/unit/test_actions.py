"""
Unit tests for the action dispatcher.
"""

import logging
from datetime import timedelta

import pytest

from fulfillment.actions import ActionContext, ActionDispatcher
from fulfillment.exceptions import ErrorKind, ExpiredAction, PermissionDenied, StoreError
from fulfillment.models import utcnow
from fulfillment.monitoring import ErrorRateTracker
from fulfillment.observability import ATTR_ACTION_NAME, MockTracer
from fulfillment.outcome import Err, Ok
from tests.fixtures import CUSTOMER, ORDER_CHANNEL


def _context(age_seconds: float = 0, action_name: str = "order:confirm") -> ActionContext:
    return ActionContext(
        actor_id=CUSTOMER,
        action_name=action_name,
        issued_at=utcnow() - timedelta(seconds=age_seconds),
        channel_id=ORDER_CHANNEL,
    )


class TestDispatch:
    @pytest.mark.asyncio
    async def test_success_returns_ok_reply(self, dispatcher: ActionDispatcher) -> None:
        async def operation() -> str:
            return "done"

        reply = await dispatcher.dispatch(_context(), operation, success_message="Confirmed!")

        assert reply is not None
        assert reply.ok
        assert isinstance(reply.outcome, Ok)
        assert reply.outcome.value == "done"
        assert reply.message == "Confirmed!"
        assert not reply.ephemeral

    @pytest.mark.asyncio
    async def test_expected_failure_becomes_ephemeral_err_reply(
        self, dispatcher: ActionDispatcher, tracker: ErrorRateTracker
    ) -> None:
        async def operation() -> None:
            raise PermissionDenied(CUSTOMER, "cancel", user_message="Only staff can cancel.")

        reply = await dispatcher.dispatch(_context(), operation)

        assert reply is not None
        assert not reply.ok
        assert isinstance(reply.outcome, Err)
        assert reply.outcome.kind is ErrorKind.PERMISSION_DENIED
        assert reply.message == "Only staff can cancel."
        assert reply.ephemeral
        assert tracker.stats().by_kind == {"permission_denied": 1}
        assert tracker.recent()[0].context["action"] == "order:confirm"

    @pytest.mark.asyncio
    async def test_unexpected_failure_propagates(
        self, dispatcher: ActionDispatcher, tracker: ErrorRateTracker
    ) -> None:
        async def operation() -> None:
            raise StoreError("disk full")

        with pytest.raises(StoreError):
            await dispatcher.dispatch(_context(), operation)
        assert tracker.stats().total == 0


class TestExpiry:
    @pytest.mark.asyncio
    async def test_expired_action_is_dropped_without_running(
        self,
        dispatcher: ActionDispatcher,
        tracker: ErrorRateTracker,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        calls = []

        async def operation() -> None:
            calls.append(1)

        with caplog.at_level(logging.DEBUG, logger="fulfillment.actions"):
            reply = await dispatcher.dispatch(_context(age_seconds=901), operation)

        assert reply is None
        assert calls == []
        assert tracker.stats().by_kind == {"expired_action": 1}
        assert any("expired" in r.getMessage() for r in caplog.records)
        assert all(r.levelno == logging.DEBUG for r in caplog.records)

    @pytest.mark.asyncio
    async def test_action_inside_window_runs(self, dispatcher: ActionDispatcher) -> None:
        async def operation() -> int:
            return 1

        reply = await dispatcher.dispatch(_context(age_seconds=899), operation)
        assert reply is not None and reply.ok

    @pytest.mark.asyncio
    async def test_expiry_raised_by_the_operation_is_swallowed(
        self, dispatcher: ActionDispatcher
    ) -> None:
        async def operation() -> None:
            raise ExpiredAction("order:confirm")

        assert await dispatcher.dispatch(_context(), operation) is None

    def test_check_fresh(self, tracker: ErrorRateTracker) -> None:
        dispatcher = ActionDispatcher(tracker, validity_seconds=10, enable_tracing=False)

        dispatcher.check_fresh(_context(age_seconds=5))
        with pytest.raises(ExpiredAction) as exc_info:
            dispatcher.check_fresh(_context(age_seconds=11))
        assert exc_info.value.age_seconds is not None
        assert exc_info.value.age_seconds > 10

    def test_validity_must_be_positive(self, tracker: ErrorRateTracker) -> None:
        with pytest.raises(ValueError):
            ActionDispatcher(tracker, validity_seconds=0)


class TestTracing:
    @pytest.mark.asyncio
    async def test_dispatch_is_traced(self, tracker: ErrorRateTracker) -> None:
        tracer = MockTracer()
        dispatcher = ActionDispatcher(tracker, tracer=tracer)

        async def operation() -> None:
            return None

        await dispatcher.dispatch(_context(action_name="issue:approve_work"), operation)

        assert tracer.span_names == ["fulfillment.actions.dispatch"]
        assert tracer.spans[0][1][ATTR_ACTION_NAME] == "issue:approve_work"
