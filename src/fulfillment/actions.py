"""
Interaction boundary between conversational actions and the services.

Every button press or form submission is run through ActionDispatcher:

- actions issued longer ago than the validity window are dropped
- expected failures (FulfillmentError) become an ``Err`` outcome whose reply
  carries the user-facing message, and are counted on the error tracker
- anything else (StoreError, bugs) propagates to the caller

Example:
    >>> dispatcher = ActionDispatcher(tracker)
    >>> context = ActionContext(actor_id="customer-1", action_name="order:confirm",
    ...                         issued_at=interaction.created_at)
    >>> reply = await dispatcher.dispatch(
    ...     context, lambda: lifecycle.confirm_completion(order_id, "customer-1")
    ... )
    >>> if reply is not None:
    ...     await interaction.respond(reply.message, ephemeral=reply.ephemeral)
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Generic, TypeVar

from fulfillment.config import DEFAULT_ACTION_VALIDITY_SECONDS
from fulfillment.exceptions import ErrorKind, ExpiredAction, FulfillmentError
from fulfillment.models import utcnow
from fulfillment.monitoring import ErrorRateTracker
from fulfillment.observability import (
    ATTR_ACTION_NAME,
    ATTR_ACTOR_ID,
    ATTR_ERROR_KIND,
    Tracer,
    create_tracer,
)
from fulfillment.outcome import Outcome, capture
from fulfillment.types import ActorId, ChannelId

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ActionContext:
    """Who pressed what, where, and when the platform issued the action."""

    actor_id: ActorId
    action_name: str
    issued_at: datetime
    channel_id: ChannelId | None = None


@dataclass(frozen=True)
class ActionReply(Generic[T]):
    """
    What the UI layer renders after an action.

    Attributes:
        outcome: Ok with the operation's result, or Err with the typed error
        message: Text to show the actor, if any
        ephemeral: Whether only the actor should see the message
    """

    outcome: Outcome[T]
    message: str | None = None
    ephemeral: bool = False

    @property
    def ok(self) -> bool:
        return self.outcome.ok


class ActionDispatcher:
    """
    Runs operations on behalf of conversational actions.

    The operation is passed as a zero-argument callable so that an expired
    action never starts it.
    """

    def __init__(
        self,
        tracker: ErrorRateTracker,
        *,
        validity_seconds: float = DEFAULT_ACTION_VALIDITY_SECONDS,
        clock: Callable[[], datetime] = utcnow,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        if validity_seconds <= 0:
            raise ValueError("validity_seconds must be > 0")
        self._tracker = tracker
        self._validity_seconds = validity_seconds
        self._clock = clock
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @property
    def tracker(self) -> ErrorRateTracker:
        return self._tracker

    def check_fresh(self, context: ActionContext) -> None:
        """
        Raises:
            ExpiredAction: If the action is older than the validity window
        """
        age = (self._clock() - context.issued_at).total_seconds()
        if age > self._validity_seconds:
            raise ExpiredAction(context.action_name, age)

    async def dispatch(
        self,
        context: ActionContext,
        operation: Callable[[], Awaitable[T]],
        *,
        success_message: str | None = None,
    ) -> ActionReply[T] | None:
        """
        Run one action.

        Returns:
            The reply to render, or None when the action expired and there is
            nobody left to answer
        """
        with self._tracer.span(
            "fulfillment.actions.dispatch",
            {ATTR_ACTION_NAME: context.action_name, ATTR_ACTOR_ID: context.actor_id},
        ) as span:
            try:
                self.check_fresh(context)
            except ExpiredAction as e:
                self._record(context, e)
                logger.debug(
                    "Dropped expired action %s from %s",
                    context.action_name,
                    context.actor_id,
                    extra={"action": context.action_name, "age_seconds": e.age_seconds},
                )
                if span:
                    span.set_attribute(ATTR_ERROR_KIND, e.kind.value)
                return None

            outcome = await capture(operation())
            if outcome.ok:
                return ActionReply(outcome=outcome, message=success_message)

            if span:
                span.set_attribute(ATTR_ERROR_KIND, outcome.kind.value)
            self._record(context, outcome.error)
            if outcome.kind is ErrorKind.EXPIRED_ACTION:
                logger.debug(
                    "Action %s expired while running: %s",
                    context.action_name,
                    outcome.error,
                    extra={"action": context.action_name},
                )
                return None

            logger.info(
                "Action %s by %s failed: %s",
                context.action_name,
                context.actor_id,
                outcome.error,
                extra={
                    "action": context.action_name,
                    "actor_id": context.actor_id,
                    "error_kind": outcome.kind.value,
                },
            )
            return ActionReply(outcome=outcome, message=outcome.user_message, ephemeral=True)

    def _record(self, context: ActionContext, error: FulfillmentError) -> None:
        self._tracker.record(
            error.kind,
            str(error),
            action=context.action_name,
            actor_id=context.actor_id,
            channel_id=context.channel_id,
        )


__all__ = ["ActionContext", "ActionDispatcher", "ActionReply"]
