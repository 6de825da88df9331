"""
Typed outcomes for expected alternate paths.

Services raise FulfillmentError subclasses internally; the action boundary
turns them into ``Err`` values so callers branch on data instead of catching
exceptions. Anything that is not a FulfillmentError (a crashed store, a bug)
is never captured here and keeps propagating.

Example:
    >>> outcome = await capture(lifecycle.start_work(order_id, worker_id))
    >>> if outcome.ok:
    ...     render(outcome.value)
    ... elif outcome.kind is ErrorKind.STALE_STATE:
    ...     rerender_from_store()
"""

from __future__ import annotations

from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Generic, Literal, TypeVar

from fulfillment.exceptions import ErrorKind, FulfillmentError

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful outcome carrying the operation's result."""

    value: T
    ok: Literal[True] = True

    @property
    def kind(self) -> None:
        return None

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    """Expected failure carrying the typed error."""

    error: FulfillmentError
    ok: Literal[False] = False

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind

    @property
    def user_message(self) -> str:
        return self.error.user_message

    def unwrap(self) -> None:
        raise self.error


Outcome = Ok[T] | Err


async def capture(awaitable: Awaitable[T]) -> Outcome[T]:
    """Await an operation and convert expected failures into an Err."""
    try:
        return Ok(await awaitable)
    except FulfillmentError as e:
        return Err(e)


__all__ = ["Ok", "Err", "Outcome", "capture"]
