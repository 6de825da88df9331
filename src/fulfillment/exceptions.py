"""
Exceptions for the fulfillment package.

Every failure that a user action can legitimately run into (a lost race, a
missing permission, a malformed form) is a FulfillmentError subclass with an
ErrorKind and a user_message. The message is safe to show in chat: it says
what went wrong and what to do next, and never contains internal identifiers.

StoreError is the exception for environment failures (database down, broken
schema). It is deliberately not a FulfillmentError so that the action
boundary never turns it into a friendly reply.
"""

from __future__ import annotations

from enum import Enum
from uuid import UUID


class ErrorKind(Enum):
    """Machine-readable category of an expected failure."""

    INVALID_TRANSITION = "invalid_transition"
    STALE_STATE = "stale_state"
    ITEM_UNAVAILABLE = "item_unavailable"
    RESERVATION_MISMATCH = "reservation_mismatch"
    PERMISSION_DENIED = "permission_denied"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    NOTIFICATION_DELIVERY_FAILED = "notification_delivery_failed"
    EXPIRED_ACTION = "expired_action"


class FulfillmentError(Exception):
    """Base exception for expected, user-facing failures."""

    kind: ErrorKind = ErrorKind.VALIDATION
    default_user_message = "Something went wrong. Please try again or contact support."

    def __init__(self, message: str, *, user_message: str | None = None) -> None:
        self.user_message = user_message or self.default_user_message
        super().__init__(message)


class InvalidTransition(FulfillmentError):
    """Raised when an order is not in a state that allows the requested change."""

    kind = ErrorKind.INVALID_TRANSITION

    def __init__(
        self,
        order_id: UUID | None,
        current_status: str,
        requested_status: str,
        *,
        message: str | None = None,
        user_message: str | None = None,
    ) -> None:
        self.order_id = order_id
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(
            message
            or f"Order {order_id} cannot move from {current_status} to {requested_status}",
            user_message=user_message
            or (
                f"This order is currently {_humanize(current_status)} and cannot be "
                f"moved to {_humanize(requested_status)}. Refresh the order to see "
                "what actions are available."
            ),
        )


class StaleState(InvalidTransition):
    """
    Raised when another actor changed the order after the caller last saw it.

    The caller must re-render from the current state; the operation is never
    retried automatically.
    """

    kind = ErrorKind.STALE_STATE

    def __init__(
        self,
        order_id: UUID | None,
        expected_status: str,
        actual_status: str,
    ) -> None:
        self.expected_status = expected_status
        self.actual_status = actual_status
        super().__init__(
            order_id,
            actual_status,
            expected_status,
            message=(
                f"Order {order_id} changed concurrently: expected {expected_status}, "
                f"found {actual_status}"
            ),
            user_message=(
                "Someone else already updated this order (it is now "
                f"{_humanize(actual_status)}). Refresh the order and try again if "
                "the action still applies."
            ),
        )


class IssueAlreadyResolved(InvalidTransition):
    """Raised when a resolved issue is resolved or updated a second time."""

    def __init__(self, issue_id: UUID, resolution: str | None = None) -> None:
        self.issue_id = issue_id
        self.resolution = resolution
        super().__init__(
            None,
            "RESOLVED",
            "RESOLVED",
            message=f"Issue {issue_id} is already resolved",
            user_message=(
                "This issue has already been resolved by another staff member. "
                "No further action is needed."
            ),
        )


class ItemUnavailable(FulfillmentError):
    """Raised when an item cannot be reserved because it is held or sold."""

    kind = ErrorKind.ITEM_UNAVAILABLE

    def __init__(self, item_id: UUID, state: str) -> None:
        self.item_id = item_id
        self.state = state
        super().__init__(
            f"Item {item_id} is not available (state: {state})",
            user_message=(
                "Sorry, this item was just reserved or sold to someone else. "
                "Please pick another item from the shop."
            ),
        )


class ReservationMismatch(FulfillmentError):
    """Raised when a sale is finalised by someone other than the reservation holder."""

    kind = ErrorKind.RESERVATION_MISMATCH

    def __init__(self, item_id: UUID, ticket_id: UUID, customer_id: str) -> None:
        self.item_id = item_id
        self.ticket_id = ticket_id
        self.customer_id = customer_id
        super().__init__(
            f"Item {item_id} is not reserved by ticket {ticket_id} / customer {customer_id}",
            user_message=(
                "This item is not reserved for this ticket, so it cannot be delivered "
                "here. Check the ticket and ask staff to re-check the reservation."
            ),
        )


class PermissionDenied(FulfillmentError):
    """Raised when the caller lacks the role or relationship an action needs."""

    kind = ErrorKind.PERMISSION_DENIED
    default_user_message = (
        "You do not have permission to do this. Contact an administrator if you "
        "think this is a mistake."
    )

    def __init__(self, actor_id: str, action: str, *, user_message: str | None = None) -> None:
        self.actor_id = actor_id
        self.action = action
        super().__init__(f"Actor {actor_id} may not {action}", user_message=user_message)


class ValidationError(FulfillmentError):
    """Raised for malformed input: confirmation phrases, refund amounts, ratings."""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, *, field: str | None = None) -> None:
        self.field = field
        super().__init__(message, user_message=message)


class NotFoundError(FulfillmentError):
    """Raised when a referenced record does not exist."""

    kind = ErrorKind.NOT_FOUND
    entity = "record"

    def __init__(self, record_id: UUID | str) -> None:
        self.record_id = record_id
        super().__init__(
            f"{self.entity.capitalize()} not found: {record_id}",
            user_message=(
                f"That {self.entity} could not be found. It may have been closed; "
                "refresh and try again."
            ),
        )


class OrderNotFoundError(NotFoundError):
    entity = "order"


class ItemNotFoundError(NotFoundError):
    entity = "item"


class IssueNotFoundError(NotFoundError):
    entity = "issue"


class TicketNotFoundError(NotFoundError):
    entity = "ticket"


class NotificationDeliveryFailed(FulfillmentError):
    """Raised by a transport when one recipient cannot be reached. Always non-fatal."""

    kind = ErrorKind.NOTIFICATION_DELIVERY_FAILED

    def __init__(self, target: str, reason: str) -> None:
        self.target = target
        self.reason = reason
        super().__init__(
            f"Could not deliver to {target}: {reason}",
            user_message="A notification could not be delivered.",
        )


class ExpiredAction(FulfillmentError):
    """Raised when the conversational action token is gone. Never shown to users."""

    kind = ErrorKind.EXPIRED_ACTION

    def __init__(self, action: str, age_seconds: float | None = None) -> None:
        self.action = action
        self.age_seconds = age_seconds
        age = f" after {age_seconds:.0f}s" if age_seconds is not None else ""
        super().__init__(f"Action {action} expired{age}")


class StoreError(Exception):
    """Raised when the persistence backend fails for environmental reasons."""

    pass


def _humanize(status: str) -> str:
    return status.replace("_", " ").lower()
