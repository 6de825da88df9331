"""
fulfillment - Order and reservation lifecycle for a chat-driven storefront.

This library provides:
- Order state machine with compare-and-set transitions and an audit trail
- Mutual exclusion on unique inventory items (reserve, sell, release)
- Dispute resolution: approve work, request corrections, refund
- Failure-isolated notification fanout
- In-memory and SQLite persistence backends
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("storefront-fulfillment")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from fulfillment.actions import ActionContext, ActionDispatcher, ActionReply
from fulfillment.app import FulfillmentApp, configure_logging
from fulfillment.config import AlertPolicy, FulfillmentSettings, PayoutPolicy
from fulfillment.disputes import (
    DisputeResolutionWorkflow,
    ReportReceipt,
    ResolutionPath,
    ResolutionReceipt,
)
from fulfillment.exceptions import (
    ErrorKind,
    ExpiredAction,
    FulfillmentError,
    InvalidTransition,
    IssueAlreadyResolved,
    IssueNotFoundError,
    ItemNotFoundError,
    ItemUnavailable,
    NotFoundError,
    NotificationDeliveryFailed,
    OrderNotFoundError,
    PermissionDenied,
    ReservationMismatch,
    StaleState,
    StoreError,
    TicketNotFoundError,
    ValidationError,
)
from fulfillment.lifecycle import OrderLifecycleManager, TransitionResult
from fulfillment.models import (
    Issue,
    IssuePriority,
    IssueStatus,
    Item,
    ItemState,
    NewOrder,
    Order,
    OrderStatus,
    Payout,
    Refund,
    RefundType,
    StatusChange,
    Ticket,
    TicketType,
)
from fulfillment.monitoring import ErrorRateTracker
from fulfillment.outcome import Err, Ok, Outcome, capture
from fulfillment.reservations import ReservationGuard
from fulfillment.roles import InMemoryRoleDirectory, RoleDirectory, StaffRoleChecker
from fulfillment.tickets import DeliveryReceipt, TicketBinding, TicketBindingService

__all__ = [
    "__version__",
    # Composition
    "FulfillmentApp",
    "FulfillmentSettings",
    "PayoutPolicy",
    "AlertPolicy",
    "configure_logging",
    # Services
    "OrderLifecycleManager",
    "TransitionResult",
    "ReservationGuard",
    "DisputeResolutionWorkflow",
    "ReportReceipt",
    "ResolutionPath",
    "ResolutionReceipt",
    "TicketBindingService",
    "TicketBinding",
    "DeliveryReceipt",
    # Interaction boundary
    "ActionContext",
    "ActionDispatcher",
    "ActionReply",
    "ErrorRateTracker",
    "Ok",
    "Err",
    "Outcome",
    "capture",
    # Roles
    "RoleDirectory",
    "InMemoryRoleDirectory",
    "StaffRoleChecker",
    # Models
    "Order",
    "NewOrder",
    "OrderStatus",
    "StatusChange",
    "Payout",
    "Refund",
    "RefundType",
    "Issue",
    "IssueStatus",
    "IssuePriority",
    "Item",
    "ItemState",
    "Ticket",
    "TicketType",
    # Exceptions
    "ErrorKind",
    "FulfillmentError",
    "InvalidTransition",
    "StaleState",
    "IssueAlreadyResolved",
    "ItemUnavailable",
    "ReservationMismatch",
    "PermissionDenied",
    "ValidationError",
    "NotFoundError",
    "OrderNotFoundError",
    "ItemNotFoundError",
    "IssueNotFoundError",
    "TicketNotFoundError",
    "NotificationDeliveryFailed",
    "ExpiredAction",
    "StoreError",
]
