"""
Standard span attributes for fulfillment components.

Attribute names follow OpenTelemetry semantic conventions where one exists
(``db.*``) and use the ``fulfillment.`` namespace otherwise.

Example:
    >>> from fulfillment.observability.attributes import ATTR_ORDER_ID, ATTR_ACTOR_ID
    >>>
    >>> with tracer.span(
    ...     "fulfillment.lifecycle.start_work",
    ...     {ATTR_ORDER_ID: str(order_id), ATTR_ACTOR_ID: worker_id},
    ... ):
    ...     pass
"""

# =============================================================================
# Record Attributes
# =============================================================================

ATTR_ORDER_ID = "fulfillment.order.id"
"""Unique identifier of the order (UUID string)."""

ATTR_ORDER_STATUS = "fulfillment.order.status"
"""Status the order was in when the span started."""

ATTR_TARGET_STATUS = "fulfillment.order.target_status"
"""Status the operation tries to move the order to."""

ATTR_ITEM_ID = "fulfillment.item.id"
"""Unique identifier of the inventory item (UUID string)."""

ATTR_TICKET_ID = "fulfillment.ticket.id"
"""Unique identifier of the ticket (UUID string)."""

ATTR_ISSUE_ID = "fulfillment.issue.id"
"""Unique identifier of the issue (UUID string)."""

ATTR_REFUND_TYPE = "fulfillment.refund.type"
"""FULL, PARTIAL or NONE."""

# =============================================================================
# Actor Attributes
# =============================================================================

ATTR_ACTOR_ID = "fulfillment.actor.id"
"""Chat user that initiated the action (string)."""

ATTR_ADMIN_OVERRIDE = "fulfillment.admin_override"
"""Whether the transition bypassed the customer/worker check (boolean)."""

ATTR_RESOLUTION_PATH = "fulfillment.dispute.path"
"""approve_work, request_corrections or approve_refund."""

# =============================================================================
# Notification Attributes
# =============================================================================

ATTR_EVENT_TYPE = "fulfillment.event.type"
"""Type name of the notification event (e.g., 'WorkStarted')."""

ATTR_RECIPIENT = "fulfillment.notification.recipient"
"""Recipient slot (customer_dm, worker_dm, order_channel, ...)."""

ATTR_RECIPIENT_COUNT = "fulfillment.notification.recipient_count"
"""Number of recipients in a fanout (integer)."""

ATTR_DELIVERY_SUCCESS = "fulfillment.notification.success"
"""Whether a single delivery succeeded (boolean)."""

# =============================================================================
# Action Attributes
# =============================================================================

ATTR_ACTION_NAME = "fulfillment.action.name"
"""Name of the conversational action being dispatched."""

ATTR_ERROR_KIND = "fulfillment.error.kind"
"""ErrorKind value of an expected failure."""

# =============================================================================
# Database Attributes (OTEL semantic)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system identifier (e.g., 'sqlite')."""

ATTR_DB_NAME = "db.name"
"""Database name or path."""

ATTR_DB_OPERATION = "db.operation"
"""Database operation name (e.g., 'reserve_item')."""


__all__ = [
    "ATTR_ORDER_ID",
    "ATTR_ORDER_STATUS",
    "ATTR_TARGET_STATUS",
    "ATTR_ITEM_ID",
    "ATTR_TICKET_ID",
    "ATTR_ISSUE_ID",
    "ATTR_REFUND_TYPE",
    "ATTR_ACTOR_ID",
    "ATTR_ADMIN_OVERRIDE",
    "ATTR_RESOLUTION_PATH",
    "ATTR_EVENT_TYPE",
    "ATTR_RECIPIENT",
    "ATTR_RECIPIENT_COUNT",
    "ATTR_DELIVERY_SUCCESS",
    "ATTR_ACTION_NAME",
    "ATTR_ERROR_KIND",
    "ATTR_DB_SYSTEM",
    "ATTR_DB_NAME",
    "ATTR_DB_OPERATION",
]
