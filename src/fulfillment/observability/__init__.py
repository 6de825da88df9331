"""
Observability utilities for fulfillment.

Tracing is composition-based: every component takes an optional ``tracer``
and falls back to ``create_tracer(__name__, enable_tracing)``.

Example:
    >>> from fulfillment.observability import create_tracer, ATTR_ORDER_ID
    >>>
    >>> class MyService:
    ...     def __init__(self, enable_tracing: bool = True):
    ...         self._tracer = create_tracer(__name__, enable_tracing)
    ...
    ...     async def run(self, order_id):
    ...         with self._tracer.span("my_service.run", {ATTR_ORDER_ID: str(order_id)}):
    ...             ...
"""

from fulfillment.observability.attributes import (
    ATTR_ACTION_NAME,
    ATTR_ACTOR_ID,
    ATTR_ADMIN_OVERRIDE,
    ATTR_DB_NAME,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_DELIVERY_SUCCESS,
    ATTR_ERROR_KIND,
    ATTR_EVENT_TYPE,
    ATTR_ISSUE_ID,
    ATTR_ITEM_ID,
    ATTR_ORDER_ID,
    ATTR_ORDER_STATUS,
    ATTR_RECIPIENT,
    ATTR_RECIPIENT_COUNT,
    ATTR_REFUND_TYPE,
    ATTR_RESOLUTION_PATH,
    ATTR_TARGET_STATUS,
    ATTR_TICKET_ID,
)
from fulfillment.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
)

__all__ = [
    # Tracer
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
    # Attributes
    "ATTR_ACTION_NAME",
    "ATTR_ACTOR_ID",
    "ATTR_ADMIN_OVERRIDE",
    "ATTR_DB_NAME",
    "ATTR_DB_OPERATION",
    "ATTR_DB_SYSTEM",
    "ATTR_DELIVERY_SUCCESS",
    "ATTR_ERROR_KIND",
    "ATTR_EVENT_TYPE",
    "ATTR_ISSUE_ID",
    "ATTR_ITEM_ID",
    "ATTR_ORDER_ID",
    "ATTR_ORDER_STATUS",
    "ATTR_RECIPIENT",
    "ATTR_RECIPIENT_COUNT",
    "ATTR_REFUND_TYPE",
    "ATTR_RESOLUTION_PATH",
    "ATTR_TARGET_STATUS",
    "ATTR_TICKET_ID",
]
