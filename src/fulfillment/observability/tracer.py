"""
Tracers handed to the fulfillment services.

Each service takes an optional ``tracer`` and otherwise builds one with
``create_tracer(__name__, enable_tracing)``. A span body receives the live
span, or None when tracing is off, so optional attributes are set under an
``if span:`` guard:

    >>> with self._tracer.span("fulfillment.disputes.approve_refund", attrs) as span:
    ...     receipt = await self._finish(...)
    ...     if span:
    ...         span.set_attribute(ATTR_ORDER_STATUS, receipt.order.status.value)
"""

from __future__ import annotations

import contextlib
from collections.abc import Generator
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from opentelemetry import trace

if TYPE_CHECKING:
    from opentelemetry.trace import Span

Attributes = dict[str, Any]


@runtime_checkable
class Tracer(Protocol):
    """Anything that can open a named span around a block of work."""

    def span(
        self,
        name: str,
        attributes: Attributes | None = None,
    ) -> AbstractContextManager[Span | None]: ...


class NullTracer:
    """Opens no spans. Used when tracing is switched off in settings."""

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: Attributes | None = None,
    ) -> Generator[None, None, None]:
        yield None


class OpenTelemetryTracer:
    """
    Spans through the OpenTelemetry API.

    Nothing is exported unless the embedding process installs an SDK tracer
    provider. Attributes whose value is None (an order without a worker, a
    ticket without an item) are left off the span.

    Args:
        instrumentation_name: Name of the instrumenting module, usually
            ``__name__``
    """

    def __init__(self, instrumentation_name: str) -> None:
        self._tracer = trace.get_tracer(instrumentation_name)

    def span(
        self,
        name: str,
        attributes: Attributes | None = None,
    ) -> AbstractContextManager[Span | None]:
        present = {k: v for k, v in (attributes or {}).items() if v is not None}
        return self._tracer.start_as_current_span(name, attributes=present)


class MockTracer:
    """
    Records every span a service opens, in order.

    Example:
        >>> tracer = MockTracer()
        >>> guard = ReservationGuard(store, tracer=tracer)
        >>> await guard.release(item.id)
        >>> tracer.span_names
        ['fulfillment.reservation.release']
    """

    def __init__(self) -> None:
        self.spans: list[tuple[str, Attributes | None]] = []

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: Attributes | None = None,
    ) -> Generator[None, None, None]:
        self.spans.append((name, attributes))
        yield None

    @property
    def span_names(self) -> list[str]:
        return [name for name, _ in self.spans]

    def attributes_of(self, name: str) -> Attributes | None:
        """Attributes of the first span called ``name``."""
        for span_name, attributes in self.spans:
            if span_name == name:
                return attributes
        raise AssertionError(f"No span named {name!r}; recorded: {self.span_names}")

    def clear(self) -> None:
        self.spans.clear()


def create_tracer(name: str, enable_tracing: bool = True) -> Tracer:
    """OpenTelemetryTracer when tracing is on, NullTracer when it is off."""
    if enable_tracing:
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "Attributes",
    "MockTracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "Tracer",
    "create_tracer",
]
