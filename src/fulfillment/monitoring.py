"""
Error-rate tracking for expected failures.

ErrorRateTracker is an ordinary object handed to the components that need
it; there is no module-level instance. Tests build their own tracker, or
call ``reset()`` between cases.
"""

from __future__ import annotations

import logging
import time
from collections import Counter, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from fulfillment.config import AlertPolicy
from fulfillment.exceptions import ErrorKind
from fulfillment.models import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ErrorRecord:
    kind: str
    message: str
    recorded_at: datetime
    context: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ErrorAlert:
    """Raised (as a value, not an exception) when one kind crosses the threshold."""

    kind: str
    count: int
    window_seconds: float


@dataclass(frozen=True)
class ErrorStats:
    total: int
    by_kind: dict[str, int]
    recent: int
    alerts_sent: int
    last_error_at: datetime | None


class ErrorRateTracker:
    """
    Counts failures per kind and alerts when one kind spikes.

    An alert fires when ``policy.threshold`` errors of the same kind happen
    within ``policy.window_seconds``. After an alert, the same kind stays
    quiet for ``policy.cooldown_seconds``. Only the newest
    ``policy.max_recent`` records are kept.

    Example:
        >>> tracker = ErrorRateTracker(AlertPolicy(threshold=3, window_seconds=60))
        >>> for _ in range(3):
        ...     alert = tracker.record(ErrorKind.STALE_STATE, "lost race")
        >>> alert.count
        3
    """

    def __init__(
        self,
        policy: AlertPolicy | None = None,
        *,
        on_alert: Callable[[ErrorAlert], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._policy = policy or AlertPolicy()
        self._on_alert = on_alert
        self._clock = clock
        self._recent: deque[ErrorRecord] = deque(maxlen=self._policy.max_recent)
        self._windows: dict[str, deque[float]] = {}
        self._last_alert: dict[str, float] = {}
        self._counts: Counter[str] = Counter()
        self._alerts_sent = 0

    @property
    def policy(self) -> AlertPolicy:
        return self._policy

    def record(
        self,
        kind: ErrorKind | str,
        message: str = "",
        **context: Any,
    ) -> ErrorAlert | None:
        """
        Record one error.

        Returns:
            The alert if this error pushed its kind over the threshold,
            otherwise None
        """
        key = kind.value if isinstance(kind, ErrorKind) else kind
        now = self._clock()

        self._counts[key] += 1
        self._recent.append(
            ErrorRecord(kind=key, message=message, recorded_at=utcnow(), context=context)
        )

        window = self._windows.setdefault(key, deque())
        window.append(now)
        while window and now - window[0] > self._policy.window_seconds:
            window.popleft()

        if len(window) < self._policy.threshold:
            return None
        last = self._last_alert.get(key)
        if last is not None and now - last < self._policy.cooldown_seconds:
            return None

        self._last_alert[key] = now
        self._alerts_sent += 1
        alert = ErrorAlert(kind=key, count=len(window), window_seconds=self._policy.window_seconds)
        logger.error(
            "Elevated error rate: %d %s errors in the last %.0fs",
            alert.count,
            key,
            alert.window_seconds,
            extra={"error_kind": key, "count": alert.count},
        )
        if self._on_alert is not None:
            self._on_alert(alert)
        return alert

    def recent(self, limit: int | None = None) -> list[ErrorRecord]:
        """Most recent records, newest last."""
        records = list(self._recent)
        return records[-limit:] if limit else records

    def stats(self) -> ErrorStats:
        return ErrorStats(
            total=sum(self._counts.values()),
            by_kind=dict(self._counts),
            recent=len(self._recent),
            alerts_sent=self._alerts_sent,
            last_error_at=self._recent[-1].recorded_at if self._recent else None,
        )

    def reset(self) -> None:
        """Forget everything, including cooldowns."""
        self._recent.clear()
        self._windows.clear()
        self._last_alert.clear()
        self._counts.clear()
        self._alerts_sent = 0


__all__ = ["ErrorAlert", "ErrorRateTracker", "ErrorRecord", "ErrorStats"]
