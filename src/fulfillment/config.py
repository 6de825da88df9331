"""
Configuration for the fulfillment package.

This module provides:
- PayoutPolicy: How a completed order's value is split
- AlertPolicy: Thresholds for the error-rate tracker
- FulfillmentSettings: Process-level settings loaded from the environment

Component options are frozen dataclasses validated on construction; the
process-level settings are read from ``FULFILLMENT_*`` environment variables
(or a ``.env`` file) by the composition root and passed down explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from fulfillment.types import to_money

DEFAULT_ACTION_VALIDITY_SECONDS = 15 * 60


@dataclass(frozen=True)
class PayoutPolicy:
    """
    Split applied when an order is confirmed.

    The worker and support shares are fractions of the order value; whatever
    remains is system revenue. The worker's deposit is returned in full.
    When an order has no support member the support share stays with the
    system.

    Example:
        >>> policy = PayoutPolicy(worker_share=Decimal("0.80"), support_share=Decimal("0.05"))
        >>> policy.split(Decimal("100"), has_support=True)
        (Decimal('80.00'), Decimal('5.00'), Decimal('15.00'))
    """

    worker_share: Decimal = Decimal("0.80")
    support_share: Decimal = Decimal("0.05")

    def __post_init__(self) -> None:
        if self.worker_share < 0 or self.support_share < 0:
            raise ValueError("payout shares must be non-negative")
        if self.worker_share + self.support_share > 1:
            raise ValueError("worker_share + support_share must not exceed 1")

    def split(self, value: Decimal, *, has_support: bool) -> tuple[Decimal, Decimal, Decimal]:
        worker = to_money(value * self.worker_share)
        support = to_money(value * self.support_share) if has_support else Decimal("0.00")
        system = to_money(value) - worker - support
        return worker, support, system


@dataclass(frozen=True)
class AlertPolicy:
    """
    Thresholds for raising an alert on elevated error rates.

    Attributes:
        threshold: Errors of one kind inside the window that trigger an alert
        window_seconds: Sliding window length
        cooldown_seconds: Minimum time between two alerts of the same kind
        max_recent: Number of recent errors kept for stats
    """

    threshold: int = 10
    window_seconds: float = 300.0
    cooldown_seconds: float = 900.0
    max_recent: int = 1000

    def __post_init__(self) -> None:
        if self.threshold < 1:
            raise ValueError("threshold must be >= 1")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        if self.cooldown_seconds < 0:
            raise ValueError("cooldown_seconds must be >= 0")
        if self.max_recent < 1:
            raise ValueError("max_recent must be >= 1")


class FulfillmentSettings(BaseSettings):
    """
    Process-level settings.

    Every field can be set with an environment variable named
    ``FULFILLMENT_<FIELD>``, e.g. ``FULFILLMENT_ADMIN_ROLE_ID``.
    """

    model_config = SettingsConfigDict(env_prefix="FULFILLMENT_", env_file=".env", extra="ignore")

    # Chat server and role membership
    guild_id: str = ""
    admin_role_id: str = ""
    support_role_id: str = ""

    # Staff-facing channels
    staff_log_channel_id: str | None = None
    issues_channel_id: str | None = None
    completed_orders_channel_id: str | None = None

    # Conversational actions
    action_validity_seconds: float = Field(default=DEFAULT_ACTION_VALIDITY_SECONDS, gt=0)
    confirmation_phrase: str = "COMPLETE"

    # Payouts
    worker_share: Decimal = Field(default=Decimal("0.80"), ge=0, le=1)
    support_share: Decimal = Field(default=Decimal("0.05"), ge=0, le=1)

    # Error-rate alerts
    error_alert_threshold: int = Field(default=10, ge=1)
    error_alert_window_seconds: float = Field(default=300.0, gt=0)
    error_alert_cooldown_seconds: float = Field(default=900.0, ge=0)

    # Persistence and observability
    database: str = ":memory:"
    enable_tracing: bool = True
    log_level: str = "INFO"

    def payout_policy(self) -> PayoutPolicy:
        return PayoutPolicy(worker_share=self.worker_share, support_share=self.support_share)

    def alert_policy(self) -> AlertPolicy:
        return AlertPolicy(
            threshold=self.error_alert_threshold,
            window_seconds=self.error_alert_window_seconds,
            cooldown_seconds=self.error_alert_cooldown_seconds,
        )


__all__ = [
    "DEFAULT_ACTION_VALIDITY_SECONDS",
    "AlertPolicy",
    "FulfillmentSettings",
    "PayoutPolicy",
]
