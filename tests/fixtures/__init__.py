"""
Shared test fixtures for the fulfillment tests.

This module provides:
- Well-known actor, role and channel ids
- Factories for order drafts and typed forms

Usage:
    from tests.fixtures import CUSTOMER, WORKER, ADMIN, make_draft
"""

from tests.fixtures.actors import (
    ADMIN,
    ADMIN_ROLE,
    CUSTOMER,
    GUILD,
    LEDGER_CHANNEL,
    ORDER_CHANNEL,
    OTHER_CUSTOMER,
    OTHER_WORKER,
    STAFF_ALERTS_CHANNEL,
    STAFF_LOG_CHANNEL,
    SUPPORT,
    SUPPORT_ROLE,
    WORKER,
    staff_channels,
)
from tests.fixtures.orders import make_draft, purchase_form, refund_form

__all__ = [
    # Actors and channels
    "ADMIN",
    "ADMIN_ROLE",
    "CUSTOMER",
    "GUILD",
    "LEDGER_CHANNEL",
    "ORDER_CHANNEL",
    "OTHER_CUSTOMER",
    "OTHER_WORKER",
    "STAFF_ALERTS_CHANNEL",
    "STAFF_LOG_CHANNEL",
    "SUPPORT",
    "SUPPORT_ROLE",
    "WORKER",
    "staff_channels",
    # Factories
    "make_draft",
    "purchase_form",
    "refund_form",
]
