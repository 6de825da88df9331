"""Common type definitions for the fulfillment package."""

from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

# Chat platform identifiers are opaque strings (snowflakes)
ActorId = str
ChannelId = str
MessageId = str
GuildId = str
RoleId = str

# Records owned by the persistence API
OrderId = UUID
ItemId = UUID
IssueId = UUID
TicketId = UUID

CENT = Decimal("0.01")


def to_money(value: Decimal | int | float | str) -> Decimal:
    """Quantize a monetary value to cents."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(value: Decimal, currency: str = "USD") -> str:
    """Render an amount the way users see it in chat, e.g. ``$40.00``."""
    amount = to_money(value)
    if currency == "USD":
        return f"${amount:,.2f}"
    return f"{amount:,.2f} {currency}"
