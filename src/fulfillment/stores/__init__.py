"""Store implementations for the fulfillment package."""

from fulfillment.stores.in_memory import InMemoryFulfillmentStore
from fulfillment.stores.interface import FulfillmentStore
from fulfillment.stores.sqlite import SQLiteFulfillmentStore

__all__ = [
    # Abstract base class
    "FulfillmentStore",
    # Concrete implementations
    "InMemoryFulfillmentStore",
    "SQLiteFulfillmentStore",
]
