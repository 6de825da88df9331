"""
Test utilities for the fulfillment package.

Components:
    FulfillmentAssertions: Assertions over stored records and sent messages

Note:
    This module is intended for test code only. It should not be imported in
    production code paths.
"""

from fulfillment.testing.assertions import FulfillmentAssertions

__all__ = ["FulfillmentAssertions"]
