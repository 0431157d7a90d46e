"""Test helpers for the XL2 Logger test suite.

Usage:
    from tests.infrastructure.helpers import wait_until, assert_event_order
"""

from tests.infrastructure.helpers.assertions import (
    WaitTimeoutError,
    assert_event_order,
    wait_until,
)

__all__ = [
    "WaitTimeoutError",
    "assert_event_order",
    "wait_until",
]
