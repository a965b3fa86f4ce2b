"""Cancellation helpers.

A cancellation signal is a plain ``threading.Event``. Every store and job
operation accepts one as an optional argument.
"""

import threading
from typing import Optional

from synclease.errors import SyncCancelledError


def is_cancelled(cancellation: Optional[threading.Event]) -> bool:
    """Return True if the cancellation event is present and set."""
    return cancellation is not None and cancellation.is_set()


def raise_if_cancelled(cancellation: Optional[threading.Event], operation: str = "operation") -> None:
    """Raise SyncCancelledError if cancellation was requested."""
    if is_cancelled(cancellation):
        raise SyncCancelledError(f"{operation} was cancelled")
