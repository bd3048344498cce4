"""
Purchase order exceptions.

Every failure raised by the status engine or the service layer carries a
human-readable ``message`` and a machine-readable ``code``. Views surface the
message verbatim and map the code to an HTTP status.
"""
from __future__ import annotations

from typing import Any, Optional


class PurchaseOrderError(Exception):
    """Raised when a purchase order operation fails."""

    def __init__(self, message: str, code: str = "purchase_order_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class IllegalTransitionError(PurchaseOrderError):
    """The requested status is not a direct successor of the current one."""

    def __init__(self, message: str, from_status: Any = None, to_status: Any = None):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(message, code="illegal_transition")


class GuardViolationError(PurchaseOrderError):
    """The transition exists in the table but a business guard failed."""

    def __init__(self, message: str, from_status: Any = None, to_status: Any = None):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(message, code="guard_violation")


class UnknownStatusError(PurchaseOrderError):
    """
    A status value outside the fixed set was supplied.

    ``source`` is ``"input"`` when a caller sent it and ``"stored"`` when it was
    read back from the database. The latter means corrupted persisted state.
    """

    def __init__(self, value: Any, source: str = "input", message: Optional[str] = None):
        self.value = value
        self.source = source
        if message is None:
            message = f"Unknown purchase order status: {value!r}."
        super().__init__(message, code="unknown_status")


class OptimisticLockError(PurchaseOrderError):
    """
    Raised when an optimistic locking conflict occurs.
    The purchase order was modified by another transaction between the time
    the caller read it and the time the change was committed.
    """

    def __init__(self, po_number: str, expected_version: int, actual_version: int):
        self.po_number = po_number
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Purchase order {po_number} was modified by another transaction "
            f"(expected version {expected_version}, found {actual_version}). "
            "Please refresh and try again.",
            code="stale_version",
        )

