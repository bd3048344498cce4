"""
Purchase order status rules.

The transition table below is the single source of truth for which status a
purchase order may move to next. It is built once at import time and exposed
read-only; nothing in the process mutates it afterwards.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, FrozenSet, Mapping, Optional, Tuple

from api.log_sanitizer import sanitize_for_log
from purchasing.exceptions import (
    GuardViolationError,
    IllegalTransitionError,
    PurchaseOrderError,
    UnknownStatusError,
)

logger = logging.getLogger(__name__)


class POStatus(str, Enum):
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    RELEASED = "released"
    SENT_TO_SUPPLIER = "sent_to_supplier"
    SUPPLIER_ACKNOWLEDGED = "supplier_acknowledged"
    CHANGE_REQUESTED = "change_requested"
    AMENDED = "amended"
    PARTIALLY_SHIPPED = "partially_shipped"
    IN_TRANSIT = "in_transit"
    PARTIALLY_RECEIVED = "partially_received"
    RECEIVED_CLOSED = "received_closed"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        return self.value


INITIAL_STATUS = POStatus.DRAFT

# Successor order matters: it is the order reported back to callers.
_ORDERED_TRANSITIONS: Mapping[POStatus, Tuple[POStatus, ...]] = MappingProxyType(
    {
        POStatus.DRAFT: (POStatus.PENDING_APPROVAL, POStatus.CANCELLED),
        POStatus.PENDING_APPROVAL: (POStatus.APPROVED, POStatus.CANCELLED),
        POStatus.APPROVED: (
            POStatus.RELEASED,
            POStatus.CHANGE_REQUESTED,
            POStatus.CANCELLED,
        ),
        POStatus.RELEASED: (
            POStatus.SENT_TO_SUPPLIER,
            POStatus.CHANGE_REQUESTED,
            POStatus.CANCELLED,
        ),
        POStatus.SENT_TO_SUPPLIER: (
            POStatus.SUPPLIER_ACKNOWLEDGED,
            POStatus.CHANGE_REQUESTED,
            POStatus.CANCELLED,
        ),
        POStatus.SUPPLIER_ACKNOWLEDGED: (
            POStatus.PARTIALLY_SHIPPED,
            POStatus.IN_TRANSIT,
            POStatus.CHANGE_REQUESTED,
            POStatus.CANCELLED,
        ),
        POStatus.CHANGE_REQUESTED: (POStatus.AMENDED, POStatus.CANCELLED),
        # Re-approval after an amendment. The only cycle in the graph, and unbounded.
        POStatus.AMENDED: (POStatus.PENDING_APPROVAL, POStatus.CANCELLED),
        POStatus.PARTIALLY_SHIPPED: (
            POStatus.IN_TRANSIT,
            POStatus.PARTIALLY_RECEIVED,
            POStatus.CANCELLED,
        ),
        POStatus.IN_TRANSIT: (POStatus.PARTIALLY_RECEIVED, POStatus.CANCELLED),
        POStatus.PARTIALLY_RECEIVED: (POStatus.RECEIVED_CLOSED, POStatus.CANCELLED),
        POStatus.RECEIVED_CLOSED: (),
        POStatus.CANCELLED: (),
    }
)

TRANSITIONS: Mapping[POStatus, FrozenSet[POStatus]] = MappingProxyType(
    {status: frozenset(targets) for status, targets in _ORDERED_TRANSITIONS.items()}
)

TERMINAL_STATUSES: FrozenSet[POStatus] = frozenset(
    status for status, targets in TRANSITIONS.items() if not targets
)

if set(TRANSITIONS) != set(POStatus):
    raise RuntimeError(
        "Transition table is missing statuses: "
        + ", ".join(sorted(s.value for s in set(POStatus) - set(TRANSITIONS)))
    )

REASON_NO_LINE_ITEMS = "Cannot submit for approval without line items"
REASON_NOT_FULLY_RECEIVED = "Cannot close PO until all quantities are received"


def parse_status(value: Any, source: str = "input") -> POStatus:
    """
    Return the ``POStatus`` for ``value``.

    Only exact status values are accepted. An unknown value is never mapped to
    a default; it is logged as an anomaly and ``UnknownStatusError`` is raised.
    """
    if isinstance(value, POStatus):
        return value
    try:
        return POStatus(value)
    except ValueError:
        logger.error(
            "po.unknown_status value=%s source=%s",
            sanitize_for_log(value, max_length=100),
            source,
        )
        raise UnknownStatusError(value, source=source) from None


def allowed_transitions(status: Any) -> FrozenSet[POStatus]:
    return TRANSITIONS[parse_status(status)]


def ordered_transitions(status: Any) -> Tuple[POStatus, ...]:
    return _ORDERED_TRANSITIONS[parse_status(status)]


def is_valid_transition(from_status: Any, to_status: Any) -> bool:
    return parse_status(to_status) in allowed_transitions(from_status)


def is_terminal(status: Any) -> bool:
    return not allowed_transitions(status)


@dataclass(frozen=True)
class TransitionContext:
    """
    Optional facts about the purchase order used by the transition guards.
    ``None`` means the caller does not know, and the guard is skipped.
    """

    has_line_items: Optional[bool] = None
    all_quantities_received: Optional[bool] = None


@dataclass(frozen=True)
class TransitionResult:
    valid: bool
    reason: Optional[str] = None
    code: Optional[str] = None
    from_status: Any = None
    to_status: Any = None

    def raise_if_invalid(self) -> None:
        if self.valid:
            return
        if self.code == "illegal_transition":
            raise IllegalTransitionError(self.reason, self.from_status, self.to_status)
        if self.code == "guard_violation":
            raise GuardViolationError(self.reason, self.from_status, self.to_status)
        if self.code == "unknown_status":
            unknown = self.to_status if _is_known(self.from_status) else self.from_status
            raise UnknownStatusError(unknown, message=self.reason)
        raise PurchaseOrderError(self.reason or "Transition rejected.", code=self.code or "invalid_transition")

    def as_dict(self) -> dict:
        payload = {"valid": self.valid}
        if not self.valid:
            payload["reason"] = self.reason
            payload["code"] = self.code
        return payload


def _is_known(value: Any) -> bool:
    if isinstance(value, POStatus):
        return True
    try:
        return value in POStatus._value2member_map_
    except TypeError:
        return False


def _describe_targets(targets: Tuple[POStatus, ...]) -> str:
    if not targets:
        return "none"
    return ", ".join(target.value for target in targets)


def validate_transition(
    from_status: Any,
    to_status: Any,
    context: Optional[TransitionContext] = None,
) -> TransitionResult:
    """
    Decide whether ``from_status -> to_status`` may be committed.

    The adjacency table is checked first, then the business guards. Rejections
    are returned, not raised, so callers can show ``reason`` to the user.
    """
    try:
        source = parse_status(from_status)
        target = parse_status(to_status)
    except UnknownStatusError as exc:
        return TransitionResult(
            valid=False,
            reason=exc.message,
            code=exc.code,
            from_status=from_status,
            to_status=to_status,
        )

    if target not in TRANSITIONS[source]:
        return TransitionResult(
            valid=False,
            reason=(
                f"Cannot transition from {source.value} to {target.value}. "
                f"Allowed transitions: {_describe_targets(_ORDERED_TRANSITIONS[source])}"
            ),
            code="illegal_transition",
            from_status=source,
            to_status=target,
        )

    if context is not None:
        if target is POStatus.PENDING_APPROVAL and context.has_line_items is False:
            return TransitionResult(
                valid=False,
                reason=REASON_NO_LINE_ITEMS,
                code="guard_violation",
                from_status=source,
                to_status=target,
            )
        if target is POStatus.RECEIVED_CLOSED and context.all_quantities_received is False:
            return TransitionResult(
                valid=False,
                reason=REASON_NOT_FULLY_RECEIVED,
                code="guard_violation",
                from_status=source,
                to_status=target,
            )

    return TransitionResult(valid=True, from_status=source, to_status=target)
