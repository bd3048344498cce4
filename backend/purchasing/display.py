"""
Display metadata, recommended actions and capability predicates per status.

These are derived, never persisted, and recomputed on every call. The
capability sets are their own table: several are deliberately broader than the
outgoing edges in ``purchasing.rules`` and must not be rewritten as
edge-existence checks.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

from purchasing.rules import POStatus, is_terminal, ordered_transitions, parse_status


class EmphasisTier(str, Enum):
    OUTLINE = "outline"
    SECONDARY = "secondary"
    DEFAULT = "default"
    DESTRUCTIVE = "destructive"


@dataclass(frozen=True)
class StatusDisplay:
    label: str
    emphasis: EmphasisTier
    color: str

    def as_dict(self) -> Dict[str, str]:
        return {"label": self.label, "emphasis": self.emphasis.value, "color": self.color}


@dataclass(frozen=True)
class RecommendedAction:
    action: str
    label: str
    emphasis: EmphasisTier
    icon: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["emphasis"] = self.emphasis.value
        return payload


_STATUS_DISPLAY: Mapping[POStatus, StatusDisplay] = MappingProxyType(
    {
        POStatus.DRAFT: StatusDisplay("Draft", EmphasisTier.OUTLINE, "gray"),
        POStatus.PENDING_APPROVAL: StatusDisplay("Pending Approval", EmphasisTier.SECONDARY, "yellow"),
        POStatus.APPROVED: StatusDisplay("Approved", EmphasisTier.DEFAULT, "green"),
        POStatus.RELEASED: StatusDisplay("Released", EmphasisTier.DEFAULT, "blue"),
        POStatus.SENT_TO_SUPPLIER: StatusDisplay("Sent to Supplier", EmphasisTier.DEFAULT, "purple"),
        POStatus.SUPPLIER_ACKNOWLEDGED: StatusDisplay("Acknowledged", EmphasisTier.DEFAULT, "indigo"),
        POStatus.CHANGE_REQUESTED: StatusDisplay("Change Requested", EmphasisTier.SECONDARY, "orange"),
        POStatus.AMENDED: StatusDisplay("Amended", EmphasisTier.SECONDARY, "cyan"),
        POStatus.PARTIALLY_SHIPPED: StatusDisplay("Partially Shipped", EmphasisTier.DEFAULT, "teal"),
        POStatus.IN_TRANSIT: StatusDisplay("In Transit", EmphasisTier.DEFAULT, "blue"),
        POStatus.PARTIALLY_RECEIVED: StatusDisplay("Partially Received", EmphasisTier.DEFAULT, "emerald"),
        POStatus.RECEIVED_CLOSED: StatusDisplay("Received & Closed", EmphasisTier.DEFAULT, "green"),
        POStatus.CANCELLED: StatusDisplay("Cancelled", EmphasisTier.DESTRUCTIVE, "red"),
    }
)

_SUBMIT = RecommendedAction("submit", "Submit for Approval", EmphasisTier.DEFAULT, "CheckCircle")
_RESUBMIT = RecommendedAction("submit", "Resubmit for Approval", EmphasisTier.DEFAULT, "CheckCircle")
_EDIT = RecommendedAction("edit", "Edit", EmphasisTier.OUTLINE, "Edit")
_CANCEL = RecommendedAction("cancel", "Cancel", EmphasisTier.DESTRUCTIVE, "X")
_APPROVE = RecommendedAction("approve", "Approve", EmphasisTier.DEFAULT, "Check")
_REJECT = RecommendedAction("reject", "Reject", EmphasisTier.DESTRUCTIVE, "X")
_ACKNOWLEDGE = RecommendedAction("acknowledge", "Acknowledge", EmphasisTier.DEFAULT, "HandHeart")
_REQUEST_CHANGE = RecommendedAction("request_change", "Request Change", EmphasisTier.OUTLINE, "Edit")
_RECEIVE = RecommendedAction("receive", "Receive", EmphasisTier.DEFAULT, "Package")

_SUPPLIER_PENDING_ACTIONS = (
    _ACKNOWLEDGE,
    _REQUEST_CHANGE,
    RecommendedAction("create_asn", "Create ASN", EmphasisTier.SECONDARY, "Truck"),
)
_IN_FLIGHT_ACTIONS = (_RECEIVE,)

# First entries are rendered as primary buttons, so order is part of the contract.
_RECOMMENDED_ACTIONS: Mapping[POStatus, Tuple[RecommendedAction, ...]] = MappingProxyType(
    {
        POStatus.DRAFT: (_SUBMIT, _EDIT, _CANCEL),
        POStatus.PENDING_APPROVAL: (_APPROVE, _REJECT),
        POStatus.APPROVED: _SUPPLIER_PENDING_ACTIONS,
        POStatus.RELEASED: _SUPPLIER_PENDING_ACTIONS,
        POStatus.SENT_TO_SUPPLIER: _SUPPLIER_PENDING_ACTIONS,
        POStatus.SUPPLIER_ACKNOWLEDGED: (
            RecommendedAction("create_asn", "Create ASN", EmphasisTier.DEFAULT, "Truck"),
            RecommendedAction("receive", "Receive", EmphasisTier.SECONDARY, "Package"),
            _REQUEST_CHANGE,
        ),
        POStatus.CHANGE_REQUESTED: (
            RecommendedAction("approve_change", "Approve Change", EmphasisTier.DEFAULT, "Check"),
            RecommendedAction("reject_change", "Reject Change", EmphasisTier.DESTRUCTIVE, "X"),
        ),
        POStatus.AMENDED: (_RESUBMIT, _EDIT, _CANCEL),
        POStatus.PARTIALLY_SHIPPED: _IN_FLIGHT_ACTIONS,
        POStatus.IN_TRANSIT: _IN_FLIGHT_ACTIONS,
        POStatus.PARTIALLY_RECEIVED: (
            RecommendedAction("receive", "Receive More", EmphasisTier.DEFAULT, "Package"),
            RecommendedAction("create_invoice", "Create Invoice", EmphasisTier.SECONDARY, "FileText"),
        ),
        POStatus.RECEIVED_CLOSED: (
            RecommendedAction("create_invoice", "Create Invoice", EmphasisTier.DEFAULT, "FileText"),
            RecommendedAction("download_csv", "Download CSV", EmphasisTier.OUTLINE, "Download"),
        ),
        POStatus.CANCELLED: (),
    }
)

for _table_name, _table in (("status display", _STATUS_DISPLAY), ("recommended actions", _RECOMMENDED_ACTIONS)):
    _missing = set(POStatus) - set(_table)
    if _missing:
        raise RuntimeError(
            f"{_table_name} table is missing statuses: "
            + ", ".join(sorted(status.value for status in _missing))
        )


def status_display(status: Any) -> StatusDisplay:
    return _STATUS_DISPLAY[parse_status(status)]


def recommended_actions(status: Any) -> Tuple[RecommendedAction, ...]:
    return _RECOMMENDED_ACTIONS[parse_status(status)]


# ── Capability predicates ───────────────────────────────────────────────────

_EDIT_LINES_STATUSES: FrozenSet[POStatus] = frozenset({POStatus.DRAFT, POStatus.AMENDED})
_SUBMIT_STATUSES: FrozenSet[POStatus] = frozenset({POStatus.DRAFT, POStatus.AMENDED})
_APPROVE_STATUSES: FrozenSet[POStatus] = frozenset({POStatus.PENDING_APPROVAL})
_ACKNOWLEDGE_STATUSES: FrozenSet[POStatus] = frozenset(
    {POStatus.SENT_TO_SUPPLIER, POStatus.APPROVED, POStatus.RELEASED}
)
_REQUEST_CHANGE_STATUSES: FrozenSet[POStatus] = frozenset(
    {
        POStatus.APPROVED,
        POStatus.RELEASED,
        POStatus.SENT_TO_SUPPLIER,
        POStatus.SUPPLIER_ACKNOWLEDGED,
    }
)
_CREATE_ASN_STATUSES: FrozenSet[POStatus] = frozenset(
    {POStatus.SUPPLIER_ACKNOWLEDGED, POStatus.APPROVED, POStatus.RELEASED}
)
_RECEIVE_STATUSES: FrozenSet[POStatus] = frozenset(
    {POStatus.PARTIALLY_SHIPPED, POStatus.IN_TRANSIT, POStatus.SUPPLIER_ACKNOWLEDGED}
)
_CREATE_INVOICE_STATUSES: FrozenSet[POStatus] = frozenset(
    {POStatus.PARTIALLY_RECEIVED, POStatus.RECEIVED_CLOSED, POStatus.SUPPLIER_ACKNOWLEDGED}
)


def can_edit_lines(status: Any) -> bool:
    return parse_status(status) in _EDIT_LINES_STATUSES


def can_submit_for_approval(status: Any) -> bool:
    return parse_status(status) in _SUBMIT_STATUSES


def can_approve(status: Any) -> bool:
    return parse_status(status) in _APPROVE_STATUSES


def can_acknowledge(status: Any) -> bool:
    return parse_status(status) in _ACKNOWLEDGE_STATUSES


def can_request_change(status: Any) -> bool:
    return parse_status(status) in _REQUEST_CHANGE_STATUSES


def can_create_asn(status: Any) -> bool:
    return parse_status(status) in _CREATE_ASN_STATUSES


def can_receive(status: Any) -> bool:
    return parse_status(status) in _RECEIVE_STATUSES


def can_create_invoice(status: Any) -> bool:
    return parse_status(status) in _CREATE_INVOICE_STATUSES


def can_cancel(status: Any) -> bool:
    return not is_terminal(status)


CAPABILITY_PREDICATES = MappingProxyType(
    {
        "can_edit_lines": can_edit_lines,
        "can_submit_for_approval": can_submit_for_approval,
        "can_approve": can_approve,
        "can_acknowledge": can_acknowledge,
        "can_request_change": can_request_change,
        "can_create_asn": can_create_asn,
        "can_receive": can_receive,
        "can_create_invoice": can_create_invoice,
        "can_cancel": can_cancel,
    }
)


def capabilities(status: Any) -> Dict[str, bool]:
    parsed = parse_status(status)
    return {name: predicate(parsed) for name, predicate in CAPABILITY_PREDICATES.items()}


def describe_status(status: Any) -> Dict[str, Any]:
    """Everything a client needs to render a status and offer its actions."""
    parsed = parse_status(status)
    return {
        "status": parsed.value,
        "terminal": is_terminal(parsed),
        "display": status_display(parsed).as_dict(),
        "allowed_transitions": [target.value for target in ordered_transitions(parsed)],
        "recommended_actions": [action.as_dict() for action in recommended_actions(parsed)],
        "capabilities": capabilities(parsed),
    }
