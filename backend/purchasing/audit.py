"""
Purchase order audit logging.

Every accepted status transition produces one ``TransitionAuditEntry`` (the
contract handed to the event store) and one structured line on the
``po.audit`` logger. Rejected transitions and denied commands are logged at
WARNING or above but never stored.

Log format (``key=value`` pairs, one line per event):
    timestamp=<ISO8601> action=<ACTION> user_id=<ID> target=purchase_order:<ID>
    outcome=<OUTCOME> details={...}

Usage:
    from purchasing.audit import AuditAction, audit_log

    audit_log(
        AuditAction.TRANSITION,
        user_id=actor_id,
        target_id=po.po_id,
        details={"from": "draft", "to": "pending_approval"},
    )
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Union

from django.utils import timezone

from api.log_sanitizer import sanitize_dict_for_log, sanitize_for_log
from purchasing.rules import POStatus

audit_logger = logging.getLogger("po.audit")


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    TRANSITION = "TRANSITION"
    TRANSITION_REJECTED = "TRANSITION_REJECTED"
    RECEIPT = "RECEIPT"
    ACCESS_DENIED = "ACCESS_DENIED"
    STALE_VERSION = "STALE_VERSION"
    SUPPLIER_CREATE = "SUPPLIER_CREATE"
    SUPPLIER_UPDATE = "SUPPLIER_UPDATE"
    PROJECT_CREATE = "PROJECT_CREATE"
    PROJECT_UPDATE = "PROJECT_UPDATE"
    PROJECT_DELETE = "PROJECT_DELETE"


class AuditOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    DENIED = "DENIED"
    ERROR = "ERROR"


@dataclass(frozen=True)
class TransitionAuditEntry:
    po_id: Any
    previous_status: POStatus
    new_status: POStatus
    actor_id: str
    timestamp: datetime
    note: Optional[str] = None
    rev: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "po_id": self.po_id,
            "previous_status": self.previous_status.value,
            "new_status": self.new_status.value,
            "actor_id": self.actor_id,
            "timestamp": self.timestamp.isoformat(),
            "note": self.note,
            "rev": self.rev,
        }


def build_transition_entry(
    po_id: Any,
    previous_status: POStatus,
    new_status: POStatus,
    actor_id: str,
    note: Optional[str] = None,
    rev: int = 0,
    timestamp: Optional[datetime] = None,
) -> TransitionAuditEntry:
    return TransitionAuditEntry(
        po_id=po_id,
        previous_status=POStatus(previous_status),
        new_status=POStatus(new_status),
        actor_id=actor_id,
        timestamp=timestamp or timezone.now(),
        note=note or None,
        rev=rev,
    )


def audit_log(
    action: AuditAction,
    user_id: Optional[Union[int, str]] = None,
    target_id: Optional[Union[int, str]] = None,
    outcome: AuditOutcome = AuditOutcome.SUCCESS,
    details: Optional[dict] = None,
    level: int = logging.INFO,
    target_entity: str = "purchase_order",
) -> None:
    """
    Write one structured audit line.

    Args:
        action: What happened.
        user_id: Actor performing the action (``anonymous`` when missing).
        target_id: Primary key of the affected record.
        outcome: Result of the action. Anything but SUCCESS is raised to WARNING.
        details: Extra context; values are sanitized and secrets redacted.
        level: Logging level for successful events.
        target_entity: Record type, ``purchase_order`` unless stated.
    """
    target_str = sanitize_for_log(target_entity)
    if target_id is not None:
        target_str = f"{target_str}:{sanitize_for_log(target_id)}"

    log_parts = [
        f"timestamp={timezone.now().isoformat()}",
        f"action={action.value}",
        f"user_id={sanitize_for_log(user_id) if user_id else 'anonymous'}",
        f"target={target_str}",
        f"outcome={outcome.value}",
    ]
    if details:
        log_parts.append(f"details={sanitize_dict_for_log(details)}")

    if outcome in (AuditOutcome.FAILURE, AuditOutcome.DENIED, AuditOutcome.ERROR):
        level = max(level, logging.WARNING)

    audit_logger.log(level, " ".join(log_parts))


def log_transition(entry: TransitionAuditEntry) -> None:
    audit_log(
        AuditAction.TRANSITION,
        user_id=entry.actor_id,
        target_id=entry.po_id,
        details={
            "from": entry.previous_status.value,
            "to": entry.new_status.value,
            "rev": entry.rev,
            "note": entry.note,
        },
    )


def log_rejected_transition(
    po_id: Any,
    actor_id: Optional[str],
    from_status: Any,
    to_status: Any,
    code: Optional[str],
    reason: Optional[str],
) -> None:
    audit_log(
        AuditAction.TRANSITION_REJECTED,
        user_id=actor_id,
        target_id=po_id,
        outcome=AuditOutcome.FAILURE,
        details={
            "from": getattr(from_status, "value", from_status),
            "to": getattr(to_status, "value", to_status),
            "code": code,
            "reason": reason,
        },
    )
