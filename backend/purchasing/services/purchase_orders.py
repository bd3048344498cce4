"""
Purchase order service layer.

Handles creation, draft edits, approval, supplier hand-off, shipping, receiving,
closing and cancelling of purchase orders. Every status change goes through
``_transition``, which re-validates the move against the freshly locked row
before writing it, appends an event and writes an audit line.
"""
from __future__ import annotations

import logging
import re
import time
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from django.conf import settings
from django.db import IntegrityError, connection, transaction
from django.db.models import IntegerField, Max, Q
from django.db.models.functions import Cast, Length, Substr
from django.utils import timezone

from purchasing import display
from purchasing.display import describe_status
from purchasing.audit import (
    AuditAction,
    AuditOutcome,
    audit_log,
    build_transition_entry,
    log_rejected_transition,
    log_transition,
)
from purchasing.exceptions import OptimisticLockError, PurchaseOrderError
from purchasing.models import (
    PurchaseOrder,
    PurchaseOrderApproval,
    PurchaseOrderEvent,
    PurchaseOrderLine,
    Project,
    Supplier,
)
from purchasing.rules import (
    INITIAL_STATUS,
    POStatus,
    TransitionContext,
    parse_status,
    validate_transition,
)
from purchasing.services.paging import page_bounds, paginate

logger = logging.getLogger(__name__)

_PO_NUMBER_RETRY_ATTEMPTS = 3
_PO_NUMBER_RETRY_BACKOFF_SECONDS = 0.02

# Lifecycle timestamp written when a purchase order enters each status.
_ENTERED_AT_FIELDS = {
    POStatus.PENDING_APPROVAL: "submitted_at",
    POStatus.APPROVED: "approved_at",
    POStatus.RELEASED: "released_at",
    POStatus.SENT_TO_SUPPLIER: "sent_at",
    POStatus.SUPPLIER_ACKNOWLEDGED: "acknowledged_at",
    POStatus.RECEIVED_CLOSED: "closed_at",
    POStatus.CANCELLED: "cancelled_at",
}
_ENTERED_BY_FIELDS = {
    POStatus.PENDING_APPROVAL: "submitted_by",
    POStatus.APPROVED: "approved_by",
    POStatus.CANCELLED: "cancelled_by",
}

AcceptHook = Callable[[PurchaseOrder], Iterable[str]]


def _default_currency() -> str:
    return getattr(settings, "PO_DEFAULT_CURRENCY", "USD")


def generate_po_number() -> str:
    """Generate a unique purchase order number: {PREFIX}-{YYYYMMDD}-{SEQ}."""
    today = timezone.now().strftime("%Y%m%d")
    prefix = f"{getattr(settings, 'PO_NUMBER_PREFIX', 'PO')}-{today}-"
    suffix_start = len(prefix) + 1  # Substr is 1-indexed in SQL backends.

    queryset = PurchaseOrder.objects.filter(po_number__startswith=prefix)
    if connection.vendor == "postgresql":
        pattern = rf"^{re.escape(prefix)}\d+$"
        queryset = queryset.filter(po_number__regex=pattern)
    else:
        queryset = queryset.annotate(no_len=Length("po_number")).filter(no_len__gt=len(prefix))

    max_seq = queryset.annotate(
        seq_num=Cast(Substr("po_number", suffix_start), IntegerField())
    ).aggregate(
        max_seq=Max("seq_num")
    ).get("max_seq")
    seq = int(max_seq or 0) + 1
    return f"{prefix}{seq:03d}"


def _is_po_number_conflict(exc: IntegrityError) -> bool:
    message = str(exc).lower()
    return "po_number" in message and ("unique" in message or "duplicate" in message)


def _field_limits(model, field: str) -> Tuple[int, int]:
    model_field = model._meta.get_field(field)
    return model_field.max_digits, model_field.decimal_places


def _check_amount(value: Decimal, model, field: str, label: str) -> Decimal:
    """Refuse amounts the column cannot hold."""
    max_digits, places = _field_limits(model, field)
    if abs(value) >= Decimal(10) ** (max_digits - places):
        raise PurchaseOrderError(
            f"{field} is too large for {label}: {value}.",
            code=f"invalid_{field}",
        )
    return value


def _parse_decimal(raw: Any, field: str, label: str) -> Decimal:
    """Parse a line amount, holding it to the precision of its column."""
    _, places = _field_limits(PurchaseOrderLine, field)
    try:
        value = Decimal(str(raw))
        exact = value.is_finite() and value == value.quantize(Decimal(1).scaleb(-places))
    except (InvalidOperation, ValueError, TypeError):
        exact = False
    if not exact:
        raise PurchaseOrderError(
            f"Invalid {field} for {label}: {raw!r}. Use a number with at most {places} decimal places.",
            code=f"invalid_{field}",
        )
    return _check_amount(value, PurchaseOrderLine, field, label)


def _parse_version(raw: Any) -> Optional[int]:
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise PurchaseOrderError(
            f"Invalid version_nbr: {raw!r}.", code="invalid_version"
        )


def _parse_datetime(value: Optional[str], field: str) -> Optional[datetime]:
    """Parse an ISO date or datetime string."""
    if not value:
        return None
    from django.utils.dateparse import (
        parse_date as django_parse_date,
        parse_datetime as django_parse,
    )

    try:
        parsed = django_parse(str(value))
        if parsed is None:
            parsed_date = django_parse_date(str(value))
            if parsed_date is not None:
                parsed = datetime.combine(parsed_date, datetime.min.time())
    except ValueError:
        parsed = None
    if parsed is None:
        raise PurchaseOrderError(f"Invalid {field}: {value!r}.", code=f"invalid_{field}")
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


def _get_project(raw_project_id: Any) -> Project:
    try:
        project_id = int(raw_project_id)
    except (TypeError, ValueError):
        raise PurchaseOrderError(
            f"Invalid project_id: {raw_project_id!r}.", code="invalid_project_id"
        )
    try:
        return Project.objects.get(project_id=project_id)
    except Project.DoesNotExist:
        raise PurchaseOrderError("Project not found.", code="invalid_project")


def _get_active_supplier(raw_supplier_id: Any) -> Supplier:
    try:
        supplier_id = int(raw_supplier_id)
    except (TypeError, ValueError):
        raise PurchaseOrderError(
            f"Invalid supplier_id: {raw_supplier_id!r}.", code="invalid_supplier_id"
        )
    try:
        return Supplier.objects.get(supplier_id=supplier_id, status_code="A")
    except Supplier.DoesNotExist:
        raise PurchaseOrderError("Supplier not found or inactive.", code="invalid_supplier")


def _line_values(line: Dict[str, Any], label: str) -> Dict[str, Any]:
    """Validate a submitted line and return model field values."""
    item_code = str(line.get("item_code") or "").strip()
    if not item_code:
        raise PurchaseOrderError(f"item_code is required for {label}.", code="invalid_item_code")

    ordered_qty = _parse_decimal(line.get("ordered_qty", 0), "ordered_qty", label)
    if ordered_qty <= 0:
        raise PurchaseOrderError(
            f"ordered_qty must be greater than zero for {label}.",
            code="invalid_ordered_qty",
        )

    unit_price = None
    if line.get("unit_price") is not None:
        unit_price = _parse_decimal(line["unit_price"], "unit_price", label)
        if unit_price < 0:
            raise PurchaseOrderError(
                f"unit_price cannot be negative for {label}.", code="invalid_unit_price"
            )

    line_total = None
    if unit_price is not None:
        line_total = _check_amount(ordered_qty * unit_price, PurchaseOrderLine, "line_total", label)

    return {
        "item_code": item_code,
        "description_text": line.get("description") or None,
        "uom_code": line.get("uom_code") or "EA",
        "ordered_qty": ordered_qty,
        "unit_price": unit_price,
        "line_total": line_total,
    }


def _compute_total_value(po: PurchaseOrder) -> Decimal:
    """Recalculate total value from line items."""
    total = Decimal("0.00")
    for line in po.lines.all():
        if line.unit_price is not None and line.ordered_qty is not None:
            line_total = line.ordered_qty * line.unit_price
            if line.line_total != line_total:
                line.line_total = line_total
                line.save(update_fields=["line_total", "update_dtime"])
            total += line_total
        elif line.line_total is not None:
            total += line.line_total
    return _check_amount(total, PurchaseOrder, "total_value", f"purchase order {po.po_number}")


def _build_context(po: PurchaseOrder) -> TransitionContext:
    """Guard inputs computed from the purchase order's persisted lines."""
    lines = list(po.lines.exclude(status_code="CANCELLED"))
    return TransitionContext(
        has_line_items=bool(lines),
        all_quantities_received=bool(lines)
        and all(line.received_qty >= line.ordered_qty for line in lines),
    )


def _append_note(po: PurchaseOrder, label: str, text: str) -> None:
    existing = po.notes_text or ""
    po.notes_text = f"{existing}\n[{label}] {text}".strip()


def _record_event(
    po: PurchaseOrder,
    event_type: str,
    actor_id: str,
    note: str = "",
    from_status: Optional[POStatus] = None,
    to_status: Optional[POStatus] = None,
) -> PurchaseOrderEvent:
    return PurchaseOrderEvent.objects.create(
        purchase_order=po,
        event_type=event_type,
        from_status=from_status.value if from_status else None,
        to_status=to_status.value if to_status else None,
        actor_id=actor_id,
        note_text=note or None,
        rev=po.rev,
    )


def _serialize_supplier_ref(s: Optional[Supplier]) -> Optional[Dict[str, Any]]:
    if s is None:
        return None
    return {
        "supplier_id": s.supplier_id,
        "supplier_code": s.supplier_code,
        "supplier_name": s.supplier_name,
        "currency_code": s.currency_code,
        "status_code": s.status_code,
    }


def _serialize_line(line: PurchaseOrderLine) -> Dict[str, Any]:
    return {
        "po_line_id": line.po_line_id,
        "line_no": line.line_no,
        "item_code": line.item_code,
        "description": line.description_text or "",
        "uom_code": line.uom_code,
        "ordered_qty": float(line.ordered_qty),
        "unit_price": float(line.unit_price) if line.unit_price is not None else None,
        "line_total": float(line.line_total) if line.line_total is not None else None,
        "received_qty": float(line.received_qty),
        "status_code": line.status_code,
    }


def _serialize_project_ref(p: Optional[Project]) -> Optional[Dict[str, Any]]:
    if p is None:
        return None
    return {
        "project_id": p.project_id,
        "project_name": p.project_name,
        "status_code": p.status_code,
    }


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _serialize_purchase_order(po: PurchaseOrder, include_approvals: bool = False) -> Dict[str, Any]:
    """Serialize a PurchaseOrder instance to a response dict."""
    status = parse_status(po.status_code, source="stored")
    data = {
        "po_id": po.po_id,
        "po_number": po.po_number,
        "supplier": _serialize_supplier_ref(po.supplier),
        "project": _serialize_project_ref(po.project),
        "status_code": status.value,
        "rev": po.rev,
        "version_nbr": po.version_nbr,
        "currency_code": po.currency_code,
        "total_value": str(po.total_value),
        "notes_text": po.notes_text or "",
        "lines": [_serialize_line(line) for line in po.lines.all()],
        "workflow": describe_status(status),
        "submitted_at": _isoformat(po.submitted_at),
        "submitted_by": po.submitted_by,
        "approved_at": _isoformat(po.approved_at),
        "approved_by": po.approved_by,
        "released_at": _isoformat(po.released_at),
        "sent_at": _isoformat(po.sent_at),
        "acknowledged_at": _isoformat(po.acknowledged_at),
        "shipped_at": _isoformat(po.shipped_at),
        "expected_arrival": _isoformat(po.expected_arrival),
        "closed_at": _isoformat(po.closed_at),
        "cancelled_at": _isoformat(po.cancelled_at),
        "create_by_id": po.create_by_id,
        "create_dtime": _isoformat(po.create_dtime),
        "update_dtime": _isoformat(po.update_dtime),
    }
    if include_approvals:
        data["approvals"] = [
            {
                "approval_id": a.approval_id,
                "approver_id": a.approver_id,
                "action_code": a.action_code,
                "comment_text": a.comment_text or "",
                "decided_at": _isoformat(a.decided_at),
            }
            for a in po.approvals.all()
        ]
    return data


def _serialize_event(event: PurchaseOrderEvent) -> Dict[str, Any]:
    return {
        "event_id": event.event_id,
        "event_type": event.event_type,
        "from_status": event.from_status,
        "to_status": event.to_status,
        "actor_id": event.actor_id,
        "note": event.note_text or "",
        "rev": event.rev,
        "event_dtime": _isoformat(event.event_dtime),
    }


# ── Core Operations ─────────────────────────────────────────────────────────


@transaction.atomic
def create_purchase_order(data: Dict[str, Any], actor_id: str) -> Dict[str, Any]:
    """Create a purchase order in the initial status, with optional lines."""
    raw_lines = data.get("lines") or []
    if not isinstance(raw_lines, list):
        raise PurchaseOrderError("lines must be a list.", code="invalid_lines")

    supplier = None
    if data.get("supplier_id"):
        supplier = _get_active_supplier(data["supplier_id"])

    project = None
    if data.get("project_id"):
        project = _get_project(data["project_id"])

    line_values = [
        _line_values(line if isinstance(line, dict) else {}, f"line {index}")
        for index, line in enumerate(raw_lines, start=1)
    ]

    currency = data.get("currency_code") or (supplier.currency_code if supplier else _default_currency())

    po: PurchaseOrder | None = None
    for attempt in range(_PO_NUMBER_RETRY_ATTEMPTS):
        try:
            # Use a savepoint so duplicate-number collisions can retry safely.
            with transaction.atomic():
                po = PurchaseOrder.objects.create(
                    po_number=generate_po_number(),
                    supplier=supplier,
                    project=project,
                    status_code=INITIAL_STATUS.value,
                    currency_code=currency,
                    notes_text=data.get("notes") or None,
                    create_by_id=actor_id,
                    update_by_id=actor_id,
                )
            break
        except IntegrityError as exc:
            if not _is_po_number_conflict(exc):
                raise
            logger.warning("po.number_conflict attempt=%d", attempt + 1)
            if attempt >= _PO_NUMBER_RETRY_ATTEMPTS - 1:
                raise PurchaseOrderError(
                    "Failed to generate a unique purchase order number. Please retry.",
                    code="duplicate_po_number",
                ) from exc
            time.sleep(_PO_NUMBER_RETRY_BACKOFF_SECONDS * (attempt + 1))

    if po is None:
        raise PurchaseOrderError(
            "Failed to generate a unique purchase order number. Please retry.",
            code="duplicate_po_number",
        )

    for line_no, values in enumerate(line_values, start=1):
        PurchaseOrderLine.objects.create(
            purchase_order=po,
            line_no=line_no,
            create_by_id=actor_id,
            update_by_id=actor_id,
            **values,
        )

    po.total_value = _compute_total_value(po)
    po.save(update_fields=["total_value", "update_dtime"])

    _record_event(po, "CREATED", actor_id, to_status=INITIAL_STATUS)
    audit_log(
        AuditAction.CREATE,
        user_id=actor_id,
        target_id=po.po_id,
        details={"po_number": po.po_number, "lines": len(line_values)},
    )

    return _serialize_purchase_order(po)


def list_purchase_orders(
    filters: Optional[Dict[str, Any]] = None,
    page: Any = 1,
    page_size: Any = None,
) -> Dict[str, Any]:
    """One page of purchase orders matching the optional filters, newest first."""
    qs = PurchaseOrder.objects.select_related("supplier", "project").prefetch_related("lines")

    if filters:
        if filters.get("status"):
            qs = qs.filter(status_code=parse_status(filters["status"]).value)
        if filters.get("supplier_id"):
            try:
                qs = qs.filter(supplier_id=int(filters["supplier_id"]))
            except (TypeError, ValueError):
                raise PurchaseOrderError(
                    f"Invalid supplier_id: {filters['supplier_id']!r}.",
                    code="invalid_supplier_id",
                )
        if filters.get("project_id"):
            try:
                qs = qs.filter(project_id=int(filters["project_id"]))
            except (TypeError, ValueError):
                raise PurchaseOrderError(
                    f"Invalid project_id: {filters['project_id']!r}.",
                    code="invalid_project_id",
                )
        if filters.get("search"):
            term = str(filters["search"]).strip()
            qs = qs.filter(
                Q(po_number__icontains=term)
                | Q(notes_text__icontains=term)
                | Q(supplier__supplier_name__icontains=term)
            )

    return paginate(qs.order_by("-create_dtime", "-po_id"), _serialize_purchase_order, page, page_size)


def _get_purchase_order(po_id: int) -> PurchaseOrder:
    try:
        return PurchaseOrder.objects.select_related("supplier", "project").get(po_id=po_id)
    except PurchaseOrder.DoesNotExist:
        raise PurchaseOrderError("Purchase order not found.", code="not_found")


def get_purchase_order(po_id: int) -> Dict[str, Any]:
    """Get a single purchase order by ID."""
    return _serialize_purchase_order(_get_purchase_order(po_id), include_approvals=True)


def _lock_purchase_order(po_id: int, expected_version: Any = None) -> PurchaseOrder:
    """
    Fetch the purchase order row under a row lock.

    When the caller sends the ``version_nbr`` it last observed, a mismatch means
    someone else changed the order in between and the request is refused.
    """
    version = _parse_version(expected_version)
    try:
        po = PurchaseOrder.objects.select_for_update().get(po_id=po_id)
    except PurchaseOrder.DoesNotExist:
        raise PurchaseOrderError("Purchase order not found.", code="not_found")

    if version is not None and version != po.version_nbr:
        audit_log(
            AuditAction.STALE_VERSION,
            target_id=po.po_id,
            outcome=AuditOutcome.FAILURE,
            details={"expected": version, "actual": po.version_nbr},
        )
        raise OptimisticLockError(po.po_number, version, po.version_nbr)
    return po


def _require_capability(
    po: PurchaseOrder,
    predicate: Callable[[POStatus], bool],
    action: str,
    actor_id: str,
) -> None:
    if predicate(parse_status(po.status_code, source="stored")):
        return
    audit_log(
        AuditAction.ACCESS_DENIED,
        user_id=actor_id,
        target_id=po.po_id,
        outcome=AuditOutcome.DENIED,
        details={"action": action, "status": po.status_code},
    )
    raise PurchaseOrderError(
        f"Action '{action}' is not available while the purchase order is {po.status_code}.",
        code="action_not_allowed",
    )


def _require_reason(reason: Optional[str], label: str) -> str:
    if not reason or not str(reason).strip():
        raise PurchaseOrderError(f"{label} reason is required.", code="reason_required")
    return str(reason).strip()


@transaction.atomic
def update_purchase_order_draft(
    po_id: int,
    updates: Dict[str, Any],
    actor_id: str,
    expected_version: Any = None,
) -> Dict[str, Any]:
    """Edit header fields and lines while the order is editable (draft or amended)."""
    if "status" in updates or "status_code" in updates:
        raise PurchaseOrderError(
            "Status cannot be edited directly; use a workflow action instead.",
            code="status_not_editable",
        )

    po = _lock_purchase_order(po_id, expected_version)
    _require_capability(po, display.can_edit_lines, "edit", actor_id)

    update_fields = ["update_by_id", "update_dtime", "version_nbr"]
    po.update_by_id = actor_id

    if "supplier_id" in updates:
        po.supplier = _get_active_supplier(updates["supplier_id"]) if updates["supplier_id"] else None
        update_fields.append("supplier")

    if "project_id" in updates:
        po.project = _get_project(updates["project_id"]) if updates["project_id"] else None
        update_fields.append("project")

    if "currency_code" in updates:
        po.currency_code = updates["currency_code"] or _default_currency()
        update_fields.append("currency_code")

    if "notes" in updates:
        po.notes_text = updates["notes"] or None
        update_fields.append("notes_text")

    deleted_line_ids: set[int] = set()
    for raw_line_id in updates.get("deleted_line_ids") or []:
        try:
            deleted_line_ids.add(int(raw_line_id))
        except (TypeError, ValueError):
            raise PurchaseOrderError(
                f"Invalid line id: {raw_line_id!r}.", code="invalid_line_id"
            )
    if deleted_line_ids:
        PurchaseOrderLine.objects.filter(
            purchase_order=po,
            po_line_id__in=list(deleted_line_ids),
        ).delete()

    next_line_no = (po.lines.aggregate(max_no=Max("line_no")).get("max_no") or 0) + 1
    for line in updates.get("lines") or []:
        if not isinstance(line, dict):
            raise PurchaseOrderError("Each line must be an object.", code="invalid_lines")
        if line.get("po_line_id"):
            try:
                po_line_id = int(line["po_line_id"])
            except (TypeError, ValueError):
                raise PurchaseOrderError(
                    f"Invalid line id: {line['po_line_id']!r}.", code="invalid_line_id"
                )
            if po_line_id in deleted_line_ids:
                continue
            try:
                existing = PurchaseOrderLine.objects.get(po_line_id=po_line_id, purchase_order=po)
            except PurchaseOrderLine.DoesNotExist:
                raise PurchaseOrderError(
                    f"Purchase order line {po_line_id} not found.", code="line_not_found"
                )
            merged = {
                "item_code": existing.item_code,
                "description": existing.description_text,
                "uom_code": existing.uom_code,
                "ordered_qty": existing.ordered_qty,
                "unit_price": existing.unit_price,
            }
            merged.update(line)
            for field, value in _line_values(merged, f"line {existing.line_no}").items():
                setattr(existing, field, value)
            existing.update_by_id = actor_id
            existing.save()
        else:
            PurchaseOrderLine.objects.create(
                purchase_order=po,
                line_no=next_line_no,
                create_by_id=actor_id,
                update_by_id=actor_id,
                **_line_values(line, f"line {next_line_no}"),
            )
            next_line_no += 1

    po.total_value = _compute_total_value(po)
    update_fields.append("total_value")
    po.version_nbr += 1
    po.save(update_fields=update_fields)

    _record_event(po, "UPDATED", actor_id)
    audit_log(
        AuditAction.UPDATE,
        user_id=actor_id,
        target_id=po.po_id,
        details={"fields": ",".join(sorted(key for key in updates if key != "lines"))},
    )

    return _serialize_purchase_order(po)


def list_events(po_id: int, page: Any = 1, page_size: Any = None) -> Dict[str, Any]:
    """Paginated event history, newest first."""
    page_no, size = page_bounds(page, page_size, "PO_EVENTS_PAGE_SIZE", "PO_EVENTS_MAX_PAGE_SIZE")
    po = _get_purchase_order(po_id)
    return paginate(
        po.events.order_by("-event_dtime", "-event_id"),
        _serialize_event,
        page_no,
        size,
        "PO_EVENTS_PAGE_SIZE",
        "PO_EVENTS_MAX_PAGE_SIZE",
    )


# ── Transitions ─────────────────────────────────────────────────────────────


def _transition(
    po: PurchaseOrder,
    target: Any,
    actor_id: str,
    notes: str = "",
    on_accept: Optional[AcceptHook] = None,
) -> PurchaseOrder:
    """
    Validate and commit one status change on a locked purchase order.

    The current status is read from the locked row, never from the caller.
    ``on_accept`` runs only after validation passes and returns the extra
    field names it changed.
    """
    current = parse_status(po.status_code, source="stored")
    result = validate_transition(current, target, _build_context(po))
    if not result.valid:
        log_rejected_transition(po.po_id, actor_id, current, target, result.code, result.reason)
        result.raise_if_invalid()
    target_status = result.to_status

    now = timezone.now()
    update_fields = ["status_code", "version_nbr", "update_by_id", "update_dtime"]
    if target_status in _ENTERED_AT_FIELDS:
        setattr(po, _ENTERED_AT_FIELDS[target_status], now)
        update_fields.append(_ENTERED_AT_FIELDS[target_status])
    if target_status in _ENTERED_BY_FIELDS:
        setattr(po, _ENTERED_BY_FIELDS[target_status], actor_id)
        update_fields.append(_ENTERED_BY_FIELDS[target_status])
    if on_accept is not None:
        update_fields.extend(on_accept(po) or [])

    po.status_code = target_status.value
    po.version_nbr += 1
    po.update_by_id = actor_id
    po.save(update_fields=list(dict.fromkeys(update_fields)))

    entry = build_transition_entry(
        po.po_id, current, target_status, actor_id, note=notes, rev=po.rev, timestamp=now
    )
    _record_event(po, "STATUS_CHANGED", actor_id, notes, from_status=current, to_status=target_status)
    log_transition(entry)
    return po


@transaction.atomic
def transition_purchase_order(
    po_id: int,
    target: Any,
    actor_id: str,
    notes: str = "",
    expected_version: Any = None,
    *,
    require: Optional[Tuple[Callable[[POStatus], bool], str]] = None,
    on_accept: Optional[AcceptHook] = None,
    include_approvals: bool = False,
) -> Dict[str, Any]:
    """
    Lock the order and move it to ``target`` if the transition table and guards allow it.

    Every workflow command below goes through here. ``require`` is an optional
    ``(predicate, action)`` capability check run against the locked row before
    the transition is validated.
    """
    po = _lock_purchase_order(po_id, expected_version)
    if require is not None:
        predicate, action = require
        _require_capability(po, predicate, action, actor_id)
    _transition(po, target, actor_id, notes, on_accept)
    return _serialize_purchase_order(po, include_approvals=include_approvals)


def preview_transition(po_id: int, target: Any) -> Dict[str, Any]:
    """Validate ``current -> target`` against the stored order without writing anything."""
    po = _get_purchase_order(po_id)
    current = parse_status(po.status_code, source="stored")
    result = validate_transition(current, target, _build_context(po))
    payload = {
        "po_id": po.po_id,
        "from_status": current.value,
        "to_status": getattr(target, "value", target),
    }
    payload.update(result.as_dict())
    return payload


def get_transitions(po_id: int) -> Dict[str, Any]:
    po = _get_purchase_order(po_id)
    data = describe_status(parse_status(po.status_code, source="stored"))
    data["po_id"] = po.po_id
    data["version_nbr"] = po.version_nbr
    return data


def _record_approval(action_code: str, actor_id: str, comment: str = "") -> AcceptHook:
    def _hook(po: PurchaseOrder) -> List[str]:
        PurchaseOrderApproval.objects.create(
            purchase_order=po,
            approver_id=actor_id,
            action_code=action_code,
            comment_text=comment or None,
        )
        return []

    return _hook


def _is_change_requested(status: POStatus) -> bool:
    return status is POStatus.CHANGE_REQUESTED


# ── Commands ────────────────────────────────────────────────────────────────


def submit_purchase_order(
    po_id: int, actor_id: str, notes: str = "", expected_version: Any = None
) -> Dict[str, Any]:
    """Submit for approval: draft or amended → pending_approval."""
    return transition_purchase_order(
        po_id,
        POStatus.PENDING_APPROVAL,
        actor_id,
        notes,
        expected_version,
        require=(display.can_submit_for_approval, "submit"),
    )


def approve_purchase_order(
    po_id: int, actor_id: str, notes: str = "", expected_version: Any = None
) -> Dict[str, Any]:
    """Approve: pending_approval → approved."""
    return transition_purchase_order(
        po_id,
        POStatus.APPROVED,
        actor_id,
        notes,
        expected_version,
        require=(display.can_approve, "approve"),
        on_accept=_record_approval("APPROVED", actor_id, notes),
        include_approvals=True,
    )


def reject_purchase_order(
    po_id: int, actor_id: str, reason: str, expected_version: Any = None
) -> Dict[str, Any]:
    """Reject during approval: pending_approval → cancelled."""
    reason = _require_reason(reason, "Rejection")
    record = _record_approval("REJECTED", actor_id, reason)

    def _on_accept(locked: PurchaseOrder) -> List[str]:
        record(locked)
        _append_note(locked, "Rejected", reason)
        return ["notes_text"]

    return transition_purchase_order(
        po_id,
        POStatus.CANCELLED,
        actor_id,
        reason,
        expected_version,
        require=(display.can_approve, "reject"),
        on_accept=_on_accept,
        include_approvals=True,
    )


def release_purchase_order(
    po_id: int, actor_id: str, notes: str = "", expected_version: Any = None
) -> Dict[str, Any]:
    """Release an approved order: approved → released."""
    return transition_purchase_order(po_id, POStatus.RELEASED, actor_id, notes, expected_version)


def send_to_supplier(
    po_id: int, actor_id: str, notes: str = "", expected_version: Any = None
) -> Dict[str, Any]:
    """Hand the order to the supplier: released → sent_to_supplier."""
    return transition_purchase_order(po_id, POStatus.SENT_TO_SUPPLIER, actor_id, notes, expected_version)


def acknowledge_purchase_order(
    po_id: int, actor_id: str, notes: str = "", expected_version: Any = None
) -> Dict[str, Any]:
    """
    Supplier acknowledgement: sent_to_supplier → supplier_acknowledged.

    ``can_acknowledge`` also holds for approved and released orders so the
    action is offered early, but the transition table only accepts it once the
    order has been sent.
    """
    return transition_purchase_order(
        po_id,
        POStatus.SUPPLIER_ACKNOWLEDGED,
        actor_id,
        notes,
        expected_version,
        require=(display.can_acknowledge, "acknowledge"),
    )


def request_change(
    po_id: int, actor_id: str, reason: str, expected_version: Any = None
) -> Dict[str, Any]:
    """Ask for a change to an approved or in-flight order → change_requested."""
    reason = _require_reason(reason, "Change request")

    def _on_accept(locked: PurchaseOrder) -> List[str]:
        _append_note(locked, "Change Requested", reason)
        return ["notes_text"]

    return transition_purchase_order(
        po_id,
        POStatus.CHANGE_REQUESTED,
        actor_id,
        reason,
        expected_version,
        require=(display.can_request_change, "request_change"),
        on_accept=_on_accept,
    )


def approve_change(
    po_id: int, actor_id: str, notes: str = "", expected_version: Any = None
) -> Dict[str, Any]:
    """Accept a change request: change_requested → amended, bumping the revision."""
    record = _record_approval("CHANGE_APPROVED", actor_id, notes)

    def _on_accept(locked: PurchaseOrder) -> List[str]:
        locked.rev += 1
        record(locked)
        return ["rev"]

    return transition_purchase_order(
        po_id,
        POStatus.AMENDED,
        actor_id,
        notes,
        expected_version,
        require=(_is_change_requested, "approve_change"),
        on_accept=_on_accept,
        include_approvals=True,
    )


def reject_change(
    po_id: int, actor_id: str, reason: str, expected_version: Any = None
) -> Dict[str, Any]:
    """Refuse a change request: change_requested → cancelled."""
    reason = _require_reason(reason, "Rejection")
    record = _record_approval("CHANGE_REJECTED", actor_id, reason)

    def _on_accept(locked: PurchaseOrder) -> List[str]:
        record(locked)
        _append_note(locked, "Change Rejected", reason)
        return ["notes_text"]

    return transition_purchase_order(
        po_id,
        POStatus.CANCELLED,
        actor_id,
        reason,
        expected_version,
        require=(_is_change_requested, "reject_change"),
        on_accept=_on_accept,
        include_approvals=True,
    )


def record_shipment(
    po_id: int,
    actor_id: str,
    partial: bool = False,
    shipped_at: Optional[str] = None,
    expected_arrival: Optional[str] = None,
    notes: str = "",
    expected_version: Any = None,
) -> Dict[str, Any]:
    """Record a shipment: → partially_shipped when ``partial``, otherwise → in_transit."""
    shipped = _parse_datetime(shipped_at, "shipped_at")
    arrival = _parse_datetime(expected_arrival, "expected_arrival")
    target = POStatus.PARTIALLY_SHIPPED if partial else POStatus.IN_TRANSIT

    def _on_accept(locked: PurchaseOrder) -> List[str]:
        fields = []
        if shipped is not None or locked.shipped_at is None:
            locked.shipped_at = shipped or timezone.now()
            fields.append("shipped_at")
        if arrival is not None:
            locked.expected_arrival = arrival
            fields.append("expected_arrival")
        return fields

    return transition_purchase_order(
        po_id, target, actor_id, notes, expected_version, on_accept=_on_accept
    )


@transaction.atomic
def receive_items(
    po_id: int,
    line_receipts: List[Dict[str, Any]],
    actor_id: str,
    notes: str = "",
    expected_version: Any = None,
) -> Dict[str, Any]:
    """
    Record received quantities and move the order to partially_received.

    Receipts and the status change commit together. If the status change is
    refused, the recorded quantities are rolled back with it and no receipt is
    audited.
    """
    po = _lock_purchase_order(po_id, expected_version)
    status = parse_status(po.status_code, source="stored")
    _require_capability(
        po,
        lambda current: display.can_receive(current) or current is POStatus.PARTIALLY_RECEIVED,
        "receive",
        actor_id,
    )

    if not line_receipts:
        raise PurchaseOrderError("No receipt lines provided.", code="no_receipts")

    received_lines = 0
    for receipt in line_receipts:
        if not isinstance(receipt, dict):
            raise PurchaseOrderError("Each receipt must be an object.", code="invalid_receipt")
        raw_line_id = receipt.get("po_line_id")
        try:
            line = PurchaseOrderLine.objects.get(po_line_id=int(raw_line_id), purchase_order=po)
        except (TypeError, ValueError, PurchaseOrderLine.DoesNotExist):
            raise PurchaseOrderError(
                f"Purchase order line {raw_line_id!r} not found.",
                code="line_not_found",
            )

        label = f"line {line.line_no}"
        received_qty = _parse_decimal(receipt.get("received_qty", 0), "received_qty", label)
        if received_qty <= 0:
            continue

        line.received_qty = _check_amount(
            line.received_qty + received_qty, PurchaseOrderLine, "received_qty", label
        )
        line.status_code = "RECEIVED" if line.received_qty >= line.ordered_qty else "PARTIAL"
        line.update_by_id = actor_id
        line.save(update_fields=["received_qty", "status_code", "update_by_id", "update_dtime"])
        received_lines += 1

    if not received_lines:
        raise PurchaseOrderError(
            "No positive received quantities provided.", code="no_receipts"
        )

    _record_event(po, "RECEIPT_RECORDED", actor_id, notes)

    if status is POStatus.PARTIALLY_RECEIVED:
        po.version_nbr += 1
        po.update_by_id = actor_id
        po.save(update_fields=["version_nbr", "update_by_id", "update_dtime"])
    else:
        _transition(po, POStatus.PARTIALLY_RECEIVED, actor_id, notes)

    audit_log(
        AuditAction.RECEIPT,
        user_id=actor_id,
        target_id=po.po_id,
        details={"lines": received_lines},
    )
    return _serialize_purchase_order(po)


def close_purchase_order(
    po_id: int, actor_id: str, notes: str = "", expected_version: Any = None
) -> Dict[str, Any]:
    """Close a fully received order: partially_received → received_closed."""
    return transition_purchase_order(po_id, POStatus.RECEIVED_CLOSED, actor_id, notes, expected_version)


def cancel_purchase_order(
    po_id: int, reason: str, actor_id: str, expected_version: Any = None
) -> Dict[str, Any]:
    """Cancel from any non-terminal status."""
    reason = _require_reason(reason, "Cancellation")

    def _on_accept(locked: PurchaseOrder) -> List[str]:
        _append_note(locked, "Cancelled", reason)
        locked.lines.filter(status_code="PENDING").update(
            status_code="CANCELLED", update_by_id=actor_id
        )
        return ["notes_text"]

    return transition_purchase_order(
        po_id,
        POStatus.CANCELLED,
        actor_id,
        reason,
        expected_version,
        require=(display.can_cancel, "cancel"),
        on_accept=_on_accept,
    )
