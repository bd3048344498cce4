"""Supplier master data."""
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from django.db import transaction
from django.db.models import Q

from purchasing.audit import AuditAction, audit_log
from purchasing.exceptions import PurchaseOrderError
from purchasing.models import Supplier
from purchasing.services.paging import paginate

_TEXT_FIELDS = (
    "supplier_name",
    "contact_name",
    "phone_no",
    "email_text",
    "address_text",
    "category_text",
    "region_text",
    "currency_code",
)


def _serialize_supplier(s: Supplier) -> Dict[str, Any]:
    return {
        "supplier_id": s.supplier_id,
        "supplier_code": s.supplier_code,
        "supplier_name": s.supplier_name,
        "contact_name": s.contact_name,
        "phone_no": s.phone_no,
        "email_text": s.email_text,
        "address_text": s.address_text,
        "category_text": s.category_text,
        "region_text": s.region_text,
        "currency_code": s.currency_code,
        "rating": float(s.rating) if s.rating is not None else None,
        "default_lead_time_days": s.default_lead_time_days,
        "status_code": s.status_code,
    }


def _parse_lead_time(raw: Any) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise PurchaseOrderError(
            f"Invalid default_lead_time_days: {raw!r}.", code="invalid_lead_time"
        )
    if value < 0:
        raise PurchaseOrderError(
            "default_lead_time_days cannot be negative.", code="invalid_lead_time"
        )
    return value


def _parse_rating(raw: Any) -> Decimal | None:
    if raw is None or raw == "":
        return None
    try:
        value = Decimal(str(raw))
    except (InvalidOperation, ValueError, TypeError):
        raise PurchaseOrderError(f"Invalid rating: {raw!r}.", code="invalid_rating")
    if not value.is_finite() or value < 0 or value > 5:
        raise PurchaseOrderError("rating must be between 0 and 5.", code="invalid_rating")
    return value


def list_suppliers(
    active_only: bool = True,
    search: Optional[str] = None,
    page: Any = 1,
    page_size: Any = None,
) -> Dict[str, Any]:
    """One page of suppliers by name, optionally active only or matching a search term."""
    qs = Supplier.objects.all()
    if active_only:
        qs = qs.filter(status_code="A")
    if search and str(search).strip():
        term = str(search).strip()
        qs = qs.filter(
            Q(supplier_name__icontains=term)
            | Q(category_text__icontains=term)
            | Q(region_text__icontains=term)
        )
    return paginate(qs.order_by("supplier_name", "supplier_id"), _serialize_supplier, page, page_size)


def get_supplier(supplier_id: int) -> Dict[str, Any]:
    try:
        s = Supplier.objects.get(supplier_id=supplier_id)
    except Supplier.DoesNotExist:
        raise PurchaseOrderError("Supplier not found.", code="not_found")
    return _serialize_supplier(s)


@transaction.atomic
def create_supplier(data: Dict[str, Any], actor_id: str) -> Dict[str, Any]:
    if not data.get("supplier_name"):
        raise PurchaseOrderError("Supplier name is required.", code="name_required")
    if not data.get("supplier_code"):
        raise PurchaseOrderError("Supplier code is required.", code="code_required")

    if Supplier.objects.filter(supplier_code=data["supplier_code"]).exists():
        raise PurchaseOrderError("Supplier code already exists.", code="duplicate_code")

    s = Supplier.objects.create(
        supplier_code=data["supplier_code"],
        supplier_name=data["supplier_name"],
        contact_name=data.get("contact_name"),
        phone_no=data.get("phone_no"),
        email_text=data.get("email_text"),
        address_text=data.get("address_text"),
        category_text=data.get("category_text"),
        region_text=data.get("region_text"),
        currency_code=data.get("currency_code") or "USD",
        rating=_parse_rating(data.get("rating")),
        default_lead_time_days=_parse_lead_time(data.get("default_lead_time_days", 14)),
        status_code="A",
        create_by_id=actor_id,
        update_by_id=actor_id,
    )

    audit_log(
        AuditAction.SUPPLIER_CREATE,
        user_id=actor_id,
        target_entity="supplier",
        target_id=s.supplier_id,
        details={"code": s.supplier_code},
    )
    return _serialize_supplier(s)


@transaction.atomic
def update_supplier(supplier_id: int, data: Dict[str, Any], actor_id: str) -> Dict[str, Any]:
    try:
        s = Supplier.objects.select_for_update().get(supplier_id=supplier_id)
    except Supplier.DoesNotExist:
        raise PurchaseOrderError("Supplier not found.", code="not_found")

    update_fields = ["update_by_id", "update_dtime", "version_nbr"]
    s.update_by_id = actor_id

    for field in _TEXT_FIELDS:
        if field in data:
            setattr(s, field, data[field])
            update_fields.append(field)

    if "status_code" in data:
        if data["status_code"] not in dict(Supplier.STATUS_CHOICES):
            raise PurchaseOrderError(
                f"Invalid supplier status: {data['status_code']!r}.", code="invalid_status_code"
            )
        s.status_code = data["status_code"]
        update_fields.append("status_code")

    if "rating" in data:
        s.rating = _parse_rating(data["rating"])
        update_fields.append("rating")

    if "default_lead_time_days" in data:
        s.default_lead_time_days = _parse_lead_time(data["default_lead_time_days"])
        update_fields.append("default_lead_time_days")

    if not s.supplier_name:
        raise PurchaseOrderError("Supplier name is required.", code="name_required")

    s.version_nbr += 1
    s.save(update_fields=update_fields)

    audit_log(
        AuditAction.SUPPLIER_UPDATE,
        user_id=actor_id,
        target_entity="supplier",
        target_id=s.supplier_id,
        details={"fields": ",".join(sorted(data))},
    )
    return _serialize_supplier(s)
