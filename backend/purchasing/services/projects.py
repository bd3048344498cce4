"""Projects that purchase orders can be raised against."""
from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from django.db import transaction
from django.db.models import Q
from django.utils.dateparse import parse_date

from purchasing.audit import AuditAction, audit_log
from purchasing.exceptions import PurchaseOrderError
from purchasing.models import Project
from purchasing.services.paging import paginate

_TEXT_FIELDS = (
    "project_name",
    "description_text",
    "client_name",
    "priority_code",
)


def _serialize_project(p: Project) -> Dict[str, Any]:
    return {
        "project_id": p.project_id,
        "project_name": p.project_name,
        "description_text": p.description_text,
        "client_name": p.client_name,
        "priority_code": p.priority_code,
        "savings_target": float(p.savings_target) if p.savings_target is not None else None,
        "start_date": p.start_date.isoformat() if p.start_date else None,
        "due_date": p.due_date.isoformat() if p.due_date else None,
        "status_code": p.status_code,
        "version_nbr": p.version_nbr,
        "create_dtime": p.create_dtime.isoformat() if p.create_dtime else None,
        "update_dtime": p.update_dtime.isoformat() if p.update_dtime else None,
    }


def _parse_savings_target(raw: Any) -> Decimal | None:
    if raw is None or raw == "":
        return None
    try:
        value = Decimal(str(raw))
    except (InvalidOperation, ValueError, TypeError):
        raise PurchaseOrderError(f"Invalid savings_target: {raw!r}.", code="invalid_savings_target")
    if not value.is_finite() or value < 0 or value >= Decimal(10) ** 13:
        raise PurchaseOrderError(
            "savings_target must be a non-negative amount.", code="invalid_savings_target"
        )
    return value.quantize(Decimal("0.01"))


def _parse_day(raw: Any, field: str) -> Optional[date]:
    if raw is None or raw == "":
        return None
    try:
        value = parse_date(str(raw))
    except ValueError:
        value = None
    if value is None:
        raise PurchaseOrderError(f"Invalid {field}: {raw!r}.", code=f"invalid_{field}")
    return value


def _parse_status_code(raw: Any) -> str:
    if raw not in dict(Project.STATUS_CHOICES):
        raise PurchaseOrderError(f"Invalid project status: {raw!r}.", code="invalid_status_code")
    return raw


def _check_dates(p: Project) -> None:
    if p.start_date and p.due_date and p.due_date < p.start_date:
        raise PurchaseOrderError("due_date cannot be before start_date.", code="invalid_due_date")


def list_projects(
    filters: Optional[Dict[str, Any]] = None,
    page: Any = 1,
    page_size: Any = None,
) -> Dict[str, Any]:
    """One page of projects, newest first, filtered by status and a free-text search."""
    qs = Project.objects.all()
    if filters:
        if filters.get("status"):
            qs = qs.filter(status_code=_parse_status_code(filters["status"]))
        if filters.get("search"):
            term = str(filters["search"]).strip()
            qs = qs.filter(
                Q(project_name__icontains=term)
                | Q(description_text__icontains=term)
                | Q(client_name__icontains=term)
            )
    return paginate(qs.order_by("-create_dtime", "-project_id"), _serialize_project, page, page_size)


def get_project(project_id: int) -> Dict[str, Any]:
    try:
        p = Project.objects.get(project_id=project_id)
    except Project.DoesNotExist:
        raise PurchaseOrderError("Project not found.", code="not_found")
    return _serialize_project(p)


@transaction.atomic
def create_project(data: Dict[str, Any], actor_id: str) -> Dict[str, Any]:
    name = str(data.get("project_name") or "").strip()
    if not name:
        raise PurchaseOrderError("Project name is required.", code="name_required")

    p = Project(
        project_name=name,
        description_text=data.get("description_text"),
        client_name=data.get("client_name"),
        priority_code=data.get("priority_code"),
        savings_target=_parse_savings_target(data.get("savings_target")),
        start_date=_parse_day(data.get("start_date"), "start_date"),
        due_date=_parse_day(data.get("due_date"), "due_date"),
        status_code=_parse_status_code(data.get("status_code") or "Planning"),
        create_by_id=actor_id,
        update_by_id=actor_id,
    )
    _check_dates(p)
    p.save()

    audit_log(
        AuditAction.PROJECT_CREATE,
        user_id=actor_id,
        target_entity="project",
        target_id=p.project_id,
        details={"name": p.project_name},
    )
    return _serialize_project(p)


@transaction.atomic
def update_project(
    project_id: int,
    data: Dict[str, Any],
    actor_id: str,
    expected_version: Any = None,
) -> Dict[str, Any]:
    try:
        p = Project.objects.select_for_update().get(project_id=project_id)
    except Project.DoesNotExist:
        raise PurchaseOrderError("Project not found.", code="not_found")

    if expected_version not in (None, ""):
        try:
            version = int(expected_version)
        except (TypeError, ValueError):
            raise PurchaseOrderError(
                f"Invalid version_nbr: {expected_version!r}.", code="invalid_version"
            )
        if version != p.version_nbr:
            raise PurchaseOrderError(
                f"Project {p.project_id} was modified by someone else "
                f"(expected version {version}, found {p.version_nbr}).",
                code="stale_version",
            )

    update_fields = ["update_by_id", "update_dtime", "version_nbr"]
    p.update_by_id = actor_id

    for field in _TEXT_FIELDS:
        if field in data:
            setattr(p, field, data[field])
            update_fields.append(field)

    if "savings_target" in data:
        p.savings_target = _parse_savings_target(data["savings_target"])
        update_fields.append("savings_target")

    for field in ("start_date", "due_date"):
        if field in data:
            setattr(p, field, _parse_day(data[field], field))
            update_fields.append(field)

    if "status_code" in data:
        p.status_code = _parse_status_code(data["status_code"])
        update_fields.append("status_code")

    p.project_name = str(p.project_name or "").strip()
    if not p.project_name:
        raise PurchaseOrderError("Project name is required.", code="name_required")
    _check_dates(p)

    p.version_nbr += 1
    p.save(update_fields=update_fields)

    audit_log(
        AuditAction.PROJECT_UPDATE,
        user_id=actor_id,
        target_entity="project",
        target_id=p.project_id,
        details={"fields": ",".join(sorted(data))},
    )
    return _serialize_project(p)


@transaction.atomic
def delete_project(project_id: int, actor_id: str) -> None:
    """Delete a project that no purchase order references."""
    try:
        p = Project.objects.select_for_update().get(project_id=project_id)
    except Project.DoesNotExist:
        raise PurchaseOrderError("Project not found.", code="not_found")

    if p.purchase_orders.exists():
        raise PurchaseOrderError(
            "Project has purchase orders and cannot be deleted.", code="project_in_use"
        )

    name = p.project_name
    p.delete()
    audit_log(
        AuditAction.PROJECT_DELETE,
        user_id=actor_id,
        target_entity="project",
        target_id=project_id,
        details={"name": name},
    )
