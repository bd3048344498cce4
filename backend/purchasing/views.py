from typing import Any, Callable, Dict, Optional

from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.response import Response

from api.authentication import PurchasingAuthentication
from api.permissions import PurchasingPermission
from api.rbac import (
    PERM_PO_ACKNOWLEDGE,
    PERM_PO_APPROVE,
    PERM_PO_CANCEL,
    PERM_PO_CHANGE,
    PERM_PO_CREATE,
    PERM_PO_EDIT,
    PERM_PO_RECEIVE,
    PERM_PO_REJECT,
    PERM_PO_RELEASE,
    PERM_PO_SHIP,
    PERM_PO_SUBMIT,
    PERM_PO_VIEW,
    PERM_PROJECT_MANAGE,
    PERM_PROJECT_VIEW,
    PERM_SUPPLIER_MANAGE,
    PERM_SUPPLIER_VIEW,
)
from purchasing.display import describe_status
from purchasing.exceptions import PurchaseOrderError, UnknownStatusError
from purchasing.models import PurchaseOrder
from purchasing.rules import POStatus, TransitionContext, validate_transition
from purchasing.services import projects as project_service
from purchasing.services import purchase_orders as po_service
from purchasing.services import suppliers as supplier_service

_ERROR_STATUS = {
    "not_found": 404,
    "stale_version": 409,
}


def _actor_id(request) -> str:
    return (
        getattr(request.user, "user_id", None)
        or getattr(request.user, "username", None)
        or "anonymous"
    )


def _error_response(exc: PurchaseOrderError) -> Response:
    status = _ERROR_STATUS.get(exc.code, 400)
    if isinstance(exc, UnknownStatusError) and exc.source == "stored":
        status = 500
    return Response({"errors": {exc.code: exc.message}}, status=status)


def _body(request) -> Dict[str, Any] | None:
    data = request.data
    if data is None:
        return {}
    if not hasattr(data, "get"):
        return None
    return data


def _invalid_body() -> Response:
    return Response({"errors": {"body": "Request body must be a JSON object."}}, status=400)


def _approver_must_differ_from_creator(po_id: int, actor: str) -> Response | None:
    try:
        po = PurchaseOrder.objects.get(po_id=po_id)
    except PurchaseOrder.DoesNotExist:
        return Response({"errors": {"not_found": "Purchase order not found."}}, status=404)
    if po.create_by_id == actor:
        return Response(
            {"errors": {"approval": "Approver must be different from submitter."}},
            status=409,
        )
    return None


def _run(action: Callable[..., Dict[str, Any]], *args, success_status: int = 200, **kwargs) -> Response:
    try:
        result = action(*args, **kwargs)
    except PurchaseOrderError as exc:
        return _error_response(exc)
    return Response(result, status=success_status)


# ── Purchase orders ─────────────────────────────────────────────────────────


@api_view(["GET", "POST"])
@authentication_classes([PurchasingAuthentication])
@permission_classes([PurchasingPermission])
def purchase_orders(request):
    if request.method == "GET":
        filters = {
            "status": request.query_params.get("status"),
            "supplier_id": request.query_params.get("supplier_id"),
            "project_id": request.query_params.get("project_id"),
            "search": request.query_params.get("search"),
        }
        return _run(
            po_service.list_purchase_orders,
            filters,
            page=request.query_params.get("page"),
            page_size=request.query_params.get("page_size"),
        )

    body = _body(request)
    if body is None:
        return _invalid_body()
    return _run(po_service.create_purchase_order, body, _actor_id(request), success_status=201)


@api_view(["GET", "PATCH"])
@authentication_classes([PurchasingAuthentication])
@permission_classes([PurchasingPermission])
def purchase_order_detail(request, po_id: int):
    if request.method == "GET":
        return _run(po_service.get_purchase_order, po_id)

    body = _body(request)
    if body is None:
        return _invalid_body()
    updates = dict(body)
    expected_version = updates.pop("version_nbr", None)
    return _run(
        po_service.update_purchase_order_draft,
        po_id,
        updates,
        _actor_id(request),
        expected_version=expected_version,
    )


@api_view(["GET"])
@authentication_classes([PurchasingAuthentication])
@permission_classes([PurchasingPermission])
def purchase_order_events(request, po_id: int):
    return _run(
        po_service.list_events,
        po_id,
        page=request.query_params.get("page"),
        page_size=request.query_params.get("page_size"),
    )


@api_view(["GET"])
@authentication_classes([PurchasingAuthentication])
@permission_classes([PurchasingPermission])
def purchase_order_transitions(request, po_id: int):
    return _run(po_service.get_transitions, po_id)


@api_view(["POST"])
@authentication_classes([PurchasingAuthentication])
@permission_classes([PurchasingPermission])
def purchase_order_transition_check(request, po_id: int):
    body = _body(request)
    if body is None:
        return _invalid_body()
    if not body.get("to_status"):
        return Response({"errors": {"to_status": "to_status is required."}}, status=400)
    return _run(po_service.preview_transition, po_id, body["to_status"])


def _simple_command(service_name: str):
    """Body: optional ``notes`` and ``version_nbr``."""

    def _handle(request, po_id: int) -> Response:
        body = _body(request)
        if body is None:
            return _invalid_body()
        return _run(
            getattr(po_service, service_name),
            po_id,
            _actor_id(request),
            notes=str(body.get("notes") or ""),
            expected_version=body.get("version_nbr"),
        )

    return _handle


def _reason_command(service_name: str):
    """Body: required ``reason`` and optional ``version_nbr``."""

    def _handle(request, po_id: int) -> Response:
        body = _body(request)
        if body is None:
            return _invalid_body()
        return _run(
            getattr(po_service, service_name),
            po_id,
            _actor_id(request),
            body.get("reason"),
            expected_version=body.get("version_nbr"),
        )

    return _handle


_submit = _simple_command("submit_purchase_order")
_approve = _simple_command("approve_purchase_order")
_release = _simple_command("release_purchase_order")
_send = _simple_command("send_to_supplier")
_acknowledge = _simple_command("acknowledge_purchase_order")
_approve_change = _simple_command("approve_change")
_close = _simple_command("close_purchase_order")
_reject = _reason_command("reject_purchase_order")
_request_change = _reason_command("request_change")
_reject_change = _reason_command("reject_change")


@api_view(["POST"])
@authentication_classes([PurchasingAuthentication])
@permission_classes([PurchasingPermission])
def purchase_order_submit(request, po_id: int):
    return _submit(request, po_id)


@api_view(["POST"])
@authentication_classes([PurchasingAuthentication])
@permission_classes([PurchasingPermission])
def purchase_order_approve(request, po_id: int):
    self_approval = _approver_must_differ_from_creator(po_id, _actor_id(request))
    if self_approval:
        return self_approval
    return _approve(request, po_id)


@api_view(["POST"])
@authentication_classes([PurchasingAuthentication])
@permission_classes([PurchasingPermission])
def purchase_order_reject(request, po_id: int):
    self_approval = _approver_must_differ_from_creator(po_id, _actor_id(request))
    if self_approval:
        return self_approval
    return _reject(request, po_id)


@api_view(["POST"])
@authentication_classes([PurchasingAuthentication])
@permission_classes([PurchasingPermission])
def purchase_order_release(request, po_id: int):
    return _release(request, po_id)


@api_view(["POST"])
@authentication_classes([PurchasingAuthentication])
@permission_classes([PurchasingPermission])
def purchase_order_send(request, po_id: int):
    return _send(request, po_id)


@api_view(["POST"])
@authentication_classes([PurchasingAuthentication])
@permission_classes([PurchasingPermission])
def purchase_order_acknowledge(request, po_id: int):
    return _acknowledge(request, po_id)


@api_view(["POST"])
@authentication_classes([PurchasingAuthentication])
@permission_classes([PurchasingPermission])
def purchase_order_request_change(request, po_id: int):
    return _request_change(request, po_id)


@api_view(["POST"])
@authentication_classes([PurchasingAuthentication])
@permission_classes([PurchasingPermission])
def purchase_order_approve_change(request, po_id: int):
    return _approve_change(request, po_id)


@api_view(["POST"])
@authentication_classes([PurchasingAuthentication])
@permission_classes([PurchasingPermission])
def purchase_order_reject_change(request, po_id: int):
    return _reject_change(request, po_id)


@api_view(["POST"])
@authentication_classes([PurchasingAuthentication])
@permission_classes([PurchasingPermission])
def purchase_order_ship(request, po_id: int):
    body = _body(request)
    if body is None:
        return _invalid_body()
    partial = body.get("partial", False)
    if not isinstance(partial, bool):
        return Response({"errors": {"partial": "partial must be true or false."}}, status=400)
    return _run(
        po_service.record_shipment,
        po_id,
        _actor_id(request),
        partial=partial,
        shipped_at=body.get("shipped_at"),
        expected_arrival=body.get("expected_arrival"),
        notes=str(body.get("notes") or ""),
        expected_version=body.get("version_nbr"),
    )


@api_view(["POST"])
@authentication_classes([PurchasingAuthentication])
@permission_classes([PurchasingPermission])
def purchase_order_receive(request, po_id: int):
    body = _body(request)
    if body is None:
        return _invalid_body()
    lines = body.get("lines")
    if not isinstance(lines, list) or not lines:
        return Response({"errors": {"lines": "At least one receipt line is required."}}, status=400)
    return _run(
        po_service.receive_items,
        po_id,
        lines,
        _actor_id(request),
        notes=str(body.get("notes") or ""),
        expected_version=body.get("version_nbr"),
    )


@api_view(["POST"])
@authentication_classes([PurchasingAuthentication])
@permission_classes([PurchasingPermission])
def purchase_order_close(request, po_id: int):
    return _close(request, po_id)


@api_view(["POST"])
@authentication_classes([PurchasingAuthentication])
@permission_classes([PurchasingPermission])
def purchase_order_cancel(request, po_id: int):
    body = _body(request)
    if body is None:
        return _invalid_body()
    return _run(
        po_service.cancel_purchase_order,
        po_id,
        body.get("reason"),
        _actor_id(request),
        expected_version=body.get("version_nbr"),
    )


# ── Status engine ───────────────────────────────────────────────────────────


@api_view(["GET"])
@authentication_classes([PurchasingAuthentication])
@permission_classes([PurchasingPermission])
def status_engine_statuses(request):
    return Response({"statuses": [describe_status(status) for status in POStatus]})


def _parse_context(raw: Any) -> Optional[TransitionContext]:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ValueError("context must be an object.")
    values = {}
    for field in ("has_line_items", "all_quantities_received"):
        value = raw.get(field)
        if value is not None and not isinstance(value, bool):
            raise ValueError(f"{field} must be true, false or null.")
        values[field] = value
    return TransitionContext(**values)


@api_view(["POST"])
@authentication_classes([PurchasingAuthentication])
@permission_classes([PurchasingPermission])
def status_engine_validate(request):
    body = _body(request)
    if body is None:
        return _invalid_body()
    try:
        context = _parse_context(body.get("context"))
    except ValueError as exc:
        return Response({"errors": {"context": str(exc)}}, status=400)

    result = validate_transition(body.get("from_status"), body.get("to_status"), context)
    return Response(result.as_dict())


# ── Suppliers ───────────────────────────────────────────────────────────────


@api_view(["GET", "POST"])
@authentication_classes([PurchasingAuthentication])
@permission_classes([PurchasingPermission])
def suppliers(request):
    if request.method == "GET":
        active_only = request.query_params.get("active_only", "1") not in ("0", "false")
        return _run(
            supplier_service.list_suppliers,
            active_only=active_only,
            search=request.query_params.get("search"),
            page=request.query_params.get("page"),
            page_size=request.query_params.get("page_size"),
        )

    body = _body(request)
    if body is None:
        return _invalid_body()
    return _run(supplier_service.create_supplier, body, _actor_id(request), success_status=201)


@api_view(["GET", "PATCH"])
@authentication_classes([PurchasingAuthentication])
@permission_classes([PurchasingPermission])
def supplier_detail(request, supplier_id: int):
    if request.method == "GET":
        return _run(supplier_service.get_supplier, supplier_id)

    body = _body(request)
    if body is None:
        return _invalid_body()
    return _run(supplier_service.update_supplier, supplier_id, body, _actor_id(request))


# ── Projects ────────────────────────────────────────────────────────────────


@api_view(["GET", "POST"])
@authentication_classes([PurchasingAuthentication])
@permission_classes([PurchasingPermission])
def projects(request):
    if request.method == "GET":
        filters = {
            "status": request.query_params.get("status"),
            "search": request.query_params.get("search"),
        }
        return _run(
            project_service.list_projects,
            filters,
            page=request.query_params.get("page"),
            page_size=request.query_params.get("page_size"),
        )

    body = _body(request)
    if body is None:
        return _invalid_body()
    return _run(project_service.create_project, body, _actor_id(request), success_status=201)


@api_view(["GET", "PATCH", "DELETE"])
@authentication_classes([PurchasingAuthentication])
@permission_classes([PurchasingPermission])
def project_detail(request, project_id: int):
    if request.method == "GET":
        return _run(project_service.get_project, project_id)

    if request.method == "DELETE":
        try:
            project_service.delete_project(project_id, _actor_id(request))
        except PurchaseOrderError as exc:
            return _error_response(exc)
        return Response(status=204)

    body = _body(request)
    if body is None:
        return _invalid_body()
    updates = dict(body)
    expected_version = updates.pop("version_nbr", None)
    return _run(
        project_service.update_project,
        project_id,
        updates,
        _actor_id(request),
        expected_version=expected_version,
    )


purchase_orders.required_permission = {"GET": PERM_PO_VIEW, "POST": PERM_PO_CREATE}
purchase_order_detail.required_permission = {"GET": PERM_PO_VIEW, "PATCH": PERM_PO_EDIT}
purchase_order_events.required_permission = PERM_PO_VIEW
purchase_order_transitions.required_permission = PERM_PO_VIEW
purchase_order_transition_check.required_permission = PERM_PO_VIEW
purchase_order_submit.required_permission = PERM_PO_SUBMIT
purchase_order_approve.required_permission = PERM_PO_APPROVE
purchase_order_reject.required_permission = PERM_PO_REJECT
purchase_order_release.required_permission = PERM_PO_RELEASE
purchase_order_send.required_permission = PERM_PO_RELEASE
purchase_order_acknowledge.required_permission = PERM_PO_ACKNOWLEDGE
purchase_order_request_change.required_permission = PERM_PO_CHANGE
purchase_order_approve_change.required_permission = PERM_PO_APPROVE
purchase_order_reject_change.required_permission = [PERM_PO_APPROVE, PERM_PO_REJECT]
purchase_order_ship.required_permission = PERM_PO_SHIP
purchase_order_receive.required_permission = PERM_PO_RECEIVE
purchase_order_close.required_permission = PERM_PO_RECEIVE
purchase_order_cancel.required_permission = PERM_PO_CANCEL
status_engine_statuses.required_permission = PERM_PO_VIEW
status_engine_validate.required_permission = PERM_PO_VIEW
suppliers.required_permission = {"GET": PERM_SUPPLIER_VIEW, "POST": PERM_SUPPLIER_MANAGE}
supplier_detail.required_permission = {"GET": PERM_SUPPLIER_VIEW, "PATCH": PERM_SUPPLIER_MANAGE}
projects.required_permission = {"GET": PERM_PROJECT_VIEW, "POST": PERM_PROJECT_MANAGE}
project_detail.required_permission = {
    "GET": PERM_PROJECT_VIEW,
    "PATCH": PERM_PROJECT_MANAGE,
    "DELETE": PERM_PROJECT_MANAGE,
}

for view_func in (
    purchase_orders,
    purchase_order_detail,
    purchase_order_events,
    purchase_order_transitions,
    purchase_order_transition_check,
    purchase_order_submit,
    purchase_order_approve,
    purchase_order_reject,
    purchase_order_release,
    purchase_order_send,
    purchase_order_acknowledge,
    purchase_order_request_change,
    purchase_order_approve_change,
    purchase_order_reject_change,
    purchase_order_ship,
    purchase_order_receive,
    purchase_order_close,
    purchase_order_cancel,
    status_engine_statuses,
    status_engine_validate,
    suppliers,
    supplier_detail,
    projects,
    project_detail,
):
    if hasattr(view_func, "cls"):
        view_func.cls.required_permission = view_func.required_permission
