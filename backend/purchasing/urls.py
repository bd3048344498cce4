from django.urls import path

from purchasing.views import (
    purchase_order_acknowledge,
    purchase_order_approve,
    purchase_order_approve_change,
    purchase_order_cancel,
    purchase_order_close,
    purchase_order_detail,
    purchase_order_events,
    purchase_order_receive,
    purchase_order_reject,
    purchase_order_reject_change,
    purchase_order_release,
    purchase_order_request_change,
    purchase_order_send,
    purchase_order_ship,
    purchase_order_submit,
    purchase_order_transition_check,
    purchase_order_transitions,
    purchase_orders,
    project_detail,
    projects,
    status_engine_statuses,
    status_engine_validate,
    supplier_detail,
    suppliers,
)

urlpatterns = [
    path("purchase-orders/", purchase_orders, name="purchase_orders"),
    path("purchase-orders/<int:po_id>", purchase_order_detail, name="purchase_order_detail"),
    path(
        "purchase-orders/<int:po_id>/events",
        purchase_order_events,
        name="purchase_order_events",
    ),
    path(
        "purchase-orders/<int:po_id>/transitions",
        purchase_order_transitions,
        name="purchase_order_transitions",
    ),
    path(
        "purchase-orders/<int:po_id>/transitions/check",
        purchase_order_transition_check,
        name="purchase_order_transition_check",
    ),
    path(
        "purchase-orders/<int:po_id>/submit",
        purchase_order_submit,
        name="purchase_order_submit",
    ),
    path(
        "purchase-orders/<int:po_id>/approve",
        purchase_order_approve,
        name="purchase_order_approve",
    ),
    path(
        "purchase-orders/<int:po_id>/reject",
        purchase_order_reject,
        name="purchase_order_reject",
    ),
    path(
        "purchase-orders/<int:po_id>/release",
        purchase_order_release,
        name="purchase_order_release",
    ),
    path(
        "purchase-orders/<int:po_id>/send",
        purchase_order_send,
        name="purchase_order_send",
    ),
    path(
        "purchase-orders/<int:po_id>/acknowledge",
        purchase_order_acknowledge,
        name="purchase_order_acknowledge",
    ),
    path(
        "purchase-orders/<int:po_id>/request-change",
        purchase_order_request_change,
        name="purchase_order_request_change",
    ),
    path(
        "purchase-orders/<int:po_id>/approve-change",
        purchase_order_approve_change,
        name="purchase_order_approve_change",
    ),
    path(
        "purchase-orders/<int:po_id>/reject-change",
        purchase_order_reject_change,
        name="purchase_order_reject_change",
    ),
    path(
        "purchase-orders/<int:po_id>/ship",
        purchase_order_ship,
        name="purchase_order_ship",
    ),
    path(
        "purchase-orders/<int:po_id>/receive",
        purchase_order_receive,
        name="purchase_order_receive",
    ),
    path(
        "purchase-orders/<int:po_id>/close",
        purchase_order_close,
        name="purchase_order_close",
    ),
    path(
        "purchase-orders/<int:po_id>/cancel",
        purchase_order_cancel,
        name="purchase_order_cancel",
    ),
    path("status-engine/statuses", status_engine_statuses, name="status_engine_statuses"),
    path("status-engine/validate", status_engine_validate, name="status_engine_validate"),
    path("suppliers/", suppliers, name="suppliers"),
    path("suppliers/<int:supplier_id>", supplier_detail, name="supplier_detail"),
    path("projects/", projects, name="projects"),
    path("projects/<int:project_id>", project_detail, name="project_detail"),
]
