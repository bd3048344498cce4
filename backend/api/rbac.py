from __future__ import annotations

from typing import Iterable, Tuple

from django.conf import settings
from django.db import DatabaseError, connection
import logging

from api.authentication import Principal

logger = logging.getLogger(__name__)

PERM_PO_VIEW = "purchasing.purchase_order.view"
PERM_PO_CREATE = "purchasing.purchase_order.create"
PERM_PO_EDIT = "purchasing.purchase_order.edit"
PERM_PO_SUBMIT = "purchasing.purchase_order.submit"
PERM_PO_APPROVE = "purchasing.purchase_order.approve"
PERM_PO_REJECT = "purchasing.purchase_order.reject"
PERM_PO_RELEASE = "purchasing.purchase_order.release"
PERM_PO_ACKNOWLEDGE = "purchasing.purchase_order.acknowledge"
PERM_PO_CHANGE = "purchasing.purchase_order.change"
PERM_PO_SHIP = "purchasing.purchase_order.ship"
PERM_PO_RECEIVE = "purchasing.purchase_order.receive"
PERM_PO_CANCEL = "purchasing.purchase_order.cancel"

PERM_SUPPLIER_VIEW = "purchasing.supplier.view"
PERM_SUPPLIER_MANAGE = "purchasing.supplier.manage"

PERM_PROJECT_VIEW = "purchasing.project.view"
PERM_PROJECT_MANAGE = "purchasing.project.manage"

_DEV_ROLE_PERMISSION_MAP = {
    "BUYER": {
        PERM_PO_VIEW,
        PERM_PO_CREATE,
        PERM_PO_EDIT,
        PERM_PO_SUBMIT,
        PERM_PO_RELEASE,
        PERM_PO_CHANGE,
        PERM_PO_CANCEL,
        PERM_SUPPLIER_VIEW,
        PERM_PROJECT_VIEW,
        PERM_PROJECT_MANAGE,
    },
    "APPROVER": {
        PERM_PO_VIEW,
        PERM_PO_APPROVE,
        PERM_PO_REJECT,
        PERM_PO_CHANGE,
        PERM_SUPPLIER_VIEW,
        PERM_PROJECT_VIEW,
    },
    "SUPPLIER": {
        PERM_PO_VIEW,
        PERM_PO_ACKNOWLEDGE,
        PERM_PO_CHANGE,
        PERM_PO_SHIP,
    },
    "RECEIVER": {
        PERM_PO_VIEW,
        PERM_PO_RECEIVE,
    },
}
_DEV_ROLE_PERMISSION_MAP["ADMIN"] = set().union(*_DEV_ROLE_PERMISSION_MAP.values()) | {
    PERM_SUPPLIER_MANAGE,
}


def _dedupe_preserve_order(items: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(items))


def resolve_roles_and_permissions(
    request, principal: Principal
) -> Tuple[list[str], list[str]]:
    if hasattr(request, "_rbac_cache"):
        cached = request._rbac_cache
        return cached["roles"], cached["permissions"]

    roles: list[str] = list(principal.roles or [])
    permissions: list[str] = list(getattr(principal, "permissions", []) or [])
    db_error = False

    if _db_rbac_enabled():
        try:
            user_id = _resolve_user_id(principal)
            if user_id is not None:
                roles = _dedupe_preserve_order(list(roles) + _fetch_roles(user_id))
                permissions = _dedupe_preserve_order(
                    list(permissions) + list(_fetch_permissions(user_id))
                )
            if roles:
                permissions = _dedupe_preserve_order(
                    list(permissions) + list(_fetch_permissions_for_role_codes(roles))
                )
        except DatabaseError as exc:
            db_error = True
            logger.warning("RBAC DB lookup failed: %s", exc)

    if not permissions and not db_error:
        permissions = _dedupe_preserve_order(
            list(permissions) + list(_permissions_for_roles(roles))
        )

    request._rbac_cache = {"roles": roles, "permissions": permissions}
    return roles, permissions


def _db_rbac_enabled() -> bool:
    if not settings.AUTH_USE_DB_RBAC:
        return False
    return settings.DATABASES["default"]["ENGINE"].endswith("postgresql")


def _resolve_user_id(principal: Principal) -> int | None:
    if principal.user_id:
        try:
            return int(principal.user_id)
        except ValueError:
            pass

    if not principal.username:
        return None

    with connection.cursor() as cursor:
        cursor.execute(
            'SELECT user_id FROM "user" WHERE username = %s OR email = %s LIMIT 1',
            [principal.username, principal.username],
        )
        row = cursor.fetchone()
        return int(row[0]) if row else None


def _fetch_roles(user_id: int) -> list[str]:
    with connection.cursor() as cursor:
        cursor.execute(
            """
            SELECT DISTINCT r.code
            FROM user_role ur
            JOIN role r ON r.id = ur.role_id
            WHERE ur.user_id = %s
            """,
            [user_id],
        )
        return [row[0] for row in cursor.fetchall()]


def _fetch_permissions(user_id: int) -> set[str]:
    with connection.cursor() as cursor:
        cursor.execute(
            """
            SELECT DISTINCT p.resource, p.action
            FROM user_role ur
            JOIN role_permission rp ON rp.role_id = ur.role_id
            JOIN permission p ON p.perm_id = rp.perm_id
            WHERE ur.user_id = %s
            """,
            [user_id],
        )
        return {f"{row[0]}.{row[1]}" for row in cursor.fetchall()}


def _fetch_permissions_for_role_codes(role_codes: Iterable[str]) -> set[str]:
    normalized_codes = sorted(
        {str(code).strip().upper() for code in role_codes if str(code).strip()}
    )
    if not normalized_codes:
        return set()

    placeholders = ", ".join(["%s"] * len(normalized_codes))
    with connection.cursor() as cursor:
        cursor.execute(
            f"""
            SELECT DISTINCT p.resource, p.action
            FROM role r
            JOIN role_permission rp ON rp.role_id = r.id
            JOIN permission p ON p.perm_id = rp.perm_id
            WHERE UPPER(r.code) IN ({placeholders})
            """,
            normalized_codes,
        )
        return {f"{row[0]}.{row[1]}" for row in cursor.fetchall()}


def _permissions_for_roles(roles: Iterable[str]) -> set[str]:
    permissions: set[str] = set()
    for role in roles:
        permissions |= _DEV_ROLE_PERMISSION_MAP.get(role.upper(), set())
    return permissions
