from rest_framework.permissions import BasePermission

from api.rbac import resolve_roles_and_permissions
from purchasing.audit import AuditAction, AuditOutcome, audit_log


def _required_permission(request, view):
    required = getattr(view, "required_permission", None)
    if required is None:
        view_cls = getattr(view, "view_class", None) or getattr(view, "cls", None)
        if view_cls is not None:
            required = getattr(view_cls, "required_permission", None)
    if isinstance(required, dict):
        required = required.get(request.method) or required.get("*")
    return required


class PurchasingPermission(BasePermission):
    """Permission class for purchasing endpoints.

    Checks the ``required_permission`` attribute on the view function against
    the resolved RBAC permissions. Supports method-specific mappings via:
    ``required_permission = {"GET": "...view", "POST": "...create"}``
    and any-of lists via ``required_permission = ["...a", "...b"]``.
    """

    message = "Forbidden."

    def has_permission(self, request, view) -> bool:
        required = _required_permission(request, view)
        if not required:
            return False

        user = request.user
        if not getattr(user, "is_authenticated", False):
            return False

        _, permissions = resolve_roles_and_permissions(request, user)
        if isinstance(required, (list, set, tuple)):
            allowed = any(perm in permissions for perm in required)
        else:
            allowed = required in permissions

        if not allowed:
            audit_log(
                AuditAction.ACCESS_DENIED,
                user_id=getattr(user, "user_id", None),
                target_entity="endpoint",
                target_id=request.path,
                outcome=AuditOutcome.DENIED,
                details={"method": request.method, "required": required},
            )
        return allowed
