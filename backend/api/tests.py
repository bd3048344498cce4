from django.test import TestCase, override_settings
from rest_framework.test import APIClient
from unittest.mock import patch

from api import rbac
from api.authentication import Principal
from api.permissions import PurchasingPermission


class HealthEndpointTests(TestCase):
    def test_health(self) -> None:
        client = APIClient()
        response = client.get("/api/v1/health/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})


class AuthWhoAmITests(TestCase):
    def setUp(self) -> None:
        self.client = APIClient()

    @override_settings(
        AUTH_ENABLED=True,
        DEV_AUTH_ENABLED=False,
        AUTH_ISSUER="https://issuer.example",
        AUTH_AUDIENCE="po-api",
        AUTH_JWKS_URL="https://issuer.example/.well-known/jwks.json",
        AUTH_USER_ID_CLAIM="sub",
        AUTH_ROLES_CLAIM="roles",
        AUTH_USE_DB_RBAC=False,
    )
    def test_whoami_requires_auth(self) -> None:
        response = self.client.get("/api/v1/auth/whoami/")

        self.assertEqual(response.status_code, 401)

    @override_settings(
        AUTH_ENABLED=False,
        DEV_AUTH_ENABLED=True,
        DEV_AUTH_USER_ID="dev-user",
        DEV_AUTH_ROLES=["VIEWER"],
        DEV_AUTH_PERMISSIONS=[],
        DEBUG=True,
        AUTH_USE_DB_RBAC=False,
    )
    def test_whoami_unknown_role_has_no_permissions(self) -> None:
        response = self.client.get("/api/v1/auth/whoami/")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["user_id"], "dev-user")
        self.assertEqual(body["roles"], ["VIEWER"])
        self.assertEqual(body["permissions"], [])

    @override_settings(
        AUTH_ENABLED=False,
        DEV_AUTH_ENABLED=True,
        DEV_AUTH_USER_ID="dev-user",
        DEV_AUTH_ROLES=["BUYER"],
        DEV_AUTH_PERMISSIONS=[],
        DEBUG=True,
        AUTH_USE_DB_RBAC=False,
    )
    def test_whoami_lists_role_permissions(self) -> None:
        response = self.client.get("/api/v1/auth/whoami/")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertIn(rbac.PERM_PO_VIEW, body["permissions"])
        self.assertIn(rbac.PERM_PO_SUBMIT, body["permissions"])
        self.assertNotIn(rbac.PERM_PO_APPROVE, body["permissions"])

    @override_settings(
        AUTH_ENABLED=False,
        DEV_AUTH_ENABLED=True,
        DEV_AUTH_USER_ID="dev-user",
        DEV_AUTH_ROLES=["ADMIN"],
        DEV_AUTH_PERMISSIONS=[rbac.PERM_PO_VIEW],
        DEBUG=True,
        AUTH_USE_DB_RBAC=False,
    )
    def test_explicit_permissions_replace_role_map(self) -> None:
        response = self.client.get("/api/v1/auth/whoami/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["permissions"], [rbac.PERM_PO_VIEW])

    @override_settings(
        AUTH_ENABLED=True,
        DEV_AUTH_ENABLED=False,
        AUTH_ISSUER="https://issuer.example",
        AUTH_AUDIENCE="po-api",
        AUTH_JWKS_URL="https://issuer.example/.well-known/jwks.json",
        AUTH_USER_ID_CLAIM="sub",
        AUTH_USERNAME_CLAIM="preferred_username",
        AUTH_ROLES_CLAIM="roles",
        AUTH_USE_DB_RBAC=False,
    )
    @patch(
        "api.authentication._decode_token",
        return_value={"sub": "42", "preferred_username": "jdoe", "roles": "buyer, receiver"},
    )
    def test_whoami_reads_bearer_claims(self, mock_decode) -> None:
        response = self.client.get(
            "/api/v1/auth/whoami/", HTTP_AUTHORIZATION="Bearer header.payload.sig"
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["user_id"], "42")
        self.assertEqual(body["username"], "jdoe")
        self.assertEqual(body["roles"], ["buyer", "receiver"])
        self.assertIn(rbac.PERM_PO_RECEIVE, body["permissions"])
        mock_decode.assert_called_once_with("header.payload.sig")

    @override_settings(
        AUTH_ENABLED=True,
        DEV_AUTH_ENABLED=False,
        AUTH_JWKS_URL="https://issuer.example/.well-known/jwks.json",
        AUTH_ALGORITHMS=["RS256"],
        AUTH_USE_DB_RBAC=False,
    )
    @patch("api.authentication.jwt.get_unverified_header", return_value={"alg": "HS256"})
    def test_disallowed_algorithm_is_refused(self, _mock_header) -> None:
        response = self.client.get(
            "/api/v1/auth/whoami/", HTTP_AUTHORIZATION="Bearer header.payload.sig"
        )

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response["WWW-Authenticate"], "Bearer")

    @override_settings(AUTH_ENABLED=True, DEV_AUTH_ENABLED=False, AUTH_USE_DB_RBAC=False)
    def test_non_bearer_scheme_is_refused(self) -> None:
        response = self.client.get("/api/v1/auth/whoami/", HTTP_AUTHORIZATION="Basic dXNlcjpwdw==")

        self.assertEqual(response.status_code, 401)


class RbacResolutionTests(TestCase):
    @patch(
        "api.rbac._fetch_permissions_for_role_codes",
        return_value={"purchasing.purchase_order.approve"},
    )
    @patch("api.rbac._resolve_user_id", return_value=None)
    @patch("api.rbac._db_rbac_enabled", return_value=True)
    def test_db_rbac_resolves_permissions_from_claim_roles(
        self,
        _mock_db_enabled,
        _mock_user_id,
        mock_permissions_for_roles,
    ) -> None:
        request = type("Request", (), {})()
        principal = Principal(
            user_id=None,
            username="keycloak-user",
            roles=["PROCUREMENT_MANAGER"],
            permissions=[],
        )

        roles, permissions = rbac.resolve_roles_and_permissions(request, principal)

        self.assertIn("PROCUREMENT_MANAGER", roles)
        self.assertIn("purchasing.purchase_order.approve", permissions)
        self.assertEqual(mock_permissions_for_roles.call_count, 1)

    @patch("api.rbac._db_rbac_enabled", return_value=False)
    def test_dev_role_map_is_case_insensitive(self, _mock_db_enabled) -> None:
        request = type("Request", (), {})()
        principal = Principal(user_id="u1", username="u1", roles=["receiver"])

        _, permissions = rbac.resolve_roles_and_permissions(request, principal)

        self.assertEqual(
            sorted(permissions),
            sorted([rbac.PERM_PO_VIEW, rbac.PERM_PO_RECEIVE]),
        )

    def test_admin_role_holds_every_purchasing_permission(self) -> None:
        admin = rbac._permissions_for_roles(["ADMIN"])

        for role in ("BUYER", "APPROVER", "SUPPLIER", "RECEIVER"):
            with self.subTest(role=role):
                self.assertTrue(rbac._permissions_for_roles([role]) <= admin)
        self.assertIn(rbac.PERM_SUPPLIER_MANAGE, admin)
        self.assertIn(rbac.PERM_PROJECT_MANAGE, admin)


class PurchasingPermissionTests(TestCase):
    def _request(self, method: str, permissions: list[str]):
        request = type("Request", (), {})()
        request.method = method
        request.path = "/api/v1/purchasing/purchase-orders/"
        request.user = Principal(user_id="u1", username="u1", roles=[], permissions=permissions)
        return request

    def _view(self, required):
        view = type("View", (), {})()
        view.required_permission = required
        return view

    def test_method_mapping_selects_permission(self) -> None:
        view = self._view({"GET": rbac.PERM_PO_VIEW, "POST": rbac.PERM_PO_CREATE})
        permission = PurchasingPermission()

        self.assertTrue(permission.has_permission(self._request("GET", [rbac.PERM_PO_VIEW]), view))
        with self.assertLogs("po.audit", level="WARNING") as logs:
            allowed = permission.has_permission(self._request("POST", [rbac.PERM_PO_VIEW]), view)

        self.assertFalse(allowed)
        self.assertIn("action=ACCESS_DENIED", logs.output[0])
        self.assertIn("outcome=DENIED", logs.output[0])

    def test_any_of_list(self) -> None:
        view = self._view([rbac.PERM_PO_APPROVE, rbac.PERM_PO_REJECT])

        self.assertTrue(
            PurchasingPermission().has_permission(self._request("POST", [rbac.PERM_PO_REJECT]), view)
        )

    def test_missing_requirement_denies(self) -> None:
        view = self._view(None)

        self.assertFalse(
            PurchasingPermission().has_permission(self._request("GET", [rbac.PERM_PO_VIEW]), view)
        )
