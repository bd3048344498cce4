"""
Request authentication for the purchasing API.

Two sources of identity:

* ``DEV_AUTH_ENABLED``: every request runs as the principal configured in
  settings (``DEV_AUTH_USER_ID``, ``DEV_AUTH_ROLES``, ``DEV_AUTH_PERMISSIONS``).
* ``AUTH_ENABLED``: an ``Authorization: Bearer <jwt>`` header whose signature is
  checked against the issuer's JWKS. The user id, username and roles are read
  from the claims named by the ``AUTH_*_CLAIM`` settings.

With neither enabled the request stays anonymous and every purchasing
endpoint refuses it.
"""
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Optional, Tuple

import jwt
from django.conf import settings
from jwt import InvalidTokenError, PyJWKClient, PyJWKClientError
from rest_framework.authentication import BaseAuthentication, get_authorization_header
from rest_framework.exceptions import AuthenticationFailed

logger = logging.getLogger(__name__)


@dataclass
class Principal:
    user_id: Optional[str]
    username: Optional[str]
    roles: list[str]
    permissions: list[str] = field(default_factory=list)
    is_authenticated: bool = True


@lru_cache(maxsize=4)
def _signing_keys(jwks_url: str) -> PyJWKClient:
    return PyJWKClient(jwks_url)


def _bearer_token(request) -> str:
    parts = get_authorization_header(request).split()
    if len(parts) != 2 or parts[0].lower() != b"bearer":
        raise AuthenticationFailed("Missing bearer token.")
    try:
        return parts[1].decode("ascii")
    except UnicodeDecodeError:
        raise AuthenticationFailed("Invalid bearer token.")


def _decode_token(token: str) -> dict:
    """Verify signature, algorithm, issuer and audience; return the claims."""
    if not settings.AUTH_JWKS_URL:
        raise AuthenticationFailed("JWKS URL is not configured.")
    try:
        algorithm = jwt.get_unverified_header(token).get("alg")
        if algorithm not in settings.AUTH_ALGORITHMS:
            raise AuthenticationFailed("JWT alg is not allowed.")
        signing_key = _signing_keys(settings.AUTH_JWKS_URL).get_signing_key_from_jwt(token)
        claims = jwt.decode(
            token,
            signing_key.key,
            algorithms=[algorithm],
            issuer=settings.AUTH_ISSUER or None,
            audience=settings.AUTH_AUDIENCE or None,
            options={
                "verify_aud": bool(settings.AUTH_AUDIENCE),
                "verify_iss": bool(settings.AUTH_ISSUER),
            },
        )
    except (PyJWKClientError, InvalidTokenError, ValueError) as exc:
        logger.warning("JWT verification failed: %s", exc)
        raise AuthenticationFailed("Invalid bearer token.") from exc
    if not isinstance(claims, dict):
        raise AuthenticationFailed("Invalid JWT payload.")
    return claims


def _claim(claims: dict, name: str) -> Optional[str]:
    if not name:
        return None
    value = claims.get(name)
    return str(value) if value is not None else None


def _role_list(value: Any) -> list[str]:
    """Roles arrive as a list, a comma-separated string or a single value."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(role) for role in value]
    return [role.strip() for role in str(value).split(",") if role.strip()]


def _principal_from_claims(claims: dict) -> Principal:
    roles = []
    if settings.AUTH_ROLES_CLAIM:
        roles = _role_list(claims.get(settings.AUTH_ROLES_CLAIM))
    return Principal(
        user_id=_claim(claims, settings.AUTH_USER_ID_CLAIM),
        username=_claim(claims, settings.AUTH_USERNAME_CLAIM),
        roles=roles,
    )


def _dev_principal() -> Principal:
    user_id = str(settings.DEV_AUTH_USER_ID)
    return Principal(
        user_id=user_id,
        username=user_id,
        roles=list(settings.DEV_AUTH_ROLES),
        permissions=list(getattr(settings, "DEV_AUTH_PERMISSIONS", [])),
    )


class PurchasingAuthentication(BaseAuthentication):
    def authenticate(self, request) -> Optional[Tuple[Principal, None]]:
        if settings.DEV_AUTH_ENABLED:
            return _dev_principal(), None
        if not settings.AUTH_ENABLED:
            return None
        return _principal_from_claims(_decode_token(_bearer_token(request))), None

    def authenticate_header(self, request) -> str:
        return "Bearer"
