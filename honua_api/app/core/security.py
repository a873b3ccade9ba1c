"""
Authentication primitives for the Honua API.

Tokens are compact HS256 JSON Web Tokens signed with ``settings.secret_key``
using the standard library ``hmac`` module; the subject claim holds the
numeric user id.  Passwords are stored as PBKDF2-HMAC-SHA256 digests in
the form ``<salt hex>$<hash hex>``.

FastAPI dependencies exposed here:

* ``get_current_user``  - 401 unless a valid bearer token is sent
* ``get_optional_user`` - same lookup, but anonymous requests get ``None``
* ``require_roles``     - 403 unless the user has one of the given roles
"""

import base64
import hashlib
import hmac
import json
import os
import time
from typing import Any, Callable, Dict, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import settings
from .db import get_connection

ROLE_SUPER_ADMIN = 1
ROLE_ADMIN = 2
ROLE_USER = 3
ADMIN_ROLES = (ROLE_SUPER_ADMIN, ROLE_ADMIN)

PBKDF2_ITERATIONS = 100_000


def _b64_url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("utf-8")


def _b64_url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def _sign(message: bytes, secret: str) -> bytes:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).digest()


def create_access_token(data: Dict[str, Any], expires_delta: Optional[int] = None) -> str:
    """Create a signed JWT for the given claims.

    Parameters
    ----------
    data : dict
        Claims to embed, typically ``{"sub": "<user id>"}``.
    expires_delta : Optional[int]
        Lifetime in seconds.  Defaults to
        ``settings.access_token_expire_minutes * 60``.

    Returns
    -------
    str
        ``header.payload.signature``, each part base64url encoded.
    """
    claims = dict(data)
    lifetime = expires_delta or settings.access_token_expire_minutes * 60
    claims["exp"] = int(time.time()) + lifetime
    header = {"alg": settings.algorithm, "typ": "JWT"}
    header_b64 = _b64_url_encode(json.dumps(header, separators=(",", ":")).encode("utf-8"))
    payload_b64 = _b64_url_encode(json.dumps(claims, separators=(",", ":")).encode("utf-8"))
    signature = _sign(f"{header_b64}.{payload_b64}".encode("utf-8"), settings.secret_key)
    return f"{header_b64}.{payload_b64}.{_b64_url_encode(signature)}"


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Verify signature and expiry of a token; return its claims or ``None``."""
    parts = token.split(".")
    if len(parts) != 3:
        return None
    header_b64, payload_b64, signature_b64 = parts
    try:
        expected = _sign(f"{header_b64}.{payload_b64}".encode("utf-8"), settings.secret_key)
        if not hmac.compare_digest(expected, _b64_url_decode(signature_b64)):
            return None
        claims = json.loads(_b64_url_decode(payload_b64).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        # binascii.Error and JSONDecodeError are both ValueError subclasses
        return None
    if claims.get("exp") is None or int(claims["exp"]) < int(time.time()):
        return None
    return claims


security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _resolve_user(token: str) -> Dict[str, Any]:
    """Map a bearer token to the user context dict used by services."""
    claims = decode_access_token(token)
    if not claims:
        raise _unauthorized("Invalid or expired token")
    try:
        user_id = int(claims.get("sub"))
    except (TypeError, ValueError):
        raise _unauthorized("Invalid or expired token")
    conn = get_connection()
    try:
        row = conn.execute(
            "SELECT id, username, role_id, disabled FROM users WHERE id = ?",
            (user_id,),
        ).fetchone()
    finally:
        conn.close()
    if not row:
        raise _unauthorized("User no longer exists")
    if row["disabled"]:
        raise _unauthorized("User account disabled")
    claims["user_id"] = row["id"]
    claims["username"] = row["username"]
    claims["role_id"] = row["role_id"]
    return claims


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Dict[str, Any]:
    """Dependency returning the authenticated user context.

    The returned dict holds the token claims plus ``user_id``,
    ``username`` and ``role_id`` looked up from the database.
    """
    if credentials is None:
        raise _unauthorized("Not authenticated")
    return _resolve_user(credentials.credentials)


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[Dict[str, Any]]:
    """Like ``get_current_user`` but anonymous requests yield ``None``.

    Used by public listings that personalise flags such as
    ``liked_by_user`` when a viewer is known.  A token that is sent but
    invalid is still rejected.
    """
    if credentials is None:
        return None
    return _resolve_user(credentials.credentials)


def is_admin(current_user: Optional[Dict[str, Any]]) -> bool:
    return bool(current_user) and current_user.get("role_id") in ADMIN_ROLES


def require_roles(*role_ids: int) -> Callable[[Dict[str, Any]], Dict[str, Any]]:
    """Dependency factory enforcing that the current user has one of ``role_ids``.

    Use as ``Depends(require_roles(1, 2))`` to restrict a route to
    super administrators and administrators.
    """

    def _role_dependency(current_user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if current_user.get("role_id") not in role_ids:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return current_user

    return _role_dependency


def hash_password(password: str) -> str:
    """Hash a password with PBKDF2-HMAC-SHA256 and a random 16 byte salt."""
    salt = os.urandom(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, PBKDF2_ITERATIONS)
    return f"{salt.hex()}${digest.hex()}"


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """Check ``plain_password`` against a stored ``salt$hash`` string."""
    if not hashed_password or "$" not in hashed_password:
        return False
    salt_hex, hash_hex = hashed_password.split("$", 1)
    try:
        salt = bytes.fromhex(salt_hex)
        stored = bytes.fromhex(hash_hex)
    except ValueError:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", plain_password.encode("utf-8"), salt, PBKDF2_ITERATIONS)
    return hmac.compare_digest(digest, stored)
