# donations/auth.py
# ─────────────────────────────────────────────────────────────────────────────
# Admin bearer auth: static API tokens or a PyJWT-verified admin claim
# ─────────────────────────────────────────────────────────────────────────────
from __future__ import annotations

import hmac
import logging
from functools import wraps
from typing import Any, Dict, Optional, Set

import jwt
from flask import current_app, g, request

from donations.errors import Forbidden, Unauthorized

log = logging.getLogger(__name__)

ADMIN_ROLES = {"admin", "donations:admin"}


def _cfg(key: str, default: Any = None) -> Any:
    return current_app.config.get(key, default)


def _admin_tokens() -> Set[str]:
    """Static admin tokens from config (CSV)."""
    raw = str(_cfg("ADMIN_API_TOKENS", "") or "")
    return {t.strip() for t in raw.split(",") if t.strip()}


def _bearer_token() -> Optional[str]:
    h = request.headers.get("Authorization", "")
    if not h.lower().startswith("bearer "):
        return None
    return h.split(" ", 1)[1].strip() or None


def _roles_from_claims(claims: Dict[str, Any]) -> Set[str]:
    roles: Set[str] = set()
    if isinstance(claims.get("role"), str):
        roles.add(claims["role"])
    if isinstance(claims.get("roles"), (list, tuple)):
        roles.update(map(str, claims["roles"]))
    if isinstance(claims.get("scope"), str):
        roles.update(claims["scope"].split())
    return roles


def _is_static_token(tok: str) -> bool:
    return any(hmac.compare_digest(tok, known) for known in _admin_tokens())


def _decode_jwt(tok: str) -> Dict[str, Any]:
    secret = str(_cfg("ADMIN_JWT_SECRET", "") or "")
    if not secret:
        raise Unauthorized("Unauthorized")

    audience = _cfg("ADMIN_JWT_AUDIENCE") or None
    try:
        return jwt.decode(
            tok,
            key=secret,
            algorithms=[str(_cfg("ADMIN_JWT_ALG", "HS256") or "HS256")],
            audience=audience,
            options={"verify_aud": bool(audience)},
        )
    except jwt.PyJWTError as e:
        log.info("admin auth: jwt rejected (%s)", type(e).__name__)
        raise Unauthorized("Unauthorized") from e


def authenticate_admin() -> str:
    """
    Resolve the admin subject for the current request.

    Missing or invalid credentials raise Unauthorized (401); a valid JWT
    without an admin role raises Forbidden (403).
    """
    tok = _bearer_token()
    if not tok:
        raise Unauthorized("Unauthorized")

    if _is_static_token(tok):
        return f"apikey:{tok[-4:]}"

    claims = _decode_jwt(tok)
    if not (_roles_from_claims(claims) & ADMIN_ROLES):
        raise Forbidden("Forbidden")
    return str(claims.get("sub") or "jwt")


def require_admin(fn):
    """
    Decorator for admin-only endpoints.
    Example:
        @bp.post("/donations_admin_cancel_subscription")
        @require_admin
        def cancel(): ...
    """

    @wraps(fn)
    def wrapped(*args, **kwargs):
        g.admin_subject = authenticate_admin()
        return fn(*args, **kwargs)

    return wrapped
