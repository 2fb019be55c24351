from __future__ import annotations

import hashlib
import re
from typing import Any, Dict, Optional, cast

from flask import Request, jsonify, request

from donations.errors import BadPayload

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def normalize_email(raw: Any) -> Optional[str]:
    """Trimmed, lower-cased email, or None when it does not look like one."""
    if not isinstance(raw, str):
        return None
    s = raw.strip().lower()
    if not s or len(s) > 320 or not _EMAIL_RE.match(s):
        return None
    return s


def client_ip(req: Optional[Request] = None) -> str:
    req = req or request
    forwarded = (req.headers.get("X-Forwarded-For") or "").split(",")[0].strip()
    if forwarded:
        return forwarded
    real = (req.headers.get("X-Real-IP") or "").strip()
    if real:
        return real
    return req.remote_addr or "unknown"


def request_payload(invalid: Optional[str] = "Invalid payload") -> Dict[str, Any]:
    """
    The JSON object body as a dict. A non-empty body that does not parse raises
    BadPayload(invalid); with invalid=None it reads as an empty object.
    """
    data = request.get_json(force=True, silent=True)
    if data is None and invalid and request.get_data().strip():
        raise BadPayload(invalid)
    if isinstance(data, dict):
        return cast(Dict[str, Any], data)
    return {}


def json_response(payload: Dict[str, Any], status: int = 200):
    resp = jsonify(payload)
    resp.status_code = int(status)
    resp.headers.setdefault("Cache-Control", "no-store, no-cache, must-revalidate, max-age=0")
    resp.headers.setdefault("Pragma", "no-cache")
    resp.headers.setdefault("Expires", "0")
    return resp


def json_error(message: str, status: int, extra: Optional[Dict[str, Any]] = None):
    body: Dict[str, Any] = {"error": message}
    if extra:
        body.update(extra)
    return json_response(body, status)
