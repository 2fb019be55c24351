"""
Error taxonomy for the donations service.

Every error carries the HTTP status it maps to and an optional ``extra`` dict
merged into the JSON body (``{"error": message, **extra}``).
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class DonationsError(Exception):
    status: int = 500

    def __init__(self, message: str, *, status: Optional[int] = None, extra: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = int(status)
        self.extra: Dict[str, Any] = dict(extra or {})

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message}
        body.update(self.extra)
        return body


class ValidationFailed(DonationsError):
    """Bad amounts, missing fields, mismatched currencies. No side effects performed."""

    status = 422


class BadPayload(DonationsError):
    status = 400


class RateLimited(DonationsError):
    status = 429

    def __init__(self, retry_in_ms: int, message: str = "Too many requests"):
        super().__init__(message, extra={"retryInMs": int(retry_in_ms)})
        self.retry_in_ms = int(retry_in_ms)


class UpstreamFailure(DonationsError):
    """A Stripe API call failed; carries the provider's diagnostics."""

    status = 502

    def __init__(
        self,
        message: str,
        *,
        error_type: Optional[str] = None,
        code: Optional[str] = None,
        request_id: Optional[str] = None,
    ):
        extra: Dict[str, Any] = {}
        if error_type:
            extra["type"] = error_type
        if code:
            extra["code"] = code
        if request_id:
            extra["requestId"] = request_id
        super().__init__(message, extra=extra)
        self.error_type = error_type
        self.code = code
        self.request_id = request_id


class Unauthorized(DonationsError):
    status = 401


class Forbidden(DonationsError):
    status = 403


class NotFound(DonationsError):
    status = 404


class ConfigurationError(DonationsError):
    status = 500


class EventDecodeError(DonationsError):
    """A provider event payload is missing a field its kind requires."""

    status = 500


__all__ = [
    "DonationsError",
    "ValidationFailed",
    "BadPayload",
    "RateLimited",
    "UpstreamFailure",
    "Unauthorized",
    "Forbidden",
    "NotFound",
    "ConfigurationError",
    "EventDecodeError",
]
