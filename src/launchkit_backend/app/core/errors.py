# src/launchkit_backend/app/core/errors.py
from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

# Stable codes surfaced to callers. Upstream Auth0 codes pass through as-is.
NETWORK_ERROR         = "auth/network-error"
REQUEST_FAILED        = "auth/request-failed"
TOKEN_EXCHANGE_FAILED = "auth/token-exchange-failed"
UNSUPPORTED_PROVIDER  = "auth/unsupported-provider"
INVALID_STATE         = "auth/invalid-state"
NOT_SIGNED_IN         = "auth/not-signed-in"
DB_REQUEST_FAILED     = "db/request-failed"
DB_NOT_SIGNED_IN      = "db/not-signed-in"
NOT_NEEDED            = "not_needed"


class AuthError(Exception):
    """Failed outcome of a session operation: a stable code plus a message."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"status": "error", "code": self.code, "message": self.message}

    def __repr__(self) -> str:
        return f"AuthError(code={self.code!r}, message={self.message!r})"


def _upstream_body(resp: httpx.Response) -> Dict[str, Any]:
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def from_auth0_response(resp: httpx.Response) -> AuthError:
    """
    Auth0 reports failures in a few shapes depending on the endpoint:
      /oauth/token           -> {"error": "...", "error_description": "..."}
      /dbconnections/signup  -> {"code": "...", "description": "..."}  or {"name": ..., "message": ...}
      /api/v2                -> {"errorCode": "...", "message": "..."}
    """
    body = _upstream_body(resp)
    code = body.get("error") or body.get("code") or body.get("errorCode") or body.get("name")
    message = (
        body.get("error_description")
        or body.get("description")
        or body.get("message")
        or f"identity provider returned HTTP {resp.status_code}"
    )
    if not isinstance(message, str):
        message = str(message)
    return AuthError(str(code) if code else REQUEST_FAILED, message)


def from_firebase_response(resp: httpx.Response, default_code: str = DB_REQUEST_FAILED) -> AuthError:
    """Google APIs wrap failures as {"error": {"code": 403, "message": "...", "status": "..."}}."""
    body = _upstream_body(resp)
    err = body.get("error")
    if isinstance(err, dict):
        return AuthError(default_code, str(err.get("message") or err.get("status") or resp.status_code))
    return AuthError(default_code, f"data store returned HTTP {resp.status_code}")


def from_transport(ex: httpx.HTTPError, code: Optional[str] = None) -> AuthError:
    return AuthError(code or NETWORK_ERROR, f"network error: {ex.__class__.__name__}")
