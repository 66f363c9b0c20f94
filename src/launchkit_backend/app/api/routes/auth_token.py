# src/launchkit_backend/app/api/routes/auth_token.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Header, HTTPException
from fastapi.responses import JSONResponse

from launchkit_backend.app.auth.verify import bearer_token, get_verifier
from launchkit_backend.app.core.trace import auth_trace
from launchkit_backend.app.services.firebase import mint_custom_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["auth"])

GENERIC_ERROR = "Something went wrong acquiring a Firebase token"


@router.post("/auth-firebase-token")
def auth_firebase_token(authorization: Optional[str] = Header(None)):
    """
    Exchange the caller's Auth0 access token for a Firebase custom token scoped
    to the same subject id.

    Always answers with {"status": "success", "data": token} or
    {"status": "error", "message": ...}; upstream detail is logged, never returned.
    """
    try:
        claims = get_verifier().verify(bearer_token(authorization))
    except HTTPException as ex:
        auth_trace("token_exchange.unauthorized", code=ex.status_code)
        return JSONResponse(
            status_code=ex.status_code,
            content={"status": "error", "message": "Unauthorized"},
        )

    try:
        token = mint_custom_token(claims["sub"])
    except Exception:
        logger.exception("auth-firebase-token error sub=%s", claims.get("sub"))
        return {"status": "error", "message": GENERIC_ERROR}

    auth_trace("token_exchange.ok", uid=claims["sub"])
    return {"status": "success", "data": token}
