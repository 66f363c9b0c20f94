# src/launchkit_backend/app/auth/exchange.py
from __future__ import annotations

import logging

import httpx

from launchkit_backend.app.core.errors import AuthError, NOT_SIGNED_IN, TOKEN_EXCHANGE_FAILED
from launchkit_backend.app.core.trace import auth_trace

logger = logging.getLogger(__name__)


class TokenExchanger:
    """
    Caller side of /api/auth-firebase-token: trades an Auth0 access token for
    a Firebase custom token.
    """

    def __init__(self, http: httpx.AsyncClient, url: str):
        self._http = http
        self._url = url

    async def exchange(self, access_token: str | None) -> str:
        if not access_token:
            raise AuthError(NOT_SIGNED_IN, "no identity to exchange")
        try:
            resp = await self._http.post(self._url, headers={"Authorization": f"Bearer {access_token}"})
            body = resp.json()
        except (httpx.HTTPError, ValueError) as ex:
            logger.warning("token exchange request failed: %s", ex.__class__.__name__)
            raise AuthError(TOKEN_EXCHANGE_FAILED, "could not reach the token exchange endpoint") from ex

        if not isinstance(body, dict) or body.get("status") != "success" or not body.get("data"):
            message = body.get("message") if isinstance(body, dict) else None
            auth_trace("token_exchange.client.failed", status=resp.status_code)
            raise AuthError(TOKEN_EXCHANGE_FAILED, message or "token exchange failed")

        auth_trace("token_exchange.client.ok")
        return body["data"]
