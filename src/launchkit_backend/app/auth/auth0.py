# src/launchkit_backend/app/auth/auth0.py
from __future__ import annotations

import base64
import hashlib
import logging
import secrets
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import urlencode, quote

import httpx

from launchkit_backend.app.core.config import Settings
from launchkit_backend.app.core.errors import (
    AuthError,
    INVALID_STATE,
    NOT_SIGNED_IN,
    from_auth0_response,
    from_transport,
)
from launchkit_backend.app.core.trace import auth_trace
from launchkit_backend.app.session.models import ExternalIdentity, IdentityState, Provider
from launchkit_backend.app.session.state import StateCell, Unsubscribe

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[Optional[ExternalIdentity]], None]


# ------------------------
# Helpers
# ------------------------
def _pkce_params() -> Dict[str, str]:
    """Generate PKCE S256 verifier/challenge and CSRF state."""
    code_verifier  = secrets.token_urlsafe(64)  # ~86 chars
    digest         = hashlib.sha256(code_verifier.encode("ascii")).digest()
    code_challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    state          = secrets.token_urlsafe(24)
    return {
        "code_verifier": code_verifier,
        "code_challenge": code_challenge,
        "state": state,
    }


class Auth0Client:
    """
    Identity Provider Client for one browser session.

    Holds that session's Auth0 tokens and publishes the current external user
    through on_change(): an ExternalIdentity when signed in, None when not.
    Nothing is published until load() (or a sign-in) has resolved the user once.
    """

    def __init__(self, http: httpx.AsyncClient, settings: Settings):
        self._http = http
        self._settings = settings
        self._tokens: Optional[Dict[str, Any]] = None
        # None -> not loaded yet, False -> signed out
        self._current: StateCell[IdentityState] = StateCell(None)
        # PKCE params of provider sign-ins still waiting on their callback, keyed by state
        self._pending: Dict[str, Dict[str, str]] = {}

    # ------------------------
    # Change notifications
    # ------------------------
    def on_change(self, callback: ChangeCallback) -> Unsubscribe:
        def _relay(value: IdentityState) -> None:
            if value is None:
                return
            callback(value or None)

        return self._current.subscribe(_relay)

    @property
    def current_user(self) -> Optional[ExternalIdentity]:
        return self._current.value or None

    @property
    def access_token(self) -> Optional[str]:
        return (self._tokens or {}).get("access_token")

    def _publish(self, identity: Optional[ExternalIdentity]) -> None:
        self._current.set(identity if identity is not None else False)

    # ------------------------
    # Transport
    # ------------------------
    def _url(self, path: str) -> str:
        return f"https://{self._settings.auth0_domain}{path}"

    def _require_token(self) -> str:
        token = self.access_token
        if not token:
            raise AuthError(NOT_SIGNED_IN, "no signed-in user")
        return token

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        authed: bool = False,
    ) -> httpx.Response:
        headers = {"Accept": "application/json"}
        if authed:
            headers["Authorization"] = f"Bearer {self._require_token()}"
        try:
            resp = await self._http.request(method, self._url(path), json=json, data=data, headers=headers)
        except httpx.HTTPError as ex:
            auth_trace("auth0.request.transport_error", path=path, err=ex.__class__.__name__)
            raise from_transport(ex) from ex
        if resp.status_code >= 400:
            err = from_auth0_response(resp)
            auth_trace("auth0.request.failed", path=path, status=resp.status_code, code=err.code)
            raise err
        return resp

    async def _fetch_userinfo(self) -> ExternalIdentity:
        resp = await self._request("GET", "/userinfo", authed=True)
        return ExternalIdentity.from_claims(resp.json())

    async def _token_grant(self, form: Dict[str, Any]) -> ExternalIdentity:
        form = {"client_id": self._settings.auth0_client_id, **form}
        if self._settings.auth0_audience:
            form.setdefault("audience", self._settings.auth0_audience)
        resp = await self._request("POST", "/oauth/token", data=form)
        self._tokens = resp.json()
        identity = await self._fetch_userinfo()
        auth_trace("auth0.signed_in", uid=identity.subject_id, provider=identity.provider.ui_name)
        self._publish(identity)
        return identity

    # ------------------------
    # Sign-in / sign-up / sign-out
    # ------------------------
    async def signup(self, email: str, password: str) -> ExternalIdentity:
        """Create a database-connection user, then sign them in."""
        await self._request(
            "POST",
            "/dbconnections/signup",
            json={
                "client_id": self._settings.auth0_client_id,
                "email": email,
                "password": password,
                "connection": self._settings.auth0_connection,
            },
        )
        auth_trace("auth0.signup.created", email=email)
        return await self.login(email, password)

    async def login(self, email: str, password: str) -> ExternalIdentity:
        return await self._token_grant({
            "grant_type": "http://auth0.com/oauth/grant-type/password-realm",
            "username": email,
            "password": password,
            "realm": self._settings.auth0_connection,
            "scope": self._settings.auth0_scope,
        })

    def popup_authorize(self, provider: Provider, redirect_uri: str) -> Tuple[str, str]:
        """
        Start an authorization-code + PKCE sign-in through a social connection.
        Returns (authorize_url, state); finish with complete_authorize().
        """
        pkce = _pkce_params()
        self._pending[pkce["state"]] = {"code_verifier": pkce["code_verifier"], "redirect_uri": redirect_uri}
        params = {
            "client_id": self._settings.auth0_client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": self._settings.auth0_scope,
            "connection": provider.connection,
            "code_challenge": pkce["code_challenge"],
            "code_challenge_method": "S256",
            "state": pkce["state"],
        }
        if self._settings.auth0_audience:
            params["audience"] = self._settings.auth0_audience
        auth_trace("auth0.authorize.start", connection=provider.connection, redirect=redirect_uri)
        return f"{self._url('/authorize')}?{urlencode(params)}", pkce["state"]

    async def complete_authorize(self, code: str, state: str) -> ExternalIdentity:
        pending = self._pending.pop(state, None)
        if not code or pending is None:
            auth_trace("auth0.authorize.state_mismatch")
            raise AuthError(INVALID_STATE, "sign-in request expired or was not started here")
        return await self._token_grant({
            "grant_type": "authorization_code",
            "code": code,
            "code_verifier": pending["code_verifier"],
            "redirect_uri": pending["redirect_uri"],
        })

    async def logout(self) -> None:
        self._tokens = None
        self._pending.clear()
        auth_trace("auth0.logout")
        self._publish(None)

    # ------------------------
    # Account maintenance
    # ------------------------
    async def change_password(self, email: str) -> None:
        """Ask Auth0 to email a password-reset link."""
        await self._request(
            "POST",
            "/dbconnections/change_password",
            json={
                "client_id": self._settings.auth0_client_id,
                "email": email,
                "connection": self._settings.auth0_connection,
            },
        )

    async def _patch_user(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        user = self.current_user
        if user is None:
            raise AuthError(NOT_SIGNED_IN, "no signed-in user")
        path = f"/api/v2/users/{quote(user.subject_id, safe='')}"
        resp = await self._request("PATCH", path, json=fields, authed=True)
        return resp.json()

    async def update_email(self, email: str) -> None:
        await self._patch_user({"email": email, "connection": self._settings.auth0_connection})

    async def update_password(self, password: str) -> None:
        await self._patch_user({"password": password, "connection": self._settings.auth0_connection})

    async def update_profile(self, fields: Dict[str, Any]) -> None:
        await self._patch_user(fields)

    async def get_current_user(self) -> Optional[ExternalIdentity]:
        """Re-read the canonical user from Auth0 and publish it."""
        if not self.access_token:
            self._publish(None)
            return None
        identity = await self._fetch_userinfo()
        self._publish(identity)
        return identity

    def set_email(self, email: str) -> None:
        """Reflect a successful email change locally without another round trip."""
        user = self.current_user
        if user is not None:
            self._publish(user.model_copy(update={"email": email}))

    async def load(self) -> None:
        """Resolve the initial user so the first change notification fires."""
        if not self.access_token:
            self._publish(None)
            return
        try:
            await self.get_current_user()
        except AuthError as ex:
            # stale or revoked tokens: treat the session as signed out
            logger.warning("auth0 session restore failed: %s", ex.code)
            self._tokens = None
            self._publish(None)
