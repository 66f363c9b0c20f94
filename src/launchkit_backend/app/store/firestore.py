# src/launchkit_backend/app/store/firestore.py
"""
Data Store Client: Firebase Auth + Firestore over their REST APIs.

The client signs in with the custom token minted by /api/auth-firebase-token,
so every document read and write runs under the store's security rules as the
Auth0 subject (request.auth.uid == users/{uid}).
"""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx
import jwt

from launchkit_backend.app.core.config import Settings
from launchkit_backend.app.core.errors import (
    AuthError,
    DB_NOT_SIGNED_IN,
    TOKEN_EXCHANGE_FAILED,
    from_firebase_response,
    from_transport,
)
from launchkit_backend.app.core.trace import auth_trace
from launchkit_backend.app.session.state import StateCell, wait_for
from launchkit_backend.app.store.values import decode_fields, encode_fields

logger = logging.getLogger(__name__)

IDENTITY_TOOLKIT = "https://identitytoolkit.googleapis.com/v1"
SECURE_TOKEN     = "https://securetoken.googleapis.com/v1"
FIRESTORE        = "https://firestore.googleapis.com/v1"

USERS = "users"

# Refresh the Firebase ID token this many seconds before it expires
_REFRESH_MARGIN = 60

_SIMPLE_FIELD = re.compile(r"^[A-Za-z_][A-Za-z_0-9]*$")


@dataclass(frozen=True)
class StoreCredential:
    uid: str
    id_token: str
    refresh_token: str
    expires_at: float


@dataclass(frozen=True)
class RecordQuery:
    """One observed state of a record read: status in {idle, loading, error, success}."""

    status: str = "idle"
    data: Optional[Dict[str, Any]] = None
    error: Optional[AuthError] = None


IDLE = RecordQuery()


def _field_path(key: str) -> str:
    if _SIMPLE_FIELD.match(key):
        return key
    return "`" + key.replace("\\", "\\\\").replace("`", "\\`") + "`"


class RecordWatch:
    """
    Live view of one user record. Refreshed on demand and after every write
    made through the owning client.
    """

    def __init__(self, client: "FirestoreClient", uid: str):
        self._client = client
        self.uid = uid
        self.state: StateCell[RecordQuery] = StateCell(IDLE)

    async def refresh(self) -> RecordQuery:
        current = self.state.value
        if current.status != "success":
            self.state.set(RecordQuery(status="loading"))
        try:
            data = await self._client.get_record(self.uid)
        except AuthError as ex:
            snap = RecordQuery(status="error", error=ex)
        else:
            snap = RecordQuery(status="success", data=data)
        self.state.set(snap)
        return snap


class FirestoreClient:
    def __init__(self, http: httpx.AsyncClient, settings: Settings):
        self._http = http
        self._api_key = settings.firebase_api_key
        self._project = settings.firebase_project_id
        self._auth: StateCell[Optional[StoreCredential]] = StateCell(None)
        self._watches: Dict[str, RecordWatch] = {}

    # ------------------------
    # Firebase Auth
    # ------------------------
    @property
    def credential(self) -> Optional[StoreCredential]:
        return self._auth.value

    async def _identity_post(self, url: str, payload: Dict[str, Any], code: str) -> Dict[str, Any]:
        try:
            resp = await self._http.post(url, params={"key": self._api_key}, json=payload)
        except httpx.HTTPError as ex:
            raise from_transport(ex, code) from ex
        if resp.status_code >= 400:
            raise from_firebase_response(resp, code)
        return resp.json()

    def _credential_from(self, id_token: str, refresh_token: str, expires_in: Any) -> StoreCredential:
        # Only routing info is read here; Firebase verifies the token on every request
        claims = jwt.decode(id_token, options={"verify_signature": False})
        uid = claims.get("user_id") or claims.get("sub")
        return StoreCredential(
            uid=uid,
            id_token=id_token,
            refresh_token=refresh_token,
            expires_at=time.time() + int(expires_in or 3600),
        )

    async def sign_in_with_custom_token(self, custom_token: str) -> StoreCredential:
        body = await self._identity_post(
            f"{IDENTITY_TOOLKIT}/accounts:signInWithCustomToken",
            {"token": custom_token, "returnSecureToken": True},
            TOKEN_EXCHANGE_FAILED,
        )
        cred = self._credential_from(body["idToken"], body["refreshToken"], body.get("expiresIn"))
        auth_trace("firestore.signed_in", uid=cred.uid)
        self._auth.set(cred)
        return cred

    async def _refresh_credential(self, cred: StoreCredential) -> StoreCredential:
        body = await self._identity_post(
            f"{SECURE_TOKEN}/token",
            {"grant_type": "refresh_token", "refresh_token": cred.refresh_token},
            DB_NOT_SIGNED_IN,
        )
        fresh = self._credential_from(body["id_token"], body["refresh_token"], body.get("expires_in"))
        self._auth.set(fresh)
        return fresh

    def sign_out(self) -> None:
        self._auth.set(None)
        self._watches.clear()
        auth_trace("firestore.signed_out")

    async def wait_until_ready(self) -> StoreCredential:
        """Block until a store credential is active (resolves immediately if one already is)."""
        return await wait_for(self._auth, lambda cred: cred is not None)

    async def _id_token(self) -> str:
        cred = self._auth.value
        if cred is None:
            raise AuthError(DB_NOT_SIGNED_IN, "data store credential is not active")
        if cred.expires_at - _REFRESH_MARGIN <= time.time():
            cred = await self._refresh_credential(cred)
        return cred.id_token

    # ------------------------
    # Documents
    # ------------------------
    def _doc_url(self, uid: str) -> str:
        return (
            f"{FIRESTORE}/projects/{self._project}/databases/(default)/documents/"
            f"{USERS}/{quote(uid, safe='')}"
        )

    async def _request(self, method: str, uid: str, **kw: Any) -> httpx.Response:
        headers = {"Authorization": f"Bearer {await self._id_token()}"}
        try:
            return await self._http.request(method, self._doc_url(uid), headers=headers, **kw)
        except httpx.HTTPError as ex:
            raise from_transport(ex, "db/network-error") from ex

    async def get_record(self, uid: str) -> Optional[Dict[str, Any]]:
        """The stored record, or None when it does not exist (yet)."""
        resp = await self._request("GET", uid)
        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            raise from_firebase_response(resp)
        return decode_fields(resp.json().get("fields") or {})

    async def _patch(self, uid: str, fields: Dict[str, Any], must_exist: bool) -> None:
        # A PATCH without an update mask replaces the whole document
        if not fields:
            return
        params: List[Tuple[str, str]] = [("updateMask.fieldPaths", _field_path(k)) for k in fields]
        if must_exist:
            params.append(("currentDocument.exists", "true"))
        resp = await self._request("PATCH", uid, params=params, json={"fields": encode_fields(fields)})
        if resp.status_code >= 400:
            raise from_firebase_response(resp)
        await self._notify(uid)

    async def create_record(self, uid: str, fields: Dict[str, Any]) -> None:
        """Create the record, merging into an existing one (only the given fields are written)."""
        await self._patch(uid, fields, must_exist=False)
        auth_trace("firestore.record.merged", uid=uid, fields=",".join(sorted(fields)))

    async def update_record(self, uid: str, fields: Dict[str, Any]) -> None:
        """Update fields of an existing record; fails if the record does not exist."""
        await self._patch(uid, fields, must_exist=True)
        auth_trace("firestore.record.updated", uid=uid, fields=",".join(sorted(fields)))

    # ------------------------
    # Live queries
    # ------------------------
    def query_record(self, uid: str) -> RecordWatch:
        watch = self._watches.get(uid)
        if watch is None:
            watch = self._watches[uid] = RecordWatch(self, uid)
        return watch

    async def _notify(self, uid: str) -> None:
        watch = self._watches.get(uid)
        if watch is not None:
            await watch.refresh()
