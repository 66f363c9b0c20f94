# tests/store/test_firestore_client.py
import asyncio
import json
import re

import httpx
import jwt
import pytest

from launchkit_backend.app.core.errors import (
    AuthError,
    DB_NOT_SIGNED_IN,
    DB_REQUEST_FAILED,
    TOKEN_EXCHANGE_FAILED,
)
from launchkit_backend.app.store.firestore import FirestoreClient, IDENTITY_TOOLKIT

UID = "auth0|user-1"
SIGN_IN_URL = f"{IDENTITY_TOOLKIT}/accounts:signInWithCustomToken?key=test-api-key"
DOC_URL = re.compile(
    r"^https://firestore\.googleapis\.com/v1/projects/launchkit-test/databases/\(default\)"
    r"/documents/users/auth0%7Cuser-1(\?.*)?$",
    re.IGNORECASE,
)


def _id_token(uid=UID):
    # Firebase ID tokens carry the uid in user_id; signature is not checked client side
    return jwt.encode({"user_id": uid, "sub": uid}, "x" * 32, algorithm="HS256")


def _mock_sign_in(httpx_mock):
    httpx_mock.add_response(
        method="POST",
        url=SIGN_IN_URL,
        json={"idToken": _id_token(), "refreshToken": "rt-1", "expiresIn": "3600"},
    )


def _run(settings, scenario, signed_in=True):
    async def main():
        async with httpx.AsyncClient() as http:
            client = FirestoreClient(http, settings)
            if signed_in:
                await client.sign_in_with_custom_token("custom-token")
            return await scenario(client)
    return asyncio.run(main())


def test_custom_token_sign_in_routes_by_subject(httpx_mock, settings):
    _mock_sign_in(httpx_mock)

    async def scenario(client):
        return client.credential, await client.wait_until_ready()

    cred, ready = _run(settings, scenario)
    assert cred.uid == UID
    assert ready is cred
    body = json.loads(httpx_mock.get_request().content)
    assert body == {"token": "custom-token", "returnSecureToken": True}


def test_rejected_custom_token(httpx_mock, settings):
    httpx_mock.add_response(
        method="POST",
        url=SIGN_IN_URL,
        status_code=400,
        json={"error": {"code": 400, "message": "INVALID_CUSTOM_TOKEN"}},
    )

    async def scenario(client):
        with pytest.raises(AuthError) as ei:
            await client.sign_in_with_custom_token("bad-token")
        return ei.value, client.credential

    err, cred = _run(settings, scenario, signed_in=False)
    assert err.code == TOKEN_EXCHANGE_FAILED
    assert err.message == "INVALID_CUSTOM_TOKEN"
    assert cred is None


def test_reads_require_credential(settings):
    async def scenario(client):
        with pytest.raises(AuthError) as ei:
            await client.get_record(UID)
        return ei.value

    assert _run(settings, scenario, signed_in=False).code == DB_NOT_SIGNED_IN


def test_missing_record_reads_as_none(httpx_mock, settings):
    _mock_sign_in(httpx_mock)
    httpx_mock.add_response(method="GET", url=DOC_URL, status_code=404, json={"error": {"code": 404}})

    assert _run(settings, lambda c: c.get_record(UID)) is None
    assert httpx_mock.get_requests()[-1].headers["Authorization"].startswith("Bearer ")


def test_record_fields_are_decoded(httpx_mock, settings):
    _mock_sign_in(httpx_mock)
    httpx_mock.add_response(
        method="GET",
        url=DOC_URL,
        json={
            "name": "projects/launchkit-test/databases/(default)/documents/users/auth0|user-1",
            "fields": {
                "email": {"stringValue": "ada@example.com"},
                "stripePriceId": {"stringValue": "price_pro"},
                "stripeSubscriptionStatus": {"stringValue": "active"},
            },
        },
    )

    record = _run(settings, lambda c: c.get_record(UID))
    assert record == {
        "email": "ada@example.com",
        "stripePriceId": "price_pro",
        "stripeSubscriptionStatus": "active",
    }


def test_update_sends_mask_and_existence_precondition(httpx_mock, settings):
    _mock_sign_in(httpx_mock)
    httpx_mock.add_response(method="PATCH", url=DOC_URL, json={})

    _run(settings, lambda c: c.update_record(UID, {"name": "Ada", "company name": "Engines"}))

    req = httpx_mock.get_requests()[-1]
    assert req.url.params.get_list("updateMask.fieldPaths") == ["name", "`company name`"]
    assert req.url.params["currentDocument.exists"] == "true"
    assert json.loads(req.content)["fields"]["name"] == {"stringValue": "Ada"}


def test_empty_update_sends_nothing(httpx_mock, settings):
    _mock_sign_in(httpx_mock)

    _run(settings, lambda c: c.update_record(UID, {}))
    _run(settings, lambda c: c.create_record(UID, {}), signed_in=False)

    # only the sign-in went out; a maskless PATCH would replace the document
    assert [r.method for r in httpx_mock.get_requests()] == ["POST"]


def test_create_merges_without_precondition(httpx_mock, settings):
    _mock_sign_in(httpx_mock)
    httpx_mock.add_response(method="PATCH", url=DOC_URL, json={})

    _run(settings, lambda c: c.create_record(UID, {"email": "ada@example.com"}))

    req = httpx_mock.get_requests()[-1]
    assert req.url.params.get_list("updateMask.fieldPaths") == ["email"]
    assert "currentDocument.exists" not in req.url.params


def test_watch_refreshes_after_writes(httpx_mock, settings):
    _mock_sign_in(httpx_mock)
    httpx_mock.add_response(method="GET", url=DOC_URL, status_code=404, json={})
    httpx_mock.add_response(method="PATCH", url=DOC_URL, json={})
    httpx_mock.add_response(
        method="GET", url=DOC_URL, json={"fields": {"email": {"stringValue": "ada@example.com"}}}
    )

    async def scenario(client):
        watch = client.query_record(UID)
        seen = []
        watch.state.subscribe(lambda q: seen.append((q.status, q.data)))
        await watch.refresh()
        await client.create_record(UID, {"email": "ada@example.com"})
        return seen, client.query_record(UID) is watch

    seen, same_watch = _run(settings, scenario)
    assert same_watch
    assert seen == [
        ("loading", None),
        ("success", None),
        ("success", {"email": "ada@example.com"}),
    ]


def test_permission_denied_puts_watch_in_error(httpx_mock, settings):
    _mock_sign_in(httpx_mock)
    httpx_mock.add_response(
        method="GET",
        url=DOC_URL,
        status_code=403,
        json={"error": {"code": 403, "message": "Missing or insufficient permissions.", "status": "PERMISSION_DENIED"}},
    )

    async def scenario(client):
        return await client.query_record(UID).refresh()

    snap = _run(settings, scenario)
    assert snap.status == "error"
    assert snap.error.code == DB_REQUEST_FAILED
    assert snap.error.message == "Missing or insufficient permissions."


def test_sign_out_clears_credential(httpx_mock, settings):
    _mock_sign_in(httpx_mock)

    async def scenario(client):
        client.sign_out()
        return client.credential

    assert _run(settings, scenario) is None
