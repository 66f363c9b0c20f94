# src/launchkit_backend/app/api/routes/auth.py
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field

from launchkit_backend.app.session.guard import Decision
from launchkit_backend.app.session.models import SessionState
from launchkit_backend.app.session.registry import BrowserSession, get_session

router = APIRouter(tags=["auth"])

# How long a request waits for the record read that follows a sign-in
SETTLE_TIMEOUT_SEC = 5.0

AFTER_SIGNIN_PATH = "/dashboard"


class Credentials(BaseModel):
    email: str
    password: str = Field(min_length=1)


class EmailBody(BaseModel):
    email: str


class PasswordBody(BaseModel):
    password: str = Field(min_length=1)


class ConfirmResetBody(BaseModel):
    password: str
    code: str


def user_payload(user: SessionState) -> Dict[str, Any]:
    if user is None:
        return {"state": Decision.LOADING.value, "user": None}
    if user is False:
        return {"state": "signed_out", "user": False}
    return {"state": "signed_in", "user": user.model_dump(mode="json")}


async def _settled(session: BrowserSession) -> Dict[str, Any]:
    await session.composer.drain(timeout=SETTLE_TIMEOUT_SEC)
    return {"status": "success", **user_payload(session.composer.user)}


# ------------------------
# Session state
# ------------------------
@router.get("/auth/session")
async def current_session(session: BrowserSession = Depends(get_session)):
    """
    Current session user plus a one-shot redirect hint: "redirect" is set
    exactly once after the session becomes signed out.
    """
    return {
        **user_payload(session.composer.user),
        "redirect": session.guard.pop_redirect(),
    }


@router.post("/auth/refresh")
async def refresh(session: BrowserSession = Depends(get_session)):
    await session.composer.refresh()
    return await _settled(session)


# ------------------------
# Sign-up / sign-in / sign-out
# ------------------------
@router.post("/auth/signup")
async def signup(body: Credentials, session: BrowserSession = Depends(get_session)):
    await session.composer.sign_up(body.email, body.password)
    return await _settled(session)


@router.post("/auth/signin")
async def signin(body: Credentials, session: BrowserSession = Depends(get_session)):
    await session.composer.sign_in(body.email, body.password)
    return await _settled(session)


@router.get("/auth/provider/{name}")
async def signin_with_provider(name: str, request: Request, session: BrowserSession = Depends(get_session)):
    """Redirect to Auth0's authorize endpoint for a social connection (google, github, ...)."""
    settings = request.app.state.settings
    url, _state = session.composer.sign_in_with_provider(name, settings.provider_callback_url)
    return RedirectResponse(url, status_code=302)


@router.get("/auth0-callback")
async def auth0_callback(code: str = "", state: str = "", session: BrowserSession = Depends(get_session)):
    await session.composer.complete_provider_sign_in(code, state)
    await session.composer.drain(timeout=SETTLE_TIMEOUT_SEC)
    return RedirectResponse(AFTER_SIGNIN_PATH, status_code=302)


@router.post("/auth/signout")
async def signout(session: BrowserSession = Depends(get_session)):
    await session.composer.sign_out()
    return {"status": "success", **user_payload(session.composer.user)}


# ------------------------
# Account maintenance
# ------------------------
@router.post("/auth/password-reset")
async def send_password_reset(body: EmailBody, session: BrowserSession = Depends(get_session)):
    await session.composer.send_password_reset(body.email)
    return {"status": "success"}


@router.post("/auth/password-reset/confirm")
async def confirm_password_reset(body: ConfirmResetBody, session: BrowserSession = Depends(get_session)):
    await session.composer.confirm_password_reset(body.password, body.code)
    return {"status": "success"}


@router.post("/auth/email")
async def update_email(body: EmailBody, session: BrowserSession = Depends(get_session)):
    await session.composer.update_email(body.email)
    return await _settled(session)


@router.post("/auth/password")
async def update_password(body: PasswordBody, session: BrowserSession = Depends(get_session)):
    await session.composer.update_password(body.password)
    return {"status": "success"}


@router.patch("/auth/profile")
async def update_profile(data: Dict[str, Any], session: BrowserSession = Depends(get_session)):
    """Forms send any mix of email/name/picture and app fields; all of it lands in the user record."""
    await session.composer.update_profile(data)
    return await _settled(session)
