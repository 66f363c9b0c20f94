# src/launchkit_backend/app/session/deps.py
from __future__ import annotations

from fastapi import Depends

from launchkit_backend.app.session.guard import Decision, SessionLoading, SignInRequired
from launchkit_backend.app.session.models import SessionUser
from launchkit_backend.app.session.registry import BrowserSession, get_session


async def require_user(session: BrowserSession = Depends(get_session)) -> SessionUser:
    """
    Route dependency for protected views:
      loading    -> SessionLoading (placeholder page)
      signed out -> SignInRequired (redirect to the sign-in route)
      signed in  -> the SessionUser
    """
    decision = session.guard.decide()
    if decision is Decision.LOADING:
        raise SessionLoading()
    if decision is Decision.REDIRECT:
        # delivered by this response, so the browser must not get it again
        session.guard.pop_redirect()
        raise SignInRequired(session.guard.signin_path)
    return session.composer.user
