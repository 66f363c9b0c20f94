# src/launchkit_backend/app/session/guard.py
from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

from fastapi import Request
from fastapi.responses import HTMLResponse, RedirectResponse

from launchkit_backend.app.core.trace import auth_trace
from launchkit_backend.app.session.models import SessionState

if TYPE_CHECKING:
    from launchkit_backend.app.session.composer import SessionComposer

_UNSET = object()

LOADING_PAGE = """<!doctype html>
<html><head><meta charset="utf-8"><meta http-equiv="refresh" content="1"><title>Loading</title></head>
<body><div class="page-loader" aria-busy="true">Loading&hellip;</div></body></html>
"""


class Decision(str, Enum):
    LOADING  = "loading"
    REDIRECT = "redirect"
    RENDER   = "render"


def decide(user: SessionState) -> Decision:
    """Only an exact False redirects; None is still loading."""
    if user is None:
        return Decision.LOADING
    if user is False:
        return Decision.REDIRECT
    return Decision.RENDER


class RouteGuard:
    """
    Gates protected views on the composer's state and fires the redirect side
    effect once per transition into the signed-out state.

    `redirect` is the navigation hook; by default the target is queued and
    handed out once through pop_redirect() (the session endpoint relays it to
    the browser).
    """

    def __init__(
        self,
        composer: "SessionComposer",
        redirect: Optional[Callable[[str], None]] = None,
        signin_path: str = "/auth/signin",
    ):
        self._composer = composer
        self.signin_path = signin_path
        self._redirect = redirect or self._queue_redirect
        self._pending: Optional[str] = None
        self._last: object = _UNSET
        self._unsubscribe = composer.subscribe(self._on_change)
        self._on_change(composer.user)

    def _on_change(self, user: SessionState) -> None:
        if user is False and self._last is not False:
            auth_trace("guard.redirect", to=self.signin_path)
            self._redirect(self.signin_path)
        self._last = user

    def _queue_redirect(self, path: str) -> None:
        # one pending hint; repeated sign-outs before a pop collapse into it
        self._pending = path

    def pop_redirect(self) -> Optional[str]:
        path, self._pending = self._pending, None
        return path

    def decide(self) -> Decision:
        return decide(self._composer.user)

    def close(self) -> None:
        self._unsubscribe()


# ------------------------
# FastAPI integration
# ------------------------
class SessionLoading(Exception):
    """Protected view requested while the session is still resolving."""


class SignInRequired(Exception):
    def __init__(self, location: str):
        super().__init__(location)
        self.location = location


async def session_loading_handler(_: Request, __: SessionLoading) -> HTMLResponse:
    return HTMLResponse(LOADING_PAGE, status_code=202, headers={"Retry-After": "1"})


async def sign_in_required_handler(_: Request, exc: SignInRequired) -> RedirectResponse:
    return RedirectResponse(exc.location, status_code=307)
