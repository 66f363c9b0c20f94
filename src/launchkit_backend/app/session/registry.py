# src/launchkit_backend/app/session/registry.py
from __future__ import annotations

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from fastapi import Request
from itsdangerous import BadSignature, URLSafeSerializer

from launchkit_backend.app.core.trace import auth_trace
from launchkit_backend.app.session.composer import SessionComposer
from launchkit_backend.app.session.guard import RouteGuard

logger = logging.getLogger(__name__)

ComposerFactory = Callable[[], SessionComposer]


@dataclass
class BrowserSession:
    """Server-side state of one browser: its composer and the guard watching it."""

    session_id: str
    composer: SessionComposer
    guard: RouteGuard
    last_seen: float = field(default_factory=time.monotonic)


class SessionRegistry:
    """
    Owns one SessionComposer per browser, addressed by a signed session-id cookie.
    Created once at application start; routes receive it through Depends.
    """

    def __init__(
        self,
        factory: ComposerFactory,
        secret: str,
        *,
        signin_path: str = "/auth/signin",
        max_idle: float = 3600.0,
    ):
        self._factory = factory
        self._serializer = URLSafeSerializer(secret, salt="session")
        self._signin_path = signin_path
        self._max_idle = max_idle
        self._sessions: Dict[str, BrowserSession] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    # ------------------------
    # Cookie helpers
    # ------------------------
    def sign(self, session_id: str) -> str:
        return self._serializer.dumps({"sid": session_id})

    def unsign(self, cookie: Optional[str]) -> Optional[str]:
        if not cookie:
            return None
        try:
            payload = self._serializer.loads(cookie)
        except BadSignature:
            auth_trace("session.cookie.bad_signature")
            return None
        sid = payload.get("sid") if isinstance(payload, dict) else None
        return sid if isinstance(sid, str) else None

    # ------------------------
    # Lookup
    # ------------------------
    async def get(self, session_id: Optional[str]) -> BrowserSession:
        """Existing session for `session_id`, or a fresh, started one."""
        async with self._lock:
            await self._prune()
            if session_id and session_id in self._sessions:
                session = self._sessions[session_id]
                session.last_seen = time.monotonic()
                return session

            sid = secrets.token_urlsafe(32)
            composer = self._factory()
            guard = RouteGuard(composer, signin_path=self._signin_path)
            session = BrowserSession(session_id=sid, composer=composer, guard=guard)
            self._sessions[sid] = session

        await composer.start()
        # let the initial change notification settle so a new browser starts signed out, not loading
        await composer.drain(timeout=1.0)
        auth_trace("session.created", sid=sid[:8], active=len(self._sessions))
        return session

    async def _prune(self) -> None:
        now = time.monotonic()
        stale = [sid for sid, s in self._sessions.items() if now - s.last_seen > self._max_idle]
        for sid in stale:
            session = self._sessions.pop(sid)
            await self._close(session)
        if stale:
            logger.info("pruned %d idle sessions", len(stale))

    async def _close(self, session: BrowserSession) -> None:
        session.guard.close()
        await session.composer.close()

    async def close_all(self) -> None:
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            await self._close(session)


# ------------------------
# FastAPI plumbing
# ------------------------
def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


async def get_session(request: Request) -> BrowserSession:
    """
    Dependency: the caller's BrowserSession. A new session is flagged on
    request.state so the cookie middleware can attach its cookie.
    """
    registry = get_registry(request)
    cookie_name = request.app.state.settings.session_cookie_name
    sid = registry.unsign(request.cookies.get(cookie_name))
    session = await registry.get(sid)
    if session.session_id != sid:
        request.state.new_session_cookie = registry.sign(session.session_id)
    return session

