# src/launchkit_backend/app/core/trace.py
from __future__ import annotations
import logging
import os
import time
from typing import Any, Mapping

from .logging import setup_logging

# Ensure logging is configured before we emit anything
setup_logging()

_log = logging.getLogger("launchkit.auth")

def _enabled() -> bool:
    # read per call so tests can flip AUTH_TRACE with monkeypatch
    return (os.getenv("AUTH_TRACE", "")).lower() in ("1", "true", "yes", "on")

def _mask(value: Any) -> Any:
    """Keep subject ids readable but never print whole emails."""
    if isinstance(value, str) and "@" in value:
        local, _, domain = value.partition("@")
        return f"{local[:2]}***@{domain}"
    return value

def _fmt_kv(d: Mapping[str, Any]) -> str:
    return " ".join(f"{k}={_mask(d[k])}" for k in d)

def auth_trace(event: str, **kv: Any) -> None:
    """
    Emit a single-line structured log ONLY when AUTH_TRACE=true.
    Example:
      [auth] session.sign_in.published ts=... uid=auth0|abc provider=password
    """
    if not _enabled():
        return
    kv2 = {"ts": int(time.time()), **kv}
    _log.info("[auth] %s %s", event, _fmt_kv(kv2))
