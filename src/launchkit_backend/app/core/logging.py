# src/launchkit_backend/app/core/logging.py
from __future__ import annotations
import logging
import os

# Vendor clients are chatty at INFO (one line per Auth0/Firestore request)
_QUIET = ("httpx", "httpcore", "google.auth", "urllib3", "cachecontrol")

_FORMATS = {
    "plain": "%(asctime)s.%(msecs)03d %(levelname)-8s %(name)s %(message)s",
    # no timestamp: the platform log collector adds its own
    "short": "%(levelname)s %(name)s %(message)s",
}

def _level(var: str, default: str) -> int:
    raw = (os.getenv(var, default) or default).strip().upper()
    if raw.isdigit():
        return int(raw)
    level = logging.getLevelName(raw)
    return level if isinstance(level, int) else logging.getLevelName(default)

def setup_logging() -> None:
    """
    Configure root logging once. Idempotent.
      LOG_LEVEL       root verbosity (default INFO)
      HTTP_LOG_LEVEL  vendor HTTP/SDK loggers (default WARNING)
      LOG_FORMAT      plain | short (default plain)
    """
    for name in _QUIET:
        logging.getLogger(name).setLevel(_level("HTTP_LOG_LEVEL", "WARNING"))

    root = logging.getLogger()
    root.setLevel(_level("LOG_LEVEL", "INFO"))
    if root.handlers:
        # already configured (pytest, uvicorn, etc.)
        return

    fmt = _FORMATS.get((os.getenv("LOG_FORMAT") or "plain").strip().lower(), _FORMATS["plain"])
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(fmt=fmt, datefmt="%Y-%m-%dT%H:%M:%S"))
    root.addHandler(handler)
