# src/launchkit_backend/app/core/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

# This file lives at: src/launchkit_backend/app/core/config.py
# plans.yml sits at the project root (four levels up)
ROOT_DIR = Path(__file__).resolve().parents[4]


def _flag(var: str, default: str = "") -> bool:
    return (os.getenv(var, default) or "").strip().lower() in ("1", "true", "yes", "on")


def _str(var: str, default: str = "") -> str:
    return (os.getenv(var, default) or "").strip()


@dataclass(frozen=True)
class Settings:
    # ---- Auth0 (identity provider) ----
    auth0_domain: str
    auth0_client_id: str
    auth0_audience: str
    auth0_connection: str
    auth0_scope: str

    # ---- Firebase (data store) ----
    firebase_api_key: str
    firebase_project_id: str
    firebase_service_account: Optional[str]

    # ---- App / routing ----
    base_url: str
    token_exchange_url: str
    signin_path: str
    session_secret: str
    session_cookie_name: str
    secure_cookies: bool
    plans_file: Path
    http_timeout: float

    @property
    def auth0_issuer(self) -> str:
        return f"https://{self.auth0_domain}/"

    @property
    def auth0_jwks_uri(self) -> str:
        return f"https://{self.auth0_domain}/.well-known/jwks.json"

    @property
    def provider_callback_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/auth0-callback"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Build settings from the environment. Cached; call get_settings.cache_clear()
    after changing env vars (tests do this through a fixture).
    """
    base_url = _str("BASE_URL", "http://localhost:8000")
    domain = _str("AUTH0_DOMAIN", "example.us.auth0.com")
    return Settings(
        auth0_domain=domain,
        auth0_client_id=_str("AUTH0_CLIENT_ID"),
        auth0_audience=_str("AUTH0_AUDIENCE", f"https://{domain}/api/v2/"),
        auth0_connection=_str("AUTH0_CONNECTION", "Username-Password-Authentication"),
        auth0_scope=_str("AUTH0_SCOPE", "openid profile email read:current_user update:current_user_metadata"),
        firebase_api_key=_str("FIREBASE_API_KEY"),
        firebase_project_id=_str("FIREBASE_PROJECT_ID", "launchkit-dev"),
        firebase_service_account=_str("FIREBASE_SERVICE_ACCOUNT") or None,
        base_url=base_url,
        token_exchange_url=_str("TOKEN_EXCHANGE_URL", f"{base_url.rstrip('/')}/api/auth-firebase-token"),
        signin_path=_str("SIGNIN_PATH", "/auth/signin"),
        session_secret=_str("SESSION_SECRET", "dev-session-secret"),  # use a strong secret in real env
        session_cookie_name=_str("SESSION_COOKIE_NAME", "lk_session"),
        secure_cookies=_flag("SECURE_COOKIES"),
        plans_file=Path(_str("PLANS_FILE") or (ROOT_DIR / "plans.yml")),
        http_timeout=float(_str("HTTP_TIMEOUT_SEC", "10") or 10),
    )
