# Firebase Admin side of the credential exchange: mints custom tokens that the
# data store client trades for a Firebase session.
from __future__ import annotations

import logging
from functools import lru_cache

import firebase_admin
from firebase_admin import auth as fb_auth
from firebase_admin import credentials

from launchkit_backend.app.core.config import get_settings
from launchkit_backend.app.core.trace import auth_trace

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_firebase_app() -> firebase_admin.App:
    """
    Initialize the default Firebase app once.
    FIREBASE_SERVICE_ACCOUNT points at a service-account JSON file; without it
    Application Default Credentials are used.
    """
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    s = get_settings()
    cred = (
        credentials.Certificate(s.firebase_service_account)
        if s.firebase_service_account
        else credentials.ApplicationDefault()
    )
    app = firebase_admin.initialize_app(cred, {"projectId": s.firebase_project_id})
    logger.info("firebase admin initialized project=%s", s.firebase_project_id)
    return app


def mint_custom_token(uid: str) -> str:
    """Custom token whose uid is the Auth0 subject, so store rules can read request.auth.uid."""
    token = fb_auth.create_custom_token(uid, app=get_firebase_app())
    if isinstance(token, bytes):
        token = token.decode("ascii")
    auth_trace("firebase.custom_token.issued", uid=uid)
    return token
