# src/launchkit_backend/app/session/models.py
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from launchkit_backend.app.core.errors import AuthError, UNSUPPORTED_PROVIDER


class Provider(Enum):
    """Auth0 connection that authenticated the user, with the name the UI uses."""

    PASSWORD = ("auth0", "password")
    GOOGLE   = ("google-oauth2", "google")
    FACEBOOK = ("facebook", "facebook")
    TWITTER  = ("twitter", "twitter")
    GITHUB   = ("github", "github")

    def __init__(self, connection: str, ui_name: str):
        self.connection = connection
        self.ui_name = ui_name

    @classmethod
    def from_subject(cls, subject_id: str) -> "Provider":
        # Auth0 subjects look like "google-oauth2|1234"
        prefix = subject_id.split("|", 1)[0]
        for p in cls:
            if p.connection == prefix:
                return p
        raise AuthError(UNSUPPORTED_PROVIDER, f"unsupported identity provider: {prefix!r}")

    @classmethod
    def from_name(cls, name: str) -> "Provider":
        for p in cls:
            if p.ui_name == name:
                return p
        raise AuthError(UNSUPPORTED_PROVIDER, f"unsupported identity provider: {name!r}")


class ExternalIdentity(BaseModel):
    """The identity provider's view of the user. Replaced wholesale on every change."""

    model_config = ConfigDict(frozen=True)

    subject_id: str
    email: Optional[str] = None
    email_verified: bool = False
    name: Optional[str] = None
    picture: Optional[str] = None
    provider: Provider

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "ExternalIdentity":
        sub = claims.get("sub") or claims.get("user_id")
        if not sub:
            raise AuthError("auth/invalid-user", "identity provider returned a user without a subject")
        return cls(
            subject_id=sub,
            email=claims.get("email"),
            email_verified=bool(claims.get("email_verified", False)),
            name=claims.get("name"),
            picture=claims.get("picture"),
            provider=Provider.from_subject(sub),
        )


class SessionUser(BaseModel):
    """
    Merged, UI-facing user: identity fields, provider name, every field of the
    stored user record (kept as extra attributes) and the derived plan fields.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    uid: str
    email: Optional[str] = None
    email_verified: bool = False
    name: Optional[str] = None
    picture: Optional[str] = None
    providers: List[str] = Field(default_factory=list)
    plan_id: Optional[str] = None
    plan_is_active: bool = False

    def record_field(self, key: str, default: Any = None) -> Any:
        return (self.model_extra or {}).get(key, default)


# None -> loading, False -> signed out, SessionUser -> signed in
SessionState = Union[None, bool, SessionUser]
IdentityState = Union[None, bool, ExternalIdentity]
