# tests/conftest.py
from __future__ import annotations

import asyncio
import dataclasses
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# ---------- Paths & env ----------
ROOT = Path(__file__).resolve().parents[1]  # repo root

# Deterministic config for every test run; set BEFORE importing the app
os.environ.setdefault("PLANS_FILE", str(ROOT / "plans.yml"))
os.environ.setdefault("AUTH0_DOMAIN", "tenant.example.auth0.com")
os.environ.setdefault("AUTH0_CLIENT_ID", "test-client-id")
os.environ.setdefault("FIREBASE_API_KEY", "test-api-key")
os.environ.setdefault("FIREBASE_PROJECT_ID", "launchkit-test")
os.environ.setdefault("SESSION_SECRET", "test-session-secret")

from launchkit_backend.app.core.config import get_settings  # noqa: E402
from launchkit_backend.app.core.errors import AuthError, DB_REQUEST_FAILED  # noqa: E402
from launchkit_backend.app.services.plans import PlanCatalog  # noqa: E402
from launchkit_backend.app.session.composer import SessionComposer  # noqa: E402
from launchkit_backend.app.session.models import ExternalIdentity, Provider  # noqa: E402
from launchkit_backend.app.session.state import StateCell, wait_for  # noqa: E402
from launchkit_backend.app.store.firestore import RecordWatch  # noqa: E402


def pytest_configure(config: pytest.Config) -> None:
    print("\n=== Environment Summary ===")
    print(f"AUTH0_DOMAIN={os.getenv('AUTH0_DOMAIN')}")
    print(f"FIREBASE_PROJECT_ID={os.getenv('FIREBASE_PROJECT_ID')}")
    print(f"AUTH_TRACE={os.getenv('AUTH_TRACE')}")
    print(f"LOG_LEVEL={os.getenv('LOG_LEVEL')}")
    print("===========================\n")


def make_identity(sub: str = "auth0|user-1", email: str = "ada@example.com", **kw: Any) -> ExternalIdentity:
    return ExternalIdentity(
        subject_id=sub,
        email=email,
        email_verified=kw.pop("email_verified", True),
        name=kw.pop("name", "Ada"),
        picture=kw.pop("picture", None),
        provider=Provider.from_subject(sub),
    )


# ---------- Fakes for the composer's collaborators ----------
class FakeIdentityProvider:
    """Stands in for Auth0Client: same surface, no network, every call logged."""

    def __init__(self, log: List[str], identity: Optional[ExternalIdentity] = None):
        self.log = log
        self.identity = identity or make_identity()
        self.access_token: Optional[str] = None
        self.fail: Dict[str, AuthError] = {}
        self.profile_writes: List[Dict[str, Any]] = []
        self._current: StateCell = StateCell(None)

    def on_change(self, callback):
        def _relay(value):
            if value is None:
                return
            callback(value or None)
        return self._current.subscribe(_relay)

    @property
    def current_user(self):
        return self._current.value or None

    def _check(self, op: str) -> None:
        self.log.append(f"idp.{op}")
        if op in self.fail:
            raise self.fail[op]

    async def load(self) -> None:
        self.log.append("idp.load")
        self._current.set(self.identity if self.access_token else False)

    async def _signed_in(self) -> ExternalIdentity:
        self.access_token = "auth0-access-token"
        self._current.set(self.identity)
        return self.identity

    async def signup(self, email: str, password: str) -> ExternalIdentity:
        self._check("signup")
        return await self._signed_in()

    async def login(self, email: str, password: str) -> ExternalIdentity:
        self._check("login")
        return await self._signed_in()

    def popup_authorize(self, provider: Provider, redirect_uri: str):
        self.log.append(f"idp.popup_authorize:{provider.connection}")
        return f"https://auth.example/authorize?connection={provider.connection}", "state-1"

    async def complete_authorize(self, code: str, state: str) -> ExternalIdentity:
        self._check("complete_authorize")
        return await self._signed_in()

    async def logout(self) -> None:
        self.log.append("idp.logout")
        self.access_token = None
        self._current.set(False)

    async def change_password(self, email: str) -> None:
        self._check("change_password")

    async def update_email(self, email: str) -> None:
        self._check("update_email")
        self.identity = self.identity.model_copy(update={"email": email})

    async def update_password(self, password: str) -> None:
        self._check("update_password")

    async def update_profile(self, fields: Dict[str, Any]) -> None:
        self._check("update_profile")
        self.profile_writes.append(dict(fields))
        self.identity = self.identity.model_copy(update=fields)

    async def get_current_user(self) -> Optional[ExternalIdentity]:
        self.log.append("idp.get_current_user")
        if not self.access_token:
            self._current.set(False)
            return None
        self._current.set(self.identity)
        return self.identity

    def set_email(self, email: str) -> None:
        if self.current_user is not None:
            self._current.set(self.current_user.model_copy(update={"email": email}))


class FakeStore:
    """Stands in for FirestoreClient: in-memory records, real RecordWatch objects."""

    def __init__(self, log: List[str]):
        self.log = log
        self.records: Dict[str, Dict[str, Any]] = {}
        self.skip_create = False
        self.fail_reads = False
        self.fail_updates = False
        self._auth: StateCell = StateCell(None)
        self._watches: Dict[str, RecordWatch] = {}

    @property
    def credential(self):
        return self._auth.value

    async def sign_in_with_custom_token(self, token: str):
        self.log.append("store.sign_in_with_custom_token")
        self._auth.set(token)
        return token

    def sign_out(self) -> None:
        self.log.append("store.sign_out")
        self._auth.set(None)
        self._watches.clear()

    async def wait_until_ready(self):
        self.log.append("store.wait_until_ready")
        return await wait_for(self._auth, lambda cred: cred is not None)

    async def get_record(self, uid: str):
        if self.fail_reads:
            raise AuthError(DB_REQUEST_FAILED, "permission denied")
        rec = self.records.get(uid)
        return dict(rec) if rec is not None else None

    async def create_record(self, uid: str, fields: Dict[str, Any]) -> None:
        self.log.append("store.create_record")
        if not self.skip_create:
            self.records.setdefault(uid, {}).update(fields)
        await self._notify(uid)

    async def update_record(self, uid: str, fields: Dict[str, Any]) -> None:
        self.log.append("store.update_record")
        if self.fail_updates or uid not in self.records:
            raise AuthError(DB_REQUEST_FAILED, "no document to update")
        self.records[uid].update(fields)
        await self._notify(uid)

    def query_record(self, uid: str) -> RecordWatch:
        watch = self._watches.get(uid)
        if watch is None:
            watch = self._watches[uid] = RecordWatch(self, uid)
        return watch

    async def _notify(self, uid: str) -> None:
        if uid in self._watches:
            await self._watches[uid].refresh()


class FakeExchanger:
    def __init__(self, log: List[str]):
        self.log = log
        self.error: Optional[AuthError] = None

    async def exchange(self, access_token: Optional[str]) -> str:
        self.log.append("exchange")
        if self.error is not None:
            raise self.error
        return f"custom-token:{access_token}"


@dataclasses.dataclass
class ComposerKit:
    composer: SessionComposer
    idp: FakeIdentityProvider
    store: FakeStore
    exchanger: FakeExchanger
    log: List[str]


# ---------- Fixtures ----------
@pytest.fixture
def plans() -> PlanCatalog:
    return PlanCatalog({"basic": "price_basic", "pro": "price_pro"})


@pytest.fixture
def kit_factory(plans):
    """Build a fresh composer + fakes; call it once per scenario."""
    def build(identity: Optional[ExternalIdentity] = None) -> ComposerKit:
        log: List[str] = []
        idp = FakeIdentityProvider(log, identity)
        store = FakeStore(log)
        exchanger = FakeExchanger(log)
        composer = SessionComposer(idp, store, exchanger, plans)
        return ComposerKit(composer, idp, store, exchanger, log)
    return build


@pytest.fixture
def kit(kit_factory) -> ComposerKit:
    return kit_factory()


@pytest.fixture
def settings():
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture
def run():
    """Run a coroutine to completion on a fresh event loop."""
    def _run(coro):
        return asyncio.run(coro)
    return _run
