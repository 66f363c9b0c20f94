# src/launchkit_backend/app/session/composer.py
"""
Session Composer: merges the Auth0 identity, the Firebase credential obtained
through the token exchange and the stored user record into one SessionUser.

State is always one of:
  None         -> loading (identity or record not resolved yet)
  False        -> signed out
  SessionUser  -> signed in, record loaded
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Dict, Optional, Set, Tuple

from launchkit_backend.app.auth.auth0 import Auth0Client
from launchkit_backend.app.auth.exchange import TokenExchanger
from launchkit_backend.app.core.errors import AuthError, NOT_NEEDED, NOT_SIGNED_IN
from launchkit_backend.app.core.trace import auth_trace
from launchkit_backend.app.services.plans import PlanCatalog
from launchkit_backend.app.session.models import (
    ExternalIdentity,
    IdentityState,
    Provider,
    SessionState,
    SessionUser,
)
from launchkit_backend.app.session.state import Listener, StateCell, Unsubscribe
from launchkit_backend.app.store.firestore import IDLE, FirestoreClient, RecordQuery, RecordWatch

logger = logging.getLogger(__name__)

# Profile fields Auth0 owns besides email; everything in update_profile data also goes to the store
PROFILE_FIELDS = ("name", "picture")

# Derived from the identity and the plan catalog; a record field never replaces them
DERIVED_FIELDS = frozenset({"uid", "providers", "email_verified", "plan_id", "plan_is_active"})


def prepare_user(identity: IdentityState, query: RecordQuery, plans: PlanCatalog) -> SessionState:
    """Pure merge of identity + record query into the session state."""
    # None (loading) and False (signed out) pass straight through
    if not identity:
        return identity

    user: Dict[str, Any] = {
        "uid": identity.subject_id,
        "email": identity.email,
        "email_verified": identity.email_verified,
        "name": identity.name,
        "picture": identity.picture,
        # One entry until account linking exists
        "providers": [identity.provider.ui_name],
    }

    if query.status != "success":
        return None
    # Record not created yet: sign-up is still finishing
    if query.data is None:
        return None

    for key, value in query.data.items():
        if key in DERIVED_FIELDS:
            logger.warning("ignoring user record field %r: derived from the identity", key)
            continue
        if key in PROFILE_FIELDS + ("email",) and value is not None and not isinstance(value, str):
            logger.warning("ignoring user record field %r: expected a string", key)
            continue
        user[key] = value

    price_id = query.data.get("stripePriceId")
    if price_id:
        user["plan_id"] = plans.get_friendly_plan_id(price_id)
    user["plan_is_active"] = plans.is_active(query.data.get("stripeSubscriptionStatus"))

    return SessionUser.model_validate(user)


class SessionComposer:
    def __init__(
        self,
        identity_client: Auth0Client,
        store: FirestoreClient,
        exchanger: TokenExchanger,
        plans: PlanCatalog,
    ):
        self._idp = identity_client
        self._store = store
        self._exchanger = exchanger
        self._plans = plans

        # Raw identity as published by this composer (not the provider's own view)
        self._identity: StateCell[IdentityState] = StateCell(None)
        self._user: StateCell[SessionState] = StateCell(None)

        self._watch: Optional[RecordWatch] = None
        self._unwatch: Optional[Unsubscribe] = None
        self._unsubscribe_idp: Optional[Unsubscribe] = None
        self._memo: Optional[Tuple[IdentityState, RecordQuery, SessionState]] = None
        self._tasks: Set[asyncio.Task] = set()
        # Latest provider change still waiting on the store credential
        self._provider_task: Optional[asyncio.Task] = None

        self._identity.subscribe(self._on_identity)

    # ------------------------
    # Observation
    # ------------------------
    @property
    def user(self) -> SessionState:
        return self._user.value

    @property
    def identity(self) -> IdentityState:
        return self._identity.value

    def subscribe(self, listener: Listener) -> Unsubscribe:
        return self._user.subscribe(listener)

    # ------------------------
    # Lifecycle
    # ------------------------
    async def start(self) -> None:
        """Register the single identity subscription and resolve the initial user."""
        if self._unsubscribe_idp is None:
            self._unsubscribe_idp = self._idp.on_change(self._on_provider_change)
        await self._idp.load()

    async def close(self) -> None:
        if self._unsubscribe_idp is not None:
            self._unsubscribe_idp()
            self._unsubscribe_idp = None
        self._detach_watch()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait (up to `timeout`) for background work triggered by the last operation."""
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self._tasks:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                return
            await asyncio.wait(set(self._tasks), timeout=remaining)

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("session background task failed", exc_info=task.exception())

    # ------------------------
    # Reactions
    # ------------------------
    def _on_provider_change(self, identity: Optional[ExternalIdentity]) -> None:
        # only the newest change may publish
        self._cancel_provider_change()
        self._provider_task = self._spawn(self._handle_provider_change(identity))

    def _cancel_provider_change(self) -> None:
        task, self._provider_task = self._provider_task, None
        if task is not None and not task.done():
            task.cancel()

    def _is_current(self, identity: Optional[ExternalIdentity]) -> bool:
        current = self._idp.current_user
        if identity is None:
            return current is None
        return current is not None and current.subject_id == identity.subject_id

    async def _handle_provider_change(self, identity: Optional[ExternalIdentity]) -> None:
        if identity is not None:
            # The token exchange in _handle_auth gives the store its credential;
            # nothing may read the record before that has happened.
            await self._store.wait_until_ready()
        if not self._is_current(identity):
            auth_trace("session.provider_change.stale")
            return
        self._identity.set(identity if identity is not None else False)

    def _on_identity(self, identity: IdentityState) -> None:
        if isinstance(identity, ExternalIdentity):
            if self._watch is None or self._watch.uid != identity.subject_id:
                self._detach_watch()
                self._watch = self._store.query_record(identity.subject_id)
                self._unwatch = self._watch.state.subscribe(self._on_query)
                self._spawn(self._watch.refresh())
        else:
            self._detach_watch()
        self._recompute()

    def _on_query(self, query: RecordQuery) -> None:
        if query.status == "error":
            logger.error("user record query failed: %s", query.error)
        self._recompute()

    def _detach_watch(self) -> None:
        if self._unwatch is not None:
            self._unwatch()
        self._unwatch = None
        self._watch = None

    def _recompute(self) -> None:
        identity = self._identity.value
        query = self._watch.state.value if self._watch is not None else IDLE
        memo = self._memo
        if memo is not None and memo[0] is identity and memo[1] is query:
            return
        user = prepare_user(identity, query, self._plans)
        self._memo = (identity, query, user)
        self._user.set(user)

    # ------------------------
    # Operations
    # ------------------------
    def _require_identity(self) -> ExternalIdentity:
        identity = self._identity.value
        if not isinstance(identity, ExternalIdentity):
            raise AuthError(NOT_SIGNED_IN, "no signed-in user")
        return identity

    async def _handle_auth(self, identity: ExternalIdentity) -> ExternalIdentity:
        try:
            # Custom Firebase token so store rules can read the Auth0 subject as auth.uid
            custom_token = await self._exchanger.exchange(self._idp.access_token)
            await self._store.sign_in_with_custom_token(custom_token)
        except Exception:
            # the identity published by the sign-in must not surface on a later credential
            self._cancel_provider_change()
            raise

        await self._store.wait_until_ready()

        # Auth0 does not say whether the user is new, so create (merge) every time
        await self._store.create_record(identity.subject_id, {"email": identity.email})

        self._identity.set(identity)
        auth_trace("session.signed_in", uid=identity.subject_id, provider=identity.provider.ui_name)
        return identity

    async def sign_up(self, email: str, password: str) -> ExternalIdentity:
        identity = await self._idp.signup(email, password)
        return await self._handle_auth(identity)

    async def sign_in(self, email: str, password: str) -> ExternalIdentity:
        identity = await self._idp.login(email, password)
        return await self._handle_auth(identity)

    def sign_in_with_provider(self, name: str, redirect_uri: str) -> Tuple[str, str]:
        """Start a social sign-in. Returns (authorize_url, state)."""
        return self._idp.popup_authorize(Provider.from_name(name), redirect_uri)

    async def complete_provider_sign_in(self, code: str, state: str) -> ExternalIdentity:
        identity = await self._idp.complete_authorize(code, state)
        return await self._handle_auth(identity)

    async def sign_out(self) -> None:
        self._cancel_provider_change()
        # Drop the store credential we set for reading/writing the record
        self._store.sign_out()
        await self._idp.logout()
        self._identity.set(False)
        auth_trace("session.signed_out")

    async def send_password_reset(self, email: str) -> None:
        await self._idp.change_password(email)

    async def confirm_password_reset(self, password: str, code: str) -> None:
        raise AuthError(
            NOT_NEEDED,
            "Auth0 handles the password reset flow for you. Use send_password_reset instead.",
        )

    async def update_email(self, email: str) -> None:
        identity = self._require_identity()
        await self._idp.update_email(email)
        self._idp.set_email(email)
        self._identity.set(identity.model_copy(update={"email": email}))

    async def update_password(self, password: str) -> None:
        self._require_identity()
        await self._idp.update_password(password)

    async def update_profile(self, data: Dict[str, Any]) -> None:
        """
        Write identity fields to Auth0, then all of `data` to the user record,
        then re-read the canonical identity. A failed record write after a
        successful Auth0 write is not rolled back.
        """
        identity = self._require_identity()

        email = data.get("email")
        if email:
            await self._idp.update_email(email)

        profile = {k: data[k] for k in PROFILE_FIELDS if data.get(k)}
        if profile:
            await self._idp.update_profile(profile)

        await self._store.update_record(identity.subject_id, dict(data))

        current = await self._idp.get_current_user()
        self._identity.set(current if current is not None else False)

    async def refresh(self) -> SessionState:
        """Re-read identity and record, e.g. after a billing webhook changed the record."""
        identity = self._require_identity()
        current = await self._idp.get_current_user()
        self._identity.set(current if current is not None else False)
        if self._watch is not None and current is not None and current.subject_id == identity.subject_id:
            await self._watch.refresh()
        return self.user
