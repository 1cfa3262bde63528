"""Interfaces for the external collaborators: data store, auth, change feed.

Backend bindings implement these protocols and are injected into the stores,
so tests can substitute fakes and no module holds a global client.
"""

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal, Protocol

logger = logging.getLogger(__name__)

JOBS_TABLE = "jobs"
PROFILES_TABLE = "profiles"

AuthEvent = Literal["SIGNED_IN", "SIGNED_OUT", "TOKEN_REFRESHED", "USER_UPDATED"]
ChangeType = Literal["INSERT", "UPDATE", "DELETE"]


@dataclass(frozen=True)
class AuthUser:
    """Identity of an authenticated user."""

    id: str
    email: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)
    email_confirmed: bool = True


@dataclass(frozen=True)
class Session:
    """An authenticated session as issued by the auth service."""

    access_token: str
    user: AuthUser
    refresh_token: str | None = None
    expires_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or datetime.now(timezone.utc)) >= self.expires_at


@dataclass(frozen=True)
class AuthResult:
    """Outcome of a sign-up; ``session`` is None until the email is confirmed."""

    user: AuthUser
    session: Session | None = None


@dataclass(frozen=True)
class ChangeEvent:
    """A row owned by ``owner_id`` changed remotely."""

    table: str
    owner_id: str
    event: ChangeType
    record_id: str | None = None


AuthListener = Callable[[AuthEvent, Session | None], Awaitable[None] | None]
ChangeListener = Callable[[ChangeEvent], None]
Unsubscribe = Callable[[], None]


class DataStore(Protocol):
    """Remote relational store scoped by owner."""

    async def select(
        self,
        table: str,
        filters: dict[str, Any],
        *,
        order_by: str | None = None,
        descending: bool = False,
        columns: str = "*",
    ) -> list[dict[str, Any]]: ...

    async def insert(self, table: str, record: dict[str, Any]) -> dict[str, Any]: ...

    async def update(
        self, table: str, record_id: str, patch: dict[str, Any], owner_id: str
    ) -> list[dict[str, Any]]: ...

    async def delete(self, table: str, record_id: str, owner_id: str) -> list[dict[str, Any]]: ...

    async def upsert(
        self, table: str, record: dict[str, Any], on_conflict: str
    ) -> dict[str, Any]: ...


class AuthService(Protocol):
    """Hosted authentication and session management."""

    async def get_session(self) -> Session | None: ...

    async def sign_in(self, email: str, password: str) -> Session: ...

    async def sign_up(self, email: str, password: str, metadata: dict[str, Any] | None = None) -> AuthResult: ...

    async def sign_out(self) -> None: ...

    def on_auth_state_change(self, callback: AuthListener) -> Unsubscribe: ...


class ChangeChannel(Protocol):
    """Change notifications for one owner's rows in a table."""

    def subscribe(self, table: str, owner_id: str, callback: ChangeListener) -> Unsubscribe: ...


class AuthListeners:
    """Registry of auth state listeners shared by the auth bindings."""

    def __init__(self) -> None:
        self._listeners: list[AuthListener] = []

    def add(self, callback: AuthListener) -> Unsubscribe:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    async def emit(self, event: AuthEvent, session: Session | None) -> None:
        """Deliver ``event`` to every listener in registration order."""
        logger.info(f"Auth state changed: {event} {session.user.email if session else ''}")
        for listener in list(self._listeners):
            result = listener(event, session)
            if inspect.isawaitable(result):
                await result
