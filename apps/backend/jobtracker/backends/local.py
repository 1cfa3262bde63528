"""Local backend: SQLAlchemy storage, in-process auth and change feed.

Stands in for the hosted backend during development and in tests. Writes go
through the async SQLAlchemy session factory and are published on an
InProcessChangeChannel after commit, the way the hosted backend's change
feed reports them.
"""

import hashlib
import hmac
import logging
import secrets
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import NAMESPACE_URL, uuid4, uuid5

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobtracker.errors import AuthError, BackendError
from jobtracker.models import JobRow, ProfileRow
from jobtracker.models.base import Base

from .base import (
    AuthListener,
    AuthListeners,
    AuthResult,
    AuthUser,
    ChangeEvent,
    ChangeListener,
    ChangeType,
    Session,
    Unsubscribe,
)

logger = logging.getLogger(__name__)

TABLES: dict[str, type[Base]] = {
    JobRow.__tablename__: JobRow,
    ProfileRow.__tablename__: ProfileRow,
}


def _to_db(value: Any) -> Any:
    """Store datetimes as naive UTC; SQLite drops offsets."""
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _from_db(row: Base, columns: str = "*") -> dict[str, Any]:
    data = {
        key: value.replace(tzinfo=timezone.utc) if isinstance(value, datetime) and value.tzinfo is None else value
        for key, value in row.to_dict().items()
    }
    if columns != "*":
        wanted = [name.strip() for name in columns.split(",")]
        data = {name: data.get(name) for name in wanted}
    return data


class InProcessChangeChannel:
    """Change feed delivering events to subscribers in the same process."""

    def __init__(self) -> None:
        self._subscribers: dict[tuple[str, str], list[ChangeListener]] = defaultdict(list)

    def subscribe(self, table: str, owner_id: str, callback: ChangeListener) -> Unsubscribe:
        key = (table, owner_id)
        self._subscribers[key].append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers[key]:
                self._subscribers[key].remove(callback)

        return unsubscribe

    def publish(self, table: str, owner_id: str, event: ChangeType, record_id: str | None = None) -> None:
        change = ChangeEvent(table=table, owner_id=owner_id, event=event, record_id=record_id)
        for callback in list(self._subscribers.get((table, owner_id), ())):
            callback(change)


class SqlAlchemyDataStore:
    """DataStore implementation over the local ``jobs`` and ``profiles`` tables."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        changes: InProcessChangeChannel | None = None,
    ):
        self._sessions = session_factory
        self._changes = changes

    def _model(self, table: str) -> type[Base]:
        try:
            return TABLES[table]
        except KeyError:
            raise BackendError(f"Unknown table '{table}'", status_code=404)

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        """Session that commits on success and rolls back on error."""
        async with self._sessions() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise BackendError(f"Database error: {e}") from e
            except Exception:
                await session.rollback()
                raise

    def _publish(self, table: str, owner_id: str | None, event: ChangeType, record_id: str | None) -> None:
        if self._changes is not None and owner_id:
            self._changes.publish(table, owner_id, event, record_id)

    async def select(
        self,
        table: str,
        filters: dict[str, Any],
        *,
        order_by: str | None = None,
        descending: bool = False,
        columns: str = "*",
    ) -> list[dict[str, Any]]:
        model = self._model(table)
        query = select(model).filter_by(**filters)
        if order_by:
            column = getattr(model, order_by)
            query = query.order_by(column.desc() if descending else column.asc())

        async with self._transaction() as session:
            result = await session.execute(query)
            return [_from_db(row, columns) for row in result.scalars().all()]

    async def insert(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        model = self._model(table)
        values = {key: _to_db(value) for key, value in record.items()}
        values.setdefault("id", str(uuid4()))

        async with self._transaction() as session:
            row = model(**values)
            session.add(row)
            await session.flush()
            data = _from_db(row)

        self._publish(table, data.get("user_id"), "INSERT", data["id"])
        return data

    async def update(
        self, table: str, record_id: str, patch: dict[str, Any], owner_id: str
    ) -> list[dict[str, Any]]:
        model = self._model(table)

        async with self._transaction() as session:
            result = await session.execute(
                select(model).filter_by(id=record_id, user_id=owner_id)
            )
            row = result.scalar_one_or_none()
            if row is None:
                return []
            for key, value in patch.items():
                setattr(row, key, _to_db(value))
            await session.flush()
            data = _from_db(row)

        self._publish(table, owner_id, "UPDATE", record_id)
        return [data]

    async def delete(self, table: str, record_id: str, owner_id: str) -> list[dict[str, Any]]:
        model = self._model(table)

        async with self._transaction() as session:
            result = await session.execute(
                select(model).filter_by(id=record_id, user_id=owner_id)
            )
            row = result.scalar_one_or_none()
            if row is None:
                return []
            data = _from_db(row)
            await session.delete(row)

        self._publish(table, owner_id, "DELETE", record_id)
        return [data]

    async def upsert(self, table: str, record: dict[str, Any], on_conflict: str) -> dict[str, Any]:
        model = self._model(table)
        values = {key: _to_db(value) for key, value in record.items()}

        async with self._transaction() as session:
            result = await session.execute(
                select(model).filter_by(**{on_conflict: values[on_conflict]})
            )
            row = result.scalar_one_or_none()
            if row is None:
                values.setdefault("id", str(uuid4()))
                row = model(**values)
                session.add(row)
                event: ChangeType = "INSERT"
            else:
                for key, value in values.items():
                    if key != "id":
                        setattr(row, key, value)
                event = "UPDATE"
            await session.flush()
            data = _from_db(row)

        self._publish(table, data.get("user_id"), event, data["id"])
        return data


@dataclass
class _LocalAccount:
    user: AuthUser
    salt: bytes
    password_hash: bytes


def _hash_password(password: str, salt: bytes) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, 100_000)


class LocalAuthService:
    """In-memory auth service.

    User ids are derived from the email address, so a user who signs up
    again after a restart gets the same id and finds their saved jobs.
    """

    def __init__(self, session_ttl: timedelta = timedelta(hours=1)):
        self._accounts: dict[str, _LocalAccount] = {}
        self._session: Session | None = None
        self._session_ttl = session_ttl
        self._listeners = AuthListeners()

    @staticmethod
    def user_id_for(email: str) -> str:
        return str(uuid5(NAMESPACE_URL, f"mailto:{email.strip().lower()}"))

    def on_auth_state_change(self, callback: AuthListener) -> Unsubscribe:
        return self._listeners.add(callback)

    async def get_session(self) -> Session | None:
        if self._session is not None and self._session.is_expired():
            self._session = self._issue_session(self._session.user)
            await self._listeners.emit("TOKEN_REFRESHED", self._session)
        return self._session

    def _issue_session(self, user: AuthUser) -> Session:
        return Session(
            access_token=secrets.token_urlsafe(32),
            refresh_token=secrets.token_urlsafe(32),
            user=user,
            expires_at=datetime.now(timezone.utc) + self._session_ttl,
        )

    async def sign_up(self, email: str, password: str, metadata: dict[str, Any] | None = None) -> AuthResult:
        key = email.strip().lower()
        if key in self._accounts:
            raise AuthError("User already registered")

        salt = secrets.token_bytes(16)
        user = AuthUser(id=self.user_id_for(key), email=key, metadata=dict(metadata or {}))
        self._accounts[key] = _LocalAccount(user=user, salt=salt, password_hash=_hash_password(password, salt))
        logger.info(f"Local account created for {key}")

        self._session = self._issue_session(user)
        await self._listeners.emit("SIGNED_IN", self._session)
        return AuthResult(user=user, session=self._session)

    async def sign_in(self, email: str, password: str) -> Session:
        account = self._accounts.get(email.strip().lower())
        if account is None or not hmac.compare_digest(
            account.password_hash, _hash_password(password, account.salt)
        ):
            raise AuthError("Invalid login credentials")

        self._session = self._issue_session(account.user)
        await self._listeners.emit("SIGNED_IN", self._session)
        return self._session

    async def sign_out(self) -> None:
        if self._session is None:
            return
        self._session = None
        await self._listeners.emit("SIGNED_OUT", None)
