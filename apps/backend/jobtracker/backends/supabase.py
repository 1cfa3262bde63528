"""Hosted backend: Supabase REST, auth and change feed over httpx.

The client is constructed explicitly with the project URL and public key
and passed to whoever needs it; nothing here is a module-level singleton.

- Data: PostgREST at ``/rest/v1/<table>``
- Auth: GoTrue at ``/auth/v1``
- Changes: a polling feed that compares (id, updated_at) fingerprints of
  the owner's rows between ticks
"""

import asyncio
import logging
from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
from pydantic_core import to_jsonable_python

from jobtracker.errors import AuthError, BackendError

from .base import (
    AuthListener,
    AuthListeners,
    AuthResult,
    AuthUser,
    ChangeEvent,
    ChangeListener,
    Session,
    Unsubscribe,
)

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
    """Pull the most useful message out of a Supabase error response."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        for key in ("message", "msg", "error_description", "error"):
            if body.get(key):
                return str(body[key])
    return f"HTTP {response.status_code}"


class SupabaseClient:
    """Async client for a Supabase project.

    Exposes the three collaborator bindings as ``auth``, ``data`` and
    ``realtime``. Requests carry the signed-in user's access token once
    there is one, and the public key before that.
    """

    def __init__(
        self,
        url: str,
        key: str,
        *,
        timeout: float = 10.0,
        poll_interval: float = 5.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize the Supabase client.

        Args:
            url: Project URL, e.g. https://xyz.supabase.co
            key: Public (anon) API key
            timeout: Seconds allowed per request
            poll_interval: Seconds between change feed polls
            http_client: Optional preconfigured httpx client (tests pass
                one backed by a mock transport)
        """
        self.url = url.rstrip("/")
        self.key = key
        self.timeout = timeout
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self.access_token: str | None = None

        self.auth = SupabaseAuth(self)
        self.data = SupabaseDataStore(self)
        self.realtime = SupabasePollingChannel(self, poll_interval)

    def headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {
            "apikey": self.key,
            "Authorization": f"Bearer {self.access_token or self.key}",
        }
        if extra:
            headers.update(extra)
        return headers

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Send one request and return the decoded JSON body (None if empty).

        Raises:
            BackendError: On timeout, transport failure or an HTTP error status
        """
        try:
            async with asyncio.timeout(self.timeout):
                response = await self._http.request(
                    method,
                    f"{self.url}{path}",
                    params=params,
                    json=to_jsonable_python(json) if json is not None else None,
                    headers=self.headers(headers),
                )
        except asyncio.TimeoutError:
            raise BackendError(f"Supabase request timed out after {self.timeout}s")
        except httpx.HTTPError as e:
            raise BackendError(f"Supabase request failed: {e}") from e

        if response.status_code >= 400:
            raise BackendError(_error_message(response), status_code=response.status_code)
        if not response.content:
            return None
        return response.json()

    async def health_check(self) -> bool:
        """Check if the REST endpoint answers.

        Returns:
            True if Supabase is reachable, False otherwise
        """
        try:
            await self.request("GET", "/rest/v1/")
            return True
        except BackendError:
            return False

    async def aclose(self) -> None:
        await self.realtime.aclose()
        await self._http.aclose()


class SupabaseDataStore:
    """DataStore over PostgREST."""

    def __init__(self, client: SupabaseClient):
        self._client = client

    @staticmethod
    def _eq(filters: dict[str, Any]) -> dict[str, str]:
        return {column: f"eq.{value}" for column, value in filters.items()}

    async def select(
        self,
        table: str,
        filters: dict[str, Any],
        *,
        order_by: str | None = None,
        descending: bool = False,
        columns: str = "*",
    ) -> list[dict[str, Any]]:
        params = {"select": columns, **self._eq(filters)}
        if order_by:
            params["order"] = f"{order_by}.{'desc' if descending else 'asc'}"
        rows = await self._client.request("GET", f"/rest/v1/{table}", params=params)
        return rows or []

    async def insert(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        rows = await self._client.request(
            "POST",
            f"/rest/v1/{table}",
            json=[record],
            headers={"Prefer": "return=representation"},
        )
        if not rows:
            raise BackendError(f"Insert into {table} returned no row")
        return rows[0]

    async def update(
        self, table: str, record_id: str, patch: dict[str, Any], owner_id: str
    ) -> list[dict[str, Any]]:
        rows = await self._client.request(
            "PATCH",
            f"/rest/v1/{table}",
            params=self._eq({"id": record_id, "user_id": owner_id}),
            json=patch,
            headers={"Prefer": "return=representation"},
        )
        return rows or []

    async def delete(self, table: str, record_id: str, owner_id: str) -> list[dict[str, Any]]:
        rows = await self._client.request(
            "DELETE",
            f"/rest/v1/{table}",
            params=self._eq({"id": record_id, "user_id": owner_id}),
            headers={"Prefer": "return=representation"},
        )
        return rows or []

    async def upsert(self, table: str, record: dict[str, Any], on_conflict: str) -> dict[str, Any]:
        rows = await self._client.request(
            "POST",
            f"/rest/v1/{table}",
            params={"on_conflict": on_conflict},
            json=[record],
            headers={"Prefer": "resolution=merge-duplicates,return=representation"},
        )
        if not rows:
            raise BackendError(f"Upsert into {table} returned no row")
        return rows[0]


def _parse_user(data: dict[str, Any]) -> AuthUser:
    return AuthUser(
        id=str(data["id"]),
        email=data.get("email"),
        metadata=data.get("user_metadata") or {},
        email_confirmed=bool(data.get("email_confirmed_at") or data.get("confirmed_at")),
    )


def _parse_session(data: dict[str, Any]) -> Session:
    expires_at = None
    if data.get("expires_at"):
        expires_at = datetime.fromtimestamp(int(data["expires_at"]), tz=timezone.utc)
    elif data.get("expires_in"):
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(data["expires_in"]))
    return Session(
        access_token=data["access_token"],
        refresh_token=data.get("refresh_token"),
        expires_at=expires_at,
        user=_parse_user(data["user"]),
    )


class SupabaseAuth:
    """AuthService over GoTrue with automatic token refresh."""

    def __init__(self, client: SupabaseClient):
        self._client = client
        self._session: Session | None = None
        self._listeners = AuthListeners()

    def on_auth_state_change(self, callback: AuthListener) -> Unsubscribe:
        return self._listeners.add(callback)

    def _set_session(self, session: Session | None) -> None:
        self._session = session
        self._client.access_token = session.access_token if session else None

    async def _auth_request(self, path: str, *, params=None, json=None) -> dict[str, Any]:
        try:
            return await self._client.request("POST", f"/auth/v1/{path}", params=params, json=json) or {}
        except BackendError as e:
            if e.remote_status is not None and 400 <= e.remote_status < 500:
                raise AuthError(e.message) from e
            raise

    async def get_session(self) -> Session | None:
        """Current session, refreshed first when the access token expired."""
        session = self._session
        if session is not None and session.is_expired() and session.refresh_token:
            logger.info("Access token expired, refreshing session")
            try:
                data = await self._auth_request(
                    "token",
                    params={"grant_type": "refresh_token"},
                    json={"refresh_token": session.refresh_token},
                )
            except AuthError as e:
                logger.warning(f"Session refresh rejected: {e}")
                self._set_session(None)
                await self._listeners.emit("SIGNED_OUT", None)
                return None
            self._set_session(_parse_session(data))
            await self._listeners.emit("TOKEN_REFRESHED", self._session)
        return self._session

    async def sign_in(self, email: str, password: str) -> Session:
        data = await self._auth_request(
            "token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        self._set_session(_parse_session(data))
        await self._listeners.emit("SIGNED_IN", self._session)
        return self._session

    async def sign_up(self, email: str, password: str, metadata: dict[str, Any] | None = None) -> AuthResult:
        data = await self._auth_request(
            "signup",
            json={"email": email, "password": password, "data": metadata or {}},
        )
        # With email confirmation on, GoTrue answers with the bare user
        if "access_token" not in data:
            return AuthResult(user=_parse_user(data.get("user") or data))

        self._set_session(_parse_session(data))
        await self._listeners.emit("SIGNED_IN", self._session)
        return AuthResult(user=self._session.user, session=self._session)

    async def sign_out(self) -> None:
        if self._session is None:
            return
        try:
            await self._client.request("POST", "/auth/v1/logout")
        except BackendError as e:
            # The local session is dropped regardless
            logger.error(f"Error signing out: {e}")
        self._set_session(None)
        await self._listeners.emit("SIGNED_OUT", None)


def diff_snapshots(
    previous: dict[str, Any],
    current: dict[str, Any],
    table: str,
    owner_id: str,
) -> Iterator[ChangeEvent]:
    """Yield change events between two {id: updated_at} fingerprints."""
    for record_id, stamp in current.items():
        if record_id not in previous:
            yield ChangeEvent(table, owner_id, "INSERT", record_id)
        elif previous[record_id] != stamp:
            yield ChangeEvent(table, owner_id, "UPDATE", record_id)
    for record_id in previous:
        if record_id not in current:
            yield ChangeEvent(table, owner_id, "DELETE", record_id)


class SupabasePollingChannel:
    """ChangeChannel that polls the owner's rows for differences."""

    def __init__(self, client: SupabaseClient, poll_interval: float = 5.0):
        self._client = client
        self.poll_interval = poll_interval
        self._tasks: set[asyncio.Task] = set()

    def subscribe(self, table: str, owner_id: str, callback: ChangeListener) -> Unsubscribe:
        task = asyncio.get_running_loop().create_task(self._poll(table, owner_id, callback))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        def unsubscribe() -> None:
            task.cancel()

        return unsubscribe

    async def fingerprint(self, table: str, owner_id: str) -> dict[str, Any]:
        rows = await self._client.data.select(table, {"user_id": owner_id}, columns="id,updated_at")
        return {str(row["id"]): row.get("updated_at") for row in rows}

    async def _poll(self, table: str, owner_id: str, callback: ChangeListener) -> None:
        previous: dict[str, Any] | None = None
        while True:
            try:
                current = await self.fingerprint(table, owner_id)
            except BackendError as e:
                logger.warning(f"Change feed poll for {table} failed: {e}")
            else:
                if previous is not None:
                    for event in diff_snapshots(previous, current, table, owner_id):
                        try:
                            callback(event)
                        except Exception:
                            logger.exception(f"Change feed listener for {table} failed on {event.event} {event.record_id}")
                previous = current
            await asyncio.sleep(self.poll_interval)

    async def aclose(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
