"""Client session context.

Owns one session against the backend: the auth service, the job store and
the profile store, wired so that auth state changes drive the stores.

Auth Flow:
    SIGNED_IN       → bind user to both stores, load jobs and profile
    TOKEN_REFRESHED → nothing to do, the user is unchanged
    SIGNED_OUT      → unbind both stores (collection cleared)
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine

from jobtracker.backends.base import (
    AuthEvent,
    AuthResult,
    AuthService,
    ChangeChannel,
    DataStore,
    Session,
    Unsubscribe,
)
from jobtracker.config import Settings
from jobtracker.errors import ConfigurationError, JobTrackerError
from jobtracker.services.job_store import JobStore
from jobtracker.services.profile_store import ProfileStore

logger = logging.getLogger(__name__)


class TrackerContext:
    """Everything one signed-in (or anonymous) client needs."""

    def __init__(
        self,
        auth: AuthService,
        data_store: DataStore,
        changes: ChangeChannel | None = None,
        *,
        job_store: JobStore | None = None,
        profile_store: ProfileStore | None = None,
        backend: str = "local",
        engine: AsyncEngine | None = None,
        on_close: Callable[[], Awaitable[None]] | None = None,
    ):
        self.auth = auth
        self.data_store = data_store
        self.jobs = job_store or JobStore(data_store, changes)
        self.profiles = profile_store or ProfileStore(data_store)
        self.backend = backend
        self.engine = engine
        self.session: Session | None = None

        self._on_close = on_close
        self._unsubscribe_auth: Unsubscribe | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.session is not None

    async def start(self) -> None:
        """Follow auth state changes and pick up an existing session."""
        if self._unsubscribe_auth is None:
            self._unsubscribe_auth = self.auth.on_auth_state_change(self._on_auth_event)

        session = await self.auth.get_session()
        if session is not None:
            await self._on_auth_event("SIGNED_IN", session)

    async def _on_auth_event(self, event: AuthEvent, session: Session | None) -> None:
        if event == "SIGNED_OUT" or session is None:
            self.session = None
            self.jobs.unbind_user()
            self.profiles.unbind_user()
            return

        self.session = session
        if event != "SIGNED_IN":
            return

        user_id = session.user.id
        self.jobs.bind_user(user_id)
        self.profiles.bind_user(user_id)
        try:
            await self.jobs.load()
        except JobTrackerError as e:
            # Recorded on the store; the client retries with refresh
            logger.error(f"Initial job load failed for user {user_id}: {e}")
        try:
            await self.profiles.fetch()
        except JobTrackerError as e:
            logger.error(f"Initial profile load failed for user {user_id}: {e}")

    async def current_session(self) -> Session | None:
        """Session from the auth service, refreshed if it had expired."""
        self.session = await self.auth.get_session()
        return self.session

    async def sign_in(self, email: str, password: str) -> Session:
        return await self.auth.sign_in(email, password)

    async def sign_up(self, email: str, password: str, full_name: str | None = None) -> AuthResult:
        """Create an account and, when it is usable right away, its profile.

        A failed profile write is logged; the account itself still exists.
        """
        metadata: dict[str, Any] = {"full_name": full_name} if full_name else {}
        result = await self.auth.sign_up(email, password, metadata)

        if result.session is not None:
            if self.profiles.user_id != result.user.id:
                self.profiles.bind_user(result.user.id)
            try:
                await self.profiles.update({"full_name": full_name})
            except JobTrackerError as e:
                logger.error(f"Error creating profile for user {result.user.id}: {e}")
        return result

    async def sign_out(self) -> None:
        await self.auth.sign_out()

    async def close(self) -> None:
        if self._unsubscribe_auth is not None:
            self._unsubscribe_auth()
            self._unsubscribe_auth = None
        await self.jobs.close()
        if self._on_close is not None:
            await self._on_close()


async def build_context(settings: Settings) -> TrackerContext:
    """Construct the backend bindings selected by ``settings``.

    Raises:
        ConfigurationError: The hosted backend is selected without a URL or key
    """
    if settings.uses_hosted_backend:
        from jobtracker.backends.supabase import SupabaseClient

        if not settings.supabase_url or not settings.supabase_anon_key:
            raise ConfigurationError(
                "Missing Supabase configuration: set SUPABASE_URL and SUPABASE_ANON_KEY"
            )
        client = SupabaseClient(
            settings.supabase_url,
            settings.supabase_anon_key,
            timeout=settings.request_timeout,
            poll_interval=settings.realtime_poll_interval,
        )
        logger.info(f"Using hosted backend at {client.url}")
        return TrackerContext(
            client.auth,
            client.data,
            client.realtime,
            backend="supabase",
            on_close=client.aclose,
        )

    from jobtracker.backends.local import (
        InProcessChangeChannel,
        LocalAuthService,
        SqlAlchemyDataStore,
    )
    from jobtracker.database import close_db, create_engine, create_session_factory, init_db

    engine = create_engine(settings.database_url, echo=settings.debug)
    await init_db(engine)
    changes = InProcessChangeChannel()
    logger.info(f"Using local backend at {engine.url.render_as_string(hide_password=True)}")

    async def dispose() -> None:
        await close_db(engine)

    return TrackerContext(
        LocalAuthService(),
        SqlAlchemyDataStore(create_session_factory(engine), changes),
        changes,
        backend="local",
        engine=engine,
        on_close=dispose,
    )


def get_context(request: Request) -> TrackerContext:
    """Dependency for getting the client context of the running app.

    Usage in FastAPI:
        @app.get("/items")
        async def get_items(ctx: TrackerContext = Depends(get_context)):
            ...
    """
    return request.app.state.context
