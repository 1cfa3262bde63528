"""Job store: the local copy of the signed-in user's jobs.

The store mediates every mutation against the remote data store and keeps
the in-memory collection consistent with it:

- ``load`` replaces the collection with the remote result set, newest first.
  A failed load keeps the previous collection and records the error.
- ``add`` / ``update`` / ``remove`` only touch the collection once the
  backend confirms the write. On failure the collection is unchanged and the
  error is raised to the caller.
- Remote change notifications trigger a full reload rather than a merge.
  Notifications that arrive while a reload is running coalesce into one
  follow-up reload.
- When loads overlap, the most recently issued one wins; an older result
  arriving later is discarded.

Observers registered with ``subscribe`` receive an immutable snapshot
(tuple of frozen records) after every change.
"""

import asyncio
import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError

from jobtracker.backends.base import (
    JOBS_TABLE,
    ChangeChannel,
    ChangeEvent,
    DataStore,
    Unsubscribe,
)
from jobtracker.errors import (
    AuthRequiredError,
    BackendError,
    FetchError,
    JobNotFoundError,
    JobTrackerError,
    ValidationError,
    WriteError,
)
from jobtracker.schemas.job import JobDraft, JobRecord, JobUpdate, RatingUpdate, StatusUpdate
from jobtracker.services.reconciliation import MutationTracker

logger = logging.getLogger(__name__)

JobSnapshot = tuple[JobRecord, ...]
Observer = Callable[[JobSnapshot], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_job_id() -> str:
    return str(uuid4())


class JobStore:
    """Authoritative local collection of the current user's jobs."""

    def __init__(
        self,
        data_store: DataStore,
        changes: ChangeChannel | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] = _new_job_id,
    ):
        """Initialize the store.

        Args:
            data_store: Remote data store binding
            changes: Optional change feed; when given, remote changes to the
                user's rows trigger a reload
            clock: Source of "now" for date_saved and bookkeeping timestamps
            id_factory: Generator for new job identifiers
        """
        self._data = data_store
        self._changes = changes
        self._clock = clock
        self._id_factory = id_factory

        self._jobs: JobSnapshot = ()
        self._observers: list[Observer] = []
        self.mutations = MutationTracker()

        self.user_id: str | None = None
        self.last_error: JobTrackerError | None = None

        self._loads_in_flight = 0
        self._load_seq = 0
        self._applied_seq = 0

        self._unsubscribe_changes: Unsubscribe | None = None
        self._reload_task: asyncio.Task | None = None
        self._reload_requested = False

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def jobs(self) -> JobSnapshot:
        return self._jobs

    @property
    def loading(self) -> bool:
        return self._loads_in_flight > 0

    @property
    def error(self) -> str | None:
        return self.last_error.message if self.last_error else None

    def get(self, job_id: str) -> JobRecord | None:
        for job in self._jobs:
            if job.id == job_id:
                return job
        return None

    def pending_job_ids(self) -> list[str]:
        return self.mutations.pending_job_ids()

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def bind_user(self, user_id: str) -> None:
        """Scope the store to ``user_id`` and follow its remote changes."""
        if user_id == self.user_id:
            return
        self.unbind_user()
        self.user_id = user_id
        if self._changes is not None:
            self._unsubscribe_changes = self._changes.subscribe(
                JOBS_TABLE, user_id, self._on_remote_change
            )
        logger.info(f"Job store bound to user {user_id}")

    def unbind_user(self) -> None:
        """Forget the current user and drop the local collection."""
        if self._unsubscribe_changes is not None:
            self._unsubscribe_changes()
            self._unsubscribe_changes = None
        if self._reload_task is not None and not self._reload_task.done():
            self._reload_task.cancel()
        self._reload_task = None
        self._reload_requested = False

        had_state = self.user_id is not None or bool(self._jobs) or self.last_error is not None
        self.user_id = None
        self._jobs = ()
        self.last_error = None
        self.mutations.clear()
        # Results of loads issued before the switch must not be applied
        self._applied_seq = self._load_seq
        if had_state:
            self._notify()

    def _require_user(self) -> str:
        if not self.user_id:
            raise AuthRequiredError()
        return self.user_id

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, observer: Observer) -> Unsubscribe:
        """Register ``observer`` for collection changes.

        Returns:
            Callable that removes the observer again
        """
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self._jobs
        for observer in list(self._observers):
            try:
                observer(snapshot)
            except Exception:
                logger.exception(f"Job store observer {observer!r} failed")

    def _replace(self, jobs: JobSnapshot) -> None:
        self._jobs = jobs
        self._notify()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def load(self, user_id: str | None = None) -> JobSnapshot:
        """Replace the collection with the user's remote jobs, newest first.

        Args:
            user_id: User to load for; binds the store to this user when it
                differs from the current one

        Returns:
            The collection after the load

        Raises:
            FetchError: On transport, permission or malformed-response
                failure. The previous collection is kept.
        """
        if user_id is not None and user_id != self.user_id:
            self.bind_user(user_id)

        uid = self.user_id
        if not uid:
            self._replace(())
            return self._jobs

        self._load_seq += 1
        seq = self._load_seq
        self._loads_in_flight += 1
        try:
            logger.info(f"Fetching jobs for user {uid}")
            rows = await self._data.select(
                JOBS_TABLE,
                {"user_id": uid},
                order_by="date_saved",
                descending=True,
            )
            jobs = tuple(JobRecord.model_validate(row) for row in rows)
        except (BackendError, PydanticValidationError) as e:
            error = FetchError(f"Failed to load jobs: {e}")
            logger.error(f"Error fetching jobs for user {uid}: {e}")
            # Only the current load may surface its error to observers
            if seq > self._applied_seq and uid == self.user_id:
                self.last_error = error
                self._notify()
            raise error from e
        finally:
            self._loads_in_flight -= 1

        if seq <= self._applied_seq or uid != self.user_id:
            logger.warning(f"Discarding stale job load #{seq} for user {uid}")
            return self._jobs

        self._applied_seq = seq
        self.last_error = None
        logger.info(f"Jobs fetched successfully: {len(jobs)} jobs")
        self._replace(jobs)
        return self._jobs

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def add(self, draft: JobDraft | Mapping[str, Any]) -> JobRecord:
        """Create a job from ``draft`` and insert it at the head of the collection.

        The identifier, date saved and bookkeeping timestamps are generated
        here; the draft supplies everything else.

        Raises:
            AuthRequiredError: No user is bound
            ValidationError: The draft is invalid
            WriteError: The backend rejected the insert
        """
        uid = self._require_user()
        draft = _validate(JobDraft, draft)

        now = self._clock()
        record = JobRecord(
            **draft.model_dump(),
            id=self._id_factory(),
            user_id=uid,
            date_saved=now,
            created_at=now,
            updated_at=now,
        )

        mutation = self.mutations.begin("add", record.id)
        try:
            row = await self._data.insert(JOBS_TABLE, record.to_row())
            confirmed = JobRecord.model_validate(row)
        except (BackendError, PydanticValidationError) as e:
            raise self._write_failed(mutation, f"Failed to add job: {e}") from e

        self.mutations.confirm(mutation)
        self.last_error = None
        logger.info(f"Job added successfully: {confirmed.id} {confirmed.position} at {confirmed.company}")
        self._replace((confirmed,) + tuple(j for j in self._jobs if j.id != confirmed.id))
        return confirmed

    async def update(self, job: JobRecord) -> JobRecord:
        """Replace all mutable fields of ``job`` remotely, then locally.

        Identifier, owner, date saved and created_at are never sent;
        updated_at is set to now.

        Raises:
            AuthRequiredError: No user is bound
            ValidationError: The new field values are invalid
            JobNotFoundError: No job with this id exists for the user
            WriteError: The backend rejected the update
        """
        uid = self._require_user()
        fields = _validate(JobUpdate, job.mutable_fields())
        return await self._patch(uid, job.id, fields.model_dump())

    async def _patch(self, uid: str, job_id: str, changes: dict[str, Any]) -> JobRecord:
        patch = {**changes, "updated_at": self._clock()}

        mutation = self.mutations.begin("update", job_id)
        try:
            rows = await self._data.update(JOBS_TABLE, job_id, patch, owner_id=uid)
            confirmed = [JobRecord.model_validate(row) for row in rows]
        except (BackendError, PydanticValidationError) as e:
            raise self._write_failed(mutation, f"Failed to update job: {e}") from e

        if not confirmed:
            raise self._write_failed(
                mutation, f"Failed to update job: job {job_id} not found", JobNotFoundError
            )

        updated = confirmed[0]
        self.mutations.confirm(mutation)
        self.last_error = None
        logger.info(f"Job updated successfully: {updated.id}")
        self._replace(tuple(updated if j.id == updated.id else j for j in self._jobs))
        return updated

    async def remove(self, job_id: str) -> None:
        """Delete a job remotely, then drop it from the collection.

        Removing an id the backend does not know is a successful no-op.

        Raises:
            AuthRequiredError: No user is bound
            WriteError: The backend rejected the delete
        """
        uid = self._require_user()

        mutation = self.mutations.begin("remove", job_id)
        try:
            await self._data.delete(JOBS_TABLE, job_id, owner_id=uid)
        except BackendError as e:
            raise self._write_failed(mutation, f"Failed to delete job: {e}") from e

        self.mutations.confirm(mutation)
        self.last_error = None
        remaining = tuple(j for j in self._jobs if j.id != job_id)
        if len(remaining) != len(self._jobs):
            logger.info(f"Job deleted successfully: {job_id}")
            self._replace(remaining)

    async def set_rating(self, job_id: str, rating: int) -> JobRecord:
        """Quick action: change only the rating of a job.

        Only the rating is checked and sent, so records holding a legacy or
        missing status keep it.
        """
        uid = self._require_job(job_id)
        change = _validate(RatingUpdate, {"rating": rating})
        return await self._patch(uid, job_id, change.model_dump())

    async def set_status(self, job_id: str, status: str) -> JobRecord:
        """Quick action: move a job to another pipeline stage."""
        uid = self._require_job(job_id)
        change = _validate(StatusUpdate, {"status": status})
        return await self._patch(uid, job_id, change.model_dump())

    def _require_job(self, job_id: str) -> str:
        uid = self._require_user()
        if self.get(job_id) is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return uid

    def _write_failed(
        self, mutation, message: str, error_cls: type[WriteError] = WriteError
    ) -> WriteError:
        self.mutations.fail(mutation, message)
        logger.error(message)
        self.last_error = error_cls(message)
        self._notify()
        return self.last_error

    # ------------------------------------------------------------------
    # Remote changes
    # ------------------------------------------------------------------

    def _on_remote_change(self, event: ChangeEvent) -> None:
        """Change feed callback: schedule a reload, coalescing bursts."""
        if event.owner_id != self.user_id:
            return
        logger.info(f"Real-time update received: {event.event} {event.table} {event.record_id or ''}")
        if self._reload_task is not None and not self._reload_task.done():
            self._reload_requested = True
            return
        self._reload_task = asyncio.get_running_loop().create_task(self._reload_after_change())

    async def _reload_after_change(self) -> None:
        while True:
            self._reload_requested = False
            try:
                await self.load()
            except FetchError as e:
                # Already recorded in last_error and pushed to observers
                logger.warning(f"Reload after remote change failed: {e}")
            if not self._reload_requested:
                return

    async def wait_for_sync(self) -> None:
        """Wait for any reload triggered by a remote change to finish."""
        while self._reload_task is not None and not self._reload_task.done():
            await self._reload_task

    async def close(self) -> None:
        """Stop following remote changes and cancel a pending reload."""
        task = self._reload_task
        if self._unsubscribe_changes is not None:
            self._unsubscribe_changes()
            self._unsubscribe_changes = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


def _validate(model, data):
    """Validate ``data`` against ``model``, raising the client-side ValidationError."""
    if isinstance(data, model):
        return data
    try:
        if isinstance(data, Mapping):
            return model.model_validate(dict(data))
        return model.model_validate(data.model_dump())
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e) from e
