"""
Unit tests for jobtracker/services/job_store.py

Tests the store against an in-memory fake data store:
- load ordering, failure and stale-result handling
- add / update / remove confirmation and failure paths
- quick actions
- reloads triggered by remote change notifications
"""

import asyncio
from datetime import datetime, timezone

import pytest

from conftest import OTHER_USER_ID, USER_ID, job_row
from jobtracker.backends.base import ChangeEvent
from jobtracker.errors import (
    AuthRequiredError,
    BackendError,
    FetchError,
    JobNotFoundError,
    ValidationError,
    WriteError,
)
from jobtracker.services.job_store import JobStore
from jobtracker.services.reconciliation import MutationState


def _saved(day: int) -> datetime:
    return datetime(2024, 1, day, tzinfo=timezone.utc)


@pytest.fixture
def store(data_store, clock):
    ids = iter(f"job-{n}" for n in range(100, 200))
    return JobStore(data_store, clock=clock, id_factory=lambda: next(ids))


@pytest.fixture
def snapshots(store):
    received = []
    store.subscribe(received.append)
    return received


# =============================================================================
# LOAD
# =============================================================================


class TestLoad:
    """Replacing the collection from the backend."""

    @pytest.mark.asyncio
    async def test_load_orders_newest_first(self, store, data_store):
        data_store.seed(
            "jobs",
            job_row("a", date_saved=_saved(1)),
            job_row("b", date_saved=_saved(3)),
            job_row("c", date_saved=_saved(2)),
            job_row("other", user_id=OTHER_USER_ID, date_saved=_saved(4)),
        )

        jobs = await store.load(USER_ID)

        assert [job.id for job in jobs] == ["b", "c", "a"]
        assert store.user_id == USER_ID
        assert store.error is None
        assert not store.loading

    @pytest.mark.asyncio
    async def test_load_without_user_yields_empty_collection(self, store, data_store):
        assert await store.load() == ()
        assert data_store.calls == []

    @pytest.mark.asyncio
    async def test_failed_load_keeps_previous_collection(self, store, data_store, snapshots):
        data_store.seed("jobs", job_row("a"))
        await store.load(USER_ID)
        data_store.fail_next["select"] = BackendError("permission denied", status_code=403)

        with pytest.raises(FetchError):
            await store.load()

        assert [job.id for job in store.jobs] == ["a"]
        assert "permission denied" in store.error
        assert snapshots[-1] == store.jobs

    @pytest.mark.asyncio
    async def test_successful_load_clears_error(self, store, data_store):
        store.bind_user(USER_ID)
        data_store.fail_next["select"] = BackendError("offline")
        with pytest.raises(FetchError):
            await store.load()

        await store.load()
        assert store.error is None

    @pytest.mark.asyncio
    async def test_malformed_row_is_a_fetch_error(self, store, data_store):
        data_store.seed("jobs", {"id": "bad", "user_id": USER_ID, "date_saved": "not-a-date"})
        with pytest.raises(FetchError):
            await store.load(USER_ID)

    @pytest.mark.asyncio
    async def test_most_recently_issued_load_wins(self, store, data_store):
        store.bind_user(USER_ID)
        data_store.seed("jobs", job_row("old"))
        first_gate, second_gate = asyncio.Event(), asyncio.Event()
        data_store.gates["select"] = [first_gate, second_gate]

        first = asyncio.create_task(store.load())
        await asyncio.sleep(0)
        second = asyncio.create_task(store.load())
        await asyncio.sleep(0)
        assert store.loading

        # The newer load completes first, then the older one returns stale data
        data_store.seed("jobs", job_row("new"))
        second_gate.set()
        await second
        data_store.tables["jobs"].pop("new")
        first_gate.set()
        await first

        assert sorted(job.id for job in store.jobs) == ["new", "old"]
        assert not store.loading

    @pytest.mark.asyncio
    async def test_load_after_sign_out_is_discarded(self, store, data_store):
        store.bind_user(USER_ID)
        data_store.seed("jobs", job_row("a"))
        gate = asyncio.Event()
        data_store.gates["select"] = [gate]

        pending = asyncio.create_task(store.load())
        await asyncio.sleep(0)
        store.unbind_user()
        gate.set()
        await pending

        assert store.jobs == ()
        assert store.user_id is None


# =============================================================================
# ADD
# =============================================================================


class TestAdd:
    """Creating jobs."""

    @pytest.mark.asyncio
    async def test_add_prepends_confirmed_record(self, store, data_store, snapshots):
        data_store.seed("jobs", job_row("a"))
        await store.load(USER_ID)

        job = await store.add({"position": "Engineer", "company": "Acme", "salary_min": "90,000"})

        assert job.id == "job-100"
        assert job.user_id == USER_ID
        assert job.status == "bookmarked"
        assert job.salary_min == 90000
        assert job.date_saved == datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
        assert [j.id for j in store.jobs] == ["job-100", "a"]
        assert snapshots[-1] == store.jobs
        assert store.mutations.history[-1].state is MutationState.CONFIRMED

    @pytest.mark.asyncio
    async def test_add_then_load_round_trips(self, store):
        store.bind_user(USER_ID)
        job = await store.add({"position": "Engineer", "company": "Acme", "status": "applied", "rating": 4})

        loaded = await store.load()

        assert loaded[0].id == job.id
        assert loaded[0].mutable_fields() == job.mutable_fields()

    @pytest.mark.asyncio
    async def test_add_requires_user(self, store, data_store):
        with pytest.raises(AuthRequiredError):
            await store.add({"position": "Engineer", "company": "Acme"})
        assert data_store.calls == []

    @pytest.mark.asyncio
    async def test_invalid_draft_makes_no_remote_call(self, store, data_store):
        store.bind_user(USER_ID)
        with pytest.raises(ValidationError) as exc_info:
            await store.add({"position": "", "company": "Acme", "status": "test"})
        assert len(exc_info.value.errors) == 2
        assert data_store.calls == []

    @pytest.mark.asyncio
    async def test_failed_insert_leaves_collection_unchanged(self, store, data_store, snapshots):
        data_store.seed("jobs", job_row("a"))
        await store.load(USER_ID)
        data_store.fail_next["insert"] = BackendError("insert failed")

        with pytest.raises(WriteError):
            await store.add({"position": "Engineer", "company": "Acme"})

        assert [j.id for j in store.jobs] == ["a"]
        assert store.error.startswith("Failed to add job")
        assert store.mutations.history[-1].state is MutationState.FAILED
        assert store.pending_job_ids() == []

    @pytest.mark.asyncio
    async def test_date_saved_keeps_increasing(self, store):
        store.bind_user(USER_ID)
        for n in range(70):
            await store.add({"position": f"Role {n}", "company": "Acme"})

        saved = [job.date_saved for job in store.jobs]
        assert all(newer > older for newer, older in zip(saved, saved[1:]))

    @pytest.mark.asyncio
    async def test_add_marks_job_pending_while_in_flight(self, store, data_store):
        store.bind_user(USER_ID)
        gate = asyncio.Event()
        data_store.gates["insert"] = [gate]

        task = asyncio.create_task(store.add({"position": "Engineer", "company": "Acme"}))
        await asyncio.sleep(0)
        assert store.pending_job_ids() == ["job-100"]
        assert store.jobs == ()

        gate.set()
        await task
        assert store.pending_job_ids() == []


# =============================================================================
# UPDATE / REMOVE
# =============================================================================


class TestUpdate:
    """Replacing a job's mutable fields."""

    @pytest.mark.asyncio
    async def test_update_replaces_record_in_place(self, store, data_store):
        data_store.seed("jobs", job_row("a", date_saved=_saved(2)), job_row("b", date_saved=_saved(1)))
        await store.load(USER_ID)

        changed = store.get("b").model_copy(update={"status": "interview", "notes": "call Tuesday"})
        updated = await store.update(changed)

        assert updated.status == "interviewing"
        assert updated.notes == "call Tuesday"
        assert [j.id for j in store.jobs] == ["a", "b"]
        assert store.get("b").status == "interviewing"
        assert data_store.tables["jobs"]["b"]["updated_at"] == datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_update_never_sends_identity_fields(self, store, data_store):
        data_store.seed("jobs", job_row("a"))
        await store.load(USER_ID)

        await store.update(store.get("a").model_copy(update={"rating": 2}))

        row = data_store.tables["jobs"]["a"]
        assert row["user_id"] == USER_ID
        assert row["date_saved"] == datetime(2024, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_update_unknown_job(self, store, data_store):
        data_store.seed("jobs", job_row("a"))
        await store.load(USER_ID)
        ghost = store.get("a").model_copy(update={"id": "ghost"})

        with pytest.raises(JobNotFoundError):
            await store.update(ghost)
        assert [j.id for j in store.jobs] == ["a"]

    @pytest.mark.asyncio
    async def test_failed_update_keeps_old_values(self, store, data_store):
        data_store.seed("jobs", job_row("a", rating=1))
        await store.load(USER_ID)
        data_store.fail_next["update"] = BackendError("timeout")

        with pytest.raises(WriteError):
            await store.update(store.get("a").model_copy(update={"rating": 5}))
        assert store.get("a").rating == 1

    @pytest.mark.asyncio
    async def test_quick_actions(self, store, data_store):
        data_store.seed("jobs", job_row("a"))
        await store.load(USER_ID)

        assert (await store.set_rating("a", 4)).rating == 4
        assert (await store.set_status("a", "negotiating")).status == "negotiating"
        assert store.get("a").rating == 4

    @pytest.mark.asyncio
    async def test_rating_change_keeps_legacy_status(self, store, data_store):
        data_store.seed("jobs", job_row("a", status="test"))
        await store.load(USER_ID)

        updated = await store.set_rating("a", 4)

        assert updated.rating == 4
        assert updated.status == "test"
        assert data_store.tables["jobs"]["a"]["status"] == "test"

    @pytest.mark.asyncio
    async def test_rating_change_keeps_missing_status(self, store, data_store):
        data_store.seed("jobs", job_row("a", status=None, notes=None))
        await store.load(USER_ID)

        updated = await store.set_rating("a", 2)

        assert updated.status is None
        row = data_store.tables["jobs"]["a"]
        assert row["status"] is None
        assert row["notes"] is None
        assert row["rating"] == 2

    @pytest.mark.asyncio
    async def test_quick_actions_send_only_their_field(self, store, data_store):
        data_store.seed("jobs", job_row("a", status="test"))
        await store.load(USER_ID)

        assert (await store.set_status("a", "saved")).status == "applying"
        assert data_store.tables["jobs"]["a"]["rating"] == 0

    @pytest.mark.asyncio
    async def test_invalid_quick_action_makes_no_remote_call(self, store, data_store):
        data_store.seed("jobs", job_row("a"))
        await store.load(USER_ID)
        data_store.calls.clear()

        with pytest.raises(ValidationError):
            await store.set_rating("a", 9)
        with pytest.raises(ValidationError):
            await store.set_status("a", "ghosted")
        assert data_store.calls == []

    @pytest.mark.asyncio
    async def test_quick_action_on_unknown_id_makes_no_remote_call(self, store, data_store):
        store.bind_user(USER_ID)
        with pytest.raises(JobNotFoundError):
            await store.set_rating("missing", 3)
        assert data_store.calls == []


class TestRemove:
    """Deleting jobs."""

    @pytest.mark.asyncio
    async def test_remove_drops_job(self, store, data_store):
        data_store.seed("jobs", job_row("a"), job_row("b"))
        await store.load(USER_ID)

        await store.remove("a")

        assert [j.id for j in store.jobs] == ["b"]
        assert "a" not in data_store.tables["jobs"]

    @pytest.mark.asyncio
    async def test_remove_unknown_id_is_a_silent_no_op(self, store, data_store, snapshots):
        data_store.seed("jobs", job_row("a"))
        await store.load(USER_ID)
        seen = len(snapshots)

        await store.remove("missing")

        assert [j.id for j in store.jobs] == ["a"]
        assert len(snapshots) == seen

    @pytest.mark.asyncio
    async def test_failed_remove_keeps_job(self, store, data_store):
        data_store.seed("jobs", job_row("a"))
        await store.load(USER_ID)
        data_store.fail_next["delete"] = BackendError("forbidden", status_code=403)

        with pytest.raises(WriteError):
            await store.remove("a")
        assert [j.id for j in store.jobs] == ["a"]

    @pytest.mark.asyncio
    async def test_remove_requires_user(self, store):
        with pytest.raises(AuthRequiredError):
            await store.remove("a")


# =============================================================================
# OBSERVERS / IDENTITY
# =============================================================================


class TestObservers:

    @pytest.mark.asyncio
    async def test_failing_observer_does_not_break_store(self, store, data_store):
        def broken(snapshot):
            raise RuntimeError("observer bug")

        store.subscribe(broken)
        data_store.seed("jobs", job_row("a"))
        await store.load(USER_ID)
        assert [j.id for j in store.jobs] == ["a"]

    @pytest.mark.asyncio
    async def test_unsubscribe(self, store, data_store):
        received = []
        unsubscribe = store.subscribe(received.append)
        unsubscribe()
        await store.load(USER_ID)
        assert received == []

    @pytest.mark.asyncio
    async def test_snapshots_are_immutable(self, store, data_store, snapshots):
        data_store.seed("jobs", job_row("a"))
        await store.load(USER_ID)
        assert isinstance(snapshots[-1], tuple)

    @pytest.mark.asyncio
    async def test_unbind_clears_collection(self, store, data_store, snapshots):
        data_store.seed("jobs", job_row("a"))
        await store.load(USER_ID)

        store.unbind_user()

        assert store.jobs == ()
        assert snapshots[-1] == ()


# =============================================================================
# REMOTE CHANGES
# =============================================================================


class TestRemoteChanges:
    """Reloads triggered by change notifications."""

    @pytest.fixture
    def live_store(self, data_store, changes, clock):
        return JobStore(data_store, changes, clock=clock)

    @pytest.mark.asyncio
    async def test_remote_insert_triggers_reload(self, live_store, data_store, changes):
        await live_store.load(USER_ID)
        data_store.seed("jobs", job_row("remote"))

        changes.publish("jobs", USER_ID, "INSERT", "remote")
        await live_store.wait_for_sync()

        assert [j.id for j in live_store.jobs] == ["remote"]

    @pytest.mark.asyncio
    async def test_other_users_changes_are_ignored(self, live_store, data_store):
        await live_store.load(USER_ID)
        live_store._on_remote_change(ChangeEvent("jobs", OTHER_USER_ID, "INSERT", "x"))
        await live_store.wait_for_sync()
        assert data_store.calls.count(("select", "jobs")) == 1

    @pytest.mark.asyncio
    async def test_burst_of_notifications_coalesces(self, live_store, data_store, changes):
        await live_store.load(USER_ID)
        gate = asyncio.Event()
        data_store.gates["select"] = [gate]

        changes.publish("jobs", USER_ID, "UPDATE", "job-0")
        await asyncio.sleep(0)
        # The reload is now blocked in select; these arrive while it runs
        for n in range(1, 5):
            changes.publish("jobs", USER_ID, "UPDATE", f"job-{n}")
        gate.set()
        await live_store.wait_for_sync()

        # Initial load, one reload, one follow-up for the notifications that
        # arrived while it was running
        assert data_store.calls.count(("select", "jobs")) == 3

    @pytest.mark.asyncio
    async def test_failed_reload_surfaces_error(self, live_store, data_store, changes):
        data_store.seed("jobs", job_row("a"))
        await live_store.load(USER_ID)
        data_store.fail_next["select"] = BackendError("offline")

        changes.publish("jobs", USER_ID, "DELETE", "a")
        await live_store.wait_for_sync()

        assert [j.id for j in live_store.jobs] == ["a"]
        assert "offline" in live_store.error

    @pytest.mark.asyncio
    async def test_own_write_is_followed_by_reload(self, live_store, data_store):
        await live_store.load(USER_ID)

        job = await live_store.add({"position": "Engineer", "company": "Acme"})
        await live_store.wait_for_sync()

        assert [j.id for j in live_store.jobs] == [job.id]
        assert data_store.calls.count(("select", "jobs")) == 2

    @pytest.mark.asyncio
    async def test_close_stops_following_changes(self, live_store, data_store, changes):
        await live_store.load(USER_ID)
        await live_store.close()

        changes.publish("jobs", USER_ID, "INSERT", "x")
        await live_store.wait_for_sync()
        assert data_store.calls.count(("select", "jobs")) == 1
