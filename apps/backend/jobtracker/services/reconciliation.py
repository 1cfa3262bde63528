"""Reconciliation state machine for remote mutations.

Every add/update/remove issued by the job store is tracked as a Mutation
while the backend call is in flight.

Status Flow:
    pending → confirmed (backend accepted, local collection updated)
            → failed    (backend rejected, local collection untouched)

The local collection only changes on confirmation, so a failed mutation
has nothing to roll back.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Literal
from uuid import uuid4

from jobtracker.errors import InvalidTransitionError

MutationKind = Literal["add", "update", "remove"]


class MutationState(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Mutation:
    """One in-flight or finished remote mutation of a job."""

    kind: MutationKind
    job_id: str
    id: str = field(default_factory=lambda: uuid4().hex)
    state: MutationState = MutationState.PENDING
    error: str | None = None
    started_at: datetime = field(default_factory=_utcnow)
    finished_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.state is MutationState.PENDING

    def confirm(self) -> None:
        self._finish(MutationState.CONFIRMED)

    def fail(self, error: str) -> None:
        self._finish(MutationState.FAILED)
        self.error = error

    def _finish(self, target: MutationState) -> None:
        if self.state is not MutationState.PENDING:
            raise InvalidTransitionError(
                f"Mutation {self.id} ({self.kind} {self.job_id}) is already {self.state.value}, "
                f"cannot move to {target.value}"
            )
        self.state = target
        self.finished_at = _utcnow()


class MutationTracker:
    """Tracks pending mutations and keeps a short history of finished ones."""

    def __init__(self, history_size: int = 50):
        self._pending: dict[str, Mutation] = {}
        self._history: deque[Mutation] = deque(maxlen=history_size)

    def begin(self, kind: MutationKind, job_id: str) -> Mutation:
        mutation = Mutation(kind=kind, job_id=job_id)
        self._pending[mutation.id] = mutation
        return mutation

    def confirm(self, mutation: Mutation) -> None:
        mutation.confirm()
        self._retire(mutation)

    def fail(self, mutation: Mutation, error: str) -> None:
        mutation.fail(error)
        self._retire(mutation)

    def _retire(self, mutation: Mutation) -> None:
        self._pending.pop(mutation.id, None)
        self._history.append(mutation)

    @property
    def pending(self) -> list[Mutation]:
        return list(self._pending.values())

    def pending_job_ids(self) -> list[str]:
        """Job ids with at least one mutation in flight, in issue order."""
        return list(dict.fromkeys(m.job_id for m in self._pending.values()))

    @property
    def history(self) -> list[Mutation]:
        return list(self._history)

    def clear(self) -> None:
        self._pending.clear()
        self._history.clear()
