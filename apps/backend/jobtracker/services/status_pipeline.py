"""Status pipeline model.

Single source of truth for the lifecycle stages a job application moves
through, their canonical funnel order and their display metadata. Both the
view projector (group-by-status) and the analytics aggregator (status
distribution) resolve statuses through ``status_key`` / ``get_stage`` so they
never disagree on what a valid status is or where it sits in the pipeline.

Statuses outside the canonical set never raise: they resolve to a display
bucket of their own, and a missing status lands in the "Other" bucket.
"""

from collections.abc import Iterable
from dataclasses import dataclass, replace
from typing import Any


@dataclass(frozen=True)
class StatusStage:
    """Display metadata for one pipeline stage."""

    value: str
    label: str
    color: str  # Chart color (hex)
    badge: str  # Background color token
    text: str  # Text color token
    order: int | None = None

    @property
    def is_canonical(self) -> bool:
        return self.order is not None


PIPELINE: tuple[StatusStage, ...] = (
    StatusStage("bookmarked", "BOOKMARKED", "#9CA3AF", "bg-gray-400", "text-gray-600", 0),
    StatusStage("applying", "APPLYING", "#3B82F6", "bg-blue-400", "text-blue-600", 1),
    StatusStage("applied", "APPLIED", "#EAB308", "bg-yellow-400", "text-yellow-600", 2),
    StatusStage("interviewing", "INTERVIEWING", "#8B5CF6", "bg-purple-400", "text-purple-600", 3),
    StatusStage("negotiating", "NEGOTIATING", "#F97316", "bg-orange-400", "text-orange-600", 4),
    StatusStage("accepted", "ACCEPTED", "#10B981", "bg-green-400", "text-green-600", 5),
)

STATUS_VALUES: tuple[str, ...] = tuple(stage.value for stage in PIPELINE)

DEFAULT_STATUS = "bookmarked"

# Stages counted as "actively pursued or beyond" by the summary metrics
ACTIVE_STATUSES: frozenset[str] = frozenset({"applied", "interviewing", "negotiating", "accepted"})

# Legacy spellings from older records
LEGACY_ALIASES: dict[str, str] = {
    "saved": "applying",
    "interview": "interviewing",
}

OTHER_KEY = "Other"

_STAGES_BY_VALUE = {stage.value: stage for stage in PIPELINE}

_UNKNOWN_STAGE = StatusStage("unknown", "UNKNOWN", "#6B7280", "bg-gray-300", "text-gray-500")


def status_key(value: Any) -> str | None:
    """Resolve a raw status to the key used for filtering and bucketing.

    Returns the canonical value for known statuses and aliases, the
    normalized raw text for unknown statuses, and None when the status is
    missing entirely.
    """
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    if not normalized:
        return None
    return LEGACY_ALIASES.get(normalized, normalized)


def normalize_status(value: Any) -> str | None:
    """Return the canonical status for ``value`` or None if it isn't one."""
    key = status_key(value)
    return key if key in _STAGES_BY_VALUE else None


def is_valid_status(value: Any) -> bool:
    return normalize_status(value) is not None


def get_stage(value: Any) -> StatusStage:
    """Return display metadata for a status, degrading for unknown values."""
    key = status_key(value)
    if key is None:
        return replace(_UNKNOWN_STAGE, value=OTHER_KEY, label=OTHER_KEY.upper())
    stage = _STAGES_BY_VALUE.get(key)
    if stage is not None:
        return stage
    return replace(_UNKNOWN_STAGE, value=key, label=key.upper())


def bucket_key(value: Any) -> str:
    """Key a status falls under when grouped or counted."""
    return status_key(value) or OTHER_KEY


def stage_for_bucket(key: str) -> StatusStage:
    """Display metadata for a key produced by ``bucket_key``."""
    return get_stage(None if key == OTHER_KEY else key)


def stage_order(value: Any) -> int | None:
    """Funnel position of a status, None for unknown or missing statuses."""
    return get_stage(value).order


def count_by_stage(statuses: Iterable[Any]) -> dict[str, int]:
    """Count statuses per bucket key.

    Every canonical stage is present (in funnel order, possibly zero),
    followed by unknown and missing buckets in encounter order. The counts
    always sum to the number of statuses given.
    """
    counts: dict[str, int] = {value: 0 for value in STATUS_VALUES}
    for status in statuses:
        key = bucket_key(status)
        counts[key] = counts.get(key, 0) + 1
    return counts
