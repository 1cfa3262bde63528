"""View projector: filter, sort and group a job collection for display.

Every function here is pure. Callers pass a snapshot of the store's
collection and get back freshly built lists; nothing holds on to the
snapshot after returning.

Projection steps:
    1. Filter on search text (position, company, location) and status
    2. Sort on the selected field, stable for ties
    3. Group into buckets in encounter order
"""

from collections.abc import Callable, Iterable, Sequence
from datetime import datetime
from typing import Any

from jobtracker.schemas.job import JobRecord
from jobtracker.schemas.view import JobGroup, ViewParams
from jobtracker.services.status_pipeline import (
    OTHER_KEY,
    bucket_key,
    get_stage,
    normalize_status,
    stage_order,
)
from jobtracker.utils.date_parser import ensure_utc


def matches_search(job: JobRecord, search_text: str) -> bool:
    """Case-insensitive substring match on position, company and location."""
    if not search_text:
        return True
    needle = search_text.casefold()
    haystacks = [job.position, job.company]
    if job.location:
        haystacks.append(job.location)
    return any(needle in (text or "").casefold() for text in haystacks)


def matches_status(job: JobRecord, status_filter: str) -> bool:
    """Exact status match; records with unknown statuses never match a stage."""
    if status_filter == "all":
        return True
    wanted = normalize_status(status_filter)
    if wanted is None:
        return False
    return normalize_status(job.status) == wanted


def filter_jobs(jobs: Iterable[JobRecord], search_text: str = "", status_filter: str = "all") -> list[JobRecord]:
    return [
        job
        for job in jobs
        if matches_search(job, search_text) and matches_status(job, status_filter)
    ]


def _text_value(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    return value.casefold()


def _date_value(value: datetime | None) -> datetime | None:
    return ensure_utc(value) if value is not None else None


_SORT_VALUES: dict[str, Callable[[JobRecord], Any]] = {
    "date": lambda job: _date_value(job.effective_date),
    "date_saved": lambda job: _date_value(job.date_saved),
    "date_applied": lambda job: _date_value(job.date_applied),
    "test_date": lambda job: _date_value(job.test_date),
    "interview_date": lambda job: _date_value(job.interview_date),
    "position": lambda job: _text_value(job.position),
    "company": lambda job: _text_value(job.company),
    "location": lambda job: _text_value(job.location),
    "rating": lambda job: job.rating,
    "salary": lambda job: job.salary_value,
    "status": lambda job: stage_order(job.status),
}


def sort_jobs(jobs: Iterable[JobRecord], sort_field: str = "date", sort_direction: str = "desc") -> list[JobRecord]:
    """Sort jobs on one field.

    Missing values sort as the earliest possible value: first when
    ascending, last when descending. Ties keep their incoming order.

    Raises:
        ValueError: If ``sort_field`` is not a sortable field
    """
    try:
        value_of = _SORT_VALUES[sort_field]
    except KeyError:
        raise ValueError(f"Cannot sort by '{sort_field}'")

    def sort_key(job: JobRecord) -> tuple:
        value = value_of(job)
        return (0,) if value is None else (1, value)

    return sorted(jobs, key=sort_key, reverse=sort_direction == "desc")


def _group_value(job: JobRecord, group_key: str) -> tuple[str, str]:
    """Return (bucket key, display label) for one job."""
    if group_key == "status":
        stage = get_stage(job.status)
        return bucket_key(job.status), stage.label.title()

    raw = getattr(job, group_key)
    value = raw.strip() if isinstance(raw, str) else raw
    if not value:
        return OTHER_KEY, OTHER_KEY
    return value, value


def group_jobs(jobs: Sequence[JobRecord], group_key: str = "none") -> list[JobGroup]:
    """Partition jobs into buckets, preserving order within and across them.

    Each job lands in exactly one bucket. An empty input yields no buckets.
    """
    if not jobs:
        return []
    if group_key == "none":
        return [JobGroup(key="all", label="All jobs", jobs=list(jobs))]

    buckets: dict[str, JobGroup] = {}
    for job in jobs:
        key, label = _group_value(job, group_key)
        if key not in buckets:
            buckets[key] = JobGroup(key=key, label=label, jobs=[])
        buckets[key].jobs.append(job)
    return list(buckets.values())


def project(jobs: Iterable[JobRecord], params: ViewParams | None = None) -> list[JobGroup]:
    """Filter, sort and group ``jobs`` according to ``params``."""
    params = params or ViewParams()
    filtered = filter_jobs(jobs, params.search_text, params.status_filter)
    ordered = sort_jobs(filtered, params.sort_field, params.sort_direction)
    return group_jobs(ordered, params.group_key)
