"""Analytics aggregator.

Pure reductions over the whole, unfiltered job collection. Each computation
can run independently on the same input; none of them share intermediate
state.
"""

from collections import Counter
from collections.abc import Sequence
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from jobtracker.schemas.analytics import (
    AnalyticsReport,
    SalaryBucket,
    StatusCount,
    SummaryMetrics,
    TimelinePoint,
)
from jobtracker.schemas.job import JobRecord
from jobtracker.services.status_pipeline import (
    ACTIVE_STATUSES,
    count_by_stage,
    normalize_status,
    stage_for_bucket,
)
from jobtracker.utils.date_parser import ensure_utc

# (label, lower bound exclusive, upper bound inclusive); None = open-ended
SALARY_BUCKETS: tuple[tuple[str, int, int | None], ...] = (
    ("0-50k", 0, 50_000),
    ("50k-75k", 50_000, 75_000),
    ("75k-100k", 75_000, 100_000),
    ("100k-125k", 100_000, 125_000),
    ("125k+", 125_000, None),
)

RECENT_ACTIVITY_LIMIT = 5


def _round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def status_distribution(jobs: Sequence[JobRecord]) -> list[StatusCount]:
    """Count jobs per status bucket.

    All canonical stages are listed in funnel order (zero counts included),
    followed by unknown or missing statuses. Counts sum to ``len(jobs)``.
    """
    counts = count_by_stage(job.status for job in jobs)
    distribution = []
    for key, count in counts.items():
        stage = stage_for_bucket(key)
        distribution.append(
            StatusCount(
                status=key,
                label=stage.label.title(),
                color=stage.color,
                badge=stage.badge,
                text=stage.text,
                count=count,
            )
        )
    return distribution


def _month_label(year: int, month: int) -> str:
    return date(year, month, 1).strftime("%b %Y")


def _previous_month(year: int, month: int) -> tuple[int, int]:
    return (year - 1, 12) if month == 1 else (year, month - 1)


def timeline(
    jobs: Sequence[JobRecord],
    months: int = 6,
    fill_gaps: bool = False,
    tz: timezone = timezone.utc,
) -> list[TimelinePoint]:
    """Bucket jobs by the calendar month they were saved in.

    Keeps the ``months`` most recent months, oldest first. Without
    ``fill_gaps`` only months with at least one job appear; with it the
    result is a continuous window ending at the latest month, with zero
    counts for empty months. Jobs without a saved date are skipped.

    Args:
        jobs: Job collection
        months: Number of months to keep
        fill_gaps: Synthesize zero-count months inside the window
        tz: Timezone used to decide which month a timestamp falls in

    Returns:
        Timeline points ordered from oldest to newest month
    """
    if months <= 0:
        return []

    counts: Counter[tuple[int, int]] = Counter()
    for job in jobs:
        if job.date_saved is None:
            continue
        saved = ensure_utc(job.date_saved).astimezone(tz)
        counts[(saved.year, saved.month)] += 1

    if not counts:
        return []

    if fill_gaps:
        window = [max(counts)]
        while len(window) < months:
            window.append(_previous_month(*window[-1]))
        keys = list(reversed(window))
    else:
        keys = sorted(counts)[-months:]

    return [
        TimelinePoint(year=year, month=month, label=_month_label(year, month), count=counts.get((year, month), 0))
        for year, month in keys
    ]


def salary_bucket_label(salary: int) -> str:
    """Return the histogram bucket a salary value falls in."""
    for label, _lower, upper in SALARY_BUCKETS:
        if upper is None or salary <= upper:
            return label
    return SALARY_BUCKETS[-1][0]


def salary_histogram(jobs: Sequence[JobRecord]) -> list[SalaryBucket]:
    """Count jobs per salary range, keyed by the larger salary bound.

    Jobs with neither bound set are left out entirely.
    """
    counts = Counter(
        salary_bucket_label(job.salary_value)
        for job in jobs
        if job.salary_value is not None
    )
    return [
        SalaryBucket(label=label, lower=lower, upper=upper, count=counts.get(label, 0))
        for label, lower, upper in SALARY_BUCKETS
    ]


def summary_metrics(jobs: Sequence[JobRecord]) -> SummaryMetrics:
    """Compute the headline counts, conversion rate and average salary."""
    statuses = [normalize_status(job.status) for job in jobs]
    active = sum(1 for status in statuses if status in ACTIVE_STATUSES)
    accepted = sum(1 for status in statuses if status == "accepted")
    conversion_rate = _round_half_up(accepted / active * 100) if active else 0

    salaries = [job.salary_value for job in jobs if job.salary_value is not None]
    average_salary = _round_half_up(sum(salaries) / len(salaries)) if salaries else None

    return SummaryMetrics(
        total=len(jobs),
        active=active,
        accepted=accepted,
        conversion_rate=conversion_rate,
        average_salary=average_salary,
    )


def recent_activity(jobs: Sequence[JobRecord], limit: int = RECENT_ACTIVITY_LIMIT) -> list[JobRecord]:
    """Most recently saved jobs, newest first."""
    oldest = datetime.min.replace(tzinfo=timezone.utc)
    ordered = sorted(
        jobs,
        key=lambda job: ensure_utc(job.date_saved) if job.date_saved else oldest,
        reverse=True,
    )
    return ordered[:limit]


def compute_analytics(
    jobs: Sequence[JobRecord],
    months: int = 6,
    fill_gaps: bool = False,
    demo: bool = False,
) -> AnalyticsReport:
    """Run every aggregation over the same collection."""
    return AnalyticsReport(
        demo=demo,
        status_distribution=status_distribution(jobs),
        timeline=timeline(jobs, months=months, fill_gaps=fill_gaps),
        salary_histogram=salary_histogram(jobs),
        summary=summary_metrics(jobs),
        recent_activity=recent_activity(jobs),
    )
