"""Analytics API router.

Computes over the whole, unfiltered collection regardless of the view
parameters used for the job list.
"""

from fastapi import APIRouter, Depends, Query

from jobtracker.config import settings
from jobtracker.context import TrackerContext, get_context
from jobtracker.schemas.analytics import AnalyticsReport
from jobtracker.services.analytics import compute_analytics
from jobtracker.services.demo import DEMO_JOBS

router = APIRouter(prefix="/api/v1/analytics", tags=["analytics"])


@router.get(
    "",
    response_model=AnalyticsReport,
    summary="Compute analytics"
)
async def get_analytics(
    fill_gaps: bool | None = Query(None, description="Include months without any jobs"),
    months: int | None = Query(None, ge=1, le=24, description="Months in the timeline"),
    ctx: TrackerContext = Depends(get_context)
) -> AnalyticsReport:
    """Status distribution, timeline, salary histogram and summary metrics.

    Args:
        fill_gaps: Override the configured zero-month behaviour
        months: Override the configured timeline length
        ctx: Client context

    Returns:
        Analytics report, flagged ``demo`` when computed from sample data
    """
    demo = not ctx.is_authenticated
    return compute_analytics(
        DEMO_JOBS if demo else ctx.jobs.jobs,
        months=months or settings.timeline_months,
        fill_gaps=settings.timeline_fill_gaps if fill_gaps is None else fill_gaps,
        demo=demo,
    )
