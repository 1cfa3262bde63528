"""Pipeline API router for the funnel display."""

from fastapi import APIRouter, Depends

from jobtracker.context import TrackerContext, get_context
from jobtracker.schemas.analytics import PipelineResponse
from jobtracker.services.analytics import status_distribution
from jobtracker.services.demo import DEMO_JOBS
from jobtracker.services.status_pipeline import STATUS_VALUES

router = APIRouter(prefix="/api/v1/pipeline", tags=["pipeline"])


@router.get(
    "",
    response_model=PipelineResponse,
    summary="Per-stage counts"
)
async def get_pipeline(ctx: TrackerContext = Depends(get_context)) -> PipelineResponse:
    """Counts for the funnel display.

    All six stages are listed in pipeline order with zero counts kept; jobs
    with an unknown or missing status are not part of the funnel.
    """
    demo = not ctx.is_authenticated
    distribution = status_distribution(DEMO_JOBS if demo else ctx.jobs.jobs)
    stages = [entry for entry in distribution if entry.status in STATUS_VALUES]
    return PipelineResponse(demo=demo, stages=stages)
