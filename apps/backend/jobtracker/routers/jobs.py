"""Jobs API router.

This module exposes the job store and the view projector: a projected,
filtered and grouped job list, and the create/update/delete operations
plus the rating and status quick actions.

Visitors without a session see the demo collection and cannot mutate it.
"""

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, Query, Response, status
from pydantic import ValidationError as PydanticValidationError

from jobtracker.context import TrackerContext, get_context
from jobtracker.errors import AuthRequiredError, JobNotFoundError, ValidationError
from jobtracker.schemas.job import JobRecord, JobUpdate, RatingUpdate, StatusUpdate
from jobtracker.schemas.view import (
    GroupKey,
    JobViewResponse,
    SortDirection,
    SortField,
    ViewParams,
)
from jobtracker.services.demo import DEMO_JOBS
from jobtracker.services.view_projector import project

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/jobs", tags=["jobs"])


def _view_response(ctx: TrackerContext, params: ViewParams) -> JobViewResponse:
    demo = not ctx.is_authenticated
    jobs = DEMO_JOBS if demo else ctx.jobs.jobs
    groups = project(jobs, params)
    return JobViewResponse(
        demo=demo,
        loading=False if demo else ctx.jobs.loading,
        error=None if demo else ctx.jobs.error,
        total=len(jobs),
        shown=sum(group.count for group in groups),
        pending=[] if demo else ctx.jobs.pending_job_ids(),
        groups=groups,
    )


@router.get(
    "",
    response_model=JobViewResponse,
    summary="List jobs"
)
async def list_jobs(
    search: str = Query("", description="Substring of position, company or location"),
    status_filter: str = Query("all", alias="status", description="Status to show, or 'all'"),
    group: GroupKey = Query("none", description="Field to group by"),
    sort: SortField = Query("date", description="Field to sort by"),
    direction: SortDirection = Query("desc", description="Sort direction"),
    ctx: TrackerContext = Depends(get_context)
) -> JobViewResponse:
    """List jobs filtered, sorted and grouped for display.

    Args:
        search: Case-insensitive search text
        status_filter: Status to keep, "all" for every status
        group: Grouping key ("none", "status", "company", "location")
        sort: Sort field
        direction: "asc" or "desc"
        ctx: Client context

    Returns:
        Projected view with load state and pending mutations
    """
    params = ViewParams(
        search_text=search,
        status_filter=status_filter,
        group_key=group,
        sort_field=sort,
        sort_direction=direction,
    )
    return _view_response(ctx, params)


@router.post(
    "/refresh",
    response_model=JobViewResponse,
    summary="Reload jobs from the backend"
)
async def refresh_jobs(ctx: TrackerContext = Depends(get_context)) -> JobViewResponse:
    """Reload the collection, e.g. to retry after a failed load.

    Raises:
        AuthRequiredError 401: Not signed in
        FetchError 502: The backend could not be read; the previous
            collection is kept
    """
    if not ctx.is_authenticated:
        raise AuthRequiredError()
    await ctx.jobs.load()
    return _view_response(ctx, ViewParams())


@router.post(
    "",
    response_model=JobRecord,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new job"
)
async def create_job(
    draft: dict[str, Any] = Body(..., description="Job fields as entered in the form"),
    ctx: TrackerContext = Depends(get_context)
) -> JobRecord:
    """Create a new job.

    The form payload is validated leniently: blank optional fields are
    unset, salaries may be formatted ("$85,000") and dates may use common
    formats. The identifier and date saved are assigned by the store.

    Args:
        draft: Job fields
        ctx: Client context

    Returns:
        Created job record

    Raises:
        AuthRequiredError 401: Not signed in
        ValidationError 422: Invalid fields
        WriteError 502: The backend rejected the insert
    """
    job = await ctx.jobs.add(draft)
    return job


@router.get(
    "/{job_id}",
    response_model=JobRecord,
    summary="Get a job by ID"
)
async def get_job(job_id: str, ctx: TrackerContext = Depends(get_context)) -> JobRecord:
    """Get a single job from the local collection (or the demo set)."""
    jobs = ctx.jobs.jobs if ctx.is_authenticated else DEMO_JOBS
    for job in jobs:
        if job.id == job_id:
            return job
    raise JobNotFoundError(f"Job {job_id} not found")


@router.put(
    "/{job_id}",
    response_model=JobRecord,
    summary="Replace a job's fields"
)
async def update_job(
    job_id: str,
    fields: dict[str, Any] = Body(...),
    ctx: TrackerContext = Depends(get_context)
) -> JobRecord:
    """Replace every mutable field of a job.

    Fields left out of the payload take their defaults, as a full form
    submission would.

    Raises:
        AuthRequiredError 401: Not signed in
        JobNotFoundError 404: No such job for this user
        ValidationError 422: Invalid fields
        WriteError 502: The backend rejected the update
    """
    try:
        validated = JobUpdate.model_validate(fields)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e) from e

    current = ctx.jobs.get(job_id) or JobRecord(id=job_id)
    job = current.model_copy(update=validated.model_dump())
    return await ctx.jobs.update(job)


@router.patch(
    "/{job_id}/rating",
    response_model=JobRecord,
    summary="Set a job's rating"
)
async def set_rating(
    job_id: str,
    request: RatingUpdate,
    ctx: TrackerContext = Depends(get_context)
) -> JobRecord:
    """Quick action: change the star rating (0-5) of a job."""
    return await ctx.jobs.set_rating(job_id, request.rating)


@router.patch(
    "/{job_id}/status",
    response_model=JobRecord,
    summary="Move a job to another stage"
)
async def set_status(
    job_id: str,
    request: StatusUpdate,
    ctx: TrackerContext = Depends(get_context)
) -> JobRecord:
    """Quick action: change the pipeline stage of a job."""
    return await ctx.jobs.set_status(job_id, request.status)


@router.delete(
    "/{job_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a job"
)
async def delete_job(job_id: str, ctx: TrackerContext = Depends(get_context)) -> Response:
    """Delete a job. Deleting an unknown id succeeds without effect.

    Raises:
        AuthRequiredError 401: Not signed in
        WriteError 502: The backend rejected the delete
    """
    await ctx.jobs.remove(job_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
