"""Analytics response schemas."""

from pydantic import BaseModel, Field, computed_field

from .job import JobRecord


class StatusCount(BaseModel):
    """Number of jobs in one pipeline bucket."""

    status: str
    label: str
    color: str
    badge: str
    text: str
    count: int = Field(ge=0)


class TimelinePoint(BaseModel):
    """Jobs saved in one calendar month."""

    year: int
    month: int = Field(ge=1, le=12)
    label: str  # e.g. "Jan 2024"
    count: int = Field(ge=0)


class SalaryBucket(BaseModel):
    """Jobs whose salary falls in one fixed range."""

    label: str
    lower: int
    upper: int | None  # None for the open-ended top bucket
    count: int = Field(ge=0)


class SummaryMetrics(BaseModel):
    """Headline numbers for the analytics cards."""

    total: int
    active: int = Field(description="Jobs applied to or further along the pipeline")
    accepted: int
    conversion_rate: int = Field(description="Accepted / active, as a rounded percent")
    average_salary: int | None = Field(
        None, description="Mean salary over jobs with a salary bound, None when no job has one"
    )

    @computed_field
    @property
    def average_salary_display(self) -> str:
        if self.average_salary is None:
            return "N/A"
        return f"${self.average_salary:,}"


class AnalyticsReport(BaseModel):
    """Full analytics payload computed from the whole collection."""

    demo: bool = False
    status_distribution: list[StatusCount]
    timeline: list[TimelinePoint]
    salary_histogram: list[SalaryBucket]
    summary: SummaryMetrics
    recent_activity: list[JobRecord]


class PipelineResponse(BaseModel):
    """Per-stage counts for the funnel display."""

    demo: bool = False
    stages: list[StatusCount]
