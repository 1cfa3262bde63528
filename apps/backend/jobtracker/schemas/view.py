"""Schemas for projected job views (filter, sort, group)."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, computed_field

from .job import JobRecord

GroupKey = Literal["none", "status", "company", "location"]
SortDirection = Literal["asc", "desc"]
SortField = Literal[
    "date",
    "date_saved",
    "date_applied",
    "test_date",
    "interview_date",
    "position",
    "company",
    "location",
    "rating",
    "salary",
    "status",
]


class ViewParams(BaseModel):
    """UI-selected view parameters.

    ``sort_field="date"`` sorts by date applied, falling back to the date
    the job was saved.
    """

    model_config = ConfigDict(frozen=True)

    search_text: str = ""
    status_filter: str = "all"
    group_key: GroupKey = "none"
    sort_field: SortField = "date"
    sort_direction: SortDirection = "desc"


class JobGroup(BaseModel):
    """One named bucket of the projected job sequence."""

    key: str
    label: str
    jobs: list[JobRecord]

    @computed_field
    @property
    def count(self) -> int:
        return len(self.jobs)


class JobViewResponse(BaseModel):
    """Schema for the job list endpoint."""

    demo: bool
    loading: bool
    error: str | None = None
    total: int
    shown: int
    pending: list[str]
    groups: list[JobGroup]
