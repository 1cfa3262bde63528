"""Job-related Pydantic schemas.

``JobRecord`` is the stored shape of a job as the backend returns it. It is
permissive so malformed rows degrade instead of crashing the
views: unknown statuses are kept verbatim and ratings are clamped. Optional
fields use None for "not set", which is distinct from 0 or "".

``JobDraft`` and ``JobUpdate`` are the validated input shapes checked before
any remote call is made.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from jobtracker.services.status_pipeline import DEFAULT_STATUS, STATUS_VALUES, normalize_status
from jobtracker.utils.date_parser import parse_job_date

DATE_FIELDS = ("date_applied", "test_date", "interview_date")

# Everything update() replaces: all fields except identity, ownership,
# date_saved and the bookkeeping timestamps
MUTABLE_FIELDS = (
    "position",
    "company",
    "location",
    "job_url",
    "notes",
    "salary_min",
    "salary_max",
    "status",
    "rating",
    "date_applied",
    "test_date",
    "interview_date",
)


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class JobFields(BaseModel):
    """Validated user-editable job fields shared by drafts and updates."""

    position: str = Field(..., min_length=1, max_length=255)
    company: str = Field(..., min_length=1, max_length=255)
    location: str | None = Field(None, max_length=255)
    job_url: str | None = None
    notes: str = ""
    salary_min: int | None = Field(None, ge=0)
    salary_max: int | None = Field(None, ge=0)
    status: str = DEFAULT_STATUS
    rating: int = Field(0, ge=0, le=5)
    date_applied: datetime | None = None
    test_date: datetime | None = None
    interview_date: datetime | None = None

    @field_validator("position", "company", mode="before")
    @classmethod
    def _strip_required(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("location", "job_url", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("notes", mode="before")
    @classmethod
    def _notes(cls, value: Any) -> Any:
        if value is None:
            return ""
        return value.strip() if isinstance(value, str) else value

    @field_validator("salary_min", "salary_max", mode="before")
    @classmethod
    def _salary(cls, value: Any) -> Any:
        if isinstance(value, str):
            text = value.strip().replace(",", "").lstrip("$")
            if not text:
                return None
            if not text.isdigit():
                raise ValueError("must be a whole number")
            return int(text)
        return value

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, value: Any) -> str:
        if value is None:
            return DEFAULT_STATUS
        canonical = normalize_status(value)
        if canonical is None:
            raise ValueError(
                f"unknown status '{value}', expected one of: {', '.join(STATUS_VALUES)}"
            )
        return canonical

    @field_validator(*DATE_FIELDS, mode="before")
    @classmethod
    def _dates(cls, value: Any) -> datetime | None:
        return parse_job_date(value)


class JobDraft(JobFields):
    """Schema for creating a new job."""

    pass


class JobUpdate(JobFields):
    """Schema for a full replacement of a job's mutable fields."""

    pass


class RatingUpdate(BaseModel):
    """Quick action: change a job's rating."""

    rating: int = Field(..., ge=0, le=5)


class StatusUpdate(BaseModel):
    """Quick action: move a job to another pipeline stage."""

    status: str

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, value: Any) -> str:
        canonical = normalize_status(value)
        if canonical is None:
            raise ValueError(
                f"unknown status '{value}', expected one of: {', '.join(STATUS_VALUES)}"
            )
        return canonical


class JobRecord(BaseModel):
    """A stored job as held by the job store."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    user_id: str | None = None

    position: str = ""
    company: str = ""
    location: str | None = None
    job_url: str | None = None
    notes: str | None = None

    salary_min: int | None = None
    salary_max: int | None = None

    status: str | None = None
    rating: int = 0

    date_saved: datetime | None = None
    date_applied: datetime | None = None
    test_date: datetime | None = None
    interview_date: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("id", "user_id", mode="before")
    @classmethod
    def _identifier(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @field_validator("position", "company", mode="before")
    @classmethod
    def _text(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("rating", mode="before")
    @classmethod
    def _clamp_rating(cls, value: Any) -> int:
        try:
            rating = int(value or 0)
        except (TypeError, ValueError):
            return 0
        return min(max(rating, 0), 5)

    @field_validator(
        "date_saved", *DATE_FIELDS, "created_at", "updated_at", mode="before"
    )
    @classmethod
    def _dates(cls, value: Any) -> datetime | None:
        return parse_job_date(value)

    @property
    def salary_value(self) -> int | None:
        """Larger of the two salary bounds, None when neither is set."""
        bounds = [b for b in (self.salary_max, self.salary_min) if b is not None]
        return max(bounds) if bounds else None

    @property
    def effective_date(self) -> datetime | None:
        """Date applied when known, otherwise the date the job was saved."""
        return self.date_applied or self.date_saved

    def mutable_fields(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in MUTABLE_FIELDS}

    def to_row(self) -> dict[str, Any]:
        return self.model_dump()
