"""Profile request/response schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

PROFILE_FIELDS = (
    "full_name",
    "phone",
    "location",
    "job_title",
    "company",
    "bio",
    "website",
    "linkedin_url",
    "github_url",
    "avatar_url",
)


class ProfileUpdate(BaseModel):
    """Schema for upserting a profile (all fields optional)."""

    full_name: str | None = Field(None, max_length=255)
    phone: str | None = Field(None, max_length=64)
    location: str | None = Field(None, max_length=255)
    job_title: str | None = Field(None, max_length=255)
    company: str | None = Field(None, max_length=255)
    bio: str | None = None
    website: str | None = None
    linkedin_url: str | None = None
    github_url: str | None = None
    avatar_url: str | None = None

    @field_validator(*PROFILE_FIELDS, mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip() or None
        return value


class Profile(ProfileUpdate):
    """Schema for profile response with all fields."""

    id: str
    user_id: str
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True
        extra = "ignore"
