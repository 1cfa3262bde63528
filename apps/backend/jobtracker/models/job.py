"""Job row for the local backend's ``jobs`` table."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class JobRow(Base, TimestampMixin):
    """One tracked job application owned by a single user."""

    __tablename__ = "jobs"

    # Opaque identifier assigned by the client store
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # Posting
    position: Mapped[str] = mapped_column(String(255), nullable=False)
    company: Mapped[str] = mapped_column(String(255), nullable=False)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    job_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Compensation
    salary_min: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    salary_max: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Pipeline
    status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    rating: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Dates
    date_saved: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    date_applied: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    test_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    interview_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_jobs_user_date_saved", "user_id", "date_saved"),
    )

    def __repr__(self) -> str:
        return f"<JobRow(position='{self.position}', company='{self.company}', status={self.status})>"
