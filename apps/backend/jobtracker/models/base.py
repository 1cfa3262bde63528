"""Declarative base and shared column mixins."""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all ORM rows."""

    def to_dict(self) -> dict[str, Any]:
        """Return the row as a plain column -> value mapping."""
        return {column.key: getattr(self, column.key) for column in self.__table__.columns}


class TimestampMixin:
    """Bookkeeping timestamps shared by every table."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )
