"""Database models for the local backend."""

from .base import Base
from .job import JobRow
from .profile import ProfileRow

__all__ = [
    "Base",
    "JobRow",
    "ProfileRow",
]
