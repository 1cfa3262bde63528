"""Profile store: the signed-in user's contact details.

Fetched and upserted independently of jobs; a user without a profile row
yet simply has no profile.
"""

import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from jobtracker.backends.base import PROFILES_TABLE, DataStore
from jobtracker.errors import (
    AuthRequiredError,
    BackendError,
    FetchError,
    JobTrackerError,
    ValidationError,
    WriteError,
)
from jobtracker.schemas.profile import Profile, ProfileUpdate

logger = logging.getLogger(__name__)


class ProfileStore:
    """Holds and persists the current user's profile."""

    def __init__(
        self,
        data_store: DataStore,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._data = data_store
        self._clock = clock
        self.user_id: str | None = None
        self.profile: Profile | None = None
        self.last_error: JobTrackerError | None = None

    def bind_user(self, user_id: str) -> None:
        if user_id != self.user_id:
            self.user_id = user_id
            self.profile = None
            self.last_error = None

    def unbind_user(self) -> None:
        self.user_id = None
        self.profile = None
        self.last_error = None

    async def fetch(self) -> Profile | None:
        """Load the profile, returning None when the user has none yet.

        Raises:
            FetchError: On backend failure or a malformed row
        """
        if not self.user_id:
            self.profile = None
            return None

        try:
            rows = await self._data.select(PROFILES_TABLE, {"user_id": self.user_id})
            self.profile = Profile.model_validate(rows[0]) if rows else None
        except (BackendError, PydanticValidationError) as e:
            logger.error(f"Error fetching profile: {e}")
            self.last_error = FetchError(f"Failed to load profile: {e}")
            raise self.last_error from e

        self.last_error = None
        return self.profile

    async def update(self, fields: ProfileUpdate | Mapping[str, Any]) -> Profile:
        """Create or replace the profile keyed by user id.

        Raises:
            AuthRequiredError: No user is bound
            ValidationError: ``fields`` are invalid
            WriteError: The backend rejected the upsert
        """
        if not self.user_id:
            raise AuthRequiredError()

        if not isinstance(fields, ProfileUpdate):
            try:
                fields = ProfileUpdate.model_validate(dict(fields))
            except PydanticValidationError as e:
                raise ValidationError.from_pydantic(e) from e

        # The row id is assigned by the backend on first insert
        record = {
            "user_id": self.user_id,
            **fields.model_dump(exclude_unset=True),
            "updated_at": self._clock(),
        }

        try:
            row = await self._data.upsert(PROFILES_TABLE, record, on_conflict="user_id")
            self.profile = Profile.model_validate(row)
        except (BackendError, PydanticValidationError) as e:
            logger.error(f"Error updating profile: {e}")
            self.last_error = WriteError(f"Failed to update profile: {e}")
            raise self.last_error from e

        self.last_error = None
        logger.info(f"Profile saved for user {self.user_id}")
        return self.profile
