"""Profile API router."""

from fastapi import APIRouter, Depends

from jobtracker.context import TrackerContext, get_context
from jobtracker.errors import AuthRequiredError
from jobtracker.schemas.profile import Profile, ProfileUpdate

router = APIRouter(prefix="/api/v1/profile", tags=["profile"])


@router.get(
    "",
    response_model=Profile | None,
    summary="Get the signed-in user's profile"
)
async def get_profile(ctx: TrackerContext = Depends(get_context)) -> Profile | None:
    """Fetch the profile; null when the user has not saved one yet.

    Raises:
        AuthRequiredError 401: Not signed in
        FetchError 502: The backend could not be read
    """
    if not ctx.is_authenticated:
        raise AuthRequiredError()
    return await ctx.profiles.fetch()


@router.put(
    "",
    response_model=Profile,
    summary="Create or update the profile"
)
async def update_profile(
    request: ProfileUpdate,
    ctx: TrackerContext = Depends(get_context)
) -> Profile:
    """Upsert the profile keyed by the user's id.

    Args:
        request: Profile fields to save; omitted fields are left as they are
        ctx: Client context

    Returns:
        The saved profile

    Raises:
        AuthRequiredError 401: Not signed in
        WriteError 502: The backend rejected the upsert
    """
    return await ctx.profiles.update(request)
