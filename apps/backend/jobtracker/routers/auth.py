"""Auth API router.

Sign-up, sign-in and sign-out against the configured auth service. A
successful sign-in loads the user's jobs and profile through the context's
auth listener before the response is returned.
"""

import logging

from fastapi import APIRouter, Depends, status

from jobtracker.backends.base import AuthUser, Session
from jobtracker.context import TrackerContext, get_context
from jobtracker.errors import AuthError, friendly_auth_message
from jobtracker.schemas.auth import (
    SessionResponse,
    SignInRequest,
    SignUpRequest,
    UserResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


def _user_response(user: AuthUser) -> UserResponse:
    return UserResponse(id=user.id, email=user.email, email_confirmed=user.email_confirmed)


def _session_response(session: Session | None, message: str | None = None) -> SessionResponse:
    if session is None:
        return SessionResponse(authenticated=False, message=message)
    return SessionResponse(
        authenticated=True,
        user=_user_response(session.user),
        expires_at=session.expires_at,
        message=message,
    )


@router.post(
    "/sign-up",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an account"
)
async def sign_up(
    request: SignUpRequest,
    ctx: TrackerContext = Depends(get_context)
) -> SessionResponse:
    """Register a new user.

    When the auth service issues a session straight away the user is signed
    in and a profile holding their full name is created. Otherwise the user
    has to confirm their email first.

    Args:
        request: Email, password and optional full name
        ctx: Client context

    Returns:
        Session state after sign-up

    Raises:
        AuthError 401: The auth service rejected the sign-up
    """
    try:
        result = await ctx.sign_up(request.email, request.password, request.full_name)
    except AuthError as e:
        logger.warning(f"Sign-up rejected for {request.email}: {e.message}")
        raise AuthError(friendly_auth_message(e.message)) from e

    if result.session is None:
        return SessionResponse(
            authenticated=False,
            user=_user_response(result.user),
            message="Please check your email to confirm your account.",
        )

    logger.info(f"User signed up: {result.user.id}")
    return _session_response(result.session, "Account created successfully.")


@router.post(
    "/sign-in",
    response_model=SessionResponse,
    summary="Sign in with email and password"
)
async def sign_in(
    request: SignInRequest,
    ctx: TrackerContext = Depends(get_context)
) -> SessionResponse:
    """Sign in and load the user's data.

    Args:
        request: Email and password
        ctx: Client context

    Returns:
        Session state after sign-in

    Raises:
        AuthError 401: Invalid credentials or unconfirmed email
    """
    try:
        session = await ctx.sign_in(request.email, request.password)
    except AuthError as e:
        logger.warning(f"Sign-in rejected for {request.email}: {e.message}")
        raise AuthError(friendly_auth_message(e.message)) from e

    logger.info(f"User signed in: {session.user.id}")
    return _session_response(session)


@router.post(
    "/sign-out",
    response_model=SessionResponse,
    summary="Sign out"
)
async def sign_out(ctx: TrackerContext = Depends(get_context)) -> SessionResponse:
    """End the session and clear the local job collection."""
    await ctx.sign_out()
    return _session_response(None, "Signed out.")


@router.get(
    "/session",
    response_model=SessionResponse,
    summary="Get the current session"
)
async def get_session(ctx: TrackerContext = Depends(get_context)) -> SessionResponse:
    """Return the current session, refreshing an expired token first."""
    return _session_response(await ctx.current_session())
