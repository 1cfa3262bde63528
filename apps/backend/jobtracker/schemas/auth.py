"""Auth request/response schemas."""

from datetime import datetime

from pydantic import BaseModel, Field


class SignInRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    password: str = Field(..., min_length=1)


class SignUpRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    password: str = Field(..., min_length=6)
    full_name: str | None = Field(None, max_length=255)


class UserResponse(BaseModel):
    id: str
    email: str | None = None
    email_confirmed: bool = True


class SessionResponse(BaseModel):
    """Current authentication state of the client."""

    authenticated: bool
    user: UserResponse | None = None
    expires_at: datetime | None = None
    message: str | None = None
