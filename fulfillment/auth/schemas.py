"""Pydantic schemas for authentication endpoints."""

from pydantic import BaseModel, ConfigDict, Field


class LoginRequest(BaseModel):
    """Request body for a magic link."""

    email: str = Field(min_length=1)
    redirect: str = Field(min_length=1)


class AuthorizeRequest(BaseModel):
    """Server-to-server authorization check."""

    model_config = ConfigDict(populate_by_name=True)

    session_token: str = Field(alias="sessionToken", min_length=1)
    path: str = Field(min_length=1)
    # Sent by the gateway alongside the token; not verified
    session_salt: str | None = Field(default=None, alias="sessionSalt")


class AuthorizeResponse(BaseModel):
    authorized: bool


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str
