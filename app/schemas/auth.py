from typing import Optional

from pydantic import BaseModel


class CredentialsRequest(BaseModel):
    """Username/password body for register and login.

    Length and charset rules live in the router so they follow Settings.
    """
    username: str
    password: str


class UserInfo(BaseModel):
    id: int
    username: str


class AuthResponse(BaseModel):
    success: bool = True
    user: UserInfo


class AuthStatusResponse(BaseModel):
    authenticated: bool
    user: Optional[UserInfo] = None


class SpotifyAuthStatusResponse(BaseModel):
    authenticated: bool
    expiresAt: Optional[str] = None


class MessageResponse(BaseModel):
    """Generic success response."""
    success: bool = True
