from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class User(BaseModel):
    id: str
    email: str
    email_verified: bool = False
    created_at: datetime


class AuthTokens(BaseModel):
    access_token: str
    refresh_token: str
    expires_at: datetime  # access token expiry


class AuthResult(BaseModel):
    user: User
    tokens: AuthTokens


class TokenValidationResult(BaseModel):
    valid: bool
    user_id: Optional[str] = None


class RefreshTokenRecord(BaseModel):
    token: str
    user_id: str
    expires_at: datetime
