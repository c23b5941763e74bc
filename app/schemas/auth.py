from datetime import datetime
from pydantic import BaseModel, Field

from ..core.security import UserRole


class UserLogin(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    subject: str
    role: UserRole


class IdentityResponse(BaseModel):
    subject: str
    role: UserRole
    expires_at: datetime
