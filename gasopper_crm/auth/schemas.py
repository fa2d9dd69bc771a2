from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field

from gasopper_crm.directory.schemas import UserRead


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    user: UserRead
