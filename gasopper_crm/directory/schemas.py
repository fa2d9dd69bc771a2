from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class UserCreate(BaseModel):
    employee_id: str = Field(min_length=1, max_length=50)
    email: EmailStr
    phone_number: str = Field(min_length=1, max_length=32)
    address: str | None = None
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=8, max_length=128)
    role_id: int
    manager_id: int | None = None


class UserUpdate(BaseModel):
    email: EmailStr | None = None
    phone_number: str | None = Field(default=None, max_length=32)
    address: str | None = None
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    role_id: int | None = None
    manager_id: int | None = None
    is_active: bool | None = None


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    employee_id: str
    email: str
    phone_number: str
    address: str | None
    first_name: str
    last_name: str
    full_name: str
    role_id: int
    role_name: str
    manager_id: int | None
    manager_name: str | None = None
    is_active: bool
    last_login: datetime | None
    created_at: datetime
    updated_at: datetime


class PasswordChange(BaseModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=8, max_length=128)


class RoleRead(BaseModel):
    id: int
    name: str
    description: str
