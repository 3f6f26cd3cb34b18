from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class AdminRegister(BaseModel):
    username: str
    password: str
    email: Optional[str] = None
    qq_number: Optional[str] = None


class AdminLogin(BaseModel):
    username: str
    password: str


class AdminProfileUpdate(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None


class PasswordChange(BaseModel):
    current_password: str
    new_password: str


class AdminView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: Optional[str] = None
    qq_number: Optional[str] = None
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    admin: AdminView


__all__ = [
    "AdminRegister",
    "AdminLogin",
    "AdminProfileUpdate",
    "PasswordChange",
    "AdminView",
    "TokenResponse",
]
