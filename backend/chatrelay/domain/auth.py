"""
Auth Domain Models

Users and the request/response DTOs of the auth endpoints.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from chatrelay.domain.subscription import SubscriptionResponse


class User(BaseModel):
    """Registered user (password hash never leaves the repository layer)."""
    id: str
    email: str
    name: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RegisterRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=6, max_length=72)
    name: Optional[str] = Field(default=None, max_length=255)


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=72)


class UserResponse(BaseModel):
    id: str
    email: str
    name: Optional[str] = None


class AuthResponse(BaseModel):
    """Token plus the state the frontend needs to route the user."""
    token: str
    user: UserResponse
    subscription: SubscriptionResponse


class MeResponse(BaseModel):
    user: UserResponse
    subscription: SubscriptionResponse
