"""
Pydantic schemas for User model validation.
"""
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, ConfigDict, Field

from veriluxe.models.user import UserRole


# Shared properties
class UserBase(BaseModel):
    """Base user schema with common fields."""
    email: EmailStr
    role: UserRole = UserRole.USER


# Properties to return to client
class User(UserBase):
    """Schema for user response (excludes password_hash)."""
    id: UUID
    is_active: bool
    created_at: datetime
    last_login: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# Login request
class UserLogin(BaseModel):
    """Schema for login request."""
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


# Admin account creation
class UserCreate(BaseModel):
    """Schema for an admin creating an account."""
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)
    role: UserRole = UserRole.USER


class UserCreateResponse(BaseModel):
    message: str
    user: User


# Login response
class TokenResponse(BaseModel):
    """Bearer token issued on login."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: User


class MessageResponse(BaseModel):
    message: str
