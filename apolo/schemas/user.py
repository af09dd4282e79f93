from pydantic import BaseModel, ConfigDict
from typing import Optional
from datetime import datetime


class User(BaseModel):
    """Resolved identity as the client sees it (name/avatar from profiles)."""
    model_config = ConfigDict(frozen=True)

    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    avatar_url: Optional[str] = None
    avatar_color: Optional[str] = None


class Notification(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    content: str
    is_read: bool = False
    created_at: Optional[datetime] = None


# API schemas for the auth router

class UserBase(BaseModel):
    email: str

class UserCreate(UserBase):
    password: str
    full_name: Optional[str] = None

class ProfileRead(UserBase):
    id: str
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

class TokenData(BaseModel):
    email: Optional[str] = None

class AuthResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: ProfileRead
