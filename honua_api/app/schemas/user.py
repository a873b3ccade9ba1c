"""
Pydantic models for accounts and profiles.

``UserCreate`` is the registration payload; ``ProfileUpdate`` is the
self-service profile form and ``UserUpdate`` the administrative edit.
Passwords are never part of a response model.
"""

from typing import Optional

from pydantic import BaseModel, Field


class UserBase(BaseModel):
    email: str = Field(..., examples=["user@example.com"])
    username: str = Field(..., examples=["leilani"])
    full_name: Optional[str] = Field(None, examples=["Leilani Kahale"])


class UserCreate(UserBase):
    """Schema for registering a user.

    ``invite_code`` is redeemed after the account is created; a bad code
    does not fail the registration.
    """

    password: str = Field(..., min_length=6, examples=["strongpassword"])
    invite_code: Optional[str] = Field(None, examples=["aB3_x9Qk-Z"])


class UserLogin(BaseModel):
    email: str
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserRead(UserBase):
    """Schema for reading a user from the API."""

    id: int
    role_id: int
    bio: Optional[str] = None
    location: Optional[str] = None
    website: Optional[str] = None
    avatar_url: Optional[str] = None
    cover_url: Optional[str] = None
    followers_count: int = 0
    following_count: int = 0
    reputation: int = 0
    disabled: bool = False

    model_config = {
        "from_attributes": True,
    }


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = None
    username: Optional[str] = None
    bio: Optional[str] = None
    location: Optional[str] = None
    website: Optional[str] = None
    avatar_url: Optional[str] = None
    cover_url: Optional[str] = None


class UserUpdate(BaseModel):
    """Schema for updating a user.

    All fields are optional; only provided fields will be updated.
    ``role_id`` and ``disabled`` are reserved for administrators.
    """

    email: Optional[str] = None
    full_name: Optional[str] = None
    password: Optional[str] = Field(None, min_length=6)
    role_id: Optional[int] = None
    disabled: Optional[bool] = None


class FollowRequest(BaseModel):
    userId: int
