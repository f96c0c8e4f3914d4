"""User profile Pydantic schemas."""

from typing import List, Optional

from pydantic import BaseModel


class UserUpsert(BaseModel):
    """Schema for creating or updating a user profile."""

    home_address: Optional[str] = None
    interests: Optional[List[str]] = None


class UserResponse(BaseModel):
    """User profile response."""

    user_id: str
    home_address: Optional[str]
    interests: List[str]
