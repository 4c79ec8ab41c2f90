from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class UserStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    DELETED = "deleted"


class UserCreateRequest(BaseModel):
    email: Optional[EmailStr] = None
    phone_number: Optional[str] = Field(default=None, min_length=10, max_length=15)
    full_name: str = Field(min_length=2, max_length=100)
    document_id: Optional[str] = None
    profile_photo_url: Optional[str] = None
    skills: List[str] = []
    current_latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    current_longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    status: UserStatus = UserStatus.ACTIVE


class UserUpdateRequest(BaseModel):
    email: Optional[EmailStr] = None
    phone_number: Optional[str] = Field(default=None, min_length=10, max_length=15)
    full_name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    document_id: Optional[str] = None
    profile_photo_url: Optional[str] = None
    skills: Optional[List[str]] = None
    current_latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    current_longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    status: Optional[UserStatus] = None


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: Optional[str]
    phone_number: Optional[str]
    full_name: str
    document_id: Optional[str]
    profile_photo_url: Optional[str]
    skills: List[str] = []
    current_latitude: Optional[float]
    current_longitude: Optional[float]
    last_location_update: Optional[datetime]
    status: UserStatus
    email_verified: bool
    phone_verified: bool
    created_at: datetime
    updated_at: datetime


class UserListResponse(BaseModel):
    """Paginated user list response"""
    items: List[UserResponse]
    total: int
    page: int
    page_size: int
    total_pages: int
