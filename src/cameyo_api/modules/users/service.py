from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import Select, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import UserServiceError
from .models import User
from .schemas import UserCreateRequest, UserListResponse, UserResponse, UserStatus, UserUpdateRequest


logger = logging.getLogger(__name__)

# Columns that must stay unique inside a tenant schema, with their error labels
_UNIQUE_FIELDS = (
    ("email", "Email"),
    ("phone_number", "Phone number"),
    ("document_id", "Document ID"),
)


def create_user(db: Session, payload: UserCreateRequest) -> User:
    logger.info("Creating user with email: %s", payload.email)
    data = payload.model_dump()
    _ensure_unique(db, data)

    user = User(
        email=payload.email,
        phone_number=payload.phone_number,
        full_name=payload.full_name,
        document_id=payload.document_id,
        profile_photo_url=payload.profile_photo_url,
        skills=list(payload.skills),
        current_latitude=payload.current_latitude,
        current_longitude=payload.current_longitude,
        status=payload.status.value,
    )
    if payload.current_latitude is not None or payload.current_longitude is not None:
        user.last_location_update = datetime.now(timezone.utc)

    db.add(user)
    try:
        db.flush()
    except IntegrityError as exc:
        raise UserServiceError("User already exists", HTTPStatus.CONFLICT) from exc
    logger.info("User created successfully with ID: %s", user.id)
    return user


def get_user(db: Session, user_id: UUID) -> User:
    user = db.get(User, user_id)
    if user is None or user.status == UserStatus.DELETED.value:
        raise UserServiceError(f"User with ID {user_id} not found", HTTPStatus.NOT_FOUND)
    return user


def list_users_paginated(
    db: Session,
    *,
    page: int = 1,
    page_size: int = 10,
    status: Optional[UserStatus] = None,
) -> UserListResponse:
    stmt: Select[tuple[User]] = select(User)
    if status is not None:
        stmt = stmt.where(User.status == status.value)
    else:
        stmt = stmt.where(User.status != UserStatus.DELETED.value)

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    users = (
        db.execute(
            stmt.order_by(User.created_at.desc(), User.id)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        .scalars()
        .all()
    )
    return UserListResponse(
        items=[serialize_user(user) for user in users],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size) if total else 0,
    )


def update_user(db: Session, user_id: UUID, payload: UserUpdateRequest) -> User:
    logger.info("Updating user with ID: %s", user_id)
    user = get_user(db, user_id)
    changes = payload.model_dump(exclude_unset=True)
    _ensure_unique(db, changes, exclude_id=user.id)

    for field, value in changes.items():
        if field == "status" and value is not None:
            value = UserStatus(value).value
        setattr(user, field, value)
    if "current_latitude" in changes or "current_longitude" in changes:
        user.last_location_update = datetime.now(timezone.utc)

    try:
        db.flush()
    except IntegrityError as exc:
        raise UserServiceError("User already exists", HTTPStatus.CONFLICT) from exc
    logger.info("User updated successfully with ID: %s", user_id)
    return user


def delete_user(db: Session, user_id: UUID) -> None:
    logger.info("Soft deleting user with ID: %s", user_id)
    user = get_user(db, user_id)
    user.status = UserStatus.DELETED.value
    db.flush()


def serialize_user(user: User) -> UserResponse:
    return UserResponse.model_validate(user)


def _ensure_unique(db: Session, data: dict[str, Any], exclude_id: UUID | None = None) -> None:
    for field, label in _UNIQUE_FIELDS:
        value = data.get(field)
        if not value:
            continue
        stmt = select(User.id).where(getattr(User, field) == value)
        if exclude_id is not None:
            stmt = stmt.where(User.id != exclude_id)
        if db.execute(stmt).first() is not None:
            raise UserServiceError(f"{label} already in use", HTTPStatus.CONFLICT)
