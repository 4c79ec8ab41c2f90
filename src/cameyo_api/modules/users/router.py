from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from fastapi import status as http_status
from sqlalchemy.orm import Session

from ...api.deps import get_db
from .errors import UserServiceError
from .schemas import UserCreateRequest, UserListResponse, UserResponse, UserStatus, UserUpdateRequest
from .service import (
    create_user,
    delete_user,
    get_user,
    list_users_paginated,
    serialize_user,
    update_user,
)

# Every query here runs against the schema of the request's tenant.
router = APIRouter(prefix="/users", tags=["users"])


@router.get("/", response_model=UserListResponse)
def list_users_endpoint(
    page: int = Query(1, ge=1, description="Page number (1-indexed)"),
    page_size: int = Query(10, ge=1, le=100, description="Items per page (1-100)"),
    status: UserStatus | None = Query(None, description="Filter by status"),
    db: Session = Depends(get_db),
) -> UserListResponse:
    return list_users_paginated(db, page=page, page_size=page_size, status=status)


@router.post("/", response_model=UserResponse, status_code=http_status.HTTP_201_CREATED)
def create_user_endpoint(
    payload: UserCreateRequest,
    db: Session = Depends(get_db),
) -> UserResponse:
    try:
        user = create_user(db, payload)
    except UserServiceError as exc:
        raise HTTPException(status_code=int(exc.status_code), detail=exc.detail)
    return serialize_user(user)


@router.get("/{user_id}", response_model=UserResponse)
def get_user_endpoint(user_id: UUID, db: Session = Depends(get_db)) -> UserResponse:
    try:
        user = get_user(db, user_id)
    except UserServiceError as exc:
        raise HTTPException(status_code=int(exc.status_code), detail=exc.detail)
    return serialize_user(user)


@router.patch("/{user_id}", response_model=UserResponse)
def update_user_endpoint(
    user_id: UUID,
    payload: UserUpdateRequest,
    db: Session = Depends(get_db),
) -> UserResponse:
    try:
        user = update_user(db, user_id, payload)
    except UserServiceError as exc:
        raise HTTPException(status_code=int(exc.status_code), detail=exc.detail)
    return serialize_user(user)


@router.delete("/{user_id}", status_code=http_status.HTTP_204_NO_CONTENT)
def delete_user_endpoint(user_id: UUID, db: Session = Depends(get_db)) -> Response:
    try:
        delete_user(db, user_id)
    except UserServiceError as exc:
        raise HTTPException(status_code=int(exc.status_code), detail=exc.detail)
    return Response(status_code=http_status.HTTP_204_NO_CONTENT)
