"""Users API endpoints: accounts, profile and admin user management."""
import logging
from math import ceil
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from ticketflow_core import models, schemas, user_service
from ticketflow_core.notifications import deliver_all

from ...database import get_db
from ..dependencies import get_current_user, get_notifier, require_admin

logger = logging.getLogger("ticketflow-core.users")

router = APIRouter(tags=["users"])


def _auth_payload(user: models.User, token: str) -> schemas.AuthResponse:
    return schemas.AuthResponse(user=schemas.UserResponse.model_validate(user), access_token=token)


@router.post("/register", response_model=schemas.ApiResponse[schemas.AuthResponse], status_code=201)
def register(
    payload: schemas.UserRegister,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier),
):
    """
    Register a new account (role USER) and receive an access token.

    - **name**: 2-50 letters and spaces
    - **email**: Unique email address
    - **password**: 6-128 characters with a lowercase letter, an uppercase letter and a digit
    """
    user, token, requests = user_service.register_user(db, payload.name, payload.email, payload.password)
    background_tasks.add_task(deliver_all, notifier, requests)
    return schemas.ApiResponse(message="User registered successfully", data=_auth_payload(user, token))


@router.post("/login", response_model=schemas.ApiResponse[schemas.AuthResponse])
def login(
    payload: schemas.UserLogin,
    db: Session = Depends(get_db),
):
    """Exchange email and password for an access token."""
    user, token = user_service.authenticate_user(db, payload.email, payload.password)
    return schemas.ApiResponse(message="Login successful", data=_auth_payload(user, token))


@router.get("/profile", response_model=schemas.ApiResponse[schemas.UserResponse])
def get_profile(current_user: models.User = Depends(get_current_user)):
    """Get the current user's profile."""
    return schemas.ApiResponse(data=schemas.UserResponse.model_validate(current_user))


@router.put("/profile", response_model=schemas.ApiResponse[schemas.UserResponse])
def update_profile(
    payload: schemas.UserProfileUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Update the current user's profile.

    - **name**: New name (optional)
    - **email**: New email (optional, must not belong to another user)
    """
    user = user_service.update_profile(db, current_user, name=payload.name, email=payload.email)
    return schemas.ApiResponse(message="Profile updated successfully", data=schemas.UserResponse.model_validate(user))


@router.put("/change-password", response_model=schemas.ApiResponse[None])
def change_password(
    payload: schemas.PasswordChange,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Change the current user's password."""
    user_service.change_password(db, current_user, payload.current_password, payload.new_password)
    return schemas.ApiResponse(message="Password changed successfully")


@router.get("/assignable-users", response_model=schemas.ApiResponse[list[schemas.UserSummary]])
def get_assignable_users(
    search: Optional[str] = Query(None, description="Search in name and email"),
    project_id: Optional[UUID] = Query(None, description="Limit to the project's creator and members"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """List active users that tickets can be assigned to (max 50, sorted by name)."""
    users = user_service.assignable_users(db, current_user, search=search, project_id=project_id)
    return schemas.ApiResponse(data=[schemas.UserSummary.model_validate(user) for user in users])


@router.get("/users", response_model=schemas.ApiResponse[schemas.UserListResponse])
def list_users(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(10, ge=1, le=100, description="Items per page"),
    search: Optional[str] = Query(None, description="Search in name and email"),
    role: Optional[models.UserRole] = Query(None, description="Filter by role"),
    is_active: Optional[bool] = Query(None, description="Filter by active flag"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_admin),
):
    """
    List all users (admin only), newest first.

    - **page**: Page number (starts at 1)
    - **page_size**: Number of items per page (1-100)
    - **search**: Search text in name and email
    - **role**: USER or ADMIN
    - **is_active**: Filter by active flag
    """
    skip = (page - 1) * page_size
    users, total = user_service.list_users(
        db,
        current_user,
        skip=skip,
        limit=page_size,
        search=search,
        role=role,
        is_active=is_active,
    )

    return schemas.ApiResponse(data=schemas.UserListResponse(
        items=[schemas.UserResponse.model_validate(user) for user in users],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=ceil(total / page_size) if total > 0 else 0,
    ))


@router.put("/users/{user_id}/role", response_model=schemas.ApiResponse[schemas.UserResponse])
def update_user_role(
    user_id: UUID,
    payload: schemas.UserRoleUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_admin),
):
    """Change a user's global role (admin only, never your own)."""
    user = user_service.change_user_role(db, current_user, user_id, payload.role)
    return schemas.ApiResponse(message="User role updated successfully", data=schemas.UserResponse.model_validate(user))


@router.put("/users/{user_id}/status", response_model=schemas.ApiResponse[schemas.UserResponse])
def update_user_status(
    user_id: UUID,
    payload: schemas.UserStatusUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_admin),
):
    """Activate or deactivate a user (admin only, never your own account)."""
    user = user_service.change_user_status(db, current_user, user_id, payload.is_active)
    state = "activated" if user.is_active else "deactivated"
    return schemas.ApiResponse(message=f"User {state} successfully", data=schemas.UserResponse.model_validate(user))


@router.delete("/users/{user_id}", response_model=schemas.ApiResponse[schemas.UserDeleteResult])
def delete_user(
    user_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_admin),
):
    """
    Delete a user (admin only).

    Users still referenced by projects or tickets are deactivated instead.
    """
    deleted_id, deleted = user_service.delete_user(db, current_user, user_id)
    message = "User deleted successfully" if deleted else "User deactivated successfully (has associated data)"
    return schemas.ApiResponse(
        message=message,
        data=schemas.UserDeleteResult(id=deleted_id, deleted=deleted, deactivated=not deleted),
    )
