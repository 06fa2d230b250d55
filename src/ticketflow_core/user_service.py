"""Accounts: registration, login, profile and admin user management."""
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from . import crud, models, permissions
from .errors import AuthenticationError, ConflictError, InvalidInputError, NotFoundError
from .notifications import NotificationRequest, plan_welcome
from .security import create_access_token, hash_password, verify_password

logger = logging.getLogger("ticketflow-core.user_service")

ASSIGNABLE_USERS_LIMIT = 50


def _load_user(db: Session, user_id: UUID) -> models.User:
    user = crud.get_user_by_id(db, user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


def register_user(
    db: Session,
    name: str,
    email: str,
    password: str,
) -> tuple[models.User, str, list[NotificationRequest]]:
    """
    Create a USER account and issue a token.

    Args:
        db: Database session
        name: Display name
        email: Email address (unique, stored lower-cased)
        password: Plain-text password (already strength-checked)

    Returns:
        Tuple of (user, access token, notification requests)

    Raises:
        ConflictError: If the email is already registered
    """
    email = email.strip().lower()
    if crud.get_user_by_email(db, email):
        raise ConflictError("User with this email already exists")

    user = crud.create_user(
        db,
        name=name,
        email=email,
        password_hash=hash_password(password),
        role=models.UserRole.USER,
    )
    logger.info(f"Registered user {user.id} ({user.email})")
    return user, create_access_token(user.id), [plan_welcome(user)]


def authenticate_user(db: Session, email: str, password: str) -> tuple[models.User, str]:
    """
    Check credentials, record the login and issue a token.

    Raises:
        AuthenticationError: Unknown email, wrong password or inactive account
    """
    user = crud.get_user_by_email(db, email.strip().lower())
    if not user or not verify_password(password, user.password_hash):
        logger.warning(f"Failed login for {email}")
        raise AuthenticationError("Invalid email or password")

    if not user.is_active:
        logger.warning(f"Login attempt for deactivated user {user.id}")
        raise AuthenticationError("Account is deactivated")

    user.last_login = datetime.utcnow()
    user = crud.save_user(db, user)
    return user, create_access_token(user.id)


def update_profile(
    db: Session,
    actor: models.User,
    name: Optional[str] = None,
    email: Optional[str] = None,
) -> models.User:
    """
    Update the actor's own name and/or email.

    Raises:
        ConflictError: If the new email belongs to another user
    """
    if email:
        email = email.strip().lower()
        if email != actor.email:
            existing = crud.get_user_by_email(db, email)
            if existing and existing.id != actor.id:
                raise ConflictError("Email is already in use")
            actor.email = email

    if name:
        actor.name = name

    return crud.save_user(db, actor)


def change_password(
    db: Session,
    actor: models.User,
    current_password: str,
    new_password: str,
) -> None:
    """
    Replace the actor's password after checking the current one.

    Raises:
        InvalidInputError: If the current password does not match
    """
    if not verify_password(current_password, actor.password_hash):
        raise InvalidInputError("Current password is incorrect")

    actor.password_hash = hash_password(new_password)
    actor.password_changed_at = datetime.utcnow()
    crud.save_user(db, actor)
    logger.info(f"User {actor.id} changed password")


def list_users(
    db: Session,
    actor: models.User,
    skip: int = 0,
    limit: int = 10,
    **filters,
) -> tuple[list[models.User], int]:
    """All users (ADMIN only), newest first."""
    permissions.require_admin(actor)
    return crud.get_users(db, skip=skip, limit=limit, **filters)


def change_user_role(
    db: Session,
    actor: models.User,
    user_id: UUID,
    role: models.UserRole,
) -> models.User:
    """
    Change another user's global role.

    Raises:
        PermissionDeniedError: Actor is not ADMIN, or targets themselves
        NotFoundError: Target does not exist
    """
    permissions.require_admin(actor)
    permissions.require_not_self(actor, user_id, "Cannot change your own role")
    user = _load_user(db, user_id)

    user.role = models.UserRole(role)
    user = crud.save_user(db, user)
    logger.info(f"User {actor.id} set role of {user.id} to {user.role.value}")
    return user


def change_user_status(
    db: Session,
    actor: models.User,
    user_id: UUID,
    is_active: bool,
) -> models.User:
    """
    Activate or deactivate another user.

    Raises:
        PermissionDeniedError: Actor is not ADMIN, or targets themselves
        NotFoundError: Target does not exist
    """
    permissions.require_admin(actor)
    permissions.require_not_self(actor, user_id, "Cannot change your own status")
    user = _load_user(db, user_id)

    user.is_active = is_active
    user = crud.save_user(db, user)
    logger.info(f"User {actor.id} set {user.id} {'active' if is_active else 'inactive'}")
    return user


def delete_user(db: Session, actor: models.User, user_id: UUID) -> tuple[UUID, bool]:
    """
    Delete a user, or deactivate them when other records reference them.

    Args:
        db: Database session
        actor: Acting user (must be ADMIN)
        user_id: Target user

    Returns:
        Tuple of (user id, deleted). `deleted` is False when the user was
        deactivated instead.

    Raises:
        PermissionDeniedError: Actor is not ADMIN, or targets themselves
        NotFoundError: Target does not exist
    """
    permissions.require_admin(actor)
    permissions.require_not_self(actor, user_id, "Cannot delete your own account")
    user = _load_user(db, user_id)

    if crud.has_dependents(db, models.User, user.id):
        user.is_active = False
        crud.save_user(db, user)
        logger.info(f"Deactivated user {user_id} (has associated data) by user {actor.id}")
        return user_id, False

    crud.delete_user(db, user)
    logger.info(f"Deleted user {user_id} by user {actor.id}")
    return user_id, True


def assignable_users(
    db: Session,
    actor: models.User,
    search: Optional[str] = None,
    project_id: Optional[UUID] = None,
) -> list[models.User]:
    """
    Active users a ticket could be assigned to.

    With `project_id`, the actor needs VIEWER access (or ADMIN) and results
    are limited to the project's creator and members.

    Raises:
        NotFoundError: If the project does not exist
        PermissionDeniedError: If the actor cannot view the project
    """
    user_ids = None
    if project_id:
        project = crud.get_project(db, project_id, active_only=False)
        if not project:
            raise NotFoundError("Project not found")
        permissions.require_project_access(actor, project, models.ProjectRole.VIEWER)
        user_ids = [project.created_by_user_id] + [member.user_id for member in project.members]

    return crud.search_assignable_users(
        db, search=search, user_ids=user_ids, limit=ASSIGNABLE_USERS_LIMIT
    )
