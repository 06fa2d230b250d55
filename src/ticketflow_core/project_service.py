"""Project lifecycle: creation, updates, deletion/archival and membership."""
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from . import crud, models, permissions
from .errors import ConflictError, InvalidInputError, NotFoundError
from .notifications import NotificationRequest, plan_project_invitation

logger = logging.getLogger("ticketflow-core.project_service")

UPDATABLE_FIELDS = ("name", "description", "status", "priority", "end_date")


def _load_project(db: Session, project_id: UUID) -> models.Project:
    project = crud.get_project(db, project_id)
    if not project:
        raise NotFoundError("Project not found")
    return project


def _ensure_unique_name(db: Session, name: str, exclude_id: Optional[UUID] = None) -> None:
    """Names are unique across all projects, compared case-sensitively."""
    if crud.get_project_by_name(db, name, exclude_id=exclude_id):
        raise ConflictError("Project with this name already exists")


def create_project(
    db: Session,
    actor: models.User,
    name: str,
    description: str,
    status: models.ProjectStatus = models.ProjectStatus.ACTIVE,
    priority: models.ProjectPriority = models.ProjectPriority.MEDIUM,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> models.Project:
    """
    Create a project owned by the actor.

    Args:
        db: Database session
        actor: Acting user (must be ADMIN)
        name: Unique project name
        description: Project description
        status: Initial status (default ACTIVE)
        priority: Priority (default MEDIUM)
        start_date: Start date (default now)
        end_date: Optional end date

    Returns:
        Created project

    Raises:
        PermissionDeniedError: If the actor is not an ADMIN
        ConflictError: If the name is taken
    """
    permissions.require_admin(actor)
    _ensure_unique_name(db, name)

    project = crud.create_project(
        db,
        name=name,
        description=description,
        created_by_user_id=actor.id,
        status=status or models.ProjectStatus.ACTIVE,
        priority=priority or models.ProjectPriority.MEDIUM,
        start_date=start_date,
        end_date=end_date,
    )
    logger.info(f"Created project '{project.name}' (ID: {project.id}) by user {actor.id}")
    return project


def get_project(db: Session, actor: models.User, project_id: UUID) -> models.Project:
    """
    Get an active project the actor can view.

    Raises:
        NotFoundError: If the project does not exist or is archived
        PermissionDeniedError: If the actor lacks VIEWER access
    """
    project = _load_project(db, project_id)
    permissions.require_project_access(actor, project, models.ProjectRole.VIEWER)
    return project


def list_projects(
    db: Session,
    actor: models.User,
    skip: int = 0,
    limit: int = 10,
    **filters,
) -> tuple[list[models.Project], int]:
    """Active projects; non-admins only see projects they created or belong to."""
    user_scope = None if permissions.is_admin(actor) else actor.id
    return crud.get_projects(db, user_id=user_scope, skip=skip, limit=limit, **filters)


def update_project(
    db: Session,
    actor: models.User,
    project_id: UUID,
    changes: dict,
) -> models.Project:
    """
    Apply a partial update to a project.

    Args:
        db: Database session
        actor: Acting user (ADMIN or the project's creator)
        project_id: Project UUID
        changes: Field name to new value; unknown keys are ignored

    Returns:
        Updated project

    Raises:
        NotFoundError: If the project does not exist
        PermissionDeniedError: If the actor is neither ADMIN nor creator
        ConflictError: If a rename collides with another project
    """
    project = _load_project(db, project_id)
    permissions.require_project_manager(
        actor, project, "Access denied. Only admin or project creator can update project"
    )

    changes = {key: value for key, value in changes.items() if key in UPDATABLE_FIELDS}
    new_name = changes.get("name")
    if new_name and new_name != project.name:
        _ensure_unique_name(db, new_name, exclude_id=project.id)

    for field, value in changes.items():
        if value is None and field != "end_date":
            continue
        setattr(project, field, value)

    project = crud.save_project(db, project)
    logger.info(f"Updated project {project.id} by user {actor.id}")
    return project


def delete_project(db: Session, actor: models.User, project_id: UUID) -> tuple[UUID, bool]:
    """
    Delete a project, or archive it when tickets still reference it.

    Args:
        db: Database session
        actor: Acting user (must be ADMIN)
        project_id: Project UUID

    Returns:
        Tuple of (project id, deleted). `deleted` is False when the project was
        archived instead (is_active=False, status=ARCHIVED).

    Raises:
        NotFoundError: If the project does not exist
        PermissionDeniedError: If the actor is not an ADMIN
    """
    permissions.require_admin(actor)
    project = _load_project(db, project_id)

    if crud.has_dependents(db, models.Project, project.id):
        project = crud.archive_project(db, project)
        logger.info(f"Archived project {project.id} (has tickets) by user {actor.id}")
        return project.id, False

    crud.delete_project(db, project)
    logger.info(f"Deleted project {project_id} by user {actor.id}")
    return project_id, True


def list_members(db: Session, actor: models.User, project_id: UUID) -> list[models.ProjectMember]:
    project = get_project(db, actor, project_id)
    return crud.get_project_members(db, project.id)


def add_member(
    db: Session,
    actor: models.User,
    project_id: UUID,
    user_id: UUID,
    role: models.ProjectRole = models.ProjectRole.CONTRIBUTOR,
) -> tuple[models.Project, list[NotificationRequest]]:
    """
    Add a user to a project and plan an invitation.

    Args:
        db: Database session
        actor: Acting user (ADMIN or the project's creator)
        project_id: Project UUID
        user_id: User to add (must exist and be active)
        role: Member role (default CONTRIBUTOR)

    Returns:
        Tuple of (project, notification requests)

    Raises:
        NotFoundError: Project or user missing, or user inactive
        PermissionDeniedError: Actor is neither ADMIN nor creator
        ConflictError: User is already a member
    """
    project = _load_project(db, project_id)
    permissions.require_project_manager(
        actor, project, "Access denied. Only admin or project creator can add members"
    )

    user = crud.get_user_by_id(db, user_id)
    if not user or not user.is_active:
        raise NotFoundError("User not found or inactive")

    if permissions.find_member(project, user.id) is not None:
        raise ConflictError("User is already a member of this project")

    role = models.ProjectRole(role or models.ProjectRole.CONTRIBUTOR)
    crud.add_project_member(db, project, user.id, role)
    db.refresh(project)
    logger.info(f"Added user {user.id} to project {project.id} as {role.value}")
    return project, [plan_project_invitation(project, user, actor)]


def _require_member(project: models.Project, user_id: UUID) -> models.ProjectMember:
    member = permissions.find_member(project, user_id)
    if member is None:
        raise NotFoundError("User is not a member of this project")
    return member


def remove_member(db: Session, actor: models.User, project_id: UUID, user_id: UUID) -> models.Project:
    """
    Remove a member from a project.

    Raises:
        NotFoundError: Project missing, or user is not a member
        PermissionDeniedError: Actor is neither ADMIN nor creator
    """
    project = _load_project(db, project_id)
    permissions.require_project_manager(
        actor, project, "Access denied. Only admin or project creator can remove members"
    )
    member = _require_member(project, user_id)

    crud.remove_project_member(db, project, member)
    db.refresh(project)
    logger.info(f"Removed user {user_id} from project {project.id}")
    return project


def change_member_role(
    db: Session,
    actor: models.User,
    project_id: UUID,
    user_id: UUID,
    role: models.ProjectRole,
) -> models.Project:
    """
    Change a member's role.

    Raises:
        NotFoundError: Project missing, or user is not a member
        PermissionDeniedError: Actor is neither ADMIN nor creator
        InvalidInputError: Role outside VIEWER / CONTRIBUTOR / MANAGER
    """
    role = _parse_role(role)
    project = _load_project(db, project_id)
    permissions.require_project_manager(
        actor, project, "Access denied. Only admin or project creator can update member roles"
    )
    member = _require_member(project, user_id)

    crud.update_project_member_role(db, member, role)
    db.refresh(project)
    logger.info(f"Changed role of user {user_id} in project {project.id} to {role.value}")
    return project


def _parse_role(role) -> models.ProjectRole:
    try:
        return models.ProjectRole(role)
    except ValueError:
        raise InvalidInputError("Invalid role. Must be VIEWER, CONTRIBUTOR, or MANAGER")


def project_stats(db: Session, actor: models.User, project_id: UUID) -> dict:
    """
    Ticket statistics for one project (VIEWER access).

    Returns:
        Dict matching schemas.ProjectStats
    """
    project = get_project(db, actor, project_id)
    by_status = crud.count_tickets_by(db, "status", project_id=project.id)
    by_priority = crud.count_tickets_by(db, "priority", project_id=project.id)

    return {
        "total_tickets": sum(by_status.values()),
        "open_tickets": by_status.get(models.TicketStatus.OPEN.value, 0),
        "in_progress_tickets": by_status.get(models.TicketStatus.IN_PROGRESS.value, 0),
        "resolved_tickets": by_status.get(models.TicketStatus.RESOLVED.value, 0),
        "closed_tickets": by_status.get(models.TicketStatus.CLOSED.value, 0),
        "high_priority_tickets": by_priority.get(models.TicketPriority.HIGH.value, 0),
        "by_priority": by_priority,
        "member_count": len(project.members),
        "recent_tickets": crud.get_recent_tickets(db, project.id, limit=5),
    }
