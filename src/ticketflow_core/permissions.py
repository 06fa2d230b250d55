"""Access control for projects and tickets.

Two independent gates decide every project-scoped action:

1. Global ADMIN role: admins bypass project membership entirely.
2. Project access evaluator (`has_access`): the project creator always
   passes; other users pass when their member role ranks at or above the
   required level (VIEWER < CONTRIBUTOR < MANAGER).

Inactive users hold no access through either gate.

Capability required per action (non-admin callers):

    view project / ticket            VIEWER
    create ticket                    CONTRIBUTOR
    update / assign / unassign       CONTRIBUTOR
    update project, manage members   project creator only
    delete ticket                    project creator or ticket creator
    delete project                   ADMIN only
"""
import logging
from typing import Optional
from uuid import UUID

from .errors import PermissionDeniedError
from .models import ProjectRole, UserRole

logger = logging.getLogger("ticketflow-core.permissions")


# Capability ranking for project member roles
ROLE_RANK: dict[ProjectRole, int] = {
    ProjectRole.VIEWER: 1,
    ProjectRole.CONTRIBUTOR: 2,
    ProjectRole.MANAGER: 3,
}


def role_rank(role) -> int:
    """Return the numeric rank of a project role (enum member or its value)."""
    return ROLE_RANK[ProjectRole(role)]


def find_member(project, user_id: UUID):
    """
    Look up the membership entry for a user.

    Args:
        project: Project with a `members` collection
        user_id: User UUID

    Returns:
        The member entry, or None if the user is not a member
    """
    for member in project.members:
        if member.user_id == user_id:
            return member
    return None


def has_access(
    project,
    actor_id: UUID,
    required_level: ProjectRole = ProjectRole.VIEWER
) -> bool:
    """
    Decide whether a user reaches a project at the required capability level.

    Pure function over the supplied project state; the global ADMIN gate is
    applied by callers before this is consulted.

    Args:
        project: Project with `created_by_user_id` and `members`
        actor_id: UUID of the user asking for access
        required_level: Minimum project role needed

    Returns:
        True if access is allowed, False otherwise
    """
    if project.created_by_user_id == actor_id:
        return True

    member = find_member(project, actor_id)
    if member is None:
        return False

    return role_rank(member.role) >= role_rank(required_level)


def is_admin(actor) -> bool:
    """True if the actor is an active global administrator."""
    return bool(actor.is_active) and UserRole(actor.role) == UserRole.ADMIN


def is_project_creator(actor, project) -> bool:
    return project.created_by_user_id == actor.id


def can_access_project(
    actor,
    project,
    required_level: ProjectRole = ProjectRole.VIEWER
) -> bool:
    """
    Full access decision for an actor: activity, ADMIN gate, then evaluator.

    Args:
        actor: User performing the action
        project: Target project
        required_level: Minimum project role needed

    Returns:
        True if allowed
    """
    if not actor.is_active:
        return False
    if is_admin(actor):
        return True
    return has_access(project, actor.id, required_level)


def can_manage_project(actor, project) -> bool:
    """Project field updates and membership changes: ADMIN or creator."""
    if not actor.is_active:
        return False
    return is_admin(actor) or is_project_creator(actor, project)


def can_delete_ticket(actor, project, ticket) -> bool:
    """Ticket deletion: ADMIN, the project's creator, or the ticket's creator."""
    if not actor.is_active:
        return False
    return (
        is_admin(actor)
        or is_project_creator(actor, project)
        or ticket.created_by_user_id == actor.id
    )


def require_project_access(
    actor,
    project,
    required_level: ProjectRole = ProjectRole.VIEWER,
    message: Optional[str] = None,
) -> None:
    """
    Raise if the actor cannot reach the project at the required level.

    Raises:
        PermissionDeniedError: If access is denied
    """
    if not can_access_project(actor, project, required_level):
        logger.warning(
            f"Denied {required_level.value} access to project {project.id} for user {actor.id}"
        )
        raise PermissionDeniedError(message or "Access denied to this project")


def require_project_manager(actor, project, message: Optional[str] = None) -> None:
    """
    Raise unless the actor is an ADMIN or the project's creator.

    Raises:
        PermissionDeniedError: If the actor is neither
    """
    if not can_manage_project(actor, project):
        logger.warning(f"Denied project management on {project.id} for user {actor.id}")
        raise PermissionDeniedError(
            message or "Access denied. Only admin or project creator can perform this action"
        )


def require_admin(actor, message: Optional[str] = None) -> None:
    """
    Raise unless the actor is an active ADMIN.

    Raises:
        PermissionDeniedError: If the actor is not an admin
    """
    if not is_admin(actor):
        raise PermissionDeniedError(message or "Access denied. Insufficient permissions.")


def require_not_self(actor, target_id: UUID, message: str) -> None:
    """
    Self-modification guard for role, status and account deletion.

    Applies to admins too.

    Raises:
        PermissionDeniedError: If the actor targets their own account
    """
    if actor.id == target_id:
        logger.warning(f"Blocked self-targeted operation by user {actor.id}: {message}")
        raise PermissionDeniedError(message)
