"""Ticket operations: authorization, lifecycle and notification planning.

Each write operation returns the ticket together with the notification
requests it produced. Callers hand those requests to
`notifications.deliver_all` after the response is committed.
"""
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from . import crud, models, permissions
from .errors import NotFoundError, PermissionDeniedError
from .notifications import NotificationRequest, capture_state, plan_ticket_notifications
from .ticket_lifecycle import change_status, open_ticket, validate_hours

logger = logging.getLogger("ticketflow-core.ticket_service")

# Fields a ticket update may touch; anything else in the payload is ignored
UPDATABLE_FIELDS = (
    "title",
    "description",
    "status",
    "priority",
    "ticket_type",
    "assigned_to_user_id",
    "due_date",
    "estimated_hours",
    "actual_hours",
    "tags",
)

# NOT NULL columns; an explicit None for these leaves the value unchanged
REQUIRED_FIELDS = ("title", "description", "status", "priority", "ticket_type")


def _load_ticket(db: Session, ticket_id: UUID) -> models.Ticket:
    ticket = crud.get_ticket(db, ticket_id)
    if not ticket:
        raise NotFoundError("Ticket not found")
    return ticket


def _validate_assignee(
    db: Session,
    actor: models.User,
    project: models.Project,
    assignee_id: UUID,
) -> models.User:
    """
    Check that a prospective assignee exists, is active and can see the project.

    The project-access check is skipped when the actor is an ADMIN.

    Raises:
        NotFoundError: If the user does not exist or is inactive
        PermissionDeniedError: If the user cannot view the project
    """
    assignee = crud.get_user_by_id(db, assignee_id)
    if not assignee or not assignee.is_active:
        raise NotFoundError("Assigned user not found or inactive")

    if not permissions.is_admin(actor) and not permissions.has_access(project, assignee.id):
        logger.warning(f"Rejected assignee {assignee.id} without access to project {project.id}")
        raise PermissionDeniedError("Assigned user does not have access to this project")

    return assignee


def create_ticket(
    db: Session,
    actor: models.User,
    project_id: UUID,
    title: str,
    description: str,
    priority: models.TicketPriority = models.TicketPriority.MEDIUM,
    ticket_type: models.TicketType = models.TicketType.BUG,
    assigned_to_user_id: Optional[UUID] = None,
    due_date: Optional[datetime] = None,
    estimated_hours: Optional[float] = None,
    tags: Optional[list[str]] = None,
) -> tuple[models.Ticket, list[NotificationRequest]]:
    """
    Create a ticket in OPEN status with one seeded history entry.

    Args:
        db: Database session
        actor: Acting user (needs CONTRIBUTOR on the project, or ADMIN)
        project_id: Target project (must be active)
        title: Ticket title
        description: Ticket description
        priority: Ticket priority
        ticket_type: Ticket type (defaults to BUG)
        assigned_to_user_id: Optional assignee
        due_date: Optional due date
        estimated_hours: Optional estimate in [0, 1000]
        tags: Optional tags

    Returns:
        Tuple of (created ticket, notification requests)

    Raises:
        NotFoundError: Project or assignee missing
        PermissionDeniedError: Actor or assignee lacks access
        InvalidInputError: Hours out of range
    """
    project = crud.get_project(db, project_id)
    if not project:
        raise NotFoundError("Project not found")

    permissions.require_project_access(
        actor, project, models.ProjectRole.CONTRIBUTOR, "Access denied to this project"
    )

    validate_hours("estimated_hours", estimated_hours)

    if assigned_to_user_id:
        _validate_assignee(db, actor, project, assigned_to_user_id)

    ticket = models.Ticket(
        project=project,
        title=title,
        description=description,
        priority=priority,
        ticket_type=ticket_type or models.TicketType.BUG,
        assigned_to_user_id=assigned_to_user_id,
        due_date=due_date,
        estimated_hours=estimated_hours,
        actual_hours=0,
        tags=list(tags or []),
        created_by_user_id=actor.id,
    )
    open_ticket(ticket, created_by=actor.id)
    ticket = crud.add_ticket(db, ticket)

    logger.info(f"Created ticket {ticket.id} in project {project.id} by user {actor.id}")
    return ticket, plan_ticket_notifications(None, ticket, actor)


def get_ticket(db: Session, actor: models.User, ticket_id: UUID) -> models.Ticket:
    """
    Get a ticket the actor can view (VIEWER on its project, or ADMIN).

    Raises:
        NotFoundError: If the ticket does not exist
        PermissionDeniedError: If the actor cannot view its project
    """
    ticket = _load_ticket(db, ticket_id)
    permissions.require_project_access(
        actor, ticket.project, models.ProjectRole.VIEWER, "Access denied to this ticket"
    )
    return ticket


def update_ticket(
    db: Session,
    actor: models.User,
    ticket_id: UUID,
    changes: dict,
    comment: Optional[str] = None,
    revalidate_assignee: bool = False,
) -> tuple[models.Ticket, list[NotificationRequest]]:
    """
    Apply a partial update to a ticket.

    Only keys present in `changes` are applied; None for a required field
    is ignored. A status change goes through the lifecycle engine (history
    entry plus resolved_at/closed_at), and a new assignee is revalidated
    exactly as on create. With `revalidate_assignee` the assignee is checked
    even when it is unchanged.

    Args:
        db: Database session
        actor: Acting user (needs CONTRIBUTOR on the project, or ADMIN)
        ticket_id: Ticket UUID
        changes: Field name to new value, e.g. from `model_dump(exclude_unset=True)`
        comment: Optional note stored with a status history entry

    Returns:
        Tuple of (updated ticket, notification requests)

    Raises:
        NotFoundError: Ticket or assignee missing
        PermissionDeniedError: Actor or assignee lacks access
        InvalidInputError: Hours out of range
    """
    ticket = _load_ticket(db, ticket_id)
    project = ticket.project
    permissions.require_project_access(
        actor, project, models.ProjectRole.CONTRIBUTOR, "Access denied to update this ticket"
    )

    changes = {
        key: value
        for key, value in changes.items()
        if key in UPDATABLE_FIELDS and not (value is None and key in REQUIRED_FIELDS)
    }

    # Validate everything before the first write
    for hours_field in ("estimated_hours", "actual_hours"):
        if hours_field in changes:
            validate_hours(hours_field, changes[hours_field])

    new_assignee_id = changes.get("assigned_to_user_id")
    if new_assignee_id and (revalidate_assignee or new_assignee_id != ticket.assigned_to_user_id):
        _validate_assignee(db, actor, project, new_assignee_id)

    before = capture_state(ticket)

    new_status = changes.pop("status", None)
    for field, value in changes.items():
        if field == "actual_hours" and value is None:
            value = 0
        if field == "tags" and value is None:
            value = []
        setattr(ticket, field, value)

    if new_status is not None:
        change_status(ticket, new_status, changed_by=actor.id, comment=comment)

    ticket = crud.save_ticket(db, ticket)
    logger.info(f"Updated ticket {ticket.id} by user {actor.id}")
    return ticket, plan_ticket_notifications(before, ticket, actor)


def assign_ticket(
    db: Session,
    actor: models.User,
    ticket_id: UUID,
    assignee_id: UUID,
) -> tuple[models.Ticket, list[NotificationRequest]]:
    """Partial update restricted to the assignee, always revalidated."""
    return update_ticket(
        db, actor, ticket_id, {"assigned_to_user_id": assignee_id}, revalidate_assignee=True
    )


def unassign_ticket(
    db: Session,
    actor: models.User,
    ticket_id: UUID,
) -> tuple[models.Ticket, list[NotificationRequest]]:
    """Clear the assignee; no validity check is needed."""
    return update_ticket(db, actor, ticket_id, {"assigned_to_user_id": None})


def delete_ticket(db: Session, actor: models.User, ticket_id: UUID) -> UUID:
    """
    Delete a ticket.

    Allowed for ADMIN, the project's creator, or the ticket's creator only.

    Raises:
        NotFoundError: If the ticket does not exist
        PermissionDeniedError: For anyone else (project MANAGER members included)
    """
    ticket = _load_ticket(db, ticket_id)
    if not permissions.can_delete_ticket(actor, ticket.project, ticket):
        logger.warning(f"Denied delete of ticket {ticket.id} for user {actor.id}")
        raise PermissionDeniedError(
            "Access denied. Only admin, project creator, or ticket creator can delete tickets"
        )

    crud.delete_ticket(db, ticket)
    logger.info(f"Deleted ticket {ticket_id} by user {actor.id}")
    return ticket_id


def _visibility_scope(actor: models.User) -> Optional[UUID]:
    """None for admins (everything), otherwise the actor's id for project filtering."""
    return None if permissions.is_admin(actor) else actor.id


def list_tickets(
    db: Session,
    actor: models.User,
    skip: int = 0,
    limit: int = 10,
    **filters,
) -> tuple[list[models.Ticket], int]:
    """
    List tickets in active projects the actor can see.

    Args:
        db: Database session
        actor: Acting user; non-admins only see their projects' tickets
        skip: Number of records to skip
        limit: Maximum number of records to return
        **filters: Passed through to crud.get_tickets

    Returns:
        Tuple of (tickets list, total count)
    """
    return crud.get_tickets(
        db,
        visible_to_user_id=_visibility_scope(actor),
        skip=skip,
        limit=limit,
        **filters,
    )


def list_assigned_to_me(
    db: Session,
    actor: models.User,
    status_filter: Optional[models.TicketStatus] = None,
    priority_filter: Optional[models.TicketPriority] = None,
    skip: int = 0,
    limit: int = 10,
) -> tuple[list[models.Ticket], int]:
    return crud.get_tickets(
        db,
        assigned_to_user_id=actor.id,
        status_filter=status_filter,
        priority_filter=priority_filter,
        skip=skip,
        limit=limit,
    )


def list_created_by_me(
    db: Session,
    actor: models.User,
    status_filter: Optional[models.TicketStatus] = None,
    priority_filter: Optional[models.TicketPriority] = None,
    skip: int = 0,
    limit: int = 10,
) -> tuple[list[models.Ticket], int]:
    return crud.get_tickets(
        db,
        created_by_user_id=actor.id,
        status_filter=status_filter,
        priority_filter=priority_filter,
        skip=skip,
        limit=limit,
    )


def ticket_stats(db: Session, actor: models.User) -> dict:
    """
    Ticket counts over the projects visible to the actor.

    Queries run one after another on the request's session.

    Returns:
        Dict matching schemas.TicketStats
    """
    scope = _visibility_scope(actor)
    return {
        "total": crud.count_tickets(db, visible_to_user_id=scope),
        "assigned_to_me": crud.count_tickets(db, visible_to_user_id=scope, assigned_to_user_id=actor.id),
        "created_by_me": crud.count_tickets(db, visible_to_user_id=scope, created_by_user_id=actor.id),
        "overdue": crud.count_overdue_tickets(db, visible_to_user_id=scope),
        "by_status": crud.count_tickets_by(db, "status", visible_to_user_id=scope),
        "by_priority": crud.count_tickets_by(db, "priority", visible_to_user_id=scope),
    }
