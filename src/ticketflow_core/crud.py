"""CRUD operations for users, projects and tickets.

Persistence only: authorization and business rules live in the service
modules, which call into these functions.
"""
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger("ticketflow-core.crud")


PROJECT_PRIORITY_ORDER = {
    models.ProjectPriority.LOW: 1,
    models.ProjectPriority.MEDIUM: 2,
    models.ProjectPriority.HIGH: 3,
    models.ProjectPriority.CRITICAL: 4,
}

TICKET_PRIORITY_ORDER = {
    models.TicketPriority.LOW: 1,
    models.TicketPriority.MEDIUM: 2,
    models.TicketPriority.HIGH: 3,
}

TICKET_STATUS_ORDER = {
    models.TicketStatus.OPEN: 1,
    models.TicketStatus.IN_PROGRESS: 2,
    models.TicketStatus.RESOLVED: 3,
    models.TicketStatus.CLOSED: 4,
}

PROJECT_SORT_FIELDS = ("created_at", "name", "status", "priority")
TICKET_SORT_FIELDS = ("created_at", "updated_at", "priority", "status", "title")

# Columns that reference a record; any hit blocks hard deletion
DEPENDENT_REFERENCES = {
    models.User: (
        models.Project.created_by_user_id,
        models.Ticket.created_by_user_id,
        models.Ticket.assigned_to_user_id,
        models.TicketStatusHistory.changed_by_user_id,
    ),
    models.Project: (
        models.Ticket.project_id,
    ),
}


def _rank_expression(column, order: dict):
    """CASE expression mapping enum values to their rank for sorting."""
    return case(
        *[(column == value, rank) for value, rank in order.items()],
        else_=99
    )


def _ordered(expression, sort_order: str):
    return expression.asc() if sort_order == "asc" else expression.desc()


def has_dependents(db: Session, model, record_id: UUID) -> bool:
    """
    Check whether any other record still references `record_id`.

    Args:
        db: Database session
        model: models.User or models.Project
        record_id: Primary key of the record about to be deleted

    Returns:
        True if at least one reference exists
    """
    for column in DEPENDENT_REFERENCES[model]:
        if db.query(column).filter(column == record_id).first() is not None:
            return True
    return False


# ============================================================================
# User CRUD Operations
# ============================================================================

def create_user(
    db: Session,
    name: str,
    email: str,
    password_hash: str,
    role: models.UserRole = models.UserRole.USER,
) -> models.User:
    """
    Create a new user.

    Args:
        db: Database session
        name: Display name
        email: Unique, lower-cased email
        password_hash: Encoded password hash
        role: Global role

    Returns:
        Created user instance
    """
    db_user = models.User(
        name=name,
        email=email,
        password_hash=password_hash,
        role=role,
    )
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    logger.debug(f"Created user {db_user.id} ({db_user.email})")
    return db_user


def get_user_by_id(db: Session, user_id: UUID) -> Optional[models.User]:
    """
    Get a user by ID.

    Args:
        db: Database session
        user_id: User UUID

    Returns:
        User if found, None otherwise
    """
    return db.query(models.User).filter(models.User.id == user_id).first()


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.email == email.lower()).first()


def get_users(
    db: Session,
    search: Optional[str] = None,
    role: Optional[models.UserRole] = None,
    is_active: Optional[bool] = None,
    skip: int = 0,
    limit: int = 10,
) -> tuple[list[models.User], int]:
    """
    List users with optional filtering, newest first.

    Args:
        db: Database session
        search: Case-insensitive match on name or email
        role: Optional role filter
        is_active: Optional active flag filter
        skip: Number of records to skip
        limit: Maximum number of records to return

    Returns:
        Tuple of (users list, total count)
    """
    query = db.query(models.User)

    if search:
        search_pattern = f"%{search}%"
        query = query.filter(
            or_(
                models.User.name.ilike(search_pattern),
                models.User.email.ilike(search_pattern),
            )
        )

    if role:
        query = query.filter(models.User.role == role)

    if is_active is not None:
        query = query.filter(models.User.is_active == is_active)

    total = query.count()
    users = (
        query.order_by(models.User.created_at.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )
    return users, total


def search_assignable_users(
    db: Session,
    search: Optional[str] = None,
    user_ids: Optional[list[UUID]] = None,
    limit: int = 50,
) -> list[models.User]:
    """
    Active users sorted by name, optionally restricted to `user_ids`.

    Args:
        db: Database session
        search: Case-insensitive match on name or email
        user_ids: If given, only these users are considered
        limit: Maximum number of users returned

    Returns:
        List of users
    """
    query = db.query(models.User).filter(models.User.is_active == True)

    if user_ids is not None:
        query = query.filter(models.User.id.in_(user_ids))

    if search:
        search_pattern = f"%{search}%"
        query = query.filter(
            or_(
                models.User.name.ilike(search_pattern),
                models.User.email.ilike(search_pattern),
            )
        )

    return query.order_by(models.User.name).limit(limit).all()


def get_latest_user(db: Session) -> Optional[models.User]:
    """Most recently registered user."""
    return db.query(models.User).order_by(models.User.created_at.desc()).first()


def save_user(db: Session, db_user: models.User) -> models.User:
    """Persist pending changes on a user."""
    db.commit()
    db.refresh(db_user)
    return db_user


def delete_user(db: Session, db_user: models.User) -> None:
    """Physically remove a user (memberships cascade)."""
    user_id = db_user.id
    db.delete(db_user)
    db.commit()
    logger.debug(f"Deleted user {user_id}")


# ============================================================================
# Project CRUD Operations
# ============================================================================

def create_project(
    db: Session,
    name: str,
    description: str,
    created_by_user_id: UUID,
    status: models.ProjectStatus = models.ProjectStatus.ACTIVE,
    priority: models.ProjectPriority = models.ProjectPriority.MEDIUM,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> models.Project:
    """
    Create a new project.

    Args:
        db: Database session
        name: Project name (globally unique)
        description: Project description
        created_by_user_id: Creator UUID
        status: Project status
        priority: Project priority
        start_date: Start date (defaults to now)
        end_date: Optional end date

    Returns:
        Created project instance
    """
    db_project = models.Project(
        name=name,
        description=description,
        status=status,
        priority=priority,
        start_date=start_date or datetime.utcnow(),
        end_date=end_date,
        created_by_user_id=created_by_user_id,
    )
    db.add(db_project)
    db.commit()
    db.refresh(db_project)
    logger.debug(f"Created project {db_project.id} ({db_project.name})")
    return db_project


def get_project(
    db: Session,
    project_id: UUID,
    active_only: bool = True,
) -> Optional[models.Project]:
    """
    Get a project by ID.

    Args:
        db: Database session
        project_id: Project UUID
        active_only: Ignore archived (is_active=False) projects

    Returns:
        Project if found, None otherwise
    """
    query = db.query(models.Project).filter(models.Project.id == project_id)
    if active_only:
        query = query.filter(models.Project.is_active == True)
    return query.first()


def get_project_by_name(
    db: Session,
    name: str,
    exclude_id: Optional[UUID] = None,
) -> Optional[models.Project]:
    """
    Find a project by exact (case-sensitive) name.

    Args:
        db: Database session
        name: Project name
        exclude_id: Project to ignore (the one being renamed)

    Returns:
        Matching project, or None
    """
    query = db.query(models.Project).filter(models.Project.name == name)
    if exclude_id:
        query = query.filter(models.Project.id != exclude_id)
    return query.first()


def accessible_project_ids(user_id: UUID):
    """Select of project ids a user created or is a member of."""
    member_of = select(models.ProjectMember.project_id).where(models.ProjectMember.user_id == user_id)
    return select(models.Project.id).where(
        or_(
            models.Project.created_by_user_id == user_id,
            models.Project.id.in_(member_of),
        )
    )


def get_projects(
    db: Session,
    user_id: Optional[UUID] = None,
    search: Optional[str] = None,
    status_filter: Optional[models.ProjectStatus] = None,
    priority_filter: Optional[models.ProjectPriority] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    skip: int = 0,
    limit: int = 10,
) -> tuple[list[models.Project], int]:
    """
    Get active projects with optional filtering and pagination.

    Args:
        db: Database session
        user_id: If provided, only projects this user created or is a member of
        search: Optional search in name and description
        status_filter: Optional status filter
        priority_filter: Optional priority filter
        sort_by: One of PROJECT_SORT_FIELDS
        sort_order: "asc" or "desc"
        skip: Number of records to skip
        limit: Maximum number of records to return

    Returns:
        Tuple of (projects list, total count)
    """
    query = db.query(models.Project).filter(models.Project.is_active == True)

    if user_id:
        query = query.filter(models.Project.id.in_(accessible_project_ids(user_id)))

    if search:
        search_pattern = f"%{search}%"
        query = query.filter(
            or_(
                models.Project.name.ilike(search_pattern),
                models.Project.description.ilike(search_pattern),
            )
        )

    if status_filter:
        query = query.filter(models.Project.status == status_filter)

    if priority_filter:
        query = query.filter(models.Project.priority == priority_filter)

    if sort_by == "priority":
        sort_expression = _rank_expression(models.Project.priority, PROJECT_PRIORITY_ORDER)
    elif sort_by in PROJECT_SORT_FIELDS:
        sort_expression = getattr(models.Project, sort_by)
    else:
        sort_expression = models.Project.created_at

    total = query.count()
    projects = (
        query.order_by(_ordered(sort_expression, sort_order), models.Project.id)
        .offset(skip)
        .limit(limit)
        .all()
    )

    return projects, total


def save_project(db: Session, db_project: models.Project) -> models.Project:
    """Persist pending changes on a project."""
    db.commit()
    db.refresh(db_project)
    return db_project


def archive_project(db: Session, db_project: models.Project) -> models.Project:
    """Soft-delete: keep the row, mark it inactive and ARCHIVED."""
    db_project.is_active = False
    db_project.status = models.ProjectStatus.ARCHIVED
    db.commit()
    db.refresh(db_project)
    logger.debug(f"Archived project {db_project.id}")
    return db_project


def delete_project(db: Session, db_project: models.Project) -> None:
    """Physically remove a project and its memberships."""
    project_id = db_project.id
    db.delete(db_project)
    db.commit()
    logger.debug(f"Deleted project {project_id}")


def get_project_member(
    db: Session,
    project_id: UUID,
    user_id: UUID,
) -> Optional[models.ProjectMember]:
    return (
        db.query(models.ProjectMember)
        .filter(
            and_(
                models.ProjectMember.project_id == project_id,
                models.ProjectMember.user_id == user_id,
            )
        )
        .first()
    )


def add_project_member(
    db: Session,
    db_project: models.Project,
    user_id: UUID,
    role: models.ProjectRole = models.ProjectRole.CONTRIBUTOR,
) -> models.ProjectMember:
    """
    Add a user to a project with a specific role.

    Args:
        db: Database session
        db_project: Project instance
        user_id: User UUID
        role: Project role

    Returns:
        Created project member instance
    """
    db_member = models.ProjectMember(
        user_id=user_id,
        role=role,
        joined_at=datetime.utcnow(),
    )
    db_project.members.append(db_member)
    db.commit()
    db.refresh(db_member)
    logger.debug(f"Added user {user_id} to project {db_project.id} with role {models.ProjectRole(role).value}")
    return db_member


def update_project_member_role(
    db: Session,
    db_member: models.ProjectMember,
    role: models.ProjectRole,
) -> models.ProjectMember:
    db_member.role = role
    db.commit()
    db.refresh(db_member)
    logger.debug(f"Updated user {db_member.user_id} role in project {db_member.project_id} to {models.ProjectRole(role).value}")
    return db_member


def remove_project_member(
    db: Session,
    db_project: models.Project,
    db_member: models.ProjectMember,
) -> None:
    db_project.members.remove(db_member)
    db.commit()
    logger.debug(f"Removed user {db_member.user_id} from project {db_project.id}")


def get_project_members(db: Session, project_id: UUID) -> list[models.ProjectMember]:
    """
    Get all members of a project in join order.

    Args:
        db: Database session
        project_id: Project UUID

    Returns:
        List of project members
    """
    return (
        db.query(models.ProjectMember)
        .filter(models.ProjectMember.project_id == project_id)
        .order_by(models.ProjectMember.joined_at)
        .all()
    )


# ============================================================================
# Ticket CRUD Operations
# ============================================================================

def add_ticket(db: Session, db_ticket: models.Ticket) -> models.Ticket:
    """
    Insert a ticket prepared by the lifecycle engine.

    Args:
        db: Database session
        db_ticket: Unsaved ticket with its initial history entry

    Returns:
        The persisted ticket
    """
    db.add(db_ticket)
    db.commit()
    db.refresh(db_ticket)
    logger.debug(f"Created ticket {db_ticket.id} in project {db_ticket.project_id}")
    return db_ticket


def get_ticket(db: Session, ticket_id: UUID) -> Optional[models.Ticket]:
    """
    Get a ticket by ID.

    Args:
        db: Database session
        ticket_id: Ticket UUID

    Returns:
        Ticket if found, None otherwise
    """
    return db.query(models.Ticket).filter(models.Ticket.id == ticket_id).first()


def save_ticket(db: Session, db_ticket: models.Ticket) -> models.Ticket:
    """Persist pending changes on a ticket (including new history entries)."""
    db.commit()
    db.refresh(db_ticket)
    return db_ticket


def delete_ticket(db: Session, db_ticket: models.Ticket) -> None:
    """Physically remove a ticket and its history."""
    ticket_id = db_ticket.id
    db.delete(db_ticket)
    db.commit()
    logger.debug(f"Deleted ticket {ticket_id}")


def _visible_tickets(db: Session, user_id: Optional[UUID] = None):
    """Tickets in active projects, restricted to the user's projects when user_id is given."""
    query = (
        db.query(models.Ticket)
        .join(models.Project, models.Ticket.project_id == models.Project.id)
        .filter(models.Project.is_active == True)
    )
    if user_id:
        query = query.filter(models.Ticket.project_id.in_(accessible_project_ids(user_id)))
    return query


def get_tickets(
    db: Session,
    visible_to_user_id: Optional[UUID] = None,
    project_id: Optional[UUID] = None,
    status_filter: Optional[models.TicketStatus] = None,
    priority_filter: Optional[models.TicketPriority] = None,
    type_filter: Optional[models.TicketType] = None,
    assigned_to_user_id: Optional[UUID] = None,
    created_by_user_id: Optional[UUID] = None,
    search: Optional[str] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    skip: int = 0,
    limit: int = 10,
) -> tuple[list[models.Ticket], int]:
    """
    Get tickets with optional filtering, sorting and pagination.

    Args:
        db: Database session
        visible_to_user_id: If provided, only tickets in projects this user can see
        project_id: Optional project filter
        status_filter: Optional status filter
        priority_filter: Optional priority filter
        type_filter: Optional ticket type filter
        assigned_to_user_id: Optional assignee filter
        created_by_user_id: Optional creator filter
        search: Optional search in title and description
        sort_by: One of TICKET_SORT_FIELDS
        sort_order: "asc" or "desc"
        skip: Number of records to skip
        limit: Maximum number of records to return

    Returns:
        Tuple of (tickets list, total count)
    """
    query = _visible_tickets(db, visible_to_user_id)

    if project_id:
        query = query.filter(models.Ticket.project_id == project_id)

    if status_filter:
        query = query.filter(models.Ticket.status == status_filter)

    if priority_filter:
        query = query.filter(models.Ticket.priority == priority_filter)

    if type_filter:
        query = query.filter(models.Ticket.ticket_type == type_filter)

    if assigned_to_user_id:
        query = query.filter(models.Ticket.assigned_to_user_id == assigned_to_user_id)

    if created_by_user_id:
        query = query.filter(models.Ticket.created_by_user_id == created_by_user_id)

    if search:
        search_pattern = f"%{search}%"
        query = query.filter(
            or_(
                models.Ticket.title.ilike(search_pattern),
                models.Ticket.description.ilike(search_pattern),
            )
        )

    if sort_by == "priority":
        sort_expression = _rank_expression(models.Ticket.priority, TICKET_PRIORITY_ORDER)
    elif sort_by == "status":
        sort_expression = _rank_expression(models.Ticket.status, TICKET_STATUS_ORDER)
    elif sort_by in TICKET_SORT_FIELDS:
        sort_expression = getattr(models.Ticket, sort_by)
    else:
        sort_expression = models.Ticket.created_at

    total = query.count()
    tickets = (
        query.order_by(_ordered(sort_expression, sort_order), models.Ticket.id)
        .offset(skip)
        .limit(limit)
        .all()
    )

    return tickets, total


def count_tickets(
    db: Session,
    visible_to_user_id: Optional[UUID] = None,
    project_id: Optional[UUID] = None,
    **filters,
) -> int:
    """
    Count tickets matching equality filters on Ticket columns.

    Args:
        db: Database session
        visible_to_user_id: Restrict to projects this user can see
        project_id: Restrict to one project
        **filters: Column name to value, e.g. status=TicketStatus.OPEN

    Returns:
        Number of matching tickets
    """
    query = _visible_tickets(db, visible_to_user_id)
    if project_id:
        query = query.filter(models.Ticket.project_id == project_id)
    for column_name, value in filters.items():
        query = query.filter(getattr(models.Ticket, column_name) == value)
    return query.count()


def count_tickets_by(
    db: Session,
    column_name: str,
    visible_to_user_id: Optional[UUID] = None,
    project_id: Optional[UUID] = None,
) -> dict[str, int]:
    """
    Group ticket counts by an enum column ("status" or "priority").

    Returns:
        Mapping of enum value to count; values with no tickets are omitted
    """
    column = getattr(models.Ticket, column_name)
    query = (
        db.query(column, func.count(models.Ticket.id))
        .join(models.Project, models.Ticket.project_id == models.Project.id)
        .filter(models.Project.is_active == True)
    )
    if visible_to_user_id:
        query = query.filter(models.Ticket.project_id.in_(accessible_project_ids(visible_to_user_id)))
    if project_id:
        query = query.filter(models.Ticket.project_id == project_id)

    counts = {}
    for value, count in query.group_by(column).all():
        key = value.value if hasattr(value, "value") else value
        counts[key] = count
    return counts


def count_overdue_tickets(
    db: Session,
    visible_to_user_id: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> int:
    """Tickets whose due date has passed and that are not RESOLVED or CLOSED."""
    now = now or datetime.utcnow()
    return (
        _visible_tickets(db, visible_to_user_id)
        .filter(
            models.Ticket.due_date < now,
            models.Ticket.status.notin_([models.TicketStatus.RESOLVED, models.TicketStatus.CLOSED]),
        )
        .count()
    )


def get_recent_tickets(db: Session, project_id: UUID, limit: int = 5) -> list[models.Ticket]:
    return (
        db.query(models.Ticket)
        .filter(models.Ticket.project_id == project_id)
        .order_by(models.Ticket.created_at.desc())
        .limit(limit)
        .all()
    )
