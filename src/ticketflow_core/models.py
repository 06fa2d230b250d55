"""SQLAlchemy database models."""
from datetime import datetime
from typing import Optional
from uuid import uuid4
import enum
import math

from sqlalchemy import (
    Column,
    String,
    Text,
    Integer,
    Float,
    DateTime,
    ForeignKey,
    Enum,
    CheckConstraint,
    Boolean,
    UniqueConstraint,
    JSON,
    Uuid,
)
from sqlalchemy.orm import backref, relationship, declarative_base

# Base class for all models
Base = declarative_base()


class UserRole(str, enum.Enum):
    """Global user role."""

    USER = "USER"
    ADMIN = "ADMIN"


class ProjectRole(str, enum.Enum):
    """Project member role, ordered VIEWER < CONTRIBUTOR < MANAGER."""

    VIEWER = "VIEWER"
    CONTRIBUTOR = "CONTRIBUTOR"
    MANAGER = "MANAGER"


class ProjectStatus(str, enum.Enum):
    """Project status enum."""

    PLANNING = "PLANNING"
    ACTIVE = "ACTIVE"
    ON_HOLD = "ON_HOLD"
    COMPLETED = "COMPLETED"
    ARCHIVED = "ARCHIVED"


class ProjectPriority(str, enum.Enum):
    """Project priority enum."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class TicketStatus(str, enum.Enum):
    """Ticket lifecycle status.

    Valid states:
    - OPEN: initial state for every new ticket
    - IN_PROGRESS: someone is working on it
    - RESOLVED: fix delivered, awaiting confirmation (sets resolved_at)
    - CLOSED: done (sets closed_at)
    """

    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


class TicketPriority(str, enum.Enum):
    """Ticket priority enum."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class TicketType(str, enum.Enum):
    """Ticket type enum."""

    BUG = "BUG"
    FEATURE = "FEATURE"
    ENHANCEMENT = "ENHANCEMENT"
    TASK = "TASK"


def _enum_values(enum_cls):
    return [e.value for e in enum_cls]


class User(Base):
    """
    User model for local accounts.

    Passwords are stored as salted PBKDF2 hashes (see security.py).
    Users are never hard-deleted while other records reference them;
    they are deactivated instead.
    """

    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(String(50), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(
        Enum(UserRole, values_callable=_enum_values),
        nullable=False,
        default=UserRole.USER,
        index=True
    )
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    last_login = Column(DateTime, nullable=True)
    password_changed_at = Column(DateTime, nullable=True)

    # Audit fields
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role.value if self.role else None})>"


class Project(Base):
    """
    Project model grouping tickets.

    The creator always holds full access. Other users reach the project
    through the members list. Projects referenced by tickets are archived
    instead of deleted.
    """

    __tablename__ = "projects"

    id = Column(Uuid, primary_key=True, default=uuid4)

    # Core fields
    name = Column(String(100), nullable=False, unique=True, index=True)
    description = Column(Text, nullable=False)
    status = Column(
        Enum(ProjectStatus, values_callable=_enum_values),
        nullable=False,
        default=ProjectStatus.ACTIVE,
        index=True
    )
    priority = Column(
        Enum(ProjectPriority, values_callable=_enum_values),
        nullable=False,
        default=ProjectPriority.MEDIUM
    )
    start_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    end_date = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    # Audit fields
    created_by_user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    created_by_user = relationship("User", foreign_keys=[created_by_user_id])
    members = relationship(
        "ProjectMember",
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="ProjectMember.joined_at",
    )
    tickets = relationship("Ticket", back_populates="project")

    def __repr__(self) -> str:
        return f"<Project {self.name}>"


class ProjectMember(Base):
    """
    Junction table linking users to projects with roles.

    A user appears at most once per project.
    """

    __tablename__ = "project_members"

    id = Column(Uuid, primary_key=True, default=uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(
        Enum(ProjectRole, values_callable=_enum_values),
        nullable=False,
        default=ProjectRole.CONTRIBUTOR,
        index=True
    )
    joined_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    project = relationship("Project", back_populates="members")
    user = relationship("User", backref=backref("project_memberships", cascade="all, delete-orphan"))

    # Constraints
    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="unique_project_user"),
    )

    def __repr__(self) -> str:
        return f"<ProjectMember {self.role.value if self.role else None}>"


class Ticket(Base):
    """Ticket (issue) tracked inside a project.

    resolved_at and closed_at are derived from status by the lifecycle
    engine (ticket_lifecycle.py); they are never written directly.
    """

    __tablename__ = "tickets"

    id = Column(Uuid, primary_key=True, default=uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id"), nullable=False, index=True)

    # Core ticket fields
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    status = Column(
        Enum(TicketStatus, values_callable=_enum_values),
        nullable=False,
        default=TicketStatus.OPEN,
        index=True
    )
    priority = Column(
        Enum(TicketPriority, values_callable=_enum_values),
        nullable=False,
        default=TicketPriority.MEDIUM,
        index=True
    )
    ticket_type = Column(
        Enum(TicketType, values_callable=_enum_values),
        nullable=False,
        default=TicketType.BUG,
        index=True
    )
    assigned_to_user_id = Column(Uuid, ForeignKey("users.id"), nullable=True, index=True)
    due_date = Column(DateTime, nullable=True, index=True)
    estimated_hours = Column(Float, nullable=True)
    actual_hours = Column(Float, nullable=False, default=0)
    tags = Column(JSON, nullable=False, default=list)
    resolved_at = Column(DateTime, nullable=True)
    closed_at = Column(DateTime, nullable=True)

    # Audit fields
    created_by_user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    project = relationship("Project", back_populates="tickets")
    assignee = relationship("User", foreign_keys=[assigned_to_user_id])
    creator = relationship("User", foreign_keys=[created_by_user_id])
    status_history = relationship(
        "TicketStatusHistory",
        back_populates="ticket",
        cascade="all, delete-orphan",
        order_by="TicketStatusHistory.position",
    )

    # Constraints
    __table_args__ = (
        CheckConstraint("estimated_hours IS NULL OR (estimated_hours >= 0 AND estimated_hours <= 1000)", name="valid_estimated_hours"),
        CheckConstraint("actual_hours >= 0 AND actual_hours <= 1000", name="valid_actual_hours"),
    )

    @property
    def is_overdue(self) -> bool:
        return (
            self.due_date is not None
            and self.due_date < datetime.utcnow()
            and self.status not in (TicketStatus.RESOLVED, TicketStatus.CLOSED)
        )

    @property
    def days_until_due(self) -> Optional[int]:
        if self.due_date is None:
            return None
        remaining = (self.due_date - datetime.utcnow()).total_seconds()
        return math.ceil(remaining / 86400)

    @property
    def time_spent(self) -> Optional[dict]:
        if not self.estimated_hours or not self.actual_hours:
            return None
        return {
            "estimated": self.estimated_hours,
            "actual": self.actual_hours,
            "variance": self.actual_hours - self.estimated_hours,
        }

    def __repr__(self) -> str:
        return f"<Ticket {self.id}: {self.title[:30] if self.title else ''}>"


class TicketStatusHistory(Base):
    """Append-only status log for a ticket.

    position is the zero-based index of the entry within its ticket's log.
    """

    __tablename__ = "ticket_status_history"

    id = Column(Uuid, primary_key=True, default=uuid4)
    ticket_id = Column(Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    status = Column(Enum(TicketStatus, values_callable=_enum_values), nullable=False)
    changed_by_user_id = Column(Uuid, ForeignKey("users.id"), nullable=True)
    changed_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    comment = Column(Text, nullable=True)

    # Relationships
    ticket = relationship("Ticket", back_populates="status_history")
    changed_by = relationship("User")

    __table_args__ = (
        UniqueConstraint("ticket_id", "position", name="unique_ticket_history_position"),
    )

    def __repr__(self) -> str:
        return f"<TicketStatusHistory {self.ticket_id}#{self.position}: {self.status.value}>"
