"""Pydantic schemas for request/response validation."""
import re
from datetime import datetime
from typing import Annotated, Any, Generic, Optional, TypeVar
from uuid import UUID

from pydantic import AfterValidator, BaseModel, BeforeValidator, Field, ConfigDict, field_validator

from .models import (
    UserRole,
    ProjectRole,
    ProjectStatus,
    ProjectPriority,
    TicketStatus,
    TicketPriority,
    TicketType,
)

T = TypeVar("T")

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
PROJECT_NAME_PATTERN = r"^[a-zA-Z0-9\s\-_\.]+$"
USER_NAME_PATTERN = r"^[a-zA-Z\s]+$"
MAX_TAG_LENGTH = 30


def _normalize_email(value):
    return value.strip().lower() if isinstance(value, str) else value


def _strip(value):
    return value.strip() if isinstance(value, str) else value


def _check_password_strength(value: str) -> str:
    if not (re.search(r"[a-z]", value) and re.search(r"[A-Z]", value) and re.search(r"\d", value)):
        raise ValueError(
            "Password must contain at least one lowercase letter, one uppercase letter, and one number"
        )
    return value


def _check_tags(tags: list[str]) -> list[str]:
    """Trim tags, reject empty or over-long ones, drop duplicates keeping order."""
    cleaned: list[str] = []
    for tag in tags:
        tag = tag.strip()
        if not tag or len(tag) > MAX_TAG_LENGTH:
            raise ValueError(f"Each tag must be between 1 and {MAX_TAG_LENGTH} characters")
        if tag not in cleaned:
            cleaned.append(tag)
    return cleaned


def _check_future(value: Optional[datetime], label: str) -> Optional[datetime]:
    if value is None:
        return value
    naive = value.replace(tzinfo=None) if value.tzinfo else value
    if naive <= datetime.utcnow():
        raise ValueError(f"{label} must be in the future")
    return naive


# Reusable field types
Trimmed = Annotated[str, BeforeValidator(_strip)]
Email = Annotated[str, BeforeValidator(_normalize_email), Field(max_length=255, pattern=EMAIL_PATTERN)]
Password = Annotated[str, Field(min_length=6, max_length=128), AfterValidator(_check_password_strength)]
PersonName = Annotated[Trimmed, Field(min_length=2, max_length=50, pattern=USER_NAME_PATTERN)]
ProjectName = Annotated[Trimmed, Field(min_length=3, max_length=100, pattern=PROJECT_NAME_PATTERN)]
ProjectDescription = Annotated[Trimmed, Field(min_length=10, max_length=500)]
TicketTitle = Annotated[Trimmed, Field(min_length=5, max_length=200)]
TicketDescription = Annotated[Trimmed, Field(min_length=10, max_length=2000)]
Hours = Annotated[float, Field(ge=0, le=1000)]
Tags = Annotated[list[str], AfterValidator(_check_tags)]


# ============================================================================
# Response envelope
# ============================================================================

class ApiResponse(BaseModel, Generic[T]):
    """Envelope wrapping every API response."""

    success: bool = True
    message: Optional[str] = None
    data: Optional[T] = None
    errors: Optional[list[Any]] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class FieldError(BaseModel):
    """One validation failure reported in `errors`."""

    field: Optional[str] = None
    message: str
    value: Optional[Any] = None


# ============================================================================
# User Schemas
# ============================================================================

class UserSummary(BaseModel):
    """Compact user reference embedded in projects and tickets."""

    id: UUID
    name: str
    email: str

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class UserRegister(BaseModel):
    """Schema for self-registration. New accounts always get role USER."""

    name: PersonName
    email: Email
    password: Password


class UserLogin(BaseModel):
    """Schema for login."""

    email: Email
    password: str = Field(..., min_length=1)


class UserProfileUpdate(BaseModel):
    """Schema for updating one's own profile."""

    name: Optional[PersonName] = None
    email: Optional[Email] = None


class PasswordChange(BaseModel):
    """Schema for changing one's own password."""

    current_password: str = Field(..., min_length=1)
    new_password: Password


class UserRoleUpdate(BaseModel):
    """Schema for an admin changing a user's global role."""

    role: UserRole


class UserStatusUpdate(BaseModel):
    """Schema for an admin activating or deactivating a user."""

    is_active: bool


class UserResponse(BaseModel):
    """Schema for user responses (never includes the password hash)."""

    id: UUID
    name: str
    email: str
    role: UserRole
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class UserListResponse(BaseModel):
    """Schema for paginated user list."""

    items: list[UserResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class AuthResponse(BaseModel):
    """Returned by register and login."""

    user: UserResponse
    access_token: str
    token_type: str = "bearer"


class UserDeleteResult(BaseModel):
    """Outcome of an admin delete: removed, or deactivated because referenced."""

    id: UUID
    deleted: bool
    deactivated: bool


# ============================================================================
# Project Schemas
# ============================================================================

class ProjectCreate(BaseModel):
    """Schema for creating a new project."""

    name: ProjectName
    description: ProjectDescription
    status: ProjectStatus = ProjectStatus.ACTIVE
    priority: ProjectPriority = ProjectPriority.MEDIUM
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @field_validator("end_date")
    @classmethod
    def end_date_in_future(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _check_future(value, "End date")


class ProjectUpdate(BaseModel):
    """Schema for updating a project; omitted fields are left untouched."""

    name: Optional[ProjectName] = None
    description: Optional[ProjectDescription] = None
    status: Optional[ProjectStatus] = None
    priority: Optional[ProjectPriority] = None
    end_date: Optional[datetime] = None


class ProjectMemberCreate(BaseModel):
    """Schema for adding a user to a project."""

    user_id: UUID
    role: ProjectRole = ProjectRole.CONTRIBUTOR


class ProjectMemberUpdate(BaseModel):
    """Schema for updating a project member's role."""

    role: ProjectRole


class ProjectMemberResponse(BaseModel):
    """Schema for project member responses."""

    id: UUID
    project_id: UUID
    user_id: UUID
    role: ProjectRole
    joined_at: datetime
    user: Optional[UserSummary] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class ProjectResponse(BaseModel):
    """Schema for project responses."""

    id: UUID
    name: str
    description: str
    status: ProjectStatus
    priority: ProjectPriority
    start_date: datetime
    end_date: Optional[datetime] = None
    is_active: bool
    created_by_user_id: UUID
    created_by_user: Optional[UserSummary] = None
    members: list[ProjectMemberResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class ProjectListResponse(BaseModel):
    """Schema for paginated project list."""

    items: list[ProjectResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class ProjectDeleteResult(BaseModel):
    """Outcome of a project delete: removed, or archived because tickets reference it."""

    id: UUID
    deleted: bool
    archived: bool


# ============================================================================
# Ticket Schemas
# ============================================================================

class TicketCreate(BaseModel):
    """Schema for creating a new ticket. Status always starts at OPEN."""

    project_id: UUID = Field(..., description="Project the ticket belongs to (immutable)")
    title: TicketTitle
    description: TicketDescription
    priority: TicketPriority = TicketPriority.MEDIUM
    ticket_type: TicketType = TicketType.BUG
    assigned_to_user_id: Optional[UUID] = None
    due_date: Optional[datetime] = None
    estimated_hours: Optional[Hours] = None
    tags: Tags = Field(default_factory=list)

    @field_validator("due_date")
    @classmethod
    def due_date_in_future(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _check_future(value, "Due date")


class TicketUpdate(BaseModel):
    """Schema for updating a ticket.

    Only fields present in the request body are applied; send
    `assigned_to_user_id: null` to unassign.
    """

    title: Optional[TicketTitle] = None
    description: Optional[TicketDescription] = None
    status: Optional[TicketStatus] = None
    priority: Optional[TicketPriority] = None
    ticket_type: Optional[TicketType] = None
    assigned_to_user_id: Optional[UUID] = None
    due_date: Optional[datetime] = None
    estimated_hours: Optional[Hours] = None
    actual_hours: Optional[Hours] = None
    tags: Optional[Tags] = None
    comment: Optional[str] = Field(None, max_length=1000, description="Stored with the status history entry")

    @field_validator("title", "description", "status", "priority", "ticket_type", mode="before")
    @classmethod
    def not_null(cls, value: Any) -> Any:
        # Omit the field to leave it unchanged
        if value is None:
            raise ValueError("cannot be null")
        return value


class TicketAssign(BaseModel):
    """Schema for assigning a ticket to a user."""

    assigned_to_user_id: UUID


class TicketStatusHistoryResponse(BaseModel):
    """One status history entry."""

    position: int
    status: TicketStatus
    changed_by_user_id: Optional[UUID] = None
    changed_by: Optional[UserSummary] = None
    changed_at: datetime
    comment: Optional[str] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class TimeSpent(BaseModel):
    estimated: float
    actual: float
    variance: float


class TicketResponse(BaseModel):
    """Schema for full ticket response."""

    id: UUID
    project_id: UUID
    title: str
    description: str
    status: TicketStatus
    priority: TicketPriority
    ticket_type: TicketType
    assigned_to_user_id: Optional[UUID] = None
    assignee: Optional[UserSummary] = None
    created_by_user_id: UUID
    creator: Optional[UserSummary] = None
    due_date: Optional[datetime] = None
    estimated_hours: Optional[float] = None
    actual_hours: float = 0
    tags: list[str] = Field(default_factory=list)
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    status_history: list[TicketStatusHistoryResponse] = Field(default_factory=list)
    # Derived views
    is_overdue: bool = False
    days_until_due: Optional[int] = None
    time_spent: Optional[TimeSpent] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class TicketListResponse(BaseModel):
    """Schema for paginated ticket list."""

    items: list[TicketResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


# ============================================================================
# Stats Schemas
# ============================================================================

class ProjectStats(BaseModel):
    """Per-project ticket statistics."""

    total_tickets: int
    open_tickets: int
    in_progress_tickets: int
    resolved_tickets: int
    closed_tickets: int
    high_priority_tickets: int
    by_priority: dict[str, int]
    member_count: int
    recent_tickets: list[TicketResponse]


class TicketStats(BaseModel):
    """Ticket statistics over the projects visible to the caller."""

    total: int
    assigned_to_me: int
    created_by_me: int
    overdue: int
    by_status: dict[str, int]
    by_priority: dict[str, int]
