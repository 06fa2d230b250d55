"""Notification trigger.

Decides which notifications an operation should emit and captures
everything they need into plain payloads, so delivery can run after the
request's database session has closed.

Rules:
- Assignment: fires when the assignee after the operation differs from the
  assignee before it, and the new assignee is not the acting user.
- Status update: fires when the status differs; recipients are the
  assignee and the creator, deduplicated by email, nulls dropped.
- Project invitation: fires when a member is added.
- Welcome: fires on registration.

Delivery is best-effort. `deliver` never raises: failures are logged and
returned as an unsuccessful NotificationResult.
"""
import enum
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from .models import Project, Ticket, TicketStatus, User

logger = logging.getLogger("ticketflow-core.notifications")


class NotificationKind(str, enum.Enum):
    WELCOME = "welcome"
    ASSIGNMENT = "assignment"
    STATUS_UPDATE = "status_update"
    PROJECT_INVITATION = "project_invitation"


class Contact(BaseModel):
    """A user as seen by the mailer."""

    id: Optional[UUID] = None
    name: str
    email: str
    role: Optional[str] = None


class TicketSummary(BaseModel):
    """Ticket fields rendered into notification emails."""

    id: UUID
    title: str
    description: str
    status: str
    priority: str
    due_date: Optional[datetime] = None
    project_name: Optional[str] = None


class ProjectSummary(BaseModel):
    """Project fields rendered into invitation emails."""

    id: UUID
    name: str
    description: str


class TicketState(BaseModel):
    """The parts of a ticket the trigger compares before and after an operation."""

    status: TicketStatus
    assigned_to_user_id: Optional[UUID] = None


class NotificationRequest(BaseModel):
    """A single fire-and-forget delivery request."""

    kind: NotificationKind
    recipients: list[Contact]
    actor: Optional[Contact] = None
    ticket: Optional[TicketSummary] = None
    project: Optional[ProjectSummary] = None


class NotificationResult(BaseModel):
    """Outcome of one delivery attempt; never propagated to the caller."""

    success: bool
    message_ids: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


def contact_for(user: User) -> Contact:
    role = user.role.value if hasattr(user.role, "value") else user.role
    return Contact(id=user.id, name=user.name, email=user.email, role=role)


def summarize_ticket(ticket: Ticket) -> TicketSummary:
    return TicketSummary(
        id=ticket.id,
        title=ticket.title,
        description=ticket.description,
        status=TicketStatus(ticket.status).value,
        priority=ticket.priority.value if hasattr(ticket.priority, "value") else ticket.priority,
        due_date=ticket.due_date,
        project_name=ticket.project.name if ticket.project is not None else None,
    )


def summarize_project(project: Project) -> ProjectSummary:
    return ProjectSummary(id=project.id, name=project.name, description=project.description)


def capture_state(ticket: Ticket) -> TicketState:
    """Snapshot the fields the trigger diffs."""
    return TicketState(
        status=TicketStatus(ticket.status),
        assigned_to_user_id=ticket.assigned_to_user_id,
    )


def status_recipients(ticket: Ticket) -> list[Contact]:
    """
    Recipients of a status update: assignee then creator, deduplicated by email.

    Args:
        ticket: Ticket with `assignee` and `creator` loaded

    Returns:
        Contacts in delivery order
    """
    recipients: list[Contact] = []
    seen: set[str] = set()
    for user in (ticket.assignee, ticket.creator):
        if user is None or not user.email:
            continue
        key = user.email.lower()
        if key in seen:
            continue
        seen.add(key)
        recipients.append(contact_for(user))
    return recipients


def plan_ticket_notifications(
    before: Optional[TicketState],
    ticket: Ticket,
    actor: User,
) -> list[NotificationRequest]:
    """
    Compare a ticket against its earlier state and build notification requests.

    Args:
        before: State captured before the operation (None for a new ticket)
        ticket: Ticket after the operation, with assignee/creator/project loaded
        actor: User who performed the operation

    Returns:
        Requests to hand to `deliver`, possibly empty
    """
    after = capture_state(ticket)
    previous_assignee = before.assigned_to_user_id if before else None
    previous_status = before.status if before else after.status

    requests: list[NotificationRequest] = []
    summary = None

    assignee_changed = after.assigned_to_user_id != previous_assignee
    if (
        assignee_changed
        and after.assigned_to_user_id is not None
        and after.assigned_to_user_id != actor.id
        and ticket.assignee is not None
    ):
        summary = summarize_ticket(ticket)
        requests.append(NotificationRequest(
            kind=NotificationKind.ASSIGNMENT,
            recipients=[contact_for(ticket.assignee)],
            actor=contact_for(actor),
            ticket=summary,
        ))

    if after.status != previous_status:
        recipients = status_recipients(ticket)
        if recipients:
            requests.append(NotificationRequest(
                kind=NotificationKind.STATUS_UPDATE,
                recipients=recipients,
                actor=contact_for(actor),
                ticket=summary or summarize_ticket(ticket),
            ))

    return requests


def plan_project_invitation(project: Project, invitee: User, actor: User) -> NotificationRequest:
    return NotificationRequest(
        kind=NotificationKind.PROJECT_INVITATION,
        recipients=[contact_for(invitee)],
        actor=contact_for(actor),
        project=summarize_project(project),
    )


def plan_welcome(user: User) -> NotificationRequest:
    return NotificationRequest(kind=NotificationKind.WELCOME, recipients=[contact_for(user)])


def deliver(notifier, request: NotificationRequest) -> NotificationResult:
    """
    Hand one request to the notifier, swallowing any failure.

    Args:
        notifier: Object implementing send_welcome / send_assignment /
            send_status_update / send_project_invitation
        request: Request built by one of the plan_* functions

    Returns:
        The notifier's result, or a failed result if it raised
    """
    try:
        if request.kind == NotificationKind.WELCOME:
            result = notifier.send_welcome(request.recipients[0])
        elif request.kind == NotificationKind.ASSIGNMENT:
            result = notifier.send_assignment(request.ticket, request.recipients[0], request.actor)
        elif request.kind == NotificationKind.STATUS_UPDATE:
            result = notifier.send_status_update(request.ticket, request.actor, request.recipients)
        elif request.kind == NotificationKind.PROJECT_INVITATION:
            result = notifier.send_project_invitation(request.project, request.recipients[0], request.actor)
        else:
            raise ValueError(f"Unknown notification kind: {request.kind}")
    except Exception as e:
        logger.error(f"Notification {request.kind.value} failed: {e}", exc_info=True)
        return NotificationResult(success=False, errors=[str(e)])

    if not result.success:
        logger.warning(f"Notification {request.kind.value} not delivered: {'; '.join(result.errors)}")
    return result


def deliver_all(notifier, requests: list[NotificationRequest]) -> list[NotificationResult]:
    """Deliver several requests in order; used as a background task."""
    return [deliver(notifier, request) for request in requests]
