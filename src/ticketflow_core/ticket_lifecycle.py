"""Ticket lifecycle engine.

Owns every write to a ticket's status and the fields derived from it:

- status changes append exactly one entry to the ticket's status history,
  attributed to the acting user; setting the same status appends nothing
- resolved_at is set while the status is RESOLVED and cleared otherwise
- closed_at is set while the status is CLOSED and cleared otherwise
- estimated/actual hours must lie in [0, 1000]; out-of-range values are
  rejected, never clamped

The transition graph is unrestricted: any status may follow any other,
including reopening a CLOSED ticket.
"""
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from .errors import InvalidInputError
from .models import Ticket, TicketStatus, TicketStatusHistory

logger = logging.getLogger("ticketflow-core.ticket_lifecycle")

MIN_HOURS = 0
MAX_HOURS = 1000

CREATED_COMMENT = "Ticket created"


def validate_hours(field_name: str, value: Optional[float]) -> None:
    """
    Reject hour values outside [0, 1000].

    Args:
        field_name: Field being validated (used in the error message)
        value: Proposed value; None means "not set" and always passes

    Raises:
        InvalidInputError: If the value is out of range
    """
    if value is None:
        return
    if not (MIN_HOURS <= value <= MAX_HOURS):
        raise InvalidInputError(
            f"{field_name} must be between {MIN_HOURS} and {MAX_HOURS}",
            errors=[{"field": field_name, "message": "out of range", "value": value}],
        )


def derive_timestamps(ticket: Ticket, now: Optional[datetime] = None) -> None:
    """Recompute resolved_at / closed_at from the ticket's current status."""
    now = now or datetime.utcnow()

    if ticket.status == TicketStatus.RESOLVED:
        if ticket.resolved_at is None:
            ticket.resolved_at = now
    else:
        ticket.resolved_at = None

    if ticket.status == TicketStatus.CLOSED:
        if ticket.closed_at is None:
            ticket.closed_at = now
    else:
        ticket.closed_at = None


def _append_history(
    ticket: Ticket,
    status: TicketStatus,
    changed_by: Optional[UUID],
    comment: Optional[str],
    now: datetime,
) -> TicketStatusHistory:
    entry = TicketStatusHistory(
        position=len(ticket.status_history),
        status=status,
        changed_by_user_id=changed_by,
        changed_at=now,
        comment=comment,
    )
    ticket.status_history.append(entry)
    return entry


def open_ticket(ticket: Ticket, created_by: UUID, now: Optional[datetime] = None) -> None:
    """
    Put a new ticket into its initial state.

    Sets status OPEN and seeds the history with one OPEN entry attributed
    to the creator.
    """
    now = now or datetime.utcnow()
    ticket.status = TicketStatus.OPEN
    derive_timestamps(ticket, now)
    _append_history(ticket, TicketStatus.OPEN, created_by, CREATED_COMMENT, now)


def change_status(
    ticket: Ticket,
    new_status: TicketStatus,
    changed_by: UUID,
    comment: Optional[str] = None,
    now: Optional[datetime] = None,
) -> bool:
    """
    Move an existing ticket to a new status.

    Args:
        ticket: Ticket to update (already persisted)
        new_status: Requested status
        changed_by: UUID of the acting user
        comment: Optional note stored with the history entry
        now: Timestamp to record (defaults to utcnow)

    Returns:
        True if the status changed, False for a no-op
    """
    new_status = TicketStatus(new_status)
    current_status = TicketStatus(ticket.status)
    if new_status == current_status:
        return False

    now = now or datetime.utcnow()
    ticket.status = new_status
    _append_history(ticket, new_status, changed_by, comment, now)
    derive_timestamps(ticket, now)
    logger.debug(f"Ticket {ticket.id}: {current_status.value} → {new_status.value} by {changed_by}")
    return True
