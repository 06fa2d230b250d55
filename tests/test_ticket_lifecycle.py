"""Tests for the ticket lifecycle engine."""
from datetime import datetime, timedelta
from uuid import uuid4

import pytest
from ticketflow_core.errors import InvalidInputError
from ticketflow_core.models import Ticket, TicketStatus
from ticketflow_core.ticket_lifecycle import (
    CREATED_COMMENT,
    change_status,
    open_ticket,
    validate_hours,
)


def _new_ticket(creator_id):
    ticket = Ticket(title="Broken login", description="Login button does nothing")
    open_ticket(ticket, created_by=creator_id, now=datetime(2026, 1, 1, 9, 0))
    return ticket


class TestTransitions:
    """Test the transition graph."""

    @pytest.mark.parametrize("current", list(TicketStatus))
    @pytest.mark.parametrize("target", list(TicketStatus))
    def test_any_status_may_follow_any_other(self, current, target):
        ticket = _new_ticket(uuid4())
        change_status(ticket, current, changed_by=uuid4())

        changed = change_status(ticket, target, changed_by=uuid4())

        assert changed is (current != target)
        assert ticket.status == target

class TestOpenTicket:
    """Test initial ticket state."""

    def test_new_ticket_is_open_with_one_history_entry(self):
        """A new ticket starts OPEN with exactly one history entry by its creator."""
        creator_id = uuid4()
        ticket = _new_ticket(creator_id)

        assert ticket.status == TicketStatus.OPEN
        assert len(ticket.status_history) == 1
        entry = ticket.status_history[0]
        assert entry.status == TicketStatus.OPEN
        assert entry.changed_by_user_id == creator_id
        assert entry.comment == CREATED_COMMENT
        assert entry.position == 0

    def test_new_ticket_has_no_derived_timestamps(self):
        ticket = _new_ticket(uuid4())
        assert ticket.resolved_at is None
        assert ticket.closed_at is None


class TestChangeStatus:
    """Test status changes and derived timestamps."""

    def test_status_change_appends_history(self):
        """Each real change appends one entry attributed to the actor."""
        ticket = _new_ticket(uuid4())
        actor_id = uuid4()

        changed = change_status(ticket, TicketStatus.IN_PROGRESS, changed_by=actor_id, comment="Picked up")

        assert changed is True
        assert ticket.status == TicketStatus.IN_PROGRESS
        assert len(ticket.status_history) == 2
        entry = ticket.status_history[-1]
        assert entry.status == TicketStatus.IN_PROGRESS
        assert entry.changed_by_user_id == actor_id
        assert entry.comment == "Picked up"
        assert entry.position == 1

    def test_same_status_is_a_noop(self):
        """Setting the current status appends nothing."""
        ticket = _new_ticket(uuid4())

        changed = change_status(ticket, TicketStatus.OPEN, changed_by=uuid4())

        assert changed is False
        assert len(ticket.status_history) == 1

    def test_status_accepts_plain_string(self):
        ticket = _new_ticket(uuid4())
        assert change_status(ticket, "RESOLVED", changed_by=uuid4())
        assert ticket.status == TicketStatus.RESOLVED

    def test_resolved_at_set_and_cleared(self):
        """resolved_at follows the RESOLVED status."""
        ticket = _new_ticket(uuid4())
        actor_id = uuid4()
        resolved_time = datetime(2026, 1, 2, 10, 0)

        change_status(ticket, TicketStatus.RESOLVED, changed_by=actor_id, now=resolved_time)
        assert ticket.resolved_at == resolved_time

        # Leaving RESOLVED clears it
        change_status(ticket, TicketStatus.IN_PROGRESS, changed_by=actor_id)
        assert ticket.resolved_at is None

    def test_closed_at_set_and_cleared_on_reopen(self):
        """closed_at follows the CLOSED status, and reopening clears it."""
        ticket = _new_ticket(uuid4())
        actor_id = uuid4()
        closed_time = datetime(2026, 1, 3, 12, 0)

        change_status(ticket, TicketStatus.CLOSED, changed_by=actor_id, now=closed_time)
        assert ticket.closed_at == closed_time
        assert ticket.resolved_at is None

        change_status(ticket, TicketStatus.OPEN, changed_by=actor_id)
        assert ticket.closed_at is None
        assert ticket.status == TicketStatus.OPEN
        assert [e.status for e in ticket.status_history] == [
            TicketStatus.OPEN,
            TicketStatus.CLOSED,
            TicketStatus.OPEN,
        ]

    def test_history_changed_at_uses_supplied_time(self):
        ticket = _new_ticket(uuid4())
        when = datetime(2026, 2, 1) + timedelta(hours=3)
        change_status(ticket, TicketStatus.IN_PROGRESS, changed_by=uuid4(), now=when)
        assert ticket.status_history[-1].changed_at == when


class TestHoursValidation:
    """Test estimated/actual hours bounds."""

    @pytest.mark.parametrize("value", [None, 0, 0.5, 40, 1000])
    def test_in_range_values_pass(self, value):
        validate_hours("estimated_hours", value)  # Should not raise

    @pytest.mark.parametrize("value", [-1, -0.1, 1000.5, 5000])
    def test_out_of_range_values_are_rejected(self, value):
        """Out-of-range values raise instead of being clamped."""
        with pytest.raises(InvalidInputError) as exc_info:
            validate_hours("actual_hours", value)

        assert "actual_hours" in exc_info.value.message
        assert exc_info.value.status_code == 400

    def test_nan_is_rejected(self):
        with pytest.raises(InvalidInputError):
            validate_hours("estimated_hours", float("nan"))
