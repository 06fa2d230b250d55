"""API routers for TicketFlow."""

from . import projects, tickets, users

__all__ = ["projects", "tickets", "users"]
