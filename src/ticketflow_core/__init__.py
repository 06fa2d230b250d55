"""TicketFlow core: users, projects and tickets with role-based access."""

__version__ = "1.0.0"
