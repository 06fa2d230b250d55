"""TicketFlow REST API."""
