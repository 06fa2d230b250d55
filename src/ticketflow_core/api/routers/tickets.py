"""Tickets API endpoints."""
import logging
from math import ceil
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from ticketflow_core import models, schemas, ticket_service
from ticketflow_core.notifications import deliver_all

from ...database import get_db
from ..dependencies import get_current_user, get_notifier

logger = logging.getLogger("ticketflow-core.tickets")

router = APIRouter(tags=["tickets"])


def _ticket_data(ticket: models.Ticket) -> schemas.TicketResponse:
    return schemas.TicketResponse.model_validate(ticket)


def _ticket_page(tickets: list[models.Ticket], total: int, page: int, page_size: int) -> schemas.TicketListResponse:
    return schemas.TicketListResponse(
        items=[_ticket_data(ticket) for ticket in tickets],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=ceil(total / page_size) if total > 0 else 0,
    )


@router.get("/assigned-to-me", response_model=schemas.ApiResponse[schemas.TicketListResponse])
def list_assigned_to_me(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(10, ge=1, le=100, description="Items per page"),
    status: Optional[models.TicketStatus] = Query(None, description="Filter by status"),
    priority: Optional[models.TicketPriority] = Query(None, description="Filter by priority"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Tickets assigned to the current user, newest first."""
    tickets, total = ticket_service.list_assigned_to_me(
        db,
        current_user,
        status_filter=status,
        priority_filter=priority,
        skip=(page - 1) * page_size,
        limit=page_size,
    )
    return schemas.ApiResponse(data=_ticket_page(tickets, total, page, page_size))


@router.get("/created-by-me", response_model=schemas.ApiResponse[schemas.TicketListResponse])
def list_created_by_me(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(10, ge=1, le=100, description="Items per page"),
    status: Optional[models.TicketStatus] = Query(None, description="Filter by status"),
    priority: Optional[models.TicketPriority] = Query(None, description="Filter by priority"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Tickets created by the current user, newest first."""
    tickets, total = ticket_service.list_created_by_me(
        db,
        current_user,
        status_filter=status,
        priority_filter=priority,
        skip=(page - 1) * page_size,
        limit=page_size,
    )
    return schemas.ApiResponse(data=_ticket_page(tickets, total, page, page_size))


@router.get("/stats", response_model=schemas.ApiResponse[schemas.TicketStats])
def get_ticket_stats(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Ticket counts over the projects visible to the current user."""
    stats = ticket_service.ticket_stats(db, current_user)
    return schemas.ApiResponse(data=schemas.TicketStats(**stats))


@router.post("/", response_model=schemas.ApiResponse[schemas.TicketResponse], status_code=201)
def create_ticket(
    ticket: schemas.TicketCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    notifier=Depends(get_notifier),
):
    """
    Create a new ticket in OPEN status.

    - **project_id**: Target project (requires CONTRIBUTOR access)
    - **title**: 5-200 characters
    - **description**: 10-2000 characters
    - **priority**: LOW, MEDIUM or HIGH
    - **ticket_type**: BUG (default), FEATURE, ENHANCEMENT or TASK
    - **assigned_to_user_id**: Optional assignee with access to the project
    - **due_date**: Optional, must be in the future
    - **estimated_hours**: Optional, 0-1000
    - **tags**: Optional list of tags (max 30 characters each)
    """
    result, requests = ticket_service.create_ticket(
        db,
        current_user,
        project_id=ticket.project_id,
        title=ticket.title,
        description=ticket.description,
        priority=ticket.priority,
        ticket_type=ticket.ticket_type,
        assigned_to_user_id=ticket.assigned_to_user_id,
        due_date=ticket.due_date,
        estimated_hours=ticket.estimated_hours,
        tags=ticket.tags,
    )
    background_tasks.add_task(deliver_all, notifier, requests)
    return schemas.ApiResponse(message="Ticket created successfully", data=_ticket_data(result))


@router.get("/", response_model=schemas.ApiResponse[schemas.TicketListResponse])
def list_tickets(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(10, ge=1, le=100, description="Items per page"),
    status: Optional[models.TicketStatus] = Query(None, description="Filter by status"),
    priority: Optional[models.TicketPriority] = Query(None, description="Filter by priority"),
    ticket_type: Optional[models.TicketType] = Query(None, description="Filter by type"),
    assigned_to: Optional[UUID] = Query(None, description="Filter by assignee"),
    project_id: Optional[UUID] = Query(None, description="Filter by project"),
    search: Optional[str] = Query(None, description="Search in title and description"),
    sort_by: str = Query("created_at", pattern="^(created_at|updated_at|priority|status|title)$"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    List tickets with optional filtering and pagination.

    Non-admin users only see tickets in active projects they created or
    belong to.
    """
    tickets, total = ticket_service.list_tickets(
        db,
        current_user,
        skip=(page - 1) * page_size,
        limit=page_size,
        project_id=project_id,
        status_filter=status,
        priority_filter=priority,
        type_filter=ticket_type,
        assigned_to_user_id=assigned_to,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return schemas.ApiResponse(data=_ticket_page(tickets, total, page, page_size))


@router.get("/{ticket_id}", response_model=schemas.ApiResponse[schemas.TicketResponse])
def get_ticket(
    ticket_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Get a ticket with its status history (requires VIEWER access)."""
    ticket = ticket_service.get_ticket(db, current_user, ticket_id)
    return schemas.ApiResponse(data=_ticket_data(ticket))


@router.put("/{ticket_id}", response_model=schemas.ApiResponse[schemas.TicketResponse])
def update_ticket(
    ticket_id: UUID,
    ticket_update: schemas.TicketUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    notifier=Depends(get_notifier),
):
    """
    Update a ticket (requires CONTRIBUTOR access).

    Only fields present in the body are changed. A status change is
    recorded in the ticket's status history with the optional **comment**.
    """
    changes = ticket_update.model_dump(exclude_unset=True)
    comment = changes.pop("comment", None)
    ticket, requests = ticket_service.update_ticket(db, current_user, ticket_id, changes, comment=comment)
    background_tasks.add_task(deliver_all, notifier, requests)
    return schemas.ApiResponse(message="Ticket updated successfully", data=_ticket_data(ticket))


@router.delete("/{ticket_id}", response_model=schemas.ApiResponse[None])
def delete_ticket(
    ticket_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Delete a ticket (admin, project creator or ticket creator)."""
    ticket_service.delete_ticket(db, current_user, ticket_id)
    return schemas.ApiResponse(message="Ticket deleted successfully")


@router.put("/{ticket_id}/assign", response_model=schemas.ApiResponse[schemas.TicketResponse])
def assign_ticket(
    ticket_id: UUID,
    assignment: schemas.TicketAssign,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    notifier=Depends(get_notifier),
):
    """Assign a ticket to a user with access to its project."""
    ticket, requests = ticket_service.assign_ticket(db, current_user, ticket_id, assignment.assigned_to_user_id)
    background_tasks.add_task(deliver_all, notifier, requests)
    return schemas.ApiResponse(message="Ticket assigned successfully", data=_ticket_data(ticket))


@router.put("/{ticket_id}/unassign", response_model=schemas.ApiResponse[schemas.TicketResponse])
def unassign_ticket(
    ticket_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Remove a ticket's assignee."""
    ticket, _ = ticket_service.unassign_ticket(db, current_user, ticket_id)
    return schemas.ApiResponse(message="Ticket unassigned successfully", data=_ticket_data(ticket))
