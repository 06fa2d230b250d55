"""Projects API endpoints."""
import logging
from math import ceil
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from ticketflow_core import models, project_service, schemas
from ticketflow_core.notifications import deliver_all

from ...database import get_db
from ..dependencies import get_current_user, get_notifier

logger = logging.getLogger("ticketflow-core.projects")

router = APIRouter(tags=["projects"])


def _project_data(project: models.Project) -> schemas.ProjectResponse:
    return schemas.ProjectResponse.model_validate(project)


@router.post("/", response_model=schemas.ApiResponse[schemas.ProjectResponse], status_code=201)
def create_project(
    project: schemas.ProjectCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Create a new project (admin only).

    - **name**: Unique project name, 3-100 characters
    - **description**: 10-500 characters
    - **status**: Project status (default: ACTIVE)
    - **priority**: Project priority (default: MEDIUM)
    - **end_date**: Optional, must be in the future
    """
    result = project_service.create_project(
        db,
        current_user,
        name=project.name,
        description=project.description,
        status=project.status,
        priority=project.priority,
        start_date=project.start_date,
        end_date=project.end_date,
    )
    return schemas.ApiResponse(message="Project created successfully", data=_project_data(result))


@router.get("/", response_model=schemas.ApiResponse[schemas.ProjectListResponse])
def list_projects(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(10, ge=1, le=100, description="Items per page"),
    search: Optional[str] = Query(None, description="Search in name and description"),
    status: Optional[models.ProjectStatus] = Query(None, description="Filter by status"),
    priority: Optional[models.ProjectPriority] = Query(None, description="Filter by priority"),
    sort_by: str = Query("created_at", pattern="^(created_at|name|status|priority)$"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    List active projects visible to the current user.

    Admins see every active project; other users see projects they created
    or are members of.
    """
    skip = (page - 1) * page_size
    projects, total = project_service.list_projects(
        db,
        current_user,
        skip=skip,
        limit=page_size,
        search=search,
        status_filter=status,
        priority_filter=priority,
        sort_by=sort_by,
        sort_order=sort_order,
    )

    return schemas.ApiResponse(data=schemas.ProjectListResponse(
        items=[_project_data(project) for project in projects],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=ceil(total / page_size) if total > 0 else 0,
    ))


@router.get("/{project_id}", response_model=schemas.ApiResponse[schemas.ProjectResponse])
def get_project(
    project_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Get a specific project by ID (requires VIEWER access)."""
    project = project_service.get_project(db, current_user, project_id)
    return schemas.ApiResponse(data=_project_data(project))


@router.put("/{project_id}", response_model=schemas.ApiResponse[schemas.ProjectResponse])
def update_project(
    project_id: UUID,
    project_update: schemas.ProjectUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Update a project (admin or project creator).

    - **name**: New project name (optional, must stay unique)
    - **description**: New description (optional)
    - **status**: New status (optional)
    - **priority**: New priority (optional)
    - **end_date**: New end date (optional)
    """
    project = project_service.update_project(
        db, current_user, project_id, project_update.model_dump(exclude_unset=True)
    )
    return schemas.ApiResponse(message="Project updated successfully", data=_project_data(project))


@router.delete("/{project_id}", response_model=schemas.ApiResponse[schemas.ProjectDeleteResult])
def delete_project(
    project_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Delete a project (admin only).

    Projects that still have tickets are archived instead of removed.
    """
    deleted_id, deleted = project_service.delete_project(db, current_user, project_id)
    message = (
        "Project deleted successfully" if deleted
        else "Project archived successfully (has associated tickets)"
    )
    return schemas.ApiResponse(
        message=message,
        data=schemas.ProjectDeleteResult(id=deleted_id, deleted=deleted, archived=not deleted),
    )


# Project Members endpoints

@router.get("/{project_id}/members", response_model=schemas.ApiResponse[list[schemas.ProjectMemberResponse]])
def list_project_members(
    project_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """List all members of a project."""
    members = project_service.list_members(db, current_user, project_id)
    return schemas.ApiResponse(data=[schemas.ProjectMemberResponse.model_validate(m) for m in members])


@router.post("/{project_id}/members", response_model=schemas.ApiResponse[schemas.ProjectResponse], status_code=201)
def add_project_member(
    project_id: UUID,
    member: schemas.ProjectMemberCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    notifier=Depends(get_notifier),
):
    """
    Add a user to a project and send them an invitation.

    - **user_id**: UUID of the user to add
    - **role**: Project role (VIEWER, CONTRIBUTOR or MANAGER; default CONTRIBUTOR)
    """
    project, requests = project_service.add_member(db, current_user, project_id, member.user_id, member.role)
    background_tasks.add_task(deliver_all, notifier, requests)
    return schemas.ApiResponse(message="Member added to project successfully", data=_project_data(project))


@router.put("/{project_id}/members/{user_id}/role", response_model=schemas.ApiResponse[schemas.ProjectResponse])
def update_project_member(
    project_id: UUID,
    user_id: UUID,
    member_update: schemas.ProjectMemberUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Update a project member's role."""
    project = project_service.change_member_role(db, current_user, project_id, user_id, member_update.role)
    return schemas.ApiResponse(message="Member role updated successfully", data=_project_data(project))


@router.delete("/{project_id}/members/{user_id}", response_model=schemas.ApiResponse[schemas.ProjectResponse])
def remove_project_member(
    project_id: UUID,
    user_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Remove a user from a project."""
    project = project_service.remove_member(db, current_user, project_id, user_id)
    return schemas.ApiResponse(message="Member removed from project successfully", data=_project_data(project))


@router.get("/{project_id}/stats", response_model=schemas.ApiResponse[schemas.ProjectStats])
def get_project_stats(
    project_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Ticket statistics for a project (requires VIEWER access)."""
    stats = project_service.project_stats(db, current_user, project_id)
    stats["recent_tickets"] = [schemas.TicketResponse.model_validate(t) for t in stats["recent_tickets"]]
    return schemas.ApiResponse(data=schemas.ProjectStats(**stats))
