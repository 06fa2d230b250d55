"""Tests for project lifecycle and membership rules."""
from datetime import datetime, timedelta
from uuid import uuid4

import pytest
from ticketflow_core import crud, models, project_service, ticket_service
from ticketflow_core.errors import ConflictError, InvalidInputError, NotFoundError, PermissionDeniedError
from ticketflow_core.notifications import NotificationKind


def _user_project(db, owner, name="Mobile App"):
    """Project created by a non-admin user (bypasses the admin-only create)."""
    return crud.create_project(db, name=name, description="Native mobile client", created_by_user_id=owner.id)


def _add_ticket(db, actor, project):
    ticket, _ = ticket_service.create_ticket(
        db, actor, project.id, title="Fix header layout", description="Header overlaps content on mobile"
    )
    return ticket


class TestCreateProject:
    """Test project creation."""

    def test_admin_creates_project(self, db, admin):
        project = project_service.create_project(
            db, admin, name="Website Redesign", description="Refresh the public website",
            priority=models.ProjectPriority.HIGH,
        )

        assert project.created_by_user_id == admin.id
        assert project.status == models.ProjectStatus.ACTIVE
        assert project.priority == models.ProjectPriority.HIGH
        assert project.is_active is True
        assert project.start_date is not None
        assert project.members == []

    def test_non_admin_cannot_create(self, db, alice):
        with pytest.raises(PermissionDeniedError):
            project_service.create_project(db, alice, name="Side Project", description="Not allowed here")

    def test_duplicate_name_conflicts(self, db, admin, project):
        with pytest.raises(ConflictError) as exc_info:
            project_service.create_project(db, admin, name="Website Redesign", description="Second attempt here")

        assert exc_info.value.status_code == 409

    def test_name_uniqueness_is_case_sensitive(self, db, admin, project):
        other = project_service.create_project(db, admin, name="website redesign", description="Different casing")
        assert other.id != project.id


class TestGetAndListProjects:
    """Test project visibility."""

    def test_non_member_is_denied(self, db, alice, project):
        with pytest.raises(PermissionDeniedError):
            project_service.get_project(db, alice, project.id)

    def test_member_can_view(self, db, admin, alice, project):
        project_service.add_member(db, admin, project.id, alice.id, models.ProjectRole.VIEWER)
        assert project_service.get_project(db, alice, project.id).id == project.id

    def test_missing_project(self, db, admin):
        with pytest.raises(NotFoundError):
            project_service.get_project(db, admin, uuid4())

    def test_list_scoped_to_membership(self, db, admin, alice, bob, project):
        own = _user_project(db, alice)
        project_service.add_member(db, admin, project.id, bob.id)

        alice_projects, alice_total = project_service.list_projects(db, alice)
        bob_projects, _ = project_service.list_projects(db, bob)
        admin_projects, admin_total = project_service.list_projects(db, admin)

        assert alice_total == 1 and alice_projects[0].id == own.id
        assert [p.id for p in bob_projects] == [project.id]
        assert admin_total == 2

    def test_list_filters_and_sorts(self, db, admin):
        for name, priority in [("Alpha", "LOW"), ("Bravo", "CRITICAL"), ("Charlie", "MEDIUM")]:
            project_service.create_project(
                db, admin, name=name, description="Filter test project",
                priority=models.ProjectPriority(priority),
            )

        by_priority, _ = project_service.list_projects(db, admin, sort_by="priority", sort_order="desc")
        searched, total = project_service.list_projects(db, admin, search="brav")

        assert [p.name for p in by_priority] == ["Bravo", "Charlie", "Alpha"]
        assert total == 1 and searched[0].name == "Bravo"


class TestUpdateProject:
    """Test project updates."""

    def test_creator_updates_fields(self, db, alice):
        project = _user_project(db, alice)
        end = datetime.utcnow() + timedelta(days=30)

        updated = project_service.update_project(
            db, alice, project.id,
            {"description": "Native iOS and Android client", "status": models.ProjectStatus.ON_HOLD, "end_date": end},
        )

        assert updated.description == "Native iOS and Android client"
        assert updated.status == models.ProjectStatus.ON_HOLD
        assert updated.end_date == end
        assert updated.name == "Mobile App"

    def test_manager_member_cannot_update(self, db, admin, alice, project):
        project_service.add_member(db, admin, project.id, alice.id, models.ProjectRole.MANAGER)

        with pytest.raises(PermissionDeniedError):
            project_service.update_project(db, alice, project.id, {"name": "Hijacked"})

    def test_rename_to_taken_name_conflicts(self, db, admin, project):
        other = project_service.create_project(db, admin, name="Other Project", description="Another one here")

        with pytest.raises(ConflictError):
            project_service.update_project(db, admin, other.id, {"name": "Website Redesign"})

    def test_keeping_own_name_is_not_a_conflict(self, db, admin, project):
        updated = project_service.update_project(db, admin, project.id, {"name": "Website Redesign"})
        assert updated.name == "Website Redesign"

    def test_unknown_fields_are_ignored(self, db, admin, alice, project):
        updated = project_service.update_project(db, admin, project.id, {"created_by_user_id": alice.id})
        assert updated.created_by_user_id == admin.id


class TestDeleteProject:
    """Test delete-or-archive."""

    def test_project_without_tickets_is_deleted(self, db, admin, alice, project):
        project_service.add_member(db, admin, project.id, alice.id)
        project_id = project.id

        deleted_id, deleted = project_service.delete_project(db, admin, project_id)

        assert deleted_id == project_id and deleted is True
        assert crud.get_project(db, project_id, active_only=False) is None
        assert crud.get_project_member(db, project_id, alice.id) is None

    def test_project_with_tickets_is_archived(self, db, admin, project):
        _add_ticket(db, admin, project)

        _, deleted = project_service.delete_project(db, admin, project.id)

        assert deleted is False
        archived = crud.get_project(db, project.id, active_only=False)
        assert archived.is_active is False
        assert archived.status == models.ProjectStatus.ARCHIVED

    def test_archived_project_is_hidden(self, db, admin, project):
        _add_ticket(db, admin, project)
        project_service.delete_project(db, admin, project.id)

        with pytest.raises(NotFoundError):
            project_service.get_project(db, admin, project.id)
        assert project_service.list_projects(db, admin)[1] == 0

    def test_only_admin_deletes(self, db, alice):
        project = _user_project(db, alice)

        with pytest.raises(PermissionDeniedError):
            project_service.delete_project(db, alice, project.id)


class TestMembership:
    """Test member add/remove/role changes."""

    def test_add_member_plans_invitation(self, db, admin, alice, project):
        updated, requests = project_service.add_member(db, admin, project.id, alice.id, models.ProjectRole.CONTRIBUTOR)

        assert [(m.user_id, m.role) for m in updated.members] == [(alice.id, models.ProjectRole.CONTRIBUTOR)]
        assert len(requests) == 1
        assert requests[0].kind == NotificationKind.PROJECT_INVITATION
        assert requests[0].recipients[0].email == "alice@example.com"
        assert requests[0].project.name == "Website Redesign"

    def test_default_role_is_contributor(self, db, admin, alice, project):
        updated, _ = project_service.add_member(db, admin, project.id, alice.id, None)
        assert updated.members[0].role == models.ProjectRole.CONTRIBUTOR

    def test_duplicate_member_conflicts(self, db, admin, alice, project):
        project_service.add_member(db, admin, project.id, alice.id)

        with pytest.raises(ConflictError):
            project_service.add_member(db, admin, project.id, alice.id, models.ProjectRole.VIEWER)

    def test_inactive_user_cannot_be_added(self, db, admin, make_user, project):
        ghost = make_user(is_active=False)

        with pytest.raises(NotFoundError, match="not found or inactive"):
            project_service.add_member(db, admin, project.id, ghost.id)

    def test_member_cannot_add_members(self, db, admin, alice, bob, project):
        project_service.add_member(db, admin, project.id, alice.id, models.ProjectRole.MANAGER)

        with pytest.raises(PermissionDeniedError):
            project_service.add_member(db, alice, project.id, bob.id)

    def test_change_role(self, db, admin, alice, project):
        project_service.add_member(db, admin, project.id, alice.id, models.ProjectRole.VIEWER)

        updated = project_service.change_member_role(db, admin, project.id, alice.id, "MANAGER")

        assert updated.members[0].role == models.ProjectRole.MANAGER

    def test_change_role_rejects_unknown_role(self, db, admin, alice, project):
        project_service.add_member(db, admin, project.id, alice.id)

        with pytest.raises(InvalidInputError):
            project_service.change_member_role(db, admin, project.id, alice.id, "OWNER")

    def test_change_role_of_non_member(self, db, admin, alice, project):
        with pytest.raises(NotFoundError, match="not a member"):
            project_service.change_member_role(db, admin, project.id, alice.id, models.ProjectRole.VIEWER)

    def test_remove_member_revokes_access(self, db, admin, alice, project):
        project_service.add_member(db, admin, project.id, alice.id)

        updated = project_service.remove_member(db, admin, project.id, alice.id)

        assert updated.members == []
        with pytest.raises(PermissionDeniedError):
            project_service.get_project(db, alice, project.id)

    def test_remove_non_member(self, db, admin, alice, project):
        with pytest.raises(NotFoundError):
            project_service.remove_member(db, admin, project.id, alice.id)

    def test_list_members_in_join_order(self, db, admin, alice, bob, project):
        project_service.add_member(db, admin, project.id, alice.id)
        project_service.add_member(db, admin, project.id, bob.id, models.ProjectRole.VIEWER)

        members = project_service.list_members(db, bob, project.id)

        assert [m.user_id for m in members] == [alice.id, bob.id]


class TestProjectStats:
    """Test per-project statistics."""

    def test_counts_by_status_and_priority(self, db, admin, alice, project):
        project_service.add_member(db, admin, project.id, alice.id)
        first = _add_ticket(db, admin, project)
        ticket_service.create_ticket(
            db, alice, project.id, title="Add dark mode", description="Support a dark color scheme",
            priority=models.TicketPriority.HIGH,
        )
        ticket_service.update_ticket(db, admin, first.id, {"status": models.TicketStatus.RESOLVED})

        stats = project_service.project_stats(db, alice, project.id)

        assert stats["total_tickets"] == 2
        assert stats["open_tickets"] == 1
        assert stats["resolved_tickets"] == 1
        assert stats["in_progress_tickets"] == 0
        assert stats["high_priority_tickets"] == 1
        assert stats["by_priority"] == {"MEDIUM": 1, "HIGH": 1}
        assert stats["member_count"] == 1
        assert len(stats["recent_tickets"]) == 2
