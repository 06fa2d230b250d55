"""End-to-end tests through the HTTP API."""
from datetime import datetime, timedelta
from uuid import uuid4

from conftest import TEST_PASSWORD, auth_headers


def _future(days=7):
    return (datetime.utcnow() + timedelta(days=days)).isoformat()


class TestEnvelope:
    """Test the response envelope and error mapping."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_success_envelope(self, client, alice):
        response = client.get("/api/v1/users/profile", headers=auth_headers(alice))

        body = response.json()
        assert response.status_code == 200
        assert body["success"] is True
        assert body["data"]["email"] == "alice@example.com"
        assert "password_hash" not in body["data"]
        assert "timestamp" in body

    def test_missing_token_is_401(self, client):
        response = client.get("/api/v1/projects/")

        assert response.status_code == 401
        assert response.json()["success"] is False
        assert response.json()["message"] == "Access denied. No token provided."

    def test_invalid_token_is_401(self, client):
        response = client.get("/api/v1/projects/", headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid token"

    def test_deactivated_user_token_is_rejected(self, client, make_user):
        ghost = make_user(is_active=False)
        response = client.get("/api/v1/users/profile", headers=auth_headers(ghost))
        assert response.status_code == 401

    def test_validation_error_is_400_with_field_errors(self, client, admin):
        response = client.post(
            "/api/v1/projects/",
            json={"name": "X", "description": "short"},
            headers=auth_headers(admin),
        )

        body = response.json()
        assert response.status_code == 400
        assert body["success"] is False
        assert body["message"] == "Validation error"
        assert {error["field"] for error in body["errors"]} == {"name", "description"}

    def test_past_due_date_rejected(self, client, admin, project):
        response = client.post(
            "/api/v1/tickets/",
            json={
                "project_id": str(project.id),
                "title": "Fix header layout",
                "description": "Header overlaps content on mobile",
                "due_date": (datetime.utcnow() - timedelta(days=1)).isoformat(),
            },
            headers=auth_headers(admin),
        )

        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "due_date"

    def test_not_found_is_404(self, client, admin):
        response = client.get(f"/api/v1/tickets/{uuid4()}", headers=auth_headers(admin))
        assert response.status_code == 404
        assert response.json()["message"] == "Ticket not found"


class TestAccountsApi:
    """Test registration, login and admin user endpoints."""

    def test_register_then_login(self, client, notifier):
        response = client.post(
            "/api/v1/users/register",
            json={"name": "Dana Scully", "email": "Dana@Example.com", "password": "Secret123"},
        )

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["user"]["role"] == "USER"
        assert data["user"]["email"] == "dana@example.com"
        assert data["token_type"] == "bearer"
        assert [p["user"].email for p in notifier.of_kind("welcome")] == ["dana@example.com"]

        login = client.post("/api/v1/users/login", json={"email": "dana@example.com", "password": "Secret123"})
        assert login.status_code == 200
        token = login.json()["data"]["access_token"]
        profile = client.get("/api/v1/users/profile", headers={"Authorization": f"Bearer {token}"})
        assert profile.json()["data"]["name"] == "Dana Scully"

    def test_weak_password_rejected(self, client):
        response = client.post(
            "/api/v1/users/register",
            json={"name": "Dana Scully", "email": "dana@example.com", "password": "alllowercase"},
        )
        assert response.status_code == 400

    def test_duplicate_registration_is_409(self, client, alice):
        response = client.post(
            "/api/v1/users/register",
            json={"name": "Alice Again", "email": "alice@example.com", "password": "Secret123"},
        )
        assert response.status_code == 409

    def test_bad_login_is_401(self, client, alice):
        response = client.post("/api/v1/users/login", json={"email": "alice@example.com", "password": "Wrong123"})
        assert response.status_code == 401

    def test_user_list_is_admin_only(self, client, admin, alice):
        assert client.get("/api/v1/users/users", headers=auth_headers(alice)).status_code == 403

        response = client.get("/api/v1/users/users", headers=auth_headers(admin))
        assert response.status_code == 200
        assert response.json()["data"]["total"] == 2

    def test_admin_cannot_demote_self(self, client, admin):
        response = client.put(
            f"/api/v1/users/users/{admin.id}/role", json={"role": "USER"}, headers=auth_headers(admin)
        )

        assert response.status_code == 403
        assert response.json()["message"] == "Cannot change your own role"

    def test_admin_cannot_delete_self(self, client, admin):
        response = client.delete(f"/api/v1/users/users/{admin.id}", headers=auth_headers(admin))
        assert response.status_code == 403

    def test_delete_referenced_user_deactivates(self, client, admin, alice, project):
        client.post(
            f"/api/v1/projects/{project.id}/members",
            json={"user_id": str(alice.id)},
            headers=auth_headers(admin),
        )
        client.post(
            "/api/v1/tickets/",
            json={
                "project_id": str(project.id),
                "title": "Fix header layout",
                "description": "Header overlaps content on mobile",
            },
            headers=auth_headers(alice),
        )

        response = client.delete(f"/api/v1/users/users/{alice.id}", headers=auth_headers(admin))

        assert response.status_code == 200
        assert response.json()["data"] == {"id": str(alice.id), "deleted": False, "deactivated": True}

    def test_change_password(self, client, alice):
        response = client.put(
            "/api/v1/users/change-password",
            json={"current_password": TEST_PASSWORD, "new_password": "NewSecret456"},
            headers=auth_headers(alice),
        )
        assert response.status_code == 200

        login = client.post("/api/v1/users/login", json={"email": "alice@example.com", "password": "NewSecret456"})
        assert login.status_code == 200


class TestWebsiteRedesignScenario:
    """Walk a ticket through its life with access checks and notifications."""

    def test_full_flow(self, client, notifier, admin, alice, bob):
        # Admin creates the project
        response = client.post(
            "/api/v1/projects/",
            json={
                "name": "Website Redesign",
                "description": "Refresh the public website",
                "priority": "HIGH",
                "end_date": _future(90),
            },
            headers=auth_headers(admin),
        )
        assert response.status_code == 201
        project = response.json()["data"]
        assert project["created_by_user_id"] == str(admin.id)
        project_id = project["id"]

        # A non-member cannot see it
        response = client.get(f"/api/v1/projects/{project_id}", headers=auth_headers(alice))
        assert response.status_code == 403

        # Admin adds Alice and Bob as contributors; both get invitations
        for user in (alice, bob):
            response = client.post(
                f"/api/v1/projects/{project_id}/members",
                json={"user_id": str(user.id), "role": "CONTRIBUTOR"},
                headers=auth_headers(admin),
            )
            assert response.status_code == 201
        assert [p["invitee"].email for p in notifier.of_kind("project_invitation")] == [alice.email, bob.email]

        response = client.get(f"/api/v1/projects/{project_id}", headers=auth_headers(alice))
        assert response.status_code == 200
        assert len(response.json()["data"]["members"]) == 2

        # Alice files a ticket
        response = client.post(
            "/api/v1/tickets/",
            json={
                "project_id": project_id,
                "title": "Homepage hero image is blurry",
                "description": "The hero image is upscaled on large screens",
                "priority": "HIGH",
                "due_date": _future(14),
                "estimated_hours": 4,
                "tags": ["design", "homepage", "design"],
            },
            headers=auth_headers(alice),
        )
        assert response.status_code == 201
        ticket = response.json()["data"]
        ticket_id = ticket["id"]
        assert ticket["status"] == "OPEN"
        assert ticket["ticket_type"] == "BUG"
        assert ticket["tags"] == ["design", "homepage"]
        assert len(ticket["status_history"]) == 1
        assert ticket["status_history"][0]["changed_by_user_id"] == str(alice.id)
        assert ticket["is_overdue"] is False
        assert ticket["days_until_due"] in (14, 15)

        # Admin assigns the ticket to Bob: exactly one assignment email, to Bob
        response = client.put(
            f"/api/v1/tickets/{ticket_id}/assign",
            json={"assigned_to_user_id": str(bob.id)},
            headers=auth_headers(admin),
        )
        assert response.status_code == 200
        assert response.json()["data"]["assignee"]["email"] == bob.email
        assignments = notifier.of_kind("assignment")
        assert len(assignments) == 1
        assert assignments[0]["assignee"].email == bob.email
        assert assignments[0]["actor"].email == admin.email

        # Bob resolves it: resolved_at set, creator and assignee notified once each
        response = client.put(
            f"/api/v1/tickets/{ticket_id}",
            json={"status": "RESOLVED", "actual_hours": 3, "comment": "Replaced with 2x asset"},
            headers=auth_headers(bob),
        )
        assert response.status_code == 200
        ticket = response.json()["data"]
        assert ticket["status"] == "RESOLVED"
        assert ticket["resolved_at"] is not None
        assert [h["status"] for h in ticket["status_history"]] == ["OPEN", "RESOLVED"]
        assert ticket["status_history"][-1]["comment"] == "Replaced with 2x asset"
        assert ticket["time_spent"] == {"estimated": 4.0, "actual": 3.0, "variance": -1.0}
        updates = notifier.of_kind("status_update")
        assert len(updates) == 1
        assert [c.email for c in updates[0]["recipients"]] == [bob.email, alice.email]
        assert len(notifier.of_kind("assignment")) == 1

        # Project stats reflect the resolution
        response = client.get(f"/api/v1/projects/{project_id}/stats", headers=auth_headers(alice))
        stats = response.json()["data"]
        assert stats["total_tickets"] == 1
        assert stats["resolved_tickets"] == 1
        assert stats["member_count"] == 2

        # Bob did not create the ticket and cannot delete it
        response = client.delete(f"/api/v1/tickets/{ticket_id}", headers=auth_headers(bob))
        assert response.status_code == 403

        # Deleting the project archives it because a ticket references it
        response = client.delete(f"/api/v1/projects/{project_id}", headers=auth_headers(admin))
        assert response.status_code == 200
        assert response.json()["data"]["archived"] is True
        assert response.json()["message"] == "Project archived successfully (has associated tickets)"

        response = client.get(f"/api/v1/projects/{project_id}", headers=auth_headers(admin))
        assert response.status_code == 404


class TestProjectsApi:
    """Test project endpoints not covered by the scenario."""

    def test_non_admin_cannot_create_project(self, client, alice):
        response = client.post(
            "/api/v1/projects/",
            json={"name": "Side Project", "description": "Not allowed for users"},
            headers=auth_headers(alice),
        )
        assert response.status_code == 403

    def test_duplicate_name_is_409(self, client, admin, project):
        response = client.post(
            "/api/v1/projects/",
            json={"name": "Website Redesign", "description": "Same name again here"},
            headers=auth_headers(admin),
        )
        assert response.status_code == 409

    def test_empty_project_is_deleted(self, client, admin, project):
        response = client.delete(f"/api/v1/projects/{project.id}", headers=auth_headers(admin))

        assert response.status_code == 200
        assert response.json()["data"]["deleted"] is True

    def test_list_pagination(self, client, admin):
        for index in range(3):
            client.post(
                "/api/v1/projects/",
                json={"name": f"Project {index}", "description": "Pagination test project"},
                headers=auth_headers(admin),
            )

        response = client.get(
            "/api/v1/projects/", params={"page": 2, "page_size": 2, "sort_by": "name", "sort_order": "asc"},
            headers=auth_headers(admin),
        )

        data = response.json()["data"]
        assert data["total"] == 3
        assert data["total_pages"] == 2
        assert [p["name"] for p in data["items"]] == ["Project 2"]

    def test_member_role_update_and_removal(self, client, admin, alice, project):
        client.post(
            f"/api/v1/projects/{project.id}/members",
            json={"user_id": str(alice.id), "role": "VIEWER"},
            headers=auth_headers(admin),
        )

        response = client.put(
            f"/api/v1/projects/{project.id}/members/{alice.id}/role",
            json={"role": "MANAGER"},
            headers=auth_headers(admin),
        )
        assert response.json()["data"]["members"][0]["role"] == "MANAGER"

        response = client.delete(f"/api/v1/projects/{project.id}/members/{alice.id}", headers=auth_headers(admin))
        assert response.status_code == 200
        assert response.json()["data"]["members"] == []

    def test_invalid_member_role_is_400(self, client, admin, alice, project):
        response = client.post(
            f"/api/v1/projects/{project.id}/members",
            json={"user_id": str(alice.id), "role": "OWNER"},
            headers=auth_headers(admin),
        )
        assert response.status_code == 400


class TestTicketsApi:
    """Test ticket listing endpoints."""

    def test_listing_and_stats(self, client, admin, alice, project):
        client.post(
            f"/api/v1/projects/{project.id}/members",
            json={"user_id": str(alice.id)},
            headers=auth_headers(admin),
        )
        for title, priority in [("Broken footer links", "LOW"), ("Checkout page crashes", "HIGH")]:
            client.post(
                "/api/v1/tickets/",
                json={
                    "project_id": str(project.id),
                    "title": title,
                    "description": "Steps to reproduce are attached",
                    "priority": priority,
                    "assigned_to_user_id": str(alice.id),
                },
                headers=auth_headers(admin),
            )

        response = client.get("/api/v1/tickets/", params={"priority": "HIGH"}, headers=auth_headers(alice))
        assert [t["title"] for t in response.json()["data"]["items"]] == ["Checkout page crashes"]

        response = client.get("/api/v1/tickets/assigned-to-me", headers=auth_headers(alice))
        assert response.json()["data"]["total"] == 2

        response = client.get("/api/v1/tickets/stats", headers=auth_headers(alice))
        stats = response.json()["data"]
        assert stats["total"] == 2
        assert stats["assigned_to_me"] == 2
        assert stats["created_by_me"] == 0

    def test_null_title_on_update_is_400(self, client, admin, project):
        """A required field sent as null is a validation error and nothing is written."""
        created = client.post(
            "/api/v1/tickets/",
            json={
                "project_id": str(project.id),
                "title": "Broken footer links",
                "description": "Steps to reproduce are attached",
            },
            headers=auth_headers(admin),
        )
        ticket_id = created.json()["data"]["id"]

        response = client.put(f"/api/v1/tickets/{ticket_id}", json={"title": None}, headers=auth_headers(admin))

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["errors"][0]["field"] == "title"

        response = client.get(f"/api/v1/tickets/{ticket_id}", headers=auth_headers(admin))
        assert response.json()["data"]["title"] == "Broken footer links"

    def test_invalid_status_filter_is_400(self, client, alice):
        response = client.get("/api/v1/tickets/", params={"status": "DONE"}, headers=auth_headers(alice))
        assert response.status_code == 400
