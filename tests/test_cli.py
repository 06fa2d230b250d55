"""Tests for the admin bootstrap command."""
from datetime import timedelta

from ticketflow_core import cli, models


class TestPromoteAdmin:
    """Test promoting users to ADMIN."""

    def test_promote_by_email(self, db, alice, bob):
        user = cli.promote_admin(db, "ALICE@example.com")

        assert user.id == alice.id
        assert user.role == models.UserRole.ADMIN
        db.refresh(bob)
        assert bob.role == models.UserRole.USER

    def test_defaults_to_latest_user(self, db, alice, bob):
        bob.created_at = alice.created_at + timedelta(minutes=1)
        db.commit()

        user = cli.promote_admin(db)
        assert user.id == bob.id
        assert user.role == models.UserRole.ADMIN

    def test_existing_admin_is_left_alone(self, db, admin):
        user = cli.promote_admin(db, admin.email)
        assert user.role == models.UserRole.ADMIN

    def test_unknown_email(self, db, alice):
        assert cli.promote_admin(db, "nobody@example.com") is None

    def test_no_users(self, db):
        assert cli.promote_admin(db) is None
