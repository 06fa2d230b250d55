"""Command-line tools.

ticketflow-promote-admin [EMAIL]
    Give the ADMIN role to the user with EMAIL, or to the most recently
    registered user when no email is given. Used to bootstrap the first
    administrator.
"""
import argparse
import logging
import sys
from typing import Optional

from sqlalchemy.orm import Session

from . import crud, models
from .database import SessionLocal, init_db

logger = logging.getLogger("ticketflow-core.cli")


def promote_admin(db: Session, email: Optional[str] = None) -> Optional[models.User]:
    """
    Promote a user to ADMIN.

    Args:
        db: Database session
        email: Target user's email; None picks the latest registered user

    Returns:
        The promoted (or already-admin) user, or None if no user matched
    """
    user = crud.get_user_by_email(db, email) if email else crud.get_latest_user(db)
    if not user:
        return None

    if user.role == models.UserRole.ADMIN:
        logger.info(f"User {user.email} is already an admin")
        return user

    user.role = models.UserRole.ADMIN
    crud.save_user(db, user)
    logger.info(f"Promoted {user.email} to admin")
    return user


def promote_admin_main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="ticketflow-promote-admin",
        description="Grant the ADMIN role to a user.",
    )
    parser.add_argument("email", nargs="?", help="User email (default: most recently registered user)")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s - %(message)s")
    init_db()

    db = SessionLocal()
    try:
        user = promote_admin(db, args.email)
    finally:
        db.close()

    if user is None:
        logger.error("No matching user found")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(promote_admin_main())
