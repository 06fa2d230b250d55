"""FastAPI dependencies: current user, admin gate and notifier."""
import logging
from functools import lru_cache
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .. import crud, models, permissions
from ..config import get_settings
from ..database import get_db
from ..errors import AuthenticationError
from ..mailer import EmailNotifier, build_notifier
from ..security import decode_access_token

logger = logging.getLogger("ticketflow-core.auth")

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> models.User:
    """
    Resolve the acting user from the bearer token.

    Raises:
        AuthenticationError: Missing/invalid/expired token, unknown or inactive user
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Access denied. No token provided.")

    user_id = decode_access_token(credentials.credentials)
    user = crud.get_user_by_id(db, user_id)
    if not user:
        raise AuthenticationError("Invalid token. User not found.")
    if not user.is_active:
        raise AuthenticationError("Account is deactivated.")
    return user


def require_admin(current_user: models.User = Depends(get_current_user)) -> models.User:
    """
    Gate a route to global administrators.

    Raises:
        PermissionDeniedError: If the current user is not an ADMIN
    """
    permissions.require_admin(current_user)
    return current_user


@lru_cache
def get_notifier() -> EmailNotifier:
    """Process-wide notifier, built on first use."""
    return build_notifier(get_settings())
