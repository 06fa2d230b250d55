"""Application settings loaded from environment variables."""
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    TicketFlow configuration.

    Every field can be overridden with an environment variable of the same
    name (case-insensitive) or through a local `.env` file.
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Database
    database_url: str = "sqlite:///./ticketflow.db"

    # Authentication
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expires_minutes: int = 60 * 24 * 7

    # HTTP
    cors_origins: list[str] = ["*"]
    debug: bool = False

    # Email
    email_from: str = "noreply@ticketflow.local"
    email_from_name: str = "TicketFlow"
    sendgrid_api_key: Optional[str] = None
    sendgrid_base_url: str = "https://api.sendgrid.com"
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: bool = True
    email_timeout_seconds: float = 10.0

    frontend_url: str = "http://localhost:3000"


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
