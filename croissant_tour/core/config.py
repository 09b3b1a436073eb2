from __future__ import annotations

import os

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict


# Load .env early for local development
load_dotenv()


def _env_flag(name: str, default: bool | None = None) -> bool | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_ignore_empty=True)

    env: str = os.getenv("ENV", "development")  # development | test | production

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./ratings.db")

    # Security
    app_secret_key: str = os.getenv("APP_SECRET_KEY", "dev-secret-change-me")

    # Anonymous identity cookie
    identity_cookie_name: str = os.getenv("IDENTITY_COOKIE_NAME", "croissant_user_id")
    identity_cookie_max_age: int = int(os.getenv("IDENTITY_COOKIE_MAX_AGE", str(60 * 60 * 24 * 365)))
    identity_cookie_secure: bool | None = _env_flag("IDENTITY_COOKIE_SECURE")  # unset -> secure only in production
    identity_sign_tokens: bool = bool(_env_flag("IDENTITY_SIGN_TOKENS", True))
    identity_random_bytes: int = int(os.getenv("IDENTITY_RANDOM_BYTES", "8"))

    # Read-only dashboard; empty token means open
    dashboard_token: str = os.getenv("DASHBOARD_TOKEN", "")

    # Write requests per minute, per anonymous user and per client IP
    write_rate_limit: int = int(os.getenv("WRITE_RATE_LIMIT", "120"))
    write_rate_limit_per_ip: int = int(os.getenv("WRITE_RATE_LIMIT_PER_IP", "600"))

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_dir: str = os.getenv("LOG_DIR", "./logs")

    @property
    def cookie_secure(self) -> bool:
        if self.identity_cookie_secure is not None:
            return self.identity_cookie_secure
        return self.env.lower() == "production"


settings = Settings()
