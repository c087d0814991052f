"""Centralized application configuration via environment variables."""

from enum import StrEnum
from functools import lru_cache

from pydantic import SecretStr, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Tracker credentials use SecretStr to prevent accidental logging.
    Database URL is assembled from individual components to match
    the official PostgreSQL Docker image environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- App ---
    environment: Environment = Environment.DEVELOPMENT
    log_level: str = "DEBUG"

    # --- PostgreSQL ---
    postgres_user: str = "tracker_sync"
    postgres_password: SecretStr = SecretStr("secret")
    postgres_db: str = "tracker_sync"
    postgres_host: str = "localhost"
    postgres_port: int = 5432

    @computed_field  # type: ignore[prop-decorator]
    @property
    def database_url(self) -> str:
        """Assemble database URL from components (psycopg v3 driver)."""
        password = self.postgres_password.get_secret_value()
        return (
            f"postgresql+psycopg://{self.postgres_user}:{password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # --- Tracker API ---
    tracker_api_url: str = "https://api.tracker.yandex.net/v2"
    tracker_org_id: str = ""
    tracker_oauth_token: SecretStr | None = None
    tracker_request_timeout: float = 15.0

    # --- IAM (service account signed JWT -> bearer token) ---
    # When enabled, the OAuth token above is only used as a fallback.
    tracker_use_iam: bool = False
    tracker_service_account_id: str = ""
    tracker_key_id: str = ""
    tracker_private_key: SecretStr | None = None
    iam_token_url: str = "https://iam.api.cloud.yandex.net/iam/v1/tokens"
    iam_token_lifetime_seconds: int = 12 * 60 * 60
    iam_refresh_margin_seconds: int = 5 * 60

    # --- Convenience properties ---
    @property
    def is_dev(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_prod(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        return self.environment == Environment.TESTING

    @property
    def iam_configured(self) -> bool:
        """IAM path is enabled and has everything it needs to sign a JWT."""
        return (
            self.tracker_use_iam
            and bool(self.tracker_service_account_id)
            and bool(self.tracker_key_id)
            and self.tracker_private_key is not None
        )

    @property
    def tracker_auth_configured(self) -> bool:
        """An OAuth token or a complete IAM setup is present."""
        oauth = self.tracker_oauth_token
        return self.iam_configured or bool(oauth and oauth.get_secret_value())


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings singleton.

    Usage::

        from tracker_sync.config import get_settings
        settings = get_settings()
    """
    return Settings()
