from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


_PROJECT_ROOT = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    """
    App configuration.

    This project uses `config.env` (non-dot env file) because some environments
    block creating `.env*` files. If you do have a `.env`, it will also be read.
    """

    model_config = SettingsConfigDict(
        # Prefer reading env files from the repository root, regardless of CWD.
        # Also allow local relative paths for flexibility.
        env_file=(
            str(_PROJECT_ROOT / "config.env"),
            str(_PROJECT_ROOT / ".env"),
            "config.env",
            ".env",
        ),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    db_host: str = Field(default="localhost", validation_alias="DB_HOST")
    db_port: int = Field(default=5432, validation_alias="DB_PORT")
    db_user: str = Field(default="pantry", validation_alias="DB_USER")
    db_password: str = Field(default="pantry", validation_alias="DB_PASSWORD")
    db_name: str = Field(default="pantry", validation_alias="DB_NAME")

    # Full SQLAlchemy URL; takes precedence over the DB_* parts (e.g. "sqlite://")
    database_url_override: str | None = Field(default=None, validation_alias="DATABASE_URL")

    secret_key: str = Field(default="CHANGE_THIS_IN_PRODUCTION", validation_alias="SECRET_KEY")
    algorithm: str = Field(default="HS256", validation_alias="ALGORITHM")
    access_token_expire_minutes: int = Field(default=30, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # CORS configuration
    cors_origins: str = Field(
        default="http://localhost:4200",
        validation_alias="CORS_ORIGINS"
    )

    # Analytics
    analytics_stale_after_seconds: int = Field(
        default=3600, validation_alias="ANALYTICS_STALE_AFTER_SECONDS"
    )
    analytics_trend_days: int = Field(default=90, validation_alias="ANALYTICS_TREND_DAYS")
    analytics_worker_enabled: bool = Field(
        default=True, validation_alias="ANALYTICS_WORKER_ENABLED"
    )
    expiring_soon_days: int = Field(default=7, validation_alias="EXPIRING_SOON_DAYS")

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        # SQLModel uses SQLAlchemy under the hood; this uses the psycopg driver (v3).
        return (
            f"postgresql+psycopg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )


settings = Settings()
