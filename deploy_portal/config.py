"""Application configuration using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file without clobbering variables already set by the process
load_dotenv(override=False)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Railway
    railway_api_token: str = Field(default="")
    railway_api_url: str = "https://backboard.railway.app/graphql/v2"
    railway_team_id: str | None = None
    railway_request_timeout: float = 30.0

    # Master key for the stored third-party credentials (64 hex chars or base64)
    encryption_key: str = Field(default="")

    # Source every tenant service is built from
    source_repo: str = "AudienceActivatorAI/lendpro-ecommerce"
    source_branch: str = "main"

    # Remote naming
    project_name_prefix: str = "lendpro"
    project_url_template: str = "https://railway.app/project/{project_id}"

    # Deployment timing (seconds)
    deploy_poll_interval_seconds: float = Field(default=5.0, gt=0)
    deploy_timeout_seconds: float = Field(default=300.0, gt=0)
    database_settle_seconds: float = Field(default=5.0, ge=0)

    # Values injected into every tenant environment
    tenant_port: int = 3000
    oauth_server_url: str = "http://localhost:3000"

    # Ledger storage
    ledger_db_path: str = "data/ledger.db"

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["console", "json"] = "console"
    log_directory: str = "logs"
    log_file_name: str = "deploy_portal.log"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
