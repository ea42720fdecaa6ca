"""Application configuration using pydantic-settings.

Endpoints for the custody platform, the hash signing service and the token
registry are configured separately so each can be pointed at a sandbox.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Database
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/contractdeploy.db",
        description="Database connection URL",
    )

    # ======================
    # API
    # ======================
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=8000, description="API server port")

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=True, description="Enable debug mode")
    dry_run: bool = Field(
        default=True, description="Use simulated collaborators (no external calls)"
    )

    # ======================
    # Custody / approval platform
    # ======================
    custody_api_base_url: str = Field(
        default="https://protect.taurushq.com/api/rest",
        description="Custody platform base URL",
    )
    custody_auth_endpoint: str = Field(default="/v1/authentication/token")
    custody_deploy_endpoint: str = Field(default="/v1/requests/contracts/deploy")
    custody_request_endpoint: str = Field(default="/v1/requests")
    custody_approve_endpoint: str = Field(default="/v1/requests/approve")
    custody_whitelist_endpoint: str = Field(default="/v1/whitelists/contracts")
    custody_whitelist_approve_endpoint: str = Field(default="/v1/whitelists/contracts/approve")
    custody_client_id: str = Field(default="", description="Custody API client id")
    custody_client_secret: str = Field(default="", description="Custody API client secret")
    custody_reauthenticate: bool = Field(
        default=False,
        description="Fetch a fresh token before approval and whitelisting",
    )

    # ======================
    # Hash signing service
    # ======================
    hash_service_base_url: str = Field(
        default="http://localhost:8081", description="Hash signing service base URL"
    )
    hash_service_sign_endpoint: str = Field(default="/api/v1/sign")

    # ======================
    # Token registry
    # ======================
    token_registry_base_url: str = Field(
        default="http://localhost:8082", description="Token registry base URL"
    )
    token_registry_register_endpoint: str = Field(default="/api/v1/tokens")

    # ======================
    # Saga behaviour
    # ======================
    http_timeout: float = Field(
        default=30.0, description="Timeout in seconds for every collaborator call"
    )
    deployment_poll_attempts: int = Field(
        default=1, ge=1, description="Deployment status checks after approval"
    )
    deployment_poll_interval: float = Field(
        default=2.0, ge=0, description="Seconds between deployment status checks"
    )
    lock_timeout: float = Field(
        default=30.0, description="Seconds to wait for the per-deployment lock"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def has_custody_credentials(self) -> bool:
        """Check if custody client credentials are configured."""
        return bool(self.custody_client_id and self.custody_client_secret)

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "dry_run": self.dry_run,
            "api_host": self.api_host,
            "api_port": self.api_port,
            "database_url": self._redact_url(self.database_url),
            "custody": {
                "base_url": self.custody_api_base_url,
                "client_id": self.custody_client_id or "(not set)",
                "client_secret": "***" if self.custody_client_secret else "(not set)",
            },
            "hash_service": {"base_url": self.hash_service_base_url},
            "token_registry": {"base_url": self.token_registry_base_url},
            "saga": {
                "http_timeout": self.http_timeout,
                "deployment_poll_attempts": self.deployment_poll_attempts,
                "deployment_poll_interval": self.deployment_poll_interval,
                "lock_timeout": self.lock_timeout,
            },
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact sensitive parts of database URL."""
        if "://" in url and "@" in url:
            proto, rest = url.split("://", 1)
            if "@" in rest:
                creds, host = rest.rsplit("@", 1)
                if ":" in creds:
                    user, _ = creds.split(":", 1)
                    return f"{proto}://{user}:***@{host}"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
