"""
Environment configuration management for the AEO Dashboard data core.
Single source of truth for all environment variables.
"""

import os
from typing import Optional


# Client ids copied from the setup docs start with this placeholder
PLACEHOLDER_CLIENT_ID_PREFIX = "YOUR_"


class Settings:
    """Application settings from environment variables."""

    def __init__(self):
        self.environment: str = self._get_optional("ENVIRONMENT", "development")
        self.debug: bool = self._get_optional("DEBUG", "false").lower() == "true"
        self.log_level: str = self._get_optional("LOG_LEVEL", "INFO")
        self.structured_logging: bool = self._get_optional("STRUCTURED_LOGGING", "false").lower() == "true"

        # Only required once a Postgres-backed store actually connects
        self.database_url: Optional[str] = os.getenv("DATABASE_URL") or None
        self.encryption_key: Optional[str] = os.getenv("ENCRYPTION_KEY") or None

        self.app_origin: str = self._get_optional("APP_ORIGIN", "http://localhost:8000").rstrip("/")
        self.google_client_id: str = self._get_optional("GOOGLE_CLIENT_ID", "").strip()
        self.google_redirect_uri: str = self._get_optional("GOOGLE_REDIRECT_URI", f"{self.app_origin}/")

        self.cache_prefix: str = self._get_optional("CACHE_PREFIX", "aeo-cache")
        self.cache_max_entries: int = int(self._get_optional("CACHE_MAX_ENTRIES", "50"))
        self.webhook_timeout_seconds: float = float(self._get_optional("WEBHOOK_TIMEOUT_SECONDS", "5"))

    @property
    def is_google_configured(self) -> bool:
        """True when a real OAuth client id is present."""
        return bool(self.google_client_id) and not self.google_client_id.startswith(PLACEHOLDER_CLIENT_ID_PREFIX)

    def require_database_url(self) -> str:
        """Database URL for components that need Postgres."""
        return self._get_required("DATABASE_URL")

    def _get_required(self, key: str) -> str:
        """Get required environment variable or raise error."""
        value = os.getenv(key)
        if not value:
            raise ValueError(f"Required environment variable {key} not found")
        return value

    def _get_optional(self, key: str, default: str) -> str:
        """Get optional environment variable with default."""
        return os.getenv(key, default)


# Global settings instance
settings = Settings()
