"""
Configuration and settings for the todo service.

Which storage backend runs is decided purely by which credentials are
present in the environment; see ``dependencies.select_backend``.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when a backend is used without the settings it needs."""


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    log_level: str = Field(default="INFO")

    # Google Sheets, read-only (API key)
    google_sheets_api_key: Optional[str] = Field(default=None)
    google_spreadsheet_id: Optional[str] = Field(default=None)

    # Google Sheets, read/write (OAuth2)
    google_oauth_client_id: Optional[str] = Field(default=None)
    google_oauth_client_secret: Optional[str] = Field(default=None)
    google_oauth_redirect_uri: str = Field(
        default="http://localhost:8000/api/oauth/callback"
    )

    # Supabase
    supabase_url: Optional[str] = Field(default=None)
    supabase_anon_key: Optional[str] = Field(default=None)

    # Local persisted state (mock backend, session, OAuth tokens)
    local_store_path: str = Field(default="data/local_store.json")
    use_in_memory_store: bool = Field(default=False)
    redis_url: Optional[str] = Field(default=None)
    redis_key_prefix: str = Field(default="classroom-todos:")

    # Passwords: the demo policy accepts any non-empty password unless strict.
    strict_passwords: bool = Field(default=False)

    export_timezone: str = Field(default="Asia/Tokyo")

    @property
    def google_oauth_configured(self) -> bool:
        return bool(self.google_oauth_client_id and self.google_spreadsheet_id)

    @property
    def google_sheets_configured(self) -> bool:
        return bool(self.google_sheets_api_key and self.google_spreadsheet_id)

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_anon_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
