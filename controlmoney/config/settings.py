"""
Configuration Management for Control Money

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
The environment only supplies DEFAULTS. Choices the user makes at runtime
(preferred backend, saved cloud connection) live in the client state file
and take precedence over these values.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageSettings(BaseSettings):
    """Local storage and backend selection configuration."""
    
    model_config = SettingsConfigDict(
        env_prefix="CONTROLMONEY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )
    
    db_type: str = Field(
        default="local",
        description="Default backend when the user has not chosen one (local or turso)"
    )
    sync_enabled: bool = Field(
        default=False,
        description="Whether cloud synchronization is offered"
    )
    local_db_path: str = Field(
        default="ControlMoneyDB.sqlite3",
        description="Path of the embedded local object store"
    )
    state_path: str = Field(
        default=".controlmoney_state.json",
        description="Path of the client-side persisted state file"
    )
    
    @field_validator('db_type')
    @classmethod
    def normalize_db_type(cls, v: str) -> str:
        """Unknown values fall back to local rather than failing startup."""
        v = (v or "").strip().lower()
        return v if v in ("local", "turso") else "local"


class RemoteDatabaseSettings(BaseSettings):
    """Turso / libSQL remote database configuration."""
    
    model_config = SettingsConfigDict(
        env_prefix="TURSO_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )
    
    database_url: Optional[str] = Field(
        default=None,
        description="libSQL database URL (libsql://, https:// or wss://)"
    )
    auth_token: Optional[str] = Field(
        default=None,
        description="Database auth token"
    )
    
    @property
    def is_configured(self) -> bool:
        """Both URL and token are needed to connect."""
        return bool(self.database_url) and bool(self.auth_token)


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets export/import configuration."""
    
    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )
    
    client_id: Optional[str] = Field(
        default=None,
        description="OAuth client ID used when no sheet config is stored yet"
    )
    client_secret: Optional[str] = Field(
        default=None,
        description="OAuth client secret"
    )
    token_uri: str = Field(
        default="https://oauth2.googleapis.com/token",
        description="OAuth token endpoint used for refreshes"
    )
    months_ahead: int = Field(
        default=6,
        ge=0,
        le=24,
        description="How many months after the current one are exported"
    )


class Settings(BaseSettings):
    """
    Root settings container.
    
    Aggregates all sub-settings for easy access.
    """
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )
    
    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()
    
    @property
    def remote(self) -> RemoteDatabaseSettings:
        return RemoteDatabaseSettings()
    
    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).
    
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.
    
    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}
    
    settings = get_settings()
    
    try:
        _ = settings.storage
        results["storage"] = True
    except Exception:
        results["storage"] = False
    
    try:
        results["remote"] = settings.remote.is_configured
    except Exception:
        results["remote"] = False
    
    try:
        sheets = settings.google_sheets
        results["google_sheets"] = bool(sheets.client_id and sheets.client_secret)
    except Exception:
        results["google_sheets"] = False
    
    return results
