"""Centralized configuration using Pydantic Settings.

All settings can be overridden via environment variables with the PRUNARR_ prefix,
or via a .env file. Example: PRUNARR_PLEX_URL=http://plex:32400
"""

from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Prunarr application settings."""

    # General
    port: int = 5766
    api_key: str = ""  # Empty = no auth required
    log_level: str = "INFO"
    log_format: str = "text"  # "text" or "json"
    log_file: str = "/config/log/prunarr.log"

    # Database
    db_path: str = "/config/prunarr.db"
    database_url: str = ""  # Empty = SQLite at db_path
    db_pool_size: int = 5
    db_pool_max_overflow: int = 10
    db_pool_recycle: int = 3600

    # Plex (library service)
    plex_url: str = ""
    plex_token: str = ""

    # Tautulli (watch history, optional)
    tautulli_url: str = ""
    tautulli_api_key: str = ""

    # Overseerr (request tracking, optional)
    overseerr_url: str = ""
    overseerr_api_key: str = ""

    # Radarr (movies)
    radarr_url: str = ""
    radarr_api_key: str = ""

    # Sonarr (series/episodes)
    sonarr_url: str = ""
    sonarr_api_key: str = ""

    # Scan scheduler
    scheduler_enabled: bool = True
    scheduler_timezone: str = "UTC"

    # Job queue
    queue_poll_interval: float = 2.0
    scan_workers: int = 1
    scan_max_attempts: int = 3
    scan_backoff_seconds: int = 2
    deletion_workers: int = 2
    deletion_max_attempts: int = 3
    deletion_backoff_seconds: int = 5

    # Deletion defaults
    auto_delete_files: bool = True  # delete_files for AUTO_DELETE rules created without the flag

    model_config = {
        "env_prefix": "PRUNARR_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @field_validator("scan_workers", "deletion_workers", "scan_max_attempts", "deletion_max_attempts")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    def get_database_url(self) -> str:
        """SQLAlchemy URL: explicit database_url, else SQLite at db_path."""
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.db_path}"

    def is_sqlite(self) -> bool:
        return self.get_database_url().startswith("sqlite")

    def get_safe_config(self) -> dict:
        """Get config dict without sensitive values (API keys, tokens)."""
        data = self.model_dump()
        for key in list(data.keys()):
            if key.endswith("api_key") or key.endswith("token"):
                data[key] = "***configured***" if data[key] else ""
        return data


# Singleton settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create the singleton Settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings(overrides: dict = None) -> Settings:
    """Force reload settings from environment/file, with optional overrides.

    Args:
        overrides: Dict of key-value pairs applied on top of the env/file
                   settings. Values may be strings; they are coerced to the
                   field's type and invalid entries are skipped.
    """
    global _settings
    base = Settings()

    if not overrides:
        _settings = base
        return _settings

    base_data = base.model_dump()
    update = {}
    for key, value in overrides.items():
        if key not in base_data:
            continue
        expected_type = type(base_data[key])
        try:
            if expected_type is bool:
                update[key] = value.lower() in ("true", "1", "yes") if isinstance(value, str) else bool(value)
            elif expected_type is int:
                update[key] = int(value)
            elif expected_type is float:
                update[key] = float(value)
            else:
                update[key] = str(value)
        except (ValueError, TypeError):
            continue

    _settings = base.model_copy(update=update) if update else base
    return _settings
