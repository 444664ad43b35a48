"""
dupsession - configuration via Pydantic Settings.

All values come from environment variables prefixed with DUPSESSION_
(e.g. DUPSESSION_LOG_LEVEL=DEBUG, DUPSESSION_USE_TRASH=false).
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SessionSettings(BaseSettings):
    """Session core configuration loaded from environment variables."""

    # Logging
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "json"

    # Deletion
    use_trash: bool = True  # move to trash instead of permanent delete

    # Filter defaults
    default_size_unit: Literal["KB", "MB"] = "KB"
    follow_symlinks: bool = False

    # Local engine
    hash_chunk_size: int = Field(default=65536, gt=0)
    progress_every: int = Field(default=100, gt=0)  # files between progress notifications

    model_config = SettingsConfigDict(env_prefix="DUPSESSION_", case_sensitive=False)


@lru_cache
def get_settings() -> SessionSettings:
    """Factory for session settings (cached singleton)."""
    return SessionSettings()
