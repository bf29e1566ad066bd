"""Configuration settings loaded from .env file."""

from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings, loaded from .env file.

    Revision snapshots are taken every ``snapshot_interval`` revisions, or
    sooner once the deltas stacked on the last snapshot grow past
    ``snapshot_max_delta_chars``. Sort key segments longer than
    ``max_segment_length`` trigger a renumbering of the sibling group.
    """

    # Database
    sqlite_db_path: Path = Path("./data/novels.db")
    sqlite_timeout: float = 5.0

    # Version chain
    snapshot_interval: int = 10
    snapshot_max_delta_chars: int = 20000

    # Chapter ordering
    max_segment_length: int = 8

    # Logging
    log_dir: Path = Path("./data/logs")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    @field_validator("snapshot_interval", "snapshot_max_delta_chars")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("value must be >= 1")
        return v

    @field_validator("max_segment_length")
    @classmethod
    def validate_segment_length(cls, v: int) -> int:
        if v < 2:
            raise ValueError("max_segment_length must be >= 2")
        return v

    @field_validator("sqlite_timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("sqlite_timeout must be positive")
        return v

    @field_validator("sqlite_db_path", "log_dir")
    @classmethod
    def ensure_parent_dirs(cls, v: Path) -> Path:
        v.parent.mkdir(parents=True, exist_ok=True)
        return v


_settings_instance: Settings | None = None


def get_settings() -> Settings:
    """Get cached settings instance."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
