"""Environment-driven settings for the orchestrator"""
import os
from typing import Optional

from pydantic import BaseModel, Field


class Settings(BaseModel):
    """Runtime configuration, read from environment variables"""
    database_url: Optional[str] = None
    redis_url: Optional[str] = None
    log_level: str = "INFO"
    pipelines_file: Optional[str] = None
    max_virtual_depth: int = Field(default=64, ge=1)
    lock_ttl_seconds: int = Field(default=10, ge=1)
    lock_timeout_seconds: float = Field(default=5.0, gt=0)

    @classmethod
    def from_env(cls) -> "Settings":
        values = {
            "database_url": os.getenv("DATABASE_URL"),
            "redis_url": os.getenv("REDIS_URL"),
            "log_level": os.getenv("LOG_LEVEL", "INFO").upper(),
            "pipelines_file": os.getenv("PIPELINES_FILE"),
            "max_virtual_depth": os.getenv("MAX_VIRTUAL_DEPTH"),
            "lock_ttl_seconds": os.getenv("LOCK_TTL_SECONDS"),
            "lock_timeout_seconds": os.getenv("LOCK_TIMEOUT_SECONDS"),
        }
        # Unset variables fall back to the field defaults
        return cls(**{k: v for k, v in values.items() if v is not None})


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create Settings singleton"""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
