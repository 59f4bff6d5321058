"""Configuration settings for helixmem."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings

from helixmem.utils import get_helix_home


class Settings(BaseSettings):
    """Engine settings loaded from ``HELIXMEM_*`` environment variables."""

    # Storage
    data_dir: Path = Field(default_factory=get_helix_home)
    db_path: Path | None = None

    # Memory decay
    journal_window_days: int = 7

    # Consolidation triggers (any one crossing suffices)
    consolidation_interval_hours: float = 6.0
    consolidation_message_threshold: int = 50
    consolidation_token_budget: int = 20_000
    chunk_target_tokens: int = 100_000
    idle_hours: float = 6.0
    stale_claim_minutes: int = 30
    worker_count: int = 2

    # Generation
    generation_timeout_seconds: float = 120.0
    model_provider: str | None = None
    model: str | None = None

    # Refinement
    core_token_budget: int = 5_000
    default_refinement_threshold: float = 0.90
    refinement_max_turns: int = 20
    refinement_interval_days: int = 7

    # Logging
    log_level: str = "INFO"

    class Config:
        env_prefix = "HELIXMEM_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def resolved_db_path(self) -> Path:
        return self.db_path or (self.data_dir / "helixmem.db")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
