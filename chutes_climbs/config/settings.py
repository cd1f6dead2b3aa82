"""
Chutes & Climbs - Application Settings

Loads configuration from environment variables using Pydantic Settings.
Timing values are in seconds.
"""

import logging
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Supabase
    supabase_url: str
    supabase_anon_key: str
    store_timeout: float = 10.0

    # Application
    debug: bool = False
    log_level: str = "INFO"
    default_board_theme: str = "default"
    max_players: int = Field(default=4, ge=2, le=4)

    # Liveness
    heartbeat_interval: float = Field(default=30.0, gt=0)
    stale_after: float = Field(default=120.0, gt=0)
    finished_grace: float = Field(default=5.0, ge=0)
    waiting_idle_timeout: float = Field(default=600.0, gt=0)
    host_left_grace: float = Field(default=2.0, ge=0)

    # Turn pacing
    move_step_delay: float = Field(default=0.2, ge=0)
    turn_advance_delay: float = Field(default=1.5, ge=0)
    bot_think_delay: float = Field(default=1.0, ge=0)

    # Store writes
    store_retries: int = Field(default=2, ge=0)
    retry_backoff: float = Field(default=0.3, ge=0)
    join_code_attempts: int = Field(default=10, ge=1)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    @model_validator(mode="after")
    def _check_liveness_window(self) -> "Settings":
        # A player must miss several heartbeats before being reaped.
        if self.stale_after <= self.heartbeat_interval:
            raise ValueError(
                f"stale_after ({self.stale_after}) must exceed "
                f"heartbeat_interval ({self.heartbeat_interval})."
            )
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached singleton settings instance."""
    return Settings()


def configure_logging(settings: Settings | None = None) -> None:
    """Apply the configured log level to the root logger."""
    settings = settings or get_settings()
    level = logging.DEBUG if settings.debug else settings.log_level.upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
