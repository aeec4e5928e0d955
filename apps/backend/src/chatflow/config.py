from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class ExecutionSettings(BaseModel):
    """Limits applied to a single automation run."""

    # Abort the run once this many steps have executed
    max_steps: int = 50
    # Treat every non-trigger step as an entry point when no trigger step exists
    legacy_entry_fallback: bool = False


class PreviewSettings(BaseModel):
    """Pacing of the simulated chat preview."""

    typing_delay_min: float = 0.8
    typing_delay_max: float = 2.0
    # Delay steps never hold a preview for longer than this
    max_delay_seconds: float = 5.0


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Collaborator mode
    # ------------------------------------------------------------------
    # "simulator": in-memory AI and HTTP collaborators (default, no external calls)
    # "hybrid":    use the live collaborator when its settings are present,
    #              fall back to the simulator when not
    # "real":      same routing as hybrid; signals intent to go live
    connector_mode: Literal["simulator", "hybrid", "real"] = "simulator"

    # ------------------------------------------------------------------
    # AI Response Service
    # ------------------------------------------------------------------
    ai_service_url: Optional[str] = None      # https://ai.internal/v1/respond
    ai_service_api_key: Optional[str] = None  # Bearer token

    # ------------------------------------------------------------------
    # Outbound HTTP calls (api_call / webhook steps)
    # ------------------------------------------------------------------
    http_calls_enabled: bool = False
    http_timeout: float = 30.0

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------
    data_dir: Path = Path("automations")

    execution: ExecutionSettings = ExecutionSettings()
    preview: PreviewSettings = PreviewSettings()


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
