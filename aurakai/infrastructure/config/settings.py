"""
Configuration management using Pydantic Settings
"""
from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(
        env_prefix="AURAKAI_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = "aurakai"
    environment: str = Field(default="development", description="Application environment")
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="'json' or 'console'")
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, ge=1, le=65535, description="API port")

    # Agents
    primary_agent_name: str = Field(default="Aura", description="Name of the primary agent")
    companion_name: str = Field(default="Kai", description="Name of the companion agent")
    companion_aliases: str = Field(
        default="",
        description="Comma-separated extra names that count as a direct mention of the companion"
    )

    # Conversation pipeline
    capture_duration_ms: int = Field(default=5000, gt=0, description="Audio capture window")
    capture_grace_ms: int = Field(default=1000, ge=0, description="Extra time allowed for capture")
    collaborator_timeout_s: float = Field(default=30.0, gt=0, description="Bound on external calls")
    history_limit: int = Field(default=100, gt=0, description="Conversation entries kept")
    history_prompt_window: int = Field(default=3, ge=0, description="Entries used for enrichment")
    forward_threshold: float = Field(default=0.5, ge=0.0, le=1.0)

    # Companion state machine delays (seconds)
    tap_alert_delay_s: float = 0.5
    listen_capture_delay_s: float = 3.0
    listen_processing_delay_s: float = 2.0
    receive_delay_s: float = 1.0
    concern_alert_delay_s: float = 1.5
    speech_words_per_second: float = Field(default=3.0, gt=0)

    # Background loops (seconds)
    monitor_interval_s: float = Field(default=5.0, gt=0)
    task_drain_interval_s: float = Field(default=1.0, gt=0)
    connection_prune_interval_s: float = Field(default=60.0, gt=0)
    connection_stale_after_s: float = Field(default=300.0, gt=0)

    # Persistence
    context_key: str = "ai_context_json"
    context_store_path: Optional[str] = Field(
        default=None,
        description="JSON file for durable context; in-memory when unset"
    )

    # Generation backend (OpenAI-compatible)
    generation_base_url: str = "http://localhost:1234"
    generation_model: str = "local-model"
    generation_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    generation_max_tokens: int = Field(default=1024, gt=0)

    @property
    def companion_alias_list(self) -> List[str]:
        """Aliases parsed from the comma-separated setting"""
        return [alias.strip() for alias in self.companion_aliases.split(",") if alias.strip()]

    @property
    def capture_timeout_s(self) -> float:
        return (self.capture_duration_ms + self.capture_grace_ms) / 1000.0


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
