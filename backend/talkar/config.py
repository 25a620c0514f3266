"""
Application configuration and settings.
"""

from functools import lru_cache
from pathlib import Path

import yaml
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Script providers
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    groq_api_key: str | None = None
    groq_model: str = "llama-3.1-8b-instant"
    ollama_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.2"
    ollama_enabled: bool = False  # Local Ollama has no credentials, so it is opt-in

    # Speech providers
    elevenlabs_api_key: str | None = None
    elevenlabs_model: str = "eleven_monolingual_v1"
    google_tts_api_key: str | None = None

    # Lip-sync providers
    sync_api_key: str | None = None
    sync_api_url: str = "https://api.sync.so/v2"
    avatar_base_url: str = "https://talkar-image-storage.com"

    # Timeouts (seconds). provider_timeout bounds one HTTP request;
    # lipsync_timeout bounds a whole lip-sync call including job polling.
    provider_timeout: float = 10.0
    lipsync_timeout: float = 90.0

    # Retry / polling
    max_retries: int = 2
    retry_base_delay: float = 0.5
    retry_max_delay: float = 4.0
    poll_interval: float = 2.0
    poll_max_attempts: int = 30

    # Cache TTLs (seconds)
    cache_ttl_script: float = 300
    cache_ttl_speech: float = 300
    cache_ttl_lipsync: float = 300
    cache_ttl_subject: float = 1800
    cache_ttl_preferences: float = 600
    cache_max_entries: int = 100
    cache_sweep_interval: float = 300

    # Performance targets (milliseconds)
    target_audio_start_ms: float = 1500
    target_video_render_ms: float = 3000
    target_total_ms: float = 5000
    performance_window: int = 500
    performance_retention_seconds: float = 24 * 3600

    # Jobs
    job_retention_seconds: float = 3600

    # Simulated latency of the local fallback generators
    local_generator_delay: float = 0.2

    # Paths
    config_dir: Path = Path("/app/config")
    data_dir: Path = Path("/data")
    audio_dir: Path = Path("/data/audio")
    public_base_url: str = "http://localhost:8801"

    # Logging
    log_level: str = "INFO"
    log_format: str = "structured"  # "simple" or "structured"

    # Per-module log levels (optional overrides)
    log_level_pipeline: str | None = None
    log_level_providers: str | None = None
    log_level_cache: str | None = None
    log_level_retry: str | None = None
    log_level_api: str | None = None

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def _load_yaml(path: Path) -> dict:
    """Read a YAML mapping, treating a missing or empty file as empty."""
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_providers_config(settings: Settings | None = None) -> dict:
    """
    Load provider chain order from config/providers.yaml.

    Format:
        script: [openai, groq, ollama]
        speech: [elevenlabs, google_tts]
        lipsync: [sync]

    The list order is the priority order (first = tried first).
    The local generator is appended to every chain automatically and
    must not be listed.

    Args:
        settings: Optional settings instance

    Returns:
        Mapping of stage name -> ordered list of provider names
    """
    if settings is None:
        settings = get_settings()

    return _load_yaml(settings.config_dir / "providers.yaml")


def load_subjects_config(settings: Settings | None = None) -> list[dict]:
    """
    Load subject (product/poster) metadata from config/subjects.yaml.

    Args:
        settings: Optional settings instance

    Returns:
        List of subject metadata dictionaries
    """
    if settings is None:
        settings = get_settings()

    data = _load_yaml(settings.config_dir / "subjects.yaml")
    return data.get("subjects", [])


def load_preferences_config(settings: Settings | None = None) -> dict:
    """
    Load default user preferences from config/preferences.yaml.

    Args:
        settings: Optional settings instance

    Returns:
        Preferences dictionary (may be empty)
    """
    if settings is None:
        settings = get_settings()

    return _load_yaml(settings.config_dir / "preferences.yaml")
