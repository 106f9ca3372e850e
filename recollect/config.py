"""Environment and settings (Pydantic Settings)."""

from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

# Default data directory: ~/.recollect/data/
_home_dir = Path.home() / ".recollect"
_data_dir = _home_dir / "data"


class Settings(BaseSettings):
    """Recollect settings loaded from environment and .env.

    Capture policy (exclusions, backfill window) lives in
    ~/.recollect/config.toml and is read by utils.capture_config.
    """

    model_config = SettingsConfigDict(
        env_prefix="RECOLLECT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        protected_namespaces=(),
    )

    # Paths (local-first data stored in ~/.recollect/data/)
    db_path: Path = _data_dir / "recollect.db"
    config_path: Path = _home_dir / "config.toml"
    history_path: Optional[Path] = None

    # Embedding model
    model_name: str = "BAAI/bge-small-en-v1.5"
    model_cache_dir: Optional[Path] = None
    offline: bool = False

    # Search
    search_top_k: int = 20
    recent_limit: int = 30
    candidate_limit: int = 5000

    # Backfill page fetching
    fetch_timeout: float = 15.0

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_file: Path = _data_dir / "recollect.log"


def get_settings() -> Settings:
    """Return application settings (singleton-like)."""
    return Settings()
