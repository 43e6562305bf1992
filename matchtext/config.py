"""Centralised settings: reads .env / env vars via pydantic-settings."""
from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """All configuration for MatchText, sourced from environment."""

    model_config = SettingsConfigDict(
        env_prefix="MATCHTEXT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── App ──
    APP_LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # ── Tokenizer ──
    # "unicode" folds every codepoint with str.lower(); "c" only folds ASCII.
    LOCALE: str = "unicode"
    READ_CHUNK_BYTES: int = 1 << 16

    # ── Loading ──
    DEFAULT_WORKERS: int = 0  # 0 = os.cpu_count()

    # ── Dedup ──
    DEDUP_THRESHOLD: float = 1.0
    DUPLICATES_DIR_NAME: str = "Duplicates"

    # ── Output ──
    MAX_TABLE_WIDTH: int = 132

    # ── Metrics (0 disables the exporter) ──
    METRICS_PORT: int = 0


settings = Settings()
