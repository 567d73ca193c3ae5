from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    This uses pydantic-settings so that we get type validation and defaults.
    Settings are loaded from environment variables with optional .env file override.
    """

    # App basics
    """Environment mode: picks log rendering (JSON in production); production also refuses drop_tables."""
    """Environment mode: affects log rendering (JSON in production)."""

    DEBUG: bool = True
    """Enable debug mode: verbose logging."""

    # DB
    DATABASE_URL: Optional[str] = None
    """Database connection URL. If None, uses SQLite for development."""

    # Payments
    NETWORK: Literal["mainnet", "testnet"] = "testnet"
    """Network whose block explorers are queried for payments."""

    MIN_CONFIRMATIONS_REQUIRED: int = 2
    """Confirmations a payment transaction needs before an invoice is paid."""

    ORACLE_TYPE: Literal["explorer", "mock"] = "explorer"
    """Transaction oracle implementation used by the poller."""

    POLL_CHECK_GAP_SECONDS: float = 5.0
    """Seconds slept after each checked address and between poll cycles."""

    POLL_EXPIRY_HOURS: int = 24
    """Hours a newly registered payment address is watched."""

    POLL_REFRESH_CYCLES: int = 12
    """Poll cycles between rescans of the store for new payment addresses (0 disables)."""

    # Model config
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @property
    def database_url(self) -> str:
        return self.DATABASE_URL or "sqlite+aiosqlite:///./cmspay.db"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance to avoid re-parsing .env repeatedly.

    Uses LRU cache to ensure only one Settings instance exists per process.
    """
    return Settings()
