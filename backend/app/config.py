"""Application configuration."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database (empty = keep state in process memory only)
    database_url: str = ""

    # Credentials (empty disables the scheme)
    mentor_token: str = ""        # Legacy static bearer token for a single mentor
    legacy_mentor_id: str = "00000"
    agent_key: str = ""           # Shared secret of the remote VPS agent

    # MetaApi execution backend (empty token = no trade copying)
    metaapi_token: str = ""
    metaapi_provisioning_url: str = "https://mt-provisioning-api-v1.agiliumtrade.agiliumtrade.ai"
    metaapi_client_url: str = "https://mt-client-api-v1.new-york.agiliumtrade.ai"

    # Signal log
    signal_history_limit: int = 100
    snapshot_size: int = 20

    # Timeouts (seconds)
    heartbeat_timeout_seconds: float = 60.0
    execution_timeout_seconds: float = 10.0
    registration_timeout_seconds: float = 60.0
    send_timeout_seconds: float = 5.0

    # Trade copying
    default_lot_size: float = 0.01

    # Pre-registered mentors
    directory_path: Path | None = None

    # Server
    host: str = "0.0.0.0"
    port: int = 3000
    debug: bool = False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
