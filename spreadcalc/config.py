"""Configuration and environment settings"""

import logging
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration, read from ``SPREADCALC_*`` variables."""

    model_config = SettingsConfigDict(
        env_prefix="SPREADCALC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Workbook cache
    WORKBOOK_CACHE_TTL_SECONDS: float = 30 * 60
    WORKBOOK_CACHE_MAX_ENTRIES: int = 1000

    # At most one calculation in flight per cached model
    SERIALIZE_PER_SERVICE: bool = True
    # Drop the cached model after a failed calculation (no rollback otherwise)
    INVALIDATE_ON_ERROR: bool = True

    # Storage
    SERVICES_DIR: str = "./services"
    LOGS_DIR: str = "./logs"

    # Telemetry
    TELEMETRY_FILE_ENABLED: bool = False
    RECENT_LOGS_MAX: int = 1000
    TELEMETRY_FLUSH_TIMEOUT_SECONDS: float = 2.0

    # Server
    LOG_LEVEL: str = "INFO"
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    def get_services_path(self) -> Path:
        """Get the service store directory, creating it if needed."""
        path = Path(self.SERVICES_DIR)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def get_logs_path(self) -> Path:
        """Get the telemetry log directory, creating it if needed."""
        path = Path(self.LOGS_DIR)
        path.mkdir(parents=True, exist_ok=True)
        return path


settings = Settings()


def configure_logging(level: str | None = None) -> None:
    """Install a basic log handler unless the host application already did."""
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=(level or settings.LOG_LEVEL).upper(),
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
