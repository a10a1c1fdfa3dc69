from pydantic_settings import BaseSettings
from pathlib import Path
from typing import Optional


class Settings(BaseSettings):
    APP_NAME: str = "Socrata Cache"

    # Base directory = backend/
    BASE_DIR: Path = Path(__file__).resolve().parents[2]

    # Resource configuration (JSON) and record store
    CONFIG_FILE: Path = BASE_DIR / "config.json"
    DB_FILE_PATH: Path = BASE_DIR / "data" / "socrata_cache.db"
    DATABASE_URL: Optional[str] = None

    # Artifact directory for current/staging files
    DOWNLOADS_ROOT_PATH: Path = BASE_DIR / "data" / "downloads"

    # -------- Logging --------
    LOG_LEVEL: str = "INFO"
    # "json" or "text"
    LOG_FORMAT: str = "json"

    HTTP_TIMEOUT_SECONDS: float = 60.0

    # -------- Scheduler --------
    SCHEDULER_ENABLED: bool = True
    LOOKUP_INTERVAL_MINUTES: float = 5
    DOWNLOAD_INTERVAL_MINUTES: float = 5
    CLEANUP_INTERVAL_MINUTES: float = 1
    JOB_START_DELAY_SECONDS: float = 20

    class Config:
        env_prefix = "SOCRATACACHE_"
        env_file = ".env"
        # Ignore extra env vars instead of crashing
        extra = "ignore"

    @property
    def database_url(self) -> str:
        return self.DATABASE_URL or f"sqlite:///{self.DB_FILE_PATH}"


settings = Settings()
