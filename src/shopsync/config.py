from typing import Optional

from pydantic_settings import BaseSettings

DEFAULT_SYNC_INTERVAL_MINUTES = 60
DEFAULT_SYNC_BATCH_SIZE = 100
DEFAULT_WATERMARK_LAG_SECONDS = 300


class Settings(BaseSettings):
    database_url: str = "sqlite:///./shopsync.db"

    # Node identity; machine_key, when set, is resolved against sync_machine_profiles
    server_role: str = ""
    machine_key: Optional[str] = None
    store_id: Optional[str] = None
    store_type: Optional[str] = None
    server_ip: Optional[str] = None

    central_api_base_url: str = ""
    sync_http_timeout_seconds: float = 30.0
    sync_interval_minutes: int = DEFAULT_SYNC_INTERVAL_MINUTES
    sync_batch_size: int = DEFAULT_SYNC_BATCH_SIZE
    # Central serves partial pages up to now minus this lag; covers writes still uncommitted at read time
    sync_watermark_lag_seconds: int = DEFAULT_WATERMARK_LAG_SECONDS

    photo_storage_root: str = "./data/photos"
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def effective_interval_minutes(self) -> int:
        return self.sync_interval_minutes if self.sync_interval_minutes > 0 else DEFAULT_SYNC_INTERVAL_MINUTES

    @property
    def effective_batch_size(self) -> int:
        return self.sync_batch_size if self.sync_batch_size > 0 else DEFAULT_SYNC_BATCH_SIZE


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
