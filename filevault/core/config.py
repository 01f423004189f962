# filevault/core/config.py
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    environment: str = "development"
    log_level: str = "INFO"

    database_url: str = "sqlite:///./filevault.db"

    # Blob storage: "local" keeps blobs under storage_dir, "s3" in a bucket
    storage_backend: Literal["local", "s3"] = "local"
    storage_dir: Path = Path("uploads")

    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None
    aws_region: str | None = None
    aws_s3_bucket_name: str | None = None
    s3_key_prefix: str = ""

    max_upload_bytes: int = 10 * 1024 * 1024
    # Empty means every media type is accepted
    allowed_content_types: set[str] = set()

    session_cookie_name: str = "session_id"
    session_ttl_seconds: int = 24 * 60 * 60
    # None means "secure everywhere except development"
    session_cookie_secure: bool | None = None

    reconcile_grace_seconds: int = 60 * 60
    reconcile_on_startup: bool = False

    # Tell pydantic-settings to load from .env at project root
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # ignore any extra stuff in .env
    )

    @property
    def cookie_secure(self) -> bool:
        if self.session_cookie_secure is not None:
            return self.session_cookie_secure
        return self.environment != "development"


@lru_cache
def get_settings() -> Settings:
    return Settings()
