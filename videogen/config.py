import json
from functools import lru_cache
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "Videogen API"
    app_version: str = "1.0.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 3000

    # CORS - stored as string, parsed via computed property
    cors_origins_raw: str = "*"

    @computed_field
    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS origins from pipe/comma-separated string or JSON array."""
        v = self.cors_origins_raw
        if v.startswith("["):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        if "|" in v:
            return [origin.strip() for origin in v.split("|") if origin.strip()]
        return [origin.strip() for origin in v.split(",") if origin.strip()]

    # Shared storage areas
    uploads_dir: str = "./uploads"
    output_dir: str = "./output"
    output_extension: str = ".mp4"

    # File Upload
    max_upload_size_mb: int = 100

    # Remote media downloads
    download_timeout_seconds: float = 60.0
    download_concurrency: int = 3
    max_download_bytes: int = 0  # 0 = unlimited

    # Render worker
    render_command: str = "node render.mjs"
    render_workdir: str | None = None
    render_timeout_seconds: float = 1800.0  # 0 = no timeout
    render_workers: int = 2
    default_duration_seconds: float = 5.0

    # Job registry
    job_store: Literal["memory", "sql"] = "memory"
    database_url: str = "sqlite:///./videogen-jobs.db"
    database_echo: bool = False
    job_ttl_seconds: int = 0  # 0 = keep jobs forever


@lru_cache
def get_settings() -> Settings:
    return Settings()
