from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    historian_transport: Literal["archive", "piwebapi"] = Field(default="archive")
    historian_server_name: str = Field(default="localhost", min_length=1)
    historian_database_name: str = Field(default="Historian", min_length=1)
    historian_username: str | None = Field(default=None)
    historian_secret: str | None = Field(default=None)
    historian_auth_domain: str | None = Field(default=None)
    historian_date_display_format: str = Field(default="%Y.%m.%d. %H:%M:%S")
    historian_point_page_size: int = Field(default=1000, ge=1, le=100000)
    historian_base_url: str = Field(default="https://localhost/piwebapi")
    historian_http_timeout_seconds: float = Field(default=30.0, ge=1.0, le=600.0)
    archive_database_url: str = Field(default="sqlite:///./historian_archive.db")
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
