"""
Centralised application settings loaded from environment / .env file.
"""
from __future__ import annotations

from pathlib import Path
from functools import lru_cache

from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load .env from project root (two levels up from this file)
_ENV_PATH = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(_ENV_PATH)

_DEFAULT_ACCESS_PATH = Path(__file__).resolve().parents[2] / "config" / "data_access.yml"


class Settings(BaseSettings):
    # ── Postgres ─────────────────────────────────────────
    postgres_user: str = "metrics"
    postgres_password: str = "metrics_pw"
    postgres_db: str = "analytics"
    postgres_host: str = "localhost"
    postgres_port: int = 5432

    # ── Query execution ──────────────────────────────────
    query_timeout_ms: int = 10_000
    cache_ttl_seconds: int = 300
    cache_max_size: int = 256

    # ── Data loading ─────────────────────────────────────
    insert_batch_size: int = 500
    schema_sample_rows: int = 100
    extra_column_policy: str = "permissive"  # permissive | strict

    # ── App ──────────────────────────────────────────────
    api_port: int = 8000
    log_level: str = "INFO"
    data_access_path: str = str(_DEFAULT_ACCESS_PATH)

    @property
    def database_url(self) -> str:
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    return Settings()
