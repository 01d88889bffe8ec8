from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Tenant Config Engine"
    app_env: str = "local"
    app_debug: bool = True
    api_base_url: str = "http://localhost:3001/api"
    remote_backend: Literal["system_clients", "clients"] = "system_clients"
    request_timeout_seconds: float = 30.0
    cache_database_url: str = "sqlite+pysqlite:///./tenant_config_cache.db"
    cache_store_name: str = "system-client-storage"
    metrics_enabled: bool = False
    otel_enabled: bool = False

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)


@lru_cache
def get_settings() -> Settings:
    return Settings()
