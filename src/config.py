"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "Cadence"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Analytics ---
    analytics_config_path: str | None = None  # defaults to the bundled analytics_config.yaml

    # --- Key-value store ---
    cache_backend: str = "memory"  # memory | redis
    redis_url: str = "redis://localhost:6379/0"
    cache_key_prefix: str = "cadence"

    # --- Security audit ---
    audit_hash_salt: str = "default_salt"  # override in every deployed environment
    health_data_path_prefixes: list[str] = [
        "/api/v1/period-tracker",
        "/api/v1/health-data",
    ]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
