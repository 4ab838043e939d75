"""Application configuration using Pydantic Settings."""
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # App
    app_name: str = "School Records"
    debug: bool = False
    log_level: str = "INFO"

    # Record store
    store_backend: Literal["mongo", "memory"] = "mongo"
    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "school_records"
    mongodb_transactions: bool = True  # needs a replica set; off only for a standalone dev server
    write_batch_limit: int = 400  # recompute chunk size, kept below max_batch_size
    max_batch_size: int = 500
    transaction_max_attempts: int = 5

    # JWT (tokens are issued by the identity service)
    jwt_secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 60

    # CORS (comma-separated origins)
    cors_origins: str = "http://localhost:5173"

    @model_validator(mode="after")
    def _validate_production_secrets(self):
        if not self.debug:
            if self.jwt_secret_key in ("change-me-in-production", ""):
                raise ValueError(
                    "JWT_SECRET_KEY must be set to a strong secret when DEBUG is not enabled. "
                    "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
                )
        if self.write_batch_limit > self.max_batch_size:
            raise ValueError("WRITE_BATCH_LIMIT must not exceed MAX_BATCH_SIZE")
        return self


settings = Settings()
