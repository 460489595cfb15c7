"""
unibo.settings

Central configuration model (Pydantic Settings).

Responsibilities:
- Provide strongly-typed, env-driven settings for backend clients and BO defaults.
- Hide credentials from repr/logging.
- Offer a cached settings instance for composition roots.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from unibo.bo.timestamps import TimestampRounding
from unibo.bo.universal import UboOptions


class Settings(BaseSettings):
    """
    Env-driven configuration shared by the backend factories in `unibo.db.session`.
    Defaults are safe for local development.
    """

    model_config = SettingsConfigDict(env_prefix="UNIBO_", case_sensitive=False)

    env: Literal["dev", "test", "prod"] = "dev"
    service_name: str = "unibo"
    log_level: str = "INFO"

    # BO defaults
    timestamp_rounding: TimestampRounding = TimestampRounding.SECOND

    # Relational backend
    database_url: str = "sqlite:///./unibo.db"
    sql_tx_mode_on_write: bool = True

    # Document backend
    mongo_url: str = "mongodb://localhost:27017"
    mongo_db: str = "unibo"
    mongo_timeout_ms: int = 5000

    # Wide-column backend
    dynamodb_region: str = "us-east-1"
    dynamodb_endpoint_url: str | None = None
    aws_access_key_id: str | None = Field(default=None, repr=False)
    aws_secret_access_key: str | None = Field(default=None, repr=False)
    uidx_hash_functions: tuple[str, str] = ("sha1", "md5")

    @field_validator("uidx_hash_functions")
    @classmethod
    def _distinct_hash_functions(cls, value: tuple[str, str]) -> tuple[str, str]:
        # hashlib names are case-insensitive.
        if value[0].lower() == value[1].lower():
            raise ValueError("uidx_hash_functions must name two different hash functions")
        return (value[0].lower(), value[1].lower())

    def ubo_options(self) -> UboOptions:
        return UboOptions(timestamp_rounding=self.timestamp_rounding)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Cache avoids re-parsing env vars for every DAO built by the application.
    return Settings()


# --- Module Notes -----------------------------------------------------------
# The core DAOs never read settings themselves; initialization code translates
# settings into constructor arguments.
