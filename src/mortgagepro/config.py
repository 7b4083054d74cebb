"""Configuration loaded from the environment via pydantic-settings.

Every setting can be supplied as MORTGAGEPRO_<NAME>; a .env file in the
working directory is loaded first.
"""

from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from mortgagepro.duration import parse_duration

load_dotenv()


class Settings(BaseSettings):
    """Backend endpoint, webhooks, storage buckets, cache defaults and logging."""

    model_config = SettingsConfigDict(env_prefix="MORTGAGEPRO_", extra="ignore")

    # Backend (hosted Postgres + storage REST API)
    backend_url: str = Field(
        default="http://localhost:54321", description="Base URL of the backend"
    )
    backend_key: str = Field(default="", description="API key sent with every request")
    request_timeout: float = Field(default=30.0, description="HTTP timeout in seconds")

    # Object storage
    documents_bucket: str = Field(default="client-documents")
    lender_documents_bucket: str = Field(default="lender_documents")
    signed_url_ttl: int = Field(default=3600, description="Signed URL lifetime in seconds")

    # Outbound webhooks
    chat_webhook_url: Optional[str] = Field(
        default=None, description="AI assistant chat webhook"
    )
    chat_timeout: float = Field(default=30.0, description="Chat webhook timeout in seconds")
    lender_document_webhook_url: Optional[str] = Field(
        default=None, description="Notified after each lender document upload"
    )

    # Query cache defaults
    default_stale_time: str = Field(default="5m")
    default_gc_time: str = Field(default="10m")

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    @field_validator("default_stale_time", "default_gc_time")
    @classmethod
    def _check_duration(cls, value: str) -> str:
        parse_duration(value)
        return value

    @field_validator("backend_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings, loaded once."""
    return Settings()
