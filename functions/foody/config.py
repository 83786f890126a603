"""
Configuration and settings for the Foody backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the Lambda handlers and CLIs."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="")

    # Database (Postgres expected, any SQLAlchemy URL works)
    database_url: Optional[str] = Field(default=None)

    # Food image storage (S3)
    images_bucket: Optional[str] = Field(default=None)
    aws_region: str = Field(default="us-east-1")
    s3_endpoint: Optional[str] = Field(default=None)
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)

    # Firebase Cloud Messaging
    firebase_service_account_path: Optional[str] = Field(default=None)
    firebase_project_id: Optional[str] = Field(default=None)
    firebase_private_key: Optional[str] = Field(default=None)
    firebase_client_email: Optional[str] = Field(default=None)
    fcm_batch_size: int = Field(default=500, ge=1, le=500)
    fcm_batch_delay_seconds: float = Field(default=0.1, ge=0)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    @property
    def firebase_configured(self) -> bool:
        return bool(
            self.firebase_service_account_path
            or (
                self.firebase_project_id
                and self.firebase_private_key
                and self.firebase_client_email
            )
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
