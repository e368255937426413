"""
Application settings, loaded from the environment and an optional .env file.
"""

import logging
from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_JWT_SECRET = "change-this-secret"


class Settings(BaseSettings):
    app_name: str = "Student Work Marketplace"

    # Firebase / Firestore
    firebase_credentials_path: str = "service-account-key.json"
    firebase_project_id: Optional[str] = None

    # JWT Auth
    jwt_secret_key: str = DEFAULT_JWT_SECRET
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 1440

    # App
    log_level: str = "INFO"
    cors_origins: List[str] = ["*"]
    default_page_size: int = 10
    max_page_size: int = 100

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8"
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()


def warn_on_default_secret(settings: Settings) -> bool:
    """Logs a warning when tokens would be signed with the built-in key."""
    if settings.jwt_secret_key == DEFAULT_JWT_SECRET:
        logger.warning("JWT_SECRET_KEY is not set; tokens are signed with the built-in default key")
        return True
    return False
