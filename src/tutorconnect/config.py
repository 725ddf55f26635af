"""Application settings, read from ``TUTORCONNECT_*`` environment variables or ``.env``."""

import logging
import sys
from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="TUTORCONNECT_", env_file=".env", extra="ignore"
    )

    title: str = "TutorConnect"
    backend: Literal["memory", "firebase"] = "memory"

    # Firebase
    firebase_api_key: Optional[str] = None
    firebase_credentials: Optional[str] = None
    firebase_project_id: Optional[str] = None

    # UI
    chat_poll_interval_ms: int = 1500
    toast_duration_ms: int = 3000

    # Sessions not seen for this long are closed; unset keeps them forever
    session_ttl_s: Optional[float] = 3600

    # Server
    host: str = "127.0.0.1"
    port: int = 8050
    debug: bool = False
    log_level: str = "INFO"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: str = "INFO") -> None:
    """Sends application logs to stdout."""
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper()),
    )
    logging.getLogger("werkzeug").setLevel(logging.WARNING)
