"""Configuration helpers for Downto."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Settings:
    """Runtime configuration values loaded from environment variables."""

    api_key: str
    database_path: Path
    cron_secret: Optional[str] = None
    sweep_interval_seconds: int = 300
    push_endpoint: Optional[str] = None
    push_token: Optional[str] = None
    event_importer_url: Optional[str] = None
    social_graph_url: Optional[str] = None
    default_max_squad_size: int = 5
    default_check_hours: int = 24


def load_settings(env_file: str | None = None) -> Settings:
    """Load settings from the environment, optionally from a specific file."""

    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    db_path = Path(os.getenv("DATABASE_PATH", "downto.db")).expanduser()

    api_key = os.getenv("API_KEY")
    if not api_key:
        raise RuntimeError("API_KEY must be configured")

    cron_secret = os.getenv("CRON_SECRET")
    if not cron_secret:
        logger.warning("CRON_SECRET is not set. The sweep trigger endpoint will be disabled.")
    push_endpoint = os.getenv("PUSH_ENDPOINT")
    if not push_endpoint:
        logger.warning("PUSH_ENDPOINT is not set. Notifications will only be logged.")

    return Settings(
        api_key=api_key,
        database_path=db_path,
        cron_secret=cron_secret,
        sweep_interval_seconds=int(os.getenv("SWEEP_INTERVAL_SECONDS", "300")),
        push_endpoint=push_endpoint,
        push_token=os.getenv("PUSH_TOKEN"),
        event_importer_url=os.getenv("EVENT_IMPORTER_URL"),
        social_graph_url=os.getenv("SOCIAL_GRAPH_URL"),
        default_max_squad_size=int(os.getenv("DEFAULT_MAX_SQUAD_SIZE", "5")),
        default_check_hours=int(os.getenv("DEFAULT_CHECK_HOURS", "24")),
    )


__all__ = ["Settings", "load_settings"]
