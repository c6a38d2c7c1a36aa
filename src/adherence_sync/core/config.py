from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
import os
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from dotenv import load_dotenv

# project paths
BASE_DIR = Path(__file__).resolve().parent.parent.parent.parent
DATA_DIR = BASE_DIR / "data"
LOGS_DIR = DATA_DIR / "logs"

DEFAULT_DATABASE_URL = f"sqlite:///{DATA_DIR / 'adherence_sync.db'}"

# tracker datastore
WEB_APP_DATASTORE_KEY = "dat-app"

# tracker data elements
DEVICE_HEALTH_DATA_ELEMENT = "QH0OjHcBBpO"
BATTERY_HEALTH_DATA_ELEMENT = "Vc6c6OjvvHO"
DOSAGE_TIME_DATA_ELEMENT = "FOHv6pUjBjv"
DEVICE_SIGNAL_DATA_ELEMENT = "oHBM5fsFc6p"

# paging
EPISODE_BATCH_SIZE = 50
TRACKER_PAGE_SIZE = 100
UPLOAD_PAGE_SIZE = 100


class ConfigurationError(ValueError):
    """Raised when the integration cannot run with the configuration it was given."""


def _as_bool(value: str | None) -> bool:
    return str(value or "").strip().lower() in {"true", "1", "yes"}


def _time_zone(value: str | None) -> str:
    """IANA zone name sent to devices; abbreviations such as EAT are rejected."""
    name = (value or "").strip() or "UTC"
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigurationError(f"TIME_ZONE must be an IANA zone name such as Africa/Nairobi, got {name!r}") from e
    return name


@dataclass(frozen=True)
class Settings:
    registry_base_url: str
    tracker_base_url: str
    registry_username: str = ""
    registry_secret: str = ""
    tracker_username: str = ""
    tracker_password: str = ""
    tracker_token: str = ""
    secret_key: str | None = None
    time_zone: str = "UTC"
    close_previous_episode: bool = False
    database_url: str = DEFAULT_DATABASE_URL
    request_timeout: float = 60.0
    port: int = 3000
    log_level: str = "INFO"


def load_settings(env_file: str | os.PathLike | None = None) -> Settings:
    """Build the settings once from the environment (and a .env file if present)."""
    load_dotenv(env_file)

    registry_url = os.getenv("WISEPILL_BASE_URL", "").strip()
    tracker_url = os.getenv("DHIS2_BASE_URL", "").strip()
    missing = [
        name
        for name, value in (("WISEPILL_BASE_URL", registry_url), ("DHIS2_BASE_URL", tracker_url))
        if not value
    ]
    if missing:
        raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")

    return Settings(
        registry_base_url=registry_url,
        tracker_base_url=tracker_url,
        registry_username=os.getenv("WISEPILL_USERNAME", ""),
        registry_secret=os.getenv("WISEPILL_SECRET", ""),
        tracker_username=os.getenv("DHIS2_USERNAME", ""),
        tracker_password=os.getenv("DHIS2_PASSWORD", ""),
        tracker_token=os.getenv("DHIS2_PAT", ""),
        secret_key=os.getenv("SECRET_KEY") or None,
        time_zone=_time_zone(os.getenv("TIME_ZONE")),
        close_previous_episode=_as_bool(os.getenv("CLOSE_PREVIOUS_EPISODE")),
        database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
        request_timeout=float(os.getenv("REQUEST_TIMEOUT", "60")),
        port=int(os.getenv("PORT", "3000")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
