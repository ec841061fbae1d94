"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class ConfigError(RuntimeError):
    """Raised when mandatory configuration is missing."""


@dataclass(frozen=True)
class Settings:
    database_url: str
    upload_dir: str = "public/uploads/companies"
    upload_url_prefix: str = "/uploads/companies"
    image_timeout_seconds: int = 30
    image_max_bytes: int = 10 * 1024 * 1024
    default_country: str = "Syria"
    default_city: str = "Damascus"
    import_batch_size: int = 10


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("%s=%r is not an integer; using %d", name, raw, default)
        return default


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    database_url = os.getenv("DATABASE_URL", "")
    upload_dir = os.getenv("UPLOAD_DIR") or "public/uploads/companies"
    upload_url_prefix = (os.getenv("UPLOAD_URL_PREFIX") or "/uploads/companies").rstrip("/")
    default_country = (os.getenv("DEFAULT_COUNTRY") or "Syria").strip()
    default_city = (os.getenv("DEFAULT_CITY") or "Damascus").strip()

    if not database_url:
        logger.warning("DATABASE_URL is not set; database operations will fail.")

    return Settings(
        database_url=database_url,
        upload_dir=upload_dir,
        upload_url_prefix=upload_url_prefix,
        image_timeout_seconds=_get_int("IMAGE_TIMEOUT_SECONDS", 30),
        image_max_bytes=_get_int("IMAGE_MAX_BYTES", 10 * 1024 * 1024),
        default_country=default_country,
        default_city=default_city,
        import_batch_size=max(1, _get_int("IMPORT_BATCH_SIZE", 10)),
    )
