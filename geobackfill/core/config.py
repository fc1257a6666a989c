"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Tuple

from dotenv import load_dotenv

from geobackfill.models import BoundingBox

logger = logging.getLogger(__name__)

DEFAULT_BOUNDS = BoundingBox(min_lat=29.5, max_lat=33.3, min_lng=34.2, max_lng=35.9)
DEFAULT_COLLECTIONS = ("users", "vets", "businesses")


class ConfigError(RuntimeError):
    """Raised when mandatory configuration is missing or malformed."""


@dataclass(frozen=True)
class Settings:
    google_maps_api_key: str
    database_url: str
    region: str = "il"
    country: str = "Israel"
    bounds: BoundingBox = DEFAULT_BOUNDS
    probe_address: str = "Tel Aviv, Israel"
    collections: Tuple[str, ...] = DEFAULT_COLLECTIONS
    batch_size: int = 500
    request_delay: float = 0.1
    fallback_delay: float = 0.05
    max_reported_errors: int = 10
    rate_limit: int = 10
    rate_window_seconds: int = 900


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc
    if value < 0:
        raise ConfigError(f"{name} must not be negative, got {value}")
    return value


def parse_bounds(raw: str) -> BoundingBox:
    """Parse ``min_lat,max_lat,min_lng,max_lng`` into a bounding box."""
    parts = [part.strip() for part in raw.split(",")]
    if len(parts) != 4:
        raise ConfigError(f"GEOCODING_BOUNDS needs four comma separated numbers, got {raw!r}")
    try:
        min_lat, max_lat, min_lng, max_lng = (float(part) for part in parts)
    except ValueError as exc:
        raise ConfigError(f"GEOCODING_BOUNDS contains a non-numeric value: {raw!r}") from exc
    if not (-90 <= min_lat < max_lat <= 90) or not (-180 <= min_lng < max_lng <= 180):
        raise ConfigError(f"GEOCODING_BOUNDS is not a valid box: {raw!r}")
    return BoundingBox(min_lat=min_lat, max_lat=max_lat, min_lng=min_lng, max_lng=max_lng)


def _parse_collections(raw: str) -> Tuple[str, ...]:
    names = tuple(name.strip() for name in raw.split(",") if name.strip())
    if not names:
        raise ConfigError("MIGRATION_COLLECTIONS must name at least one collection")
    return names


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    google_maps_api_key = os.getenv("GOOGLE_MAPS_API_KEY") or os.getenv("NEXT_PUBLIC_GOOGLE_MAPS_API_KEY", "")
    database_url = os.getenv("DATABASE_URL", "")
    region = (os.getenv("GEOCODING_REGION") or "il").strip().lower()
    country = (os.getenv("GEOCODING_COUNTRY") or "Israel").strip()
    bounds_raw = os.getenv("GEOCODING_BOUNDS")
    bounds = parse_bounds(bounds_raw) if bounds_raw else DEFAULT_BOUNDS
    probe_address = (os.getenv("GEOCODING_PROBE_ADDRESS") or "Tel Aviv, Israel").strip()
    collections_raw = os.getenv("MIGRATION_COLLECTIONS")
    collections = _parse_collections(collections_raw) if collections_raw is not None else DEFAULT_COLLECTIONS

    if not database_url:
        logger.warning("DATABASE_URL is not set; database operations will fail.")
    if not google_maps_api_key:
        logger.warning("GOOGLE_MAPS_API_KEY is not configured; geocoding requests will fail.")

    return Settings(
        google_maps_api_key=google_maps_api_key,
        database_url=database_url,
        region=region,
        country=country,
        bounds=bounds,
        probe_address=probe_address,
        collections=collections,
        batch_size=_get_int("MIGRATION_BATCH_SIZE", 500),
        request_delay=_get_float("MIGRATION_REQUEST_DELAY", 0.1),
        fallback_delay=_get_float("GEOCODING_FALLBACK_DELAY", 0.05),
        max_reported_errors=_get_int("MIGRATION_MAX_REPORTED_ERRORS", 10),
        rate_limit=_get_int("GEOCODE_RATE_LIMIT", 10),
        rate_window_seconds=_get_int("GEOCODE_RATE_WINDOW_SECONDS", 900),
    )


def require_migration_settings(settings: Settings) -> None:
    """Fail fast when the migration cannot possibly run."""
    missing = []
    if not settings.google_maps_api_key:
        missing.append("GOOGLE_MAPS_API_KEY")
    if not settings.database_url:
        missing.append("DATABASE_URL")
    if missing:
        raise ConfigError(f"{', '.join(missing)} must be set in the environment for the migration to run.")
