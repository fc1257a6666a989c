"""HTTP entrypoint for one-off server-side geocoding (Cloud Run friendly)."""

from __future__ import annotations

import logging
import os
import threading
import time
from typing import Any, Dict, Optional, Tuple

from flask import Flask, jsonify, request

from geobackfill.core.config import get_settings
from geobackfill.etl.addresses import normalize_address
from geobackfill.etl.coordinates import in_bounds, make_coordinate
from geobackfill.vendors.google_geocoding import Denied, GeocodingClient, NoMatch, TransportError

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)


class RateLimiter:
    """Fixed-window request counter keyed by client identifier."""

    def __init__(self, max_requests: int, window_seconds: float, clock=time.monotonic) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()

    def _cleanup(self, now: float) -> None:
        expired = [key for key, (_, reset_at) in self._entries.items() if now > reset_at]
        for key in expired:
            del self._entries[key]

    def is_limited(self, identifier: str) -> bool:
        with self._lock:
            now = self._clock()
            self._cleanup(now)
            count, reset_at = self._entries.get(identifier, (0, now + self.window_seconds))
            if count >= self.max_requests:
                return True
            self._entries[identifier] = (count + 1, reset_at)
            return False

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()


# ---------- App & limiter ----------
app = Flask(__name__)
_settings = get_settings()
_rate_limiter = RateLimiter(_settings.rate_limit, _settings.rate_window_seconds)


def _client_identifier() -> str:
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip
    return request.remote_addr or "unknown"


def _geocoding_client() -> Optional[GeocodingClient]:
    settings = get_settings()
    if not settings.google_maps_api_key:
        return None
    return GeocodingClient(settings.google_maps_api_key, region=settings.region)


# ---------- Routes ----------


@app.get("/healthz")
def healthcheck() -> Any:
    return jsonify({"status": "ok", "revision": os.getenv("K_REVISION", "unknown")}), 200


@app.get("/geocode")
def geocode_not_allowed() -> Any:
    response = jsonify({"error": "Method not allowed", "message": "Geocoding requires POST request with address data"})
    response.status_code = 405
    response.headers["Allow"] = "POST"
    return response


@app.post("/geocode")
def geocode_address() -> Any:
    """
    Geocode one address to coordinates.
    Required JSON fields: address
    Optional: placeId (str), validateBounds (bool)
    """
    client_id = _client_identifier()
    if _rate_limiter.is_limited(client_id):
        return (
            jsonify(
                {
                    "error": "Rate limit exceeded",
                    "message": "Too many geocoding requests. Please try again later.",
                    "retryAfter": _rate_limiter.window_seconds,
                }
            ),
            429,
        )

    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    address = normalize_address(payload.get("address"))
    if address is None:
        return jsonify({"error": "Validation error", "message": "address is required"}), 400
    place_id = normalize_address(payload.get("placeId"))
    validate_bounds = bool(payload.get("validateBounds", False))

    client = _geocoding_client()
    if client is None:
        logger.error("GOOGLE_MAPS_API_KEY not configured")
        return jsonify({"error": "Geocoding service unavailable"}), 503

    outcome = client.geocode(address=address, place_id=place_id)
    if isinstance(outcome, Denied):
        logger.error("Geocoding API denied the request: %s", outcome.message)
        return jsonify({"error": "Geocoding service unavailable"}), 503
    if isinstance(outcome, TransportError):
        return jsonify({"error": "Geocoding provider error", "message": outcome.message}), 502
    if isinstance(outcome, NoMatch):
        return (
            jsonify(
                {
                    "error": "Geocoding failed",
                    "message": "Could not geocode the provided " + ("place ID" if place_id else "address"),
                    "status": outcome.status,
                }
            ),
            400,
        )

    coordinate = make_coordinate(outcome.lat, outcome.lng)
    if coordinate is None:
        return jsonify({"error": "Invalid coordinates", "message": "Provider returned invalid coordinates"}), 400

    bounds = get_settings().bounds
    within_bounds = in_bounds(coordinate, bounds)
    if validate_bounds and not within_bounds:
        return (
            jsonify(
                {
                    "error": "Location validation failed",
                    "message": "The provided address is outside the supported region",
                    "coordinates": coordinate.to_dict(),
                    "formattedAddress": outcome.formatted_address,
                }
            ),
            400,
        )

    logger.info("Geocoding successful: address=%s coordinates=%s client=%s", address, coordinate, client_id)
    response = jsonify(
        {
            "address": address,
            "coordinates": coordinate.to_dict(),
            "formattedAddress": outcome.formatted_address,
            "placeId": outcome.place_id,
            "withinBounds": within_bounds,
        }
    )
    response.headers["Cache-Control"] = "private, max-age=86400"
    response.headers["X-Content-Type-Options"] = "nosniff"
    return response, 200


def main() -> None:
    port = int(os.getenv("PORT") or 8080)
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
