"""Client utilities for the Google Geocoding API."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import requests

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_BASE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
_DENIED_HTTP_STATUSES = {401, 403}


class GeocodingError(RuntimeError):
    """Raised when the Geocoding API cannot be used for this run."""


class GeocodingDeniedError(GeocodingError):
    """Raised when the Geocoding API rejects the configured key."""


@dataclass(frozen=True, slots=True)
class Match:
    lat: Optional[float]
    lng: Optional[float]
    place_id: Optional[str]
    formatted_address: Optional[str]


@dataclass(frozen=True, slots=True)
class NoMatch:
    status: str
    message: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Denied:
    message: str


@dataclass(frozen=True, slots=True)
class TransportError:
    message: str


GeocodeOutcome = Union[Match, NoMatch, Denied, TransportError]


def _safe_float(value: Any) -> Optional[float]:
    try:
        if value is None or isinstance(value, bool):
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def _error_message(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"
    if isinstance(payload, dict):
        message = payload.get("error_message") or payload.get("message")
        if message:
            return str(message)
    return f"HTTP {response.status_code}"


def parse_geocode_payload(payload: Dict[str, Any]) -> GeocodeOutcome:
    """Turn a Geocoding API JSON body into a typed outcome."""
    status = payload.get("status") or "UNKNOWN_ERROR"
    error_message = payload.get("error_message")
    if status == "REQUEST_DENIED":
        return Denied(message=error_message or "API request denied")

    results = payload.get("results") or []
    if status != "OK" or not results:
        return NoMatch(status=status, message=error_message)

    first = results[0] if isinstance(results[0], dict) else {}
    location = (first.get("geometry") or {}).get("location") or {}
    return Match(
        lat=_safe_float(location.get("lat")),
        lng=_safe_float(location.get("lng")),
        place_id=first.get("place_id"),
        formatted_address=first.get("formatted_address"),
    )


class GeocodingClient:
    """Issues single geocode requests biased towards one region."""

    def __init__(self, api_key: str, region: Optional[str] = "il", timeout: float = 10) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        self.api_key = api_key
        self.region = region
        self.timeout = timeout

    def geocode(self, address: Optional[str] = None, place_id: Optional[str] = None) -> GeocodeOutcome:
        if place_id:
            params = {"place_id": place_id, "key": self.api_key}
        elif address and address.strip():
            params = {"address": address.strip(), "key": self.api_key}
            if self.region:
                params["region"] = self.region
        else:
            raise ValueError("address or place_id must be provided")

        try:
            response = _SESSION.get(_BASE_URL, params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning("geocode request failed for %s: %s", address or place_id, exc)
            return TransportError(message=str(exc))

        if response.status_code in _DENIED_HTTP_STATUSES:
            message = _error_message(response)
            logger.error("geocode denied: status=%s, error_message=%s", response.status_code, message)
            return Denied(message=message)
        if response.status_code >= 400:
            message = _error_message(response)
            logger.warning("geocode HTTP error: status=%s, error_message=%s", response.status_code, message)
            return TransportError(message=f"HTTP {response.status_code}: {message}")

        try:
            payload = response.json()
        except ValueError as exc:
            logger.warning("geocode returned a non-JSON body for %s", address or place_id)
            return TransportError(message=f"invalid JSON: {exc}")

        outcome = parse_geocode_payload(payload if isinstance(payload, dict) else {})
        if isinstance(outcome, Denied):
            logger.error("geocode failed: status=REQUEST_DENIED, error_message=%s", outcome.message)
        elif isinstance(outcome, NoMatch):
            logger.debug("geocode no match for %s: status=%s", address or place_id, outcome.status)
        return outcome
