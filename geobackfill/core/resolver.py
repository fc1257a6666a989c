"""Resolve free-text addresses to coordinates, never failing on a miss."""

import logging
import time
from typing import Optional

from geobackfill.etl.addresses import generate_fallback_addresses, normalize_address
from geobackfill.etl.coordinates import in_bounds, make_coordinate, synthesize_coordinate
from geobackfill.models import BoundingBox, Coordinate, GeocodeResult, GeocodingSource
from geobackfill.vendors.google_geocoding import (
    Denied,
    GeocodingClient,
    GeocodingDeniedError,
    Match,
    NoMatch,
    TransportError,
)

logger = logging.getLogger(__name__)

SYNTHETIC_PREFIX = "synthetic:"


class AddressResolver:
    """Exact geocode, then fallback variants, then a synthetic point.

    ``resolve`` returns None only for empty addresses. A provider denial raises
    ``GeocodingDeniedError`` so the caller can stop the whole run.
    """

    def __init__(
        self,
        client: GeocodingClient,
        bounds: BoundingBox,
        country: str = "Israel",
        fallback_delay: float = 0.05,
    ) -> None:
        self.client = client
        self.bounds = bounds
        self.country = country
        self.fallback_delay = fallback_delay

    def resolve(self, raw_address: Optional[str]) -> Optional[GeocodeResult]:
        address = normalize_address(raw_address)
        if address is None:
            return None

        coordinate, match = self._attempt(address)
        if coordinate is not None:
            return self._provider_result(address, coordinate, match, is_approximate=False)

        logger.warning("Exact geocoding failed for: %s", address)
        for fallback in generate_fallback_addresses(address, self.country):
            if fallback == address:
                continue
            logger.warning("  Trying fallback: %s", fallback)
            coordinate, match = self._attempt(fallback)
            time.sleep(self.fallback_delay)
            if coordinate is not None:
                return self._provider_result(fallback, coordinate, match, is_approximate=True)

        logger.warning("All geocoding attempts failed for: %s; using a synthetic location", address)
        return GeocodeResult(
            coordinate=synthesize_coordinate(address, self.bounds),
            formatted_address=f"{SYNTHETIC_PREFIX}{address}",
            is_approximate=True,
            source=GeocodingSource.SYNTHETIC,
            query=address,
            place_id=None,
        )

    def _attempt(self, query: str):
        outcome = self.client.geocode(query)
        if isinstance(outcome, Denied):
            raise GeocodingDeniedError(outcome.message)
        if isinstance(outcome, TransportError):
            logger.warning("Transport error geocoding %s: %s", query, outcome.message)
            return None, None
        if isinstance(outcome, NoMatch):
            return None, None
        if isinstance(outcome, Match):
            coordinate = make_coordinate(outcome.lat, outcome.lng)
            if coordinate is None:
                logger.warning("Invalid coordinates for %s: lat=%s lng=%s", query, outcome.lat, outcome.lng)
                return None, None
            return coordinate, outcome
        raise TypeError(f"unexpected geocode outcome: {outcome!r}")

    def _provider_result(
        self,
        query: str,
        coordinate: Coordinate,
        match: Match,
        is_approximate: bool,
    ) -> GeocodeResult:
        if not in_bounds(coordinate, self.bounds):
            if is_approximate:
                logger.debug("Approximate match outside bounds: %s (%s, %s)", query, coordinate.lat, coordinate.lng)
            else:
                logger.warning(
                    "Address outside expected bounds: %s (lat: %s, lng: %s)", query, coordinate.lat, coordinate.lng
                )
        if is_approximate:
            logger.warning("  Using approximate coordinates: %s", match.formatted_address or query)
        return GeocodeResult(
            coordinate=coordinate,
            formatted_address=match.formatted_address or query,
            is_approximate=is_approximate,
            source=GeocodingSource.PROVIDER,
            query=query,
            place_id=match.place_id,
        )
